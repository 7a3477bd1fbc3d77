# -*- coding: utf-8 -*-
# SPDX-License-Identifier: Apache-2.0

"""
Base entity models with common fields and document conversion.
"""

from datetime import datetime
from typing import Any, Dict, Optional
from pydantic import BaseModel, Field, ConfigDict
from pydantic.alias_generators import to_camel
from bson import ObjectId


def generate_object_id() -> str:
    """Generate a new MongoDB ObjectId as string."""
    return str(ObjectId())


class BaseEntity(BaseModel):
    """Base entity with common fields for all governance records."""

    model_config = ConfigDict(
        # Stored documents use camelCase keys
        alias_generator=to_camel,
        # Allow population by field name or alias
        populate_by_name=True,
        # Use enum values instead of enum objects
        use_enum_values=True,
        # Apply the enum conversion to defaults too
        validate_default=True,
        # Validate assignment
        validate_assignment=True,
        arbitrary_types_allowed=True
    )

    id: str = Field(default_factory=generate_object_id, description="Unique identifier")
    organization_id: str = Field(..., description="Organization scope identifier")
    created_at: datetime = Field(default_factory=datetime.utcnow, description="Creation timestamp")
    updated_at: datetime = Field(default_factory=datetime.utcnow, description="Last update timestamp")
    deleted_at: Optional[datetime] = Field(None, description="Soft delete timestamp")
    created_by: str = Field(..., description="User ID who created this entity")
    updated_by: str = Field(..., description="User ID who last updated this entity")
    schema_version: int = Field(default=1, description="Schema version for migrations")

    def update_timestamp(self, updated_by: str) -> None:
        """Update the timestamp and updated_by fields."""
        self.updated_at = datetime.utcnow()
        self.updated_by = updated_by

    def is_deleted(self) -> bool:
        """Check if entity is soft deleted."""
        return self.deleted_at is not None

    def to_document(self) -> Dict[str, Any]:
        """Serialize to a MongoDB document keyed by ``_id``."""
        document = self.model_dump(by_alias=True, exclude={"id"})
        document["_id"] = ObjectId(self.id)
        return document

    @classmethod
    def from_document(cls, document: Dict[str, Any]):
        """Build an entity from a stored document (``_id`` or ``id`` keyed)."""
        data = dict(document)
        if "_id" in data:
            data["id"] = str(data.pop("_id"))
        return cls.model_validate(data)


class GovernanceRequest(BaseModel):
    """Base model for governance request bodies."""

    model_config = ConfigDict(
        use_enum_values=True,
        validate_assignment=True
    )

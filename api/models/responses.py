# -*- coding: utf-8 -*-
# SPDX-License-Identifier: Apache-2.0

"""
Response models for API endpoints and JSON conversion of service results.
"""

import dataclasses
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional

from bson import ObjectId
from pydantic import BaseModel, Field


class ProblemResponse(BaseModel):
    """RFC 7807 problem document."""

    type: str = Field(..., description="Problem type URL")
    title: str = Field(..., description="Short summary")
    status: int = Field(..., description="HTTP status code")
    detail: str = Field(..., description="Human-readable explanation")
    instance: str = Field(..., description="Request path")
    code: Optional[str] = Field(None, description="Machine-readable error code")
    details: Dict[str, Any] = Field(default_factory=dict, description="Structured failure details")


class EligibilityResponse(BaseModel):
    """Ballot eligibility check result."""

    allowed: bool = Field(..., description="Whether a ballot may be cast")
    reason: Optional[str] = Field(None, description="Machine-readable denial reason")
    message: Optional[str] = Field(None, description="Human-readable denial detail")
    details: Dict[str, Any] = Field(default_factory=dict, description="Denial context")


class HealthCheckResponse(BaseModel):
    """Health check response."""

    status: str = Field(..., description="Overall health status")
    service: str = Field(..., description="Service name")
    version: str = Field(..., description="Service version")
    environment: str = Field(..., description="Deployment environment")
    timestamp: str = Field(..., description="Check timestamp")
    dependencies: Dict[str, Any] = Field(default_factory=dict, description="Dependency status")


def to_json_compatible(value: Any) -> Any:
    """
    Convert service results to JSON-compatible values.

    Dataclasses with a ``to_dict`` method use it; other dataclasses are
    converted field by field. Naive datetimes are UTC.
    """
    if isinstance(value, datetime):
        return value.isoformat() + ("Z" if value.tzinfo is None else "")
    if isinstance(value, ObjectId):
        return str(value)
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, BaseModel):
        return to_json_compatible(value.model_dump(by_alias=True))
    if dataclasses.is_dataclass(value) and not isinstance(value, type):
        if hasattr(value, "to_dict"):
            return to_json_compatible(value.to_dict())
        data = {f.name: getattr(value, f.name) for f in dataclasses.fields(value)}
        return to_json_compatible(data)
    if isinstance(value, dict):
        return {str(k): to_json_compatible(v) for k, v in value.items()}
    if isinstance(value, (list, tuple, set)):
        return [to_json_compatible(v) for v in value]
    return value

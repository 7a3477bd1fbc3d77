# -*- coding: utf-8 -*-
# SPDX-License-Identifier: Apache-2.0

"""
Procedural gate for General Assembly meetings.

Creates and repairs the three mandatory procedural agenda items and blocks
outcome application for substantive items until items 1-3 are APPROVED.
"""

import logging
from typing import Dict, List, Optional, Any

from opentelemetry import trace

from .mongodb import MongoDBService
from .audit import AuditService
from domain.procedural import (
    PROCEDURAL_TEMPLATES,
    FIRST_SUBSTANTIVE_ITEM_NO,
    ProceduralSequenceStatus,
    evaluate_procedural_sequence,
    find_procedural_drift
)
from models.entities import AgendaItem, Resolution
from models.enums import ResolutionStatus, ResolutionVisibility
from models.errors import ErrorCode, GovernanceResult

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)

AGENDA_ITEMS = "agenda_items"
RESOLUTIONS = "resolutions"


class ProceduralGateService:
    """Procedural item creation, self-healing and the sequence check."""

    def __init__(self, mongo_service: MongoDBService, audit_service: Optional[AuditService] = None):
        self.mongo_service = mongo_service
        self.audit_service = audit_service

    def get_agenda_items(self, meeting_id: str) -> List[Dict[str, Any]]:
        return self.mongo_service.find_many(
            AGENDA_ITEMS,
            {"meetingId": meeting_id},
            sort=[("itemNo", 1)]
        )

    def get_agenda_item_for_resolution(self, resolution_id: str) -> Optional[Dict[str, Any]]:
        return self.mongo_service.find_one(AGENDA_ITEMS, {"resolutionId": resolution_id})

    def _resolution_statuses(self, resolution_ids: List[str]) -> Dict[str, str]:
        object_ids = []
        for resolution_id in resolution_ids:
            try:
                object_ids.append(self.mongo_service.to_object_id(resolution_id))
            except ValueError:
                continue

        if not object_ids:
            return {}

        resolutions = self.mongo_service.find_many(RESOLUTIONS, {"_id": {"$in": object_ids}})
        return {doc["id"]: doc.get("status") for doc in resolutions}

    def _create_procedural_resolution(self, meeting: Dict[str, Any], item_no: int, user_id: str) -> str:
        template = PROCEDURAL_TEMPLATES[item_no]
        resolution = Resolution(
            organization_id=meeting["organizationId"],
            meeting_id=meeting["id"],
            title=f"{item_no}. {template['title']}",
            content=template["content"],
            status=ResolutionStatus.PROPOSED,
            visibility=ResolutionVisibility.MEMBERS,
            metadata={"procedural": {"key": template["key"], "item_no": item_no}},
            created_by=user_id,
            updated_by=user_id
        )
        return self.mongo_service.create(RESOLUTIONS, resolution.to_document(), user_id)

    def ensure_procedural_items(self, meeting: Dict[str, Any], user_id: str) -> List[int]:
        """
        Create missing procedural items and re-link items whose resolution is gone.

        Args:
            meeting: Meeting document
            user_id: User performing the operation

        Returns:
            Item numbers that were created or repaired
        """
        with tracer.start_as_current_span("procedural.ensure_items") as span:
            span.set_attribute("governance.meeting_id", meeting["id"])

            items = self.get_agenda_items(meeting["id"])
            linked_ids = [item["resolutionId"] for item in items if item.get("resolutionId")]
            existing_ids = list(self._resolution_statuses(linked_ids).keys())

            drift = find_procedural_drift(items, existing_ids)
            repaired = []

            for item_no, item in sorted(drift.items()):
                resolution_id = self._create_procedural_resolution(meeting, item_no, user_id)

                if item is None:
                    agenda_item = AgendaItem(
                        organization_id=meeting["organizationId"],
                        meeting_id=meeting["id"],
                        item_no=item_no,
                        title=PROCEDURAL_TEMPLATES[item_no]["title"],
                        resolution_id=resolution_id,
                        is_procedural=True,
                        created_by=user_id,
                        updated_by=user_id
                    )
                    try:
                        self.mongo_service.create(AGENDA_ITEMS, agenda_item.to_document(), user_id)
                    except ValueError:
                        # Created concurrently; drop our resolution link and keep theirs
                        logger.info(
                            "Procedural item created concurrently",
                            extra={"meeting_id": meeting["id"], "item_no": item_no}
                        )
                        self.mongo_service.soft_delete_by_org(
                            RESOLUTIONS, meeting["organizationId"], resolution_id, user_id
                        )
                        continue
                else:
                    matched = self.mongo_service.update_where(
                        AGENDA_ITEMS,
                        {
                            "_id": self.mongo_service.to_object_id(item["id"]),
                            "resolutionId": item.get("resolutionId")
                        },
                        {"$set": {"resolutionId": resolution_id, "isProcedural": True}},
                        user_id
                    )
                    if not matched:
                        self.mongo_service.soft_delete_by_org(
                            RESOLUTIONS, meeting["organizationId"], resolution_id, user_id
                        )
                        continue

                repaired.append(item_no)

            if repaired and items:
                logger.warning(
                    "Procedural agenda items repaired",
                    extra={"meeting_id": meeting["id"], "item_numbers": repaired}
                )

            span.set_attribute("procedural.repaired_count", len(repaired))
            return repaired

    def check_procedural_sequence(self, meeting_id: str) -> ProceduralSequenceStatus:
        """Report whether items 1-3 exist and are APPROVED."""
        with tracer.start_as_current_span("procedural.check_sequence") as span:
            span.set_attribute("governance.meeting_id", meeting_id)

            items = self.get_agenda_items(meeting_id)
            linked_ids = [item["resolutionId"] for item in items if item.get("resolutionId")]
            status = evaluate_procedural_sequence(items, self._resolution_statuses(linked_ids))

            span.set_attributes({
                "procedural.completed": status.completed,
                "procedural.pending_items": [str(n) for n in status.pending_items]
            })
            return status

    def gate_outcome(self, resolution: Dict[str, Any]) -> Optional[GovernanceResult]:
        """
        Check the gate before an outcome is applied to ``resolution``.

        Returns:
            None when the outcome may be applied, otherwise a failed result
            listing the pending procedural item numbers
        """
        item = self.get_agenda_item_for_resolution(resolution["id"])
        if item is None or item.get("itemNo", 0) < FIRST_SUBSTANTIVE_ITEM_NO:
            return None

        status = self.check_procedural_sequence(item["meetingId"])
        if status.completed:
            return None

        logger.info(
            "Outcome blocked by procedural gate",
            extra={
                "resolution_id": resolution["id"],
                "meeting_id": item["meetingId"],
                "item_no": item.get("itemNo"),
                "pending_items": status.pending_items
            }
        )
        return GovernanceResult.fail(
            ErrorCode.PROCEDURAL_SEQUENCE_INCOMPLETE,
            status.describe(),
            meeting_id=item["meetingId"],
            item_no=item.get("itemNo"),
            pending_items=status.pending_items,
            missing_items=status.missing_items,
            unapproved_items=status.unapproved_items
        )

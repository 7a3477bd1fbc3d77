# -*- coding: utf-8 -*-
# SPDX-License-Identifier: Apache-2.0

"""
Resolution lifecycle service.

Every status change and every metadata write is a conditional update whose
filter restates the precondition, so a concurrent transition is never
silently overwritten.
"""

import logging
from datetime import datetime
from typing import Dict, List, Optional, Any

from opentelemetry import trace
from opentelemetry.trace import Status, StatusCode
from pymongo.errors import PyMongoError

from .mongodb import MongoDBService
from .membership import MembershipService
from .procedural import ProceduralGateService
from .audit import AuditService
from .amqp import EventDispatcher
from domain.membership import (
    RESOLUTION_AUTHORS,
    RESOLUTION_APPROVERS,
    PROJECT_EDITORS,
    INDICATOR_EDITORS
)
from domain.resolutions import (
    PROJECT_KEY,
    validate_status_transition,
    is_terminal_status,
    has_project_metadata,
    validate_project_initialization,
    build_project_metadata,
    validate_indicator_values,
    build_indicator_update
)
from models.entities import Resolution, UserContext
from models.enums import ResolutionStatus, ResolutionVisibility, VoteStatus
from models.errors import ErrorCode, GovernanceResult

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)

ORGANIZATIONS = "organizations"
RESOLUTIONS = "resolutions"
VOTES = "votes"

DECISION_EVENTS = {
    ResolutionStatus.APPROVED.value: "resolution.approved",
    ResolutionStatus.REJECTED.value: "resolution.rejected",
}


class ResolutionService:
    """Resolution state machine and metadata families."""

    def __init__(
        self,
        mongo_service: MongoDBService,
        membership_service: MembershipService,
        procedural_service: ProceduralGateService,
        audit_service: Optional[AuditService] = None,
        event_dispatcher: Optional[EventDispatcher] = None
    ):
        self.mongo_service = mongo_service
        self.membership_service = membership_service
        self.procedural_service = procedural_service
        self.audit_service = audit_service
        self.event_dispatcher = event_dispatcher

    def get_resolution(self, resolution_id: str) -> Optional[Dict[str, Any]]:
        return self.mongo_service.find_by_id(RESOLUTIONS, resolution_id)

    def has_open_vote(self, resolution_id: str) -> bool:
        vote = self.mongo_service.find_one(
            VOTES,
            {"resolutionId": resolution_id, "status": VoteStatus.OPEN.value}
        )
        return vote is not None

    def _audit(self, user_id: str, resolution: Dict[str, Any], action: str,
               before: Optional[Dict] = None, after: Optional[Dict] = None) -> None:
        if self.audit_service:
            self.audit_service.log_action_best_effort(
                user_id, resolution["organizationId"], "resolution", resolution["id"], action,
                before=before, after=after
            )

    def create_resolution(
        self,
        org_id: str,
        title: str,
        user_context: UserContext,
        content: str = "",
        visibility: str = ResolutionVisibility.MEMBERS.value,
        meeting_id: Optional[str] = None
    ) -> GovernanceResult:
        """
        Create a DRAFT resolution.

        Args:
            org_id: Organization ID
            title: Resolution title
            user_context: Caller
            content: Resolution text
            visibility: Visibility level
            meeting_id: Meeting the resolution is tabled at

        Returns:
            GovernanceResult with the created resolution document
        """
        with tracer.start_as_current_span("resolution.create") as span:
            span.set_attributes({
                "governance.organization_id": org_id,
                "user.id": user_context.user_id
            })

            if self.mongo_service.find_by_id(ORGANIZATIONS, org_id) is None:
                return GovernanceResult.fail(ErrorCode.ORGANIZATION_NOT_FOUND, "Organization not found")

            self.membership_service.require_capability(
                org_id, user_context, RESOLUTION_AUTHORS, "create resolutions"
            )

            try:
                resolution = Resolution(
                    organization_id=org_id,
                    title=title,
                    content=content,
                    visibility=visibility,
                    meeting_id=meeting_id,
                    created_by=user_context.user_id,
                    updated_by=user_context.user_id
                )
            except ValueError as e:
                return GovernanceResult.fail(ErrorCode.INVALID_INPUT, str(e))

            resolution_id = self.mongo_service.create(
                RESOLUTIONS, resolution.to_document(), user_context.user_id
            )
            span.set_attribute("governance.resolution_id", resolution_id)

            created = self.get_resolution(resolution_id)
            self._audit(user_context.user_id, created, "create", after={"status": created["status"]})

            logger.info(
                "Resolution created",
                extra={"organization_id": org_id, "resolution_id": resolution_id}
            )
            return GovernanceResult.ok(created)

    def update_resolution(self, resolution_id: str, user_context: UserContext,
                          title: Optional[str] = None, content: Optional[str] = None,
                          visibility: Optional[str] = None) -> GovernanceResult:
        """Edit title, content or visibility while the resolution is DRAFT."""
        resolution = self.get_resolution(resolution_id)
        if resolution is None:
            return GovernanceResult.fail(ErrorCode.RESOLUTION_NOT_FOUND, "Resolution not found")

        self.membership_service.require_capability(
            resolution["organizationId"], user_context, RESOLUTION_AUTHORS, "edit resolutions"
        )

        updates = {}
        if title is not None:
            if not title.strip():
                return GovernanceResult.fail(ErrorCode.INVALID_INPUT, "Resolution title cannot be empty")
            updates["title"] = title.strip()
        if content is not None:
            updates["content"] = content
        if visibility is not None:
            try:
                updates["visibility"] = ResolutionVisibility(visibility).value
            except ValueError:
                return GovernanceResult.fail(ErrorCode.INVALID_INPUT, f"Invalid visibility: {visibility}")

        if not updates:
            return GovernanceResult.fail(ErrorCode.INVALID_INPUT, "Nothing to update")

        updated = self.mongo_service.find_one_and_update(
            RESOLUTIONS,
            {"_id": self.mongo_service.to_object_id(resolution_id), "status": ResolutionStatus.DRAFT.value},
            {"$set": updates},
            user_context.user_id
        )
        if updated is None:
            return GovernanceResult.fail(
                ErrorCode.RESOLUTION_NOT_DRAFT,
                "Only DRAFT resolutions can be edited",
                status=resolution.get("status")
            )

        self._audit(user_context.user_id, updated, "update", after=updates)
        return GovernanceResult.ok(updated)

    def _transition(self, resolution: Dict[str, Any], target: ResolutionStatus,
                    user_id: str, decided_by: Optional[str] = None) -> GovernanceResult:
        """Move ``resolution`` to ``target`` with the current status in the write filter."""
        current = resolution.get("status")
        if not validate_status_transition(current, target.value):
            return GovernanceResult.fail(
                ErrorCode.INVALID_STATUS_TRANSITION,
                f"Cannot move resolution from {current} to {target.value}",
                current_status=current,
                target_status=target.value
            )

        now = datetime.utcnow()
        updates = {"status": target.value}
        if target == ResolutionStatus.PROPOSED:
            updates["proposedAt"] = now
        if is_terminal_status(target.value):
            updates["decidedAt"] = now
            updates["decidedBy"] = decided_by or user_id

        try:
            updated = self.mongo_service.find_one_and_update(
                RESOLUTIONS,
                {"_id": self.mongo_service.to_object_id(resolution["id"]), "status": current},
                {"$set": updates},
                user_id
            )
        except PyMongoError:
            logger.error(
                "Resolution transition failed",
                extra={"resolution_id": resolution["id"], "target_status": target.value},
                exc_info=True
            )
            return GovernanceResult.fail(ErrorCode.OPERATION_FAILED, "Failed to update resolution")

        if updated is None:
            latest = self.get_resolution(resolution["id"]) or {}
            return GovernanceResult.fail(
                ErrorCode.CONCURRENT_MODIFICATION,
                "Resolution status changed concurrently",
                current_status=latest.get("status")
            )

        self._audit(user_id, updated, "status_change", before={"status": current}, after={"status": target.value})

        event_type = DECISION_EVENTS.get(target.value)
        if event_type and self.event_dispatcher:
            self.event_dispatcher.dispatch(event_type, updated["organizationId"], {
                "resolution_id": updated["id"],
                "status": target.value,
                "decided_by": updates.get("decidedBy")
            })

        logger.info(
            "Resolution status changed",
            extra={
                "resolution_id": updated["id"],
                "from_status": current,
                "to_status": target.value
            }
        )
        return GovernanceResult.ok(updated)

    def propose_resolution(self, resolution_id: str, user_context: UserContext) -> GovernanceResult:
        resolution = self.get_resolution(resolution_id)
        if resolution is None:
            return GovernanceResult.fail(ErrorCode.RESOLUTION_NOT_FOUND, "Resolution not found")

        self.membership_service.require_capability(
            resolution["organizationId"], user_context, RESOLUTION_AUTHORS, "propose resolutions"
        )
        return self._transition(resolution, ResolutionStatus.PROPOSED, user_context.user_id)

    def decide_resolution(self, resolution_id: str, target: ResolutionStatus,
                          user_context: UserContext) -> GovernanceResult:
        """
        Approve or reject a PROPOSED resolution by an approver's action.

        Resolutions with a vote in progress are decided by closing the vote.
        Substantive agenda items stay blocked until the procedural items pass.
        """
        with tracer.start_as_current_span("resolution.decide") as span:
            span.set_attributes({
                "governance.resolution_id": resolution_id,
                "governance.target_status": target.value,
                "user.id": user_context.user_id
            })

            resolution = self.get_resolution(resolution_id)
            if resolution is None:
                return GovernanceResult.fail(ErrorCode.RESOLUTION_NOT_FOUND, "Resolution not found")

            self.membership_service.require_capability(
                resolution["organizationId"], user_context, RESOLUTION_APPROVERS,
                f"{'approve' if target == ResolutionStatus.APPROVED else 'reject'} resolutions"
            )

            if resolution.get("status") != ResolutionStatus.PROPOSED.value:
                return GovernanceResult.fail(
                    ErrorCode.RESOLUTION_NOT_PROPOSED,
                    "Only PROPOSED resolutions can be decided",
                    status=resolution.get("status")
                )

            if self.has_open_vote(resolution_id):
                return GovernanceResult.fail(
                    ErrorCode.VOTE_ALREADY_OPEN,
                    "Resolution has a vote in progress; close the vote instead"
                )

            blocked = self.procedural_service.gate_outcome(resolution)
            if blocked is not None:
                return blocked

            return self._transition(resolution, target, user_context.user_id)

    def approve_resolution(self, resolution_id: str, user_context: UserContext) -> GovernanceResult:
        return self.decide_resolution(resolution_id, ResolutionStatus.APPROVED, user_context)

    def reject_resolution(self, resolution_id: str, user_context: UserContext) -> GovernanceResult:
        return self.decide_resolution(resolution_id, ResolutionStatus.REJECTED, user_context)

    def apply_vote_outcome(self, resolution_id: str, outcome: str, vote_id: str,
                           user_id: str) -> GovernanceResult:
        """
        Apply a closed vote's outcome to its resolution.

        A resolution already in the outcome status counts as applied, which
        keeps retried closes from failing.
        """
        resolution = self.get_resolution(resolution_id)
        if resolution is None:
            return GovernanceResult.fail(ErrorCode.RESOLUTION_NOT_FOUND, "Resolution not found")

        target = ResolutionStatus(outcome)
        if resolution.get("status") == target.value:
            return GovernanceResult.ok(resolution, already_applied=True)

        return self._transition(resolution, target, user_id, decided_by=f"vote:{vote_id}")

    def initialize_project(
        self,
        resolution_id: str,
        user_context: UserContext,
        phase: str,
        code: Optional[str] = None,
        tags: Optional[List[str]] = None,
        budget_planned: Optional[float] = None
    ) -> GovernanceResult:
        """
        Write ``metadata.project`` once, while the resolution is DRAFT.

        Args:
            resolution_id: Resolution ID
            user_context: Caller
            phase: Project phase label
            code: Optional project code
            tags: Optional tags
            budget_planned: Optional planned budget

        Returns:
            GovernanceResult with the updated resolution
        """
        with tracer.start_as_current_span("resolution.initialize_project") as span:
            span.set_attributes({
                "governance.resolution_id": resolution_id,
                "user.id": user_context.user_id
            })

            resolution = self.get_resolution(resolution_id)
            if resolution is None:
                return GovernanceResult.fail(ErrorCode.RESOLUTION_NOT_FOUND, "Resolution not found")

            self.membership_service.require_capability(
                resolution["organizationId"], user_context, PROJECT_EDITORS, "initialize projects"
            )

            validation = validate_project_initialization(phase, code, tags, budget_planned)
            if not validation.is_valid:
                return GovernanceResult.fail(
                    validation.error_code, "; ".join(validation.errors), errors=validation.errors
                )

            if resolution.get("status") != ResolutionStatus.DRAFT.value:
                return self._project_rejection(resolution)
            if has_project_metadata(resolution.get("metadata")):
                return self._project_rejection(resolution)

            project = build_project_metadata(phase, code, tags, budget_planned)

            try:
                updated = self.mongo_service.find_one_and_update(
                    RESOLUTIONS,
                    {
                        "_id": self.mongo_service.to_object_id(resolution_id),
                        "status": ResolutionStatus.DRAFT.value,
                        f"metadata.{PROJECT_KEY}": {"$exists": False}
                    },
                    {"$set": {f"metadata.{PROJECT_KEY}": project}},
                    user_context.user_id
                )
            except PyMongoError as e:
                span.record_exception(e)
                span.set_status(Status(StatusCode.ERROR, str(e)))
                logger.error(
                    "Project initialization failed",
                    extra={"resolution_id": resolution_id},
                    exc_info=True
                )
                return GovernanceResult.fail(ErrorCode.OPERATION_FAILED, "Failed to initialize project")

            if updated is None:
                # Lost a race against a status change or another initialization
                return self._project_rejection(self.get_resolution(resolution_id) or resolution)

            self._audit(user_context.user_id, updated, "initialize_project", after={PROJECT_KEY: project})
            logger.info("Project initialized", extra={"resolution_id": resolution_id})
            return GovernanceResult.ok(updated)

    def _project_rejection(self, resolution: Dict[str, Any]) -> GovernanceResult:
        status = resolution.get("status")
        if status != ResolutionStatus.DRAFT.value:
            return GovernanceResult.fail(
                ErrorCode.RESOLUTION_NOT_DRAFT,
                "Project metadata can only be initialized while the resolution is DRAFT",
                status=status
            )
        return GovernanceResult.fail(
            ErrorCode.PROJECT_ALREADY_INITIALIZED,
            "Project metadata is already initialized"
        )

    def update_indicator(
        self,
        resolution_id: str,
        user_context: UserContext,
        progress: Optional[float] = None,
        budget_planned: Optional[float] = None,
        budget_spent: Optional[float] = None
    ) -> GovernanceResult:
        """
        Update ``metadata.indicator`` of an APPROVED project resolution.

        Only BOARD or CHAIR callers may update indicators. The write touches
        ``metadata.indicator.*`` paths only.
        """
        with tracer.start_as_current_span("resolution.update_indicator") as span:
            span.set_attributes({
                "governance.resolution_id": resolution_id,
                "user.id": user_context.user_id
            })

            resolution = self.get_resolution(resolution_id)
            if resolution is None:
                return GovernanceResult.fail(ErrorCode.RESOLUTION_NOT_FOUND, "Resolution not found")

            self.membership_service.require_capability(
                resolution["organizationId"], user_context, INDICATOR_EDITORS, "update indicators"
            )

            validation = validate_indicator_values(progress, budget_planned, budget_spent)
            if not validation.is_valid:
                return GovernanceResult.fail(
                    validation.error_code, "; ".join(validation.errors), errors=validation.errors
                )

            updates = build_indicator_update(progress, budget_planned, budget_spent)

            try:
                updated = self.mongo_service.find_one_and_update(
                    RESOLUTIONS,
                    {
                        "_id": self.mongo_service.to_object_id(resolution_id),
                        "status": ResolutionStatus.APPROVED.value,
                        f"metadata.{PROJECT_KEY}": {"$exists": True}
                    },
                    {"$set": updates},
                    user_context.user_id
                )
            except PyMongoError as e:
                span.record_exception(e)
                span.set_status(Status(StatusCode.ERROR, str(e)))
                logger.error("Indicator update failed", extra={"resolution_id": resolution_id}, exc_info=True)
                return GovernanceResult.fail(ErrorCode.OPERATION_FAILED, "Failed to update indicator")

            if updated is None:
                latest = self.get_resolution(resolution_id) or resolution
                if latest.get("status") != ResolutionStatus.APPROVED.value:
                    return GovernanceResult.fail(
                        ErrorCode.RESOLUTION_NOT_APPROVED,
                        "Indicators can only be updated on APPROVED resolutions",
                        status=latest.get("status")
                    )
                return GovernanceResult.fail(
                    ErrorCode.PROJECT_METADATA_MISSING,
                    "Resolution has no project metadata"
                )

            self._audit(user_context.user_id, updated, "update_indicator", after=updates)
            return GovernanceResult.ok(updated)

# -*- coding: utf-8 -*-
# SPDX-License-Identifier: Apache-2.0

"""
Meeting service: agenda, attendance, quorum, protocol and completion.
"""

import logging
from dataclasses import asdict
from datetime import datetime
from typing import Dict, Optional, Any

from opentelemetry import trace

from .mongodb import MongoDBService
from .membership import MembershipService
from .procedural import ProceduralGateService
from .voting import VotingService
from .audit import AuditService
from domain.membership import MEETING_MANAGERS
from domain.procedural import next_substantive_item_no
from domain.quorum import calculate_quorum
from models.entities import AgendaItem, Meeting, Resolution, UserContext
from models.enums import (
    AttendanceMode,
    Capability,
    MeetingStatus,
    MeetingType,
    MemberStatus,
    ResolutionStatus
)
from models.errors import ErrorCode, GovernanceResult

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)

ORGANIZATIONS = "organizations"
MEETINGS = "meetings"
AGENDA_ITEMS = "agenda_items"
ATTENDANCE = "meeting_attendance"
MEMBERSHIPS = "memberships"
RESOLUTIONS = "resolutions"

# Attempts at taking the next free agenda number under concurrent inserts
AGENDA_INSERT_ATTEMPTS = 3


class MeetingService:
    """Meeting management for governance meetings."""

    def __init__(
        self,
        mongo_service: MongoDBService,
        membership_service: MembershipService,
        procedural_service: ProceduralGateService,
        voting_service: VotingService,
        audit_service: Optional[AuditService] = None
    ):
        self.mongo_service = mongo_service
        self.membership_service = membership_service
        self.procedural_service = procedural_service
        self.voting_service = voting_service
        self.audit_service = audit_service

    def get_meeting(self, meeting_id: str) -> Optional[Dict[str, Any]]:
        return self.mongo_service.find_by_id(MEETINGS, meeting_id)

    def _audit(self, user_id: str, meeting: Dict[str, Any], action: str, after: Optional[Dict] = None) -> None:
        if self.audit_service:
            self.audit_service.log_action_best_effort(
                user_id, meeting["organizationId"], "meeting", meeting["id"], action, after=after
            )

    def _editable(self, meeting: Dict[str, Any]) -> Optional[GovernanceResult]:
        if meeting.get("status") == MeetingStatus.COMPLETED.value:
            return GovernanceResult.fail(
                ErrorCode.MEETING_NOT_EDITABLE,
                "Completed meetings cannot be changed",
                status=meeting.get("status")
            )
        return None

    def create_meeting(
        self,
        org_id: str,
        title: str,
        scheduled_at: datetime,
        user_context: UserContext,
        meeting_type: str = MeetingType.GA.value,
        location: Optional[str] = None
    ) -> GovernanceResult:
        """
        Create a meeting; General Assembly meetings get procedural items 1-3.

        Args:
            org_id: Organization ID
            title: Meeting title
            scheduled_at: Scheduled start
            user_context: Caller
            meeting_type: GA, BOARD or OTHER
            location: Meeting place

        Returns:
            GovernanceResult with the meeting and its agenda
        """
        with tracer.start_as_current_span("meeting.create") as span:
            span.set_attributes({
                "governance.organization_id": org_id,
                "governance.meeting_type": meeting_type,
                "user.id": user_context.user_id
            })

            if self.mongo_service.find_by_id(ORGANIZATIONS, org_id) is None:
                return GovernanceResult.fail(ErrorCode.ORGANIZATION_NOT_FOUND, "Organization not found")

            self.membership_service.require_capability(org_id, user_context, MEETING_MANAGERS, "create meetings")

            try:
                meeting = Meeting(
                    organization_id=org_id,
                    title=title,
                    meeting_type=meeting_type,
                    scheduled_at=scheduled_at,
                    location=location,
                    created_by=user_context.user_id,
                    updated_by=user_context.user_id
                )
            except ValueError as e:
                return GovernanceResult.fail(ErrorCode.INVALID_INPUT, str(e))

            meeting_id = self.mongo_service.create(MEETINGS, meeting.to_document(), user_context.user_id)
            created = self.get_meeting(meeting_id)
            span.set_attribute("governance.meeting_id", meeting_id)

            if created["meetingType"] == MeetingType.GA.value:
                self.procedural_service.ensure_procedural_items(created, user_context.user_id)

            self._audit(user_context.user_id, created, "create", after={"meetingType": created["meetingType"]})
            logger.info("Meeting created", extra={"organization_id": org_id, "meeting_id": meeting_id})

            return GovernanceResult.ok({
                "meeting": created,
                "agenda": self.procedural_service.get_agenda_items(meeting_id)
            })

    def add_agenda_item(self, meeting_id: str, title: str, user_context: UserContext,
                        content: str = "") -> GovernanceResult:
        """Append a substantive item (numbered from 4) with its own DRAFT resolution."""
        meeting = self.get_meeting(meeting_id)
        if meeting is None:
            return GovernanceResult.fail(ErrorCode.MEETING_NOT_FOUND, "Meeting not found")

        self.membership_service.require_capability(
            meeting["organizationId"], user_context, MEETING_MANAGERS, "edit agendas"
        )

        rejection = self._editable(meeting)
        if rejection is not None:
            return rejection

        try:
            resolution = Resolution(
                organization_id=meeting["organizationId"],
                meeting_id=meeting_id,
                title=title,
                content=content,
                created_by=user_context.user_id,
                updated_by=user_context.user_id
            )
        except ValueError as e:
            return GovernanceResult.fail(ErrorCode.INVALID_INPUT, str(e))

        resolution_id = self.mongo_service.create(RESOLUTIONS, resolution.to_document(), user_context.user_id)

        for _ in range(AGENDA_INSERT_ATTEMPTS):
            item_no = next_substantive_item_no(self.procedural_service.get_agenda_items(meeting_id))
            agenda_item = AgendaItem(
                organization_id=meeting["organizationId"],
                meeting_id=meeting_id,
                item_no=item_no,
                title=resolution.title,
                resolution_id=resolution_id,
                created_by=user_context.user_id,
                updated_by=user_context.user_id
            )
            try:
                item_id = self.mongo_service.create(AGENDA_ITEMS, agenda_item.to_document(), user_context.user_id)
            except ValueError:
                logger.info("Agenda number taken concurrently", extra={"meeting_id": meeting_id, "item_no": item_no})
                continue

            self._audit(user_context.user_id, meeting, "add_agenda_item", after={"itemNo": item_no})
            return GovernanceResult.ok({
                "agenda_item": self.mongo_service.find_by_id(AGENDA_ITEMS, item_id),
                "resolution_id": resolution_id
            })

        self.mongo_service.soft_delete_by_org(
            RESOLUTIONS, meeting["organizationId"], resolution_id, user_context.user_id
        )
        return GovernanceResult.fail(
            ErrorCode.CONCURRENT_MODIFICATION,
            "Agenda changed concurrently, please retry"
        )

    def delete_agenda_item(self, meeting_id: str, item_no: int, user_context: UserContext) -> GovernanceResult:
        meeting = self.get_meeting(meeting_id)
        if meeting is None:
            return GovernanceResult.fail(ErrorCode.MEETING_NOT_FOUND, "Meeting not found")

        self.membership_service.require_capability(
            meeting["organizationId"], user_context, MEETING_MANAGERS, "edit agendas"
        )

        rejection = self._editable(meeting)
        if rejection is not None:
            return rejection

        item = self.mongo_service.find_one(AGENDA_ITEMS, {"meetingId": meeting_id, "itemNo": item_no})
        if item is None:
            return GovernanceResult.fail(ErrorCode.AGENDA_ITEM_NOT_FOUND, "Agenda item not found")

        if item.get("isProcedural"):
            return GovernanceResult.fail(
                ErrorCode.PROCEDURAL_ITEM_NOT_DELETABLE,
                "Procedural agenda items cannot be deleted",
                item_no=item_no
            )

        resolution = None
        if item.get("resolutionId"):
            resolution = self.mongo_service.find_by_id(RESOLUTIONS, item["resolutionId"])
        if resolution is not None and resolution.get("status") != ResolutionStatus.DRAFT.value:
            return GovernanceResult.fail(
                ErrorCode.RESOLUTION_NOT_DRAFT,
                "Agenda items can only be removed while their resolution is DRAFT",
                status=resolution.get("status")
            )

        self.mongo_service.delete_where(AGENDA_ITEMS, {"_id": self.mongo_service.to_object_id(item["id"])})
        if resolution is not None:
            self.mongo_service.soft_delete_by_org(
                RESOLUTIONS, meeting["organizationId"], resolution["id"], user_context.user_id
            )

        self._audit(user_context.user_id, meeting, "delete_agenda_item", after={"itemNo": item_no})
        return GovernanceResult.ok({"meeting_id": meeting_id, "item_no": item_no})

    def publish_meeting(self, meeting_id: str, user_context: UserContext) -> GovernanceResult:
        """Publish a DRAFT meeting, repairing GA procedural items first."""
        with tracer.start_as_current_span("meeting.publish") as span:
            span.set_attribute("governance.meeting_id", meeting_id)

            meeting = self.get_meeting(meeting_id)
            if meeting is None:
                return GovernanceResult.fail(ErrorCode.MEETING_NOT_FOUND, "Meeting not found")

            self.membership_service.require_capability(
                meeting["organizationId"], user_context, MEETING_MANAGERS, "publish meetings"
            )

            repaired = []
            if meeting.get("meetingType") == MeetingType.GA.value:
                repaired = self.procedural_service.ensure_procedural_items(meeting, user_context.user_id)

            updated = self.mongo_service.find_one_and_update(
                MEETINGS,
                {"_id": self.mongo_service.to_object_id(meeting_id), "status": MeetingStatus.DRAFT.value},
                {"$set": {"status": MeetingStatus.PUBLISHED.value, "publishedAt": datetime.utcnow()}},
                user_context.user_id
            )
            if updated is None:
                return GovernanceResult.fail(
                    ErrorCode.INVALID_STATUS_TRANSITION,
                    "Only DRAFT meetings can be published",
                    status=(self.get_meeting(meeting_id) or meeting).get("status")
                )

            self._audit(user_context.user_id, updated, "publish")
            return GovernanceResult.ok({"meeting": updated, "repaired_items": repaired})

    def register_attendance(self, meeting_id: str, mode: str, user_context: UserContext,
                            membership_id: Optional[str] = None) -> GovernanceResult:
        """
        Register the caller (or, for meeting managers, another member) as a
        remote voter or an in-person attendee. Re-registering changes the mode.
        """
        meeting = self.get_meeting(meeting_id)
        if meeting is None:
            return GovernanceResult.fail(ErrorCode.MEETING_NOT_FOUND, "Meeting not found")

        org_id = meeting["organizationId"]

        try:
            mode = AttendanceMode(mode).value
        except ValueError:
            return GovernanceResult.fail(ErrorCode.INVALID_INPUT, f"Invalid attendance mode: {mode}")

        rejection = self._editable(meeting)
        if rejection is not None:
            return rejection

        if membership_id is None:
            access = self.membership_service.require_capability(
                org_id, user_context, {Capability.MEMBER}, "register for meetings"
            )
            membership_id = access.membership_id
        else:
            self.membership_service.require_capability(
                org_id, user_context, MEETING_MANAGERS, "register other members"
            )
            target = self.mongo_service.find_one_by_org(MEMBERSHIPS, org_id, membership_id)
            if target is None or target.get("memberStatus") != MemberStatus.ACTIVE.value:
                return GovernanceResult.fail(ErrorCode.MEMBERSHIP_NOT_FOUND, "Active membership not found")

        set_fields = {"mode": mode}
        set_on_insert = {"organizationId": org_id, "registeredAt": datetime.utcnow()}
        if mode == AttendanceMode.REMOTE.value:
            set_fields["present"] = False
        else:
            set_on_insert["present"] = False

        inserted = self.mongo_service.upsert_one(
            ATTENDANCE,
            {"meetingId": meeting_id, "membershipId": membership_id},
            set_fields,
            set_on_insert,
            user_context.user_id
        )

        logger.info(
            "Meeting attendance registered",
            extra={"meeting_id": meeting_id, "membership_id": membership_id, "mode": mode, "new": inserted}
        )
        return GovernanceResult.ok({
            "meeting_id": meeting_id,
            "membership_id": membership_id,
            "mode": mode,
            "registered": inserted
        })

    def mark_present(self, meeting_id: str, membership_id: str, user_context: UserContext,
                     present: bool = True) -> GovernanceResult:
        """Mark an in-person attendee present; walk-ins are registered in person."""
        meeting = self.get_meeting(meeting_id)
        if meeting is None:
            return GovernanceResult.fail(ErrorCode.MEETING_NOT_FOUND, "Meeting not found")

        org_id = meeting["organizationId"]
        self.membership_service.require_capability(org_id, user_context, MEETING_MANAGERS, "record attendance")

        rejection = self._editable(meeting)
        if rejection is not None:
            return rejection

        target = self.mongo_service.find_one_by_org(MEMBERSHIPS, org_id, membership_id)
        if target is None or target.get("memberStatus") != MemberStatus.ACTIVE.value:
            return GovernanceResult.fail(ErrorCode.MEMBERSHIP_NOT_FOUND, "Active membership not found")

        attendance = self.mongo_service.find_one(
            ATTENDANCE, {"meetingId": meeting_id, "membershipId": membership_id}
        )
        if attendance is not None and attendance.get("mode") == AttendanceMode.REMOTE.value:
            return GovernanceResult.fail(
                ErrorCode.INVALID_STATUS_TRANSITION,
                "Member is registered to vote remotely",
                membership_id=membership_id
            )

        self.mongo_service.upsert_one(
            ATTENDANCE,
            {"meetingId": meeting_id, "membershipId": membership_id},
            {"mode": AttendanceMode.IN_PERSON.value, "present": bool(present)},
            {"organizationId": org_id, "registeredAt": datetime.utcnow()},
            user_context.user_id
        )
        return GovernanceResult.ok({"meeting_id": meeting_id, "membership_id": membership_id, "present": bool(present)})

    def get_quorum(self, meeting_id: str, user_context: UserContext) -> GovernanceResult:
        """
        Advisory quorum figures for a meeting.

        Only ACTIVE memberships count, both in the denominator and among
        participants.
        """
        with tracer.start_as_current_span("meeting.get_quorum") as span:
            span.set_attribute("governance.meeting_id", meeting_id)

            meeting = self.get_meeting(meeting_id)
            if meeting is None:
                return GovernanceResult.fail(ErrorCode.MEETING_NOT_FOUND, "Meeting not found")

            org_id = meeting["organizationId"]
            self.membership_service.require_capability(org_id, user_context, {Capability.MEMBER}, "view quorum")

            active_ids = {
                m["id"] for m in self.mongo_service.find_by_org(
                    MEMBERSHIPS, org_id, {"memberStatus": MemberStatus.ACTIVE.value}
                )
            }
            attendance = self.mongo_service.find_many(ATTENDANCE, {"meetingId": meeting_id})

            remote_ids = [
                a["membershipId"] for a in attendance
                if a.get("mode") == AttendanceMode.REMOTE.value and a["membershipId"] in active_ids
            ]
            present_ids = [
                a["membershipId"] for a in attendance
                if a.get("mode") == AttendanceMode.IN_PERSON.value and a.get("present")
                and a["membershipId"] in active_ids
            ]

            quorum = calculate_quorum(len(active_ids), remote_ids, present_ids)
            span.set_attributes({
                "quorum.required": quorum.quorum_required,
                "quorum.participants": quorum.total_participants,
                "quorum.met": quorum.quorum_met
            })

            return GovernanceResult.ok(quorum)

    def get_procedural_status(self, meeting_id: str, user_context: UserContext) -> GovernanceResult:
        meeting = self.get_meeting(meeting_id)
        if meeting is None:
            return GovernanceResult.fail(ErrorCode.MEETING_NOT_FOUND, "Meeting not found")

        self.membership_service.require_capability(
            meeting["organizationId"], user_context, {Capability.MEMBER}, "view the procedural status"
        )
        return GovernanceResult.ok(self.procedural_service.check_procedural_sequence(meeting_id))

    def attach_protocol(self, meeting_id: str, protocol_url: str, user_context: UserContext) -> GovernanceResult:
        """Store the uploaded protocol location; the URL is opaque to the engine."""
        meeting = self.get_meeting(meeting_id)
        if meeting is None:
            return GovernanceResult.fail(ErrorCode.MEETING_NOT_FOUND, "Meeting not found")

        self.membership_service.require_capability(
            meeting["organizationId"], user_context, MEETING_MANAGERS, "attach protocols"
        )

        if not protocol_url or not protocol_url.strip():
            return GovernanceResult.fail(ErrorCode.INVALID_INPUT, "Protocol URL is required")

        updated = self.mongo_service.find_one_and_update(
            MEETINGS,
            {"_id": self.mongo_service.to_object_id(meeting_id)},
            {"$set": {"protocolUrl": protocol_url.strip()}},
            user_context.user_id
        )
        self._audit(user_context.user_id, updated, "attach_protocol", after={"protocolUrl": updated["protocolUrl"]})
        return GovernanceResult.ok(updated)

    def complete_meeting(self, meeting_id: str, user_context: UserContext) -> GovernanceResult:
        """
        Close every open vote of the meeting, then mark it COMPLETED.

        Completion proceeds when some votes fail to close; the bulk-close
        summary is returned with the meeting.
        """
        with tracer.start_as_current_span("meeting.complete") as span:
            span.set_attribute("governance.meeting_id", meeting_id)

            meeting = self.get_meeting(meeting_id)
            if meeting is None:
                return GovernanceResult.fail(ErrorCode.MEETING_NOT_FOUND, "Meeting not found")

            self.membership_service.require_capability(
                meeting["organizationId"], user_context, MEETING_MANAGERS, "complete meetings"
            )

            rejection = self._editable(meeting)
            if rejection is not None:
                return rejection

            bulk = self.voting_service.close_all_votes_for_meeting(meeting_id, user_context)
            if not bulk.success:
                return bulk

            updated = self.mongo_service.find_one_and_update(
                MEETINGS,
                {
                    "_id": self.mongo_service.to_object_id(meeting_id),
                    "status": {"$ne": MeetingStatus.COMPLETED.value}
                },
                {"$set": {"status": MeetingStatus.COMPLETED.value, "completedAt": datetime.utcnow()}},
                user_context.user_id
            )
            if updated is None:
                return GovernanceResult.fail(
                    ErrorCode.MEETING_NOT_EDITABLE,
                    "Meeting was completed concurrently"
                )

            summary = asdict(bulk.data)
            if bulk.data.failed_count:
                logger.warning(
                    "Meeting completed with votes left open",
                    extra={"meeting_id": meeting_id, "failed_count": bulk.data.failed_count}
                )

            self._audit(user_context.user_id, updated, "complete", after={
                "closedVotes": bulk.data.closed_count,
                "failedVotes": bulk.data.failed_count
            })
            return GovernanceResult.ok({"meeting": updated, "bulk_close": summary})

# -*- coding: utf-8 -*-
# SPDX-License-Identifier: Apache-2.0

"""
Voting engine.

Eligibility is evaluated at cast time against the caller's current ACTIVE
membership and meeting registration. Ballots are unique per
(voteId, membershipId). Closing is claimed with a conditional update so
side effects run once per vote, and retried closes report the stored
outcome.
"""

import logging
from datetime import datetime, timedelta
from typing import Dict, List, Optional, Any

from opentelemetry import trace
from opentelemetry.trace import Status, StatusCode
from pymongo.errors import PyMongoError

from .mongodb import MongoDBService
from .membership import MembershipService
from .procedural import ProceduralGateService
from .resolutions import ResolutionService
from .audit import AuditService
from .amqp import EventDispatcher
from domain.membership import MEETING_MANAGERS
from domain.voting import (
    BulkCloseResult,
    CanCastVoteResult,
    CloseVoteResult,
    compute_opens_at,
    determine_outcome,
    evaluate_eligibility,
    tally_ballots,
    validate_live_totals
)
from models.entities import UserContext, Vote
from models.enums import (
    AttendanceMode,
    MemberStatus,
    ResolutionStatus,
    VoteChannel,
    VoteChoice,
    VoteDenialReason,
    VoteKind,
    VoteStatus
)
from models.errors import ErrorCode, GovernanceResult

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)

ORGANIZATIONS = "organizations"
MEETINGS = "meetings"
AGENDA_ITEMS = "agenda_items"
ATTENDANCE = "meeting_attendance"
MEMBERSHIPS = "memberships"
VOTES = "votes"
BALLOTS = "ballots"

# Agenda position for votes whose resolution is not on the agenda
UNLISTED_ITEM_NO = 10 ** 6


class VotingService:
    """Vote creation, ballots, live totals and closing."""

    def __init__(
        self,
        mongo_service: MongoDBService,
        membership_service: MembershipService,
        resolution_service: ResolutionService,
        procedural_service: ProceduralGateService,
        audit_service: Optional[AuditService] = None,
        event_dispatcher: Optional[EventDispatcher] = None
    ):
        self.mongo_service = mongo_service
        self.membership_service = membership_service
        self.resolution_service = resolution_service
        self.procedural_service = procedural_service
        self.audit_service = audit_service
        self.event_dispatcher = event_dispatcher

    def get_vote(self, vote_id: str) -> Optional[Dict[str, Any]]:
        return self.mongo_service.find_by_id(VOTES, vote_id)

    def get_ballots(self, vote_id: str) -> List[Dict[str, Any]]:
        return self.mongo_service.find_many(BALLOTS, {"voteId": vote_id})

    def _get_attendance(self, meeting_id: str, membership_id: str) -> Optional[Dict[str, Any]]:
        return self.mongo_service.find_one(
            ATTENDANCE,
            {"meetingId": meeting_id, "membershipId": membership_id}
        )

    def create_vote(
        self,
        resolution_id: str,
        user_context: UserContext,
        kind: str = VoteKind.GA.value,
        meeting_id: Optional[str] = None,
        title: Optional[str] = None
    ) -> GovernanceResult:
        """
        Open a vote on a PROPOSED resolution.

        Args:
            resolution_id: Resolution to decide
            user_context: Caller
            kind: GA or OPINION
            meeting_id: Meeting for meeting-bound votes; defaults to the resolution's meeting
            title: Display title

        Returns:
            GovernanceResult with the vote document
        """
        with tracer.start_as_current_span("voting.create_vote") as span:
            span.set_attributes({
                "governance.resolution_id": resolution_id,
                "governance.vote_kind": kind,
                "user.id": user_context.user_id
            })

            resolution = self.resolution_service.get_resolution(resolution_id)
            if resolution is None:
                return GovernanceResult.fail(ErrorCode.RESOLUTION_NOT_FOUND, "Resolution not found")

            org_id = resolution["organizationId"]
            self.membership_service.require_capability(org_id, user_context, MEETING_MANAGERS, "open votes")

            try:
                kind = VoteKind(kind).value
            except ValueError:
                return GovernanceResult.fail(ErrorCode.INVALID_INPUT, f"Invalid vote kind: {kind}")

            if resolution.get("status") != ResolutionStatus.PROPOSED.value:
                return GovernanceResult.fail(
                    ErrorCode.RESOLUTION_NOT_PROPOSED,
                    "Votes can only be opened on PROPOSED resolutions",
                    status=resolution.get("status")
                )

            meeting_id = meeting_id or resolution.get("meetingId")
            if kind == VoteKind.GA.value and not meeting_id:
                return GovernanceResult.fail(
                    ErrorCode.GA_REQUIRES_MEETING,
                    "General Assembly votes must be bound to a meeting"
                )

            meeting = None
            if meeting_id:
                meeting = self.mongo_service.find_one_by_org(MEETINGS, org_id, meeting_id)
                if meeting is None:
                    return GovernanceResult.fail(ErrorCode.MEETING_NOT_FOUND, "Meeting not found")

            if self.resolution_service.has_open_vote(resolution_id):
                return GovernanceResult.fail(
                    ErrorCode.VOTE_ALREADY_OPEN,
                    "Resolution already has an open vote"
                )

            organization = self.mongo_service.find_by_id(ORGANIZATIONS, org_id) or {}
            governance = (organization.get("metadata") or {}).get("governance") or {}
            early_voting_days = governance.get("early_voting_days") or 0

            now = datetime.utcnow()
            scheduled_at = meeting.get("scheduledAt") if meeting else None
            opens_at = compute_opens_at(now, scheduled_at, early_voting_days)
            closes_at = scheduled_at + timedelta(days=1) if scheduled_at else None

            vote = Vote(
                organization_id=org_id,
                resolution_id=resolution_id,
                meeting_id=meeting_id,
                kind=kind,
                title=title or resolution.get("title"),
                opens_at=opens_at,
                closes_at=closes_at,
                created_by=user_context.user_id,
                updated_by=user_context.user_id
            )
            vote_id = self.mongo_service.create(VOTES, vote.to_document(), user_context.user_id)
            span.set_attribute("governance.vote_id", vote_id)

            if self.audit_service:
                self.audit_service.log_action_best_effort(
                    user_context.user_id, org_id, "vote", vote_id, "open",
                    after={"resolutionId": resolution_id, "kind": kind, "meetingId": meeting_id}
                )

            logger.info(
                "Vote opened",
                extra={"vote_id": vote_id, "resolution_id": resolution_id, "kind": kind}
            )
            return GovernanceResult.ok(self.get_vote(vote_id))

    def can_cast_vote(self, vote_id: str, channel: str, user_context: UserContext) -> CanCastVoteResult:
        """
        Evaluate whether the caller may cast a ballot through ``channel`` now.

        Returns:
            CanCastVoteResult with a machine-readable denial reason
        """
        with tracer.start_as_current_span("voting.can_cast_vote") as span:
            span.set_attributes({
                "governance.vote_id": vote_id,
                "governance.channel": channel,
                "user.id": user_context.user_id
            })

            vote = self.get_vote(vote_id)
            organization_status = None
            membership = None
            attendance = None

            if vote is not None:
                organization = self.mongo_service.find_by_id(ORGANIZATIONS, vote["organizationId"])
                organization_status = organization.get("status") if organization else None
                membership = self.membership_service.resolve_membership(
                    vote["organizationId"], user_context.user_id
                )
                if membership is not None and vote.get("meetingId"):
                    attendance = self._get_attendance(vote["meetingId"], membership["id"])

            result = evaluate_eligibility(
                vote,
                channel,
                datetime.utcnow(),
                organization_status=organization_status,
                membership=membership,
                attendance=attendance
            )

            span.set_attribute("voting.allowed", result.allowed)
            if not result.allowed:
                span.set_attribute("voting.denial_reason", result.reason.value)
                logger.info(
                    "Ballot not allowed",
                    extra={
                        "vote_id": vote_id,
                        "user_id": user_context.user_id,
                        "reason": result.reason.value
                    }
                )
            return result

    def cast_vote(self, vote_id: str, choice: str, channel: str, user_context: UserContext) -> GovernanceResult:
        """
        Record or overwrite the caller's ballot.

        The ballot is an upsert keyed by (voteId, membershipId) under a unique
        index, so concurrent casts by one voter leave a single ballot.
        """
        with tracer.start_as_current_span("voting.cast_vote") as span:
            span.set_attributes({
                "governance.vote_id": vote_id,
                "governance.channel": channel,
                "user.id": user_context.user_id
            })

            try:
                choice = VoteChoice(choice).value
            except ValueError:
                return GovernanceResult.fail(ErrorCode.INVALID_INPUT, f"Invalid ballot choice: {choice}")

            eligibility = self.can_cast_vote(vote_id, channel, user_context)
            if not eligibility.allowed:
                if eligibility.reason == VoteDenialReason.VOTE_NOT_FOUND:
                    code = ErrorCode.VOTE_NOT_FOUND
                elif eligibility.reason == VoteDenialReason.VOTE_CLOSED:
                    code = ErrorCode.VOTE_CLOSED
                else:
                    code = ErrorCode.VOTE_NOT_ALLOWED
                return GovernanceResult.fail(
                    code,
                    eligibility.message,
                    reason=eligibility.reason.value,
                    **eligibility.details
                )

            vote = self.get_vote(vote_id)
            membership_id = eligibility.details["membership_id"]
            now = datetime.utcnow()

            try:
                inserted = self.mongo_service.upsert_one(
                    BALLOTS,
                    {"voteId": vote_id, "membershipId": membership_id},
                    {"choice": choice, "channel": VoteChannel(channel).value, "castAt": now, "autoRegistered": False},
                    {"organizationId": vote["organizationId"]},
                    user_context.user_id
                )
            except PyMongoError as e:
                span.record_exception(e)
                span.set_status(Status(StatusCode.ERROR, str(e)))
                logger.error("Ballot write failed", extra={"vote_id": vote_id}, exc_info=True)
                return GovernanceResult.fail(ErrorCode.OPERATION_FAILED, "Failed to record ballot")

            logger.info(
                "Ballot recorded",
                extra={
                    "vote_id": vote_id,
                    "membership_id": membership_id,
                    "channel": channel,
                    "replaced": not inserted
                }
            )
            return GovernanceResult.ok({
                "vote_id": vote_id,
                "membership_id": membership_id,
                "choice": choice,
                "channel": channel,
                "replaced": not inserted
            })

    def count_present_attendees(self, org_id: str, meeting_id: str) -> int:
        """Present IN_PERSON attendees whose membership is still ACTIVE, as in the quorum count."""
        active_ids = {
            m["id"] for m in self.mongo_service.find_by_org(
                MEMBERSHIPS, org_id, {"memberStatus": MemberStatus.ACTIVE.value}
            )
        }
        attendance = self.mongo_service.find_many(
            ATTENDANCE,
            {"meetingId": meeting_id, "mode": AttendanceMode.IN_PERSON.value, "present": True}
        )
        return sum(1 for a in attendance if a["membershipId"] in active_ids)

    def set_live_totals(self, vote_id: str, against: int, abstain: int,
                        user_context: UserContext) -> GovernanceResult:
        """
        Record aggregate in-person counts for a meeting-bound vote.

        ``for`` is derived from the attendees present, so the totals never
        exceed the room. Invalid totals are rejected before any write.
        """
        with tracer.start_as_current_span("voting.set_live_totals") as span:
            span.set_attributes({
                "governance.vote_id": vote_id,
                "user.id": user_context.user_id
            })

            vote = self.get_vote(vote_id)
            if vote is None:
                return GovernanceResult.fail(ErrorCode.VOTE_NOT_FOUND, "Vote not found")

            self.membership_service.require_capability(
                vote["organizationId"], user_context, MEETING_MANAGERS, "record live totals"
            )

            if vote.get("status") != VoteStatus.OPEN.value:
                return GovernanceResult.fail(ErrorCode.VOTE_CLOSED, "Vote is closed")

            if not vote.get("meetingId"):
                return GovernanceResult.fail(
                    ErrorCode.VOTE_NOT_MEETING_BOUND,
                    "Live totals require a meeting-bound vote"
                )

            present_count = self.count_present_attendees(vote["organizationId"], vote["meetingId"])
            validation, for_count = validate_live_totals(present_count, against, abstain)
            if not validation.is_valid:
                return GovernanceResult.fail(
                    validation.error_code,
                    "; ".join(validation.errors),
                    present_count=present_count
                )

            live_totals = {
                "for": for_count,
                "against": against,
                "abstain": abstain,
                "present": present_count,
                "recordedBy": user_context.user_id,
                "recordedAt": datetime.utcnow()
            }

            updated = self.mongo_service.find_one_and_update(
                VOTES,
                {"_id": self.mongo_service.to_object_id(vote_id), "status": VoteStatus.OPEN.value},
                {"$set": {"liveTotals": live_totals}},
                user_context.user_id
            )
            if updated is None:
                return GovernanceResult.fail(ErrorCode.VOTE_CLOSED, "Vote closed while recording live totals")

            span.set_attributes({
                "voting.live.for": for_count,
                "voting.live.against": against,
                "voting.live.abstain": abstain
            })
            logger.info(
                "Live totals recorded",
                extra={"vote_id": vote_id, "present_count": present_count, "for_count": for_count}
            )
            return GovernanceResult.ok({
                "vote_id": vote_id,
                "for_count": for_count,
                "against": against,
                "abstain": abstain,
                "present_count": present_count
            })

    def _auto_register_abstentions(self, vote: Dict[str, Any]) -> int:
        """
        Record ABSTAIN for remote registrants with no ballot.

        Runs only for the caller that claimed the close.
        """
        if not vote.get("meetingId"):
            return 0

        active_ids = {
            m["id"] for m in self.mongo_service.find_by_org(
                MEMBERSHIPS, vote["organizationId"], {"memberStatus": MemberStatus.ACTIVE.value}
            )
        }
        remote = self.mongo_service.find_many(
            ATTENDANCE,
            {"meetingId": vote["meetingId"], "mode": AttendanceMode.REMOTE.value}
        )
        voted = {ballot["membershipId"] for ballot in self.get_ballots(vote["id"])}

        registered = 0
        now = datetime.utcnow()
        for attendance in remote:
            membership_id = attendance["membershipId"]
            if membership_id in voted or membership_id not in active_ids:
                continue

            inserted = self.mongo_service.upsert_one(
                BALLOTS,
                {"voteId": vote["id"], "membershipId": membership_id},
                {},
                {
                    "organizationId": vote["organizationId"],
                    "choice": VoteChoice.ABSTAIN.value,
                    "channel": VoteChannel.REMOTE.value,
                    "castAt": now,
                    "autoRegistered": True
                },
                "system"
            )
            if inserted:
                registered += 1

        return registered

    def _stored_close_result(self, vote: Dict[str, Any], user_id: str) -> GovernanceResult:
        """Report a vote whose outcome is already stored, re-applying it idempotently."""
        applied = self.resolution_service.apply_vote_outcome(
            vote["resolutionId"], vote["outcome"], vote["id"], user_id
        )
        resolution_status = applied.data.get("status") if applied.success else None

        return GovernanceResult.ok(CloseVoteResult(
            vote_id=vote["id"],
            outcome=vote["outcome"],
            resolution_status=resolution_status,
            tally=vote.get("tally") or {},
            already_closed=True
        ))

    def close_vote(self, vote_id: str, user_context: UserContext) -> GovernanceResult:
        """
        Close a vote, tally it and apply the outcome to its resolution.

        Args:
            vote_id: Vote ID
            user_context: Caller

        Returns:
            GovernanceResult whose data is a CloseVoteResult. Closing an
            already closed vote succeeds with ``already_closed=True`` and the
            stored outcome.
        """
        with tracer.start_as_current_span("voting.close_vote") as span:
            span.set_attributes({
                "governance.vote_id": vote_id,
                "user.id": user_context.user_id
            })

            vote = self.get_vote(vote_id)
            if vote is None:
                return GovernanceResult.fail(ErrorCode.VOTE_NOT_FOUND, "Vote not found")

            self.membership_service.require_capability(
                vote["organizationId"], user_context, MEETING_MANAGERS, "close votes"
            )

            if vote.get("outcome"):
                span.set_attribute("voting.already_closed", True)
                return self._stored_close_result(vote, user_context.user_id)

            auto_abstained = 0
            if vote.get("status") == VoteStatus.OPEN.value:
                resolution = self.resolution_service.get_resolution(vote["resolutionId"])
                if resolution is None:
                    return GovernanceResult.fail(ErrorCode.RESOLUTION_NOT_FOUND, "Resolution not found")

                blocked = self.procedural_service.gate_outcome(resolution)
                if blocked is not None:
                    return blocked

                claimed = self.mongo_service.find_one_and_update(
                    VOTES,
                    {"_id": self.mongo_service.to_object_id(vote_id), "status": VoteStatus.OPEN.value},
                    {"$set": {
                        "status": VoteStatus.CLOSED.value,
                        "closedAt": datetime.utcnow(),
                        "closedBy": user_context.user_id
                    }},
                    user_context.user_id
                )

                if claimed is not None:
                    try:
                        auto_abstained = self._auto_register_abstentions(claimed)
                    except PyMongoError as e:
                        span.record_exception(e)
                        logger.error(
                            "Abstention auto-registration failed",
                            extra={"vote_id": vote_id},
                            exc_info=True
                        )
                    vote = claimed
                else:
                    vote = self.get_vote(vote_id)
                    if vote.get("outcome"):
                        return self._stored_close_result(vote, user_context.user_id)

            # Vote is CLOSED without a stored outcome: tally and store it once
            tally = tally_ballots(self.get_ballots(vote_id), vote.get("liveTotals"))
            outcome = determine_outcome(tally)

            stored = self.mongo_service.find_one_and_update(
                VOTES,
                {"_id": self.mongo_service.to_object_id(vote_id), "outcome": None},
                {"$set": {"outcome": outcome.value, "tally": tally.to_dict()}},
                user_context.user_id
            )
            if stored is None:
                return self._stored_close_result(self.get_vote(vote_id), user_context.user_id)

            applied = self.resolution_service.apply_vote_outcome(
                vote["resolutionId"], outcome.value, vote_id, user_context.user_id
            )
            if not applied.success:
                logger.error(
                    "Vote closed but outcome not applied",
                    extra={
                        "vote_id": vote_id,
                        "resolution_id": vote["resolutionId"],
                        "outcome": outcome.value,
                        "error_code": applied.error_code
                    }
                )
                return GovernanceResult.fail(
                    applied.error_code,
                    applied.error_message,
                    vote_id=vote_id,
                    outcome=outcome.value,
                    **applied.details
                )

            span.set_attributes({
                "voting.outcome": outcome.value,
                "voting.tally.for": tally.for_count,
                "voting.tally.against": tally.against_count,
                "voting.tally.abstain": tally.abstain_count,
                "voting.auto_abstained": auto_abstained
            })

            if self.audit_service:
                self.audit_service.log_action_best_effort(
                    user_context.user_id, vote["organizationId"], "vote", vote_id, "close",
                    before={"status": VoteStatus.OPEN.value},
                    after={"status": VoteStatus.CLOSED.value, "outcome": outcome.value, "tally": tally.to_dict()}
                )

            if self.event_dispatcher:
                self.event_dispatcher.dispatch("vote.closed", vote["organizationId"], {
                    "vote_id": vote_id,
                    "resolution_id": vote["resolutionId"],
                    "outcome": outcome.value,
                    "tally": tally.to_dict()
                })

            logger.info(
                "Vote closed",
                extra={
                    "vote_id": vote_id,
                    "outcome": outcome.value,
                    "tally": tally.to_dict(),
                    "auto_abstained": auto_abstained
                }
            )

            return GovernanceResult.ok(CloseVoteResult(
                vote_id=vote_id,
                outcome=outcome.value,
                resolution_status=applied.data.get("status"),
                tally=tally.to_dict(),
                auto_abstained=auto_abstained
            ))

    def _agenda_order(self, meeting_id: str) -> Dict[str, int]:
        return {
            item["resolutionId"]: item["itemNo"]
            for item in self.procedural_service.get_agenda_items(meeting_id)
            if item.get("resolutionId")
        }

    def close_all_votes_for_meeting(self, meeting_id: str, user_context: UserContext) -> GovernanceResult:
        """
        Close every open vote of a meeting independently, in agenda order.

        Procedural items close first so substantive items can pass the
        procedural gate within the same run. A failing vote does not stop the
        others.

        Returns:
            GovernanceResult whose data is a BulkCloseResult
        """
        with tracer.start_as_current_span("voting.close_all_votes_for_meeting") as span:
            span.set_attributes({
                "governance.meeting_id": meeting_id,
                "user.id": user_context.user_id
            })

            meeting = self.mongo_service.find_by_id(MEETINGS, meeting_id)
            if meeting is None:
                return GovernanceResult.fail(ErrorCode.MEETING_NOT_FOUND, "Meeting not found")

            self.membership_service.require_capability(
                meeting["organizationId"], user_context, MEETING_MANAGERS, "close votes"
            )

            order = self._agenda_order(meeting_id)
            votes = self.mongo_service.find_many(
                VOTES,
                {"meetingId": meeting_id, "status": VoteStatus.OPEN.value},
                sort=[("createdAt", 1)]
            )
            votes.sort(key=lambda v: order.get(v["resolutionId"], UNLISTED_ITEM_NO))

            summary = BulkCloseResult()
            for vote in votes:
                try:
                    result = self.close_vote(vote["id"], user_context)
                except Exception as e:
                    logger.error(
                        "Vote close raised during bulk close",
                        extra={"meeting_id": meeting_id, "vote_id": vote["id"]},
                        exc_info=True
                    )
                    result = GovernanceResult.fail(ErrorCode.OPERATION_FAILED, str(e))

                if result.success:
                    summary.closed_count += 1
                    summary.results.append({
                        "vote_id": vote["id"],
                        "success": True,
                        "outcome": result.data.outcome
                    })
                else:
                    summary.failed_count += 1
                    error = {
                        "vote_id": vote["id"],
                        "success": False,
                        "error_code": ErrorCode(result.error_code).value,
                        "error_message": result.error_message
                    }
                    summary.results.append(error)
                    if summary.first_error is None:
                        summary.first_error = error

            span.set_attributes({
                "voting.bulk.closed": summary.closed_count,
                "voting.bulk.failed": summary.failed_count
            })
            logger.info(
                "Meeting votes closed",
                extra={
                    "meeting_id": meeting_id,
                    "closed_count": summary.closed_count,
                    "failed_count": summary.failed_count
                }
            )
            return GovernanceResult.ok(summary)

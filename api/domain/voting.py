# SPDX-License-Identifier: Apache-2.0

"""
Voting domain logic.

Pure functions for ballot eligibility, live head-count validation, tallying
and outcome determination. Eligibility is always evaluated against the
caller's current membership and participation record.
"""

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import List, Dict, Any, Optional, Tuple

from models.enums import (
    AttendanceMode,
    OrganizationStatus,
    VoteChannel,
    VoteChoice,
    VoteDenialReason,
    VoteKind,
    VoteOutcome,
    VoteStatus
)
from models.errors import ErrorCode
from .resolutions import ValidationResult


# GA ballots come from remote or written voters; the room is counted by live totals
CHANNELS_BY_KIND = {
    VoteKind.GA: [VoteChannel.REMOTE, VoteChannel.WRITTEN],
    VoteKind.OPINION: [VoteChannel.IN_PERSON, VoteChannel.WRITTEN, VoteChannel.REMOTE],
}


@dataclass
class CanCastVoteResult:
    """Result of the ballot eligibility check."""
    allowed: bool
    reason: Optional[VoteDenialReason] = None
    message: Optional[str] = None
    details: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "allowed": self.allowed,
            "reason": self.reason.value if self.reason else None,
            "message": self.message,
            "details": self.details,
        }


@dataclass
class VoteTally:
    """Aggregated ballot counts."""
    for_count: int = 0
    against_count: int = 0
    abstain_count: int = 0

    @property
    def total(self) -> int:
        return self.for_count + self.against_count + self.abstain_count

    def to_dict(self) -> Dict[str, int]:
        return {
            "for": self.for_count,
            "against": self.against_count,
            "abstain": self.abstain_count,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, int]) -> "VoteTally":
        return cls(
            for_count=int(data.get("for", 0)),
            against_count=int(data.get("against", 0)),
            abstain_count=int(data.get("abstain", 0))
        )


@dataclass
class CloseVoteResult:
    """Outcome of closing a vote."""
    vote_id: str
    outcome: str
    resolution_status: Optional[str]
    tally: Dict[str, int]
    already_closed: bool = False
    auto_abstained: int = 0


@dataclass
class BulkCloseResult:
    """Summary of closing every vote of a meeting."""
    closed_count: int = 0
    failed_count: int = 0
    first_error: Optional[Dict[str, Any]] = None
    results: List[Dict[str, Any]] = field(default_factory=list)


def allowed_channels(kind: str) -> List[VoteChannel]:
    return CHANNELS_BY_KIND.get(VoteKind(kind), [])


def compute_opens_at(
    now: datetime,
    scheduled_at: Optional[datetime] = None,
    early_voting_days: int = 0
) -> datetime:
    """
    Compute when ballots start being accepted.

    With early voting configured, a meeting vote opens the given number of
    days before the meeting. Otherwise it opens immediately.
    """
    if scheduled_at is None or not early_voting_days or early_voting_days <= 0:
        return now

    return scheduled_at - timedelta(days=int(early_voting_days))


def _deny(reason: VoteDenialReason, message: str, **details) -> CanCastVoteResult:
    return CanCastVoteResult(allowed=False, reason=reason, message=message, details=details)


def evaluate_eligibility(
    vote: Optional[Dict[str, Any]],
    channel: str,
    now: datetime,
    organization_status: Optional[str] = None,
    membership: Optional[Dict[str, Any]] = None,
    attendance: Optional[Dict[str, Any]] = None
) -> CanCastVoteResult:
    """
    Decide whether a member may cast a ballot through a channel.

    Args:
        vote: Vote document, None when not found
        channel: Requested ballot channel
        now: Evaluation time
        organization_status: Status of the vote's organization
        membership: Caller's ACTIVE membership, None when not an active member
        attendance: Caller's attendance record for the vote's meeting

    Returns:
        CanCastVoteResult with a machine-readable reason when denied
    """
    if vote is None:
        return _deny(VoteDenialReason.VOTE_NOT_FOUND, "Vote not found")

    vote_id = vote["id"]

    if vote.get("status") != VoteStatus.OPEN.value:
        return _deny(
            VoteDenialReason.VOTE_CLOSED,
            "Vote is closed",
            vote_id=vote_id,
            closed_at=vote.get("closedAt")
        )

    closes_at = vote.get("closesAt")
    if closes_at is not None and closes_at <= now:
        return _deny(
            VoteDenialReason.VOTE_CLOSED,
            "Voting period has ended",
            vote_id=vote_id,
            closes_at=closes_at
        )

    opens_at = vote.get("opensAt")
    if opens_at is not None and opens_at > now:
        return _deny(
            VoteDenialReason.VOTE_NOT_OPEN_YET,
            "Voting has not started yet",
            vote_id=vote_id,
            opens_at=opens_at
        )

    if organization_status != OrganizationStatus.ACTIVE.value:
        return _deny(
            VoteDenialReason.ORGANIZATION_NOT_ACTIVE,
            "Organization is not active",
            organization_status=organization_status
        )

    if membership is None:
        return _deny(VoteDenialReason.NOT_A_MEMBER, "Caller is not an active member of the organization")

    channels = allowed_channels(vote.get("kind", VoteKind.GA.value))
    try:
        requested = VoteChannel(channel)
    except ValueError:
        requested = None

    if requested not in channels:
        return _deny(
            VoteDenialReason.CHANNEL_NOT_ALLOWED,
            f"Channel {channel} is not accepted for this vote",
            channel=channel,
            allowed_channels=[c.value for c in channels]
        )

    if vote.get("kind") == VoteKind.GA.value and vote.get("meetingId"):
        mode = attendance.get("mode") if attendance else None
        if mode == AttendanceMode.IN_PERSON.value:
            return _deny(
                VoteDenialReason.ATTENDING_IN_PERSON,
                "Member is registered to attend in person and votes in the room",
                meeting_id=vote["meetingId"],
                membership_id=membership["id"]
            )
        if mode != AttendanceMode.REMOTE.value:
            return _deny(
                VoteDenialReason.NOT_REGISTERED_FOR_CHANNEL,
                "Member is not registered for remote voting at this meeting",
                meeting_id=vote["meetingId"],
                membership_id=membership["id"],
                channel=channel
            )

    return CanCastVoteResult(
        allowed=True,
        details={"vote_id": vote_id, "membership_id": membership["id"], "channel": requested.value}
    )


def validate_live_totals(present_count: int, against: int, abstain: int) -> Tuple[ValidationResult, int]:
    """
    Validate aggregate in-person counts.

    ``for`` is derived as ``present - against - abstain``, so the three counts
    never exceed the number of attendees present.

    Returns:
        Tuple of (ValidationResult, derived for count)
    """
    for name, value in (("against", against), ("abstain", abstain)):
        if not isinstance(value, int) or isinstance(value, bool) or value < 0:
            return ValidationResult(
                is_valid=False,
                errors=[f"{name} must be a non-negative integer"],
                error_code=ErrorCode.INVALID_LIVE_TOTALS
            ), 0

    if against + abstain > present_count:
        return ValidationResult(
            is_valid=False,
            errors=[
                f"against ({against}) + abstain ({abstain}) exceeds "
                f"attendees present ({present_count})"
            ],
            error_code=ErrorCode.LIVE_TOTALS_EXCEED_ATTENDANCE
        ), 0

    return ValidationResult(is_valid=True, errors=[]), present_count - against - abstain


def tally_ballots(
    ballots: List[Dict[str, Any]],
    live_totals: Optional[Dict[str, Any]] = None
) -> VoteTally:
    """
    Aggregate individual ballots and accepted live totals.
    """
    tally = VoteTally()

    for ballot in ballots:
        choice = ballot.get("choice")
        if choice == VoteChoice.FOR.value:
            tally.for_count += 1
        elif choice == VoteChoice.AGAINST.value:
            tally.against_count += 1
        elif choice == VoteChoice.ABSTAIN.value:
            tally.abstain_count += 1

    if live_totals:
        tally.for_count += int(live_totals.get("for", 0))
        tally.against_count += int(live_totals.get("against", 0))
        tally.abstain_count += int(live_totals.get("abstain", 0))

    return tally


def determine_outcome(tally: VoteTally) -> VoteOutcome:
    """
    Simple majority of decisive votes.

    APPROVED when FOR outnumbers AGAINST. ABSTAIN is not counted in the
    denominator; a tie is REJECTED.
    """
    if tally.for_count > tally.against_count:
        return VoteOutcome.APPROVED
    return VoteOutcome.REJECTED

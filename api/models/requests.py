# -*- coding: utf-8 -*-
# SPDX-License-Identifier: Apache-2.0

"""
Request models for API endpoints.

Path models carry URL parameters; body and query models are validated by
flask-openapi3 before the handler runs.
"""

from datetime import datetime
from typing import List, Optional
from pydantic import BaseModel, Field, field_validator

from .base import GovernanceRequest
from .enums import (
    AttendanceMode,
    MeetingType,
    ResolutionVisibility,
    VoteChannel,
    VoteChoice,
    VoteKind
)


# Path parameters

class OrgPath(BaseModel):
    org_id: str = Field(..., description="Organization ID")


class OrgSlugPath(BaseModel):
    slug: str = Field(..., description="Organization slug")


class MembershipPath(BaseModel):
    org_id: str = Field(..., description="Organization ID")
    membership_id: str = Field(..., description="Membership ID")


class PositionPath(BaseModel):
    org_id: str = Field(..., description="Organization ID")
    position_id: str = Field(..., description="Position ID")


class ResolutionPath(BaseModel):
    resolution_id: str = Field(..., description="Resolution ID")


class MeetingPath(BaseModel):
    meeting_id: str = Field(..., description="Meeting ID")


class AgendaItemPath(BaseModel):
    meeting_id: str = Field(..., description="Meeting ID")
    item_no: int = Field(..., ge=1, description="Agenda item number")


class VotePath(BaseModel):
    vote_id: str = Field(..., description="Vote ID")


# Organizations

class ActivateOrganizationRequest(GovernanceRequest):
    """Request model for activating a provisional organization."""

    resolution_id: str = Field(..., min_length=1, description="APPROVED resolution authorizing activation")


class RejectOrganizationRequest(GovernanceRequest):
    """Request model for declining a submitted organization."""

    resolution_id: Optional[str] = Field(None, description="Resolution recording the decision")


class AssignPositionRequest(GovernanceRequest):
    """Request model for assigning a governance position."""

    user_id: str = Field(..., min_length=1, description="Position holder user ID")
    title: str = Field(..., min_length=1, max_length=200, description="Position title as used by the organization")


# Resolutions

class CreateResolutionRequest(GovernanceRequest):
    """Request model for creating a resolution."""

    title: str = Field(..., min_length=1, max_length=300, description="Resolution title")
    content: str = Field(default="", max_length=20000, description="Resolution text")
    visibility: ResolutionVisibility = Field(default=ResolutionVisibility.MEMBERS, description="Visibility")
    meeting_id: Optional[str] = Field(None, description="Meeting the resolution is tabled at")

    @field_validator('title')
    @classmethod
    def validate_title(cls, v):
        if not v.strip():
            raise ValueError('Resolution title cannot be empty')
        return v.strip()


class UpdateResolutionRequest(GovernanceRequest):
    """Request model for editing a DRAFT resolution."""

    title: Optional[str] = Field(None, min_length=1, max_length=300, description="Resolution title")
    content: Optional[str] = Field(None, max_length=20000, description="Resolution text")
    visibility: Optional[ResolutionVisibility] = Field(None, description="Visibility")


class InitializeProjectRequest(GovernanceRequest):
    """Request model for initializing project metadata."""

    phase: str = Field(..., min_length=1, max_length=100, description="Project phase")
    code: Optional[str] = Field(None, max_length=50, description="Project code")
    tags: Optional[List[str]] = Field(None, description="Project tags")
    budget_planned: Optional[float] = Field(None, ge=0, allow_inf_nan=False, description="Planned budget")


class UpdateIndicatorRequest(GovernanceRequest):
    """
    Request model for updating project indicators.

    Range checks are left to the resolution service so every rejection
    carries its governance error code.
    """

    progress: Optional[float] = Field(None, allow_inf_nan=False, description="Progress between 0 and 1")
    budget_planned: Optional[float] = Field(None, allow_inf_nan=False, description="Planned budget")
    budget_spent: Optional[float] = Field(None, allow_inf_nan=False, description="Spent budget")


# Meetings

class CreateMeetingRequest(GovernanceRequest):
    """Request model for creating a meeting."""

    title: str = Field(..., min_length=1, max_length=300, description="Meeting title")
    scheduled_at: datetime = Field(..., description="Scheduled start (UTC)")
    meeting_type: MeetingType = Field(default=MeetingType.GA, description="Meeting type")
    location: Optional[str] = Field(None, max_length=500, description="Meeting place")

    @field_validator('scheduled_at')
    @classmethod
    def normalize_scheduled_at(cls, v):
        # Stored datetimes are naive UTC
        if v.tzinfo is not None:
            v = datetime.utcfromtimestamp(v.timestamp())
        return v


class AddAgendaItemRequest(GovernanceRequest):
    """Request model for adding a substantive agenda item."""

    title: str = Field(..., min_length=1, max_length=300, description="Item title")
    content: str = Field(default="", max_length=20000, description="Resolution text")


class AttendanceRequest(GovernanceRequest):
    """Request model for registering meeting participation."""

    mode: AttendanceMode = Field(..., description="REMOTE or IN_PERSON")
    membership_id: Optional[str] = Field(None, description="Register another member (meeting managers only)")


class PresentRequest(GovernanceRequest):
    """Request model for marking an in-person attendee present."""

    membership_id: str = Field(..., min_length=1, description="Membership ID")
    present: bool = Field(default=True, description="Present flag")


class ProtocolRequest(GovernanceRequest):
    """Request model for attaching the meeting protocol."""

    protocol_url: str = Field(..., min_length=1, max_length=2000, description="Uploaded protocol location")


# Votes

class CreateVoteRequest(GovernanceRequest):
    """Request model for opening a vote."""

    resolution_id: str = Field(..., min_length=1, description="Resolution to decide")
    kind: VoteKind = Field(default=VoteKind.GA, description="Vote kind")
    meeting_id: Optional[str] = Field(None, description="Meeting for meeting-bound votes")
    title: Optional[str] = Field(None, max_length=300, description="Display title")


class CastBallotRequest(GovernanceRequest):
    """Request model for casting a ballot."""

    choice: VoteChoice = Field(..., description="FOR, AGAINST or ABSTAIN")
    channel: VoteChannel = Field(..., description="Ballot channel")


class LiveTotalsRequest(GovernanceRequest):
    """Request model for recording in-person counts."""

    against: int = Field(..., description="Votes against in the room")
    abstain: int = Field(..., description="Abstentions in the room")


class EligibilityQuery(BaseModel):
    channel: VoteChannel = Field(..., description="Ballot channel to check")

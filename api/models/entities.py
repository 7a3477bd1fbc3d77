# -*- coding: utf-8 -*-
# SPDX-License-Identifier: Apache-2.0

"""
Core entity models for the Bendrija governance platform.
"""

import re
from datetime import datetime
from typing import List, Optional, Dict, Any
from pydantic import BaseModel, Field, field_validator, ConfigDict
from .base import BaseEntity, generate_object_id
from .enums import (
    OrganizationStatus,
    MembershipRole,
    MemberStatus,
    PositionCategory,
    ResolutionStatus,
    ResolutionVisibility,
    MeetingType,
    MeetingStatus,
    AttendanceMode,
    VoteKind,
    VoteStatus,
    VoteChoice,
    VoteChannel,
    ConsentType,
    ApplicationStatus
)


class Organization(BaseEntity):
    """
    Organization (association) entity.

    ``metadata`` holds three namespaces: ``fact`` (provisional facts such as
    ``pre_org``), ``governance.proposed`` (draft answers) and ``governance``
    (canonical answers written on activation).
    """

    organization_id: Optional[str] = Field(None, description="Unused for organizations")
    name: str = Field(..., min_length=1, max_length=200, description="Organization name")
    slug: str = Field(..., min_length=1, max_length=100, description="URL-friendly identifier")
    status: OrganizationStatus = Field(default=OrganizationStatus.ONBOARDING, description="Lifecycle status")
    metadata: Dict[str, Any] = Field(default_factory=dict, description="fact / governance namespaces")
    activated_at: Optional[datetime] = Field(None, description="Activation timestamp")
    activated_by_resolution_id: Optional[str] = Field(None, description="Resolution that approved activation")

    @field_validator('slug')
    @classmethod
    def validate_slug(cls, v):
        """Validate slug format."""
        if not re.match(r'^[a-z0-9-]+$', v):
            raise ValueError('Slug must contain only lowercase letters, numbers, and hyphens')
        return v

    @field_validator('name')
    @classmethod
    def validate_name(cls, v):
        """Validate organization name."""
        if not v.strip():
            raise ValueError('Organization name cannot be empty')
        return v.strip()

    @property
    def is_pre_org(self) -> bool:
        return self.metadata.get("fact", {}).get("pre_org") is True

    @property
    def proposed_governance(self) -> Dict[str, Any]:
        return self.metadata.get("governance", {}).get("proposed") or {}


class Membership(BaseEntity):
    """Membership of a user in an organization."""

    user_id: str = Field(..., description="Member user ID")
    role: MembershipRole = Field(default=MembershipRole.MEMBER, description="Membership role")
    member_status: MemberStatus = Field(default=MemberStatus.PENDING, description="Membership status")
    joined_at: Optional[datetime] = Field(None, description="Activation timestamp")
    left_at: Optional[datetime] = Field(None, description="Removal timestamp")

    def is_active(self) -> bool:
        return self.member_status == MemberStatus.ACTIVE


class Position(BaseEntity):
    """Governance position held by a user (board member, chairman, ...)."""

    user_id: str = Field(..., description="Position holder user ID")
    title: str = Field(..., min_length=1, max_length=200, description="Position title as entered")
    category: PositionCategory = Field(default=PositionCategory.OTHER, description="Resolved position category")
    is_active: bool = Field(default=True, description="Whether the position is currently held")

    @field_validator('title')
    @classmethod
    def validate_title(cls, v):
        if not v.strip():
            raise ValueError('Position title cannot be empty')
        return v.strip()


class Resolution(BaseEntity):
    """
    Governance proposal.

    ``metadata.project`` may only be written while DRAFT and
    ``metadata.indicator`` only once APPROVED.
    """

    title: str = Field(..., min_length=1, max_length=300, description="Resolution title")
    content: str = Field(default="", max_length=20000, description="Resolution text")
    status: ResolutionStatus = Field(default=ResolutionStatus.DRAFT, description="Workflow status")
    visibility: ResolutionVisibility = Field(default=ResolutionVisibility.MEMBERS, description="Visibility")
    meeting_id: Optional[str] = Field(None, description="Meeting the resolution belongs to")
    metadata: Dict[str, Any] = Field(default_factory=dict, description="project / indicator namespaces")
    proposed_at: Optional[datetime] = Field(None, description="Proposal timestamp")
    decided_at: Optional[datetime] = Field(None, description="Approval or rejection timestamp")
    decided_by: Optional[str] = Field(None, description="User ID or vote reference that decided it")

    @field_validator('title')
    @classmethod
    def validate_title(cls, v):
        """Validate resolution title."""
        if not v.strip():
            raise ValueError('Resolution title cannot be empty')
        return v.strip()

    def is_terminal(self) -> bool:
        return self.status in (ResolutionStatus.APPROVED, ResolutionStatus.REJECTED)


class Meeting(BaseEntity):
    """Meeting of an organization."""

    title: str = Field(..., min_length=1, max_length=300, description="Meeting title")
    meeting_type: MeetingType = Field(default=MeetingType.GA, description="Meeting type")
    status: MeetingStatus = Field(default=MeetingStatus.DRAFT, description="Meeting status")
    scheduled_at: datetime = Field(..., description="Scheduled start")
    location: Optional[str] = Field(None, max_length=500, description="Meeting place")
    protocol_url: Optional[str] = Field(None, description="Uploaded protocol location")
    published_at: Optional[datetime] = Field(None, description="Publication timestamp")
    completed_at: Optional[datetime] = Field(None, description="Completion timestamp")


class AgendaItem(BaseEntity):
    """Numbered agenda item linked to its own resolution."""

    meeting_id: str = Field(..., description="Meeting ID")
    item_no: int = Field(..., ge=1, description="Item number; 1-3 are procedural")
    title: str = Field(..., min_length=1, max_length=300, description="Item title")
    resolution_id: Optional[str] = Field(None, description="Linked resolution ID")
    is_procedural: bool = Field(default=False, description="System-generated procedural item")


class MeetingAttendance(BaseEntity):
    """A member's registered participation in a meeting."""

    meeting_id: str = Field(..., description="Meeting ID")
    membership_id: str = Field(..., description="Membership ID")
    mode: AttendanceMode = Field(..., description="Remote or in-person participation")
    present: bool = Field(default=False, description="In-person attendee marked present")
    registered_at: datetime = Field(default_factory=datetime.utcnow, description="Registration timestamp")


class Vote(BaseEntity):
    """Vote on one resolution."""

    resolution_id: str = Field(..., description="Resolution being decided")
    meeting_id: Optional[str] = Field(None, description="Meeting for meeting-bound votes")
    kind: VoteKind = Field(default=VoteKind.GA, description="Vote kind")
    status: VoteStatus = Field(default=VoteStatus.OPEN, description="Vote status")
    title: Optional[str] = Field(None, max_length=300, description="Display title")
    opens_at: datetime = Field(default_factory=datetime.utcnow, description="Ballots accepted from")
    closes_at: Optional[datetime] = Field(None, description="Planned closing time")
    closed_at: Optional[datetime] = Field(None, description="Actual closing time")
    closed_by: Optional[str] = Field(None, description="User ID who closed the vote")
    outcome: Optional[str] = Field(None, description="APPROVED or REJECTED once closed")
    tally: Optional[Dict[str, int]] = Field(None, description="Final counts")
    live_totals: Optional[Dict[str, Any]] = Field(None, description="Aggregate in-person counts")


class Ballot(BaseModel):
    """One voter's choice on one vote."""

    model_config = ConfigDict(
        populate_by_name=True,
        use_enum_values=True
    )

    id: str = Field(default_factory=generate_object_id, description="Unique identifier")
    organization_id: str = Field(..., alias="organizationId")
    vote_id: str = Field(..., alias="voteId")
    membership_id: str = Field(..., alias="membershipId")
    choice: VoteChoice = Field(..., description="Ballot choice")
    channel: VoteChannel = Field(..., description="Ballot channel")
    cast_at: datetime = Field(default_factory=datetime.utcnow, alias="castAt")
    auto_registered: bool = Field(default=False, alias="autoRegistered")


class MemberConsent(BaseEntity):
    """Accepted consent document."""

    user_id: str = Field(..., description="User who accepted")
    consent_type: ConsentType = Field(..., description="Consent document")
    accepted_at: datetime = Field(default_factory=datetime.utcnow, description="Acceptance timestamp")


class CommunityApplication(BaseModel):
    """Intake application submitted before an organization exists."""

    model_config = ConfigDict(
        populate_by_name=True,
        use_enum_values=True,
        validate_default=True
    )

    id: str = Field(default_factory=generate_object_id)
    organization_name: str = Field(..., alias="organizationName")
    email: str = Field(..., description="Applicant email")
    status: ApplicationStatus = Field(default=ApplicationStatus.PENDING)
    decided_at: Optional[datetime] = Field(None, alias="decidedAt")


class AuditLog(BaseModel):
    """Audit log entry for compliance and accountability."""

    id: str = Field(default_factory=generate_object_id, description="Unique identifier")
    timestamp: datetime = Field(default_factory=datetime.utcnow, description="Action timestamp")
    user_id: str = Field(..., alias="userId", description="User who performed the action")
    organization_id: str = Field(..., alias="organizationId", description="Organization scope")
    entity: str = Field(..., description="Entity type")
    entity_id: str = Field(..., alias="entityId", description="Entity identifier")
    action: str = Field(..., description="Action performed")
    before: Optional[Dict[str, Any]] = Field(None, description="State before action")
    after: Optional[Dict[str, Any]] = Field(None, description="State after action")
    trace_id: Optional[str] = Field(None, alias="traceId", description="OpenTelemetry trace ID")
    span_id: Optional[str] = Field(None, alias="spanId", description="OpenTelemetry span ID")
    schema_version: int = Field(default=1, alias="schemaVersion", description="Schema version")

    model_config = ConfigDict(
        populate_by_name=True,
        use_enum_values=True
    )

    @field_validator('entity')
    @classmethod
    def validate_entity(cls, v):
        """Validate entity type."""
        valid_entities = [
            'organization', 'membership', 'position', 'resolution',
            'meeting', 'agenda_item', 'vote'
        ]
        if v not in valid_entities:
            raise ValueError(f'Invalid entity type: {v}')
        return v


class UserContext(BaseModel):
    """Caller identity for request processing."""

    user_id: str = Field(..., description="Authenticated user ID")
    org_id: Optional[str] = Field(None, description="Organization the token was issued for")
    email: Optional[str] = Field(None, description="User email")
    name: Optional[str] = Field(None, description="User display name")
    permissions: List[str] = Field(default_factory=list, description="Platform permissions")
    token_payload: Optional[Dict[str, Any]] = Field(None, description="Original JWT payload")
    ip_address: Optional[str] = Field(None, description="Client IP address")
    user_agent: Optional[str] = Field(None, description="Client user agent")

    model_config = ConfigDict(
        use_enum_values=True
    )

    def has_permission(self, permission: str) -> bool:
        """Check if user has a specific permission."""
        return permission in self.permissions

    def has_any_permission(self, permissions: List[str]) -> bool:
        """Check if user has any of the specified permissions."""
        return any(perm in self.permissions for perm in permissions)

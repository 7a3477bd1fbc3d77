# -*- coding: utf-8 -*-
# SPDX-License-Identifier: Apache-2.0

"""
Models package - Pydantic schemas, enumerations and error types for the
Bendrija governance platform.
"""

from .base import BaseEntity, GovernanceRequest

from .enums import (
    OrganizationStatus,
    MembershipRole,
    MemberStatus,
    PositionCategory,
    Capability,
    ResolutionStatus,
    MeetingType,
    MeetingStatus,
    AttendanceMode,
    VoteKind,
    VoteStatus,
    VoteChoice,
    VoteChannel,
    VoteOutcome,
    VoteDenialReason
)

from .entities import (
    Organization,
    Membership,
    Position,
    Resolution,
    Meeting,
    AgendaItem,
    MeetingAttendance,
    Vote,
    Ballot,
    AuditLog,
    UserContext
)

from .errors import (
    ErrorCode,
    ErrorKind,
    GovernanceResult,
    GovernanceAuthorizationError,
    AuthenticationError
)

__all__ = [
    "BaseEntity",
    "GovernanceRequest",
    "OrganizationStatus",
    "MembershipRole",
    "MemberStatus",
    "PositionCategory",
    "Capability",
    "ResolutionStatus",
    "MeetingType",
    "MeetingStatus",
    "AttendanceMode",
    "VoteKind",
    "VoteStatus",
    "VoteChoice",
    "VoteChannel",
    "VoteOutcome",
    "VoteDenialReason",
    "Organization",
    "Membership",
    "Position",
    "Resolution",
    "Meeting",
    "AgendaItem",
    "MeetingAttendance",
    "Vote",
    "Ballot",
    "AuditLog",
    "UserContext",
    "ErrorCode",
    "ErrorKind",
    "GovernanceResult",
    "GovernanceAuthorizationError",
    "AuthenticationError",
]

# -*- coding: utf-8 -*-
# SPDX-License-Identifier: Apache-2.0

"""
Enumeration types for the Bendrija governance platform.
"""

from enum import Enum


class OrganizationStatus(str, Enum):
    """Organization lifecycle status enumeration."""
    ONBOARDING = "ONBOARDING"
    SUBMITTED_FOR_REVIEW = "SUBMITTED_FOR_REVIEW"
    ACTIVE = "ACTIVE"
    SUSPENDED = "SUSPENDED"
    DECLINED = "DECLINED"


class MembershipRole(str, Enum):
    """Membership role within an organization."""
    OWNER = "OWNER"
    ADMIN = "ADMIN"
    CHAIR = "CHAIR"
    MEMBER = "MEMBER"


class MemberStatus(str, Enum):
    """Membership status enumeration."""
    PENDING = "PENDING"
    ACTIVE = "ACTIVE"
    SUSPENDED = "SUSPENDED"
    LEFT = "LEFT"


class PositionCategory(str, Enum):
    """Closed set of position categories resolved from a position title."""
    CHAIRMAN = "CHAIRMAN"
    BOARD_MEMBER = "BOARD_MEMBER"
    MEMBER = "MEMBER"
    OTHER = "OTHER"


class Capability(str, Enum):
    """Governance capabilities derived from role and active positions."""
    OWNER = "OWNER"
    ADMIN = "ADMIN"
    CHAIR = "CHAIR"
    BOARD = "BOARD"
    MEMBER = "MEMBER"


class ResolutionStatus(str, Enum):
    """Resolution workflow status enumeration."""
    DRAFT = "DRAFT"
    PROPOSED = "PROPOSED"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"


class ResolutionVisibility(str, Enum):
    """Who may read a resolution."""
    PUBLIC = "PUBLIC"
    MEMBERS = "MEMBERS"
    INTERNAL = "INTERNAL"


class MeetingType(str, Enum):
    """Meeting type enumeration."""
    GA = "GA"
    BOARD = "BOARD"
    OTHER = "OTHER"


class MeetingStatus(str, Enum):
    """Meeting status enumeration."""
    DRAFT = "DRAFT"
    PUBLISHED = "PUBLISHED"
    COMPLETED = "COMPLETED"


class AttendanceMode(str, Enum):
    """How a member takes part in a meeting."""
    REMOTE = "REMOTE"
    IN_PERSON = "IN_PERSON"


class VoteKind(str, Enum):
    """Vote kind enumeration."""
    GA = "GA"
    OPINION = "OPINION"


class VoteStatus(str, Enum):
    """Vote status enumeration."""
    OPEN = "OPEN"
    CLOSED = "CLOSED"


class VoteChoice(str, Enum):
    """Ballot choice enumeration."""
    FOR = "FOR"
    AGAINST = "AGAINST"
    ABSTAIN = "ABSTAIN"


class VoteChannel(str, Enum):
    """Channel through which a ballot is cast."""
    IN_PERSON = "IN_PERSON"
    WRITTEN = "WRITTEN"
    REMOTE = "REMOTE"


class VoteOutcome(str, Enum):
    """Outcome applied to the resolution when a vote closes."""
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"


class VoteDenialReason(str, Enum):
    """Machine-readable reasons returned by the eligibility check."""
    VOTE_NOT_FOUND = "VOTE_NOT_FOUND"
    VOTE_CLOSED = "VOTE_CLOSED"
    VOTE_NOT_OPEN_YET = "VOTE_NOT_OPEN_YET"
    ORGANIZATION_NOT_ACTIVE = "ORGANIZATION_NOT_ACTIVE"
    NOT_A_MEMBER = "NOT_A_MEMBER"
    CHANNEL_NOT_ALLOWED = "CHANNEL_NOT_ALLOWED"
    NOT_REGISTERED_FOR_CHANNEL = "NOT_REGISTERED_FOR_CHANNEL"
    ATTENDING_IN_PERSON = "ATTENDING_IN_PERSON"


class ConsentType(str, Enum):
    """Consent documents a member can accept."""
    TERMS = "TERMS"
    PRIVACY = "PRIVACY"
    INTERNAL_RULES = "INTERNAL_RULES"


class ApplicationStatus(str, Enum):
    """Community intake application status."""
    PENDING = "PENDING"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"

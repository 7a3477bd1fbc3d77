# SPDX-License-Identifier: Apache-2.0

"""
Membership domain logic.

Pure functions for position classification, capability derivation and the
last-owner rule. Capabilities are resolved once per request and passed to the
governance checks as a set.
"""

from dataclasses import dataclass, field
from typing import Dict, Any, Iterable, Optional, Set, Tuple

from models.enums import Capability, MembershipRole, MemberStatus, PositionCategory
from models.errors import ErrorCode


# Lowercase substrings, checked in order; first match wins.
# Board patterns come first so "Valdybos pirmininkas" stays a board title.
POSITION_TITLE_PATTERNS = [
    (PositionCategory.BOARD_MEMBER, ("board", "valdyb", "taryb")),
    (PositionCategory.CHAIRMAN, ("pirminink", "chair")),
    (PositionCategory.MEMBER, ("narys", "member")),
]

ROLE_CAPABILITIES = {
    MembershipRole.OWNER: {Capability.OWNER, Capability.MEMBER},
    MembershipRole.ADMIN: {Capability.ADMIN, Capability.MEMBER},
    MembershipRole.CHAIR: {Capability.CHAIR, Capability.MEMBER},
    MembershipRole.MEMBER: {Capability.MEMBER},
}

POSITION_CAPABILITIES = {
    # CHAIR comes from the membership role only
    PositionCategory.CHAIRMAN: set(),
    PositionCategory.BOARD_MEMBER: {Capability.BOARD},
    PositionCategory.MEMBER: set(),
    PositionCategory.OTHER: set(),
}

# Capability sets required by governance actions
RESOLUTION_AUTHORS = {Capability.OWNER, Capability.ADMIN, Capability.CHAIR, Capability.BOARD}
RESOLUTION_APPROVERS = {Capability.OWNER, Capability.CHAIR, Capability.BOARD}
PROJECT_EDITORS = {Capability.OWNER, Capability.ADMIN, Capability.CHAIR, Capability.BOARD}
INDICATOR_EDITORS = {Capability.CHAIR, Capability.BOARD}
MEETING_MANAGERS = {Capability.OWNER, Capability.ADMIN, Capability.CHAIR, Capability.BOARD}
MEMBER_MANAGERS = {Capability.OWNER, Capability.ADMIN}


@dataclass
class MemberAccess:
    """Resolved access of one caller within one organization."""
    organization_id: str
    user_id: str
    membership: Optional[Dict[str, Any]] = None
    capabilities: Set[Capability] = field(default_factory=set)

    @property
    def is_active_member(self) -> bool:
        return self.membership is not None

    @property
    def membership_id(self) -> Optional[str]:
        return self.membership["id"] if self.membership else None

    @property
    def role(self) -> Optional[str]:
        return self.membership.get("role") if self.membership else None

    def has_any(self, required: Iterable[Capability]) -> bool:
        return bool(self.capabilities & set(required))


def classify_position_title(title: str) -> PositionCategory:
    """
    Resolve a free-text position title to a position category.

    Args:
        title: Position title as entered by the organization

    Returns:
        PositionCategory for the title, OTHER when nothing matches
    """
    normalized = (title or "").strip().lower()
    if not normalized:
        return PositionCategory.OTHER

    for category, patterns in POSITION_TITLE_PATTERNS:
        if any(pattern in normalized for pattern in patterns):
            return category

    return PositionCategory.OTHER


def derive_capabilities(role: Optional[str], position_categories: Iterable[str]) -> Set[Capability]:
    """
    Derive the capability set of an active member.

    Args:
        role: Membership role value
        position_categories: Categories of the member's active positions

    Returns:
        Set of capabilities; empty when there is no role
    """
    if role is None:
        return set()

    capabilities = set(ROLE_CAPABILITIES.get(MembershipRole(role), set()))
    for category in position_categories:
        capabilities |= POSITION_CAPABILITIES.get(PositionCategory(category), set())

    return capabilities


def is_active_owner(membership: Dict[str, Any]) -> bool:
    return (
        membership.get("role") == MembershipRole.OWNER.value
        and membership.get("memberStatus") == MemberStatus.ACTIVE.value
    )


def check_member_removal(target: Dict[str, Any], active_owner_count: int) -> Optional[Tuple[ErrorCode, str]]:
    """
    Check whether a membership may be removed.

    Returns:
        None when removal is allowed, otherwise (error code, reason)
    """
    if target.get("memberStatus") == MemberStatus.LEFT.value:
        return ErrorCode.INVALID_STATUS_TRANSITION, "Membership has already been removed"

    if is_active_owner(target) and active_owner_count <= 1:
        return ErrorCode.LAST_OWNER, "Cannot remove the last active owner of the organization"

    return None

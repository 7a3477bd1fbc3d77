# SPDX-License-Identifier: Apache-2.0

"""
Organization activation domain logic.

Pure functions for the readiness checklist, the activation preconditions and
the single-document migration that promotes a provisional organization to
ACTIVE.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Dict, Any, Iterable, Optional, Tuple

from bson import ObjectId

from models.enums import ConsentType, OrganizationStatus, ResolutionStatus
from models.errors import ErrorCode


REQUIRED_OWNER_CONSENTS = [ConsentType.TERMS, ConsentType.PRIVACY, ConsentType.INTERNAL_RULES]


@dataclass
class ReadinessItem:
    """One checklist entry."""
    key: str
    label: str
    ready: bool
    detail: str


@dataclass
class ReadinessReport:
    """Read-only readiness report for activation."""
    organization_id: str
    slug: str
    status: str
    checklist: List[ReadinessItem] = field(default_factory=list)

    @property
    def all_ready(self) -> bool:
        return bool(self.checklist) and all(item.ready for item in self.checklist)

    @property
    def missing(self) -> List[str]:
        return [item.key for item in self.checklist if not item.ready]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "organization_id": self.organization_id,
            "slug": self.slug,
            "status": self.status,
            "all_ready": self.all_ready,
            "checklist": [item.__dict__ for item in self.checklist],
        }


def get_proposed_governance(organization: Dict[str, Any]) -> Dict[str, Any]:
    metadata = organization.get("metadata") or {}
    return (metadata.get("governance") or {}).get("proposed") or {}


def is_pre_org(organization: Dict[str, Any]) -> bool:
    metadata = organization.get("metadata") or {}
    return (metadata.get("fact") or {}).get("pre_org") is True


def build_readiness_report(
    organization: Dict[str, Any],
    accepted_consents: Iterable[str]
) -> ReadinessReport:
    """
    Derive the readiness checklist from the organization and owner consents.

    Args:
        organization: Organization document
        accepted_consents: Consent types accepted by the organization's owner

    Returns:
        ReadinessReport with one item per required check
    """
    proposed = get_proposed_governance(organization)
    accepted = set(accepted_consents)
    checklist = []

    checklist.append(ReadinessItem(
        key="governance_proposed",
        label="Governance answers submitted",
        ready=bool(proposed),
        detail=f"{len(proposed)} answers proposed" if proposed else "Governance answers are missing"
    ))

    missing_consents = [c.value for c in REQUIRED_OWNER_CONSENTS if c.value not in accepted]
    checklist.append(ReadinessItem(
        key="consents_accepted",
        label="Required consents accepted",
        ready=not missing_consents,
        detail=(
            f"All {len(REQUIRED_OWNER_CONSENTS)} consents accepted"
            if not missing_consents
            else "Missing consents: " + ", ".join(missing_consents)
        )
    ))

    board_member_count = proposed.get("board_member_count") or 0
    try:
        board_member_count = int(board_member_count)
    except (TypeError, ValueError):
        board_member_count = 0

    if board_member_count > 0:
        board_members = proposed.get("board_members") or []
        has_board_members = isinstance(board_members, list) and len(board_members) > 0
        checklist.append(ReadinessItem(
            key="board_members",
            label="Board members listed",
            ready=has_board_members,
            detail=(
                f"{len(board_members)} board members listed"
                if has_board_members
                else f"{board_member_count} board members must be listed"
            )
        ))

    status = organization.get("status")
    submitted = status == OrganizationStatus.SUBMITTED_FOR_REVIEW.value
    checklist.append(ReadinessItem(
        key="status_submitted",
        label="Submitted for review",
        ready=submitted,
        detail="Awaiting review" if submitted else f"Current status: {status}"
    ))

    return ReadinessReport(
        organization_id=organization["id"],
        slug=organization.get("slug", ""),
        status=status,
        checklist=checklist
    )


def check_activation_preconditions(
    organization: Dict[str, Any],
    resolution: Optional[Dict[str, Any]],
    readiness: ReadinessReport
) -> Optional[Tuple[ErrorCode, str, Dict[str, Any]]]:
    """
    Check the activation preconditions in order.

    Returns:
        None when all hold, otherwise (error code, message, details)
    """
    if resolution is None:
        return ErrorCode.RESOLUTION_NOT_FOUND, "Approving resolution not found", {}

    if resolution.get("status") != ResolutionStatus.APPROVED.value:
        return (
            ErrorCode.RESOLUTION_NOT_APPROVED,
            "Approving resolution is not APPROVED",
            {"resolution_status": resolution.get("status")}
        )

    if organization.get("status") != OrganizationStatus.SUBMITTED_FOR_REVIEW.value:
        return (
            ErrorCode.ORGANIZATION_NOT_SUBMITTED,
            "Organization is not submitted for review",
            {"organization_status": organization.get("status")}
        )

    if not is_pre_org(organization):
        return ErrorCode.ORGANIZATION_NOT_PRE_ORG, "Organization is not a provisional organization", {}

    if not readiness.all_ready:
        return (
            ErrorCode.READINESS_INCOMPLETE,
            "Readiness checklist is incomplete",
            {"missing": readiness.missing}
        )

    if not get_proposed_governance(organization):
        return ErrorCode.NOTHING_TO_MIGRATE, "No proposed governance answers to migrate", {}

    return None


def build_activation_filter(organization_id: str, proposed: Dict[str, Any]) -> Dict[str, Any]:
    """
    Filter restating every precondition so the migration only applies to the
    exact state that was validated.
    """
    return {
        "_id": ObjectId(organization_id),
        "status": OrganizationStatus.SUBMITTED_FOR_REVIEW.value,
        "metadata.fact.pre_org": True,
        "metadata.governance.proposed": proposed,
    }


def build_activation_update(
    proposed: Dict[str, Any],
    resolution_id: str,
    user_id: str,
    now: datetime
) -> Dict[str, Any]:
    """
    Build the single update that migrates proposed answers to canonical ones.

    Proposed keys win on collision with existing canonical keys.
    """
    set_fields = {
        f"metadata.governance.{key}": value
        for key, value in proposed.items()
        if key != "proposed"
    }
    set_fields.update({
        "status": OrganizationStatus.ACTIVE.value,
        "activatedAt": now,
        "activatedByResolutionId": resolution_id,
        "updatedAt": now,
        "updatedBy": user_id,
    })

    return {
        "$set": set_fields,
        "$unset": {
            "metadata.governance.proposed": "",
            "metadata.fact.pre_org": "",
        },
    }


def verify_activation(organization: Optional[Dict[str, Any]]) -> List[str]:
    """
    Verify the observable post-activation state.

    Returns:
        List of failed assertions, empty when the state is consistent
    """
    if organization is None:
        return ["organization disappeared"]

    failures = []
    if organization.get("status") != OrganizationStatus.ACTIVE.value:
        failures.append(f"status is {organization.get('status')}")

    metadata = organization.get("metadata") or {}
    if "proposed" in (metadata.get("governance") or {}):
        failures.append("governance.proposed still present")
    if "pre_org" in (metadata.get("fact") or {}):
        failures.append("fact.pre_org still present")

    return failures

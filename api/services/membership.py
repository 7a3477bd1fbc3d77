# -*- coding: utf-8 -*-
# SPDX-License-Identifier: Apache-2.0

"""
Membership directory: resolves a caller's role, status and capabilities
within an organization.
"""

import logging
from datetime import datetime
from typing import Dict, Iterable, List, Optional, Set, Any

from opentelemetry import trace
from opentelemetry.trace import Status, StatusCode
from pymongo.errors import PyMongoError

from .mongodb import MongoDBService
from .audit import AuditService
from domain.membership import (
    MemberAccess,
    MEMBER_MANAGERS,
    check_member_removal,
    classify_position_title,
    derive_capabilities
)
from models.entities import Position, UserContext
from models.enums import Capability, MembershipRole, MemberStatus
from models.errors import ErrorCode, GovernanceAuthorizationError, GovernanceResult

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)

MEMBERSHIPS = "memberships"
POSITIONS = "positions"


class MembershipService:
    """Membership lookups and the membership rules with invariants."""

    def __init__(self, mongo_service: MongoDBService, audit_service: Optional[AuditService] = None):
        self.mongo_service = mongo_service
        self.audit_service = audit_service

    def resolve_membership(self, org_id: str, user_id: str) -> Optional[Dict[str, Any]]:
        """Return the caller's ACTIVE membership, or None."""
        return self.mongo_service.find_one(
            MEMBERSHIPS,
            {
                "organizationId": org_id,
                "userId": user_id,
                "memberStatus": MemberStatus.ACTIVE.value
            }
        )

    def get_active_positions(self, org_id: str, user_id: str) -> List[Dict[str, Any]]:
        return self.mongo_service.find_by_org(
            POSITIONS,
            org_id,
            {"userId": user_id, "isActive": True}
        )

    def get_access(self, org_id: str, user_id: str) -> MemberAccess:
        """
        Resolve membership and capabilities once for a request.

        Non-members and inactive members get an empty capability set.
        """
        with tracer.start_as_current_span("membership.get_access") as span:
            span.set_attributes({
                "governance.organization_id": org_id,
                "user.id": user_id
            })

            membership = self.resolve_membership(org_id, user_id)
            if membership is None:
                span.set_attribute("membership.active", False)
                return MemberAccess(organization_id=org_id, user_id=user_id)

            categories = []
            for position in self.get_active_positions(org_id, user_id):
                # Legacy positions stored without a category are classified on read
                categories.append(position.get("category") or classify_position_title(position.get("title", "")).value)

            capabilities = derive_capabilities(membership.get("role"), categories)
            span.set_attributes({
                "membership.active": True,
                "membership.role": membership.get("role"),
                "membership.capabilities": sorted(c.value for c in capabilities)
            })

            return MemberAccess(
                organization_id=org_id,
                user_id=user_id,
                membership=membership,
                capabilities=capabilities
            )

    def get_capabilities(self, org_id: str, user_id: str) -> Set[Capability]:
        return self.get_access(org_id, user_id).capabilities

    def require_capability(self, org_id: str, user_context: UserContext,
                           required: Iterable[Capability], action: str) -> MemberAccess:
        """
        Resolve access and raise unless the caller holds one of ``required``.

        Raises:
            GovernanceAuthorizationError: caller lacks every required capability
        """
        required = set(required)
        access = self.get_access(org_id, user_context.user_id)

        if not access.has_any(required):
            logger.warning(
                "Governance action denied",
                extra={
                    "action": action,
                    "user_id": user_context.user_id,
                    "organization_id": org_id,
                    "required": sorted(c.value for c in required),
                    "capabilities": sorted(c.value for c in access.capabilities)
                }
            )
            raise GovernanceAuthorizationError(
                f"Not allowed to {action}",
                required=sorted(c.value for c in required)
            )

        return access

    def count_active_members(self, org_id: str) -> int:
        return self.mongo_service.count_by_org(
            MEMBERSHIPS,
            org_id,
            {"memberStatus": MemberStatus.ACTIVE.value}
        )

    def count_active_owners(self, org_id: str) -> int:
        return self.mongo_service.count_by_org(
            MEMBERSHIPS,
            org_id,
            {"memberStatus": MemberStatus.ACTIVE.value, "role": MembershipRole.OWNER.value}
        )

    def find_owner_membership(self, org_id: str, user_id: Optional[str] = None) -> Optional[Dict[str, Any]]:
        """
        Owner membership in ACTIVE or PENDING state (pre-activation owners are pending).

        With ``user_id`` the lookup is restricted to that user's own membership.
        """
        query = {
            "organizationId": org_id,
            "role": MembershipRole.OWNER.value,
            "memberStatus": {"$in": [MemberStatus.ACTIVE.value, MemberStatus.PENDING.value]}
        }
        if user_id is not None:
            query["userId"] = user_id
        return self.mongo_service.find_one(MEMBERSHIPS, query)

    def remove_member(self, org_id: str, membership_id: str, user_context: UserContext) -> GovernanceResult:
        """
        Mark a membership as LEFT.

        The sole ACTIVE OWNER of an organization cannot be removed.
        """
        with tracer.start_as_current_span("membership.remove_member") as span:
            span.set_attributes({
                "governance.organization_id": org_id,
                "governance.membership_id": membership_id,
                "user.id": user_context.user_id
            })

            self.require_capability(org_id, user_context, MEMBER_MANAGERS, "remove members")

            target = self.mongo_service.find_one_by_org(MEMBERSHIPS, org_id, membership_id)
            if target is None:
                return GovernanceResult.fail(ErrorCode.MEMBERSHIP_NOT_FOUND, "Membership not found")

            rejection = check_member_removal(target, self.count_active_owners(org_id))
            if rejection is not None:
                code, reason = rejection
                logger.info(
                    "Member removal rejected",
                    extra={"organization_id": org_id, "membership_id": membership_id, "reason": reason}
                )
                return GovernanceResult.fail(code, reason)

            guard = {
                "_id": self.mongo_service.to_object_id(membership_id),
                "organizationId": org_id,
                "memberStatus": target.get("memberStatus")
            }
            try:
                matched = self.mongo_service.update_where(
                    MEMBERSHIPS,
                    guard,
                    {"$set": {"memberStatus": MemberStatus.LEFT.value, "leftAt": datetime.utcnow()}},
                    user_context.user_id
                )
            except PyMongoError as e:
                span.record_exception(e)
                span.set_status(Status(StatusCode.ERROR, str(e)))
                logger.error("Failed to remove member", extra={"membership_id": membership_id}, exc_info=True)
                return GovernanceResult.fail(ErrorCode.OPERATION_FAILED, "Failed to remove member")

            if not matched:
                return GovernanceResult.fail(
                    ErrorCode.CONCURRENT_MODIFICATION,
                    "Membership changed while it was being removed"
                )

            # A concurrent removal of another owner may have raced this one
            if target.get("role") == MembershipRole.OWNER.value and self.count_active_owners(org_id) == 0:
                self.mongo_service.update_where(
                    MEMBERSHIPS,
                    {"_id": guard["_id"], "memberStatus": MemberStatus.LEFT.value},
                    {"$set": {"memberStatus": target.get("memberStatus")}, "$unset": {"leftAt": ""}},
                    user_context.user_id
                )
                return GovernanceResult.fail(
                    ErrorCode.LAST_OWNER,
                    "Cannot remove the last active owner of the organization"
                )

            if self.audit_service:
                self.audit_service.log_action_best_effort(
                    user_context.user_id, org_id, "membership", membership_id, "remove",
                    before={"memberStatus": target.get("memberStatus")},
                    after={"memberStatus": MemberStatus.LEFT.value}
                )

            logger.info("Member removed", extra={"organization_id": org_id, "membership_id": membership_id})
            return GovernanceResult.ok({"membership_id": membership_id, "member_status": MemberStatus.LEFT.value})

    def assign_position(self, org_id: str, user_id: str, title: str, user_context: UserContext) -> GovernanceResult:
        """Record a position; its category is resolved once from the title."""
        with tracer.start_as_current_span("membership.assign_position") as span:
            span.set_attributes({
                "governance.organization_id": org_id,
                "user.id": user_context.user_id
            })

            self.require_capability(org_id, user_context, MEMBER_MANAGERS, "assign positions")

            if self.resolve_membership(org_id, user_id) is None:
                return GovernanceResult.fail(
                    ErrorCode.MEMBERSHIP_NOT_FOUND,
                    "Position holder is not an active member"
                )

            try:
                position = Position(
                    organization_id=org_id,
                    user_id=user_id,
                    title=title,
                    category=classify_position_title(title),
                    created_by=user_context.user_id,
                    updated_by=user_context.user_id
                )
            except ValueError as e:
                return GovernanceResult.fail(ErrorCode.INVALID_INPUT, str(e))

            position_id = self.mongo_service.create(POSITIONS, position.to_document(), user_context.user_id)

            if self.audit_service:
                self.audit_service.log_action_best_effort(
                    user_context.user_id, org_id, "position", position_id, "create",
                    after={"title": position.title, "category": position.category}
                )

            return GovernanceResult.ok({"position_id": position_id, "category": position.category})

    def deactivate_position(self, org_id: str, position_id: str, user_context: UserContext) -> GovernanceResult:
        self.require_capability(org_id, user_context, MEMBER_MANAGERS, "deactivate positions")

        if self.mongo_service.find_one_by_org(POSITIONS, org_id, position_id) is None:
            return GovernanceResult.fail(ErrorCode.POSITION_NOT_FOUND, "Position not found")

        self.mongo_service.update_by_org(
            POSITIONS, org_id, position_id, {"isActive": False}, user_context.user_id
        )
        return GovernanceResult.ok({"position_id": position_id, "is_active": False})

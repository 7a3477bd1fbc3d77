# -*- coding: utf-8 -*-
# SPDX-License-Identifier: Apache-2.0

"""
Organization activation: readiness checklist, the proposed-to-canonical
governance migration and the reviewer's rejection.
"""

import logging
from datetime import datetime
from typing import Dict, List, Optional, Any

from opentelemetry import trace
from opentelemetry.trace import Status, StatusCode
from pymongo.errors import PyMongoError

from .mongodb import MongoDBService
from .membership import MembershipService
from .audit import AuditService
from .amqp import EventDispatcher
from domain.activation import (
    build_activation_filter,
    build_activation_update,
    build_readiness_report,
    check_activation_preconditions,
    get_proposed_governance,
    verify_activation
)
from models.entities import UserContext
from models.enums import ApplicationStatus, MembershipRole, MemberStatus, OrganizationStatus
from models.errors import ErrorCode, GovernanceAuthorizationError, GovernanceResult

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)

ORGANIZATIONS = "organizations"
RESOLUTIONS = "resolutions"
MEMBERSHIPS = "memberships"
CONSENTS = "member_consents"
APPLICATIONS = "community_applications"

REVIEW_PERMISSION = "organization:review"
ACTIVATE_PERMISSION = "organization:activate"


class ActivationService:
    """Readiness and activation of provisional organizations."""

    def __init__(
        self,
        mongo_service: MongoDBService,
        membership_service: MembershipService,
        audit_service: Optional[AuditService] = None,
        event_dispatcher: Optional[EventDispatcher] = None
    ):
        self.mongo_service = mongo_service
        self.membership_service = membership_service
        self.audit_service = audit_service
        self.event_dispatcher = event_dispatcher

    def get_organization(self, org_id: str) -> Optional[Dict[str, Any]]:
        return self.mongo_service.find_by_id(ORGANIZATIONS, org_id)

    def get_organization_by_slug(self, slug: str) -> Optional[Dict[str, Any]]:
        return self.mongo_service.find_one(ORGANIZATIONS, {"slug": slug})

    def _require_permission(self, user_context: UserContext, permission: str, action: str) -> None:
        if not user_context.has_permission(permission):
            logger.warning(
                "Activation action denied",
                extra={"action": action, "user_id": user_context.user_id, "required": permission}
            )
            raise GovernanceAuthorizationError(f"Not allowed to {action}", required=[permission])

    def owner_consents(self, org_id: str) -> List[str]:
        """Consent types accepted by the organization's owner (active or pending)."""
        owner = self.membership_service.find_owner_membership(org_id)
        if owner is None:
            return []

        consents = self.mongo_service.find_by_org(CONSENTS, org_id, {"userId": owner["userId"]})
        return [consent["consentType"] for consent in consents]

    def get_readiness(self, slug: str, user_context: UserContext) -> GovernanceResult:
        """
        Derive the readiness checklist. Read-only.

        Args:
            slug: Organization slug
            user_context: Caller; an OWNER (active or pending) or a reviewer

        Returns:
            GovernanceResult whose data is a ReadinessReport
        """
        with tracer.start_as_current_span("activation.get_readiness") as span:
            span.set_attributes({
                "governance.organization_slug": slug,
                "user.id": user_context.user_id
            })

            organization = self.get_organization_by_slug(slug)
            if organization is None:
                return GovernanceResult.fail(ErrorCode.ORGANIZATION_NOT_FOUND, "Organization not found")

            if not user_context.has_permission(REVIEW_PERMISSION):
                owner = self.membership_service.find_owner_membership(organization["id"], user_context.user_id)
                if owner is None:
                    logger.warning(
                        "Readiness view denied",
                        extra={"organization_id": organization["id"], "user_id": user_context.user_id}
                    )
                    raise GovernanceAuthorizationError(
                        "Not allowed to view readiness",
                        required=[MembershipRole.OWNER.value, REVIEW_PERMISSION]
                    )

            report = build_readiness_report(organization, self.owner_consents(organization["id"]))
            span.set_attributes({
                "activation.all_ready": report.all_ready,
                "activation.missing": report.missing
            })
            return GovernanceResult.ok(report)

    def _promote_owner(self, org_id: str, user_id: str) -> int:
        pending = self.mongo_service.find_by_org(
            MEMBERSHIPS,
            org_id,
            {"role": MembershipRole.OWNER.value, "memberStatus": MemberStatus.PENDING.value}
        )

        promoted = 0
        for membership in pending:
            if self.mongo_service.update_where(
                MEMBERSHIPS,
                {
                    "_id": self.mongo_service.to_object_id(membership["id"]),
                    "memberStatus": MemberStatus.PENDING.value
                },
                {"$set": {"memberStatus": MemberStatus.ACTIVE.value, "joinedAt": datetime.utcnow()}},
                user_id
            ):
                promoted += 1
        return promoted

    def _approve_application(self, organization: Dict[str, Any], user_id: str) -> bool:
        """Mark the intake application approved, matched by email, else by name."""
        email = ((organization.get("metadata") or {}).get("fact") or {}).get("email")
        pending = {"status": ApplicationStatus.PENDING.value}

        application = None
        if email:
            application = self.mongo_service.find_one(APPLICATIONS, dict(pending, email=email))
        if application is None:
            application = self.mongo_service.find_one(
                APPLICATIONS, dict(pending, organizationName=organization.get("name"))
            )
        if application is None:
            return False

        return self.mongo_service.update_where(
            APPLICATIONS,
            {"_id": self.mongo_service.to_object_id(application["id"]), "status": ApplicationStatus.PENDING.value},
            {"$set": {"status": ApplicationStatus.APPROVED.value, "decidedAt": datetime.utcnow()}},
            user_id
        )

    def _run_side_effect(self, name: str, org_id: str, func, *args):
        """Run a best-effort step; failures are logged for reconciliation."""
        try:
            return func(*args)
        except Exception as e:
            logger.warning(
                "Activation side effect failed",
                extra={"step": name, "organization_id": org_id, "error": str(e)},
                exc_info=True
            )
            return None

    def _already_activated(self, organization: Dict[str, Any], resolution_id: str) -> bool:
        return (
            organization.get("status") == OrganizationStatus.ACTIVE.value
            and organization.get("activatedByResolutionId") == resolution_id
        )

    def activate_organization(self, org_id: str, resolution_id: str, user_context: UserContext) -> GovernanceResult:
        """
        Promote a provisional organization to ACTIVE.

        The status change and governance migration are one conditional
        single-document update whose filter restates the validated state.
        Owner promotion, application sync, audit and the event follow as
        best-effort steps.

        Args:
            org_id: Organization ID
            resolution_id: APPROVED resolution authorizing activation
            user_context: Reviewer holding ``organization:activate``

        Returns:
            GovernanceResult with the activated organization
        """
        with tracer.start_as_current_span("activation.activate_organization") as span:
            span.set_attributes({
                "governance.organization_id": org_id,
                "governance.resolution_id": resolution_id,
                "user.id": user_context.user_id
            })

            self._require_permission(user_context, ACTIVATE_PERMISSION, "activate organizations")

            organization = self.get_organization(org_id)
            if organization is None:
                return GovernanceResult.fail(ErrorCode.ORGANIZATION_NOT_FOUND, "Organization not found")

            if self._already_activated(organization, resolution_id):
                span.set_attribute("activation.already_applied", True)
                return GovernanceResult.ok({"organization": organization, "already_applied": True})

            resolution = self.mongo_service.find_by_id(RESOLUTIONS, resolution_id)
            if resolution is not None and resolution.get("organizationId") != org_id:
                resolution = None

            readiness = build_readiness_report(organization, self.owner_consents(org_id))
            rejection = check_activation_preconditions(organization, resolution, readiness)
            if rejection is not None:
                code, message, details = rejection
                logger.info(
                    "Activation rejected",
                    extra={"organization_id": org_id, "error_code": code.value, "details": details}
                )
                return GovernanceResult.fail(code, message, **details)

            proposed = get_proposed_governance(organization)
            now = datetime.utcnow()

            try:
                activated = self.mongo_service.find_one_and_update(
                    ORGANIZATIONS,
                    build_activation_filter(org_id, proposed),
                    build_activation_update(proposed, resolution_id, user_context.user_id, now),
                    user_context.user_id,
                    stamp=False
                )
            except PyMongoError as e:
                span.record_exception(e)
                span.set_status(Status(StatusCode.ERROR, str(e)))
                logger.error("Activation write failed", extra={"organization_id": org_id}, exc_info=True)
                return GovernanceResult.fail(ErrorCode.OPERATION_FAILED, "Failed to activate organization")

            if activated is None:
                latest = self.get_organization(org_id) or {}
                if self._already_activated(latest, resolution_id):
                    return GovernanceResult.ok({"organization": latest, "already_applied": True})
                return GovernanceResult.fail(
                    ErrorCode.CONCURRENT_MODIFICATION,
                    "Organization changed while it was being activated",
                    organization_status=latest.get("status")
                )

            failures = verify_activation(self.get_organization(org_id))
            if failures:
                span.set_status(Status(StatusCode.ERROR, "activation verification failed"))
                logger.error(
                    "Activation verification failed",
                    extra={"organization_id": org_id, "failures": failures}
                )
                return GovernanceResult.fail(
                    ErrorCode.ACTIVATION_VERIFICATION_FAILED,
                    "Organization state after activation is inconsistent",
                    failures=failures
                )

            promoted = self._run_side_effect(
                "promote_owner", org_id, self._promote_owner, org_id, user_context.user_id
            )
            application_updated = self._run_side_effect(
                "approve_application", org_id, self._approve_application, organization, user_context.user_id
            )

            if self.audit_service:
                self.audit_service.log_action_best_effort(
                    user_context.user_id, org_id, "organization", org_id, "activate",
                    before={"status": organization.get("status"), "proposed": proposed},
                    after={"status": OrganizationStatus.ACTIVE.value, "resolutionId": resolution_id}
                )

            if self.event_dispatcher:
                self.event_dispatcher.dispatch("organization.activated", org_id, {
                    "organization_id": org_id,
                    "slug": activated.get("slug"),
                    "resolution_id": resolution_id
                })

            logger.info(
                "Organization activated",
                extra={"organization_id": org_id, "resolution_id": resolution_id, "owners_promoted": promoted}
            )
            return GovernanceResult.ok({
                "organization": activated,
                "already_applied": False,
                "owners_promoted": promoted or 0,
                "application_updated": bool(application_updated)
            })

    def reject_organization(self, org_id: str, user_context: UserContext,
                            resolution_id: Optional[str] = None) -> GovernanceResult:
        """Decline a submitted organization. Governance metadata is left untouched."""
        with tracer.start_as_current_span("activation.reject_organization") as span:
            span.set_attributes({
                "governance.organization_id": org_id,
                "user.id": user_context.user_id
            })

            self._require_permission(user_context, ACTIVATE_PERMISSION, "reject organizations")

            organization = self.get_organization(org_id)
            if organization is None:
                return GovernanceResult.fail(ErrorCode.ORGANIZATION_NOT_FOUND, "Organization not found")

            if resolution_id is not None and self.mongo_service.find_by_id(RESOLUTIONS, resolution_id) is None:
                return GovernanceResult.fail(ErrorCode.RESOLUTION_NOT_FOUND, "Resolution not found")

            updates = {"status": OrganizationStatus.DECLINED.value, "declinedAt": datetime.utcnow()}
            if resolution_id is not None:
                updates["declinedByResolutionId"] = resolution_id

            declined = self.mongo_service.find_one_and_update(
                ORGANIZATIONS,
                {
                    "_id": self.mongo_service.to_object_id(org_id),
                    "status": OrganizationStatus.SUBMITTED_FOR_REVIEW.value
                },
                {"$set": updates},
                user_context.user_id
            )
            if declined is None:
                latest = self.get_organization(org_id) or organization
                return GovernanceResult.fail(
                    ErrorCode.ORGANIZATION_NOT_SUBMITTED,
                    "Organization is not submitted for review",
                    organization_status=latest.get("status")
                )

            if self.audit_service:
                self.audit_service.log_action_best_effort(
                    user_context.user_id, org_id, "organization", org_id, "decline",
                    before={"status": organization.get("status")},
                    after={"status": OrganizationStatus.DECLINED.value}
                )

            if self.event_dispatcher:
                self.event_dispatcher.dispatch("organization.declined", org_id, {
                    "organization_id": org_id,
                    "resolution_id": resolution_id
                })

            logger.info("Organization declined", extra={"organization_id": org_id})
            return GovernanceResult.ok({"organization": declined})

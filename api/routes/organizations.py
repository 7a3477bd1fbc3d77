# -*- coding: utf-8 -*-
# SPDX-License-Identifier: Apache-2.0

"""
Organization endpoints: activation review, membership and the entry points
for resolutions and meetings scoped to an organization.
"""

from flask import current_app
from flask_openapi3 import APIBlueprint, Tag
from opentelemetry import trace
import logging

from models.requests import (
    OrgPath,
    OrgSlugPath,
    MembershipPath,
    PositionPath,
    ActivateOrganizationRequest,
    RejectOrganizationRequest,
    AssignPositionRequest,
    CreateResolutionRequest,
    CreateMeetingRequest
)
from models.responses import ProblemResponse
from models.entities import UserContext
from middleware.auth import require_jwt
from middleware.error_handler import result_response

# Set up logging and tracing
logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)

org_tag = Tag(name="Organizations", description="Organization activation and membership")
org_bp = APIBlueprint(
    'organizations',
    __name__,
    url_prefix='/api/organizations',
    abp_tags=[org_tag]
)

PROBLEM_RESPONSES = {
    401: ProblemResponse,
    403: ProblemResponse,
    404: ProblemResponse,
    409: ProblemResponse
}


@org_bp.get('/<slug>/readiness', responses=PROBLEM_RESPONSES)
@require_jwt
def get_readiness(user_context: UserContext, path: OrgSlugPath):
    """
    Get the activation readiness checklist.

    Available to an active owner of the organization and to platform reviewers.
    """
    with tracer.start_as_current_span(
        "organizations.readiness",
        attributes={"governance.organization_slug": path.slug, "user.id": user_context.user_id}
    ):
        result = current_app.activation_service.get_readiness(path.slug, user_context)
        return result_response(result)


@org_bp.post('/<org_id>/activate', responses=PROBLEM_RESPONSES)
@require_jwt
def activate_organization(user_context: UserContext, path: OrgPath, body: ActivateOrganizationRequest):
    """
    Activate a provisional organization.

    Requires the ``organization:activate`` permission and an APPROVED
    resolution of the organization. Retrying with the same resolution after
    a successful activation reports ``already_applied``.
    """
    with tracer.start_as_current_span(
        "organizations.activate",
        attributes={
            "governance.organization_id": path.org_id,
            "governance.resolution_id": body.resolution_id,
            "user.id": user_context.user_id
        }
    ):
        result = current_app.activation_service.activate_organization(
            path.org_id, body.resolution_id, user_context
        )
        return result_response(result)


@org_bp.post('/<org_id>/reject', responses=PROBLEM_RESPONSES)
@require_jwt
def reject_organization(user_context: UserContext, path: OrgPath, body: RejectOrganizationRequest):
    """Decline an organization submitted for review."""
    with tracer.start_as_current_span(
        "organizations.reject",
        attributes={"governance.organization_id": path.org_id, "user.id": user_context.user_id}
    ):
        result = current_app.activation_service.reject_organization(
            path.org_id, user_context, resolution_id=body.resolution_id
        )
        return result_response(result)


@org_bp.delete('/<org_id>/members/<membership_id>', responses=PROBLEM_RESPONSES)
@require_jwt
def remove_member(user_context: UserContext, path: MembershipPath):
    """
    Remove a member from the organization.

    The last active owner cannot be removed.
    """
    with tracer.start_as_current_span(
        "organizations.remove_member",
        attributes={
            "governance.organization_id": path.org_id,
            "governance.membership_id": path.membership_id,
            "user.id": user_context.user_id
        }
    ):
        result = current_app.membership_service.remove_member(path.org_id, path.membership_id, user_context)
        return result_response(result)


@org_bp.post('/<org_id>/positions', responses=PROBLEM_RESPONSES)
@require_jwt
def assign_position(user_context: UserContext, path: OrgPath, body: AssignPositionRequest):
    """Assign a governance position; the category is resolved from the title."""
    result = current_app.membership_service.assign_position(path.org_id, body.user_id, body.title, user_context)
    return result_response(result, 201)


@org_bp.delete('/<org_id>/positions/<position_id>', responses=PROBLEM_RESPONSES)
@require_jwt
def deactivate_position(user_context: UserContext, path: PositionPath):
    result = current_app.membership_service.deactivate_position(path.org_id, path.position_id, user_context)
    return result_response(result)


@org_bp.post('/<org_id>/resolutions', responses=PROBLEM_RESPONSES)
@require_jwt
def create_resolution(user_context: UserContext, path: OrgPath, body: CreateResolutionRequest):
    """Create a DRAFT resolution."""
    with tracer.start_as_current_span(
        "organizations.create_resolution",
        attributes={"governance.organization_id": path.org_id, "user.id": user_context.user_id}
    ):
        result = current_app.resolution_service.create_resolution(
            path.org_id,
            body.title,
            user_context,
            content=body.content,
            visibility=body.visibility,
            meeting_id=body.meeting_id
        )
        return result_response(result, 201)


@org_bp.post('/<org_id>/meetings', responses=PROBLEM_RESPONSES)
@require_jwt
def create_meeting(user_context: UserContext, path: OrgPath, body: CreateMeetingRequest):
    """
    Create a meeting.

    General Assembly meetings are created with procedural agenda items 1-3.
    """
    with tracer.start_as_current_span(
        "organizations.create_meeting",
        attributes={"governance.organization_id": path.org_id, "user.id": user_context.user_id}
    ):
        result = current_app.meeting_service.create_meeting(
            path.org_id,
            body.title,
            body.scheduled_at,
            user_context,
            meeting_type=body.meeting_type,
            location=body.location
        )
        return result_response(result, 201)

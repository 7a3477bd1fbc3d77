# -*- coding: utf-8 -*-
# SPDX-License-Identifier: Apache-2.0

"""
Resolution lifecycle endpoints.
"""

from flask import current_app
from flask_openapi3 import APIBlueprint, Tag
from opentelemetry import trace
import logging

from models.requests import (
    ResolutionPath,
    UpdateResolutionRequest,
    InitializeProjectRequest,
    UpdateIndicatorRequest
)
from models.responses import ProblemResponse
from models.entities import UserContext
from middleware.auth import require_jwt
from middleware.error_handler import result_response

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)

resolution_tag = Tag(name="Resolutions", description="Resolution workflow and project metadata")
resolutions_bp = APIBlueprint(
    'resolutions',
    __name__,
    url_prefix='/api/resolutions',
    abp_tags=[resolution_tag]
)

PROBLEM_RESPONSES = {
    401: ProblemResponse,
    403: ProblemResponse,
    404: ProblemResponse,
    409: ProblemResponse,
    422: ProblemResponse
}


@resolutions_bp.patch('/<resolution_id>', responses=PROBLEM_RESPONSES)
@require_jwt
def update_resolution(user_context: UserContext, path: ResolutionPath, body: UpdateResolutionRequest):
    """Edit a DRAFT resolution."""
    result = current_app.resolution_service.update_resolution(
        path.resolution_id,
        user_context,
        title=body.title,
        content=body.content,
        visibility=body.visibility
    )
    return result_response(result)


@resolutions_bp.post('/<resolution_id>/propose', responses=PROBLEM_RESPONSES)
@require_jwt
def propose_resolution(user_context: UserContext, path: ResolutionPath):
    """Move a DRAFT resolution to PROPOSED."""
    with tracer.start_as_current_span(
        "resolutions.propose",
        attributes={"governance.resolution_id": path.resolution_id, "user.id": user_context.user_id}
    ):
        result = current_app.resolution_service.propose_resolution(path.resolution_id, user_context)
        return result_response(result)


@resolutions_bp.post('/<resolution_id>/approve', responses=PROBLEM_RESPONSES)
@require_jwt
def approve_resolution(user_context: UserContext, path: ResolutionPath):
    """
    Approve a PROPOSED resolution.

    Resolutions with an open vote are decided by closing the vote.
    """
    with tracer.start_as_current_span(
        "resolutions.approve",
        attributes={"governance.resolution_id": path.resolution_id, "user.id": user_context.user_id}
    ):
        result = current_app.resolution_service.approve_resolution(path.resolution_id, user_context)
        return result_response(result)


@resolutions_bp.post('/<resolution_id>/reject', responses=PROBLEM_RESPONSES)
@require_jwt
def reject_resolution(user_context: UserContext, path: ResolutionPath):
    """Reject a PROPOSED resolution."""
    with tracer.start_as_current_span(
        "resolutions.reject",
        attributes={"governance.resolution_id": path.resolution_id, "user.id": user_context.user_id}
    ):
        result = current_app.resolution_service.reject_resolution(path.resolution_id, user_context)
        return result_response(result)


@resolutions_bp.post('/<resolution_id>/project', responses=PROBLEM_RESPONSES)
@require_jwt
def initialize_project(user_context: UserContext, path: ResolutionPath, body: InitializeProjectRequest):
    """Initialize project metadata on a DRAFT resolution."""
    with tracer.start_as_current_span(
        "resolutions.initialize_project",
        attributes={"governance.resolution_id": path.resolution_id, "user.id": user_context.user_id}
    ):
        result = current_app.resolution_service.initialize_project(
            path.resolution_id,
            user_context,
            body.phase,
            code=body.code,
            tags=body.tags,
            budget_planned=body.budget_planned
        )
        return result_response(result)


@resolutions_bp.post('/<resolution_id>/indicator', responses=PROBLEM_RESPONSES)
@require_jwt
def update_indicator(user_context: UserContext, path: ResolutionPath, body: UpdateIndicatorRequest):
    """Update progress and budget indicators of an APPROVED project."""
    with tracer.start_as_current_span(
        "resolutions.update_indicator",
        attributes={"governance.resolution_id": path.resolution_id, "user.id": user_context.user_id}
    ):
        result = current_app.resolution_service.update_indicator(
            path.resolution_id,
            user_context,
            progress=body.progress,
            budget_planned=body.budget_planned,
            budget_spent=body.budget_spent
        )
        return result_response(result)

# -*- coding: utf-8 -*-
# SPDX-License-Identifier: Apache-2.0

"""
Meeting endpoints: agenda, publication, attendance, quorum and completion.
"""

from flask import current_app
from flask_openapi3 import APIBlueprint, Tag
from opentelemetry import trace
import logging

from models.requests import (
    MeetingPath,
    AgendaItemPath,
    AddAgendaItemRequest,
    AttendanceRequest,
    PresentRequest,
    ProtocolRequest
)
from models.responses import ProblemResponse
from models.entities import UserContext
from middleware.auth import require_jwt
from middleware.error_handler import result_response

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)

meeting_tag = Tag(name="Meetings", description="Meetings, agenda and attendance")
meetings_bp = APIBlueprint(
    'meetings',
    __name__,
    url_prefix='/api/meetings',
    abp_tags=[meeting_tag]
)

PROBLEM_RESPONSES = {
    401: ProblemResponse,
    403: ProblemResponse,
    404: ProblemResponse,
    409: ProblemResponse
}


@meetings_bp.post('/<meeting_id>/agenda', responses=PROBLEM_RESPONSES)
@require_jwt
def add_agenda_item(user_context: UserContext, path: MeetingPath, body: AddAgendaItemRequest):
    """Append a substantive agenda item with its own DRAFT resolution."""
    with tracer.start_as_current_span(
        "meetings.add_agenda_item",
        attributes={"governance.meeting_id": path.meeting_id, "user.id": user_context.user_id}
    ):
        result = current_app.meeting_service.add_agenda_item(
            path.meeting_id, body.title, user_context, content=body.content
        )
        return result_response(result, 201)


@meetings_bp.delete('/<meeting_id>/agenda/<int:item_no>', responses=PROBLEM_RESPONSES)
@require_jwt
def delete_agenda_item(user_context: UserContext, path: AgendaItemPath):
    """Remove a substantive agenda item. Procedural items 1-3 cannot be removed."""
    result = current_app.meeting_service.delete_agenda_item(path.meeting_id, path.item_no, user_context)
    return result_response(result)


@meetings_bp.post('/<meeting_id>/publish', responses=PROBLEM_RESPONSES)
@require_jwt
def publish_meeting(user_context: UserContext, path: MeetingPath):
    with tracer.start_as_current_span(
        "meetings.publish",
        attributes={"governance.meeting_id": path.meeting_id, "user.id": user_context.user_id}
    ):
        result = current_app.meeting_service.publish_meeting(path.meeting_id, user_context)
        return result_response(result)


@meetings_bp.post('/<meeting_id>/complete', responses=PROBLEM_RESPONSES)
@require_jwt
def complete_meeting(user_context: UserContext, path: MeetingPath):
    """
    Close every open vote of the meeting and mark it COMPLETED.

    The response carries the bulk-close summary; votes that failed to close
    are listed there.
    """
    with tracer.start_as_current_span(
        "meetings.complete",
        attributes={"governance.meeting_id": path.meeting_id, "user.id": user_context.user_id}
    ):
        result = current_app.meeting_service.complete_meeting(path.meeting_id, user_context)
        return result_response(result)


@meetings_bp.post('/<meeting_id>/protocol', responses=PROBLEM_RESPONSES)
@require_jwt
def attach_protocol(user_context: UserContext, path: MeetingPath, body: ProtocolRequest):
    result = current_app.meeting_service.attach_protocol(path.meeting_id, body.protocol_url, user_context)
    return result_response(result)


@meetings_bp.post('/<meeting_id>/attendance', responses=PROBLEM_RESPONSES)
@require_jwt
def register_attendance(user_context: UserContext, path: MeetingPath, body: AttendanceRequest):
    """Register remote voting or in-person attendance."""
    result = current_app.meeting_service.register_attendance(
        path.meeting_id, body.mode, user_context, membership_id=body.membership_id
    )
    return result_response(result)


@meetings_bp.post('/<meeting_id>/present', responses=PROBLEM_RESPONSES)
@require_jwt
def mark_present(user_context: UserContext, path: MeetingPath, body: PresentRequest):
    result = current_app.meeting_service.mark_present(
        path.meeting_id, body.membership_id, user_context, present=body.present
    )
    return result_response(result)


@meetings_bp.get('/<meeting_id>/quorum', responses=PROBLEM_RESPONSES)
@require_jwt
def get_quorum(user_context: UserContext, path: MeetingPath):
    """Advisory quorum figures."""
    result = current_app.meeting_service.get_quorum(path.meeting_id, user_context)
    return result_response(result)


@meetings_bp.get('/<meeting_id>/procedural-status', responses=PROBLEM_RESPONSES)
@require_jwt
def get_procedural_status(user_context: UserContext, path: MeetingPath):
    result = current_app.meeting_service.get_procedural_status(path.meeting_id, user_context)
    return result_response(result)


@meetings_bp.post('/<meeting_id>/votes/close', responses=PROBLEM_RESPONSES)
@require_jwt
def close_meeting_votes(user_context: UserContext, path: MeetingPath):
    """Close every open vote of the meeting in agenda order."""
    with tracer.start_as_current_span(
        "meetings.close_votes",
        attributes={"governance.meeting_id": path.meeting_id, "user.id": user_context.user_id}
    ):
        result = current_app.voting_service.close_all_votes_for_meeting(path.meeting_id, user_context)
        return result_response(result)

# -*- coding: utf-8 -*-
# SPDX-License-Identifier: Apache-2.0

"""
Voting endpoints: opening votes, ballots, live totals and closing.
"""

from flask import current_app, jsonify
from flask_openapi3 import APIBlueprint, Tag
from opentelemetry import trace
import logging

from models.requests import (
    VotePath,
    CreateVoteRequest,
    CastBallotRequest,
    LiveTotalsRequest,
    EligibilityQuery
)
from models.responses import EligibilityResponse, ProblemResponse, to_json_compatible
from models.entities import UserContext
from middleware.auth import require_jwt
from middleware.error_handler import result_response

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)

vote_tag = Tag(name="Votes", description="Votes and ballots")
votes_bp = APIBlueprint(
    'votes',
    __name__,
    url_prefix='/api/votes',
    abp_tags=[vote_tag]
)

PROBLEM_RESPONSES = {
    401: ProblemResponse,
    403: ProblemResponse,
    404: ProblemResponse,
    409: ProblemResponse,
    422: ProblemResponse
}


@votes_bp.post('', responses=PROBLEM_RESPONSES)
@require_jwt
def create_vote(user_context: UserContext, body: CreateVoteRequest):
    """
    Open a vote on a PROPOSED resolution.

    General Assembly votes must be bound to a meeting; only one vote per
    resolution may be open at a time.
    """
    with tracer.start_as_current_span(
        "votes.create",
        attributes={"governance.resolution_id": body.resolution_id, "user.id": user_context.user_id}
    ):
        result = current_app.voting_service.create_vote(
            body.resolution_id,
            user_context,
            kind=body.kind,
            meeting_id=body.meeting_id,
            title=body.title
        )
        return result_response(result, 201)


@votes_bp.get('/<vote_id>/eligibility', responses={200: EligibilityResponse, 401: ProblemResponse})
@require_jwt
def check_eligibility(user_context: UserContext, path: VotePath, query: EligibilityQuery):
    """
    Check whether the caller may cast a ballot through a channel.

    Denials are reported in the body with a machine-readable reason.
    """
    eligibility = current_app.voting_service.can_cast_vote(path.vote_id, query.channel.value, user_context)
    return jsonify(to_json_compatible(eligibility)), 200


@votes_bp.post('/<vote_id>/ballots', responses=PROBLEM_RESPONSES)
@require_jwt
def cast_ballot(user_context: UserContext, path: VotePath, body: CastBallotRequest):
    """Record or replace the caller's ballot."""
    with tracer.start_as_current_span(
        "votes.cast_ballot",
        attributes={"governance.vote_id": path.vote_id, "user.id": user_context.user_id}
    ):
        result = current_app.voting_service.cast_vote(path.vote_id, body.choice, body.channel, user_context)
        return result_response(result)


@votes_bp.post('/<vote_id>/live-totals', responses=PROBLEM_RESPONSES)
@require_jwt
def set_live_totals(user_context: UserContext, path: VotePath, body: LiveTotalsRequest):
    """Record in-person counts; FOR is derived from the attendees present."""
    result = current_app.voting_service.set_live_totals(path.vote_id, body.against, body.abstain, user_context)
    return result_response(result)


@votes_bp.post('/<vote_id>/close', responses=PROBLEM_RESPONSES)
@require_jwt
def close_vote(user_context: UserContext, path: VotePath):
    """
    Close a vote and apply its outcome to the resolution.

    Closing an already closed vote reports the stored outcome.
    """
    with tracer.start_as_current_span(
        "votes.close",
        attributes={"governance.vote_id": path.vote_id, "user.id": user_context.user_id}
    ):
        result = current_app.voting_service.close_vote(path.vote_id, user_context)
        return result_response(result)

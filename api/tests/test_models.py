# -*- coding: utf-8 -*-
# SPDX-License-Identifier: Apache-2.0

"""
Unit tests for entity models, request models, error classification and JSON
conversion.
"""

from datetime import datetime, timezone

import pytest
from bson import ObjectId
from pydantic import ValidationError

from domain.voting import CloseVoteResult
from models.entities import Organization, Resolution, Vote, UserContext
from models.enums import ResolutionStatus, VoteChoice
from models.errors import (
    ErrorCode,
    ErrorKind,
    GovernanceAuthorizationError,
    GovernanceResult,
    error_kind
)
from models.requests import (
    CastBallotRequest,
    CreateMeetingRequest,
    CreateResolutionRequest,
    InitializeProjectRequest,
    LiveTotalsRequest,
    UpdateIndicatorRequest
)
from models.responses import to_json_compatible


class TestEntities:
    """Test entity validation and document conversion."""

    def test_resolution_defaults_and_document_keys(self):
        resolution = Resolution(
            organization_id="org-1",
            title="  Stogo remontas  ",
            created_by="user-1",
            updated_by="user-1"
        )

        document = resolution.to_document()

        assert resolution.title == "Stogo remontas"
        assert document["status"] == ResolutionStatus.DRAFT.value
        assert document["organizationId"] == "org-1"
        assert isinstance(document["_id"], ObjectId)
        assert "id" not in document

    def test_from_document_round_trip(self):
        resolution = Resolution(organization_id="org-1", title="Biudžetas", created_by="u", updated_by="u")

        restored = Resolution.from_document(resolution.to_document())

        assert restored.id == resolution.id
        assert restored.title == "Biudžetas"

    def test_blank_resolution_title_rejected(self):
        with pytest.raises(ValidationError):
            Resolution(organization_id="org-1", title="   ", created_by="u", updated_by="u")

    def test_organization_slug_format(self):
        with pytest.raises(ValidationError):
            Organization(name="Oak Street", slug="Oak Street", created_by="u", updated_by="u")

    def test_organization_namespaces(self):
        organization = Organization(
            name="Maple Court",
            slug="maple-court",
            metadata={"fact": {"pre_org": True}, "governance": {"proposed": {"early_voting_days": 2}}},
            created_by="u",
            updated_by="u"
        )

        assert organization.is_pre_org
        assert organization.proposed_governance == {"early_voting_days": 2}

    def test_vote_opens_immediately_by_default(self):
        vote = Vote(organization_id="org-1", resolution_id="res-1", created_by="u", updated_by="u")

        assert vote.status == "OPEN"
        assert vote.outcome is None
        assert vote.opens_at <= datetime.utcnow()

    def test_user_context_permissions(self):
        user = UserContext(user_id="reviewer-1", permissions=["organization:activate"])

        assert user.has_permission("organization:activate")
        assert not user.has_permission("organization:review")
        assert user.has_any_permission(["organization:review", "organization:activate"])


class TestRequestModels:
    """Test request body validation."""

    def test_ballot_choice_enum(self):
        assert CastBallotRequest(choice="FOR", channel="REMOTE").choice == VoteChoice.FOR.value

        with pytest.raises(ValidationError):
            CastBallotRequest(choice="MAYBE", channel="REMOTE")

    def test_live_totals_are_whole_numbers(self):
        with pytest.raises(ValidationError):
            LiveTotalsRequest(against=1.5, abstain=0)

        # negative counts reach the voting service, which rejects them with its own code
        assert LiveTotalsRequest(against=-1, abstain=0).against == -1

    def test_project_budget_non_negative(self):
        with pytest.raises(ValidationError):
            InitializeProjectRequest(phase="planning", budget_planned=-10)

    @pytest.mark.parametrize("field", ["progress", "budget_planned", "budget_spent"])
    def test_indicator_values_must_be_finite(self, field):
        with pytest.raises(ValidationError):
            UpdateIndicatorRequest(**{field: float("nan")})

    def test_project_budget_must_be_finite(self):
        with pytest.raises(ValidationError):
            InitializeProjectRequest(phase="planning", budget_planned=float("inf"))

    def test_resolution_title_required(self):
        with pytest.raises(ValidationError):
            CreateResolutionRequest(title="")

    def test_meeting_time_normalized_to_naive_utc(self):
        request = CreateMeetingRequest(
            title="Visuotinis susirinkimas",
            scheduled_at=datetime(2026, 5, 1, 18, 0, tzinfo=timezone.utc)
        )

        assert request.scheduled_at == datetime(2026, 5, 1, 18, 0)
        assert request.scheduled_at.tzinfo is None


class TestErrorClassification:
    """Test error kinds and structured results."""

    @pytest.mark.parametrize("code,kind", [
        (ErrorCode.NOT_AUTHORIZED, ErrorKind.AUTHORIZATION),
        (ErrorCode.VOTE_NOT_FOUND, ErrorKind.NOT_FOUND),
        (ErrorCode.INVALID_PROGRESS, ErrorKind.VALIDATION),
        (ErrorCode.LIVE_TOTALS_EXCEED_ATTENDANCE, ErrorKind.VALIDATION),
        (ErrorCode.PROCEDURAL_SEQUENCE_INCOMPLETE, ErrorKind.PRECONDITION),
        (ErrorCode.LAST_OWNER, ErrorKind.PRECONDITION),
        (ErrorCode.OPERATION_FAILED, ErrorKind.INFRASTRUCTURE),
    ])
    def test_error_kind(self, code, kind):
        assert error_kind(code) == kind

    def test_failed_result(self):
        result = GovernanceResult.fail(ErrorCode.VOTE_CLOSED, "Vote is closed", vote_id="v-1")

        assert not result.success
        assert result.kind == ErrorKind.PRECONDITION
        assert result.details == {"vote_id": "v-1"}

    def test_successful_result_has_no_kind(self):
        result = GovernanceResult.ok({"id": "r-1"}, already_applied=True)

        assert result.kind is None
        assert result.details == {"already_applied": True}

    def test_authorization_error(self):
        error = GovernanceAuthorizationError("Not allowed to close votes", required=["CHAIR"])

        assert error.code == ErrorCode.NOT_AUTHORIZED
        assert error.required == ["CHAIR"]
        assert str(error) == "Not allowed to close votes"


class TestJsonConversion:
    """Test conversion of service results to JSON values."""

    def test_datetime_and_object_id(self):
        object_id = ObjectId()

        data = to_json_compatible({"at": datetime(2026, 1, 2, 3, 4, 5), "ref": object_id})

        assert data == {"at": "2026-01-02T03:04:05Z", "ref": str(object_id)}

    def test_dataclass_fields(self):
        result = CloseVoteResult(
            vote_id="v-1",
            outcome="APPROVED",
            resolution_status="APPROVED",
            tally={"for": 6, "against": 0, "abstain": 0}
        )

        data = to_json_compatible(result)

        assert data["outcome"] == "APPROVED"
        assert data["already_closed"] is False
        assert data["tally"]["for"] == 6

    def test_enums_sets_and_models(self):
        user = UserContext(user_id="u-1")

        assert to_json_compatible(ErrorCode.LAST_OWNER) == "LAST_OWNER"
        assert to_json_compatible({1, 1}) == [1]
        assert to_json_compatible(user)["user_id"] == "u-1"

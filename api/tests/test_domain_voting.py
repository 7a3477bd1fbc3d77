# -*- coding: utf-8 -*-
# SPDX-License-Identifier: Apache-2.0

"""
Unit tests for ballot eligibility, live totals, tallying and outcome.
"""

from datetime import datetime, timedelta

import pytest

from domain.voting import (
    VoteTally,
    compute_opens_at,
    determine_outcome,
    evaluate_eligibility,
    tally_ballots,
    validate_live_totals
)
from models.enums import VoteDenialReason, VoteOutcome
from models.errors import ErrorCode

NOW = datetime(2026, 3, 14, 12, 0, 0)
MEMBERSHIP = {"id": "membership-1", "role": "MEMBER", "memberStatus": "ACTIVE"}


def make_vote(**overrides):
    vote = {
        "id": "vote-1",
        "kind": "GA",
        "status": "OPEN",
        "meetingId": "meeting-1",
        "opensAt": NOW - timedelta(hours=1),
        "closesAt": NOW + timedelta(days=1),
    }
    vote.update(overrides)
    return vote


class TestEvaluateEligibility:
    """Test the eligibility decision."""

    def check(self, vote=None, channel="REMOTE", org_status="ACTIVE", membership=MEMBERSHIP,
              attendance=None):
        return evaluate_eligibility(
            vote if vote is not None else make_vote(),
            channel,
            NOW,
            organization_status=org_status,
            membership=membership,
            attendance=attendance
        )

    def test_remote_registrant_allowed(self):
        result = self.check(attendance={"mode": "REMOTE"})

        assert result.allowed
        assert result.reason is None
        assert result.details["membership_id"] == "membership-1"

    def test_written_ballot_allowed_for_remote_registrant(self):
        assert self.check(channel="WRITTEN", attendance={"mode": "REMOTE"}).allowed

    def test_vote_not_found(self):
        result = evaluate_eligibility(None, "REMOTE", NOW)

        assert result.reason == VoteDenialReason.VOTE_NOT_FOUND

    def test_closed_vote(self):
        result = self.check(vote=make_vote(status="CLOSED"), attendance={"mode": "REMOTE"})

        assert result.reason == VoteDenialReason.VOTE_CLOSED

    def test_voting_period_over(self):
        result = self.check(vote=make_vote(closesAt=NOW), attendance={"mode": "REMOTE"})

        assert result.reason == VoteDenialReason.VOTE_CLOSED

    def test_not_open_yet(self):
        result = self.check(vote=make_vote(opensAt=NOW + timedelta(minutes=1)), attendance={"mode": "REMOTE"})

        assert result.reason == VoteDenialReason.VOTE_NOT_OPEN_YET

    def test_inactive_organization(self):
        result = self.check(org_status="SUBMITTED_FOR_REVIEW", attendance={"mode": "REMOTE"})

        assert result.reason == VoteDenialReason.ORGANIZATION_NOT_ACTIVE

    def test_not_a_member(self):
        result = self.check(membership=None)

        assert not result.allowed
        assert result.reason == VoteDenialReason.NOT_A_MEMBER
        assert result.message

    def test_in_person_channel_not_accepted_for_ga(self):
        result = self.check(channel="IN_PERSON", attendance={"mode": "IN_PERSON"})

        assert result.reason == VoteDenialReason.CHANNEL_NOT_ALLOWED
        assert result.details["allowed_channels"] == ["REMOTE", "WRITTEN"]

    def test_unknown_channel(self):
        assert self.check(channel="CARRIER_PIGEON").reason == VoteDenialReason.CHANNEL_NOT_ALLOWED

    def test_in_person_registrant_votes_in_the_room(self):
        result = self.check(attendance={"mode": "IN_PERSON"})

        assert result.reason == VoteDenialReason.ATTENDING_IN_PERSON

    def test_unregistered_member(self):
        result = self.check(attendance=None)

        assert result.reason == VoteDenialReason.NOT_REGISTERED_FOR_CHANNEL
        assert result.details["meeting_id"] == "meeting-1"

    def test_opinion_vote_needs_no_registration(self):
        vote = make_vote(kind="OPINION", meetingId=None)

        assert self.check(vote=vote, channel="IN_PERSON").allowed

    def test_to_dict(self):
        data = self.check(membership=None).to_dict()

        assert data["allowed"] is False
        assert data["reason"] == "NOT_A_MEMBER"


class TestLiveTotals:
    """Test in-person head-count validation."""

    def test_for_is_derived_from_attendance(self):
        validation, for_count = validate_live_totals(present_count=12, against=3, abstain=2)

        assert validation.is_valid
        assert for_count == 7

    def test_totals_exceeding_attendance(self):
        validation, _ = validate_live_totals(present_count=5, against=4, abstain=2)

        assert not validation.is_valid
        assert validation.error_code == ErrorCode.LIVE_TOTALS_EXCEED_ATTENDANCE

    @pytest.mark.parametrize("against,abstain", [(-1, 0), (0, 1.5), (True, 0)])
    def test_invalid_counts(self, against, abstain):
        validation, _ = validate_live_totals(present_count=5, against=against, abstain=abstain)

        assert validation.error_code == ErrorCode.INVALID_LIVE_TOTALS


class TestTallyAndOutcome:
    """Test ballot aggregation and outcome determination."""

    def test_tally_ballots_and_live_totals(self):
        ballots = [{"choice": "FOR"}, {"choice": "FOR"}, {"choice": "AGAINST"}, {"choice": "ABSTAIN"}]

        tally = tally_ballots(ballots, {"for": 3, "against": 1, "abstain": 0})

        assert tally.to_dict() == {"for": 5, "against": 2, "abstain": 1}
        assert tally.total == 8

    def test_more_for_than_against_approves(self):
        assert determine_outcome(VoteTally(5, 2, 1)) == VoteOutcome.APPROVED

    def test_tie_is_rejected(self):
        assert determine_outcome(VoteTally(3, 3, 0)) == VoteOutcome.REJECTED

    def test_abstentions_do_not_block_approval(self):
        assert determine_outcome(VoteTally(1, 0, 9)) == VoteOutcome.APPROVED

    def test_no_ballots_is_rejected(self):
        assert determine_outcome(VoteTally()) == VoteOutcome.REJECTED

    def test_tally_from_dict(self):
        assert VoteTally.from_dict({"for": "2", "against": 1}).to_dict() == {"for": 2, "against": 1, "abstain": 0}


class TestOpensAt:
    """Test early voting window."""

    def test_opens_now_without_early_voting(self):
        assert compute_opens_at(NOW, NOW + timedelta(days=7), 0) == NOW

    def test_opens_before_meeting_with_early_voting(self):
        scheduled = NOW + timedelta(days=7)

        assert compute_opens_at(NOW, scheduled, 3) == scheduled - timedelta(days=3)

# -*- coding: utf-8 -*-
# SPDX-License-Identifier: Apache-2.0

"""
Tests for the voting engine: ballots, eligibility, live totals and closing.
"""

import pytest

from models.enums import VoteDenialReason
from models.errors import ErrorCode, GovernanceAuthorizationError


def everyone(org):
    return [org.owner, org.chair, org.board] + [m.user for m in org.members]


class TestCreateVote:
    """Test opening votes."""

    def test_vote_bound_to_resolution_meeting(self, governance, org, workflow):
        meeting_id, resolution_id, vote_id = workflow.ready_substantive_vote(org)

        vote = governance.voting.get_vote(vote_id)

        assert vote["meetingId"] == meeting_id
        assert vote["resolutionId"] == resolution_id
        assert vote["status"] == "OPEN"
        assert vote["title"] == "Stogo remontas"
        assert vote["closesAt"] > vote["opensAt"]

    def test_ga_vote_requires_meeting(self, governance, org):
        created = governance.resolutions.create_resolution(org.id, "Kiemo tvarkymas", org.chair)
        governance.resolutions.propose_resolution(created.data["id"], org.chair)

        result = governance.voting.create_vote(created.data["id"], org.chair, kind="GA")

        assert result.error_code == ErrorCode.GA_REQUIRES_MEETING

    def test_draft_resolution_cannot_be_voted(self, governance, org):
        created = governance.resolutions.create_resolution(org.id, "Kiemo tvarkymas", org.chair)

        result = governance.voting.create_vote(created.data["id"], org.chair, kind="OPINION")

        assert result.error_code == ErrorCode.RESOLUTION_NOT_PROPOSED

    def test_one_open_vote_per_resolution(self, governance, org, workflow):
        _, resolution_id, _ = workflow.ready_substantive_vote(org)

        result = governance.voting.create_vote(resolution_id, org.chair)

        assert result.error_code == ErrorCode.VOTE_ALREADY_OPEN

    def test_early_voting_opens_before_meeting(self, governance, org, workflow, mongo_service):
        mongo_service.update_where(
            "organizations",
            {"_id": mongo_service.to_object_id(org.id)},
            {"$set": {"metadata.governance.early_voting_days": 2}},
            "seed"
        )

        _, _, vote_id = workflow.ready_substantive_vote(org)

        vote = governance.voting.get_vote(vote_id)
        meeting = governance.meetings.get_meeting(vote["meetingId"])
        assert (meeting["scheduledAt"] - vote["opensAt"]).days == 2


class TestCastVote:
    """Test ballot recording and eligibility."""

    def test_second_ballot_replaces_first(self, governance, org, workflow):
        meeting_id, _, vote_id = workflow.ready_substantive_vote(org)
        voter = org.members[0].user
        workflow.register_remote(meeting_id, [voter])

        first = governance.voting.cast_vote(vote_id, "FOR", "REMOTE", voter)
        second = governance.voting.cast_vote(vote_id, "AGAINST", "REMOTE", voter)

        assert first.success and not first.data["replaced"]
        assert second.success and second.data["replaced"]
        ballots = governance.voting.get_ballots(vote_id)
        assert len(ballots) == 1
        assert ballots[0]["choice"] == "AGAINST"
        assert ballots[0]["membershipId"] == org.members[0].membership_id

    def test_written_ballot(self, governance, org, workflow):
        meeting_id, _, vote_id = workflow.ready_substantive_vote(org)
        workflow.register_remote(meeting_id, [org.board])

        result = governance.voting.cast_vote(vote_id, "FOR", "WRITTEN", org.board)

        assert result.success
        assert governance.voting.get_ballots(vote_id)[0]["channel"] == "WRITTEN"

    def test_outsider_cannot_vote(self, governance, org, workflow):
        _, _, vote_id = workflow.ready_substantive_vote(org)

        eligibility = governance.voting.can_cast_vote(vote_id, "REMOTE", org.outsider)

        assert not eligibility.allowed
        assert eligibility.reason == VoteDenialReason.NOT_A_MEMBER

    def test_unregistered_member_cannot_vote(self, governance, org, workflow):
        _, _, vote_id = workflow.ready_substantive_vote(org)

        result = governance.voting.cast_vote(vote_id, "FOR", "REMOTE", org.members[1].user)

        assert result.error_code == ErrorCode.VOTE_NOT_ALLOWED
        assert result.details["reason"] == "NOT_REGISTERED_FOR_CHANNEL"
        assert governance.voting.get_ballots(vote_id) == []

    def test_in_person_attendee_votes_in_the_room(self, governance, org, workflow):
        meeting_id, _, vote_id = workflow.ready_substantive_vote(org)
        voter = org.members[2].user
        governance.meetings.register_attendance(meeting_id, "IN_PERSON", voter)

        eligibility = governance.voting.can_cast_vote(vote_id, "REMOTE", voter)

        assert eligibility.reason == VoteDenialReason.ATTENDING_IN_PERSON

    def test_in_person_channel_rejected(self, governance, org, workflow):
        meeting_id, _, vote_id = workflow.ready_substantive_vote(org)
        workflow.register_remote(meeting_id, [org.owner])

        result = governance.voting.cast_vote(vote_id, "FOR", "IN_PERSON", org.owner)

        assert result.details["reason"] == "CHANNEL_NOT_ALLOWED"

    def test_removed_member_loses_eligibility(self, governance, org, workflow):
        meeting_id, _, vote_id = workflow.ready_substantive_vote(org)
        voter = org.members[0]
        workflow.register_remote(meeting_id, [voter.user])
        governance.membership.remove_member(org.id, voter.membership_id, org.owner)

        eligibility = governance.voting.can_cast_vote(vote_id, "REMOTE", voter.user)

        assert eligibility.reason == VoteDenialReason.NOT_A_MEMBER

    def test_invalid_choice(self, governance, org, workflow):
        _, _, vote_id = workflow.ready_substantive_vote(org)

        result = governance.voting.cast_vote(vote_id, "MAYBE", "REMOTE", org.owner)

        assert result.error_code == ErrorCode.INVALID_INPUT

    def test_unknown_vote(self, governance, org):
        result = governance.voting.cast_vote("5f0000000000000000000000", "FOR", "REMOTE", org.owner)

        assert result.error_code == ErrorCode.VOTE_NOT_FOUND

    def test_ballot_after_close(self, governance, org, workflow):
        meeting_id, _, vote_id = workflow.ready_substantive_vote(org)
        workflow.register_remote(meeting_id, [org.owner])
        governance.voting.close_vote(vote_id, org.chair)

        result = governance.voting.cast_vote(vote_id, "FOR", "REMOTE", org.owner)

        assert result.error_code == ErrorCode.VOTE_CLOSED


class TestLiveTotals:
    """Test in-person aggregate counts."""

    def mark_present(self, governance, meeting_id, org, members):
        for member in members:
            result = governance.meetings.mark_present(meeting_id, member.membership_id, org.chair)
            assert result.success

    def test_for_is_derived_from_present_attendees(self, governance, org, workflow):
        meeting_id, _, vote_id = workflow.ready_substantive_vote(org)
        self.mark_present(governance, meeting_id, org, org.members)

        result = governance.voting.set_live_totals(vote_id, 1, 0, org.chair)

        assert result.success
        assert result.data["for_count"] == 2
        assert result.data["present_count"] == 3
        assert governance.voting.get_vote(vote_id)["liveTotals"]["for"] == 2

    def test_totals_exceeding_attendance(self, governance, org, workflow):
        meeting_id, _, vote_id = workflow.ready_substantive_vote(org)
        self.mark_present(governance, meeting_id, org, org.members[:2])

        result = governance.voting.set_live_totals(vote_id, 2, 1, org.chair)

        assert result.error_code == ErrorCode.LIVE_TOTALS_EXCEED_ATTENDANCE
        assert result.details["present_count"] == 2
        assert governance.voting.get_vote(vote_id)["liveTotals"] is None

    def test_removed_attendee_not_counted(self, governance, org, workflow):
        meeting_id, _, vote_id = workflow.ready_substantive_vote(org)
        self.mark_present(governance, meeting_id, org, org.members[:2])
        removed = governance.membership.remove_member(org.id, org.members[1].membership_id, org.owner)
        assert removed.success

        result = governance.voting.set_live_totals(vote_id, 1, 1, org.chair)

        assert result.error_code == ErrorCode.LIVE_TOTALS_EXCEED_ATTENDANCE
        assert result.details["present_count"] == 1

    def test_opinion_vote_has_no_room(self, governance, org):
        created = governance.resolutions.create_resolution(org.id, "Kiemo tvarkymas", org.chair)
        governance.resolutions.propose_resolution(created.data["id"], org.chair)
        vote = governance.voting.create_vote(created.data["id"], org.chair, kind="OPINION")

        result = governance.voting.set_live_totals(vote.data["id"], 0, 0, org.chair)

        assert result.error_code == ErrorCode.VOTE_NOT_MEETING_BOUND

    def test_live_totals_counted_at_close(self, governance, org, workflow):
        meeting_id, resolution_id, vote_id = workflow.ready_substantive_vote(org)
        self.mark_present(governance, meeting_id, org, org.members)
        workflow.register_remote(meeting_id, [org.owner])
        governance.voting.cast_vote(vote_id, "AGAINST", "REMOTE", org.owner)
        governance.voting.set_live_totals(vote_id, 0, 1, org.chair)

        result = governance.voting.close_vote(vote_id, org.chair)

        assert result.data.tally == {"for": 2, "against": 1, "abstain": 1}
        assert result.data.outcome == "APPROVED"

    def test_ordinary_member_cannot_record_totals(self, governance, org, workflow):
        _, _, vote_id = workflow.ready_substantive_vote(org)

        with pytest.raises(GovernanceAuthorizationError):
            governance.voting.set_live_totals(vote_id, 0, 0, org.members[0].user)


class TestCloseVote:
    """Test closing, idempotency and abstention auto-registration."""

    def test_close_applies_outcome(self, governance, org, workflow, seed, event_publisher, user_factory):
        meeting_id, resolution_id, vote_id = workflow.ready_substantive_vote(org)
        voters = everyone(org)
        for user_id in ("member-4", "member-5"):
            seed.member(org.id, user_id)
            voters.append(user_factory(user_id))
        workflow.register_remote(meeting_id, voters)
        choices = ["FOR"] * 5 + ["AGAINST"] * 2 + ["ABSTAIN"]
        for voter, choice in zip(voters, choices):
            assert governance.voting.cast_vote(vote_id, choice, "REMOTE", voter).success

        result = governance.voting.close_vote(vote_id, org.chair)

        assert result.success
        assert result.data.outcome == "APPROVED"
        assert result.data.tally == {"for": 5, "against": 2, "abstain": 1}
        assert result.data.resolution_status == "APPROVED"
        assert not result.data.already_closed
        assert result.data.auto_abstained == 0
        assert governance.resolutions.get_resolution(resolution_id)["status"] == "APPROVED"

        events = [c.args[0] for c in event_publisher.publish_event.call_args_list]
        assert "vote.closed" in events
        assert events.count("resolution.approved") == 4

    def test_second_close_reports_stored_outcome(self, governance, org, workflow):
        meeting_id, resolution_id, vote_id = workflow.ready_substantive_vote(org)
        workflow.register_remote(meeting_id, [org.owner, org.board])
        governance.voting.cast_vote(vote_id, "AGAINST", "REMOTE", org.owner)
        governance.voting.cast_vote(vote_id, "AGAINST", "REMOTE", org.board)
        first = governance.voting.close_vote(vote_id, org.chair)

        second = governance.voting.close_vote(vote_id, org.chair)

        assert first.data.outcome == "REJECTED"
        assert second.success
        assert second.data.already_closed
        assert second.data.outcome == "REJECTED"
        assert second.data.tally == first.data.tally
        assert second.data.resolution_status == "REJECTED"

    def test_tie_rejects(self, governance, org, workflow):
        meeting_id, _, vote_id = workflow.ready_substantive_vote(org)
        workflow.register_remote(meeting_id, [org.owner, org.board])
        governance.voting.cast_vote(vote_id, "FOR", "REMOTE", org.owner)
        governance.voting.cast_vote(vote_id, "AGAINST", "REMOTE", org.board)

        assert governance.voting.close_vote(vote_id, org.chair).data.outcome == "REJECTED"

    def test_silent_remote_registrants_abstain_once(self, governance, org, workflow, mongo_service):
        meeting_id, _, vote_id = workflow.ready_substantive_vote(org)
        voters = [m.user for m in org.members]
        workflow.register_remote(meeting_id, voters)
        governance.voting.cast_vote(vote_id, "FOR", "REMOTE", voters[0])
        governance.voting.cast_vote(vote_id, "FOR", "REMOTE", voters[1])

        first = governance.voting.close_vote(vote_id, org.chair)

        assert first.data.auto_abstained == 1
        assert first.data.tally == {"for": 2, "against": 0, "abstain": 1}
        auto = [b for b in governance.voting.get_ballots(vote_id) if b["autoRegistered"]]
        assert [b["membershipId"] for b in auto] == [org.members[2].membership_id]

        mongo_service.delete_where("ballots", {"voteId": vote_id, "autoRegistered": True})
        second = governance.voting.close_vote(vote_id, org.chair)

        assert second.data.already_closed
        assert len(governance.voting.get_ballots(vote_id)) == 2

    def test_close_blocked_by_procedural_gate(self, governance, org, workflow):
        meeting, _ = workflow.create_ga_meeting(org.id, org.chair)
        resolution_id = workflow.add_proposed_item(meeting["id"], org.chair)
        vote_id = workflow.open_vote(resolution_id, org.chair)

        result = governance.voting.close_vote(vote_id, org.chair)

        assert result.error_code == ErrorCode.PROCEDURAL_SEQUENCE_INCOMPLETE
        assert result.details["pending_items"] == [1, 2, 3]
        vote = governance.voting.get_vote(vote_id)
        assert vote["status"] == "OPEN"
        assert vote.get("outcome") is None
        assert governance.resolutions.get_resolution(resolution_id)["status"] == "PROPOSED"

    def test_resolution_decided_only_by_closing(self, governance, org, workflow):
        _, resolution_id, _ = workflow.ready_substantive_vote(org)

        result = governance.resolutions.approve_resolution(resolution_id, org.chair)

        assert result.error_code == ErrorCode.VOTE_ALREADY_OPEN


class TestBulkClose:
    """Test closing every open vote of a meeting."""

    def test_procedural_votes_close_first(self, governance, org, workflow):
        meeting, agenda = workflow.create_ga_meeting(org.id, org.chair)
        resolution_id = workflow.add_proposed_item(meeting["id"], org.chair)
        workflow.register_remote(meeting["id"], [org.owner])

        # Substantive vote opened first; agenda order still decides closing order
        vote_ids = [workflow.open_vote(resolution_id, org.chair)]
        vote_ids += [workflow.open_vote(item["resolutionId"], org.chair) for item in agenda]
        for vote_id in vote_ids:
            governance.voting.cast_vote(vote_id, "FOR", "REMOTE", org.owner)

        result = governance.voting.close_all_votes_for_meeting(meeting["id"], org.chair)

        assert result.success
        assert result.data.closed_count == 4
        assert result.data.failed_count == 0
        assert [r["vote_id"] for r in result.data.results] == vote_ids[1:] + vote_ids[:1]
        assert governance.resolutions.get_resolution(resolution_id)["status"] == "APPROVED"

    def test_failure_does_not_stop_other_votes(self, governance, org, workflow):
        meeting, agenda = workflow.create_ga_meeting(org.id, org.chair)
        resolution_id = workflow.add_proposed_item(meeting["id"], org.chair)
        workflow.register_remote(meeting["id"], [org.owner])
        procedural_vote = workflow.open_vote(agenda[0]["resolutionId"], org.chair)
        substantive_vote = workflow.open_vote(resolution_id, org.chair)
        governance.voting.cast_vote(procedural_vote, "FOR", "REMOTE", org.owner)

        result = governance.voting.close_all_votes_for_meeting(meeting["id"], org.chair)

        summary = result.data
        assert summary.closed_count == 1
        assert summary.failed_count == 1
        assert summary.first_error["vote_id"] == substantive_vote
        assert summary.first_error["error_code"] == "PROCEDURAL_SEQUENCE_INCOMPLETE"
        assert governance.voting.get_vote(procedural_vote)["outcome"] == "APPROVED"
        assert governance.voting.get_vote(substantive_vote)["status"] == "OPEN"

    def test_unknown_meeting(self, governance, org):
        result = governance.voting.close_all_votes_for_meeting("5f0000000000000000000000", org.chair)

        assert result.error_code == ErrorCode.MEETING_NOT_FOUND

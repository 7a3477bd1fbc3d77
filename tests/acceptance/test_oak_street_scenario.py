# -*- coding: utf-8 -*-
# SPDX-License-Identifier: Apache-2.0

"""
Acceptance test for a full General Assembly decision at Oak Street Co-op.

Walks the HTTP API from meeting creation through procedural approvals,
a remote substantive vote and indicator reporting on the approved project.
"""

import pytest

REMOTE_VOTERS = [f"resident-{n}" for n in range(1, 7)]


class TestOakStreetGeneralAssembly:
    """Acceptance test for a General Assembly decision."""

    @pytest.fixture(autouse=True)
    def setup_scenario(self, test_client, oak_street, bearer, published_events):
        self.client = test_client
        self.org_id = oak_street
        self.bearer = bearer
        self.events = published_events

    def post(self, url, user_id, json=None):
        return self.client.post(url, json=json, headers=self.bearer(user_id))

    def create_meeting(self):
        response = self.post(
            f"/api/organizations/{self.org_id}/meetings",
            "chair-1",
            {"title": "Metinis visuotinis susirinkimas", "scheduled_at": "2030-04-20T17:00:00"}
        )
        assert response.status_code == 201, response.get_json()
        return response.get_json()

    def test_substantive_decision_end_to_end(self):
        created = self.create_meeting()
        meeting_id = created["meeting"]["id"]
        procedural = created["agenda"]
        assert [item["itemNo"] for item in procedural] == [1, 2, 3]

        # Remote registration and quorum
        for user_id in REMOTE_VOTERS:
            response = self.post(f"/api/meetings/{meeting_id}/attendance", user_id, {"mode": "REMOTE"})
            assert response.status_code == 200

        quorum = self.client.get(f"/api/meetings/{meeting_id}/quorum", headers=self.bearer("chair-1")).get_json()
        assert quorum["total_active_members"] == 10
        assert quorum["remote_voters"] == 6
        assert quorum["quorum_required"] == 5
        assert quorum["quorum_met"] is True

        # Substantive item with project metadata, frozen on proposal
        added = self.post(
            f"/api/meetings/{meeting_id}/agenda",
            "chair-1",
            {"title": "Stogo remontas", "content": "Pakeisti stogo dangą."}
        )
        assert added.status_code == 201
        assert added.get_json()["agenda_item"]["itemNo"] == 4
        resolution_id = added.get_json()["resolution_id"]

        project = self.post(
            f"/api/resolutions/{resolution_id}/project",
            "chair-1",
            {"phase": "planning", "code": "ROOF-2030", "budget_planned": 48000}
        )
        assert project.status_code == 200
        assert self.post(f"/api/resolutions/{resolution_id}/propose", "chair-1").status_code == 200

        # Substantive business waits for the procedural items
        opened = self.post("/api/votes", "chair-1", {"resolution_id": resolution_id, "kind": "GA"})
        assert opened.status_code == 201
        vote_id = opened.get_json()["id"]

        blocked = self.post(f"/api/votes/{vote_id}/close", "chair-1")
        assert blocked.status_code == 409
        assert blocked.get_json()["details"]["pending_items"] == [1, 2, 3]

        for item in procedural:
            approved = self.post(f"/api/resolutions/{item['resolutionId']}/approve", "chair-1")
            assert approved.status_code == 200
            assert approved.get_json()["status"] == "APPROVED"

        status = self.client.get(
            f"/api/meetings/{meeting_id}/procedural-status", headers=self.bearer("chair-1")
        ).get_json()
        assert status["completed"] is True

        # Six remote ballots, all FOR
        for user_id in REMOTE_VOTERS:
            cast = self.post(f"/api/votes/{vote_id}/ballots", user_id, {"choice": "FOR", "channel": "REMOTE"})
            assert cast.status_code == 200

        closed = self.post(f"/api/votes/{vote_id}/close", "chair-1")
        assert closed.status_code == 200
        result = closed.get_json()
        assert result["outcome"] == "APPROVED"
        assert result["resolution_status"] == "APPROVED"
        assert result["tally"] == {"for": 6, "against": 0, "abstain": 0}
        assert result["auto_abstained"] == 0

        published = [c.args[0] for c in self.events.publish_event.call_args_list]
        assert "vote.closed" in published

        # Indicator reporting on the approved project
        for user_id in ("owner-1", "resident-1"):
            denied = self.post(f"/api/resolutions/{resolution_id}/indicator", user_id, {"progress": 0.1})
            assert denied.status_code == 403

        board = self.post(f"/api/resolutions/{resolution_id}/indicator", "board-1", {"progress": 0.25})
        chair = self.post(f"/api/resolutions/{resolution_id}/indicator", "chair-1", {"budget_spent": 9000})
        assert board.status_code == 200
        assert chair.status_code == 200

        metadata = chair.get_json()["metadata"]
        assert metadata["indicator"]["progress"] == 0.25
        assert metadata["indicator"]["budget_spent"] == 9000
        assert metadata["project"]["code"] == "ROOF-2030"

    def test_bulk_close_in_agenda_order(self):
        created = self.create_meeting()
        meeting_id = created["meeting"]["id"]
        self.post(f"/api/meetings/{meeting_id}/attendance", "resident-1", {"mode": "REMOTE"})

        resolution_id = self.post(
            f"/api/meetings/{meeting_id}/agenda", "chair-1", {"title": "Kiemo tvora"}
        ).get_json()["resolution_id"]
        self.post(f"/api/resolutions/{resolution_id}/propose", "chair-1")
        substantive_vote = self.post("/api/votes", "chair-1", {"resolution_id": resolution_id}).get_json()["id"]
        self.post(f"/api/votes/{substantive_vote}/ballots", "resident-1", {"choice": "AGAINST", "channel": "REMOTE"})

        for item in created["agenda"]:
            vote_id = self.post("/api/votes", "chair-1", {"resolution_id": item["resolutionId"]}).get_json()["id"]
            self.post(f"/api/votes/{vote_id}/ballots", "resident-1", {"choice": "FOR", "channel": "REMOTE"})

        bulk = self.post(f"/api/meetings/{meeting_id}/votes/close", "chair-1")

        assert bulk.status_code == 200
        summary = bulk.get_json()
        assert summary["closed_count"] == 4
        assert summary["failed_count"] == 0
        assert [r["outcome"] for r in summary["results"]] == ["APPROVED", "APPROVED", "APPROVED", "REJECTED"]
        assert summary["results"][-1]["vote_id"] == substantive_vote

        again = self.post(f"/api/votes/{substantive_vote}/close", "chair-1").get_json()
        assert again["already_closed"] is True
        assert again["outcome"] == "REJECTED"

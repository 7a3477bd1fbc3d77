# -*- coding: utf-8 -*-
# SPDX-License-Identifier: Apache-2.0

"""
Tests for the membership directory service.
"""

import pytest

from domain.membership import INDICATOR_EDITORS, MEMBER_MANAGERS
from models.enums import Capability, MembershipRole, MemberStatus
from models.errors import ErrorCode, GovernanceAuthorizationError


class TestMembershipAccess:
    """Test membership resolution and capabilities."""

    def test_owner_access(self, governance, org):
        access = governance.membership.get_access(org.id, "owner-1")

        assert access.is_active_member
        assert access.membership_id == org.owner_membership_id
        assert Capability.OWNER in access.capabilities

    def test_board_from_position_title(self, governance, org):
        capabilities = governance.membership.get_capabilities(org.id, "board-1")

        assert capabilities == {Capability.MEMBER, Capability.BOARD}

    def test_board_chair_title_grants_board_only(self, governance, org):
        capabilities = governance.membership.get_capabilities(org.id, "chair-1")

        assert capabilities == {Capability.MEMBER, Capability.BOARD}

    def test_chair_role_without_position(self, governance, org, seed):
        seed.member(org.id, "chair-2", MembershipRole.CHAIR)

        assert governance.membership.get_capabilities(org.id, "chair-2") == {Capability.CHAIR, Capability.MEMBER}

    def test_chair_title_outside_board_grants_nothing(self, governance, org, seed):
        seed.position(org.id, "member-3", "Pirmininkas")

        assert governance.membership.get_capabilities(org.id, "member-3") == {Capability.MEMBER}

    def test_inactive_position_grants_nothing(self, governance, org, seed):
        seed.position(org.id, "member-1", "Valdybos narys", is_active=False)

        assert governance.membership.get_capabilities(org.id, "member-1") == {Capability.MEMBER}

    def test_legacy_position_without_category_is_classified(self, governance, org, mongo_service):
        mongo_service.create("positions", {
            "organizationId": org.id,
            "userId": "member-2",
            "title": "Tarybos narys",
            "isActive": True
        }, "seed")

        assert Capability.BOARD in governance.membership.get_capabilities(org.id, "member-2")

    def test_suspended_member_has_no_access(self, governance, org, seed):
        seed.member(org.id, "suspended-1", MembershipRole.OWNER, MemberStatus.SUSPENDED)
        seed.position(org.id, "suspended-1", "Valdybos narys")

        access = governance.membership.get_access(org.id, "suspended-1")

        assert not access.is_active_member
        assert access.capabilities == set()

    def test_require_capability_raises(self, governance, org):
        with pytest.raises(GovernanceAuthorizationError) as exc_info:
            governance.membership.require_capability(
                org.id, org.members[0].user, INDICATOR_EDITORS, "update indicators"
            )

        assert exc_info.value.required == ["BOARD", "CHAIR"]
        assert "update indicators" in exc_info.value.message

    def test_outsider_denied(self, governance, org):
        with pytest.raises(GovernanceAuthorizationError):
            governance.membership.require_capability(org.id, org.outsider, {Capability.MEMBER}, "vote")

    def test_counts(self, governance, org, seed):
        seed.member(org.id, "pending-1", status=MemberStatus.PENDING)

        assert governance.membership.count_active_members(org.id) == 6
        assert governance.membership.count_active_owners(org.id) == 1


class TestRemoveMember:
    """Test member removal and last-owner protection."""

    def test_remove_ordinary_member(self, governance, org, mongo_service):
        target = org.members[0].membership_id

        result = governance.membership.remove_member(org.id, target, org.owner)

        assert result.success
        assert result.data["member_status"] == "LEFT"
        assert mongo_service.find_by_id("memberships", target)["memberStatus"] == "LEFT"

    def test_sole_owner_cannot_be_removed(self, governance, org, mongo_service):
        before = mongo_service.find_by_id("memberships", org.owner_membership_id)

        result = governance.membership.remove_member(org.id, org.owner_membership_id, org.owner)

        assert not result.success
        assert result.error_code == ErrorCode.LAST_OWNER
        assert mongo_service.find_by_id("memberships", org.owner_membership_id) == before

    def test_second_owner_can_be_removed(self, governance, org, seed):
        second_owner = seed.member(org.id, "owner-2", MembershipRole.OWNER)

        result = governance.membership.remove_member(org.id, second_owner, org.owner)

        assert result.success
        assert governance.membership.count_active_owners(org.id) == 1

    def test_remove_twice(self, governance, org):
        target = org.members[1].membership_id
        governance.membership.remove_member(org.id, target, org.owner)

        result = governance.membership.remove_member(org.id, target, org.owner)

        assert result.error_code == ErrorCode.INVALID_STATUS_TRANSITION

    def test_unknown_membership(self, governance, org):
        result = governance.membership.remove_member(org.id, "5f0000000000000000000000", org.owner)

        assert result.error_code == ErrorCode.MEMBERSHIP_NOT_FOUND

    def test_board_member_cannot_remove_members(self, governance, org):
        with pytest.raises(GovernanceAuthorizationError) as exc_info:
            governance.membership.remove_member(org.id, org.members[0].membership_id, org.board)

        assert set(exc_info.value.required) == {c.value for c in MEMBER_MANAGERS}

    def test_removal_is_audited(self, governance, org):
        target = org.members[2].membership_id

        governance.membership.remove_member(org.id, target, org.owner)

        history = governance.audit.get_entity_history(org.id, target)
        assert [entry.action for entry in history] == ["remove"]


class TestPositions:
    """Test position assignment."""

    def test_assign_board_position(self, governance, org):
        result = governance.membership.assign_position(org.id, "member-3", "Valdybos narė", org.owner)

        assert result.success
        assert result.data["category"] == "BOARD_MEMBER"
        assert Capability.BOARD in governance.membership.get_capabilities(org.id, "member-3")

    def test_position_holder_must_be_member(self, governance, org):
        result = governance.membership.assign_position(org.id, "outsider-1", "Valdybos narys", org.owner)

        assert result.error_code == ErrorCode.MEMBERSHIP_NOT_FOUND

    def test_deactivate_position_removes_board(self, governance, org):
        assigned = governance.membership.assign_position(org.id, "member-1", "Board member", org.owner)

        result = governance.membership.deactivate_position(org.id, assigned.data["position_id"], org.owner)

        assert result.success
        assert Capability.BOARD not in governance.membership.get_capabilities(org.id, "member-1")

    def test_deactivate_unknown_position(self, governance, org):
        result = governance.membership.deactivate_position(org.id, "5f0000000000000000000000", org.owner)

        assert result.error_code == ErrorCode.POSITION_NOT_FOUND

# SPDX-License-Identifier: Apache-2.0

"""
Quorum arithmetic for meetings.

The result is advisory: it is shown with the meeting and never gates a state
transition. The uploaded protocol is the authoritative record.
"""

import math
from dataclasses import dataclass
from typing import Any, Dict, Iterable


@dataclass
class QuorumResult:
    """Quorum figures for one meeting."""
    total_active_members: int
    remote_voters: int
    live_attendees: int
    total_participants: int
    quorum_required: int
    quorum_met: bool

    @property
    def participation_rate(self) -> float:
        if self.total_active_members == 0:
            return 0.0
        return round(self.total_participants / self.total_active_members, 4)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "total_active_members": self.total_active_members,
            "remote_voters": self.remote_voters,
            "live_attendees": self.live_attendees,
            "total_participants": self.total_participants,
            "quorum_required": self.quorum_required,
            "quorum_met": self.quorum_met,
            "participation_rate": self.participation_rate,
        }


def calculate_quorum(
    total_active_members: int,
    remote_membership_ids: Iterable[str],
    present_membership_ids: Iterable[str]
) -> QuorumResult:
    """
    Calculate quorum from membership ids.

    Args:
        total_active_members: Number of ACTIVE memberships in the organization
        remote_membership_ids: Memberships registered to vote remotely
        present_membership_ids: In-person attendees marked present

    Returns:
        QuorumResult; members in both sets are counted once
    """
    remote = set(remote_membership_ids)
    present = set(present_membership_ids)
    participants = remote | present

    quorum_required = math.ceil(total_active_members / 2)

    return QuorumResult(
        total_active_members=total_active_members,
        remote_voters=len(remote),
        live_attendees=len(present),
        total_participants=len(participants),
        quorum_required=quorum_required,
        quorum_met=len(participants) >= quorum_required
    )

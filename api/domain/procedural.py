# SPDX-License-Identifier: Apache-2.0

"""
Procedural agenda items of a General Assembly.

Items 1-3 are fixed, system-generated decisions (agenda approval, chair
election, secretary election). Substantive business starts at item 4 and its
outcome may only be applied once all three procedural resolutions are
APPROVED.
"""

from dataclasses import dataclass, field
from typing import List, Dict, Any, Optional

from models.enums import ResolutionStatus


PROCEDURAL_ITEM_NUMBERS = (1, 2, 3)
FIRST_SUBSTANTIVE_ITEM_NO = 4

PROCEDURAL_TEMPLATES = {
    1: {
        "key": "agenda_approval",
        "title": "Darbotvarkės tvirtinimas",
        "content": "Tvirtinti susirinkimo darbotvarkę.",
    },
    2: {
        "key": "chair_election",
        "title": "Susirinkimo pirmininko rinkimas/tvirtinimas",
        "content": "Išrinkti susirinkimo pirmininką.",
    },
    3: {
        "key": "secretary_election",
        "title": "Susirinkimo sekretoriaus rinkimas/tvirtinimas",
        "content": "Išrinkti susirinkimo sekretorių.",
    },
}


@dataclass
class ProceduralItemState:
    """State of one procedural item."""
    item_no: int
    key: str
    resolution_id: Optional[str] = None
    resolution_status: Optional[str] = None

    @property
    def approved(self) -> bool:
        return self.resolution_status == ResolutionStatus.APPROVED.value


@dataclass
class ProceduralSequenceStatus:
    """Result of the procedural sequence check."""
    completed: bool
    missing_items: List[int] = field(default_factory=list)
    unapproved_items: List[int] = field(default_factory=list)
    items: List[ProceduralItemState] = field(default_factory=list)

    @property
    def pending_items(self) -> List[int]:
        return sorted(set(self.missing_items) | set(self.unapproved_items))

    def describe(self) -> str:
        if self.completed:
            return "Procedural items 1-3 are approved"
        parts = []
        if self.missing_items:
            parts.append("missing: " + ", ".join(str(n) for n in self.missing_items))
        if self.unapproved_items:
            parts.append("not approved: " + ", ".join(str(n) for n in self.unapproved_items))
        return "Procedural sequence incomplete (" + "; ".join(parts) + ")"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "completed": self.completed,
            "pending_items": self.pending_items,
            "missing_items": self.missing_items,
            "unapproved_items": self.unapproved_items,
            "items": [
                {
                    "item_no": state.item_no,
                    "key": state.key,
                    "resolution_id": state.resolution_id,
                    "resolution_status": state.resolution_status,
                    "approved": state.approved,
                }
                for state in self.items
            ],
        }


def is_procedural_item(item_no: int) -> bool:
    return item_no in PROCEDURAL_ITEM_NUMBERS


def evaluate_procedural_sequence(
    agenda_items: List[Dict[str, Any]],
    resolution_statuses: Dict[str, str]
) -> ProceduralSequenceStatus:
    """
    Evaluate whether items 1-3 are present and approved.

    Args:
        agenda_items: Agenda item documents of the meeting
        resolution_statuses: Resolution id to status for linked resolutions

    Returns:
        ProceduralSequenceStatus listing the missing and unapproved item numbers
    """
    by_number = {item.get("itemNo"): item for item in agenda_items}
    missing = []
    unapproved = []
    states = []

    for item_no in PROCEDURAL_ITEM_NUMBERS:
        template = PROCEDURAL_TEMPLATES[item_no]
        item = by_number.get(item_no)
        resolution_id = item.get("resolutionId") if item else None
        status = resolution_statuses.get(resolution_id) if resolution_id else None

        state = ProceduralItemState(
            item_no=item_no,
            key=template["key"],
            resolution_id=resolution_id,
            resolution_status=status
        )
        states.append(state)

        if item is None or status is None:
            missing.append(item_no)
        elif not state.approved:
            unapproved.append(item_no)

    return ProceduralSequenceStatus(
        completed=not missing and not unapproved,
        missing_items=missing,
        unapproved_items=unapproved,
        items=states
    )


def find_procedural_drift(
    agenda_items: List[Dict[str, Any]],
    existing_resolution_ids: List[str]
) -> Dict[int, Optional[Dict[str, Any]]]:
    """
    Find procedural items that need repair.

    Returns:
        Mapping of item number to the existing agenda item document (None when
        the item itself is missing) for every item without a live resolution
    """
    existing = set(existing_resolution_ids)
    by_number = {item.get("itemNo"): item for item in agenda_items}
    drift = {}

    for item_no in PROCEDURAL_ITEM_NUMBERS:
        item = by_number.get(item_no)
        if item is None:
            drift[item_no] = None
        elif item.get("resolutionId") not in existing:
            drift[item_no] = item

    return drift


def next_substantive_item_no(agenda_items: List[Dict[str, Any]]) -> int:
    numbers = [item.get("itemNo", 0) for item in agenda_items]
    return max([FIRST_SUBSTANTIVE_ITEM_NO - 1] + numbers) + 1

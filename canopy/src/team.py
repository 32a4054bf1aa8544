"""Team listing and leader lookup.

A participant's team is everyone registered directly under their code,
whatever their role. Sorting happens in memory so any combination of
campaign filter and sort key works the same way.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from datetime import datetime
from functools import cmp_to_key
from typing import Any

from canopy.src.models import Participant

SORT_FIELDS = ("name", "phone_number", "city", "created_at", "team_size")


@dataclass
class TeamMember:
    """A direct recruit as shown in a leader's team list."""

    id: str
    name: str
    phone_number: str
    city: str
    department: str
    neighborhood: str
    latitude: float | None
    longitude: float | None
    created_at: datetime
    team_size: int

    @classmethod
    def from_participant(cls, participant: Participant) -> TeamMember:
        return cls(
            id=participant.id,
            name=participant.name,
            phone_number=participant.phone_number,
            city=participant.city,
            department=participant.department,
            neighborhood=participant.neighborhood,
            latitude=participant.latitude,
            longitude=participant.longitude,
            created_at=participant.created_at,
            team_size=participant.participants,
        )

    def to_dict(self) -> dict[str, Any]:
        """Serialize to dictionary."""
        return {
            "id": self.id,
            "name": self.name,
            "phone_number": self.phone_number,
            "city": self.city,
            "department": self.department,
            "neighborhood": self.neighborhood,
            "latitude": self.latitude,
            "longitude": self.longitude,
            "created_at": self.created_at.isoformat(),
            "team_size": self.team_size,
        }


def list_team(
    participants: Iterable[Participant],
    leader_id: str,
    campaign_id: str | None = None,
    sort_by: str = "created_at",
    sort_order: str = "desc",
    limit: int | None = None,
) -> list[TeamMember]:
    """List the direct recruits of a leader.

    Args:
        participants: Candidate participants.
        leader_id: The leader whose team to list.
        campaign_id: Restrict to members registered in this campaign.
        sort_by: One of ``SORT_FIELDS``.
        sort_order: "asc" or "desc".
        limit: Maximum number of members, applied after sorting.

    Returns:
        Sorted list of TeamMember.

    Raises:
        ValueError: On an unknown sort field or order.
    """
    if sort_by not in SORT_FIELDS:
        raise ValueError(f"Unknown sort field '{sort_by}'")
    if sort_order not in ("asc", "desc"):
        raise ValueError(f"Unknown sort order '{sort_order}'")

    members = [
        TeamMember.from_participant(p)
        for p in participants
        if p.leader_id == leader_id
        and p.id != leader_id
        and (campaign_id is None or campaign_id in p.campaign_ids)
    ]

    ascending = sort_order == "asc"

    def compare(a: TeamMember, b: TeamMember) -> int:
        a_value = _sort_value(getattr(a, sort_by))
        b_value = _sort_value(getattr(b, sort_by))

        # Missing values go last ascending, first descending
        if a_value is None and b_value is None:
            return 0
        if a_value is None:
            return 1 if ascending else -1
        if b_value is None:
            return -1 if ascending else 1

        if a_value < b_value:
            result = -1
        elif a_value > b_value:
            result = 1
        else:
            result = 0
        return result if ascending else -result

    members.sort(key=cmp_to_key(compare))

    if limit:
        members = members[:limit]
    return members


def _sort_value(value: Any) -> Any:
    if isinstance(value, str):
        return value.lower() if value else None
    return value


def find_leader(
    participants: Iterable[Participant],
    participant_id: str,
) -> Participant | None:
    """Return the leader of a participant, or None.

    Args:
        participants: Candidate participants (must include both records).
        participant_id: The participant whose leader to look up.

    Returns:
        The leader's record, or None when the participant is unknown,
        has no leader, or the leader is not in ``participants``.
    """
    by_id = {p.id: p for p in participants}
    participant = by_id.get(participant_id)
    if participant is None or not participant.leader_id:
        return None
    return by_id.get(participant.leader_id)

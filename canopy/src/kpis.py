"""Campaign KPIs and participant distributions for dashboards.

Computes the headline numbers shown for a selection of campaigns and the
per-dimension breakdowns (department, city, role, ...) behind the
dashboard charts. Pure functions over already-fetched records.
"""

from __future__ import annotations

from collections import Counter
from collections.abc import Iterable, Sequence
from dataclasses import asdict, dataclass, field
from datetime import datetime
from typing import Any

from canopy.src.models import Campaign, CampaignStatus, Participant

UNSPECIFIED = "Unspecified"

DIMENSIONS = ("department", "city", "role", "area_type", "gender", "profession")


@dataclass
class ParticipantsByStatus:
    """Registered participants summed per campaign status."""

    active: int = 0
    inactive: int = 0
    completed: int = 0


@dataclass
class CampaignKPIs:
    """Headline metrics for a campaign selection.

    Attributes:
        total_campaigns: Number of campaigns selected.
        total_participants: Registrations across all selected campaigns.
        active_campaigns: Campaigns with status active.
        inactive_campaigns: Campaigns with status inactive.
        average_participants_per_campaign: Mean registrations, 2 decimals.
        total_active_participants: Registrations in active campaigns only.
        campaigns_in_progress: Active campaigns whose date window contains now.
        campaigns_completed: Campaigns with status completed.
        campaigns_not_started: Campaigns whose start date is in the future.
        participants_by_status: Registrations summed per status.
    """

    total_campaigns: int = 0
    total_participants: int = 0
    active_campaigns: int = 0
    inactive_campaigns: int = 0
    average_participants_per_campaign: float = 0.0
    total_active_participants: int = 0
    campaigns_in_progress: int = 0
    campaigns_completed: int = 0
    campaigns_not_started: int = 0
    participants_by_status: ParticipantsByStatus = field(
        default_factory=ParticipantsByStatus
    )

    def to_dict(self) -> dict[str, Any]:
        """Serialize to dictionary."""
        return asdict(self)


@dataclass
class DistributionEntry:
    """One bar or slice of a distribution chart."""

    label: str
    count: int
    percentage: float

    def to_dict(self) -> dict[str, Any]:
        """Serialize to dictionary."""
        return {"label": self.label, "count": self.count, "percentage": self.percentage}


def compute_campaign_kpis(
    campaigns: Sequence[Campaign],
    now: datetime | None = None,
) -> CampaignKPIs:
    """Compute headline KPIs for the selected campaigns.

    Args:
        campaigns: Selected campaigns.
        now: Reference time for date-window metrics (defaults to now).

    Returns:
        CampaignKPIs; all zeros for an empty selection.
    """
    if not campaigns:
        return CampaignKPIs()

    now = now or datetime.now()
    by_status = ParticipantsByStatus()

    for campaign in campaigns:
        if campaign.status == CampaignStatus.ACTIVE:
            by_status.active += campaign.participants
        elif campaign.status == CampaignStatus.INACTIVE:
            by_status.inactive += campaign.participants
        elif campaign.status == CampaignStatus.COMPLETED:
            by_status.completed += campaign.participants

    in_progress = [
        c
        for c in campaigns
        if c.status == CampaignStatus.ACTIVE
        and c.start_date is not None
        and c.end_date is not None
        and c.start_date <= now <= c.end_date
    ]
    not_started = [c for c in campaigns if c.start_date is not None and now < c.start_date]

    total_participants = sum(c.participants for c in campaigns)

    return CampaignKPIs(
        total_campaigns=len(campaigns),
        total_participants=total_participants,
        active_campaigns=_count_status(campaigns, CampaignStatus.ACTIVE),
        inactive_campaigns=_count_status(campaigns, CampaignStatus.INACTIVE),
        average_participants_per_campaign=round(total_participants / len(campaigns), 2),
        total_active_participants=by_status.active,
        campaigns_in_progress=len(in_progress),
        campaigns_completed=_count_status(campaigns, CampaignStatus.COMPLETED),
        campaigns_not_started=len(not_started),
        participants_by_status=by_status,
    )


def _count_status(campaigns: Sequence[Campaign], status: CampaignStatus) -> int:
    return len([c for c in campaigns if c.status == status])


def distribution(
    participants: Iterable[Participant],
    dimension: str,
) -> list[DistributionEntry]:
    """Break participants down by one profile dimension.

    Args:
        participants: Participants to count.
        dimension: One of ``DIMENSIONS``.

    Returns:
        Entries sorted by count (descending) then label. Missing values
        are grouped under ``UNSPECIFIED``.

    Raises:
        ValueError: If the dimension is not supported.
    """
    if dimension not in DIMENSIONS:
        raise ValueError(
            f"Unsupported dimension '{dimension}'. Choose from: {', '.join(DIMENSIONS)}"
        )

    counts = Counter(_dimension_value(p, dimension) for p in participants)
    total = sum(counts.values())
    if total == 0:
        return []

    entries = [
        DistributionEntry(
            label=label,
            count=count,
            percentage=round(count / total * 100, 1),
        )
        for label, count in counts.items()
    ]
    entries.sort(key=lambda e: (-e.count, e.label))
    return entries


def _dimension_value(participant: Participant, dimension: str) -> str:
    value = getattr(participant, dimension)
    if hasattr(value, "value"):
        value = value.value
    if value is None:
        return UNSPECIFIED
    text = str(value).strip()
    return text or UNSPECIFIED

"""Shared fixtures for Canopy tests."""

from __future__ import annotations

from datetime import datetime

import pytest

from canopy.src.models import AreaType, Campaign, CampaignStatus, Participant, Role
from canopy.src.storage import CanopyStorage


@pytest.fixture
def memory_store() -> CanopyStorage:
    """In-memory CanopyStorage with schema initialized."""
    store = CanopyStorage(":memory:")
    store.initialize_schema()
    return store


@pytest.fixture
def sample_campaign() -> Campaign:
    """An active campaign running through 2026."""
    return Campaign(
        id="camp_test001",
        name="Spring Drive",
        description="Neighbourhood outreach",
        start_date=datetime(2026, 1, 1),
        end_date=datetime(2026, 12, 31),
        status=CampaignStatus.ACTIVE,
    )


@pytest.fixture
def second_campaign() -> Campaign:
    """A second campaign for multi-campaign selections."""
    return Campaign(
        id="camp_test002",
        name="Autumn Drive",
        start_date=datetime(2026, 9, 1),
        end_date=datetime(2026, 11, 30),
        status=CampaignStatus.ACTIVE,
    )


@pytest.fixture
def sample_leader() -> Participant:
    """A multiplier with full profile data."""
    return Participant(
        id="user_leader01",
        name="Ana Torres",
        role=Role.MULTIPLIER,
        phone_number="+573001234567",
        document_number="1012345678",
        country="Colombia",
        department="Antioquia",
        city="Medellin",
        address="Calle 10 # 20-30",
        neighborhood="El Poblado",
        area_type=AreaType.URBAN,
        gender="F",
        profession="Teacher",
        created_at=datetime(2026, 2, 1, 9, 30),
    )


@pytest.fixture
def small_team() -> list[Participant]:
    """A with sub-multiplier B and follower C; B with follower D."""
    return [
        Participant(id="A", name="Multiplier A", role=Role.MULTIPLIER),
        Participant(id="B", name="Multiplier B", role=Role.MULTIPLIER, leader_id="A"),
        Participant(id="C", name="Follower C", role=Role.FOLLOWER, leader_id="A"),
        Participant(id="D", name="Follower D", role=Role.FOLLOWER, leader_id="B"),
    ]

"""Tests for CanopyStorage."""

from __future__ import annotations

import logging
import sqlite3
from datetime import datetime

import pytest

from canopy.src.models import (
    Campaign,
    CampaignStatus,
    MultiplierRequestStatus,
    Participant,
    Role,
)
from canopy.src.storage import CanopyStorage, CanopyStorageError


def _person(pid: str, role: Role = Role.FOLLOWER, leader_id: str | None = None) -> Participant:
    return Participant(id=pid, name=f"Person {pid}", role=role, leader_id=leader_id)


# ===================================================================
# Campaigns
# ===================================================================


class TestCampaignCrud:
    """Tests for campaign CRUD."""

    def test_create_and_get(self, memory_store, sample_campaign):
        memory_store.create_campaign(sample_campaign)
        fetched = memory_store.get_campaign(sample_campaign.id)
        assert fetched is not None
        assert fetched.name == "Spring Drive"
        assert fetched.start_date == datetime(2026, 1, 1)

    def test_duplicate_raises(self, memory_store, sample_campaign):
        memory_store.create_campaign(sample_campaign)
        with pytest.raises(CanopyStorageError, match="already exists"):
            memory_store.create_campaign(sample_campaign)

    def test_get_missing(self, memory_store):
        assert memory_store.get_campaign("camp_nope") is None

    def test_list_by_ids_keeps_order(self, memory_store, sample_campaign, second_campaign):
        memory_store.create_campaign(sample_campaign)
        memory_store.create_campaign(second_campaign)
        listed = memory_store.list_campaigns(
            campaign_ids=[second_campaign.id, "camp_missing", sample_campaign.id]
        )
        assert [c.id for c in listed] == [second_campaign.id, sample_campaign.id]

    def test_list_by_status(self, memory_store, sample_campaign, second_campaign):
        second_campaign.status = CampaignStatus.COMPLETED
        memory_store.create_campaign(sample_campaign)
        memory_store.create_campaign(second_campaign)
        listed = memory_store.list_campaigns(status=CampaignStatus.COMPLETED)
        assert [c.id for c in listed] == [second_campaign.id]

    def test_update(self, memory_store, sample_campaign):
        memory_store.create_campaign(sample_campaign)
        sample_campaign.name = "Renamed"
        memory_store.update_campaign(sample_campaign)
        assert memory_store.get_campaign(sample_campaign.id).name == "Renamed"

    def test_update_missing_raises(self, memory_store):
        with pytest.raises(CanopyStorageError, match="not found"):
            memory_store.update_campaign(Campaign(id="camp_ghost", name="Ghost"))

    def test_delete(self, memory_store, sample_campaign):
        memory_store.create_campaign(sample_campaign)
        assert memory_store.delete_campaign(sample_campaign.id) is True
        assert memory_store.delete_campaign(sample_campaign.id) is False


# ===================================================================
# Participants
# ===================================================================


class TestParticipantCrud:
    """Tests for participant CRUD."""

    def test_create_and_get(self, memory_store, sample_leader):
        memory_store.create_participant(sample_leader)
        fetched = memory_store.get_participant(sample_leader.id)
        assert fetched == sample_leader

    def test_duplicate_raises(self, memory_store, sample_leader):
        memory_store.create_participant(sample_leader)
        with pytest.raises(CanopyStorageError):
            memory_store.create_participant(sample_leader)

    def test_update(self, memory_store, sample_leader):
        memory_store.create_participant(sample_leader)
        sample_leader.city = "Envigado"
        memory_store.update_participant(sample_leader)
        assert memory_store.get_participant(sample_leader.id).city == "Envigado"

    def test_update_missing_raises(self, memory_store):
        with pytest.raises(CanopyStorageError):
            memory_store.update_participant(_person("ghost"))

    def test_delete(self, memory_store, sample_leader):
        memory_store.create_participant(sample_leader)
        assert memory_store.delete_participant(sample_leader.id) is True
        assert memory_store.get_participant(sample_leader.id) is None

    def test_context_manager(self, tmp_path):
        db_path = tmp_path / "canopy.db"
        with CanopyStorage(db_path) as store:
            store.initialize_schema()
            store.create_participant(_person("p1"))
        with CanopyStorage(db_path) as store:
            assert store.get_participant("p1") is not None


# ===================================================================
# Registration
# ===================================================================


class TestRegisterParticipant:
    """Tests for registration bookkeeping."""

    def test_register_into_campaign(self, memory_store, sample_campaign, sample_leader):
        memory_store.create_campaign(sample_campaign)
        memory_store.register_participant(sample_leader, campaign_id=sample_campaign.id)
        recruit = memory_store.register_participant(
            _person("r1", leader_id=sample_leader.id), campaign_id=sample_campaign.id
        )
        assert recruit.campaign_ids == [sample_campaign.id]
        assert memory_store.get_campaign(sample_campaign.id).participants == 2
        assert memory_store.get_participant(sample_leader.id).participants == 1

    def test_repeat_registration_changes_no_counters(
        self, memory_store, sample_campaign, sample_leader
    ):
        memory_store.create_campaign(sample_campaign)
        memory_store.register_participant(sample_leader, campaign_id=sample_campaign.id)
        recruit = _person("r1", leader_id=sample_leader.id)
        memory_store.register_participant(recruit, campaign_id=sample_campaign.id)
        memory_store.register_participant(
            _person("r1", leader_id=sample_leader.id), campaign_id=sample_campaign.id
        )
        assert memory_store.get_campaign(sample_campaign.id).participants == 2
        assert memory_store.get_participant(sample_leader.id).participants == 1

    def test_second_campaign_adds_membership(
        self, memory_store, sample_campaign, second_campaign, sample_leader
    ):
        memory_store.create_campaign(sample_campaign)
        memory_store.create_campaign(second_campaign)
        memory_store.register_participant(sample_leader, campaign_id=sample_campaign.id)
        memory_store.register_participant(
            _person("r1", leader_id=sample_leader.id), campaign_id=sample_campaign.id
        )
        stored = memory_store.register_participant(
            _person("r1", leader_id=sample_leader.id), campaign_id=second_campaign.id
        )
        assert stored.campaign_ids == [sample_campaign.id, second_campaign.id]
        assert memory_store.get_campaign(second_campaign.id).participants == 1

    def test_merge_keeps_created_at_and_counter(self, memory_store, sample_leader):
        memory_store.register_participant(sample_leader)
        memory_store.register_participant(_person("r1", leader_id=sample_leader.id))
        updated = Participant(id=sample_leader.id, name="Ana T.", role=Role.MULTIPLIER)
        stored = memory_store.register_participant(updated)
        assert stored.name == "Ana T."
        assert stored.created_at == sample_leader.created_at
        assert stored.participants == 1

    def test_unknown_campaign_raises(self, memory_store, sample_leader):
        with pytest.raises(CanopyStorageError, match="Campaign not found"):
            memory_store.register_participant(sample_leader, campaign_id="camp_ghost")
        assert memory_store.get_participant(sample_leader.id) is None

    def test_missing_leader_logged(self, memory_store, caplog):
        with caplog.at_level(logging.WARNING):
            memory_store.register_participant(_person("r1", leader_id="ghost"))
        assert "ghost" in caplog.text

    def test_self_leader_not_counted(self, memory_store):
        stored = memory_store.register_participant(_person("s", Role.MULTIPLIER, leader_id="s"))
        assert stored.participants == 0

    def test_promote(self, memory_store):
        memory_store.register_participant(_person("f1"))
        promoted = memory_store.promote_to_multiplier("f1")
        assert promoted.role == Role.MULTIPLIER
        assert memory_store.get_participant("f1").role == Role.MULTIPLIER

    def test_promote_missing_raises(self, memory_store):
        with pytest.raises(CanopyStorageError):
            memory_store.promote_to_multiplier("ghost")

    def test_failed_registration_rolls_back(self, memory_store, sample_campaign, sample_leader):
        memory_store.create_campaign(sample_campaign)
        memory_store.register_participant(sample_leader)
        memory_store.connection.execute(
            "CREATE TRIGGER fail_campaign_counter BEFORE UPDATE OF participants ON campaigns "
            "BEGIN SELECT RAISE(ABORT, 'counter update failed'); END"
        )

        with pytest.raises(sqlite3.Error, match="counter update failed"):
            memory_store.register_participant(
                _person("r1", leader_id=sample_leader.id), campaign_id=sample_campaign.id
            )

        assert memory_store.get_participant("r1") is None
        assert memory_store.list_participants_for_campaigns([sample_campaign.id]) == []
        assert memory_store.get_campaign(sample_campaign.id).participants == 0
        assert memory_store.get_participant(sample_leader.id).participants == 0

        # The connection is usable again once the failure is gone
        memory_store.connection.execute("DROP TRIGGER fail_campaign_counter")
        memory_store.register_participant(
            _person("r1", leader_id=sample_leader.id), campaign_id=sample_campaign.id
        )
        assert memory_store.get_participant(sample_leader.id).participants == 1

    def test_connection_property(self, memory_store):
        assert isinstance(memory_store.connection, sqlite3.Connection)
        assert memory_store.connection.execute("SELECT 1").fetchone()[0] == 1


# ===================================================================
# Queries
# ===================================================================


class TestParticipantQueries:
    """Tests for the list queries the builder consumes."""

    def test_dedupe_across_campaigns(self, memory_store, sample_campaign, second_campaign):
        memory_store.create_campaign(sample_campaign)
        memory_store.create_campaign(second_campaign)
        memory_store.register_participant(_person("a", Role.MULTIPLIER), sample_campaign.id)
        memory_store.register_participant(_person("b", leader_id="a"), sample_campaign.id)
        memory_store.register_participant(_person("c", leader_id="a"), second_campaign.id)
        memory_store.register_participant(_person("a", Role.MULTIPLIER), second_campaign.id)

        listed = memory_store.list_participants_for_campaigns(
            [sample_campaign.id, second_campaign.id]
        )
        assert [p.id for p in listed] == ["a", "b", "c"]

    def test_campaign_order_decides_first_seen(
        self, memory_store, sample_campaign, second_campaign
    ):
        memory_store.create_campaign(sample_campaign)
        memory_store.create_campaign(second_campaign)
        memory_store.register_participant(_person("a"), sample_campaign.id)
        memory_store.register_participant(_person("b"), second_campaign.id)
        memory_store.register_participant(_person("a"), second_campaign.id)

        listed = memory_store.list_participants_for_campaigns(
            [second_campaign.id, sample_campaign.id]
        )
        assert [p.id for p in listed] == ["b", "a"]

    def test_no_campaigns(self, memory_store):
        assert memory_store.list_participants_for_campaigns([]) == []

    def test_get_recruits(self, memory_store):
        memory_store.register_participant(_person("L", Role.MULTIPLIER))
        memory_store.register_participant(_person("r1", leader_id="L"))
        memory_store.register_participant(_person("r2", Role.MULTIPLIER, leader_id="L"))
        memory_store.register_participant(_person("x", leader_id="other"))
        assert {p.id for p in memory_store.get_recruits("L")} == {"r1", "r2"}


# ===================================================================
# Multiplier requests
# ===================================================================


def _seed_requests(store: CanopyStorage, campaign: Campaign, leader: Participant) -> None:
    store.create_campaign(campaign)
    store.register_participant(leader, campaign_id=campaign.id)
    store.register_participant(
        Participant(
            id="f1", name="Felipe Ruiz", phone_number="+573005550001", leader_id=leader.id
        ),
        campaign_id=campaign.id,
    )
    store.register_participant(_person("f2", leader_id="someone_else"), campaign_id=campaign.id)


class TestMultiplierRequests:
    """Tests for filing and reviewing multiplier requests."""

    def test_create_copies_names(self, memory_store, sample_campaign, sample_leader):
        _seed_requests(memory_store, sample_campaign, sample_leader)
        request = memory_store.create_multiplier_request("f1", sample_campaign.id)
        assert request.id.startswith("mreq_")
        assert request.is_pending
        assert request.participant_name == "Felipe Ruiz"
        assert request.phone_number == "+573005550001"
        assert request.campaign_name == "Spring Drive"
        assert memory_store.get_multiplier_request(request.id) == request

    def test_unknown_participant_or_campaign(self, memory_store, sample_campaign, sample_leader):
        _seed_requests(memory_store, sample_campaign, sample_leader)
        with pytest.raises(CanopyStorageError, match="Participant not found"):
            memory_store.create_multiplier_request("ghost", sample_campaign.id)
        with pytest.raises(CanopyStorageError, match="Campaign not found"):
            memory_store.create_multiplier_request("f1", "camp_ghost")

    def test_only_followers_may_ask(self, memory_store, sample_campaign, sample_leader):
        _seed_requests(memory_store, sample_campaign, sample_leader)
        with pytest.raises(CanopyStorageError, match="Only followers"):
            memory_store.create_multiplier_request(sample_leader.id, sample_campaign.id)

    def test_second_pending_request_refused(self, memory_store, sample_campaign, sample_leader):
        _seed_requests(memory_store, sample_campaign, sample_leader)
        memory_store.create_multiplier_request("f1", sample_campaign.id)
        with pytest.raises(CanopyStorageError, match="already pending"):
            memory_store.create_multiplier_request("f1", sample_campaign.id)

    def test_rejected_participant_may_ask_again(
        self, memory_store, sample_campaign, sample_leader
    ):
        _seed_requests(memory_store, sample_campaign, sample_leader)
        first = memory_store.create_multiplier_request("f1", sample_campaign.id)
        memory_store.reject_multiplier_request(first.id, "admin")
        second = memory_store.create_multiplier_request("f1", sample_campaign.id)
        assert second.id != first.id
        assert memory_store.find_multiplier_request("f1", sample_campaign.id).id == second.id

    def test_approve_promotes(self, memory_store, sample_campaign, sample_leader):
        _seed_requests(memory_store, sample_campaign, sample_leader)
        request = memory_store.create_multiplier_request("f1", sample_campaign.id)

        approved = memory_store.approve_multiplier_request(request.id, "admin", "Admin Ana")

        assert approved.status == MultiplierRequestStatus.APPROVED
        assert approved.reviewed_by == "admin"
        assert approved.reviewer_name == "Admin Ana"
        assert approved.reviewed_at is not None
        assert memory_store.get_participant("f1").role == Role.MULTIPLIER

    def test_reject_keeps_role(self, memory_store, sample_campaign, sample_leader):
        _seed_requests(memory_store, sample_campaign, sample_leader)
        request = memory_store.create_multiplier_request("f1", sample_campaign.id)

        rejected = memory_store.reject_multiplier_request(
            request.id, "admin", rejection_reason="Too early"
        )

        assert rejected.status == MultiplierRequestStatus.REJECTED
        assert rejected.rejection_reason == "Too early"
        assert memory_store.get_participant("f1").role == Role.FOLLOWER

    @pytest.mark.parametrize("first", ["approve", "reject"])
    @pytest.mark.parametrize("second", ["approve", "reject"])
    def test_second_review_refused(
        self, memory_store, sample_campaign, sample_leader, first, second
    ):
        _seed_requests(memory_store, sample_campaign, sample_leader)
        request = memory_store.create_multiplier_request("f1", sample_campaign.id)
        getattr(memory_store, f"{first}_multiplier_request")(request.id, "admin")
        expected = memory_store.get_multiplier_request(request.id)

        with pytest.raises(CanopyStorageError, match="already"):
            getattr(memory_store, f"{second}_multiplier_request")(request.id, "other_admin")

        assert memory_store.get_multiplier_request(request.id) == expected
        role = Role.MULTIPLIER if first == "approve" else Role.FOLLOWER
        assert memory_store.get_participant("f1").role == role

    def test_approved_participant_cannot_ask_again(
        self, memory_store, sample_campaign, sample_leader
    ):
        _seed_requests(memory_store, sample_campaign, sample_leader)
        request = memory_store.create_multiplier_request("f1", sample_campaign.id)
        memory_store.approve_multiplier_request(request.id, "admin")
        with pytest.raises(CanopyStorageError):
            memory_store.create_multiplier_request("f1", sample_campaign.id)

    def test_review_missing_request(self, memory_store):
        with pytest.raises(CanopyStorageError, match="not found"):
            memory_store.approve_multiplier_request("mreq_ghost", "admin")
        with pytest.raises(CanopyStorageError, match="not found"):
            memory_store.reject_multiplier_request("mreq_ghost", "admin")

    def test_failed_promotion_rolls_back_approval(
        self, memory_store, sample_campaign, sample_leader
    ):
        _seed_requests(memory_store, sample_campaign, sample_leader)
        request = memory_store.create_multiplier_request("f1", sample_campaign.id)
        memory_store.connection.execute(
            "CREATE TRIGGER fail_promotion BEFORE UPDATE OF role ON participants "
            "BEGIN SELECT RAISE(ABORT, 'promotion failed'); END"
        )

        with pytest.raises(sqlite3.Error, match="promotion failed"):
            memory_store.approve_multiplier_request(request.id, "admin")

        assert memory_store.get_multiplier_request(request.id).is_pending
        assert memory_store.get_participant("f1").role == Role.FOLLOWER

    def test_list_pending_by_default(self, memory_store, sample_campaign, sample_leader):
        _seed_requests(memory_store, sample_campaign, sample_leader)
        r1 = memory_store.create_multiplier_request("f1", sample_campaign.id)
        r2 = memory_store.create_multiplier_request("f2", sample_campaign.id)
        memory_store.reject_multiplier_request(r2.id, "admin")

        pending = memory_store.list_multiplier_requests(sample_campaign.id)
        assert [r.id for r in pending] == [r1.id]

        everything = memory_store.list_multiplier_requests(sample_campaign.id, status=None)
        assert [r.id for r in everything] == [r1.id, r2.id]

    def test_list_by_reviewer(self, memory_store, sample_campaign, sample_leader):
        _seed_requests(memory_store, sample_campaign, sample_leader)
        r1 = memory_store.create_multiplier_request("f1", sample_campaign.id)
        memory_store.create_multiplier_request("f2", sample_campaign.id)

        mine = memory_store.list_multiplier_requests(
            sample_campaign.id, reviewer_id=sample_leader.id
        )
        assert [r.id for r in mine] == [r1.id]

    def test_list_other_campaign_empty(
        self, memory_store, sample_campaign, second_campaign, sample_leader
    ):
        _seed_requests(memory_store, sample_campaign, sample_leader)
        memory_store.create_campaign(second_campaign)
        memory_store.create_multiplier_request("f1", sample_campaign.id)
        assert memory_store.list_multiplier_requests(second_campaign.id) == []

"""SQLite-backed storage for Canopy campaigns and participants.

Provides CRUD operations, registration bookkeeping (campaign and leader
counters), the deduplicated participant list the hierarchy builder
consumes, and the review workflow for multiplier requests.
"""

from __future__ import annotations

import logging
import sqlite3
from collections.abc import Sequence
from datetime import datetime
from pathlib import Path
from typing import Any

from canopy.src.models import (
    AreaType,
    Campaign,
    CampaignStatus,
    MultiplierRequest,
    MultiplierRequestStatus,
    Participant,
    Role,
)

logger = logging.getLogger(__name__)

_SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS campaigns (
    id TEXT PRIMARY KEY,
    name TEXT NOT NULL,
    description TEXT DEFAULT '',
    start_date TEXT,
    end_date TEXT,
    status TEXT NOT NULL DEFAULT 'active',
    participants INTEGER NOT NULL DEFAULT 0,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS participants (
    id TEXT PRIMARY KEY,
    name TEXT NOT NULL DEFAULT '',
    role TEXT NOT NULL,
    leader_id TEXT,
    participants INTEGER NOT NULL DEFAULT 0,
    phone_number TEXT DEFAULT '',
    document_number TEXT DEFAULT '',
    country TEXT DEFAULT '',
    department TEXT DEFAULT '',
    city TEXT DEFAULT '',
    address TEXT DEFAULT '',
    neighborhood TEXT DEFAULT '',
    latitude REAL,
    longitude REAL,
    area_type TEXT,
    from_capital_city INTEGER DEFAULT 0,
    gender TEXT DEFAULT '',
    profession TEXT DEFAULT '',
    created_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS participant_campaigns (
    seq INTEGER PRIMARY KEY AUTOINCREMENT,
    participant_id TEXT NOT NULL,
    campaign_id TEXT NOT NULL,
    joined_at TEXT NOT NULL,
    UNIQUE (participant_id, campaign_id),
    FOREIGN KEY (participant_id) REFERENCES participants(id) ON DELETE CASCADE,
    FOREIGN KEY (campaign_id) REFERENCES campaigns(id) ON DELETE CASCADE
);

CREATE TABLE IF NOT EXISTS multiplier_requests (
    id TEXT PRIMARY KEY,
    participant_id TEXT NOT NULL,
    campaign_id TEXT NOT NULL,
    participant_name TEXT DEFAULT '',
    phone_number TEXT DEFAULT '',
    campaign_name TEXT DEFAULT '',
    status TEXT NOT NULL DEFAULT 'pending',
    requested_at TEXT NOT NULL,
    reviewed_at TEXT,
    reviewed_by TEXT,
    reviewer_name TEXT,
    rejection_reason TEXT,
    FOREIGN KEY (participant_id) REFERENCES participants(id) ON DELETE CASCADE,
    FOREIGN KEY (campaign_id) REFERENCES campaigns(id) ON DELETE CASCADE
);

CREATE INDEX IF NOT EXISTS idx_participants_leader
    ON participants(leader_id);
CREATE INDEX IF NOT EXISTS idx_participant_campaigns_campaign
    ON participant_campaigns(campaign_id);
CREATE INDEX IF NOT EXISTS idx_multiplier_requests_campaign
    ON multiplier_requests(campaign_id, status);
"""

_PARTICIPANT_COLUMNS = (
    "id",
    "name",
    "role",
    "leader_id",
    "participants",
    "phone_number",
    "document_number",
    "country",
    "department",
    "city",
    "address",
    "neighborhood",
    "latitude",
    "longitude",
    "area_type",
    "from_capital_city",
    "gender",
    "profession",
    "created_at",
)


class CanopyStorageError(Exception):
    """Raised for storage-level errors (duplicates, not found, etc.)."""


class CanopyStorage:
    """SQLite-backed storage for campaigns and participants.

    Args:
        db_path: Path to SQLite database file, or ':memory:' for in-memory.
        check_same_thread: Passed to sqlite3; False lets a threadpool
            share the connection.

    Example::

        with CanopyStorage("canopy.db") as store:
            store.initialize_schema()
            store.create_campaign(campaign)
    """

    def __init__(
        self,
        db_path: str | Path = ":memory:",
        check_same_thread: bool = True,
    ) -> None:
        self._db_path = str(db_path)
        self._conn = sqlite3.connect(self._db_path, check_same_thread=check_same_thread)
        self._conn.execute("PRAGMA foreign_keys = ON")
        self._conn.row_factory = sqlite3.Row

    def __enter__(self) -> CanopyStorage:
        """Enter context manager."""
        return self

    def __exit__(self, *args: Any) -> None:
        """Close the database connection."""
        self.close()

    def close(self) -> None:
        """Close the database connection."""
        self._conn.close()

    @property
    def connection(self) -> sqlite3.Connection:
        """The underlying SQLite connection (health checks, test setup)."""
        return self._conn

    def initialize_schema(self) -> None:
        """Create all tables and indexes if they don't exist."""
        self._conn.executescript(_SCHEMA_SQL)
        self._conn.commit()

    # ---------------------------------------------------------------
    # Campaigns
    # ---------------------------------------------------------------

    def create_campaign(self, campaign: Campaign) -> Campaign:
        """Insert a new campaign.

        Args:
            campaign: Campaign to insert.

        Returns:
            The inserted campaign.

        Raises:
            CanopyStorageError: If a campaign with the same ID exists.
        """
        try:
            self._conn.execute(
                "INSERT INTO campaigns "
                "(id, name, description, start_date, end_date, status, "
                "participants, created_at, updated_at) "
                "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)",
                (
                    campaign.id,
                    campaign.name,
                    campaign.description,
                    _iso(campaign.start_date),
                    _iso(campaign.end_date),
                    campaign.status.value,
                    campaign.participants,
                    campaign.created_at.isoformat(),
                    campaign.updated_at.isoformat(),
                ),
            )
            self._conn.commit()
        except sqlite3.IntegrityError as exc:
            raise CanopyStorageError(f"Campaign already exists: {campaign.id}") from exc
        return campaign

    def get_campaign(self, campaign_id: str) -> Campaign | None:
        """Fetch a campaign by ID.

        Returns:
            Campaign or None if not found.
        """
        row = self._conn.execute(
            "SELECT * FROM campaigns WHERE id = ?", (campaign_id,)
        ).fetchone()
        if row is None:
            return None
        return self._row_to_campaign(row)

    def list_campaigns(
        self,
        campaign_ids: Sequence[str] | None = None,
        status: CampaignStatus | None = None,
    ) -> list[Campaign]:
        """Fetch campaigns, optionally restricted to IDs and/or a status.

        Args:
            campaign_ids: If provided, return these campaigns in this order
                (unknown IDs are skipped).
            status: If provided, only return campaigns with this status.

        Returns:
            List of matching campaigns.
        """
        if campaign_ids is not None:
            campaigns = [self.get_campaign(cid) for cid in dict.fromkeys(campaign_ids)]
            found = [c for c in campaigns if c is not None]
        else:
            rows = self._conn.execute(
                "SELECT * FROM campaigns ORDER BY created_at, id"
            ).fetchall()
            found = [self._row_to_campaign(r) for r in rows]

        if status is not None:
            found = [c for c in found if c.status == status]
        return found

    def update_campaign(self, campaign: Campaign) -> Campaign:
        """Update an existing campaign.

        Returns:
            The updated campaign with refreshed updated_at.

        Raises:
            CanopyStorageError: If the campaign does not exist.
        """
        campaign.updated_at = datetime.now()
        cursor = self._conn.execute(
            "UPDATE campaigns SET name = ?, description = ?, start_date = ?, "
            "end_date = ?, status = ?, participants = ?, updated_at = ? WHERE id = ?",
            (
                campaign.name,
                campaign.description,
                _iso(campaign.start_date),
                _iso(campaign.end_date),
                campaign.status.value,
                campaign.participants,
                campaign.updated_at.isoformat(),
                campaign.id,
            ),
        )
        if cursor.rowcount == 0:
            raise CanopyStorageError(f"Campaign not found: {campaign.id}")
        self._conn.commit()
        return campaign

    def delete_campaign(self, campaign_id: str) -> bool:
        """Delete a campaign (memberships cascade).

        Returns:
            True if deleted, False if not found.
        """
        cursor = self._conn.execute("DELETE FROM campaigns WHERE id = ?", (campaign_id,))
        self._conn.commit()
        return cursor.rowcount > 0

    # ---------------------------------------------------------------
    # Participants
    # ---------------------------------------------------------------

    def create_participant(self, participant: Participant) -> Participant:
        """Insert a new participant (without campaign memberships).

        Raises:
            CanopyStorageError: If a participant with the same ID exists.
        """
        with self._conn:
            self._insert_participant(participant)
        return participant

    def get_participant(self, participant_id: str) -> Participant | None:
        """Fetch a participant by ID, including campaign memberships.

        Returns:
            Participant or None if not found.
        """
        row = self._conn.execute(
            "SELECT * FROM participants WHERE id = ?", (participant_id,)
        ).fetchone()
        if row is None:
            return None
        return self._row_to_participant(row, self._campaign_ids_for(participant_id))

    def update_participant(self, participant: Participant) -> Participant:
        """Update an existing participant's profile fields.

        Campaign memberships are managed by ``register_participant``.

        Raises:
            CanopyStorageError: If the participant does not exist.
        """
        with self._conn:
            self._update_participant_row(participant)
        return participant

    def delete_participant(self, participant_id: str) -> bool:
        """Delete a participant (memberships cascade).

        Recruits keep their ``leader_id``; the tree treats them as roots.

        Returns:
            True if deleted, False if not found.
        """
        cursor = self._conn.execute(
            "DELETE FROM participants WHERE id = ?", (participant_id,)
        )
        self._conn.commit()
        return cursor.rowcount > 0

    def register_participant(
        self,
        participant: Participant,
        campaign_id: str | None = None,
    ) -> Participant:
        """Register a participant, optionally into a campaign.

        Creates the participant or merges the new profile into an existing
        one. When the campaign membership is new, the campaign's
        registration counter goes up by one and so does the leader's
        ``participants`` counter. Registering twice into the same campaign
        changes no counters.

        Args:
            participant: Participant to create or merge.
            campaign_id: Campaign to register into.

        Returns:
            The stored participant, memberships included.

        Raises:
            CanopyStorageError: If the campaign does not exist.
        """
        if campaign_id is not None and self.get_campaign(campaign_id) is None:
            raise CanopyStorageError(f"Campaign not found: {campaign_id}")

        existing = self.get_participant(participant.id)

        # One transaction: profile, membership and both counters land together
        with self._conn:
            if existing is None:
                self._insert_participant(participant)
            else:
                participant.created_at = existing.created_at
                participant.participants = existing.participants
                self._update_participant_row(participant)

            new_membership = False
            if campaign_id is not None:
                cursor = self._conn.execute(
                    "INSERT OR IGNORE INTO participant_campaigns "
                    "(participant_id, campaign_id, joined_at) VALUES (?, ?, ?)",
                    (participant.id, campaign_id, datetime.now().isoformat()),
                )
                new_membership = cursor.rowcount > 0
                if new_membership:
                    self._conn.execute(
                        "UPDATE campaigns SET participants = participants + 1, "
                        "updated_at = ? WHERE id = ?",
                        (datetime.now().isoformat(), campaign_id),
                    )
                else:
                    logger.info(
                        "Participant %s already registered in campaign %s; counters unchanged",
                        participant.id,
                        campaign_id,
                    )

            counts_for_leader = new_membership or (existing is None and campaign_id is None)
            leader_id = participant.leader_id
            if leader_id and leader_id != participant.id and counts_for_leader:
                cursor = self._conn.execute(
                    "UPDATE participants SET participants = participants + 1 WHERE id = ?",
                    (leader_id,),
                )
                if cursor.rowcount == 0:
                    logger.warning(
                        "Leader %s of participant %s is not registered",
                        leader_id,
                        participant.id,
                    )

        stored = self.get_participant(participant.id)
        if stored is None:
            raise CanopyStorageError(f"Participant vanished during registration: {participant.id}")
        return stored

    def promote_to_multiplier(self, participant_id: str) -> Participant:
        """Upgrade a participant to the MULTIPLIER role.

        Raises:
            CanopyStorageError: If the participant does not exist.
        """
        with self._conn:
            return self._promote(participant_id)

    def list_participants_for_campaigns(self, campaign_ids: Sequence[str]) -> list[Participant]:
        """Fetch the participants of several campaigns, deduplicated by ID.

        Campaigns are queried in the given order and participants in
        registration order; a participant registered in several of the
        campaigns appears once, at its first position.

        Args:
            campaign_ids: Campaigns to collect participants from.

        Returns:
            Participants in first-seen order.
        """
        seen: set[str] = set()
        result: list[Participant] = []
        for campaign_id in campaign_ids:
            rows = self._conn.execute(
                "SELECT p.* FROM participants p "
                "JOIN participant_campaigns pc ON pc.participant_id = p.id "
                "WHERE pc.campaign_id = ? ORDER BY pc.seq",
                (campaign_id,),
            ).fetchall()
            for row in rows:
                if row["id"] in seen:
                    continue
                seen.add(row["id"])
                result.append(self._row_to_participant(row, self._campaign_ids_for(row["id"])))
        return result

    def get_recruits(self, leader_id: str) -> list[Participant]:
        """Fetch every participant registered directly under a leader."""
        rows = self._conn.execute(
            "SELECT * FROM participants WHERE leader_id = ? ORDER BY created_at, id",
            (leader_id,),
        ).fetchall()
        return [self._row_to_participant(r, self._campaign_ids_for(r["id"])) for r in rows]

    # ---------------------------------------------------------------
    # Multiplier requests
    # ---------------------------------------------------------------

    def create_multiplier_request(
        self, participant_id: str, campaign_id: str
    ) -> MultiplierRequest:
        """File a follower's request to become a multiplier in a campaign.

        The participant's name and phone, and the campaign's name, are
        copied onto the request so reviewers see them as they were.

        Returns:
            The new pending request.

        Raises:
            CanopyStorageError: If the participant or campaign does not
                exist, the participant is not a follower, or a pending or
                approved request already exists for the pair.
        """
        participant = self.get_participant(participant_id)
        if participant is None:
            raise CanopyStorageError(f"Participant not found: {participant_id}")
        campaign = self.get_campaign(campaign_id)
        if campaign is None:
            raise CanopyStorageError(f"Campaign not found: {campaign_id}")
        if participant.role != Role.FOLLOWER:
            raise CanopyStorageError(
                f"Only followers can request multiplier status: {participant_id} "
                f"is {participant.role.value}"
            )

        existing = self.find_multiplier_request(participant_id, campaign_id)
        if existing is not None and existing.status == MultiplierRequestStatus.PENDING:
            raise CanopyStorageError(f"A request is already pending: {existing.id}")
        if existing is not None and existing.status == MultiplierRequestStatus.APPROVED:
            raise CanopyStorageError(f"Request already approved: {existing.id}")

        request = MultiplierRequest(
            id=MultiplierRequest.generate_id(),
            participant_id=participant.id,
            campaign_id=campaign.id,
            participant_name=participant.name,
            phone_number=participant.phone_number,
            campaign_name=campaign.name,
        )
        with self._conn:
            self._conn.execute(
                "INSERT INTO multiplier_requests "
                "(id, participant_id, campaign_id, participant_name, phone_number, "
                "campaign_name, status, requested_at) VALUES (?, ?, ?, ?, ?, ?, ?, ?)",
                (
                    request.id,
                    request.participant_id,
                    request.campaign_id,
                    request.participant_name,
                    request.phone_number,
                    request.campaign_name,
                    request.status.value,
                    request.requested_at.isoformat(),
                ),
            )
        logger.info(
            "Participant %s requested multiplier status in %s (%s)",
            participant_id,
            campaign_id,
            request.id,
        )
        return request

    def get_multiplier_request(self, request_id: str) -> MultiplierRequest | None:
        """Fetch a multiplier request by ID."""
        row = self._conn.execute(
            "SELECT * FROM multiplier_requests WHERE id = ?", (request_id,)
        ).fetchone()
        return self._row_to_request(row) if row is not None else None

    def find_multiplier_request(
        self, participant_id: str, campaign_id: str
    ) -> MultiplierRequest | None:
        """Return the most recent request a participant filed in a campaign."""
        row = self._conn.execute(
            "SELECT * FROM multiplier_requests WHERE participant_id = ? AND campaign_id = ? "
            "ORDER BY requested_at DESC, rowid DESC LIMIT 1",
            (participant_id, campaign_id),
        ).fetchone()
        return self._row_to_request(row) if row is not None else None

    def list_multiplier_requests(
        self,
        campaign_id: str,
        reviewer_id: str | None = None,
        status: MultiplierRequestStatus | None = MultiplierRequestStatus.PENDING,
    ) -> list[MultiplierRequest]:
        """List the requests of a campaign, oldest first.

        Args:
            campaign_id: Campaign to list.
            reviewer_id: If provided, only requests from participants
                this leader recruited directly.
            status: Status filter; pending by default, None for all.
        """
        sql = (
            "SELECT r.* FROM multiplier_requests r "
            "JOIN participants p ON p.id = r.participant_id "
            "WHERE r.campaign_id = ?"
        )
        params: list[Any] = [campaign_id]
        if status is not None:
            sql += " AND r.status = ?"
            params.append(status.value)
        if reviewer_id is not None:
            sql += " AND p.leader_id = ?"
            params.append(reviewer_id)
        sql += " ORDER BY r.requested_at, r.rowid"
        rows = self._conn.execute(sql, params).fetchall()
        return [self._row_to_request(r) for r in rows]

    def approve_multiplier_request(
        self, request_id: str, reviewer_id: str, reviewer_name: str = ""
    ) -> MultiplierRequest:
        """Approve a pending request and promote the participant.

        The status change and the promotion commit together.

        Raises:
            CanopyStorageError: If the request does not exist or was
                already reviewed.
        """
        with self._conn:
            request = self._review(
                request_id,
                MultiplierRequestStatus.APPROVED,
                reviewer_id,
                reviewer_name,
            )
            self._promote(request.participant_id)
        logger.info("Request %s approved by %s", request_id, reviewer_id)
        return request

    def reject_multiplier_request(
        self,
        request_id: str,
        reviewer_id: str,
        reviewer_name: str = "",
        rejection_reason: str | None = None,
    ) -> MultiplierRequest:
        """Reject a pending request; the participant keeps its role.

        Raises:
            CanopyStorageError: If the request does not exist or was
                already reviewed.
        """
        with self._conn:
            request = self._review(
                request_id,
                MultiplierRequestStatus.REJECTED,
                reviewer_id,
                reviewer_name,
                rejection_reason,
            )
        logger.info("Request %s rejected by %s", request_id, reviewer_id)
        return request

    # ---------------------------------------------------------------
    # Write helpers (no commit; callers own the transaction)
    # ---------------------------------------------------------------

    def _insert_participant(self, participant: Participant) -> None:
        placeholders = ", ".join("?" for _ in _PARTICIPANT_COLUMNS)
        try:
            self._conn.execute(
                f"INSERT INTO participants ({', '.join(_PARTICIPANT_COLUMNS)}) "
                f"VALUES ({placeholders})",
                self._participant_values(participant),
            )
        except sqlite3.IntegrityError as exc:
            raise CanopyStorageError(f"Participant already exists: {participant.id}") from exc

    def _update_participant_row(self, participant: Participant) -> None:
        columns = [c for c in _PARTICIPANT_COLUMNS if c not in ("id", "created_at")]
        assignments = ", ".join(f"{c} = ?" for c in columns)
        values = dict(zip(_PARTICIPANT_COLUMNS, self._participant_values(participant)))
        cursor = self._conn.execute(
            f"UPDATE participants SET {assignments} WHERE id = ?",
            [values[c] for c in columns] + [participant.id],
        )
        if cursor.rowcount == 0:
            raise CanopyStorageError(f"Participant not found: {participant.id}")

    def _promote(self, participant_id: str) -> Participant:
        participant = self.get_participant(participant_id)
        if participant is None:
            raise CanopyStorageError(f"Participant not found: {participant_id}")
        if participant.role == Role.MULTIPLIER:
            return participant
        logger.info("Promoting %s from %s to MULTIPLIER", participant_id, participant.role.value)
        participant.role = Role.MULTIPLIER
        self._update_participant_row(participant)
        return participant

    def _review(
        self,
        request_id: str,
        status: MultiplierRequestStatus,
        reviewer_id: str,
        reviewer_name: str,
        rejection_reason: str | None = None,
    ) -> MultiplierRequest:
        reviewed_at = datetime.now()
        # The status guard in the WHERE clause keeps a request from being
        # reviewed twice, even by concurrent callers
        cursor = self._conn.execute(
            "UPDATE multiplier_requests SET status = ?, reviewed_at = ?, reviewed_by = ?, "
            "reviewer_name = ?, rejection_reason = ? WHERE id = ? AND status = ?",
            (
                status.value,
                reviewed_at.isoformat(),
                reviewer_id,
                reviewer_name,
                rejection_reason,
                request_id,
                MultiplierRequestStatus.PENDING.value,
            ),
        )
        request = self.get_multiplier_request(request_id)
        if request is None:
            raise CanopyStorageError(f"Multiplier request not found: {request_id}")
        if cursor.rowcount == 0:
            raise CanopyStorageError(f"Request already {request.status.value}: {request_id}")
        return request

    # ---------------------------------------------------------------
    # Row mapping helpers
    # ---------------------------------------------------------------

    def _campaign_ids_for(self, participant_id: str) -> list[str]:
        rows = self._conn.execute(
            "SELECT campaign_id FROM participant_campaigns "
            "WHERE participant_id = ? ORDER BY seq",
            (participant_id,),
        ).fetchall()
        return [r["campaign_id"] for r in rows]

    @staticmethod
    def _participant_values(participant: Participant) -> tuple[Any, ...]:
        return (
            participant.id,
            participant.name,
            participant.role.value,
            participant.leader_id,
            participant.participants,
            participant.phone_number,
            participant.document_number,
            participant.country,
            participant.department,
            participant.city,
            participant.address,
            participant.neighborhood,
            participant.latitude,
            participant.longitude,
            participant.area_type.value if participant.area_type else None,
            int(participant.from_capital_city),
            participant.gender,
            participant.profession,
            participant.created_at.isoformat(),
        )

    @staticmethod
    def _row_to_campaign(row: sqlite3.Row) -> Campaign:
        return Campaign(
            id=row["id"],
            name=row["name"],
            description=row["description"] or "",
            start_date=_parse(row["start_date"]),
            end_date=_parse(row["end_date"]),
            status=CampaignStatus(row["status"]),
            participants=row["participants"],
            created_at=datetime.fromisoformat(row["created_at"]),
            updated_at=datetime.fromisoformat(row["updated_at"]),
        )

    @staticmethod
    def _row_to_participant(row: sqlite3.Row, campaign_ids: list[str]) -> Participant:
        return Participant(
            id=row["id"],
            name=row["name"],
            role=Role.parse(row["role"]),
            leader_id=row["leader_id"] or None,
            participants=row["participants"],
            phone_number=row["phone_number"] or "",
            document_number=row["document_number"] or "",
            country=row["country"] or "",
            department=row["department"] or "",
            city=row["city"] or "",
            address=row["address"] or "",
            neighborhood=row["neighborhood"] or "",
            latitude=row["latitude"],
            longitude=row["longitude"],
            area_type=AreaType(row["area_type"]) if row["area_type"] else None,
            from_capital_city=bool(row["from_capital_city"]),
            gender=row["gender"] or "",
            profession=row["profession"] or "",
            campaign_ids=campaign_ids,
            created_at=datetime.fromisoformat(row["created_at"]),
        )

    @staticmethod
    def _row_to_request(row: sqlite3.Row) -> MultiplierRequest:
        return MultiplierRequest(
            id=row["id"],
            participant_id=row["participant_id"],
            campaign_id=row["campaign_id"],
            participant_name=row["participant_name"] or "",
            phone_number=row["phone_number"] or "",
            campaign_name=row["campaign_name"] or "",
            status=MultiplierRequestStatus(row["status"]),
            requested_at=datetime.fromisoformat(row["requested_at"]),
            reviewed_at=_parse(row["reviewed_at"]),
            reviewed_by=row["reviewed_by"],
            reviewer_name=row["reviewer_name"],
            rejection_reason=row["rejection_reason"],
        )


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value else None


def _parse(value: str | None) -> datetime | None:
    return datetime.fromisoformat(value) if value else None

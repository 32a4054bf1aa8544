"""Canopy data models for campaign participants.

Defines the domain records the hierarchy builder consumes: participants
with their role tag and referring leader, and the campaigns they are
registered under, plus the requests followers file to become multipliers.
All models use dataclasses with dict serialization.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any


class Role(str, Enum):
    """Role a participant holds in a campaign."""

    SUPER_ADMIN = "SUPER_ADMIN"
    ADMIN = "ADMIN"
    COORDINATOR = "COORDINATOR"
    LINK = "LINK"
    MULTIPLIER = "MULTIPLIER"
    FOLLOWER = "FOLLOWER"
    UNKNOWN = "UNKNOWN"

    @classmethod
    def parse(cls, value: Any) -> Role:
        """Parse a raw role value, mapping anything unrecognised to UNKNOWN.

        Args:
            value: Role string, Role member, or None.

        Returns:
            Matching Role member.
        """
        if isinstance(value, Role):
            return value
        if not value:
            return cls.UNKNOWN
        try:
            return cls(str(value).strip().upper())
        except ValueError:
            return cls.UNKNOWN


class CampaignStatus(str, Enum):
    """Lifecycle status of a campaign."""

    ACTIVE = "active"
    INACTIVE = "inactive"
    COMPLETED = "completed"


class AreaType(str, Enum):
    """Whether a participant lives in an urban or rural area."""

    URBAN = "URBAN"
    RURAL = "RURAL"


def _parse_datetime(value: Any) -> datetime | None:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value
    return datetime.fromisoformat(str(value))


@dataclass
class Participant:
    """A person registered in one or more campaigns.

    Attributes:
        id: Unique identifier.
        name: Display name ("first last").
        role: Role tag.
        leader_id: ID of the referring leader, if any.
        participants: Number of people registered under this participant.
        phone_number: Contact phone.
        document_number: National identity document.
        country: Country of residence.
        department: Department (first-level administrative region).
        city: City or municipality.
        address: Street address.
        neighborhood: Neighborhood or rural district.
        latitude: Geocoded latitude.
        longitude: Geocoded longitude.
        area_type: Urban or rural.
        from_capital_city: True when registered from the capital city.
        gender: Self-reported gender.
        profession: Self-reported profession.
        campaign_ids: Campaigns this participant is registered in.
        created_at: Registration timestamp.
    """

    id: str
    name: str
    role: Role = Role.FOLLOWER
    leader_id: str | None = None
    participants: int = 0
    phone_number: str = ""
    document_number: str = ""
    country: str = ""
    department: str = ""
    city: str = ""
    address: str = ""
    neighborhood: str = ""
    latitude: float | None = None
    longitude: float | None = None
    area_type: AreaType | None = None
    from_capital_city: bool = False
    gender: str = ""
    profession: str = ""
    campaign_ids: list[str] = field(default_factory=list)
    created_at: datetime = field(default_factory=datetime.now)

    @staticmethod
    def generate_id() -> str:
        """Generate a unique participant ID."""
        return f"user_{uuid.uuid4().hex[:12]}"

    @property
    def is_multiplier(self) -> bool:
        return self.role == Role.MULTIPLIER

    @property
    def is_follower(self) -> bool:
        return self.role == Role.FOLLOWER

    @property
    def first_name(self) -> str:
        parts = self.name.split(" ")
        return parts[0] if parts else ""

    @property
    def last_name(self) -> str:
        return " ".join(self.name.split(" ")[1:])

    def to_dict(self) -> dict[str, Any]:
        """Serialize to dictionary."""
        return {
            "id": self.id,
            "name": self.name,
            "role": self.role.value,
            "leader_id": self.leader_id,
            "participants": self.participants,
            "phone_number": self.phone_number,
            "document_number": self.document_number,
            "country": self.country,
            "department": self.department,
            "city": self.city,
            "address": self.address,
            "neighborhood": self.neighborhood,
            "latitude": self.latitude,
            "longitude": self.longitude,
            "area_type": self.area_type.value if self.area_type else None,
            "from_capital_city": self.from_capital_city,
            "gender": self.gender,
            "profession": self.profession,
            "campaign_ids": list(self.campaign_ids),
            "created_at": self.created_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Participant:
        """Deserialize from dictionary.

        Tolerates the loose shape of stored user records: missing fields
        take their defaults, an empty ``leader_id`` becomes None and an
        unrecognised role becomes ``Role.UNKNOWN``.
        """
        area = data.get("area_type")
        created_at = _parse_datetime(data.get("created_at"))
        return cls(
            id=data["id"],
            name=data.get("name") or "",
            role=Role.parse(data.get("role")),
            leader_id=data.get("leader_id") or None,
            participants=int(data.get("participants") or 0),
            phone_number=data.get("phone_number") or "",
            document_number=data.get("document_number") or "",
            country=data.get("country") or "",
            department=data.get("department") or "",
            city=data.get("city") or "",
            address=data.get("address") or "",
            neighborhood=data.get("neighborhood") or "",
            latitude=data.get("latitude"),
            longitude=data.get("longitude"),
            area_type=AreaType(area) if area else None,
            from_capital_city=bool(data.get("from_capital_city", False)),
            gender=data.get("gender") or "",
            profession=data.get("profession") or "",
            campaign_ids=list(data.get("campaign_ids") or []),
            created_at=created_at or datetime.now(),
        )


@dataclass
class Campaign:
    """A growth campaign participants register under.

    Attributes:
        id: Unique identifier (prefixed with 'camp_').
        name: Display name, used as the tree root label.
        description: What the campaign is about.
        start_date: First day of the campaign.
        end_date: Last day of the campaign.
        status: Current lifecycle status.
        participants: Number of completed registrations.
        created_at: Creation timestamp.
        updated_at: Last modification timestamp.
    """

    id: str
    name: str
    description: str = ""
    start_date: datetime | None = None
    end_date: datetime | None = None
    status: CampaignStatus = CampaignStatus.ACTIVE
    participants: int = 0
    created_at: datetime = field(default_factory=datetime.now)
    updated_at: datetime = field(default_factory=datetime.now)

    @staticmethod
    def generate_id() -> str:
        """Generate a unique campaign ID."""
        return f"camp_{uuid.uuid4().hex[:12]}"

    def to_dict(self) -> dict[str, Any]:
        """Serialize to dictionary."""
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "start_date": self.start_date.isoformat() if self.start_date else None,
            "end_date": self.end_date.isoformat() if self.end_date else None,
            "status": self.status.value,
            "participants": self.participants,
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Campaign:
        """Deserialize from dictionary."""
        return cls(
            id=data["id"],
            name=data["name"],
            description=data.get("description", ""),
            start_date=_parse_datetime(data.get("start_date")),
            end_date=_parse_datetime(data.get("end_date")),
            status=CampaignStatus(data.get("status", "active")),
            participants=int(data.get("participants") or 0),
            created_at=_parse_datetime(data.get("created_at")) or datetime.now(),
            updated_at=_parse_datetime(data.get("updated_at")) or datetime.now(),
        )


class MultiplierRequestStatus(str, Enum):
    """Review state of a request to become a multiplier."""

    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


@dataclass
class MultiplierRequest:
    """A follower's request to be promoted to multiplier in a campaign.

    Attributes:
        id: Unique identifier (prefixed with 'mreq_').
        participant_id: Who is asking.
        participant_name: Name at the time of the request.
        phone_number: Contact phone at the time of the request.
        campaign_id: Campaign the request is made in.
        campaign_name: Campaign name at the time of the request.
        status: Review state.
        requested_at: When the request was filed.
        reviewed_at: When it was approved or rejected.
        reviewed_by: ID of the reviewer.
        reviewer_name: Display name of the reviewer.
        rejection_reason: Optional note left on rejection.
    """

    id: str
    participant_id: str
    campaign_id: str
    participant_name: str = ""
    phone_number: str = ""
    campaign_name: str = ""
    status: MultiplierRequestStatus = MultiplierRequestStatus.PENDING
    requested_at: datetime = field(default_factory=datetime.now)
    reviewed_at: datetime | None = None
    reviewed_by: str | None = None
    reviewer_name: str | None = None
    rejection_reason: str | None = None

    @staticmethod
    def generate_id() -> str:
        """Generate a unique request ID."""
        return f"mreq_{uuid.uuid4().hex[:12]}"

    @property
    def is_pending(self) -> bool:
        return self.status == MultiplierRequestStatus.PENDING

    def to_dict(self) -> dict[str, Any]:
        """Serialize to dictionary."""
        return {
            "id": self.id,
            "participant_id": self.participant_id,
            "participant_name": self.participant_name,
            "phone_number": self.phone_number,
            "campaign_id": self.campaign_id,
            "campaign_name": self.campaign_name,
            "status": self.status.value,
            "requested_at": self.requested_at.isoformat(),
            "reviewed_at": self.reviewed_at.isoformat() if self.reviewed_at else None,
            "reviewed_by": self.reviewed_by,
            "reviewer_name": self.reviewer_name,
            "rejection_reason": self.rejection_reason,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> MultiplierRequest:
        """Deserialize from dictionary."""
        return cls(
            id=data["id"],
            participant_id=data["participant_id"],
            campaign_id=data["campaign_id"],
            participant_name=data.get("participant_name") or "",
            phone_number=data.get("phone_number") or "",
            campaign_name=data.get("campaign_name") or "",
            status=MultiplierRequestStatus(data.get("status", "pending")),
            requested_at=_parse_datetime(data.get("requested_at")) or datetime.now(),
            reviewed_at=_parse_datetime(data.get("reviewed_at")),
            reviewed_by=data.get("reviewed_by") or None,
            reviewer_name=data.get("reviewer_name") or None,
            rejection_reason=data.get("rejection_reason") or None,
        )

"""FastAPI router for the Canopy campaign backend.

Exposes REST endpoints for campaigns, participant registration, the
laid-out team hierarchy, dashboard KPIs and distributions, team lists,
referral links, multiplier requests, CSV export and one-time phone
codes. Designed to be mounted at /api/canopy/ by the parent application.

All endpoint functions are synchronous (not async) because the
underlying CanopyStorage uses synchronous SQLite calls. FastAPI runs
sync handlers in a thread pool automatically.
"""

from __future__ import annotations

import logging
from datetime import datetime
from pathlib import Path
from typing import Any

from fastapi import APIRouter, HTTPException, Response
from pydantic import BaseModel, Field

from canopy.src.builder import build_campaign_graph
from canopy.src.export import participants_to_csv_bytes
from canopy.src.kpis import DIMENSIONS, compute_campaign_kpis, distribution
from canopy.src.layout import LayoutConfig
from canopy.src.models import (
    AreaType,
    Campaign,
    CampaignStatus,
    MultiplierRequestStatus,
    Participant,
    Role,
)
from canopy.src.otp_store import OtpService
from canopy.src.referral import DEFAULT_BASE_URL, build_registration_url
from canopy.src.storage import CanopyStorage, CanopyStorageError
from canopy.src.team import list_team
from shared.hardening import ErrorFormatter, InputValidator, ValidationError

logger = logging.getLogger(__name__)

router = APIRouter()

# ---------------------------------------------------------------------------
# Module-level state (initialized by init_canopy_storage / configure)
# ---------------------------------------------------------------------------

_storage: CanopyStorage | None = None
_otp_service: OtpService = OtpService()
_layout_config: LayoutConfig = LayoutConfig()
_expose_otp_codes: bool = False
_registration_base_url: str = DEFAULT_BASE_URL

_validator = InputValidator()
_formatter = ErrorFormatter()


def init_canopy_storage(db_path: str | Path = ":memory:") -> CanopyStorage:
    """Initialize the Canopy storage backend.

    Call this once at application startup before any requests are served.

    Args:
        db_path: Path to SQLite database file, or ':memory:'.

    Returns:
        The initialized CanopyStorage instance.
    """
    global _storage

    # Sync handlers run in a threadpool and share this connection
    _storage = CanopyStorage(db_path, check_same_thread=False)
    _storage.initialize_schema()
    logger.info("Canopy storage initialized at %s", db_path)
    return _storage


def configure(
    otp_service: OtpService | None = None,
    layout_config: LayoutConfig | None = None,
    expose_otp_codes: bool | None = None,
    registration_base_url: str | None = None,
) -> None:
    """Swap the router's collaborators (tests, alternative deployments).

    Args:
        otp_service: Service issuing and checking phone codes.
        layout_config: Spacing constants for the tree endpoint.
        expose_otp_codes: Return issued codes in the response body.
            Only for development setups without an SMS gateway.
        registration_base_url: Public address of the web app that
            referral links point to.
    """
    global _otp_service, _layout_config, _expose_otp_codes, _registration_base_url

    if otp_service is not None:
        _otp_service = otp_service
    if layout_config is not None:
        _layout_config = layout_config
    if expose_otp_codes is not None:
        _expose_otp_codes = expose_otp_codes
    if registration_base_url is not None:
        _registration_base_url = registration_base_url


def get_storage() -> CanopyStorage:
    """Return the initialized CanopyStorage or raise.

    Raises:
        HTTPException: If storage has not been initialized.
    """
    if _storage is None:
        raise HTTPException(
            status_code=500,
            detail="Canopy storage not initialized",
        )
    return _storage


def _selected_campaigns(storage: CanopyStorage, campaign_ids: str | None) -> list[Campaign]:
    """Resolve the ``campaign_ids`` query parameter.

    Omitted means every campaign; an empty string means none.
    """
    if campaign_ids is None:
        return storage.list_campaigns()
    ids = _validator.parse_id_list(campaign_ids, field_name="campaign_ids")
    return storage.list_campaigns(campaign_ids=ids)


def _participants_of(storage: CanopyStorage, campaigns: list[Campaign]) -> list[Participant]:
    return storage.list_participants_for_campaigns([c.id for c in campaigns])


# ---------------------------------------------------------------------------
# Pydantic request models
# ---------------------------------------------------------------------------


class CampaignCreate(BaseModel):
    """Request body for creating a campaign."""

    name: str = Field(..., min_length=1, max_length=200)
    description: str = Field(default="", max_length=2000)
    start_date: datetime | None = None
    end_date: datetime | None = None
    status: str = "active"


class ParticipantRegister(BaseModel):
    """Request body for registering a participant."""

    id: str | None = Field(default=None, max_length=128)
    name: str = Field(..., min_length=1, max_length=200)
    role: str = "FOLLOWER"
    leader_id: str | None = None
    campaign_id: str | None = None
    phone_number: str = ""
    document_number: str = Field(default="", max_length=40)
    country: str = ""
    department: str = ""
    city: str = ""
    address: str = ""
    neighborhood: str = ""
    latitude: float | None = Field(default=None, ge=-90, le=90)
    longitude: float | None = Field(default=None, ge=-180, le=180)
    area_type: str | None = None
    from_capital_city: bool = False
    gender: str = ""
    profession: str = ""


class OtpSendRequest(BaseModel):
    """Request body for sending a one-time code."""

    phone_number: str = Field(..., min_length=1, max_length=30)
    expires_in_minutes: float = Field(default=10, gt=0, le=60)


class OtpVerifyRequest(BaseModel):
    """Request body for checking a one-time code."""

    phone_number: str = Field(..., min_length=1, max_length=30)
    code: str = Field(..., pattern=r"^[0-9]{6}$")


class MultiplierRequestCreate(BaseModel):
    """Request body for asking to become a multiplier."""

    participant_id: str = Field(..., min_length=1, max_length=128)
    campaign_id: str = Field(..., min_length=1, max_length=128)


class MultiplierRequestReview(BaseModel):
    """Request body for approving or rejecting a multiplier request."""

    reviewer_id: str = Field(..., min_length=1, max_length=128)
    reviewer_name: str = Field(default="", max_length=200)
    rejection_reason: str | None = Field(default=None, max_length=500)


# ---------------------------------------------------------------------------
# Health
# ---------------------------------------------------------------------------


@router.get("/health")
def health_check() -> dict[str, Any]:
    """Return Canopy service health status."""
    return {
        "status": "ok",
        "service": "canopy",
        "version": "0.1.0",
        "storage_initialized": _storage is not None,
    }


# ---------------------------------------------------------------------------
# Campaigns
# ---------------------------------------------------------------------------


@router.get("/campaigns")
def list_campaigns(status: str | None = None) -> dict[str, Any]:
    """List campaigns, optionally filtered by status.

    Args:
        status: Optional status filter (active, inactive, completed).
    """
    try:
        storage = get_storage()
        cs = CampaignStatus(status) if status is not None else None
        campaigns = storage.list_campaigns(status=cs)
        return {"campaigns": [c.to_dict() for c in campaigns]}
    except ValueError as exc:
        raise HTTPException(status_code=422, detail=f"Invalid status value: {status}") from exc
    except HTTPException:
        raise
    except Exception as exc:
        raise HTTPException(
            status_code=500, detail=_formatter.format_storage_error(exc).to_dict()
        ) from exc


@router.get("/campaigns/{campaign_id}")
def get_campaign(campaign_id: str) -> dict[str, Any]:
    """Get a campaign by ID."""
    try:
        storage = get_storage()
        campaign = storage.get_campaign(campaign_id)
        if campaign is None:
            raise HTTPException(status_code=404, detail="Campaign not found")
        return campaign.to_dict()
    except HTTPException:
        raise
    except Exception as exc:
        raise HTTPException(
            status_code=500, detail=_formatter.format_storage_error(exc).to_dict()
        ) from exc


@router.post("/campaigns", status_code=201)
def create_campaign(body: CampaignCreate) -> dict[str, Any]:
    """Create a new campaign.

    Args:
        body: Campaign creation request.

    Returns:
        Created campaign dict.
    """
    try:
        storage = get_storage()
        if body.start_date and body.end_date and body.end_date < body.start_date:
            raise ValidationError("end_date must not be before start_date.")
        campaign = Campaign(
            id=Campaign.generate_id(),
            name=_validator.sanitize_string(body.name, max_length=200),
            description=_validator.sanitize_string(body.description, max_length=2000),
            start_date=body.start_date,
            end_date=body.end_date,
            status=CampaignStatus(body.status),
        )
        storage.create_campaign(campaign)
        logger.info("Created campaign %s (%s)", campaign.id, campaign.name)
        return campaign.to_dict()
    except CanopyStorageError as exc:
        raise HTTPException(status_code=409, detail=str(exc)) from exc
    except (ValidationError, ValueError) as exc:
        raise HTTPException(status_code=422, detail=str(exc)) from exc
    except HTTPException:
        raise
    except Exception as exc:
        raise HTTPException(
            status_code=500, detail=_formatter.format_storage_error(exc).to_dict()
        ) from exc


# ---------------------------------------------------------------------------
# Participants
# ---------------------------------------------------------------------------


@router.post("/participants", status_code=201)
def register_participant(body: ParticipantRegister) -> dict[str, Any]:
    """Register a participant, optionally into a campaign.

    Registering an existing participant into a new campaign adds the
    membership; repeating a registration changes no counters.
    """
    try:
        storage = get_storage()
        participant_id = (
            _validator.validate_identifier(body.id) if body.id else Participant.generate_id()
        )
        leader_id = (
            _validator.validate_identifier(body.leader_id, field_name="leader_id")
            if body.leader_id
            else None
        )
        phone = _validator.validate_phone_number(body.phone_number) if body.phone_number else ""
        role = Role.parse(body.role)
        if role == Role.UNKNOWN:
            raise ValidationError(f"Unknown role: {body.role}")

        participant = Participant(
            id=participant_id,
            name=_validator.sanitize_string(body.name, max_length=200),
            role=role,
            leader_id=leader_id,
            phone_number=phone,
            document_number=body.document_number.strip(),
            country=_validator.sanitize_string(body.country, max_length=100),
            department=_validator.sanitize_string(body.department, max_length=100),
            city=_validator.sanitize_string(body.city, max_length=100),
            address=_validator.sanitize_string(body.address, max_length=300),
            neighborhood=_validator.sanitize_string(body.neighborhood, max_length=100),
            latitude=body.latitude,
            longitude=body.longitude,
            area_type=AreaType(body.area_type.upper()) if body.area_type else None,
            from_capital_city=body.from_capital_city,
            gender=_validator.sanitize_string(body.gender, max_length=50),
            profession=_validator.sanitize_string(body.profession, max_length=100),
        )
        stored = storage.register_participant(participant, campaign_id=body.campaign_id)
        return stored.to_dict()
    except CanopyStorageError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    except (ValidationError, ValueError) as exc:
        raise HTTPException(status_code=422, detail=str(exc)) from exc
    except HTTPException:
        raise
    except Exception as exc:
        raise HTTPException(
            status_code=500, detail=_formatter.format_storage_error(exc).to_dict()
        ) from exc


@router.get("/participants/{participant_id}")
def get_participant(participant_id: str) -> dict[str, Any]:
    """Get a participant by ID."""
    try:
        storage = get_storage()
        participant = storage.get_participant(participant_id)
        if participant is None:
            raise HTTPException(status_code=404, detail="Participant not found")
        return participant.to_dict()
    except HTTPException:
        raise
    except Exception as exc:
        raise HTTPException(
            status_code=500, detail=_formatter.format_storage_error(exc).to_dict()
        ) from exc


@router.post("/participants/{participant_id}/promote")
def promote_participant(participant_id: str) -> dict[str, Any]:
    """Upgrade a participant to the MULTIPLIER role."""
    try:
        storage = get_storage()
        return storage.promote_to_multiplier(participant_id).to_dict()
    except CanopyStorageError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    except HTTPException:
        raise
    except Exception as exc:
        raise HTTPException(
            status_code=500, detail=_formatter.format_storage_error(exc).to_dict()
        ) from exc


# ---------------------------------------------------------------------------
# Hierarchy
# ---------------------------------------------------------------------------


@router.get("/tree")
def get_tree(
    campaign_ids: str | None = None,
    exclude_id: str | None = None,
) -> dict[str, Any]:
    """Build and lay out the team hierarchy for a campaign selection.

    Args:
        campaign_ids: Comma-separated campaign IDs; all campaigns if omitted.
        exclude_id: Participant to leave out (typically the viewing admin).

    Returns:
        Dict with the positioned graph and forest statistics.
    """
    try:
        storage = get_storage()
        campaigns = _selected_campaigns(storage, campaign_ids)
        participants = _participants_of(storage, campaigns)
        forest, graph = build_campaign_graph(
            participants,
            campaigns,
            exclude_id=exclude_id or None,
            config=_layout_config,
        )
        return {
            "campaign_label": forest.campaign_label,
            "graph": graph.to_dict(),
            "statistics": forest.get_statistics(),
        }
    except ValidationError as exc:
        raise HTTPException(status_code=422, detail=str(exc)) from exc
    except HTTPException:
        raise
    except Exception as exc:
        raise HTTPException(
            status_code=500, detail=_formatter.format_tree_error(exc).to_dict()
        ) from exc


# ---------------------------------------------------------------------------
# Dashboard
# ---------------------------------------------------------------------------


@router.get("/kpis")
def get_kpis(campaign_ids: str | None = None) -> dict[str, Any]:
    """Headline KPIs for a campaign selection."""
    try:
        storage = get_storage()
        campaigns = _selected_campaigns(storage, campaign_ids)
        return compute_campaign_kpis(campaigns).to_dict()
    except ValidationError as exc:
        raise HTTPException(status_code=422, detail=str(exc)) from exc
    except HTTPException:
        raise
    except Exception as exc:
        raise HTTPException(
            status_code=500, detail=_formatter.format_storage_error(exc).to_dict()
        ) from exc


@router.get("/distribution/{dimension}")
def get_distribution(dimension: str, campaign_ids: str | None = None) -> dict[str, Any]:
    """Participant breakdown by one profile dimension.

    Args:
        dimension: One of department, city, role, area_type, gender, profession.
        campaign_ids: Comma-separated campaign IDs; all campaigns if omitted.
    """
    if dimension not in DIMENSIONS:
        raise HTTPException(status_code=422, detail=f"Unsupported dimension: {dimension}")
    try:
        storage = get_storage()
        campaigns = _selected_campaigns(storage, campaign_ids)
        entries = distribution(_participants_of(storage, campaigns), dimension)
        return {"dimension": dimension, "entries": [e.to_dict() for e in entries]}
    except ValidationError as exc:
        raise HTTPException(status_code=422, detail=str(exc)) from exc
    except HTTPException:
        raise
    except Exception as exc:
        raise HTTPException(
            status_code=500, detail=_formatter.format_storage_error(exc).to_dict()
        ) from exc


# ---------------------------------------------------------------------------
# Teams
# ---------------------------------------------------------------------------


@router.get("/team/{leader_id}")
def get_team(
    leader_id: str,
    campaign_id: str | None = None,
    sort_by: str = "created_at",
    sort_order: str = "desc",
    limit: int | None = None,
) -> dict[str, Any]:
    """List a leader's direct recruits."""
    try:
        storage = get_storage()
        if storage.get_participant(leader_id) is None:
            raise HTTPException(status_code=404, detail="Participant not found")
        members = list_team(
            storage.get_recruits(leader_id),
            leader_id,
            campaign_id=campaign_id,
            sort_by=sort_by,
            sort_order=sort_order,
            limit=limit,
        )
        return {"leader_id": leader_id, "members": [m.to_dict() for m in members]}
    except ValueError as exc:
        raise HTTPException(status_code=422, detail=str(exc)) from exc
    except HTTPException:
        raise
    except Exception as exc:
        raise HTTPException(
            status_code=500, detail=_formatter.format_storage_error(exc).to_dict()
        ) from exc


@router.get("/leader/{participant_id}")
def get_leader(participant_id: str) -> dict[str, Any]:
    """Return the leader of a participant, or ``{"leader": null}``."""
    try:
        storage = get_storage()
        participant = storage.get_participant(participant_id)
        if participant is None:
            raise HTTPException(status_code=404, detail="Participant not found")
        leader = storage.get_participant(participant.leader_id) if participant.leader_id else None
        return {"leader": leader.to_dict() if leader else None}
    except HTTPException:
        raise
    except Exception as exc:
        raise HTTPException(
            status_code=500, detail=_formatter.format_storage_error(exc).to_dict()
        ) from exc


# ---------------------------------------------------------------------------
# Referral links
# ---------------------------------------------------------------------------


@router.get("/referral-link/{leader_id}")
def get_referral_link(leader_id: str, campaign_id: str) -> dict[str, Any]:
    """Registration URL that signs recruits up under a leader in a campaign."""
    try:
        storage = get_storage()
        leader = storage.get_participant(leader_id)
        if leader is None:
            raise HTTPException(status_code=404, detail="Participant not found")
        if storage.get_campaign(campaign_id) is None:
            raise HTTPException(status_code=404, detail="Campaign not found")
        url = build_registration_url(
            _registration_base_url, leader.id, leader.name, campaign_id
        )
        return {"registration_url": url, "leader_id": leader.id, "campaign_id": campaign_id}
    except HTTPException:
        raise
    except Exception as exc:
        raise HTTPException(
            status_code=500, detail=_formatter.format_storage_error(exc).to_dict()
        ) from exc


# ---------------------------------------------------------------------------
# Multiplier requests
# ---------------------------------------------------------------------------


@router.post("/multiplier-requests", status_code=201)
def create_multiplier_request(body: MultiplierRequestCreate) -> dict[str, Any]:
    """File a follower's request to become a multiplier in a campaign."""
    try:
        storage = get_storage()
        if storage.get_participant(body.participant_id) is None:
            raise HTTPException(status_code=404, detail="Participant not found")
        if storage.get_campaign(body.campaign_id) is None:
            raise HTTPException(status_code=404, detail="Campaign not found")
        request = storage.create_multiplier_request(body.participant_id, body.campaign_id)
        return request.to_dict()
    except CanopyStorageError as exc:
        raise HTTPException(status_code=409, detail=str(exc)) from exc
    except HTTPException:
        raise
    except Exception as exc:
        raise HTTPException(
            status_code=500, detail=_formatter.format_storage_error(exc).to_dict()
        ) from exc


@router.get("/multiplier-requests")
def list_multiplier_requests(
    campaign_id: str,
    reviewer_id: str | None = None,
    status: str = "pending",
) -> dict[str, Any]:
    """List the multiplier requests of a campaign.

    Args:
        campaign_id: Campaign to list.
        reviewer_id: Only requests from this leader's direct recruits.
        status: pending (default), approved, rejected, or all.
    """
    try:
        storage = get_storage()
        wanted = None if status == "all" else MultiplierRequestStatus(status)
        requests = storage.list_multiplier_requests(
            campaign_id, reviewer_id=reviewer_id or None, status=wanted
        )
        return {"campaign_id": campaign_id, "requests": [r.to_dict() for r in requests]}
    except ValueError as exc:
        raise HTTPException(status_code=422, detail=f"Invalid status value: {status}") from exc
    except HTTPException:
        raise
    except Exception as exc:
        raise HTTPException(
            status_code=500, detail=_formatter.format_storage_error(exc).to_dict()
        ) from exc


@router.get("/multiplier-requests/{request_id}")
def get_multiplier_request(request_id: str) -> dict[str, Any]:
    """Get a multiplier request by ID."""
    try:
        storage = get_storage()
        request = storage.get_multiplier_request(request_id)
        if request is None:
            raise HTTPException(status_code=404, detail="Multiplier request not found")
        return request.to_dict()
    except HTTPException:
        raise
    except Exception as exc:
        raise HTTPException(
            status_code=500, detail=_formatter.format_storage_error(exc).to_dict()
        ) from exc


@router.post("/multiplier-requests/{request_id}/approve")
def approve_multiplier_request(request_id: str, body: MultiplierRequestReview) -> dict[str, Any]:
    """Approve a pending request; the participant becomes a multiplier."""
    try:
        storage = get_storage()
        if storage.get_multiplier_request(request_id) is None:
            raise HTTPException(status_code=404, detail="Multiplier request not found")
        request = storage.approve_multiplier_request(
            request_id,
            reviewer_id=_validator.validate_identifier(body.reviewer_id, field_name="reviewer_id"),
            reviewer_name=_validator.sanitize_string(body.reviewer_name, max_length=200),
        )
        return request.to_dict()
    except CanopyStorageError as exc:
        raise HTTPException(status_code=409, detail=str(exc)) from exc
    except ValidationError as exc:
        raise HTTPException(status_code=422, detail=str(exc)) from exc
    except HTTPException:
        raise
    except Exception as exc:
        raise HTTPException(
            status_code=500, detail=_formatter.format_storage_error(exc).to_dict()
        ) from exc


@router.post("/multiplier-requests/{request_id}/reject")
def reject_multiplier_request(request_id: str, body: MultiplierRequestReview) -> dict[str, Any]:
    """Reject a pending request; the participant keeps its role."""
    try:
        storage = get_storage()
        if storage.get_multiplier_request(request_id) is None:
            raise HTTPException(status_code=404, detail="Multiplier request not found")
        reason = _validator.sanitize_string(body.rejection_reason or "", max_length=500)
        request = storage.reject_multiplier_request(
            request_id,
            reviewer_id=_validator.validate_identifier(body.reviewer_id, field_name="reviewer_id"),
            reviewer_name=_validator.sanitize_string(body.reviewer_name, max_length=200),
            rejection_reason=reason or None,
        )
        return request.to_dict()
    except CanopyStorageError as exc:
        raise HTTPException(status_code=409, detail=str(exc)) from exc
    except ValidationError as exc:
        raise HTTPException(status_code=422, detail=str(exc)) from exc
    except HTTPException:
        raise
    except Exception as exc:
        raise HTTPException(
            status_code=500, detail=_formatter.format_storage_error(exc).to_dict()
        ) from exc


# ---------------------------------------------------------------------------
# Export
# ---------------------------------------------------------------------------


@router.get("/export")
def export_csv(campaign_ids: str | None = None) -> Response:
    """Download the participants of a campaign selection as CSV."""
    try:
        storage = get_storage()
        campaigns = _selected_campaigns(storage, campaign_ids)
        content = participants_to_csv_bytes(_participants_of(storage, campaigns))
        filename = f"participants_{datetime.now().strftime('%Y%m%d')}.csv"
        return Response(
            content=content,
            media_type="text/csv; charset=utf-8",
            headers={"Content-Disposition": f'attachment; filename="{filename}"'},
        )
    except ValidationError as exc:
        raise HTTPException(status_code=422, detail=str(exc)) from exc
    except HTTPException:
        raise
    except Exception as exc:
        raise HTTPException(
            status_code=500, detail=_formatter.format_storage_error(exc).to_dict()
        ) from exc


# ---------------------------------------------------------------------------
# One-time codes
# ---------------------------------------------------------------------------


@router.post("/otp/send")
def send_otp(body: OtpSendRequest) -> dict[str, Any]:
    """Issue a one-time code for a phone number.

    Delivery is left to the SMS gateway of the deployment; the code is
    only echoed back when ``expose_otp_codes`` is configured.
    """
    try:
        phone = _validator.validate_phone_number(body.phone_number)
        code = _otp_service.issue(phone, expires_in_minutes=body.expires_in_minutes)
        result: dict[str, Any] = {
            "sent": True,
            "expires_in_minutes": body.expires_in_minutes,
        }
        if _expose_otp_codes:
            result["code"] = code
        return result
    except ValidationError as exc:
        raise HTTPException(status_code=422, detail=str(exc)) from exc
    except Exception as exc:
        raise HTTPException(
            status_code=500, detail=_formatter.format_auth_error(exc).to_dict()
        ) from exc


@router.post("/otp/verify")
def verify_otp(body: OtpVerifyRequest) -> dict[str, Any]:
    """Check a one-time code; a valid code is consumed."""
    try:
        phone = _validator.validate_phone_number(body.phone_number)
        return {"verified": _otp_service.verify(phone, body.code)}
    except ValidationError as exc:
        raise HTTPException(status_code=422, detail=str(exc)) from exc
    except Exception as exc:
        raise HTTPException(
            status_code=500, detail=_formatter.format_auth_error(exc).to_dict()
        ) from exc

"""
CSV exporter for participant lists.

Exports participants as CSV for spreadsheet tools, masking phone and
document numbers so exported files never carry them in full.
"""

from __future__ import annotations

import csv
import io
import re
from collections.abc import Iterable
from pathlib import Path
from typing import Any

from canopy.src.models import AreaType, Participant, Role

UTF8_BOM = "\ufeff"

ROLE_LABELS = {
    Role.SUPER_ADMIN: "Super Administrator",
    Role.ADMIN: "Administrator",
    Role.COORDINATOR: "Coordinator",
    Role.LINK: "Link",
    Role.MULTIPLIER: "Multiplier",
    Role.FOLLOWER: "Follower",
    Role.UNKNOWN: "",
}

# CSV columns
COLUMNS = [
    "ID",
    "Name",
    "Phone",
    "Document",
    "Role",
    "Country",
    "Department",
    "City",
    "Address",
    "Neighborhood",
    "Area Type",
    "From Capital",
    "Has Team",
    "Participants",
    "Registered",
]


def mask_phone(phone: str | None) -> str:
    """Keep only the last 4 digits of a phone number."""
    if not phone:
        return ""
    digits = re.sub(r"\D", "", phone)
    if len(digits) <= 4:
        return "***"
    return f"***{digits[-4:]}"


def mask_document(document: str | None) -> str:
    """Keep only the last 3 digits of an identity document."""
    if not document:
        return ""
    digits = re.sub(r"\D", "", document)
    if len(digits) <= 3:
        return "***"
    return f"***{digits[-3:]}"


def participant_to_row(participant: Participant) -> list[Any]:
    """Convert a participant to a CSV row."""
    area = ""
    if participant.area_type == AreaType.URBAN:
        area = "Urban"
    elif participant.area_type == AreaType.RURAL:
        area = "Rural"

    return [
        participant.id,
        participant.name,
        mask_phone(participant.phone_number),
        mask_document(participant.document_number),
        ROLE_LABELS.get(participant.role, participant.role.value),
        participant.country,
        participant.department,
        participant.city,
        participant.address,
        participant.neighborhood,
        area,
        "Yes" if participant.from_capital_city else "No",
        "Yes" if participant.participants > 0 else "No",
        participant.participants,
        participant.created_at.date().isoformat(),
    ]


def participants_to_csv(participants: Iterable[Participant]) -> str:
    """Render participants as CSV text (header row always present)."""
    buffer = io.StringIO()
    writer = csv.writer(buffer, lineterminator="\n")
    writer.writerow(COLUMNS)
    for participant in participants:
        writer.writerow(participant_to_row(participant))
    return buffer.getvalue()


def participants_to_csv_bytes(participants: Iterable[Participant]) -> bytes:
    """Render participants as UTF-8 CSV with a BOM so spreadsheets detect the encoding."""
    return (UTF8_BOM + participants_to_csv(participants)).encode("utf-8")


def export_participants(participants: Iterable[Participant], path: Path) -> Path:
    """Write participants to a CSV file.

    Args:
        participants: Participants to export.
        path: Destination; ``.csv`` is appended when missing.

    Returns:
        The path written.
    """
    if path.suffix.lower() != ".csv":
        path = path.with_suffix(".csv")
    path.write_bytes(participants_to_csv_bytes(participants))
    return path

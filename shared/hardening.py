"""Production hardening utilities for the Canopy backend.

Provides user-friendly error formatting, input validation for the values
that cross the HTTP boundary (identifiers, phone numbers, free text), and
component health checking.
"""

from __future__ import annotations

import html
import json
import logging
import re
import sqlite3
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# 1. Error Formatting
# ---------------------------------------------------------------------------


@dataclass
class UserFriendlyError:
    """A structured error designed for end-user consumption.

    Attributes:
        message: Clear description for the user.
        suggestion: Actionable guidance.
        component: Originating subsystem (tree, storage, auth).
        error_code: Machine-readable identifier (e.g. "STOR_001").
        technical_detail: Debugging info for logs only -- never shown to users.
    """

    message: str
    suggestion: str
    component: str
    error_code: str
    technical_detail: str = ""

    def to_dict(self) -> dict[str, str]:
        """Serialize for API responses (excludes technical_detail).

        Returns:
            Dictionary safe for sending to end users.
        """
        return {
            "message": self.message,
            "suggestion": self.suggestion,
            "component": self.component,
            "error_code": self.error_code,
        }


class ErrorFormatter:
    """Convert internal exceptions to user-friendly messages.

    All methods return a ``UserFriendlyError`` and never expose internal
    paths, stack traces, or implementation details to the end user.
    """

    def format_storage_error(self, error: Exception) -> UserFriendlyError:
        """Format a campaign/participant storage error."""
        return self._format(error, component="storage", code_prefix="STOR")

    def format_tree_error(self, error: Exception) -> UserFriendlyError:
        """Format an error raised while building or laying out a tree."""
        return self._format(error, component="tree", code_prefix="TREE")

    def format_auth_error(self, error: Exception) -> UserFriendlyError:
        """Format a one-time-code error."""
        return self._format(error, component="auth", code_prefix="AUTH")

    # ------------------------------------------------------------------

    def _format(
        self,
        error: Exception,
        *,
        component: str,
        code_prefix: str,
    ) -> UserFriendlyError:
        """Shared formatting logic.

        Args:
            error: The caught exception.
            component: Subsystem name.
            code_prefix: Short prefix for error code.

        Returns:
            Structured error with safe user message.
        """
        message, suggestion, code_suffix = _classify_error(error)
        logger.error("%s error (%s_%s): %r", component, code_prefix, code_suffix, error)
        return UserFriendlyError(
            message=message,
            suggestion=suggestion,
            component=component,
            error_code=f"{code_prefix}_{code_suffix}",
            technical_detail=repr(error),
        )


def _classify_error(error: Exception) -> tuple[str, str, str]:
    """Map an exception to (message, suggestion, code_suffix).

    Args:
        error: The caught exception.

    Returns:
        Tuple of user message, suggestion text, and error code suffix.
    """
    if isinstance(error, sqlite3.OperationalError):
        return (
            "The database is unavailable or locked.",
            "Try again in a moment. If the problem persists, restart the server.",
            "001",
        )
    if isinstance(error, sqlite3.IntegrityError):
        return (
            "The record conflicts with existing data.",
            "Check that the ID is not already in use.",
            "002",
        )
    if isinstance(error, (TimeoutError, ConnectionError)):
        return (
            "The operation timed out or lost its connection.",
            "Try again. If the problem persists, check system resources.",
            "003",
        )
    if isinstance(error, RecursionError):
        return (
            "The team hierarchy is too deep to display.",
            "Narrow the campaign selection and try again.",
            "004",
        )
    if isinstance(error, json.JSONDecodeError):
        return (
            "A request contained invalid JSON.",
            "Verify the request body is valid JSON.",
            "006",
        )
    if isinstance(error, ValueError):
        return (
            "Invalid input was provided.",
            "Check the input values and try again.",
            "005",
        )
    return (
        "An unexpected error occurred.",
        "If this keeps happening, please report the issue.",
        "999",
    )


# ---------------------------------------------------------------------------
# 2. Input Validation
# ---------------------------------------------------------------------------

# Identifiers: letters, digits, and a few separators
_IDENTIFIER_PATTERN = re.compile(r"^[A-Za-z0-9_\-.:]{1,128}$")
# Phone numbers: optional leading +, then digits with common separators
_PHONE_PATTERN = re.compile(r"^\+?[0-9 ()\-]{7,20}$")
_MIN_PHONE_DIGITS = 10


class ValidationError(Exception):
    """Raised when input validation fails."""


class InputValidator:
    """Validate inputs at system boundaries.

    All methods raise ``ValidationError`` on failure unless
    documented otherwise.
    """

    def validate_identifier(self, value: str, *, field_name: str = "id") -> str:
        """Validate a record identifier.

        Args:
            value: Raw identifier from user input.
            field_name: Name used in the error message.

        Returns:
            The stripped identifier.

        Raises:
            ValidationError: If empty or containing unsupported characters.
        """
        stripped = (value or "").strip()
        if not stripped:
            raise ValidationError(f"{field_name} is required.")
        if not _IDENTIFIER_PATTERN.match(stripped):
            raise ValidationError(f"{field_name} contains unsupported characters.")
        return stripped

    def parse_id_list(self, raw: str | None, *, field_name: str = "ids") -> list[str]:
        """Parse a comma-separated identifier list, dropping blanks and repeats.

        Args:
            raw: e.g. "camp_a,camp_b".
            field_name: Name used in error messages.

        Returns:
            Identifiers in first-seen order; empty for None or blank input.

        Raises:
            ValidationError: If any identifier is malformed.
        """
        if not raw:
            return []
        ids = [
            self.validate_identifier(part, field_name=field_name)
            for part in raw.split(",")
            if part.strip()
        ]
        return list(dict.fromkeys(ids))

    def validate_phone_number(self, value: str) -> str:
        """Validate a phone number.

        Args:
            value: Raw phone number.

        Returns:
            The phone number with separators removed (leading + kept).

        Raises:
            ValidationError: If malformed or shorter than 10 digits.
        """
        stripped = (value or "").strip()
        if not _PHONE_PATTERN.match(stripped):
            raise ValidationError("Invalid phone number.")
        digits = re.sub(r"\D", "", stripped)
        if len(digits) < _MIN_PHONE_DIGITS:
            raise ValidationError("Invalid phone number.")
        return ("+" if stripped.startswith("+") else "") + digits

    def sanitize_string(
        self,
        value: str,
        *,
        max_length: int = 1000,
        escape_html: bool = False,
    ) -> str:
        """Sanitize a user-provided string.

        Removes control characters, strips surrounding whitespace and
        truncates. The text is stored as typed; pass ``escape_html`` only
        when the result is written straight into HTML markup.

        Args:
            value: Raw user string.
            max_length: Maximum allowed length after sanitization.
            escape_html: Escape ``<``, ``>``, ``&`` and quotes.

        Returns:
            Cleaned string.
        """
        cleaned = _strip_control_chars(value).strip()
        if len(cleaned) > max_length:
            cleaned = cleaned[:max_length]
        if escape_html:
            cleaned = html.escape(cleaned, quote=True)
        return cleaned


def _strip_control_chars(text: str) -> str:
    """Remove ASCII control characters except common whitespace.

    Args:
        text: Input string.

    Returns:
        Cleaned string.
    """
    return re.sub(r"[\x00-\x08\x0b\x0c\x0e-\x1f\x7f]", "", text)


# ---------------------------------------------------------------------------
# 3. Graceful Degradation / Health Checks
# ---------------------------------------------------------------------------


@dataclass
class HealthCheck:
    """Result of a single component health check.

    Attributes:
        component: Subsystem name (storage, tree).
        status: One of "healthy", "degraded", "unavailable".
        message: Human-readable description.
        checked_at: UTC timestamp of the check.
    """

    component: str
    status: str
    message: str
    checked_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_dict(self) -> dict[str, str]:
        """Serialize for API responses.

        Returns:
            Dictionary with component, status, message, checked_at.
        """
        return {
            "component": self.component,
            "status": self.status,
            "message": self.message,
            "checked_at": self.checked_at.isoformat(),
        }


class SystemHealthChecker:
    """Check health of the Canopy subsystems.

    Each check returns a ``HealthCheck`` with status:
      - ``healthy``: Fully operational.
      - ``degraded``: Reachable but misbehaving.
      - ``unavailable``: Cannot function.

    Args:
        connection: SQLite connection of the active storage, if any.
    """

    def __init__(self, connection: sqlite3.Connection | None = None) -> None:
        self.connection = connection

    def check_storage(self) -> HealthCheck:
        """Check that the database answers a trivial query."""
        if self.connection is None:
            return HealthCheck(
                component="storage",
                status="unavailable",
                message="storage is not configured.",
            )
        try:
            self.connection.execute("SELECT 1").fetchone()
        except sqlite3.Error as exc:
            return HealthCheck(
                component="storage",
                status="degraded",
                message=f"storage query failed: {exc.__class__.__name__}.",
            )
        return HealthCheck(
            component="storage",
            status="healthy",
            message="storage is operational.",
        )

    def check_tree(self) -> HealthCheck:
        """Check that the tree builder imports."""
        if not _try_import("canopy.src.builder"):
            return HealthCheck(
                component="tree",
                status="unavailable",
                message="tree builder import failed.",
            )
        return HealthCheck(
            component="tree",
            status="healthy",
            message="tree builder is operational.",
        )

    def full_check(self) -> list[HealthCheck]:
        """Run health checks for all components."""
        return [self.check_storage(), self.check_tree()]

    @staticmethod
    def overall_status(checks: list[HealthCheck]) -> str:
        """Collapse individual checks into "ok", "degraded" or "error"."""
        statuses = {c.status for c in checks}
        if statuses == {"healthy"}:
            return "ok"
        if "healthy" in statuses:
            return "degraded"
        return "error"

    def report(self) -> dict[str, Any]:
        """Full health report for the health endpoint."""
        checks = self.full_check()
        return {
            "status": self.overall_status(checks),
            "components": [c.to_dict() for c in checks],
        }


def _try_import(module_name: str) -> bool:
    """Attempt to import *module_name* without side effects.

    Args:
        module_name: Dotted module path.

    Returns:
        True on success, False on ImportError.
    """
    import importlib

    try:
        importlib.import_module(module_name)
        return True
    except ImportError:
        return False

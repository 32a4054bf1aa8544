"""Expiring key-value store and one-time passcodes.

``ExpiringStore`` is an explicit, injectable store with per-entry expiry
and an injectable clock. ``OtpService`` issues and verifies six-digit
codes on top of it; a code is consumed by its first successful check.
"""

from __future__ import annotations

import logging
import secrets
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import Generic, TypeVar

logger = logging.getLogger(__name__)

V = TypeVar("V")


@dataclass
class _Entry(Generic[V]):
    value: V
    expires_at: float


class ExpiringStore(Generic[V]):
    """Thread-safe key-value store whose entries expire.

    Args:
        default_ttl: Lifetime in seconds when ``set`` is given none.
        clock: Returns the current time in seconds; defaults to
            ``time.monotonic``.
    """

    def __init__(
        self,
        default_ttl: float = 600.0,
        clock: Callable[[], float] | None = None,
    ) -> None:
        if default_ttl <= 0:
            raise ValueError("default_ttl must be positive")
        self.default_ttl = default_ttl
        self._clock = clock or time.monotonic
        self._entries: dict[str, _Entry[V]] = {}
        self._lock = threading.Lock()

    def set(self, key: str, value: V, ttl: float | None = None) -> None:
        """Store a value, replacing any previous one for the key."""
        lifetime = self.default_ttl if ttl is None else ttl
        with self._lock:
            self._entries[key] = _Entry(value=value, expires_at=self._clock() + lifetime)

    def get(self, key: str) -> V | None:
        """Return the live value for a key, dropping it if expired."""
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            if self._clock() > entry.expires_at:
                del self._entries[key]
                return None
            return entry.value

    def pop(self, key: str) -> V | None:
        """Remove and return the live value for a key."""
        with self._lock:
            entry = self._entries.pop(key, None)
        if entry is None or self._clock() > entry.expires_at:
            return None
        return entry.value

    def pop_if(self, key: str, predicate: Callable[[V], bool]) -> V | None:
        """Remove and return the live value for a key when ``predicate`` accepts it.

        The check and the removal happen under one lock, so two callers
        can never both take the same value. Expired entries are dropped.
        """
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            if self._clock() > entry.expires_at:
                del self._entries[key]
                return None
            if not predicate(entry.value):
                return None
            del self._entries[key]
            return entry.value

    def purge_expired(self) -> int:
        """Drop every expired entry.

        Returns:
            Number of entries removed.
        """
        now = self._clock()
        with self._lock:
            expired = [k for k, e in self._entries.items() if now > e.expires_at]
            for key in expired:
                del self._entries[key]
        return len(expired)

    def __contains__(self, key: object) -> bool:
        return isinstance(key, str) and self.get(key) is not None

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)


class OtpService:
    """Issues and verifies one-time passcodes keyed by phone number.

    Args:
        store: Backing store; a fresh ExpiringStore when omitted.
        default_minutes: Code lifetime used by ``issue`` and ``save``.
    """

    CODE_LENGTH = 6

    def __init__(
        self,
        store: ExpiringStore[str] | None = None,
        default_minutes: float = 10,
    ) -> None:
        self.store: ExpiringStore[str] = store or ExpiringStore(default_ttl=default_minutes * 60)
        self.default_minutes = default_minutes

    @classmethod
    def generate_code(cls) -> str:
        """Generate a random six-digit code (never starts with 0)."""
        low = 10 ** (cls.CODE_LENGTH - 1)
        return str(low + secrets.randbelow(9 * low))

    def save(
        self,
        phone_number: str,
        code: str,
        expires_in_minutes: float | None = None,
    ) -> None:
        """Store a code for a phone number, replacing any earlier code."""
        minutes = self.default_minutes if expires_in_minutes is None else expires_in_minutes
        self.store.set(phone_number, code, ttl=minutes * 60)

    def issue(self, phone_number: str, expires_in_minutes: float | None = None) -> str:
        """Generate, store and return a fresh code for a phone number."""
        code = self.generate_code()
        self.save(phone_number, code, expires_in_minutes)
        logger.info("Issued one-time code for %s", _mask(phone_number))
        return code

    def verify(self, phone_number: str, code: str) -> bool:
        """Check a code; a match consumes it.

        Returns:
            True only for a live, matching code. Expired codes are dropped.
        """
        if len(code) != self.CODE_LENGTH or not code.isascii() or not code.isdigit():
            return False
        given = code.encode("ascii")
        taken = self.store.pop_if(
            phone_number,
            lambda stored: secrets.compare_digest(stored.encode("utf-8"), given),
        )
        return taken is not None


def _mask(phone_number: str) -> str:
    return f"***{phone_number[-4:]}" if len(phone_number) > 4 else "***"

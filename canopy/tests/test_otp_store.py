"""Tests for ExpiringStore and OtpService."""

from __future__ import annotations

import threading

import pytest

from canopy.src.otp_store import ExpiringStore, OtpService


class FakeClock:
    """Manually advanced clock."""

    def __init__(self) -> None:
        self.now = 1000.0

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def store(clock: FakeClock) -> ExpiringStore[str]:
    return ExpiringStore(default_ttl=60, clock=clock)


class TestExpiringStore:
    """Tests for ExpiringStore."""

    def test_set_and_get(self, store):
        store.set("k", "v")
        assert store.get("k") == "v"
        assert "k" in store

    def test_missing_key(self, store):
        assert store.get("nope") is None
        assert "nope" not in store

    def test_expires_after_ttl(self, store, clock):
        store.set("k", "v")
        clock.advance(61)
        assert store.get("k") is None
        assert len(store) == 0

    def test_live_at_exact_expiry(self, store, clock):
        store.set("k", "v")
        clock.advance(60)
        assert store.get("k") == "v"

    def test_per_entry_ttl(self, store, clock):
        store.set("short", "a", ttl=5)
        store.set("long", "b")
        clock.advance(10)
        assert store.get("short") is None
        assert store.get("long") == "b"

    def test_set_replaces_and_restarts_ttl(self, store, clock):
        store.set("k", "old")
        clock.advance(50)
        store.set("k", "new")
        clock.advance(50)
        assert store.get("k") == "new"

    def test_pop(self, store, clock):
        store.set("k", "v")
        assert store.pop("k") == "v"
        assert store.pop("k") is None
        store.set("k", "v")
        clock.advance(100)
        assert store.pop("k") is None

    def test_pop_if_accepts(self, store):
        store.set("k", "v")
        assert store.pop_if("k", lambda value: value == "v") == "v"
        assert "k" not in store

    def test_pop_if_rejects_and_keeps(self, store):
        store.set("k", "v")
        assert store.pop_if("k", lambda value: value == "other") is None
        assert store.get("k") == "v"

    def test_pop_if_drops_expired(self, store, clock):
        store.set("k", "v")
        clock.advance(61)
        assert store.pop_if("k", lambda value: True) is None
        assert len(store) == 0

    def test_purge_expired(self, store, clock):
        store.set("a", "1", ttl=5)
        store.set("b", "2", ttl=5)
        store.set("c", "3", ttl=500)
        clock.advance(10)
        assert store.purge_expired() == 2
        assert len(store) == 1

    def test_rejects_non_positive_ttl(self):
        with pytest.raises(ValueError):
            ExpiringStore(default_ttl=0)


class TestOtpService:
    """Tests for OtpService."""

    def test_generate_code_shape(self):
        for _ in range(50):
            code = OtpService.generate_code()
            assert len(code) == 6
            assert code.isdigit()
            assert code[0] != "0"

    def test_issue_then_verify_once(self, store):
        service = OtpService(store=store)
        code = service.issue("+573001234567")
        assert service.verify("+573001234567", code) is True
        assert service.verify("+573001234567", code) is False

    def test_wrong_code_keeps_stored_code(self, store):
        service = OtpService(store=store)
        service.save("+573001234567", "123456")
        assert service.verify("+573001234567", "654321") is False
        assert service.verify("+573001234567", "123456") is True

    def test_expired_code_rejected(self, clock):
        service = OtpService(store=ExpiringStore(clock=clock))
        service.save("+573001234567", "123456", expires_in_minutes=10)
        clock.advance(10 * 60 + 1)
        assert service.verify("+573001234567", "123456") is False
        assert len(service.store) == 0

    def test_default_lifetime_is_ten_minutes(self, clock):
        service = OtpService(store=ExpiringStore(clock=clock))
        service.save("+573001234567", "123456")
        clock.advance(9 * 60)
        assert service.verify("+573001234567", "123456") is True

    def test_new_code_replaces_old(self, store):
        service = OtpService(store=store)
        service.save("+573001234567", "111111")
        service.save("+573001234567", "222222")
        assert service.verify("+573001234567", "111111") is False
        assert service.verify("+573001234567", "222222") is True

    def test_unknown_phone(self):
        assert OtpService().verify("+570000000000", "123456") is False

    @pytest.mark.parametrize("code", ["12345é", "١٢٣٤٥٦", "12345", "1234567", ""])
    def test_malformed_code_rejected(self, store, code):
        service = OtpService(store=store)
        service.save("+573001234567", "123456")
        assert service.verify("+573001234567", code) is False
        assert service.verify("+573001234567", "123456") is True

    def test_concurrent_checks_consume_once(self, store):
        service = OtpService(store=store)
        service.save("+573001234567", "123456")
        barrier = threading.Barrier(8)
        results: list[bool] = []
        lock = threading.Lock()

        def check() -> None:
            barrier.wait()
            outcome = service.verify("+573001234567", "123456")
            with lock:
                results.append(outcome)

        threads = [threading.Thread(target=check) for _ in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert results.count(True) == 1
        assert results.count(False) == 7

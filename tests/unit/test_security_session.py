"""
Unit tests for the vault key cache (idle auto-lock and lock observers).
"""

import logging
import threading
from unittest.mock import MagicMock

import pytest

from zkvault.core.exceptions import MissingKeyError, ValidationError
from zkvault.security import session
from zkvault.security.kdf import derive_kek, generate_salt
from zkvault.security.keys import generate_vault_key
from zkvault.security.session import KeyCache, LockBroadcaster, LockReason
from zkvault.security.timers import ManualScheduler, ThreadingScheduler, TimerHandle

TIMEOUT_S = 900.0  # default idle timeout, 900000 ms


# ==============================================================================
# Fixtures
# ==============================================================================

@pytest.fixture
def scheduler():
    return ManualScheduler(start=1000.0)


@pytest.fixture
def cache(scheduler):
    """Returns a fresh, locked KeyCache on virtual time."""
    return KeyCache(scheduler=scheduler)


@pytest.fixture
def vault_key():
    return generate_vault_key()


@pytest.fixture
def observer(cache):
    cb = MagicMock()
    cache.on_lock(cb)
    return cb


class _CountingScheduler(ManualScheduler):
    def __init__(self, start=0.0):
        super().__init__(start)
        self.scheduled = 0

    def call_later(self, delay, callback):
        self.scheduled += 1
        return super().call_later(delay, callback)


class _StalledScheduler(ManualScheduler):
    """Clock advances but timers never fire, like a starved timer thread."""

    def call_later(self, delay, callback):
        return TimerHandle(callback)


# ==============================================================================
# Tests: Locked state
# ==============================================================================

def test_starts_locked(cache):
    assert cache.is_vault_unlocked() is False
    assert cache.get_vault_key() is None
    assert cache.get_time_until_lock() == 0
    assert cache.get_formatted_time_until_lock() == "Locked"


def test_get_while_locked_schedules_nothing(cache, scheduler):
    cache.get_vault_key()
    assert scheduler.pending() == 0


def test_invalid_timeout_rejected():
    with pytest.raises(ValidationError):
        KeyCache(idle_timeout_ms=0)


def test_set_vault_key_requires_vault_key(cache):
    with pytest.raises(MissingKeyError):
        cache.set_vault_key(None)
    kek = derive_kek("pw", generate_salt(), 100_000)
    with pytest.raises(MissingKeyError):
        cache.set_vault_key(kek)
    assert cache.is_vault_unlocked() is False


# ==============================================================================
# Tests: Unlock and idle timeout
# ==============================================================================

def test_set_and_get(cache, vault_key, scheduler):
    cache.set_vault_key(vault_key)
    assert cache.is_vault_unlocked() is True
    assert cache.get_vault_key() is vault_key
    assert cache.get_time_until_lock() == 900_000
    assert scheduler.pending() == 1


def test_idle_timeout_locks_and_notifies_once(cache, vault_key, scheduler, observer):
    cache.set_vault_key(vault_key)

    scheduler.advance(TIMEOUT_S - 0.5)
    assert cache.is_vault_unlocked() is True
    observer.assert_not_called()

    scheduler.advance(0.5)
    assert cache.is_vault_unlocked() is False
    assert cache.get_vault_key() is None
    observer.assert_called_once_with(LockReason.TIMEOUT)

    scheduler.advance(TIMEOUT_S * 3)
    observer.assert_called_once()
    assert scheduler.pending() == 0


def test_sliding_window_keeps_vault_unlocked(cache, vault_key, scheduler, observer):
    cache.set_vault_key(vault_key)
    for _ in range(20):
        scheduler.advance(TIMEOUT_S * 0.66)
        assert cache.get_vault_key() is vault_key
    observer.assert_not_called()
    # only the latest timer is live
    assert scheduler.pending() == 1


def test_reads_do_not_schedule_timers(vault_key):
    sched = _CountingScheduler()
    cache = KeyCache(scheduler=sched)
    cache.set_vault_key(vault_key)

    for _ in range(500):
        assert cache.get_vault_key() is vault_key
        cache.update_activity()
    assert sched.scheduled == 1


def test_timer_rearms_for_remaining_window(vault_key):
    sched = _CountingScheduler()
    cache = KeyCache(scheduler=sched)
    cb = MagicMock()
    cache.on_lock(cb)
    cache.set_vault_key(vault_key)

    sched.advance(300.0)
    cache.get_vault_key()

    # first timer fires at 900 and finds 300 s left
    sched.advance(600.0)
    assert sched.scheduled == 2
    assert cache.get_time_until_lock() == 300_000
    cb.assert_not_called()

    sched.advance(300.0)
    cb.assert_called_once_with(LockReason.TIMEOUT)
    assert sched.pending() == 0


def test_queries_do_not_extend_window(cache, vault_key, scheduler, observer):
    cache.set_vault_key(vault_key)
    scheduler.advance(600.0)

    assert cache.is_vault_unlocked() is True
    assert cache.get_time_until_lock() == 300_000
    assert cache.get_formatted_time_until_lock() == "5:00"

    scheduler.advance(300.0)
    assert cache.is_vault_unlocked() is False
    observer.assert_called_once_with(LockReason.TIMEOUT)


def test_get_resets_time_until_lock(cache, vault_key, scheduler):
    cache.set_vault_key(vault_key)
    scheduler.advance(500.0)
    assert cache.get_time_until_lock() == 400_000
    cache.get_vault_key()
    assert cache.get_time_until_lock() == 900_000


def test_update_activity(cache, vault_key, scheduler):
    assert cache.update_activity() is False
    cache.set_vault_key(vault_key)
    scheduler.advance(800.0)
    assert cache.update_activity() is True
    scheduler.advance(800.0)
    assert cache.is_vault_unlocked() is True


def test_formatted_time(cache, vault_key, scheduler):
    cache.set_vault_key(vault_key)
    assert cache.get_formatted_time_until_lock() == "15:00"
    scheduler.advance(61.5)
    assert cache.get_formatted_time_until_lock() == "13:58"


def test_reset_key_keeps_single_timer(cache, vault_key, scheduler, observer):
    cache.set_vault_key(vault_key)
    scheduler.advance(600.0)
    cache.set_vault_key(generate_vault_key())
    assert scheduler.pending() == 1

    # first timer would have fired at +900
    scheduler.advance(400.0)
    assert cache.is_vault_unlocked() is True
    observer.assert_not_called()


def test_custom_timeout(scheduler, vault_key):
    cache = KeyCache(idle_timeout_ms=1500, scheduler=scheduler)
    cache.set_vault_key(vault_key)
    scheduler.advance(1.5)
    assert cache.is_vault_unlocked() is False


def test_overdue_timer_locks_on_next_read(vault_key):
    """If the timer has not run by the deadline, reads still treat the key as expired."""
    sched = _StalledScheduler()
    cache = KeyCache(idle_timeout_ms=1000, scheduler=sched)
    cb = MagicMock()
    cache.on_lock(cb)

    cache.set_vault_key(vault_key)
    sched.advance(2.0)

    # pure query: reports locked but does not transition
    assert cache.is_vault_unlocked() is False
    assert cache.get_time_until_lock() == 0
    cb.assert_not_called()

    assert cache.get_vault_key() is None
    cb.assert_called_once_with(LockReason.TIMEOUT)
    assert cache.get_vault_key() is None
    cb.assert_called_once()


# ==============================================================================
# Tests: Manual lock and logout
# ==============================================================================

def test_lock_vault(cache, vault_key, scheduler, observer):
    cache.set_vault_key(vault_key)
    assert cache.lock_vault() is True

    assert cache.is_vault_unlocked() is False
    assert cache._vault_key is None
    assert scheduler.pending() == 0
    observer.assert_called_once_with(LockReason.MANUAL)


def test_lock_when_locked_is_noop(cache, observer):
    assert cache.lock_vault() is False
    assert cache.logout() is False
    observer.assert_not_called()


def test_logout(cache, vault_key, observer):
    cache.set_vault_key(vault_key)
    assert cache.logout() is True
    observer.assert_called_once_with(LockReason.LOGOUT)


def test_timer_after_manual_lock_does_nothing(cache, vault_key, scheduler, observer):
    cache.set_vault_key(vault_key)
    cache.lock_vault()
    scheduler.advance(TIMEOUT_S * 2)
    observer.assert_called_once_with(LockReason.MANUAL)


def test_unlock_lock_cycles(cache, vault_key, observer):
    for _ in range(3):
        cache.set_vault_key(vault_key)
        cache.lock_vault()
    assert observer.call_count == 3


# ==============================================================================
# Tests: Observers
# ==============================================================================

def test_observer_sees_locked_state(cache, vault_key):
    seen = []

    def reenter(reason):
        seen.append((reason, cache.get_vault_key(), cache.is_vault_unlocked()))

    cache.on_lock(reenter)
    cache.set_vault_key(vault_key)
    cache.lock_vault()

    assert seen == [(LockReason.MANUAL, None, False)]


def test_unsubscribe_before_lock(cache, vault_key):
    kept, dropped = MagicMock(), MagicMock()
    cache.on_lock(kept)
    unsubscribe = cache.on_lock(dropped)

    unsubscribe()
    unsubscribe()  # idempotent
    cache.set_vault_key(vault_key)
    cache.lock_vault()

    kept.assert_called_once()
    dropped.assert_not_called()


def test_failing_observer_is_logged_and_isolated(cache, vault_key, caplog):
    bad = MagicMock(side_effect=RuntimeError("boom"))
    good = MagicMock()
    cache.on_lock(bad)
    cache.on_lock(good)
    cache.set_vault_key(vault_key)

    with caplog.at_level(logging.ERROR, logger="zkvault.security.session"):
        assert cache.lock_vault() is True

    bad.assert_called_once()
    good.assert_called_once()
    assert cache.is_vault_unlocked() is False
    assert "Error in lock callback" in caplog.text


def test_failing_observer_on_timeout(cache, vault_key, scheduler):
    good = MagicMock()
    cache.on_lock(MagicMock(side_effect=ValueError("nope")))
    cache.on_lock(good)
    cache.set_vault_key(vault_key)

    scheduler.advance(TIMEOUT_S)
    good.assert_called_once_with(LockReason.TIMEOUT)
    assert cache.is_vault_unlocked() is False


def test_broadcaster_skips_subscriber_removed_mid_broadcast():
    bus = LockBroadcaster()
    late = MagicMock()
    holder = {}

    def first(reason):
        holder["unsub"]()

    bus.subscribe(first)
    holder["unsub"] = bus.subscribe(late)

    assert bus.publish(LockReason.MANUAL) == 1
    late.assert_not_called()
    assert len(bus) == 1


def test_broadcaster_rejects_non_callable():
    with pytest.raises(ValidationError):
        LockBroadcaster().subscribe("not callable")


def test_lock_is_logged_without_key_material(cache, vault_key, caplog):
    with caplog.at_level(logging.INFO, logger="zkvault.security.session"):
        cache.set_vault_key(vault_key)
        cache.lock_vault()
    assert "Vault locked (manual)" in caplog.text
    assert vault_key.export_raw().hex() not in caplog.text


# ==============================================================================
# Tests: Real timers
# ==============================================================================

def test_threading_scheduler_auto_lock(vault_key):
    cache = KeyCache(idle_timeout_ms=50, scheduler=ThreadingScheduler())
    locked = threading.Event()
    cache.on_lock(lambda reason: locked.set())

    cache.set_vault_key(vault_key)
    assert locked.wait(timeout=2.0)
    assert cache.is_vault_unlocked() is False


# ==============================================================================
# Tests: Global Module Helpers
# ==============================================================================

def test_global_helpers(monkeypatch, vault_key):
    sched = ManualScheduler()
    monkeypatch.setattr(session, "_default_cache", KeyCache(scheduler=sched))
    cb = MagicMock()

    session.on_lock(cb)
    session.set_vault_key(vault_key)
    assert session.is_vault_unlocked()
    assert session.get_vault_key() is vault_key
    assert session.get_time_until_lock() == 900_000

    assert session.lock_vault() is True
    assert session.get_vault_key() is None
    cb.assert_called_once_with(LockReason.MANUAL)


def test_default_cache_reads_timeout_from_env(monkeypatch):
    monkeypatch.setattr(session, "_default_cache", None)
    monkeypatch.setenv("ZKVAULT_IDLE_TIMEOUT_MS", "5000")

    cache = session.get_key_cache()
    assert cache.idle_timeout_ms == 5000
    assert session.get_key_cache() is cache

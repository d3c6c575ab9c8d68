"""In-memory vault key cache with sliding idle-timeout auto-lock.

A :class:`KeyCache` is either Locked (no vault key) or Unlocked (vault key
held in memory, idle timer armed). Every :meth:`KeyCache.get_vault_key` call
while Unlocked pushes the deadline out again, so the vault only locks after
``idle_timeout_ms`` without use. Locking happens on the idle timer, on
:meth:`KeyCache.lock_vault`, or on :meth:`KeyCache.logout`; each transition
clears the key first and then notifies every observer registered with
:meth:`KeyCache.on_lock`.

The clock and timers come from an injected :class:`~zkvault.security.timers.Scheduler`
so tests can drive virtual time. A module-level default cache mirrors the
process-wide usage of a single-user client.
"""
from __future__ import annotations

import itertools
import logging
import threading
from enum import Enum
from typing import Callable, Dict, Optional

from ..config import DEFAULT_IDLE_TIMEOUT_MS, load_settings
from ..core.exceptions import MissingKeyError, ValidationError
from .keys import VaultKey
from .timers import Scheduler, ThreadingScheduler, TimerHandle

logger = logging.getLogger(__name__)

# timers may fire a hair before the deadline they were armed for
_CLOCK_SLACK = 1e-6


class LockReason(Enum):
    TIMEOUT = "timeout"
    MANUAL = "manual"
    LOGOUT = "logout"


LockCallback = Callable[[LockReason], None]


class LockBroadcaster:
    """
    Observer registry for lock events.

    Delivery order is unspecified. A subscriber removed before (or during) a
    broadcast is not called for it. A failing subscriber is logged and skipped.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._subscribers: Dict[int, LockCallback] = {}
        self._ids = itertools.count()

    def subscribe(self, callback: LockCallback) -> Callable[[], None]:
        if not callable(callback):
            raise ValidationError("lock callback must be callable")
        with self._lock:
            token = next(self._ids)
            self._subscribers[token] = callback

        def unsubscribe() -> None:
            with self._lock:
                self._subscribers.pop(token, None)

        return unsubscribe

    def __len__(self):
        with self._lock:
            return len(self._subscribers)

    def publish(self, reason: LockReason) -> int:
        """Call every current subscriber once; return how many were called."""
        with self._lock:
            snapshot = list(self._subscribers.items())

        delivered = 0
        for token, callback in snapshot:
            with self._lock:
                if token not in self._subscribers:
                    continue
            delivered += 1
            try:
                callback(reason)
            except Exception:
                logger.exception("Error in lock callback")
        return delivered


class KeyCache:
    def __init__(
        self,
        idle_timeout_ms: int = DEFAULT_IDLE_TIMEOUT_MS,
        scheduler: Optional[Scheduler] = None,
    ):
        if idle_timeout_ms <= 0:
            raise ValidationError("idle timeout must be a positive number of milliseconds")
        self.idle_timeout_ms = int(idle_timeout_ms)
        self._scheduler = scheduler if scheduler is not None else ThreadingScheduler()
        self._lock = threading.RLock()
        self._vault_key: Optional[VaultKey] = None
        # scheduler time at which the key expires; reads push it out
        self._deadline: float = 0.0
        self._timer: Optional[TimerHandle] = None
        # bumped on every cancel; a timer only acts if its generation is still current
        self._generation = 0
        self._observers = LockBroadcaster()

    # ------------------------------------------------------------------
    # Timer helpers (call with self._lock held)
    # ------------------------------------------------------------------

    def _cancel_timer(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
        self._generation += 1

    def _arm_timer(self, delay: float) -> None:
        self._cancel_timer()
        generation = self._generation
        self._timer = self._scheduler.call_later(
            delay, lambda: self._on_idle_timer(generation)
        )

    def _remaining(self) -> float:
        """Seconds left before the deadline (negative once it has passed)."""
        return self._deadline - self._scheduler.now()

    def _expired(self) -> bool:
        return self._vault_key is not None and self._remaining() <= 0

    def _clear(self) -> None:
        self._vault_key = None
        self._deadline = 0.0
        self._cancel_timer()

    def _announce(self, reason: LockReason) -> None:
        # runs outside self._lock so observers may re-enter the cache
        logger.info("Vault locked (%s)", reason.value)
        self._observers.publish(reason)

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    def _on_idle_timer(self, generation: int) -> None:
        """
        Single idle timer. Reads only move the deadline, so when the timer
        fires early relative to the current deadline it re-arms itself for
        the remainder instead of locking.
        """
        with self._lock:
            if generation != self._generation or self._vault_key is None:
                return
            remaining = self._remaining()
            if remaining > _CLOCK_SLACK:
                self._arm_timer(remaining)
                return
            self._clear()
        self._announce(LockReason.TIMEOUT)

    def _transition_to_locked(self, reason: LockReason, generation: Optional[int] = None) -> bool:
        with self._lock:
            if generation is not None and generation != self._generation:
                # state moved on since the caller looked
                return False
            was_unlocked = self._vault_key is not None
            self._clear()

        if not was_unlocked:
            return False
        self._announce(reason)
        return True

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def set_vault_key(self, vault_key: VaultKey) -> None:
        """Cache ``vault_key`` and start the idle timer."""
        if vault_key is None:
            raise MissingKeyError("Vault key is required")
        if not isinstance(vault_key, VaultKey):
            raise MissingKeyError(f"only a VaultKey can be cached, got {type(vault_key).__name__}")
        timeout_s = self.idle_timeout_ms / 1000.0
        with self._lock:
            self._vault_key = vault_key
            self._deadline = self._scheduler.now() + timeout_s
            self._arm_timer(timeout_s)
        logger.info("Vault unlocked; idle timeout %d ms", self.idle_timeout_ms)

    def get_vault_key(self) -> Optional[VaultKey]:
        """
        Return the cached vault key and extend the idle window, or ``None``
        when locked.
        """
        with self._lock:
            if self._vault_key is None:
                return None
            if not self._expired():
                self._deadline = self._scheduler.now() + self.idle_timeout_ms / 1000.0
                return self._vault_key
            generation = self._generation

        # the deadline passed but the timer has not run yet
        self._transition_to_locked(LockReason.TIMEOUT, generation=generation)
        return None

    def update_activity(self) -> bool:
        """Extend the idle window without handing out the key."""
        return self.get_vault_key() is not None

    def is_vault_unlocked(self) -> bool:
        """Pure query; does not extend the idle window."""
        with self._lock:
            return self._vault_key is not None and not self._expired()

    def get_time_until_lock(self) -> int:
        """Milliseconds until auto-lock (0 when locked). Does not extend the window."""
        with self._lock:
            if self._vault_key is None:
                return 0
            return int(max(0.0, self._remaining() * 1000.0))

    def get_formatted_time_until_lock(self) -> str:
        ms = self.get_time_until_lock()
        if ms == 0:
            return "Locked"
        minutes = ms // 60000
        seconds = (ms % 60000) // 1000
        return f"{minutes}:{seconds:02d}"

    def lock_vault(self) -> bool:
        """Lock now. Returns False if the vault was already locked."""
        return self._transition_to_locked(LockReason.MANUAL)

    def logout(self) -> bool:
        """Lock in response to an external logout signal."""
        return self._transition_to_locked(LockReason.LOGOUT)

    def on_lock(self, callback: LockCallback) -> Callable[[], None]:
        """Register ``callback(reason)`` for lock events; returns an unsubscribe function."""
        return self._observers.subscribe(callback)


# module-level default key cache
_default_cache: Optional[KeyCache] = None
_default_lock = threading.Lock()


def get_key_cache() -> KeyCache:
    global _default_cache
    with _default_lock:
        if _default_cache is None:
            _default_cache = KeyCache(idle_timeout_ms=load_settings().idle_timeout_ms)
        return _default_cache


def set_vault_key(vault_key: VaultKey) -> None:
    get_key_cache().set_vault_key(vault_key)


def get_vault_key() -> Optional[VaultKey]:
    return get_key_cache().get_vault_key()


def is_vault_unlocked() -> bool:
    return get_key_cache().is_vault_unlocked()


def get_time_until_lock() -> int:
    return get_key_cache().get_time_until_lock()


def lock_vault() -> bool:
    return get_key_cache().lock_vault()


def on_lock(callback: LockCallback) -> Callable[[], None]:
    return get_key_cache().on_lock(callback)

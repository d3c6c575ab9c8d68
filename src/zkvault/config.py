"""Configuration for zkvault.

Algorithm choices are fixed module constants. The tunable values (idle
timeout, KDF iteration count, local database path, keyring service name) come
from environment variables so a host application can opt in without extra
wiring:

- ``ZKVAULT_IDLE_TIMEOUT_MS``  (default 900000, i.e. 15 minutes)
- ``ZKVAULT_KDF_ITERATIONS``   (default 200000, floor 100000)
- ``ZKVAULT_DB_PATH``          (default ``./zkvault.db``)
- ``ZKVAULT_KEYRING_SERVICE``  (default ``zkvault``)
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Mapping, Optional

from .core.exceptions import ValidationError

KDF_ALGORITHM = "pbkdf2-sha256"
MIN_ITERATIONS = 100_000
DEFAULT_ITERATIONS = 200_000

SALT_LENGTH = 16  # 128 bits
KEY_LENGTH = 32  # AES-256
IV_LENGTH = 12  # 96-bit GCM nonce

DEFAULT_IDLE_TIMEOUT_MS = 900_000
DEFAULT_DB_PATH = "./zkvault.db"
DEFAULT_KEYRING_SERVICE = "zkvault"


@dataclass(frozen=True)
class VaultSettings:
    """Runtime settings for a vault session."""

    idle_timeout_ms: int = DEFAULT_IDLE_TIMEOUT_MS
    kdf_iterations: int = DEFAULT_ITERATIONS
    db_path: str = DEFAULT_DB_PATH
    keyring_service: str = DEFAULT_KEYRING_SERVICE

    def __post_init__(self):
        if self.idle_timeout_ms <= 0:
            raise ValidationError("idle timeout must be a positive number of milliseconds")
        if self.kdf_iterations < MIN_ITERATIONS:
            raise ValidationError(f"Iteration count too low (minimum {MIN_ITERATIONS:,})")


def _int_from_env(env: Mapping[str, str], name: str, default: int) -> int:
    raw = env.get(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return int(raw)
    except ValueError:
        raise ValidationError(f"{name} must be an integer, got {raw!r}") from None


def load_settings(env: Optional[Mapping[str, str]] = None) -> VaultSettings:
    """Build :class:`VaultSettings` from the environment (or a given mapping)."""
    if env is None:
        env = os.environ
    return VaultSettings(
        idle_timeout_ms=_int_from_env(env, "ZKVAULT_IDLE_TIMEOUT_MS", DEFAULT_IDLE_TIMEOUT_MS),
        kdf_iterations=_int_from_env(env, "ZKVAULT_KDF_ITERATIONS", DEFAULT_ITERATIONS),
        db_path=env.get("ZKVAULT_DB_PATH") or DEFAULT_DB_PATH,
        keyring_service=env.get("ZKVAULT_KEYRING_SERVICE") or DEFAULT_KEYRING_SERVICE,
    )

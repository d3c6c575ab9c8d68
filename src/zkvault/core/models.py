"""
Record shapes exchanged with the storage collaborator.

Everything here is either public KDF metadata or ciphertext; no model ever
holds an unwrapped key or decrypted payload.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Mapping, Optional
import uuid

from ..config import DEFAULT_ITERATIONS, KDF_ALGORITHM, MIN_ITERATIONS
from .exceptions import ValidationError


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _parse_ts(value: Any) -> Optional[datetime]:
    # SQLite hands back text; callers may also pass datetimes straight through
    if value is None or isinstance(value, datetime):
        return value
    text = str(value)
    # CURRENT_TIMESTAMP format is "YYYY-MM-DD HH:MM:SS"
    ts = datetime.fromisoformat(text.replace("Z", "+00:00"))
    if ts.tzinfo is None:
        ts = ts.replace(tzinfo=timezone.utc)
    return ts


def _fmt_ts(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value is not None else None


@dataclass(frozen=True)
class WrappedKey:
    """Output of wrapping the vault key: ciphertext and the IV used."""

    wrapped_b64: str
    iv_b64: str


@dataclass(frozen=True)
class EncryptedData:
    """Output of one payload/string encryption: ciphertext and its IV."""

    cipher_b64: str
    iv_b64: str


@dataclass(frozen=True)
class KdfParameters:
    """Persisted parameters needed to re-derive the same KEK."""

    salt_b64: str
    iterations: int = DEFAULT_ITERATIONS
    algorithm: str = KDF_ALGORITHM

    def __post_init__(self):
        if self.algorithm != KDF_ALGORITHM:
            raise ValidationError(f"Unsupported KDF algorithm: {self.algorithm!r}")
        if int(self.iterations) < MIN_ITERATIONS:
            raise ValidationError(f"Iteration count too low (minimum {MIN_ITERATIONS:,})")
        if not self.salt_b64:
            raise ValidationError("Salt is required")


@dataclass
class UserKeysRecord:
    """One row of ``user_keys``: KDF parameters plus the wrapped vault key."""

    user_id: str
    salt: str
    vault_key_wrapped: str
    vk_iv: str
    kdf: str = KDF_ALGORITHM
    kdf_iterations: int = DEFAULT_ITERATIONS
    version: int = 1
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)

    @property
    def kdf_parameters(self) -> KdfParameters:
        return KdfParameters(
            salt_b64=self.salt, iterations=int(self.kdf_iterations), algorithm=self.kdf
        )

    @property
    def wrapped_key(self) -> WrappedKey:
        return WrappedKey(wrapped_b64=self.vault_key_wrapped, iv_b64=self.vk_iv)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "user_id": self.user_id,
            "kdf": self.kdf,
            "kdf_iterations": self.kdf_iterations,
            "salt": self.salt,
            "vault_key_wrapped": self.vault_key_wrapped,
            "vk_iv": self.vk_iv,
            "version": self.version,
            "created_at": _fmt_ts(self.created_at),
            "updated_at": _fmt_ts(self.updated_at),
        }

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "UserKeysRecord":
        """
        Build a record from a storage row.

        Older rows used ``vaultKeyWrapped``/``wrapped`` for the wrapped key and
        ``iv``/``vkIv`` for its IV; those names are still accepted.
        """
        wrapped = row.get("vault_key_wrapped") or row.get("vaultKeyWrapped") or row.get("wrapped")
        iv = row.get("vk_iv") or row.get("iv") or row.get("vkIv")
        if not wrapped or not iv:
            raise ValidationError("Vault not initialized correctly (missing wrapped key or IV)")
        if not row.get("salt"):
            raise ValidationError("Vault not initialized correctly (missing salt)")

        return cls(
            user_id=row.get("user_id", ""),
            salt=row["salt"],
            vault_key_wrapped=wrapped,
            vk_iv=iv,
            kdf=row.get("kdf") or KDF_ALGORITHM,
            kdf_iterations=int(row.get("kdf_iterations") or DEFAULT_ITERATIONS),
            version=int(row.get("version") or 1),
            created_at=_parse_ts(row.get("created_at")) or utcnow(),
            updated_at=_parse_ts(row.get("updated_at")) or utcnow(),
        )


@dataclass
class VaultItem:
    """One row of ``vault_items``. ``enc_payload``/``iv`` are ciphertext only."""

    user_id: str
    title: str
    enc_payload: str
    iv: str
    item_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)
    deleted_at: Optional[datetime] = None

    @property
    def is_deleted(self) -> bool:
        return self.deleted_at is not None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.item_id,
            "user_id": self.user_id,
            "title": self.title,
            "enc_payload": self.enc_payload,
            "iv": self.iv,
            "created_at": _fmt_ts(self.created_at),
            "updated_at": _fmt_ts(self.updated_at),
            "deleted_at": _fmt_ts(self.deleted_at),
        }

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "VaultItem":
        return cls(
            item_id=row.get("id") or row["item_id"],
            user_id=row["user_id"],
            title=row["title"],
            enc_payload=row["enc_payload"],
            iv=row["iv"],
            created_at=_parse_ts(row.get("created_at")) or utcnow(),
            updated_at=_parse_ts(row.get("updated_at")) or utcnow(),
            deleted_at=_parse_ts(row.get("deleted_at")),
        )

"""Vault key generation, wrapping and unwrapping.

Two key types exist and they are not interchangeable:

- :class:`KeyEncryptionKey` (KEK) is derived from the master secret and can
  only wrap and unwrap other keys. It cannot encrypt payloads and cannot be
  exported.
- :class:`VaultKey` (VK) is random, encrypts every vault item and can be
  exported so it can be wrapped for storage.

Each key carries a set of :class:`Capability` tags. Operations ask the key
for a cipher bound to the capability they need (:meth:`SymmetricKey.cipher_for`),
so a KEK handed to the payload cipher is rejected at the boundary rather than
silently used.

Wrapping is AES-256-GCM over the raw VK bytes with a fresh 96-bit IV, which
produces the ``vault_key_wrapped`` / ``vk_iv`` pair stored in ``user_keys``.
"""

from __future__ import annotations

import hmac
import logging
from enum import Enum
from typing import FrozenSet, Optional

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from ..config import IV_LENGTH, KEY_LENGTH
from ..core.exceptions import MissingKeyError, UnwrapError, ValidationError
from ..core.models import WrappedKey
from .encoding import b64decode, b64encode, random_bytes

logger = logging.getLogger(__name__)

_UNWRAP_FAILED = "Failed to unwrap vault key - incorrect master password or corrupted data"


class Capability(Enum):
    WRAP = "wrap"
    UNWRAP = "unwrap"
    ENCRYPT = "encrypt"
    DECRYPT = "decrypt"
    EXPORT = "export"


class SymmetricKey:
    """256-bit AES key material tagged with what it may be used for."""

    __slots__ = ("_material",)

    capabilities: FrozenSet[Capability] = frozenset()

    def __init__(self, material: bytes):
        if not isinstance(material, (bytes, bytearray)) or len(material) != KEY_LENGTH:
            raise ValidationError(f"key material must be exactly {KEY_LENGTH} bytes")
        self._material = bytes(material)

    def has(self, capability: Capability) -> bool:
        return capability in self.capabilities

    def cipher_for(self, capability: Capability) -> AESGCM:
        """Return an AES-GCM cipher for ``capability`` or raise if the key lacks it."""
        if capability not in self.capabilities:
            raise MissingKeyError(
                f"{type(self).__name__} cannot be used to {capability.value}"
            )
        return AESGCM(self._material)

    def __eq__(self, other):
        if type(other) is not type(self):
            return NotImplemented
        return hmac.compare_digest(self._material, other._material)

    __hash__ = None

    def __repr__(self):
        # never show material
        caps = ",".join(sorted(c.value for c in self.capabilities))
        return f"<{type(self).__name__} caps={caps}>"


class KeyEncryptionKey(SymmetricKey):
    """Key derived from the master secret; wrap/unwrap only, never exported."""

    __slots__ = ()

    capabilities = frozenset({Capability.WRAP, Capability.UNWRAP})


class VaultKey(SymmetricKey):
    """The single key that protects every vault item."""

    __slots__ = ()

    capabilities = frozenset({Capability.ENCRYPT, Capability.DECRYPT, Capability.EXPORT})

    def export_raw(self) -> bytes:
        if Capability.EXPORT not in self.capabilities:
            raise MissingKeyError("vault key is not exportable")
        return self._material


def _require(key: Optional[SymmetricKey], cls: type, label: str) -> None:
    if key is None:
        raise MissingKeyError(f"{label} is required")
    if not isinstance(key, cls):
        raise MissingKeyError(f"{label} must be a {cls.__name__}, got {type(key).__name__}")


def generate_vault_key() -> VaultKey:
    """Return a fresh random 256-bit vault key."""
    return VaultKey(random_bytes(KEY_LENGTH))


def wrap_vault_key(vault_key: VaultKey, kek: KeyEncryptionKey) -> WrappedKey:
    """
    Wrap ``vault_key`` under ``kek``.

    A fresh random IV is drawn for every call, so wrapping the same key twice
    yields two different records.
    """
    _require(vault_key, VaultKey, "vault key")
    _require(kek, KeyEncryptionKey, "KEK")

    iv = random_bytes(IV_LENGTH)
    aead = kek.cipher_for(Capability.WRAP)
    wrapped = aead.encrypt(iv, vault_key.export_raw(), None)
    return WrappedKey(wrapped_b64=b64encode(wrapped), iv_b64=b64encode(iv))


def unwrap_vault_key(wrapped_b64: str, iv_b64: str, kek: KeyEncryptionKey) -> VaultKey:
    """
    Unwrap a stored vault key with ``kek``.

    Raises :class:`UnwrapError` when the record does not authenticate. A wrong
    master password, a corrupted record and a tampered record all produce the
    same error.
    """
    if not wrapped_b64 or not iv_b64:
        raise ValidationError("Wrapped key and IV are required")
    _require(kek, KeyEncryptionKey, "KEK")

    aead = kek.cipher_for(Capability.UNWRAP)
    try:
        wrapped = b64decode(wrapped_b64)
        iv = b64decode(iv_b64)
        if len(iv) != IV_LENGTH:
            raise ValueError("bad iv length")
        raw = aead.decrypt(iv, wrapped, None)
    except (InvalidTag, ValueError):
        logger.warning("vault key unwrap failed")
        raise UnwrapError(_UNWRAP_FAILED) from None

    if len(raw) != KEY_LENGTH:
        logger.warning("vault key unwrap failed")
        raise UnwrapError(_UNWRAP_FAILED)
    return VaultKey(raw)


def export_vault_key(vault_key: VaultKey) -> str:
    """Export raw VK bytes as base64. Only for feeding an encrypted backup."""
    _require(vault_key, VaultKey, "vault key")
    return b64encode(vault_key.export_raw())


def import_vault_key(key_b64: str) -> VaultKey:
    """Rebuild a :class:`VaultKey` from :func:`export_vault_key` output."""
    if not key_b64:
        raise ValidationError("key is required")
    try:
        raw = b64decode(key_b64)
    except ValueError:
        raise ValidationError("key is not valid base64") from None
    return VaultKey(raw)

"""
AES-GCM encryption of vault item payloads and plain strings.

Encryption details:
- AES-256-GCM (via :class:`cryptography.hazmat.primitives.ciphers.aead.AESGCM`)
- 128-bit authentication tag (the AESGCM default)
- fresh 96-bit random IV per call; never reused under the same key
- ciphertext and IV are returned base64-encoded, ready for ``enc_payload``/``iv``

Decryption failures are deliberately uninformative: a wrong key, a corrupted
ciphertext, a tampered IV and malformed base64 all raise the same
:class:`DecryptError`.
"""

from __future__ import annotations

import logging
from typing import Any

from cryptography.exceptions import InvalidTag

from ..config import IV_LENGTH
from ..core.exceptions import DecryptError, MissingKeyError, ValidationError
from ..core.models import EncryptedData
from .encoding import b64decode, b64encode, canonical_dumps, canonical_loads, random_bytes
from .keys import Capability, VaultKey

logger = logging.getLogger(__name__)

_DECRYPT_FAILED = "Failed to decrypt payload - invalid key or corrupted data"


def _require_vault_key(vault_key: VaultKey) -> None:
    if vault_key is None:
        raise MissingKeyError("Vault key is required")
    if not isinstance(vault_key, VaultKey):
        raise MissingKeyError(f"payloads can only be encrypted with a VaultKey, got {type(vault_key).__name__}")


def _encrypt_bytes(vault_key: VaultKey, plaintext: bytes) -> EncryptedData:
    _require_vault_key(vault_key)
    aead = vault_key.cipher_for(Capability.ENCRYPT)
    iv = random_bytes(IV_LENGTH)
    ct = aead.encrypt(iv, plaintext, None)
    return EncryptedData(cipher_b64=b64encode(ct), iv_b64=b64encode(iv))


def _decrypt_bytes(vault_key: VaultKey, cipher_b64: str, iv_b64: str) -> bytes:
    _require_vault_key(vault_key)
    if not cipher_b64 or not iv_b64:
        raise ValidationError("Ciphertext and IV are required")

    aead = vault_key.cipher_for(Capability.DECRYPT)
    try:
        ct = b64decode(cipher_b64)
        iv = b64decode(iv_b64)
        if len(iv) != IV_LENGTH:
            raise ValueError("bad iv length")
        return aead.decrypt(iv, ct, None)
    except (InvalidTag, ValueError):
        logger.warning("payload decryption failed")
        raise DecryptError(_DECRYPT_FAILED) from None


def encrypt_payload(vault_key: VaultKey, data: Any) -> EncryptedData:
    """
    Encrypt a JSON-serializable value under the vault key.

    The value is serialized to canonical JSON (sorted keys, compact
    separators, UTF-8) before encryption. Calling this twice with the same
    input gives two different ciphertexts because the IV is fresh each time.
    """
    _require_vault_key(vault_key)
    return _encrypt_bytes(vault_key, canonical_dumps(data))


def decrypt_payload(vault_key: VaultKey, cipher_b64: str, iv_b64: str) -> Any:
    """
    Decrypt a value produced by :func:`encrypt_payload`.

    Raises :class:`DecryptError` if authentication fails, and
    :class:`SerializationError` if the plaintext authenticated but is not
    valid JSON.
    """
    raw = _decrypt_bytes(vault_key, cipher_b64, iv_b64)
    return canonical_loads(raw)


def encrypt_string(vault_key: VaultKey, plaintext: str) -> EncryptedData:
    """Encrypt already-atomic text, skipping the JSON layer."""
    if not isinstance(plaintext, str):
        raise ValidationError("plaintext must be a string")
    return _encrypt_bytes(vault_key, plaintext.encode("utf-8"))


def decrypt_string(vault_key: VaultKey, cipher_b64: str, iv_b64: str) -> str:
    raw = _decrypt_bytes(vault_key, cipher_b64, iv_b64)
    try:
        return raw.decode("utf-8")
    except UnicodeDecodeError:
        raise DecryptError(_DECRYPT_FAILED) from None

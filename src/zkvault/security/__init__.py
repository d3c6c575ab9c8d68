"""Security core of zkvault: key derivation, vault key wrapping, payload AEAD and the key cache.

This package provides:
- PBKDF2-SHA256 derivation of a wrap-only key-encryption-key (KEK)
- generation and AES-GCM wrapping/unwrapping of the per-vault key (VK)
- AES-GCM encryption/decryption of JSON payloads and plain strings
- an in-memory key cache with sliding idle-timeout auto-lock
"""

from .kdf import generate_salt, derive_kek, kdf_params_to_dict
from .keys import (
    Capability,
    KeyEncryptionKey,
    VaultKey,
    generate_vault_key,
    wrap_vault_key,
    unwrap_vault_key,
    export_vault_key,
    import_vault_key,
)
from .encryption import encrypt_payload, decrypt_payload, encrypt_string, decrypt_string
from .session import (
    KeyCache,
    LockReason,
    get_key_cache,
    set_vault_key,
    get_vault_key,
    is_vault_unlocked,
    get_time_until_lock,
    lock_vault,
    on_lock,
)
from .timers import ManualScheduler, ThreadingScheduler

__all__ = [
    "generate_salt",
    "derive_kek",
    "kdf_params_to_dict",
    "Capability",
    "KeyEncryptionKey",
    "VaultKey",
    "generate_vault_key",
    "wrap_vault_key",
    "unwrap_vault_key",
    "export_vault_key",
    "import_vault_key",
    "encrypt_payload",
    "decrypt_payload",
    "encrypt_string",
    "decrypt_string",
    "KeyCache",
    "LockReason",
    "get_key_cache",
    "set_vault_key",
    "get_vault_key",
    "is_vault_unlocked",
    "get_time_until_lock",
    "lock_vault",
    "on_lock",
    "ManualScheduler",
    "ThreadingScheduler",
]

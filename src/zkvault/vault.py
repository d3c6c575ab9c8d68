"""
VaultSession: the client-side flow around the crypto core.

Setup:   salt -> KEK -> new vault key -> wrap -> store user_keys row -> cache key
Unlock:  fetch user_keys row -> KEK -> unwrap -> cache key
Items:   read vault key from the cache (sliding the idle window) -> AES-GCM

The store only ever sees the wrapped key and item ciphertext. The unwrapped
vault key lives solely in the session's :class:`KeyCache`.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Dict, List, Mapping, Optional

from .config import VaultSettings, load_settings
from .core.exceptions import (
    ItemNotFoundError,
    ValidationError,
    VaultLockedError,
    VaultNotInitializedError,
)
from .core.models import UserKeysRecord, VaultItem
from .database.connection import DatabaseConnection
from .database.models import UserKeysModel, VaultItemModel
from .security import keystore
from .security.encryption import decrypt_payload, encrypt_payload
from .security.kdf import derive_kek, generate_salt, kdf_params_to_dict
from .security.keys import VaultKey, generate_vault_key, unwrap_vault_key, wrap_vault_key
from .security.session import KeyCache, LockCallback
from .security.timers import Scheduler

logger = logging.getLogger(__name__)


@dataclass
class DecryptedItem:
    """A vault item after decryption. Never persisted."""

    item_id: str
    title: str
    payload: Any
    created_at: datetime
    updated_at: datetime
    deleted_at: Optional[datetime] = None


class VaultSession:
    """One user's vault: key record, encrypted items and the cached vault key."""

    def __init__(
        self,
        db: Optional[DatabaseConnection],
        user_id: str,
        settings: Optional[VaultSettings] = None,
        key_cache: Optional[KeyCache] = None,
        scheduler: Optional[Scheduler] = None,
    ):
        if not user_id:
            raise ValidationError("user_id is required")
        self.settings = settings if settings is not None else load_settings()
        self.user_id = user_id
        # no connection given: open the store named by ZKVAULT_DB_PATH
        self.db = db if db is not None else DatabaseConnection(self.settings.db_path)
        self.db.initialize()
        self.keys = UserKeysModel(self.db)
        self.items = VaultItemModel(self.db)
        self.cache = key_cache if key_cache is not None else KeyCache(
            idle_timeout_ms=self.settings.idle_timeout_ms, scheduler=scheduler
        )

    # ------------------------------------------------------------------
    # Key record lifecycle
    # ------------------------------------------------------------------

    def is_initialized(self) -> bool:
        return self.keys.get(self.user_id) is not None

    def _require_record(self) -> UserKeysRecord:
        record = self.keys.get(self.user_id)
        if record is None:
            raise VaultNotInitializedError("Vault not initialized")
        return record

    def setup(self, master_secret: str, iterations: Optional[int] = None) -> UserKeysRecord:
        """
        Create the vault for this user and leave it unlocked.

        The salt generated here is stored with the record and never
        regenerated for this vault.
        """
        if self.is_initialized():
            raise ValidationError("Vault already initialized for this user")
        iterations = iterations if iterations is not None else self.settings.kdf_iterations

        salt = generate_salt()
        kek = derive_kek(master_secret, salt, iterations)
        vault_key = generate_vault_key()
        wrapped = wrap_vault_key(vault_key, kek)

        record = self.keys.create(
            UserKeysRecord(
                user_id=self.user_id,
                vault_key_wrapped=wrapped.wrapped_b64,
                vk_iv=wrapped.iv_b64,
                **kdf_params_to_dict(salt, iterations),
            )
        )
        logger.info("Vault created for user %s (%d iterations)", self.user_id, iterations)
        self.cache.set_vault_key(vault_key)
        return record

    def _unwrap_with(self, record: UserKeysRecord, master_secret: str) -> VaultKey:
        params = record.kdf_parameters
        kek = derive_kek(master_secret, params.salt_b64, params.iterations)
        return unwrap_vault_key(record.vault_key_wrapped, record.vk_iv, kek)

    def unlock(self, master_secret: str, record: Optional[UserKeysRecord] = None) -> None:
        """
        Re-derive the KEK and unwrap the stored vault key into the cache.

        ``record`` lets a caller supply a copy of the key record fetched
        elsewhere (e.g. :func:`zkvault.security.keystore.load_record`).
        Raises :class:`UnwrapError` for a wrong master secret (or a damaged record).
        """
        if record is None:
            record = self._require_record()
        vault_key = self._unwrap_with(record, master_secret)
        self.cache.set_vault_key(vault_key)

    def change_master_secret(
        self, old_secret: str, new_secret: str, iterations: Optional[int] = None
    ) -> UserKeysRecord:
        """
        Re-wrap the existing vault key under a new master secret.

        Items stay encrypted under the same vault key, so none of them need
        to be re-encrypted. The salt stays the one drawn at setup; the new
        secret alone yields a different KEK. ``iterations`` may raise the
        work factor for the new wrapping.
        """
        record = self._require_record()
        vault_key = self._unwrap_with(record, old_secret)
        iterations = iterations if iterations is not None else record.kdf_iterations

        kek = derive_kek(new_secret, record.salt, iterations)
        wrapped = wrap_vault_key(vault_key, kek)
        updated = self.keys.replace_wrapped_key(
            UserKeysRecord(
                user_id=self.user_id,
                vault_key_wrapped=wrapped.wrapped_b64,
                vk_iv=wrapped.iv_b64,
                **kdf_params_to_dict(record.salt, iterations),
            )
        )
        logger.info("Master secret changed for user %s", self.user_id)
        self.cache.set_vault_key(vault_key)
        return updated

    def export_recovery_kit(self, recovery_secret: str, iterations: Optional[int] = None) -> Dict[str, Any]:
        """
        Return the vault key wrapped under a separate recovery secret.

        The kit has the same shape as a ``user_keys`` row (minus user and
        timestamps) and is safe to store offline; it is useless without the
        recovery secret.
        """
        vault_key = self._require_vault_key()
        iterations = iterations if iterations is not None else self.settings.kdf_iterations
        salt = generate_salt()
        wrapped = wrap_vault_key(vault_key, derive_kek(recovery_secret, salt, iterations))
        kit = kdf_params_to_dict(salt, iterations)
        kit.update({"vault_key_wrapped": wrapped.wrapped_b64, "vk_iv": wrapped.iv_b64})
        return kit

    def unlock_with_recovery_kit(self, kit: Mapping[str, Any], recovery_secret: str) -> None:
        record = UserKeysRecord.from_row(kit)
        self.cache.set_vault_key(self._unwrap_with(record, recovery_secret))

    # ------------------------------------------------------------------
    # OS keystore copy of the wrapped record
    # ------------------------------------------------------------------

    def save_to_keystore(self, force: bool = False) -> UserKeysRecord:
        """Copy this user's wrapped key record into the OS keyring."""
        record = self._require_record()
        keystore.save_record(self.settings.keyring_service, self.user_id, record, force=force)
        return record

    def unlock_from_keystore(self, master_secret: str) -> None:
        """Unlock using the keyring copy, e.g. while the store is unavailable."""
        record = keystore.load_record(self.settings.keyring_service, self.user_id)
        if record is None:
            raise VaultNotInitializedError("No key record in the OS keystore")
        self.unlock(master_secret, record=record)

    def forget_keystore_record(self) -> None:
        keystore.delete_record(self.settings.keyring_service, self.user_id)

    # ------------------------------------------------------------------
    # Lock state
    # ------------------------------------------------------------------

    @property
    def is_unlocked(self) -> bool:
        return self.cache.is_vault_unlocked()

    def time_until_lock(self) -> int:
        return self.cache.get_time_until_lock()

    def lock(self) -> bool:
        return self.cache.lock_vault()

    def logout(self) -> bool:
        return self.cache.logout()

    def on_lock(self, callback: LockCallback) -> Callable[[], None]:
        return self.cache.on_lock(callback)

    def _require_vault_key(self) -> VaultKey:
        vault_key = self.cache.get_vault_key()
        if vault_key is None:
            raise VaultLockedError("Vault is locked")
        return vault_key

    # ------------------------------------------------------------------
    # Items
    # ------------------------------------------------------------------

    def _own_item(self, item_id: str) -> VaultItem:
        item = self.items.get(item_id)
        if item is None or item.user_id != self.user_id:
            raise ItemNotFoundError(f"vault item {item_id} not found")
        return item

    def _decrypt(self, item: VaultItem) -> DecryptedItem:
        payload = decrypt_payload(self._require_vault_key(), item.enc_payload, item.iv)
        return DecryptedItem(
            item_id=item.item_id,
            title=item.title,
            payload=payload,
            created_at=item.created_at,
            updated_at=item.updated_at,
            deleted_at=item.deleted_at,
        )

    def add_item(self, title: str, payload: Any) -> VaultItem:
        """Encrypt ``payload`` and store it; returns the stored ciphertext record."""
        if not title:
            raise ValidationError("Title is required")
        enc = encrypt_payload(self._require_vault_key(), payload)
        return self.items.create(
            VaultItem(user_id=self.user_id, title=title, enc_payload=enc.cipher_b64, iv=enc.iv_b64)
        )

    def get_item(self, item_id: str) -> DecryptedItem:
        return self._decrypt(self._own_item(item_id))

    def list_items(self, include_deleted: bool = False) -> List[DecryptedItem]:
        return [self._decrypt(i) for i in self.items.list_by_user(self.user_id, include_deleted)]

    def update_item(self, item_id: str, payload: Any, title: Optional[str] = None) -> VaultItem:
        """Re-encrypt the item with a fresh IV."""
        item = self._own_item(item_id)
        enc = encrypt_payload(self._require_vault_key(), payload)
        item.title = title or item.title
        item.enc_payload = enc.cipher_b64
        item.iv = enc.iv_b64
        return self.items.update(item)

    def delete_item(self, item_id: str) -> VaultItem:
        """Soft delete; the ciphertext stays until purged."""
        self._own_item(item_id)
        return self.items.soft_delete(item_id)

    def restore_item(self, item_id: str) -> VaultItem:
        self._own_item(item_id)
        return self.items.restore(item_id)

    def purge_item(self, item_id: str) -> bool:
        self._own_item(item_id)
        return self.items.purge(item_id)

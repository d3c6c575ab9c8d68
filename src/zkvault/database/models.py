"""ORM-style helpers for the user_keys and vault_items tables.

These models are the local implementation of the storage collaborator: they
receive and return ciphertext and wrapped keys only.
"""

from typing import List, Optional

from .connection import DatabaseConnection
from ..core.exceptions import ItemNotFoundError, StorageError
from ..core.models import UserKeysRecord, VaultItem, utcnow


class BaseModel:
    """Base class for DB models."""

    __slots__ = ("db",)

    def __init__(self, db: DatabaseConnection):
        self.db = db


class UserKeysModel(BaseModel):
    """DB model for the per-user wrapped vault key record."""

    def create(self, record: UserKeysRecord) -> UserKeysRecord:
        """Insert the record; a user can only have one."""
        if self.get(record.user_id) is not None:
            raise StorageError(f"user {record.user_id} already has a key record")
        row = record.to_dict()
        query = """
            INSERT INTO user_keys (user_id, kdf, kdf_iterations, salt, vault_key_wrapped,
                                   vk_iv, version, created_at, updated_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
        """
        self.db.execute(
            query,
            (
                row["user_id"],
                row["kdf"],
                row["kdf_iterations"],
                row["salt"],
                row["vault_key_wrapped"],
                row["vk_iv"],
                row["version"],
                row["created_at"],
                row["updated_at"],
            ),
        )
        return self.get(record.user_id)

    def get(self, user_id: str) -> Optional[UserKeysRecord]:
        row = self.db.fetch_one("SELECT * FROM user_keys WHERE user_id = ?", (user_id,))
        return UserKeysRecord.from_row(row) if row else None

    def replace_wrapped_key(self, record: UserKeysRecord) -> UserKeysRecord:
        """
        Store a re-wrapped vault key and its iteration count.

        Used when the master secret changes: the vault key stays the same, only
        its wrapping is replaced. The salt of an existing row is never
        rewritten, so ``record.salt`` is ignored here.
        """
        query = """
            UPDATE user_keys SET
                kdf_iterations = ?, vault_key_wrapped = ?, vk_iv = ?,
                version = version + 1, updated_at = ?
            WHERE user_id = ?
        """
        changed = self.db.execute(
            query,
            (
                record.kdf_iterations,
                record.vault_key_wrapped,
                record.vk_iv,
                utcnow().isoformat(),
                record.user_id,
            ),
        )
        if not changed:
            raise StorageError(f"user {record.user_id} has no key record")
        return self.get(record.user_id)

    def delete(self, user_id: str) -> bool:
        return self.db.execute("DELETE FROM user_keys WHERE user_id = ?", (user_id,)) > 0


class VaultItemModel(BaseModel):
    """DB model for encrypted vault items."""

    def create(self, item: VaultItem) -> VaultItem:
        row = item.to_dict()
        query = """
            INSERT INTO vault_items (id, user_id, title, enc_payload, iv, created_at, updated_at, deleted_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?)
        """
        self.db.execute(
            query,
            (
                row["id"],
                row["user_id"],
                row["title"],
                row["enc_payload"],
                row["iv"],
                row["created_at"],
                row["updated_at"],
                row["deleted_at"],
            ),
        )
        return self.get(item.item_id)

    def get(self, item_id: str) -> Optional[VaultItem]:
        row = self.db.fetch_one("SELECT * FROM vault_items WHERE id = ?", (item_id,))
        return VaultItem.from_row(row) if row else None

    def require(self, item_id: str) -> VaultItem:
        item = self.get(item_id)
        if item is None:
            raise ItemNotFoundError(f"vault item {item_id} not found")
        return item

    def list_by_user(self, user_id: str, include_deleted: bool = False) -> List[VaultItem]:
        query = "SELECT * FROM vault_items WHERE user_id = ?"
        if not include_deleted:
            query += " AND deleted_at IS NULL"
        query += " ORDER BY updated_at DESC"
        return [VaultItem.from_row(r) for r in self.db.fetch_all(query, (user_id,))]

    def update(self, item: VaultItem) -> VaultItem:
        """Replace title and ciphertext; the IV must be the fresh one used for the new ciphertext."""
        query = """
            UPDATE vault_items SET title = ?, enc_payload = ?, iv = ?, updated_at = ?
            WHERE id = ?
        """
        changed = self.db.execute(
            query, (item.title, item.enc_payload, item.iv, utcnow().isoformat(), item.item_id)
        )
        if not changed:
            raise ItemNotFoundError(f"vault item {item.item_id} not found")
        return self.get(item.item_id)

    def soft_delete(self, item_id: str) -> VaultItem:
        changed = self.db.execute(
            "UPDATE vault_items SET deleted_at = ? WHERE id = ? AND deleted_at IS NULL",
            (utcnow().isoformat(), item_id),
        )
        if not changed:
            # either missing or already deleted
            self.require(item_id)
        return self.get(item_id)

    def restore(self, item_id: str) -> VaultItem:
        self.require(item_id)
        self.db.execute("UPDATE vault_items SET deleted_at = NULL WHERE id = ?", (item_id,))
        return self.get(item_id)

    def purge(self, item_id: str) -> bool:
        """Hard delete."""
        return self.db.execute("DELETE FROM vault_items WHERE id = ?", (item_id,)) > 0

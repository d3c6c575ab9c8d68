"""SQLite schema definitions for the local zkvault store."""

# SQL schema definitions
SCHEMA_VERSION = 1

CREATE_TABLES = [
    # One wrapped vault key record per user; the salt is immutable once set
    """
    CREATE TABLE IF NOT EXISTS user_keys (
        user_id TEXT PRIMARY KEY,
        kdf TEXT NOT NULL DEFAULT 'pbkdf2-sha256',
        kdf_iterations INTEGER NOT NULL DEFAULT 200000 CHECK (kdf_iterations >= 100000),
        salt TEXT NOT NULL,
        vault_key_wrapped TEXT NOT NULL,
        vk_iv TEXT NOT NULL,
        version INTEGER NOT NULL DEFAULT 1,
        created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
        updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
    )
    """,
    # Vault items hold ciphertext only; deleted_at is the soft-delete marker
    """
    CREATE TABLE IF NOT EXISTS vault_items (
        id TEXT PRIMARY KEY,
        user_id TEXT NOT NULL,
        title TEXT NOT NULL,
        enc_payload TEXT NOT NULL,
        iv TEXT NOT NULL,
        created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
        updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
        deleted_at TIMESTAMP,
        FOREIGN KEY (user_id) REFERENCES user_keys(user_id) ON DELETE CASCADE
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS schema_version (
        version INTEGER PRIMARY KEY,
        applied_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
    )
    """,
]

CREATE_INDEXES = [
    "CREATE INDEX IF NOT EXISTS idx_vault_items_user ON vault_items(user_id)",
    "CREATE INDEX IF NOT EXISTS idx_vault_items_deleted ON vault_items(user_id, deleted_at)",
    # an IV must never repeat under the same vault key
    "CREATE UNIQUE INDEX IF NOT EXISTS idx_vault_items_iv ON vault_items(user_id, iv)",
]


def get_init_schema():
    """
    Get complete schema initialization SQL
    Returns:
        List of SQL statements to execute
    """
    statements = []
    statements.extend(CREATE_TABLES)
    statements.extend(CREATE_INDEXES)
    statements.append(
        f"INSERT OR IGNORE INTO schema_version (version) VALUES ({SCHEMA_VERSION})"
    )
    return statements


def get_drop_schema():
    """
    Get SQL statements to drop all tables for testing
    """
    return [
        "DROP TABLE IF EXISTS vault_items",
        "DROP TABLE IF EXISTS user_keys",
        "DROP TABLE IF EXISTS schema_version",
    ]

"""SQLite schema for the local comment store and outbox."""

from typing import Final

SCHEMA_VERSION: Final[int] = 2

COMMENTS_SCHEMA: Final[str] = """
CREATE TABLE IF NOT EXISTS comments (
    id TEXT NOT NULL,
    file_key TEXT NOT NULL,
    parent_id TEXT,
    root_id TEXT,
    message_text TEXT NOT NULL,
    author_id TEXT NOT NULL,
    author_handle TEXT,
    created_at TEXT NOT NULL,
    updated_at TEXT,
    deleted_at TEXT,
    reactions_json TEXT,
    remote_status_emoji TEXT,
    local_status TEXT NOT NULL DEFAULT 'OPEN'
        CHECK(local_status IN ('OPEN', 'PENDING', 'DONE', 'WONTFIX')),
    posted_by_agent INTEGER NOT NULL DEFAULT 0 CHECK(posted_by_agent IN (0, 1)),
    -- remote ids are only guaranteed unique within one file
    PRIMARY KEY (file_key, id)
);

CREATE INDEX IF NOT EXISTS idx_comments_file_root
ON comments(file_key, root_id);

CREATE INDEX IF NOT EXISTS idx_comments_file_status
ON comments(file_key, local_status);
"""

OPERATIONS_SCHEMA: Final[str] = """
CREATE TABLE IF NOT EXISTS operations (
    op_id TEXT PRIMARY KEY,
    idempotency_key TEXT NOT NULL UNIQUE,
    file_key TEXT NOT NULL,
    op_type TEXT NOT NULL,
    payload_json TEXT NOT NULL,
    state TEXT NOT NULL DEFAULT 'PENDING'
        CHECK(state IN ('PENDING', 'PROCESSING', 'CONFIRMED', 'FAILED')),
    retry_count INTEGER NOT NULL DEFAULT 0,
    error_message TEXT,
    remote_result_id TEXT,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_operations_file_state
ON operations(file_key, state, created_at);
"""

SYNC_STATE_SCHEMA: Final[str] = """
CREATE TABLE IF NOT EXISTS sync_state (
    file_key TEXT PRIMARY KEY,
    bot_user_id TEXT,
    bot_handle TEXT,
    last_full_sync_at TEXT
);
"""

# Key/value store reserved for credentials written by auth tooling.
CONFIG_SCHEMA: Final[str] = """
CREATE TABLE IF NOT EXISTS config (
    key TEXT PRIMARY KEY,
    value TEXT NOT NULL
);
"""

ALL_SCHEMAS: Final[tuple[str, ...]] = (
    COMMENTS_SCHEMA,
    OPERATIONS_SCHEMA,
    SYNC_STATE_SCHEMA,
    CONFIG_SCHEMA,
)

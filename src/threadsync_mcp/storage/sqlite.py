"""SQLite persistence for comments, outbox operations and per-file sync state.

Key design choices:

* **One connection, one lock** -- the connection is opened with
  ``check_same_thread=False`` and every statement runs under a
  ``threading.RLock``, so worker threads spawned by ``run_sync`` never
  interleave and no reader sees a half-applied sync batch.
* **Explicit transactions** -- the connection runs in autocommit mode;
  ``transaction()`` issues ``BEGIN IMMEDIATE`` / ``COMMIT`` / ``ROLLBACK``
  around multi-statement units of work.
* **Uniqueness lives in the schema** -- ``comments.id`` and
  ``operations.idempotency_key`` carry constraints that the sync upserts and
  outbox enqueue depend on. ``insert_operation`` lets
  ``sqlite3.IntegrityError`` propagate for the outbox to interpret.
"""

from __future__ import annotations

import json
import logging
import sqlite3
import threading
from collections.abc import Iterable, Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from ..sync.models import LocalStatus, Operation, OpState
from .schema import ALL_SCHEMAS

logger = logging.getLogger(__name__)


def utcnow_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


@dataclass
class CommentRecord:
    """Column values for one ``comments`` upsert."""

    id: str
    file_key: str
    parent_id: str | None
    root_id: str
    message_text: str
    author_id: str
    author_handle: str | None
    created_at: str
    updated_at: str | None
    reactions_json: str | None
    remote_status_emoji: str | None = None
    local_status: LocalStatus = LocalStatus.OPEN
    posted_by_agent: bool = False


_UPSERT_ROOT = """
INSERT INTO comments (
    id, file_key, parent_id, root_id, message_text, author_id, author_handle,
    created_at, updated_at, reactions_json, remote_status_emoji, local_status,
    posted_by_agent
) VALUES (?, ?, NULL, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
ON CONFLICT(file_key, id) DO UPDATE SET
    message_text = excluded.message_text,
    updated_at = excluded.updated_at,
    reactions_json = excluded.reactions_json,
    remote_status_emoji = excluded.remote_status_emoji,
    local_status = excluded.local_status,
    author_handle = excluded.author_handle,
    posted_by_agent = excluded.posted_by_agent
"""

# Replies carry no thread status of their own; the column keeps its default.
_UPSERT_REPLY = """
INSERT INTO comments (
    id, file_key, parent_id, root_id, message_text, author_id, author_handle,
    created_at, updated_at, reactions_json, posted_by_agent
) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
ON CONFLICT(file_key, id) DO UPDATE SET
    message_text = excluded.message_text,
    updated_at = excluded.updated_at,
    reactions_json = excluded.reactions_json,
    author_handle = excluded.author_handle,
    posted_by_agent = excluded.posted_by_agent
"""


class SQLiteStore:
    """Local datastore shared by the sync engine and the outbox.

    Args:
        db_path: Database file path, or ``":memory:"`` for tests.
    """

    def __init__(self, db_path: Path | str = ":memory:") -> None:
        self.db_path = str(db_path)
        if self.db_path != ":memory:":
            Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)
        self._lock = threading.RLock()
        self.conn = sqlite3.connect(
            self.db_path, check_same_thread=False, isolation_level=None
        )
        self.conn.row_factory = sqlite3.Row
        self._configure_connection()
        self._init_schema()

    def _configure_connection(self) -> None:
        if self.db_path != ":memory:":
            self.conn.execute("PRAGMA journal_mode=WAL")
        self.conn.execute("PRAGMA busy_timeout=5000")
        self.conn.execute("PRAGMA synchronous=NORMAL")

    def _init_schema(self) -> None:
        with self._lock:
            for ddl in ALL_SCHEMAS:
                self.conn.executescript(ddl)

    def close(self) -> None:
        with self._lock:
            self.conn.close()

    # ------------------------------------------------------------------
    # Transactions
    # ------------------------------------------------------------------

    @contextmanager
    def transaction(self) -> Iterator[sqlite3.Connection]:
        """Run a unit of work atomically: all statements commit or none do."""
        with self._lock:
            self.conn.execute("BEGIN IMMEDIATE")
            try:
                yield self.conn
            except BaseException:
                self.conn.execute("ROLLBACK")
                raise
            else:
                self.conn.execute("COMMIT")

    def _fetchone(self, sql: str, params: Iterable[Any] = ()) -> dict | None:
        with self._lock:
            row = self.conn.execute(sql, tuple(params)).fetchone()
        return dict(row) if row is not None else None

    def _fetchall(self, sql: str, params: Iterable[Any] = ()) -> list[dict]:
        with self._lock:
            rows = self.conn.execute(sql, tuple(params)).fetchall()
        return [dict(r) for r in rows]

    def _execute(self, sql: str, params: Iterable[Any] = ()) -> int:
        with self._lock:
            return self.conn.execute(sql, tuple(params)).rowcount

    # ------------------------------------------------------------------
    # Sync state
    # ------------------------------------------------------------------

    def get_sync_state(self, file_key: str) -> dict | None:
        return self._fetchone(
            "SELECT * FROM sync_state WHERE file_key = ?", (file_key,)
        )

    def save_bot_identity(
        self, file_key: str, bot_user_id: str, bot_handle: str | None
    ) -> None:
        self._execute(
            """
            INSERT INTO sync_state (file_key, bot_user_id, bot_handle)
            VALUES (?, ?, ?)
            ON CONFLICT(file_key) DO UPDATE SET
                bot_user_id = excluded.bot_user_id,
                bot_handle = excluded.bot_handle
            """,
            (file_key, bot_user_id, bot_handle),
        )

    def mark_full_sync(self, file_key: str, synced_at: str | None = None) -> None:
        self._execute(
            """
            INSERT INTO sync_state (file_key, last_full_sync_at) VALUES (?, ?)
            ON CONFLICT(file_key) DO UPDATE SET
                last_full_sync_at = excluded.last_full_sync_at
            """,
            (file_key, synced_at or utcnow_iso()),
        )

    # ------------------------------------------------------------------
    # Comments
    # ------------------------------------------------------------------

    def get_comment(self, file_key: str, comment_id: str) -> dict | None:
        return self._fetchone(
            "SELECT * FROM comments WHERE file_key = ? AND id = ?",
            (file_key, comment_id),
        )

    def get_root(self, file_key: str, root_id: str) -> dict | None:
        return self._fetchone(
            """
            SELECT * FROM comments
            WHERE file_key = ? AND id = ? AND parent_id IS NULL
            """,
            (file_key, root_id),
        )

    def get_roots(self, file_key: str) -> dict[str, dict]:
        """Return every stored root comment of *file_key* keyed by id."""
        rows = self._fetchall(
            "SELECT * FROM comments WHERE file_key = ? AND parent_id IS NULL",
            (file_key,),
        )
        return {row["id"]: row for row in rows}

    def get_root_statuses(
        self, file_key: str, root_ids: Iterable[str]
    ) -> dict[str, LocalStatus]:
        ids = list(root_ids)
        if not ids:
            return {}
        placeholders = ",".join("?" for _ in ids)
        rows = self._fetchall(
            f"""
            SELECT id, local_status FROM comments
            WHERE file_key = ? AND parent_id IS NULL AND id IN ({placeholders})
            """,
            (file_key, *ids),
        )
        return {row["id"]: LocalStatus(row["local_status"]) for row in rows}

    def get_replies(
        self, file_key: str, root_id: str, include_deleted: bool = False
    ) -> list[dict]:
        sql = """
            SELECT * FROM comments
            WHERE file_key = ? AND root_id = ? AND parent_id IS NOT NULL
        """
        if not include_deleted:
            sql += " AND deleted_at IS NULL"
        sql += " ORDER BY created_at ASC"
        return self._fetchall(sql, (file_key, root_id))

    def list_roots(
        self,
        file_key: str,
        statuses: Iterable[LocalStatus],
        limit: int | None = None,
    ) -> list[dict]:
        """Return non-deleted roots in *statuses*, newest first."""
        status_values = [LocalStatus(s).value for s in statuses]
        placeholders = ",".join("?" for _ in status_values)
        sql = f"""
            SELECT * FROM comments
            WHERE file_key = ? AND parent_id IS NULL AND deleted_at IS NULL
              AND local_status IN ({placeholders})
            ORDER BY created_at DESC
        """
        params: list[Any] = [file_key, *status_values]
        if limit is not None:
            sql += " LIMIT ?"
            params.append(limit)
        return self._fetchall(sql, params)

    def apply_sync_batch(
        self,
        roots: Iterable[CommentRecord],
        replies: Iterable[CommentRecord],
    ) -> None:
        """Upsert one file's fetched comments in a single transaction.

        ``deleted_at`` is never written here, so a soft-deleted row stays
        deleted even when the remote still reports it.
        """
        with self.transaction() as conn:
            for r in roots:
                conn.execute(
                    _UPSERT_ROOT,
                    (
                        r.id,
                        r.file_key,
                        r.root_id,
                        r.message_text,
                        r.author_id,
                        r.author_handle,
                        r.created_at,
                        r.updated_at,
                        r.reactions_json,
                        r.remote_status_emoji,
                        LocalStatus(r.local_status).value,
                        int(r.posted_by_agent),
                    ),
                )
            for r in replies:
                conn.execute(
                    _UPSERT_REPLY,
                    (
                        r.id,
                        r.file_key,
                        r.parent_id,
                        r.root_id,
                        r.message_text,
                        r.author_id,
                        r.author_handle,
                        r.created_at,
                        r.updated_at,
                        r.reactions_json,
                        int(r.posted_by_agent),
                    ),
                )

    def set_local_status(
        self,
        file_key: str,
        comment_id: str,
        status: LocalStatus,
        marker: str | None,
    ) -> int:
        return self._execute(
            """
            UPDATE comments SET local_status = ?, remote_status_emoji = ?
            WHERE file_key = ? AND id = ?
            """,
            (LocalStatus(status).value, marker, file_key, comment_id),
        )

    def soft_delete_comment(
        self, file_key: str, comment_id: str, deleted_at: str | None = None
    ) -> int:
        return self._execute(
            "UPDATE comments SET deleted_at = ? WHERE file_key = ? AND id = ?",
            (deleted_at or utcnow_iso(), file_key, comment_id),
        )

    # ------------------------------------------------------------------
    # Operations (outbox)
    # ------------------------------------------------------------------

    def insert_operation(
        self,
        op_id: str,
        idempotency_key: str,
        file_key: str,
        op_type: str,
        payload: dict[str, Any],
        created_at: str | None = None,
    ) -> None:
        """Insert a PENDING row.

        Raises:
            sqlite3.IntegrityError: If the idempotency key already exists.
        """
        now = created_at or utcnow_iso()
        self._execute(
            """
            INSERT INTO operations (
                op_id, idempotency_key, file_key, op_type, payload_json,
                state, retry_count, created_at, updated_at
            ) VALUES (?, ?, ?, ?, ?, 'PENDING', 0, ?, ?)
            """,
            (
                op_id,
                idempotency_key,
                file_key,
                op_type,
                json.dumps(payload, sort_keys=True),
                now,
                now,
            ),
        )

    def get_operation(self, op_id: str) -> Operation | None:
        row = self._fetchone(
            "SELECT * FROM operations WHERE op_id = ?", (op_id,)
        )
        return operation_from_row(row) if row else None

    def get_operation_by_key(self, idempotency_key: str) -> Operation | None:
        row = self._fetchone(
            "SELECT * FROM operations WHERE idempotency_key = ?",
            (idempotency_key,),
        )
        return operation_from_row(row) if row else None

    def list_operations(
        self,
        file_key: str,
        states: Iterable[OpState] | None = None,
        max_retries: int | None = None,
    ) -> list[Operation]:
        """Return *file_key*'s operations in creation order (FIFO)."""
        sql = "SELECT * FROM operations WHERE file_key = ?"
        params: list[Any] = [file_key]
        if states is not None:
            values = [OpState(s).value for s in states]
            sql += f" AND state IN ({','.join('?' for _ in values)})"
            params.extend(values)
        if max_retries is not None:
            sql += " AND retry_count < ?"
            params.append(max_retries)
        sql += " ORDER BY created_at ASC, rowid ASC"
        return [operation_from_row(r) for r in self._fetchall(sql, params)]

    def claim_operation(self, op_id: str, lease_cutoff: str, now: str) -> bool:
        """Mark a row PROCESSING if nobody else holds a live claim on it.

        A row is claimable when PENDING, or when PROCESSING with a claim
        older than *lease_cutoff* (left behind by an interrupted drain).
        """
        changed = self._execute(
            """
            UPDATE operations SET state = 'PROCESSING', updated_at = ?
            WHERE op_id = ?
              AND (state = 'PENDING'
                   OR (state = 'PROCESSING' AND updated_at < ?))
            """,
            (now, op_id, lease_cutoff),
        )
        return changed == 1

    def mark_confirmed(
        self, op_id: str, remote_result_id: str | None, now: str | None = None
    ) -> None:
        self._execute(
            """
            UPDATE operations
            SET state = 'CONFIRMED', remote_result_id = ?, error_message = NULL,
                updated_at = ?
            WHERE op_id = ?
            """,
            (remote_result_id, now or utcnow_iso(), op_id),
        )

    def record_failure(
        self,
        op_id: str,
        state: OpState,
        retry_count: int,
        error_message: str,
        now: str | None = None,
    ) -> None:
        self._execute(
            """
            UPDATE operations
            SET state = ?, retry_count = ?, error_message = ?, updated_at = ?
            WHERE op_id = ?
            """,
            (OpState(state).value, retry_count, error_message, now or utcnow_iso(), op_id),
        )

    def delete_finished_operations(self, older_than: str) -> int:
        """Delete CONFIRMED/FAILED rows created before *older_than*."""
        return self._execute(
            """
            DELETE FROM operations
            WHERE state IN ('CONFIRMED', 'FAILED') AND created_at < ?
            """,
            (older_than,),
        )


def operation_from_row(row: dict) -> Operation:
    return Operation(
        op_id=row["op_id"],
        idempotency_key=row["idempotency_key"],
        file_key=row["file_key"],
        op_type=row["op_type"],
        payload=json.loads(row["payload_json"]),
        state=OpState(row["state"]),
        retry_count=row["retry_count"],
        error_message=row["error_message"],
        remote_result_id=row["remote_result_id"],
        created_at=row["created_at"],
        updated_at=row["updated_at"],
    )

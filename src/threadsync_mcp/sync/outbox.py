"""Durable outbox for remote comment writes.

Every write the agent wants to make (reply, add/remove a status marker,
delete its own reply) is first recorded as an ``operations`` row keyed by a
deterministic idempotency fingerprint, then executed by ``drain()``.

Row lifecycle::

    PENDING -> PROCESSING -> CONFIRMED
                   |
                   +-> PENDING (retry_count + 1)    transient failure
                   +-> FAILED  (retry_count == 3)   ceiling reached
                   +-> FAILED                       malformed operation

Remote errors are treated as transient up to the ceiling, without telling
4xx from 5xx. A FAILED row is never retried automatically; resubmitting
with different content produces a fresh fingerprint.

Error handling is per-operation: one failing row never aborts the drain.
"""

from __future__ import annotations

import logging
import sqlite3
from collections.abc import Callable, Iterable
from datetime import datetime, timedelta, timezone
from typing import Any

from ..core.async_utils import run_sync, run_sync_limited
from ..core.client import CommentsClient
from ..storage import SQLiteStore
from .idempotency import generate_idempotency_key, generate_op_id
from .models import EnqueueResult, Operation, OpState, OpType
from .sanitizer import format_agent_reply

logger = logging.getLogger(__name__)

MAX_RETRIES = 3
RETENTION_WINDOW = timedelta(hours=24)
PROCESSING_LEASE = timedelta(minutes=5)

_REQUIRED_FIELDS: dict[OpType, tuple[str, ...]] = {
    OpType.REPLY: ("comment_id", "message"),
    OpType.ADD_REACTION: ("comment_id", "emoji"),
    OpType.REMOVE_REACTION: ("comment_id", "emoji"),
    OpType.DELETE_COMMENT: ("comment_id",),
}


class InvalidOperationError(ValueError):
    """An outbox row can never succeed (unknown type or malformed payload)."""


class Outbox:
    """Queue, deduplicate, execute and confirm remote writes.

    Args:
        store: Local store holding the ``operations`` table.
        client: Remote comments API.
        agent_identity: Folded into every idempotency key.
        agent_reply_prefix: Marker prepended to replies.
        max_retries: Attempts before a row is marked FAILED.
        processing_lease: Age after which a PROCESSING claim is considered
            abandoned and may be taken over.
    """

    def __init__(
        self,
        store: SQLiteStore,
        client: CommentsClient,
        agent_identity: str = "default",
        agent_reply_prefix: str = "[TS]",
        max_retries: int = MAX_RETRIES,
        processing_lease: timedelta = PROCESSING_LEASE,
    ) -> None:
        self.store = store
        self.client = client
        self.agent_identity = agent_identity
        self.agent_reply_prefix = agent_reply_prefix
        self.max_retries = max_retries
        self.processing_lease = processing_lease

        self._handlers: dict[OpType, Callable[[str, dict[str, Any]], str | None]] = {
            OpType.REPLY: self._send_reply,
            OpType.ADD_REACTION: self._send_add_reaction,
            OpType.REMOVE_REACTION: self._send_remove_reaction,
            OpType.DELETE_COMMENT: self._send_delete,
        }

    # ------------------------------------------------------------------
    # Enqueue
    # ------------------------------------------------------------------

    async def enqueue(
        self,
        file_key: str,
        op_type: OpType,
        target_id: str,
        content: str,
        payload: dict[str, Any],
    ) -> EnqueueResult:
        """Record an intended write.

        Returns ``created`` with a new op id, or ``duplicate`` with the row
        already holding the same fingerprint.
        """
        return await run_sync(
            self._enqueue_blocking, file_key, op_type, target_id, content, payload
        )

    def _enqueue_blocking(
        self,
        file_key: str,
        op_type: OpType,
        target_id: str,
        content: str,
        payload: dict[str, Any],
    ) -> EnqueueResult:
        key = generate_idempotency_key(
            file_key, target_id, op_type, content, self.agent_identity
        )
        op_id = generate_op_id()
        try:
            self.store.insert_operation(
                op_id, key, file_key, OpType(op_type).value, payload
            )
        except sqlite3.IntegrityError:
            # Losing the race on the UNIQUE key means the row already exists.
            existing = self.store.get_operation_by_key(key)
            if existing is None:
                raise
            logger.info(
                "Duplicate %s for %s/%s collapsed into %s (%s)",
                OpType(op_type).value,
                file_key,
                target_id,
                existing.op_id,
                existing.state.value,
            )
            return EnqueueResult(
                op_id=existing.op_id,
                status="duplicate",
                existing_operation=existing,
            )

        logger.debug(
            "Enqueued %s %s for %s/%s", OpType(op_type).value, op_id, file_key, target_id
        )
        return EnqueueResult(op_id=op_id, status="created")

    async def enqueue_reply(
        self, file_key: str, root_comment_id: str, message: str
    ) -> EnqueueResult:
        formatted = format_agent_reply(message, self.agent_reply_prefix)
        return await self.enqueue(
            file_key,
            OpType.REPLY,
            root_comment_id,
            formatted,
            {"comment_id": root_comment_id, "message": formatted},
        )

    async def enqueue_add_reaction(
        self, file_key: str, comment_id: str, emoji: str
    ) -> EnqueueResult:
        return await self.enqueue(
            file_key,
            OpType.ADD_REACTION,
            comment_id,
            emoji,
            {"comment_id": comment_id, "emoji": emoji},
        )

    async def enqueue_remove_reaction(
        self, file_key: str, comment_id: str, emoji: str
    ) -> EnqueueResult:
        return await self.enqueue(
            file_key,
            OpType.REMOVE_REACTION,
            comment_id,
            emoji,
            {"comment_id": comment_id, "emoji": emoji},
        )

    async def enqueue_delete(self, file_key: str, comment_id: str) -> EnqueueResult:
        return await self.enqueue(
            file_key,
            OpType.DELETE_COMMENT,
            comment_id,
            comment_id,
            {"comment_id": comment_id},
        )

    # ------------------------------------------------------------------
    # Drain
    # ------------------------------------------------------------------

    async def drain(self, file_key: str) -> int:
        """Attempt every open operation of *file_key* in creation order.

        Safe to run concurrently with itself: each row is claimed with a
        compare-and-set to PROCESSING before it is dispatched, and rows
        claimed by another drain are skipped.

        Returns:
            Number of operations confirmed in this pass.
        """
        candidates = await run_sync(
            self.store.list_operations,
            file_key,
            (OpState.PENDING, OpState.PROCESSING),
            self.max_retries,
        )
        confirmed = 0
        for candidate in candidates:
            op = await self._claim(candidate.op_id)
            if op is None:
                logger.debug("Operation %s claimed elsewhere, skipping", candidate.op_id)
                continue
            if await self._attempt(op):
                confirmed += 1
        if candidates:
            logger.info(
                "Drained %s: %d of %d operations confirmed",
                file_key,
                confirmed,
                len(candidates),
            )
        return confirmed

    async def _claim(self, op_id: str) -> Operation | None:
        now = datetime.now(timezone.utc)
        claimed = await run_sync(
            self.store.claim_operation,
            op_id,
            (now - self.processing_lease).isoformat(),
            now.isoformat(),
        )
        if not claimed:
            return None
        return await run_sync(self.store.get_operation, op_id)

    async def _attempt(self, op: Operation) -> bool:
        context = {"file_key": op.file_key, "op_id": op.op_id}
        try:
            remote_id = await run_sync_limited(self._dispatch, op)
        except InvalidOperationError as e:
            await run_sync(
                self.store.record_failure,
                op.op_id,
                OpState.FAILED,
                op.retry_count,
                str(e),
            )
            logger.error("Operation %s rejected: %s", op.op_id, e, extra=context)
            return False
        except Exception as e:
            retry_count = op.retry_count + 1
            state = OpState.FAILED if retry_count >= self.max_retries else OpState.PENDING
            await run_sync(
                self.store.record_failure, op.op_id, state, retry_count, str(e)
            )
            logger.warning(
                "Operation %s (%s) failed [retry %d/%d]: %s",
                op.op_id,
                op.op_type,
                retry_count,
                self.max_retries,
                e,
                extra=context,
            )
            return False

        await run_sync(self.store.mark_confirmed, op.op_id, remote_id)
        if op.op_type == OpType.DELETE_COMMENT.value:
            # resync never clears deleted_at, so the row stays hidden
            await run_sync(
                self.store.soft_delete_comment, op.file_key, op.payload["comment_id"]
            )
        logger.info(
            "Operation %s (%s) confirmed", op.op_id, op.op_type, extra=context
        )
        return True

    def _dispatch(self, op: Operation) -> str | None:
        try:
            op_type = OpType(op.op_type)
        except ValueError:
            raise InvalidOperationError(
                f"Unknown operation type: {op.op_type}"
            ) from None
        missing = [f for f in _REQUIRED_FIELDS[op_type] if not op.payload.get(f)]
        if missing:
            raise InvalidOperationError(
                f"Malformed {op_type.value} payload: missing {', '.join(missing)}"
            )
        return self._handlers[op_type](op.file_key, op.payload)

    def _send_reply(self, file_key: str, payload: dict[str, Any]) -> str | None:
        created = self.client.post_comment(
            file_key, payload["message"], comment_id=payload["comment_id"]
        )
        return (created or {}).get("id")

    def _send_add_reaction(self, file_key: str, payload: dict[str, Any]) -> None:
        self.client.add_reaction(file_key, payload["comment_id"], payload["emoji"])

    def _send_remove_reaction(self, file_key: str, payload: dict[str, Any]) -> None:
        self.client.remove_reaction(file_key, payload["comment_id"], payload["emoji"])

    def _send_delete(self, file_key: str, payload: dict[str, Any]) -> None:
        self.client.delete_comment(file_key, payload["comment_id"])

    # ------------------------------------------------------------------
    # Housekeeping and queries
    # ------------------------------------------------------------------

    async def cleanup_expired(self, now: datetime | None = None) -> int:
        """Delete CONFIRMED/FAILED rows older than the retention window.

        PENDING and PROCESSING rows are kept regardless of age.
        """
        cutoff = (now or datetime.now(timezone.utc)) - RETENTION_WINDOW
        deleted = await run_sync(
            self.store.delete_finished_operations, cutoff.isoformat()
        )
        if deleted:
            logger.info("Removed %d finished outbox operations", deleted)
        return deleted

    async def get_operation(self, op_id: str) -> Operation | None:
        return await run_sync(self.store.get_operation, op_id)

    async def list_operations(
        self, file_key: str, states: Iterable[OpState] | None = None
    ) -> list[Operation]:
        return await run_sync(self.store.list_operations, file_key, states)

"""Agent-initiated writes built on the outbox.

Each action enqueues its remote writes, drains the file's outbox once, and
reports what actually happened to the rows instead of raising. A write that
could not be delivered yet stays PENDING and is retried by the next drain.
"""

from __future__ import annotations

import logging

from ..core.async_utils import run_sync
from ..storage import SQLiteStore
from .models import ActionResult, EnqueueResult, LocalStatus, OpState
from .outbox import Outbox
from .reconciler import status_to_marker

logger = logging.getLogger(__name__)


async def _outcome(outbox: Outbox, op_ids: list[str]) -> str:
    """Collapse the states of *op_ids* into one caller-facing status."""
    states = []
    for op_id in op_ids:
        op = await outbox.get_operation(op_id)
        # A row removed by cleanup had already finished.
        states.append(op.state if op else OpState.CONFIRMED)
    if any(s == OpState.FAILED for s in states):
        return "failed"
    if all(s == OpState.CONFIRMED for s in states):
        return "confirmed"
    return "queued"


async def post_reply(
    outbox: Outbox, file_key: str, root_comment_id: str, message: str
) -> ActionResult:
    """Reply to a thread as the agent."""
    enqueued = await outbox.enqueue_reply(file_key, root_comment_id, message)
    await outbox.drain(file_key)
    outcome = await _outcome(outbox, [enqueued.op_id])

    if enqueued.status == "duplicate":
        return ActionResult(
            success=outcome != "failed",
            status="duplicate",
            message=(
                f"An identical reply to {root_comment_id} was already submitted "
                f"(operation {enqueued.op_id}, {outcome})."
            ),
            op_ids=[enqueued.op_id],
        )

    messages = {
        "confirmed": f"Reply posted to thread {root_comment_id}.",
        "queued": (
            f"Reply to {root_comment_id} queued; it will be retried on the next sync."
        ),
        "failed": f"Reply to {root_comment_id} could not be posted.",
    }
    return ActionResult(
        success=outcome != "failed",
        status=outcome,
        message=messages[outcome],
        op_ids=[enqueued.op_id],
    )


async def set_status(
    store: SQLiteStore,
    outbox: Outbox,
    file_key: str,
    comment_id: str,
    status: LocalStatus | str,
) -> ActionResult:
    """Change a thread's status locally and mirror it as a remote marker.

    The previous marker is removed when it differs from the new one. OPEN
    has no marker, so setting OPEN only removes the old one. The local
    status is written right away; marker writes go through the outbox.

    Raises:
        ValueError: If *status* is not a known status.
    """
    status = LocalStatus(status)
    root = await run_sync(store.get_root, file_key, comment_id)
    if root is None:
        return ActionResult(
            success=False,
            status="not_found",
            message=f"Thread {comment_id} not found in {file_key}. Run comments_sync first.",
        )

    previous = root["remote_status_emoji"]
    marker = status_to_marker(status)
    enqueued: list[EnqueueResult] = []
    if previous and previous != marker:
        enqueued.append(
            await outbox.enqueue_remove_reaction(file_key, comment_id, previous)
        )
    if marker and marker != previous:
        enqueued.append(await outbox.enqueue_add_reaction(file_key, comment_id, marker))

    await run_sync(store.set_local_status, file_key, comment_id, status, marker)
    logger.info("Thread %s/%s set to %s", file_key, comment_id, status.value)

    op_ids = [e.op_id for e in enqueued]
    if not op_ids:
        return ActionResult(
            success=True,
            status="confirmed",
            message=f"Thread {comment_id} is already {status.value}.",
        )

    await outbox.drain(file_key)
    outcome = await _outcome(outbox, op_ids)
    return ActionResult(
        success=outcome != "failed",
        status=outcome,
        message=f"Thread {comment_id} marked {status.value} (marker update {outcome}).",
        op_ids=op_ids,
    )


async def delete_own_reply(
    store: SQLiteStore, outbox: Outbox, file_key: str, comment_id: str
) -> ActionResult:
    """Delete a comment the agent posted.

    The outbox soft-deletes the local row when the remote delete is
    confirmed, whether by this call's drain or a later one.
    """
    row = await run_sync(store.get_comment, file_key, comment_id)
    if row is None:
        return ActionResult(
            success=False,
            status="not_found",
            message=f"Comment {comment_id} not found in {file_key}. Run comments_sync first.",
        )
    if not row["posted_by_agent"]:
        return ActionResult(
            success=False,
            status="rejected",
            message=f"Comment {comment_id} was not posted by the agent and cannot be deleted.",
        )

    enqueued = await outbox.enqueue_delete(file_key, comment_id)
    await outbox.drain(file_key)
    outcome = await _outcome(outbox, [enqueued.op_id])

    messages = {
        "confirmed": f"Comment {comment_id} deleted.",
        "queued": f"Deletion of {comment_id} queued; it will be retried on the next sync.",
        "failed": f"Comment {comment_id} could not be deleted.",
    }
    return ActionResult(
        success=outcome != "failed",
        status=outcome,
        message=messages[outcome],
        op_ids=[enqueued.op_id],
    )

"""Text formatting for sync results, threads and outbox rows.

Provides the human-readable side of MCP tool output:

- ``format_sync_result`` -- post-sync summary plus actionable threads.
- ``format_thread`` -- one thread with its replies.
- ``format_thread_list`` -- compact listing for ``comments_list_pending``.
- ``format_operations`` -- outbox rows grouped by state.

Comment text is already sanitized on the ``Thread`` models and is emitted
as-is.
"""

from __future__ import annotations

from collections import defaultdict
from typing import TYPE_CHECKING

from .models import OpState

if TYPE_CHECKING:
    from .models import Operation, SyncResult, Thread

# ------------------------------------------------------------------
# Threads
# ------------------------------------------------------------------


def _flag(thread: Thread) -> str:
    return "*" if thread.needs_attention else " "


def format_thread(thread: Thread) -> str:
    """Format a thread, root first, then replies in order.

    Agent-authored messages are tagged ``(agent)``.
    """
    root = thread.root_comment
    lines = [
        f"Thread {thread.id} [{thread.status.value}]"
        + (" - needs attention" if thread.needs_attention else ""),
        f"  {root.author.handle or root.author.id} at {root.created_at}"
        + (" (agent)" if root.is_agent else ""),
        f"    {root.text}",
    ]
    if root.reactions:
        summary = ", ".join(
            f"{r.emoji} x{r.count}" + (" (mine)" if r.me_reacted else "")
            for r in root.reactions
        )
        lines.append(f"    reactions: {summary}")

    for reply in thread.replies:
        lines.append(
            f"  > {reply.author.handle or reply.author.id} at {reply.created_at}"
            + (" (agent)" if reply.is_agent else "")
        )
        lines.append(f"      {reply.text}")
    return "\n".join(lines)


def format_thread_list(threads: list[Thread]) -> str:
    """One line per thread; ``*`` marks threads needing attention."""
    if not threads:
        return "No open threads."
    lines = [f"{len(threads)} open thread(s):"]
    for thread in threads:
        root = thread.root_comment
        lines.append(
            f"{_flag(thread)} {thread.id} [{thread.status.value}] "
            f"{root.author.handle or root.author.id}, "
            f"{len(thread.replies)} repl{'y' if len(thread.replies) == 1 else 'ies'}"
        )
    return "\n".join(lines)


def format_sync_result(result: SyncResult, file_key: str, confirmed: int = 0) -> str:
    """Format a full sync: stats line, drained writes, then each thread."""
    stats = result.stats
    lines = [
        f"Synced {file_key}: {stats.total_threads} threads "
        f"({stats.new_threads} new, {stats.updated_threads} updated) "
        f"from {stats.total_comments_fetched} comments",
    ]
    if confirmed:
        lines.append(f"Delivered {confirmed} queued write(s).")
    attention = sum(1 for t in result.threads if t.needs_attention)
    lines.append(f"{len(result.threads)} thread(s) returned, {attention} need attention.")

    for thread in result.threads:
        lines.append("")
        lines.append(format_thread(thread))
    return "\n".join(lines)


# ------------------------------------------------------------------
# Outbox
# ------------------------------------------------------------------


def format_operations(operations: list[Operation]) -> str:
    """Group outbox rows by state, in lifecycle order."""
    if not operations:
        return "Outbox is empty."

    by_state: dict[OpState, list[Operation]] = defaultdict(list)
    for op in operations:
        by_state[op.state].append(op)

    lines = [f"{len(operations)} operation(s):"]
    for state in OpState:
        ops = by_state.get(state)
        if not ops:
            continue
        lines.append(f"{state.value} ({len(ops)}):")
        for op in ops:
            target = op.payload.get("comment_id", "?")
            line = f"  {op.op_id} {op.op_type} -> {target} (retries: {op.retry_count})"
            if op.error_message:
                line += f" error: {op.error_message}"
            lines.append(line)
    return "\n".join(lines)

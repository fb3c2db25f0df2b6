"""Sync engine that pulls remote comments into the local thread store.

``SyncEngine.full_sync`` runs one reconciliation cycle for a file:

1. Resolves (once per file) and caches the agent's own remote identity.
2. Fetches the complete remote comment set.
3. Groups comments into threads; replies whose parent is not a fetched root
   are dropped as orphans.
4. Reconciles each thread's status from the markers on its root.
5. Upserts every root and reply in one transaction.
6. Records the sync time.
7. Re-reads the stored statuses and builds the attention-ranked response.

Runs for the same file are serialized by a per-file lock; different files
sync in parallel. The local reads (``get_thread``, ``list_open_threads``)
never touch the network and take no per-file lock.
"""

from __future__ import annotations

import json
import logging
from collections import OrderedDict
from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import datetime, timezone

from pydantic import ValidationError

from ..core.async_utils import run_sync, run_sync_limited
from ..core.client import CommentsClient
from ..storage import CommentRecord, SQLiteStore
from .locks import KeyedLockRegistry
from .models import (
    AggregatedReaction,
    Author,
    LocalStatus,
    RemoteComment,
    RemoteReaction,
    Reply,
    RootComment,
    SyncResult,
    SyncStats,
    Thread,
)
from .reconciler import forced_status, reconcile, remote_marker, resolve_remote_signal
from .sanitizer import is_agent_message, sanitize_for_llm

logger = logging.getLogger(__name__)

ACTIONABLE_STATUSES = (LocalStatus.OPEN, LocalStatus.PENDING)
_EPOCH = datetime.min.replace(tzinfo=timezone.utc)


def parse_timestamp(value: str | None) -> datetime:
    """Parse an ISO 8601 timestamp for ordering; unparseable values sort first."""
    if not value:
        return _EPOCH
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return _EPOCH
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


@dataclass
class ThreadGroup:
    """A fetched root comment and its direct replies."""

    root: RemoteComment
    replies: list[RemoteComment] = field(default_factory=list)


def group_comments_by_thread(
    comments: Iterable[RemoteComment],
) -> OrderedDict[str, ThreadGroup]:
    """Group comments by root id, replies ascending by ``created_at``.

    A reply whose ``parent_id`` is not the id of a root in *comments* is
    dropped; it is neither attached elsewhere nor turned into a thread.
    """
    comments = list(comments)
    groups: OrderedDict[str, ThreadGroup] = OrderedDict()
    for comment in comments:
        if comment.is_root:
            groups[comment.id] = ThreadGroup(root=comment)

    for comment in comments:
        if comment.is_root:
            continue
        group = groups.get(comment.parent_id or "")
        if group is None:
            logger.debug(
                "Dropping orphaned comment %s (parent %s not fetched)",
                comment.id,
                comment.parent_id,
            )
            continue
        group.replies.append(comment)

    for group in groups.values():
        group.replies.sort(key=lambda c: parse_timestamp(c.created_at))
    return groups


def aggregate_reactions(
    reactions: Iterable[RemoteReaction], bot_user_id: str | None
) -> list[AggregatedReaction]:
    """Collapse reactions by emoji, preserving first-seen order."""
    counts: dict[str, list] = {}
    for reaction in reactions:
        entry = counts.setdefault(reaction.emoji, [0, False])
        entry[0] += 1
        if bot_user_id is not None and reaction.user.id == bot_user_id:
            entry[1] = True
    return [
        AggregatedReaction(emoji=emoji, count=count, me_reacted=mine)
        for emoji, (count, mine) in counts.items()
    ]


@dataclass
class _Message:
    id: str
    text: str
    author_id: str
    author_handle: str
    created_at: str
    is_agent: bool


class SyncEngine:
    """Reconcile remote comment threads into the local store.

    Args:
        store: Local SQLite store.
        client: Remote comments API.
        agent_reply_prefix: Text marker identifying agent-posted replies.
        locks: Per-file lock registry; a private one is created if omitted.
    """

    def __init__(
        self,
        store: SQLiteStore,
        client: CommentsClient,
        agent_reply_prefix: str = "[TS]",
        locks: KeyedLockRegistry | None = None,
    ) -> None:
        self.store = store
        self.client = client
        self.agent_reply_prefix = agent_reply_prefix
        self.locks = locks or KeyedLockRegistry()

    # ------------------------------------------------------------------
    # Full sync
    # ------------------------------------------------------------------

    async def full_sync(
        self, file_key: str, force_full_sync: bool = False
    ) -> SyncResult:
        """Fetch, reconcile and store every comment thread of *file_key*.

        Args:
            force_full_sync: Ignore local status history (a missing marker
                means OPEN) and include closed threads in the result.
        """
        async with self.locks.hold(file_key):
            return await self._full_sync(file_key, force_full_sync)

    async def _full_sync(self, file_key: str, force_full_sync: bool) -> SyncResult:
        bot_user_id = await self.ensure_bot_identity(file_key)

        raw_comments = await run_sync_limited(self.client.get_comments, file_key)
        groups = group_comments_by_thread(self._parse_comments(raw_comments))
        existing_roots = await run_sync(self.store.get_roots, file_key)

        roots: list[CommentRecord] = []
        replies: list[CommentRecord] = []
        new_threads = 0
        updated_threads = 0

        for root_id, group in groups.items():
            existing = existing_roots.get(root_id)
            signal = resolve_remote_signal(group.root.reactions)
            if force_full_sync:
                status = forced_status(signal)
            else:
                current = (
                    LocalStatus(existing["local_status"])
                    if existing
                    else LocalStatus.OPEN
                )
                status = reconcile(signal, current)

            roots.append(
                self._record(
                    file_key,
                    group.root,
                    root_id,
                    bot_user_id,
                    status=status,
                    marker=remote_marker(group.root.reactions),
                )
            )
            replies.extend(
                self._record(file_key, reply, root_id, bot_user_id)
                for reply in group.replies
            )

            if existing is None:
                new_threads += 1
            elif (
                existing["local_status"] != status.value
                or existing["message_text"] != group.root.message
            ):
                updated_threads += 1

        await run_sync(self.store.apply_sync_batch, roots, replies)
        await run_sync(self.store.mark_full_sync, file_key)

        statuses = await run_sync(self.store.get_root_statuses, file_key, groups.keys())
        threads: list[Thread] = []
        for root_id, group in groups.items():
            status = statuses.get(root_id, LocalStatus.OPEN)
            if status.is_actionable or force_full_sync:
                threads.append(self._thread_from_group(file_key, group, status, bot_user_id))

        stats = SyncStats(
            total_threads=len(groups),
            new_threads=new_threads,
            updated_threads=updated_threads,
            total_comments_fetched=len(raw_comments),
        )
        logger.info(
            "Synced %s: %d threads (%d new, %d updated) from %d comments",
            file_key,
            stats.total_threads,
            stats.new_threads,
            stats.updated_threads,
            stats.total_comments_fetched,
            extra={"file_key": file_key},
        )
        return SyncResult(threads=rank_threads(threads), stats=stats)

    async def ensure_bot_identity(self, file_key: str) -> str:
        """Return the agent's remote user id, resolving it once per file."""
        state = await run_sync(self.store.get_sync_state, file_key)
        if state and state.get("bot_user_id"):
            return state["bot_user_id"]

        me = await run_sync_limited(self.client.get_current_user)
        await run_sync(
            self.store.save_bot_identity, file_key, me["id"], me.get("handle")
        )
        logger.info("Resolved agent identity for %s: %s", file_key, me["id"])
        return me["id"]

    # ------------------------------------------------------------------
    # Local reads
    # ------------------------------------------------------------------

    async def get_thread(self, file_key: str, thread_id: str) -> Thread | None:
        """Rebuild one thread from the local store, or ``None`` if unknown."""
        root = await run_sync(self.store.get_root, file_key, thread_id)
        if root is None:
            return None
        bot_user_id = await self._cached_bot_identity(file_key)
        reply_rows = await run_sync(self.store.get_replies, file_key, thread_id)
        return self._thread_from_rows(file_key, root, reply_rows, bot_user_id)

    async def list_open_threads(self, file_key: str, limit: int = 20) -> list[Thread]:
        """Return stored OPEN/PENDING threads, attention first, at most *limit*."""
        roots = await run_sync(self.store.list_roots, file_key, ACTIONABLE_STATUSES)
        bot_user_id = await self._cached_bot_identity(file_key)
        threads = []
        for root in roots:
            reply_rows = await run_sync(self.store.get_replies, file_key, root["id"])
            threads.append(self._thread_from_rows(file_key, root, reply_rows, bot_user_id))
        return rank_threads(threads)[: max(limit, 0)]

    async def _cached_bot_identity(self, file_key: str) -> str | None:
        state = await run_sync(self.store.get_sync_state, file_key)
        return state.get("bot_user_id") if state else None

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _parse_comments(raw_comments: Iterable[dict]) -> list[RemoteComment]:
        parsed = []
        for raw in raw_comments:
            try:
                parsed.append(RemoteComment.model_validate(raw))
            except ValidationError as e:
                logger.warning(
                    "Skipping malformed comment %s: %s",
                    raw.get("id") if isinstance(raw, dict) else raw,
                    e,
                )
        return parsed

    def _is_agent(self, author_id: str, text: str, bot_user_id: str | None) -> bool:
        return (bot_user_id is not None and author_id == bot_user_id) or is_agent_message(
            text, self.agent_reply_prefix
        )

    def _record(
        self,
        file_key: str,
        comment: RemoteComment,
        root_id: str,
        bot_user_id: str,
        status: LocalStatus = LocalStatus.OPEN,
        marker: str | None = None,
    ) -> CommentRecord:
        return CommentRecord(
            id=comment.id,
            file_key=file_key,
            parent_id=comment.parent_id or None,
            root_id=root_id,
            message_text=comment.message,
            author_id=comment.user.id,
            author_handle=comment.user.handle,
            created_at=comment.created_at,
            updated_at=comment.resolved_at,
            reactions_json=json.dumps([r.model_dump() for r in comment.reactions]),
            remote_status_emoji=marker,
            local_status=status,
            posted_by_agent=self._is_agent(comment.user.id, comment.message, bot_user_id),
        )

    def _thread_from_group(
        self,
        file_key: str,
        group: ThreadGroup,
        status: LocalStatus,
        bot_user_id: str,
    ) -> Thread:
        def message(c: RemoteComment) -> _Message:
            return _Message(
                id=c.id,
                text=c.message,
                author_id=c.user.id,
                author_handle=c.user.handle,
                created_at=c.created_at,
                is_agent=self._is_agent(c.user.id, c.message, bot_user_id),
            )

        return build_thread(
            file_key,
            status,
            message(group.root),
            [message(r) for r in group.replies],
            aggregate_reactions(group.root.reactions, bot_user_id),
        )

    def _thread_from_rows(
        self,
        file_key: str,
        root: dict,
        reply_rows: list[dict],
        bot_user_id: str | None,
    ) -> Thread:
        def message(row: dict) -> _Message:
            return _Message(
                id=row["id"],
                text=row["message_text"],
                author_id=row["author_id"],
                author_handle=row["author_handle"] or "",
                created_at=row["created_at"],
                is_agent=bool(row["posted_by_agent"])
                or self._is_agent(row["author_id"], row["message_text"], bot_user_id),
            )

        reactions = [
            RemoteReaction.model_validate(r)
            for r in json.loads(root["reactions_json"] or "[]")
        ]
        replies = sorted(
            (message(r) for r in reply_rows), key=lambda m: parse_timestamp(m.created_at)
        )
        return build_thread(
            file_key,
            LocalStatus(root["local_status"]),
            message(root),
            replies,
            aggregate_reactions(reactions, bot_user_id),
        )


def build_thread(
    file_key: str,
    status: LocalStatus,
    root: _Message,
    replies: list[_Message],
    reactions: list[AggregatedReaction],
) -> Thread:
    """Assemble the sanitized ``Thread`` projection.

    ``needs_attention`` is set for OPEN/PENDING threads whose latest message
    (last reply, or the root when there are none) is not the agent's.
    """
    last = replies[-1] if replies else root
    return Thread(
        id=root.id,
        file_key=file_key,
        status=status,
        needs_attention=status.is_actionable and not last.is_agent,
        root_comment=RootComment(
            id=root.id,
            text=sanitize_for_llm(root.text),
            author=Author(id=root.author_id, handle=root.author_handle),
            created_at=root.created_at,
            reactions=reactions,
            is_agent=root.is_agent,
        ),
        replies=[
            Reply(
                id=r.id,
                text=sanitize_for_llm(r.text),
                author=Author(id=r.author_id, handle=r.author_handle),
                created_at=r.created_at,
                is_agent=r.is_agent,
            )
            for r in replies
        ],
    )


def rank_threads(threads: list[Thread]) -> list[Thread]:
    """Order threads needing attention first, then newest root first."""
    ranked = sorted(
        threads,
        key=lambda t: parse_timestamp(t.root_comment.created_at),
        reverse=True,
    )
    ranked.sort(key=lambda t: not t.needs_attention)
    return ranked

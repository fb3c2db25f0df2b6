"""Tests for threadsync_mcp.sync.engine - full sync, thread reads, grouping."""

import asyncio
import threading
import time

import pytest

from threadsync_mcp.core.client import TransientRemoteError
from threadsync_mcp.sync.engine import (
    SyncEngine,
    aggregate_reactions,
    group_comments_by_thread,
    parse_timestamp,
)
from threadsync_mcp.sync.models import (
    LocalStatus,
    RemoteComment,
    RemoteReaction,
    RemoteUser,
)

BOT_ID = "bot-1"

FILE = "FILE1"


@pytest.fixture
def engine(store, fake_client):
    return SyncEngine(store, fake_client, agent_reply_prefix="[TS]")


@pytest.fixture
def seeded(fake_client, make_comment):
    """Two threads plus an orphan.

    r1: human root, human reply      -> needs attention
    r2: human root, agent reply last -> answered
    """
    fake_client.comments[FILE] = [
        make_comment("r1", "Padding is off", created_at="2026-01-01T10:00:00Z"),
        make_comment(
            "p1", "Also the margin", parent_id="r1", created_at="2026-01-01T11:00:00Z"
        ),
        make_comment("r2", "Wrong color", created_at="2026-01-02T10:00:00Z"),
        make_comment(
            "p2",
            "[TS] Updated the color",
            parent_id="r2",
            user_id=BOT_ID,
            handle="threadsync-bot",
            created_at="2026-01-02T11:00:00Z",
        ),
        make_comment("o1", "Lost reply", parent_id="gone"),
    ]
    return fake_client


def _set_reactions(client, comment_id, reactions):
    for c in client.comments[FILE]:
        if c["id"] == comment_id:
            c["reactions"] = [
                {"user": {"id": uid, "handle": uid}, "emoji": emoji}
                for emoji, uid in reactions
            ]


# -------------------------------------------------------------------------
# Pure helpers
# -------------------------------------------------------------------------


def _comment(cid, parent="", created="2026-01-01T00:00:00Z"):
    return RemoteComment(
        id=cid, parent_id=parent, user=RemoteUser(id="u"), created_at=created
    )


class TestGrouping:
    def test_replies_attach_to_roots_in_time_order(self):
        groups = group_comments_by_thread(
            [
                _comment("late", "r", "2026-01-01T03:00:00Z"),
                _comment("r"),
                _comment("early", "r", "2026-01-01T01:00:00Z"),
            ]
        )
        assert list(groups) == ["r"]
        assert [c.id for c in groups["r"].replies] == ["early", "late"]

    def test_orphans_and_nested_replies_dropped(self):
        groups = group_comments_by_thread(
            [_comment("r"), _comment("a", "r"), _comment("nested", "a"), _comment("o", "x")]
        )
        assert [c.id for c in groups["r"].replies] == ["a"]
        assert set(groups) == {"r"}

    def test_parse_timestamp_handles_z_and_garbage(self):
        assert parse_timestamp("2026-01-01T00:00:00Z") < parse_timestamp(
            "2026-01-01T00:00:01+00:00"
        )
        assert parse_timestamp("not a date") < parse_timestamp("1970-01-01T00:00:00")
        assert parse_timestamp(None) == parse_timestamp("")

    def test_aggregate_reactions(self):
        reactions = [
            RemoteReaction(user=RemoteUser(id="a"), emoji=":eyes:"),
            RemoteReaction(user=RemoteUser(id=BOT_ID), emoji=":eyes:"),
            RemoteReaction(user=RemoteUser(id="a"), emoji=":heart:"),
        ]
        agg = aggregate_reactions(reactions, BOT_ID)
        assert [(r.emoji, r.count, r.me_reacted) for r in agg] == [
            (":eyes:", 2, True),
            (":heart:", 1, False),
        ]


# -------------------------------------------------------------------------
# full_sync()
# -------------------------------------------------------------------------


class TestFullSync:
    async def test_first_sync(self, engine, seeded):
        result = await engine.full_sync(FILE)

        assert result.stats.total_threads == 2
        assert result.stats.new_threads == 2
        assert result.stats.updated_threads == 0
        assert result.stats.total_comments_fetched == 5
        assert [t.id for t in result.threads] == ["r1", "r2"]
        r1, r2 = result.threads
        assert r1.needs_attention and not r2.needs_attention
        assert [r.id for r in r1.replies] == ["p1"]
        assert r2.replies[0].is_agent

    async def test_human_reply_after_agent_restores_attention(
        self, engine, seeded, make_comment
    ):
        first = await engine.full_sync(FILE)
        r2 = next(t for t in first.threads if t.id == "r2")
        assert not r2.needs_attention

        seeded.comments[FILE].append(
            make_comment(
                "p3",
                "Still looks off",
                parent_id="r2",
                created_at="2026-01-02T12:00:00Z",
            )
        )
        second = await engine.full_sync(FILE)
        r2 = next(t for t in second.threads if t.id == "r2")
        assert r2.needs_attention
        assert [r.id for r in r2.replies] == ["p2", "p3"]
        assert (await engine.get_thread(FILE, "r2")).needs_attention

    async def test_text_is_sanitized(self, engine, fake_client, make_comment):
        fake_client.comments[FILE] = [make_comment("r1", "<script>x</script>")]
        result = await engine.full_sync(FILE)
        assert result.threads[0].root_comment.text == (
            "<user_content>&lt;script&gt;x&lt;/script&gt;</user_content>"
        )

    async def test_attention_first_then_newest(self, engine, fake_client, make_comment):
        fake_client.comments[FILE] = [
            make_comment("old", created_at="2026-01-01T00:00:00Z"),
            make_comment("new", created_at="2026-01-03T00:00:00Z"),
            make_comment(
                "answered",
                "[TS] note to self",
                user_id=BOT_ID,
                created_at="2026-01-05T00:00:00Z",
            ),
        ]
        result = await engine.full_sync(FILE)
        assert [t.id for t in result.threads] == ["new", "old", "answered"]
        assert not result.threads[-1].needs_attention

    async def test_status_lifecycle(self, engine, seeded):
        await engine.full_sync(FILE)

        again = await engine.full_sync(FILE)
        assert (again.stats.new_threads, again.stats.updated_threads) == (0, 0)

        _set_reactions(seeded, "r1", [(":white_check_mark:", "dana")])
        done = await engine.full_sync(FILE)
        assert "r1" not in [t.id for t in done.threads]
        assert done.stats.updated_threads == 1
        assert (await engine.get_thread(FILE, "r1")).status is LocalStatus.DONE

        _set_reactions(seeded, "r1", [])
        reopened = await engine.full_sync(FILE)
        r1 = next(t for t in reopened.threads if t.id == "r1")
        assert r1.status is LocalStatus.OPEN

    async def test_pending_marker(self, engine, seeded):
        _set_reactions(seeded, "r2", [(":eyes:", "dana")])
        result = await engine.full_sync(FILE)
        r2 = next(t for t in result.threads if t.id == "r2")
        assert r2.status is LocalStatus.PENDING
        assert r2.root_comment.reactions[0].emoji == ":eyes:"

    async def test_done_beats_wontfix(self, engine, seeded):
        _set_reactions(seeded, "r1", [(":no_entry_sign:", "a"), ("✅", "b")])
        await engine.full_sync(FILE)
        assert (await engine.get_thread(FILE, "r1")).status is LocalStatus.DONE

    async def test_message_edit_counts_as_update(self, engine, seeded):
        await engine.full_sync(FILE)
        seeded.comments[FILE][0]["message"] = "Padding is still off"
        result = await engine.full_sync(FILE)
        assert result.stats.updated_threads == 1

    async def test_force_includes_closed_threads(self, engine, seeded, store):
        _set_reactions(seeded, "r1", [(":no_entry_sign:", "dana")])
        normal = await engine.full_sync(FILE)
        assert [t.id for t in normal.threads] == ["r2"]

        forced = await engine.full_sync(FILE, force_full_sync=True)
        statuses = {t.id: t.status for t in forced.threads}
        assert statuses == {"r1": LocalStatus.WONTFIX, "r2": LocalStatus.OPEN}

    async def test_force_resets_local_pending_without_marker(self, engine, seeded, store):
        await engine.full_sync(FILE)
        store.set_local_status(FILE, "r2", LocalStatus.PENDING, None)

        await engine.full_sync(FILE)
        assert (await engine.get_thread(FILE, "r2")).status is LocalStatus.PENDING

        await engine.full_sync(FILE, force_full_sync=True)
        assert (await engine.get_thread(FILE, "r2")).status is LocalStatus.OPEN

    async def test_orphans_not_stored(self, engine, seeded, store):
        await engine.full_sync(FILE)
        assert store.get_comment(FILE, "o1") is None

    async def test_malformed_comment_skipped(self, engine, fake_client, make_comment):
        fake_client.comments[FILE] = [make_comment("r1"), {"id": "broken"}]
        result = await engine.full_sync(FILE)
        assert [t.id for t in result.threads] == ["r1"]
        assert result.stats.total_comments_fetched == 2

    async def test_bot_identity_resolved_once(self, engine, seeded, store):
        await engine.full_sync(FILE)
        await engine.full_sync(FILE)
        assert len(seeded.calls_to("get_current_user")) == 1
        assert store.get_sync_state(FILE)["bot_user_id"] == BOT_ID
        assert store.get_sync_state(FILE)["last_full_sync_at"]

    async def test_agent_detected_by_author_without_prefix(
        self, engine, fake_client, make_comment
    ):
        fake_client.comments[FILE] = [
            make_comment("r1"),
            make_comment("p1", "no prefix here", parent_id="r1", user_id=BOT_ID),
        ]
        result = await engine.full_sync(FILE)
        assert result.threads[0].replies[0].is_agent
        assert not result.threads[0].needs_attention

    async def test_fetch_failure_writes_nothing(self, engine, seeded, store):
        seeded.fail("get_comments", TransientRemoteError("down", 503))
        with pytest.raises(TransientRemoteError):
            await engine.full_sync(FILE)
        assert store.get_roots(FILE) == {}
        assert not engine.locks.is_held(FILE)

    async def test_same_file_syncs_serialize(self, engine, seeded):
        active = 0
        peak = 0
        guard = threading.Lock()
        original = seeded.get_comments

        def slow_get_comments(file_key):
            nonlocal active, peak
            with guard:
                active += 1
                peak = max(peak, active)
            time.sleep(0.05)
            with guard:
                active -= 1
            return original(file_key)

        seeded.get_comments = slow_get_comments
        first, second = await asyncio.gather(
            engine.full_sync(FILE), engine.full_sync(FILE)
        )
        assert peak == 1
        assert first.stats.new_threads + second.stats.new_threads == 2


# -------------------------------------------------------------------------
# Local reads
# -------------------------------------------------------------------------


class TestLocalReads:
    async def test_get_thread_unknown(self, engine):
        assert await engine.get_thread(FILE, "nope") is None

    async def test_get_thread_is_offline(self, engine, seeded):
        await engine.full_sync(FILE)
        seeded.fail("get_comments", times=5)
        thread = await engine.get_thread(FILE, "r2")
        assert thread.replies[0].text == "<user_content>[TS] Updated the color</user_content>"
        assert not thread.needs_attention

    async def test_get_thread_hides_deleted_replies(self, engine, seeded, store):
        await engine.full_sync(FILE)
        store.soft_delete_comment(FILE, "p1")
        thread = await engine.get_thread(FILE, "r1")
        assert thread.replies == []
        assert thread.needs_attention

    async def test_list_open_threads(self, engine, seeded, make_comment):
        _set_reactions(seeded, "r1", [(":white_check_mark:", "dana")])
        seeded.comments[FILE].append(
            make_comment("r3", "Font size?", created_at="2026-01-03T09:00:00Z")
        )
        await engine.full_sync(FILE)

        threads = await engine.list_open_threads(FILE)
        assert [t.id for t in threads] == ["r3", "r2"]
        assert threads[0].needs_attention

        assert [t.id for t in await engine.list_open_threads(FILE, limit=1)] == ["r3"]

    async def test_list_open_threads_empty(self, engine):
        assert await engine.list_open_threads(FILE) == []

"""Shared pytest fixtures for threadsync-mcp-server tests."""

from collections import defaultdict
from itertools import count

import pytest
from dotenv import load_dotenv

from threadsync_mcp.config import Config
from threadsync_mcp.core.client import TransientRemoteError
from threadsync_mcp.mcp.lifespan import AppContext
from threadsync_mcp.mcp.server import PING_SPEC
from threadsync_mcp.mcp.tools import ALL_SPECS, ToolRegistry
from threadsync_mcp.storage import SQLiteStore
from threadsync_mcp.sync.engine import SyncEngine
from threadsync_mcp.sync.outbox import Outbox

load_dotenv()

BOT_ID = "bot-1"
BOT_HANDLE = "threadsync-bot"


def pytest_addoption(parser):
    """Add custom CLI options for test filtering."""
    parser.addoption(
        "--run-live",
        action="store_true",
        default=False,
        help="Run tests that require the live comments API",
    )


def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line(
        "markers", "live: mark test as requiring the live comments API"
    )


def pytest_collection_modifyitems(config, items):
    """Skip live tests unless --run-live is passed."""
    if config.getoption("--run-live"):
        return
    skip_live = pytest.mark.skip(reason="need --run-live option to run")
    for item in items:
        if "live" in item.keywords:
            item.add_marker(skip_live)


class FakeCommentsClient:
    """In-memory stand-in for ``CommentsClient``.

    Holds the remote comment set per file, records every write, and raises
    queued failures (``fail()``) before touching state.
    """

    def __init__(self, user_id: str = BOT_ID, handle: str = BOT_HANDLE):
        self.me = {"id": user_id, "handle": handle}
        self.comments: dict[str, list[dict]] = defaultdict(list)
        self.calls: list[tuple] = []
        self._failures: dict[str, list[Exception]] = defaultdict(list)
        self._ids = count(9000)

    def fail(self, method: str, exc: Exception | None = None, times: int = 1):
        for _ in range(times):
            self._failures[method].append(
                exc or TransientRemoteError(f"{method} failed", 503)
            )

    def _maybe_fail(self, method: str) -> None:
        if self._failures[method]:
            raise self._failures[method].pop(0)

    def calls_to(self, method: str) -> list[tuple]:
        return [c for c in self.calls if c[0] == method]

    def get_comments(self, file_key):
        self.calls.append(("get_comments", file_key))
        self._maybe_fail("get_comments")
        return [dict(c) for c in self.comments[file_key]]

    def get_current_user(self):
        self.calls.append(("get_current_user",))
        self._maybe_fail("get_current_user")
        return dict(self.me)

    def validate_connection(self):
        return self.get_current_user()["handle"]

    def post_comment(self, file_key, message, comment_id=None):
        self.calls.append(("post_comment", file_key, message, comment_id))
        self._maybe_fail("post_comment")
        created = {
            "id": str(next(self._ids)),
            "file_key": file_key,
            "parent_id": comment_id or "",
            "user": dict(self.me),
            "created_at": "2026-01-01T12:00:00Z",
            "message": message,
            "reactions": [],
        }
        self.comments[file_key].append(created)
        return created

    def delete_comment(self, file_key, comment_id):
        self.calls.append(("delete_comment", file_key, comment_id))
        self._maybe_fail("delete_comment")
        self.comments[file_key] = [
            c for c in self.comments[file_key] if c["id"] != comment_id
        ]

    def add_reaction(self, file_key, comment_id, emoji):
        self.calls.append(("add_reaction", file_key, comment_id, emoji))
        self._maybe_fail("add_reaction")
        for c in self.comments[file_key]:
            if c["id"] == comment_id:
                c["reactions"] = [
                    *c.get("reactions", []),
                    {"user": dict(self.me), "emoji": emoji},
                ]

    def remove_reaction(self, file_key, comment_id, emoji):
        self.calls.append(("remove_reaction", file_key, comment_id, emoji))
        self._maybe_fail("remove_reaction")
        for c in self.comments[file_key]:
            if c["id"] == comment_id:
                c["reactions"] = [
                    r
                    for r in c.get("reactions", [])
                    if not (r["emoji"] == emoji and r["user"]["id"] == self.me["id"])
                ]


@pytest.fixture
def mock_config():
    """Create a Config instance for testing."""
    return Config(
        access_token="test-token",
        api_url="https://api.example.com",
        db_path=":memory:",
    )


@pytest.fixture
def store(tmp_path):
    """SQLite store backed by a temporary file."""
    s = SQLiteStore(tmp_path / "threadsync.db")
    yield s
    s.close()


@pytest.fixture
def fake_client():
    return FakeCommentsClient()


@pytest.fixture
def make_comment():
    """Factory for remote comment payloads as the API returns them."""

    def _make(
        comment_id,
        message="Please fix the padding",
        *,
        parent_id="",
        user_id="designer-1",
        handle="dana",
        created_at="2026-01-01T10:00:00Z",
        reactions=None,
    ):
        return {
            "id": comment_id,
            "file_key": "FILE1",
            "parent_id": parent_id,
            "user": {"id": user_id, "handle": handle},
            "created_at": created_at,
            "resolved_at": None,
            "message": message,
            "reactions": [
                {"user": {"id": uid, "handle": uid}, "emoji": emoji}
                for emoji, uid in (reactions or [])
            ],
        }

    return _make


@pytest.fixture
def app_ctx(mock_config, store, fake_client):
    """AppContext over a temporary store and the in-memory client."""
    return AppContext(
        config=mock_config,
        client=fake_client,
        store=store,
        engine=SyncEngine(store, fake_client),
        outbox=Outbox(store, fake_client),
    )


@pytest.fixture
def registry():
    return ToolRegistry([PING_SPEC] + ALL_SPECS)

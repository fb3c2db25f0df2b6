"""Lifespan management for MCP server startup and shutdown."""

import logging
import sys
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Any

from dotenv import load_dotenv

from ..config import Config, load_config
from ..config_loader import (
    discover_config_files,
    load_hierarchical_config,
)
from ..config_schema import build_config
from ..core.async_utils import init_semaphore, run_sync
from ..core.client import CommentsClient
from ..storage import SQLiteStore
from ..sync.engine import SyncEngine
from ..sync.outbox import Outbox

logger = logging.getLogger(__name__)


@dataclass
class AppContext:
    """Objects shared by every tool call for the lifetime of the server."""

    config: Config
    client: CommentsClient
    store: SQLiteStore
    engine: SyncEngine
    outbox: Outbox


def _stderr_print(msg: str) -> None:
    """Print message to stderr for user feedback (safe in MCP mode)."""
    print(msg, file=sys.stderr, flush=True)


def _load(config_overrides: dict[str, Any] | None) -> Config:
    # .env first, so ${VAR} interpolation in YAML can use its values
    load_dotenv()

    yaml_fallbacks: dict[str, Any] | None = None
    sources = []
    config_files = discover_config_files()
    if config_files:
        unified = build_config(load_hierarchical_config())
        yaml_fallbacks = unified.fallbacks()
        sources.append(f"config file: {config_files[0]}")

    overrides = config_overrides or {}
    config = load_config(
        api_url=overrides.get("api_url"),
        access_token=overrides.get("access_token"),
        db_path=overrides.get("db_path"),
        insecure=overrides.get("insecure", False),
        debug=overrides.get("debug", False),
        yaml_fallbacks=yaml_fallbacks,
    )

    if overrides:
        sources.append("CLI arguments")
    sources.append("environment variables")
    source_desc = ", ".join(sources)
    logger.info("Configuration loaded from: %s", source_desc)
    _stderr_print(f"  Configuration loaded from: {source_desc}")
    return config


@asynccontextmanager
async def server_lifespan(
    config_overrides: dict[str, Any] | None = None,
) -> AsyncIterator[AppContext]:
    """
    Manage server startup and shutdown lifecycle.

    On startup:
    - Load .env, YAML fallbacks and CLI overrides via load_config()
    - Open the SQLite store
    - Validate the access token against the API (fail fast)
    - Initialize the request semaphore
    - Prune outbox rows past the retention window

    On shutdown:
    - Close the store

    Args:
        config_overrides: Optional dict with config values from CLI
            (api_url, access_token, db_path, insecure, debug)

    Yields:
        AppContext with client, store, engine, outbox and config

    Raises:
        RuntimeError: If configuration is invalid or the API is unreachable.
    """
    logger.info("MCP server starting...")
    _stderr_print("Threadsync MCP Server starting...")

    try:
        config = _load(config_overrides)
        logger.info("API URL: %s", config.api_url)
        _stderr_print(f"  API URL: {config.api_url}")
    except ValueError as e:
        logger.error("Configuration error: %s", e)
        _stderr_print(f"ERROR: Configuration error: {e}")
        _stderr_print("  Ensure THREADSYNC_ACCESS_TOKEN is set.")
        raise RuntimeError(
            f"Configuration error: {e}. Ensure THREADSYNC_ACCESS_TOKEN is set."
        ) from e

    client = CommentsClient(config)
    logger.info("Validating API connection...")
    _stderr_print("  Validating API connection...")
    try:
        handle = await run_sync(client.validate_connection)
    except Exception as e:
        logger.error("Failed to connect to comments API: %s", e)
        _stderr_print("ERROR: Comments API connection failed.")
        _stderr_print(f"  {e}")
        _stderr_print("  Check THREADSYNC_API_URL and THREADSYNC_ACCESS_TOKEN.")
        raise RuntimeError(
            f"Comments API connection failed: {e}. "
            "Check THREADSYNC_API_URL and THREADSYNC_ACCESS_TOKEN."
        ) from e
    logger.info("Authenticated as %s", handle)
    _stderr_print(f"  Authenticated as {handle}")

    init_semaphore(config.max_parallel_requests)
    _stderr_print(f"  Parallel requests: {config.max_parallel_requests}")

    store = SQLiteStore(config.db_path)
    _stderr_print(f"  Database: {config.db_path}")
    try:
        engine = SyncEngine(
            store, client, agent_reply_prefix=config.agent_reply_prefix
        )
        outbox = Outbox(
            store,
            client,
            agent_identity=config.agent_identity,
            agent_reply_prefix=config.agent_reply_prefix,
        )
        await outbox.cleanup_expired()
        _stderr_print("Server ready. Waiting for MCP client connection...")

        yield AppContext(
            config=config,
            client=client,
            store=store,
            engine=engine,
            outbox=outbox,
        )
    finally:
        store.close()
        logger.info("MCP server shutting down")
        _stderr_print("Threadsync MCP Server shutting down.")

"""Unified configuration schema for threadsync_mcp.

Defines Pydantic models for the YAML config structure with dedicated
sections for the remote API, local storage, the agent identity and
logging. Includes an adapter to the flat ``Config`` dataclass.

Usage:
    from threadsync_mcp.config_schema import (
        UnifiedConfig, build_config, to_legacy_config,
    )

    raw = load_hierarchical_config()
    unified = build_config(raw)
    legacy = to_legacy_config(unified, cli_overrides={"db_path": "/tmp/x.db"})
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from pydantic import BaseModel, Field

if TYPE_CHECKING:
    from .config import Config

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Section models
# ---------------------------------------------------------------------------


class RemoteConfig(BaseModel):
    """Comments API connection settings.

    All fields are optional to support zero-config: env vars and CLI args
    can supply them at runtime instead.
    """

    api_url: str | None = Field(default=None, description="API base URL")
    access_token: str | None = Field(
        default=None, description="Personal access token"
    )
    token_header: str | None = Field(
        default=None, description="HTTP header carrying the token"
    )
    insecure: bool = Field(
        default=False,
        description="Disable SSL verification (development only)",
    )
    debug: bool = Field(default=False, description="Enable debug mode")
    max_parallel_requests: int = Field(
        default=5,
        ge=1,
        le=100,
        description="Maximum concurrent requests to the API (1-100)",
    )
    request_timeout: float = Field(
        default=30.0,
        gt=0,
        description="Per-request timeout in seconds",
    )

    model_config = {"frozen": True}


class StorageConfig(BaseModel):
    """Local SQLite store settings."""

    db_path: str | None = Field(
        default=None, description="SQLite database file path"
    )

    model_config = {"frozen": True}


class AgentConfig(BaseModel):
    """How the automated actor identifies itself.

    Attributes:
        reply_prefix: Marker prepended to every reply the agent posts.
        identity: Extra discriminator folded into outbox idempotency keys.
    """

    reply_prefix: str | None = Field(default=None, min_length=1)
    identity: str | None = Field(default=None, min_length=1)

    model_config = {"frozen": True}


class LoggingConfig(BaseModel):
    """Logging configuration.

    Attributes:
        level: Log level name (DEBUG, INFO, WARNING, ERROR, CRITICAL).
        file: Optional log file path.
    """

    level: str = Field(default="INFO", description="Log level")
    file: str | None = Field(default=None, description="Log file path")

    model_config = {"frozen": True}


# ---------------------------------------------------------------------------
# Top-level unified config
# ---------------------------------------------------------------------------


class UnifiedConfig(BaseModel):
    """Top-level unified configuration.

    Every section has sensible defaults, so ``UnifiedConfig()``
    (zero-config) is always valid.
    """

    remote: RemoteConfig = Field(default_factory=RemoteConfig)
    storage: StorageConfig = Field(default_factory=StorageConfig)
    agent: AgentConfig = Field(default_factory=AgentConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    model_config = {"frozen": True}

    def fallbacks(self) -> dict[str, Any]:
        """Flatten the sections into the ``yaml_fallbacks`` dict understood
        by ``load_config()``, dropping unset values."""
        flat: dict[str, Any] = {}
        flat.update(self.remote.model_dump())
        flat.update(self.storage.model_dump())
        flat.update(self.agent.model_dump())
        return {k: v for k, v in flat.items() if v is not None}


# ---------------------------------------------------------------------------
# Factory function
# ---------------------------------------------------------------------------


def build_config(raw_data: dict) -> UnifiedConfig:
    """Construct a ``UnifiedConfig`` from the raw dict returned by
    ``load_hierarchical_config()``.

    Handles missing sections gracefully - anything absent gets defaults.
    """
    if not raw_data:
        return UnifiedConfig()

    return UnifiedConfig(**raw_data)


# ---------------------------------------------------------------------------
# Adapter: UnifiedConfig -> Config dataclass
# ---------------------------------------------------------------------------


def to_legacy_config(
    unified: UnifiedConfig,
    cli_overrides: dict | None = None,
) -> Config:
    """Convert a ``UnifiedConfig`` into the ``Config`` dataclass, applying
    CLI overrides on top.

    CLI overrides dict keys: api_url, access_token, db_path, insecure, debug.

    Returns:
        ``Config`` instance (NOT validated - caller should run
        ``validate_config()`` separately if needed).
    """
    from .config import (
        DEFAULT_AGENT_IDENTITY,
        DEFAULT_AGENT_PREFIX,
        DEFAULT_API_URL,
        DEFAULT_DB_PATH,
        DEFAULT_TOKEN_HEADER,
        Config,
    )

    overrides = cli_overrides or {}

    return Config(
        access_token=overrides.get("access_token")
        or unified.remote.access_token
        or "",
        api_url=overrides.get("api_url")
        or unified.remote.api_url
        or DEFAULT_API_URL,
        token_header=unified.remote.token_header or DEFAULT_TOKEN_HEADER,
        db_path=overrides.get("db_path")
        or unified.storage.db_path
        or DEFAULT_DB_PATH,
        agent_reply_prefix=unified.agent.reply_prefix or DEFAULT_AGENT_PREFIX,
        agent_identity=unified.agent.identity or DEFAULT_AGENT_IDENTITY,
        max_parallel_requests=unified.remote.max_parallel_requests,
        request_timeout=unified.remote.request_timeout,
        insecure=overrides.get("insecure", False) or unified.remote.insecure,
        debug=overrides.get("debug", False) or unified.remote.debug,
    )

"""Configuration for the threadsync MCP server.

Reads remote API credentials, the local database path and agent identity
settings from CLI args, environment variables, .env files, and YAML config
file fallbacks.

Precedence (highest to lowest):
    CLI args > Environment variables > .env file > YAML config > Built-in defaults

Environment variables:
    THREADSYNC_ACCESS_TOKEN: Personal access token for the comments API (required)
    THREADSYNC_API_URL: API base URL (optional, default: https://api.figma.com)
    THREADSYNC_DB_PATH: SQLite database path (optional, default: ./threadsync.db)
    THREADSYNC_AGENT_PREFIX: Marker prepended to agent replies (optional, default: [TS])
    THREADSYNC_AGENT_IDENTITY: Identity folded into idempotency keys (optional)
    THREADSYNC_MAX_PARALLEL_REQUESTS: Max parallel API requests (optional, default: 5)
    THREADSYNC_INSECURE: Skip SSL verification (optional, default: false)
"""

import logging
import os
from dataclasses import dataclass
from urllib.parse import urlparse

logger = logging.getLogger(__name__)

DEFAULT_API_URL = "https://api.figma.com"
DEFAULT_TOKEN_HEADER = "X-Figma-Token"
DEFAULT_DB_PATH = "./threadsync.db"
DEFAULT_AGENT_PREFIX = "[TS]"
DEFAULT_AGENT_IDENTITY = "default"


@dataclass
class Config:
    access_token: str
    api_url: str = DEFAULT_API_URL
    token_header: str = DEFAULT_TOKEN_HEADER
    db_path: str = DEFAULT_DB_PATH
    agent_reply_prefix: str = DEFAULT_AGENT_PREFIX
    agent_identity: str = DEFAULT_AGENT_IDENTITY
    max_parallel_requests: int = 5
    request_timeout: float = 30.0
    insecure: bool = False
    debug: bool = False


def validate_config(config: Config) -> None:
    """Validate configuration values and raise ValueError if invalid.

    Args:
        config: Config instance to validate.

    Raises:
        ValueError: If URL format is invalid, the token is empty, or the
            agent reply prefix is blank.
    """
    config.api_url = config.api_url.strip()

    if not config.api_url.startswith(("http://", "https://")):
        raise ValueError(
            f"Invalid API URL '{config.api_url}': must start with http:// or https://"
        )

    parsed = urlparse(config.api_url)
    if not parsed.hostname:
        raise ValueError(
            f"Invalid API URL '{config.api_url}': URL must include a hostname"
        )

    config.api_url = config.api_url.removesuffix("/")

    if not config.access_token.strip():
        raise ValueError(
            "Access token cannot be empty. Set THREADSYNC_ACCESS_TOKEN environment variable."
        )

    if not config.agent_reply_prefix.strip():
        raise ValueError(
            "Agent reply prefix cannot be blank. Set THREADSYNC_AGENT_PREFIX or drop the override."
        )

    if config.insecure:
        logger.warning(
            "WARNING: SSL verification disabled (insecure=True). Use only for development."
        )


def _get_bool_env(key: str) -> bool | None:
    """Return True/False from env var, or None if unset."""
    val = os.getenv(key)
    if val is None:
        return None
    return val.lower() in ("true", "1", "yes", "on")


def _resolve_flag(cli_value: bool, env_key: str, fallback: object) -> bool:
    if cli_value:
        return True
    env_value = _get_bool_env(env_key)
    if env_value is not None:
        return env_value
    return bool(fallback)


def load_config(
    api_url: str | None = None,
    access_token: str | None = None,
    db_path: str | None = None,
    insecure: bool = False,
    debug: bool = False,
    yaml_fallbacks: dict | None = None,
) -> Config:
    """Load configuration with unified precedence.

    Resolution order for each field (highest to lowest):
        CLI arg > env var / .env > yaml_fallbacks > built-in default

    The caller is responsible for calling ``load_dotenv()`` before this
    function so that .env values are available via ``os.getenv()``.

    Args:
        api_url: Override API base URL.
        access_token: Override access token.
        db_path: Override SQLite database path.
        insecure: Skip SSL verification (CLI flag).
        debug: Enable debug logging (CLI flag).
        yaml_fallbacks: Flattened values from the YAML config file.
            Used as fallback when CLI arg and env var are both unset.

    Returns:
        Validated Config instance.

    Raises:
        ValueError: If the access token is missing after checking all
            sources, or a numeric setting is out of range.
    """
    fb = yaml_fallbacks or {}

    token = (
        access_token
        or os.getenv("THREADSYNC_ACCESS_TOKEN")
        or fb.get("access_token")
    )
    if not token:
        raise ValueError(
            "Access token not found. Set THREADSYNC_ACCESS_TOKEN environment variable, "
            "pass --access-token CLI argument, or add 'access_token' to config.yml."
        )

    final_url = (
        api_url
        or os.getenv("THREADSYNC_API_URL")
        or fb.get("api_url")
        or DEFAULT_API_URL
    )
    final_db_path = (
        db_path
        or os.getenv("THREADSYNC_DB_PATH")
        or fb.get("db_path")
        or DEFAULT_DB_PATH
    )
    final_prefix = (
        os.getenv("THREADSYNC_AGENT_PREFIX")
        or fb.get("reply_prefix")
        or DEFAULT_AGENT_PREFIX
    )
    final_identity = (
        os.getenv("THREADSYNC_AGENT_IDENTITY")
        or fb.get("identity")
        or DEFAULT_AGENT_IDENTITY
    )

    max_parallel_raw = os.getenv("THREADSYNC_MAX_PARALLEL_REQUESTS")
    if max_parallel_raw is not None:
        try:
            final_max_parallel = int(max_parallel_raw)
        except ValueError:
            raise ValueError(
                f"Invalid THREADSYNC_MAX_PARALLEL_REQUESTS '{max_parallel_raw}': must be a number between 1 and 100"
            ) from None
        if not (1 <= final_max_parallel <= 100):
            raise ValueError(
                f"Invalid THREADSYNC_MAX_PARALLEL_REQUESTS '{max_parallel_raw}': must be a number between 1 and 100"
            )
    elif "max_parallel_requests" in fb:
        final_max_parallel = int(fb["max_parallel_requests"])
    else:
        final_max_parallel = 5

    config = Config(
        access_token=token.strip(),
        api_url=final_url,
        token_header=fb.get("token_header") or DEFAULT_TOKEN_HEADER,
        db_path=final_db_path,
        agent_reply_prefix=final_prefix,
        agent_identity=final_identity,
        max_parallel_requests=final_max_parallel,
        request_timeout=float(fb.get("request_timeout", 30.0)),
        insecure=_resolve_flag(insecure, "THREADSYNC_INSECURE", fb.get("insecure", False)),
        debug=_resolve_flag(debug, "THREADSYNC_DEBUG", fb.get("debug", False)),
    )

    validate_config(config)

    return config

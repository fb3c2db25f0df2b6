"""Tests for threadsync_mcp.config - env-var config loading and validation.

NOT to be confused with test_config_loader.py (hierarchical YAML config)
or test_config_schema.py (Pydantic models). This tests the standalone
server bootstrap path: validate_config() and load_config().
"""

import logging

import pytest

from threadsync_mcp.config import Config, load_config, validate_config

_ENV_VARS = (
    "THREADSYNC_ACCESS_TOKEN",
    "THREADSYNC_API_URL",
    "THREADSYNC_DB_PATH",
    "THREADSYNC_AGENT_PREFIX",
    "THREADSYNC_AGENT_IDENTITY",
    "THREADSYNC_MAX_PARALLEL_REQUESTS",
    "THREADSYNC_INSECURE",
    "THREADSYNC_DEBUG",
)


@pytest.fixture
def clean_env(monkeypatch):
    for var in _ENV_VARS:
        monkeypatch.delenv(var, raising=False)
    return monkeypatch


# -------------------------------------------------------------------------
# validate_config()
# -------------------------------------------------------------------------


class TestValidateConfig:
    """Tests for validate_config() - URL format and credential checks."""

    def test_valid_config(self):
        validate_config(Config(access_token="tok"))  # should not raise

    def test_http_url_valid(self):
        validate_config(Config(access_token="tok", api_url="http://localhost:8080"))

    def test_invalid_url_no_scheme(self):
        config = Config(access_token="tok", api_url="api.example.com")
        with pytest.raises(ValueError, match="must start with http:// or https://"):
            validate_config(config)

    def test_empty_host(self):
        config = Config(access_token="tok", api_url="https://")
        with pytest.raises(ValueError, match="hostname"):
            validate_config(config)

    def test_trailing_slash_stripped(self):
        config = Config(access_token="tok", api_url="  https://api.example.com/ ")
        validate_config(config)
        assert config.api_url == "https://api.example.com"

    def test_whitespace_token(self):
        with pytest.raises(ValueError, match="Access token cannot be empty"):
            validate_config(Config(access_token="   "))

    def test_blank_prefix(self):
        with pytest.raises(ValueError, match="prefix"):
            validate_config(Config(access_token="tok", agent_reply_prefix=" "))

    def test_insecure_logs_warning(self, caplog):
        with caplog.at_level(logging.WARNING):
            validate_config(Config(access_token="tok", insecure=True))
        assert "SSL verification disabled" in caplog.text


# -------------------------------------------------------------------------
# load_config()
# -------------------------------------------------------------------------


class TestLoadConfig:
    def test_defaults(self, clean_env):
        clean_env.setenv("THREADSYNC_ACCESS_TOKEN", "tok")
        config = load_config()
        assert config.access_token == "tok"
        assert config.api_url == "https://api.figma.com"
        assert config.token_header == "X-Figma-Token"
        assert config.db_path == "./threadsync.db"
        assert config.agent_reply_prefix == "[TS]"
        assert config.agent_identity == "default"
        assert config.max_parallel_requests == 5
        assert not config.insecure

    def test_env_vars(self, clean_env):
        clean_env.setenv("THREADSYNC_ACCESS_TOKEN", " tok ")
        clean_env.setenv("THREADSYNC_API_URL", "https://comments.example.com")
        clean_env.setenv("THREADSYNC_DB_PATH", "/tmp/x.db")
        clean_env.setenv("THREADSYNC_AGENT_PREFIX", "[bot]")
        clean_env.setenv("THREADSYNC_AGENT_IDENTITY", "reviewer")
        clean_env.setenv("THREADSYNC_MAX_PARALLEL_REQUESTS", "9")
        config = load_config()
        assert config.access_token == "tok"
        assert config.api_url == "https://comments.example.com"
        assert config.db_path == "/tmp/x.db"
        assert config.agent_reply_prefix == "[bot]"
        assert config.agent_identity == "reviewer"
        assert config.max_parallel_requests == 9

    def test_cli_args_override_env(self, clean_env):
        clean_env.setenv("THREADSYNC_ACCESS_TOKEN", "env-tok")
        clean_env.setenv("THREADSYNC_DB_PATH", "/env.db")
        config = load_config(access_token="cli-tok", db_path="/cli.db")
        assert config.access_token == "cli-tok"
        assert config.db_path == "/cli.db"

    def test_env_overrides_yaml(self, clean_env):
        clean_env.setenv("THREADSYNC_API_URL", "https://env.example.com")
        config = load_config(
            yaml_fallbacks={
                "access_token": "yaml-tok",
                "api_url": "https://yaml.example.com",
                "reply_prefix": "[yaml]",
                "max_parallel_requests": 3,
                "request_timeout": 5,
            }
        )
        assert config.access_token == "yaml-tok"
        assert config.api_url == "https://env.example.com"
        assert config.agent_reply_prefix == "[yaml]"
        assert config.max_parallel_requests == 3
        assert config.request_timeout == 5.0

    def test_missing_token_raises(self, clean_env):
        with pytest.raises(ValueError, match="Access token not found"):
            load_config()

    @pytest.mark.parametrize("value", ["0", "101", "many"])
    def test_invalid_max_parallel(self, clean_env, value):
        clean_env.setenv("THREADSYNC_ACCESS_TOKEN", "tok")
        clean_env.setenv("THREADSYNC_MAX_PARALLEL_REQUESTS", value)
        with pytest.raises(ValueError, match="between 1 and 100"):
            load_config()

    @pytest.mark.parametrize("value", ["true", "1", "yes", "on", "TRUE"])
    def test_insecure_truthy_values(self, clean_env, value):
        clean_env.setenv("THREADSYNC_ACCESS_TOKEN", "tok")
        clean_env.setenv("THREADSYNC_INSECURE", value)
        assert load_config().insecure is True

    @pytest.mark.parametrize("value", ["false", "0", "no", "off"])
    def test_env_false_beats_yaml_true(self, clean_env, value):
        clean_env.setenv("THREADSYNC_ACCESS_TOKEN", "tok")
        clean_env.setenv("THREADSYNC_INSECURE", value)
        assert load_config(yaml_fallbacks={"insecure": True}).insecure is False

    def test_cli_flag_wins(self, clean_env):
        clean_env.setenv("THREADSYNC_ACCESS_TOKEN", "tok")
        clean_env.setenv("THREADSYNC_DEBUG", "false")
        assert load_config(debug=True).debug is True

    def test_invalid_url_rejected(self, clean_env):
        clean_env.setenv("THREADSYNC_ACCESS_TOKEN", "tok")
        with pytest.raises(ValueError, match="Invalid API URL"):
            load_config(api_url="ftp://example.com")

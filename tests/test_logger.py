"""Tests for logger.py - setup_logging() and JsonFormatter.

Strategy: Mock logging.basicConfig to verify setup_logging passes correct args,
since pytest's log capture plugin interferes with actual basicConfig calls.
"""

import json
import logging
import sys
from unittest.mock import patch

from threadsync_mcp.logger import DEFAULT_MCP_LOG_FILE, JsonFormatter, setup_logging


def _close(handlers):
    for h in handlers:
        if isinstance(h, logging.FileHandler):
            h.close()


# ---------------------------------------------------------------------------
# setup_logging tests
# ---------------------------------------------------------------------------


class TestSetupLogging:
    """Tests for setup_logging()."""

    @patch("threadsync_mcp.logger.logging.basicConfig")
    def test_cli_mode_logs_to_stderr(self, mock_basic):
        setup_logging(mode="cli")

        handlers = mock_basic.call_args[1]["handlers"]
        assert isinstance(handlers[0], logging.StreamHandler)
        assert handlers[0].stream is sys.stderr

    @patch("threadsync_mcp.logger.logging.basicConfig")
    def test_mcp_mode_logs_to_file_only(self, mock_basic, tmp_path):
        """stdout belongs to JSON-RPC; MCP mode installs a file handler only."""
        log_file = tmp_path / "mcp.log"
        setup_logging(mode="mcp", log_file=str(log_file))

        handlers = mock_basic.call_args[1]["handlers"]
        assert len(handlers) == 1
        assert isinstance(handlers[0], logging.FileHandler)
        assert handlers[0].baseFilename == str(log_file)
        _close(handlers)

    @patch("threadsync_mcp.logger.logging.basicConfig")
    def test_mcp_mode_env_log_file(self, mock_basic, tmp_path, monkeypatch):
        log_file = tmp_path / "env.log"
        monkeypatch.setenv("LOG_FILE", str(log_file))
        setup_logging(mode="mcp")

        handlers = mock_basic.call_args[1]["handlers"]
        assert handlers[0].baseFilename == str(log_file)
        _close(handlers)

    def test_default_log_file_constant(self):
        assert DEFAULT_MCP_LOG_FILE == "/tmp/threadsync-mcp-server.log"

    @patch("threadsync_mcp.logger.logging.basicConfig")
    def test_debug_beats_env(self, mock_basic, monkeypatch):
        monkeypatch.setenv("LOG_LEVEL", "ERROR")
        setup_logging(mode="cli", debug=True)
        assert mock_basic.call_args[1]["level"] == logging.DEBUG

    @patch("threadsync_mcp.logger.logging.basicConfig")
    def test_env_log_level_honored(self, mock_basic, monkeypatch):
        monkeypatch.setenv("LOG_LEVEL", "ERROR")
        setup_logging(mode="cli")
        assert mock_basic.call_args[1]["level"] == logging.ERROR

    @patch("threadsync_mcp.logger.logging.basicConfig")
    def test_mcp_default_level_is_warning(self, mock_basic, monkeypatch, tmp_path):
        monkeypatch.delenv("LOG_LEVEL", raising=False)
        setup_logging(mode="mcp", log_file=str(tmp_path / "x.log"))
        assert mock_basic.call_args[1]["level"] == logging.WARNING
        _close(mock_basic.call_args[1]["handlers"])

    @patch("threadsync_mcp.logger.logging.basicConfig")
    def test_cli_default_level_is_info(self, mock_basic, monkeypatch):
        monkeypatch.delenv("LOG_LEVEL", raising=False)
        setup_logging(mode="cli")
        assert mock_basic.call_args[1]["level"] == logging.INFO

    @patch("threadsync_mcp.logger.logging.basicConfig")
    def test_cli_mode_with_log_file(self, mock_basic, tmp_path):
        setup_logging(mode="cli", log_file=str(tmp_path / "cli.log"))

        handlers = mock_basic.call_args[1]["handlers"]
        assert any(isinstance(h, logging.FileHandler) for h in handlers)
        assert any(
            type(h) is logging.StreamHandler for h in handlers
        )
        _close(handlers)

    @patch("threadsync_mcp.logger.logging.basicConfig")
    def test_json_format_uses_json_formatter(self, mock_basic):
        setup_logging(mode="cli", debug_format="json")
        handlers = mock_basic.call_args[1]["handlers"]
        assert isinstance(handlers[0].formatter, JsonFormatter)

    @patch("threadsync_mcp.logger.logging.basicConfig")
    def test_log_format_env(self, mock_basic, monkeypatch):
        monkeypatch.setenv("LOG_FORMAT", "JSON")
        setup_logging(mode="cli")
        handlers = mock_basic.call_args[1]["handlers"]
        assert isinstance(handlers[0].formatter, JsonFormatter)

    @patch("threadsync_mcp.logger.logging.basicConfig")
    def test_third_party_silenced(self, _mock_basic):
        setup_logging(mode="cli")
        assert logging.getLogger("urllib3").level == logging.WARNING
        assert logging.getLogger("requests").level == logging.WARNING


# ---------------------------------------------------------------------------
# JsonFormatter tests
# ---------------------------------------------------------------------------


class TestJsonFormatter:
    def _record(self, **kw):
        defaults = dict(
            name="threadsync_mcp.sync.outbox",
            level=logging.WARNING,
            pathname="outbox.py",
            lineno=1,
            msg="Operation %s failed",
            args=("op-1",),
            exc_info=None,
        )
        defaults.update(kw)
        return logging.LogRecord(**defaults)

    def test_basic_output(self):
        data = json.loads(JsonFormatter(datefmt="%Y-%m-%d").format(self._record()))
        assert data["level"] == "WARNING"
        assert data["logger"] == "threadsync_mcp.sync.outbox"
        assert data["msg"] == "Operation op-1 failed"
        assert "ts" in data
        assert "exc" not in data

    def test_includes_exception(self):
        try:
            raise ValueError("boom")
        except ValueError:
            exc_info = sys.exc_info()
        data = json.loads(JsonFormatter().format(self._record(exc_info=exc_info)))
        assert "ValueError: boom" in data["exc"]

    def test_context_fields_lifted(self):
        record = self._record()
        record.file_key = "FILE1"
        record.op_id = "op-1"
        data = json.loads(JsonFormatter().format(record))
        assert data["file_key"] == "FILE1"
        assert data["op_id"] == "op-1"

    def test_context_fields_absent_by_default(self):
        data = json.loads(JsonFormatter().format(self._record()))
        assert "file_key" not in data
        assert "op_id" not in data

"""Logging setup for the MCP server and tests.

In MCP mode stdout carries JSON-RPC, so records go to a file only. Sync
and outbox code attach ``file_key`` / ``op_id`` through ``extra=``; the
JSON formatter lifts them into top-level fields so a log file can be
filtered per file or per operation.
"""

import json
import logging
import os
import sys

DEFAULT_MCP_LOG_FILE = "/tmp/threadsync-mcp-server.log"
_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"
_CONTEXT_FIELDS = ("file_key", "op_id")


class JsonFormatter(logging.Formatter):
    """One JSON object per record: ts, level, logger, msg.

    ``file_key`` and ``op_id`` are copied over when the record carries them;
    ``exc`` holds the formatted traceback when present.
    """

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "ts": self.formatTime(record, self.datefmt),
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
        }
        for name in _CONTEXT_FIELDS:
            value = getattr(record, name, None)
            if value is not None:
                entry[name] = value
        if record.exc_info:
            entry["exc"] = self.formatException(record.exc_info)
        return json.dumps(entry, default=str)


def _make_formatter(debug_format: str, with_name: bool) -> logging.Formatter:
    if debug_format == "json":
        return JsonFormatter(datefmt=_DATE_FORMAT)
    prefix = "[%(asctime)s] [%(levelname)s] "
    if with_name:
        prefix += "%(name)s "
    return logging.Formatter(prefix + "%(message)s", datefmt=_DATE_FORMAT)


def _resolve_level(mode: str, debug: bool) -> int:
    if debug:
        return logging.DEBUG
    default_level = "WARNING" if mode == "mcp" else "INFO"
    name = os.getenv("LOG_LEVEL", default_level).upper()
    return getattr(logging, name, logging.INFO)


def setup_logging(
    mode: str = "cli",
    debug: bool = False,
    log_file: str | None = None,
    debug_format: str | None = None,
) -> None:
    """
    Configure the root logger for *mode*.

    Args:
        mode: "mcp" logs to a file only; "cli" logs to stderr and, when
            *log_file* is given, to that file as well.
        debug: Force DEBUG regardless of LOG_LEVEL.
        log_file: Log file path (MCP mode falls back to LOG_FILE, then
            DEFAULT_MCP_LOG_FILE).
        debug_format: "text" or "json"; defaults to LOG_FORMAT, then "text".

    Environment variables:
        LOG_LEVEL: DEBUG, INFO, WARNING or ERROR.
                   Default: WARNING in MCP mode, INFO in CLI mode.
        LOG_FILE: Log file path for MCP mode.
        LOG_FORMAT: "text" or "json".
    """
    log_level = _resolve_level(mode, debug)
    fmt = (debug_format or os.getenv("LOG_FORMAT", "text")).lower()

    handlers: list[logging.Handler] = []
    if mode == "mcp":
        path = log_file or os.getenv("LOG_FILE", DEFAULT_MCP_LOG_FILE)
        file_handler = logging.FileHandler(path, mode="a")
        file_handler.setFormatter(_make_formatter(fmt, with_name=True))
        handlers.append(file_handler)
    else:
        stderr_handler = logging.StreamHandler(sys.stderr)
        stderr_handler.setFormatter(_make_formatter(fmt, with_name=False))
        handlers.append(stderr_handler)
        if log_file:
            file_handler = logging.FileHandler(log_file, mode="a")
            file_handler.setFormatter(_make_formatter(fmt, with_name=True))
            handlers.append(file_handler)

    logging.basicConfig(level=log_level, handlers=handlers)

    # requests/urllib3 log every connection at DEBUG
    if log_level != logging.DEBUG:
        logging.getLogger("urllib3").setLevel(logging.WARNING)
        logging.getLogger("requests").setLevel(logging.WARNING)

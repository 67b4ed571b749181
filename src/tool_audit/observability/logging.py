"""Structured logging for mcp-tool-audit.

Thin layer over the standard logging module that lets every call site
attach key-value fields to a record:

    logger = get_logger(__name__)
    logger.info("Session started", pid=4242)

    with LogContext(service="osmmcp", language="Go"):
        logger.info("Tools listed", tool_count=12)
        # -> ... - Tools listed | service=osmmcp language=Go tool_count=12

Fields from the active LogContext are merged under the explicit keyword
fields. Contexts live in a contextvar, so each worker thread auditing a
service carries its own fields.

Security Note:
    Tool descriptions and stderr text come from third-party processes.
    Pass them as keyword fields, never interpolated into the message, so
    embedded newlines cannot forge extra log lines in JSON output.
"""

from __future__ import annotations

import contextvars
import json
import logging
import sys
import threading
from collections.abc import Mapping
from datetime import UTC, datetime
from typing import Any, cast

#: Name of the package root logger that owns the handler.
ROOT_LOGGER = "tool_audit"

_log_context: contextvars.ContextVar[dict[str, Any]] = contextvars.ContextVar(
    "tool_audit_log_context", default={}
)


# =============================================================================
# Logger
# =============================================================================


class StructuredLogger(logging.Logger):
    """Logger whose level methods accept arbitrary keyword fields.

    The stock ``Logger.info(msg, *args, **kwargs)`` forwards its keyword
    arguments to ``_log``; overriding ``_log`` alone is enough to turn the
    unknown ones into structured fields.
    """

    def _log(  # type: ignore[override]
        self,
        level: int,
        msg: object,
        args: Any,
        exc_info: Any = None,
        extra: Mapping[str, object] | None = None,
        stack_info: bool = False,
        stacklevel: int = 1,
        **fields: Any,
    ) -> None:
        """Merge context and keyword fields into ``structured_data``.

        Args:
            level: Numeric log level.
            msg: Message, may hold % placeholders.
            args: Arguments for % formatting.
            exc_info: Exception info, as for the standard logger.
            extra: Extra LogRecord attributes. ``structured_data`` is
                always overwritten.
            stack_info: Attach the current stack.
            stacklevel: Frames to skip for caller detection; bumped by one
                to step over this override.
            **fields: Structured key-value pairs for this record.
        """
        merged = dict(extra) if extra else {}
        merged["structured_data"] = {**_log_context.get(), **fields}
        super()._log(
            level,
            msg,
            args,
            exc_info=exc_info,
            extra=merged,
            stack_info=stack_info,
            stacklevel=stacklevel + 1,
        )


# =============================================================================
# Formatters
# =============================================================================


def _format_value(value: Any) -> str:
    """Render one structured value for the key=value formatter.

    Example:
        >>> _format_value(None)
        'null'
        >>> _format_value("no data received")
        '"no data received"'
        >>> _format_value(["go", "run"])
        '["go", "run"]'
    """
    if value is None:
        return "null"
    if isinstance(value, str):
        if " " in value or not value:
            return json.dumps(value)
        return value
    if isinstance(value, dict | list | tuple):
        return json.dumps(value, default=str)
    return str(value)


class StructuredFormatter(logging.Formatter):
    """Human-readable formatter: ``<base> | key=value key=value``."""

    def __init__(
        self,
        fmt: str | None = None,
        datefmt: str | None = None,
        include_structured: bool = True,
    ) -> None:
        """Create the formatter.

        Args:
            fmt: Base format; defaults to time, logger, level and message.
            datefmt: Date format for ``%(asctime)s``.
            include_structured: Append structured fields after the message.
        """
        if fmt is None:
            fmt = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
        super().__init__(fmt, datefmt)
        self.include_structured = include_structured

    def format(self, record: logging.LogRecord) -> str:
        base = super().format(record)
        structured = getattr(record, "structured_data", None)
        if not self.include_structured or not structured:
            return base
        pairs = " ".join(f"{k}={_format_value(v)}" for k, v in structured.items())
        return f"{base} | {pairs}"


class JSONFormatter(logging.Formatter):
    """One JSON object per record (NDJSON) for log shippers.

    Keys: ``timestamp`` (UTC ISO 8601), ``level``, ``logger``,
    ``message``, every structured field, and ``exception`` when the record
    carries exception info. Unserializable values fall back to ``str()``.
    """

    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        payload.update(getattr(record, "structured_data", {}) or {})
        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)
        return json.dumps(payload, default=str)


# =============================================================================
# Context
# =============================================================================


class LogContext:
    """Context manager adding fields to every record logged inside it.

    Nested contexts merge, inner values win:

        with LogContext(service="aismcp"):
            with LogContext(step="tools/list"):
                logger.debug("Request sent")  # service and step attached
    """

    def __init__(self, **fields: Any) -> None:
        self._fields = fields
        self._token: contextvars.Token[dict[str, Any]] | None = None

    def __enter__(self) -> LogContext:
        self._token = _log_context.set({**_log_context.get(), **self._fields})
        return self

    def __exit__(self, *exc: object) -> None:
        if self._token is not None:
            _log_context.reset(self._token)
            self._token = None


# =============================================================================
# Configuration
# =============================================================================

_configured = False
_handler: logging.Handler | None = None
_config_lock = threading.Lock()


def configure_logging(
    level: int | str = logging.INFO,
    json_format: bool = False,
    stream: Any = None,
    include_structured: bool = True,
    force: bool = False,
) -> None:
    """Install the package log handler.

    Idempotent unless ``force`` is set, in which case the existing handler
    is removed first. Records stop at the ``tool_audit`` logger and are not
    propagated to the root logger.

    Args:
        level: Minimum level, as an int or a name such as ``"DEBUG"``.
        json_format: Emit NDJSON instead of key=value text.
        stream: Destination stream; defaults to ``sys.stderr`` so that
            stdout stays free for console output.
        include_structured: Append fields in text mode.
        force: Reconfigure even if already configured.

    Example:
        >>> configure_logging(level="DEBUG", json_format=True, force=True)
    """
    with _config_lock:
        if force:
            _reset_logging_impl()
        _configure_logging_impl(level, json_format, stream, include_structured)


def _configure_logging_impl(
    level: int | str = logging.INFO,
    json_format: bool = False,
    stream: Any = None,
    include_structured: bool = True,
) -> None:
    """Body of configure_logging; caller holds the lock."""
    global _configured, _handler

    if _configured:
        return

    logging.setLoggerClass(StructuredLogger)

    handler = logging.StreamHandler(stream if stream is not None else sys.stderr)
    formatter: logging.Formatter
    if json_format:
        formatter = JSONFormatter()
    else:
        formatter = StructuredFormatter(include_structured=include_structured)
    handler.setFormatter(formatter)

    root = logging.getLogger(ROOT_LOGGER)
    root.setLevel(level.upper() if isinstance(level, str) else level)
    root.addHandler(handler)
    root.propagate = False

    _handler = handler
    _configured = True


def _reset_logging_impl() -> None:
    """Body of reset_logging; caller holds the lock."""
    global _configured, _handler

    if _handler is not None:
        logging.getLogger(ROOT_LOGGER).removeHandler(_handler)
        _handler.close()
        _handler = None
    _configured = False


def reset_logging() -> None:
    """Drop the package handler so the next configure call starts fresh.

    Meant for tests.
    """
    with _config_lock:
        _reset_logging_impl()


def get_logger(name: str) -> StructuredLogger:
    """Return a StructuredLogger, configuring defaults on first use.

    Loggers created before ``configure_logging`` ran are plain
    ``logging.Logger`` instances, so every module obtains its logger
    through this function.

    Args:
        name: Usually ``__name__``.

    Returns:
        Logger accepting keyword fields.
    """
    if not _configured:
        with _config_lock:
            if not _configured:  # pragma: no branch
                _configure_logging_impl()

    return cast(StructuredLogger, logging.getLogger(name))

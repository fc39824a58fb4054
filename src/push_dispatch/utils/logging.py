"""Structured logging with syslog output and per-batch correlation IDs.

One correlation ID is set per batch dispatch; every per-device task spawned
for that batch inherits it through the ContextVar, so all log lines of one
batch can be grouped. Records pass through a redaction filter so endpoint
tokens and key material never reach a handler.
"""

import contextvars
import logging
import logging.handlers
import sys
from collections.abc import Mapping
from typing import Final, override

from push_dispatch.utils.sanitization import (
    sanitize_args,
    sanitize_value,
)

correlation_id_var: contextvars.ContextVar[str | None] = contextvars.ContextVar(
    "correlation_id",
    default=None,
)

DEFAULT_LOG_FORMAT: Final[str] = "%(asctime)s - %(name)s - %(levelname)s - [%(correlation_id)s] - %(message)s"

SYSLOG_LOG_FORMAT: Final[str] = (
    "push-dispatch[%(process)d]: %(levelname)s - [%(correlation_id)s] - %(name)s - %(message)s"
)

DEFAULT_SYSLOG_ADDRESS: Final[str] = "/dev/log"

# Attributes every LogRecord carries; anything else arrived through ``extra``
_STANDARD_RECORD_ATTRS: Final[frozenset[str]] = frozenset(
    {
        "name",
        "msg",
        "args",
        "created",
        "filename",
        "funcName",
        "levelname",
        "levelno",
        "lineno",
        "module",
        "msecs",
        "pathname",
        "process",
        "processName",
        "relativeCreated",
        "thread",
        "threadName",
        "taskName",
        "exc_info",
        "exc_text",
        "stack_info",
        "correlation_id",
    }
)


class CorrelationIDFilter(logging.Filter):
    """Copy the current correlation ID onto each record (``"N/A"`` when unset)."""

    @override
    def filter(self, record: logging.LogRecord) -> bool:
        correlation_id = correlation_id_var.get()
        record.correlation_id = correlation_id if correlation_id is not None else "N/A"
        return True


class SecretRedactingFilter(logging.Filter):
    """Redact push endpoint tokens and key material from log records.

    Sanitizes the message text, the ``%``-formatting args and every field
    passed through ``extra``. Fields whose name looks sensitive (``keys``,
    ``p256dh``, ``vapid_private_key``...) are replaced wholesale.

    Examples:
        >>> logger.info("Push to %s", "https://fcm.googleapis.com/fcm/send/abc")
        # Logged as: "Push to https://fcm.googleapis.com/fcm/send/<REDACTED>"
    """

    @override
    def filter(self, record: logging.LogRecord) -> bool:
        if isinstance(record.msg, str):
            sanitized_msg = sanitize_value(record.msg)
            if isinstance(sanitized_msg, str):
                record.msg = sanitized_msg

        if record.args and isinstance(record.args, tuple):
            record.args = sanitize_args(record.args)

        for attr_name in list(record.__dict__.keys()):
            if attr_name in _STANDARD_RECORD_ATTRS or attr_name.startswith("_"):
                continue
            attr_value: object = getattr(record, attr_name)  # pyright: ignore[reportAny]
            setattr(record, attr_name, sanitize_value(attr_value, field_name=attr_name))

        return True


def configure_logging(
    *,
    log_level: str = "INFO",
    enable_syslog: bool = True,
    syslog_address: str = DEFAULT_SYSLOG_ADDRESS,
    enable_console: bool = True,
) -> None:
    """Configure root logging with correlation IDs and secret redaction.

    Args:
        log_level: Logging level name (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        enable_syslog: Attach a syslog handler (skipped with a warning if the
            socket is unavailable)
        syslog_address: Syslog socket address
        enable_console: Attach a stderr handler; stdout is reserved for the
            CLI's JSON output
    """
    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, log_level.upper(), logging.INFO))
    root_logger.handlers.clear()

    correlation_filter = CorrelationIDFilter()
    secret_filter = SecretRedactingFilter()

    if enable_syslog:
        try:
            syslog_handler = logging.handlers.SysLogHandler(
                address=syslog_address,
                facility=logging.handlers.SysLogHandler.LOG_DAEMON,
            )
            syslog_handler.setFormatter(logging.Formatter(SYSLOG_LOG_FORMAT))
            syslog_handler.addFilter(correlation_filter)
            syslog_handler.addFilter(secret_filter)
            root_logger.addHandler(syslog_handler)
        except OSError as exc:
            print(
                f"Warning: Could not connect to syslog at {syslog_address}: {exc}",
                file=sys.stderr,
            )

    if enable_console:
        console_handler = logging.StreamHandler(sys.stderr)
        console_handler.setFormatter(logging.Formatter(DEFAULT_LOG_FORMAT))
        console_handler.addFilter(correlation_filter)
        console_handler.addFilter(secret_filter)
        root_logger.addHandler(console_handler)


def get_logger(name: str) -> logging.Logger:
    """Return the logger for ``name`` (typically ``__name__``)."""
    return logging.getLogger(name)


def set_correlation_id(correlation_id: str) -> contextvars.Token[str | None]:
    """Set the correlation ID for the current context.

    Returns:
        Token that can restore the previous value via :func:`reset_correlation_id`
    """
    return correlation_id_var.set(correlation_id)


def reset_correlation_id(token: contextvars.Token[str | None]) -> None:
    """Restore the correlation ID that was active before ``token`` was issued."""
    correlation_id_var.reset(token)


def get_correlation_id() -> str | None:
    return correlation_id_var.get()


def clear_correlation_id() -> None:
    _ = correlation_id_var.set(None)


def log_with_context(
    logger: logging.Logger,
    level: int,
    message: str,
    *,
    extra: Mapping[str, object] | None = None,
) -> None:
    """Log ``message`` with structured ``extra`` fields and the correlation ID.

    Example:
        >>> log_with_context(
        ...     logger,
        ...     logging.INFO,
        ...     "Notification sent",
        ...     extra={"device_id": "kitchen-tablet", "duration_ms": 84.2},
        ... )
    """
    context = dict(extra) if extra else {}

    correlation_id = get_correlation_id()
    if correlation_id:
        context["correlation_id"] = correlation_id

    logger.log(level, message, extra=context)

"""Event sinks recording what the dispatch engine did.

Every event goes to the standard logging output. When a log store is
attached the event is also persisted to the ``logs`` table; a failure to
persist is logged and never propagates to the dispatch that emitted it.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Final

from push_dispatch.exceptions import StorageError
from push_dispatch.storage.logs import SQLiteLogStore
from push_dispatch.types.aliases import EventLevel
from push_dispatch.utils.logging import get_logger, log_with_context
from push_dispatch.utils.sanitization import sanitize_exception, sanitize_mapping

__all__ = ["EVENT_SOURCE", "LoggingEventSink", "RecordingEventSink", "RecordedEvent"]

EVENT_SOURCE: Final[str] = "pusher"

_LEVELS: Final[Mapping[str, int]] = {
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "warn": logging.WARNING,
    "error": logging.ERROR,
    "critical": logging.CRITICAL,
}


class LoggingEventSink:
    """Write events to the log output and, optionally, to the audit log table."""

    def __init__(
        self,
        log_store: SQLiteLogStore | None = None,
        *,
        logger_obj: logging.Logger | None = None,
    ) -> None:
        self._log_store: SQLiteLogStore | None = log_store
        self._logger: logging.Logger = logger_obj or get_logger(__name__)

    async def emit(
        self,
        level: EventLevel,
        message: str,
        *,
        source: str,
        metadata: Mapping[str, object] | None = None,
    ) -> None:
        extra: dict[str, object] = {"event_source": source}
        if metadata:
            extra["event_metadata"] = dict(metadata)
        log_with_context(self._logger, _LEVELS.get(level, logging.INFO), message, extra=extra)

        if self._log_store is None:
            return

        try:
            _ = await self._log_store.add_log(
                level,
                message,
                source=source,
                metadata=sanitize_mapping(metadata) if metadata else None,
            )
        except StorageError as exc:
            log_with_context(
                self._logger,
                logging.WARNING,
                "Failed to persist dispatch event",
                extra={"event_source": source, "error": sanitize_exception(exc)},
            )


@dataclass(slots=True, frozen=True)
class RecordedEvent:
    level: EventLevel
    message: str
    source: str
    metadata: Mapping[str, object] | None


@dataclass(slots=True)
class RecordingEventSink:
    """In-memory sink that keeps every emitted event for inspection."""

    events: list[RecordedEvent] = field(default_factory=list)

    async def emit(
        self,
        level: EventLevel,
        message: str,
        *,
        source: str,
        metadata: Mapping[str, object] | None = None,
    ) -> None:
        self.events.append(RecordedEvent(level, message, source, dict(metadata) if metadata else None))

    def messages(self, level: EventLevel | None = None) -> list[str]:
        return [event.message for event in self.events if level is None or event.level == level]

"""Audit event persistence in the ``logs`` table."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from datetime import UTC, datetime

from sqlalchemy import select
from sqlalchemy.orm import Session

from push_dispatch.storage.database import Database
from push_dispatch.storage.models import LogRow
from push_dispatch.types.models import EventRecord

__all__ = ["LogFilter", "SQLiteLogStore"]


@dataclass(slots=True, frozen=True)
class LogFilter:
    """Query options for :meth:`SQLiteLogStore.get_logs`."""

    level: str | None = None
    source: str | None = None
    since: datetime | None = None
    search: str | None = None
    limit: int | None = 100
    offset: int = 0


def _to_record(row: LogRow) -> EventRecord:
    return EventRecord(
        id=row.id,
        level=row.level,
        message=row.message,
        source=row.source,
        metadata=dict(row.event_metadata) if row.event_metadata is not None else None,
        timestamp=row.timestamp,
    )


class SQLiteLogStore:
    """Append-only store of dispatch events."""

    def __init__(self, database: Database) -> None:
        self._database: Database = database

    async def add_log(
        self,
        level: str,
        message: str,
        *,
        source: str,
        metadata: Mapping[str, object] | None = None,
        timestamp: datetime | None = None,
    ) -> int:
        """Insert one event and return its row id.

        Raises:
            StorageError: If the insert fails
        """
        row = LogRow(
            level=level,
            message=message,
            source=source,
            event_metadata=dict(metadata) if metadata else None,
            timestamp=timestamp or datetime.now(UTC),
        )

        def _insert(session: Session) -> int:
            session.add(row)
            session.flush()
            return row.id

        return await self._database.run(_insert)

    async def get_logs(self, filters: LogFilter | None = None) -> list[EventRecord]:
        """Return events newest first, narrowed by ``filters``."""
        filters = filters or LogFilter()
        stmt = select(LogRow)

        if filters.level:
            stmt = stmt.where(LogRow.level == filters.level)
        if filters.source:
            stmt = stmt.where(LogRow.source == filters.source)
        if filters.since is not None:
            stmt = stmt.where(LogRow.timestamp >= filters.since)
        if filters.search:
            stmt = stmt.where(LogRow.message.contains(filters.search, autoescape=True))

        stmt = stmt.order_by(LogRow.timestamp.desc(), LogRow.id.desc())
        if filters.limit is not None:
            stmt = stmt.limit(filters.limit).offset(filters.offset)

        def _select(session: Session) -> list[EventRecord]:
            return [_to_record(row) for row in session.scalars(stmt).all()]

        return await self._database.run(_select)

"""SQLAlchemy table mappings for subscriptions and dispatch events."""

from __future__ import annotations

from datetime import UTC, datetime

from sqlalchemy import DateTime, Index, Integer, String, Text, TypeDecorator
from sqlalchemy.engine import Dialect
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column
from sqlalchemy.types import JSON

from push_dispatch.types.models import as_utc

__all__ = ["Base", "LogRow", "SubscriptionRow", "UTCDateTime"]


class UTCDateTime(TypeDecorator[datetime]):
    """Timezone-aware datetime stored as naive UTC.

    SQLite has no timezone support; values are normalized to UTC on the way
    in so that column comparisons order correctly, and tagged as UTC on the
    way out.
    """

    impl = DateTime
    cache_ok = True

    def process_bind_param(self, value: datetime | None, dialect: Dialect) -> datetime | None:
        if value is None:
            return None
        return as_utc(value).replace(tzinfo=None)

    def process_result_value(self, value: datetime | None, dialect: Dialect) -> datetime | None:
        if value is None:
            return None
        return value.replace(tzinfo=UTC)


class Base(DeclarativeBase):
    """Base class for push-dispatch tables."""


class SubscriptionRow(Base):
    """One stored push subscription, unique by endpoint."""

    __tablename__ = "subscriptions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    endpoint: Mapped[str] = mapped_column(Text, nullable=False, unique=True)
    keys: Mapped[dict[str, str]] = mapped_column(JSON, nullable=False)
    device_id: Mapped[str] = mapped_column(String(255), nullable=False)
    expiration_time: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    device_metadata: Mapped[dict[str, object] | None] = mapped_column(JSON, nullable=True)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)

    __table_args__ = (
        Index("ix_subscriptions_device_id", "device_id"),
        Index("ix_subscriptions_expiration_time", "expiration_time"),
    )

    def __repr__(self) -> str:
        return f"<SubscriptionRow id={self.id} device={self.device_id}>"


class LogRow(Base):
    """One persisted dispatch event."""

    __tablename__ = "logs"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    level: Mapped[str] = mapped_column(String(20), nullable=False)
    message: Mapped[str] = mapped_column(Text, nullable=False)
    source: Mapped[str] = mapped_column(String(100), nullable=False)
    event_metadata: Mapped[dict[str, object] | None] = mapped_column(JSON, nullable=True)
    timestamp: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)

    __table_args__ = (
        Index("ix_logs_level", "level"),
        Index("ix_logs_source", "source"),
        Index("ix_logs_timestamp", "timestamp"),
    )

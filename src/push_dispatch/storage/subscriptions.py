"""SQLite-backed subscription store.

Rows are keyed by the unique ``endpoint``; key material and metadata are
JSON columns and timestamps are stored as UTC. Every operation is one unit
of work through :meth:`Database.run`, so concurrent dispatches observe each
upsert or delete as a single atomic step.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping, Sequence
from datetime import UTC, datetime

from sqlalchemy import delete, select
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.orm import Session

from push_dispatch.exceptions import StorageError
from push_dispatch.storage.database import Database
from push_dispatch.storage.models import SubscriptionRow
from push_dispatch.types.models import Subscription, SubscriptionKeys, as_utc
from push_dispatch.utils.keys import validate_subscription_keys
from push_dispatch.utils.logging import get_logger, log_with_context

__all__ = ["SQLiteSubscriptionStore"]

logger = get_logger(__name__)


def _to_subscription(row: SubscriptionRow) -> Subscription:
    """Rebuild a Subscription from a mapped row.

    Raises:
        StorageError: If the stored key material is corrupt
    """
    try:
        return Subscription(
            endpoint=row.endpoint,
            keys=SubscriptionKeys(p256dh=row.keys["p256dh"], auth=row.keys["auth"]),
            device_id=row.device_id,
            expiration_time=row.expiration_time,
            metadata=dict(row.device_metadata or {}),
            created_at=row.created_at,
        )
    except (KeyError, TypeError) as exc:
        msg = f"Corrupt subscription row {row.id}: {exc}"
        raise StorageError(msg) from exc


class SQLiteSubscriptionStore:
    """Subscription store over a shared :class:`Database`."""

    def __init__(self, database: Database) -> None:
        self._database: Database = database

    async def upsert(self, subscription: Subscription) -> Subscription:
        """Insert, or replace keys, device, expiry and metadata of the same endpoint.

        ``created_at`` of an existing row is preserved.

        Raises:
            ValidationError: If key material is malformed (nothing is written)
            StorageError: If the write fails
        """
        validate_subscription_keys(subscription.keys)

        stmt = sqlite_insert(SubscriptionRow).values(
            endpoint=subscription.endpoint,
            keys=subscription.keys.to_dict(),
            device_id=subscription.device_id,
            expiration_time=subscription.expiration_time,
            device_metadata=dict(subscription.metadata),
            created_at=datetime.now(UTC),
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=[SubscriptionRow.endpoint],
            set_={
                "keys": stmt.excluded["keys"],
                "device_id": stmt.excluded["device_id"],
                "expiration_time": stmt.excluded["expiration_time"],
                "device_metadata": stmt.excluded["device_metadata"],
            },
        )

        def _upsert(session: Session) -> Subscription:
            row = session.scalars(
                stmt.returning(SubscriptionRow),
                execution_options={"populate_existing": True},
            ).one()
            return _to_subscription(row)

        stored = await self._database.run(_upsert)
        log_with_context(
            logger,
            logging.DEBUG,
            "Subscription stored",
            extra={"device_id": stored.device_id},
        )
        return stored

    async def find_by_device_id(self, device_id: str) -> Subscription | None:
        """Return the most recently created subscription of ``device_id``."""
        stmt = (
            select(SubscriptionRow)
            .where(SubscriptionRow.device_id == device_id)
            .order_by(SubscriptionRow.created_at.desc(), SubscriptionRow.id.desc())
            .limit(1)
        )

        def _find(session: Session) -> Subscription | None:
            row = session.scalars(stmt).first()
            return _to_subscription(row) if row is not None else None

        return await self._database.run(_find)

    async def delete_by_device_ids(self, device_ids: Sequence[str]) -> list[Subscription]:
        """Remove all subscriptions of each device and return the removed rows."""
        unique_ids = list(dict.fromkeys(device_ids))
        if not unique_ids:
            return []

        stmt = (
            delete(SubscriptionRow)
            .where(SubscriptionRow.device_id.in_(unique_ids))
            .returning(SubscriptionRow)
            .execution_options(synchronize_session=False)
        )

        def _delete(session: Session) -> list[Subscription]:
            return [_to_subscription(row) for row in session.scalars(stmt).all()]

        removed = await self._database.run(_delete)
        if removed:
            log_with_context(
                logger,
                logging.INFO,
                "Subscriptions removed by device",
                extra={"device_count": len(unique_ids), "removed_count": len(removed)},
            )
        return removed

    async def delete_by_endpoint(self, endpoint: str) -> bool:
        stmt = (
            delete(SubscriptionRow)
            .where(SubscriptionRow.endpoint == endpoint)
            .returning(SubscriptionRow.id)
            .execution_options(synchronize_session=False)
        )

        def _delete(session: Session) -> bool:
            return session.scalars(stmt).first() is not None

        return await self._database.run(_delete)

    async def purge_expired(self, now: datetime) -> int:
        """Remove every subscription whose expiration time is before ``now``.

        Returns:
            Number of rows removed
        """
        stmt = (
            delete(SubscriptionRow)
            .where(
                SubscriptionRow.expiration_time.is_not(None),
                SubscriptionRow.expiration_time < as_utc(now),
            )
            .returning(SubscriptionRow.id)
            .execution_options(synchronize_session=False)
        )

        def _purge(session: Session) -> int:
            return len(session.scalars(stmt).all())

        purged = await self._database.run(_purge)
        if purged:
            log_with_context(logger, logging.INFO, "Expired subscriptions purged", extra={"purged_count": purged})
        return purged

    async def list_subscriptions(
        self,
        metadata_filter: Mapping[str, object] | None = None,
    ) -> list[Subscription]:
        """Return all subscriptions, optionally only those whose metadata matches every filter pair."""
        stmt = select(SubscriptionRow).order_by(SubscriptionRow.created_at.desc(), SubscriptionRow.id.desc())

        def _list(session: Session) -> list[Subscription]:
            return [_to_subscription(row) for row in session.scalars(stmt).all()]

        subscriptions = await self._database.run(_list)
        if not metadata_filter:
            return subscriptions
        return [
            subscription
            for subscription in subscriptions
            if all(subscription.metadata.get(key) == value for key, value in metadata_filter.items())
        ]

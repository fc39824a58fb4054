"""Service facade over the subscription store and the batch coordinator.

These are the entry points a web layer or the CLI calls: each takes a raw
request body, validates it, performs the operation and returns a
``ServiceResponse`` envelope. Request problems raise ``ValidationError``;
per-device delivery failures never raise and are reported in the batch
results instead.
"""

from __future__ import annotations

from collections.abc import Mapping
from datetime import UTC, datetime

from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError

from push_dispatch.core.config import MainConfig
from push_dispatch.core.dispatcher import BatchCoordinator, DispatchEngine
from push_dispatch.core.events import EVENT_SOURCE, LoggingEventSink
from push_dispatch.exceptions import (
    PushDispatchError,
    StorageError,
    SubscriptionNotFoundError,
    TransportConfigurationError,
    ValidationError,
)
from push_dispatch.storage.database import Database
from push_dispatch.storage.logs import LogFilter, SQLiteLogStore
from push_dispatch.storage.subscriptions import SQLiteSubscriptionStore
from push_dispatch.transport.webpush import DryRunTransport, WebPushTransport
from push_dispatch.types.aliases import Clock
from push_dispatch.types.models import ServiceResponse
from push_dispatch.types.protocols import EventSink, PushTransport
from push_dispatch.types.requests import NotificationRequest, SubscriptionRequest, UnsubscribeRequest
from push_dispatch.utils.keys import normalize_subscription_keys
from push_dispatch.utils.logging import get_logger

__all__ = ["PushService", "create_push_service"]

logger = get_logger(__name__)


def _utcnow() -> datetime:
    return datetime.now(UTC)


def _parse_body[T: BaseModel](model: type[T], body: T | Mapping[str, object] | None) -> T:
    """Validate a raw request body against ``model``.

    Raises:
        ValidationError: If the body is missing or does not match the model
    """
    if body is None:
        msg = "Bad Request: No body provided"
        raise ValidationError(msg)
    if isinstance(body, model):
        return body
    try:
        return model.model_validate(body)
    except PydanticValidationError as exc:
        problems = "; ".join(
            f"{'.'.join(str(loc) for loc in error['loc']) or 'body'}: {error['msg']}" for error in exc.errors()
        )
        msg = f"Invalid request body: {problems}"
        raise ValidationError(msg, context={"error_count": exc.error_count()}) from exc


class PushService:
    """Subscribe, unsubscribe and notify operations."""

    def __init__(
        self,
        store: SQLiteSubscriptionStore,
        coordinator: BatchCoordinator,
        events: EventSink,
        *,
        transport: PushTransport | None = None,
        log_store: SQLiteLogStore | None = None,
        clock: Clock = _utcnow,
    ) -> None:
        self._store: SQLiteSubscriptionStore = store
        self._coordinator: BatchCoordinator = coordinator
        self._transport: PushTransport | None = transport
        self._events: EventSink = events
        self._log_store: SQLiteLogStore | None = log_store
        self._clock: Clock = clock

    async def subscribe(self, body: SubscriptionRequest | Mapping[str, object] | None) -> ServiceResponse:
        """Store a browser subscription for a device (replacing one with the same endpoint).

        Raises:
            ValidationError: If the body or the key material is malformed
            StorageError: If the subscription cannot be stored
        """
        request = _parse_body(SubscriptionRequest, body)
        subscription = request.to_subscription()

        try:
            subscription.keys = normalize_subscription_keys(subscription.keys)
        except ValidationError as exc:
            await self._report_failure("Subscription failed", exc)
            msg = f"Invalid subscription keys: {exc.message}"
            raise ValidationError(msg) from exc

        try:
            stored = await self._store.upsert(subscription)
        except StorageError as exc:
            await self._report_failure("Subscription failed", exc)
            raise

        await self._events.emit(
            "info",
            "Subscription successful",
            source=EVENT_SOURCE,
            metadata={"endpoint": stored.endpoint, "device_id": stored.device_id},
        )
        return ServiceResponse(
            status_code=201,
            message="Subscribed successfully",
            data={"endpoint": stored.endpoint, "device_id": stored.device_id},
        )

    async def unsubscribe(self, body: UnsubscribeRequest | Mapping[str, object] | None) -> ServiceResponse:
        """Remove every subscription of the given devices.

        Raises:
            SubscriptionNotFoundError: If none of the devices had a subscription
        """
        request = _parse_body(UnsubscribeRequest, body)
        removed = await self._store.delete_by_device_ids(request.device_ids)

        if not removed:
            await self._events.emit(
                "warn",
                "Unsubscribe failed: no subscriptions found for provided device IDs",
                source=EVENT_SOURCE,
                metadata={"device_ids": request.device_ids},
            )
            msg = "No subscriptions found for provided device IDs"
            raise SubscriptionNotFoundError(msg, context={"device_ids": request.device_ids})

        await self._events.emit(
            "info",
            f"Batch unsubscribe successful: removed {len(removed)} subscriptions",
            source=EVENT_SOURCE,
            metadata={"device_ids": request.device_ids, "removed_count": len(removed)},
        )
        return ServiceResponse(
            status_code=200,
            message=f"Successfully unsubscribed {len(removed)} devices",
            data={
                "device_ids": request.device_ids,
                "removed_count": len(removed),
                "removed_subscriptions": [
                    {"endpoint": item.endpoint, "device_id": item.device_id} for item in removed
                ],
            },
        )

    async def notify(self, body: NotificationRequest | Mapping[str, object] | None) -> ServiceResponse:
        """Send one payload to many devices.

        The response status is 200, 207 or 500 depending on how many devices
        were reached; ``data`` holds per-device results and the summary.

        Raises:
            ValidationError: If the body cannot be parsed
        """
        try:
            request = _parse_body(NotificationRequest, body)
        except ValidationError as exc:
            await self._report_failure("Batch notification failed", exc)
            raise

        response = await self._coordinator.send_batch(request.device_ids, request.payload.to_payload())
        return ServiceResponse(
            status_code=response.status_code,
            message=response.message,
            data=response.to_dict(),
        )

    async def purge_expired(self) -> ServiceResponse:
        purged = await self._store.purge_expired(self._clock())
        await self._events.emit(
            "info",
            f"Purged {purged} expired subscriptions",
            source=EVENT_SOURCE,
            metadata={"purged_count": purged},
        )
        return ServiceResponse(
            status_code=200,
            message=f"Purged {purged} expired subscriptions",
            data={"purged_count": purged},
        )

    async def list_subscriptions(self, metadata_filter: Mapping[str, object] | None = None) -> ServiceResponse:
        subscriptions = await self._store.list_subscriptions(metadata_filter)
        return ServiceResponse(
            status_code=200,
            message="Subscriptions retrieved",
            data={
                "count": len(subscriptions),
                "subscriptions": [subscription.to_dict() for subscription in subscriptions],
            },
        )

    async def get_logs(self, filters: LogFilter | None = None) -> ServiceResponse:
        """Return persisted dispatch events.

        Raises:
            StorageError: If event persistence is disabled
        """
        if self._log_store is None:
            msg = "Event persistence is disabled (database.persist_events is false)"
            raise StorageError(msg)
        records = await self._log_store.get_logs(filters)
        return ServiceResponse(
            status_code=200,
            message="Logs retrieved",
            data={"count": len(records), "logs": [record.to_dict() for record in records]},
        )

    def close(self) -> None:
        """Release the push transport; the database stays with its owner."""
        if self._transport is not None:
            self._transport.close()

    async def _report_failure(self, prefix: str, exc: PushDispatchError) -> None:
        await self._events.emit(
            "error",
            f"{prefix}: {exc.message}",
            source=EVENT_SOURCE,
            metadata={"error_type": type(exc).__name__, "error_details": exc.message},
        )


def create_push_service(
    config: MainConfig,
    database: Database,
    *,
    transport: PushTransport | None = None,
    clock: Clock = _utcnow,
) -> PushService:
    """Wire stores, transport, engine and coordinator from configuration.

    ``database`` must already be open; the caller owns its lifecycle.

    Raises:
        TransportConfigurationError: If VAPID details are incomplete
    """
    if transport is None:
        if config.application.dry_run:
            transport = DryRunTransport()
        elif config.vapid is None:
            msg = "VAPID keys and contact email must be configured unless dry-run mode is enabled"
            raise TransportConfigurationError(msg)
        else:
            transport = WebPushTransport(
                private_key=config.vapid.private_key,
                public_key=config.vapid.public_key,
                email=config.vapid.email,
                ttl_seconds=config.dispatch.ttl_seconds,
                timeout_seconds=config.dispatch.request_timeout_seconds,
                max_workers=config.dispatch.max_concurrency,
            )

    log_store = SQLiteLogStore(database) if config.database.persist_events else None
    events = LoggingEventSink(log_store)
    store = SQLiteSubscriptionStore(database)
    engine = DispatchEngine(store, transport, events, clock=clock)
    coordinator = BatchCoordinator(engine, events, max_concurrency=config.dispatch.max_concurrency)

    logger.debug(
        "Push service created",
        extra={"dry_run": config.application.dry_run, "persist_events": config.database.persist_events},
    )
    return PushService(store, coordinator, events, transport=transport, log_store=log_store, clock=clock)

"""Per-device dispatch and concurrent batch fan-out.

This module implements the DispatchEngine, which resolves one device to its
subscription, delivers through the push transport and reconciles
subscription state on expiry or permanent invalidation, and the
BatchCoordinator, which runs one dispatch per device concurrently and
aggregates the outcomes.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable, Sequence
from datetime import UTC, datetime
from uuid import uuid4

from push_dispatch.core.events import EVENT_SOURCE
from push_dispatch.core.results import ResultAggregator
from push_dispatch.exceptions import StorageError, ValidationError
from push_dispatch.types.aliases import Clock, EventLevel, NotificationPayload
from push_dispatch.types.models import BatchResponse, NotificationOutcome, PushError, Subscription
from push_dispatch.types.protocols import EventSink, PushTransport, SubscriptionStore
from push_dispatch.utils.keys import validate_subscription_keys
from push_dispatch.utils.logging import (
    get_logger,
    log_with_context,
    reset_correlation_id,
    set_correlation_id,
)
from push_dispatch.utils.sanitization import sanitize_exception, sanitize_url

__all__ = [
    "ERROR_EXPIRED",
    "ERROR_INVALID",
    "ERROR_NOT_FOUND",
    "BatchCoordinator",
    "DispatchEngine",
]

type CorrelationIDFactory = Callable[[], str]

ERROR_NOT_FOUND = "Subscription not found"
ERROR_EXPIRED = "Subscription expired (removed)"
ERROR_INVALID = "Subscription expired or invalid (removed)"


def _utcnow() -> datetime:
    return datetime.now(UTC)


def _web_push_failed(detail: str) -> str:
    return f"Web push failed: {detail}"


async def _emit_safely(
    events: EventSink,
    logger: logging.Logger,
    level: EventLevel,
    message: str,
    metadata: dict[str, object],
) -> None:
    """Emit an event; a failing sink is logged and never fails the dispatch."""
    try:
        await events.emit(level, message, source=EVENT_SOURCE, metadata=metadata)
    except Exception as exc:
        log_with_context(
            logger,
            logging.WARNING,
            "Event sink failed",
            extra={"event_message": message, "error": sanitize_exception(exc)},
        )


class DispatchEngine:
    """Deliver one notification to one device and reconcile its subscription.

    ``send_to_device`` never raises for per-device problems: a missing,
    expired or rejected subscription becomes a failed outcome. Cleanup
    deletes are best-effort; a storage error during cleanup is logged and
    does not change the outcome.
    """

    def __init__(
        self,
        store: SubscriptionStore,
        transport: PushTransport,
        events: EventSink,
        *,
        clock: Clock = _utcnow,
        logger_obj: logging.Logger | None = None,
    ) -> None:
        self._store: SubscriptionStore = store
        self._transport: PushTransport = transport
        self._events: EventSink = events
        self._clock: Clock = clock
        self._logger: logging.Logger = logger_obj or get_logger(__name__)

    async def send_to_device(self, device_id: str, payload: NotificationPayload) -> NotificationOutcome:
        """Resolve ``device_id`` and deliver ``payload`` to its subscription."""
        try:
            subscription = await self._store.find_by_device_id(device_id)
        except StorageError as exc:
            return await self._transient_failure(device_id, type(exc).__name__, exc.message)

        if subscription is None:
            await self._emit(
                "warn",
                f"Subscription not found for device {device_id}",
                {"device_id": device_id},
            )
            return NotificationOutcome.failed(device_id, ERROR_NOT_FOUND)

        if subscription.is_expired(self._clock()):
            await self._cleanup(self._store.delete_by_device_ids([device_id]), device_id, "expired")
            await self._emit(
                "info",
                f"Removed expired subscription for device {device_id}",
                {"device_id": device_id},
            )
            return NotificationOutcome.failed(device_id, ERROR_EXPIRED)

        try:
            validate_subscription_keys(subscription.keys)
        except ValidationError as exc:
            return await self._transient_failure(device_id, type(exc).__name__, exc.message)

        error = await self._deliver(subscription, payload)
        if error is None:
            return NotificationOutcome.succeeded(device_id)

        if error.is_permanent:
            await self._cleanup(self._store.delete_by_endpoint(subscription.endpoint), device_id, "invalid")
            await self._emit(
                "info",
                f"Removed invalid subscription for device {device_id}",
                {
                    "device_id": device_id,
                    "error_type": error.kind.value,
                    "error_details": error.detail,
                },
            )
            return NotificationOutcome.failed(device_id, ERROR_INVALID)

        return await self._transient_failure(device_id, error.kind.value, error.detail)

    async def _deliver(self, subscription: Subscription, payload: NotificationPayload) -> PushError | None:
        start = time.perf_counter()
        try:
            error = await self._transport.send(subscription, payload)
        except Exception as exc:
            # A transport that raises instead of returning a PushError is a transient failure
            error = PushError.transient(sanitize_url(str(exc)) or type(exc).__name__)
            log_with_context(
                self._logger,
                logging.WARNING,
                "Push transport raised unexpectedly",
                extra={"device_id": subscription.device_id, "error": sanitize_exception(exc)},
            )

        log_with_context(
            self._logger,
            logging.DEBUG,
            "Push delivery attempt finished",
            extra={
                "device_id": subscription.device_id,
                "success": error is None,
                "delivery_time_ms": (time.perf_counter() - start) * 1000.0,
            },
        )
        return error

    async def _transient_failure(self, device_id: str, error_type: str, detail: str) -> NotificationOutcome:
        await self._emit(
            "error",
            f"Web push failed for device {device_id}: {detail}",
            {
                "error_type": error_type,
                "device_id": device_id,
                "error_details": detail,
            },
        )
        return NotificationOutcome.failed(device_id, _web_push_failed(detail))

    async def _cleanup(self, operation: Awaitable[object], device_id: str, reason: str) -> None:
        """Await a store delete, logging instead of raising on storage failure."""
        try:
            _ = await operation
        except StorageError as exc:
            log_with_context(
                self._logger,
                logging.WARNING,
                "Failed to remove subscription during dispatch cleanup",
                extra={
                    "device_id": device_id,
                    "reason": reason,
                    "error": sanitize_exception(exc),
                },
            )

    async def _emit(self, level: EventLevel, message: str, metadata: dict[str, object]) -> None:
        await _emit_safely(self._events, self._logger, level, message, metadata)


class BatchCoordinator:
    """Fan a notification out to many devices concurrently.

    Every device gets its own task; the coordinator joins on all of them and
    never stops early. Tasks are shielded from cancellation of the caller, so
    a dispatch that already started still completes its store mutations.
    """

    def __init__(
        self,
        engine: DispatchEngine,
        events: EventSink,
        *,
        max_concurrency: int | None = None,
        correlation_id_factory: CorrelationIDFactory | None = None,
        logger_obj: logging.Logger | None = None,
    ) -> None:
        if max_concurrency is not None and max_concurrency <= 0:
            msg = "max_concurrency must be greater than zero"
            raise ValueError(msg)

        self._engine: DispatchEngine = engine
        self._events: EventSink = events
        self._max_concurrency: int | None = max_concurrency
        self._correlation_id_factory: CorrelationIDFactory = correlation_id_factory or (lambda: uuid4().hex)
        self._logger: logging.Logger = logger_obj or get_logger(__name__)
        self._in_flight: set[asyncio.Task[NotificationOutcome]] = set()

    @property
    def in_flight(self) -> int:
        """Number of per-device dispatches still running."""
        return len(self._in_flight)

    async def send_batch(self, device_ids: Sequence[str], payload: NotificationPayload) -> BatchResponse:
        """Dispatch ``payload`` to every device and aggregate the outcomes.

        Outcomes are returned in the order of ``device_ids``. An empty batch
        yields a zero summary with status 500.
        """
        token = set_correlation_id(self._correlation_id_factory())
        try:
            await _emit_safely(
                self._events,
                self._logger,
                "info",
                f"Processing batch notification for {len(device_ids)} devices",
                {"device_count": len(device_ids)},
            )

            aggregator = ResultAggregator(await self._dispatch_all(device_ids, payload))
            summary = aggregator.summary()

            await _emit_safely(
                self._events,
                self._logger,
                "info",
                f"Batch notification completed: {summary.successful} successful, {summary.failed} failed",
                {
                    "total_devices": summary.total,
                    "successful_count": summary.successful,
                    "failed_count": summary.failed,
                },
            )
            return aggregator.build_response()
        finally:
            reset_correlation_id(token)

    async def _dispatch_all(
        self,
        device_ids: Sequence[str],
        payload: NotificationPayload,
    ) -> list[NotificationOutcome]:
        if not device_ids:
            return []

        semaphore = asyncio.Semaphore(self._max_concurrency) if self._max_concurrency is not None else None

        async def _send(device_id: str) -> NotificationOutcome:
            try:
                return await self._engine.send_to_device(device_id, payload)
            except Exception as exc:
                # one device failing unexpectedly must not abort the join
                log_with_context(
                    self._logger,
                    logging.ERROR,
                    "Dispatch raised unexpectedly",
                    extra={"device_id": device_id, "error": sanitize_exception(exc)},
                )
                return NotificationOutcome.failed(device_id, _web_push_failed(type(exc).__name__))

        async def _dispatch_single(device_id: str) -> NotificationOutcome:
            if semaphore is None:
                return await _send(device_id)
            async with semaphore:
                return await _send(device_id)

        tasks: list[asyncio.Task[NotificationOutcome]] = []
        for device_id in device_ids:
            task = asyncio.create_task(_dispatch_single(device_id), name=f"dispatch:{device_id}")
            self._in_flight.add(task)
            task.add_done_callback(self._in_flight.discard)
            tasks.append(task)

        log_with_context(
            self._logger,
            logging.DEBUG,
            "Dispatch tasks started",
            extra={"task_count": len(tasks), "max_concurrency": self._max_concurrency},
        )

        outcomes = await asyncio.shield(asyncio.gather(*tasks))
        return list(outcomes)

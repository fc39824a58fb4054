"""Protocol definitions for the collaborators of the dispatch engine.

The engine only depends on these structural interfaces, so stores, transports
and event sinks can be swapped (SQLite vs. in-memory, pywebpush vs. dry-run)
without inheritance.
"""

from collections.abc import Mapping, Sequence
from datetime import datetime
from typing import Protocol, runtime_checkable

from push_dispatch.types.aliases import EventLevel, NotificationPayload
from push_dispatch.types.models import PushError, Subscription


@runtime_checkable
class SubscriptionStore(Protocol):
    """Persistent mapping from device identifier to push subscription.

    Implementations must keep ``endpoint`` unique under concurrent access:
    insert-or-replace is atomic per endpoint and deletes are idempotent.
    """

    async def upsert(self, subscription: Subscription) -> Subscription:
        """Insert or replace by endpoint.

        Raises:
            ValidationError: If key material has the wrong decoded length
            StorageError: If the write fails
        """
        ...

    async def find_by_device_id(self, device_id: str) -> Subscription | None:
        """Return the active subscription of a device, or None."""
        ...

    async def delete_by_device_ids(self, device_ids: Sequence[str]) -> list[Subscription]:
        """Remove every subscription of the given devices and return them."""
        ...

    async def delete_by_endpoint(self, endpoint: str) -> bool:
        """Remove the subscription with ``endpoint``; True if a row was removed."""
        ...

    async def purge_expired(self, now: datetime) -> int:
        """Remove subscriptions whose expiration time is before ``now``."""
        ...


@runtime_checkable
class PushTransport(Protocol):
    """Network delivery of one payload to one subscription."""

    async def send(self, subscription: Subscription, payload: NotificationPayload) -> PushError | None:
        """Deliver ``payload``.

        Returns:
            None on success, otherwise the classified failure
        """
        ...

    def close(self) -> None:
        """Release delivery resources once no more sends will be issued."""
        ...


@runtime_checkable
class EventSink(Protocol):
    """Structured audit trail consumed outside the core.

    ``emit`` is fire-and-forget: a failure to record an event must never
    fail the operation that emitted it.
    """

    async def emit(
        self,
        level: EventLevel,
        message: str,
        *,
        source: str,
        metadata: Mapping[str, object] | None = None,
    ) -> None:
        ...

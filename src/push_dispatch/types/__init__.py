"""Type definitions and protocols for push-dispatch.

This package provides:
- Data models (dataclasses)
- Request body models (pydantic)
- Protocol definitions (structural subtyping interfaces)
- Type aliases (PEP 695 syntax)
"""

from push_dispatch.types.aliases import Clock, EventLevel, NotificationPayload
from push_dispatch.types.models import (
    BatchResponse,
    BatchSummary,
    EventRecord,
    NotificationOutcome,
    PushError,
    PushErrorKind,
    ServiceResponse,
    Subscription,
    SubscriptionKeys,
)
from push_dispatch.types.protocols import EventSink, PushTransport, SubscriptionStore

__all__ = [
    # Type aliases
    "Clock",
    "EventLevel",
    "NotificationPayload",
    # Data models
    "BatchResponse",
    "BatchSummary",
    "EventRecord",
    "NotificationOutcome",
    "PushError",
    "PushErrorKind",
    "ServiceResponse",
    "Subscription",
    "SubscriptionKeys",
    # Protocols
    "EventSink",
    "PushTransport",
    "SubscriptionStore",
]

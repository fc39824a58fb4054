"""Data models for push-dispatch.

This module defines the dataclasses passed between the store, the transport,
the dispatch engine and the result aggregator.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum


def as_utc(value: datetime) -> datetime:
    """Return ``value`` as an aware UTC datetime (naive values are taken as UTC)."""
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


@dataclass(slots=True, frozen=True)
class SubscriptionKeys:
    """Key material of one push subscription, base64url text as received."""

    p256dh: str
    auth: str

    def to_dict(self) -> dict[str, str]:
        return {"p256dh": self.p256dh, "auth": self.auth}


@dataclass(slots=True)
class Subscription:
    """One device's push registration.

    ``endpoint`` is the unique identity used by the transport; ``device_id``
    is the application-chosen owner and may map to several endpoints over
    re-subscriptions.
    """

    endpoint: str
    keys: SubscriptionKeys
    device_id: str
    expiration_time: datetime | None = None
    metadata: dict[str, object] = field(default_factory=dict)
    created_at: datetime | None = None

    def __post_init__(self) -> None:
        if self.expiration_time is not None:
            self.expiration_time = as_utc(self.expiration_time)
        if self.created_at is not None:
            self.created_at = as_utc(self.created_at)

    def is_expired(self, now: datetime) -> bool:
        """Return True if the subscription has an expiry strictly before ``now``."""
        if self.expiration_time is None:
            return False
        return self.expiration_time < as_utc(now)

    def subscription_info(self) -> dict[str, object]:
        """Return the ``{endpoint, keys}`` mapping understood by the transport."""
        return {"endpoint": self.endpoint, "keys": self.keys.to_dict()}

    def to_dict(self) -> dict[str, object]:
        return {
            "endpoint": self.endpoint,
            "keys": self.keys.to_dict(),
            "device_id": self.device_id,
            "expiration_time": self.expiration_time.isoformat() if self.expiration_time else None,
            "metadata": dict(self.metadata),
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }


class PushErrorKind(Enum):
    """Classification of a failed delivery attempt."""

    GONE = "gone"
    NOT_FOUND = "not_found"
    TRANSIENT = "transient"


@dataclass(slots=True, frozen=True)
class PushError:
    """Failure reported by a push transport.

    GONE and NOT_FOUND signal permanent invalidation of the subscription;
    anything else is TRANSIENT and must leave the subscription in place.
    """

    kind: PushErrorKind
    detail: str
    status_code: int | None = None

    @property
    def is_permanent(self) -> bool:
        return self.kind in (PushErrorKind.GONE, PushErrorKind.NOT_FOUND)

    @classmethod
    def gone(cls, detail: str = "Gone") -> PushError:
        return cls(kind=PushErrorKind.GONE, detail=detail, status_code=410)

    @classmethod
    def not_found(cls, detail: str = "Not Found") -> PushError:
        return cls(kind=PushErrorKind.NOT_FOUND, detail=detail, status_code=404)

    @classmethod
    def transient(cls, detail: str, *, status_code: int | None = None) -> PushError:
        return cls(kind=PushErrorKind.TRANSIENT, detail=detail, status_code=status_code)

    @classmethod
    def from_status(cls, status_code: int | None, detail: str) -> PushError:
        """Classify a transport status code (410 gone, 404 not found, else transient)."""
        if status_code == 410:
            return cls.gone(detail)
        if status_code == 404:
            return cls.not_found(detail)
        return cls.transient(detail, status_code=status_code)


@dataclass(slots=True, frozen=True)
class NotificationOutcome:
    """Result of dispatching one notification to one device.

    ``error`` is present if and only if ``success`` is False.
    """

    device_id: str
    success: bool
    error: str | None = None

    def __post_init__(self) -> None:
        if self.success and self.error is not None:
            msg = "successful outcome must not carry an error"
            raise ValueError(msg)
        if not self.success and not self.error:
            msg = "failed outcome must carry an error message"
            raise ValueError(msg)

    @classmethod
    def succeeded(cls, device_id: str) -> NotificationOutcome:
        return cls(device_id=device_id, success=True)

    @classmethod
    def failed(cls, device_id: str, error: str) -> NotificationOutcome:
        return cls(device_id=device_id, success=False, error=error)

    def to_dict(self) -> dict[str, object]:
        """Serialize; the ``error`` key is omitted entirely on success."""
        data: dict[str, object] = {"device_id": self.device_id, "success": self.success}
        if not self.success:
            data["error"] = self.error
        return data


@dataclass(slots=True, frozen=True)
class BatchSummary:
    """Counts of one batch plus the derived status pair."""

    total: int
    successful: int
    failed: int

    @property
    def status(self) -> tuple[int, str]:
        """Derive ``(status_code, message)`` in strict priority order.

        No successes (including an empty batch) is a 500, no failures is a
        200, anything else is a 207 multi-status.
        """
        if self.successful == 0:
            return 500, "All notifications failed"
        if self.failed == 0:
            return 200, "All notifications sent successfully"
        return 207, f"{self.successful} notifications sent, {self.failed} failed"

    def to_dict(self) -> dict[str, int]:
        return {"total": self.total, "successful": self.successful, "failed": self.failed}


@dataclass(slots=True, frozen=True)
class BatchResponse:
    """Aggregated response of one batch dispatch."""

    results: tuple[NotificationOutcome, ...]
    summary: BatchSummary

    @property
    def status_code(self) -> int:
        return self.summary.status[0]

    @property
    def message(self) -> str:
        return self.summary.status[1]

    def to_dict(self) -> dict[str, object]:
        return {
            "results": [outcome.to_dict() for outcome in self.results],
            "summary": self.summary.to_dict(),
        }


@dataclass(slots=True, frozen=True)
class ServiceResponse:
    """Success envelope returned by the service facade."""

    status_code: int
    message: str
    data: Mapping[str, object] | None = None

    def to_dict(self) -> dict[str, object]:
        return {
            "status_code": self.status_code,
            "message": self.message,
            "data": dict(self.data) if self.data is not None else None,
        }


@dataclass(slots=True, frozen=True)
class EventRecord:
    """Persisted audit event."""

    id: int
    level: str
    message: str
    source: str
    metadata: Mapping[str, object] | None
    timestamp: datetime

    def to_dict(self) -> dict[str, object]:
        return {
            "id": self.id,
            "level": self.level,
            "message": self.message,
            "source": self.source,
            "metadata": dict(self.metadata) if self.metadata is not None else None,
            "timestamp": self.timestamp.isoformat(),
        }

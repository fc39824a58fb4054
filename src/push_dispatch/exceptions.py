"""Error taxonomy for the push dispatch subsystem.

Every error carries an HTTP-style ``status_code`` so a caller that fronts the
service with a web framework (or the CLI) can translate failures into a
response envelope without inspecting message text.

Per-device delivery failures are never raised: they become failed
``NotificationOutcome`` values. Only the errors below cross a public boundary.
"""

from __future__ import annotations

from collections.abc import Mapping

__all__ = [
    "PushDispatchError",
    "StorageError",
    "SubscriptionNotFoundError",
    "TransportConfigurationError",
    "ValidationError",
]


class PushDispatchError(Exception):
    """Base exception for all push dispatch errors."""

    status_code: int = 500

    def __init__(self, message: str, *, context: Mapping[str, object] | None = None) -> None:
        super().__init__(message)
        self.message: str = message
        self.context: dict[str, object] = dict(context or {})

    def to_dict(self) -> dict[str, object]:
        """Render the error as the ``{status_code, message, error}`` envelope."""
        return {
            "status_code": self.status_code,
            "message": type(self).__name__,
            "error": self.message,
        }


class ValidationError(PushDispatchError):
    """Malformed input rejected before any state is touched.

    Raised for key material that does not decode to the expected lengths and
    for request bodies that cannot be parsed.
    """

    status_code = 400


class StorageError(PushDispatchError):
    """Persistence-layer failure raised by a store operation."""

    status_code = 500


class SubscriptionNotFoundError(PushDispatchError):
    """No subscription matched an explicit unsubscribe request."""

    status_code = 404


class TransportConfigurationError(PushDispatchError):
    """Push transport cannot be constructed (missing VAPID details)."""

    status_code = 500

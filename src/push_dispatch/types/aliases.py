"""Type aliases using modern PEP 695 syntax."""

from collections.abc import Callable, Mapping
from datetime import datetime
from typing import Literal

# Severity accepted by the event sink, matching the levels of the audit log
type EventLevel = Literal["debug", "info", "warn", "error", "critical"]

# Notification payload forwarded verbatim (as JSON) to the push transport
type NotificationPayload = Mapping[str, object]

# Source of the current instant; injected so expiry checks are testable
type Clock = Callable[[], datetime]

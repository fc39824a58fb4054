"""Secret sanitization utilities for logging and error messages.

Push endpoints embed a per-subscription capability token as their last path
segment; anybody holding the full URL plus the client keys can push to the
device. This module redacts those tokens, key material and VAPID secrets from
strings and structured data before they reach a log handler.

Examples:
    >>> sanitize_url("https://fcm.googleapis.com/fcm/send/abc123")
    'https://fcm.googleapis.com/fcm/send/<REDACTED>'

    >>> sanitize_value({"keys": {"p256dh": "BN..."}, "device_id": "d1"})
    {'keys': '<REDACTED>', 'device_id': 'd1'}
"""

from __future__ import annotations

import re
from collections.abc import Mapping, Sequence
from typing import TypeIs

# Redaction marker for sanitized values
REDACTED = "<REDACTED>"

# Push service endpoints: the last path segment is the subscription token
# FCM: https://fcm.googleapis.com/fcm/send/<token>
# Mozilla: https://updates.push.services.mozilla.com/wpush/v2/<token>
# Apple: https://web.push.apple.com/<token>
# WNS: https://*.notify.windows.com/w/?token=<token>
_PUSH_ENDPOINT_PATTERN = re.compile(
    r"(https?://(?:[\w-]+\.)*(?:googleapis\.com|mozilla\.com|push\.apple\.com|notify\.windows\.com)"
    r"/(?:[^/?#\s]+/)*)([^/?#\s]+)",
    re.IGNORECASE,
)

# Pattern for URLs with tokens in path segments
_GENERIC_TOKEN_IN_PATH = re.compile(
    r"(/(?:token|api[-_]?key|auth|secret|bearer)[=/])([^/?#\s]+)",
    re.IGNORECASE,
)

# Pattern for URLs with tokens in query parameters
_GENERIC_TOKEN_IN_QUERY = re.compile(
    r"([?&](?:token|api[-_]?key|auth|secret|bearer)=)([^&\s]+)",
    re.IGNORECASE,
)

# Sensitive field name patterns (case-insensitive)
_SENSITIVE_FIELD_PATTERNS = [
    re.compile(pattern, re.IGNORECASE)
    for pattern in [
        r".*token.*",
        r".*key.*",
        r".*secret.*",
        r".*password.*",
        r".*credential.*",
        r"^auth.*",
        r".*p256dh.*",
        r".*bearer.*",
    ]
]


def is_sensitive_field(field_name: str) -> bool:
    """Check if a field name indicates sensitive data.

    Examples:
        >>> is_sensitive_field("vapid_private_key")
        True
        >>> is_sensitive_field("device_id")
        False
    """
    return any(pattern.match(field_name) for pattern in _SENSITIVE_FIELD_PATTERNS)


def sanitize_url(url: str) -> str:
    """Redact subscription tokens and credentials from URLs.

    Scheme, host and path structure are preserved so the result is still
    useful for telling push services apart while debugging.
    """
    if not url or not isinstance(url, str):  # pyright: ignore[reportUnnecessaryIsInstance]
        return url

    sanitized = _PUSH_ENDPOINT_PATTERN.sub(rf"\1{REDACTED}", url)
    sanitized = _GENERIC_TOKEN_IN_PATH.sub(rf"\1{REDACTED}", sanitized)
    sanitized = _GENERIC_TOKEN_IN_QUERY.sub(rf"\1{REDACTED}", sanitized)

    return sanitized


def _is_primitive(value: object) -> TypeIs[str | int | float | bool | None]:
    return isinstance(value, (str, int, float, bool, type(None)))


def _is_mapping(value: object) -> TypeIs[Mapping[str, object]]:
    return isinstance(value, Mapping)


def _is_sequence(value: object) -> TypeIs[Sequence[object]]:
    return isinstance(value, Sequence) and not isinstance(value, (str, bytes))


def sanitize_value(
    value: object,
    *,
    field_name: str | None = None,
) -> object:
    """Recursively sanitize sensitive values from structured data.

    Values are redacted when their field name looks sensitive; strings are
    passed through :func:`sanitize_url`; mappings and sequences are walked.
    """
    if field_name and is_sensitive_field(field_name):
        return REDACTED

    if _is_primitive(value):
        if type(value) is str:
            return sanitize_url(value)
        return value

    if _is_mapping(value):
        return {key: sanitize_value(val, field_name=str(key)) for key, val in value.items()}

    if _is_sequence(value):
        sanitized_items: list[object] = [sanitize_value(item) for item in value]
        if isinstance(value, tuple):
            return tuple(sanitized_items)
        return sanitized_items

    return sanitize_url(str(value))


def sanitize_exception(exc: BaseException) -> str:
    """Render ``exc`` as ``"<Type>: <message>"`` with secrets removed."""
    return f"{type(exc).__name__}: {sanitize_url(str(exc))}"


def sanitize_args(args: tuple[object, ...]) -> tuple[object, ...]:
    """Sanitize the args tuple of a log record."""
    return tuple(sanitize_value(arg) for arg in args)


def sanitize_mapping(
    data: Mapping[str, object],
) -> dict[str, object]:
    """Sanitize a mapping (e.g., logging extra dict) for safe output."""
    return {key: sanitize_value(val, field_name=key) for key, val in data.items()}

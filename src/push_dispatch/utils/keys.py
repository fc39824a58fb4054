"""Validation of push subscription key material.

The push transport encrypts payloads with the client's keys, which must be:
- p256dh: base64url text decoding to exactly 65 bytes (uncompressed P-256 point)
- auth: base64url text decoding to exactly 16 bytes

Examples:
    >>> validate_subscription_keys(SubscriptionKeys(p256dh="AAAA", auth="AAAA"))
    Traceback (most recent call last):
    ...
    push_dispatch.exceptions.ValidationError: p256dh key must decode to exactly 65 bytes, got 3 bytes
"""

from __future__ import annotations

import base64
import binascii
import re
from typing import Final

from push_dispatch.exceptions import ValidationError
from push_dispatch.types.models import SubscriptionKeys

__all__ = [
    "AUTH_LENGTH",
    "P256DH_LENGTH",
    "decode_base64url",
    "normalize_subscription_keys",
    "validate_subscription_keys",
]

P256DH_LENGTH: Final[int] = 65
AUTH_LENGTH: Final[int] = 16

_BASE64URL_PATTERN: Final[re.Pattern[str]] = re.compile(r"^[A-Za-z0-9_-]+={0,2}$")


def decode_base64url(value: str) -> bytes:
    """Decode base64url text, tolerating missing padding.

    Raises:
        ValidationError: If ``value`` is not valid base64url
    """
    if not _BASE64URL_PATTERN.match(value):
        msg = "value must be a valid base64url string"
        raise ValidationError(msg)

    stripped = value.rstrip("=")
    padding = -len(stripped) % 4
    try:
        return base64.urlsafe_b64decode(stripped + "=" * padding)
    except (binascii.Error, ValueError) as exc:
        msg = f"Invalid base64url encoding in keys: {exc}"
        raise ValidationError(msg) from exc


def _check_key(name: str, value: object, expected_length: int) -> None:
    if not isinstance(value, str) or not value:
        msg = f"{name} key is required and must be a string"
        raise ValidationError(msg)

    if not _BASE64URL_PATTERN.match(value):
        msg = f"{name} key must be a valid base64url string"
        raise ValidationError(msg)

    decoded = decode_base64url(value)
    if len(decoded) != expected_length:
        msg = f"{name} key must decode to exactly {expected_length} bytes, got {len(decoded)} bytes"
        raise ValidationError(msg, context={"key": name, "decoded_length": len(decoded)})


def validate_subscription_keys(keys: SubscriptionKeys) -> None:
    """Check that both keys decode to the lengths the transport requires.

    Raises:
        ValidationError: If either key is missing, not base64url, or has the wrong length
    """
    _check_key("p256dh", keys.p256dh, P256DH_LENGTH)
    _check_key("auth", keys.auth, AUTH_LENGTH)


def normalize_subscription_keys(keys: SubscriptionKeys) -> SubscriptionKeys:
    """Return trimmed keys after validating them."""
    trimmed = SubscriptionKeys(p256dh=keys.p256dh.strip(), auth=keys.auth.strip())
    validate_subscription_keys(trimmed)
    return trimmed

"""Shared utility modules.

This package provides:
- Key material validation for push subscriptions
- Structured logging with correlation IDs and secret redaction
- Sanitization of endpoint tokens and secrets for log output
"""

from push_dispatch.utils.keys import (
    AUTH_LENGTH,
    P256DH_LENGTH,
    decode_base64url,
    normalize_subscription_keys,
    validate_subscription_keys,
)
from push_dispatch.utils.sanitization import (
    REDACTED,
    sanitize_exception,
    sanitize_url,
    sanitize_value,
)

__all__ = [
    # Key validation
    "AUTH_LENGTH",
    "P256DH_LENGTH",
    "decode_base64url",
    "normalize_subscription_keys",
    "validate_subscription_keys",
    # Sanitization
    "REDACTED",
    "sanitize_exception",
    "sanitize_url",
    "sanitize_value",
]

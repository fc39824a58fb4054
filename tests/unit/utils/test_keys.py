"""Unit tests for subscription key validation."""

from __future__ import annotations

import base64

import pytest

from push_dispatch.exceptions import ValidationError
from push_dispatch.types.models import SubscriptionKeys
from push_dispatch.utils.keys import (
    AUTH_LENGTH,
    P256DH_LENGTH,
    decode_base64url,
    normalize_subscription_keys,
    validate_subscription_keys,
)


def _b64url(raw: bytes, *, padded: bool = False) -> str:
    encoded = base64.urlsafe_b64encode(raw).decode()
    return encoded if padded else encoded.rstrip("=")


P256DH = _b64url(b"\x04" + b"\x01" * 64)
AUTH = _b64url(b"\x02" * 16)


@pytest.mark.unit
class TestDecodeBase64url:
    def test_decodes_without_padding(self) -> None:
        assert decode_base64url(_b64url(b"abcd")) == b"abcd"

    def test_decodes_with_padding(self) -> None:
        assert decode_base64url(_b64url(b"abcd", padded=True)) == b"abcd"

    def test_rejects_standard_alphabet_characters(self) -> None:
        with pytest.raises(ValidationError):
            _ = decode_base64url("ab+/")


@pytest.mark.unit
class TestValidateSubscriptionKeys:
    def test_valid_keys_pass(self) -> None:
        validate_subscription_keys(SubscriptionKeys(p256dh=P256DH, auth=AUTH))

    def test_padded_keys_pass(self) -> None:
        keys = SubscriptionKeys(
            p256dh=_b64url(b"\x04" + b"\x01" * 64, padded=True),
            auth=_b64url(b"\x02" * 16, padded=True),
        )

        validate_subscription_keys(keys)

    def test_short_p256dh_reports_decoded_length(self) -> None:
        keys = SubscriptionKeys(p256dh=_b64url(b"\x04" * 10), auth=AUTH)

        with pytest.raises(ValidationError, match=f"p256dh key must decode to exactly {P256DH_LENGTH} bytes, got 10"):
            validate_subscription_keys(keys)

    def test_long_auth_is_rejected(self) -> None:
        keys = SubscriptionKeys(p256dh=P256DH, auth=_b64url(b"\x02" * 17))

        with pytest.raises(ValidationError, match=f"auth key must decode to exactly {AUTH_LENGTH} bytes, got 17"):
            validate_subscription_keys(keys)

    def test_empty_key_is_rejected(self) -> None:
        with pytest.raises(ValidationError, match="auth key is required"):
            validate_subscription_keys(SubscriptionKeys(p256dh=P256DH, auth=""))

    def test_non_base64url_key_is_rejected(self) -> None:
        with pytest.raises(ValidationError, match="p256dh key must be a valid base64url string"):
            validate_subscription_keys(SubscriptionKeys(p256dh="not base64!", auth=AUTH))

    def test_validation_error_is_a_400(self) -> None:
        with pytest.raises(ValidationError) as exc_info:
            validate_subscription_keys(SubscriptionKeys(p256dh="AAAA", auth=AUTH))

        assert exc_info.value.status_code == 400


@pytest.mark.unit
def test_normalize_trims_whitespace() -> None:
    keys = normalize_subscription_keys(SubscriptionKeys(p256dh=f"  {P256DH}\n", auth=f"{AUTH} "))

    assert keys == SubscriptionKeys(p256dh=P256DH, auth=AUTH)

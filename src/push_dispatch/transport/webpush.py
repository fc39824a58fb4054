"""Web Push delivery via pywebpush.

pywebpush performs the payload encryption and VAPID signing; its blocking
HTTP call runs on the transport's own thread pool, sized to the batch
concurrency, so one slow push service does not stall the rest of a batch
and delivery never queues behind database work. Failures come back as :class:`PushError` values: 410
and 404 mean the subscription is permanently gone, everything else is
transient.
"""

from __future__ import annotations

import asyncio
import json
import logging
import time
from collections.abc import Mapping
from concurrent.futures import ThreadPoolExecutor
from typing import Final

import requests
from pywebpush import WebPushException, webpush

from push_dispatch.exceptions import TransportConfigurationError
from push_dispatch.types.aliases import NotificationPayload
from push_dispatch.types.models import PushError, Subscription
from push_dispatch.utils.logging import get_logger, log_with_context
from push_dispatch.utils.sanitization import sanitize_exception, sanitize_url

__all__ = ["DEFAULT_TTL_SECONDS", "DryRunTransport", "WebPushTransport"]

logger = get_logger(__name__)

DEFAULT_TTL_SECONDS: Final[int] = 2_419_200


def _status_of(exc: WebPushException) -> int | None:
    # requests.Response is falsy for error statuses, so compare against None
    response = exc.response
    if response is None:
        return None
    status: int = response.status_code
    return status


class WebPushTransport:
    """Deliver notifications through push services using VAPID credentials."""

    def __init__(
        self,
        *,
        private_key: str,
        public_key: str,
        email: str,
        ttl_seconds: int = DEFAULT_TTL_SECONDS,
        timeout_seconds: float = 10.0,
        max_workers: int | None = None,
    ) -> None:
        if not private_key or not public_key or not email:
            msg = "VAPID keys and contact email must all be configured"
            raise TransportConfigurationError(msg)
        if timeout_seconds <= 0:
            msg = "timeout_seconds must be greater than zero"
            raise TransportConfigurationError(msg)
        if max_workers is not None and max_workers <= 0:
            msg = "max_workers must be greater than zero"
            raise TransportConfigurationError(msg)

        self._private_key: str = private_key
        self._public_key: str = public_key
        self._subject: str = f"mailto:{email.removeprefix('mailto:')}"
        self._ttl_seconds: int = ttl_seconds
        self._timeout_seconds: float = timeout_seconds
        self._max_workers: int | None = max_workers
        self._executor: ThreadPoolExecutor = ThreadPoolExecutor(
            max_workers=max_workers,
            thread_name_prefix="push-dispatch-webpush",
        )

    @property
    def public_key(self) -> str:
        """Application server key handed to browsers when they subscribe."""
        return self._public_key

    @property
    def max_workers(self) -> int | None:
        """Size of the delivery thread pool; None means the executor default."""
        return self._max_workers

    def close(self) -> None:
        """Wait for in-flight deliveries and release the delivery threads."""
        self._executor.shutdown(wait=True)

    def _send_blocking(self, subscription: Subscription, data: str) -> None:
        _ = webpush(
            subscription_info=subscription.subscription_info(),
            data=data,
            vapid_private_key=self._private_key,
            # pywebpush adds "aud" and "exp" to the claims dict it is given
            vapid_claims={"sub": self._subject},
            ttl=self._ttl_seconds,
            timeout=self._timeout_seconds,
        )

    async def send(self, subscription: Subscription, payload: NotificationPayload) -> PushError | None:
        """Encrypt and deliver ``payload``; return None on success."""
        data = json.dumps(dict(payload), default=str)
        start = time.perf_counter()

        loop = asyncio.get_running_loop()
        try:
            await loop.run_in_executor(self._executor, self._send_blocking, subscription, data)
        except WebPushException as exc:
            error = PushError.from_status(_status_of(exc), sanitize_url(str(exc)))
        except requests.RequestException as exc:
            error = PushError.transient(sanitize_exception(exc))
        else:
            log_with_context(
                logger,
                logging.DEBUG,
                "Push service accepted notification",
                extra={
                    "device_id": subscription.device_id,
                    "endpoint": subscription.endpoint,
                    "delivery_time_ms": (time.perf_counter() - start) * 1000.0,
                },
            )
            return None

        log_with_context(
            logger,
            logging.DEBUG,
            "Push service rejected notification",
            extra={
                "device_id": subscription.device_id,
                "endpoint": subscription.endpoint,
                "status_code": error.status_code,
                "error_kind": error.kind.value,
            },
        )
        return error


class DryRunTransport:
    """Transport that records deliveries without contacting any push service."""

    def __init__(self) -> None:
        self.sent: list[tuple[str, Mapping[str, object]]] = []

    def close(self) -> None:
        pass

    async def send(self, subscription: Subscription, payload: NotificationPayload) -> PushError | None:
        self.sent.append((subscription.device_id, dict(payload)))
        log_with_context(
            logger,
            logging.INFO,
            "Dry-run notification recorded",
            extra={
                "device_id": subscription.device_id,
                "endpoint": subscription.endpoint,
                "notification_payload": dict(payload),
            },
        )
        return None

"""Pytest configuration and shared fixtures."""

from __future__ import annotations

import asyncio
import base64
from collections.abc import Callable, Generator, Iterator, Mapping
from datetime import UTC, datetime
from pathlib import Path

import pytest

from push_dispatch.core.events import RecordingEventSink
from push_dispatch.storage.database import Database
from push_dispatch.storage.logs import SQLiteLogStore
from push_dispatch.storage.subscriptions import SQLiteSubscriptionStore
from push_dispatch.types.aliases import NotificationPayload
from push_dispatch.types.models import PushError, Subscription, SubscriptionKeys
from push_dispatch.utils.logging import clear_correlation_id

FIXED_NOW = datetime(2025, 6, 1, 12, 0, tzinfo=UTC)

VALID_P256DH = base64.urlsafe_b64encode(b"\x04" + bytes(range(64))).decode().rstrip("=")
VALID_AUTH = base64.urlsafe_b64encode(bytes(range(16))).decode().rstrip("=")

type TransportScript = PushError | BaseException | None


class ScriptedTransport:
    """Test double implementing the PushTransport Protocol.

    Results are scripted per device id; unscripted devices succeed.
    """

    def __init__(
        self,
        script: Mapping[str, TransportScript] | None = None,
        *,
        delay: float = 0.0,
    ) -> None:
        self.script: dict[str, TransportScript] = dict(script or {})
        self.delay: float = delay
        self.calls: list[tuple[str, dict[str, object]]] = []
        self.endpoints: list[str] = []
        self.closed: bool = False

    async def send(self, subscription: Subscription, payload: NotificationPayload) -> PushError | None:
        self.calls.append((subscription.device_id, dict(payload)))
        self.endpoints.append(subscription.endpoint)
        if self.delay:
            await asyncio.sleep(self.delay)
        outcome = self.script.get(subscription.device_id)
        if isinstance(outcome, BaseException):
            raise outcome
        return outcome

    def close(self) -> None:
        self.closed = True

    @property
    def called_devices(self) -> list[str]:
        return [device_id for device_id, _ in self.calls]


type SubscriptionFactory = Callable[..., Subscription]


@pytest.fixture(autouse=True)
def reset_correlation_id() -> Iterator[None]:
    clear_correlation_id()
    yield
    clear_correlation_id()


@pytest.fixture
def valid_keys() -> SubscriptionKeys:
    return SubscriptionKeys(p256dh=VALID_P256DH, auth=VALID_AUTH)


@pytest.fixture
def make_subscription(valid_keys: SubscriptionKeys) -> SubscriptionFactory:
    """Factory building subscriptions with valid keys and a per-device endpoint."""

    def _make(
        device_id: str = "device-1",
        *,
        endpoint: str | None = None,
        expiration_time: datetime | None = None,
        metadata: dict[str, object] | None = None,
        keys: SubscriptionKeys | None = None,
    ) -> Subscription:
        return Subscription(
            endpoint=endpoint or f"https://push.example.com/send/{device_id}",
            keys=keys or valid_keys,
            device_id=device_id,
            expiration_time=expiration_time,
            metadata=metadata or {},
        )

    return _make


@pytest.fixture
def subscription_body() -> dict[str, object]:
    """Raw subscribe request body as a browser client would send it."""
    return {
        "subscription": {
            "endpoint": "https://fcm.googleapis.com/fcm/send/abc123",
            "keys": {"p256dh": VALID_P256DH, "auth": VALID_AUTH},
            "metadata": {"room": "kitchen"},
        },
        "device_id": "kitchen-tablet",
    }


@pytest.fixture
def database(tmp_path: Path) -> Generator[Database, None, None]:
    with Database(tmp_path / "push-dispatch.db") as db:
        yield db


@pytest.fixture
def store(database: Database) -> SQLiteSubscriptionStore:
    return SQLiteSubscriptionStore(database)


@pytest.fixture
def log_store(database: Database) -> SQLiteLogStore:
    return SQLiteLogStore(database)


@pytest.fixture
def events() -> RecordingEventSink:
    return RecordingEventSink()


@pytest.fixture
def clock() -> Callable[[], datetime]:
    return lambda: FIXED_NOW

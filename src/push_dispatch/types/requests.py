"""Request body models for the service entry points."""

from __future__ import annotations

from datetime import datetime
from typing import Literal

from pydantic import AliasChoices, BaseModel, ConfigDict, Field

from push_dispatch.types.models import Subscription, SubscriptionKeys


class RequestModel(BaseModel):
    """Base model for request bodies."""

    model_config: ConfigDict = ConfigDict(  # pyright: ignore[reportIncompatibleVariableOverride]
        extra="forbid",
        str_strip_whitespace=True,
        populate_by_name=True,
    )


class KeysBody(RequestModel):
    """Key material as sent by the browser."""

    p256dh: str = Field(..., min_length=1, description="Client public key (base64url)")
    auth: str = Field(..., min_length=1, description="Client auth secret (base64url)")


class SubscriptionBody(RequestModel):
    """Browser ``PushSubscription`` serialization."""

    endpoint: str = Field(..., min_length=1, max_length=2048)
    keys: KeysBody
    expiration_time: datetime | None = Field(
        default=None,
        validation_alias=AliasChoices("expiration_time", "expirationTime"),
    )
    metadata: dict[str, object] | None = None


class SubscriptionRequest(RequestModel):
    """Body of a subscribe call."""

    subscription: SubscriptionBody
    device_id: str = Field(..., min_length=1, max_length=255)

    def to_subscription(self) -> Subscription:
        body = self.subscription
        return Subscription(
            endpoint=body.endpoint,
            keys=SubscriptionKeys(p256dh=body.keys.p256dh, auth=body.keys.auth),
            device_id=self.device_id,
            expiration_time=body.expiration_time,
            metadata=dict(body.metadata or {}),
        )


class UnsubscribeRequest(RequestModel):
    """Body of an unsubscribe call."""

    device_ids: list[str] = Field(..., min_length=1)


class NotificationAction(BaseModel):
    """Action button shown with a notification."""

    action: str
    title: str
    icon: str | None = None


class NotificationContent(BaseModel):
    """Payload forwarded to the service worker.

    Field names follow the browser Notification API; unknown keys are kept
    so applications can pass extra data through untouched.
    """

    model_config: ConfigDict = ConfigDict(  # pyright: ignore[reportIncompatibleVariableOverride]
        extra="allow",
        populate_by_name=True,
    )

    title: str = Field(..., min_length=1, max_length=200)
    body: str | None = None
    icon: str | None = None
    badge: str | None = None
    image: str | None = None
    tag: str | None = None
    require_interaction: bool | None = Field(default=None, alias="requireInteraction")
    silent: bool | None = None
    renotify: bool | None = None
    actions: list[NotificationAction] | None = None
    timestamp: int | None = None
    vibrate: int | list[int] | None = None
    lang: str | None = None
    dir: Literal["auto", "ltr", "rtl"] | None = None
    data: dict[str, object] | None = None

    def to_payload(self) -> dict[str, object]:
        """Return the JSON-ready payload using the browser's field names."""
        return self.model_dump(by_alias=True, exclude_none=True)


class NotificationRequest(RequestModel):
    """Body of a batch notify call."""

    device_ids: list[str]
    payload: NotificationContent

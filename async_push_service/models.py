"""Pydantic models and value types for the push relay.

Models:
    - PushRequest: inbound ``POST /push`` body, loosely typed
    - NotificationPayload: immutable payload shared by every recipient
    - QueueItem: one (token, payload) pair waiting for delivery
    - DeliveryOutcome and its variants: result of a single send attempt
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from typing import Any, ClassVar, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator

DEFAULT_SOUND = "default"
DEFAULT_CHANNEL_ID = "default"


class PushRequest(BaseModel):
    """Body accepted by ``POST /push``.

    Every field is optional here so that missing values can be reported with
    the relay's own error messages instead of a generic validation dump.
    """

    model_config = ConfigDict(extra="ignore")

    to: Optional[Union[List[Optional[str]], str]] = None
    title: Optional[str] = None
    body: Optional[str] = None
    data: Optional[Dict[str, Any]] = None
    sound: Optional[str] = None
    channel_id: Optional[str] = Field(default=None, alias="channelId")

    def tokens(self) -> List[str]:
        """Return the recipient tokens, dropping empty entries."""
        if not self.to:
            return []
        if isinstance(self.to, str):
            return [self.to]
        return [token for token in self.to if token]


class NotificationPayload(BaseModel):
    """Notification content forwarded to the push-delivery API."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    title: str
    body: str
    data: Dict[str, Any] = Field(default_factory=dict)
    sound: str = DEFAULT_SOUND
    channel_id: str = Field(default=DEFAULT_CHANNEL_ID, alias="channelId")
    priority: Literal["high"] = "high"

    @field_validator("data", mode="before")
    @classmethod
    def _default_data(cls, value: Any) -> Any:
        return value or {}

    @field_validator("sound", mode="before")
    @classmethod
    def _default_sound(cls, value: Any) -> Any:
        return value or DEFAULT_SOUND

    @field_validator("channel_id", mode="before")
    @classmethod
    def _default_channel(cls, value: Any) -> Any:
        return value or DEFAULT_CHANNEL_ID

    @classmethod
    def from_request(cls, request: PushRequest) -> "NotificationPayload":
        """Build the payload from a validated push request."""
        return cls(
            title=request.title,
            body=request.body,
            data=request.data,
            sound=request.sound,
            channelId=request.channel_id,
        )

    def to_wire(self, token: str) -> Dict[str, Any]:
        """Return the JSON body sent to the delivery API for ``token``."""
        wire = self.model_dump(by_alias=True)
        wire["to"] = token
        return wire


@dataclass(frozen=True)
class QueueItem:
    """A single recipient waiting in the delivery queue."""

    token: str
    payload: NotificationPayload
    enqueued_at: float = field(default_factory=time.monotonic)


@dataclass(frozen=True)
class DeliveryOutcome:
    """Base class for the result of one delivery attempt."""

    kind: ClassVar[str] = "unknown"

    @property
    def ok(self) -> bool:
        return False


@dataclass(frozen=True)
class Delivered(DeliveryOutcome):
    """The delivery API accepted the notification (2xx)."""

    kind: ClassVar[str] = "delivered"
    status_code: int
    body: str = ""

    @property
    def ok(self) -> bool:
        return True


@dataclass(frozen=True)
class RemoteRejected(DeliveryOutcome):
    """The delivery API refused the request (4xx other than 429)."""

    kind: ClassVar[str] = "rejected"
    status_code: int
    body: str = ""


@dataclass(frozen=True)
class RemoteOverloaded(DeliveryOutcome):
    """The delivery API asked us to slow down (429 or 5xx)."""

    kind: ClassVar[str] = "overloaded"
    status_code: int
    body: str = ""


@dataclass(frozen=True)
class TransportFailed(DeliveryOutcome):
    """No usable response: network error, timeout or malformed reply."""

    kind: ClassVar[str] = "transport_failed"
    reason: str

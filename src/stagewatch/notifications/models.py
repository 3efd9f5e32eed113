"""Notification, payload and dispatch-result models."""

from __future__ import annotations

import uuid
from enum import StrEnum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from stagewatch.alerts.urgency import UrgencyTier


class Channel(StrEnum):
    """Delivery channels supported by the dispatcher."""

    in_app = "in_app"
    email = "email"
    sms = "sms"


class Recipient(BaseModel):
    """Who a notification is addressed to.  Each channel needs its own identity."""

    model_config = ConfigDict(extra="forbid")

    user_id: uuid.UUID | str | None = None
    name: str | None = None
    email: str | None = None
    phone: str | None = None


class Notification(BaseModel):
    """Channel-agnostic notification built by the deadline scanner."""

    model_config = ConfigDict(extra="forbid")

    title: str
    message: str
    urgency: UrgencyTier
    recipient: Recipient
    action_url: str | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)


class InAppPayload(BaseModel):
    """Row written to the in-app notifications table."""

    user_id: uuid.UUID | str
    title: str
    message: str
    kind: str
    action_url: str | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)


class EmailPayload(BaseModel):
    to: str
    subject: str
    text: str
    html: str


class SmsPayload(BaseModel):
    to: str
    body: str


class TransportOutcome(BaseModel):
    """Result reported by a transport for a single send."""

    ok: bool
    reason: str | None = None
    provider_id: str | None = None


class ChannelFailure(BaseModel):
    channel: Channel
    reason: str


class DispatchResult(BaseModel):
    """Per-channel outcome of one dispatch; failures never raise."""

    sent: list[Channel] = Field(default_factory=list)
    failed: list[ChannelFailure] = Field(default_factory=list)

    @property
    def ok(self) -> bool:
        """True when every requested channel was sent."""
        return not self.failed

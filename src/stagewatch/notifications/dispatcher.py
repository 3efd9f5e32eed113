"""Notification fan-out across in-app, email and SMS transports.

Every requested channel is attempted independently ("fire all, collect
all"): a failing channel is recorded in :attr:`DispatchResult.failed` and
never prevents the remaining channels from being tried.  There is no
fallback ordering between channels.
"""

from __future__ import annotations

import html
import logging
import re
from collections.abc import Iterable, Mapping
from typing import Protocol

from opentelemetry import trace
from pydantic import BaseModel

from stagewatch.alerts.urgency import UrgencyTier, notification_kind
from stagewatch.errors import InvalidNotificationError
from stagewatch.notifications.models import (
    Channel,
    ChannelFailure,
    DispatchResult,
    EmailPayload,
    InAppPayload,
    Notification,
    SmsPayload,
    TransportOutcome,
)

logger = logging.getLogger(__name__)

_NON_DIGIT = re.compile(r"\D")
_E164_PATTERN = re.compile(r"^\+[1-9]\d{9,14}$")
_URGENT_TIERS = frozenset({UrgencyTier.CRITICAL, UrgencyTier.HIGH})
SMS_MAX_LENGTH = 320


class NotificationTransport(Protocol):
    """Outbound transport for a single channel."""

    async def send(self, payload: BaseModel) -> TransportOutcome: ...


def format_phone_number(phone_number: str) -> str:
    """Normalize *phone_number* to E.164, assuming +1 for bare 10-digit numbers."""
    digits = _NON_DIGIT.sub("", phone_number)
    if len(digits) == 10:
        return f"+1{digits}"
    return f"+{digits}"


def is_valid_phone_number(phone_number: str | None) -> bool:
    if not phone_number:
        return False
    if len(_NON_DIGIT.sub("", phone_number)) < 10:
        return False
    return _E164_PATTERN.fullmatch(format_phone_number(phone_number)) is not None


def missing_identity(channel: Channel, notification: Notification) -> str | None:
    """Return a reason string when the recipient cannot be reached on *channel*."""
    recipient = notification.recipient
    if channel == Channel.in_app:
        return None if recipient.user_id else "recipient has no user id"
    if channel == Channel.email:
        return None if recipient.email else "recipient has no email address"
    if channel == Channel.sms:
        return None if is_valid_phone_number(recipient.phone) else "recipient has no valid phone"
    return f"unsupported channel: {channel}"


def build_in_app_payload(notification: Notification) -> InAppPayload:
    return InAppPayload(
        user_id=notification.recipient.user_id,
        title=notification.title,
        message=notification.message,
        kind=notification_kind(notification.urgency),
        action_url=notification.action_url,
        metadata={**notification.metadata, "urgency": str(notification.urgency)},
    )


def build_email_payload(notification: Notification) -> EmailPayload:
    subject = notification.title
    if notification.urgency in _URGENT_TIERS:
        subject = f"Urgent: {subject}"

    greeting = f"Hi {notification.recipient.name}," if notification.recipient.name else "Hi,"
    text_lines = [greeting, "", notification.message]
    html_parts = [
        f"<p>{html.escape(greeting)}</p>",
        f"<p>{html.escape(notification.message)}</p>",
    ]
    if notification.action_url:
        text_lines.extend(["", f"View details: {notification.action_url}"])
        url = html.escape(notification.action_url, quote=True)
        html_parts.append(f'<p><a href="{url}">View details</a></p>')

    return EmailPayload(
        to=notification.recipient.email or "",
        subject=subject,
        text="\n".join(text_lines),
        html="\n".join(html_parts),
    )


def build_sms_payload(notification: Notification) -> SmsPayload:
    body = f"{notification.title}\n\n{notification.message}"
    if len(body) > SMS_MAX_LENGTH:
        body = body[: SMS_MAX_LENGTH - 3] + "..."
    return SmsPayload(to=format_phone_number(notification.recipient.phone or ""), body=body)


_PAYLOAD_BUILDERS = {
    Channel.in_app: build_in_app_payload,
    Channel.email: build_email_payload,
    Channel.sms: build_sms_payload,
}


def _normalize_channels(channels: Iterable[Channel | str]) -> list[Channel]:
    ordered: list[Channel] = []
    for raw in channels:
        channel = Channel(raw)
        if channel not in ordered:
            ordered.append(channel)
    return ordered


class NotificationDispatcher:
    """Send a logical notification through the configured transports."""

    def __init__(self, transports: Mapping[Channel, NotificationTransport]) -> None:
        self._transports = dict(transports)

    async def dispatch(
        self,
        notification: Notification,
        channels: Iterable[Channel | str],
    ) -> DispatchResult:
        """Dispatch *notification* on every channel in *channels*.

        Raises
        ------
        InvalidNotificationError
            If the recipient has no identity usable by any requested channel.
            Partial failures never raise; they are reported in the result.
        """
        requested = _normalize_channels(channels)
        result = DispatchResult()
        if not requested:
            return result

        missing = {channel: missing_identity(channel, notification) for channel in requested}
        if all(reason is not None for reason in missing.values()):
            raise InvalidNotificationError(
                "Notification recipient has no identity for any requested channel: "
                + ", ".join(str(c) for c in requested)
            )

        tracer = trace.get_tracer("stagewatch")
        with tracer.start_as_current_span("stagewatch.dispatch") as span:
            span.set_attribute("channels_requested", len(requested))

            for channel in requested:
                reason = missing[channel]
                if reason is None:
                    reason = await self._send_one(channel, notification)
                if reason is None:
                    result.sent.append(channel)
                else:
                    result.failed.append(ChannelFailure(channel=channel, reason=reason))

            span.set_attribute("channels_sent", len(result.sent))
            span.set_attribute("channels_failed", len(result.failed))
        return result

    async def _send_one(self, channel: Channel, notification: Notification) -> str | None:
        """Send on one channel; return ``None`` on success or a failure reason."""
        transport = self._transports.get(channel)
        if transport is None:
            return f"no transport configured for channel {channel}"

        payload = _PAYLOAD_BUILDERS[channel](notification)
        try:
            outcome = await transport.send(payload)
        except Exception as exc:
            logger.warning("Notification transport %s raised", channel, exc_info=True)
            return str(exc) or type(exc).__name__

        if outcome.ok:
            logger.debug("Notification sent via %s (provider_id=%s)", channel, outcome.provider_id)
            return None
        logger.warning("Notification transport %s reported failure: %s", channel, outcome.reason)
        return outcome.reason or "transport reported failure"

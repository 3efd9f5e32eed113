"""Concrete notification transports.

- :class:`InAppTransport` inserts a row into the ``notifications`` table.
- :class:`ResendEmailTransport` posts to the Resend email API.
- :class:`TwilioSmsTransport` posts to the Twilio Messages API.
- :class:`LogOnlyTransport` logs the payload instead of sending (development).

Transports report failures through :class:`TransportOutcome` rather than
raising; retry and rate limiting are left to the providers.
"""

from __future__ import annotations

import json
import logging
from typing import Any

import asyncpg
import httpx

from stagewatch.notifications.models import (
    EmailPayload,
    InAppPayload,
    SmsPayload,
    TransportOutcome,
)

logger = logging.getLogger(__name__)

RESEND_API_URL = "https://api.resend.com/emails"
TWILIO_API_BASE_URL = "https://api.twilio.com/2010-04-01"


def _safe_error_message(response: httpx.Response) -> str:
    try:
        payload = response.json()
    except ValueError:
        payload = None
    if isinstance(payload, dict):
        message = payload.get("message") or payload.get("error")
        if isinstance(message, str) and message.strip():
            return f"HTTP {response.status_code}: {message.strip()[:200]}"
    return f"HTTP {response.status_code}"


class InAppTransport:
    """Record in-app notifications in the ``notifications`` table."""

    def __init__(self, pool: asyncpg.Pool) -> None:
        self._pool = pool

    async def send(self, payload: InAppPayload) -> TransportOutcome:
        try:
            notification_id = await self._pool.fetchval(
                """
                INSERT INTO notifications (user_id, title, message, type, action_url, metadata)
                VALUES ($1, $2, $3, $4, $5, $6::jsonb)
                RETURNING id
                """,
                payload.user_id,
                payload.title,
                payload.message,
                payload.kind,
                payload.action_url,
                json.dumps(payload.metadata, default=str),
            )
        except (asyncpg.PostgresError, OSError) as exc:
            logger.warning("Failed to insert in-app notification for %s", payload.user_id)
            return TransportOutcome(ok=False, reason=f"in-app insert failed: {exc}")
        return TransportOutcome(ok=True, provider_id=str(notification_id))


class ResendEmailTransport:
    """Send email through the Resend HTTP API."""

    def __init__(
        self,
        client: httpx.AsyncClient,
        *,
        api_key: str,
        from_address: str,
        api_url: str = RESEND_API_URL,
    ) -> None:
        self._client = client
        self._api_key = api_key
        self._from_address = from_address
        self._api_url = api_url

    async def send(self, payload: EmailPayload) -> TransportOutcome:
        body = {
            "from": self._from_address,
            "to": [payload.to],
            "subject": payload.subject,
            "html": payload.html,
            "text": payload.text,
        }
        try:
            response = await self._client.post(
                self._api_url,
                json=body,
                headers={"Authorization": f"Bearer {self._api_key}"},
            )
        except httpx.HTTPError as exc:
            return TransportOutcome(ok=False, reason=f"email request failed: {exc}")

        if response.status_code >= 400:
            return TransportOutcome(ok=False, reason=_safe_error_message(response))
        data: Any = response.json() if response.content else {}
        provider_id = data.get("id") if isinstance(data, dict) else None
        return TransportOutcome(ok=True, provider_id=provider_id)


class TwilioSmsTransport:
    """Send SMS through the Twilio Messages API."""

    def __init__(
        self,
        client: httpx.AsyncClient,
        *,
        account_sid: str,
        auth_token: str,
        from_number: str,
        api_base_url: str = TWILIO_API_BASE_URL,
    ) -> None:
        self._client = client
        self._account_sid = account_sid
        self._auth_token = auth_token
        self._from_number = from_number
        self._url = f"{api_base_url.rstrip('/')}/Accounts/{account_sid}/Messages.json"

    async def send(self, payload: SmsPayload) -> TransportOutcome:
        try:
            response = await self._client.post(
                self._url,
                data={"To": payload.to, "From": self._from_number, "Body": payload.body},
                auth=(self._account_sid, self._auth_token),
            )
        except httpx.HTTPError as exc:
            return TransportOutcome(ok=False, reason=f"sms request failed: {exc}")

        if response.status_code >= 400:
            return TransportOutcome(ok=False, reason=_safe_error_message(response))
        data: Any = response.json() if response.content else {}
        provider_id = data.get("sid") if isinstance(data, dict) else None
        return TransportOutcome(ok=True, provider_id=provider_id)


class LogOnlyTransport:
    """Log payloads instead of sending them; used when a provider is not configured."""

    def __init__(self, channel: str) -> None:
        self._channel = channel

    async def send(self, payload: EmailPayload | SmsPayload | InAppPayload) -> TransportOutcome:
        logger.info(
            "Notification not sent (no %s provider configured): %s",
            self._channel,
            payload.model_dump(mode="json"),
        )
        return TransportOutcome(ok=True, provider_id="log-only")

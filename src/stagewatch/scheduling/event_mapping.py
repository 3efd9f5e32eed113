"""Mapping between internal appointments and external calendar provider events.

The mapping is intentionally lossy and asymmetric:

- Outbound (:func:`to_external_event`) drops the internal appointment type;
  providers have no equivalent taxonomy.
- Inbound (:func:`to_appointment`) always classifies events as ``Meeting``
  and collapses provider statuses to ``Cancelled`` / ``Scheduled``.

Recurrence rules are forwarded verbatim in both directions; the mapper
never decodes or re-encodes them.
"""

from __future__ import annotations

import logging
import uuid
from datetime import UTC, date, datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, field_validator

from stagewatch.scheduling.models import (
    Appointment,
    AppointmentStatus,
    AppointmentType,
    ClientRef,
)

logger = logging.getLogger(__name__)

DEFAULT_EVENT_TIMEZONE = "UTC"
PROVIDER_STATUS_CONFIRMED = "confirmed"
PROVIDER_STATUS_CANCELLED = "cancelled"


class EventBoundary(BaseModel):
    """Start or end of a provider event: a timestamp plus a timezone label."""

    model_config = ConfigDict(extra="forbid")

    date_time: datetime
    time_zone: str | None = DEFAULT_EVENT_TIMEZONE


class EventAttendee(BaseModel):
    """Provider attendee entry."""

    model_config = ConfigDict(extra="forbid")

    email: str
    display_name: str | None = None
    response_status: str | None = None


class ExternalCalendarEvent(BaseModel):
    """Provider-side event representation.

    ``attendees`` and ``recurrence`` distinguish *absent* (``None``) from
    *empty* (``[]``); provider SDKs treat the two differently.
    """

    model_config = ConfigDict(extra="forbid")

    id: str | None = None
    summary: str
    description: str | None = None
    start: EventBoundary
    end: EventBoundary
    location: str | None = None
    attendees: list[EventAttendee] | None = None
    recurrence: list[str] | None = None
    status: str = PROVIDER_STATUS_CONFIRMED

    @field_validator("recurrence")
    @classmethod
    def _drop_blank_rules(cls, v: list[str] | None) -> list[str] | None:
        if v is None:
            return None
        return [entry.strip() for entry in v if entry.strip()]

    def to_provider_body(self) -> dict[str, Any]:
        """Serialize to the provider's camelCase JSON body, omitting absent fields."""
        body: dict[str, Any] = {}
        if self.id is not None:
            body["id"] = self.id
        body["summary"] = self.summary
        if self.description is not None:
            body["description"] = self.description
        body["start"] = _boundary_to_provider(self.start)
        body["end"] = _boundary_to_provider(self.end)
        if self.location is not None:
            body["location"] = self.location
        if self.attendees is not None:
            body["attendees"] = [_attendee_to_provider(a) for a in self.attendees]
        if self.recurrence is not None:
            body["recurrence"] = list(self.recurrence)
        body["status"] = self.status
        return body

    @classmethod
    def from_provider_payload(cls, payload: dict[str, Any]) -> ExternalCalendarEvent:
        """Parse a provider event payload.

        Raises
        ------
        ValueError
            If the payload is missing its start/end boundaries or carries an
            unparseable timestamp.
        """
        start_payload = payload.get("start")
        end_payload = payload.get("end")
        if not isinstance(start_payload, dict) or not isinstance(end_payload, dict):
            raise ValueError(f"Calendar event {payload.get('id')!r} is missing start/end payloads")

        status_raw = payload.get("status")
        status = (
            status_raw.strip().lower()
            if isinstance(status_raw, str) and status_raw.strip()
            else PROVIDER_STATUS_CONFIRMED
        )

        return cls(
            id=_optional_text(payload.get("id")),
            summary=_optional_text(payload.get("summary")) or "",
            description=_optional_text(payload.get("description")),
            start=_parse_provider_boundary(start_payload),
            end=_parse_provider_boundary(end_payload),
            location=_optional_text(payload.get("location")),
            attendees=_parse_provider_attendees(payload.get("attendees")),
            recurrence=_parse_provider_recurrence(payload.get("recurrence")),
            status=status,
        )


# ---------------------------------------------------------------------------
# Outbound: Appointment -> ExternalCalendarEvent
# ---------------------------------------------------------------------------


def _attendees_for_client(client: ClientRef | None) -> list[EventAttendee] | None:
    if client is None or not client.email:
        return None
    return [EventAttendee(email=client.email, display_name=client.name)]


def to_external_event(appointment: Appointment) -> ExternalCalendarEvent:
    """Build the provider event for *appointment*.

    Timestamps are labeled UTC without conversion; stored timestamps are
    already UTC.  The stored ``recurrence_rule`` is forwarded as-is.
    """
    recurrence = (
        [appointment.recurrence_rule]
        if appointment.is_recurring and appointment.recurrence_rule
        else None
    )
    status = (
        PROVIDER_STATUS_CANCELLED
        if appointment.status == AppointmentStatus.cancelled
        else PROVIDER_STATUS_CONFIRMED
    )
    return ExternalCalendarEvent(
        id=appointment.external_event_id,
        summary=appointment.title,
        description=appointment.description,
        start=EventBoundary(date_time=appointment.start_time, time_zone=DEFAULT_EVENT_TIMEZONE),
        end=EventBoundary(date_time=appointment.end_time, time_zone=DEFAULT_EVENT_TIMEZONE),
        location=appointment.location,
        attendees=_attendees_for_client(appointment.client),
        recurrence=recurrence,
        status=status,
    )


# ---------------------------------------------------------------------------
# Inbound: ExternalCalendarEvent -> Appointment
# ---------------------------------------------------------------------------


def to_appointment(
    event: ExternalCalendarEvent,
    created_by: uuid.UUID | str,
    client_id: uuid.UUID | None = None,
    *,
    calendar_id: str | None = None,
) -> Appointment:
    """Build an internal appointment from a provider event.

    ``type`` is always ``Meeting``.  Only provider status ``cancelled`` maps to
    ``Cancelled``; every other status maps to ``Scheduled``.
    """
    is_cancelled = event.status.strip().lower() == PROVIDER_STATUS_CANCELLED
    recurrence_rule = event.recurrence[0] if event.recurrence else None
    return Appointment(
        title=event.summary,
        description=event.description,
        client_id=client_id,
        start_time=event.start.date_time,
        end_time=event.end.date_time,
        location=event.location,
        type=AppointmentType.meeting,
        status=AppointmentStatus.cancelled if is_cancelled else AppointmentStatus.scheduled,
        is_recurring=recurrence_rule is not None,
        recurrence_rule=recurrence_rule,
        created_by=created_by,
        external_event_id=event.id,
        external_calendar_id=calendar_id,
    )


# ---------------------------------------------------------------------------
# Provider wire helpers
# ---------------------------------------------------------------------------


def _provider_rfc3339(value: datetime) -> str:
    normalized = value if value.tzinfo is not None else value.replace(tzinfo=UTC)
    return normalized.isoformat().replace("+00:00", "Z")


def _boundary_to_provider(boundary: EventBoundary) -> dict[str, str]:
    entry = {"dateTime": _provider_rfc3339(boundary.date_time)}
    if boundary.time_zone is not None:
        entry["timeZone"] = boundary.time_zone
    return entry


def _attendee_to_provider(attendee: EventAttendee) -> dict[str, str]:
    entry = {"email": attendee.email}
    if attendee.display_name is not None:
        entry["displayName"] = attendee.display_name
    return entry


def _optional_text(value: Any) -> str | None:
    if not isinstance(value, str):
        return None
    normalized = value.strip()
    return normalized or None


def _parse_provider_datetime(value: str) -> datetime:
    normalized = value.strip()
    if normalized.endswith("Z"):
        normalized = f"{normalized[:-1]}+00:00"
    try:
        parsed = datetime.fromisoformat(normalized)
    except ValueError as exc:
        raise ValueError(f"Calendar provider returned an invalid dateTime: {value}") from exc
    return parsed if parsed.tzinfo is not None else parsed.replace(tzinfo=UTC)


def _parse_provider_boundary(payload: dict[str, Any]) -> EventBoundary:
    time_zone = _optional_text(payload.get("timeZone"))

    date_time = payload.get("dateTime")
    if isinstance(date_time, str) and date_time.strip():
        return EventBoundary(date_time=_parse_provider_datetime(date_time), time_zone=time_zone)

    # All-day events carry a bare date; anchor them at midnight UTC.
    date_value = payload.get("date")
    if isinstance(date_value, str) and date_value.strip():
        try:
            parsed_date = date.fromisoformat(date_value.strip())
        except ValueError as exc:
            raise ValueError(f"Calendar provider returned an invalid date: {date_value}") from exc
        return EventBoundary(
            date_time=datetime(parsed_date.year, parsed_date.month, parsed_date.day, tzinfo=UTC),
            time_zone=time_zone,
        )

    raise ValueError("Calendar event boundary is missing dateTime or date")


def _parse_provider_attendees(payload: Any) -> list[EventAttendee] | None:
    if payload is None:
        return None
    if not isinstance(payload, list):
        logger.debug("Ignoring non-list attendees payload: %r", type(payload).__name__)
        return None

    attendees: list[EventAttendee] = []
    for entry in payload:
        if not isinstance(entry, dict):
            continue
        email = _optional_text(entry.get("email"))
        if email is None:
            continue
        attendees.append(
            EventAttendee(
                email=email,
                display_name=_optional_text(entry.get("displayName")),
                response_status=_optional_text(entry.get("responseStatus")),
            )
        )
    return attendees


def _parse_provider_recurrence(payload: Any) -> list[str] | None:
    if payload is None:
        return None
    if not isinstance(payload, list):
        return None
    return [entry.strip() for entry in payload if isinstance(entry, str) and entry.strip()]

"""Internal appointment record."""

from __future__ import annotations

import uuid
from datetime import datetime
from enum import StrEnum

from pydantic import BaseModel, ConfigDict, field_validator, model_validator

from stagewatch.scheduling.recurrence import (
    RecurrencePattern,
    as_utc,
    decode_rrule,
    expand_occurrences,
)


class AppointmentType(StrEnum):
    """Internal appointment taxonomy.  External providers have no equivalent."""

    showing = "Showing"
    meeting = "Meeting"
    call = "Call"
    deadline = "Deadline"


class AppointmentStatus(StrEnum):
    """Appointment lifecycle: Scheduled -> Completed | Cancelled."""

    scheduled = "Scheduled"
    completed = "Completed"
    cancelled = "Cancelled"


class ClientRef(BaseModel):
    """The client an appointment is associated with."""

    model_config = ConfigDict(extra="ignore")

    id: uuid.UUID | None = None
    name: str
    email: str | None = None

    @field_validator("email")
    @classmethod
    def _strip_email(cls, value: str | None) -> str | None:
        if value is None:
            return None
        return value.strip() or None


class Appointment(BaseModel):
    """Scheduling record owned by the CRM.

    ``end_time`` is not required to follow ``start_time``; records imported
    from external providers are stored as received.
    """

    model_config = ConfigDict(extra="forbid")

    id: uuid.UUID | None = None
    title: str
    description: str | None = None
    client: ClientRef | None = None
    client_id: uuid.UUID | None = None
    start_time: datetime
    end_time: datetime
    location: str | None = None
    type: AppointmentType = AppointmentType.meeting
    status: AppointmentStatus = AppointmentStatus.scheduled
    is_recurring: bool = False
    recurrence_rule: str | None = None
    recurrence_end_date: datetime | None = None
    parent_appointment_id: uuid.UUID | None = None
    created_by: uuid.UUID | str | None = None
    external_event_id: str | None = None
    external_calendar_id: str | None = None

    @model_validator(mode="after")
    def _validate_recurrence_rule_present(self) -> Appointment:
        if self.is_recurring and not self.recurrence_rule:
            raise ValueError("recurrence_rule is required for recurring appointments")
        return self

    @model_validator(mode="after")
    def _sync_client_id(self) -> Appointment:
        if self.client_id is None and self.client is not None and self.client.id is not None:
            self.client_id = self.client.id
        return self

    def recurrence_pattern(self) -> RecurrencePattern | None:
        """Decode the stored rule, or ``None`` for one-off appointments.

        Raises :class:`~stagewatch.errors.MalformedRuleError` for a bad rule.
        """
        if not self.is_recurring or not self.recurrence_rule:
            return None
        return decode_rrule(self.recurrence_rule)

    def occurrence_starts(
        self, *, window_end: datetime | None = None, limit: int = 250
    ) -> list[datetime]:
        """List the start times of this appointment's occurrences.

        ``recurrence_end_date`` caps the series in addition to the rule's own
        COUNT/UNTIL and the caller's ``window_end``.
        """
        pattern = self.recurrence_pattern()
        if pattern is None:
            return [self.start_time]
        end = as_utc(window_end) if window_end is not None else None
        if self.recurrence_end_date is not None:
            series_end = as_utc(self.recurrence_end_date)
            if end is None or series_end < end:
                end = series_end
        return expand_occurrences(pattern, self.start_time, window_end=end, limit=limit)

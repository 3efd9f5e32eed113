"""Appointment recurrence rules and external-calendar event mapping."""

from stagewatch.scheduling.event_mapping import (
    ExternalCalendarEvent,
    to_appointment,
    to_external_event,
)
from stagewatch.scheduling.models import Appointment, AppointmentStatus, AppointmentType
from stagewatch.scheduling.recurrence import (
    Frequency,
    RecurrencePattern,
    decode_rrule,
    encode_rrule,
    expand_occurrences,
)

__all__ = [
    "Appointment",
    "AppointmentStatus",
    "AppointmentType",
    "ExternalCalendarEvent",
    "Frequency",
    "RecurrencePattern",
    "decode_rrule",
    "encode_rrule",
    "expand_occurrences",
    "to_appointment",
    "to_external_event",
]

"""Tests for appointment <-> external calendar event mapping."""

from __future__ import annotations

import uuid
from datetime import UTC, datetime

import pytest
from pydantic import ValidationError

from stagewatch.scheduling.event_mapping import (
    EventBoundary,
    ExternalCalendarEvent,
    to_appointment,
    to_external_event,
)
from stagewatch.scheduling.models import (
    Appointment,
    AppointmentStatus,
    AppointmentType,
    ClientRef,
)

pytestmark = pytest.mark.unit

START = datetime(2025, 3, 10, 14, 0, tzinfo=UTC)
END = datetime(2025, 3, 10, 15, 0, tzinfo=UTC)
AGENT_ID = uuid.UUID("00000000-0000-0000-0000-0000000000aa")


def _appointment(**overrides) -> Appointment:
    fields = {
        "title": "Showing at 12 Elm St",
        "description": "Bring the disclosure packet",
        "start_time": START,
        "end_time": END,
        "location": "12 Elm St",
        "type": AppointmentType.showing,
        "created_by": AGENT_ID,
    }
    fields.update(overrides)
    return Appointment(**fields)


def _event(**overrides) -> ExternalCalendarEvent:
    fields = {
        "id": "evt-1",
        "summary": "Coffee with buyer",
        "start": EventBoundary(date_time=START),
        "end": EventBoundary(date_time=END),
    }
    fields.update(overrides)
    return ExternalCalendarEvent(**fields)


# ---------------------------------------------------------------------------
# Appointment model
# ---------------------------------------------------------------------------


class TestAppointment:
    def test_recurring_requires_rule(self):
        with pytest.raises(ValidationError):
            _appointment(is_recurring=True)

    def test_client_id_follows_client(self):
        client_id = uuid.uuid4()
        appointment = _appointment(client=ClientRef(id=client_id, name="Dana"))
        assert appointment.client_id == client_id

    def test_end_before_start_is_accepted(self):
        appointment = _appointment(start_time=END, end_time=START)
        assert appointment.end_time < appointment.start_time

    def test_one_off_occurrences(self):
        assert _appointment().occurrence_starts() == [START]
        assert _appointment().recurrence_pattern() is None

    def test_recurring_occurrences_capped_by_end_date(self):
        appointment = _appointment(
            is_recurring=True,
            recurrence_rule="FREQ=DAILY",
            recurrence_end_date=datetime(2025, 3, 12, 23, 59, tzinfo=UTC),
        )
        assert [o.day for o in appointment.occurrence_starts()] == [10, 11, 12]

    def test_window_end_tighter_than_end_date(self):
        appointment = _appointment(
            is_recurring=True,
            recurrence_rule="FREQ=WEEKLY;BYDAY=MO",
            recurrence_end_date=datetime(2025, 12, 31, tzinfo=UTC),
        )
        starts = appointment.occurrence_starts(window_end=datetime(2025, 3, 24, 14, 0, tzinfo=UTC))
        assert [o.day for o in starts] == [10, 17, 24]


# ---------------------------------------------------------------------------
# Outbound
# ---------------------------------------------------------------------------


class TestToExternalEvent:
    def test_basic_fields(self):
        event = to_external_event(_appointment())
        assert event.summary == "Showing at 12 Elm St"
        assert event.description == "Bring the disclosure packet"
        assert event.location == "12 Elm St"
        assert event.start == EventBoundary(date_time=START, time_zone="UTC")
        assert event.end == EventBoundary(date_time=END, time_zone="UTC")
        assert event.status == "confirmed"

    def test_timestamps_labeled_utc_without_conversion(self):
        naive = datetime(2025, 3, 10, 9, 30)
        event = to_external_event(_appointment(start_time=naive, end_time=naive))
        assert event.start.date_time == naive
        assert event.start.time_zone == "UTC"

    def test_client_with_email_becomes_single_attendee(self):
        client = ClientRef(id=uuid.uuid4(), name="Dana Reyes", email="dana@example.com")
        event = to_external_event(_appointment(client=client))
        assert len(event.attendees) == 1
        assert event.attendees[0].email == "dana@example.com"
        assert event.attendees[0].display_name == "Dana Reyes"

    @pytest.mark.parametrize("email", [None, "", "   "])
    def test_attendees_absent_without_client_email(self, email):
        client = ClientRef(id=uuid.uuid4(), name="Dana Reyes", email=email)
        event = to_external_event(_appointment(client=client))
        assert event.attendees is None
        assert "attendees" not in event.to_provider_body()

    def test_attendees_absent_without_client(self):
        assert to_external_event(_appointment()).attendees is None

    def test_stored_rule_forwarded_verbatim(self):
        # Non-canonical order is not re-encoded.
        rule = "FREQ=WEEKLY;BYDAY=FR,MO;INTERVAL=2"
        event = to_external_event(_appointment(is_recurring=True, recurrence_rule=rule))
        assert event.recurrence == [rule]

    def test_recurrence_absent_when_not_recurring(self):
        event = to_external_event(_appointment(recurrence_rule="FREQ=DAILY"))
        assert event.recurrence is None

    def test_cancelled_status(self):
        event = to_external_event(_appointment(status=AppointmentStatus.cancelled))
        assert event.status == "cancelled"

    def test_external_id_carried(self):
        assert to_external_event(_appointment(external_event_id="abc")).id == "abc"


# ---------------------------------------------------------------------------
# Inbound
# ---------------------------------------------------------------------------


class TestToAppointment:
    def test_basic_fields(self):
        appointment = to_appointment(_event(location="Cafe"), AGENT_ID)
        assert appointment.title == "Coffee with buyer"
        assert appointment.start_time == START
        assert appointment.end_time == END
        assert appointment.location == "Cafe"
        assert appointment.created_by == AGENT_ID
        assert appointment.external_event_id == "evt-1"
        assert appointment.external_calendar_id is None
        assert appointment.client_id is None

    def test_type_is_always_meeting(self):
        assert to_appointment(_event(summary="Showing"), AGENT_ID).type is AppointmentType.meeting

    @pytest.mark.parametrize(
        "status, expected",
        [
            ("cancelled", AppointmentStatus.cancelled),
            ("confirmed", AppointmentStatus.scheduled),
            ("tentative", AppointmentStatus.scheduled),
            ("completed", AppointmentStatus.scheduled),
        ],
    )
    def test_status_mapping_is_binary(self, status, expected):
        assert to_appointment(_event(status=status), AGENT_ID).status is expected

    def test_first_recurrence_entry_used_verbatim(self):
        event = _event(recurrence=["RRULE:FREQ=DAILY;COUNT=5", "EXDATE:20250311T140000Z"])
        appointment = to_appointment(event, AGENT_ID)
        assert appointment.is_recurring is True
        assert appointment.recurrence_rule == "RRULE:FREQ=DAILY;COUNT=5"
        assert appointment.recurrence_pattern().count == 5

    @pytest.mark.parametrize("recurrence", [None, [], [""], ["  "]])
    def test_not_recurring_without_rules(self, recurrence):
        appointment = to_appointment(_event(recurrence=recurrence), AGENT_ID)
        assert appointment.is_recurring is False
        assert appointment.recurrence_rule is None

    def test_blank_recurrence_entries_skipped(self):
        event = _event(recurrence=["", " RRULE:FREQ=WEEKLY;BYDAY=MO "])
        assert event.recurrence == ["RRULE:FREQ=WEEKLY;BYDAY=MO"]
        assert to_appointment(event, AGENT_ID).recurrence_rule == "RRULE:FREQ=WEEKLY;BYDAY=MO"

    def test_client_and_calendar_ids(self):
        client_id = uuid.uuid4()
        appointment = to_appointment(_event(), AGENT_ID, client_id, calendar_id="primary")
        assert appointment.client_id == client_id
        assert appointment.external_calendar_id == "primary"

    def test_type_lost_across_round_trip(self):
        original = _appointment(type=AppointmentType.showing)
        restored = to_appointment(to_external_event(original), AGENT_ID)
        assert restored.title == original.title
        assert restored.type is AppointmentType.meeting


# ---------------------------------------------------------------------------
# Provider wire format
# ---------------------------------------------------------------------------


class TestProviderBody:
    def test_camel_case_body_omits_absent_fields(self):
        body = _event().to_provider_body()
        assert body == {
            "id": "evt-1",
            "summary": "Coffee with buyer",
            "start": {"dateTime": "2025-03-10T14:00:00Z", "timeZone": "UTC"},
            "end": {"dateTime": "2025-03-10T15:00:00Z", "timeZone": "UTC"},
            "status": "confirmed",
        }

    def test_empty_attendees_survive(self):
        assert _event(attendees=[]).to_provider_body()["attendees"] == []

    def test_parse_payload(self):
        event = ExternalCalendarEvent.from_provider_payload(
            {
                "id": "g-1",
                "summary": " Listing review ",
                "start": {"dateTime": "2025-03-10T09:00:00-05:00", "timeZone": "America/Chicago"},
                "end": {"dateTime": "2025-03-10T10:00:00Z"},
                "attendees": [
                    {"email": "pat@example.com", "displayName": "Pat", "responseStatus": "accepted"},
                    {"displayName": "no email"},
                ],
                "recurrence": ["RRULE:FREQ=WEEKLY"],
                "status": "CANCELLED",
            }
        )
        assert event.summary == "Listing review"
        assert event.start.date_time == datetime(2025, 3, 10, 14, 0, tzinfo=UTC)
        assert event.start.time_zone == "America/Chicago"
        assert [a.email for a in event.attendees] == ["pat@example.com"]
        assert event.attendees[0].response_status == "accepted"
        assert event.recurrence == ["RRULE:FREQ=WEEKLY"]
        assert event.status == "cancelled"

    def test_parse_all_day_payload(self):
        event = ExternalCalendarEvent.from_provider_payload(
            {"summary": "Open house", "start": {"date": "2025-04-05"}, "end": {"date": "2025-04-06"}}
        )
        assert event.start.date_time == datetime(2025, 4, 5, tzinfo=UTC)
        assert event.attendees is None
        assert event.recurrence is None
        assert event.status == "confirmed"

    def test_parse_payload_keeps_empty_attendee_list(self):
        event = ExternalCalendarEvent.from_provider_payload(
            {
                "summary": "x",
                "start": {"dateTime": "2025-04-05T10:00:00Z"},
                "end": {"dateTime": "2025-04-05T11:00:00Z"},
                "attendees": [],
            }
        )
        assert event.attendees == []

    @pytest.mark.parametrize(
        "payload",
        [
            {"summary": "x"},
            {"summary": "x", "start": {}, "end": {"date": "2025-01-01"}},
            {"summary": "x", "start": {"dateTime": "nope"}, "end": {"date": "2025-01-01"}},
        ],
    )
    def test_invalid_payload_raises(self, payload):
        with pytest.raises(ValueError):
            ExternalCalendarEvent.from_provider_payload(payload)

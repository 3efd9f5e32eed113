"""Recurrence rule codec: RecurrencePattern <-> RRULE string.

Supports the subset of the RFC-5545 RRULE grammar used by appointments:
``FREQ``, ``INTERVAL``, ``BYMONTHDAY``, ``BYMONTH``, ``BYDAY``, ``COUNT`` and
``UNTIL``.  Encoded strings are compared literally by downstream consumers,
so the emission order is fixed::

    FREQ ; INTERVAL ; BYMONTHDAY ; BYMONTH ; BYDAY ; COUNT | UNTIL

The encoder is a formatter, not a validator: semantically odd combinations
(e.g. ``BYMONTHDAY`` on a ``WEEKLY`` rule) are emitted as given.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Mapping
from datetime import UTC, datetime
from enum import StrEnum

from dateutil.rrule import rrulestr
from pydantic import BaseModel, ConfigDict, Field, ValidationInfo, field_validator

from stagewatch.errors import MalformedRuleError

logger = logging.getLogger(__name__)

RRULE_PROPERTY_PREFIX = "RRULE:"
UNTIL_FORMAT = "%Y%m%dT%H%M%SZ"
_UNTIL_DATE_ONLY_FORMAT = "%Y%m%d"
_UNTIL_PATTERN = re.compile(r"^\d{8}(T\d{6}Z)?$")
_UNSIGNED_INT_PATTERN = re.compile(r"^[0-9]+$")

# 0 = Monday, matching datetime.weekday().
WEEKDAY_CODES: tuple[str, ...] = ("MO", "TU", "WE", "TH", "FR", "SA", "SU")
_WEEKDAY_BY_CODE: dict[str, int] = {code: index for index, code in enumerate(WEEKDAY_CODES)}

_SET_FIELD_BOUNDS: dict[str, tuple[int, int]] = {
    "by_weekday": (0, 6),
    "by_month_day": (1, 31),
    "by_month": (1, 12),
}


class Frequency(StrEnum):
    """Recurrence frequency (RRULE ``FREQ``)."""

    DAILY = "DAILY"
    WEEKLY = "WEEKLY"
    MONTHLY = "MONTHLY"
    YEARLY = "YEARLY"


class RecurrencePattern(BaseModel):
    """Structured recurring-appointment pattern.

    Immutable once constructed.  Optional fields that are absent stay ``None``
    (empty collections are normalized to ``None``) so that absence survives a
    decode/encode round trip.  ``interval`` defaults to 1, which the encoder
    omits.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    frequency: Frequency
    interval: int = Field(default=1, ge=1)
    by_weekday: frozenset[int] | None = None
    by_month_day: frozenset[int] | None = None
    by_month: frozenset[int] | None = None
    count: int | None = Field(default=None, ge=1)
    until: datetime | None = None

    @field_validator("by_weekday", "by_month_day", "by_month")
    @classmethod
    def _validate_set_bounds(
        cls, value: frozenset[int] | None, info: ValidationInfo
    ) -> frozenset[int] | None:
        if not value:
            return None
        low, high = _SET_FIELD_BOUNDS[info.field_name]
        out_of_range = sorted(v for v in value if v < low or v > high)
        if out_of_range:
            raise ValueError(f"{info.field_name} values must be within {low}-{high}: {out_of_range}")
        return value

    @field_validator("until")
    @classmethod
    def _normalize_until(cls, value: datetime | None) -> datetime | None:
        # UNTIL is serialized with second precision in UTC.
        if value is None:
            return None
        return as_utc(value).replace(microsecond=0)


def as_utc(value: datetime) -> datetime:
    """Return *value* as an aware UTC datetime; naive values are taken as UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


def format_until(value: datetime) -> str:
    """Format a timestamp as compact basic ISO-8601 UTC (``YYYYMMDDThhmmssZ``)."""
    value = as_utc(value)
    # %Y is not zero-padded below year 1000 on every platform.
    return f"{value.year:04d}{value:%m%dT%H%M%SZ}"


def _join_ints(values: frozenset[int]) -> str:
    return ",".join(str(v) for v in sorted(values))


def encode_rrule(pattern: RecurrencePattern) -> str:
    """Encode *pattern* as an RRULE string (without the ``RRULE:`` prefix).

    >>> encode_rrule(RecurrencePattern(frequency="WEEKLY", by_weekday=[0, 2, 4]))
    'FREQ=WEEKLY;BYDAY=MO,WE,FR'
    """
    parts = [f"FREQ={pattern.frequency}"]

    if pattern.interval > 1:
        parts.append(f"INTERVAL={pattern.interval}")

    if pattern.by_month_day:
        parts.append(f"BYMONTHDAY={_join_ints(pattern.by_month_day)}")

    if pattern.by_month:
        parts.append(f"BYMONTH={_join_ints(pattern.by_month)}")

    if pattern.by_weekday:
        days = ",".join(WEEKDAY_CODES[day] for day in sorted(pattern.by_weekday))
        parts.append(f"BYDAY={days}")

    if pattern.count is not None:
        parts.append(f"COUNT={pattern.count}")
    elif pattern.until is not None:
        parts.append(f"UNTIL={format_until(pattern.until)}")

    return ";".join(parts)


def _split_rule(rule: str) -> dict[str, str]:
    components: dict[str, str] = {}
    for segment in rule.split(";"):
        if not segment:
            continue
        key, sep, value = segment.partition("=")
        if not sep:
            raise MalformedRuleError(f"RRULE segment is missing '=': {segment!r}")
        components[key.strip().upper()] = value.strip()
    return components


def _parse_positive_int(key: str, raw: str) -> int:
    if not _UNSIGNED_INT_PATTERN.fullmatch(raw):
        raise MalformedRuleError(f"{key} must be a positive integer, got {raw!r}")
    value = int(raw)
    if value <= 0:
        raise MalformedRuleError(f"{key} must be a positive integer, got {raw!r}")
    return value


def _parse_int_list(key: str, raw: str, low: int, high: int) -> frozenset[int]:
    values: set[int] = set()
    for token in raw.split(","):
        token = token.strip()
        if not _UNSIGNED_INT_PATTERN.fullmatch(token):
            raise MalformedRuleError(f"{key} contains a non-integer value: {token!r}")
        value = int(token)
        if value < low or value > high:
            raise MalformedRuleError(f"{key} value {value} is outside {low}-{high}")
        values.add(value)
    return frozenset(values)


def _parse_weekdays(raw: str) -> frozenset[int]:
    days: set[int] = set()
    for token in raw.split(","):
        code = token.strip().upper()
        if code not in _WEEKDAY_BY_CODE:
            raise MalformedRuleError(f"BYDAY contains an unknown weekday: {token!r}")
        days.add(_WEEKDAY_BY_CODE[code])
    return frozenset(days)


def parse_until(raw: str) -> datetime:
    """Parse a compact basic ISO-8601 UTC timestamp (or bare ``YYYYMMDD`` date)."""
    if not _UNTIL_PATTERN.fullmatch(raw):
        raise MalformedRuleError(f"UNTIL must be formatted as YYYYMMDDThhmmssZ, got {raw!r}")
    fmt = UNTIL_FORMAT if "T" in raw else _UNTIL_DATE_ONLY_FORMAT
    try:
        parsed = datetime.strptime(raw, fmt)
    except ValueError as exc:
        raise MalformedRuleError(f"UNTIL is not a valid timestamp: {raw!r}") from exc
    return parsed.replace(tzinfo=UTC)


def decode_rrule(rule: str) -> RecurrencePattern:
    """Decode an RRULE string into a :class:`RecurrencePattern`.

    Unrecognized keys are ignored.  A leading ``RRULE:`` property prefix, as
    found in calendar provider ``recurrence`` lists, is tolerated.

    Raises
    ------
    MalformedRuleError
        If ``FREQ`` is missing or any recognized component is invalid.
    """
    if not isinstance(rule, str):
        raise MalformedRuleError(f"RRULE must be a string, got {type(rule).__name__}")

    body = rule.strip()
    if body.upper().startswith(RRULE_PROPERTY_PREFIX):
        body = body[len(RRULE_PROPERTY_PREFIX) :]

    components = _split_rule(body)

    raw_freq = components.get("FREQ")
    if not raw_freq:
        raise MalformedRuleError(f"RRULE is missing FREQ: {rule!r}")
    try:
        frequency = Frequency(raw_freq.upper())
    except ValueError as exc:
        raise MalformedRuleError(f"Unsupported FREQ value: {raw_freq!r}") from exc

    fields: dict[str, object] = {"frequency": frequency}
    if "INTERVAL" in components:
        fields["interval"] = _parse_positive_int("INTERVAL", components["INTERVAL"])
    if "BYMONTHDAY" in components:
        fields["by_month_day"] = _parse_int_list("BYMONTHDAY", components["BYMONTHDAY"], 1, 31)
    if "BYMONTH" in components:
        fields["by_month"] = _parse_int_list("BYMONTH", components["BYMONTH"], 1, 12)
    if "BYDAY" in components:
        fields["by_weekday"] = _parse_weekdays(components["BYDAY"])
    if "COUNT" in components:
        fields["count"] = _parse_positive_int("COUNT", components["COUNT"])
    if "UNTIL" in components:
        fields["until"] = parse_until(components["UNTIL"])

    return RecurrencePattern(**fields)


def pattern_to_dict(pattern: RecurrencePattern) -> Mapping[str, object]:
    """Return a JSON-friendly view of *pattern* (sorted lists, ISO ``until``)."""
    return {
        "frequency": str(pattern.frequency),
        "interval": pattern.interval,
        "by_weekday": sorted(pattern.by_weekday) if pattern.by_weekday else None,
        "by_month_day": sorted(pattern.by_month_day) if pattern.by_month_day else None,
        "by_month": sorted(pattern.by_month) if pattern.by_month else None,
        "count": pattern.count,
        "until": pattern.until.isoformat().replace("+00:00", "Z") if pattern.until else None,
    }


def expand_occurrences(
    pattern: RecurrencePattern,
    dtstart: datetime,
    *,
    window_end: datetime | None = None,
    limit: int = 250,
) -> list[datetime]:
    """Expand *pattern* into concrete occurrence start times.

    Naive ``dtstart``/``window_end`` values are taken as UTC.  Expansion stops
    at the rule's own COUNT/UNTIL, at ``window_end`` (inclusive), or after
    ``limit`` occurrences, whichever comes first.
    """
    if limit <= 0:
        return []
    start = as_utc(dtstart)
    end = as_utc(window_end) if window_end is not None else None

    rule = rrulestr(encode_rrule(pattern), dtstart=start)
    occurrences: list[datetime] = []
    for occurrence in rule:
        if end is not None and occurrence > end:
            break
        occurrences.append(occurrence)
        if len(occurrences) >= limit:
            logger.debug("Occurrence expansion truncated at %d for %s", limit, pattern.frequency)
            break
    return occurrences

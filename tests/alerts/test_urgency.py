"""Tests for deadline urgency classification."""

from __future__ import annotations

from datetime import UTC, datetime, timedelta

import pytest

from stagewatch.alerts.urgency import UrgencyTier, classify, hours_until, notification_kind

pytestmark = pytest.mark.unit

NOW = datetime(2025, 6, 1, 12, 0, tzinfo=UTC)


@pytest.mark.parametrize(
    "offset, expected",
    [
        (timedelta(days=-3), UrgencyTier.CRITICAL),
        (timedelta(0), UrgencyTier.CRITICAL),
        (timedelta(hours=2, minutes=59, seconds=59), UrgencyTier.CRITICAL),
        (timedelta(hours=3), UrgencyTier.HIGH),
        (timedelta(hours=5, minutes=59), UrgencyTier.HIGH),
        (timedelta(hours=6), UrgencyTier.MEDIUM),
        (timedelta(hours=23, minutes=59, seconds=59), UrgencyTier.MEDIUM),
        (timedelta(hours=24), UrgencyTier.NORMAL),
        (timedelta(days=30), UrgencyTier.NORMAL),
    ],
)
def test_classify_boundaries(offset, expected):
    assert classify(NOW + offset, NOW) is expected


def test_hours_until_is_signed():
    assert hours_until(NOW + timedelta(minutes=90), NOW) == 1.5
    assert hours_until(NOW - timedelta(hours=2), NOW) == -2.0


def test_classify_is_deterministic():
    deadline = NOW + timedelta(hours=4)
    assert {classify(deadline, NOW) for _ in range(5)} == {UrgencyTier.HIGH}


@pytest.mark.parametrize(
    "tier, kind",
    [
        (UrgencyTier.CRITICAL, "error"),
        (UrgencyTier.HIGH, "error"),
        (UrgencyTier.MEDIUM, "warning"),
        (UrgencyTier.NORMAL, "info"),
    ],
)
def test_notification_kind(tier, kind):
    assert notification_kind(tier) == kind

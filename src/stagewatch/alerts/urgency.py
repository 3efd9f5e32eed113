"""Deadline urgency classification."""

from __future__ import annotations

from datetime import datetime
from enum import StrEnum

CRITICAL_WITHIN_HOURS = 3
HIGH_WITHIN_HOURS = 6
MEDIUM_WITHIN_HOURS = 24


class UrgencyTier(StrEnum):
    """How soon a deadline falls.  Derived, never stored."""

    CRITICAL = "critical"
    HIGH = "high"
    MEDIUM = "medium"
    NORMAL = "normal"


def hours_until(deadline: datetime, now: datetime) -> float:
    """Signed hours from *now* to *deadline*; negative once the deadline has passed."""
    return (deadline - now).total_seconds() / 3600


def classify(deadline: datetime, now: datetime) -> UrgencyTier:
    """Classify *deadline* relative to *now*.

    Overdue and imminent deadlines share the CRITICAL tier.  Lower bounds are
    inclusive: exactly 3h is HIGH, exactly 6h is MEDIUM, exactly 24h is NORMAL.
    """
    hours = hours_until(deadline, now)
    if hours < CRITICAL_WITHIN_HOURS:
        return UrgencyTier.CRITICAL
    if hours < HIGH_WITHIN_HOURS:
        return UrgencyTier.HIGH
    if hours < MEDIUM_WITHIN_HOURS:
        return UrgencyTier.MEDIUM
    return UrgencyTier.NORMAL


_NOTIFICATION_KIND: dict[UrgencyTier, str] = {
    UrgencyTier.CRITICAL: "error",
    UrgencyTier.HIGH: "error",
    UrgencyTier.MEDIUM: "warning",
    UrgencyTier.NORMAL: "info",
}


def notification_kind(tier: UrgencyTier) -> str:
    """Map a tier onto the in-app notification severity (``error``/``warning``/``info``)."""
    return _NOTIFICATION_KIND[tier]

"""Error hierarchy for stagewatch.

Collaborator failures (asyncpg, httpx) are wrapped into these types at the
store/transport boundary so callers only need to know about stagewatch
errors.
"""

from __future__ import annotations


class StagewatchError(Exception):
    """Base class for all stagewatch errors."""


class MalformedRuleError(StagewatchError, ValueError):
    """Raised when an RRULE string violates the supported grammar."""


class StoreError(StagewatchError):
    """Base error raised by stage-deadline store implementations."""


class StoreReadError(StoreError):
    """Raised when due deadlines cannot be fetched; aborts the whole scan cycle."""


class StoreWriteError(StoreError):
    """Raised when a single deadline row cannot be updated."""


class DispatchError(StagewatchError):
    """Raised when a notification cannot be dispatched."""


class InvalidNotificationError(DispatchError):
    """Raised when a notification has no usable recipient identity for any channel."""

"""Stage-deadline records and scan-cycle reporting models."""

from __future__ import annotations

import uuid
from datetime import datetime
from enum import StrEnum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class PipelineStage(StrEnum):
    """Pipeline phase of a client relationship."""

    lead = "Lead"
    prospect = "Prospect"
    client = "Client"
    closed = "Closed"


class AgentContact(BaseModel):
    """The agent assigned to a client; addressee of deadline alerts."""

    model_config = ConfigDict(extra="ignore")

    id: uuid.UUID | str
    name: str | None = None
    email: str | None = None
    phone: str | None = None


class DeadlineClient(BaseModel):
    """Client fields joined onto a deadline row."""

    model_config = ConfigDict(extra="ignore")

    id: uuid.UUID | str
    name: str
    assigned_agent: AgentContact | None = None


class StageDeadline(BaseModel):
    """A pipeline-stage obligation.

    Only the deadline scanner sets ``alert_sent``/``alert_sent_at``; a user
    edit of ``deadline`` resets ``alert_sent`` to false.
    """

    model_config = ConfigDict(extra="ignore")

    id: uuid.UUID | str
    client_id: uuid.UUID | str
    stage: PipelineStage
    deadline: datetime
    alert_sent: bool = False
    alert_sent_at: datetime | None = None
    created_by: uuid.UUID | str | None = None
    client: DeadlineClient | None = None


class RecordFailure(BaseModel):
    """One isolated per-record failure inside a scan cycle."""

    deadline_id: str
    stage: str
    reason: str


class CycleReport(BaseModel):
    """Outcome of one deadline scan cycle.

    ``processed`` counts records whose alerted flag was written by this
    cycle, ``notified`` counts notifications delivered on at least one
    channel, and ``errors`` counts failed dispatches plus failed flag writes.
    """

    started_at: datetime
    processed: int = 0
    notified: int = 0
    errors: int = 0
    channels_queued: int = 0
    skipped_no_agent: int = 0
    failures: list[RecordFailure] = Field(default_factory=list)

    def audit_summary(self) -> dict[str, Any]:
        """Payload for the per-cycle audit entry."""
        return {
            "deadlines_processed": self.processed,
            "notifications_created": self.notified,
            "channels_queued": self.channels_queued,
            "errors": self.errors,
        }


class AuditEntry(BaseModel):
    """System activity written once per scan cycle."""

    type: str = "system_deadline_check"
    title: str = "Deadline alerts processed"
    description: str
    metadata: dict[str, Any] = Field(default_factory=dict)

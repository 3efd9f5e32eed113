"""Stage-deadline store: the sole writer of persisted deadline state.

The scanner depends only on the :class:`DeadlineStore` protocol.
:class:`PostgresDeadlineStore` implements it over an asyncpg pool against
the CRM tables ``client_stage_deadlines``, ``clients``, ``profiles``,
``notification_preferences`` and ``activities``.
"""

from __future__ import annotations

import json
import logging
import uuid
from collections.abc import Mapping
from datetime import datetime
from typing import Any, Protocol

import asyncpg

from stagewatch.alerts.models import AgentContact, AuditEntry, DeadlineClient, StageDeadline
from stagewatch.errors import StoreReadError, StoreWriteError

logger = logging.getLogger(__name__)

_DB_ERRORS = (asyncpg.PostgresError, asyncpg.InterfaceError, OSError)


class DeadlineStore(Protocol):
    """Filtered-query store consumed by the deadline scanner."""

    async def find_due_soon(
        self, window_start: datetime, window_end: datetime
    ) -> list[StageDeadline]:
        """Return un-alerted deadlines with ``window_start <= deadline <= window_end``."""
        ...

    async def mark_alerted(self, deadline_id: uuid.UUID | str, at: datetime) -> bool:
        """Atomically claim a deadline for alerting.

        Returns ``True`` if this call flipped ``alert_sent`` from false to
        true, ``False`` if the row was already alerted (or is gone).
        """
        ...

    async def append_audit(self, entry: AuditEntry) -> None: ...


def _row_to_deadline(row: Mapping[str, Any]) -> StageDeadline:
    agent = None
    if row["assigned_agent"] is not None:
        agent = AgentContact(
            id=row["assigned_agent"],
            name=row["agent_name"],
            email=row["agent_email"],
            phone=row["agent_phone"],
        )
    client = None
    if row["client_name"] is not None:
        client = DeadlineClient(id=row["client_id"], name=row["client_name"], assigned_agent=agent)
    return StageDeadline(
        id=row["id"],
        client_id=row["client_id"],
        stage=row["stage"],
        deadline=row["deadline"],
        alert_sent=row["alert_sent"],
        alert_sent_at=row["alert_sent_at"],
        created_by=row["created_by"],
        client=client,
    )


class PostgresDeadlineStore:
    """asyncpg-backed :class:`DeadlineStore`."""

    def __init__(self, pool: asyncpg.Pool) -> None:
        self._pool = pool

    async def find_due_soon(
        self, window_start: datetime, window_end: datetime
    ) -> list[StageDeadline]:
        try:
            rows = await self._pool.fetch(
                """
                SELECT d.id, d.client_id, d.stage, d.deadline, d.alert_sent,
                       d.alert_sent_at, d.created_by,
                       c.name AS client_name, c.assigned_agent,
                       p.name AS agent_name, p.email AS agent_email,
                       np.phone_number AS agent_phone
                FROM client_stage_deadlines d
                LEFT JOIN clients c ON c.id = d.client_id
                LEFT JOIN profiles p ON p.id = c.assigned_agent
                LEFT JOIN notification_preferences np ON np.user_id = c.assigned_agent
                WHERE d.alert_sent = false
                  AND d.deadline >= $1
                  AND d.deadline <= $2
                ORDER BY d.deadline
                """,
                window_start,
                window_end,
            )
        except _DB_ERRORS as exc:
            raise StoreReadError(f"Failed to fetch due deadlines: {exc}") from exc
        return [_row_to_deadline(row) for row in rows]

    async def mark_alerted(self, deadline_id: uuid.UUID | str, at: datetime) -> bool:
        try:
            claimed = await self._pool.fetchval(
                """
                UPDATE client_stage_deadlines
                SET alert_sent = true, alert_sent_at = $2
                WHERE id = $1 AND alert_sent = false
                RETURNING id
                """,
                deadline_id,
                at,
            )
        except _DB_ERRORS as exc:
            raise StoreWriteError(f"Failed to mark deadline {deadline_id} alerted: {exc}") from exc
        return claimed is not None

    async def append_audit(self, entry: AuditEntry) -> None:
        try:
            await self._pool.execute(
                """
                INSERT INTO activities
                    (type, title, description, user_id, entity_type, entity_id, metadata)
                VALUES ($1, $2, $3, NULL, 'system', NULL, $4::jsonb)
                """,
                entry.type,
                entry.title,
                entry.description,
                json.dumps(entry.metadata, default=str),
            )
        except _DB_ERRORS as exc:
            raise StoreWriteError(f"Failed to append audit entry: {exc}") from exc

    async def update_deadline(self, deadline_id: uuid.UUID | str, deadline: datetime) -> None:
        """Move a deadline (user edit); re-arms alerting by resetting ``alert_sent``.

        Raises
        ------
        ValueError
            If ``deadline_id`` is not found.
        """
        try:
            updated = await self._pool.fetchval(
                """
                UPDATE client_stage_deadlines
                SET deadline = $2, alert_sent = false, alert_sent_at = NULL
                WHERE id = $1
                RETURNING id
                """,
                deadline_id,
                deadline,
            )
        except _DB_ERRORS as exc:
            raise StoreWriteError(f"Failed to update deadline {deadline_id}: {exc}") from exc
        if updated is None:
            raise ValueError(f"Deadline {deadline_id} not found")
        logger.info("Updated deadline %s; alerting re-armed", deadline_id)

"""Deadline scanner: one polling cycle of stage-deadline alerting.

An external trigger (cron running ``stagewatch scan``) calls
:meth:`DeadlineScanner.run_cycle`.  Each cycle:

1. Fetches un-alerted deadlines due within the lookahead window.  A fetch
   failure aborts the cycle with :class:`StoreReadError`; nothing has been
   touched at that point.
2. Per record, isolated from its siblings: classifies urgency, builds a
   notification for the client's assigned agent (skipped when there is no
   agent), claims the record by marking it alerted, and only then
   dispatches on the tier's channels the agent has an address for.  Any
   unexpected error is recorded as that record's failure.  A crash between
   claim and delivery drops the alert rather than duplicating it on the next
   cycle.
3. Writes one best-effort audit entry summarising the cycle.

The scanner never retries; the external trigger owns retry policy.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta

from opentelemetry import trace

from stagewatch.alerts.models import AuditEntry, CycleReport, RecordFailure, StageDeadline
from stagewatch.alerts.store import DeadlineStore
from stagewatch.alerts.urgency import UrgencyTier, classify, hours_until
from stagewatch.errors import StoreReadError, StoreWriteError
from stagewatch.notifications.dispatcher import NotificationDispatcher, missing_identity
from stagewatch.notifications.models import Channel, Notification, Recipient

logger = logging.getLogger(__name__)

DEFAULT_LOOKAHEAD = timedelta(hours=24)

DEFAULT_TIER_CHANNELS: dict[UrgencyTier, tuple[Channel, ...]] = {
    UrgencyTier.CRITICAL: (Channel.in_app, Channel.email, Channel.sms),
    UrgencyTier.HIGH: (Channel.in_app, Channel.email, Channel.sms),
    UrgencyTier.MEDIUM: (Channel.in_app, Channel.email),
    UrgencyTier.NORMAL: (Channel.in_app,),
}


@dataclass
class _RecordOutcome:
    claimed: bool = False
    notified: bool = False
    channels_queued: int = 0
    skipped_no_agent: bool = False
    failure: RecordFailure | None = None


def build_deadline_notification(
    record: StageDeadline,
    tier: UrgencyTier,
    now: datetime,
    *,
    base_url: str | None = None,
) -> Notification | None:
    """Build the alert for *record*'s assigned agent, or ``None`` if there is none."""
    client = record.client
    if client is None or client.assigned_agent is None:
        return None
    agent = client.assigned_agent

    hours = round(hours_until(record.deadline, now))
    when = record.deadline.astimezone(UTC).strftime("%Y-%m-%d at %H:%M UTC")
    path = f"/clients/{client.id}"
    action_url = f"{base_url.rstrip('/')}{path}" if base_url else path

    return Notification(
        title=f"{record.stage} Stage Deadline Approaching",
        message=(
            f'Client "{client.name}" has a {record.stage} stage deadline '
            f"in {hours} hours ({when})"
        ),
        urgency=tier,
        recipient=Recipient(
            user_id=agent.id,
            name=agent.name,
            email=agent.email,
            phone=agent.phone,
        ),
        action_url=action_url,
        metadata={
            "deadline_id": str(record.id),
            "client_id": str(client.id),
            "stage": str(record.stage),
            "urgency": str(tier),
            "hours_until": hours,
        },
    )


class DeadlineScanner:
    """Runs deadline scan cycles against a store and a dispatcher.

    Holds no state between cycles.  ``max_concurrency`` bounds how many
    records are processed at once; the default of 1 processes them in
    deadline order.
    """

    def __init__(
        self,
        store: DeadlineStore,
        dispatcher: NotificationDispatcher,
        *,
        lookahead: timedelta = DEFAULT_LOOKAHEAD,
        tier_channels: Mapping[UrgencyTier, Sequence[Channel]] | None = None,
        base_url: str | None = None,
        max_concurrency: int = 1,
    ) -> None:
        if lookahead <= timedelta(0):
            raise ValueError("lookahead must be positive")
        if max_concurrency < 1:
            raise ValueError("max_concurrency must be at least 1")
        self._store = store
        self._dispatcher = dispatcher
        self._lookahead = lookahead
        self._tier_channels = dict(DEFAULT_TIER_CHANNELS)
        if tier_channels:
            self._tier_channels.update({tier: tuple(ch) for tier, ch in tier_channels.items()})
        self._base_url = base_url
        self._max_concurrency = max_concurrency

    async def run_cycle(self, now: datetime | None = None) -> CycleReport:
        """Run one scan cycle and return its report.

        Raises
        ------
        StoreReadError
            If due deadlines cannot be fetched.  No record has been touched.
        """
        now = now or datetime.now(UTC)
        tracer = trace.get_tracer("stagewatch")
        with tracer.start_as_current_span("stagewatch.scan_cycle") as span:
            window_end = now + self._lookahead
            try:
                records = await self._store.find_due_soon(now, window_end)
            except StoreReadError:
                logger.exception("Deadline scan aborted: could not fetch due deadlines")
                span.set_status(trace.StatusCode.ERROR, "store read failed")
                raise

            span.set_attribute("deadlines_due", len(records))
            logger.info(
                "Checking %d deadline(s) due between %s and %s",
                len(records),
                now.isoformat(),
                window_end.isoformat(),
            )

            semaphore = asyncio.Semaphore(self._max_concurrency)

            async def _bounded(record: StageDeadline) -> _RecordOutcome:
                async with semaphore:
                    try:
                        return await self._process_record(record, now)
                    except Exception as exc:
                        logger.exception("Unexpected error processing deadline %s", record.id)
                        return _RecordOutcome(
                            failure=self._failure(record, f"unexpected error: {exc}")
                        )

            outcomes = await asyncio.gather(*(_bounded(record) for record in records))

            report = CycleReport(started_at=now)
            for outcome in outcomes:
                report.processed += int(outcome.claimed)
                report.notified += int(outcome.notified)
                report.channels_queued += outcome.channels_queued
                report.skipped_no_agent += int(outcome.skipped_no_agent)
                if outcome.failure is not None:
                    report.errors += 1
                    report.failures.append(outcome.failure)

            await self._write_audit(report)

            span.set_attribute("deadlines_processed", report.processed)
            span.set_attribute("notifications_sent", report.notified)
            span.set_attribute("errors", report.errors)
            logger.info(
                "Deadline scan complete: processed=%d notified=%d channels=%d errors=%d",
                report.processed,
                report.notified,
                report.channels_queued,
                report.errors,
            )
            return report

    async def _process_record(self, record: StageDeadline, now: datetime) -> _RecordOutcome:
        outcome = _RecordOutcome()
        tier = classify(record.deadline, now)

        notification: Notification | None = None
        build_error: str | None = None
        try:
            notification = build_deadline_notification(
                record, tier, now, base_url=self._base_url
            )
        except Exception as exc:
            logger.exception("Failed to build notification for deadline %s", record.id)
            build_error = f"notification construction failed: {exc}"

        # Claim before dispatch: a lost claim or failed write means no send.
        try:
            outcome.claimed = await self._store.mark_alerted(record.id, now)
        except StoreWriteError as exc:
            logger.error("Could not mark deadline %s alerted: %s", record.id, exc)
            outcome.failure = self._failure(record, str(exc))
            return outcome

        if not outcome.claimed:
            logger.info("Deadline %s was already alerted; skipping dispatch", record.id)
            return outcome

        if build_error is not None:
            outcome.failure = self._failure(record, build_error)
            return outcome

        if notification is None:
            logger.debug("Deadline %s has no assigned agent; no notification sent", record.id)
            outcome.skipped_no_agent = True
            return outcome

        requested = self._tier_channels.get(tier, ())
        # Channels the agent has no address for are not attempted.
        channels = [ch for ch in requested if missing_identity(ch, notification) is None]
        if len(channels) < len(requested):
            logger.debug(
                "Deadline %s: agent unreachable on %s",
                record.id,
                ", ".join(str(ch) for ch in requested if ch not in channels),
            )
        if not channels:
            logger.info("Deadline %s: agent has no address for any %s channel", record.id, tier)
            return outcome

        try:
            result = await self._dispatcher.dispatch(notification, channels)
        except Exception as exc:
            logger.warning("Dispatch failed for deadline %s", record.id, exc_info=True)
            outcome.failure = self._failure(record, f"dispatch failed: {exc}")
            return outcome

        outcome.notified = bool(result.sent)
        outcome.channels_queued = len(result.sent)
        if result.failed:
            reasons = "; ".join(f"{f.channel}: {f.reason}" for f in result.failed)
            outcome.failure = self._failure(record, reasons)
        return outcome

    @staticmethod
    def _failure(record: StageDeadline, reason: str) -> RecordFailure:
        return RecordFailure(deadline_id=str(record.id), stage=str(record.stage), reason=reason)

    async def _write_audit(self, report: CycleReport) -> None:
        """Best-effort audit write: failures are logged and swallowed, never retried."""
        entry = AuditEntry(
            description=(
                f"Processed {report.processed} upcoming deadlines, "
                f"created {report.notified} notifications"
            ),
            metadata=report.audit_summary(),
        )
        try:
            await self._store.append_audit(entry)
        except Exception:
            logger.warning("Failed to write deadline scan audit entry", exc_info=True)

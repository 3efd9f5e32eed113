"""CLI for stagewatch: run a deadline scan cycle and work with RRULE strings."""

from __future__ import annotations

import asyncio
import json
import logging
import sys
from datetime import datetime, timedelta
from pathlib import Path

import asyncpg
import click
import httpx
from pydantic import ValidationError

from stagewatch import __version__
from stagewatch.alerts.models import CycleReport
from stagewatch.alerts.scanner import DeadlineScanner
from stagewatch.alerts.store import PostgresDeadlineStore
from stagewatch.config import CONFIG_FILENAME, ConfigError, StagewatchConfig, load_config
from stagewatch.core.logging import configure_logging
from stagewatch.db import Database
from stagewatch.errors import MalformedRuleError, StoreReadError
from stagewatch.notifications.dispatcher import NotificationDispatcher, NotificationTransport
from stagewatch.notifications.models import Channel
from stagewatch.notifications.transports import (
    InAppTransport,
    LogOnlyTransport,
    ResendEmailTransport,
    TwilioSmsTransport,
)
from stagewatch.scheduling.recurrence import (
    WEEKDAY_CODES,
    Frequency,
    RecurrencePattern,
    as_utc,
    decode_rrule,
    encode_rrule,
    expand_occurrences,
    pattern_to_dict,
)

logger = logging.getLogger(__name__)

_DATETIME_FORMATS = ["%Y-%m-%d", "%Y-%m-%dT%H:%M:%S", "%Y-%m-%dT%H:%M"]


def _load(config_path: Path | None) -> StagewatchConfig:
    """Load *config_path*, or ``./stagewatch.toml`` when present, else defaults."""
    if config_path is None:
        default = Path(CONFIG_FILENAME)
        if not default.exists():
            return StagewatchConfig()
        config_path = default
    try:
        return load_config(config_path)
    except ConfigError as exc:
        raise click.ClickException(str(exc)) from exc


def build_transports(
    config: StagewatchConfig,
    pool: asyncpg.Pool,
    client: httpx.AsyncClient,
) -> dict[Channel, NotificationTransport]:
    """Wire one transport per channel; unconfigured providers fall back to logging."""
    transports: dict[Channel, NotificationTransport] = {Channel.in_app: InAppTransport(pool)}

    if config.email.api_key:
        transports[Channel.email] = ResendEmailTransport(
            client,
            api_key=config.email.api_key,
            from_address=config.email.from_address,
            api_url=config.email.api_url,
        )
    else:
        logger.info("No email API key configured; email notifications will only be logged")
        transports[Channel.email] = LogOnlyTransport(Channel.email)

    if config.sms.configured:
        transports[Channel.sms] = TwilioSmsTransport(
            client,
            account_sid=config.sms.account_sid or "",
            auth_token=config.sms.auth_token or "",
            from_number=config.sms.from_number or "",
            api_base_url=config.sms.api_url,
        )
    else:
        logger.info("No SMS credentials configured; SMS notifications will only be logged")
        transports[Channel.sms] = LogOnlyTransport(Channel.sms)

    return transports


async def run_scan(config: StagewatchConfig, now: datetime | None = None) -> CycleReport:
    """Connect, run one scan cycle, and tear everything down again."""
    database = Database.from_config(config.database)
    pool = await database.connect()
    try:
        async with httpx.AsyncClient(timeout=config.http_timeout_s) as client:
            scanner = DeadlineScanner(
                PostgresDeadlineStore(pool),
                NotificationDispatcher(build_transports(config, pool, client)),
                lookahead=timedelta(hours=config.scanner.lookahead_hours),
                tier_channels=config.scanner.tier_channels,
                base_url=config.base_url,
                max_concurrency=config.scanner.max_concurrency,
            )
            return await scanner.run_cycle(now)
    finally:
        await database.close()


@click.group()
@click.version_option(version=__version__)
def cli() -> None:
    """stagewatch: pipeline stage-deadline alerts and appointment recurrence tools."""


@cli.command()
@click.option(
    "--config",
    "config_path",
    type=click.Path(exists=True, path_type=Path),
    default=None,
    help=f"Path to {CONFIG_FILENAME} (or its directory)",
)
@click.option(
    "--lookahead-hours",
    type=click.FloatRange(min=0, min_open=True),
    default=None,
    help="Override scanner.lookahead_hours",
)
@click.option(
    "--now",
    type=click.DateTime(formats=_DATETIME_FORMATS),
    default=None,
    help="Evaluate the cycle as of this UTC time instead of the wall clock",
)
def scan(config_path: Path | None, lookahead_hours: float | None, now: datetime | None) -> None:
    """Run one deadline scan cycle and print its report as JSON."""
    config = _load(config_path)
    configure_logging(
        level=config.logging.level,
        fmt=config.logging.format,
        log_root=config.logging.log_root,
        job_name="scan",
    )
    if lookahead_hours is not None:
        config.scanner.lookahead_hours = lookahead_hours

    try:
        report = asyncio.run(run_scan(config, as_utc(now) if now else None))
    except StoreReadError as exc:
        click.echo(f"Deadline scan aborted: {exc}", err=True)
        sys.exit(1)
    except (OSError, asyncpg.PostgresError) as exc:
        click.echo(f"Could not connect to the database: {exc}", err=True)
        sys.exit(1)

    click.echo(report.model_dump_json(indent=2))


# ---------------------------------------------------------------------------
# rrule
# ---------------------------------------------------------------------------


def _weekday_indexes(codes: tuple[str, ...]) -> list[int]:
    return [WEEKDAY_CODES.index(code.upper()) for code in codes]


@cli.group()
def rrule() -> None:
    """Encode and decode appointment recurrence rules."""


@rrule.command("encode")
@click.option(
    "--freq",
    "frequency",
    required=True,
    type=click.Choice([f.value for f in Frequency], case_sensitive=False),
)
@click.option("--interval", type=int, default=1, show_default=True)
@click.option(
    "--by-weekday",
    multiple=True,
    type=click.Choice(list(WEEKDAY_CODES), case_sensitive=False),
    help="Weekday code (repeatable)",
)
@click.option("--by-month-day", multiple=True, type=int, help="Day of month (repeatable)")
@click.option("--by-month", multiple=True, type=int, help="Month number (repeatable)")
@click.option("--count", type=int, default=None)
@click.option("--until", type=click.DateTime(formats=_DATETIME_FORMATS), default=None)
def rrule_encode(
    frequency: str,
    interval: int,
    by_weekday: tuple[str, ...],
    by_month_day: tuple[int, ...],
    by_month: tuple[int, ...],
    count: int | None,
    until: datetime | None,
) -> None:
    """Print the RRULE string for a recurrence pattern."""
    try:
        pattern = RecurrencePattern(
            frequency=frequency.upper(),
            interval=interval,
            by_weekday=_weekday_indexes(by_weekday),
            by_month_day=list(by_month_day),
            by_month=list(by_month),
            count=count,
            until=until,
        )
    except ValidationError as exc:
        raise click.ClickException(f"Invalid recurrence pattern: {exc}") from exc
    click.echo(encode_rrule(pattern))


@rrule.command("decode")
@click.argument("rule")
@click.option(
    "--expand-from",
    type=click.DateTime(formats=_DATETIME_FORMATS),
    default=None,
    help="Also list occurrences starting at this UTC time",
)
@click.option("--limit", type=click.IntRange(min=1), default=10, show_default=True)
def rrule_decode(rule: str, expand_from: datetime | None, limit: int) -> None:
    """Print a recurrence rule as JSON."""
    try:
        pattern = decode_rrule(rule)
    except MalformedRuleError as exc:
        raise click.ClickException(str(exc)) from exc

    output = dict(pattern_to_dict(pattern))
    if expand_from is not None:
        output["occurrences"] = [
            occurrence.isoformat().replace("+00:00", "Z")
            for occurrence in expand_occurrences(pattern, expand_from, limit=limit)
        ]
    click.echo(json.dumps(output, indent=2))

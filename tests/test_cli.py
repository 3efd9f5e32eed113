"""Tests for the stagewatch CLI."""

from __future__ import annotations

import json
from datetime import UTC, datetime
from unittest.mock import AsyncMock, MagicMock

import httpx
import pytest
from click.testing import CliRunner

from stagewatch import cli as cli_module
from stagewatch.alerts.models import CycleReport
from stagewatch.cli import build_transports, cli
from stagewatch.config import EmailConfig, SmsConfig, StagewatchConfig
from stagewatch.errors import StoreReadError
from stagewatch.notifications.models import Channel
from stagewatch.notifications.transports import (
    InAppTransport,
    LogOnlyTransport,
    ResendEmailTransport,
    TwilioSmsTransport,
)

pytestmark = pytest.mark.unit


@pytest.fixture
def runner() -> CliRunner:
    return CliRunner()


@pytest.fixture(autouse=True)
def _quiet_logging(monkeypatch):
    monkeypatch.setattr(cli_module, "configure_logging", MagicMock())


# ---------------------------------------------------------------------------
# rrule
# ---------------------------------------------------------------------------


class TestRruleCommands:
    def test_encode(self, runner):
        result = runner.invoke(
            cli,
            ["rrule", "encode", "--freq", "weekly", "--interval", "2", "--by-weekday", "fr",
             "--by-weekday", "MO", "--count", "6"],
        )
        assert result.exit_code == 0, result.output
        assert result.output.strip() == "FREQ=WEEKLY;INTERVAL=2;BYDAY=MO,FR;COUNT=6"

    def test_encode_until(self, runner):
        result = runner.invoke(
            cli, ["rrule", "encode", "--freq", "MONTHLY", "--until", "2024-12-31T23:59:59"]
        )
        assert result.output.strip() == "FREQ=MONTHLY;UNTIL=20241231T235959Z"

    def test_encode_invalid_pattern(self, runner):
        result = runner.invoke(cli, ["rrule", "encode", "--freq", "DAILY", "--by-month", "13"])
        assert result.exit_code == 1
        assert "Invalid recurrence pattern" in result.output

    def test_decode(self, runner):
        result = runner.invoke(
            cli, ["rrule", "decode", "FREQ=MONTHLY;INTERVAL=2;BYMONTHDAY=15;BYMONTH=1,3,5;COUNT=6"]
        )
        assert result.exit_code == 0, result.output
        data = json.loads(result.output)
        assert data["frequency"] == "MONTHLY"
        assert data["by_month"] == [1, 3, 5]
        assert data["count"] == 6
        assert "occurrences" not in data

    def test_decode_with_expansion(self, runner):
        result = runner.invoke(
            cli,
            ["rrule", "decode", "FREQ=DAILY", "--expand-from", "2025-01-01T09:00", "--limit", "2"],
        )
        assert json.loads(result.output)["occurrences"] == [
            "2025-01-01T09:00:00Z",
            "2025-01-02T09:00:00Z",
        ]

    def test_decode_malformed(self, runner):
        result = runner.invoke(cli, ["rrule", "decode", "INTERVAL=2"])
        assert result.exit_code == 1
        assert "missing FREQ" in result.output


# ---------------------------------------------------------------------------
# scan
# ---------------------------------------------------------------------------


class TestScanCommand:
    def test_prints_report(self, runner, monkeypatch, tmp_path):
        report = CycleReport(started_at=datetime(2025, 6, 1, tzinfo=UTC), processed=3, notified=2)
        run_scan = AsyncMock(return_value=report)
        monkeypatch.setattr(cli_module, "run_scan", run_scan)
        (tmp_path / "stagewatch.toml").write_text("[scanner]\nlookahead_hours = 12\n")

        result = runner.invoke(
            cli,
            ["scan", "--config", str(tmp_path), "--lookahead-hours", "6", "--now", "2025-06-01"],
        )

        assert result.exit_code == 0, result.output
        assert json.loads(result.output)["processed"] == 3
        config, now = run_scan.await_args.args
        assert config.scanner.lookahead_hours == 6
        assert now == datetime(2025, 6, 1, tzinfo=UTC)

    def test_store_read_error_exits_nonzero(self, runner, monkeypatch):
        monkeypatch.setattr(
            cli_module, "run_scan", AsyncMock(side_effect=StoreReadError("db unreachable"))
        )
        with runner.isolated_filesystem():
            result = runner.invoke(cli, ["scan"])
        assert result.exit_code == 1
        assert "Deadline scan aborted" in result.output

    def test_bad_config(self, runner, tmp_path):
        (tmp_path / "stagewatch.toml").write_text('[logging]\nformat = "xml"\n')
        result = runner.invoke(cli, ["scan", "--config", str(tmp_path)])
        assert result.exit_code == 1
        assert "logging.format" in result.output


class TestBuildTransports:
    async def test_log_only_without_credentials(self):
        async with httpx.AsyncClient() as client:
            transports = build_transports(StagewatchConfig(), MagicMock(), client)
        assert isinstance(transports[Channel.in_app], InAppTransport)
        assert isinstance(transports[Channel.email], LogOnlyTransport)
        assert isinstance(transports[Channel.sms], LogOnlyTransport)

    async def test_providers_with_credentials(self):
        config = StagewatchConfig(
            email=EmailConfig(api_key="re_1", from_address="alerts@example.com"),
            sms=SmsConfig(account_sid="AC1", auth_token="t", from_number="+15550001111"),
        )
        async with httpx.AsyncClient() as client:
            transports = build_transports(config, MagicMock(), client)
        assert isinstance(transports[Channel.email], ResendEmailTransport)
        assert isinstance(transports[Channel.sms], TwilioSmsTransport)


def test_version(runner):
    result = runner.invoke(cli, ["--version"])
    assert result.exit_code == 0
    assert "0.1.0" in result.output

"""stagewatch configuration loading and validation.

Reads ``stagewatch.toml`` and returns a validated :class:`StagewatchConfig`.
``${VAR_NAME}`` references anywhere in string values are resolved from the
environment before validation, so secrets stay out of the file::

    [app]
    base_url = "https://crm.example.com"

    [scanner]
    lookahead_hours = 24
    max_concurrency = 4

    [channels]
    critical = ["in_app", "email", "sms"]
    medium = ["in_app", "email"]

    [logging]
    level = "INFO"
    format = "json"

    [database]
    dsn = "${DATABASE_URL}"

    [email]
    api_key = "${RESEND_API_KEY}"
    from_address = "alerts@example.com"

    [sms]
    account_sid = "${TWILIO_ACCOUNT_SID}"
    auth_token = "${TWILIO_AUTH_TOKEN}"
    from_number = "+15550001111"
"""

from __future__ import annotations

import os
import re
import tomllib
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from stagewatch.alerts.scanner import DEFAULT_TIER_CHANNELS
from stagewatch.alerts.urgency import UrgencyTier
from stagewatch.notifications.models import Channel
from stagewatch.notifications.transports import RESEND_API_URL, TWILIO_API_BASE_URL

CONFIG_FILENAME = "stagewatch.toml"
DEFAULT_LOOKAHEAD_HOURS = 24.0
DEFAULT_HTTP_TIMEOUT_S = 10.0

# Pattern matching ${VAR_NAME}; supports alphanumeric + underscore variable names.
_ENV_VAR_PATTERN = re.compile(r"\$\{([A-Za-z_][A-Za-z0-9_]*)\}")


class ConfigError(Exception):
    """Raised when configuration is missing, malformed, or invalid."""


@dataclass
class LoggingConfig:
    """Logging configuration from the [logging] section."""

    level: str = "INFO"
    format: str = "text"  # "text" or "json"
    log_root: str | None = None


@dataclass
class ScannerConfig:
    """Deadline scanner settings from the [scanner] section."""

    lookahead_hours: float = DEFAULT_LOOKAHEAD_HOURS
    max_concurrency: int = 1
    tier_channels: dict[UrgencyTier, tuple[Channel, ...]] = field(
        default_factory=lambda: dict(DEFAULT_TIER_CHANNELS)
    )


@dataclass
class DatabaseConfig:
    """PostgreSQL connection settings from the [database] section.

    ``dsn`` wins over the individual fields when set.  When the section is
    absent, ``DATABASE_URL`` or the ``POSTGRES_*`` variables are used.
    """

    dsn: str | None = None
    host: str | None = None
    port: int | None = None
    user: str | None = None
    password: str | None = None
    name: str | None = None


@dataclass
class EmailConfig:
    """Resend email transport settings.  Without ``api_key`` emails are only logged."""

    api_key: str | None = None
    from_address: str = "noreply@localhost"
    api_url: str = RESEND_API_URL


@dataclass
class SmsConfig:
    """Twilio SMS transport settings.  Without credentials SMS are only logged."""

    account_sid: str | None = None
    auth_token: str | None = None
    from_number: str | None = None
    api_url: str = TWILIO_API_BASE_URL

    @property
    def configured(self) -> bool:
        return bool(self.account_sid and self.auth_token and self.from_number)


@dataclass
class StagewatchConfig:
    """Fully parsed stagewatch configuration."""

    base_url: str | None = None
    http_timeout_s: float = DEFAULT_HTTP_TIMEOUT_S
    scanner: ScannerConfig = field(default_factory=ScannerConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)
    database: DatabaseConfig | None = None
    email: EmailConfig = field(default_factory=EmailConfig)
    sms: SmsConfig = field(default_factory=SmsConfig)


def _resolve_string(s: str) -> str:
    """Replace all ``${VAR_NAME}`` occurrences in *s* with env var values.

    Collects all missing variable names and reports them in a single error.
    """
    missing: list[str] = []

    def _replace(match: re.Match) -> str:
        var_name = match.group(1)
        env_value = os.environ.get(var_name)
        if env_value is None:
            missing.append(var_name)
            return match.group(0)
        return env_value

    result = _ENV_VAR_PATTERN.sub(_replace, s)

    if missing:
        vars_str = ", ".join(missing)
        raise ConfigError(
            f"Unresolved environment variable(s) in config value: {vars_str} (original: {s!r})"
        )

    return result


def resolve_env_vars(value: Any) -> Any:
    """Recursively resolve ``${VAR_NAME}`` references in config values.

    Walks dicts, lists, and strings.  Non-string leaf values are returned
    unchanged.

    Raises
    ------
    ConfigError
        If a referenced environment variable is not set.
    """
    if isinstance(value, dict):
        return {k: resolve_env_vars(v) for k, v in value.items()}
    if isinstance(value, list):
        return [resolve_env_vars(item) for item in value]
    if isinstance(value, str):
        return _resolve_string(value)
    return value


def _section(data: dict[str, Any], name: str) -> dict[str, Any]:
    section = data.get(name, {})
    if not isinstance(section, dict):
        raise ConfigError(f"[{name}] must be a table")
    return section


def _optional_str(section: dict[str, Any], key: str, prefix: str) -> str | None:
    value = section.get(key)
    if value is None:
        return None
    if not isinstance(value, str):
        raise ConfigError(f"{prefix}.{key} must be a string")
    return value.strip() or None


def _parse_tier_channels(section: dict[str, Any]) -> dict[UrgencyTier, tuple[Channel, ...]]:
    tier_channels = dict(DEFAULT_TIER_CHANNELS)
    for raw_tier, raw_channels in section.items():
        try:
            tier = UrgencyTier(str(raw_tier).lower())
        except ValueError as exc:
            valid = ", ".join(t.value for t in UrgencyTier)
            raise ConfigError(f"Unknown urgency tier in [channels]: {raw_tier!r} ({valid})") from exc
        if not isinstance(raw_channels, list):
            raise ConfigError(f"channels.{raw_tier} must be a list of channel names")
        try:
            tier_channels[tier] = tuple(Channel(str(c).lower()) for c in raw_channels)
        except ValueError as exc:
            valid = ", ".join(c.value for c in Channel)
            raise ConfigError(f"Invalid channel in channels.{raw_tier}: {exc} ({valid})") from exc
    return tier_channels


def _parse_scanner(data: dict[str, Any]) -> ScannerConfig:
    section = _section(data, "scanner")
    try:
        lookahead_hours = float(section.get("lookahead_hours", DEFAULT_LOOKAHEAD_HOURS))
        max_concurrency = int(section.get("max_concurrency", 1))
    except (TypeError, ValueError) as exc:
        raise ConfigError(f"Invalid [scanner] value: {exc}") from exc
    if lookahead_hours <= 0:
        raise ConfigError(
            f"Invalid scanner.lookahead_hours: {lookahead_hours!r}. Must be positive."
        )
    if max_concurrency < 1:
        raise ConfigError(
            f"Invalid scanner.max_concurrency: {max_concurrency!r}. Must be at least 1."
        )
    return ScannerConfig(
        lookahead_hours=lookahead_hours,
        max_concurrency=max_concurrency,
        tier_channels=_parse_tier_channels(_section(data, "channels")),
    )


def _parse_logging(data: dict[str, Any]) -> LoggingConfig:
    section = _section(data, "logging")
    log_level = str(section.get("level", "INFO")).upper()
    log_format = str(section.get("format", "text")).lower()
    if log_format not in ("text", "json"):
        raise ConfigError(f"Invalid logging.format: {log_format!r}. Expected 'text' or 'json'.")
    return LoggingConfig(level=log_level, format=log_format, log_root=section.get("log_root"))


def _parse_database(data: dict[str, Any]) -> DatabaseConfig | None:
    if "database" not in data:
        return None
    section = _section(data, "database")
    port = section.get("port")
    if port is not None and not isinstance(port, int):
        raise ConfigError("database.port must be an integer")
    return DatabaseConfig(
        dsn=_optional_str(section, "dsn", "database"),
        host=_optional_str(section, "host", "database"),
        port=port,
        user=_optional_str(section, "user", "database"),
        password=_optional_str(section, "password", "database"),
        name=_optional_str(section, "name", "database"),
    )


def _parse_email(data: dict[str, Any]) -> EmailConfig:
    section = _section(data, "email")
    return EmailConfig(
        api_key=_optional_str(section, "api_key", "email"),
        from_address=_optional_str(section, "from_address", "email") or "noreply@localhost",
        api_url=_optional_str(section, "api_url", "email") or RESEND_API_URL,
    )


def _parse_sms(data: dict[str, Any]) -> SmsConfig:
    section = _section(data, "sms")
    return SmsConfig(
        account_sid=_optional_str(section, "account_sid", "sms"),
        auth_token=_optional_str(section, "auth_token", "sms"),
        from_number=_optional_str(section, "from_number", "sms"),
        api_url=_optional_str(section, "api_url", "sms") or TWILIO_API_BASE_URL,
    )


def load_config(path: Path) -> StagewatchConfig:
    """Load and validate configuration.

    Parameters
    ----------
    path:
        Either a ``stagewatch.toml`` file or a directory containing one.

    Raises
    ------
    ConfigError
        If the file is missing, contains invalid TOML, or has invalid values.
    """
    toml_path = path / CONFIG_FILENAME if path.is_dir() else path
    if not toml_path.exists():
        raise ConfigError(f"Config file not found: {toml_path}")

    try:
        data = tomllib.loads(toml_path.read_bytes().decode())
    except tomllib.TOMLDecodeError as exc:
        raise ConfigError(f"Invalid TOML in {toml_path}: {exc}") from exc

    data = resolve_env_vars(data)

    app_section = _section(data, "app")
    try:
        http_timeout_s = float(app_section.get("http_timeout_s", DEFAULT_HTTP_TIMEOUT_S))
    except (TypeError, ValueError) as exc:
        raise ConfigError(f"Invalid app.http_timeout_s: {exc}") from exc

    return StagewatchConfig(
        base_url=_optional_str(app_section, "base_url", "app"),
        http_timeout_s=http_timeout_s,
        scanner=_parse_scanner(data),
        logging=_parse_logging(data),
        database=_parse_database(data),
        email=_parse_email(data),
        sms=_parse_sms(data),
    )

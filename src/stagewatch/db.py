"""asyncpg pool for a scan run."""

from __future__ import annotations

import logging
import os
from typing import Any

import asyncpg

from stagewatch.config import DatabaseConfig

logger = logging.getLogger(__name__)

DEFAULT_DB_NAME = "crm"
MAX_POOL_SIZE = 5

# asyncpg's STARTTLS negotiation fails this way against servers that refuse SSL.
_SSL_UPGRADE_LOST = "unexpected connection_lost() call"


class Database:
    """Owns the pool shared by the deadline store and the in-app transport.

    Pass either a libpq ``dsn`` or asyncpg connection keywords (``host``,
    ``port``, ``user``, ``password``, ``database``, ``ssl``).
    """

    def __init__(self, dsn: str | None = None, **connect_kwargs: Any) -> None:
        self.dsn = dsn
        self.connect_kwargs = connect_kwargs
        self.pool: asyncpg.Pool | None = None

    @classmethod
    def from_config(cls, config: DatabaseConfig | None) -> Database:
        """Resolve ``[database]`` against the environment.

        A configured ``dsn`` wins.  With no explicit fields at all,
        ``DATABASE_URL`` is used when set.  Otherwise each unset field falls
        back to its ``POSTGRES_*`` variable.
        """
        config = config or DatabaseConfig()
        if config.dsn:
            return cls(config.dsn)

        env = os.environ
        fields = (config.host, config.port, config.user, config.password, config.name)
        if env.get("DATABASE_URL") and all(value is None for value in fields):
            return cls(env["DATABASE_URL"])

        kwargs: dict[str, Any] = {
            "host": config.host or env.get("POSTGRES_HOST", "localhost"),
            "port": config.port or int(env.get("POSTGRES_PORT", "5432")),
            "user": config.user or env.get("POSTGRES_USER", "postgres"),
            "password": config.password or env.get("POSTGRES_PASSWORD", "postgres"),
            "database": config.name or env.get("POSTGRES_DB", DEFAULT_DB_NAME),
        }
        sslmode = env.get("POSTGRES_SSLMODE", "").strip().lower()
        if sslmode:
            kwargs["ssl"] = sslmode
        return cls(**kwargs)

    def _ssl_pinned(self) -> bool:
        return "ssl" in self.connect_kwargs or "sslmode=" in (self.dsn or "")

    async def connect(self) -> asyncpg.Pool:
        """Open the pool, retrying once without SSL if the SSL upgrade is dropped."""
        try:
            self.pool = await asyncpg.create_pool(
                self.dsn, min_size=1, max_size=MAX_POOL_SIZE, **self.connect_kwargs
            )
        except ConnectionError as exc:
            if self._ssl_pinned() or _SSL_UPGRADE_LOST not in str(exc):
                raise
            logger.info("PostgreSQL dropped the SSL upgrade; reconnecting with ssl=disable")
            self.pool = await asyncpg.create_pool(
                self.dsn,
                min_size=1,
                max_size=MAX_POOL_SIZE,
                ssl="disable",
                **self.connect_kwargs,
            )
        return self.pool

    async def close(self) -> None:
        if self.pool is not None:
            await self.pool.close()
            self.pool = None

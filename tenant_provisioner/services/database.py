from __future__ import annotations

import logging
from typing import Any, Optional

import asyncpg
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from tenant_provisioner.services.config import DatabaseConfig
from tenant_provisioner.services.credentials import CredentialProvider, DatabaseCredentialsError


logger = logging.getLogger(__name__)


class DatabaseError(RuntimeError):
    pass


class Database:
    """Owns the process-wide connection pool for the tenant database.

    Physical connections are opened by `_connect`, which asks the injected
    credential provider for a password each time. The pool is bounded by
    `DatabaseConfig.pool_size` with no overflow.
    """

    _POOL_TIMEOUT_SECONDS: float = 30.0
    _POOL_RECYCLE_SECONDS: int = 1800

    def __init__(
        self,
        config: DatabaseConfig,
        *,
        credentials: CredentialProvider,
        engine: Optional[AsyncEngine] = None,
    ) -> None:
        self._config = config
        self._credentials = credentials
        self._base_engine = engine or self._create_engine()
        self._engine = self._base_engine
        if config.schema:
            self._engine = self._base_engine.execution_options(schema_translate_map={None: config.schema})
        self._sessions = async_sessionmaker(self._engine, expire_on_commit=False)

    @property
    def engine(self) -> AsyncEngine:
        return self._engine

    @property
    def sessions(self) -> async_sessionmaker[AsyncSession]:
        return self._sessions

    def _create_engine(self) -> AsyncEngine:
        # The URL only selects the dialect; `async_creator` supplies the connection.
        return create_async_engine(
            "postgresql+asyncpg://",
            async_creator=self._connect,
            pool_size=self._config.pool_size,
            max_overflow=0,
            pool_timeout=self._POOL_TIMEOUT_SECONDS,
            pool_recycle=self._POOL_RECYCLE_SECONDS,
            pool_pre_ping=True,
        )

    async def _connect(self) -> Any:
        password = await self._credentials()
        return await asyncpg.connect(
            host=self._config.host,
            port=self._config.port,
            user=self._config.username,
            password=password,
            database=self._config.database,
            ssl="require" if self._config.ssl else False,
            timeout=self._config.connect_timeout_seconds,
            command_timeout=self._config.statement_timeout_ms / 1000.0,
            server_settings={"statement_timeout": str(self._config.statement_timeout_ms)},
        )

    async def check_connection(self) -> None:
        """Open one connection and run a probe query; raise DatabaseError on failure."""

        try:
            async with self._engine.connect() as conn:
                result = await conn.execute(text("SELECT current_database(), now()"))
                database_name, server_time = result.one()
        except (SQLAlchemyError, DatabaseCredentialsError, OSError, asyncpg.PostgresError) as exc:
            logger.exception(
                "Database connection check failed (host=%s database=%s)", self._config.host, self._config.database
            )
            raise DatabaseError(f"Cannot connect to database {self._config.database} at {self._config.host}") from exc

        logger.info("Database connection successful (database=%s server_time=%s)", database_name, server_time)

    async def close(self) -> None:
        logger.info("Closing database connection pool")
        await self._base_engine.dispose()

from __future__ import annotations

from dataclasses import dataclass
from typing import ClassVar, Optional

from tenant_provisioner.services.config.env import (
    env_bool,
    env_float,
    env_int,
    optional_env,
    region_from_env,
    require_env,
)


@dataclass(frozen=True)
class DatabaseConfig:
    """Connection settings for the tenant control-plane database (PostgreSQL).

    When `password` is unset the connection authenticates with a short-lived RDS
    IAM token, generated per physical connection.
    """

    host: str
    database: str
    username: str
    region_name: Optional[str] = None
    port: int = 5432
    password: Optional[str] = None
    schema: Optional[str] = "public"
    ssl: bool = True
    _DEFAULT_POOL_SIZE: ClassVar[int] = 20
    _DEFAULT_CONNECT_TIMEOUT_SECONDS: ClassVar[float] = 30.0
    _DEFAULT_STATEMENT_TIMEOUT_MS: ClassVar[int] = 30000
    pool_size: int = _DEFAULT_POOL_SIZE
    connect_timeout_seconds: float = _DEFAULT_CONNECT_TIMEOUT_SECONDS
    statement_timeout_ms: int = _DEFAULT_STATEMENT_TIMEOUT_MS

    @property
    def uses_iam_auth(self) -> bool:
        return self.password is None

    @staticmethod
    def from_env() -> "DatabaseConfig":
        password = optional_env("DB_PASSWORD")
        # The IAM token is signed for a region; a static password does not need one.
        region_name = region_from_env("DB_REGION") if password is None else optional_env("AWS_REGION")

        return DatabaseConfig(
            host=require_env("DB_HOST"),
            database=require_env("DB_NAME"),
            username=require_env("DB_USER"),
            region_name=region_name,
            port=env_int("DB_PORT", 5432, minimum=1),
            password=password,
            schema=optional_env("DB_SCHEMA") or "public",
            ssl=env_bool("DB_SSL", True),
            pool_size=env_int("DB_POOL_SIZE", DatabaseConfig._DEFAULT_POOL_SIZE, minimum=1),
            connect_timeout_seconds=env_float(
                "DB_CONNECT_TIMEOUT_SECONDS", DatabaseConfig._DEFAULT_CONNECT_TIMEOUT_SECONDS
            ),
            statement_timeout_ms=env_int("DB_STATEMENT_TIMEOUT_MS", DatabaseConfig._DEFAULT_STATEMENT_TIMEOUT_MS),
        )

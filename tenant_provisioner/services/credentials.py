from __future__ import annotations

import logging
from typing import Any, Optional, Protocol, cast

import aioboto3

from tenant_provisioner.services.config import DatabaseConfig


logger = logging.getLogger(__name__)


class DatabaseCredentialsError(RuntimeError):
    pass


class CredentialProvider(Protocol):
    """Produces the password for one new physical database connection."""

    async def __call__(self) -> str: ...


class StaticPasswordProvider:
    def __init__(self, password: str) -> None:
        self._password = password

    async def __call__(self) -> str:
        return self._password


class RdsIamTokenProvider:
    """Generates a fresh RDS IAM authentication token on every call.

    Tokens are valid for 15 minutes. They are only checked when a connection is
    established, so pooled connections outlive the token that opened them.
    """

    def __init__(
        self,
        *,
        host: str,
        port: int,
        username: str,
        region_name: str,
        session: Optional[aioboto3.Session] = None,
    ) -> None:
        self._host = host
        self._port = port
        self._username = username
        self._region_name = region_name
        self._session = session or aioboto3.Session()

    async def __call__(self) -> str:
        try:
            client_cm = self._session.client("rds", region_name=self._region_name)
            async with cast(Any, client_cm) as rds:
                token = await rds.generate_db_auth_token(
                    DBHostname=self._host,
                    Port=self._port,
                    DBUsername=self._username,
                    Region=self._region_name,
                )
        except Exception as exc:
            logger.exception("RDS IAM token generation failed (host=%s user=%s)", self._host, self._username)
            raise DatabaseCredentialsError(f"RDS IAM token generation failed for {self._username}@{self._host}") from exc

        logger.debug("Generated fresh RDS IAM token (host=%s user=%s)", self._host, self._username)
        return token


def credential_provider_for(config: DatabaseConfig) -> CredentialProvider:
    if config.password is not None:
        return StaticPasswordProvider(config.password)

    if not config.region_name:
        raise ValueError("RDS IAM authentication requires a region (DB_REGION or AWS_REGION)")
    return RdsIamTokenProvider(
        host=config.host,
        port=config.port,
        username=config.username,
        region_name=config.region_name,
    )

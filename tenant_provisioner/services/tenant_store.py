from __future__ import annotations

import logging
import uuid
from typing import Optional, Union

from sqlalchemy import func, or_, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from tenant_provisioner.models.tenant import ResourceStatus, Tenant


logger = logging.getLogger(__name__)

TenantId = Union[uuid.UUID, str]


class TenantStoreError(RuntimeError):
    pass


class TenantNotFoundError(TenantStoreError):
    pass


def _as_uuid(tenant_id: TenantId) -> uuid.UUID:
    return tenant_id if isinstance(tenant_id, uuid.UUID) else uuid.UUID(str(tenant_id))


class TenantStore:
    """Reads tenant rows and records the outcome of collection provisioning.

    Every statement is a SQLAlchemy expression with bound parameters. Writes run
    in their own session and transaction; nothing is shared between calls except
    the connection pool behind `sessions`.
    """

    def __init__(self, sessions: async_sessionmaker[AsyncSession]) -> None:
        self._sessions = sessions

    async def get_tenant(self, tenant_id: TenantId) -> Optional[Tenant]:
        logger.debug("Fetching tenant (tenant_id=%s)", tenant_id)
        try:
            async with self._sessions() as session:
                result = await session.execute(select(Tenant).where(Tenant.id == _as_uuid(tenant_id)))
                tenant = result.scalar_one_or_none()
        except SQLAlchemyError as exc:
            logger.exception("Failed to fetch tenant (tenant_id=%s)", tenant_id)
            raise TenantStoreError(f"Failed to fetch tenant {tenant_id}") from exc

        if tenant is None:
            logger.warning("Tenant not found (tenant_id=%s)", tenant_id)
        return tenant

    async def commit_ready(self, tenant_id: TenantId, collection_arn: str) -> Tenant:
        """Store the collection ARN and flip the status to `ready` atomically.

        Raises:
            TenantNotFoundError: if no row matched; the transaction is rolled back.
            TenantStoreError: for any other database failure.
        """

        if not collection_arn:
            raise ValueError("collection_arn must be provided")

        stmt = (
            update(Tenant)
            .where(Tenant.id == _as_uuid(tenant_id))
            .values(
                opensearch_arn=collection_arn,
                opensearch_status=ResourceStatus.READY.value,
                updated_at=func.now(),
            )
            .returning(Tenant)
            .execution_options(synchronize_session=False)
        )

        logger.info("Committing tenant collection (tenant_id=%s arn=%s)", tenant_id, collection_arn)
        try:
            async with self._sessions() as session:
                async with session.begin():
                    result = await session.execute(stmt)
                    tenant = result.scalar_one_or_none()
                    if tenant is None:
                        raise TenantNotFoundError(f"Tenant {tenant_id} not found at commit time")
        except TenantNotFoundError:
            logger.error("Tenant vanished before commit (tenant_id=%s)", tenant_id)
            raise
        except SQLAlchemyError as exc:
            logger.exception("Failed to commit tenant collection (tenant_id=%s)", tenant_id)
            raise TenantStoreError(f"Failed to update tenant {tenant_id}") from exc

        logger.info(
            "Tenant collection committed (tenant_id=%s slug=%s status=%s)",
            tenant.id,
            tenant.slug,
            tenant.opensearch_status,
        )
        return tenant

    async def mark_failed(self, tenant_id: TenantId, reason: str) -> None:
        """Best-effort: record `failed` so operators can see the tenant is stuck.

        Errors here are diagnostic only. They are logged and never raised, so a
        failing write can not replace the error that led to it. Rows already
        `ready` are left untouched.
        """

        logger.warning("Marking tenant collection as failed (tenant_id=%s reason=%s)", tenant_id, reason)
        try:
            stmt = (
                update(Tenant)
                .where(
                    Tenant.id == _as_uuid(tenant_id),
                    or_(
                        Tenant.opensearch_status.is_(None),
                        Tenant.opensearch_status != ResourceStatus.READY.value,
                    ),
                )
                .values(opensearch_status=ResourceStatus.FAILED.value, updated_at=func.now())
                .execution_options(synchronize_session=False)
            )
            async with self._sessions() as session:
                async with session.begin():
                    result = await session.execute(stmt)
        except Exception:
            logger.exception("Failed to mark tenant collection as failed (tenant_id=%s)", tenant_id)
            return

        if result.rowcount == 0:
            logger.warning("Tenant not marked failed: missing or already ready (tenant_id=%s)", tenant_id)
        else:
            logger.info("Tenant collection status marked as failed (tenant_id=%s)", tenant_id)

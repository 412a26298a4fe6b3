from __future__ import annotations

import uuid
from pathlib import Path
from typing import Any, Callable, Optional

import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from tenant_provisioner.models.tenant import Base, Tenant
from tenant_provisioner.services.config import CollectionConfig, SqsConfig
from tenant_provisioner.services.setup.collection_setup_service import CollectionSetupService
from tenant_provisioner.services.tenant_store import TenantStore
from tests.fakes import ACCOUNT_ROOT, ACME_ID, FakeAossClient, FakeSession, RecordingSleep


@pytest.fixture
def sleep() -> RecordingSleep:
    return RecordingSleep()


@pytest.fixture
def collection_config() -> CollectionConfig:
    return CollectionConfig(
        region_name="us-east-1",
        principals=(ACCOUNT_ROOT,),
        name_prefix="tenant-",
        poll_interval_seconds=30.0,
        max_poll_attempts=5,
    )


@pytest.fixture
def aoss() -> FakeAossClient:
    return FakeAossClient()


@pytest.fixture
def collections(collection_config: CollectionConfig, aoss: FakeAossClient, sleep: RecordingSleep) -> CollectionSetupService:
    return CollectionSetupService(collection_config, session=FakeSession(aoss), sleep=sleep)


@pytest.fixture
def sqs_config() -> SqsConfig:
    return SqsConfig(
        queue_url="https://sqs.us-east-1.amazonaws.com/123456789012/tenant-opensearch.fifo",
        region_name="us-east-1",
        visibility_heartbeat=False,
    )


@pytest.fixture
async def sessions(tmp_path: Path) -> async_sessionmaker[AsyncSession]:
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'tenants.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield async_sessionmaker(engine, expire_on_commit=False)
    await engine.dispose()


@pytest.fixture
def store(sessions: async_sessionmaker[AsyncSession]) -> TenantStore:
    return TenantStore(sessions)


@pytest.fixture
def add_tenant(sessions: async_sessionmaker[AsyncSession]) -> Callable[..., Any]:
    async def _add(
        *,
        tenant_id: str = ACME_ID,
        slug: str = "acme-corp",
        status: str = "active",
        opensearch_arn: Optional[str] = None,
        opensearch_status: Optional[str] = "uninitialized",
    ) -> uuid.UUID:
        async with sessions() as session:
            async with session.begin():
                session.add(
                    Tenant(
                        id=uuid.UUID(tenant_id),
                        slug=slug,
                        name=slug.replace("-", " ").title(),
                        status=status,
                        opensearch_arn=opensearch_arn,
                        opensearch_status=opensearch_status,
                    )
                )
        return uuid.UUID(tenant_id)

    return _add

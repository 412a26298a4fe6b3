from __future__ import annotations

from typing import Optional

from tenant_provisioner.services.config import CollectionConfig, DatabaseConfig, SqsConfig
from tenant_provisioner.services.credentials import credential_provider_for
from tenant_provisioner.services.database import Database
from tenant_provisioner.services.provisioning_service import TenantProvisioningService
from tenant_provisioner.services.setup.collection_setup_service import CollectionSetupService
from tenant_provisioner.services.sqs_service import SqsConsumer
from tenant_provisioner.services.tenant_store import TenantStore
from tenant_provisioner.services.worker import ProvisioningWorker


def get_database(config: Optional[DatabaseConfig] = None) -> Database:
    """Provider for the process-wide database pool."""

    db_config = config or DatabaseConfig.from_env()
    return Database(db_config, credentials=credential_provider_for(db_config))


def get_tenant_store(database: Database) -> TenantStore:
    return TenantStore(database.sessions)


def get_collection_setup_service() -> CollectionSetupService:
    return CollectionSetupService(CollectionConfig.from_env())


def get_sqs_consumer() -> SqsConsumer:
    return SqsConsumer(SqsConfig.from_env())


def get_provisioning_service(database: Database) -> TenantProvisioningService:
    return TenantProvisioningService(
        store=get_tenant_store(database),
        collections=get_collection_setup_service(),
    )


def build_worker() -> ProvisioningWorker:
    """Wire the worker from environment configuration.

    Raises ValueError if any required setting is missing or malformed.
    """

    database = get_database()
    return ProvisioningWorker(
        database=database,
        consumer=get_sqs_consumer(),
        provisioning=get_provisioning_service(database),
    )

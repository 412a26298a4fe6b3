from __future__ import annotations

import enum
import logging
from typing import Optional

from tenant_provisioner.models.events import ProvisioningEvent
from tenant_provisioner.models.tenant import ACTIVE_TENANT_STATUS, ResourceStatus, Tenant
from tenant_provisioner.services.setup.collection_setup_service import CollectionSetupService
from tenant_provisioner.services.tenant_store import TenantStore


logger = logging.getLogger(__name__)


class ProvisioningOutcome(str, enum.Enum):
    PROVISIONED = "provisioned"
    SKIPPED = "skipped"


def rejection_reason(tenant: Optional[Tenant]) -> Optional[str]:
    """Why a tenant must not be provisioned, or None if it is eligible.

    Rejections are the normal result of redelivery and are not errors.
    """

    if tenant is None:
        return "Tenant not found"
    if tenant.status != ACTIVE_TENANT_STATUS:
        return f"Tenant status is {tenant.status!r}, expected {ACTIVE_TENANT_STATUS!r}"
    if tenant.opensearch_arn:
        return "Tenant already has an OpenSearch collection"
    if tenant.resource_status is ResourceStatus.READY:
        return "Tenant OpenSearch status is already ready"
    return None


class TenantProvisioningService:
    """Handles one provisioning event end to end.

    received -> validated -> provisioning -> committed, or a skip when the
    tenant is ineligible. Any failure marks the tenant `failed` (best effort)
    and re-raises so the queue message stays for redelivery.
    """

    def __init__(self, *, store: TenantStore, collections: CollectionSetupService) -> None:
        self._store = store
        self._collections = collections

    async def handle(self, event: ProvisioningEvent) -> ProvisioningOutcome:
        logger.info(
            "Processing tenant provisioning request (tenant_id=%s slug=%s timestamp=%s)",
            event.tenant_id,
            event.tenant_slug,
            event.timestamp,
        )

        try:
            tenant = await self._store.get_tenant(event.tenant_id)
            reason = rejection_reason(tenant)
            if tenant is None or reason is not None:
                logger.warning("Skipping tenant provisioning (tenant_id=%s reason=%s)", event.tenant_id, reason)
                return ProvisioningOutcome.SKIPPED

            if tenant.slug != event.tenant_slug:
                logger.warning(
                    "Event slug does not match tenant record; using the record (tenant_id=%s event_slug=%s slug=%s)",
                    event.tenant_id,
                    event.tenant_slug,
                    tenant.slug,
                )

            collection = await self._collections.provision(tenant_id=str(tenant.id), tenant_slug=tenant.slug)
            await self._store.commit_ready(tenant.id, collection.arn)
        except Exception as exc:
            logger.exception(
                "Failed to provision tenant (tenant_id=%s slug=%s): %s",
                event.tenant_id,
                event.tenant_slug,
                exc,
            )
            await self._store.mark_failed(event.tenant_id, str(exc))
            raise

        logger.info(
            "Tenant provisioning completed successfully (tenant_id=%s slug=%s arn=%s)",
            event.tenant_id,
            tenant.slug,
            collection.arn,
        )
        return ProvisioningOutcome.PROVISIONED

from __future__ import annotations

import asyncio
import logging
from typing import Optional

from tenant_provisioner.services.database import Database
from tenant_provisioner.services.provisioning_service import TenantProvisioningService
from tenant_provisioner.services.sqs_service import SqsConsumer


logger = logging.getLogger(__name__)


class ProvisioningWorker:
    """Everything one worker process owns: the DB pool, the queue consumer and
    the stop signal shared between them. Built once at startup."""

    def __init__(
        self,
        *,
        database: Database,
        consumer: SqsConsumer,
        provisioning: TenantProvisioningService,
    ) -> None:
        self._database = database
        self._consumer = consumer
        self._provisioning = provisioning
        self._stop_requested = asyncio.Event()

    async def start(self) -> None:
        logger.info("Checking database connection")
        await self._database.check_connection()

    async def run(self) -> None:
        await self._consumer.run(self._provisioning.handle)

    def request_stop(self, reason: Optional[str] = None) -> None:
        if not self._stop_requested.is_set():
            logger.info("Received %s, starting graceful shutdown", reason or "stop request")
        self._stop_requested.set()
        self._consumer.stop()

    async def wait_for_stop_request(self) -> None:
        await self._stop_requested.wait()

    async def close(self) -> None:
        await self._database.close()

from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable, Optional, cast

import aioboto3
from botocore.exceptions import BotoCoreError, ClientError
from pydantic import ValidationError

from tenant_provisioner.models.events import ProvisioningEvent, QueueMessage
from tenant_provisioner.services.config import SqsConfig


logger = logging.getLogger(__name__)

MessageHandler = Callable[[ProvisioningEvent], Awaitable[Any]]


class SqsServiceError(RuntimeError):
    pass


class InvalidMessageError(ValueError):
    pass


def parse_event(body: str) -> ProvisioningEvent:
    """Validate a raw message body. Raises InvalidMessageError for anything malformed."""

    try:
        return ProvisioningEvent.model_validate_json(body)
    except ValidationError as exc:
        problems = "; ".join(
            f"{'.'.join(str(p) for p in err['loc']) or 'body'}: {err['msg']}" for err in exc.errors()
        )
        raise InvalidMessageError(f"Invalid provisioning event ({problems})") from exc


class SqsConsumer:
    """Long-polling consumer for the tenant provisioning queue.

    Messages are handled one at a time. A message is deleted only when the
    handler returns normally, or when its body is malformed (redelivery can not
    fix it). A handler error leaves the message to reappear after the
    visibility timeout.
    """

    _MAX_MESSAGES: int = 1

    def __init__(
        self,
        config: SqsConfig,
        *,
        session: Optional[aioboto3.Session] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        self._config = config
        self._session = session or aioboto3.Session()
        self._sleep = sleep
        self._stop_event = asyncio.Event()

    @staticmethod
    def from_env() -> "SqsConsumer":
        return SqsConsumer(SqsConfig.from_env())

    @property
    def stopping(self) -> bool:
        return self._stop_event.is_set()

    def _client(self) -> Any:
        return self._session.client(
            "sqs",
            region_name=self._config.region_name,
            endpoint_url=self._config.endpoint_url,
        )

    def stop(self) -> None:
        """Ask the loop to exit. An in-flight handler is allowed to finish."""

        if not self._stop_event.is_set():
            logger.info("Stopping SQS polling")
        self._stop_event.set()

    async def run(self, handler: MessageHandler) -> None:
        logger.info("Starting SQS polling (queue=%s)", self._config.queue_url)

        async with cast(Any, self._client()) as client:
            while not self._stop_event.is_set():
                try:
                    messages = await self._receive_unless_stopped(client)
                    for message in messages:
                        await self._process(client, message, handler)
                except SqsServiceError as exc:
                    logger.warning(
                        "SQS transport error; backing off %.1fs (error=%s)",
                        self._config.error_backoff_seconds,
                        exc,
                    )
                    await self._sleep(self._config.error_backoff_seconds)

        logger.info("SQS polling stopped")

    # -----------------
    # Queue calls
    # -----------------

    async def receive_messages(self, client: Any) -> list[QueueMessage]:
        try:
            resp = await client.receive_message(
                QueueUrl=self._config.queue_url,
                MaxNumberOfMessages=self._MAX_MESSAGES,
                WaitTimeSeconds=self._config.wait_time_seconds,
                VisibilityTimeout=self._config.visibility_timeout_seconds,
                MessageAttributeNames=["All"],
                AttributeNames=["ApproximateReceiveCount"],
            )
        except (ClientError, BotoCoreError) as exc:
            logger.error("Failed to receive messages from SQS (queue=%s): %s", self._config.queue_url, exc)
            raise SqsServiceError("Failed to receive messages from SQS") from exc

        raw_messages = resp.get("Messages") or []
        if raw_messages:
            logger.info("Received %d message(s) from SQS", len(raw_messages))
        return [self._to_queue_message(raw) for raw in raw_messages]

    async def delete_message(self, client: Any, message: QueueMessage) -> None:
        try:
            await client.delete_message(QueueUrl=self._config.queue_url, ReceiptHandle=message.receipt_handle)
        except (ClientError, BotoCoreError) as exc:
            logger.error("Failed to delete message from SQS (message_id=%s): %s", message.message_id, exc)
            raise SqsServiceError(f"Failed to delete message {message.message_id}") from exc
        logger.info("Message deleted from SQS queue (message_id=%s)", message.message_id)

    @staticmethod
    def _to_queue_message(raw: dict[str, Any]) -> QueueMessage:
        receive_count_raw = (raw.get("Attributes") or {}).get("ApproximateReceiveCount")
        try:
            receive_count = int(receive_count_raw) if receive_count_raw is not None else None
        except ValueError:
            receive_count = None

        return QueueMessage(
            message_id=str(raw.get("MessageId") or ""),
            receipt_handle=str(raw.get("ReceiptHandle") or ""),
            body=str(raw.get("Body") or ""),
            receive_count=receive_count,
        )

    # -----------------
    # Private helpers
    # -----------------

    async def _receive_unless_stopped(self, client: Any) -> list[QueueMessage]:
        """Long-poll, but give up as soon as stop() is called.

        A message dropped this way is redelivered after its visibility timeout.
        """

        receive_task = asyncio.ensure_future(self.receive_messages(client))
        stop_task = asyncio.ensure_future(self._stop_event.wait())
        try:
            await asyncio.wait({receive_task, stop_task}, return_when=asyncio.FIRST_COMPLETED)
        except asyncio.CancelledError:
            receive_task.cancel()
            raise
        finally:
            stop_task.cancel()

        if not receive_task.done():
            receive_task.cancel()
            logger.info("Stop requested during long poll; abandoning receive")
            return []
        return receive_task.result()

    async def _process(self, client: Any, message: QueueMessage, handler: MessageHandler) -> None:
        try:
            event = parse_event(message.body)
        except InvalidMessageError as exc:
            logger.warning("Discarding invalid message (message_id=%s): %s", message.message_id, exc)
            await self.delete_message(client, message)
            return

        logger.info(
            "Processing SQS message (message_id=%s tenant_id=%s slug=%s receive_count=%s)",
            message.message_id,
            event.tenant_id,
            event.tenant_slug,
            message.receive_count,
        )

        try:
            await self._run_handler(client, message, handler, event)
        except Exception as exc:
            logger.error(
                "Error processing message; leaving it for redelivery (message_id=%s tenant_id=%s): %s",
                message.message_id,
                event.tenant_id,
                exc,
            )
            return

        await self.delete_message(client, message)
        logger.info(
            "Message processed successfully (message_id=%s tenant_id=%s)",
            message.message_id,
            event.tenant_id,
        )

    async def _run_handler(
        self,
        client: Any,
        message: QueueMessage,
        handler: MessageHandler,
        event: ProvisioningEvent,
    ) -> None:
        if not self._config.visibility_heartbeat:
            await handler(event)
            return

        heartbeat = asyncio.create_task(self._visibility_heartbeat(client, message))
        try:
            await handler(event)
        finally:
            heartbeat.cancel()
            try:
                await heartbeat
            except asyncio.CancelledError:
                pass
            except Exception:
                # The handler outcome decides the message fate, never the heartbeat.
                logger.exception("Visibility heartbeat ended with an error (message_id=%s)", message.message_id)

    async def _visibility_heartbeat(self, client: Any, message: QueueMessage) -> None:
        # Extend at half the window so the message never reappears while still in flight.
        interval = max(1.0, self._config.visibility_timeout_seconds / 2)
        while True:
            await self._sleep(interval)
            try:
                await client.change_message_visibility(
                    QueueUrl=self._config.queue_url,
                    ReceiptHandle=message.receipt_handle,
                    VisibilityTimeout=self._config.visibility_timeout_seconds,
                )
                logger.debug("Extended message visibility (message_id=%s)", message.message_id)
            except Exception as exc:
                # Any failure is logged; the next tick tries again.
                logger.warning("Failed to extend message visibility (message_id=%s): %s", message.message_id, exc)

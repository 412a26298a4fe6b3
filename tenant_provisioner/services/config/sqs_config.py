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
class SqsConfig:
    """Runtime configuration for the provisioning queue consumer.

    `queue_url` is the full SQS queue URL, e.g.
    "https://sqs.us-east-1.amazonaws.com/123456789012/tenant-opensearch.fifo".
    """

    queue_url: str
    region_name: str
    _DEFAULT_WAIT_TIME_SECONDS: ClassVar[int] = 20
    _DEFAULT_VISIBILITY_TIMEOUT_SECONDS: ClassVar[int] = 300
    _DEFAULT_ERROR_BACKOFF_SECONDS: ClassVar[float] = 5.0
    wait_time_seconds: int = _DEFAULT_WAIT_TIME_SECONDS
    visibility_timeout_seconds: int = _DEFAULT_VISIBILITY_TIMEOUT_SECONDS
    error_backoff_seconds: float = _DEFAULT_ERROR_BACKOFF_SECONDS
    visibility_heartbeat: bool = True
    endpoint_url: Optional[str] = None

    @staticmethod
    def from_env() -> "SqsConfig":
        wait_time_seconds = env_int("SQS_WAIT_TIME_SECONDS", SqsConfig._DEFAULT_WAIT_TIME_SECONDS)
        # SQS caps long polling at 20 seconds.
        if wait_time_seconds > 20:
            raise ValueError("Invalid SQS_WAIT_TIME_SECONDS; must be between 0 and 20")

        return SqsConfig(
            queue_url=require_env("SQS_QUEUE_URL"),
            region_name=region_from_env("SQS_REGION"),
            wait_time_seconds=wait_time_seconds,
            visibility_timeout_seconds=env_int(
                "SQS_VISIBILITY_TIMEOUT_SECONDS",
                SqsConfig._DEFAULT_VISIBILITY_TIMEOUT_SECONDS,
                minimum=1,
            ),
            error_backoff_seconds=env_float("SQS_ERROR_BACKOFF_SECONDS", SqsConfig._DEFAULT_ERROR_BACKOFF_SECONDS),
            visibility_heartbeat=env_bool("SQS_VISIBILITY_HEARTBEAT", True),
            endpoint_url=optional_env("SQS_ENDPOINT_URL"),
        )

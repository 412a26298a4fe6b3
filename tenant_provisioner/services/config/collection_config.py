from __future__ import annotations

from dataclasses import dataclass
from typing import ClassVar, Optional

from tenant_provisioner.services.config.env import (
    env_bool,
    env_float,
    env_int,
    env_list,
    optional_env,
    region_from_env,
)


@dataclass(frozen=True)
class CollectionConfig:
    """Runtime configuration for OpenSearch Serverless (control plane) calls.

    Every tenant collection is named `name_prefix + tenant_slug`; the policies
    created around it are derived from that name.
    """

    region_name: str
    principals: tuple[str, ...]
    _DEFAULT_POLL_INTERVAL_SECONDS: ClassVar[float] = 30.0
    _DEFAULT_MAX_POLL_ATTEMPTS: ClassVar[int] = 60
    _COLLECTION_TYPES: ClassVar[frozenset[str]] = frozenset({"SEARCH", "VECTORSEARCH", "TIMESERIES"})
    name_prefix: str = "tenant-"
    collection_type: str = "SEARCH"
    service_tag: str = "tenant-platform"
    managed_by: str = "tenant-collection-provisioner"
    kms_key_arn: Optional[str] = None
    vpc_endpoint_ids: tuple[str, ...] = ()
    poll_interval_seconds: float = _DEFAULT_POLL_INTERVAL_SECONDS
    max_poll_attempts: int = _DEFAULT_MAX_POLL_ATTEMPTS
    reconcile_policies: bool = False
    endpoint_url: Optional[str] = None

    @staticmethod
    def _principals_from_env() -> tuple[str, ...]:
        principals = env_list("AOSS_PRINCIPALS")
        if principals:
            return principals

        account_id = optional_env("AOSS_ACCOUNT_ID")
        if not account_id:
            raise ValueError("Missing required environment variable: AOSS_PRINCIPALS (or AOSS_ACCOUNT_ID)")
        return (f"arn:aws:iam::{account_id}:root",)

    @staticmethod
    def from_env() -> "CollectionConfig":
        collection_type = (optional_env("AOSS_COLLECTION_TYPE") or "SEARCH").upper()
        if collection_type not in CollectionConfig._COLLECTION_TYPES:
            raise ValueError(
                "Invalid AOSS_COLLECTION_TYPE; expected one of "
                + ", ".join(sorted(CollectionConfig._COLLECTION_TYPES))
            )

        return CollectionConfig(
            region_name=region_from_env("AOSS_REGION"),
            principals=CollectionConfig._principals_from_env(),
            name_prefix=optional_env("AOSS_COLLECTION_PREFIX") or "tenant-",
            collection_type=collection_type,
            service_tag=optional_env("AOSS_SERVICE_TAG") or "tenant-platform",
            kms_key_arn=optional_env("AOSS_KMS_KEY_ARN"),
            vpc_endpoint_ids=env_list("AOSS_VPC_ENDPOINT_IDS"),
            poll_interval_seconds=env_float(
                "AOSS_POLL_INTERVAL_SECONDS", CollectionConfig._DEFAULT_POLL_INTERVAL_SECONDS
            ),
            max_poll_attempts=env_int("AOSS_MAX_POLL_ATTEMPTS", CollectionConfig._DEFAULT_MAX_POLL_ATTEMPTS, minimum=1),
            reconcile_policies=env_bool("AOSS_RECONCILE_POLICIES", False),
            endpoint_url=optional_env("AOSS_ENDPOINT_URL"),
        )

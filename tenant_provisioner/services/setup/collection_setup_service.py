from __future__ import annotations

import asyncio
import json
import logging
import re
from typing import Any, Awaitable, Callable, Optional, cast

import aioboto3
from botocore.exceptions import BotoCoreError, ClientError

from tenant_provisioner.models.events import CollectionDetails
from tenant_provisioner.services.config import CollectionConfig


logger = logging.getLogger(__name__)


class CollectionSetupError(RuntimeError):
    pass


class CollectionNameError(CollectionSetupError):
    pass


class CollectionFailedError(CollectionSetupError):
    pass


class CollectionTimeoutError(CollectionSetupError):
    pass


_CONFLICT_CODE = "ConflictException"

_ENCRYPTION_SUFFIX = "-encryption"
_NETWORK_SUFFIX = "-network"
_ACCESS_SUFFIX = "-access"
_MAX_POLICY_NAME_LENGTH = 32

# (getter, updater, response key) per policy family.
_POLICY_APIS: dict[str, tuple[str, str, str]] = {
    "security": ("get_security_policy", "update_security_policy", "securityPolicyDetail"),
    "access": ("get_access_policy", "update_access_policy", "accessPolicyDetail"),
}


def _error_code(exc: ClientError) -> str:
    return str((exc.response or {}).get("Error", {}).get("Code") or "")


def _request_id(exc: ClientError) -> Optional[str]:
    return (exc.response or {}).get("ResponseMetadata", {}).get("RequestId")


def _same_policy(existing: Any, expected: Any) -> bool:
    if isinstance(existing, str):
        try:
            existing = json.loads(existing)
        except ValueError:
            return False
    return existing == expected


class CollectionSetupService:
    """Provisions one OpenSearch Serverless collection per tenant.

    The sequence is strictly ordered: encryption policy, network policy,
    collection, data access policy, then polling until the collection is ACTIVE.
    Every create call is idempotent: a `ConflictException` means the object
    already exists (redelivery or a partial earlier attempt) and counts as
    success. Nothing is rolled back on failure; names are deterministic, so
    leftovers are picked up by the next attempt.
    """

    _NAME_PATTERN = re.compile(r"^[a-z][a-z0-9-]{2,31}$")

    def __init__(
        self,
        config: CollectionConfig,
        *,
        session: Optional[aioboto3.Session] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        self._config = config
        self._session = session or aioboto3.Session()
        self._sleep = sleep

    @staticmethod
    def from_env() -> "CollectionSetupService":
        return CollectionSetupService(CollectionConfig.from_env())

    def _client(self) -> Any:
        return self._session.client(
            "opensearchserverless",
            region_name=self._config.region_name,
            endpoint_url=self._config.endpoint_url,
        )

    def collection_name(self, tenant_slug: str) -> str:
        """Deterministic collection name for a tenant slug."""

        name = f"{self._config.name_prefix}{tenant_slug}"
        if not self._NAME_PATTERN.match(name):
            raise CollectionNameError(
                "Collection names must be 3-32 characters, start with a lowercase letter and contain only "
                f"lowercase letters, digits and hyphens (got {name!r})"
            )

        # Policy names share the provider's 32 character limit.
        longest_policy = name + max((_ENCRYPTION_SUFFIX, _NETWORK_SUFFIX, _ACCESS_SUFFIX), key=len)
        if len(longest_policy) > _MAX_POLICY_NAME_LENGTH:
            raise CollectionNameError(
                f"Policy name {longest_policy!r} exceeds {_MAX_POLICY_NAME_LENGTH} characters; "
                f"collection names can be at most {_MAX_POLICY_NAME_LENGTH - len(_ENCRYPTION_SUFFIX)} characters"
            )
        return name

    # -----------------
    # Policy templates
    # -----------------

    def _encryption_policy(self, collection_name: str) -> dict[str, Any]:
        policy: dict[str, Any] = {
            "Rules": [{"ResourceType": "collection", "Resource": [f"collection/{collection_name}"]}],
        }
        if self._config.kms_key_arn:
            policy["KmsARN"] = self._config.kms_key_arn
        else:
            policy["AWSOwnedKey"] = True
        return policy

    def _network_policy(self, collection_name: str) -> list[dict[str, Any]]:
        rule: dict[str, Any] = {
            "Rules": [
                {"ResourceType": "collection", "Resource": [f"collection/{collection_name}"]},
                {"ResourceType": "dashboard", "Resource": [f"collection/{collection_name}"]},
            ],
        }
        # Public access can not be combined with SourceVPCEs; data access policies do the gating.
        if self._config.vpc_endpoint_ids:
            rule["AllowFromPublic"] = False
            rule["SourceVPCEs"] = list(self._config.vpc_endpoint_ids)
        else:
            rule["AllowFromPublic"] = True
        return [rule]

    def _data_access_policy(self, collection_name: str) -> list[dict[str, Any]]:
        return [
            {
                "Rules": [
                    {
                        "ResourceType": "collection",
                        "Resource": [f"collection/{collection_name}"],
                        "Permission": [
                            "aoss:CreateCollectionItems",
                            "aoss:DeleteCollectionItems",
                            "aoss:UpdateCollectionItems",
                            "aoss:DescribeCollectionItems",
                        ],
                    },
                    {
                        "ResourceType": "index",
                        "Resource": [f"index/{collection_name}/*"],
                        "Permission": [
                            "aoss:CreateIndex",
                            "aoss:DeleteIndex",
                            "aoss:UpdateIndex",
                            "aoss:DescribeIndex",
                            "aoss:ReadDocument",
                            "aoss:WriteDocument",
                        ],
                    },
                ],
                "Principal": list(self._config.principals),
            }
        ]

    # -----------------
    # Public entry point
    # -----------------

    async def provision(self, *, tenant_id: str, tenant_slug: str) -> CollectionDetails:
        """Create (or confirm) the tenant's collection and wait until it is ACTIVE.

        Raises:
            CollectionNameError: the derived name is not a valid collection name.
            CollectionFailedError: the provider reported FAILED/DELETING.
            CollectionTimeoutError: the poll budget ran out.
            CollectionSetupError: any other provider error from the create calls.
        """

        collection_name = self.collection_name(tenant_slug)
        logger.info(
            "Provisioning OpenSearch collection (tenant_id=%s slug=%s collection=%s)",
            tenant_id,
            tenant_slug,
            collection_name,
        )

        try:
            async with cast(Any, self._client()) as client:
                await self._ensure_security_policy(
                    client,
                    policy_name=collection_name + _ENCRYPTION_SUFFIX,
                    policy_type="encryption",
                    policy=self._encryption_policy(collection_name),
                    description=f"Encryption policy for tenant collection {collection_name}",
                )
                await self._ensure_security_policy(
                    client,
                    policy_name=collection_name + _NETWORK_SUFFIX,
                    policy_type="network",
                    policy=self._network_policy(collection_name),
                    description=f"Network policy for tenant collection {collection_name}",
                )
                await self._ensure_collection(
                    client,
                    collection_name=collection_name,
                    tenant_id=tenant_id,
                    tenant_slug=tenant_slug,
                )
                await self._ensure_access_policy(
                    client,
                    policy_name=collection_name + _ACCESS_SUFFIX,
                    policy=self._data_access_policy(collection_name),
                    description=f"Data access policy for tenant {tenant_id} collection {collection_name}",
                )
                details = await self._wait_for_active(client, collection_name=collection_name)
        except CollectionSetupError as exc:
            logger.error(
                "Failed to provision OpenSearch collection (tenant_id=%s slug=%s collection=%s): %s",
                tenant_id,
                tenant_slug,
                collection_name,
                exc,
            )
            raise

        logger.info(
            "OpenSearch collection ready (tenant_id=%s collection=%s arn=%s endpoint=%s)",
            tenant_id,
            collection_name,
            details.arn,
            details.endpoint,
        )
        return details

    # -----------------
    # Private helpers
    # -----------------

    async def _create_idempotent(self, *, what: str, call: Callable[[], Awaitable[Any]]) -> Optional[Any]:
        """Run a create call. Returns its response, or None if the object already existed."""

        try:
            return await call()
        except ClientError as exc:
            if _error_code(exc) == _CONFLICT_CODE:
                logger.info("%s already exists", what)
                return None
            logger.error(
                "Failed creating %s (code=%s request_id=%s): %s",
                what,
                _error_code(exc),
                _request_id(exc),
                exc,
            )
            raise CollectionSetupError(f"Failed creating {what}") from exc
        except BotoCoreError as exc:
            logger.error("Failed creating %s: %s", what, exc)
            raise CollectionSetupError(f"Failed creating {what}") from exc

    async def _ensure_security_policy(
        self,
        client: Any,
        *,
        policy_name: str,
        policy_type: str,
        policy: Any,
        description: str,
    ) -> None:
        what = f"{policy_type} policy {policy_name}"
        created = await self._create_idempotent(
            what=what,
            call=lambda: client.create_security_policy(
                name=policy_name,
                type=policy_type,
                policy=json.dumps(policy),
                description=description,
            ),
        )
        if created is not None:
            logger.info("Created %s", what)
            return

        await self._reconcile_policy(
            client,
            family="security",
            policy_name=policy_name,
            policy_type=policy_type,
            policy=policy,
            description=description,
        )

    async def _ensure_access_policy(self, client: Any, *, policy_name: str, policy: Any, description: str) -> None:
        what = f"data access policy {policy_name}"
        created = await self._create_idempotent(
            what=what,
            call=lambda: client.create_access_policy(
                name=policy_name,
                type="data",
                policy=json.dumps(policy),
                description=description,
            ),
        )
        if created is not None:
            logger.info("Created %s", what)
            return

        await self._reconcile_policy(
            client,
            family="access",
            policy_name=policy_name,
            policy_type="data",
            policy=policy,
            description=description,
        )

    async def _reconcile_policy(
        self,
        client: Any,
        *,
        family: str,
        policy_name: str,
        policy_type: str,
        policy: Any,
        description: str,
    ) -> None:
        """Compare an existing policy with the current template.

        Drift is only logged unless `reconcile_policies` is enabled, in which
        case the policy is updated in place and failures abort provisioning.
        """

        getter, updater, detail_key = _POLICY_APIS[family]
        try:
            resp = await getattr(client, getter)(name=policy_name, type=policy_type)
            detail = resp.get(detail_key) or {}
            if _same_policy(detail.get("policy"), policy):
                return

            if not self._config.reconcile_policies:
                logger.warning(
                    "Existing %s policy differs from the current template; leaving it as-is (policy=%s)",
                    policy_type,
                    policy_name,
                )
                return

            await getattr(client, updater)(
                name=policy_name,
                type=policy_type,
                policyVersion=detail.get("policyVersion"),
                policy=json.dumps(policy),
                description=description,
            )
            logger.info("Updated drifted %s policy (policy=%s)", policy_type, policy_name)
        except (ClientError, BotoCoreError) as exc:
            if self._config.reconcile_policies:
                raise CollectionSetupError(f"Failed reconciling {policy_type} policy {policy_name}") from exc
            logger.warning("Could not compare existing %s policy (policy=%s): %s", policy_type, policy_name, exc)

    async def _ensure_collection(self, client: Any, *, collection_name: str, tenant_id: str, tenant_slug: str) -> None:
        resp = await self._create_idempotent(
            what=f"collection {collection_name}",
            call=lambda: client.create_collection(
                name=collection_name,
                type=self._config.collection_type,
                description=f"OpenSearch collection for tenant {tenant_slug} ({tenant_id})",
                tags=[
                    {"key": "TenantId", "value": tenant_id},
                    {"key": "TenantSlug", "value": tenant_slug},
                    {"key": "Service", "value": self._config.service_tag},
                    {"key": "ManagedBy", "value": self._config.managed_by},
                    {"key": "BedrockCompatible", "value": "true"},
                ],
            ),
        )
        if resp is not None:
            detail = resp.get("createCollectionDetail") or {}
            logger.info(
                "Collection creation initiated (collection=%s status=%s)",
                collection_name,
                detail.get("status"),
            )

    async def _wait_for_active(self, client: Any, *, collection_name: str) -> CollectionDetails:
        max_attempts = self._config.max_poll_attempts
        interval = self._config.poll_interval_seconds
        logger.info(
            "Waiting for collection to become ACTIVE (collection=%s max_attempts=%d interval=%.0fs)",
            collection_name,
            max_attempts,
            interval,
        )

        for attempt in range(1, max_attempts + 1):
            try:
                resp = await client.batch_get_collection(names=[collection_name])
                details = resp.get("collectionDetails") or []
                if details:
                    detail = details[0]
                    status = (detail.get("status") or "").upper()
                    logger.debug(
                        "Collection status check (collection=%s status=%s attempt=%d)",
                        collection_name,
                        status,
                        attempt,
                    )
                    if status == "ACTIVE":
                        # A detail without an ARN raises ValueError and counts as a miss.
                        return CollectionDetails.from_batch_get(detail)
                    if status in {"FAILED", "DELETING"}:
                        raise CollectionFailedError(
                            f"Collection entered terminal status: {collection_name} (status={status})"
                        )
                else:
                    logger.debug(
                        "Collection not visible yet (collection=%s attempt=%d errors=%s)",
                        collection_name,
                        attempt,
                        resp.get("collectionErrorDetails"),
                    )
            except CollectionSetupError:
                raise
            except Exception as exc:
                # Eventual consistency and throttling are retried within the same budget.
                logger.warning(
                    "Error checking collection status (collection=%s attempt=%d/%d): %s",
                    collection_name,
                    attempt,
                    max_attempts,
                    exc,
                )

            if attempt < max_attempts:
                await self._sleep(interval)

        raise CollectionTimeoutError(
            f"Collection did not become active after {max_attempts} attempts: {collection_name}"
        )

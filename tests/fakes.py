from __future__ import annotations

import json
from typing import Any, Callable, Optional

from botocore.exceptions import ClientError


ACME_ID = "11111111-1111-1111-1111-111111111111"
ACCOUNT_ROOT = "arn:aws:iam::123456789012:root"


def client_error(code: str, operation: str, message: str = "boom") -> ClientError:
    return ClientError(
        {"Error": {"Code": code, "Message": message}, "ResponseMetadata": {"RequestId": "req-1"}},
        operation,
    )


class FakeSession:
    """Stands in for aioboto3.Session: `client()` hands back the same fake every time."""

    def __init__(self, client: Any) -> None:
        self.client_obj = client
        self.client_kwargs: list[tuple[str, dict[str, Any]]] = []

    def client(self, service_name: str, **kwargs: Any) -> Any:
        self.client_kwargs.append((service_name, kwargs))
        return self.client_obj


class _AsyncContext:
    async def __aenter__(self) -> Any:
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        return None


class FakeAossClient(_AsyncContext):
    """In-memory OpenSearch Serverless control plane.

    Existing names raise ConflictException like the real API. `statuses` feeds
    successive batch_get_collection answers; the last one repeats.
    """

    def __init__(self, *, statuses: Optional[list[Any]] = None) -> None:
        self.calls: list[tuple[str, dict[str, Any]]] = []
        self.security_policies: dict[tuple[str, str], Any] = {}
        self.access_policies: dict[tuple[str, str], Any] = {}
        self.collections: dict[str, dict[str, Any]] = {}
        self.statuses: list[Any] = list(statuses or ["ACTIVE"])
        self.failures: dict[str, Exception] = {}

    def _record(self, op: str, kwargs: dict[str, Any]) -> None:
        self.calls.append((op, kwargs))
        if op in self.failures:
            raise self.failures[op]

    @property
    def operations(self) -> list[str]:
        return [op for op, _ in self.calls]

    async def create_security_policy(self, **kwargs: Any) -> dict[str, Any]:
        self._record("create_security_policy", kwargs)
        key = (kwargs["type"], kwargs["name"])
        if key in self.security_policies:
            raise client_error("ConflictException", "CreateSecurityPolicy")
        self.security_policies[key] = json.loads(kwargs["policy"])
        return {"securityPolicyDetail": {"name": kwargs["name"], "policyVersion": "v1"}}

    async def get_security_policy(self, **kwargs: Any) -> dict[str, Any]:
        self._record("get_security_policy", kwargs)
        policy = self.security_policies[(kwargs["type"], kwargs["name"])]
        return {"securityPolicyDetail": {"name": kwargs["name"], "policy": policy, "policyVersion": "v1"}}

    async def update_security_policy(self, **kwargs: Any) -> dict[str, Any]:
        self._record("update_security_policy", kwargs)
        self.security_policies[(kwargs["type"], kwargs["name"])] = json.loads(kwargs["policy"])
        return {"securityPolicyDetail": {"name": kwargs["name"], "policyVersion": "v2"}}

    async def create_access_policy(self, **kwargs: Any) -> dict[str, Any]:
        self._record("create_access_policy", kwargs)
        key = (kwargs["type"], kwargs["name"])
        if key in self.access_policies:
            raise client_error("ConflictException", "CreateAccessPolicy")
        self.access_policies[key] = json.loads(kwargs["policy"])
        return {"accessPolicyDetail": {"name": kwargs["name"], "policyVersion": "v1"}}

    async def get_access_policy(self, **kwargs: Any) -> dict[str, Any]:
        self._record("get_access_policy", kwargs)
        policy = self.access_policies[(kwargs["type"], kwargs["name"])]
        return {"accessPolicyDetail": {"name": kwargs["name"], "policy": policy, "policyVersion": "v1"}}

    async def update_access_policy(self, **kwargs: Any) -> dict[str, Any]:
        self._record("update_access_policy", kwargs)
        self.access_policies[(kwargs["type"], kwargs["name"])] = json.loads(kwargs["policy"])
        return {"accessPolicyDetail": {"name": kwargs["name"], "policyVersion": "v2"}}

    async def create_collection(self, **kwargs: Any) -> dict[str, Any]:
        self._record("create_collection", kwargs)
        name = kwargs["name"]
        if name in self.collections:
            raise client_error("ConflictException", "CreateCollection")
        self.collections[name] = {
            "name": name,
            "id": f"id-{name}",
            "arn": f"arn:aws:aoss:us-east-1:123456789012:collection/id-{name}",
            "collectionEndpoint": f"https://id-{name}.us-east-1.aoss.amazonaws.com",
            "dashboardEndpoint": f"https://id-{name}.us-east-1.aoss.amazonaws.com/_dashboards",
        }
        return {"createCollectionDetail": {"name": name, "status": "CREATING", "id": f"id-{name}"}}

    async def batch_get_collection(self, **kwargs: Any) -> dict[str, Any]:
        self._record("batch_get_collection", kwargs)
        status = self.statuses.pop(0) if len(self.statuses) > 1 else self.statuses[0]
        if isinstance(status, Exception):
            raise status
        name = kwargs["names"][0]
        if status is None or name not in self.collections:
            return {"collectionDetails": [], "collectionErrorDetails": [{"name": name, "errorCode": "NOT_FOUND"}]}
        return {"collectionDetails": [dict(self.collections[name], status=status)]}


class FakeSqsClient(_AsyncContext):
    """In-memory queue. Received messages stay until deleted, like SQS."""

    def __init__(self) -> None:
        self.pending: list[dict[str, Any]] = []
        self.deleted: list[str] = []
        self.visibility_changes: list[str] = []
        self.receive_calls = 0
        self.receive_failures: list[Exception] = []
        self.delete_failures: list[Exception] = []
        self.on_empty: Optional[Callable[[], None]] = None

    def send(self, body: Any, *, message_id: Optional[str] = None) -> str:
        message_id = message_id or f"msg-{len(self.pending) + len(self.deleted) + 1}"
        self.pending.append(
            {
                "MessageId": message_id,
                "ReceiptHandle": f"rh-{message_id}",
                "Body": body if isinstance(body, str) else json.dumps(body),
                "Attributes": {"ApproximateReceiveCount": "1"},
            }
        )
        return message_id

    async def receive_message(self, **kwargs: Any) -> dict[str, Any]:
        self.receive_calls += 1
        if self.receive_failures:
            raise self.receive_failures.pop(0)
        if not self.pending:
            if self.on_empty is not None:
                self.on_empty()
            return {}
        return {"Messages": [self.pending.pop(0)]}

    async def delete_message(self, **kwargs: Any) -> dict[str, Any]:
        if self.delete_failures:
            raise self.delete_failures.pop(0)
        self.deleted.append(kwargs["ReceiptHandle"])
        return {}

    async def change_message_visibility(self, **kwargs: Any) -> dict[str, Any]:
        self.visibility_changes.append(kwargs["ReceiptHandle"])
        return {}


class RecordingSleep:
    def __init__(self) -> None:
        self.delays: list[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


class FakeRdsClient(_AsyncContext):
    def __init__(self, *, error: Optional[Exception] = None) -> None:
        self.token_requests: list[dict[str, Any]] = []
        self.error = error

    async def generate_db_auth_token(self, **kwargs: Any) -> str:
        self.token_requests.append(kwargs)
        if self.error is not None:
            raise self.error
        return f"token-{len(self.token_requests)}"

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


UUID_PATTERN = r"^[0-9a-fA-F]{8}-[0-9a-fA-F]{4}-[0-9a-fA-F]{4}-[0-9a-fA-F]{4}-[0-9a-fA-F]{12}$"
SLUG_PATTERN = r"^[a-z0-9][a-z0-9-]{1,62}[a-z0-9]$"


class ProvisioningEvent(BaseModel):
    """Queue payload asking for a tenant's collection to be provisioned.

    Unknown keys are ignored; the three documented fields are required.
    """

    model_config = ConfigDict(frozen=True, extra="ignore")

    tenant_id: str = Field(..., pattern=UUID_PATTERN, description="Tenant UUID")
    tenant_slug: str = Field(..., pattern=SLUG_PATTERN, description="DNS-label tenant slug")
    timestamp: Any = Field(..., description="Issue time, usually ISO-8601; only presence is checked")

    @field_validator("timestamp")
    @classmethod
    def timestamp_present(cls, value: Any) -> Any:
        if value is None or (isinstance(value, str) and not value.strip()):
            raise ValueError("timestamp must be present")
        return value


@dataclass(frozen=True)
class QueueMessage:
    """One SQS delivery. `receipt_handle` is the token needed to delete it."""

    message_id: str
    receipt_handle: str
    body: str
    receive_count: Optional[int] = None


class CollectionDetails(BaseModel):
    name: str
    arn: str
    endpoint: Optional[str] = None
    dashboard_endpoint: Optional[str] = None
    status: str
    id: Optional[str] = None

    @staticmethod
    def from_batch_get(detail: dict) -> "CollectionDetails":
        """Raises ValueError when the detail carries no ARN."""

        arn = detail.get("arn")
        if not arn:
            raise ValueError(f"Collection detail has no arn (name={detail.get('name')})")
        return CollectionDetails(
            name=str(detail.get("name")),
            arn=str(arn),
            endpoint=detail.get("collectionEndpoint"),
            dashboard_endpoint=detail.get("dashboardEndpoint"),
            status=str(detail.get("status")),
            id=detail.get("id"),
        )

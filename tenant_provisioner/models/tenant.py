from __future__ import annotations

import enum
import uuid
from datetime import datetime
from typing import Optional

from sqlalchemy import DateTime, String, Uuid, func
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    pass


class ResourceStatus(str, enum.Enum):
    UNINITIALIZED = "uninitialized"
    READY = "ready"
    FAILED = "failed"


ACTIVE_TENANT_STATUS = "active"


class Tenant(Base):
    """Tenant row owned by the onboarding system; this worker only reads it and
    writes the `opensearch_*` columns."""

    # Schema is applied at runtime through `schema_translate_map`.
    __tablename__ = "tenants"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True)
    slug: Mapped[str] = mapped_column(String, unique=True)
    name: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    status: Mapped[str] = mapped_column(String)
    opensearch_arn: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    opensearch_status: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    @property
    def resource_status(self) -> ResourceStatus:
        if not self.opensearch_status:
            return ResourceStatus.UNINITIALIZED
        try:
            return ResourceStatus(self.opensearch_status)
        except ValueError:
            # Unknown values are left for operators; treat them as not provisioned.
            return ResourceStatus.UNINITIALIZED

"""UsageRecord model — append-only units consumed per tenant per period.

Kept for audit and analytics only; admission decisions read the ledger.
"""

import uuid

from sqlalchemy import UniqueConstraint
from sqlmodel import Field, SQLModel

from app.models.base import TimestampMixin, new_uuid


class UsageRecord(TimestampMixin, SQLModel, table=True):
    __tablename__ = "usage_records"
    __table_args__ = (UniqueConstraint("tenant_id", "period", name="uq_usage_tenant_period"),)

    id: uuid.UUID = Field(default_factory=new_uuid, primary_key=True)
    tenant_id: uuid.UUID = Field(foreign_key="tenants.id", nullable=False, index=True)
    period: str = Field(max_length=7, nullable=False)  # YYYY-MM
    units: int = Field(default=0, nullable=False)


class UsageRecordRead(SQLModel):
    period: str
    units: int

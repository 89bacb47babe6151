"""CreditLedger model — per-tenant consumption against a plan quota."""

import uuid
from datetime import datetime

from sqlmodel import Field, SQLModel

from app.core.plans import DEFAULT_PLAN
from app.models.base import TimestampMixin, new_uuid, utcnow


class CreditLedger(TimestampMixin, SQLModel, table=True):
    __tablename__ = "credit_ledgers"

    id: uuid.UUID = Field(default_factory=new_uuid, primary_key=True)
    tenant_id: uuid.UUID = Field(
        foreign_key="tenants.id", nullable=False, unique=True, index=True,
    )

    plan: str = Field(default=DEFAULT_PLAN.value, max_length=50)
    credits_used: int = Field(default=0, nullable=False)
    credit_limit: int = Field(default=0, nullable=False)
    billing_period_start: datetime = Field(default_factory=utcnow, nullable=False)

    # Overage terms (copied from the plan when it is applied)
    overage_enabled: bool = Field(default=False)
    overage_price_per_unit: float = Field(default=0.0)
    overage_cap_amount: float = Field(default=0.0)


# ── Pydantic schemas ─────────────────────────────────────────

class LedgerRead(SQLModel):
    plan: str
    credits_used: int
    credit_limit: int
    credits_remaining: int
    billing_period_start: datetime
    overage_enabled: bool
    overage_price_per_unit: float
    overage_cap_amount: float
    auto_schedule_enabled: bool

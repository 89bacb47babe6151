"""Billing — the tenant's credit ledger, usage history and plan-gated settings."""

from fastapi import APIRouter, HTTPException, status
from pydantic import BaseModel
from sqlmodel import select

from app.api.deps import Auth, Session
from app.models.ledger import CreditLedger, LedgerRead
from app.models.tenant import Tenant
from app.models.usage_record import UsageRecord, UsageRecordRead
from app.services import ledger as ledger_service

router = APIRouter(prefix="/billing", tags=["billing"])


class BillingResponse(BaseModel):
    ledger: LedgerRead
    usage: list[UsageRecordRead]


class AutoScheduleRequest(BaseModel):
    enabled: bool


def _ledger_read(ledger: CreditLedger, tenant: Tenant) -> LedgerRead:
    return LedgerRead(
        plan=ledger.plan,
        credits_used=ledger.credits_used,
        credit_limit=ledger.credit_limit,
        credits_remaining=max(0, ledger.credit_limit - ledger.credits_used),
        billing_period_start=ledger.billing_period_start,
        overage_enabled=ledger.overage_enabled,
        overage_price_per_unit=ledger.overage_price_per_unit,
        overage_cap_amount=ledger.overage_cap_amount,
        auto_schedule_enabled=tenant.auto_schedule_enabled,
    )


async def _tenant(session, auth) -> Tenant:
    tenant = await session.get(Tenant, auth.tenant_id)
    if tenant is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Tenant not found")
    return tenant


@router.get("", response_model=BillingResponse)
async def get_billing(auth: Auth, session: Session) -> BillingResponse:
    tenant = await _tenant(session, auth)
    ledger = await ledger_service.get_or_create_ledger(session, auth.tenant_id)

    stmt = (
        select(UsageRecord)
        .where(UsageRecord.tenant_id == auth.tenant_id)
        .order_by(UsageRecord.period.desc())  # type: ignore[attr-defined]
        .limit(12)
    )
    result = await session.execute(stmt)
    usage = [UsageRecordRead.model_validate(r) for r in result.scalars().all()]
    return BillingResponse(ledger=_ledger_read(ledger, tenant), usage=usage)


@router.put("/auto-schedule", response_model=LedgerRead)
async def set_auto_schedule(
    body: AutoScheduleRequest,
    auth: Auth,
    session: Session,
) -> LedgerRead:
    """Toggle analysis of newly created catalog items; requires a plan that includes it."""
    error = await ledger_service.set_auto_schedule(session, auth.tenant_id, body.enabled)
    if error:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=error)

    tenant = await _tenant(session, auth)
    await session.refresh(tenant)
    ledger = await ledger_service.get_or_create_ledger(session, auth.tenant_id)
    return _ledger_read(ledger, tenant)

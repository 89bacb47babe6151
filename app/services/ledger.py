"""Credit ledger — per-tenant quota tracking and the admission gate for new work.

Admission is all-or-nothing: a request for N units is either admitted in
full (possibly partly as overage) or rejected; it is never trimmed to fit.

Consumption is a compare-and-swap on the ledger row, and ``reserve`` wraps
check + consume in a per-tenant lock, so two concurrent scans can never both
pass the check and jointly overshoot the cap. If the row changed between
check and write, the consume fails closed.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal

from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select

from app.core.plans import (
    ACTIVE_SUBSCRIPTION_STATUSES,
    DEFAULT_PLAN,
    ENDED_SUBSCRIPTION_STATUSES,
    PlanTier,
    get_plan,
    plan_rank,
)
from app.models.base import period_key, utcnow
from app.models.ledger import CreditLedger
from app.models.tenant import Tenant
from app.models.usage_record import UsageRecord

logger = logging.getLogger(__name__)

_CENT = Decimal("0.01")

_tenant_locks: dict[uuid.UUID, asyncio.Lock] = {}


@dataclass(frozen=True)
class Admission:
    """Outcome of an availability check."""
    allowed: bool
    use_overage: bool = False
    overage_units: int = 0
    overage_cost: Decimal = Decimal("0")
    remaining: int = 0
    reason: str | None = None


@dataclass(frozen=True)
class PlanChange:
    plan: str
    changed: bool


@asynccontextmanager
async def tenant_lock(tenant_id: uuid.UUID) -> AsyncIterator[None]:
    """Serialize ledger read-modify-write sequences for one tenant in this process."""
    lock = _tenant_locks.setdefault(tenant_id, asyncio.Lock())
    async with lock:
        yield


def _dec(value: float) -> Decimal:
    return Decimal(str(value))


def max_overage_units(ledger: CreditLedger) -> int:
    """How many units beyond the quota the overage cap can pay for."""
    if not ledger.overage_enabled:
        return 0
    price = _dec(ledger.overage_price_per_unit)
    if price <= 0:
        return 0
    return int(_dec(ledger.overage_cap_amount) // price)


def credit_ceiling(ledger: CreditLedger) -> int:
    """Absolute upper bound for ``credits_used`` under the ledger's current terms."""
    return ledger.credit_limit + max_overage_units(ledger)


def evaluate_admission(ledger: CreditLedger, requested: int) -> Admission:
    """Decide whether ``requested`` units fit, without touching the database."""
    remaining = max(0, ledger.credit_limit - ledger.credits_used)
    if requested <= 0:
        return Admission(allowed=False, remaining=remaining, reason="Nothing to schedule")
    if remaining >= requested:
        return Admission(allowed=True, remaining=remaining)

    if not ledger.overage_enabled:
        return Admission(
            allowed=False,
            remaining=remaining,
            reason=f"Not enough credits: {remaining} remaining, {requested} requested",
        )

    shortfall = requested - remaining
    already_over = max(0, ledger.credits_used - ledger.credit_limit)
    if already_over + shortfall > max_overage_units(ledger):
        return Admission(
            allowed=False,
            remaining=remaining,
            reason="Overage cap reached for this billing period",
        )

    cost = (shortfall * _dec(ledger.overage_price_per_unit)).quantize(_CENT, ROUND_HALF_UP)
    return Admission(
        allowed=True,
        use_overage=True,
        overage_units=shortfall,
        overage_cost=cost,
        remaining=remaining,
    )


async def get_ledger(session: AsyncSession, tenant_id: uuid.UUID) -> CreditLedger | None:
    stmt = select(CreditLedger).where(CreditLedger.tenant_id == tenant_id)
    result = await session.execute(stmt)
    return result.scalar_one_or_none()


def _apply_plan(ledger: CreditLedger, tier: str) -> None:
    plan = get_plan(tier)
    ledger.plan = plan.tier.value
    ledger.credit_limit = plan.credits
    ledger.overage_enabled = plan.overage_enabled
    ledger.overage_price_per_unit = float(plan.overage_price_per_unit)
    ledger.overage_cap_amount = float(plan.overage_cap_amount)


async def get_or_create_ledger(session: AsyncSession, tenant_id: uuid.UUID) -> CreditLedger:
    ledger = await get_ledger(session, tenant_id)
    if ledger is None:
        ledger = CreditLedger(tenant_id=tenant_id)
        _apply_plan(ledger, DEFAULT_PLAN)
        session.add(ledger)
        await session.commit()
        await session.refresh(ledger)
    return ledger


async def _fresh_ledger(session: AsyncSession, tenant_id: uuid.UUID) -> CreditLedger:
    ledger = await get_or_create_ledger(session, tenant_id)
    # Other sessions may have consumed since this object was loaded
    await session.refresh(ledger)
    return ledger


async def check_availability(
    session: AsyncSession, tenant_id: uuid.UUID, units: int,
) -> Admission:
    ledger = await _fresh_ledger(session, tenant_id)
    return evaluate_admission(ledger, units)


async def _record_usage(session: AsyncSession, tenant_id: uuid.UUID, units: int) -> None:
    period = period_key()
    stmt = (
        update(UsageRecord)
        .where(UsageRecord.tenant_id == tenant_id, UsageRecord.period == period)
        .values(units=UsageRecord.units + units, updated_at=utcnow())
        .execution_options(synchronize_session=False)
    )
    result = await session.execute(stmt)
    if result.rowcount == 0:
        session.add(UsageRecord(tenant_id=tenant_id, period=period, units=units))
        await session.flush()


async def consume(
    session: AsyncSession,
    tenant_id: uuid.UUID,
    units: int,
    *,
    commit: bool = True,
) -> bool:
    """Atomically add ``units`` to ``credits_used`` and the period's usage record.

    Returns False, writing nothing, when the units no longer fit or the ledger
    row changed underneath us. With ``commit=False`` the caller owns the
    transaction, which lets the consumption land together with the work it pays for.
    """
    ledger = await _fresh_ledger(session, tenant_id)
    admission = evaluate_admission(ledger, units)
    if not admission.allowed:
        return False

    observed = ledger.credits_used
    stmt = (
        update(CreditLedger)
        .where(
            CreditLedger.tenant_id == tenant_id,
            CreditLedger.credits_used == observed,
            CreditLedger.credit_limit == ledger.credit_limit,
            CreditLedger.overage_enabled == ledger.overage_enabled,
            CreditLedger.credits_used + units <= credit_ceiling(ledger),
        )
        .values(credits_used=CreditLedger.credits_used + units, updated_at=utcnow())
        .execution_options(synchronize_session=False)
    )
    result = await session.execute(stmt)
    if result.rowcount != 1:
        logger.warning("Ledger for tenant %s changed during consume; rejecting %d units",
                       tenant_id, units)
        await session.rollback()
        return False

    await _record_usage(session, tenant_id, units)
    if commit:
        await session.commit()
    await session.refresh(ledger)
    logger.info("Tenant %s consumed %d credits (overage units: %d)",
                tenant_id, units, admission.overage_units)
    return True


async def reserve(session: AsyncSession, tenant_id: uuid.UUID, units: int) -> Admission:
    """Check and consume as one critical section for the tenant."""
    async with tenant_lock(tenant_id):
        admission = await check_availability(session, tenant_id, units)
        if not admission.allowed:
            return admission
        if not await consume(session, tenant_id, units):
            return Admission(
                allowed=False,
                remaining=admission.remaining,
                reason="Credit ledger changed concurrently; try again",
            )
        return admission


async def reset_period(session: AsyncSession, tenant_id: uuid.UUID) -> CreditLedger:
    """Zero consumption and start a new billing period."""
    async with tenant_lock(tenant_id):
        ledger = await _fresh_ledger(session, tenant_id)
        ledger.credits_used = 0
        ledger.billing_period_start = utcnow()
        ledger.updated_at = utcnow()
        session.add(ledger)
        await session.commit()
    logger.info("Reset billing period for tenant %s", tenant_id)
    return ledger


async def change_plan(session: AsyncSession, tenant_id: uuid.UUID, tier: str) -> PlanChange:
    """Move a tenant to another plan: new quota, consumption reset to zero.

    On downgrade any feature the new plan does not include is switched off.
    """
    plan = get_plan(tier)
    async with tenant_lock(tenant_id):
        ledger = await _fresh_ledger(session, tenant_id)
        if ledger.plan == plan.tier:
            return PlanChange(plan=ledger.plan, changed=False)

        downgrade = plan_rank(plan.tier) < plan_rank(ledger.plan)
        _apply_plan(ledger, plan.tier)
        ledger.credits_used = 0
        ledger.billing_period_start = utcnow()
        ledger.updated_at = utcnow()
        session.add(ledger)

        if downgrade and not plan.auto_schedule:
            tenant = await session.get(Tenant, tenant_id)
            if tenant is not None and tenant.auto_schedule_enabled:
                tenant.auto_schedule_enabled = False
                session.add(tenant)
        await session.commit()

    logger.info("Tenant %s moved to plan %s (%s)",
                tenant_id, plan.tier, "downgrade" if downgrade else "upgrade")
    return PlanChange(plan=plan.tier.value, changed=True)


async def apply_subscription_status(
    session: AsyncSession, tenant_id: uuid.UUID, status: str | None,
) -> PlanChange:
    """Map a billing-platform subscription status onto a plan change."""
    normalized = (status or "").upper()
    if normalized in ACTIVE_SUBSCRIPTION_STATUSES:
        return await change_plan(session, tenant_id, PlanTier.PRO)
    if normalized in ENDED_SUBSCRIPTION_STATUSES:
        return await change_plan(session, tenant_id, PlanTier.FREE)

    ledger = await get_or_create_ledger(session, tenant_id)
    logger.info("Ignoring subscription status %r for tenant %s", status, tenant_id)
    return PlanChange(plan=ledger.plan, changed=False)


async def set_auto_schedule(
    session: AsyncSession, tenant_id: uuid.UUID, enabled: bool,
) -> str | None:
    """Toggle auto-scheduling of new items. Returns an error message if not allowed."""
    ledger = await get_or_create_ledger(session, tenant_id)
    if enabled and not get_plan(ledger.plan).auto_schedule:
        return f"Auto-scheduling is not available on the {get_plan(ledger.plan).name} plan"

    tenant = await session.get(Tenant, tenant_id)
    if tenant is None:
        return "Tenant not found"
    tenant.auto_schedule_enabled = enabled
    session.add(tenant)
    await session.commit()
    return None

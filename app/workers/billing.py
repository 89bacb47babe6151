"""Periodic job — start a new billing period for ledgers whose period has run out."""

from __future__ import annotations

import logging
from datetime import timedelta

from sqlmodel import select

from app.models.base import utcnow
from app.models.ledger import CreditLedger
from app.services.ledger import reset_period

logger = logging.getLogger(__name__)

BILLING_PERIOD = timedelta(days=30)


async def reset_expired_periods(ctx: dict) -> dict:
    """Cron job: reset consumption for every ledger older than one billing period."""
    cutoff = utcnow() - BILLING_PERIOD
    reset = 0

    async with ctx["session_factory"]() as session:
        stmt = select(CreditLedger.tenant_id).where(CreditLedger.billing_period_start <= cutoff)
        result = await session.execute(stmt)
        tenant_ids = list(result.scalars().all())

        for tenant_id in tenant_ids:
            await reset_period(session, tenant_id)
            reset += 1

    if reset:
        logger.info("Billing scheduler: reset %d ledgers", reset)
    return {"reset": reset}

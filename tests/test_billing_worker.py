"""Tests for the billing-period reset cron job."""

from datetime import timedelta

import pytest

from app.models.base import utcnow
from app.models.tenant import Tenant
from app.services import ledger
from app.workers.billing import reset_expired_periods


@pytest.mark.asyncio
async def test_only_expired_periods_are_reset(session, session_factory, tenant):
    fresh_tenant = Tenant(name="Fresh", slug="fresh")
    session.add(fresh_tenant)
    await session.commit()

    expired = await ledger.get_or_create_ledger(session, tenant.id)
    expired.credits_used = 40
    expired.billing_period_start = utcnow() - timedelta(days=31)
    fresh = await ledger.get_or_create_ledger(session, fresh_tenant.id)
    fresh.credits_used = 12
    session.add_all([expired, fresh])
    await session.commit()

    result = await reset_expired_periods({"session_factory": session_factory})

    assert result == {"reset": 1}
    await session.refresh(expired)
    await session.refresh(fresh)
    assert expired.credits_used == 0
    assert fresh.credits_used == 12


@pytest.mark.asyncio
async def test_nothing_to_reset(session_factory, tenant):
    assert await reset_expired_periods({"session_factory": session_factory}) == {"reset": 0}

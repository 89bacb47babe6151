"""Centralized subscription plan configuration.

Single source of truth for per-plan credit quotas, overage terms, and
plan-gated features. Ledger rows copy these values when a plan is applied,
so changing a plan here only affects tenants on their next plan change.
"""

from dataclasses import dataclass
from decimal import Decimal
from enum import StrEnum


class PlanTier(StrEnum):
    FREE = "FREE"
    PRO = "PRO"


@dataclass(frozen=True)
class Plan:
    tier: PlanTier
    name: str
    credits: int
    price: Decimal
    overage_enabled: bool = False
    overage_price_per_unit: Decimal = Decimal("0")
    overage_cap_amount: Decimal = Decimal("0")
    auto_schedule: bool = False


PLANS: dict[PlanTier, Plan] = {
    PlanTier.FREE: Plan(
        tier=PlanTier.FREE,
        name="Free",
        credits=50,
        price=Decimal("0"),
    ),
    PlanTier.PRO: Plan(
        tier=PlanTier.PRO,
        name="Pro",
        credits=5000,
        price=Decimal("19"),
        overage_enabled=True,
        overage_price_per_unit=Decimal("0.01"),
        overage_cap_amount=Decimal("50"),
        auto_schedule=True,
    ),
}

DEFAULT_PLAN = PlanTier.FREE

# Subscription states reported by the billing platform.
ACTIVE_SUBSCRIPTION_STATUSES = frozenset({"ACTIVE"})
ENDED_SUBSCRIPTION_STATUSES = frozenset({"CANCELLED", "EXPIRED", "DECLINED"})


def get_plan(tier: str) -> Plan:
    """Return the plan for a tier identifier, falling back to the default plan."""
    try:
        return PLANS[PlanTier(tier)]
    except ValueError:
        return PLANS[DEFAULT_PLAN]


def plan_rank(tier: str) -> int:
    """Ordering used to tell upgrades from downgrades."""
    return list(PLANS).index(get_plan(tier).tier)

"""Import all models so SQLModel.metadata picks them up."""

from app.models.api_token import ApiToken
from app.models.item import ITEM_TRANSITIONS, Item, ItemIn, ItemRead, ItemStatus
from app.models.job import Job, JobRead, JobStatus
from app.models.ledger import CreditLedger, LedgerRead
from app.models.tenant import Tenant, TenantRead
from app.models.usage_record import UsageRecord, UsageRecordRead

__all__ = [
    "ITEM_TRANSITIONS",
    "ApiToken",
    "CreditLedger",
    "Item",
    "ItemIn",
    "ItemRead",
    "ItemStatus",
    "Job",
    "JobRead",
    "JobStatus",
    "LedgerRead",
    "Tenant",
    "TenantRead",
    "UsageRecord",
    "UsageRecordRead",
]

"""Sync coordinator — write accepted suggestions back to the catalog, item by item.

Each selected field group is written independently. An item becomes SYNCED
only when every selected write succeeds; otherwise it stays ANALYZED with
``last_error`` set and can be synced again later. One item's failure never
stops the rest of the batch.
"""

from __future__ import annotations

import logging
import uuid
from collections.abc import Collection, Sequence
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Protocol

from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select

from app.models.base import utcnow
from app.models.item import Item, ItemStatus, can_transition
from app.services.catalog import WriteResult

logger = logging.getLogger(__name__)


class FieldGroup(StrEnum):
    FIELDS = "fields"
    LABELS = "labels"


class CatalogStore(Protocol):
    async def write_fields(
        self, item_id: str, fields: dict[str, str], category_hint: str | None = None,
    ) -> WriteResult: ...

    async def write_labels(self, item_id: str, labels: list[str]) -> WriteResult: ...


@dataclass
class SyncReport:
    synced_count: int = 0
    failed_count: int = 0
    skipped_count: int = 0
    per_item_errors: dict[str, str] = field(default_factory=dict)


async def _write_groups(
    catalog: CatalogStore, item: Item, groups: Collection[FieldGroup],
) -> list[str]:
    """Apply each selected group; return one message per failed group."""
    failures: list[str] = []

    if FieldGroup.FIELDS in groups:
        fields = item.fields()
        if fields:
            result = await catalog.write_fields(item.external_id, fields, item.current_category)
            if not result.ok:
                failures.append(f"fields: {result.error or 'write failed'}")

    if FieldGroup.LABELS in groups:
        labels = item.labels()
        if labels:
            result = await catalog.write_labels(item.external_id, labels)
            if not result.ok:
                failures.append(f"labels: {result.error or 'write failed'}")

    return failures


async def sync_items(
    session: AsyncSession,
    catalog: CatalogStore,
    tenant_id: uuid.UUID,
    item_ids: Sequence[uuid.UUID],
    field_groups: Collection[FieldGroup],
) -> SyncReport:
    """Sync the selected items; items that are not ANALYZED are skipped."""
    report = SyncReport()
    groups = frozenset(field_groups)

    for item_id in item_ids:
        stmt = select(Item).where(Item.id == item_id, Item.tenant_id == tenant_id)
        item = (await session.execute(stmt)).scalar_one_or_none()
        if item is None or not groups or not can_transition(item.status, ItemStatus.SYNCED):
            report.skipped_count += 1
            continue

        try:
            failures = await _write_groups(catalog, item, groups)
            if failures:
                item.last_error = "; ".join(failures)[:2000]
            else:
                item.status = ItemStatus.SYNCED
                item.synced_at = utcnow()
                item.last_error = None
            item.updated_at = utcnow()
            session.add(item)
            await session.commit()
        except Exception as exc:
            await session.rollback()
            logger.exception("Sync failed for item %s", item_id)
            failures = [f"internal: {exc}"]

        if failures:
            report.failed_count += 1
            report.per_item_errors[str(item_id)] = "; ".join(failures)
            logger.warning("Item %s not synced: %s", item_id, report.per_item_errors[str(item_id)])
        else:
            report.synced_count += 1

    logger.info(
        "Sync for tenant %s: %d synced, %d failed, %d skipped",
        tenant_id, report.synced_count, report.failed_count, report.skipped_count,
    )
    return report

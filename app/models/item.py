"""Item model — one product image analyzed and synced independently."""

import uuid
from datetime import datetime
from enum import StrEnum

from sqlalchemy import Text
from sqlmodel import Column, Field, SQLModel

from app.models.base import TimestampMixin, dump_json, load_json, new_uuid


class ItemStatus(StrEnum):
    PENDING = "PENDING"
    ANALYZED = "ANALYZED"
    ERROR = "ERROR"
    SYNCED = "SYNCED"


# Allowed status transitions; anything else is never written.
ITEM_TRANSITIONS: dict[ItemStatus, frozenset[ItemStatus]] = {
    ItemStatus.PENDING: frozenset({ItemStatus.ANALYZED, ItemStatus.ERROR}),
    ItemStatus.ANALYZED: frozenset({ItemStatus.SYNCED}),
    ItemStatus.ERROR: frozenset(),
    ItemStatus.SYNCED: frozenset(),
}


def can_transition(current: ItemStatus, target: ItemStatus) -> bool:
    return target in ITEM_TRANSITIONS[current]


class Item(TimestampMixin, SQLModel, table=True):
    __tablename__ = "items"

    id: uuid.UUID = Field(default_factory=new_uuid, primary_key=True)
    job_id: uuid.UUID = Field(foreign_key="jobs.id", nullable=False, index=True)
    tenant_id: uuid.UUID = Field(foreign_key="tenants.id", nullable=False, index=True)

    # Catalog identifier, e.g. "gid://shopify/Product/123"
    external_id: str = Field(max_length=255, nullable=False, index=True)
    title: str = Field(default="", max_length=512)
    source_image_ref: str = Field(sa_column=Column(Text, nullable=False))
    current_category: str | None = Field(default=None, max_length=255)
    current_labels: str = Field(default="", sa_column=Column(Text, nullable=False, server_default=""))

    status: ItemStatus = Field(default=ItemStatus.PENDING)

    # Suggestions stored as JSON text
    suggested_fields: str | None = Field(default=None, sa_column=Column(Text))
    suggested_labels: str | None = Field(default=None, sa_column=Column(Text))

    synced_at: datetime | None = Field(default=None)
    last_error: str | None = Field(default=None, max_length=2000)

    def fields(self) -> dict[str, str]:
        return load_json(self.suggested_fields, {})

    def labels(self) -> list[str]:
        return load_json(self.suggested_labels, [])


def encode_fields(fields: dict[str, str]) -> str:
    return dump_json({k: str(v) for k, v in fields.items() if v is not None})


def encode_labels(labels: list[str]) -> str:
    """Store labels as an ordered set: first occurrence wins, blanks dropped."""
    seen: dict[str, None] = {}
    for label in labels:
        label = label.strip()
        if label and label not in seen:
            seen[label] = None
    return dump_json(list(seen))


# ── Pydantic schemas ─────────────────────────────────────────

class ItemIn(SQLModel):
    """An item as supplied by a caller starting a scan."""
    external_id: str = Field(max_length=255)
    title: str = Field(default="", max_length=512)
    image_ref: str
    category: str | None = None
    labels: list[str] = Field(default_factory=list)


class ItemRead(SQLModel):
    id: uuid.UUID
    job_id: uuid.UUID
    external_id: str
    title: str
    source_image_ref: str
    current_category: str | None
    status: ItemStatus
    suggested_fields: dict[str, str]
    suggested_labels: list[str]
    synced_at: datetime | None
    last_error: str | None
    created_at: datetime

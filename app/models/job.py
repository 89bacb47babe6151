"""Job model — a batch of items submitted together for analysis."""

import uuid
from datetime import datetime
from enum import StrEnum

from sqlmodel import Field, SQLModel

from app.models.base import TimestampMixin, new_uuid


class JobStatus(StrEnum):
    QUEUED = "QUEUED"
    PROCESSING = "PROCESSING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"


class Job(TimestampMixin, SQLModel, table=True):
    __tablename__ = "jobs"

    id: uuid.UUID = Field(default_factory=new_uuid, primary_key=True)
    tenant_id: uuid.UUID = Field(foreign_key="tenants.id", nullable=False, index=True)
    status: JobStatus = Field(default=JobStatus.QUEUED)
    total_items: int = Field(nullable=False)
    # Items of this job no longer PENDING; only ever recomputed, never incremented
    processed: int = Field(default=0, nullable=False)


# ── Pydantic schemas ─────────────────────────────────────────

class JobRead(SQLModel):
    id: uuid.UUID
    tenant_id: uuid.UUID
    status: JobStatus
    total_items: int
    processed: int
    created_at: datetime
    updated_at: datetime

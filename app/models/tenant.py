"""Tenant model — one installation of the app on a catalog (shop)."""

import uuid

from sqlmodel import Field, SQLModel

from app.models.base import TimestampMixin, new_uuid


class Tenant(TimestampMixin, SQLModel, table=True):
    __tablename__ = "tenants"

    id: uuid.UUID = Field(default_factory=new_uuid, primary_key=True)
    name: str = Field(max_length=255, nullable=False)
    slug: str = Field(max_length=100, unique=True, nullable=False, index=True)
    is_active: bool = Field(default=True)

    # External catalog this tenant writes suggestions back into
    shop_domain: str = Field(default="", max_length=255)
    catalog_token_encrypted: str | None = Field(default=None, max_length=1024)

    # Plan-gated: analyze newly created catalog items automatically
    auto_schedule_enabled: bool = Field(default=False)


# ── Pydantic schemas ─────────────────────────────────────────────────────────────────

class TenantRead(SQLModel):
    id: uuid.UUID
    name: str
    slug: str
    is_active: bool
    shop_domain: str
    auto_schedule_enabled: bool

"""create tenants, ledgers, usage records, api tokens, jobs and items

Revision ID: 4f1d2a9c7e30
Revises: 
Create Date: 2026-10-19 09:12:44.218301

"""
from collections.abc import Sequence

import sqlalchemy as sa

from alembic import op

# revision identifiers, used by Alembic.
revision: str = '4f1d2a9c7e30'
down_revision: str | Sequence[str] | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None

job_status = sa.Enum("QUEUED", "PROCESSING", "COMPLETED", "FAILED", name="jobstatus")
item_status = sa.Enum("PENDING", "ANALYZED", "ERROR", "SYNCED", name="itemstatus")


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
    ]


def upgrade() -> None:
    op.create_table(
        "tenants",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("slug", sa.String(100), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False),
        sa.Column("shop_domain", sa.String(255), nullable=False),
        sa.Column("catalog_token_encrypted", sa.String(1024), nullable=True),
        sa.Column("auto_schedule_enabled", sa.Boolean(), nullable=False),
        *_timestamps(),
    )
    op.create_index("ix_tenants_slug", "tenants", ["slug"], unique=True)

    op.create_table(
        "credit_ledgers",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("tenant_id", sa.Uuid(), sa.ForeignKey("tenants.id"), nullable=False),
        sa.Column("plan", sa.String(50), nullable=False),
        sa.Column("credits_used", sa.Integer(), nullable=False),
        sa.Column("credit_limit", sa.Integer(), nullable=False),
        sa.Column("billing_period_start", sa.DateTime(), nullable=False),
        sa.Column("overage_enabled", sa.Boolean(), nullable=False),
        sa.Column("overage_price_per_unit", sa.Float(), nullable=False),
        sa.Column("overage_cap_amount", sa.Float(), nullable=False),
        *_timestamps(),
    )
    op.create_index("ix_credit_ledgers_tenant_id", "credit_ledgers", ["tenant_id"], unique=True)

    op.create_table(
        "usage_records",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("tenant_id", sa.Uuid(), sa.ForeignKey("tenants.id"), nullable=False),
        sa.Column("period", sa.String(7), nullable=False),
        sa.Column("units", sa.Integer(), nullable=False),
        *_timestamps(),
        sa.UniqueConstraint("tenant_id", "period", name="uq_usage_tenant_period"),
    )
    op.create_index("ix_usage_records_tenant_id", "usage_records", ["tenant_id"])

    op.create_table(
        "api_tokens",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("tenant_id", sa.Uuid(), sa.ForeignKey("tenants.id"), nullable=False),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("token_hash", sa.String(), nullable=False),
        sa.Column("token_prefix", sa.String(16), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False),
        sa.Column("last_used_at", sa.DateTime(), nullable=True),
        *_timestamps(),
    )
    op.create_index("ix_api_tokens_tenant_id", "api_tokens", ["tenant_id"])
    op.create_index("ix_api_tokens_token_hash", "api_tokens", ["token_hash"], unique=True)

    op.create_table(
        "jobs",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("tenant_id", sa.Uuid(), sa.ForeignKey("tenants.id"), nullable=False),
        sa.Column("status", job_status, nullable=False),
        sa.Column("total_items", sa.Integer(), nullable=False),
        sa.Column("processed", sa.Integer(), nullable=False),
        *_timestamps(),
    )
    op.create_index("ix_jobs_tenant_id", "jobs", ["tenant_id"])

    op.create_table(
        "items",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("job_id", sa.Uuid(), sa.ForeignKey("jobs.id"), nullable=False),
        sa.Column("tenant_id", sa.Uuid(), sa.ForeignKey("tenants.id"), nullable=False),
        sa.Column("external_id", sa.String(255), nullable=False),
        sa.Column("title", sa.String(512), nullable=False),
        sa.Column("source_image_ref", sa.Text(), nullable=False),
        sa.Column("current_category", sa.String(255), nullable=True),
        sa.Column("current_labels", sa.Text(), nullable=False, server_default=""),
        sa.Column("status", item_status, nullable=False),
        sa.Column("suggested_fields", sa.Text(), nullable=True),
        sa.Column("suggested_labels", sa.Text(), nullable=True),
        sa.Column("synced_at", sa.DateTime(), nullable=True),
        sa.Column("last_error", sa.String(2000), nullable=True),
        *_timestamps(),
    )
    op.create_index("ix_items_job_id", "items", ["job_id"])
    op.create_index("ix_items_tenant_id", "items", ["tenant_id"])
    op.create_index("ix_items_external_id", "items", ["external_id"])


def downgrade() -> None:
    op.drop_table("items")
    op.drop_table("jobs")
    op.drop_table("api_tokens")
    op.drop_table("usage_records")
    op.drop_table("credit_ledgers")
    op.drop_table("tenants")
    item_status.drop(op.get_bind(), checkfirst=True)
    job_status.drop(op.get_bind(), checkfirst=True)

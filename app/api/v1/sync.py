"""Sync selected analyzed items back to the tenant's catalog."""

import uuid

from fastapi import APIRouter, HTTPException, status
from pydantic import BaseModel, Field

from app.api.deps import Auth, Catalog, Session
from app.services.sync import FieldGroup, sync_items

router = APIRouter(prefix="/sync", tags=["sync"])


class SyncRequest(BaseModel):
    item_ids: list[uuid.UUID] = Field(min_length=1, max_length=500)
    field_groups: list[FieldGroup] = Field(
        default_factory=lambda: [FieldGroup.FIELDS, FieldGroup.LABELS],
        min_length=1,
    )


class SyncResponse(BaseModel):
    synced_count: int
    failed_count: int
    skipped_count: int
    per_item_errors: dict[str, str]


@router.post("", response_model=SyncResponse)
async def sync_selected(
    body: SyncRequest,
    auth: Auth,
    session: Session,
    catalog: Catalog,
) -> SyncResponse:
    """Write suggestions for each item; one item's failure never blocks the others."""
    if catalog is None:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="Catalog credentials are not configured for this tenant",
        )
    report = await sync_items(session, catalog, auth.tenant_id, body.item_ids, body.field_groups)
    return SyncResponse(
        synced_count=report.synced_count,
        failed_count=report.failed_count,
        skipped_count=report.skipped_count,
        per_item_errors=report.per_item_errors,
    )

"""Scans and jobs — start analysis batches and follow their progress, scoped to tenant_id."""

import logging
import uuid

import httpx
from fastapi import APIRouter, HTTPException, Query, status
from pydantic import BaseModel, Field

from app.api.deps import Auth, Catalog, Queue, Session
from app.core.config import get_settings
from app.models.item import Item, ItemIn, ItemRead
from app.models.job import JobRead
from app.services import jobs
from app.services.catalog import CatalogClient

logger = logging.getLogger(__name__)

router = APIRouter(tags=["jobs"])


class ScanRequest(BaseModel):
    """Items to analyze; when omitted, products are fetched from the tenant's catalog."""
    items: list[ItemIn] | None = Field(default=None, max_length=1000)


class ScanResponse(BaseModel):
    job: JobRead
    enqueued: int
    use_overage: bool
    overage_units: int
    overage_cost: str


class JobDetail(BaseModel):
    job: JobRead
    items: list[ItemRead]


class RequeueResponse(BaseModel):
    job_id: uuid.UUID
    enqueued: int


def _item_read(item: Item) -> ItemRead:
    return ItemRead(
        id=item.id,
        job_id=item.job_id,
        external_id=item.external_id,
        title=item.title,
        source_image_ref=item.source_image_ref,
        current_category=item.current_category,
        status=item.status,
        suggested_fields=item.fields(),
        suggested_labels=item.labels(),
        synced_at=item.synced_at,
        last_error=item.last_error,
        created_at=item.created_at,
    )


async def _items_from_catalog(catalog: CatalogClient | None) -> list[ItemIn]:
    if catalog is None:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="Catalog credentials are not configured for this tenant",
        )
    try:
        products = await catalog.fetch_products(get_settings().scan_item_limit)
    except (httpx.HTTPError, ValueError) as exc:
        logger.warning("Catalog fetch failed: %s", exc)
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail="Could not fetch products from the catalog",
        ) from exc
    return [
        ItemIn(
            external_id=p.id,
            title=p.title,
            image_ref=p.image_url,
            category=p.category,
            labels=p.tags,
        )
        for p in products
    ]


@router.post(
    "/scans",
    response_model=ScanResponse,
    status_code=status.HTTP_202_ACCEPTED,
    summary="Start a scan: one job, one analysis task per item",
)
async def start_scan(
    body: ScanRequest,
    auth: Auth,
    session: Session,
    queue: Queue,
    catalog: Catalog,
) -> ScanResponse:
    items = body.items if body.items is not None else await _items_from_catalog(catalog)
    if not items:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_CONTENT,
            detail="No items to scan",
        )

    outcome = await jobs.start_scan(session, queue, auth.tenant_id, items)
    if outcome.job is None:
        if not outcome.admission.allowed:
            raise HTTPException(
                status_code=status.HTTP_402_PAYMENT_REQUIRED,
                detail=outcome.error or "Insufficient credits",
            )
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=outcome.error or "Could not create the job",
        )

    return ScanResponse(
        job=JobRead.model_validate(outcome.job),
        enqueued=outcome.enqueued,
        use_overage=outcome.admission.use_overage,
        overage_units=outcome.admission.overage_units,
        overage_cost=str(outcome.admission.overage_cost),
    )


@router.get("/jobs", response_model=list[JobRead])
async def list_jobs(
    auth: Auth,
    session: Session,
    limit: int = Query(default=20, ge=1, le=100),
) -> list[JobRead]:
    records = await jobs.list_jobs(session, auth.tenant_id, limit=limit)
    return [JobRead.model_validate(j) for j in records]


@router.get("/jobs/{job_id}", response_model=JobDetail)
async def get_job(job_id: uuid.UUID, auth: Auth, session: Session) -> JobDetail:
    job = await jobs.get_job(session, job_id, auth.tenant_id)
    if job is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Job not found")
    items = await jobs.list_items(session, job.id)
    return JobDetail(job=JobRead.model_validate(job), items=[_item_read(i) for i in items])


@router.post("/jobs/{job_id}/requeue", response_model=RequeueResponse)
async def requeue_job(
    job_id: uuid.UUID,
    auth: Auth,
    session: Session,
    queue: Queue,
) -> RequeueResponse:
    """Re-submit analysis for items still PENDING (e.g. after a queue outage)."""
    job = await jobs.get_job(session, job_id, auth.tenant_id)
    if job is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Job not found")
    enqueued = await jobs.requeue_pending(session, queue, job)
    return RequeueResponse(job_id=job.id, enqueued=enqueued)

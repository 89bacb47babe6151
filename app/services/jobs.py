"""Job orchestration — create a Job with its Items and fan out one analysis task per Item.

Flow for a scan:
  1. Ledger admission for ``len(items)`` units (tenant-serialized)
  2. Consume credits, insert the Job and every Item — one transaction
  3. Enqueue one task per Item under a deterministic task id

Progress rollup for the worker side also lives here: ``processed`` is always
recomputed from Item rows and written with a monotonic guard.
"""

from __future__ import annotations

import hashlib
import logging
import re
import uuid
from collections.abc import Sequence
from dataclasses import dataclass

from sqlalchemy import func, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select

from app.models.base import utcnow
from app.models.item import Item, ItemIn, ItemStatus
from app.models.job import Job, JobStatus
from app.models.tenant import Tenant
from app.services import ledger
from app.services.analysis_queue import AnalysisQueue, AnalysisTask

logger = logging.getLogger(__name__)

_UNSAFE_TASK_CHARS = re.compile(r"[^A-Za-z0-9_-]")
_DIGEST_LENGTH = 12


@dataclass
class ScanOutcome:
    """Result of a scan request: a Job when admitted, otherwise the refusal."""
    admission: ledger.Admission
    job: Job | None = None
    enqueued: int = 0
    error: str | None = None


# ── Task identifiers ─────────────────────────────────────────


def sanitize_task_component(raw: str) -> str:
    """Make an identifier safe for use inside a queue task id.

    Unsafe characters become ``_`` and a short digest of the raw value is
    always appended, so distinct identifiers never share a component even
    when one of them already looks like the sanitized form of another.
    """
    cleaned = _UNSAFE_TASK_CHARS.sub("_", raw)
    digest = hashlib.sha256(raw.encode()).hexdigest()[:_DIGEST_LENGTH]
    return f"{cleaned}-{digest}"


def task_id_for(job_id: uuid.UUID | str, external_id: str) -> str:
    return f"{job_id}-{sanitize_task_component(external_id)}"


def unique_items(items: Sequence[ItemIn]) -> list[ItemIn]:
    """Drop repeated ``external_id`` entries, keeping the first occurrence."""
    seen: set[str] = set()
    unique = []
    for it in items:
        if it.external_id not in seen:
            seen.add(it.external_id)
            unique.append(it)
    return unique


def _task_for(job: Job, item: Item) -> AnalysisTask:
    return AnalysisTask(
        task_id=task_id_for(job.id, item.external_id),
        job_id=str(job.id),
        item_id=str(item.id),
        source_ref=item.source_image_ref,
        tenant_id=str(job.tenant_id),
    )


# ── Creation ─────────────────────────────────────────────────


async def _stage_job(
    session: AsyncSession, tenant_id: uuid.UUID, items: Sequence[ItemIn],
) -> tuple[Job, list[Item]]:
    """Add a Job and its Items to the session without committing."""
    job = Job(tenant_id=tenant_id, status=JobStatus.QUEUED, total_items=len(items), processed=0)
    session.add(job)
    await session.flush()  # parent row first; items reference it

    records = [
        Item(
            job_id=job.id,
            tenant_id=tenant_id,
            external_id=it.external_id,
            title=it.title,
            source_image_ref=it.image_ref,
            current_category=it.category,
            current_labels=", ".join(it.labels),
            status=ItemStatus.PENDING,
        )
        for it in items
    ]
    session.add_all(records)
    return job, records


async def _enqueue(queue: AnalysisQueue, session: AsyncSession, job: Job, items: Sequence[Item]) -> int:
    """Fan out tasks for committed rows. A queue outage marks the Job FAILED."""
    try:
        enqueued = await queue.submit_many(_task_for(job, item) for item in items)
    except Exception:
        logger.exception("Could not enqueue tasks for job %s", job.id)
        job.status = JobStatus.FAILED
        job.updated_at = utcnow()
        session.add(job)
        await session.commit()
        return 0
    logger.info("Job %s: enqueued %d of %d tasks", job.id, enqueued, len(items))
    return enqueued


async def create_job(
    session: AsyncSession,
    queue: AnalysisQueue,
    tenant_id: uuid.UUID,
    items: Sequence[ItemIn],
) -> Job:
    """Persist a Job and its Items atomically, then enqueue their analysis.

    The caller must already hold ledger admission for ``len(items)`` units,
    counted after repeated ``external_id`` entries are dropped.
    """
    items = unique_items(items)
    if not items:
        raise ValueError("A job needs at least one item")
    job, records = await _stage_job(session, tenant_id, items)
    await session.commit()
    await _enqueue(queue, session, job, records)
    return job


async def start_scan(
    session: AsyncSession,
    queue: AnalysisQueue,
    tenant_id: uuid.UUID,
    items: Sequence[ItemIn],
) -> ScanOutcome:
    """Admission, consumption and Job creation as one unit; nothing is created on refusal."""
    items = unique_items(items)
    if not items:
        return ScanOutcome(
            admission=ledger.Admission(allowed=False, reason="No items to scan"),
            error="No items to scan",
        )

    async with ledger.tenant_lock(tenant_id):
        admission = await ledger.check_availability(session, tenant_id, len(items))
        if not admission.allowed:
            logger.info("Scan refused for tenant %s: %s", tenant_id, admission.reason)
            return ScanOutcome(admission=admission, error=admission.reason)

        if not await ledger.consume(session, tenant_id, len(items), commit=False):
            return ScanOutcome(
                admission=ledger.Admission(allowed=False, reason="Credit ledger changed concurrently"),
                error="Credit ledger changed concurrently; try again",
            )

        try:
            job, records = await _stage_job(session, tenant_id, items)
            await session.commit()
        except Exception:
            await session.rollback()
            logger.exception("Failed to persist scan for tenant %s", tenant_id)
            return ScanOutcome(admission=admission, error="Could not create the job")

    logger.info("Created job %s with %d items for tenant %s", job.id, len(records), tenant_id)
    enqueued = await _enqueue(queue, session, job, records)
    return ScanOutcome(admission=admission, job=job, enqueued=enqueued)


async def schedule_new_item(
    session: AsyncSession,
    queue: AnalysisQueue,
    tenant: Tenant,
    item: ItemIn,
) -> ScanOutcome | None:
    """Auto-schedule a newly created catalog item. Returns None when skipped."""
    if not tenant.auto_schedule_enabled:
        logger.info("Auto-schedule disabled for tenant %s, skipping %s", tenant.id, item.external_id)
        return None
    if not item.image_ref:
        logger.info("Item %s has no image, skipping", item.external_id)
        return None
    return await start_scan(session, queue, tenant.id, [item])


async def requeue_pending(session: AsyncSession, queue: AnalysisQueue, job: Job) -> int:
    """Re-submit tasks for a Job's PENDING items; known task ids are skipped by the queue."""
    stmt = select(Item).where(Item.job_id == job.id, Item.status == ItemStatus.PENDING)
    result = await session.execute(stmt)
    pending = list(result.scalars().all())
    if not pending:
        return 0
    if job.status == JobStatus.FAILED:
        job.status = JobStatus.QUEUED
        job.updated_at = utcnow()
        session.add(job)
        await session.commit()
    return await _enqueue(queue, session, job, pending)


# ── Progress rollup ──────────────────────────────────────────


async def recompute_progress(session: AsyncSession, job_id: uuid.UUID) -> Job | None:
    """Recount settled Items and store the count if it moved forward.

    Safe when sibling tasks settle concurrently: each writer recounts from
    Item rows, and the guard ``processed <= new`` drops stale, lower counts.
    """
    job = await session.get(Job, job_id)
    if job is None:
        logger.error("Job %s not found during progress rollup", job_id)
        return None

    count_stmt = select(func.count()).select_from(Item).where(
        Item.job_id == job_id,
        Item.status != ItemStatus.PENDING,
    )
    processed = (await session.execute(count_stmt)).scalar_one()
    processed = min(processed, job.total_items)
    status = JobStatus.COMPLETED if processed >= job.total_items else JobStatus.PROCESSING

    stmt = (
        update(Job)
        .where(Job.id == job_id, Job.processed <= processed)
        .values(processed=processed, status=status, updated_at=utcnow())
        .execution_options(synchronize_session=False)
    )
    await session.execute(stmt)
    await session.commit()
    await session.refresh(job)
    if job.status == JobStatus.COMPLETED:
        logger.info("Job %s completed (%d items)", job_id, job.total_items)
    return job


# ── Queries ──────────────────────────────────────────────────


async def get_job(session: AsyncSession, job_id: uuid.UUID, tenant_id: uuid.UUID) -> Job | None:
    stmt = select(Job).where(Job.id == job_id, Job.tenant_id == tenant_id)
    result = await session.execute(stmt)
    return result.scalar_one_or_none()


async def list_jobs(session: AsyncSession, tenant_id: uuid.UUID, limit: int = 20) -> list[Job]:
    stmt = (
        select(Job)
        .where(Job.tenant_id == tenant_id)
        .order_by(Job.created_at.desc())  # type: ignore[attr-defined]
        .limit(limit)
    )
    result = await session.execute(stmt)
    return list(result.scalars().all())


async def list_items(session: AsyncSession, job_id: uuid.UUID) -> list[Item]:
    stmt = select(Item).where(Item.job_id == job_id).order_by(Item.created_at.asc())  # type: ignore[attr-defined]
    result = await session.execute(stmt)
    return list(result.scalars().all())

"""System health endpoint — checks connectivity to the database and the analysis queue."""

import time

from fastapi import APIRouter
from pydantic import BaseModel
from sqlalchemy import text

from app.api.deps import Queue, Session

router = APIRouter(prefix="/system", tags=["system"])

_start_time = time.time()


class ServiceHealth(BaseModel):
    status: str  # "ok" or "error"
    detail: str | None = None
    latency_ms: int | None = None


class HealthResponse(BaseModel):
    status: str
    uptime_seconds: int
    database: ServiceHealth
    queue: ServiceHealth
    queued_tasks: int | None = None


@router.get("/health", response_model=HealthResponse)
async def system_health(session: Session, queue: Queue) -> HealthResponse:
    """Check connectivity to the database and the queue's Redis."""
    db = await _check_database(session)
    qh, queued = await _check_queue(queue)

    overall = "ok" if db.status == "ok" and qh.status == "ok" else "degraded"
    return HealthResponse(
        status=overall,
        uptime_seconds=int(time.time() - _start_time),
        database=db,
        queue=qh,
        queued_tasks=queued,
    )


async def _check_database(session) -> ServiceHealth:
    try:
        t0 = time.monotonic()
        await session.execute(text("SELECT 1"))
        latency = int((time.monotonic() - t0) * 1000)
        return ServiceHealth(status="ok", latency_ms=latency)
    except Exception as exc:
        return ServiceHealth(status="error", detail=str(exc)[:200])


async def _check_queue(queue) -> tuple[ServiceHealth, int | None]:
    try:
        t0 = time.monotonic()
        pong = await queue.ping()
        latency = int((time.monotonic() - t0) * 1000)
        queued = await queue.queued_count()
        return ServiceHealth(status="ok" if pong else "error", latency_ms=latency), queued
    except Exception as exc:
        return ServiceHealth(status="error", detail=str(exc)[:200]), None

"""Analysis worker task — analyze one item's image and settle it.

The task context (``ctx``) is built by the worker pool and carries:
  - ``session_factory``: async session factory
  - ``analyzer``: object with ``async analyze(image_ref)``
  - ``rate_limiter``: process-wide ``SlidingWindowRateLimiter``
  - ``retry_policy``: ``RetryPolicy``
  - ``job_try``: 1-based attempt number (set by arq)
  - ``outcomes``: optional bounded deque of recent outcomes
"""

from __future__ import annotations

import logging
import uuid

from arq import Retry
from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.base import utcnow
from app.models.item import Item, ItemStatus, encode_fields, encode_labels
from app.services.analysis_queue import RetryPolicy
from app.services.jobs import recompute_progress
from app.services.vision import AnalysisResult, AnalyzerError, AnalyzerErrorKind

logger = logging.getLogger(__name__)


def is_transient(error: AnalyzerError) -> bool:
    """The single place where analyzer failures are split into retry vs. give up."""
    return error.transient


async def analyze_item(
    ctx: dict,
    job_id: str,
    item_id: str,
    source_ref: str,
    tenant_id: str,
) -> dict:
    """arq task: run the analyzer for one item, then roll up its job's progress.

    Returns a dict describing how the item settled.
    """
    attempt: int = ctx.get("job_try") or 1
    policy: RetryPolicy = ctx.get("retry_policy") or RetryPolicy()

    if attempt > policy.max_attempts:
        # The last analysis attempt never reported back; only settling is left.
        logger.error("Item %s: no outcome after %d attempts, settling as error", item_id, policy.max_attempts)
        outcome = AnalyzerError(
            AnalyzerErrorKind.UNAVAILABLE,
            f"no outcome after {policy.max_attempts} attempts",
        )
    else:
        outcome = await _run_analyzer(ctx, item_id, source_ref)

    if isinstance(outcome, AnalyzerError) and is_transient(outcome) and attempt <= policy.max_attempts:
        if not policy.exhausted(attempt):
            delay = policy.delay_for(attempt)
            logger.warning(
                "Transient failure for item %s (attempt %d/%d): %s; retrying in %.0fs",
                item_id, attempt, policy.max_attempts, outcome.message, delay,
            )
            raise Retry(defer=delay)
        outcome = AnalyzerError(
            outcome.kind,
            f"{outcome.message} (gave up after {attempt} attempts)",
        )

    try:
        async with ctx["session_factory"]() as session:
            settled = await _settle(session, uuid.UUID(item_id), outcome)
            await recompute_progress(session, uuid.UUID(job_id))
    except Exception as exc:
        delay = policy.delay_for(attempt)
        logger.exception(
            "Could not record outcome for item %s (attempt %d); retrying in %.0fs",
            item_id, attempt, delay,
        )
        raise Retry(defer=delay) from exc

    result = {
        "item_id": item_id,
        "job_id": job_id,
        "status": settled.value if settled else "skipped",
        "attempts": attempt,
    }
    if isinstance(outcome, AnalyzerError):
        result["error"] = outcome.kind.value
    outcomes = ctx.get("outcomes")
    if outcomes is not None:
        outcomes.append(result)
    return result


async def _run_analyzer(ctx: dict, item_id: str, source_ref: str) -> AnalysisResult | AnalyzerError:
    await ctx["rate_limiter"].acquire()
    try:
        return await ctx["analyzer"].analyze(source_ref)
    except Exception as exc:
        logger.exception("Analyzer raised for item %s", item_id)
        return AnalyzerError(AnalyzerErrorKind.UNAVAILABLE, str(exc)[:500] or type(exc).__name__)


async def _settle(
    session: AsyncSession,
    item_id: uuid.UUID,
    outcome: AnalysisResult | AnalyzerError,
) -> ItemStatus | None:
    """Move the item out of PENDING exactly once; redelivered tasks are no-ops."""
    if isinstance(outcome, AnalysisResult):
        status = ItemStatus.ANALYZED
        values = {
            "status": status,
            "suggested_fields": encode_fields(outcome.fields),
            "suggested_labels": encode_labels(outcome.labels),
            "last_error": None,
        }
    else:
        status = ItemStatus.ERROR
        values = {"status": status, "last_error": f"{outcome.kind}: {outcome.message}"[:2000]}

    stmt = (
        update(Item)
        .where(Item.id == item_id, Item.status == ItemStatus.PENDING)
        .values(updated_at=utcnow(), **values)
        .execution_options(synchronize_session=False)
    )
    result = await session.execute(stmt)
    await session.commit()

    if result.rowcount == 0:
        logger.info("Item %s already settled; ignoring duplicate delivery", item_id)
        return None
    logger.info("Item %s settled as %s", item_id, status)
    return status

"""Analysis queue — durable, de-duplicated submission of per-item analysis tasks.

Backed by arq on Redis. A task's arq job id is its deterministic task id, so
submitting a task that is already queued, running, or still has a retained
result is a no-op: arq returns ``None`` instead of a new job.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass

from arq.connections import ArqRedis, RedisSettings, create_pool

from app.core.config import Settings

logger = logging.getLogger(__name__)

ANALYZE_TASK_NAME = "analyze_item"


@dataclass(frozen=True)
class RetryPolicy:
    """Exponential backoff: ``base_delay``, then doubling, up to ``max_attempts`` tries."""
    max_attempts: int = 3
    base_delay: float = 5.0

    def delay_for(self, attempt: int) -> float:
        """Seconds to wait after failed attempt number ``attempt`` (1-based)."""
        return self.base_delay * (2 ** max(attempt - 1, 0))

    def exhausted(self, attempt: int) -> bool:
        return attempt >= self.max_attempts


@dataclass(frozen=True)
class QueueConfig:
    """Everything the queue and its worker pool need, injected by the entry point."""
    redis_url: str = "redis://localhost:6379/0"
    queue_name: str = "vision-analysis"
    concurrency: int = 2
    max_attempts: int = 3
    backoff_base_seconds: float = 5.0
    rate_limit_max: int = 10
    rate_limit_window_seconds: float = 60.0
    job_timeout_seconds: int = 300
    keep_result_seconds: int = 3600
    retained_outcomes: int = 100

    @classmethod
    def from_settings(cls, settings: Settings) -> QueueConfig:
        return cls(
            redis_url=settings.redis_url,
            queue_name=settings.analysis_queue_name,
            concurrency=settings.analysis_concurrency,
            max_attempts=settings.analysis_max_attempts,
            backoff_base_seconds=settings.analysis_backoff_base_seconds,
            rate_limit_max=settings.analysis_rate_limit_max,
            rate_limit_window_seconds=settings.analysis_rate_limit_window_seconds,
            job_timeout_seconds=settings.analysis_job_timeout_seconds,
            keep_result_seconds=settings.analysis_keep_result_seconds,
            retained_outcomes=settings.analysis_retained_outcomes,
        )

    @property
    def retry_policy(self) -> RetryPolicy:
        return RetryPolicy(max_attempts=self.max_attempts, base_delay=self.backoff_base_seconds)

    @property
    def delivery_limit(self) -> int:
        """arq ``max_tries``: one delivery past the last analysis attempt settles the item."""
        return self.max_attempts + 1

    @property
    def redis_settings(self) -> RedisSettings:
        return RedisSettings.from_dsn(self.redis_url)


@dataclass(frozen=True)
class AnalysisTask:
    """Payload of one queued analysis; ``task_id`` is the de-duplication key."""
    task_id: str
    job_id: str
    item_id: str
    source_ref: str
    tenant_id: str


class AnalysisQueue:
    """Explicitly constructed queue service; owns nothing global."""

    def __init__(self, pool: ArqRedis, config: QueueConfig) -> None:
        self._pool = pool
        self.config = config

    @classmethod
    async def connect(cls, config: QueueConfig) -> AnalysisQueue:
        pool = await create_pool(config.redis_settings, default_queue_name=config.queue_name)
        return cls(pool, config)

    async def submit(self, task: AnalysisTask) -> bool:
        """Enqueue a task. Returns False if a task with the same id is already known."""
        job = await self._pool.enqueue_job(
            ANALYZE_TASK_NAME,
            job_id=task.job_id,
            item_id=task.item_id,
            source_ref=task.source_ref,
            tenant_id=task.tenant_id,
            _job_id=task.task_id,
            _queue_name=self.config.queue_name,
        )
        if job is None:
            logger.info("Task %s already queued or in flight; skipped", task.task_id)
            return False
        return True

    async def submit_many(self, tasks: Iterable[AnalysisTask]) -> int:
        """Enqueue several tasks; returns how many were newly admitted."""
        admitted = 0
        for task in tasks:
            if await self.submit(task):
                admitted += 1
        return admitted

    async def queued_count(self) -> int:
        jobs = await self._pool.queued_jobs(queue_name=self.config.queue_name)
        return len(jobs)

    async def ping(self) -> bool:
        return bool(await self._pool.ping())

    async def close(self) -> None:
        await self._pool.aclose()

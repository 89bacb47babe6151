"""Worker pool — arq worker lifecycle with an explicit state machine.

    IDLE ──start()──▶ RUNNING ──drain()──▶ DRAINING ──stop()──▶ STOPPED

Draining stops pulling new tasks from the queue and waits for in-flight
ones to finish; stopping closes the worker's Redis connection. Everything
the tasks need is injected through the worker context, nothing is global.
"""

from __future__ import annotations

import asyncio
import logging
from collections import deque
from enum import StrEnum

from arq import cron
from arq.worker import Worker, func
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import sessionmaker

from app.core.ratelimit import SlidingWindowRateLimiter
from app.services.analysis_queue import ANALYZE_TASK_NAME, QueueConfig
from app.services.vision import Analyzer
from app.workers.analyze import analyze_item
from app.workers.billing import reset_expired_periods

logger = logging.getLogger(__name__)


class WorkerState(StrEnum):
    IDLE = "idle"
    RUNNING = "running"
    DRAINING = "draining"
    STOPPED = "stopped"


class WorkerPool:
    """Bounded-concurrency consumers of the analysis queue."""

    def __init__(
        self,
        config: QueueConfig,
        *,
        analyzer: Analyzer,
        session_factory: sessionmaker[AsyncSession],
    ) -> None:
        self.config = config
        self.state = WorkerState.IDLE
        self.rate_limiter = SlidingWindowRateLimiter(
            config.rate_limit_max, config.rate_limit_window_seconds,
        )
        self.recent_outcomes: deque[dict] = deque(maxlen=config.retained_outcomes)
        self._analyzer = analyzer
        self._session_factory = session_factory
        self._worker: Worker | None = None
        self._main_task: asyncio.Task | None = None
        self._in_flight = 0
        self._idle = asyncio.Event()
        self._idle.set()

    @property
    def in_flight(self) -> int:
        return self._in_flight

    def context(self) -> dict:
        """Shared context handed to every task invocation."""
        return {
            "session_factory": self._session_factory,
            "analyzer": self._analyzer,
            "rate_limiter": self.rate_limiter,
            "retry_policy": self.config.retry_policy,
            "outcomes": self.recent_outcomes,
        }

    async def _on_job_start(self, ctx: dict) -> None:
        self._in_flight += 1
        self._idle.clear()

    async def _on_job_end(self, ctx: dict) -> None:
        self._in_flight = max(self._in_flight - 1, 0)
        if self._in_flight == 0:
            self._idle.set()

    def _build_worker(self) -> Worker:
        return Worker(
            functions=[
                func(analyze_item, name=ANALYZE_TASK_NAME, max_tries=self.config.delivery_limit),
            ],
            cron_jobs=[cron(reset_expired_periods, hour={3}, minute={0})],
            queue_name=self.config.queue_name,
            redis_settings=self.config.redis_settings,
            max_jobs=self.config.concurrency,
            job_timeout=self.config.job_timeout_seconds,
            keep_result=self.config.keep_result_seconds,
            max_tries=self.config.delivery_limit,
            handle_signals=False,
            on_job_start=self._on_job_start,
            on_job_end=self._on_job_end,
            ctx=self.context(),
        )

    async def start(self) -> None:
        if self.state != WorkerState.IDLE:
            raise RuntimeError(f"Cannot start a worker pool that is {self.state}")
        self._worker = self._build_worker()
        self._main_task = asyncio.create_task(self._worker.main())
        self.state = WorkerState.RUNNING
        logger.info(
            "Worker pool started on queue %s (concurrency=%d, rate=%d/%.0fs)",
            self.config.queue_name, self.config.concurrency,
            self.config.rate_limit_max, self.config.rate_limit_window_seconds,
        )

    async def drain(self, timeout: float | None = None) -> bool:
        """Stop taking new tasks and wait for in-flight ones. Returns False on timeout."""
        if self.state != WorkerState.RUNNING:
            return self.state == WorkerState.DRAINING and self._idle.is_set()
        self.state = WorkerState.DRAINING
        if self._worker is not None:
            self._worker.allow_pick_jobs = False
        logger.info("Draining worker pool (%d in flight)", self._in_flight)
        try:
            await asyncio.wait_for(self._idle.wait(), timeout)
        except asyncio.TimeoutError:
            logger.warning("Drain timed out with %d tasks in flight", self._in_flight)
            return False
        return True

    async def stop(self, timeout: float | None = None) -> None:
        """Drain, then shut the worker down. Safe to call more than once."""
        if self.state == WorkerState.STOPPED:
            return
        if self.state == WorkerState.IDLE:
            self.state = WorkerState.STOPPED
            return
        await self.drain(timeout)

        if self._main_task is not None:
            self._main_task.cancel()
            try:
                await self._main_task
            except asyncio.CancelledError:
                pass
            except Exception:
                logger.exception("Worker main loop ended with an error")
        if self._worker is not None:
            await self._worker.close()
        self.state = WorkerState.STOPPED
        logger.info("Worker pool stopped")


async def start_worker_pool(
    config: QueueConfig,
    *,
    analyzer: Analyzer,
    session_factory: sessionmaker[AsyncSession],
) -> WorkerPool:
    """Build a pool from explicit configuration and start consuming."""
    pool = WorkerPool(config, analyzer=analyzer, session_factory=session_factory)
    await pool.start()
    return pool

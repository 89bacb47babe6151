"""Tests for the worker pool lifecycle (arq Worker is mocked)."""

import asyncio
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from app.services.analysis_queue import ANALYZE_TASK_NAME, QueueConfig
from app.workers.pool import WorkerPool, WorkerState, start_worker_pool

CONFIG = QueueConfig(queue_name="test-analysis", concurrency=4, max_attempts=3, retained_outcomes=5)


async def _run_forever():
    await asyncio.Event().wait()


def _mock_worker(worker_cls: MagicMock) -> MagicMock:
    worker = worker_cls.return_value
    worker.main = AsyncMock(side_effect=_run_forever)
    worker.close = AsyncMock()
    return worker


@pytest.mark.asyncio
async def test_start_builds_worker_from_config(session_factory):
    analyzer = MagicMock()
    with patch("app.workers.pool.Worker") as worker_cls:
        _mock_worker(worker_cls)
        pool = await start_worker_pool(CONFIG, analyzer=analyzer, session_factory=session_factory)

        assert pool.state == WorkerState.RUNNING
        kwargs = worker_cls.call_args.kwargs
        assert kwargs["queue_name"] == "test-analysis"
        assert kwargs["max_jobs"] == 4
        assert kwargs["max_tries"] == 4
        assert kwargs["functions"][0].max_tries == 4
        assert kwargs["handle_signals"] is False
        assert [f.name for f in kwargs["functions"]] == [ANALYZE_TASK_NAME]
        ctx = kwargs["ctx"]
        assert ctx["analyzer"] is analyzer
        assert ctx["rate_limiter"] is pool.rate_limiter
        assert ctx["session_factory"] is session_factory
        assert ctx["outcomes"] is pool.recent_outcomes

        await pool.stop(timeout=1)


@pytest.mark.asyncio
async def test_stop_drains_then_closes(session_factory):
    with patch("app.workers.pool.Worker") as worker_cls:
        worker = _mock_worker(worker_cls)
        pool = await start_worker_pool(CONFIG, analyzer=MagicMock(), session_factory=session_factory)

        await pool.stop(timeout=1)

        assert pool.state == WorkerState.STOPPED
        assert worker.allow_pick_jobs is False
        worker.close.assert_awaited_once()

        # Stopping again is harmless
        await pool.stop()
        worker.close.assert_awaited_once()


@pytest.mark.asyncio
async def test_drain_waits_for_in_flight_tasks(session_factory):
    with patch("app.workers.pool.Worker") as worker_cls:
        _mock_worker(worker_cls)
        pool = await start_worker_pool(CONFIG, analyzer=MagicMock(), session_factory=session_factory)

        await pool._on_job_start({})
        assert pool.in_flight == 1
        assert await pool.drain(timeout=0.05) is False
        assert pool.state == WorkerState.DRAINING

        await pool._on_job_end({})
        assert await pool.drain(timeout=0.05) is True

        await pool.stop(timeout=1)


@pytest.mark.asyncio
async def test_cannot_start_twice(session_factory):
    with patch("app.workers.pool.Worker") as worker_cls:
        _mock_worker(worker_cls)
        pool = await start_worker_pool(CONFIG, analyzer=MagicMock(), session_factory=session_factory)
        with pytest.raises(RuntimeError):
            await pool.start()
        await pool.stop(timeout=1)


@pytest.mark.asyncio
async def test_stopping_an_idle_pool():
    pool = WorkerPool(CONFIG, analyzer=MagicMock(), session_factory=MagicMock())
    await pool.stop()
    assert pool.state == WorkerState.STOPPED


def test_recent_outcomes_are_bounded():
    pool = WorkerPool(CONFIG, analyzer=MagicMock(), session_factory=MagicMock())
    for n in range(20):
        pool.recent_outcomes.append({"n": n})
    assert len(pool.recent_outcomes) == 5
    assert pool.recent_outcomes[0] == {"n": 15}

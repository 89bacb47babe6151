"""Tests for the analysis queue service and its retry policy."""

import pytest

from app.core.config import Settings
from app.services.analysis_queue import (
    AnalysisTask,
    QueueConfig,
    RetryPolicy,
)


def _task(task_id: str = "job-1-item-1") -> AnalysisTask:
    return AnalysisTask(
        task_id=task_id,
        job_id="job-1",
        item_id="item-1",
        source_ref="https://cdn.example.com/p1.jpg",
        tenant_id="tenant-1",
    )


@pytest.mark.asyncio
async def test_submit_enqueues_under_task_id(queue, arq_pool):
    assert await queue.submit(_task()) is True
    assert arq_pool.jobs["job-1-item-1"] == {
        "function": "analyze_item",
        "queue": "test-analysis",
        "job_id": "job-1",
        "item_id": "item-1",
        "source_ref": "https://cdn.example.com/p1.jpg",
        "tenant_id": "tenant-1",
    }


@pytest.mark.asyncio
async def test_duplicate_submission_is_a_no_op(queue, arq_pool):
    assert await queue.submit(_task()) is True
    assert await queue.submit(_task()) is False
    assert len(arq_pool.jobs) == 1


@pytest.mark.asyncio
async def test_submit_many_counts_new_tasks(queue):
    await queue.submit(_task("a"))
    admitted = await queue.submit_many([_task("a"), _task("b"), _task("c"), _task("b")])
    assert admitted == 2
    assert await queue.queued_count() == 3


@pytest.mark.asyncio
async def test_submit_propagates_connection_errors(queue, arq_pool):
    arq_pool.fail = True
    with pytest.raises(ConnectionError):
        await queue.submit(_task())


@pytest.mark.asyncio
async def test_ping_and_close(queue, arq_pool):
    assert await queue.ping() is True
    await queue.close()
    assert arq_pool.closed


def test_retry_policy_doubles_the_delay():
    policy = RetryPolicy(max_attempts=3, base_delay=5)
    assert [policy.delay_for(n) for n in (1, 2, 3)] == [5, 10, 20]
    assert not policy.exhausted(2)
    assert policy.exhausted(3)


def test_queue_config_from_settings():
    settings = Settings(
        redis_url="redis://cache:6380/2",
        analysis_queue_name="q",
        analysis_max_attempts=4,
        analysis_backoff_base_seconds=2,
        analysis_concurrency=7,
    )
    config = QueueConfig.from_settings(settings)
    assert config.queue_name == "q"
    assert config.concurrency == 7
    assert config.retry_policy == RetryPolicy(max_attempts=4, base_delay=2)
    assert config.delivery_limit == 5

    redis = config.redis_settings
    assert (redis.host, redis.port, redis.database) == ("cache", 6380, 2)


@pytest.mark.parametrize(
    ("url", "expected"),
    [
        ("redis://localhost:6379/0", ("localhost", 6379, 0, None, None, False)),
        ("redis://:s3cret@cache.internal:6380/2", ("cache.internal", 6380, 2, "", "s3cret", False)),
        ("redis://worker:pw@redis:6379/1", ("redis", 6379, 1, "worker", "pw", False)),
        ("rediss://:pw@redis.example.com:6380/0", ("redis.example.com", 6380, 0, "", "pw", True)),
        ("redis://redis", ("redis", 6379, 0, None, None, False)),
    ],
)
def test_redis_settings_keep_credentials_and_tls(url, expected):
    rs = QueueConfig(redis_url=url).redis_settings
    assert (rs.host, rs.port, rs.database, rs.username, rs.password, rs.ssl) == expected

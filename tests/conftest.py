"""Shared test fixtures — per-test async SQLite DB, fake arq pool, test client."""

import os
from collections.abc import AsyncGenerator

from cryptography.fernet import Fernet

# Settings are read at import time; the key must exist before app is imported
os.environ.setdefault("ENCRYPTION_KEY", Fernet.generate_key().decode())
os.environ.setdefault("HOOK_SIGNING_SECRET", "test-hook-secret")

import pytest  # noqa: E402
from httpx import ASGITransport, AsyncClient  # noqa: E402
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine  # noqa: E402
from sqlalchemy.orm import sessionmaker  # noqa: E402
from sqlmodel import SQLModel  # noqa: E402

# Import all models so metadata is populated
import app.models  # noqa: E402, F401
from app.core.database import get_session  # noqa: E402
from app.main import app  # noqa: E402
from app.models.tenant import Tenant  # noqa: E402
from app.services import ledger  # noqa: E402
from app.services.analysis_queue import AnalysisQueue, QueueConfig  # noqa: E402


class FakeArqPool:
    """Stands in for ``ArqRedis``: remembers job ids and refuses duplicates like arq does."""

    def __init__(self) -> None:
        self.jobs: dict[str, dict] = {}
        self.fail = False
        self.closed = False

    async def enqueue_job(self, function, *args, _job_id=None, _queue_name=None, **kwargs):
        if self.fail:
            raise ConnectionError("redis unavailable")
        if _job_id in self.jobs:
            return None
        self.jobs[_job_id] = {"function": function, "queue": _queue_name, **kwargs}
        return object()

    async def queued_jobs(self, *, queue_name=None):
        return list(self.jobs.values())

    async def ping(self):
        return True

    async def aclose(self):
        self.closed = True


@pytest.fixture
async def engine(tmp_path):
    eng = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'test.db'}", echo=False)
    async with eng.begin() as conn:
        await conn.run_sync(SQLModel.metadata.create_all)
    yield eng
    await eng.dispose()


@pytest.fixture
def session_factory(engine):
    """Session factory bound to the test SQLite engine."""
    return sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
async def session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    async with session_factory() as sess:
        yield sess
        await sess.rollback()


@pytest.fixture
def arq_pool() -> FakeArqPool:
    return FakeArqPool()


@pytest.fixture
def queue(arq_pool) -> AnalysisQueue:
    return AnalysisQueue(arq_pool, QueueConfig(queue_name="test-analysis"))


@pytest.fixture
async def tenant(session) -> Tenant:
    """A tenant on the default plan with a fresh ledger."""
    t = Tenant(name="Acme", slug="acme", shop_domain="acme.myshopify.com")
    session.add(t)
    await session.commit()
    await ledger.get_or_create_ledger(session, t.id)
    return t


@pytest.fixture
async def client(session_factory, queue) -> AsyncGenerator[AsyncClient, None]:
    """HTTPX async test client with DB session and queue wired to the fakes."""

    async def _override_session():
        async with session_factory() as sess:
            yield sess

    app.dependency_overrides[get_session] = _override_session
    app.state.analysis_queue = queue

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()
    app.state.analysis_queue = None


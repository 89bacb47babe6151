"""Worker process entrypoint — the composition root for the analysis worker pool."""

import asyncio
import logging
import signal

from app.core.config import get_settings
from app.core.database import async_session_factory, init_db
from app.services.analysis_queue import QueueConfig
from app.services.vision import VisionAnalyzer
from app.workers.pool import start_worker_pool

logger = logging.getLogger(__name__)


async def run() -> None:
    """Start the pool, wait for SIGINT/SIGTERM, then drain and stop."""
    settings = get_settings()
    await init_db()

    pool = await start_worker_pool(
        QueueConfig.from_settings(settings),
        analyzer=VisionAnalyzer.from_settings(settings),
        session_factory=async_session_factory,
    )

    stop = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, stop.set)

    await stop.wait()
    logger.info("Shutdown requested; draining in-flight analyses")
    await pool.stop(timeout=settings.analysis_job_timeout_seconds)


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    asyncio.run(run())

from __future__ import annotations

import asyncio
import time
from collections.abc import Awaitable
from typing import TypeVar

import structlog

from app.db.session import dispose_engine

T = TypeVar("T")

logger = structlog.get_logger(__name__)


async def _run_on_fresh_pool(awaitable: Awaitable[T], *, job_name: str) -> T:
    # Each asyncio.run gets its own loop; pooled asyncpg connections must not cross loops.
    await dispose_engine()
    started = time.monotonic()
    try:
        return await awaitable
    finally:
        await dispose_engine()
        logger.info("worker_job_finished", job=job_name, duration_ms=int((time.monotonic() - started) * 1000))


def run_async_job(awaitable: Awaitable[T], *, job_name: str = "async_job") -> T:
    return asyncio.run(_run_on_fresh_pool(awaitable, job_name=job_name))

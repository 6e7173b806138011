from __future__ import annotations

import asyncio
import random
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import TypeVar

import structlog

from app.billing.errors import GatewayTransientError

logger = structlog.get_logger(__name__)

T = TypeVar("T")
RETRY_JITTER_RATIO = 0.25


@dataclass(frozen=True, slots=True)
class RetryPolicy:
    max_attempts: int = 3
    backoff_base_seconds: float = 1.0
    backoff_max_seconds: float = 8.0


def retry_backoff_seconds(*, next_retry_attempt: int, policy: RetryPolicy) -> float:
    safe_retry_attempt = max(1, int(next_retry_attempt))
    base_delay = min(
        policy.backoff_max_seconds,
        policy.backoff_base_seconds * (2 ** (safe_retry_attempt - 1)),
    )
    jitter = random.uniform(0, base_delay * RETRY_JITTER_RATIO) if base_delay > 0 else 0.0
    return min(policy.backoff_max_seconds, base_delay + jitter)


async def call_with_retry(
    operation: Callable[[], Awaitable[T]],
    *,
    policy: RetryPolicy,
    operation_name: str,
    correlation_id: str | None = None,
    retry_on: tuple[type[BaseException], ...] = (GatewayTransientError,),
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> T:
    """Runs ``operation`` until it succeeds, raises a non-retryable error or
    the attempt budget is spent. The last retryable error is re-raised."""
    max_attempts = max(1, int(policy.max_attempts))
    attempt = 1
    while True:
        try:
            return await operation()
        except retry_on as exc:
            if attempt >= max_attempts:
                logger.warning(
                    "gateway_retry_exhausted",
                    operation=operation_name,
                    correlation_id=correlation_id,
                    attempts=attempt,
                    error_type=type(exc).__name__,
                )
                raise

            delay = retry_backoff_seconds(next_retry_attempt=attempt, policy=policy)
            logger.info(
                "gateway_retry_scheduled",
                operation=operation_name,
                correlation_id=correlation_id,
                attempt=attempt,
                delay_seconds=round(delay, 3),
                error_type=type(exc).__name__,
            )
            await sleep(delay)
            attempt += 1

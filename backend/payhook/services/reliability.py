"""Timeout guard and retry orchestration for webhook processing"""
import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional

from payhook.core.config import settings
from payhook.core.errors import OperationTimeoutError, is_retryable
from payhook.core.metrics import webhook_retries_counter

logger = logging.getLogger(__name__)


async def with_timeout(awaitable: Awaitable, duration_ms: int, operation: str = "operation") -> Any:
    """Await `awaitable`, giving up after `duration_ms`

    Raises OperationTimeoutError on expiry. The awaited task is cancelled, but
    work already handed to a worker thread keeps running to completion.
    """
    try:
        return await asyncio.wait_for(awaitable, timeout=duration_ms / 1000)
    except OperationTimeoutError:
        # Nested budget expired first; keep its label
        raise
    except asyncio.TimeoutError as e:
        logger.warning(f"⏱️  {operation} exceeded {duration_ms}ms budget")
        raise OperationTimeoutError(operation, duration_ms) from e


@dataclass(frozen=True)
class RetryPolicy:
    """Exponential backoff: delay(n) = min(base * multiplier**n, max)"""
    max_retries: int = 3
    base_delay_ms: int = 1000
    max_delay_ms: int = 10000
    backoff_multiplier: float = 2.0
    max_total_delay_ms: Optional[int] = None

    def __post_init__(self):
        if self.max_retries < 0:
            raise ValueError("max_retries must be >= 0")
        if self.base_delay_ms < 0 or self.max_delay_ms < 0:
            raise ValueError("delays must be >= 0")
        if self.backoff_multiplier < 1:
            raise ValueError("backoff_multiplier must be >= 1")

    @classmethod
    def from_settings(cls) -> "RetryPolicy":
        return cls(
            max_retries=settings.WEBHOOK_MAX_RETRIES,
            base_delay_ms=settings.WEBHOOK_RETRY_BASE_DELAY_MS,
            max_delay_ms=settings.WEBHOOK_RETRY_MAX_DELAY_MS,
            backoff_multiplier=settings.WEBHOOK_RETRY_BACKOFF_MULTIPLIER,
            max_total_delay_ms=settings.WEBHOOK_RETRY_MAX_TOTAL_DELAY_MS,
        )

    @property
    def max_attempts(self) -> int:
        return self.max_retries + 1

    def delay_for(self, attempt: int) -> int:
        """Delay in ms to wait after the zero-based `attempt` failed"""
        delay = self.base_delay_ms * (self.backoff_multiplier ** attempt)
        return int(min(delay, self.max_delay_ms))


async def execute_with_retry(
    fn: Callable[[], Awaitable[Any]],
    policy: RetryPolicy,
    context: str = "operation",
    sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    on_retry: Optional[Callable[[int, BaseException], None]] = None,
) -> Any:
    """Run `fn` up to ``policy.max_attempts`` times

    Non-retryable errors propagate immediately. After the last attempt, or
    when the next delay would push the cumulative wait past
    ``policy.max_total_delay_ms``, the last error propagates.
    """
    slept_ms = 0
    for attempt in range(policy.max_attempts):
        try:
            return await fn()
        except Exception as e:
            if not is_retryable(e):
                logger.info(f"{context}: non-retryable {type(e).__name__}, giving up: {e}")
                raise
            if attempt == policy.max_retries:
                logger.error(f"❌ {context}: failed after {policy.max_attempts} attempts: {e}")
                raise

            delay_ms = policy.delay_for(attempt)
            if policy.max_total_delay_ms is not None and slept_ms + delay_ms > policy.max_total_delay_ms:
                logger.error(
                    f"❌ {context}: retry budget of {policy.max_total_delay_ms}ms exhausted "
                    f"after {attempt + 1} attempts: {e}"
                )
                raise

            logger.warning(
                f"🔄 {context}: attempt {attempt + 1}/{policy.max_attempts} failed "
                f"({type(e).__name__}: {e}), retrying in {delay_ms}ms"
            )
            webhook_retries_counter.labels(operation=context.split(" ")[0]).inc()
            if on_retry is not None:
                on_retry(attempt + 1, e)
            await sleep(delay_ms / 1000)
            slept_ms += delay_ms

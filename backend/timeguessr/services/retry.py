import asyncio
import random
from typing import Awaitable, Callable, TypeVar

import httpx
import structlog

logger = structlog.get_logger()

T = TypeVar("T")


def is_retryable(error: Exception) -> bool:
    """Network failures and 5xx responses are worth another attempt."""
    if isinstance(error, httpx.HTTPStatusError):
        return error.response.status_code >= 500
    return isinstance(error, httpx.RequestError)


def is_unsent(error: Exception) -> bool:
    """
    The request never left this process, so sending it again cannot
    duplicate it on the backend.

    Anything later (read timeouts, dropped connections, 5xx) may come after
    the backend already acted on the body.
    """
    return isinstance(error, (httpx.ConnectError, httpx.ConnectTimeout))


class RetryPolicy:
    """Retries a fallible async operation with jittered exponential backoff."""

    def __init__(
        self,
        max_attempts: int = 3,
        base_delay: float = 1.0,
        max_delay: float = 10.0,
        jitter: float = 0.1,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep
    ):
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        self.max_attempts = max_attempts
        self.base_delay = base_delay
        self.max_delay = max_delay
        self.jitter = jitter
        self._sleep = sleep

    def delay_for(self, attempt: int) -> float:
        """
        Delay before the attempt following `attempt` (1-based).

        base_delay * 2**(attempt-1), capped at max_delay, then scaled by a
        random factor in [1 - jitter, 1 + jitter].
        """
        delay = min(self.max_delay, self.base_delay * 2 ** (attempt - 1))
        if self.jitter:
            delay *= random.uniform(1 - self.jitter, 1 + self.jitter)
        return max(0.0, delay)

    async def run(
        self,
        operation: Callable[[], Awaitable[T]],
        retry_if: Callable[[Exception], bool] = is_retryable
    ) -> T:
        """
        Await operation() until it succeeds or attempts run out.

        Only errors accepted by retry_if are retried; pass is_unsent for
        requests that must not reach the backend twice.
        """
        for attempt in range(1, self.max_attempts + 1):
            try:
                return await operation()
            except Exception as e:
                if not retry_if(e) or attempt == self.max_attempts:
                    raise
                delay = self.delay_for(attempt)
                logger.warning(
                    "retrying operation",
                    attempt=attempt,
                    max_attempts=self.max_attempts,
                    error=str(e),
                    delay=round(delay, 2)
                )
                await self._sleep(delay)
        raise AssertionError("unreachable")

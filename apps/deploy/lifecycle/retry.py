"""Bounded retry policy for provider calls."""

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import TypeVar

from apps.deploy.exceptions import ProviderError, RateLimited

logger = logging.getLogger(__name__)

T = TypeVar("T")


def is_transient(error: BaseException) -> bool:
    """Default retryable predicate: provider errors flagged transient."""
    return isinstance(error, ProviderError) and error.transient


@dataclass(frozen=True)
class RetryPolicy:
    """
    Fixed-count retry with an explicit backoff schedule.

    `delays[i]` is the wait after attempt i+1 fails; the last entry is
    reused if there are more attempts than delays.
    """

    max_attempts: int = 3
    delays: tuple[float, ...] = (5.0, 15.0, 30.0)
    retryable: Callable[[BaseException], bool] = is_transient
    max_retry_after: float = 60.0
    sleep: Callable[[float], Awaitable[None]] = field(default=asyncio.sleep, compare=False)

    def delay_for(self, attempt: int, error: BaseException | None = None) -> float:
        """Delay before attempt `attempt + 1`, honouring a provider Retry-After."""
        if not self.delays:
            base = 0.0
        else:
            base = self.delays[min(attempt - 1, len(self.delays) - 1)]
        if isinstance(error, RateLimited) and error.retry_after:
            return min(float(error.retry_after), self.max_retry_after)
        return base

    async def run(
        self, operation: Callable[[], Awaitable[T]], label: str = "operation"
    ) -> tuple[T, int]:
        """
        Run `operation` until it succeeds or the policy gives up.

        Returns:
            The operation's result and the number of attempts used.

        Raises:
            The last error, once attempts are exhausted or it is not retryable.
        """
        attempt = 0
        while True:
            attempt += 1
            try:
                return await operation(), attempt
            except Exception as e:
                if not self.retryable(e) or attempt >= self.max_attempts:
                    raise
                delay = self.delay_for(attempt, e)
                logger.warning(
                    "%s failed (attempt %d/%d), retry in %.1fs: %s",
                    label,
                    attempt,
                    self.max_attempts,
                    delay,
                    str(e),
                )
                await self.sleep(delay)

    @classmethod
    def no_retry(cls) -> "RetryPolicy":
        return cls(max_attempts=1, delays=())

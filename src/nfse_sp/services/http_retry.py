from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import TypeVar

from nfse_sp.config import SOAP_MAX_RETRIES, SOAP_RETRY_INTERVAL

T = TypeVar("T")

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RetryPolicy:
    """Fixed-interval retry: every failure waits *interval* seconds, no backoff.

    *giveup_exceptions* are re-raised at once even if they also match
    *retryable_exceptions*.
    """

    max_attempts: int
    interval: float
    retryable_exceptions: tuple[type[Exception], ...] = (Exception,)
    giveup_exceptions: tuple[type[Exception], ...] = ()

    @classmethod
    def from_retries(
        cls,
        max_retries: int = SOAP_MAX_RETRIES,
        interval: float = SOAP_RETRY_INTERVAL,
        giveup_exceptions: tuple[type[Exception], ...] = (),
    ) -> RetryPolicy:
        """Build a policy from a retry count (total attempts = retries + 1)."""
        if max_retries < 0:
            raise ValueError("max_retries não pode ser negativo")
        if interval < 0:
            raise ValueError("retry_interval não pode ser negativo")
        return cls(
            max_attempts=max_retries + 1,
            interval=interval,
            giveup_exceptions=giveup_exceptions,
        )


async def retry_call(
    func: Callable[[], Awaitable[T]],
    policy: RetryPolicy,
    *,
    sleep_func: Callable[[float], Awaitable[object]] = asyncio.sleep,
) -> T:
    """Await *func()* with retry per *policy*, re-raising the last error on exhaustion."""
    last_exc: Exception | None = None
    for attempt in range(policy.max_attempts):
        try:
            return await func()
        except policy.giveup_exceptions:
            raise
        except policy.retryable_exceptions as exc:
            last_exc = exc
            if attempt < policy.max_attempts - 1:
                logger.warning(
                    "Retry %d/%d after %s: %s (%.1fs delay)",
                    attempt + 1,
                    policy.max_attempts,
                    type(exc).__name__,
                    exc,
                    policy.interval,
                )
                await sleep_func(policy.interval)
    raise last_exc  # type: ignore[misc]

"""
Retry policy for chat backend calls.

The orchestration loop never retries anything itself.  A :class:`RetryPolicy` is plain data handed
to whichever backend performs the network call; :func:`call_with_retry` is the helper backends use to
honour it.
"""

import asyncio
import logging
import random
from typing import (
    Awaitable,
    Callable,
    Optional,
    TypeVar,
)

from pydantic import (
    BaseModel,
    Field,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")

AUTH_STATUS_CODES = frozenset({401, 403})

RetryCallback = Callable[[int, float, str], None]
"""Called as ``on_retry(attempt, next_delay_seconds, error_text)`` before each back-off sleep."""


class BackendError(RuntimeError):
    """Raised when a chat backend request fails."""

    def __init__(self, message: str, status_code: Optional[int] = None, retryable: bool = True):
        super().__init__(message)
        self.status_code = status_code
        self.retryable = retryable


class RetryPolicy(BaseModel):
    """Declarative retry/back-off parameters."""

    enabled: bool = True
    max_retries: int = Field(3, ge=0)
    initial_delay: float = Field(1.0, ge=0.0, description="Seconds before the first retry")
    max_delay: float = Field(60.0, ge=0.0, description="Upper bound for a single back-off")
    exponential_base: float = Field(2.0, ge=1.0)
    jitter: bool = True
    retry_on_auth_errors: bool = False
    idempotent: bool = True

    def delay_for(self, attempt: int) -> float:
        """Back-off before retry number *attempt* (1-based)."""
        delay = min(self.initial_delay * self.exponential_base ** (attempt - 1), self.max_delay)
        if self.jitter:
            delay *= random.uniform(0.5, 1.0)
        return delay

    def should_retry(self, error: BackendError, attempt: int) -> bool:
        """Whether a failure on *attempt* (1-based) earns another try."""
        if not self.enabled or not self.idempotent or attempt > self.max_retries:
            return False
        if error.status_code in AUTH_STATUS_CODES:
            return self.retry_on_auth_errors
        return error.retryable


async def call_with_retry(
    fn: Callable[[], Awaitable[T]],
    policy: RetryPolicy,
    on_retry: Optional[RetryCallback] = None,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> T:
    """
    Await ``fn()`` and retry it according to *policy*.

    Only :class:`BackendError` is considered for retries; anything else propagates at once.  When the
    policy gives up, the last error is re-raised.
    """
    attempt = 0
    while True:
        attempt += 1
        try:
            return await fn()
        except BackendError as exc:
            if not policy.should_retry(exc, attempt):
                raise
            delay = policy.delay_for(attempt)
            logger.warning(
                "Backend call failed (attempt %d/%d): %s; retrying in %.1fs",
                attempt,
                policy.max_retries + 1,
                exc,
                delay,
            )
            if on_retry is not None:
                on_retry(attempt, delay, str(exc))
            await sleep(delay)

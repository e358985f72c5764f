"""Bounded retry around a single upstream call.

Rate limits wait a flat delay between attempts rather than backing off
exponentially. Quota exhaustion is never retried.
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import TypeVar

from .errors import LLMError, ProviderError, QuotaExceededError, RateLimitError, TimeoutError

logger = logging.getLogger(__name__)

T = TypeVar("T")

Sleep = Callable[[float], Awaitable[None]]


class RetryController:
    """Retries one upstream call on transient failures.

    - RateLimitError: wait ``rate_limit_delay`` then retry
    - ProviderError / TimeoutError: wait ``server_error_delay`` then retry
    - QuotaExceededError and every other LLMError: raised immediately
    """

    DEFAULT_MAX_ATTEMPTS = 3
    DEFAULT_RATE_LIMIT_DELAY = 5.0
    DEFAULT_SERVER_ERROR_DELAY = 1.0

    def __init__(
        self,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
        rate_limit_delay: float = DEFAULT_RATE_LIMIT_DELAY,
        server_error_delay: float = DEFAULT_SERVER_ERROR_DELAY,
        sleep: Sleep | None = None,
    ):
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        self._max_attempts = max_attempts
        self._rate_limit_delay = rate_limit_delay
        self._server_error_delay = server_error_delay
        self._sleep = sleep

    @property
    def max_attempts(self) -> int:
        return self._max_attempts

    def delay_for(self, error: LLMError) -> float | None:
        """Seconds to wait before retrying ``error``, or None if it is not retryable."""
        if isinstance(error, QuotaExceededError):
            return None
        if isinstance(error, RateLimitError):
            return self._rate_limit_delay
        if isinstance(error, (ProviderError, TimeoutError)):
            return self._server_error_delay
        return None

    async def run(
        self,
        call: Callable[[], Awaitable[T]],
        *,
        operation: str = "chat",
        correlation_id: str | None = None,
    ) -> T:
        """Invoke ``call`` until it succeeds, fails terminally, or attempts run out.

        Raises:
            LLMError: The last error once no further attempt is allowed.
        """
        # Resolved per call so tests can patch asyncio.sleep
        sleep = self._sleep or asyncio.sleep

        for attempt in range(1, self._max_attempts + 1):
            try:
                logger.debug(
                    "Attempting %s (attempt %d/%d)",
                    operation,
                    attempt,
                    self._max_attempts,
                    extra={"correlation_id": correlation_id, "attempt": attempt},
                )
                return await call()

            except LLMError as e:
                e.correlation_id = e.correlation_id or correlation_id
                delay = self.delay_for(e)

                if delay is None:
                    if isinstance(e, QuotaExceededError):
                        logger.error(
                            "Quota exhausted during %s, not retrying",
                            operation,
                            extra={"correlation_id": correlation_id, "provider": e.provider},
                        )
                    raise

                if attempt >= self._max_attempts:
                    logger.error(
                        "%s failed after %d attempts: %s",
                        operation,
                        attempt,
                        str(e),
                        extra={
                            "correlation_id": correlation_id,
                            "provider": e.provider,
                            "error_type": type(e).__name__,
                        },
                    )
                    raise

                logger.warning(
                    "Retryable error on attempt %d/%d: %s. Retrying in %.1fs",
                    attempt,
                    self._max_attempts,
                    str(e),
                    delay,
                    extra={
                        "correlation_id": correlation_id,
                        "provider": e.provider,
                        "attempt": attempt,
                        "error_type": type(e).__name__,
                    },
                )
                await sleep(delay)

        # Unreachable: the loop either returns or raises
        raise LLMError(f"{operation} failed after {self._max_attempts} attempts")

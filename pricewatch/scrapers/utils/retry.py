"""Retry utilities with exponential backoff."""

import asyncio
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional, Tuple, Type, TypeVar

import httpx
import structlog
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    RetryError,
    before_sleep_log,
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
    wait_fixed,
)

from pricewatch.core.exceptions import RetryExhausted

logger = structlog.get_logger(__name__)

T = TypeVar("T")

RetryObserver = Callable[[int, BaseException], None]


@dataclass(frozen=True)
class RetryPolicy:
    """How often and how patiently an operation is retried.

    Delays are in seconds. The wait after failed attempt k is
    ``min(initial_delay * backoff_multiplier ** (k - 1), max_delay)``, or the
    constant ``min(initial_delay, max_delay)`` when ``exponential`` is False.
    """

    max_attempts: int
    initial_delay: float
    backoff_multiplier: float = 2.0
    max_delay: float = 10.0
    exponential: bool = True
    on_retry: Optional[RetryObserver] = None

    def __post_init__(self):
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        if self.initial_delay < 0 or self.max_delay < 0:
            raise ValueError("delays must be non-negative")

    def delay_for(self, attempt: int) -> float:
        """Wait (seconds) scheduled after the given failed attempt number."""
        if not self.exponential:
            return min(self.initial_delay, self.max_delay)
        return min(
            self.initial_delay * self.backoff_multiplier ** (attempt - 1),
            self.max_delay,
        )


class RetryExecutor:
    """Runs async operations under a RetryPolicy.

    Only exceptions in ``retry_on`` are retried; anything else propagates on
    the spot, unchanged. When every attempt fails, RetryExhausted is raised
    with the last error attached.
    """

    def __init__(self, sleep: Callable[[float], Awaitable[None]] = asyncio.sleep):
        self._sleep = sleep

    async def execute(
        self,
        operation: Callable[[], Awaitable[T]],
        policy: RetryPolicy,
        retry_on: Tuple[Type[BaseException], ...] = (Exception,),
    ) -> T:
        """Run ``operation`` until it succeeds or the policy gives up.

        Args:
            operation: Zero-argument callable returning an awaitable
            policy: Attempt count, delays and observer
            retry_on: Exception types considered transient

        Returns:
            Whatever the first successful attempt returned

        Raises:
            RetryExhausted: After ``policy.max_attempts`` failed attempts
        """
        retrying = AsyncRetrying(
            stop=stop_after_attempt(policy.max_attempts),
            wait=self._build_wait(policy),
            retry=retry_if_exception_type(retry_on),
            before_sleep=self._make_observer(policy),
            sleep=self._sleep,
            reraise=False,
        )

        # tenacity only awaits coroutine functions, not lambdas returning one.
        async def attempt() -> T:
            return await operation()

        try:
            return await retrying(attempt)
        except RetryError as e:
            last_error = e.last_attempt.exception()
            raise RetryExhausted(last_error, policy.max_attempts) from last_error

    @staticmethod
    def _build_wait(policy: RetryPolicy):
        if not policy.exponential:
            return wait_fixed(min(policy.initial_delay, policy.max_delay))
        return wait_exponential(
            multiplier=policy.initial_delay,
            exp_base=policy.backoff_multiplier,
            max=policy.max_delay,
        )

    @staticmethod
    def _make_observer(policy: RetryPolicy) -> Callable[[RetryCallState], None]:
        def notify(retry_state: RetryCallState) -> None:
            if policy.on_retry is None:
                return
            error = retry_state.outcome.exception() if retry_state.outcome else None
            try:
                policy.on_retry(retry_state.attempt_number, error)
            except Exception as e:
                logger.warning(
                    "retry_observer_failed",
                    attempt=retry_state.attempt_number,
                    error=str(e),
                )

        return notify


# Reusable retry decorator for replayed HTTP requests (httpx). Only transport
# level failures are retried; HTTP status errors are the caller's business.
http_retry = retry(
    stop=stop_after_attempt(3),
    wait=wait_exponential(multiplier=1, min=2, max=30),
    retry=retry_if_exception_type(
        (
            httpx.ConnectError,
            httpx.TimeoutException,
            httpx.RemoteProtocolError,
        )
    ),
    before_sleep=before_sleep_log(logger, logging.WARNING),
    reraise=True,
)

"""Resilient "go to URL and settle" built on RetryExecutor + ChallengeSolver."""

import asyncio
from typing import Awaitable, Callable, Optional

import structlog

from pricewatch.core.exceptions import (
    ChallengeUnsolvedError,
    NavigationError,
    RetryExhausted,
)
from pricewatch.scrapers.engine.challenge import ChallengeSolver
from pricewatch.scrapers.engine.page import PageController
from pricewatch.scrapers.utils.retry import RetryExecutor, RetryPolicy

logger = structlog.get_logger(__name__)

NAVIGATION_BASE_DELAY = 2.0
NAVIGATION_MAX_DELAY = 30.0


class NavigationController:
    """Navigates a page, waits for it to settle and clears challenges.

    Each attempt is a fresh page load: the solver is reset, ``goto`` is
    bounded by ``timeout`` and an unsolved challenge fails the attempt so the
    retry policy reloads the page.
    """

    def __init__(
        self,
        page: PageController,
        solver: ChallengeSolver,
        max_retries: int,
        timeout: float = 30.0,
        settle_time: float = 2.0,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        log=None,
    ):
        """Initialize the controller.

        Args:
            page: Page to drive
            solver: Challenge solver bound to the same page
            max_retries: Extra attempts after the first one
            timeout: Seconds allowed per navigation attempt
            settle_time: Fixed wait after the page loaded
            sleep: Awaitable sleep, injectable for tests
            log: Bound logger of the owning scraper
        """
        self.page = page
        self.solver = solver
        self.timeout = timeout
        self.settle_time = settle_time
        self._sleep = sleep
        self.logger = log or logger
        self.executor = RetryExecutor(sleep=sleep)
        self.policy = RetryPolicy(
            max_attempts=max_retries + 1,
            initial_delay=NAVIGATION_BASE_DELAY,
            backoff_multiplier=2.0,
            max_delay=NAVIGATION_MAX_DELAY,
            on_retry=self._log_retry,
        )
        self._current_url: Optional[str] = None

    def _log_retry(self, attempt: int, error: BaseException) -> None:
        self.logger.warning(
            "navigation_retry",
            url=self._current_url,
            attempt=attempt,
            max_attempts=self.policy.max_attempts,
            error=str(error)[:200],
        )

    async def _attempt(self, url: str) -> None:
        self.solver.reset()
        try:
            await asyncio.wait_for(self.page.goto(url, self.timeout), timeout=self.timeout)
        except asyncio.TimeoutError:
            raise NavigationError(url, f"timed out after {self.timeout}s") from None

        await self._sleep(self.settle_time)

        if await self.solver.detect():
            try:
                await self.solver.resolve()
            except ChallengeUnsolvedError as e:
                raise NavigationError(url, str(e)) from e

    async def goto_and_settle(self, url: str) -> None:
        """Navigate to ``url`` until it loads without an unsolved challenge.

        Raises:
            NavigationError: When every attempt failed
        """
        self._current_url = url
        try:
            await self.executor.execute(lambda: self._attempt(url), self.policy)
        except RetryExhausted as e:
            last = e.last_error
            if isinstance(last, NavigationError):
                reason = last.reason
            else:
                reason = str(last) or type(last).__name__
            raise NavigationError(url, f"{reason} (after {e.attempts} attempts)") from last

"""Tests for NavigationController."""

import asyncio
from unittest.mock import MagicMock

import pytest

from pricewatch.core.exceptions import NavigationError
from pricewatch.scrapers.engine.challenge import ChallengeSettings, ChallengeSolver
from pricewatch.scrapers.engine.navigation import NavigationController

from .fakes import FakePage


URL = "https://shop.example/c/dairy"


class HangingPage(FakePage):
    """Page whose navigation never completes."""

    async def goto(self, url: str, timeout: float) -> None:
        self.visits.append(url)
        await asyncio.sleep(10)


def make_controller(page, sleep, rng, max_retries=1, timeout=5.0, log=None):
    solver = ChallengeSolver(
        page, ChallengeSettings(max_solve_attempts=2, settle_interval=1.0), sleep=sleep, rng=rng
    )
    return NavigationController(
        page,
        solver,
        max_retries=max_retries,
        timeout=timeout,
        settle_time=0.5,
        sleep=sleep,
        log=log,
    )


class TestNavigationController:
    """Test retries, timeouts and challenge handling."""

    async def test_settles_after_load(self, sleep, rng):
        page = FakePage()
        controller = make_controller(page, sleep, rng)

        await controller.goto_and_settle(URL)

        assert page.visits == [URL]
        assert sleep.delays == [0.5]

    async def test_retries_transient_failure(self, sleep, rng):
        failures = iter([ConnectionError("net::ERR_CONNECTION_RESET")])
        page = FakePage(fail=lambda url: next(failures, None))
        log = MagicMock()
        controller = make_controller(page, sleep, rng, log=log)

        await controller.goto_and_settle(URL)

        assert page.visits == [URL, URL]
        assert sleep.delays == [2.0, 0.5]
        log.warning.assert_called_once()
        assert log.warning.call_args.args[0] == "navigation_retry"
        assert log.warning.call_args.kwargs["attempt"] == 1

    async def test_timeout_exhausts_into_navigation_error(self, sleep, rng):
        page = HangingPage()
        controller = make_controller(page, sleep, rng, max_retries=1, timeout=0.05)

        with pytest.raises(NavigationError) as exc_info:
            await controller.goto_and_settle(URL)

        assert page.visits == [URL, URL]
        assert exc_info.value.url == URL
        assert "timed out" in str(exc_info.value)
        assert "after 2 attempts" in str(exc_info.value)

    async def test_unsolved_challenge_reloads_page(self, sleep, rng):
        page = FakePage(default_title="Just a moment...")
        controller = make_controller(page, sleep, rng, max_retries=2)

        with pytest.raises(NavigationError) as exc_info:
            await controller.goto_and_settle(URL)

        assert page.visits == [URL, URL, URL]
        assert "Challenge still present" in str(exc_info.value)

    async def test_challenge_solved_on_load(self, sleep, rng):
        page = FakePage(titles=["Just a moment"], default_title="Dairy")
        controller = make_controller(page, sleep, rng)

        await controller.goto_and_settle(URL)

        assert page.visits == [URL]
        assert controller.solver.attempts == 1

"""Anti-bot challenge detection and solving.

One ChallengeSolver per session. A navigation resets it to IDLE; ``resolve``
drives it to SOLVED or FAILED within a bounded number of attempts. Retrying
a FAILED challenge is the navigation layer's job (a fresh page load), never
a loop in here.
"""

import asyncio
import random
from dataclasses import dataclass
from enum import Enum
from typing import Awaitable, Callable, List, Optional, Tuple

import structlog

from pricewatch.core.exceptions import ChallengeUnsolvedError
from pricewatch.scrapers.engine.page import BoundingBox, PageController

logger = structlog.get_logger(__name__)


class ChallengeState(str, Enum):
    IDLE = "idle"
    DETECTED = "detected"
    SOLVING = "solving"
    SOLVED = "solved"
    FAILED = "failed"


@dataclass(frozen=True)
class WidgetLocator:
    """Where a clickable challenge control may be found.

    ``frame_selector`` resolves ``selector`` inside an embedded frame.
    ``x_offset`` clicks at a fixed distance from the left edge (checkbox-like
    controls drawn inside a wider box) instead of near the center.
    """

    selector: str
    frame_selector: Optional[str] = None
    x_offset: Optional[float] = None


@dataclass(frozen=True)
class ChallengeSettings:
    indicators: Tuple[str, ...] = (
        "Just a moment",
        "Checking your browser",
        "Verify you are human",
    )
    content_markers: Tuple[str, ...] = ()  # Present once the real page shows
    widget_locators: Tuple[WidgetLocator, ...] = ()
    max_solve_attempts: int = 3
    settle_interval: float = 5.0  # seconds after each attempt
    waypoints: int = 4
    match_content: bool = True  # Title only when False


_TURNSTILE_FRAMES = (
    'iframe[src*="challenges.cloudflare.com"]',
    'iframe[src*="turnstile"]',
    'iframe[title*="challenge"]',
    "#turnstile-wrapper iframe",
    ".cf-turnstile iframe",
)
_TURNSTILE_CONTROLS = (
    'input[type="checkbox"]',
    ".ctp-checkbox-label",
    "#challenge-stage input",
    "label",
)

# Cloudflare Turnstile (English and German interstitials). Matches on the
# title only because regular pages load Cloudflare-hosted assets.
CLOUDFLARE_TURNSTILE = ChallengeSettings(
    indicators=(
        "Just a moment",
        "Nur einen Moment",
        "Cloudflare",
        "Verifizierung",
        "Checking your browser",
        "Bitte warten",
    ),
    widget_locators=tuple(
        WidgetLocator(control, frame_selector=frame)
        for frame in _TURNSTILE_FRAMES
        for control in _TURNSTILE_CONTROLS
    )
    + (WidgetLocator(".captcha-box", x_offset=30),),
    match_content=False,
)


def _cubic_bezier(t: float, p0: float, p1: float, p2: float, p3: float) -> float:
    u = 1 - t
    return u * u * u * p0 + 3 * u * u * t * p1 + 3 * u * t * t * p2 + t * t * t * p3


def curved_path(
    start: Tuple[float, float],
    end: Tuple[float, float],
    waypoints: int,
    rng: random.Random,
) -> List[Tuple[float, float]]:
    """Intermediate points along a randomized cubic Bezier arc.

    Returns ``waypoints`` points strictly between start and end followed by
    the end point itself.
    """
    (x0, y0), (x3, y3) = start, end
    dx, dy = x3 - x0, y3 - y0
    x1 = x0 + dx * rng.uniform(0.2, 0.4) + rng.uniform(-50, 50)
    y1 = y0 + dy * rng.uniform(0.1, 0.3) + rng.uniform(-30, 30)
    x2 = x0 + dx * rng.uniform(0.6, 0.8) + rng.uniform(-50, 50)
    y2 = y0 + dy * rng.uniform(0.7, 0.9) + rng.uniform(-30, 30)

    points = []
    for i in range(1, waypoints + 1):
        t = i / (waypoints + 1)
        points.append((_cubic_bezier(t, x0, x1, x2, x3), _cubic_bezier(t, y0, y1, y2, y3)))
    points.append(end)
    return points


class ChallengeSolver:
    """Detects a bot wall on the current page and tries to click through it."""

    def __init__(
        self,
        page: PageController,
        settings: Optional[ChallengeSettings] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        rng: Optional[random.Random] = None,
    ):
        self.page = page
        self.settings = settings or ChallengeSettings()
        self._sleep = sleep
        self._rng = rng or random.Random()
        self.state = ChallengeState.IDLE
        self.attempts = 0
        self._pointer: Tuple[float, float] = (0.0, 0.0)

    def reset(self) -> None:
        """Back to IDLE; called at the start of every navigation attempt."""
        self.state = ChallengeState.IDLE
        self.attempts = 0

    async def _indicators_present(self) -> bool:
        title = await self.page.title()
        haystack = title or ""
        if self.settings.match_content:
            haystack = f"{haystack}\n{await self.page.content()}"
        haystack = haystack.lower()
        return any(ind.lower() in haystack for ind in self.settings.indicators)

    async def _markers_present(self) -> bool:
        if not self.settings.content_markers:
            return True
        content = await self.page.content()
        return any(marker in content for marker in self.settings.content_markers)

    async def detect(self) -> bool:
        """Check the current page for challenge indicators.

        Returns:
            True (state DETECTED) when a challenge is showing
        """
        if await self._indicators_present():
            self.state = ChallengeState.DETECTED
            logger.info("challenge_detected", url=await self.page.current_url())
            return True
        return False

    async def _is_cleared(self) -> bool:
        return not await self._indicators_present() and await self._markers_present()

    async def _locate_widget(self) -> Optional[Tuple[WidgetLocator, BoundingBox]]:
        for locator in self.settings.widget_locators:
            box = await self.page.locate(locator.selector, locator.frame_selector)
            if box is not None:
                return locator, box
        return None

    async def _click_widget(self, locator: WidgetLocator, box: BoundingBox) -> None:
        if locator.x_offset is not None:
            target = (box.x + locator.x_offset, box.y + box.height / 2)
        else:
            cx, cy = box.center
            target = (
                cx + self._rng.uniform(-5, 5),
                cy + self._rng.uniform(-5, 5),
            )

        for x, y in curved_path(self._pointer, target, self.settings.waypoints, self._rng):
            await self.page.mouse_move(x, y, steps=10)
        await self._sleep(self._rng.uniform(0.1, 0.3))
        await self.page.mouse_click(*target)
        self._pointer = target
        logger.info("challenge_widget_clicked", selector=locator.selector)

    async def attempt_solve(self) -> bool:
        """One solve attempt: click a widget if one shows, settle, re-check.

        Returns:
            True when the page is cleared after the settle interval
        """
        self.state = ChallengeState.SOLVING
        self.attempts += 1

        try:
            found = await self._locate_widget()
            if found is not None:
                await self._click_widget(*found)
            else:
                logger.debug("challenge_widget_not_found", attempt=self.attempts)
        except Exception as e:
            # A detached frame mid-click is common while the challenge reloads
            logger.debug("challenge_click_failed", attempt=self.attempts, error=str(e))

        await self._sleep(self.settings.settle_interval)

        if await self._is_cleared():
            self.state = ChallengeState.SOLVED
            logger.info("challenge_solved", attempts=self.attempts)
            return True
        return False

    async def resolve(self) -> ChallengeState:
        """Drive a detected challenge to SOLVED or FAILED.

        Returns:
            ChallengeState.SOLVED (or IDLE when nothing was detected)

        Raises:
            ChallengeUnsolvedError: After ``max_solve_attempts`` failed attempts
        """
        if self.state == ChallengeState.IDLE and not await self.detect():
            return self.state

        for _ in range(self.settings.max_solve_attempts):
            if await self.attempt_solve():
                return self.state

        self.state = ChallengeState.FAILED
        logger.warning("challenge_failed", attempts=self.attempts)
        raise ChallengeUnsolvedError(self.attempts)

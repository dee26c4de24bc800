"""Playwright-backed browser session with anti-detection.

One BrowserSession per scraper instance; it owns the Playwright driver,
browser, context and page and is never shared between scrapers.
"""

import json
import random
from typing import Any, Dict, List, Optional

import structlog
from playwright.async_api import (
    Browser,
    BrowserContext,
    Page,
    Playwright,
    async_playwright,
)

from pricewatch.config import settings
from pricewatch.scrapers.engine.page import BoundingBox
from pricewatch.scrapers.site_config import ScraperConfig
from pricewatch.scrapers.utils.proxy import playwright_proxy_settings

logger = structlog.get_logger(__name__)


# Realistic desktop user-agent strings, used when a site configures none
USER_AGENTS: List[str] = [
    # Chrome on Windows
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/131.0.0.0 Safari/537.36",
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/130.0.0.0 Safari/537.36",
    # Chrome on macOS
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/131.0.0.0 Safari/537.36",
    # Firefox
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64; rv:133.0) Gecko/20100101 Firefox/133.0",
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10.15; rv:133.0) Gecko/20100101 Firefox/133.0",
    # Edge on Windows
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/131.0.0.0 Safari/537.36 Edg/131.0.0.0",
]

VIEWPORTS = [
    {"width": 1920, "height": 1080},
    {"width": 1536, "height": 864},
    {"width": 1440, "height": 900},
    {"width": 1366, "height": 768},
]

LAUNCH_ARGS = [
    "--no-sandbox",
    "--disable-setuid-sandbox",
    "--disable-dev-shm-usage",
    "--disable-blink-features=AutomationControlled",
]

# Minimal stealth JS to mask automation signals; %s is the languages array
STEALTH_JS = """
Object.defineProperty(navigator, 'webdriver', { get: () => undefined });
Object.defineProperty(navigator, 'languages', { get: () => %s });
Object.defineProperty(navigator, 'plugins', { get: () => [1, 2, 3, 4, 5] });
window.chrome = { runtime: {} };
const originalQuery = window.navigator.permissions.query;
window.navigator.permissions.query = (parameters) =>
  parameters.name === 'notifications'
    ? Promise.resolve({ state: Notification.permission })
    : originalQuery(parameters);
"""


def _languages_for(locale: Optional[str]) -> List[str]:
    if not locale:
        return ["en-US", "en"]
    primary = locale.split("-")[0]
    return [locale, primary] if primary != locale else [locale]


class PlaywrightPage:
    """PageController over a Playwright Page."""

    def __init__(self, page: Page, context: BrowserContext):
        self._page = page
        self._context = context

    async def goto(self, url: str, timeout: float) -> None:
        await self._page.goto(url, wait_until="domcontentloaded", timeout=timeout * 1000)

    async def title(self) -> str:
        return await self._page.title()

    async def content(self) -> str:
        return await self._page.content()

    async def current_url(self) -> str:
        return self._page.url

    async def locate(
        self, selector: str, frame_selector: Optional[str] = None
    ) -> Optional[BoundingBox]:
        if frame_selector:
            frame_element = await self._page.query_selector(frame_selector)
            if frame_element is None:
                return None
            frame = await frame_element.content_frame()
            if frame is None:
                return None
            element = await frame.query_selector(selector)
            if element is None:
                return None
            # Playwright reports boxes relative to the main frame viewport
            box = await element.bounding_box()
        else:
            locator = self._page.locator(selector).first
            if await locator.count() == 0 or not await locator.is_visible():
                return None
            box = await locator.bounding_box()

        if not box:
            return None
        return BoundingBox(box["x"], box["y"], box["width"], box["height"])

    async def click(self, selector: str) -> bool:
        locator = self._page.locator(selector).first
        if await locator.count() == 0:
            return False
        await locator.click(timeout=5000)
        return True

    async def fill(self, selector: str, value: str) -> bool:
        locator = self._page.locator(selector).first
        if await locator.count() == 0:
            return False
        await locator.fill(value, timeout=5000)
        return True

    async def mouse_move(self, x: float, y: float, steps: int = 1) -> None:
        await self._page.mouse.move(x, y, steps=steps)

    async def mouse_click(self, x: float, y: float) -> None:
        await self._page.mouse.click(x, y)

    async def count(self, selector: str) -> int:
        return await self._page.locator(selector).count()

    async def exists(self, selector: str) -> bool:
        return await self.count(selector) > 0

    async def scroll_to_bottom(self) -> None:
        await self._page.evaluate("window.scrollTo(0, document.body.scrollHeight)")

    async def evaluate(self, script: str, arg: Any = None) -> Any:
        return await self._page.evaluate(script, arg)

    async def cookies(self) -> List[Dict[str, Any]]:
        return await self._context.cookies()

    async def user_agent(self) -> str:
        return await self._page.evaluate("navigator.userAgent")

    async def screenshot(self, path: str) -> None:
        await self._page.screenshot(path=path, full_page=True)


class BrowserSession:
    """Chromium session configured from a ScraperConfig.

    Applies the site's proxy, user agent (configured list or built-in pool),
    a randomized viewport, locale/timezone, extra headers, cookies and a
    stealth init script.
    """

    def __init__(self, config: ScraperConfig, headless: Optional[bool] = None):
        self.config = config
        self.headless = settings.PLAYWRIGHT_HEADLESS if headless is None else headless
        self._playwright: Optional[Playwright] = None
        self._browser: Optional[Browser] = None
        self._context: Optional[BrowserContext] = None
        self._page: Optional[Page] = None
        self.logger = logger.bind(scraper=config.name)

    async def open(self) -> PlaywrightPage:
        """Launch Chromium and open the session's page."""
        launch_options: Dict[str, Any] = {"headless": self.headless, "args": LAUNCH_ARGS}
        if self.config.proxy_url:
            launch_options["proxy"] = playwright_proxy_settings(self.config.proxy_url)

        self._playwright = await async_playwright().start()
        self._browser = await self._playwright.chromium.launch(**launch_options)

        user_agent = random.choice(list(self.config.user_agents) or USER_AGENTS)
        context_options: Dict[str, Any] = {
            "user_agent": user_agent,
            "viewport": random.choice(VIEWPORTS),
            "java_script_enabled": True,
            "bypass_csp": True,
        }
        if self.config.locale:
            context_options["locale"] = self.config.locale
        if self.config.timezone_id:
            context_options["timezone_id"] = self.config.timezone_id
        if self.config.headers:
            context_options["extra_http_headers"] = dict(self.config.headers)

        self._context = await self._browser.new_context(**context_options)
        await self._context.add_init_script(
            STEALTH_JS % json.dumps(_languages_for(self.config.locale))
        )

        if self.config.cookies:
            await self._context.add_cookies(
                [self._cookie_for_context(c) for c in self.config.cookies]
            )

        self._page = await self._context.new_page()
        self.logger.info(
            "browser_session_opened",
            headless=self.headless,
            has_proxy=bool(self.config.proxy_url),
        )
        return PlaywrightPage(self._page, self._context)

    def _cookie_for_context(self, cookie) -> Dict[str, Any]:
        # Playwright needs either a url or a domain/path pair
        cookie = dict(cookie)
        if "url" not in cookie and "domain" not in cookie:
            cookie["url"] = self.config.base_url
        return cookie

    async def close(self) -> None:
        """Release page, context, browser and driver; each step guarded."""
        for name, attr, method in (
            ("page", "_page", "close"),
            ("context", "_context", "close"),
            ("browser", "_browser", "close"),
            ("driver", "_playwright", "stop"),
        ):
            resource = getattr(self, attr)
            if resource is None:
                continue
            setattr(self, attr, None)
            try:
                await getattr(resource, method)()
            except Exception as e:
                self.logger.warning("browser_close_failed", resource=name, error=str(e))

        self.logger.debug("browser_session_closed")

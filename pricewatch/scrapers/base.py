"""Base scraper interface.

All site scrapers inherit from BaseScraper. The run driver (``scrape_all``)
is implemented once here; adapters only supply configuration defaults,
extraction strategies and a few optional hooks.
"""

import asyncio
import random
from datetime import datetime, timezone
from pathlib import Path
from typing import Awaitable, Callable, List, Optional, Sequence

import structlog

from pricewatch.config import settings
from pricewatch.core.exceptions import PersistenceError, PriceWatchError, SessionInitError
from pricewatch.scrapers.engine.browser import BrowserSession
from pricewatch.scrapers.engine.challenge import ChallengeSettings, ChallengeSolver
from pricewatch.scrapers.engine.extraction import (
    DomCardStrategy,
    EmbeddedStateStrategy,
    ExtractionContext,
    ExtractionPipeline,
    ExtractionStrategy,
)
from pricewatch.scrapers.engine.navigation import NavigationController
from pricewatch.scrapers.engine.page import PageController, ScrapeSession
from pricewatch.scrapers.engine.sink import CollectingSink, ResultSink
from pricewatch.scrapers.engine.traversal import (
    CategoryTraversal,
    TraversalLimits,
    default_page_url,
)
from pricewatch.scrapers.models import (
    BatchMeta,
    CanonicalProductRecord,
    CategoryNode,
    ScrapeResult,
    ScrapeStats,
)
from pricewatch.scrapers.site_config import ScraperConfig

logger = structlog.get_logger(__name__)

SessionFactory = Callable[[ScraperConfig], ScrapeSession]


class BaseScraper:
    """Template-method driver shared by every site scraper.

    Lifecycle: ``initialize`` -> ``scrape_all`` (or ``scrape_category``) ->
    ``cleanup``. One instance owns one browser session; never share an
    instance between concurrent runs.
    """

    site_id: str = ""  # Registry id, e.g. "rewe"
    supports_product_details: bool = False
    navigate_pages: bool = True  # False for adapters that only replay APIs
    challenge_settings: ChallengeSettings = ChallengeSettings()

    def __init__(
        self,
        config: ScraperConfig,
        sink: Optional[ResultSink] = None,
        session_factory: Optional[SessionFactory] = None,
        limits: Optional[TraversalLimits] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        rng: Optional[random.Random] = None,
        screenshot_dir: Optional[str] = None,
    ):
        """Initialize the scraper.

        Args:
            config: Effective site configuration
            sink: Receives a batch per page (in-memory collection by default)
            session_factory: Builds the browser session (Playwright by default)
            limits: Traversal safety caps
            sleep: Awaitable sleep, injectable for tests
            rng: Random source for jitter and pointer paths
            screenshot_dir: Where debug screenshots go (Settings.SCREENSHOT_DIR)
        """
        self.config = config
        self.sink = sink or CollectingSink()
        self._session_factory = session_factory or BrowserSession
        self.limits = limits or TraversalLimits()
        self._sleep = sleep
        self._rng = rng or random.Random()
        self.screenshot_dir = Path(screenshot_dir or settings.SCREENSHOT_DIR)

        self.stats = ScrapeStats(supermarket=config.name)
        self.run_id: Optional[str] = None
        self.logger = logger.bind(scraper=config.name)

        self.session: Optional[ScrapeSession] = None
        self.page: Optional[PageController] = None
        self.solver: Optional[ChallengeSolver] = None
        self.navigator: Optional[NavigationController] = None
        self.pipeline: Optional[ExtractionPipeline] = None
        self.traversal: Optional[CategoryTraversal] = None
        self._cancelled = False

    # Hooks

    def build_strategies(self) -> List[ExtractionStrategy]:
        """Extraction strategies in priority order."""
        return [EmbeddedStateStrategy(), DomCardStrategy()]

    def page_url(self, category: CategoryNode, page_number: int) -> str:
        """URL of a category page; ``?page=N`` for pages after the first."""
        return default_page_url(self.config.base_url)(category, page_number)

    async def prepare_session(self, page: PageController) -> None:
        """Runs once after the warm-up navigation (cookie consent etc.)."""

    async def click_first(self, page: PageController, selectors: Sequence[str]) -> Optional[str]:
        """Click the first selector that matches.

        Returns:
            The selector that was clicked, or None
        """
        for selector in selectors:
            try:
                if await page.click(selector):
                    self.logger.debug("clicked", selector=selector)
                    return selector
            except Exception as e:
                self.logger.debug("click_failed", selector=selector, error=str(e)[:200])
        return None

    # Lifecycle

    def set_run_id(self, run_id: str) -> None:
        self.run_id = run_id
        self.logger = logger.bind(scraper=self.config.name, run_id=run_id)

    async def initialize(self) -> None:
        """Open the browser session and wire the engine.

        Raises:
            SessionInitError: If the session cannot be opened
        """
        await self._close_session()
        self.stats.start()
        try:
            self.session = self._session_factory(self.config)
            self.page = await self.session.open()
        except Exception as e:
            self.logger.error("session_init_failed", error=str(e))
            await self.cleanup()
            raise SessionInitError(self.config.name, str(e)) from e

        self.solver = ChallengeSolver(
            self.page, self.challenge_settings, sleep=self._sleep, rng=self._rng
        )
        self.navigator = NavigationController(
            self.page,
            self.solver,
            max_retries=self.config.max_retries,
            timeout=self.config.navigation_timeout,
            settle_time=self.config.wait_times.dynamic_content,
            sleep=self._sleep,
            log=self.logger,
        )
        self.pipeline = ExtractionPipeline(self.build_strategies(), log=self.logger)
        self.traversal = CategoryTraversal(
            navigator=self.navigator,
            pipeline=self.pipeline,
            page=self.page,
            deliver=self._deliver,
            stats=self.stats,
            config=self.config,
            limits=self.limits,
            page_url=self.page_url,
            navigate_pages=self.navigate_pages,
            on_page_failed=self.take_screenshot,
            sleep=self._sleep,
            rng=self._rng,
            log=self.logger,
        )

        try:
            await self.navigator.goto_and_settle(self.config.base_url)
            await self.prepare_session(self.page)
        except Exception as e:
            self.logger.warning("warm_up_failed", error=str(e)[:200])
            self.stats.record_error("session", e, url=self.config.base_url)

        self.logger.info(
            "scraper_initialized",
            categories=len(self.config.categories),
            proxy=bool(self.config.proxy_url),
        )

    def _require_initialized(self) -> None:
        if self.traversal is None:
            raise PriceWatchError("initialize() must be called before scraping")

    async def scrape_category(self, category: CategoryNode) -> List[CanonicalProductRecord]:
        """Scrape one category; failures are recorded, never raised."""
        self._require_initialized()
        self.logger.info("category_started", category=category.id, name=category.name)
        try:
            records = await self.traversal.traverse(category)
        except Exception as e:
            self.logger.error("category_failed", category=category.id, error=str(e)[:200])
            self.stats.record_error(
                "category", e, url=category.absolute_url(self.config.base_url)
            )
            return []

        self.logger.info("category_completed", category=category.id, products=len(records))
        return records

    async def scrape_product_details(self, url: str) -> Optional[CanonicalProductRecord]:
        """Fetch a single product page.

        Returns:
            The record, or None when the adapter does not support detail
            pages or nothing could be extracted
        """
        if not self.supports_product_details:
            return None
        self._require_initialized()

        category = CategoryNode(id="product", name="", url=url)
        try:
            await self.navigator.goto_and_settle(url)
        except Exception as e:
            self.stats.record_error("product", e, url=url)
            return None

        context = ExtractionContext(
            category=category,
            page_number=1,
            url=url,
            base_url=self.config.base_url,
            currency=self.config.currency,
            selectors=self.config.selectors,
            headers=self.config.headers,
        )
        result = await self.pipeline.extract(self.page, context)
        return result.records[0] if result.records else None

    async def scrape_all(self) -> List[CanonicalProductRecord]:
        """Scrape every configured category, one at a time.

        Cancellation is honoured between categories only.
        """
        self._require_initialized()
        records: List[CanonicalProductRecord] = []
        categories = self.config.categories

        for index, category in enumerate(categories):
            if self._cancelled:
                self.logger.warning("scrape_cancelled", remaining=len(categories) - index)
                break
            if index > 0:
                await self._sleep(
                    self.config.wait_times.between_requests
                    + self._rng.uniform(0, self.limits.jitter)
                )
            records.extend(await self.scrape_category(category))

        self.stats.stop()
        self.logger.info("scrape_completed", **self.get_stats())
        return records

    def cancel(self) -> None:
        """Stop before the next category starts."""
        self._cancelled = True

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    async def cleanup(self) -> None:
        """Release the browser session. Safe to call any number of times."""
        await self._close_session()
        self.stats.stop()

    async def _close_session(self) -> None:
        session, self.session = self.session, None
        self.page = None
        if session is not None:
            try:
                await session.close()
            except Exception as e:
                self.logger.warning("session_close_failed", error=str(e))

    # Results

    async def _deliver(self, records: List[CanonicalProductRecord], meta: BatchMeta) -> None:
        try:
            saved = await self.sink.on_batch(records, meta)
        except Exception as e:
            error = PersistenceError(
                f"Sink rejected batch {meta.category_id} page {meta.page_number}: {e}"
            )
            self.logger.error(
                "batch_save_failed",
                category=meta.category_id,
                page=meta.page_number,
                error=str(e)[:200],
            )
            self.stats.record_error("persistence", error)
            return

        if saved < len(records):
            self.logger.warning(
                "batch_partially_saved",
                category=meta.category_id,
                page=meta.page_number,
                saved=saved,
                total=len(records),
            )
        else:
            self.logger.debug(
                "batch_saved", category=meta.category_id, page=meta.page_number, saved=saved
            )

    def get_stats(self) -> dict:
        return self.stats.snapshot()

    def build_scrape_result(self, records: List[CanonicalProductRecord]) -> ScrapeResult:
        return ScrapeResult(
            run_id=self.run_id or "",
            supermarket=self.config.name,
            records=list(records),
            products_scraped=self.stats.products_scraped,
            products_failed=self.stats.products_failed,
            duration=self.stats.duration,
            errors=list(self.stats.errors),
            cancelled=self._cancelled,
        )

    async def take_screenshot(self, name: str) -> Optional[str]:
        """Best-effort debug screenshot.

        Returns:
            File path, or None if no page is open or the capture failed
        """
        if self.page is None:
            return None

        timestamp = datetime.now(timezone.utc).strftime("%Y%m%dT%H%M%S")
        path = self.screenshot_dir / f"{self.site_id or 'scraper'}-{name}-{timestamp}.png"
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            await self.page.screenshot(str(path))
        except Exception as e:
            self.logger.debug("screenshot_failed", name=name, error=str(e))
            return None

        self.logger.info("screenshot_saved", path=str(path))
        return str(path)

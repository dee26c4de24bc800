"""Category traversal over flat pages, infinite scroll and lazy subcategories.

The mode is not configured: it is inferred from the first extraction of each
category node.

- continuations and no records: hierarchical, visit every continuation once
- an explicit next-page signal: flat pagination
- DOM cards without a next-page signal: infinite scroll
- otherwise: a single page
"""

import asyncio
import random
from dataclasses import dataclass
from enum import Enum
from typing import Awaitable, Callable, List, Optional, Sequence, Set, Tuple

import structlog

from pricewatch.scrapers.engine.extraction import (
    DomCardStrategy,
    ExtractionContext,
    ExtractionPipeline,
    ExtractionResult,
)
from pricewatch.scrapers.engine.navigation import NavigationController
from pricewatch.scrapers.engine.page import PageController
from pricewatch.scrapers.models import (
    BatchMeta,
    CanonicalProductRecord,
    CategoryNode,
    ScrapeStats,
)
from pricewatch.scrapers.site_config import ScraperConfig

logger = structlog.get_logger(__name__)

Deliver = Callable[[List[CanonicalProductRecord], BatchMeta], Awaitable[None]]
PageUrl = Callable[[CategoryNode, int], str]
PageFailedHook = Callable[[str], Awaitable[None]]


class TraversalMode(str, Enum):
    FLAT = "flat"
    INFINITE_SCROLL = "infinite_scroll"
    HIERARCHICAL = "hierarchical"
    SINGLE_PAGE = "single_page"


@dataclass(frozen=True)
class TraversalLimits:
    max_pages: int = 50  # Safety cap per category node
    max_scrolls: int = 15
    max_idle_scrolls: int = 3  # Consecutive scrolls without new cards
    scroll_settle: float = 1.0
    jitter: float = 0.5  # Upper bound of the random delay added to waits


def default_page_url(base_url: str) -> PageUrl:
    """``?page=N`` (or ``&page=N``) appended for pages after the first."""

    def page_url(category: CategoryNode, page_number: int) -> str:
        url = category.absolute_url(base_url)
        if page_number <= 1:
            return url
        separator = "&" if "?" in url else "?"
        return f"{url}{separator}page={page_number}"

    return page_url


class CategoryTraversal:
    """Walks one category at a time and delivers a batch per page."""

    def __init__(
        self,
        navigator: NavigationController,
        pipeline: ExtractionPipeline,
        page: PageController,
        deliver: Deliver,
        stats: ScrapeStats,
        config: ScraperConfig,
        limits: Optional[TraversalLimits] = None,
        page_url: Optional[PageUrl] = None,
        navigate_pages: bool = True,
        on_page_failed: Optional[PageFailedHook] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        rng: Optional[random.Random] = None,
        log=None,
    ):
        self.navigator = navigator
        self.pipeline = pipeline
        self.page = page
        self.deliver = deliver
        self.stats = stats
        self.config = config
        self.limits = limits or TraversalLimits()
        self.page_url = page_url or default_page_url(config.base_url)
        self.navigate_pages = navigate_pages
        self.on_page_failed = on_page_failed
        self._sleep = sleep
        self._rng = rng or random.Random()
        self.logger = log or logger
        # (category id, page number) pairs seen during this run
        self.visited: Set[Tuple[str, int]] = set()
        self._collected: List[CanonicalProductRecord] = []

    def infer_mode(self, result: ExtractionResult) -> TraversalMode:
        if result.continuations and not result.records:
            return TraversalMode.HIERARCHICAL
        if result.has_next is not None:
            return TraversalMode.FLAT
        if result.strategy == DomCardStrategy.name and self.config.selectors.product_card:
            return TraversalMode.INFINITE_SCROLL
        return TraversalMode.SINGLE_PAGE

    async def traverse(self, category: CategoryNode) -> List[CanonicalProductRecord]:
        """Scrape every page reachable from ``category``.

        Returns:
            Records delivered for this category

        Raises:
            NavigationError: If the category's first page cannot be reached
        """
        self._collected = []
        visited = await self._visit(category, 1)
        if visited is not None:
            await self._dispatch(category, *visited)
        return self._collected

    async def _pause(self, between_pages: bool = False) -> None:
        wait_times = self.config.wait_times
        base = wait_times.between_requests
        if between_pages and wait_times.between_pages is not None:
            base = wait_times.between_pages
        await self._sleep(base + self._rng.uniform(0, self.limits.jitter))

    def _context(self, category: CategoryNode, page_number: int, url: str) -> ExtractionContext:
        return ExtractionContext(
            category=category,
            page_number=page_number,
            url=url,
            base_url=self.config.base_url,
            currency=self.config.currency,
            selectors=self.config.selectors,
            headers=self.config.headers,
        )

    async def _visit(
        self, category: CategoryNode, page_number: int
    ) -> Optional[Tuple[ExtractionResult, ExtractionContext]]:
        key = (category.id, page_number)
        if key in self.visited:
            self.logger.debug("page_already_visited", category=category.id, page=page_number)
            return None
        self.visited.add(key)

        url = self.page_url(category, page_number)
        if self.navigate_pages:
            await self.navigator.goto_and_settle(url)

        context = self._context(category, page_number, url)
        result = await self.pipeline.extract(self.page, context)

        if result.all_strategies_failed and self.on_page_failed is not None:
            await self.on_page_failed(f"extraction-{category.id}-p{page_number}")
        return result, context

    async def _dispatch(
        self, category: CategoryNode, result: ExtractionResult, context: ExtractionContext
    ) -> None:
        mode = self.infer_mode(result)
        self.logger.info(
            "category_mode_inferred",
            category=category.id,
            mode=mode.value,
            strategy=result.strategy,
        )

        if mode == TraversalMode.HIERARCHICAL:
            await self._complete_page(category, context, result)
            await self._walk(result.continuations)
        elif mode == TraversalMode.FLAT:
            await self._paginate(category, result, context)
        elif mode == TraversalMode.INFINITE_SCROLL:
            await self._scroll(category, result, context)
        else:
            await self._complete_page(category, context, result)

    async def _complete_page(
        self, category: CategoryNode, context: ExtractionContext, result: ExtractionResult
    ) -> None:
        """Account for a page's failures and deliver its records."""
        for strategy_name, error in result.errors:
            self.stats.record_error(f"extraction:{strategy_name}", error, url=context.url)

        for failure in result.failures:
            self.stats.products_failed += 1
            self.stats.record_error(
                "product", failure.error, url=failure.item.product_url or context.url
            )

        if result.dropped:
            self.logger.info(
                "location_dependent_items_dropped",
                category=category.id,
                page=context.page_number,
                count=len(result.dropped),
            )

        if not result.records:
            return

        self.stats.products_scraped += len(result.records)
        self._collected.extend(result.records)
        meta = BatchMeta(
            category_id=category.id,
            category_name=category.name,
            page_number=context.page_number,
            total_on_page=len(result.records) + len(result.failures) + len(result.dropped),
        )
        await self.deliver(result.records, meta)

    async def _paginate(
        self, category: CategoryNode, result: ExtractionResult, context: ExtractionContext
    ) -> None:
        page_number = 1
        await self._complete_page(category, context, result)

        while result.records and result.has_next:
            if page_number >= self.limits.max_pages:
                self.logger.warning(
                    "page_cap_reached", category=category.id, max_pages=self.limits.max_pages
                )
                break

            await self._pause(between_pages=True)
            page_number += 1
            try:
                visited = await self._visit(category, page_number)
            except Exception as e:
                url = self.page_url(category, page_number)
                self.logger.warning(
                    "page_failed", category=category.id, page=page_number, error=str(e)[:200]
                )
                self.stats.record_error("page", e, url=url)
                break

            if visited is None:
                break
            result, context = visited
            await self._complete_page(category, context, result)

        self.logger.info("pagination_done", category=category.id, pages=page_number)

    async def _scroll(
        self, category: CategoryNode, first: ExtractionResult, context: ExtractionContext
    ) -> None:
        selector = self.config.selectors.product_card
        try:
            previous = await self.page.count(selector)
            idle = 0
            scrolls = 0
            while scrolls < self.limits.max_scrolls and idle < self.limits.max_idle_scrolls:
                await self.page.scroll_to_bottom()
                await self._sleep(self.limits.scroll_settle)
                scrolls += 1
                current = await self.page.count(selector)
                if current > previous:
                    previous, idle = current, 0
                else:
                    idle += 1
            self.logger.info(
                "infinite_scroll_done", category=category.id, scrolls=scrolls, cards=previous
            )
            result = await self.pipeline.extract(self.page, context)
        except Exception as e:
            self.logger.warning("infinite_scroll_failed", category=category.id, error=str(e)[:200])
            self.stats.record_error("scroll", e, url=context.url)
            result = first

        if not result.records and first.records:
            result = first
        await self._complete_page(category, context, result)

    async def _walk(self, continuations: Sequence[CategoryNode]) -> None:
        for child in continuations:
            if (child.id, 1) in self.visited:
                continue
            await self._pause()
            try:
                visited = await self._visit(child, 1)
                if visited is not None:
                    await self._dispatch(child, *visited)
            except Exception as e:
                url = child.absolute_url(self.config.base_url)
                self.logger.warning(
                    "continuation_failed", category=child.id, error=str(e)[:200]
                )
                self.stats.record_error("continuation", e, url=url)

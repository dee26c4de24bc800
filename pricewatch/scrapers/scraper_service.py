"""Scraper orchestration service.

Connects the factory with a caller's sink and owns the run lifecycle:
create -> initialize -> scrape_all -> cleanup, whatever happens in between.
"""

from typing import Any, Dict, Iterable, Mapping, Optional, Union

import structlog

from pricewatch.scrapers.base import BaseScraper
from pricewatch.scrapers.engine.sink import ResultSink
from pricewatch.scrapers.factory import ScraperFactory, SiteRecord, generate_run_id
from pricewatch.scrapers.models import ScrapeResult
from pricewatch.scrapers.site_config import ScraperConfigOverride

logger = structlog.get_logger(__name__)


class ScraperService:
    """Runs one scraper per call and reports the outcome as a ScrapeResult.

    Only configuration problems (ConfigError, UnregisteredAdapterError) and
    SessionInitError escape ``run``; every other failure ends up in the
    result's error list.
    """

    def __init__(self, factory: ScraperFactory):
        """Initialize scraper service.

        Args:
            factory: Factory holding the adapter registry
        """
        self.factory = factory
        self._active: Dict[str, BaseScraper] = {}
        self.logger = logger.bind(service="scraper_service")

    async def run(
        self,
        base_record: SiteRecord,
        override: Union[ScraperConfigOverride, Mapping[str, Any], None] = None,
        sink: Optional[ResultSink] = None,
        category_ids: Optional[Iterable[str]] = None,
        run_id: Optional[str] = None,
    ) -> ScrapeResult:
        """Scrape every configured category of one site.

        Args:
            base_record: Site id, display name and base URL
            override: Datastore configuration override
            sink: Receives a batch per page
            category_ids: Restrict the run to these categories
            run_id: Correlation id (generated when omitted)

        Returns:
            Summary of the run

        Raises:
            UnregisteredAdapterError: If the site id is unknown
            ConfigError: If the effective configuration is invalid
            SessionInitError: If the browser session cannot be opened
        """
        run_id = run_id or generate_run_id()
        log = self.logger.bind(run_id=run_id, site_id=base_record.site_id)

        scraper = self.factory.create_from_override(
            base_record, override, category_ids=category_ids, sink=sink
        )
        scraper.set_run_id(run_id)
        self._active[run_id] = scraper
        log.info("scrape_run_started", categories=len(scraper.config.categories))

        records = []
        try:
            await scraper.initialize()
            records = await scraper.scrape_all()
        finally:
            self._active.pop(run_id, None)
            await scraper.cleanup()

        result = scraper.build_scrape_result(records)
        log.info(
            "scrape_run_finished",
            products_scraped=result.products_scraped,
            products_failed=result.products_failed,
            error_count=len(result.errors),
            duration=round(result.duration, 2),
            cancelled=result.cancelled,
        )
        return result

    def cancel(self, run_id: str) -> bool:
        """Ask a running scrape to stop before its next category.

        Returns:
            False if no run with that id is active
        """
        scraper = self._active.get(run_id)
        if scraper is None:
            return False
        scraper.cancel()
        self.logger.info("scrape_run_cancel_requested", run_id=run_id)
        return True

    @property
    def active_runs(self):
        return sorted(self._active)

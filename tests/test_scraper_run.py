"""End-to-end tests of a scraper run against in-memory pages."""

import json
from decimal import Decimal

import pytest
from structlog.testing import capture_logs

from pricewatch.core.exceptions import PriceWatchError, SessionInitError
from pricewatch.scrapers.engine.sink import CallbackSink, CollectingSink
from pricewatch.scrapers.factory import ScraperFactory, ScraperRegistry, SiteRecord
from pricewatch.scrapers.scraper_service import ScraperService
from pricewatch.scrapers.site_config import ScraperConfigOverride
from pricewatch.scrapers.utils.proxy import ProxyTable

from .fakes import BASE_URL, ExampleScraper, FakePage, FakeSession, product_cards


DAIRY_URL = f"{BASE_URL}/c/dairy"
BAKERY_URL = f"{BASE_URL}/c/bakery"


def shop_page(**kwargs) -> FakePage:
    """Dairy loads fine, bakery never does."""
    kwargs.setdefault("fail", lambda url: ConnectionError("net::ERR_TIMED_OUT") if url == BAKERY_URL else None)
    return FakePage(
        routes={DAIRY_URL: product_cards(("Vollmilch 1 l", "1,19 €"), ("Butter 250 g", "2,29 €"))},
        **kwargs,
    )


class DetailScraper(ExampleScraper):
    supports_product_details = True


# ============================================================================
# FIXTURES
# ============================================================================

@pytest.fixture
def make_scraper(site_config, sleep, rng):
    def make(page=None, sink=None, session=None, scraper_class=ExampleScraper, config=None):
        session = session or FakeSession(page or shop_page())
        scraper = scraper_class(
            config or site_config,
            sink=sink,
            session_factory=lambda config: session,
            sleep=sleep,
            rng=rng,
        )
        return scraper, session

    return make


# ============================================================================
# RUN LIFECYCLE
# ============================================================================

class TestScrapeRun:
    """Test a full initialize -> scrape_all -> cleanup cycle."""

    async def test_failed_category_is_contained(self, make_scraper):
        sink = CollectingSink()
        scraper, session = make_scraper(sink=sink)

        await scraper.initialize()
        records = await scraper.scrape_all()
        await scraper.cleanup()
        result = scraper.build_scrape_result(records)

        assert result.success
        assert result.products_scraped == 2
        assert [r.name for r in result.records] == ["Vollmilch 1 l", "Butter 250 g"]
        assert result.records[0].price == Decimal("1.19")
        assert [(e.context, e.error_type, e.url) for e in result.errors] == [
            ("category", "NavigationError", BAKERY_URL)
        ]
        assert len(sink.batches) == 1
        assert sink.batches[0][0].category_id == "dairy"
        assert session.closed == 1

    async def test_failed_category_retried_per_policy(self, make_scraper):
        page = shop_page()
        scraper, _ = make_scraper(page=page)

        await scraper.initialize()
        await scraper.scrape_all()

        # max_retries=2 -> three attempts
        assert page.visits.count(BAKERY_URL) == 3

    async def test_warm_up_failure_is_recorded(self, make_scraper):
        page = shop_page(fail=lambda url: ConnectionError("reset") if url == BASE_URL else None)
        scraper, _ = make_scraper(page=page)

        await scraper.initialize()
        records = await scraper.scrape_all()

        assert scraper.stats.errors[0].context == "session"
        assert len(records) == 2

    async def test_session_failure_aborts_and_cleans_up(self, make_scraper):
        session = FakeSession(open_error=RuntimeError("browser crashed"))
        scraper, _ = make_scraper(session=session)

        with pytest.raises(SessionInitError, match="browser crashed"):
            await scraper.initialize()

        assert session.closed == 1
        await scraper.cleanup()
        assert session.closed == 1

    async def test_session_constructor_failure_is_wrapped(self, site_config, sleep, rng):
        def broken_factory(config):
            raise OSError("no browser binary")

        scraper = ExampleScraper(site_config, session_factory=broken_factory, sleep=sleep, rng=rng)

        with pytest.raises(SessionInitError, match="no browser binary"):
            await scraper.initialize()
        assert scraper.session is None

    async def test_reinitialize_closes_previous_session(self, site_config, sleep, rng):
        sessions = []

        def factory(config):
            sessions.append(FakeSession(shop_page()))
            return sessions[-1]

        scraper = ExampleScraper(site_config, session_factory=factory, sleep=sleep, rng=rng)

        await scraper.initialize()
        await scraper.initialize()

        assert [s.closed for s in sessions] == [1, 0]
        assert scraper.session is sessions[1]
        await scraper.cleanup()
        assert sessions[1].closed == 1

    async def test_scraping_requires_initialize(self, make_scraper):
        scraper, _ = make_scraper()

        with pytest.raises(PriceWatchError):
            await scraper.scrape_all()

    async def test_cancel_between_categories(self, make_scraper):
        holder = {}

        async def save_then_cancel(records, meta):
            holder["scraper"].cancel()
            return len(records)

        page = shop_page()
        scraper, _ = make_scraper(page=page, sink=CallbackSink(save_then_cancel))
        holder["scraper"] = scraper

        await scraper.initialize()
        records = await scraper.scrape_all()
        result = scraper.build_scrape_result(records)

        assert result.cancelled
        assert len(records) == 2
        assert BAKERY_URL not in page.visits

    async def test_waits_between_categories(self, make_scraper, sleep):
        scraper, _ = make_scraper()

        await scraper.initialize()
        sleep.delays.clear()
        await scraper.scrape_all()

        between = [d for d in sleep.delays if 1.0 <= d <= 1.5]
        assert between


# ============================================================================
# RESULT DELIVERY
# ============================================================================

class TestDelivery:
    """Test sink failures."""

    async def test_rejected_batch_is_recorded(self, make_scraper):
        async def reject(records, meta):
            raise ConnectionError("database unavailable")

        scraper, _ = make_scraper(sink=CallbackSink(reject))

        await scraper.initialize()
        records = await scraper.scrape_all()

        contexts = [(e.context, e.error_type) for e in scraper.stats.errors]
        assert ("persistence", "PersistenceError") in contexts
        assert len(records) == 2

    async def test_partial_save_is_logged(self, make_scraper):
        async def save_one(records, meta):
            return 1

        with capture_logs() as logs:
            scraper, _ = make_scraper(sink=CallbackSink(save_one))
            await scraper.initialize()
            await scraper.scrape_all()

        partial = [entry for entry in logs if entry["event"] == "batch_partially_saved"]
        assert partial[0]["saved"] == 1
        assert partial[0]["total"] == 2
        assert [e.context for e in scraper.stats.errors] == ["category"]


# ============================================================================
# PRODUCT DETAILS AND SCREENSHOTS
# ============================================================================

class TestProductDetails:
    async def test_unsupported_returns_none(self, make_scraper):
        scraper, _ = make_scraper()
        await scraper.initialize()

        assert await scraper.scrape_product_details(f"{BASE_URL}/p/1") is None

    async def test_reads_detail_page(self, make_scraper):
        url = f"{BASE_URL}/p/skyr"
        document = {
            "@type": "Product",
            "name": "Skyr Natur 450 g",
            "offers": {"@type": "Offer", "price": "1.79", "priceCurrency": "EUR"},
        }
        page = FakePage(routes={url: f'<script type="application/ld+json">{json.dumps(document)}</script>'})
        scraper, _ = make_scraper(page=page, scraper_class=DetailScraper)
        await scraper.initialize()

        record = await scraper.scrape_product_details(url)

        assert record.name == "Skyr Natur 450 g"
        assert record.product_url == url
        assert (record.unit, record.unit_quantity) == ("g", 450.0)


class TestScreenshots:
    async def test_screenshot_path(self, make_scraper, tmp_path):
        scraper, session = make_scraper()
        scraper.screenshot_dir = tmp_path
        await scraper.initialize()

        path = await scraper.take_screenshot("extraction-dairy-p1")

        assert path.startswith(str(tmp_path / "example-extraction-dairy-p1-"))
        assert session.page.screenshots == [path]

    async def test_no_page_no_screenshot(self, make_scraper):
        scraper, _ = make_scraper()

        assert await scraper.take_screenshot("x") is None


# ============================================================================
# SERVICE
# ============================================================================

class TestScraperService:
    """Test the run lifecycle owned by ScraperService."""

    @pytest.fixture
    def session(self):
        return FakeSession(shop_page())

    @pytest.fixture
    def service(self, session, sleep, rng):
        registry = ScraperRegistry()
        registry.register(
            "example",
            ExampleScraper,
            ScraperConfigOverride.parse(
                {
                    "categories": [
                        {"id": "dairy", "name": "Dairy", "url": "/c/dairy"},
                        {"id": "bakery", "name": "Bakery", "url": "/c/bakery"},
                    ],
                    "selectors": {
                        "productCard": ".card",
                        "name": ".name",
                        "price": ".price",
                        "link": "a.link",
                        "nextPage": "a.next",
                    },
                    "maxRetries": 1,
                }
            ),
        )
        factory = ScraperFactory(
            registry.freeze(),
            proxy_table=ProxyTable(),
            session_factory=lambda config: session,
            sleep=sleep,
            rng=rng,
        )
        return ScraperService(factory)

    async def test_run(self, service, session):
        record = SiteRecord(site_id="example", name="Example Market", base_url=BASE_URL)

        result = await service.run(record, run_id="run-test01")

        assert result.run_id == "run-test01"
        assert result.supermarket == "Example Market"
        assert result.products_scraped == 2
        assert [e.context for e in result.errors] == ["category"]
        assert session.closed == 1
        assert service.active_runs == []

    async def test_run_subset_of_categories(self, service):
        record = SiteRecord(site_id="example", name="Example Market", base_url=BASE_URL)

        result = await service.run(record, category_ids=["dairy"])

        assert result.errors == []
        assert result.to_dict()["success"] is True

    async def test_session_failure_propagates(self, service, session):
        session.open_error = RuntimeError("no browser")
        record = SiteRecord(site_id="example", name="Example Market", base_url=BASE_URL)

        with pytest.raises(SessionInitError):
            await service.run(record)
        assert session.closed == 1

    def test_cancel_unknown_run(self, service):
        assert service.cancel("run-000000") is False

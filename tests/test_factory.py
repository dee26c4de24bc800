"""Tests for configuration layering, the adapter registry and the factory."""

import pytest

from pricewatch.core.exceptions import ConfigError, UnregisteredAdapterError
from pricewatch.scrapers.factory import (
    ScraperFactory,
    ScraperRegistry,
    SiteRecord,
    generate_run_id,
)
from pricewatch.scrapers.site_config import (
    ScraperConfigBuilder,
    ScraperConfigOverride,
    Selectors,
    WaitTimes,
)
from pricewatch.scrapers.utils.proxy import ProxyTable

from .fakes import BASE_URL, ExampleScraper, FakeSession, RecordingSleep


DEFAULTS = ScraperConfigOverride.parse(
    {
        "name": "Example",
        "baseUrl": BASE_URL,
        "categories": [
            {"id": "dairy", "name": "Dairy", "url": "/c/dairy"},
            {"id": "bakery", "name": "Bakery", "url": "/c/bakery"},
            {"id": "drinks", "name": "Drinks", "url": "/c/drinks"},
        ],
        "selectors": {"productCard": ".card", "name": ".name", "price": ".price"},
        "waitTimes": {"pageLoad": 4.0, "dynamicContent": 3.0},
        "maxRetries": 5,
        "headers": {"Accept-Language": "de-DE"},
    }
)

RECORD = SiteRecord(site_id="example", name="Example Market", base_url=BASE_URL)


# ============================================================================
# FIXTURES
# ============================================================================

@pytest.fixture
def registry():
    registry = ScraperRegistry()
    registry.register("example", ExampleScraper, DEFAULTS)
    return registry.freeze()


@pytest.fixture
def factory(registry):
    return ScraperFactory(
        registry,
        proxy_table=ProxyTable({"market": "http://proxy.local:8080"}),
        session_factory=lambda config: FakeSession(),
        sleep=RecordingSleep(),
    )


# ============================================================================
# CONFIG BUILDER
# ============================================================================

class TestScraperConfigBuilder:
    """Test override > adapter default > fallback precedence."""

    def test_defaults_only(self):
        config = ScraperConfigBuilder(DEFAULTS, fallback_max_retries=3).build()

        assert config.name == "Example"
        assert config.max_retries == 5
        assert [c.id for c in config.categories] == ["dairy", "bakery", "drinks"]
        assert config.selectors.product_card == ".card"
        assert config.wait_times == WaitTimes(page_load=4.0, dynamic_content=3.0)

    def test_override_wins_field_by_field(self):
        override = ScraperConfigOverride.parse(
            {
                "maxRetries": 0,
                "selectors": {"price": ".price-now", "nextPage": "a[rel=next]"},
                "waitTimes": {"betweenRequests": 2.5},
                "categoryUrls": ["/c/fruit", "https://other.example/c/veg?sort=asc"],
            }
        )
        config = ScraperConfigBuilder(DEFAULTS).build(override, name="Example Berlin")

        assert config.name == "Example Berlin"
        assert config.max_retries == 0
        assert config.selectors == Selectors(
            product_card=".card", name=".name", price=".price-now", next_page="a[rel=next]"
        )
        assert config.wait_times.page_load == 4.0
        assert config.wait_times.between_requests == 2.5
        assert [c.id for c in config.categories] == ["fruit", "veg"]
        assert config.headers == {"Accept-Language": "de-DE"}

    def test_fallbacks(self):
        config = ScraperConfigBuilder(fallback_max_retries=2, navigation_timeout=12.0).build(
            name="Bare", base_url=BASE_URL
        )

        assert config.max_retries == 2
        assert config.navigation_timeout == 12.0
        assert config.wait_times == WaitTimes()
        assert config.currency == "EUR"
        assert config.categories == ()

    def test_missing_base_url(self):
        with pytest.raises(ConfigError, match="base_url"):
            ScraperConfigBuilder().build(name="Nowhere")

    def test_invalid_override(self):
        with pytest.raises(ConfigError):
            ScraperConfigOverride.parse({"maxRetries": -1})

    def test_unknown_selector_ignored(self):
        assert Selectors().merged({"bogus": ".x", "name": "h2"}) == Selectors(name="h2")


# ============================================================================
# REGISTRY
# ============================================================================

class TestScraperRegistry:
    """Test adapter registration."""

    def test_lookup(self, registry):
        assert registry.get("example").scraper_class is ExampleScraper
        assert "example" in registry
        assert len(registry) == 1

    def test_unregistered_id_lists_known_ids(self):
        registry = ScraperRegistry()
        registry.register("rewe", ExampleScraper)
        registry.register("kaufland", ExampleScraper)

        with pytest.raises(UnregisteredAdapterError) as exc_info:
            registry.get("lidl")

        assert str(exc_info.value) == "Scraper not found for: lidl. Available scrapers: kaufland, rewe"

    def test_frozen_registry_rejects_registration(self, registry):
        with pytest.raises(ConfigError, match="frozen"):
            registry.register("other", ExampleScraper)

    def test_duplicate_id(self):
        registry = ScraperRegistry()
        registry.register("example", ExampleScraper)

        with pytest.raises(ConfigError, match="already registered"):
            registry.register("example", ExampleScraper)

    def test_class_must_be_a_scraper(self):
        with pytest.raises(ConfigError):
            ScraperRegistry().register("example", dict)


# ============================================================================
# FACTORY
# ============================================================================

class TestScraperFactory:
    """Test scraper creation."""

    def test_create_from_override_mapping(self, factory):
        scraper = factory.create_from_override(RECORD, {"maxRetries": 1})

        assert isinstance(scraper, ExampleScraper)
        assert scraper.config.site_id == "example"
        assert scraper.config.name == "Example Market"
        assert scraper.config.max_retries == 1

    def test_proxy_matched_by_name(self, factory):
        scraper = factory.create_from_override(RECORD)

        assert scraper.config.proxy_url == "http://proxy.local:8080"

    def test_explicit_proxy_kept(self, factory):
        scraper = factory.create_from_override(RECORD, {"proxyUrl": "socks5://own:1080"})

        assert scraper.config.proxy_url == "socks5://own:1080"

    def test_category_filter(self, factory):
        scraper = factory.create_from_override(RECORD, category_ids=["drinks", "dairy", "missing"])

        assert [c.id for c in scraper.config.categories] == ["dairy", "drinks"]

    def test_options_passed_to_scraper(self, factory):
        scraper = factory.create_from_override(RECORD)

        assert isinstance(scraper._sleep, RecordingSleep)

    def test_unknown_site(self, factory):
        with pytest.raises(UnregisteredAdapterError):
            factory.create_from_override(SiteRecord(site_id="lidl", name="Lidl", base_url=BASE_URL))


def test_run_ids_are_distinct():
    run_id = generate_run_id()

    assert run_id.startswith("run-")
    assert run_id != generate_run_id()

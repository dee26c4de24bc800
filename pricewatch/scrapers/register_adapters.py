"""Register all scraper adapters with a registry.

Call ``build_default_registry`` once during startup and pass the frozen
registry to every ScraperFactory.
"""

import structlog

from pricewatch.scrapers.adapters import (
    AuchanUaScraper,
    KauflandScraper,
    MercadonaScraper,
    ReweScraper,
    WoltBelaFrutaScraper,
    WoltEcoMarketKikaScraper,
)
from pricewatch.scrapers.adapters import auchan_ua, kaufland, mercadona, rewe, wolt
from pricewatch.scrapers.factory import ScraperRegistry

logger = structlog.get_logger(__name__)


def register_all_adapters(registry: ScraperRegistry) -> None:
    """Register every bundled adapter with ``registry``.

    Raises:
        ConfigError: If an id is already taken or the registry is frozen
    """
    adapters = [
        # Germany
        (KauflandScraper, kaufland.DEFAULTS),
        (ReweScraper, rewe.DEFAULTS),
        # Albania
        (WoltBelaFrutaScraper, wolt.BELA_FRUTA_DEFAULTS),
        (WoltEcoMarketKikaScraper, wolt.ECO_MARKET_KIKA_DEFAULTS),
        # Spain
        (MercadonaScraper, mercadona.DEFAULTS),
        # Ukraine
        (AuchanUaScraper, auchan_ua.DEFAULTS),
    ]

    for scraper_class, defaults in adapters:
        registry.register(scraper_class.site_id, scraper_class, defaults)

    logger.info("adapters_registered", count=len(adapters), site_ids=registry.ids())


def build_default_registry() -> ScraperRegistry:
    """A frozen registry holding every bundled adapter."""
    registry = ScraperRegistry()
    register_all_adapters(registry)
    return registry.freeze()

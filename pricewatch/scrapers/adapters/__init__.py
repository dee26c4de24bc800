"""Site-specific scraper adapters.

Each adapter module defines a ``DEFAULTS`` override (categories, selectors,
waits) and a BaseScraper subclass with a unique ``site_id``.
"""

# Browser-rendered sites
from .kaufland import KauflandScraper
from .rewe import ReweScraper
from .wolt import WoltBelaFrutaScraper, WoltEcoMarketKikaScraper, WoltVenueScraper

# API replay sites
from .auchan_ua import AuchanUaScraper
from .mercadona import MercadonaScraper

__all__ = [
    # Browser-rendered sites
    "KauflandScraper",
    "ReweScraper",
    "WoltVenueScraper",
    "WoltBelaFrutaScraper",
    "WoltEcoMarketKikaScraper",
    # API replay sites
    "AuchanUaScraper",
    "MercadonaScraper",
]

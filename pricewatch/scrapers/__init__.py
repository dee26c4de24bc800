"""Scraper system for collecting grocery catalogs from retailer sites.

This package provides:
- BaseScraper, the run driver every site adapter inherits from
- The engine: challenge solving, navigation, extraction and traversal
- Utility modules for price normalization, retries and proxies
- Registry and factory for creating configured scraper instances
"""

from .base import BaseScraper
from .factory import ScraperFactory, ScraperRegistry, SiteRecord, generate_run_id
from .models import (
    BatchMeta,
    CanonicalProductRecord,
    CategoryNode,
    RawProduct,
    ScrapeError,
    ScrapeResult,
    ScrapeStats,
)
from .scraper_service import ScraperService
from .site_config import ScraperConfig, ScraperConfigBuilder, ScraperConfigOverride

__all__ = [
    # Base classes
    "BaseScraper",
    # Data structures
    "CanonicalProductRecord",
    "RawProduct",
    "CategoryNode",
    "BatchMeta",
    "ScrapeError",
    "ScrapeStats",
    "ScrapeResult",
    # Configuration
    "ScraperConfig",
    "ScraperConfigBuilder",
    "ScraperConfigOverride",
    # Factory
    "ScraperRegistry",
    "ScraperFactory",
    "SiteRecord",
    "generate_run_id",
    "ScraperService",
]

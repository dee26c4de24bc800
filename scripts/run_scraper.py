"""Manual scraper runner for testing and debugging adapters.

Runs one site adapter against the live site and prints what it collected.

Usage:
    python scripts/run_scraper.py --site rewe
    python scripts/run_scraper.py --site kaufland --category dairy-milk
    python scripts/run_scraper.py --site mercadona --limit 5 --errors
"""

import argparse
import asyncio
from decimal import Decimal
from typing import List, Optional

from pricewatch.config import settings
from pricewatch.core.exceptions import PriceWatchError
from pricewatch.core.logging import configure_logging
from pricewatch.scrapers.engine.sink import CollectingSink
from pricewatch.scrapers.factory import ScraperFactory, SiteRecord
from pricewatch.scrapers.register_adapters import build_default_registry
from pricewatch.scrapers.scraper_service import ScraperService


async def run_scraper(
    site_id: str,
    categories: Optional[List[str]] = None,
    limit: int = 10,
    show_errors: bool = False,
) -> int:
    """Run a scraper adapter and display the results.

    Args:
        site_id: Registered site id (e.g., "rewe", "kaufland")
        categories: Optional category ids to restrict the run to
        limit: Maximum number of records to display
        show_errors: Print every contained error

    Returns:
        Process exit code
    """
    registry = build_default_registry()
    if site_id not in registry:
        print(f"\nUnknown site '{site_id}'. Available sites:")
        for known in registry.ids():
            print(f"   - {known}")
        return 2

    defaults = registry.get(site_id).defaults
    record = SiteRecord(
        site_id=site_id,
        name=defaults.name or site_id,
        base_url=defaults.base_url or "",
        currency=defaults.currency,
    )

    print(f"\n{'=' * 70}")
    print(f"  Running {record.name} scraper ({site_id})")
    if categories:
        print(f"  Categories: {', '.join(categories)}")
    print(f"{'=' * 70}\n")

    sink = CollectingSink()
    service = ScraperService(ScraperFactory(registry))
    try:
        result = await service.run(record, sink=sink, category_ids=categories)
    except PriceWatchError as e:
        print(f"\nRun failed: {type(e).__name__}: {e}\n")
        return 1

    for i, product in enumerate(result.records[:limit], 1):
        print(f"[{i}] {product.name}")
        print(f"    Price: {_format_price(product.price, product.currency)}")
        if product.original_price is not None:
            print(f"    Original: {_format_price(product.original_price, product.currency)}")
        if product.unit:
            print(f"    Unit: {product.unit_quantity} {product.unit}")
        if product.price_per_unit is not None:
            print(f"    Per unit: {_format_price(product.price_per_unit, product.currency)}")
        print(f"    Category: {product.category_name}")
        print(f"    URL: {product.product_url[:80]}")
        print()

    print(f"{'=' * 70}")
    print("  Summary")
    print(f"{'=' * 70}")
    print(f"  Run id: {result.run_id}")
    print(f"  Products scraped: {result.products_scraped}")
    print(f"  Products failed: {result.products_failed}")
    print(f"  Batches delivered: {len(sink.batches)}")
    print(f"  Errors: {len(result.errors)}")
    print(f"  Duration: {result.duration:.1f}s")
    if show_errors:
        for error in result.errors:
            print(f"    - [{error.context}] {error.error_type}: {error.message[:120]}")
    print(f"{'=' * 70}\n")
    return 0 if result.success else 1


def _format_price(price: Decimal, currency: str) -> str:
    """Format price with currency symbol."""
    if currency == "EUR":
        return f"{price:,.2f} €"
    elif currency == "UAH":
        return f"{price:,.2f} ₴"
    else:
        return f"{price:,.2f} {currency}"


def main():
    """Parse arguments and run the scraper."""
    parser = argparse.ArgumentParser(
        description="Run a site scraper adapter for testing",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python scripts/run_scraper.py --site rewe
  python scripts/run_scraper.py --site kaufland --category dairy-milk
  python scripts/run_scraper.py --site mercadona --limit 5
        """,
    )

    parser.add_argument(
        "--site",
        required=True,
        help="Registered site id (e.g., 'rewe', 'kaufland')",
    )

    parser.add_argument(
        "--category",
        action="append",
        help="Category id to scrape; repeat for several (default: all)",
    )

    parser.add_argument(
        "--limit",
        type=int,
        default=10,
        help="Maximum number of products to display (default: 10)",
    )

    parser.add_argument(
        "--errors",
        action="store_true",
        help="Print every contained error",
    )

    args = parser.parse_args()

    configure_logging(settings.LOG_LEVEL, settings.LOG_JSON)
    raise SystemExit(asyncio.run(run_scraper(args.site, args.category, args.limit, args.errors)))


if __name__ == "__main__":
    main()

"""Mercadona Spain scraper adapter.

Replays the tienda.mercadona.es REST API with the browser session's
cookies. The browser is only needed to enter a postal code once; category
pages themselves are never rendered.
"""

from typing import Any, Dict, Iterator, List, Optional

from pricewatch.scrapers.base import BaseScraper
from pricewatch.scrapers.engine.extraction import (
    ApiReplayStrategy,
    ApiRequest,
    ExtractionContext,
    ExtractionStrategy,
    StrategyResult,
)
from pricewatch.scrapers.engine.page import PageController
from pricewatch.scrapers.models import CategoryNode, RawProduct
from pricewatch.scrapers.site_config import ScraperConfigOverride


API_BASE = "https://tienda.mercadona.es/api"
POSTAL_CODE = "28001"  # Madrid

PRIVATE_LABELS = ("Hacendado", "Bosque Verde", "Deliplus", "Compy")

DEFAULTS = ScraperConfigOverride.parse(
    {
        "name": "Mercadona",
        "baseUrl": "https://tienda.mercadona.es",
        "currency": "EUR",
        "categories": [
            {"id": "27", "name": "Fruta", "url": "/categories/27"},
            {"id": "29", "name": "Verdura", "url": "/categories/29"},
            {"id": "38", "name": "Huevos", "url": "/categories/38"},
            {"id": "72", "name": "Leche y bebidas vegetales", "url": "/categories/72"},
            {"id": "112", "name": "Aceite, vinagre y sal", "url": "/categories/112"},
            {"id": "118", "name": "Agua y refrescos", "url": "/categories/118"},
        ],
        "waitTimes": {
            "pageLoad": 5.0,
            "dynamicContent": 2.0,
            "betweenRequests": 1.5,
        },
        "maxRetries": 3,
        "concurrentPages": 2,
        "locale": "es-ES",
        "timezoneId": "Europe/Madrid",
    }
)


def iter_products(category: Dict[str, Any]) -> Iterator[Dict[str, Any]]:
    """Products of a category and all of its nested subcategories."""
    yield from category.get("products") or []
    for child in category.get("categories") or []:
        yield from iter_products(child)


def brand_from_name(display_name: str) -> Optional[str]:
    for brand in PRIVATE_LABELS:
        if brand in display_name:
            return brand
    return None


def raw_from_mercadona(product: Dict[str, Any]) -> RawProduct:
    prices = product.get("price_instructions") or {}
    previous = prices.get("previous_unit_price")
    name = product.get("display_name") or ""
    return RawProduct(
        name=name,
        price=prices.get("unit_price"),
        original_price=previous.strip() if isinstance(previous, str) else previous,
        product_url=product.get("share_url"),
        image_url=product.get("thumbnail"),
        external_id=product.get("id"),
        brand=brand_from_name(name),
        unit=prices.get("size_format"),
        unit_quantity=prices.get("unit_size"),
    )


class MercadonaCategoryApi(ApiReplayStrategy):
    """``GET /api/categories/{id}/``; nested subcategories are flattened."""

    def build_request(self, context: ExtractionContext) -> Optional[ApiRequest]:
        return ApiRequest(url=f"{API_BASE}/categories/{context.category.id}/")

    def parse_response(self, payload: Any, context: ExtractionContext) -> StrategyResult:
        return StrategyResult(
            items=[raw_from_mercadona(p) for p in iter_products(payload or {})],
        )


class MercadonaScraper(BaseScraper):
    site_id = "mercadona"
    navigate_pages = False

    def build_strategies(self) -> List[ExtractionStrategy]:
        return [MercadonaCategoryApi(timeout=self.config.navigation_timeout)]

    def page_url(self, category: CategoryNode, page_number: int) -> str:
        return f"{API_BASE}/categories/{category.id}/"

    async def prepare_session(self, page: PageController) -> None:
        """Set the delivery zone so the API serves prices."""
        if not await page.fill('input[name="postalCode"]', POSTAL_CODE):
            self.logger.debug("postal_code_input_not_found")
            return
        await self.click_first(page, ('button[type="submit"]',))
        await self._sleep(self.config.wait_times.dynamic_content)
        self.logger.info("postal_code_entered", postal_code=POSTAL_CODE)

"""Wolt venue scraper adapters (Albania).

Wolt renders venue category pages server-side and embeds the dehydrated
React Query state as a URL-encoded script. A leaf category carries its
items directly. A parent category only ships its first subcategory, so its
query key lists the subcategory slugs, which are visited one by one.

Item prices are integers in minor currency units.
"""

from decimal import Decimal
from typing import Any, Dict, List, Optional

from pricewatch.scrapers.base import BaseScraper
from pricewatch.scrapers.engine.extraction import (
    EmbeddedPayloads,
    EmbeddedStateStrategy,
    ExtractionContext,
    ExtractionStrategy,
    StrategyResult,
)
from pricewatch.scrapers.engine.page import PageController
from pricewatch.scrapers.models import CategoryNode, RawProduct
from pricewatch.scrapers.site_config import ScraperConfigOverride


# queryKey ends with: null, null, language, user marker
_TRAILING_KEY_PARTS = 4

WOLT_UNITS = {
    "kilogram": "kg",
    "gram": "g",
    "liter": "l",
    "milliliter": "ml",
    "piece": "pieces",
    "pc": "pieces",
    "pcs": "pieces",
}

_BASE = {
    "currency": "ALL",
    "selectors": {
        "productCard": 'li[role="listitem"]',
        "name": "h3",
        "price": '[data-test-id="product-price"]',
    },
    "waitTimes": {
        "pageLoad": 5.0,
        "dynamicContent": 3.0,
        "betweenRequests": 2.0,
    },
    "maxRetries": 3,
    "concurrentPages": 1,
    "locale": "en-US",
    "timezoneId": "Europe/Tirane",
}

BELA_FRUTA_DEFAULTS = ScraperConfigOverride.parse(
    {
        **_BASE,
        "name": "Wolt Bela Fruta",
        "baseUrl": "https://wolt.com/en/alb/tirana/venue/bela-fruta",
        "categories": [
            {"id": "ekskluzive-1", "name": "EKSKLUZIVE", "url": "/items/ekskluzive-1"},
            {"id": "ekzotike-2", "name": "EKZOTIKE", "url": "/items/ekzotike-2"},
            {"id": "fruta-3", "name": "FRUTA", "url": "/items/fruta-3"},
            {"id": "fruta-te-thata-5", "name": "FRUTA TE THATA", "url": "/items/fruta-te-thata-5"},
            {"id": "bio-fshati-6", "name": "BIO FSHATI", "url": "/items/bio-fshati-6"},
            {"id": "perime-7", "name": "PERIME", "url": "/items/perime-7"},
            {"id": "produkte-8", "name": "PRODUKTE", "url": "/items/produkte-8"},
            {"id": "pije-9", "name": "PIJE", "url": "/items/pije-9"},
            {"id": "snacks-10", "name": "SNACKS", "url": "/items/snacks-10"},
            {"id": "fruta-te-prera-13", "name": "FRUTA TE PRERA", "url": "/items/fruta-te-prera-13"},
        ],
    }
)

ECO_MARKET_KIKA_DEFAULTS = ScraperConfigOverride.parse(
    {
        **_BASE,
        "name": "Wolt Eco Market Kika",
        "baseUrl": "https://wolt.com/en/alb/tirana/venue/eco-market-kika",
        "categories": [
            {"id": "ushqimore-1", "name": "Ushqimore", "url": "/items/ushqimore-1"},
            {"id": "bulmet-veze-13", "name": "Bulmet & Vezë", "url": "/items/bulmet-veze-13"},
            {"id": "kos-26", "name": "Kos", "url": "/items/kos-26"},
            {"id": "konserva-36", "name": "Konserva", "url": "/items/konserva-36"},
            {"id": "buke-dhe-brumera-40", "name": "Bukë dhe Brumëra", "url": "/items/buke-dhe-brumera-40"},
            {"id": "mengjesi-44", "name": "Mëngjesi", "url": "/items/mengjesi-44"},
            {"id": "banaku-i-fresket-49", "name": "Banaku i Freskët", "url": "/items/banaku-i-fresket-49"},
            {"id": "snacks-embelsira-56", "name": "Snacks & Ëmbëlsira", "url": "/items/snacks-embelsira-56"},
            {"id": "pije-69", "name": "Pije", "url": "/items/pije-69"},
            {"id": "uje-74", "name": "Ujë", "url": "/items/uje-74"},
            {"id": "kafe-caj-78", "name": "Kafe & Caj", "url": "/items/kafe-caj-78"},
            {"id": "te-ngrira-92", "name": "Te ngrira", "url": "/items/te-ngrira-92"},
            {"id": "femijet-99", "name": "Fëmijët", "url": "/items/femijet-99"},
            {"id": "pastrues-detergjente-103", "name": "Pastrues & Detergjentë", "url": "/items/pastrues-detergjente-103"},
            {"id": "kujdes-personal-115", "name": "Kujdes Personal", "url": "/items/kujdes-personal-115"},
            {"id": "kafshe-shtepiake-124", "name": "Kafshë Shtëpiake", "url": "/items/kafshe-shtepiake-124"},
        ],
    }
)


def find_category_query(state: Dict[str, Any], venue_slug: str) -> Optional[Dict[str, Any]]:
    for query in state.get("queries") or []:
        key = query.get("queryKey")
        if (
            isinstance(key, list)
            and len(key) > 2
            and key[1] == "category"
            and key[2] == venue_slug
        ):
            return query
    return None


def from_minor_units(value: Any) -> Any:
    """Major units for integer minor-unit amounts; anything else is passed on
    for the price parser to accept or reject."""
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float, Decimal)) or (isinstance(value, str) and value.isdigit()):
        return Decimal(str(value)) / 100
    return value


def raw_from_wolt_item(item: Dict[str, Any]) -> RawProduct:
    original = item.get("original_price")
    unit_price = item.get("unit_price") or {}
    unit = unit_price.get("unit")
    if not isinstance(unit, str):
        unit = None
    images = [image for image in item.get("images") or [] if isinstance(image, dict)]
    return RawProduct(
        name=str(item.get("name") or "").strip(),
        price=from_minor_units(item.get("price")),
        original_price=from_minor_units(original) if original else None,
        image_url=images[0].get("url") if images else None,
        external_id=item.get("id"),
        unit=WOLT_UNITS.get(unit.lower(), unit) if unit else None,
        unit_quantity=unit_price.get("base") if unit else None,
        is_available=item.get("disabled_info") is None,
    )


class WoltDehydratedStrategy(EmbeddedStateStrategy):
    """Reads items or subcategory slugs from the dehydrated query cache."""

    state_markers = ("dehydratedAt",)

    def __init__(self, venue_slug: str):
        self.venue_slug = venue_slug

    def items_from_payloads(
        self, payloads: EmbeddedPayloads, context: ExtractionContext
    ) -> StrategyResult:
        for state in payloads.hydration:
            if not isinstance(state, dict):
                continue
            query = find_category_query(state, self.venue_slug)
            if query is None:
                continue
            return self._from_query(query, context)
        return StrategyResult()

    def _from_query(self, query: Dict[str, Any], context: ExtractionContext) -> StrategyResult:
        data = (query.get("state") or {}).get("data") or {}
        page_params = data.get("pageParams") or []
        first_slug = page_params[0].get("slug") if page_params else None

        if first_slug == context.category.id:
            items: List[RawProduct] = []
            for page in data.get("pages") or []:
                for item in page.get("items") or []:
                    if isinstance(item, dict):
                        items.append(raw_from_wolt_item(item))
            return StrategyResult(items=items)

        key = query["queryKey"]
        sub_slugs = [
            part for part in key[3 : len(key) - _TRAILING_KEY_PARTS] if isinstance(part, str)
        ]
        return StrategyResult(
            continuations=[
                CategoryNode(
                    id=slug,
                    name=f"{context.category.name} / {slug}",
                    url=f"items/{slug}",
                )
                for slug in sub_slugs
            ]
        )


class WoltVenueScraper(BaseScraper):
    """Base for Wolt venues; subclasses set ``venue_slug``."""

    venue_slug: str = ""

    def build_strategies(self) -> List[ExtractionStrategy]:
        return [WoltDehydratedStrategy(self.venue_slug)]

    async def prepare_session(self, page: PageController) -> None:
        if await self.click_first(page, ('button:has-text("Use only necessary")',)):
            self.logger.debug("cookie_consent_dismissed")
            await self._sleep(0.5)


class WoltBelaFrutaScraper(WoltVenueScraper):
    site_id = "wolt-bela-fruta"
    venue_slug = "bela-fruta"


class WoltEcoMarketKikaScraper(WoltVenueScraper):
    site_id = "wolt-eco-market-kika"
    venue_slug = "eco-market-kika"

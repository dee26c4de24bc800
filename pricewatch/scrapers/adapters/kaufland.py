"""Kaufland Germany scraper adapter.

Category pages sit behind Cloudflare Turnstile. Products come from the
schema.org JSON-LD or the Next.js page props the page ships; DOM cards are
the fallback. Pagination is a ``?page=N`` parameter with a next button.
"""

from typing import Any, Dict, List

from pricewatch.scrapers.base import BaseScraper
from pricewatch.scrapers.engine.challenge import CLOUDFLARE_TURNSTILE
from pricewatch.scrapers.engine.extraction import (
    DomCardStrategy,
    EmbeddedPayloads,
    EmbeddedStateStrategy,
    ExtractionContext,
    ExtractionStrategy,
    StrategyResult,
    json_ld_products,
    raw_from_json_ld,
)
from pricewatch.scrapers.engine.page import PageController
from pricewatch.scrapers.models import RawProduct
from pricewatch.scrapers.site_config import ScraperConfigOverride


COOKIE_CONSENT_SELECTORS = (
    "#onetrust-accept-btn-handler",
    '[data-testid="cookie-consent-accept"]',
    'button:has-text("Alle akzeptieren")',
    'button:has-text("Akzeptieren")',
    '[id*="accept"][id*="cookie"]',
)

DEFAULTS = ScraperConfigOverride.parse(
    {
        "name": "Kaufland",
        "baseUrl": "https://www.kaufland.de",
        "currency": "EUR",
        "categories": [
            {"id": "dairy-milk", "name": "Milch", "url": "/c/milch/~1951/"},
            {"id": "cheese", "name": "Käse", "url": "/c/kaese/~1952/"},
            {"id": "meat", "name": "Fleisch & Wurst", "url": "/c/fleisch-wurst/~1318/"},
            {"id": "fruits-vegetables", "name": "Obst & Gemüse", "url": "/c/obst-gemuese/~1315/"},
            {"id": "frozen", "name": "Tiefkühlprodukte", "url": "/c/tiefkuehlprodukte/~1401/"},
            {"id": "beverages", "name": "Getränke", "url": "/c/getraenke/~1312/"},
            {"id": "sweets", "name": "Süßigkeiten & Snacks", "url": "/c/suessigkeiten-snacks/~1319/"},
        ],
        "selectors": {
            "productCard": '[data-testid="product-card"], .product-card, article[class*="product"]',
            "name": '[data-testid="product-title"], .product-title, h3, h2',
            "price": '[data-testid="product-price"], .product-price, [class*="price"]',
            "originalPrice": '[class*="old-price"], [class*="strike"], del',
            "image": 'img[data-testid="product-image"], img.product-image, img[src*="product"]',
            "link": 'a[href*="/product/"]',
            "nextPage": (
                '[data-testid="pagination-next"], [aria-label*="next"], '
                '[aria-label*="weiter"], a[rel="next"]'
            ),
        },
        "waitTimes": {
            "pageLoad": 5.0,
            "dynamicContent": 4.0,
            "betweenRequests": 2.0,
            "betweenPages": 3.0,
        },
        "maxRetries": 3,
        "concurrentPages": 1,
        "locale": "de-DE",
        "timezoneId": "Europe/Berlin",
        "headers": {"Accept-Language": "de-DE,de;q=0.9,en;q=0.8"},
        "cookies": [{"name": "userCountry", "value": "DE", "domain": ".kaufland.de", "path": "/"}],
    }
)


def raw_from_page_props(product: Dict[str, Any]) -> RawProduct:
    brand = product.get("brand")
    if isinstance(brand, dict):
        brand = brand.get("name")
    return RawProduct(
        name=product.get("name") or product.get("title"),
        price=product.get("price", product.get("currentPrice")),
        original_price=product.get("originalPrice", product.get("oldPrice")),
        product_url=product.get("url") or product.get("link"),
        image_url=product.get("imageUrl") or product.get("image"),
        external_id=product.get("id"),
        brand=brand,
    )


class KauflandEmbeddedStrategy(EmbeddedStateStrategy):
    """JSON-LD products plus ``props.pageProps.products`` from Next.js."""

    def items_from_payloads(
        self, payloads: EmbeddedPayloads, context: ExtractionContext
    ) -> StrategyResult:
        items: List[RawProduct] = [
            raw_from_json_ld(p) for p in json_ld_products(payloads.json_ld)
        ]
        page_props = ((payloads.next_data or {}).get("props") or {}).get("pageProps") or {}
        for product in page_props.get("products") or []:
            if isinstance(product, dict):
                items.append(raw_from_page_props(product))
        return StrategyResult(items=items)


class KauflandScraper(BaseScraper):
    """Kaufland.de category scraper."""

    site_id = "kaufland"
    supports_product_details = True
    challenge_settings = CLOUDFLARE_TURNSTILE

    def build_strategies(self) -> List[ExtractionStrategy]:
        return [KauflandEmbeddedStrategy(), DomCardStrategy()]

    async def prepare_session(self, page: PageController) -> None:
        clicked = await self.click_first(page, COOKIE_CONSENT_SELECTORS)
        if clicked:
            self.logger.info("cookie_consent_accepted", selector=clicked)
            await self._sleep(0.5)
        else:
            self.logger.debug("cookie_consent_not_found")

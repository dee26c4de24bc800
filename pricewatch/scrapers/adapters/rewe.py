"""REWE Germany scraper adapter.

Uses the www.rewe.de/shop/ pages. Prices are only shown once a delivery
market is chosen, so the session enters a Berlin postal code first. Tiles
that still read "Preis abhängig vom Standort" are dropped, not failed.
Category pages load more tiles on scroll.
"""

import re
from typing import List, Optional

from bs4 import Tag

from pricewatch.scrapers.base import BaseScraper
from pricewatch.scrapers.engine.challenge import CLOUDFLARE_TURNSTILE
from pricewatch.scrapers.engine.extraction import (
    DomCardStrategy,
    ExtractionContext,
    ExtractionStrategy,
)
from pricewatch.scrapers.engine.page import PageController
from pricewatch.scrapers.models import RawProduct
from pricewatch.scrapers.site_config import ScraperConfigOverride


POSTAL_CODE = "10115"  # Berlin

COOKIE_CONSENT_SELECTORS = (
    "#uc-btn-accept-banner",
    'button[data-testid="uc-accept-all-button"]',
    'button:has-text("Alle akzeptieren")',
)
DELIVERY_SELECTORS = (
    'button:has-text("Lieferservice")',
    '[data-testid*="delivery"]',
    'a:has-text("Lieferservice")',
)
POSTAL_INPUT_SELECTORS = (
    'input[placeholder*="Postleitzahl"]',
    'input[placeholder*="PLZ"]',
    'input[type="text"][name*="zip"]',
    'input[type="text"][name*="postal"]',
    'input[inputmode="numeric"]',
)
FIND_MARKET_SELECTORS = (
    'button:has-text("Lieferservice finden")',
    'button:has-text("finden")',
    'button[type="submit"]',
)

DEFAULTS = ScraperConfigOverride.parse(
    {
        "name": "REWE",
        "baseUrl": "https://www.rewe.de",
        "currency": "EUR",
        "categories": [
            {"id": "obst-gemuese", "name": "Obst & Gemüse", "url": "/shop/c/obst-gemuese/"},
            {"id": "fleisch-fisch", "name": "Fleisch & Fisch", "url": "/shop/c/fleisch-fisch/"},
            {"id": "kaese-eier-molkerei", "name": "Käse, Eier & Molkerei", "url": "/shop/c/kaese-eier-molkerei/"},
            {"id": "brot-cerealien-aufstriche", "name": "Brot, Cerealien & Aufstriche", "url": "/shop/c/brot-cerealien-aufstriche/"},
            {"id": "getraenke-genussmittel", "name": "Getränke & Genussmittel", "url": "/shop/c/getraenke-genussmittel/"},
            {"id": "suesses-salziges", "name": "Süßes & Salziges", "url": "/shop/c/suesses-salziges/"},
            {"id": "tiefkuehlkost", "name": "Tiefkühlkost", "url": "/shop/c/tiefkuehlkost/"},
            {"id": "kochen-backen", "name": "Kochen & Backen", "url": "/shop/c/kochen-backen/"},
            {"id": "oele-sossen-gewuerze", "name": "Öle, Soßen & Gewürze", "url": "/shop/c/oele-sossen-gewuerze/"},
            {"id": "fertiggerichte-konserven", "name": "Fertiggerichte & Konserven", "url": "/shop/c/fertiggerichte-konserven/"},
            {"id": "kaffee-tee-kakao", "name": "Kaffee, Tee & Kakao", "url": "/shop/c/kaffee-tee-kakao/"},
            {"id": "drogerie-gesundheit", "name": "Drogerie & Gesundheit", "url": "/shop/c/drogerie-gesundheit/"},
            {"id": "babybedarf", "name": "Babybedarf", "url": "/shop/c/babybedarf/"},
            {"id": "tierbedarf", "name": "Tierbedarf", "url": "/shop/c/tierbedarf/"},
            {"id": "kueche-haushalt", "name": "Küche & Haushalt", "url": "/shop/c/kueche-haushalt/"},
        ],
        "selectors": {
            "productCard": '[class*="product-tile"]',
            "name": '[class*="title"], h3, h4',
            "price": '[class*="price-area"], [class*="price"]',
            "quantity": '[class*="grammage"]',
            "image": "img",
            "link": 'a[href*="/shop/p/"]',
        },
        "waitTimes": {
            "pageLoad": 5.0,
            "dynamicContent": 3.0,
            "betweenRequests": 2.0,
        },
        "maxRetries": 3,
        "concurrentPages": 1,
        "locale": "de-DE",
        "timezoneId": "Europe/Berlin",
    }
)

_TILE_PRICE = re.compile(r"(\d+)[,.](\d{2})")
_LOCATION_DEPENDENT = ("abhängig", "Standort")


class ReweTileStrategy(DomCardStrategy):
    """Product tiles; the price area may hold a current and a crossed-out price."""

    def parse_card(self, card: Tag, context: ExtractionContext) -> Optional[RawProduct]:
        s = context.selectors
        link = card.select_one(s.link) if s.link else None
        if link is None or not link.get("href"):
            return None
        raw = super().parse_card(card, context)
        if raw is None:
            return None

        price_area = card.select_one(s.price) if s.price else None
        price_text = price_area.get_text(" ", strip=True) if price_area else ""
        raw.price, raw.original_price = None, None
        if any(marker in price_text for marker in _LOCATION_DEPENDENT):
            raw.price_unresolved = True
        else:
            matches = _TILE_PRICE.findall(price_text)
            if matches:
                raw.price = "{}.{}".format(*matches[0])
            if len(matches) > 1:
                raw.original_price = "{}.{}".format(*matches[1])

        segments = [part for part in link["href"].split("?")[0].split("/") if part]
        raw.external_id = segments[-1] if segments else None
        return raw


class ReweScraper(BaseScraper):
    """REWE online shop scraper (delivery market in Berlin)."""

    site_id = "rewe"
    challenge_settings = CLOUDFLARE_TURNSTILE

    def build_strategies(self) -> List[ExtractionStrategy]:
        return [ReweTileStrategy()]

    async def prepare_session(self, page: PageController) -> None:
        """Accept cookies and select a delivery market by postal code."""
        if await self.click_first(page, COOKIE_CONSENT_SELECTORS):
            self.logger.info("cookie_consent_accepted")
            await self._sleep(0.5)

        if not await self.click_first(page, DELIVERY_SELECTORS):
            self.logger.warning("delivery_option_not_found")
        await self._sleep(1.5)

        entered = False
        for selector in POSTAL_INPUT_SELECTORS:
            if await page.fill(selector, POSTAL_CODE):
                entered = True
                break
        if not entered:
            self.logger.warning("postal_code_input_not_found")
            return

        await self.click_first(page, FIND_MARKET_SELECTORS)
        await self._sleep(self.config.wait_times.dynamic_content)

        content = await page.content()
        if "Lieferung" in content or "€" in content:
            self.logger.info("delivery_market_selected", postal_code=POSTAL_CODE)
        else:
            self.logger.warning("delivery_market_unconfirmed", postal_code=POSTAL_CODE)

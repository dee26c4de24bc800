"""Auchan Express Ukraine scraper adapter.

Talks to the Magento GraphQL endpoint of express.auchan.ua. Each category
page of the traversal is one ``productsV2`` page of 100 items; the response's
``total_pages`` drives pagination.
"""

import re
from decimal import Decimal
from typing import Any, Dict, List, Optional

from pricewatch.core.exceptions import ExtractionError
from pricewatch.scrapers.base import BaseScraper
from pricewatch.scrapers.engine.extraction import (
    ApiReplayStrategy,
    ApiRequest,
    ExtractionContext,
    ExtractionStrategy,
    StrategyResult,
)
from pricewatch.scrapers.engine.traversal import TraversalLimits
from pricewatch.scrapers.models import RawProduct
from pricewatch.scrapers.site_config import ScraperConfigOverride


GRAPHQL_URL = "https://express.auchan.ua/graphql/"
PAGE_SIZE = 100
MAX_PAGES = 100
MAX_PRICE = Decimal("99999")

PRODUCTS_QUERY = """
query getCategoryProducts($filter: ProductAttributeFilterInput, $pageSize: Int, $currentPage: Int, $sort: ProductAttributeSortInput) {
  search: productsV2(filter: $filter, pageSize: $pageSize, currentPage: $currentPage, sort: $sort) {
    page_info { page_size total_pages }
    items {
      id sku name url_key stock_status
      thumbnail { url }
      price_range {
        minimum_price {
          regular_price { value }
          final_price { value }
          discount { amount_off percent_off }
        }
      }
    }
  }
}
"""

# Category slug -> GraphQL category id
CATEGORY_IDS = {
    "frukty-ovochi-solinnja": "23608",
    "mjaso": "23643",
    "ryba": "23673",
    "mjaso-kovbasni-vyroby-ta-syry": "23709",
    "hlib-ta-hlibobulochni-vyroby": "23745",
    "kulinarija": "23780",
    "molochni-produkty-ta-jajcja": "23815",
    "zamorozhena-produkcija": "23850",
    "bakalija": "23880",
    "tovary-svitu": "23928",
    "konservacija": "23964",
    "sousy-ta-prypravy": "23958",
    "solodoschi": "23985",
    "chypsy-sneky": "24025",
    "chaj-kava": "24067",
    "napoi": "24093",
}

DEFAULTS = ScraperConfigOverride.parse(
    {
        "name": "Auchan Express Ukraine",
        "baseUrl": "https://express.auchan.ua",
        "currency": "UAH",
        "categories": [
            {"id": "frukty-ovochi-solinnja", "name": "Фрукти, овочі, соління", "url": "/frukti-ovochi-solinnja1/"},
            {"id": "mjaso", "name": "М'ясо", "url": "/m-jaso/"},
            {"id": "ryba", "name": "Риба", "url": "/riba/"},
            {"id": "mjaso-kovbasni-vyroby-ta-syry", "name": "М'ясо-ковбасні вироби та сири", "url": "/m-jaso-kovbasni-virobi-ta-siri/"},
            {"id": "hlib-ta-hlibobulochni-vyroby", "name": "Хліб та хлібобулочні вироби", "url": "/hlib-ta-hlibobulochni-virobi/"},
            {"id": "kulinarija", "name": "Кулінарія", "url": "/kulinaria-1/"},
            {"id": "molochni-produkty-ta-jajcja", "name": "Молочні продукти та яйця", "url": "/molochni-produkti-ta-jajcja/"},
            {"id": "zamorozhena-produkcija", "name": "Заморожена продукція", "url": "/zamorozhena-produkcija/"},
            {"id": "bakalija", "name": "Бакалія", "url": "/bakaleya-1/"},
            {"id": "tovary-svitu", "name": "Товари світу", "url": "/tovary-svity-1/"},
            {"id": "konservacija", "name": "Консервація", "url": "/konservasia-1/"},
            {"id": "sousy-ta-prypravy", "name": "Соуси та приправи", "url": "/konservi-sousi-pripravi/"},
            {"id": "solodoschi", "name": "Солодощі", "url": "/solodohy-1/"},
            {"id": "chypsy-sneky", "name": "Чипси, снеки", "url": "/chipsy-sneki/"},
            {"id": "chaj-kava", "name": "Чай, кава", "url": "/chaj-kava/"},
            {"id": "napoi", "name": "Напої", "url": "/napoi/"},
        ],
        "waitTimes": {
            "pageLoad": 0,
            "dynamicContent": 0,
            "betweenRequests": 0.1,
            "betweenPages": 0.05,
        },
        "maxRetries": 3,
        "concurrentPages": 5,
        "headers": {"store": "ua"},
        "locale": "uk-UA",
        "timezoneId": "Europe/Kiev",
    }
)

_IMAGE_TRANSFORM = re.compile(r"/rx/([^/]+)/auchan\.ua/")


def thumbnail_url(url: str) -> str:
    """Ask the image CDN for a 312px thumbnail."""
    return _IMAGE_TRANSFORM.sub(r"/rx/\1,w_312,h_312/auchan.ua/", url)


def raw_from_graphql(item: Dict[str, Any]) -> Optional[RawProduct]:
    """Map a ``productsV2`` item; None for placeholder prices."""
    minimum = item["price_range"]["minimum_price"]
    final = minimum["final_price"]["value"]
    regular = minimum["regular_price"]["value"]
    if not final or final <= 0 or Decimal(str(final)) >= MAX_PRICE:
        return None

    thumbnail = (item.get("thumbnail") or {}).get("url")
    return RawProduct(
        name=item.get("name"),
        price=final,
        original_price=regular,
        product_url=f"https://express.auchan.ua/{item['url_key']}/",
        image_url=thumbnail_url(thumbnail) if thumbnail else None,
        external_id=item.get("sku"),
        is_available=item.get("stock_status") == "IN_STOCK",
    )


class AuchanGraphQLStrategy(ApiReplayStrategy):
    name = "graphql"

    def build_request(self, context: ExtractionContext) -> Optional[ApiRequest]:
        category_id = CATEGORY_IDS.get(context.category.id)
        if category_id is None:
            return None
        return ApiRequest(
            url=GRAPHQL_URL,
            method="POST",
            json={
                "query": PRODUCTS_QUERY,
                "operationName": "getCategoryProducts",
                "variables": {
                    "currentPage": context.page_number,
                    "filter": {"category_id": {"eq": category_id}},
                    "pageSize": PAGE_SIZE,
                    "sort": {"position": "ASC"},
                },
            },
            headers={"Content-Type": "application/json"},
        )

    def parse_response(self, payload: Any, context: ExtractionContext) -> StrategyResult:
        errors = payload.get("errors")
        if errors:
            raise ExtractionError(self.name, str(errors[0].get("message", errors[0])))

        search = (payload.get("data") or {}).get("search")
        if not search:
            return StrategyResult()

        items = []
        for item in search.get("items") or []:
            try:
                raw = raw_from_graphql(item)
            except (KeyError, TypeError):
                continue
            if raw is not None:
                items.append(raw)

        total_pages = min((search.get("page_info") or {}).get("total_pages") or 1, MAX_PAGES)
        return StrategyResult(items=items, has_next=context.page_number < total_pages)


class AuchanUaScraper(BaseScraper):
    site_id = "auchan-ua"
    navigate_pages = False

    def __init__(self, config, *args, **kwargs):
        kwargs.setdefault("limits", TraversalLimits(max_pages=MAX_PAGES))
        super().__init__(config, *args, **kwargs)

    def build_strategies(self) -> List[ExtractionStrategy]:
        return [AuchanGraphQLStrategy(timeout=self.config.navigation_timeout)]

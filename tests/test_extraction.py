"""Tests for extraction strategies and the pipeline."""

import json
from dataclasses import replace
from decimal import Decimal

import httpx
import pytest

from pricewatch.core.exceptions import ExtractionError
from pricewatch.scrapers.engine.extraction import (
    ApiReplayStrategy,
    ApiRequest,
    DomCardStrategy,
    EmbeddedStateStrategy,
    ExtractionContext,
    ExtractionPipeline,
    ExtractionStrategy,
    StrategyResult,
    collect_payloads,
)
from pricewatch.scrapers.models import CategoryNode, RawProduct

from .fakes import BASE_URL, CARD_SELECTORS, FakePage, product_cards


API_URL = "https://api.shop.example/v1/products"


class ProductApi(ApiReplayStrategy):
    """Minimal JSON endpoint replay used by the tests."""

    def build_request(self, context):
        return ApiRequest(url=API_URL, params={"category": context.category.id})

    def parse_response(self, payload, context):
        return StrategyResult(
            items=[
                RawProduct(name=p["title"], price=p["price"], external_id=p["id"])
                for p in payload["products"]
            ],
            has_next=payload["hasMore"],
        )


class ExplodingStrategy(ExtractionStrategy):
    name = "exploding"

    async def extract(self, page, context):
        raise ExtractionError(self.name, "unexpected page shape")


class StaticStrategy(ExtractionStrategy):
    name = "static"

    def __init__(self, result: StrategyResult):
        self.result = result

    async def extract(self, page, context):
        return self.result


# ============================================================================
# FIXTURES
# ============================================================================

@pytest.fixture
def context():
    return ExtractionContext(
        category=CategoryNode(id="dairy", name="Dairy", url="/c/dairy"),
        page_number=1,
        url=f"{BASE_URL}/c/dairy",
        base_url=BASE_URL,
        currency="EUR",
        selectors=CARD_SELECTORS,
    )


def page_with(html: str, **kwargs) -> FakePage:
    page = FakePage(default_html=html, **kwargs)
    page.html = html
    return page


# ============================================================================
# EMBEDDED STATE
# ============================================================================

class TestEmbeddedState:
    """Test JSON payload discovery and JSON-LD mapping."""

    def test_collects_every_payload_kind(self):
        html = (
            '<script type="application/ld+json">{"@type": "Product", "name": "A"}</script>'
            '<script id="__NEXT_DATA__">{"props": {"pageProps": {}}}</script>'
            "<script>window.__INITIAL_STATE__ = {\"cart\": 1};</script>"
        )
        payloads = collect_payloads(html)

        assert payloads.json_ld == [{"@type": "Product", "name": "A"}]
        assert payloads.next_data == {"props": {"pageProps": {}}}
        assert payloads.initial_state == {"cart": 1}

    def test_url_encoded_hydration_blob(self):
        blob = "%7B%22dehydratedAt%22%3A1%2C%22queries%22%3A%5B%5D%7D"
        payloads = collect_payloads(f"<script>{blob}</script>", markers=("dehydratedAt",))

        assert payloads.hydration == [{"dehydratedAt": 1, "queries": []}]

    async def test_json_ld_item_list(self, context):
        document = {
            "@type": "ItemList",
            "itemListElement": [
                {
                    "@type": "ListItem",
                    "item": {
                        "@type": "Product",
                        "name": "Vollmilch 1 l",
                        "sku": "4711",
                        "url": "/p/vollmilch",
                        "brand": {"@type": "Brand", "name": "Weihenstephan"},
                        "offers": {"@type": "Offer", "price": "1.19", "priceCurrency": "EUR"},
                    },
                },
                {
                    "@type": "ListItem",
                    "item": {
                        "@type": "Product",
                        "name": "Butter 250 g",
                        "offers": {
                            "@type": "Offer",
                            "price": 2.29,
                            "availability": "https://schema.org/OutOfStock",
                        },
                    },
                },
            ],
        }
        html = f'<script type="application/ld+json">{json.dumps(document)}</script>'
        result = await ExtractionPipeline([EmbeddedStateStrategy()]).extract(page_with(html), context)

        assert result.strategy == "embedded"
        milk, butter = result.records
        assert milk.price == Decimal("1.19")
        assert milk.product_url == f"{BASE_URL}/p/vollmilch"
        assert milk.brand == "Weihenstephan"
        assert (milk.unit, milk.unit_quantity) == ("l", 1.0)
        assert butter.is_available is False
        assert butter.product_url == context.url

    async def test_json_ld_image_objects_and_odd_names(self, context):
        document = {
            "@type": "ItemList",
            "itemListElement": [
                {"@type": "Product", "name": "Milk", "offers": {"price": "1.19"}},
                {
                    "@type": "Product",
                    "name": ["Gouda 400 g"],
                    "image": {"@type": "ImageObject", "url": "/img/gouda.jpg"},
                    "offers": {"price": "3.49"},
                },
                {"@type": "Product", "name": {"@value": "Eggs"}, "offers": "sold out"},
            ],
        }
        html = f'<script type="application/ld+json">{json.dumps(document)}</script>'
        pipeline = ExtractionPipeline([EmbeddedStateStrategy(), DomCardStrategy()])

        result = await pipeline.extract(page_with(html), context)

        assert result.strategy == "embedded"
        assert [r.name for r in result.records] == ["Milk", "Gouda 400 g"]
        assert result.records[1].image_url == f"{BASE_URL}/img/gouda.jpg"
        assert len(result.failures) == 1


# ============================================================================
# DOM CARDS
# ============================================================================

class TestDomCards:
    """Test card parsing and the next-page signal."""

    async def test_cards_and_next_page(self, context):
        html = product_cards(("Joghurt 500 g", "0,89 €"), ("Quark 250 g", "1,29 €"), next_page=True)
        result = await DomCardStrategy().extract(page_with(html), context)

        assert [item.name for item in result.items] == ["Joghurt 500 g", "Quark 250 g"]
        assert result.items[0].product_url == "/p/0"
        assert result.has_next is True

    async def test_disabled_next_page(self, context):
        html = product_cards(("Joghurt", "0,89 €")).replace(
            "</body>", '<a class="next" aria-disabled="true">Next</a></body>'
        )
        result = await DomCardStrategy().extract(page_with(html), context)

        assert result.has_next is False

    async def test_no_next_selector_means_no_signal(self, context):
        no_pager = replace(context, selectors=CARD_SELECTORS.merged({"nextPage": ""}))
        result = await DomCardStrategy().extract(page_with(product_cards(("Joghurt", "0,89"))), no_pager)

        assert result.has_next is None


# ============================================================================
# API REPLAY
# ============================================================================

class TestApiReplay:
    """Test replaying a JSON endpoint with the session identity."""

    async def test_replays_with_session_cookies(self, context):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["cookie"] = request.headers.get("cookie")
            seen["agent"] = request.headers.get("user-agent")
            seen["category"] = request.url.params.get("category")
            return httpx.Response(
                200,
                json={
                    "products": [{"id": 7, "title": "Skyr 450 g", "price": "1.79"}],
                    "hasMore": False,
                },
            )

        page = page_with("", cookies=[{"name": "session", "value": "abc"}, {"name": "zip", "value": "10115"}])
        strategy = ProductApi(transport=httpx.MockTransport(handler))
        result = await ExtractionPipeline([strategy]).extract(page, context)

        assert seen == {"cookie": "session=abc; zip=10115", "agent": "FakeAgent/1.0", "category": "dairy"}
        assert result.strategy == "api"
        assert result.records[0].external_id == "7"
        assert result.records[0].price == Decimal("1.79")
        assert result.has_next is False

    async def test_http_error_falls_through_to_dom(self, context):
        strategy = ProductApi(transport=httpx.MockTransport(lambda request: httpx.Response(503)))
        page = page_with(product_cards(("Kefir", "1,49 €")))

        result = await ExtractionPipeline([strategy, DomCardStrategy()]).extract(page, context)

        assert result.strategy == "dom"
        assert len(result.records) == 1
        assert [(name, type(error)) for name, error in result.errors] == [("api", ExtractionError)]

    async def test_invalid_json(self, context):
        strategy = ProductApi(transport=httpx.MockTransport(lambda request: httpx.Response(200, text="<html>")))

        with pytest.raises(ExtractionError, match="invalid JSON"):
            await strategy.extract(page_with(""), context)


# ============================================================================
# PIPELINE
# ============================================================================

class TestExtractionPipeline:
    """Test strategy ordering and normalization."""

    async def test_malformed_json_falls_through_to_dom(self, context):
        html = product_cards(("Milch 1 l", "1,19 €"), ("Sahne 200 ml", "0,99 €")).replace(
            "<body>", '<body><script type="application/ld+json">{"@type": "Product", broken</script>'
        )
        pipeline = ExtractionPipeline([EmbeddedStateStrategy(), DomCardStrategy()])

        result = await pipeline.extract(page_with(html), context)

        assert result.strategy == "dom"
        assert [r.name for r in result.records] == ["Milch 1 l", "Sahne 200 ml"]
        assert result.records[0].price == Decimal("1.19")
        assert result.records[0].product_url == f"{BASE_URL}/p/0"
        assert result.records[0].category_name == "Dairy"
        assert result.errors == []

    async def test_bad_item_does_not_fail_page(self, context):
        html = product_cards(("Milch", "1,19 €"), ("Kaputt", "n/a"))
        result = await ExtractionPipeline([DomCardStrategy()]).extract(page_with(html), context)

        assert len(result.records) == 1
        assert len(result.failures) == 1
        assert result.failures[0].item.name == "Kaputt"

    async def test_unexpected_item_error_is_a_failure(self, context):
        strategy = StaticStrategy(
            StrategyResult(
                items=[
                    RawProduct(name="Brot", price="2,49"),
                    RawProduct(name="Kuchen", price="5,99", image_url={"src": "/kuchen.jpg"}),
                ]
            )
        )

        result = await ExtractionPipeline([strategy]).extract(page_with(""), context)

        assert [r.name for r in result.records] == ["Brot"]
        failure, = result.failures
        assert failure.item.name == "Kuchen"
        assert isinstance(failure.error, TypeError)

    async def test_unresolved_prices_are_dropped(self, context):
        strategy = StaticStrategy(
            StrategyResult(
                items=[
                    RawProduct(name="Brot", price="2,49"),
                    RawProduct(name="Brötchen", price=None, price_unresolved=True),
                ]
            )
        )
        result = await ExtractionPipeline([strategy]).extract(page_with(""), context)

        assert [r.name for r in result.records] == ["Brot"]
        assert [d.name for d in result.dropped] == ["Brötchen"]
        assert result.failures == []

    async def test_sale_prices_are_ordered(self, context):
        strategy = StaticStrategy(
            StrategyResult(items=[RawProduct(name="Käse", price="3,49", original_price="2,99")])
        )
        result = await ExtractionPipeline([strategy]).extract(page_with(""), context)

        record = result.records[0]
        assert (record.price, record.original_price) == (Decimal("2.99"), Decimal("3.49"))
        assert record.is_on_sale

    async def test_all_strategies_failed(self, context):
        result = await ExtractionPipeline([ExplodingStrategy()]).extract(page_with(""), context)

        assert result.records == []
        assert result.all_strategies_failed is True
        assert result.errors[0][0] == "exploding"

    async def test_empty_page_is_not_a_failure(self, context):
        result = await ExtractionPipeline([EmbeddedStateStrategy(), DomCardStrategy()]).extract(
            page_with("<html></html>"), context
        )

        assert result.strategy is None
        assert result.all_strategies_failed is False

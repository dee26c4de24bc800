"""Multi-strategy product extraction.

Strategies run in a fixed priority order and the first one that returns
items or continuations wins:

1. ApiReplayStrategy: replays the site's backing REST/GraphQL endpoint with
   the session's cookies and user agent.
2. EmbeddedStateStrategy: reads JSON the page ships in its own markup
   (JSON-LD, ``__NEXT_DATA__``, URL-encoded hydration blobs, state globals).
3. DomCardStrategy: parses repeated product cards with CSS selectors.

Every raw item is normalized before it leaves the pipeline. The pipeline
itself never raises.
"""

import json
import re
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, NamedTuple, Optional, Sequence, Tuple
from urllib.parse import unquote, urljoin

import httpx
import structlog
from bs4 import BeautifulSoup, Tag

from pricewatch.core.exceptions import ExtractionError, ParseError
from pricewatch.scrapers.engine.page import PageController
from pricewatch.scrapers.models import CanonicalProductRecord, CategoryNode, RawProduct
from pricewatch.scrapers.site_config import Selectors
from pricewatch.scrapers.utils.normalizer import (
    parse_price,
    parse_quantity,
    resolve_sale_prices,
    to_canonical_unit,
)
from pricewatch.scrapers.utils.retry import http_retry

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class ExtractionContext:
    """Where the page being extracted sits in the traversal."""

    category: CategoryNode
    page_number: int
    url: str
    base_url: str
    currency: str
    selectors: Selectors = field(default_factory=Selectors)
    headers: Mapping[str, str] = field(default_factory=dict)


@dataclass
class StrategyResult:
    items: List[RawProduct] = field(default_factory=list)
    continuations: List[CategoryNode] = field(default_factory=list)
    has_next: Optional[bool] = None  # None when the strategy has no signal

    @property
    def is_empty(self) -> bool:
        return not self.items and not self.continuations


class ItemFailure(NamedTuple):
    item: RawProduct
    error: Exception


@dataclass
class ExtractionResult:
    records: List[CanonicalProductRecord] = field(default_factory=list)
    continuations: List[CategoryNode] = field(default_factory=list)
    has_next: Optional[bool] = None
    strategy: Optional[str] = None  # Name of the winning strategy
    failures: List[ItemFailure] = field(default_factory=list)
    dropped: List[RawProduct] = field(default_factory=list)
    errors: List[Tuple[str, Exception]] = field(default_factory=list)
    all_strategies_failed: bool = False


def build_record(raw: RawProduct, context: ExtractionContext) -> CanonicalProductRecord:
    """Normalize a raw item into a canonical record.

    Raises:
        ParseError: If the price cannot be read
        ValueError: If the record fails validation (e.g. empty name)
    """
    price = parse_price(raw.price)
    original_price = None
    if raw.original_price not in (None, ""):
        try:
            original_price = parse_price(raw.original_price)
        except ParseError:
            original_price = None
    price, original_price = resolve_sale_prices(price, original_price)

    quantity = None
    if raw.unit and raw.unit_quantity:
        quantity = to_canonical_unit(raw.unit, raw.unit_quantity)
    elif raw.quantity_text:
        quantity = parse_quantity(raw.quantity_text)
    if quantity is None and raw.name:
        quantity = parse_quantity(raw.name)
    if quantity is not None and quantity.quantity <= 0:
        quantity = None

    product_url = (
        urljoin(context.base_url, raw.product_url) if raw.product_url else context.url
    )
    image_url = urljoin(context.base_url, raw.image_url) if raw.image_url else None

    return CanonicalProductRecord(
        name=" ".join((raw.name or "").split()),
        price=price,
        currency=raw.currency or context.currency,
        product_url=product_url,
        category_name=context.category.name,
        original_price=original_price,
        image_url=image_url,
        external_id=str(raw.external_id) if raw.external_id is not None else None,
        brand=raw.brand or None,
        unit=quantity.unit if quantity else None,
        unit_quantity=quantity.quantity if quantity else None,
        is_available=raw.is_available,
        description=raw.description or None,
    )


class ExtractionStrategy(ABC):
    """One way of getting items out of a page."""

    name: str = ""

    @abstractmethod
    async def extract(
        self, page: PageController, context: ExtractionContext
    ) -> StrategyResult:
        """Return raw items and/or continuations for the current page.

        Raises:
            ExtractionError: If the page does not have the expected shape
        """


@dataclass
class ApiRequest:
    url: str
    method: str = "GET"
    params: Optional[Dict[str, Any]] = None
    json: Optional[Any] = None
    headers: Dict[str, str] = field(default_factory=dict)


class ApiReplayStrategy(ExtractionStrategy):
    """Replays a backing JSON endpoint with the live session's identity.

    Subclasses implement ``build_request`` (return None when the endpoint does
    not apply to this page) and ``parse_response``.
    """

    name = "api"

    def __init__(
        self,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        timeout: float = 30.0,
    ):
        self._transport = transport
        self._timeout = timeout

    def build_request(self, context: ExtractionContext) -> Optional[ApiRequest]:
        return None

    def parse_response(self, payload: Any, context: ExtractionContext) -> StrategyResult:
        raise NotImplementedError

    async def _session_headers(
        self, page: PageController, context: ExtractionContext, request: ApiRequest
    ) -> Dict[str, str]:
        headers = {
            "User-Agent": await page.user_agent(),
            "Accept": "application/json",
        }
        cookies = await page.cookies()
        if cookies:
            headers["Cookie"] = "; ".join(f"{c['name']}={c['value']}" for c in cookies)
        headers.update(context.headers)
        headers.update(request.headers)
        return headers

    @http_retry
    async def _send(self, client: httpx.AsyncClient, request: ApiRequest) -> httpx.Response:
        return await client.request(
            request.method,
            request.url,
            params=request.params,
            json=request.json,
        )

    async def extract(
        self, page: PageController, context: ExtractionContext
    ) -> StrategyResult:
        request = self.build_request(context)
        if request is None:
            return StrategyResult()

        headers = await self._session_headers(page, context, request)
        async with httpx.AsyncClient(
            headers=headers,
            transport=self._transport,
            timeout=self._timeout,
            follow_redirects=True,
        ) as client:
            response = await self._send(client, request)

        if response.status_code >= 400:
            raise ExtractionError(
                self.name, f"HTTP {response.status_code} from {request.url}"
            )
        try:
            payload = response.json()
        except ValueError as e:
            raise ExtractionError(self.name, f"invalid JSON from {request.url}") from e

        return self.parse_response(payload, context)


@dataclass
class EmbeddedPayloads:
    """JSON documents found in a page's script tags."""

    json_ld: List[Any] = field(default_factory=list)
    next_data: Optional[Any] = None
    hydration: List[Any] = field(default_factory=list)  # URL-encoded blobs
    initial_state: Optional[Any] = None

    @property
    def is_empty(self) -> bool:
        return (
            not self.json_ld
            and self.next_data is None
            and not self.hydration
            and self.initial_state is None
        )


_STATE_ASSIGNMENT = re.compile(
    r"window\.(?:__INITIAL_STATE__|__PRELOADED_STATE__)\s*=\s*({.+?})\s*;?\s*$",
    re.DOTALL,
)


def collect_payloads(html: str, markers: Sequence[str] = ()) -> EmbeddedPayloads:
    """Parse every embedded JSON document in ``html``; bad blocks are skipped.

    Args:
        html: Rendered page HTML
        markers: Substrings identifying URL-encoded hydration scripts
    """
    payloads = EmbeddedPayloads()
    soup = BeautifulSoup(html, "html.parser")

    for script in soup.find_all("script"):
        text = script.string or script.get_text() or ""
        if not text.strip():
            continue
        try:
            if script.get("type") == "application/ld+json":
                data = json.loads(text)
                payloads.json_ld.extend(data if isinstance(data, list) else [data])
            elif script.get("id") == "__NEXT_DATA__":
                payloads.next_data = json.loads(text)
            elif markers and any(m in text for m in markers):
                payloads.hydration.append(json.loads(unquote(text.strip())))
            elif "__INITIAL_STATE__" in text or "__PRELOADED_STATE__" in text:
                match = _STATE_ASSIGNMENT.search(text.strip())
                if match:
                    payloads.initial_state = json.loads(match.group(1))
        except ValueError as e:
            logger.debug("embedded_json_skipped", error=str(e)[:200])

    return payloads


def _first_of(value: Any) -> Any:
    if isinstance(value, list):
        return value[0] if value else None
    return value


def json_ld_products(documents: Sequence[Any]) -> List[Dict[str, Any]]:
    """Product nodes from JSON-LD documents (Product, ItemList, @graph)."""
    products = []
    stack = list(documents)
    while stack:
        node = stack.pop(0)
        if not isinstance(node, dict):
            continue
        node_type = _first_of(node.get("@type")) or ""
        if node_type == "Product":
            products.append(node)
        elif node_type == "ItemList":
            for element in node.get("itemListElement") or []:
                if isinstance(element, dict):
                    stack.append(element.get("item", element))
        elif "@graph" in node:
            stack.extend(node.get("@graph") or [])
    return products


def _json_ld_text(value: Any) -> Optional[str]:
    """Plain text from a JSON-LD value that may be a list or a typed node."""
    value = _first_of(value)
    if isinstance(value, dict):
        value = value.get("url") or value.get("contentUrl") or value.get("name")
    if value is None or isinstance(value, (dict, list)):
        return None
    return str(value)


def raw_from_json_ld(product: Dict[str, Any]) -> RawProduct:
    offers = _first_of(product.get("offers"))
    if not isinstance(offers, dict):
        offers = {}
    if offers.get("@type") == "AggregateOffer":
        price = offers.get("lowPrice", offers.get("price"))
    else:
        price = offers.get("price")

    brand = product.get("brand")
    if isinstance(brand, dict):
        brand = brand.get("name")

    availability = str(offers.get("availability") or "")
    return RawProduct(
        name=_json_ld_text(product.get("name")),
        price=price,
        currency=offers.get("priceCurrency"),
        product_url=_json_ld_text(product.get("url") or offers.get("url")),
        image_url=_json_ld_text(product.get("image")),
        external_id=product.get("sku") or product.get("productID"),
        brand=_json_ld_text(brand),
        description=_json_ld_text(product.get("description")),
        is_available="OutOfStock" not in availability and "SoldOut" not in availability,
    )


class EmbeddedStateStrategy(ExtractionStrategy):
    """Reads structured data embedded in the rendered page.

    The default ``items_from_payloads`` understands schema.org JSON-LD;
    adapters override it for framework-specific state. Any failure yields an
    empty result so the next strategy gets its turn.
    """

    name = "embedded"
    state_markers: Tuple[str, ...] = ()

    def items_from_payloads(
        self, payloads: EmbeddedPayloads, context: ExtractionContext
    ) -> StrategyResult:
        return StrategyResult(
            items=[raw_from_json_ld(p) for p in json_ld_products(payloads.json_ld)]
        )

    async def extract(
        self, page: PageController, context: ExtractionContext
    ) -> StrategyResult:
        try:
            payloads = collect_payloads(await page.content(), self.state_markers)
            if payloads.is_empty:
                return StrategyResult()
            return self.items_from_payloads(payloads, context)
        except Exception as e:
            logger.debug(
                "embedded_state_unusable",
                url=context.url,
                error=str(e)[:200],
            )
            return StrategyResult()


def _select_text(card: Tag, selector: Optional[str]) -> Optional[str]:
    if not selector:
        return None
    element = card.select_one(selector)
    if element is None:
        return None
    text = element.get_text(" ", strip=True)
    return text or None


def _select_attr(card: Tag, selector: Optional[str], *attrs: str) -> Optional[str]:
    if not selector:
        return None
    element = card.select_one(selector)
    if element is None:
        return None
    for attr in attrs:
        value = element.get(attr)
        if value:
            return value
    return None


class DomCardStrategy(ExtractionStrategy):
    """Parses repeated product cards using the site's CSS selectors.

    A card that fails to parse is skipped. The next-page signal is the
    ``next_page`` selector being present and not disabled; without that
    selector there is no signal (``has_next`` None).
    """

    name = "dom"

    def parse_card(self, card: Tag, context: ExtractionContext) -> Optional[RawProduct]:
        s = context.selectors
        name = _select_text(card, s.name)
        if not name:
            return None

        card_link = card.get("href") if card.name == "a" else None
        return RawProduct(
            name=name,
            price=_select_text(card, s.price),
            original_price=_select_text(card, s.original_price),
            product_url=_select_attr(card, s.link, "href") or card_link,
            image_url=_select_attr(card, s.image, "src", "data-src"),
            brand=_select_text(card, s.brand),
            quantity_text=_select_text(card, s.quantity),
            is_available=not s.unavailable or card.select_one(s.unavailable) is None,
        )

    @staticmethod
    def has_next_page(soup: BeautifulSoup, selector: str) -> bool:
        element = soup.select_one(selector)
        if element is None:
            return False
        if element.has_attr("disabled"):
            return False
        return element.get("aria-disabled") != "true"

    async def extract(
        self, page: PageController, context: ExtractionContext
    ) -> StrategyResult:
        s = context.selectors
        if not s.product_card:
            return StrategyResult()

        soup = BeautifulSoup(await page.content(), "html.parser")
        items = []
        for index, card in enumerate(soup.select(s.product_card)):
            try:
                raw = self.parse_card(card, context)
            except Exception as e:
                logger.debug("product_card_skipped", index=index, error=str(e)[:200])
                continue
            if raw is not None:
                items.append(raw)

        has_next = self.has_next_page(soup, s.next_page) if s.next_page else None
        return StrategyResult(items=items, has_next=has_next)


class ExtractionPipeline:
    """Runs strategies in order and normalizes the winner's items."""

    def __init__(self, strategies: Sequence[ExtractionStrategy], log=None):
        self.strategies = list(strategies)
        self.logger = log or logger

    async def extract(
        self, page: PageController, context: ExtractionContext
    ) -> ExtractionResult:
        errors: List[Tuple[str, Exception]] = []

        for strategy in self.strategies:
            try:
                result = await strategy.extract(page, context)
            except Exception as e:
                self.logger.warning(
                    "extraction_strategy_failed",
                    strategy=strategy.name,
                    url=context.url,
                    error=str(e)[:200],
                )
                errors.append((strategy.name, e))
                continue

            if result.is_empty:
                continue

            extraction = self._normalize(result, context)
            extraction.strategy = strategy.name
            extraction.errors = errors
            self.logger.debug(
                "page_extracted",
                strategy=strategy.name,
                url=context.url,
                records=len(extraction.records),
                failed=len(extraction.failures),
                dropped=len(extraction.dropped),
                continuations=len(extraction.continuations),
            )
            return extraction

        return ExtractionResult(
            errors=errors,
            all_strategies_failed=bool(self.strategies) and len(errors) == len(self.strategies),
        )

    def _normalize(self, result: StrategyResult, context: ExtractionContext) -> ExtractionResult:
        extraction = ExtractionResult(
            continuations=list(result.continuations),
            has_next=result.has_next,
        )
        for item in result.items:
            if item.price_unresolved:
                extraction.dropped.append(item)
                continue
            try:
                extraction.records.append(build_record(item, context))
            except Exception as e:
                extraction.failures.append(ItemFailure(item, e))
        return extraction

"""Scraper utilities for normalization, retries and proxy lookup."""

from .normalizer import (
    Quantity,
    UNIT_ALIASES,
    normalize_product_name,
    parse_price,
    parse_quantity,
    price_per_canonical_unit,
    resolve_sale_prices,
    to_canonical_unit,
)
from .proxy import ProxyTable, playwright_proxy_settings
from .retry import RetryExecutor, RetryPolicy, http_retry


__all__ = [
    # Normalization
    "Quantity",
    "UNIT_ALIASES",
    "normalize_product_name",
    "parse_price",
    "parse_quantity",
    "price_per_canonical_unit",
    "resolve_sale_prices",
    "to_canonical_unit",
    # Proxies
    "ProxyTable",
    "playwright_proxy_settings",
    # Retries
    "RetryExecutor",
    "RetryPolicy",
    "http_retry",
]

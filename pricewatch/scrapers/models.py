"""Data structures shared by the scraping engine and the adapters."""

import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Dict, List, Optional, Tuple, Union
from urllib.parse import urlsplit

from pricewatch.scrapers.utils.normalizer import (
    normalize_product_name,
    price_per_canonical_unit,
)


@dataclass
class CanonicalProductRecord:
    """Normalized product record emitted by every extraction strategy."""

    name: str
    price: Decimal  # Major currency unit
    currency: str
    product_url: str  # May be the category URL when items have no own page
    category_name: str
    original_price: Optional[Decimal] = None
    image_url: Optional[str] = None
    external_id: Optional[str] = None  # Site-native id
    brand: Optional[str] = None
    unit: Optional[str] = None  # kg, g, l, ml, pieces or a pass-through unit
    unit_quantity: Optional[float] = None
    is_available: bool = True
    description: Optional[str] = None

    def __post_init__(self):
        """Validate data after initialization."""
        if not self.name or not self.name.strip():
            raise ValueError("name is required")
        if self.price is None or self.price <= 0:
            raise ValueError("price must be a positive Decimal")
        if self.unit_quantity is not None and self.unit_quantity <= 0:
            raise ValueError("unit_quantity must be positive")
        if self.original_price is not None and self.original_price <= self.price:
            raise ValueError("original_price must be greater than price")

    @property
    def is_on_sale(self) -> bool:
        return self.original_price is not None and self.original_price > self.price

    @property
    def price_per_unit(self) -> Optional[Decimal]:
        return price_per_canonical_unit(self.price, self.unit_quantity, self.unit)

    @property
    def normalized_name(self) -> str:
        return normalize_product_name(self.name)

    def to_dict(self) -> Dict[str, Any]:
        """JSON-friendly representation (Decimals as strings)."""
        per_unit = self.price_per_unit
        return {
            "name": self.name,
            "normalized_name": self.normalized_name,
            "price": str(self.price),
            "currency": self.currency,
            "original_price": str(self.original_price) if self.original_price is not None else None,
            "is_on_sale": self.is_on_sale,
            "price_per_unit": str(per_unit) if per_unit is not None else None,
            "image_url": self.image_url,
            "product_url": self.product_url,
            "external_id": self.external_id,
            "brand": self.brand,
            "unit": self.unit,
            "unit_quantity": self.unit_quantity,
            "category_name": self.category_name,
            "is_available": self.is_available,
            "description": self.description,
        }


@dataclass
class RawProduct:
    """Product data as a strategy found it, before normalization.

    Prices may be text ("1,99 €") or numbers. Quantity is either free text
    (``quantity_text``) or already structured (``unit`` + ``unit_quantity``).
    """

    name: Optional[str]
    price: Union[str, int, float, Decimal, None]
    product_url: Optional[str] = None
    original_price: Union[str, int, float, Decimal, None] = None
    currency: Optional[str] = None  # Overrides the site currency
    image_url: Optional[str] = None
    external_id: Optional[str] = None
    brand: Optional[str] = None
    description: Optional[str] = None
    quantity_text: Optional[str] = None
    unit: Optional[str] = None
    unit_quantity: Optional[float] = None
    is_available: bool = True
    price_unresolved: bool = False  # Price depends on a location not yet chosen


@dataclass(frozen=True)
class CategoryNode:
    """A category to traverse; hierarchical sites may list children."""

    id: str
    name: str
    url: str  # Relative to the site base URL, or absolute
    children: Tuple["CategoryNode", ...] = ()

    def absolute_url(self, base_url: str) -> str:
        if self.url.startswith(("http://", "https://")):
            return self.url
        return f"{base_url.rstrip('/')}/{self.url.lstrip('/')}"

    @classmethod
    def from_url(cls, url: str, name: Optional[str] = None) -> "CategoryNode":
        """Build a node from a legacy plain category URL.

        The id is the last path segment, which is also the name unless given.
        """
        path = urlsplit(url).path if "://" in url else url.split("?")[0]
        segments = [s for s in path.split("/") if s]
        slug = segments[-1] if segments else url
        return cls(id=slug, name=name or slug, url=url)


@dataclass(frozen=True)
class BatchMeta:
    """Context delivered with each batch to the result sink."""

    category_id: str
    category_name: str
    page_number: int
    total_on_page: int


@dataclass
class ScrapeError:
    """A contained failure, kept for operator review."""

    context: str  # "category", "page", "product", "session", "persistence", ...
    message: str
    url: Optional[str] = None
    error_type: Optional[str] = None
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "context": self.context,
            "message": self.message,
            "url": self.url,
            "error_type": self.error_type,
            "timestamp": self.timestamp.isoformat(),
        }


@dataclass
class ScrapeStats:
    """Run counters owned by a single scraper instance."""

    supermarket: str
    products_scraped: int = 0
    products_failed: int = 0
    errors: List[ScrapeError] = field(default_factory=list)
    started_at: Optional[float] = None
    finished_at: Optional[float] = None

    def start(self) -> None:
        if self.started_at is None:
            self.started_at = time.monotonic()

    def stop(self) -> None:
        if self.started_at is not None and self.finished_at is None:
            self.finished_at = time.monotonic()

    @property
    def duration(self) -> float:
        """Elapsed seconds since start (frozen once stopped)."""
        if self.started_at is None:
            return 0.0
        end = self.finished_at if self.finished_at is not None else time.monotonic()
        return end - self.started_at

    def record_error(
        self,
        context: str,
        error: Union[BaseException, str],
        url: Optional[str] = None,
    ) -> ScrapeError:
        """Append a contained failure.

        Args:
            context: Scope the failure was contained at
            error: Exception (its class name is kept) or plain message
            url: Page or product URL involved, if any

        Returns:
            The recorded ScrapeError
        """
        if isinstance(error, BaseException):
            entry = ScrapeError(
                context=context,
                message=str(error) or type(error).__name__,
                url=url,
                error_type=type(error).__name__,
            )
        else:
            entry = ScrapeError(context=context, message=error, url=url)
        self.errors.append(entry)
        return entry

    def snapshot(self) -> Dict[str, Any]:
        return {
            "supermarket": self.supermarket,
            "products_scraped": self.products_scraped,
            "products_failed": self.products_failed,
            "error_count": len(self.errors),
            "duration": round(self.duration, 3),
        }


@dataclass
class ScrapeResult:
    """Summary of a finished run."""

    run_id: str
    supermarket: str
    records: List[CanonicalProductRecord]
    products_scraped: int
    products_failed: int
    duration: float
    errors: List[ScrapeError] = field(default_factory=list)
    cancelled: bool = False

    @property
    def success(self) -> bool:
        return self.products_scraped > 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "run_id": self.run_id,
            "supermarket": self.supermarket,
            "success": self.success,
            "cancelled": self.cancelled,
            "products_scraped": self.products_scraped,
            "products_failed": self.products_failed,
            "duration": round(self.duration, 3),
            "errors": [e.to_dict() for e in self.errors],
            "records": [r.to_dict() for r in self.records],
        }

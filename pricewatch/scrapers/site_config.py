"""Per-site scraper configuration and its layered builder.

Precedence, field by field: caller override > adapter default > built-in
fallback. Durations are seconds.
"""

from dataclasses import dataclass, field, fields, replace
from typing import Any, Dict, List, Mapping, Optional, Tuple

import structlog
from pydantic import BaseModel, ConfigDict, Field, ValidationError
from pydantic.alias_generators import to_camel, to_snake

from pricewatch.config import settings
from pricewatch.core.exceptions import ConfigError
from pricewatch.scrapers.models import CategoryNode

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class Selectors:
    """CSS selectors used by DOM extraction and pagination."""

    product_card: Optional[str] = None
    name: Optional[str] = None
    price: Optional[str] = None
    original_price: Optional[str] = None
    quantity: Optional[str] = None
    image: Optional[str] = None
    link: Optional[str] = None
    brand: Optional[str] = None
    unavailable: Optional[str] = None  # Present inside a card when sold out
    next_page: Optional[str] = None

    def merged(self, overrides: Optional[Mapping[str, Optional[str]]]) -> "Selectors":
        """Shallow-merge selector overrides (camelCase or snake_case keys)."""
        if not overrides:
            return self
        known = {f.name for f in fields(self)}
        changes = {}
        for key, value in overrides.items():
            attr = to_snake(key)
            if attr not in known:
                logger.warning("unknown_selector_ignored", selector=key)
                continue
            if value is not None:
                changes[attr] = value
        return replace(self, **changes)


@dataclass(frozen=True)
class WaitTimes:
    """Fixed waits, in seconds."""

    page_load: float = 5.0
    dynamic_content: float = 2.0
    between_requests: float = 1.0
    between_pages: Optional[float] = None


@dataclass(frozen=True)
class ScraperConfig:
    """Immutable configuration a scraper is constructed with."""

    name: str
    base_url: str
    categories: Tuple[CategoryNode, ...] = ()
    selectors: Selectors = field(default_factory=Selectors)
    wait_times: WaitTimes = field(default_factory=WaitTimes)
    max_retries: int = 3
    concurrent_pages: int = 2  # Hint only; categories run sequentially
    user_agents: Tuple[str, ...] = ()
    headers: Mapping[str, str] = field(default_factory=dict)
    cookies: Tuple[Mapping[str, Any], ...] = ()
    proxy_url: Optional[str] = None
    currency: str = "EUR"
    locale: Optional[str] = None
    timezone_id: Optional[str] = None
    navigation_timeout: float = 30.0
    site_id: Optional[str] = None

    def __post_init__(self):
        if not self.name:
            raise ConfigError("Scraper config requires a name")
        if not self.base_url:
            raise ConfigError(f"Scraper config for {self.name} requires a base_url")


class _OverrideModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
    )


class CategoryOverride(_OverrideModel):
    id: str
    name: str
    url: str
    children: List["CategoryOverride"] = Field(default_factory=list)

    def to_node(self) -> CategoryNode:
        return CategoryNode(
            id=self.id,
            name=self.name,
            url=self.url,
            children=tuple(child.to_node() for child in self.children),
        )


CategoryOverride.model_rebuild()


class WaitTimesOverride(_OverrideModel):
    page_load: Optional[float] = Field(default=None, ge=0)
    dynamic_content: Optional[float] = Field(default=None, ge=0)
    between_requests: Optional[float] = Field(default=None, ge=0)
    between_pages: Optional[float] = Field(default=None, ge=0)


class ScraperConfigOverride(_OverrideModel):
    """Partial configuration, used both for adapter defaults and for
    caller-supplied (datastore) overrides. Every field is optional."""

    name: Optional[str] = None
    base_url: Optional[str] = None
    categories: Optional[List[CategoryOverride]] = None
    category_urls: Optional[List[str]] = None
    selectors: Optional[Dict[str, Optional[str]]] = None
    wait_times: Optional[WaitTimesOverride] = None
    max_retries: Optional[int] = Field(default=None, ge=0)
    concurrent_pages: Optional[int] = Field(default=None, ge=1)
    user_agents: Optional[List[str]] = None
    headers: Optional[Dict[str, str]] = None
    cookies: Optional[List[Dict[str, Any]]] = None
    proxy_url: Optional[str] = None
    currency: Optional[str] = None
    locale: Optional[str] = None
    timezone_id: Optional[str] = None

    @classmethod
    def parse(cls, data: Optional[Mapping[str, Any]]) -> "ScraperConfigOverride":
        """Validate a raw mapping.

        Raises:
            ConfigError: If the mapping has invalid values
        """
        if data is None:
            return cls()
        try:
            return cls.model_validate(data)
        except ValidationError as e:
            raise ConfigError(f"Invalid scraper config override: {e}") from e


class ScraperConfigBuilder:
    """Merges adapter defaults and a caller override into a ScraperConfig."""

    FALLBACK_WAIT_TIMES = WaitTimes()
    FALLBACK_CONCURRENT_PAGES = 2

    def __init__(
        self,
        defaults: Optional[ScraperConfigOverride] = None,
        fallback_max_retries: Optional[int] = None,
        navigation_timeout: Optional[float] = None,
    ):
        """Initialize the builder.

        Args:
            defaults: Adapter default configuration
            fallback_max_retries: Built-in retry count (Settings.SCRAPER_MAX_RETRIES)
            navigation_timeout: Per-attempt navigation timeout (Settings.SCRAPER_TIMEOUT)
        """
        self.defaults = defaults or ScraperConfigOverride()
        self.fallback_max_retries = (
            fallback_max_retries
            if fallback_max_retries is not None
            else settings.SCRAPER_MAX_RETRIES
        )
        self.navigation_timeout = (
            navigation_timeout if navigation_timeout is not None else settings.SCRAPER_TIMEOUT
        )

    def build(
        self,
        override: Optional[ScraperConfigOverride] = None,
        *,
        name: Optional[str] = None,
        base_url: Optional[str] = None,
        currency: Optional[str] = None,
        site_id: Optional[str] = None,
    ) -> ScraperConfig:
        """Produce the effective configuration.

        Args:
            override: Caller override (e.g. a datastore record)
            name: Site display name from the base record
            base_url: Site base URL from the base record
            currency: Site currency from the base record
            site_id: Registered adapter id

        Returns:
            Frozen ScraperConfig

        Raises:
            ConfigError: If no name or base_url can be resolved
        """
        override = override or ScraperConfigOverride()
        d = self.defaults

        return ScraperConfig(
            name=_first(override.name, name, d.name),
            base_url=_first(override.base_url, base_url, d.base_url),
            categories=self._categories(override),
            selectors=Selectors().merged(d.selectors).merged(override.selectors),
            wait_times=self._wait_times(override),
            max_retries=_first(override.max_retries, d.max_retries, self.fallback_max_retries),
            concurrent_pages=_first(
                override.concurrent_pages,
                d.concurrent_pages,
                self.FALLBACK_CONCURRENT_PAGES,
            ),
            user_agents=tuple(_first(override.user_agents, d.user_agents, [])),
            headers=dict(_first(override.headers, d.headers, {})),
            cookies=tuple(_first(override.cookies, d.cookies, [])),
            proxy_url=_first(override.proxy_url, d.proxy_url),
            currency=_first(override.currency, currency, d.currency, "EUR"),
            locale=_first(override.locale, d.locale),
            timezone_id=_first(override.timezone_id, d.timezone_id),
            navigation_timeout=self.navigation_timeout,
            site_id=site_id,
        )

    def _categories(self, override: ScraperConfigOverride) -> Tuple[CategoryNode, ...]:
        if override.categories is not None:
            return tuple(c.to_node() for c in override.categories)
        if override.category_urls is not None:
            return tuple(CategoryNode.from_url(url) for url in override.category_urls)
        if self.defaults.categories is not None:
            return tuple(c.to_node() for c in self.defaults.categories)
        if self.defaults.category_urls is not None:
            return tuple(CategoryNode.from_url(url) for url in self.defaults.category_urls)
        return ()

    def _wait_times(self, override: ScraperConfigOverride) -> WaitTimes:
        wait_times = self.FALLBACK_WAIT_TIMES
        for layer in (self.defaults.wait_times, override.wait_times):
            if layer is None:
                continue
            wait_times = replace(wait_times, **layer.model_dump(exclude_none=True))
        return wait_times


def _first(*values):
    """First value that is not None (0 and empty lists are kept)."""
    for value in values:
        if value is not None:
            return value
    return None

"""Registry of site adapters and the factory that configures them."""

import secrets
from dataclasses import dataclass, replace
from typing import Any, Dict, Iterable, List, Mapping, Optional, Type, Union

import structlog

from pricewatch.core.exceptions import ConfigError, UnregisteredAdapterError
from pricewatch.scrapers.base import BaseScraper, SessionFactory
from pricewatch.scrapers.engine.sink import ResultSink
from pricewatch.scrapers.site_config import (
    ScraperConfig,
    ScraperConfigBuilder,
    ScraperConfigOverride,
)
from pricewatch.scrapers.utils.proxy import ProxyTable


logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class AdapterRegistration:
    site_id: str
    scraper_class: Type[BaseScraper]
    defaults: ScraperConfigOverride


@dataclass(frozen=True)
class SiteRecord:
    """Base record of a site as the datastore knows it."""

    site_id: str  # Registered adapter id
    name: str  # Display name, also used for proxy matching
    base_url: str
    currency: Optional[str] = None


def generate_run_id() -> str:
    """Short id correlating the log lines of one run, e.g. ``run-3f9a1c``."""
    return f"run-{secrets.token_hex(3)}"


class ScraperRegistry:
    """Maps site ids to adapter classes and their default configuration.

    Built once at startup, then frozen and passed by reference.
    """

    def __init__(self):
        self._registrations: Dict[str, AdapterRegistration] = {}
        self._frozen = False

    def register(
        self,
        site_id: str,
        scraper_class: Type[BaseScraper],
        defaults: Optional[ScraperConfigOverride] = None,
    ) -> None:
        """Register an adapter class for a site id.

        Raises:
            ConfigError: If the registry is frozen, the id is taken or the
                class is not a BaseScraper
        """
        if self._frozen:
            raise ConfigError(f"Registry is frozen; cannot register {site_id}")
        if not isinstance(scraper_class, type) or not issubclass(scraper_class, BaseScraper):
            raise ConfigError(f"Adapter class must inherit from BaseScraper: {scraper_class}")
        if site_id in self._registrations:
            raise ConfigError(f"Adapter already registered: {site_id}")

        self._registrations[site_id] = AdapterRegistration(
            site_id=site_id,
            scraper_class=scraper_class,
            defaults=defaults or ScraperConfigOverride(),
        )
        logger.debug("adapter_registered", site_id=site_id, adapter=scraper_class.__name__)

    def freeze(self) -> "ScraperRegistry":
        self._frozen = True
        return self

    @property
    def frozen(self) -> bool:
        return self._frozen

    def get(self, site_id: str) -> AdapterRegistration:
        """Look up a registration.

        Raises:
            UnregisteredAdapterError: If nothing is registered under ``site_id``
        """
        registration = self._registrations.get(site_id)
        if registration is None:
            raise UnregisteredAdapterError(site_id, self.ids())
        return registration

    def ids(self) -> List[str]:
        return sorted(self._registrations)

    def __contains__(self, site_id: object) -> bool:
        return site_id in self._registrations

    def __len__(self) -> int:
        return len(self._registrations)


class ScraperFactory:
    """Creates configured scraper instances.

    Applies the process proxy table (by name substring) when a config has no
    explicit proxy, and passes shared construction options through to every
    scraper.
    """

    def __init__(
        self,
        registry: ScraperRegistry,
        proxy_table: Optional[ProxyTable] = None,
        session_factory: Optional[SessionFactory] = None,
        **scraper_options: Any,
    ):
        """Initialize the factory.

        Args:
            registry: Adapter registry (usually frozen)
            proxy_table: Name-substring proxy table (from Settings by default)
            session_factory: Browser session builder (Playwright by default)
            **scraper_options: Extra BaseScraper keyword arguments (limits, sleep, ...)
        """
        if proxy_table is None:
            from pricewatch.config import settings

            proxy_table = ProxyTable.from_settings(settings)
        self.registry = registry
        self.proxy_table = proxy_table
        self.session_factory = session_factory
        self.scraper_options = scraper_options

    def create(
        self,
        config: ScraperConfig,
        sink: Optional[ResultSink] = None,
    ) -> BaseScraper:
        """Instantiate the adapter registered under ``config.site_id``.

        Raises:
            UnregisteredAdapterError: If the site id is unknown
        """
        registration = self.registry.get(config.site_id)

        if config.proxy_url is None:
            proxy_url = self.proxy_table.for_site(config.name)
            if proxy_url:
                config = replace(config, proxy_url=proxy_url)

        scraper = registration.scraper_class(
            config,
            sink=sink,
            session_factory=self.session_factory,
            **self.scraper_options,
        )
        logger.info(
            "scraper_created",
            site_id=config.site_id,
            scraper=config.name,
            categories=len(config.categories),
            has_proxy=bool(config.proxy_url),
        )
        return scraper

    def create_from_override(
        self,
        base_record: SiteRecord,
        override: Union[ScraperConfigOverride, Mapping[str, Any], None] = None,
        category_ids: Optional[Iterable[str]] = None,
        sink: Optional[ResultSink] = None,
    ) -> BaseScraper:
        """Build the effective config for a site record and create its scraper.

        Args:
            base_record: Site id, display name and base URL
            override: Datastore override (validated if given as a mapping)
            category_ids: Only scrape these categories when given

        Raises:
            UnregisteredAdapterError: If the site id is unknown
            ConfigError: If the override is invalid or the config incomplete
        """
        registration = self.registry.get(base_record.site_id)
        if override is not None and not isinstance(override, ScraperConfigOverride):
            override = ScraperConfigOverride.parse(override)

        config = ScraperConfigBuilder(registration.defaults).build(
            override,
            name=base_record.name,
            base_url=base_record.base_url,
            currency=base_record.currency,
            site_id=base_record.site_id,
        )

        if category_ids is not None:
            wanted = set(category_ids)
            selected = tuple(c for c in config.categories if c.id in wanted)
            missing = wanted - {c.id for c in selected}
            if missing:
                logger.warning(
                    "categories_not_found",
                    site_id=base_record.site_id,
                    missing=sorted(missing),
                )
            config = replace(config, categories=selected)

        return self.create(config, sink=sink)

"""Pytest configuration and shared fixtures."""

import random

import pytest

from pricewatch.scrapers.models import CategoryNode
from pricewatch.scrapers.site_config import ScraperConfig, WaitTimes

from .fakes import BASE_URL, CARD_SELECTORS, FakePage, FakeSession, RecordingSleep


@pytest.fixture
def anyio_backend():
    return "asyncio"


@pytest.fixture
def sleep():
    """Injected sleep that records delays."""
    return RecordingSleep()


@pytest.fixture
def rng():
    return random.Random(42)


@pytest.fixture
def fake_page():
    return FakePage()


@pytest.fixture
def fake_session(fake_page):
    return FakeSession(fake_page)


@pytest.fixture
def site_config():
    """Two-category config using the card markup from ``fakes.product_cards``."""
    return ScraperConfig(
        name="Example Market",
        base_url=BASE_URL,
        categories=(
            CategoryNode(id="dairy", name="Dairy", url="/c/dairy"),
            CategoryNode(id="bakery", name="Bakery", url="/c/bakery"),
        ),
        selectors=CARD_SELECTORS,
        wait_times=WaitTimes(page_load=0, dynamic_content=0.5, between_requests=1.0),
        max_retries=2,
        currency="EUR",
        site_id="example",
    )

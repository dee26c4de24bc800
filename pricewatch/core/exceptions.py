"""Custom exception classes for the scraping engine.

Only ConfigError, SessionInitError and UnregisteredAdapterError are allowed
to terminate a run. Everything else is contained at the scope where it
happens and recorded in ScrapeStats.errors.
"""

from typing import Iterable, Optional


class PriceWatchError(Exception):
    """Base exception for all pricewatch errors."""

    def __init__(self, message: str = "An unexpected error occurred"):
        self.message = message
        super().__init__(self.message)


class ConfigError(PriceWatchError):
    """Raised when a scraper configuration is missing a required field."""


class SessionInitError(PriceWatchError):
    """Raised when a browser session cannot be established."""

    def __init__(self, scraper: str, message: str):
        self.scraper = scraper
        super().__init__(f"Could not start session for {scraper}: {message}")


class NavigationError(PriceWatchError):
    """Raised when a page cannot be reached (timeout, network, challenge)."""

    def __init__(self, url: str, message: str):
        self.url = url
        self.reason = message
        super().__init__(f"Navigation to {url} failed: {message}")


class ChallengeUnsolvedError(PriceWatchError):
    """Raised by the challenge solver when the bot wall did not clear."""

    def __init__(self, attempts: int):
        self.attempts = attempts
        super().__init__(f"Challenge still present after {attempts} solve attempts")


class ExtractionError(PriceWatchError):
    """Raised when a page does not have the shape a strategy expects."""

    def __init__(self, strategy: str, message: str):
        self.strategy = strategy
        super().__init__(f"{strategy}: {message}")


class ParseError(PriceWatchError):
    """Raised when a price (or other required field) cannot be parsed."""

    def __init__(self, text: object, message: str = "unparseable value"):
        self.text = text
        super().__init__(f"{message}: {text!r}")


class PersistenceError(PriceWatchError):
    """Raised when a result sink rejects a batch."""


class UnregisteredAdapterError(PriceWatchError):
    """Raised when the factory is asked for a site id nobody registered."""

    def __init__(self, site_id: str, known_ids: Iterable[str]):
        self.site_id = site_id
        self.known_ids = sorted(known_ids)
        known = ", ".join(self.known_ids) or "<none>"
        super().__init__(f"Scraper not found for: {site_id}. Available scrapers: {known}")


class RetryExhausted(PriceWatchError):
    """Raised by RetryExecutor after the last allowed attempt failed."""

    def __init__(self, last_error: Optional[BaseException], attempts: int):
        self.last_error = last_error
        self.attempts = attempts
        super().__init__(f"Failed after {attempts} attempts: {last_error}")

"""Browser capability interfaces consumed by the engine.

The engine never talks to Playwright directly; it drives a PageController
owned by a ScrapeSession. ``browser.py`` provides the Playwright-backed
implementation and the test suite provides in-memory fakes.
"""

from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Protocol, runtime_checkable


@dataclass(frozen=True)
class BoundingBox:
    """Viewport coordinates of an element, in CSS pixels."""

    x: float
    y: float
    width: float
    height: float

    @property
    def center(self):
        return self.x + self.width / 2, self.y + self.height / 2


@runtime_checkable
class PageController(Protocol):
    """A single live browser tab."""

    async def goto(self, url: str, timeout: float) -> None:
        """Navigate and wait for DOMContentLoaded (timeout in seconds)."""
        ...

    async def title(self) -> str:
        ...

    async def content(self) -> str:
        """Rendered HTML of the main frame."""
        ...

    async def current_url(self) -> str:
        ...

    async def locate(
        self, selector: str, frame_selector: Optional[str] = None
    ) -> Optional[BoundingBox]:
        """Bounding box of the first visible match, or None.

        With ``frame_selector`` the selector is resolved inside that iframe
        and the box is translated to page coordinates.
        """
        ...

    async def click(self, selector: str) -> bool:
        """Click the first match; False when nothing matched."""
        ...

    async def fill(self, selector: str, value: str) -> bool:
        """Type into the first matching input; False when nothing matched."""
        ...

    async def mouse_move(self, x: float, y: float, steps: int = 1) -> None:
        ...

    async def mouse_click(self, x: float, y: float) -> None:
        ...

    async def count(self, selector: str) -> int:
        ...

    async def exists(self, selector: str) -> bool:
        ...

    async def scroll_to_bottom(self) -> None:
        ...

    async def evaluate(self, script: str, arg: Any = None) -> Any:
        ...

    async def cookies(self) -> List[Dict[str, Any]]:
        """Session cookies as Playwright-style dicts (name, value, domain...)."""
        ...

    async def user_agent(self) -> str:
        ...

    async def screenshot(self, path: str) -> None:
        ...


@runtime_checkable
class ScrapeSession(Protocol):
    """Owns one browser context for the lifetime of a scraper instance."""

    async def open(self) -> PageController:
        """Start the browser and return the session's page."""
        ...

    async def close(self) -> None:
        """Release every resource; safe to call repeatedly or before open()."""
        ...

"""Site-independent scraping engine."""

from .challenge import CLOUDFLARE_TURNSTILE, ChallengeSettings, ChallengeSolver, ChallengeState
from .extraction import (
    ApiReplayStrategy,
    DomCardStrategy,
    EmbeddedStateStrategy,
    ExtractionPipeline,
    ExtractionResult,
)
from .navigation import NavigationController
from .page import BoundingBox, PageController, ScrapeSession
from .sink import CallbackSink, CollectingSink, ResultSink
from .traversal import CategoryTraversal, TraversalLimits, TraversalMode

__all__ = [
    "BoundingBox",
    "PageController",
    "ScrapeSession",
    "ChallengeSettings",
    "ChallengeSolver",
    "ChallengeState",
    "CLOUDFLARE_TURNSTILE",
    "NavigationController",
    "ApiReplayStrategy",
    "EmbeddedStateStrategy",
    "DomCardStrategy",
    "ExtractionPipeline",
    "ExtractionResult",
    "CategoryTraversal",
    "TraversalLimits",
    "TraversalMode",
    "ResultSink",
    "CollectingSink",
    "CallbackSink",
]

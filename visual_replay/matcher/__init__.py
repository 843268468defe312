"""
Resilient element matching and sequential replay.
"""

from visual_replay.matcher.driver import PlaywrightInteractionDriver
from visual_replay.matcher.playwright_page import PlaywrightPageHandle
from visual_replay.matcher.replay import ReplayReport, StepOutcome, WorkflowReplayer
from visual_replay.matcher.resilient_matcher import ResilientMatcher
from visual_replay.matcher.similarity import (
    CompositeSimilarityScorer,
    compare_images,
    position_proximity,
    relative_center,
    size_proximity,
    surrounding_overlap,
    text_similarity,
)
from visual_replay.matcher.strategies import (
    MatchingStrategy,
    SelectorStrategy,
    VisualStrategy,
)

__all__ = [
    "PlaywrightInteractionDriver",
    "PlaywrightPageHandle",
    "ReplayReport",
    "StepOutcome",
    "WorkflowReplayer",
    "ResilientMatcher",
    "CompositeSimilarityScorer",
    "compare_images",
    "position_proximity",
    "relative_center",
    "size_proximity",
    "surrounding_overlap",
    "text_similarity",
    "MatchingStrategy",
    "SelectorStrategy",
    "VisualStrategy",
]

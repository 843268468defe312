"""
Individual element-location strategies used by the resilient matcher.
"""

import math
from abc import ABC, abstractmethod
from typing import List, Optional, Tuple

from visual_replay.core.interfaces import PageHandle, SimilarityScorer
from visual_replay.core.types import (
    ElementCandidate,
    MatchResult,
    MatchStrategy,
    ResolvedAction,
)
from visual_replay.matcher.similarity import relative_center, relative_distance
from visual_replay.monitoring.logger import get_logger

logger = get_logger(__name__)


class MatchingStrategy(ABC):
    """One way of relocating the target of a step."""

    kind: MatchStrategy = MatchStrategy.NONE

    @abstractmethod
    def applies_to(self, action: ResolvedAction) -> bool:
        """Whether the step carries the evidence this strategy needs."""
        pass

    @abstractmethod
    async def locate(
        self, action: ResolvedAction, page: PageHandle, threshold: float
    ) -> MatchResult:
        pass


class SelectorStrategy(MatchingStrategy):
    """
    Relocates a target through its backup CSS selector.

    The selector must resolve to exactly one element. When a text was
    recorded, the element's text must contain it or be contained by it.
    """

    kind = MatchStrategy.SELECTOR

    def applies_to(self, action: ResolvedAction) -> bool:
        return bool(action.backup_selector)

    async def locate(
        self, action: ResolvedAction, page: PageHandle, threshold: float
    ) -> MatchResult:
        selector = action.backup_selector
        if not selector:
            return MatchResult.failure("No backup selector", strategy_used=self.kind)

        count = await page.count_selector(selector)
        if count == 0:
            return MatchResult.failure(
                f"Selector not found: {selector}", strategy_used=self.kind, selector=selector
            )
        if count > 1:
            return MatchResult.failure(
                f"Selector is ambiguous: {selector} matched {count} elements",
                strategy_used=self.kind,
                selector=selector,
            )

        candidate = await page.selector_candidate(selector)
        if candidate is None:
            return MatchResult.failure(
                f"Selector not found: {selector}", strategy_used=self.kind, selector=selector
            )

        recorded_text = (action.fingerprint.text if action.fingerprint else "").strip()
        element_text = (candidate.text or "").strip()
        if recorded_text and element_text:
            if recorded_text not in element_text and element_text not in recorded_text:
                return MatchResult.failure(
                    f'Text mismatch at {selector}: expected "{recorded_text}", got "{element_text[:50]}"',
                    strategy_used=self.kind,
                    selector=selector,
                )

        return MatchResult(
            success=True,
            strategy_used=self.kind,
            confidence=1.0,
            resolved_position=candidate.bounding_box.center if candidate.bounding_box else None,
            selector=selector,
        )


class VisualStrategy(MatchingStrategy):
    """
    Relocates a target by scoring live candidates against its fingerprint.

    Candidates are ranked by composite confidence, then by distance to the
    recorded relative position. The best one is accepted at or above the
    threshold.
    """

    kind = MatchStrategy.VISUAL

    def __init__(self, scorer: SimilarityScorer, screenshot_radius_percent: float = 30.0):
        """
        Args:
            scorer: Similarity scorer for fingerprint/candidate pairs
            screenshot_radius_percent: Candidates farther than this from the
                recorded position are scored without a screenshot
        """
        self.scorer = scorer
        self.screenshot_radius_percent = screenshot_radius_percent

    def applies_to(self, action: ResolvedAction) -> bool:
        return action.fingerprint is not None

    def _wants_screenshot(self, action: ResolvedAction) -> bool:
        wants = getattr(self.scorer, "wants_screenshot", None)
        if wants is not None:
            return wants(action.fingerprint)
        return bool(action.fingerprint.screenshot)

    async def locate(
        self, action: ResolvedAction, page: PageHandle, threshold: float
    ) -> MatchResult:
        fingerprint = action.fingerprint
        if fingerprint is None:
            return MatchResult.failure("No visual fingerprint", strategy_used=self.kind)

        viewport = await page.viewport() or fingerprint.viewport
        candidates = await page.find_candidates(fingerprint)
        if not candidates:
            return MatchResult.failure("No candidate elements found", strategy_used=self.kind)

        recorded_point = fingerprint.relative_point
        take_screenshots = self._wants_screenshot(action)
        ranked: List[Tuple[float, float, ElementCandidate, dict]] = []

        for candidate in candidates:
            distance = math.inf
            if candidate.bounding_box and viewport:
                distance = relative_distance(
                    recorded_point, relative_center(candidate.bounding_box, viewport)
                )

            image: Optional[bytes] = None
            if take_screenshots and (
                recorded_point is None or distance <= self.screenshot_radius_percent
            ):
                image = await page.screenshot_candidate(candidate)

            signals = self.scorer.score(fingerprint, candidate, viewport, image)
            ranked.append((signals.get("confidence", 0.0), distance, candidate, signals))

        ranked.sort(key=lambda item: (-item[0], item[1]))
        confidence, distance, best, signals = ranked[0]

        logger.debug(
            "Visual candidates scored",
            extra={
                "step": action.name,
                "candidate_count": len(ranked),
                "best_confidence": confidence,
                "threshold": threshold,
            },
        )

        if confidence < threshold:
            return MatchResult.failure(
                f"Best visual match confidence {confidence:.2f} below threshold {threshold:.2f}",
                strategy_used=self.kind,
                confidence=confidence,
                signals=signals,
            )

        return MatchResult(
            success=True,
            strategy_used=self.kind,
            confidence=confidence,
            resolved_position=best.bounding_box.center if best.bounding_box else None,
            selector=best.selector,
            signals=signals,
        )

"""
Resilient matcher: relocates a recorded element through a strategy chain.
"""

import asyncio
import time
from typing import Any, Dict, List, Optional, Union

from visual_replay.config.settings import Settings, get_settings
from visual_replay.core.interfaces import PageHandle, SimilarityScorer
from visual_replay.core.types import (
    Action,
    ExecutionMethod,
    MatchResult,
    MatchStrategy,
    ResolvedAction,
)
from visual_replay.matcher.similarity import CompositeSimilarityScorer
from visual_replay.matcher.strategies import (
    MatchingStrategy,
    SelectorStrategy,
    VisualStrategy,
)
from visual_replay.monitoring.logger import get_logger, log_performance_metric
from visual_replay.workflow.expansion import resolve_action

logger = get_logger(__name__)


class ResilientMatcher:
    """
    Finds the live element for a step using its execution method.

    - ``selectorFirst``: backup selector, then the fingerprint if one exists
    - ``visualFirst``: fingerprint, then the backup selector if one exists
    - ``visualOnly``: fingerprint only

    Misses and page errors come back as a failed ``MatchResult``; nothing
    is raised to the caller.
    """

    def __init__(
        self,
        scorer: Optional[SimilarityScorer] = None,
        settings: Optional[Settings] = None,
    ):
        """
        Initialize the matcher.

        Args:
            scorer: Similarity scorer for the visual strategy
            settings: Threshold, retry, delay and scorer configuration
        """
        self.settings = settings or get_settings()
        self.scorer = scorer or CompositeSimilarityScorer(settings=self.settings)
        self.selector_strategy = SelectorStrategy()
        self.visual_strategy = VisualStrategy(self.scorer)

        # Match statistics
        self.stats = {
            "total_matches": 0,
            "selector_successes": 0,
            "visual_successes": 0,
            "fallbacks_used": 0,
            "failures": 0,
            "retries": 0,
        }

    def strategy_chain(self, action: ResolvedAction) -> List[MatchingStrategy]:
        """Strategies to try, in order, for a step's execution method."""
        method = action.execution_method
        if method == ExecutionMethod.VISUAL_ONLY:
            ordered = [self.visual_strategy]
        elif method == ExecutionMethod.SELECTOR_FIRST:
            ordered = [self.selector_strategy, self.visual_strategy]
        else:
            ordered = [self.visual_strategy, self.selector_strategy]
        return [strategy for strategy in ordered if strategy.applies_to(action)]

    def threshold_for_attempt(self, attempt: int) -> float:
        """Acceptance threshold, relaxed linearly over the retries."""
        strict = self.settings.matcher_acceptance_threshold
        relaxed = self.settings.matcher_relaxed_threshold
        retries = self.settings.matcher_max_retries
        if retries <= 0 or attempt <= 0:
            return strict
        return strict - (strict - relaxed) * min(attempt, retries) / retries

    async def match(
        self, action: Union[ResolvedAction, Action, Dict[str, Any]], page: PageHandle
    ) -> MatchResult:
        """
        Relocate the target of one step.

        Args:
            action: Resolved step, or a canonical action to resolve first
            page: Live page to search

        Returns:
            Match result; ``success`` is False when no strategy succeeded
        """
        if not isinstance(action, ResolvedAction):
            action = resolve_action(action)

        self.stats["total_matches"] += 1
        start_time = time.time()

        chain = self.strategy_chain(action)
        if not chain:
            self.stats["failures"] += 1
            if action.execution_method == ExecutionMethod.VISUAL_ONLY:
                return MatchResult.failure("visualOnly step has no visual fingerprint")
            return MatchResult.failure("No fingerprint or backup selector available")

        errors: List[str] = []
        best_confidence = 0.0
        best_signals: Dict[str, float] = {}
        attempts = self.settings.matcher_max_retries + 1

        for attempt in range(attempts):
            threshold = self.threshold_for_attempt(attempt)
            if attempt > 0:
                self.stats["retries"] += 1
                await asyncio.sleep(self.settings.matcher_retry_delay_ms / 1000)

            for position, strategy in enumerate(chain):
                result = await self._attempt(strategy, action, page, threshold)
                if result.success:
                    result.attempts = attempt + 1
                    self._record_success(result, position > 0)
                    elapsed_ms = (time.time() - start_time) * 1000
                    log_performance_metric(
                        "element_match",
                        elapsed_ms,
                        context={
                            "step": action.name,
                            "strategy": result.strategy_used.value,
                            "confidence": result.confidence,
                        },
                    )
                    return result

                errors.append(f"{strategy.kind.value}: {result.error}")
                if result.confidence > best_confidence:
                    best_confidence = result.confidence
                    best_signals = result.signals

        self.stats["failures"] += 1
        logger.warning(
            "Element not found",
            extra={
                "step": action.name,
                "execution_method": action.execution_method.value,
                "attempts": attempts,
                "errors": errors,
            },
        )
        return MatchResult.failure(
            "; ".join(errors[-len(chain):]),
            confidence=best_confidence,
            signals=best_signals,
            attempts=attempts,
        )

    async def _attempt(
        self,
        strategy: MatchingStrategy,
        action: ResolvedAction,
        page: PageHandle,
        threshold: float,
    ) -> MatchResult:
        try:
            return await strategy.locate(action, page, threshold)
        except Exception as e:
            logger.warning(
                "Match strategy failed with page error",
                extra={"strategy": strategy.kind.value, "step": action.name, "error": str(e)},
            )
            return MatchResult.failure(
                f"Page error: {e}", strategy_used=strategy.kind
            )

    def _record_success(self, result: MatchResult, fallback: bool) -> None:
        if result.strategy_used == MatchStrategy.SELECTOR:
            self.stats["selector_successes"] += 1
        elif result.strategy_used == MatchStrategy.VISUAL:
            self.stats["visual_successes"] += 1
        if fallback:
            self.stats["fallbacks_used"] += 1

        logger.info(
            "Element matched",
            extra={
                "strategy": result.strategy_used.value,
                "confidence": result.confidence,
                "fallback": fallback,
            },
        )

    def get_stats(self) -> Dict[str, Any]:
        """Match statistics with success rates."""
        total = self.stats["total_matches"]
        successes = self.stats["selector_successes"] + self.stats["visual_successes"]
        return {
            **self.stats,
            "success_rate": successes / total if total else 0.0,
            "fallback_rate": self.stats["fallbacks_used"] / total if total else 0.0,
        }

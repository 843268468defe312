"""
Sequential replay of resolved workflow steps.
"""

import time
from typing import Any, Dict, List, Optional, Sequence

from pydantic import Field

from visual_replay.core.interfaces import InteractionDriver, PageHandle
from visual_replay.core.types import ActionType, CamelModel, MatchResult, ResolvedAction
from visual_replay.matcher.resilient_matcher import ResilientMatcher
from visual_replay.monitoring.logger import get_logger

logger = get_logger(__name__)


class StepOutcome(CamelModel):
    """Result of replaying one step."""

    step_index: int
    name: str
    type: ActionType
    success: bool
    match: Optional[MatchResult] = None
    error: Optional[str] = None
    duration_ms: float = 0.0


class ReplayReport(CamelModel):
    """Outcome of a full replay."""

    success: bool = True
    outcomes: List[StepOutcome] = Field(default_factory=list)
    stats: Dict[str, Any] = Field(default_factory=dict)

    @property
    def completed_steps(self) -> int:
        return sum(1 for outcome in self.outcomes if outcome.success)

    @property
    def failed_steps(self) -> List[StepOutcome]:
        return [outcome for outcome in self.outcomes if not outcome.success]


class WorkflowReplayer:
    """
    Drives resolved steps one at a time: match, execute, next.

    Steps without a target element go straight to the driver.
    """

    def __init__(
        self,
        matcher: ResilientMatcher,
        driver: InteractionDriver,
        stop_on_failure: bool = True,
    ):
        self.matcher = matcher
        self.driver = driver
        self.stop_on_failure = stop_on_failure

    async def replay(
        self, actions: Sequence[ResolvedAction], page: PageHandle
    ) -> ReplayReport:
        """
        Replay steps in order.

        Args:
            actions: Resolved steps, e.g. from ``expand_workflow``
            page: Page handle the matcher inspects

        Returns:
            Report with one outcome per attempted step
        """
        report = ReplayReport()

        for action in actions:
            outcome = await self._replay_step(action, page)
            report.outcomes.append(outcome)
            if not outcome.success:
                report.success = False
                if self.stop_on_failure:
                    logger.warning(
                        "Replay stopped at failed step",
                        extra={"step_index": action.step_index, "step": action.name},
                    )
                    break

        report.stats = self.matcher.get_stats()
        logger.info(
            "Replay finished",
            extra={
                "success": report.success,
                "completed_steps": report.completed_steps,
                "total_steps": len(actions),
            },
        )
        return report

    async def _replay_step(self, action: ResolvedAction, page: PageHandle) -> StepOutcome:
        start_time = time.time()
        match: Optional[MatchResult] = None

        if action.is_targeted:
            match = await self.matcher.match(action, page)
            if not match.success:
                return StepOutcome(
                    step_index=action.step_index,
                    name=action.name,
                    type=action.type,
                    success=False,
                    match=match,
                    error=match.error,
                    duration_ms=(time.time() - start_time) * 1000,
                )

        try:
            await self.driver.perform(action, match)
        except Exception as e:
            logger.error(
                "Step execution failed",
                extra={"step_index": action.step_index, "step": action.name, "error": str(e)},
            )
            return StepOutcome(
                step_index=action.step_index,
                name=action.name,
                type=action.type,
                success=False,
                match=match,
                error=str(e),
                duration_ms=(time.time() - start_time) * 1000,
            )

        return StepOutcome(
            step_index=action.step_index,
            name=action.name,
            type=action.type,
            success=True,
            match=match,
            duration_ms=(time.time() - start_time) * 1000,
        )

"""
Optimization and size validation of fingerprint payloads before persistence.

Budgets (defaults, configurable through Settings):
- Warns if a single action is above 100KB
- Rejects a single action above 500KB
- Suggests splitting a workflow whose total is above 5MB
"""

import warnings
from typing import Any, Dict, Iterable, List, Optional, Tuple

from visual_replay.config.settings import get_settings
from visual_replay.core.types import (
    Action,
    BatchSizeValidationResult,
    Fingerprint,
    RecordedAction,
    ResolvedAction,
    SizeValidationResult,
)
from visual_replay.error_handling.exceptions import (
    OptimizationFault,
    SizeLimitExceeded,
    SizeLimitWarning,
)
from visual_replay.monitoring.logger import get_logger
from visual_replay.optimizer.image import image_size_kb, is_path_reference, optimize_image

logger = get_logger(__name__)

SCREENSHOT_FIELDS = ("screenshot", "contextScreenshot")
FINGERPRINT_KEYS = ("visual", "fingerprint")


def _locate_fingerprint(params: Any) -> Tuple[Optional[str], Optional[Dict[str, Any]]]:
    """Find the fingerprint inside params: nested under a key, or params itself."""
    if not isinstance(params, dict):
        return None, None
    for key in FINGERPRINT_KEYS:
        value = params.get(key)
        if isinstance(value, Fingerprint):
            return key, value.model_dump(by_alias=True, exclude_none=True)
        if isinstance(value, dict):
            return key, value
    if any(name in params for name in SCREENSHOT_FIELDS + ("context_screenshot",)):
        return None, params
    return None, None


def _screenshot_values(fingerprint: Dict[str, Any]) -> List[Optional[str]]:
    return [
        fingerprint.get("screenshot"),
        fingerprint.get("contextScreenshot", fingerprint.get("context_screenshot")),
    ]


def _params_of(action: Any) -> Any:
    if isinstance(action, (Action, ResolvedAction)):
        params = dict(action.params)
        if isinstance(action, ResolvedAction) and action.fingerprint is not None:
            params["visual"] = action.fingerprint
        return params
    if isinstance(action, RecordedAction):
        return {"visual": action.visual} if action.visual else {}
    if isinstance(action, dict):
        if "params" in action:
            return action.get("params") or {}
        # Raw recorder entries and bare params are searched as they are
        return action
    return {}


def calculate_visual_data_size(params: Any) -> float:
    """
    Total inline screenshot size of a params object in KB.

    Args:
        params: Action params, a fingerprint dict, or a dict holding one

    Returns:
        Size in KB; path references count as zero
    """
    _, fingerprint = _locate_fingerprint(params)
    if fingerprint is None:
        return 0.0
    return round(sum(image_size_kb(value) for value in _screenshot_values(fingerprint)), 2)


def optimize_visual_data(
    params: Any,
    quality: Optional[int] = None,
    max_width: Optional[int] = None,
    max_height: Optional[int] = None,
) -> Any:
    """
    Shrink every inline screenshot of a params object.

    Optimization is best-effort: a screenshot that cannot be processed is
    kept unchanged and a warning is logged. The input is never mutated.

    Args:
        params: Action params holding a fingerprint
        quality: Recompression quality (defaults to settings)
        max_width: Maximum screenshot width (defaults to settings)
        max_height: Maximum screenshot height (defaults to settings)

    Returns:
        New params with optimized screenshots, or ``params`` itself when there
        is nothing to optimize
    """
    key, fingerprint = _locate_fingerprint(params)
    if fingerprint is None:
        return params

    settings = get_settings()
    quality = quality or settings.screenshot_quality
    max_width = max_width or settings.screenshot_max_width
    max_height = max_height or settings.screenshot_max_height

    optimized = dict(fingerprint)
    for field_name in SCREENSHOT_FIELDS + ("context_screenshot",):
        value = fingerprint.get(field_name)
        if not value or is_path_reference(value):
            continue
        try:
            optimized[field_name] = optimize_image(value, quality, max_width, max_height)
        except OptimizationFault as e:
            logger.warning(
                "Keeping original screenshot, optimization failed",
                extra={"field_name": field_name, "error": e.message},
            )
            optimized[field_name] = value

    if key is None:
        return optimized
    return {**params, key: optimized}


def validate_visual_data_size(
    params: Any,
    warning_kb: Optional[float] = None,
    limit_kb: Optional[float] = None,
) -> SizeValidationResult:
    """
    Check one action against the per-action size budgets.

    Args:
        params: Action params holding a fingerprint
        warning_kb: Soft target (defaults to settings)
        limit_kb: Hard limit (defaults to settings)

    Returns:
        Result with a warning above the soft target and an error above the hard limit
    """
    if warning_kb is None or limit_kb is None:
        settings = get_settings()
        warning_kb = settings.size_warning_kb if warning_kb is None else warning_kb
        limit_kb = settings.size_limit_kb if limit_kb is None else limit_kb

    size_kb = calculate_visual_data_size(params)
    result = SizeValidationResult(valid=True, size_kb=size_kb)

    if size_kb > warning_kb:
        result.warnings.append(
            f"Action size is {size_kb}KB (recommended: <{warning_kb:g}KB). "
            "Consider optimizing screenshots."
        )

    if size_kb > limit_kb:
        result.valid = False
        result.errors.append(
            f"Action size is {size_kb}KB (max: {limit_kb:g}KB). "
            "Please optimize or split the action."
        )

    return result


def validate_total_size(
    actions: Iterable[Any],
    warning_kb: Optional[float] = None,
    limit_kb: Optional[float] = None,
    advisory_kb: Optional[float] = None,
) -> BatchSizeValidationResult:
    """
    Validate every action and the aggregate of a batch.

    Any individual hard failure invalidates the batch. The aggregate advisory
    is only a warning and never fails it.

    Args:
        actions: Actions, resolved steps, recorded actions or their dicts
        warning_kb: Per-action soft target (defaults to settings)
        limit_kb: Per-action hard limit (defaults to settings)
        advisory_kb: Aggregate advisory budget (defaults to settings)

    Returns:
        Batch result carrying ``total_size_kb`` and the individual results
    """
    if advisory_kb is None:
        advisory_kb = get_settings().workflow_size_advisory_kb

    result = BatchSizeValidationResult(valid=True)
    total_size_kb = 0.0

    for action in actions:
        individual = validate_visual_data_size(_params_of(action), warning_kb, limit_kb)
        total_size_kb += individual.size_kb
        if not individual.valid:
            result.valid = False
            result.errors.extend(individual.errors)
        result.warnings.extend(individual.warnings)
        result.results.append(individual)

    result.total_size_kb = round(total_size_kb, 2)

    if total_size_kb > advisory_kb:
        result.warnings.append(
            f"Total size is {total_size_kb / 1024:.2f}MB "
            f"(recommended: <{advisory_kb / 1024:g}MB). "
            "Consider splitting into smaller workflows."
        )

    return result


def ensure_persistable(params: Any) -> SizeValidationResult:
    """
    Gate a single action at the persistence boundary.

    Raises:
        SizeLimitExceeded: If the payload is above the hard limit
    """
    result = validate_visual_data_size(params)
    settings = get_settings()

    if not result.valid:
        logger.error(
            "Action rejected, fingerprint above size limit",
            extra={"size_kb": result.size_kb, "limit_kb": settings.size_limit_kb},
        )
        raise SizeLimitExceeded(
            "; ".join(result.errors),
            size_kb=result.size_kb,
            limit_kb=settings.size_limit_kb,
            errors=result.errors,
        )

    for message in result.warnings:
        logger.warning(message, extra={"size_kb": result.size_kb})
        warnings.warn(message, SizeLimitWarning, stacklevel=2)

    return result


def prepare_actions_for_storage(
    actions: List[Dict[str, Any]],
) -> Tuple[List[Dict[str, Any]], BatchSizeValidationResult]:
    """
    Optimize and validate a batch of canonical action dicts before import.

    Args:
        actions: Canonical action dicts, each with ``params``

    Returns:
        Optimized copies of the actions and the batch validation result

    Raises:
        SizeLimitExceeded: If any action stays above the hard limit after optimization
    """
    optimized_actions = [
        {**action, "params": optimize_visual_data(action.get("params") or {})}
        for action in actions
    ]

    validation = validate_total_size(optimized_actions)
    if not validation.valid:
        settings = get_settings()
        oversized = max((r.size_kb for r in validation.results), default=0.0)
        raise SizeLimitExceeded(
            "; ".join(validation.errors),
            size_kb=oversized,
            limit_kb=settings.size_limit_kb,
            errors=validation.errors,
            details={"total_size_kb": validation.total_size_kb},
        )

    if validation.warnings:
        logger.warning(
            "Size warnings while preparing actions for storage",
            extra={
                "warnings": validation.warnings,
                "total_size_kb": validation.total_size_kb,
            },
        )

    return optimized_actions, validation

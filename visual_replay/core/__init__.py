"""
Core module exports.
"""

from visual_replay.core.interfaces import (
    InteractionDriver,
    PageChangeSource,
    PageEventSource,
    PageHandle,
    ScreenshotProvider,
    SimilarityScorer,
)
from visual_replay.core.types import (
    TARGETED_ACTION_TYPES,
    canonicalize_params,
    Action,
    ActionType,
    BatchSizeValidationResult,
    BoundingBox,
    CaptureEvent,
    ElementCandidate,
    ElementInfo,
    ExecutionMethod,
    Fingerprint,
    IngestionShape,
    MatchResult,
    MatchStrategy,
    PageChange,
    Point,
    Position,
    RecordedAction,
    RecordingDocument,
    ResolvedAction,
    SizeValidationResult,
    UploadedFile,
    Viewport,
    Workflow,
    WorkflowStep,
)

__all__ = [
    # Types
    "TARGETED_ACTION_TYPES",
    "canonicalize_params",
    "Action",
    "ActionType",
    "BatchSizeValidationResult",
    "BoundingBox",
    "CaptureEvent",
    "ElementCandidate",
    "ElementInfo",
    "ExecutionMethod",
    "Fingerprint",
    "IngestionShape",
    "MatchResult",
    "MatchStrategy",
    "PageChange",
    "Point",
    "Position",
    "RecordedAction",
    "RecordingDocument",
    "ResolvedAction",
    "SizeValidationResult",
    "UploadedFile",
    "Viewport",
    "Workflow",
    "WorkflowStep",
    # Interfaces
    "InteractionDriver",
    "PageChangeSource",
    "PageEventSource",
    "PageHandle",
    "ScreenshotProvider",
    "SimilarityScorer",
]

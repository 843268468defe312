"""
Error handling module exports.
"""

from visual_replay.error_handling.exceptions import (
    CaptureFault,
    ConversionError,
    ConversionPreconditionError,
    InteractionError,
    OptimizationFault,
    SizeLimitExceeded,
    SizeLimitWarning,
    VisualReplayError,
)

__all__ = [
    "VisualReplayError",
    "CaptureFault",
    "OptimizationFault",
    "SizeLimitExceeded",
    "SizeLimitWarning",
    "ConversionError",
    "ConversionPreconditionError",
    "InteractionError",
]

"""
Capture of live page interactions into recorded actions.
"""

from visual_replay.recorder.enrichment import EnrichmentQueue
from visual_replay.recorder.handlers import (
    ContainerRegistry,
    NavigationTracker,
    ScrollAccumulator,
    TypingBuffer,
    TypingState,
    field_key,
    strip_fragment,
)
from visual_replay.recorder.playwright_bridge import (
    BINDING_NAME,
    RECORDER_SCRIPT,
    PlaywrightChangeSource,
    PlaywrightEventSource,
    PlaywrightRecorderBridge,
    PlaywrightScreenshotProvider,
)
from visual_replay.recorder.session import CaptureSession

__all__ = [
    "BINDING_NAME",
    "CaptureSession",
    "EnrichmentQueue",
    "ContainerRegistry",
    "NavigationTracker",
    "ScrollAccumulator",
    "TypingBuffer",
    "TypingState",
    "field_key",
    "strip_fragment",
    "RECORDER_SCRIPT",
    "PlaywrightChangeSource",
    "PlaywrightEventSource",
    "PlaywrightRecorderBridge",
    "PlaywrightScreenshotProvider",
]

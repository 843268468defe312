"""
Debounced capture state for typing, scrolling, navigation and inserted containers.

Every handler holds a reference to its owning session and reports finished
actions back to it. None of them keep module-level state.
"""

import asyncio
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Dict, Optional, Set
from urllib.parse import urldefrag

from visual_replay.core.interfaces import PageChangeSource
from visual_replay.core.types import CaptureEvent, ElementInfo, Fingerprint, PageChange
from visual_replay.monitoring.logger import get_logger

if TYPE_CHECKING:
    from visual_replay.recorder.session import CaptureSession

logger = get_logger(__name__)


def field_key(element: Optional[ElementInfo]) -> str:
    """Identity of an input field, preferring its selector."""
    if element is None:
        return "unknown"
    return (
        element.selector
        or (f"#{element.element_id}" if element.element_id else None)
        or (f'{element.tag}[name="{element.name}"]' if element.name else None)
        or (f'{element.tag}[placeholder="{element.placeholder}"]' if element.placeholder else None)
        or element.tag
    )


@dataclass
class TypingState:
    """Buffered edits of one field."""

    key: str
    field_name: str
    element: Optional[ElementInfo]
    start_time: float
    url: Optional[str] = None
    value: str = ""
    end_time: float = 0.0
    visual: Optional[Fingerprint] = None
    visual_captured: bool = False
    timer: Optional[asyncio.TimerHandle] = field(default=None, repr=False)


class TypingBuffer:
    """
    Collapses keystrokes into one type action per field.

    The fingerprint is taken from the first keystroke only. Each further
    input or refocus of the same field restarts that field's timer.
    """

    def __init__(self, session: "CaptureSession", debounce_ms: int):
        self.session = session
        self.debounce_seconds = debounce_ms / 1000
        self._states: Dict[str, TypingState] = {}

    @property
    def pending(self) -> int:
        return len(self._states)

    def on_input(self, event: CaptureEvent) -> None:
        name = field_key(event.element)
        state = self._states.get(name)
        if state is None:
            state = TypingState(
                key=self.session.next_key(event.timestamp),
                field_name=name,
                element=event.element,
                start_time=event.timestamp,
                url=event.url,
            )
            self._states[name] = state

        state.value = event.value or ""
        state.end_time = event.timestamp

        if not state.visual_captured and event.fingerprint is not None:
            state.visual = event.fingerprint
            state.visual_captured = True
            self.session.request_screenshots(state.key, event.fingerprint)

        self._restart_timer(state)

    def on_focus(self, event: CaptureEvent) -> None:
        state = self._states.get(field_key(event.element))
        if state is not None:
            self._restart_timer(state)

    def _restart_timer(self, state: TypingState) -> None:
        if state.timer is not None:
            state.timer.cancel()
        loop = asyncio.get_running_loop()
        state.timer = loop.call_later(self.debounce_seconds, self._emit, state.field_name)

    def _emit(self, name: str) -> None:
        state = self._states.pop(name, None)
        if state is None:
            return
        if state.timer is not None:
            state.timer.cancel()
        self.session.record_typing(state)

    def flush(self) -> int:
        """Emit every buffered field now. Returns the number emitted."""
        names = list(self._states)
        for name in names:
            self._emit(name)
        return len(names)


class ScrollAccumulator:
    """Sums scroll deltas and records one action per quiet window above the threshold."""

    def __init__(self, session: "CaptureSession", debounce_ms: int, threshold_px: int):
        self.session = session
        self.debounce_seconds = debounce_ms / 1000
        self.threshold_px = threshold_px
        self.delta_x = 0.0
        self.delta_y = 0.0
        self.url: Optional[str] = None
        self.timestamp: float = 0.0
        self._timer: Optional[asyncio.TimerHandle] = None

    @property
    def pending(self) -> bool:
        return self._timer is not None

    def on_scroll(self, event: CaptureEvent) -> None:
        if self._timer is None:
            self.timestamp = event.timestamp
        self.delta_x += event.delta_x
        self.delta_y += event.delta_y
        self.url = event.url or self.url

        if self._timer is not None:
            self._timer.cancel()
        self._timer = asyncio.get_running_loop().call_later(self.debounce_seconds, self._evaluate)

    def _evaluate(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

        delta_x, delta_y = self.delta_x, self.delta_y
        self.delta_x = self.delta_y = 0.0

        if abs(delta_y) >= abs(delta_x):
            amount, direction = abs(delta_y), "down" if delta_y > 0 else "up"
        else:
            amount, direction = abs(delta_x), "right" if delta_x > 0 else "left"

        if amount > self.threshold_px:
            self.session.record_scroll(direction, amount, self.timestamp, self.url)
        else:
            logger.debug("Scroll below threshold ignored", extra={"amount": amount})

    def flush(self) -> bool:
        """Evaluate a pending scroll now. Returns whether one was pending."""
        if self._timer is None:
            return False
        self._evaluate()
        return True


def strip_fragment(url: Optional[str]) -> Optional[str]:
    if url is None:
        return None
    return urldefrag(url)[0]


class NavigationTracker:
    """Records navigations whose URL (without fragment) differs from the last recorded one."""

    def __init__(self, session: "CaptureSession", initial_url: Optional[str] = None):
        self.session = session
        self.last_url = initial_url

    def observe(self, url: Optional[str], method: str, timestamp: Optional[float] = None) -> bool:
        if not url or strip_fragment(url) == strip_fragment(self.last_url):
            return False
        self.last_url = url
        self.session.record_navigation(url, method, timestamp)
        return True


class ContainerRegistry:
    """Attaches capture to inserted overlays and same-origin iframes exactly once."""

    def __init__(self, change_source: Optional[PageChangeSource]):
        self.change_source = change_source
        self.attached: Set[str] = set()
        self.skipped: Set[str] = set()

    async def on_change(self, change: PageChange) -> bool:
        """
        Attach to a new container.

        Returns:
            True when the container was attached by this call
        """
        if change.node_id in self.attached or change.node_id in self.skipped:
            return False

        if change.kind == "iframe" and not change.same_origin:
            self.skipped.add(change.node_id)
            logger.info(
                "Cross-origin iframe skipped",
                extra={"node_id": change.node_id, "src": change.src},
            )
            return False

        self.attached.add(change.node_id)
        if self.change_source is not None:
            await self.change_source.attach(change)
        logger.debug(
            "Container attached",
            extra={"node_id": change.node_id, "container_kind": change.kind},
        )
        return True

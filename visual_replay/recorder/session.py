"""
Capture session: turns live page interactions into recorded actions.
"""

import asyncio
import json
import time
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

from visual_replay.config.settings import Settings, get_settings
from visual_replay.core.interfaces import PageChangeSource, PageEventSource, ScreenshotProvider
from visual_replay.core.types import (
    ActionType,
    CaptureEvent,
    ExecutionMethod,
    Fingerprint,
    PageChange,
    RecordedAction,
    RecordingDocument,
)
from visual_replay.error_handling.exceptions import CaptureFault
from visual_replay.monitoring.logger import get_logger, log_capture_event
from visual_replay.recorder.enrichment import EnrichmentQueue
from visual_replay.recorder.handlers import (
    ContainerRegistry,
    NavigationTracker,
    ScrollAccumulator,
    TypingBuffer,
    TypingState,
)
from visual_replay.security.field_classifier import FieldDescriptor, redact_value

logger = get_logger(__name__)


class CaptureSession:
    """
    Records interactions from a page event source.

    Lifecycle is ``start()`` -> events -> ``stop()``. ``flush()`` emits
    buffered typing and scroll actions at any time. Faults raised while
    handling an event are logged and never reach the event source.
    """

    def __init__(
        self,
        event_source: PageEventSource,
        change_source: Optional[PageChangeSource] = None,
        screenshot_provider: Optional[ScreenshotProvider] = None,
        session_name: str = "recording",
        platform: Optional[str] = None,
        settings: Optional[Settings] = None,
    ):
        """
        Initialize a capture session.

        Args:
            event_source: Source of interaction events
            change_source: Source of inserted overlays and iframes
            screenshot_provider: Captures element and context images
            session_name: Name written to the exported recording
            platform: Platform label for the exported recording
            settings: Timing and bound configuration
        """
        self.settings = settings or get_settings()
        self.event_source = event_source
        self.change_source = change_source
        self.session_name = session_name
        self.platform = platform or self.settings.default_platform

        self.actions: List[RecordedAction] = []
        self.start_url: Optional[str] = None
        self._positions: Dict[str, int] = {}
        self._pending_screenshots: Dict[str, Dict[str, Optional[str]]] = {}
        self._transient_values: Dict[str, str] = {}
        self._sequence = 0
        self._started = False
        self._poll_task: Optional[asyncio.Task] = None

        self.typing = TypingBuffer(self, self.settings.typing_debounce_ms)
        self.scroll = ScrollAccumulator(
            self, self.settings.scroll_debounce_ms, self.settings.scroll_threshold_px
        )
        self.navigation = NavigationTracker(self)
        self.containers = ContainerRegistry(change_source)
        self.enrichment = EnrichmentQueue(
            screenshot_provider,
            self.attach_screenshots,
            context_padding=self.settings.context_padding_px,
            context_quality=self.settings.context_screenshot_quality,
        )

        self._handlers = {
            "click": self._record_click,
            "input": self.typing.on_input,
            "focus": self.typing.on_focus,
            "scroll": self.scroll.on_scroll,
            "navigation": self._record_navigation_event,
            "upload": self._record_upload,
            "submit": self._record_submit,
        }

    @property
    def is_recording(self) -> bool:
        return self._started

    async def start(self, start_url: Optional[str] = None) -> bool:
        """
        Subscribe to the page and begin recording.

        Returns:
            False when the session was already started or could not start
        """
        if self._started:
            logger.warning("Capture session already started", extra={"session_name": self.session_name})
            return False

        try:
            self.start_url = start_url or await self.event_source.current_url()
            self.navigation.last_url = self.start_url
            self.event_source.subscribe(self.handle_event)
            if self.change_source is not None:
                self.change_source.subscribe(self.handle_change)
        except Exception as e:
            fault = CaptureFault(f"Recorder failed to initialize: {e}", cause=e)
            logger.error(fault.message, extra={"session_name": self.session_name, "error_code": fault.error_code})
            self._unsubscribe()
            return False

        self._started = True
        self._poll_task = asyncio.get_running_loop().create_task(self._poll_url())
        logger.info(
            "Capture session started",
            extra={"session_name": self.session_name, "start_url": self.start_url},
        )
        return True

    def handle_event(self, event: Union[CaptureEvent, Dict[str, Any]]) -> None:
        """Dispatch one interaction event to its handler."""
        if not self._started:
            return
        try:
            if not isinstance(event, CaptureEvent):
                event = CaptureEvent.model_validate(event)
            handler = self._handlers.get(event.kind)
            if handler is None:
                logger.debug("Ignoring unknown event kind", extra={"event_kind": event.kind})
                return
            handler(event)
        except Exception as e:
            fault = CaptureFault(f"Event handling failed: {e}", event_kind=getattr(event, "kind", None), cause=e)
            logger.warning(fault.message, extra={"session_name": self.session_name, **fault.details})

    async def handle_change(self, change: Union[PageChange, Dict[str, Any]]) -> None:
        """Attach capture to an inserted container."""
        if not self._started:
            return
        try:
            if not isinstance(change, PageChange):
                change = PageChange.model_validate(change)
            await self.containers.on_change(change)
        except Exception as e:
            fault = CaptureFault(f"Container attach failed: {e}", event_kind="change", cause=e)
            logger.warning(fault.message, extra={"session_name": self.session_name})

    def next_key(self, timestamp: float) -> str:
        """Allocate the identity key of a new record."""
        self._sequence += 1
        return f"{int(timestamp)}-{self._sequence}"

    def _bounded(self, fingerprint: Optional[Fingerprint]) -> Optional[Fingerprint]:
        if fingerprint is None:
            return None
        return fingerprint.model_copy(update={
            "text": fingerprint.text.strip()[:self.settings.max_text_length],
            "surrounding_text": fingerprint.surrounding_text[:self.settings.max_surrounding_text],
        })

    def _append(self, action: RecordedAction) -> RecordedAction:
        pending = self._pending_screenshots.pop(action.key, None)
        if pending and action.visual is not None:
            action = action.model_copy(update={"visual": action.visual.model_copy(update=pending)})
        self._positions[action.key] = len(self.actions)
        self.actions.append(action)
        log_capture_event(
            "action_recorded",
            self.session_name,
            action_key=action.key,
            data={"action_type": action.type.value, "selector": action.backup_selector},
        )
        return action

    def request_screenshots(self, key: str, fingerprint: Optional[Fingerprint]) -> None:
        if fingerprint is not None:
            self.enrichment.schedule(key, fingerprint.bounding_box)

    def attach_screenshots(
        self, key: str, screenshot: Optional[str], context_screenshot: Optional[str]
    ) -> None:
        """Fill in the screenshots of the record identified by ``key``."""
        update = {}
        if screenshot:
            update["screenshot"] = screenshot
        if context_screenshot:
            update["context_screenshot"] = context_screenshot
        if not update:
            return

        position = self._positions.get(key)
        if position is None:
            # Typing records are emitted after their screenshots may arrive.
            self._pending_screenshots.setdefault(key, {}).update(update)
            return

        action = self.actions[position]
        if action.visual is None:
            return
        self.actions[position] = action.model_copy(
            update={"visual": action.visual.model_copy(update=update)}
        )
        log_capture_event("screenshot_attached", self.session_name, action_key=key)

    def _record_click(self, event: CaptureEvent) -> None:
        key = self.next_key(event.timestamp)
        visual = self._bounded(event.fingerprint)
        self._append(RecordedAction(
            key=key,
            type=ActionType.CLICK,
            timestamp=event.timestamp,
            url=event.url,
            visual=visual,
            backup_selector=event.element.selector if event.element else None,
            element=event.element,
            execution_method=ExecutionMethod.VISUAL_FIRST,
        ))
        self.request_screenshots(key, visual)

    def record_typing(self, state: TypingState) -> None:
        element = state.element
        descriptor = FieldDescriptor(
            tag=element.tag if element else "input",
            input_type=element.input_type if element else None,
            name=element.name if element else None,
            element_id=element.element_id if element else None,
            placeholder=element.placeholder if element else None,
        )
        value = redact_value(state.value, descriptor)
        if value != state.value:
            self._transient_values[state.key] = state.value

        self._append(RecordedAction(
            key=state.key,
            type=ActionType.TYPE,
            timestamp=state.start_time,
            url=state.url,
            visual=self._bounded(state.visual),
            backup_selector=(element.selector if element else None) or state.field_name,
            element=element,
            value=value,
            execution_method=ExecutionMethod.VISUAL_FIRST,
        ))

    def record_scroll(
        self, direction: str, amount: float, timestamp: float, url: Optional[str]
    ) -> None:
        self._append(RecordedAction(
            key=self.next_key(timestamp),
            type=ActionType.SCROLL,
            timestamp=timestamp,
            url=url,
            direction=direction,
            amount=amount,
        ))

    def record_navigation(self, url: str, method: str, timestamp: Optional[float] = None) -> None:
        timestamp = timestamp or time.time() * 1000
        self._append(RecordedAction(
            key=self.next_key(timestamp),
            type=ActionType.NAVIGATE,
            timestamp=timestamp,
            url=url,
            method=method,
        ))

    def _record_navigation_event(self, event: CaptureEvent) -> None:
        self.navigation.observe(event.url, event.method or "navigation", event.timestamp)

    def _record_upload(self, event: CaptureEvent) -> None:
        if not event.files:
            return
        uploaded = event.files[0]
        key = self.next_key(event.timestamp)
        visual = self._bounded(event.fingerprint)
        self._append(RecordedAction(
            key=key,
            type=ActionType.UPLOAD,
            timestamp=event.timestamp,
            url=event.url,
            visual=visual,
            backup_selector=event.element.selector if event.element else None,
            element=event.element,
            file_name=uploaded.name,
            file_size=uploaded.size,
            file_type=uploaded.type,
        ))
        self.request_screenshots(key, visual)

    def _record_submit(self, event: CaptureEvent) -> None:
        self._append(RecordedAction(
            key=self.next_key(event.timestamp),
            type=ActionType.SUBMIT,
            timestamp=event.timestamp,
            url=event.url,
            backup_selector=event.element.selector if event.element else None,
            element=event.element,
            method=event.method,
        ))

    async def _poll_url(self) -> None:
        interval = self.settings.url_poll_interval_ms / 1000
        while self._started:
            await asyncio.sleep(interval)
            try:
                self.navigation.observe(await self.event_source.current_url(), "url_change")
            except Exception as e:
                logger.debug("URL poll failed", extra={"error": str(e)})

    def flush(self) -> int:
        """
        Emit every buffered typing and scroll action.

        Returns:
            Number of actions emitted
        """
        emitted = self.typing.flush()
        if self.scroll.flush():
            emitted += 1
        return emitted

    async def stop(self) -> List[RecordedAction]:
        """
        Flush buffers, wait for screenshots, and unsubscribe.

        Returns:
            All recorded actions in order
        """
        if not self._started:
            return list(self.actions)

        self.flush()
        await self.enrichment.drain(self.settings.enrichment_timeout_seconds)

        self._started = False
        if self._poll_task is not None:
            self._poll_task.cancel()
            await asyncio.gather(self._poll_task, return_exceptions=True)
            self._poll_task = None
        self._unsubscribe()

        logger.info(
            "Capture session stopped",
            extra={"session_name": self.session_name, "action_count": len(self.actions)},
        )
        return list(self.actions)

    def _unsubscribe(self) -> None:
        for source, callback in (
            (self.event_source, self.handle_event),
            (self.change_source, self.handle_change),
        ):
            if source is None:
                continue
            try:
                source.unsubscribe(callback)
            except Exception as e:
                logger.debug("Unsubscribe failed", extra={"error": str(e)})

    def actual_value(self, key: str) -> Optional[str]:
        """Real value of a redacted field, kept in memory only."""
        return self._transient_values.get(key)

    def export(self) -> RecordingDocument:
        """Recording document without any transient values."""
        return RecordingDocument(
            session_name=self.session_name,
            platform=self.platform,
            start_url=self.start_url,
            actions=[action.to_document() for action in self.actions],
        )

    def save(self, path: Optional[Union[str, Path]] = None) -> Path:
        """
        Write the recording as JSON.

        Args:
            path: Output file; defaults to ``<recordings_dir>/<session_name>.json``

        Returns:
            Path written
        """
        path = Path(path) if path else Path(self.settings.recordings_dir) / f"{self.session_name}.json"
        path.parent.mkdir(parents=True, exist_ok=True)
        document = self.export().to_document()
        path.write_text(json.dumps(document, indent=2), encoding="utf-8")
        logger.info(
            "Recording saved",
            extra={"path": str(path), "action_count": len(document.get("actions", []))},
        )
        return path

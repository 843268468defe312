"""
Asynchronous screenshot enrichment joined to recorded actions by identity key.
"""

import asyncio
from typing import Awaitable, Callable, Dict, Optional, Set

from visual_replay.core.interfaces import ScreenshotProvider
from visual_replay.core.types import BoundingBox
from visual_replay.error_handling.exceptions import CaptureFault
from visual_replay.monitoring.logger import get_logger

logger = get_logger(__name__)

AttachCallback = Callable[[str, Optional[str], Optional[str]], None]


class EnrichmentQueue:
    """
    Runs screenshot captures as tasks and reports each result under its key.

    Results are delivered through ``attach(key, screenshot, context_screenshot)``.
    The receiver decides where the record lives; list positions are never used.
    """

    def __init__(
        self,
        provider: Optional[ScreenshotProvider],
        attach: AttachCallback,
        context_padding: int = 100,
        context_quality: int = 70,
    ):
        self.provider = provider
        self.attach = attach
        self.context_padding = context_padding
        self.context_quality = context_quality
        self._tasks: Dict[str, asyncio.Task] = {}
        self.completed: Set[str] = set()
        self.failed: Set[str] = set()

    @property
    def pending(self) -> int:
        return len(self._tasks)

    def schedule(self, key: str, box: Optional[BoundingBox]) -> Optional[asyncio.Task]:
        """Start capturing screenshots for the record with ``key``."""
        if self.provider is None or box is None or box.width <= 0 or box.height <= 0:
            return None
        if key in self._tasks:
            return self._tasks[key]

        task = asyncio.get_running_loop().create_task(self._capture(key, box))
        self._tasks[key] = task
        task.add_done_callback(lambda _: self._tasks.pop(key, None))
        return task

    async def _capture(self, key: str, box: BoundingBox) -> None:
        screenshot = await self._guarded(
            key, "element", self.provider.capture_element(box)
        )
        context_screenshot = await self._guarded(
            key,
            "context",
            self.provider.capture_area(box, self.context_padding, self.context_quality),
        )
        if screenshot is None and context_screenshot is None:
            self.failed.add(key)
            return
        self.attach(key, screenshot, context_screenshot)
        self.completed.add(key)

    async def _guarded(self, key: str, target: str, capture: Awaitable[Optional[str]]) -> Optional[str]:
        try:
            return await capture
        except asyncio.CancelledError:
            raise
        except Exception as e:
            fault = CaptureFault(f"Screenshot capture failed: {e}", event_kind=target, cause=e)
            logger.warning(
                fault.message,
                extra={"action_key": key, "capture_target": target, "error_code": fault.error_code},
            )
            return None

    async def drain(self, timeout: float) -> int:
        """
        Wait for outstanding captures, cancelling those still running after ``timeout``.

        Returns:
            Number of captures cancelled
        """
        tasks = list(self._tasks.values())
        if not tasks:
            return 0

        done, still_running = await asyncio.wait(tasks, timeout=timeout)
        for task in still_running:
            task.cancel()
        if still_running:
            await asyncio.gather(*still_running, return_exceptions=True)
            logger.warning(
                "Screenshot enrichment timed out",
                extra={"cancelled": len(still_running), "completed": len(done)},
            )
        return len(still_running)

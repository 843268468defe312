"""
Playwright interaction driver for replaying resolved steps.
"""

import asyncio
import random
import time
from pathlib import Path
from typing import Dict, Mapping, Optional

from playwright.async_api import Page

from visual_replay.core.interfaces import InteractionDriver
from visual_replay.core.types import ActionType, MatchResult, Point, ResolvedAction
from visual_replay.error_handling.exceptions import InteractionError
from visual_replay.monitoring.logger import get_logger, log_performance_metric
from visual_replay.workflow.factories import substitute_templates

TYPE_DELAYS_MS = {"slow": 150, "normal": 50, "fast": 10}

# Playwright has no networkidle0/2 distinction.
WAIT_UNTIL_STATES = {
    "networkidle0": "networkidle",
    "networkidle2": "networkidle",
    "networkidle": "networkidle",
    "load": "load",
    "domcontentloaded": "domcontentloaded",
    "commit": "commit",
}


class PlaywrightInteractionDriver(InteractionDriver):
    """Executes resolved steps against a Playwright page."""

    def __init__(
        self,
        page: Page,
        variables: Optional[Mapping[str, str]] = None,
        navigation_timeout_ms: int = 30000,
        human_jitter: bool = True,
    ) -> None:
        """
        Initialize the driver.

        Args:
            page: Page the matcher inspected
            variables: Values for ``{{name}}`` tokens in text, url and filePath
            navigation_timeout_ms: Timeout for navigate steps
            human_jitter: Offset clicks by up to 2px and hover before clicking
        """
        self.page = page
        self.variables = dict(variables or {})
        self.navigation_timeout_ms = navigation_timeout_ms
        self.human_jitter = human_jitter
        self.extracted: Dict[str, str] = {}

        self.logger = get_logger(__name__)
        self._handlers = {
            ActionType.CLICK: self._click,
            ActionType.TYPE: self._type,
            ActionType.SUBMIT: self._submit,
            ActionType.UPLOAD: self._upload,
            ActionType.EXTRACT: self._extract,
            ActionType.NAVIGATE: self._navigate,
            ActionType.WAIT: self._wait,
            ActionType.SCROLL: self._scroll,
            ActionType.SCREENSHOT: self._screenshot,
        }

    async def perform(
        self, action: ResolvedAction, match: Optional[MatchResult] = None
    ) -> None:
        handler = self._handlers.get(action.type)
        if handler is None:
            raise InteractionError(
                f"Unsupported action type: {action.type.value}",
                action_type=action.type.value,
                step_index=action.step_index,
            )
        start_time = time.time()
        await handler(action, match)
        log_performance_metric(
            "step_execution",
            (time.time() - start_time) * 1000,
            context={"step": action.name, "type": action.type.value},
        )

    def _param(self, action: ResolvedAction, key: str, default=None):
        return substitute_templates(action.params.get(key, default), self.variables)

    def _target(self, action: ResolvedAction, match: Optional[MatchResult]) -> Point:
        if match is None or not match.success or match.resolved_position is None:
            raise InteractionError(
                f"Step '{action.name}' has no resolved target position",
                action_type=action.type.value,
                step_index=action.step_index,
            )
        return match.resolved_position

    async def _click_at(self, point: Point) -> None:
        x, y = point.x, point.y
        if self.human_jitter:
            x += random.uniform(-2, 2)
            y += random.uniform(-2, 2)
            await self.page.mouse.move(x, y)
            await asyncio.sleep(random.uniform(0.1, 0.3))
        await self.page.mouse.click(x, y)
        self.logger.debug("Clicked", extra={"x": round(x), "y": round(y)})

    async def _click(self, action: ResolvedAction, match: Optional[MatchResult]) -> None:
        await self._click_at(self._target(action, match))

    async def _type(self, action: ResolvedAction, match: Optional[MatchResult]) -> None:
        text = self._param(action, "text", "")
        await self._click_at(self._target(action, match))
        delay = TYPE_DELAYS_MS.get(action.params.get("typeSpeed") or "normal", 50)
        await self.page.keyboard.type(str(text), delay=delay)
        self.logger.debug("Typed text", extra={"length": len(str(text))})

    async def _submit(self, action: ResolvedAction, match: Optional[MatchResult]) -> None:
        if match is not None and match.success and match.resolved_position is not None:
            await self._click_at(match.resolved_position)
        else:
            await self.page.keyboard.press("Enter")

    async def _upload(self, action: ResolvedAction, match: Optional[MatchResult]) -> None:
        file_path = self._param(action, "filePath")
        if not file_path or "{{" in str(file_path):
            raise InteractionError(
                f"Upload step '{action.name}' has no file path",
                action_type=action.type.value,
                step_index=action.step_index,
            )
        if match is not None and match.selector:
            await self.page.set_input_files(match.selector, str(file_path))
        else:
            point = self._target(action, match)
            async with self.page.expect_file_chooser() as chooser_info:
                await self.page.mouse.click(point.x, point.y)
            chooser = await chooser_info.value
            await chooser.set_files(str(file_path))
        self.logger.info("Uploaded file", extra={"file": Path(str(file_path)).name})

    async def _extract(self, action: ResolvedAction, match: Optional[MatchResult]) -> None:
        point = self._target(action, match)
        text = await self.page.evaluate(
            "([x, y]) => { const el = document.elementFromPoint(x, y); "
            "return el ? (el.innerText || el.value || '').trim() : ''; }",
            [point.x, point.y],
        )
        key = action.params.get("key") or action.name
        self.extracted[key] = text

    async def _navigate(self, action: ResolvedAction, match: Optional[MatchResult]) -> None:
        url = self._param(action, "url")
        if not url:
            raise InteractionError(
                "Navigate step requires url parameter",
                action_type=action.type.value,
                step_index=action.step_index,
            )
        wait_until = WAIT_UNTIL_STATES.get(action.params.get("waitUntil") or "", "networkidle")
        self.logger.info("Navigating to URL", extra={"url": url})
        await self.page.goto(url, wait_until=wait_until, timeout=self.navigation_timeout_ms)

    async def _wait(self, action: ResolvedAction, match: Optional[MatchResult]) -> None:
        duration = float(action.params.get("duration") or 0)
        if action.params.get("randomize"):
            variation = duration * 0.2
            duration += random.uniform(-variation, variation)
        self.logger.debug("Waiting", extra={"milliseconds": round(duration)})
        await asyncio.sleep(max(0.0, duration) / 1000)

    async def _scroll(self, action: ResolvedAction, match: Optional[MatchResult]) -> None:
        direction = action.params.get("direction") or "down"
        amount = action.params.get("amount")
        if not amount:
            size = self.page.viewport_size or {}
            amount = size.get("height", 600)
        amount = abs(float(amount))
        delta_x = {"left": -amount, "right": amount}.get(direction, 0)
        delta_y = {"up": -amount, "down": amount}.get(direction, 0)
        await self.page.mouse.wheel(delta_x, delta_y)
        self.logger.debug("Scrolled", extra={"direction": direction, "amount": amount})

    async def _screenshot(self, action: ResolvedAction, match: Optional[MatchResult]) -> None:
        path = self._param(action, "path") or f"screenshot-{int(time.time() * 1000)}.png"
        await self.page.screenshot(path=path, full_page=bool(action.params.get("fullPage")))
        self.logger.info("Saving screenshot", extra={"path": path})

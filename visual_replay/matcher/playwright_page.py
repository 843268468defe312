"""
Playwright implementation of the matcher's page contract.
"""

import uuid
from typing import List, Optional

from playwright.async_api import Error as PlaywrightError
from playwright.async_api import Page
from playwright.async_api import TimeoutError as PlaywrightTimeoutError

from visual_replay.config.settings import get_settings
from visual_replay.core.interfaces import PageHandle
from visual_replay.core.types import BoundingBox, ElementCandidate, Fingerprint, Viewport
from visual_replay.matcher.similarity import relative_center, relative_distance
from visual_replay.monitoring.logger import get_logger

logger = get_logger(__name__)

CANDIDATE_ATTRIBUTE = "data-vr-candidate"

# Marks each candidate with CANDIDATE_ATTRIBUTE so it can be addressed by a locator.
_FIND_CANDIDATES_SCRIPT = """
({ text, token, limit, maxSurrounding, attribute }) => {
  document.querySelectorAll(`[${attribute}]`).forEach(el => el.removeAttribute(attribute));
  const interactive = 'a, button, input, textarea, select, label, [role="button"], [role="link"], [onclick], [contenteditable="true"]';
  const contentOf = el => (el.innerText || el.value || el.getAttribute('aria-label') || '').trim();
  const needle = (text || '').trim().toLowerCase();

  let elements = [];
  if (needle) {
    elements = Array.from(document.querySelectorAll('body *')).filter(el => {
      if (!contentOf(el).toLowerCase().includes(needle)) return false;
      return !Array.from(el.children).some(child => contentOf(child).toLowerCase().includes(needle));
    });
  }
  if (elements.length === 0) {
    elements = Array.from(document.querySelectorAll(interactive));
  }

  const results = [];
  for (const el of elements) {
    const rect = el.getBoundingClientRect();
    if (rect.width === 0 || rect.height === 0) continue;
    const marker = `${token}-${results.length}`;
    el.setAttribute(attribute, marker);

    const surrounding = [];
    const parent = el.parentElement;
    if (parent) {
      for (const sibling of parent.children) {
        if (sibling === el || surrounding.length >= maxSurrounding) continue;
        const snippet = (sibling.innerText || '').trim();
        if (snippet) surrounding.push(snippet.slice(0, 100));
      }
    }

    results.push({
      marker,
      text: contentOf(el).slice(0, 200),
      box: { x: rect.x, y: rect.y, width: rect.width, height: rect.height },
      surrounding,
    });
    if (results.length >= limit) break;
  }
  return results;
}
"""


class PlaywrightPageHandle(PageHandle):
    """Exposes a Playwright page to the matcher strategies."""

    def __init__(
        self,
        page: Page,
        selector_timeout_ms: Optional[int] = None,
        max_candidates: Optional[int] = None,
    ) -> None:
        """
        Args:
            page: Live Playwright page
            selector_timeout_ms: Wait for a backup selector to attach
            max_candidates: Candidates kept per visual search, nearest first
        """
        settings = get_settings()
        self.page = page
        self.selector_timeout_ms = (
            settings.matcher_selector_timeout_ms
            if selector_timeout_ms is None else selector_timeout_ms
        )
        self.max_candidates = max_candidates or settings.matcher_max_candidates
        self.max_surrounding = settings.max_surrounding_text

    async def count_selector(self, selector: str) -> int:
        try:
            await self.page.wait_for_selector(
                selector, state="attached", timeout=self.selector_timeout_ms
            )
        except PlaywrightTimeoutError:
            logger.debug("Selector did not appear", extra={"selector": selector})
            return 0
        return await self.page.locator(selector).count()

    async def selector_candidate(self, selector: str) -> Optional[ElementCandidate]:
        locator = self.page.locator(selector).first
        if await locator.count() == 0:
            return None
        text = (await locator.text_content()) or ""
        box = await locator.bounding_box()
        return ElementCandidate(
            handle=locator,
            text=text.strip(),
            bounding_box=BoundingBox(**box) if box else None,
            selector=selector,
        )

    async def find_candidates(self, fingerprint: Fingerprint) -> List[ElementCandidate]:
        token = uuid.uuid4().hex[:8]
        raw = await self.page.evaluate(
            _FIND_CANDIDATES_SCRIPT,
            {
                "text": fingerprint.text,
                "token": token,
                "limit": self.max_candidates * 5,
                "maxSurrounding": self.max_surrounding,
                "attribute": CANDIDATE_ATTRIBUTE,
            },
        )

        candidates = []
        for item in raw or []:
            selector = f'[{CANDIDATE_ATTRIBUTE}="{item["marker"]}"]'
            candidates.append(ElementCandidate(
                handle=self.page.locator(selector),
                text=item.get("text") or "",
                bounding_box=BoundingBox(**item["box"]),
                surrounding_text=list(item.get("surrounding") or []),
                selector=selector,
            ))

        viewport = await self.viewport()
        recorded = fingerprint.relative_point
        if viewport and recorded:
            candidates.sort(
                key=lambda c: relative_distance(recorded, relative_center(c.bounding_box, viewport))
            )

        logger.debug(
            "Candidate elements collected",
            extra={"found": len(candidates), "kept": min(len(candidates), self.max_candidates)},
        )
        return candidates[:self.max_candidates]

    async def screenshot_candidate(self, candidate: ElementCandidate) -> Optional[bytes]:
        try:
            return await candidate.handle.screenshot(type="png", timeout=self.selector_timeout_ms)
        except PlaywrightError as e:
            logger.debug("Candidate screenshot failed", extra={"error": str(e)})
            return None

    async def viewport(self) -> Optional[Viewport]:
        size = self.page.viewport_size
        if not size:
            size = await self.page.evaluate(
                "() => ({ width: window.innerWidth, height: window.innerHeight })"
            )
        if not size or not size.get("width") or not size.get("height"):
            return None
        return Viewport(width=size["width"], height=size["height"])

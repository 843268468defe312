"""
Playwright bridge: page event source, change source and screenshot provider.
"""

import asyncio
import inspect
import time
from typing import Any, Dict, List, Optional, Set

from playwright.async_api import Error as PlaywrightError
from playwright.async_api import Frame, Page

from visual_replay.core.interfaces import (
    ChangeCallback,
    EventCallback,
    PageChangeSource,
    PageEventSource,
    ScreenshotProvider,
)
from visual_replay.core.types import BoundingBox, CaptureEvent, PageChange
from visual_replay.error_handling.exceptions import CaptureFault
from visual_replay.monitoring.logger import get_logger
from visual_replay.optimizer.image import encode_data_url
from visual_replay.recorder.session import CaptureSession

logger = get_logger(__name__)

BINDING_NAME = "__visualReplayEmit"

# Installed in every frame; child frames stay inert until attached.
RECORDER_SCRIPT = """
(() => {
  if (window.__visualReplayInstalled) return;
  if (window !== window.top && !window.__visualReplayAttach) return;
  window.__visualReplayInstalled = true;

  const emit = (channel, data) => {
    try { window.%(binding)s({ channel, data }); } catch (e) {}
  };
  let nodeCounter = 0;
  const nodeId = (node) => {
    if (!node.dataset.visualReplayNode) node.dataset.visualReplayNode = 'vr-' + (++nodeCounter) + '-' + Date.now();
    return node.dataset.visualReplayNode;
  };

  const unique = (selector) => {
    try { return document.querySelectorAll(selector).length === 1; } catch (e) { return false; }
  };
  const selectorFor = (el) => {
    if (!el || !el.tagName) return null;
    const tag = el.tagName.toLowerCase();
    if (el.id && unique('#' + CSS.escape(el.id))) return '#' + CSS.escape(el.id);
    for (const attr of ['name', 'placeholder', 'data-testid', 'data-id', 'aria-label']) {
      const value = el.getAttribute(attr);
      if (value) {
        const candidate = tag + '[' + attr + '="' + CSS.escape(value) + '"]';
        if (unique(candidate)) return candidate;
      }
    }
    const parts = [];
    let node = el;
    while (node && node.nodeType === 1 && node !== document.body) {
      let part = node.tagName.toLowerCase();
      const parent = node.parentElement;
      if (parent) {
        const siblings = Array.from(parent.children).filter(c => c.tagName === node.tagName);
        if (siblings.length > 1) part += ':nth-of-type(' + (siblings.indexOf(node) + 1) + ')';
      }
      parts.unshift(part);
      node = parent;
    }
    return parts.length ? 'body > ' + parts.join(' > ') : tag;
  };

  const elementInfo = (el) => ({
    tag: el.tagName.toLowerCase(),
    id: el.id || null,
    name: el.getAttribute('name'),
    className: typeof el.className === 'string' ? el.className : null,
    type: el.getAttribute('type'),
    placeholder: el.getAttribute('placeholder'),
    ariaLabel: el.getAttribute('aria-label'),
    text: (el.textContent || '').trim().slice(0, 100) || null,
    selector: selectorFor(el),
  });

  const surroundingText = (el) => {
    const snippets = [];
    const push = (text) => {
      text = (text || '').trim();
      if (text && text.length < 100) snippets.push(text);
    };
    if (el.parentElement) push(el.parentElement.textContent);
    if (el.previousElementSibling) push(el.previousElementSibling.textContent);
    if (el.nextElementSibling) push(el.nextElementSibling.textContent);
    const aria = el.getAttribute('aria-label');
    if (aria) snippets.push('aria:' + aria);
    const placeholder = el.getAttribute('placeholder');
    if (placeholder) snippets.push('placeholder:' + placeholder);
    return snippets.slice(0, 5);
  };

  const fingerprint = (el, clientX, clientY) => {
    const rect = el.getBoundingClientRect();
    const x = clientX !== undefined ? clientX : rect.left + rect.width / 2;
    const y = clientY !== undefined ? clientY : rect.top + rect.height / 2;
    const round2 = (v) => Math.round(v * 100) / 100;
    return {
      text: (el.textContent || '').trim().slice(0, 200),
      position: {
        absolute: { x: Math.round(x), y: Math.round(y) },
        relative: { x: round2(x / window.innerWidth * 100), y: round2(y / window.innerHeight * 100) },
      },
      boundingBox: {
        x: Math.round(rect.x), y: Math.round(rect.y),
        width: Math.round(rect.width), height: Math.round(rect.height),
      },
      surroundingText: surroundingText(el),
      timestamp: Date.now(),
      viewport: { width: window.innerWidth, height: window.innerHeight },
      placeholder: el.getAttribute('placeholder'),
      inputType: el.tagName === 'INPUT' ? (el.type || 'text') : null,
    };
  };

  const event = (kind, extra) => emit('event', Object.assign({
    kind, timestamp: Date.now(), url: window.location.href,
  }, extra || {}));
  const isField = (el) => el && (el.tagName === 'TEXTAREA' || (el.tagName === 'INPUT' && el.type !== 'file'));

  document.addEventListener('click', (e) => {
    const el = e.target;
    if (!el || el === document.body || !el.getBoundingClientRect) return;
    event('click', { element: elementInfo(el), fingerprint: fingerprint(el, e.clientX, e.clientY) });
  }, true);

  document.addEventListener('input', (e) => {
    const el = e.target;
    if (!isField(el)) return;
    event('input', { element: elementInfo(el), fingerprint: fingerprint(el), value: el.value });
  }, true);

  document.addEventListener('focusin', (e) => {
    if (isField(e.target)) event('focus', { element: elementInfo(e.target) });
  }, true);

  document.addEventListener('change', (e) => {
    const el = e.target;
    if (!el || el.type !== 'file' || !el.files || !el.files.length) return;
    event('upload', {
      element: elementInfo(el),
      fingerprint: fingerprint(el),
      files: Array.from(el.files).map(f => ({ name: f.name, size: f.size, type: f.type })),
    });
  }, true);

  document.addEventListener('submit', (e) => {
    const form = e.target;
    event('submit', { element: elementInfo(form), method: form.method || null });
  }, true);

  let lastScrollX = window.scrollX, lastScrollY = window.scrollY;
  window.addEventListener('scroll', () => {
    const deltaX = window.scrollX - lastScrollX, deltaY = window.scrollY - lastScrollY;
    lastScrollX = window.scrollX; lastScrollY = window.scrollY;
    if (deltaX || deltaY) event('scroll', { deltaX, deltaY });
  }, true);

  for (const name of ['pushState', 'replaceState']) {
    const original = history[name];
    history[name] = function (...args) {
      const result = original.apply(this, args);
      event('navigation', { method: name });
      return result;
    };
  }
  window.addEventListener('popstate', () => event('navigation', { method: 'popstate' }));
  window.addEventListener('beforeunload', () => event('navigation', { method: 'page_unload' }));

  const isOverlay = (node) => node.matches && node.matches(
    '[role="dialog"], [role="alertdialog"], [aria-modal="true"], dialog'
  );
  const observer = new MutationObserver((mutations) => {
    for (const mutation of mutations) {
      for (const node of mutation.addedNodes) {
        if (node.nodeType !== 1) continue;
        if (node.tagName === 'IFRAME') {
          const src = node.src || '';
          if (!src || src === 'about:blank') continue;
          let sameOrigin = false;
          try { sameOrigin = !!(node.contentWindow && node.contentWindow.document); } catch (e) {}
          emit('change', { kind: 'iframe', nodeId: nodeId(node), src, sameOrigin });
        } else if (isOverlay(node)) {
          emit('change', { kind: 'overlay', nodeId: nodeId(node) });
        }
      }
    }
  });
  const observe = () => observer.observe(document.documentElement, { childList: true, subtree: true });
  if (document.documentElement) observe(); else document.addEventListener('DOMContentLoaded', observe);
})();
""" % {"binding": BINDING_NAME}


async def _notify(callbacks: List[Any], payload: Any) -> None:
    for callback in list(callbacks):
        try:
            result = callback(payload)
            if inspect.isawaitable(result):
                await result
        except Exception as e:
            fault = CaptureFault(f"Capture callback failed: {e}", cause=e)
            logger.warning(fault.message)


class PlaywrightEventSource(PageEventSource):
    """Interaction events reported by the injected recorder script."""

    def __init__(self, page: Page):
        self.page = page
        self._callbacks: List[EventCallback] = []

    def subscribe(self, callback: EventCallback) -> None:
        if callback not in self._callbacks:
            self._callbacks.append(callback)

    def unsubscribe(self, callback: EventCallback) -> None:
        if callback in self._callbacks:
            self._callbacks.remove(callback)

    async def current_url(self) -> Optional[str]:
        return self.page.url

    async def dispatch(self, event: CaptureEvent) -> None:
        await _notify(self._callbacks, event)


class PlaywrightChangeSource(PageChangeSource):
    """Overlay and iframe insertions reported by the injected recorder script."""

    def __init__(self, page: Page):
        self.page = page
        self._callbacks: List[ChangeCallback] = []

    def subscribe(self, callback: ChangeCallback) -> None:
        if callback not in self._callbacks:
            self._callbacks.append(callback)

    def unsubscribe(self, callback: ChangeCallback) -> None:
        if callback in self._callbacks:
            self._callbacks.remove(callback)

    async def dispatch(self, change: PageChange) -> None:
        await _notify(self._callbacks, change)

    async def attach(self, change: PageChange) -> None:
        if change.kind != "iframe":
            # Capture-phase document listeners already cover inserted overlays.
            return
        handle = await self.page.query_selector(f'[data-visual-replay-node="{change.node_id}"]')
        frame: Optional[Frame] = await handle.content_frame() if handle else None
        if frame is None:
            logger.debug("Iframe no longer present", extra={"node_id": change.node_id})
            return
        await frame.evaluate("() => { window.__visualReplayAttach = true; }")
        await frame.evaluate(RECORDER_SCRIPT)
        logger.info("Recorder attached to iframe", extra={"src": change.src})


class PlaywrightScreenshotProvider(ScreenshotProvider):
    """Element and context screenshots taken with the page's native capture."""

    def __init__(self, page: Page):
        self.page = page

    def _clip(self, box: BoundingBox) -> Optional[Dict[str, float]]:
        size = self.page.viewport_size or {}
        max_width = size.get("width")
        max_height = size.get("height")
        width = box.width if max_width is None else min(box.width, max_width - box.x)
        height = box.height if max_height is None else min(box.height, max_height - box.y)
        if width <= 0 or height <= 0:
            return None
        return {"x": box.x, "y": box.y, "width": width, "height": height}

    async def capture_element(self, box: BoundingBox) -> Optional[str]:
        clip = self._clip(box)
        if clip is None:
            return None
        data = await self.page.screenshot(clip=clip, type="png")
        return encode_data_url(data, "png")

    async def capture_area(
        self, box: BoundingBox, padding: int, quality: int
    ) -> Optional[str]:
        clip = self._clip(box.padded(padding))
        if clip is None:
            return None
        data = await self.page.screenshot(clip=clip, type="jpeg", quality=quality)
        return encode_data_url(data, "jpeg")


class PlaywrightRecorderBridge:
    """
    Connects a Playwright page to a capture session.

    ``install()`` exposes the binding and injects the recorder script into
    the current document and every future one.
    """

    def __init__(self, page: Page):
        self.page = page
        self.events = PlaywrightEventSource(page)
        self.changes = PlaywrightChangeSource(page)
        self.screenshots = PlaywrightScreenshotProvider(page)
        self._installed = False
        self._dispatch_tasks: Set[asyncio.Task] = set()

    async def install(self) -> bool:
        """Returns False when already installed or when injection fails."""
        if self._installed:
            return False
        try:
            await self.page.expose_binding(BINDING_NAME, self._on_binding)
            await self.page.add_init_script(RECORDER_SCRIPT)
            await self.page.evaluate(RECORDER_SCRIPT)
        except PlaywrightError as e:
            fault = CaptureFault(f"Recorder script injection failed: {e}", cause=e)
            logger.error(fault.message, extra={"error_code": fault.error_code})
            return False

        self.page.on("framenavigated", self._on_frame_navigated)
        self._installed = True
        logger.info("Recorder script installed", extra={"url": self.page.url})
        return True

    def create_session(self, **kwargs: Any) -> CaptureSession:
        """Capture session wired to this bridge's sources."""
        return CaptureSession(
            self.events,
            change_source=self.changes,
            screenshot_provider=self.screenshots,
            **kwargs,
        )

    async def _on_binding(self, source: Dict[str, Any], payload: Dict[str, Any]) -> None:
        try:
            channel = payload.get("channel")
            data = payload.get("data") or {}
            if channel == "event":
                await self.events.dispatch(CaptureEvent.model_validate(data))
            elif channel == "change":
                await self.changes.dispatch(PageChange.model_validate(data))
        except Exception as e:
            fault = CaptureFault(f"Malformed recorder payload: {e}", cause=e)
            logger.warning(fault.message)

    def _on_frame_navigated(self, frame: Frame) -> None:
        if frame != self.page.main_frame:
            return
        event = CaptureEvent(
            kind="navigation",
            timestamp=time.time() * 1000,
            url=frame.url,
            method="main_frame",
        )
        task = asyncio.get_running_loop().create_task(self.events.dispatch(event))
        self._dispatch_tasks.add(task)
        task.add_done_callback(self._dispatch_tasks.discard)

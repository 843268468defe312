"""
Shared fixtures for the test suite.
"""

import base64
import io

import pytest
from PIL import Image

from visual_replay.config.settings import get_settings
from visual_replay.core.interfaces import PageHandle
from visual_replay.core.types import BoundingBox, ElementCandidate, Viewport


@pytest.fixture(autouse=True)
def isolated_settings(tmp_path, monkeypatch):
    """Run every test in a scratch directory with fresh settings."""
    monkeypatch.chdir(tmp_path)
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture
def make_png():
    """Factory for PNG bytes; solid color unless ``pattern`` is set."""
    def factory(width=40, height=20, color=(200, 30, 30), pattern=False):
        image = Image.new("RGB", (width, height), color)
        if pattern:
            for x in range(0, width, 2):
                for y in range(height):
                    image.putpixel((x, y), (255 - color[0], 255 - color[1], 255 - color[2]))
        buffer = io.BytesIO()
        image.save(buffer, format="PNG")
        return buffer.getvalue()
    return factory


@pytest.fixture
def make_data_url(make_png):
    """Factory for inline PNG data URLs."""
    def factory(width=40, height=20, color=(200, 30, 30), pattern=False):
        data = make_png(width, height, color, pattern)
        return "data:image/png;base64," + base64.b64encode(data).decode()
    return factory


@pytest.fixture
def fingerprint_dict():
    """Fingerprint of a 'Post' button near the top-left of a 1280x720 viewport."""
    return {
        "text": "Post",
        "position": {
            "absolute": {"x": 128, "y": 72},
            "relative": {"x": 10.0, "y": 10.0},
        },
        "boundingBox": {"x": 98, "y": 57, "width": 60, "height": 30},
        "surroundingText": ["Share your update"],
        "timestamp": 1700000000000,
        "viewport": {"width": 1280, "height": 720},
    }


class FakePage(PageHandle):
    """In-memory page: selectors map to candidates, screenshots come from ``handle``."""

    def __init__(self, selectors=None, candidates=None, viewport=None, error=None):
        self.selectors = selectors or {}
        self.candidates = candidates or []
        self._viewport = viewport if viewport is not None else Viewport(width=1280, height=720)
        self.error = error
        self.selector_queries = []
        self.screenshots_taken = []

    async def count_selector(self, selector):
        self.selector_queries.append(selector)
        if self.error:
            raise self.error
        return len(self.selectors.get(selector, []))

    async def selector_candidate(self, selector):
        matches = self.selectors.get(selector, [])
        return matches[0] if matches else None

    async def find_candidates(self, fingerprint):
        if self.error:
            raise self.error
        return list(self.candidates)

    async def screenshot_candidate(self, candidate):
        self.screenshots_taken.append(candidate)
        return candidate.handle

    async def viewport(self):
        return self._viewport


@pytest.fixture
def fake_page():
    """Factory for FakePage instances."""
    return FakePage


@pytest.fixture
def candidate():
    """Factory for live element candidates."""
    def factory(text="Post", x=98, y=57, width=60, height=30, surrounding=None, selector=None, image=None):
        return ElementCandidate(
            handle=image,
            text=text,
            bounding_box=BoundingBox(x=x, y=y, width=width, height=height),
            surrounding_text=surrounding if surrounding is not None else [],
            selector=selector,
        )
    return factory

"""
Unit tests for the capture session and its handlers.
"""

import asyncio
import json

import pytest

from visual_replay.config.settings import Settings
from visual_replay.core.interfaces import PageChangeSource, PageEventSource, ScreenshotProvider
from visual_replay.core.types import ActionType, ElementInfo
from visual_replay.recorder import CaptureSession, field_key, strip_fragment
from visual_replay.workflow import convert_recording


class FakeEventSource(PageEventSource):
    """Event source driven by the test."""

    def __init__(self, url="https://example.com/feed", fail_subscribe=False):
        self.url = url
        self.fail_subscribe = fail_subscribe
        self.callbacks = []

    def subscribe(self, callback):
        if self.fail_subscribe:
            raise RuntimeError("page closed")
        self.callbacks.append(callback)

    def unsubscribe(self, callback):
        if callback in self.callbacks:
            self.callbacks.remove(callback)

    async def current_url(self):
        return self.url

    def emit(self, **event):
        for callback in list(self.callbacks):
            callback(event)


class FakeChangeSource(PageChangeSource):
    def __init__(self):
        self.callbacks = []
        self.attached = []

    def subscribe(self, callback):
        self.callbacks.append(callback)

    def unsubscribe(self, callback):
        self.callbacks.remove(callback)

    async def attach(self, change):
        self.attached.append(change.node_id)


class FakeScreenshots(ScreenshotProvider):
    """Returns labelled images once ``release`` is set."""

    def __init__(self, gated=False, error=None, hang=False):
        self.release = asyncio.Event()
        if not gated:
            self.release.set()
        self.error = error
        self.hang = hang

    async def capture_element(self, box):
        if self.hang:
            await asyncio.sleep(3600)
        await self.release.wait()
        if self.error:
            raise self.error
        return f"data:image/png;base64,element{int(box.x)}"

    async def capture_area(self, box, padding, quality):
        await self.release.wait()
        if self.error:
            raise self.error
        return f"data:image/jpeg;base64,context{int(box.x)}q{quality}"


@pytest.fixture
def settings():
    return Settings(
        typing_debounce_ms=200,
        scroll_debounce_ms=50,
        url_poll_interval_ms=50,
        enrichment_timeout_seconds=1.0,
    )


@pytest.fixture
def source():
    return FakeEventSource()


@pytest.fixture
def make_session(source, settings):
    def factory(**kwargs):
        kwargs.setdefault("settings", settings)
        return CaptureSession(source, session_name="demo", **kwargs)
    return factory


SEARCH_FIELD = {"tag": "input", "name": "q", "type": "search", "selector": "#search"}
PASSWORD_FIELD = {"tag": "input", "name": "pass", "type": "password", "selector": "#pass"}


class TestHelpers:
    """Tests for handler helpers."""

    def test_field_key(self):
        assert field_key(ElementInfo(tag="input", selector="#a", element_id="b")) == "#a"
        assert field_key(ElementInfo(tag="input", element_id="b")) == "#b"
        assert field_key(ElementInfo(tag="input", name="q")) == 'input[name="q"]'
        assert field_key(ElementInfo(tag="textarea", placeholder="Say")) == 'textarea[placeholder="Say"]'
        assert field_key(ElementInfo(tag="div")) == "div"
        assert field_key(None) == "unknown"

    def test_strip_fragment(self):
        assert strip_fragment("https://example.com/a#top") == "https://example.com/a"
        assert strip_fragment(None) is None


class TestLifecycle:
    """Tests for starting and stopping sessions."""

    @pytest.mark.asyncio
    async def test_start_once(self, make_session, source):
        session = make_session()

        assert await session.start() is True
        assert await session.start() is False
        assert session.start_url == "https://example.com/feed"
        assert len(source.callbacks) == 1

        await session.stop()
        assert source.callbacks == []
        assert session.is_recording is False

    @pytest.mark.asyncio
    async def test_start_failure(self, settings):
        session = CaptureSession(FakeEventSource(fail_subscribe=True), settings=settings)

        assert await session.start() is False
        assert session.is_recording is False

    @pytest.mark.asyncio
    async def test_events_before_start_ignored(self, make_session):
        session = make_session()
        session.handle_event({"kind": "click", "timestamp": 1})
        assert session.actions == []

    @pytest.mark.asyncio
    async def test_stop_without_start(self, make_session):
        assert await make_session().stop() == []

    @pytest.mark.asyncio
    async def test_bad_events_do_not_raise(self, make_session, source):
        session = make_session()
        await session.start()

        source.emit(kind="click")
        source.emit(kind="hover", timestamp=1)
        source.emit(kind="submit", timestamp=2, element={"tag": "form", "selector": "form#share"})

        actions = await session.stop()
        assert [a.type for a in actions] == [ActionType.SUBMIT]


class TestClicks:
    """Tests for click capture and screenshot enrichment."""

    @pytest.mark.asyncio
    async def test_click_recorded(self, make_session, source, fingerprint_dict):
        session = make_session()
        await session.start()

        source.emit(
            kind="click", timestamp=1700000000000, url="https://example.com/feed",
            element={"tag": "button", "selector": "#post"}, fingerprint=fingerprint_dict,
        )
        [action] = await session.stop()

        assert action.key == "1700000000000-1"
        assert action.type == ActionType.CLICK
        assert action.backup_selector == "#post"
        assert action.visual.text == "Post"

    @pytest.mark.asyncio
    async def test_skeleton_before_screenshots(self, make_session, source, fingerprint_dict):
        provider = FakeScreenshots(gated=True)
        session = make_session(screenshot_provider=provider)
        await session.start()

        source.emit(kind="click", timestamp=1, fingerprint=fingerprint_dict)
        moved = {**fingerprint_dict, "boundingBox": {"x": 500, "y": 300, "width": 60, "height": 30}}
        source.emit(kind="click", timestamp=2, fingerprint=moved)

        assert [a.visual.screenshot for a in session.actions] == [None, None]

        provider.release.set()
        actions = await session.stop()

        assert actions[0].visual.screenshot == "data:image/png;base64,element98"
        assert actions[1].visual.screenshot == "data:image/png;base64,element500"
        assert actions[1].visual.context_screenshot == "data:image/jpeg;base64,context500q70"

    @pytest.mark.asyncio
    async def test_screenshot_failure_keeps_action(self, make_session, source, fingerprint_dict):
        session = make_session(screenshot_provider=FakeScreenshots(error=RuntimeError("detached")))
        await session.start()

        source.emit(kind="click", timestamp=1, fingerprint=fingerprint_dict)
        [action] = await session.stop()

        assert action.visual.screenshot is None
        assert session.enrichment.failed == {action.key}

    @pytest.mark.asyncio
    async def test_enrichment_timeout(self, make_session, source, fingerprint_dict):
        session = make_session(
            screenshot_provider=FakeScreenshots(hang=True),
            settings=Settings(enrichment_timeout_seconds=0.05),
        )
        await session.start()

        source.emit(kind="click", timestamp=1, fingerprint=fingerprint_dict)
        [action] = await session.stop()

        assert action.visual.screenshot is None
        assert session.enrichment.pending == 0

    @pytest.mark.asyncio
    async def test_fingerprint_bounds(self, make_session, source, fingerprint_dict):
        session = make_session(settings=Settings(max_text_length=10, max_surrounding_text=2))
        await session.start()

        source.emit(
            kind="click", timestamp=1,
            fingerprint={**fingerprint_dict, "text": "  A very long button label  ",
                         "surroundingText": ["a", "b", "c"]},
        )
        [action] = await session.stop()

        assert action.visual.text == "A very lon"
        assert action.visual.surrounding_text == ["a", "b"]


class TestTyping:
    """Tests for debounced typing capture."""

    @pytest.mark.asyncio
    async def test_edits_collapse(self, make_session, source):
        session = make_session()
        await session.start()

        for offset, value in enumerate(["r", "ru", "running shoes"]):
            source.emit(kind="input", timestamp=1000 + offset, element=SEARCH_FIELD, value=value)
        await asyncio.sleep(0.3)

        assert len(session.actions) == 1
        action = session.actions[0]
        assert action.value == "running shoes"
        assert action.timestamp == 1000
        assert action.backup_selector == "#search"
        await session.stop()

    @pytest.mark.asyncio
    async def test_fields_have_independent_timers(self, make_session, source):
        session = make_session()
        await session.start()

        source.emit(kind="input", timestamp=1, element=SEARCH_FIELD, value="shoes")
        await asyncio.sleep(0.12)
        source.emit(kind="input", timestamp=2, element={"tag": "input", "selector": "#zip"}, value="10115")
        await asyncio.sleep(0.12)

        assert [a.value for a in session.actions] == ["shoes"]
        actions = await session.stop()
        assert [a.value for a in actions] == ["shoes", "10115"]

    @pytest.mark.asyncio
    async def test_refocus_extends_window(self, make_session, source):
        session = make_session()
        await session.start()

        source.emit(kind="input", timestamp=1, element=SEARCH_FIELD, value="shoes")
        await asyncio.sleep(0.12)
        source.emit(kind="focus", timestamp=2, element=SEARCH_FIELD)
        await asyncio.sleep(0.12)

        assert session.actions == []
        assert session.flush() == 1
        assert len(session.actions) == 1
        await session.stop()

    @pytest.mark.asyncio
    async def test_password_redacted(self, make_session, source):
        session = make_session()
        await session.start()

        source.emit(kind="input", timestamp=5, element=PASSWORD_FIELD, value="hunter2")
        [action] = await session.stop()

        assert action.value == "{{password}}"
        assert session.actual_value(action.key) == "hunter2"
        assert "hunter2" not in json.dumps(session.export().to_document())

    @pytest.mark.asyncio
    async def test_screenshots_joined_after_emission(self, make_session, source, fingerprint_dict):
        session = make_session(screenshot_provider=FakeScreenshots())
        await session.start()

        source.emit(kind="input", timestamp=1, element=SEARCH_FIELD, value="s", fingerprint=fingerprint_dict)
        await asyncio.sleep(0.05)
        assert session.actions == []

        [action] = await session.stop()
        assert action.visual.screenshot == "data:image/png;base64,element98"
        assert action.key == "1-1"

    @pytest.mark.asyncio
    async def test_first_fingerprint_kept(self, make_session, source, fingerprint_dict):
        session = make_session()
        await session.start()

        source.emit(kind="input", timestamp=1, element=SEARCH_FIELD, value="s", fingerprint=fingerprint_dict)
        source.emit(kind="input", timestamp=2, element=SEARCH_FIELD, value="sh",
                    fingerprint={**fingerprint_dict, "text": "changed"})
        [action] = await session.stop()

        assert action.visual.text == "Post"


class TestScrollAndNavigation:
    """Tests for scroll accumulation and navigation tracking."""

    @pytest.mark.asyncio
    async def test_scroll_accumulates(self, make_session, source):
        session = make_session()
        await session.start()

        source.emit(kind="scroll", timestamp=10, deltaY=30)
        source.emit(kind="scroll", timestamp=11, deltaY=40)
        await asyncio.sleep(0.15)

        [action] = session.actions
        assert (action.direction, action.amount) == ("down", 70)
        assert action.timestamp == 10
        await session.stop()

    @pytest.mark.asyncio
    async def test_small_scroll_ignored(self, make_session, source):
        session = make_session()
        await session.start()

        source.emit(kind="scroll", timestamp=10, deltaY=-20)
        source.emit(kind="scroll", timestamp=11, deltaX=-30)

        assert await session.stop() == []

    @pytest.mark.asyncio
    async def test_horizontal_scroll_flushed_on_stop(self, make_session, source):
        session = make_session()
        await session.start()

        source.emit(kind="scroll", timestamp=10, deltaX=-120, deltaY=10)
        [action] = await session.stop()

        assert (action.direction, action.amount) == ("left", 120)

    @pytest.mark.asyncio
    async def test_navigation_dedupe(self, make_session, source):
        session = make_session()
        await session.start()

        source.emit(kind="navigation", timestamp=1, url="https://example.com/feed#top", method="hashchange")
        source.emit(kind="navigation", timestamp=2, url="https://example.com/profile", method="pushState")
        source.emit(kind="navigation", timestamp=3, url="https://example.com/profile#bio", method="pushState")
        actions = await session.stop()

        assert [(a.url, a.method) for a in actions] == [("https://example.com/profile", "pushState")]

    @pytest.mark.asyncio
    async def test_url_poll(self, make_session, source):
        session = make_session()
        await session.start()

        source.url = "https://example.com/settings"
        await asyncio.sleep(0.2)
        actions = await session.stop()

        assert [(a.type, a.method) for a in actions] == [(ActionType.NAVIGATE, "url_change")]


class TestUploadsAndContainers:
    """Tests for uploads and inserted containers."""

    @pytest.mark.asyncio
    async def test_upload_first_file(self, make_session, source):
        session = make_session()
        await session.start()

        source.emit(
            kind="upload", timestamp=1, element={"tag": "input", "type": "file", "selector": "#media"},
            files=[{"name": "a.png", "size": 2048, "type": "image/png"}, {"name": "b.png"}],
        )
        source.emit(kind="upload", timestamp=2, files=[])
        [action] = await session.stop()

        assert (action.file_name, action.file_size, action.file_type) == ("a.png", 2048, "image/png")

    @pytest.mark.asyncio
    async def test_iframes_attached_once(self, make_session):
        changes = FakeChangeSource()
        session = make_session(change_source=changes)
        await session.start()

        await session.handle_change({"kind": "iframe", "nodeId": "vr-1", "sameOrigin": True})
        await session.handle_change({"kind": "iframe", "nodeId": "vr-1", "sameOrigin": True})
        await session.handle_change({"kind": "iframe", "nodeId": "vr-2", "src": "https://ads.test", "sameOrigin": False})
        await session.handle_change({"kind": "overlay", "nodeId": "vr-3"})
        await session.stop()

        assert changes.attached == ["vr-1", "vr-3"]
        assert session.containers.skipped == {"vr-2"}
        assert changes.callbacks == []


class TestExport:
    """Tests for export and save."""

    @pytest.mark.asyncio
    async def test_save_default_path(self, make_session, source, tmp_path):
        session = make_session()
        await session.start()
        source.emit(kind="click", timestamp=1, element={"tag": "a", "selector": "#home"})
        await session.stop()

        path = session.save()
        document = json.loads(path.read_text())

        assert path.resolve() == (tmp_path / "data" / "recordings" / "demo.json").resolve()
        assert document["sessionName"] == "demo"
        assert document["startUrl"] == "https://example.com/feed"
        assert document["actions"][0]["backupSelector"] == "#home"
        assert document["actions"][0]["executionMethod"] == "visualFirst"

    @pytest.mark.asyncio
    async def test_export_converts(self, make_session, source, fingerprint_dict):
        session = make_session()
        await session.start()
        source.emit(kind="click", timestamp=1700000000000, element={"tag": "button", "selector": "#post"},
                    fingerprint=fingerprint_dict)
        await session.stop()

        [action] = convert_recording(session.export())

        assert action.name == 'Click "Post"'
        assert action.backup_selector == "#post"

"""
Unit tests for match similarity signals.
"""

import math

import pytest

from visual_replay.core.types import BoundingBox, Fingerprint, Point, Viewport
from visual_replay.matcher import (
    CompositeSimilarityScorer,
    compare_images,
    position_proximity,
    relative_center,
    size_proximity,
    surrounding_overlap,
    text_similarity,
)
from visual_replay.matcher.similarity import relative_distance

VIEWPORT = Viewport(width=1280, height=720)


class TestCompareImages:
    """Tests for pixel comparison."""

    def test_identical(self, make_png):
        assert compare_images(make_png(), make_png()) == 1.0

    def test_completely_different(self, make_png):
        assert compare_images(make_png(color=(200, 30, 30)), make_png(color=(30, 200, 30))) == 0.0

    def test_half_different(self, make_png):
        assert compare_images(make_png(), make_png(pattern=True)) == pytest.approx(0.5)

    def test_within_pixel_threshold(self, make_png):
        slightly_off = make_png(color=(210, 35, 25))
        assert compare_images(make_png(), slightly_off, pixel_threshold=0.1) == 1.0
        assert compare_images(make_png(), slightly_off, pixel_threshold=0.01) == 0.0

    def test_different_sizes(self, make_png):
        assert compare_images(make_png(40, 20), make_png(80, 40)) == 1.0

    def test_undecodable(self, make_png):
        assert compare_images(b"not an image", make_png()) == 0.0


class TestTextSimilarity:
    """Tests for text_similarity."""

    def test_case_insensitive_equal(self):
        assert text_similarity("Post", "post") == 1.0

    def test_containment(self):
        assert text_similarity("Post", "Post now") == pytest.approx(0.5)

    def test_token_overlap(self):
        assert text_similarity("Share your update", "Share an update") == pytest.approx(0.5)

    def test_unrelated(self):
        assert text_similarity("Post", "Login") == 0.0

    def test_empty(self):
        assert text_similarity("", "Post") == 0.0
        assert text_similarity("Post", None) == 0.0


class TestGeometrySignals:
    """Tests for position, size and surrounding-text signals."""

    def test_relative_center(self):
        center = relative_center(BoundingBox(x=98, y=57, width=60, height=30), VIEWPORT)
        assert (center.x, center.y) == (10.0, 10.0)

    def test_relative_distance(self):
        assert relative_distance(Point(x=0, y=0), Point(x=3, y=4)) == 5.0
        assert relative_distance(None, Point(x=3, y=4)) == math.inf

    def test_position_proximity(self):
        assert position_proximity(Point(x=10, y=10), Point(x=10, y=10), 15) == 1.0
        assert position_proximity(Point(x=10, y=10), Point(x=13, y=11), 15) == pytest.approx(0.8)
        assert position_proximity(Point(x=10, y=10), Point(x=80, y=10), 15) == 0.0

    def test_size_proximity(self):
        recorded = BoundingBox(x=0, y=0, width=60, height=30)
        assert size_proximity(recorded, BoundingBox(x=5, y=5, width=60, height=30)) == 1.0
        assert size_proximity(recorded, BoundingBox(x=0, y=0, width=30, height=30)) == 0.75
        assert size_proximity(recorded, BoundingBox(x=0, y=0, width=0, height=30)) == 0.5

    def test_surrounding_overlap(self):
        assert surrounding_overlap(["Share your update"], ["share update", "now"]) == pytest.approx(0.5)
        assert surrounding_overlap([], ["share"]) == 0.0


class TestCompositeSimilarityScorer:
    """Tests for the weighted composite score."""

    @pytest.fixture
    def scorer(self):
        return CompositeSimilarityScorer()

    def test_perfect_candidate(self, scorer, fingerprint_dict, candidate):
        signals = scorer.score(
            Fingerprint.model_validate(fingerprint_dict),
            candidate(surrounding=["Share your update"]),
            VIEWPORT,
        )

        assert signals == {
            "text": 1.0,
            "position": 1.0,
            "size": 1.0,
            "surrounding_text": 1.0,
            "confidence": 1.0,
        }

    def test_only_text_recorded(self, scorer, candidate):
        signals = scorer.score(Fingerprint(text="Post"), candidate(text="post"), VIEWPORT)

        assert set(signals) == {"text", "confidence"}
        assert signals["confidence"] == 1.0

    def test_position_needs_viewport(self, scorer, fingerprint_dict, candidate):
        signals = scorer.score(Fingerprint.model_validate(fingerprint_dict), candidate(), None)
        assert "position" not in signals

    def test_screenshot_signal(self, scorer, fingerprint_dict, candidate, make_data_url, make_png):
        fingerprint = Fingerprint.model_validate({**fingerprint_dict, "screenshot": make_data_url()})
        live = candidate(surrounding=["Share your update"])

        same = scorer.score(fingerprint, live, VIEWPORT, make_png())
        different = scorer.score(fingerprint, live, VIEWPORT, make_png(color=(30, 200, 30)))

        assert same["screenshot"] == 1.0
        assert same["confidence"] == 1.0
        assert different["screenshot"] == 0.0
        assert different["confidence"] == pytest.approx(0.65)

    def test_screenshot_skipped_without_candidate_image(self, scorer, fingerprint_dict, candidate, make_data_url):
        fingerprint = Fingerprint.model_validate({**fingerprint_dict, "screenshot": make_data_url()})
        assert "screenshot" not in scorer.score(fingerprint, candidate(), VIEWPORT)

    def test_screenshot_from_file(self, tmp_path, fingerprint_dict, candidate, make_png):
        (tmp_path / "shots").mkdir()
        (tmp_path / "shots" / "post.png").write_bytes(make_png())
        scorer = CompositeSimilarityScorer(screenshot_base_dir=tmp_path)
        fingerprint = Fingerprint.model_validate({**fingerprint_dict, "screenshot": "shots/post.png"})

        signals = scorer.score(fingerprint, candidate(), VIEWPORT, make_png())

        assert signals["screenshot"] == 1.0
        assert scorer.wants_screenshot(fingerprint) is True

    def test_poor_candidate(self, scorer, fingerprint_dict, candidate):
        signals = scorer.score(
            Fingerprint.model_validate(fingerprint_dict),
            candidate(text="Logout", x=1000, y=600, width=200, height=40),
            VIEWPORT,
        )

        assert signals["text"] == 0.0
        assert signals["position"] == 0.0
        assert signals["confidence"] < 0.1

    def test_custom_weights(self, fingerprint_dict, candidate):
        scorer = CompositeSimilarityScorer(weights={"text": 1.0})
        signals = scorer.score(
            Fingerprint.model_validate(fingerprint_dict),
            candidate(text="Post", x=1000, y=600),
            VIEWPORT,
        )

        assert signals["position"] == 0.0
        assert signals["confidence"] == 1.0

    def test_no_weighted_signal(self, candidate):
        scorer = CompositeSimilarityScorer(weights={"screenshot": 1.0, "text": 0.0})
        signals = scorer.score(Fingerprint(text="Post"), candidate(), VIEWPORT)

        assert signals["confidence"] == 0.0
        assert scorer.wants_screenshot(Fingerprint(text="Post")) is False

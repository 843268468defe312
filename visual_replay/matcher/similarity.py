"""
Similarity signals between a recorded fingerprint and a live candidate.
"""

import io
import math
import re
from pathlib import Path
from typing import Dict, Optional, Tuple, Union

import numpy as np
from PIL import Image, UnidentifiedImageError

from visual_replay.config.settings import Settings, get_settings
from visual_replay.core.interfaces import SimilarityScorer
from visual_replay.core.types import (
    BoundingBox,
    ElementCandidate,
    Fingerprint,
    Point,
    Viewport,
)
from visual_replay.monitoring.logger import get_logger
from visual_replay.optimizer.image import load_screenshot_bytes

logger = get_logger(__name__)


def compare_images(image_a: bytes, image_b: bytes, pixel_threshold: float = 0.1) -> float:
    """
    Fraction of pixels that match between two images.

    Both images are resized to their common smaller dimensions. A pixel
    differs when its largest channel difference exceeds ``pixel_threshold``
    (as a fraction of the channel range).

    Returns:
        Similarity in [0, 1]; 0 when either image cannot be decoded
    """
    try:
        with Image.open(io.BytesIO(image_a)) as first, Image.open(io.BytesIO(image_b)) as second:
            width = min(first.width, second.width)
            height = min(first.height, second.height)
            if width == 0 or height == 0:
                return 0.0
            first_rgb = first.convert("RGB").resize((width, height), Image.Resampling.BILINEAR)
            second_rgb = second.convert("RGB").resize((width, height), Image.Resampling.BILINEAR)
    except (UnidentifiedImageError, OSError) as e:
        logger.debug("Image comparison skipped, undecodable image", extra={"error": str(e)})
        return 0.0

    pixels_a = np.asarray(first_rgb, dtype=np.int16)
    pixels_b = np.asarray(second_rgb, dtype=np.int16)
    delta = np.abs(pixels_a - pixels_b).max(axis=2) / 255.0
    differing = int(np.count_nonzero(delta > pixel_threshold))

    return max(0.0, min(1.0, 1.0 - differing / (width * height)))


def _tokens(text: str) -> set:
    return set(re.findall(r"\w+", text.lower()))


def text_similarity(recorded: str, candidate: str) -> float:
    """
    Token similarity, raised to the length ratio when one text contains the other.
    """
    recorded = (recorded or "").strip()
    candidate = (candidate or "").strip()
    if not recorded or not candidate:
        return 0.0
    if recorded.lower() == candidate.lower():
        return 1.0

    tokens1 = _tokens(recorded)
    tokens2 = _tokens(candidate)
    jaccard = 0.0
    if tokens1 and tokens2:
        jaccard = len(tokens1 & tokens2) / len(tokens1 | tokens2)

    shorter, longer = sorted((recorded.lower(), candidate.lower()), key=len)
    containment = len(shorter) / len(longer) if shorter in longer else 0.0

    return max(jaccard, containment)


def relative_center(box: BoundingBox, viewport: Viewport) -> Point:
    """Center of a box in percent of the viewport, rounded to 2 decimals."""
    center = box.center
    return Point(
        x=round(center.x / viewport.width * 100, 2),
        y=round(center.y / viewport.height * 100, 2),
    )


def relative_distance(recorded: Optional[Point], candidate: Optional[Point]) -> float:
    """Euclidean distance in viewport percent; infinite when either is unknown."""
    if recorded is None or candidate is None:
        return math.inf
    return math.hypot(recorded.x - candidate.x, recorded.y - candidate.y)


def position_proximity(recorded: Point, candidate: Point, tolerance_percent: float) -> float:
    """1 at the recorded spot, falling linearly to 0 at ``tolerance_percent`` on either axis."""
    offset = max(abs(recorded.x - candidate.x), abs(recorded.y - candidate.y))
    return max(0.0, 1.0 - offset / tolerance_percent)


def size_proximity(recorded: BoundingBox, candidate: BoundingBox) -> float:
    """Mean of the width and height ratios (smaller over larger)."""
    def ratio(a: float, b: float) -> float:
        if a <= 0 and b <= 0:
            return 1.0
        if a <= 0 or b <= 0:
            return 0.0
        return min(a, b) / max(a, b)

    return (ratio(recorded.width, candidate.width) + ratio(recorded.height, candidate.height)) / 2


def surrounding_overlap(recorded: list, candidate: list) -> float:
    """Token Jaccard similarity of the nearby text snippets."""
    tokens1 = _tokens(" ".join(recorded))
    tokens2 = _tokens(" ".join(candidate))
    if not tokens1 or not tokens2:
        return 0.0
    return len(tokens1 & tokens2) / len(tokens1 | tokens2)


class CompositeSimilarityScorer(SimilarityScorer):
    """
    Weighted combination of screenshot, text, position, size and surrounding-text signals.

    Signals that cannot be computed for a pair (no recorded screenshot, no
    recorded text, unknown geometry) are left out and the remaining weights
    are renormalized to sum to one.
    """

    def __init__(
        self,
        weights: Optional[Dict[str, float]] = None,
        position_tolerance_percent: Optional[float] = None,
        pixel_threshold: Optional[float] = None,
        screenshot_base_dir: Optional[Union[str, Path]] = None,
        settings: Optional[Settings] = None,
    ):
        settings = settings or get_settings()
        self.weights = dict(weights or settings.matcher_weights)
        self.position_tolerance_percent = (
            position_tolerance_percent or settings.matcher_position_tolerance_percent
        )
        self.pixel_threshold = (
            settings.matcher_pixel_threshold if pixel_threshold is None else pixel_threshold
        )
        self.screenshot_base_dir = screenshot_base_dir or settings.recordings_dir
        self._image_cache: Tuple[Optional[str], Optional[bytes]] = (None, None)

    def wants_screenshot(self, fingerprint: Fingerprint) -> bool:
        """Whether candidate screenshots would contribute to the score."""
        return bool(fingerprint.screenshot) and self.weights.get("screenshot", 0) > 0

    def recorded_image(self, fingerprint: Fingerprint) -> Optional[bytes]:
        value = fingerprint.screenshot
        if not value:
            return None
        cached_value, cached_bytes = self._image_cache
        if cached_value != value:
            cached_bytes = load_screenshot_bytes(value, self.screenshot_base_dir)
            self._image_cache = (value, cached_bytes)
        return cached_bytes

    def score(
        self,
        fingerprint: Fingerprint,
        candidate: ElementCandidate,
        viewport: Optional[Viewport] = None,
        candidate_image: Optional[bytes] = None,
    ) -> Dict[str, float]:
        """
        Score one candidate.

        Args:
            fingerprint: Recorded evidence
            candidate: Live element
            viewport: Current viewport, needed for the position signal
            candidate_image: Screenshot of the candidate, if taken

        Returns:
            Per-signal similarities plus ``confidence``
        """
        signals: Dict[str, float] = {}

        recorded_image = self.recorded_image(fingerprint) if candidate_image else None
        if recorded_image and candidate_image:
            signals["screenshot"] = compare_images(
                recorded_image, candidate_image, self.pixel_threshold
            )

        if fingerprint.text.strip():
            signals["text"] = text_similarity(fingerprint.text, candidate.text)

        recorded_point = fingerprint.relative_point
        if recorded_point and candidate.bounding_box and viewport:
            signals["position"] = position_proximity(
                recorded_point,
                relative_center(candidate.bounding_box, viewport),
                self.position_tolerance_percent,
            )

        if fingerprint.bounding_box and candidate.bounding_box:
            signals["size"] = size_proximity(fingerprint.bounding_box, candidate.bounding_box)

        if fingerprint.surrounding_text:
            signals["surrounding_text"] = surrounding_overlap(
                fingerprint.surrounding_text, candidate.surrounding_text
            )

        total_weight = sum(self.weights.get(name, 0.0) for name in signals)
        if total_weight <= 0:
            signals["confidence"] = 0.0
            return signals

        confidence = sum(
            value * self.weights.get(name, 0.0) for name, value in signals.items()
        ) / total_weight
        signals["confidence"] = round(max(0.0, min(1.0, confidence)), 4)
        return signals

"""
Core interfaces and abstract base classes for recording and replay.
"""

from abc import ABC, abstractmethod
from typing import Awaitable, Callable, Dict, List, Optional, Union

from visual_replay.core.types import (
    BoundingBox,
    CaptureEvent,
    ElementCandidate,
    Fingerprint,
    MatchResult,
    PageChange,
    ResolvedAction,
    Viewport,
)

EventCallback = Callable[[CaptureEvent], Union[None, Awaitable[None]]]
ChangeCallback = Callable[[PageChange], Union[None, Awaitable[None]]]


class PageEventSource(ABC):
    """Delivers interaction events observed on a live page."""

    @abstractmethod
    def subscribe(self, callback: EventCallback) -> None:
        """Register a callback for every interaction event."""
        pass

    @abstractmethod
    def unsubscribe(self, callback: EventCallback) -> None:
        """Stop delivering events to a callback."""
        pass

    @abstractmethod
    async def current_url(self) -> Optional[str]:
        """URL of the main frame, used by the navigation poller."""
        pass


class PageChangeSource(ABC):
    """Reports overlays, dialogs and iframes inserted into the document."""

    @abstractmethod
    def subscribe(self, callback: ChangeCallback) -> None:
        pass

    @abstractmethod
    def unsubscribe(self, callback: ChangeCallback) -> None:
        pass

    @abstractmethod
    async def attach(self, change: PageChange) -> None:
        """
        Start capturing interaction events inside a new container.

        Args:
            change: The inserted overlay or same-origin iframe
        """
        pass


class ScreenshotProvider(ABC):
    """Captures element and surrounding-area images for fingerprints."""

    @abstractmethod
    async def capture_element(self, box: BoundingBox) -> Optional[str]:
        """
        Capture the element rectangle.

        Args:
            box: Element bounding box in viewport pixels

        Returns:
            Data URL of the image, or None when nothing could be captured
        """
        pass

    @abstractmethod
    async def capture_area(
        self, box: BoundingBox, padding: int, quality: int
    ) -> Optional[str]:
        """Capture the element plus ``padding`` pixels around it as JPEG."""
        pass


class PageHandle(ABC):
    """Read-only view of a live page used by the matcher."""

    @abstractmethod
    async def count_selector(self, selector: str) -> int:
        """Number of elements matching a CSS selector."""
        pass

    @abstractmethod
    async def selector_candidate(self, selector: str) -> Optional[ElementCandidate]:
        """Describe the first element matching a selector."""
        pass

    @abstractmethod
    async def find_candidates(self, fingerprint: Fingerprint) -> List[ElementCandidate]:
        """
        Collect elements that may be the fingerprinted target.

        Args:
            fingerprint: Recorded evidence for the target

        Returns:
            Visible candidates with text and geometry filled in
        """
        pass

    @abstractmethod
    async def screenshot_candidate(self, candidate: ElementCandidate) -> Optional[bytes]:
        """Image bytes of a candidate, or None if it cannot be captured."""
        pass

    @abstractmethod
    async def viewport(self) -> Optional[Viewport]:
        pass


class SimilarityScorer(ABC):
    """Scores how well a live candidate matches a recorded fingerprint."""

    @abstractmethod
    def score(
        self,
        fingerprint: Fingerprint,
        candidate: ElementCandidate,
        viewport: Optional[Viewport] = None,
        candidate_image: Optional[bytes] = None,
    ) -> Dict[str, float]:
        """
        Compute per-signal similarities and the composite confidence.

        Returns:
            Signal name to similarity in [0, 1]; the ``confidence`` key holds
            the weighted composite over the signals that could be computed
        """
        pass


class InteractionDriver(ABC):
    """Executes a resolved step against the page the matcher inspected."""

    @abstractmethod
    async def perform(
        self, action: ResolvedAction, match: Optional[MatchResult] = None
    ) -> None:
        """
        Execute one step.

        Args:
            action: Step to execute
            match: Where its target was found, None for steps without a target
        """
        pass

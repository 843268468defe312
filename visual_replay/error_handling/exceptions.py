"""
Exception hierarchy for visual recording and replay.

Resilience faults (capture, optimization) are caught where they happen and
logged. Data-integrity faults (size, missing references, unknown shapes)
are raised to the caller.
"""

from datetime import datetime, timezone
from typing import Any, Dict, List, Optional


class VisualReplayError(Exception):
    """Base exception for all visual replay errors."""

    def __init__(
        self,
        message: str,
        error_code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
        cause: Optional[Exception] = None
    ):
        super().__init__(message)
        self.message = message
        self.error_code = error_code or self.__class__.__name__
        self.details = details or {}
        self.cause = cause
        self.timestamp = datetime.now(timezone.utc)

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to dictionary for logging/serialization."""
        return {
            "error_type": self.__class__.__name__,
            "error_code": self.error_code,
            "message": self.message,
            "details": self.details,
            "timestamp": self.timestamp.isoformat(),
            "cause": str(self.cause) if self.cause else None
        }


class CaptureFault(VisualReplayError):
    """Recorder initialization or observation failure."""

    def __init__(
        self,
        message: str,
        event_kind: Optional[str] = None,
        **kwargs
    ):
        super().__init__(message, **kwargs)
        self.event_kind = event_kind
        self.details.update({"event_kind": event_kind})


class OptimizationFault(VisualReplayError):
    """Image transform failure inside the optimizer."""

    def __init__(
        self,
        message: str,
        field_name: Optional[str] = None,
        **kwargs
    ):
        super().__init__(message, **kwargs)
        self.field_name = field_name
        self.details.update({"field_name": field_name})


class SizeLimitExceeded(VisualReplayError):
    """Fingerprint payload above the hard persistence limit."""

    def __init__(
        self,
        message: str,
        size_kb: float,
        limit_kb: float,
        errors: Optional[List[str]] = None,
        **kwargs
    ):
        super().__init__(message, **kwargs)
        self.size_kb = size_kb
        self.limit_kb = limit_kb
        self.errors = errors or []
        self.details.update({
            "size_kb": size_kb,
            "limit_kb": limit_kb,
            "errors": self.errors
        })


class SizeLimitWarning(UserWarning):
    """Fingerprint payload above the soft target. Advisory, never raised."""


class ConversionError(VisualReplayError):
    """Input entry cannot be normalized into a canonical action."""

    def __init__(
        self,
        message: str,
        entry_type: Optional[str] = None,
        index: Optional[int] = None,
        **kwargs
    ):
        super().__init__(message, **kwargs)
        self.entry_type = entry_type
        self.index = index
        self.details.update({
            "entry_type": entry_type,
            "index": index
        })


class ConversionPreconditionError(ConversionError):
    """A workflow references data the caller did not provide."""

    def __init__(
        self,
        message: str,
        workflow_id: Optional[str] = None,
        missing_reference: Optional[str] = None,
        **kwargs
    ):
        super().__init__(message, **kwargs)
        self.workflow_id = workflow_id
        self.missing_reference = missing_reference
        self.details.update({
            "workflow_id": workflow_id,
            "missing_reference": missing_reference
        })


class InteractionError(VisualReplayError):
    """A matched step could not be executed on the page."""

    def __init__(
        self,
        message: str,
        action_type: Optional[str] = None,
        step_index: Optional[int] = None,
        **kwargs
    ):
        super().__init__(message, **kwargs)
        self.action_type = action_type
        self.step_index = step_index
        self.details.update({
            "action_type": action_type,
            "step_index": step_index
        })

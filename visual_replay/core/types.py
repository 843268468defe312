"""
Core data models and types for visual recording and replay.
"""

import json
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional, Union

from pydantic import (
    AliasChoices,
    BaseModel,
    ConfigDict,
    Field,
    field_validator,
    model_validator,
)
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    """Base model reading and writing camelCase JSON keys."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_document(self) -> Dict[str, Any]:
        """Dump as a JSON-compatible dict with camelCase keys."""
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class ActionType(str, Enum):
    """Types of recorded or replayable actions."""

    CLICK = "click"
    TYPE = "type"
    WAIT = "wait"
    NAVIGATE = "navigate"
    UPLOAD = "upload"
    EXTRACT = "extract"
    SCROLL = "scroll"
    SCREENSHOT = "screenshot"
    SUBMIT = "submit"  # Recorder only


# Steps the matcher has to relocate an element for
TARGETED_ACTION_TYPES = frozenset({
    ActionType.CLICK,
    ActionType.TYPE,
    ActionType.UPLOAD,
    ActionType.EXTRACT,
    ActionType.SUBMIT,
})


class ExecutionMethod(str, Enum):
    """Relocation policy used when replaying an action."""

    VISUAL_FIRST = "visualFirst"
    SELECTOR_FIRST = "selectorFirst"
    VISUAL_ONLY = "visualOnly"

    @classmethod
    def parse(
        cls, value: Union[str, "ExecutionMethod", None], default: "ExecutionMethod" = None
    ) -> "ExecutionMethod":
        """Accept camelCase, snake_case and kebab-case spellings."""
        if isinstance(value, cls):
            return value
        if not value:
            return default or cls.VISUAL_FIRST
        compact = str(value).replace("_", "").replace("-", "").lower()
        for member in cls:
            if member.value.lower() == compact:
                return member
        raise ValueError(f"Unknown execution method: {value}")


class MatchStrategy(str, Enum):
    """Strategy that produced a match result."""

    SELECTOR = "selector"
    VISUAL = "visual"
    NONE = "none"


class IngestionShape(str, Enum):
    """Shape of an entry arriving at the conversion boundary."""

    RAW = "raw"
    CANONICAL = "canonical"


class Point(CamelModel):
    """A point in pixels, or in percent of the viewport for relative positions."""

    x: float
    y: float


class Position(CamelModel):
    """Absolute and viewport-relative position of a click or field."""

    absolute: Optional[Point] = None
    relative: Optional[Point] = None


class BoundingBox(CamelModel):
    """Element rectangle in viewport pixels."""

    x: float
    y: float
    width: float = Field(..., ge=0)
    height: float = Field(..., ge=0)

    @property
    def center(self) -> Point:
        return Point(x=self.x + self.width / 2, y=self.y + self.height / 2)

    def padded(self, padding: float) -> "BoundingBox":
        """Grow the box by ``padding`` on every side, clamped at the origin."""
        x = max(0.0, self.x - padding)
        y = max(0.0, self.y - padding)
        return BoundingBox(
            x=x,
            y=y,
            width=self.x + self.width + padding - x,
            height=self.y + self.height + padding - y,
        )


class Viewport(CamelModel):
    """Viewport dimensions at capture time."""

    width: int = Field(..., gt=0)
    height: int = Field(..., gt=0)


class Fingerprint(CamelModel):
    """Multi-modal evidence used to relocate an element on a later page."""

    model_config = ConfigDict(
        alias_generator=to_camel, populate_by_name=True, frozen=True, extra="allow"
    )

    screenshot: Optional[str] = Field(
        None, description="Inline data URL / base64 image, or a relative file path"
    )
    context_screenshot: Optional[str] = Field(
        None, description="Wider-area image around the element"
    )
    text: str = Field("", description="Trimmed visible text")
    position: Optional[Position] = None
    bounding_box: Optional[BoundingBox] = None
    surrounding_text: List[str] = Field(default_factory=list)
    timestamp: Optional[float] = Field(None, description="Capture time in ms since epoch")
    viewport: Optional[Viewport] = None
    placeholder: Optional[str] = None
    input_type: Optional[str] = None

    @field_validator("text", mode="before")
    @classmethod
    def _none_text(cls, v: Any) -> Any:
        return "" if v is None else v

    @field_validator("surrounding_text", mode="before")
    @classmethod
    def _none_surrounding(cls, v: Any) -> Any:
        return [] if v is None else v

    @property
    def relative_point(self) -> Optional[Point]:
        """Relative position, derived from the absolute one when missing."""
        if self.position and self.position.relative:
            return self.position.relative
        if self.position and self.position.absolute and self.viewport:
            return Point(
                x=round(self.position.absolute.x / self.viewport.width * 100, 2),
                y=round(self.position.absolute.y / self.viewport.height * 100, 2),
            )
        return None

    def has_location(self) -> bool:
        """True when absolute position, bounding box and timestamp are all present."""
        return bool(
            self.position is not None
            and self.position.absolute is not None
            and self.bounding_box is not None
            and self.timestamp is not None
        )


class ElementInfo(CamelModel):
    """DOM attributes of the element an event targeted."""

    tag: str = "div"
    element_id: Optional[str] = Field(
        None, validation_alias=AliasChoices("id", "element_id", "elementId"), serialization_alias="id"
    )
    name: Optional[str] = None
    class_name: Optional[str] = None
    input_type: Optional[str] = Field(
        None, validation_alias=AliasChoices("type", "input_type", "inputType"), serialization_alias="type"
    )
    placeholder: Optional[str] = None
    aria_label: Optional[str] = None
    text: Optional[str] = None
    selector: Optional[str] = None


class UploadedFile(CamelModel):
    """File chosen in a file input."""

    name: str
    size: int = 0
    type: str = ""


class RecordedAction(CamelModel):
    """Raw action emitted by a capture session."""

    key: str = Field(..., description="Stable identity: '<timestamp>-<sequence>'")
    type: ActionType
    timestamp: float
    url: Optional[str] = None
    visual: Optional[Fingerprint] = None
    backup_selector: Optional[str] = None
    element: Optional[ElementInfo] = None
    value: Optional[str] = None
    direction: Optional[str] = None
    amount: Optional[float] = None
    method: Optional[str] = None
    file_name: Optional[str] = None
    file_size: Optional[int] = None
    file_type: Optional[str] = None
    execution_method: ExecutionMethod = ExecutionMethod.VISUAL_FIRST


class RecordingDocument(CamelModel):
    """Exported capture session."""

    session_name: str = "recording"
    platform: str = "all"
    start_url: Optional[str] = None
    recorded_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    actions: List[Dict[str, Any]] = Field(
        default_factory=list, description="Raw or canonical entries, in order"
    )


def _decode_json(value: Any) -> Any:
    if isinstance(value, str):
        return json.loads(value) if value.strip() else None
    return value


# Legacy snake_case param keys and their canonical names
LEGACY_PARAM_KEYS = {
    "backup_selector": "backupSelector",
    "execution_method": "executionMethod",
    "fingerprint": "visual",
    "context_screenshot": "contextScreenshot",
    "file_path": "filePath",
    "wait_until": "waitUntil",
}

# Fields that belong in params even when found at the top level of an entry
PARAM_FIELDS = ("visual", "fingerprint", "backupSelector", "backup_selector",
                "executionMethod", "execution_method")


def canonicalize_params(params: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    """
    Rename legacy keys and normalize the execution method spelling.

    Canonical keys win over their legacy spellings when both are present.
    """
    result: Dict[str, Any] = {}
    for key, value in (params or {}).items():
        canonical = LEGACY_PARAM_KEYS.get(key, key)
        if canonical != key and canonical in params:
            continue
        result[canonical] = value
    if isinstance(result.get("visual"), BaseModel):
        result["visual"] = result["visual"].model_dump(by_alias=True, exclude_none=True)
    if result.get("executionMethod"):
        result["executionMethod"] = ExecutionMethod.parse(result["executionMethod"]).value
    return result


class Action(CamelModel):
    """Canonical, reusable action."""

    id: Optional[str] = None
    name: str
    type: ActionType
    platform: str = "all"
    description: Optional[str] = None
    params: Dict[str, Any] = Field(default_factory=dict)
    version: Optional[str] = None
    is_active: bool = True

    @model_validator(mode="before")
    @classmethod
    def _relocate_top_level_params(cls, data: Any) -> Any:
        """Move a fingerprint or selector found beside params into params."""
        if not isinstance(data, dict):
            return data
        stray = {k: data[k] for k in PARAM_FIELDS if data.get(k) is not None}
        if not stray:
            return data
        data = {k: v for k, v in data.items() if k not in PARAM_FIELDS}
        params = _decode_json(data.get("params")) or {}
        data["params"] = {**canonicalize_params(stray), **params}
        return data

    @field_validator("params", mode="before")
    @classmethod
    def _params_never_null(cls, v: Any) -> Any:
        v = _decode_json(v)
        return {} if v is None else canonicalize_params(v)

    @field_validator("id", "version", mode="before")
    @classmethod
    def _stringify(cls, v: Any) -> Any:
        return None if v is None else str(v)

    @property
    def backup_selector(self) -> Optional[str]:
        return self.params.get("backupSelector")

    @property
    def execution_method(self) -> ExecutionMethod:
        return ExecutionMethod.parse(self.params.get("executionMethod"))


class WorkflowStep(CamelModel):
    """Reference to an action plus per-step parameter overrides."""

    action_id: str = Field(
        ...,
        validation_alias=AliasChoices("actionId", "action_id", "micro_action_id", "microActionId"),
        serialization_alias="actionId",
    )
    params_override: Dict[str, Any] = Field(
        default_factory=dict,
        validation_alias=AliasChoices("paramsOverride", "params_override"),
        serialization_alias="paramsOverride",
    )
    action: Optional[Action] = Field(
        None,
        validation_alias=AliasChoices("action", "micro_action", "microAction"),
        serialization_alias="action",
    )

    @field_validator("action_id", mode="before")
    @classmethod
    def _stringify_id(cls, v: Any) -> Any:
        return None if v is None else str(v)

    @field_validator("params_override", mode="before")
    @classmethod
    def _override_never_null(cls, v: Any) -> Any:
        v = _decode_json(v)
        return {} if v is None else canonicalize_params(v)


class Workflow(CamelModel):
    """Ordered composition of actions."""

    id: Optional[str] = None
    name: str
    platform: str = "all"
    type: Optional[str] = None
    description: Optional[str] = None
    steps: List[WorkflowStep] = Field(default_factory=list)
    requires_auth: bool = False
    auth_workflow_id: Optional[str] = None
    version: Optional[str] = None
    is_active: bool = True

    @field_validator("steps", mode="before")
    @classmethod
    def _decode_steps(cls, v: Any) -> Any:
        v = _decode_json(v)
        return [] if v is None else v

    @field_validator("id", "auth_workflow_id", "version", mode="before")
    @classmethod
    def _stringify(cls, v: Any) -> Any:
        return None if v is None else str(v)


class ResolvedAction(CamelModel):
    """Flat, executable step produced by workflow expansion."""

    name: str
    type: ActionType
    params: Dict[str, Any] = Field(default_factory=dict)
    fingerprint: Optional[Fingerprint] = None
    backup_selector: Optional[str] = None
    execution_method: ExecutionMethod = ExecutionMethod.VISUAL_FIRST
    action_id: Optional[str] = None
    step_index: int = 0
    version: Optional[str] = None

    @property
    def is_targeted(self) -> bool:
        """Whether replay must relocate an element before executing."""
        return self.type in TARGETED_ACTION_TYPES


class SizeValidationResult(CamelModel):
    """Outcome of validating one action's fingerprint payload."""

    valid: bool = True
    warnings: List[str] = Field(default_factory=list)
    errors: List[str] = Field(default_factory=list)
    size_kb: float = Field(0.0, alias="sizeKB")


class BatchSizeValidationResult(CamelModel):
    """Outcome of validating every action of a workflow or recording."""

    valid: bool = True
    warnings: List[str] = Field(default_factory=list)
    errors: List[str] = Field(default_factory=list)
    total_size_kb: float = Field(0.0, alias="totalSizeKB")
    results: List[SizeValidationResult] = Field(default_factory=list)


class MatchResult(CamelModel):
    """Outcome of relocating one action's target on a live page."""

    success: bool
    strategy_used: MatchStrategy = MatchStrategy.NONE
    confidence: float = Field(0.0, ge=0.0, le=1.0)
    resolved_position: Optional[Point] = None
    selector: Optional[str] = None
    error: Optional[str] = None
    signals: Dict[str, float] = Field(default_factory=dict)
    attempts: int = 1

    @classmethod
    def failure(cls, error: str, **kwargs: Any) -> "MatchResult":
        values: Dict[str, Any] = {"strategy_used": MatchStrategy.NONE, "confidence": 0.0}
        values.update(kwargs)
        return cls(success=False, error=error, **values)


class CaptureEvent(CamelModel):
    """Interaction event reported by a page event source."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="allow")

    kind: str = Field(..., description="click, input, focus, scroll, navigation, upload or submit")
    timestamp: float
    url: Optional[str] = None
    element: Optional[ElementInfo] = None
    fingerprint: Optional[Fingerprint] = None
    value: Optional[str] = None
    delta_x: float = 0.0
    delta_y: float = 0.0
    method: Optional[str] = None
    files: List[UploadedFile] = Field(default_factory=list)


class PageChange(CamelModel):
    """A container inserted into the document that may need capture attached."""

    kind: str = Field(..., description="overlay or iframe")
    node_id: str
    src: Optional[str] = None
    same_origin: bool = True


@dataclass
class ElementCandidate:
    """Live element considered by the visual strategy."""

    handle: Any
    text: str = ""
    bounding_box: Optional[BoundingBox] = None
    surrounding_text: List[str] = field(default_factory=list)
    selector: Optional[str] = None

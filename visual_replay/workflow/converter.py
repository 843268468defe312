"""
Conversion of raw recorder records and canonical actions into one shape.
"""

import json
import random
from numbers import Real
from typing import Any, Callable, Dict, Iterable, List, Optional, Union

from pydantic import BaseModel, ValidationError

from visual_replay.config.settings import get_settings
from visual_replay.core.types import (
    Action,
    ActionType,
    ExecutionMethod,
    IngestionShape,
    RecordedAction,
    RecordingDocument,
    canonicalize_params,
)
from visual_replay.error_handling.exceptions import ConversionError
from visual_replay.monitoring.logger import get_logger

logger = get_logger(__name__)

# Keys only the recorder writes
RAW_MARKERS = ("key", "timestamp", "element", "value")

RAPID_ACTION_WINDOW_MS = 2000
UPLOAD_PATH_TEMPLATE = "{{imagePath}}"
NAVIGATION_WAIT_POLICY = "networkidle2"

# Type-specific params some exporters place beside ``params``
TYPE_SPECIFIC_FIELDS = (
    "text", "url", "waitUntil", "filePath", "direction", "amount", "duration", "randomize",
)


def _is_number(value: Any) -> bool:
    return isinstance(value, Real) and not isinstance(value, bool)


def has_valid_location(visual: Any) -> bool:
    """
    Whether fingerprint data carries everything needed to relocate an element.

    Requires a numeric absolute position, a numeric bounding box and a
    numeric timestamp. Screenshots are optional.
    """
    if isinstance(visual, BaseModel):
        visual = visual.model_dump(by_alias=True)
    if not isinstance(visual, dict):
        return False

    absolute = (visual.get("position") or {}).get("absolute") or {}
    box = visual.get("boundingBox", visual.get("bounding_box")) or {}

    return (
        _is_number(absolute.get("x"))
        and _is_number(absolute.get("y"))
        and all(_is_number(box.get(k)) for k in ("x", "y", "width", "height"))
        and _is_number(visual.get("timestamp"))
    )


def classify_entry(entry: Any) -> IngestionShape:
    """
    Decide whether an entry is a raw recorder record or a canonical action.

    Raises:
        ConversionError: If the entry is not a mapping or model
    """
    if isinstance(entry, RecordedAction):
        return IngestionShape.RAW
    if isinstance(entry, Action):
        return IngestionShape.CANONICAL
    if not isinstance(entry, dict):
        raise ConversionError(
            f"Cannot convert entry of type {type(entry).__name__}",
            entry_type=type(entry).__name__,
        )
    if "params" in entry:
        return IngestionShape.CANONICAL
    if any(marker in entry for marker in RAW_MARKERS):
        return IngestionShape.RAW
    if "name" in entry:
        return IngestionShape.CANONICAL
    return IngestionShape.RAW


def _parse_type(value: Any, index: Optional[int]) -> ActionType:
    if isinstance(value, ActionType):
        return value
    try:
        return ActionType(str(value).lower())
    except ValueError:
        raise ConversionError(
            f"Unknown action type: {value!r}", entry_type=str(value), index=index
        )


class ActionConverter:
    """
    Normalizes heterogeneous recorded and imported entries into canonical actions.

    Every output action has a non-null name, type, platform and params.
    """

    def __init__(
        self,
        platform: Optional[str] = None,
        default_execution_method: Optional[str] = None,
    ):
        settings = get_settings()
        self.platform = platform or settings.default_platform
        self.default_execution_method = ExecutionMethod.parse(
            default_execution_method or settings.default_execution_method
        )
        self._normalizers: Dict[ActionType, Callable[[Dict[str, Any]], Action]] = {
            ActionType.CLICK: self._normalize_click,
            ActionType.TYPE: self._normalize_type,
            ActionType.NAVIGATE: self._normalize_navigate,
            ActionType.UPLOAD: self._normalize_upload,
            ActionType.SCROLL: self._normalize_scroll,
            ActionType.WAIT: self._normalize_wait,
            ActionType.SUBMIT: self._normalize_submit,
        }

    def normalize(self, entry: Any, index: Optional[int] = None) -> Action:
        """
        Convert one entry into a canonical action.

        Args:
            entry: Raw record, canonical action, or either as a dict
            index: Position of the entry, used in error details

        Returns:
            Canonical action

        Raises:
            ConversionError: If the entry has an unknown type or shape
        """
        shape = classify_entry(entry)
        if isinstance(entry, BaseModel):
            entry = entry.model_dump(by_alias=True, exclude_none=True)

        if shape is IngestionShape.CANONICAL:
            return self._normalize_canonical(entry, index)

        action_type = _parse_type(entry.get("type"), index)
        normalizer = self._normalizers.get(action_type, self._normalize_default)
        try:
            return normalizer({**entry, "type": action_type})
        except ValidationError as e:
            raise ConversionError(
                f"Entry {index} could not be normalized: {e.error_count()} invalid fields",
                entry_type=action_type.value,
                index=index,
                cause=e,
            )
        except ValueError as e:
            raise ConversionError(
                f"Entry {index} could not be normalized: {e}",
                entry_type=action_type.value,
                index=index,
                cause=e,
            )

    def _normalize_canonical(self, entry: Dict[str, Any], index: Optional[int]) -> Action:
        action_type = _parse_type(entry.get("type"), index)
        stray = {k: entry[k] for k in TYPE_SPECIFIC_FIELDS if k in entry}
        if stray:
            params = entry.get("params")
            if isinstance(params, str) and params.strip():
                try:
                    params = json.loads(params)
                except ValueError as e:
                    raise ConversionError(
                        f"Entry {index} has unparseable params",
                        entry_type=action_type.value,
                        index=index,
                        cause=e,
                    )
            params = params if isinstance(params, dict) else {}
            entry = {
                **{k: v for k, v in entry.items() if k not in stray},
                "params": {**stray, **params},
            }
        data = {
            **entry,
            "type": action_type,
            "name": entry.get("name") or self._default_name(action_type),
            "platform": entry.get("platform") or self.platform,
        }
        try:
            action = Action.model_validate(data)
        except ValidationError as e:
            raise ConversionError(
                f"Entry {index} is not a valid action: {e.error_count()} invalid fields",
                entry_type=action_type.value,
                index=index,
                cause=e,
            )

        params = dict(action.params)
        params.setdefault("executionMethod", self.default_execution_method.value)
        return action.model_copy(update={"params": self._checked_visual(params)})

    def _checked_visual(self, params: Dict[str, Any]) -> Dict[str, Any]:
        """Drop an incomplete fingerprint and fall back to the selector."""
        if params.get("visual") is not None and not has_valid_location(params["visual"]):
            logger.warning(
                "Fingerprint missing position, bounding box or timestamp; using selector",
                extra={"backup_selector": params.get("backupSelector")},
            )
            params = {
                **params,
                "visual": None,
                "executionMethod": ExecutionMethod.SELECTOR_FIRST.value,
            }
        return params

    def _base_params(self, entry: Dict[str, Any], with_visual: bool = True) -> Dict[str, Any]:
        raw = canonicalize_params({k: v for k, v in entry.items() if k != "params"})
        params: Dict[str, Any] = {
            "backupSelector": raw.get("backupSelector")
            or (entry.get("element") or {}).get("selector"),
            "executionMethod": ExecutionMethod.parse(
                raw.get("executionMethod"), self.default_execution_method
            ).value,
        }
        if with_visual:
            params["visual"] = self._structure_visual(raw.get("visual"), entry)
            params = self._checked_visual(params)
        return params

    def _structure_visual(
        self, visual: Optional[Dict[str, Any]], entry: Dict[str, Any]
    ) -> Optional[Dict[str, Any]]:
        if not isinstance(visual, dict):
            return visual or None
        position = visual.get("position") or {}
        structured = {
            **visual,
            "text": visual.get("text") or "",
            "surroundingText": visual.get("surroundingText") or [],
            "timestamp": visual.get("timestamp") or entry.get("timestamp"),
        }
        if position.get("absolute") is not None:
            structured["position"] = {
                "absolute": position["absolute"],
                "relative": position.get("relative") or {"x": 0, "y": 0},
            }
        return structured

    def _action(self, entry: Dict[str, Any], name: str, params: Dict[str, Any]) -> Action:
        return Action(
            id=entry.get("id"),
            name=entry.get("name") or name,
            type=entry["type"],
            platform=entry.get("platform") or self.platform,
            params=params,
        )

    def _default_name(self, action_type: ActionType) -> str:
        return f"{action_type.value.capitalize()} action"

    def _normalize_click(self, entry: Dict[str, Any]) -> Action:
        params = self._base_params(entry)
        text = (params.get("visual") or {}).get("text") or ""
        return self._action(entry, f'Click "{text[:30] or "element"}"', params)

    def _normalize_type(self, entry: Dict[str, Any]) -> Action:
        params = self._base_params(entry)
        visual = params.get("visual")
        if visual is not None:
            visual.setdefault("inputType", "text")
        params["text"] = entry.get("value") or entry.get("text") or ""
        label = (
            (visual or {}).get("placeholder")
            or (entry.get("element") or {}).get("name")
            or "field"
        )
        return self._action(entry, f'Type in "{label}"', params)

    def _normalize_navigate(self, entry: Dict[str, Any]) -> Action:
        params = self._base_params(entry, with_visual=False)
        params.update({
            "url": entry.get("url"),
            "waitUntil": entry.get("waitUntil") or NAVIGATION_WAIT_POLICY,
        })
        return self._action(entry, f"Navigate to {entry.get('url')}", params)

    def _normalize_upload(self, entry: Dict[str, Any]) -> Action:
        params = self._base_params(entry)
        params["filePath"] = UPLOAD_PATH_TEMPLATE
        if entry.get("fileName"):
            params["fileName"] = entry["fileName"]
        return self._action(entry, "Upload file", params)

    def _normalize_scroll(self, entry: Dict[str, Any]) -> Action:
        params = self._base_params(entry, with_visual=False)
        params.update({
            "direction": entry.get("direction") or "down",
            "amount": entry.get("amount") or 0,
        })
        return self._action(entry, f"Scroll {params['direction']}", params)

    def _normalize_wait(self, entry: Dict[str, Any]) -> Action:
        params = self._base_params(entry, with_visual=False)
        params.update({
            "duration": entry.get("duration") or 1000,
            "randomize": bool(entry.get("randomize", False)),
        })
        return self._action(entry, "Wait", params)

    def _normalize_submit(self, entry: Dict[str, Any]) -> Action:
        return self._action(entry, "Submit form", self._base_params(entry))

    def _normalize_default(self, entry: Dict[str, Any]) -> Action:
        params = self._base_params(entry)
        return self._action(entry, self._default_name(entry["type"]), params)


def _entries_of(
    recording: Union[RecordingDocument, Dict[str, Any], Iterable[Any]]
) -> List[Any]:
    if isinstance(recording, RecordingDocument):
        return list(recording.actions)
    if isinstance(recording, dict):
        for key in ("actions", "recordedActions", "microActions"):
            if isinstance(recording.get(key), list):
                return recording[key]
        raise ConversionError("Recording has no actions list")
    return list(recording)


def _timestamp(entry: Any) -> Optional[float]:
    if isinstance(entry, BaseModel):
        entry = entry.model_dump(by_alias=True)
    value = entry.get("timestamp") if isinstance(entry, dict) else None
    return value if _is_number(value) else None


def convert_recording(
    recording: Union[RecordingDocument, Dict[str, Any], Iterable[Any]],
    platform: Optional[str] = None,
    merge_typing: bool = True,
    insert_waits: bool = False,
    rng: Optional[random.Random] = None,
) -> List[Action]:
    """
    Normalize every entry of a recording into canonical actions.

    Args:
        recording: RecordingDocument, its dict form, or a bare list of entries
        platform: Platform for actions without one (defaults to the document's)
        merge_typing: Merge consecutive type actions into the same field
        insert_waits: Insert a randomized 1-2 s wait between actions recorded
            less than 2 s apart
        rng: Random source for wait durations

    Returns:
        Canonical actions in recording order
    """
    if platform is None:
        if isinstance(recording, RecordingDocument):
            platform = recording.platform
        elif isinstance(recording, dict):
            platform = recording.get("platform")

    converter = ActionConverter(platform=platform)
    rng = rng or random.Random()
    entries = _entries_of(recording)
    actions: List[Action] = []
    previous_timestamp: Optional[float] = None

    for index, entry in enumerate(entries):
        action = converter.normalize(entry, index)
        timestamp = _timestamp(entry)
        rapid = (
            previous_timestamp is not None
            and timestamp is not None
            and timestamp - previous_timestamp < RAPID_ACTION_WINDOW_MS
        )
        if timestamp is not None:
            previous_timestamp = timestamp

        previous = actions[-1] if actions else None
        if (
            merge_typing
            and previous is not None
            and action.type == ActionType.TYPE
            and previous.type == ActionType.TYPE
            and previous.backup_selector
            and previous.backup_selector == action.backup_selector
        ):
            actions[-1] = previous.model_copy(
                update={"params": {**previous.params, "text": action.params.get("text", "")}}
            )
            continue

        if (
            insert_waits
            and rapid
            and previous is not None
            and previous.type != ActionType.WAIT
            and action.type != ActionType.WAIT
        ):
            actions.append(Action(
                name="Wait between actions",
                type=ActionType.WAIT,
                platform=converter.platform,
                params={
                    "duration": round(1000 + rng.random() * 1000),
                    "randomize": True,
                    "executionMethod": converter.default_execution_method.value,
                },
            ))

        actions.append(action)

    logger.info(
        "Recording converted",
        extra={"entry_count": len(entries), "action_count": len(actions)},
    )
    return actions

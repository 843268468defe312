"""
Factories for canonical actions and helpers for template variables.
"""

import re
import time
from typing import Any, Dict, List, Mapping, Optional, Union

from visual_replay.core.types import Action, ActionType, ExecutionMethod, Fingerprint
from visual_replay.workflow.converter import has_valid_location

VisualData = Union[Fingerprint, Dict[str, Any]]


class TemplateVariables:
    """Placeholder tokens substituted at replay time."""

    USERNAME = "{{username}}"
    PASSWORD = "{{password}}"
    EMAIL = "{{email}}"
    CAPTION = "{{caption}}"
    IMAGE_PATH = "{{imagePath}}"
    VIDEO_PATH = "{{videoPath}}"
    URL = "{{url}}"
    PHONE = "{{phone}}"


_TEMPLATE_PATTERN = re.compile(r"\{\{(\w+)\}\}")


def _visual_dict(visual: VisualData) -> Dict[str, Any]:
    if isinstance(visual, Fingerprint):
        return visual.model_dump(by_alias=True, exclude_none=True)
    return dict(visual)


def create_navigate_action(url: str, wait_until: str = "networkidle2") -> Action:
    return Action(
        name=f"Navigate to {url}",
        type=ActionType.NAVIGATE,
        params={"url": url, "waitUntil": wait_until},
    )


def create_wait_action(duration: int, randomize: bool = True) -> Action:
    return Action(
        name=f"Wait {duration}ms",
        type=ActionType.WAIT,
        params={"duration": duration, "randomize": randomize},
    )


def create_click_action(
    visual: VisualData,
    backup_selector: Optional[str] = None,
    execution_method: ExecutionMethod = ExecutionMethod.VISUAL_FIRST,
) -> Action:
    visual = _visual_dict(visual)
    return Action(
        name=f'Click "{visual.get("text") or "element"}"',
        type=ActionType.CLICK,
        params={
            "visual": visual,
            "backupSelector": backup_selector,
            "executionMethod": execution_method.value,
        },
    )


def create_type_action(
    visual: VisualData,
    text: str,
    backup_selector: Optional[str] = None,
    execution_method: ExecutionMethod = ExecutionMethod.VISUAL_FIRST,
) -> Action:
    visual = _visual_dict(visual)
    label = visual.get("placeholder") or visual.get("text") or "field"
    return Action(
        name=f'Type in "{label}"',
        type=ActionType.TYPE,
        params={
            "visual": visual,
            "text": text,
            "backupSelector": backup_selector,
            "typeSpeed": "normal",
            "executionMethod": execution_method.value,
        },
    )


def create_scroll_action(direction: str, amount: Optional[float] = None) -> Action:
    return Action(
        name=f"Scroll {direction}",
        type=ActionType.SCROLL,
        params={"direction": direction, "amount": amount},
    )


def create_upload_action(
    visual: VisualData,
    file_path: str = TemplateVariables.IMAGE_PATH,
    backup_selector: Optional[str] = None,
) -> Action:
    return Action(
        name="Upload file",
        type=ActionType.UPLOAD,
        params={
            "visual": _visual_dict(visual),
            "filePath": file_path,
            "backupSelector": backup_selector,
            "executionMethod": ExecutionMethod.VISUAL_FIRST.value,
        },
    )


def create_screenshot_action(path: Optional[str] = None, full_page: bool = False) -> Action:
    return Action(
        name="Take screenshot",
        type=ActionType.SCREENSHOT,
        params={
            "path": path or f"screenshot-{int(time.time() * 1000)}.png",
            "fullPage": full_page,
        },
    )


def validate_action(action: Action) -> List[str]:
    """
    Check the type-specific requirements of an action.

    Returns:
        Error messages; empty when the action can be replayed
    """
    errors: List[str] = []
    params = action.params

    if action.type in (ActionType.CLICK, ActionType.TYPE):
        if not params.get("visual") and not params.get("backupSelector"):
            errors.append("Visual actions require either visual data or backupSelector")
        if params.get("visual") and not has_valid_location(params["visual"]):
            errors.append("Visual data missing position, boundingBox or timestamp")

    if action.type == ActionType.TYPE and not params.get("text"):
        errors.append("Type action requires text parameter")

    if action.type == ActionType.NAVIGATE and not params.get("url"):
        errors.append("Navigate action requires url parameter")

    if action.type == ActionType.WAIT and not params.get("duration"):
        errors.append("Wait action requires duration parameter")

    return errors


def substitute_templates(value: Any, variables: Mapping[str, str]) -> Any:
    """Replace known ``{{name}}`` tokens in a string; other values pass through."""
    if not isinstance(value, str):
        return value
    return _TEMPLATE_PATTERN.sub(
        lambda m: str(variables.get(m.group(1), m.group(0))), value
    )


def replace_templates(action: Action, variables: Mapping[str, str]) -> Action:
    """
    Substitute ``{{name}}`` tokens in the action's text, url and filePath.

    Unknown tokens are left in place.
    """
    params = dict(action.params)
    for key in ("text", "url", "filePath"):
        if key in params:
            params[key] = substitute_templates(params[key], variables)
    return action.model_copy(update={"params": params})

"""
Action normalization and workflow expansion.
"""

from visual_replay.workflow.converter import (
    ActionConverter,
    classify_entry,
    convert_recording,
    has_valid_location,
)
from visual_replay.workflow.expansion import (
    expand_workflow,
    populate_actions,
    resolve_action,
    resolve_execution_chain,
)
from visual_replay.workflow.factories import (
    TemplateVariables,
    create_click_action,
    create_navigate_action,
    create_screenshot_action,
    create_scroll_action,
    create_type_action,
    create_upload_action,
    create_wait_action,
    replace_templates,
    substitute_templates,
    validate_action,
)

__all__ = [
    "ActionConverter",
    "classify_entry",
    "convert_recording",
    "has_valid_location",
    "expand_workflow",
    "populate_actions",
    "resolve_action",
    "resolve_execution_chain",
    "TemplateVariables",
    "create_click_action",
    "create_navigate_action",
    "create_screenshot_action",
    "create_scroll_action",
    "create_type_action",
    "create_upload_action",
    "create_wait_action",
    "replace_templates",
    "substitute_templates",
    "validate_action",
]

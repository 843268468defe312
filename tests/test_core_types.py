"""
Unit tests for core data types.
"""

import json

import pytest
from pydantic import ValidationError

from visual_replay.core.types import (
    Action,
    ActionType,
    BoundingBox,
    CaptureEvent,
    ElementInfo,
    ExecutionMethod,
    Fingerprint,
    MatchResult,
    MatchStrategy,
    RecordedAction,
    ResolvedAction,
    SizeValidationResult,
    Workflow,
    WorkflowStep,
    canonicalize_params,
)


class TestExecutionMethod:
    """Tests for execution method parsing."""

    @pytest.mark.parametrize(
        "value, expected",
        [
            ("visualFirst", ExecutionMethod.VISUAL_FIRST),
            ("selector_first", ExecutionMethod.SELECTOR_FIRST),
            ("visual-only", ExecutionMethod.VISUAL_ONLY),
            ("VISUALONLY", ExecutionMethod.VISUAL_ONLY),
            (ExecutionMethod.SELECTOR_FIRST, ExecutionMethod.SELECTOR_FIRST),
        ],
    )
    def test_spellings(self, value, expected):
        assert ExecutionMethod.parse(value) == expected

    def test_empty_uses_default(self):
        assert ExecutionMethod.parse(None) == ExecutionMethod.VISUAL_FIRST
        assert ExecutionMethod.parse("", ExecutionMethod.SELECTOR_FIRST) == ExecutionMethod.SELECTOR_FIRST

    def test_unknown(self):
        with pytest.raises(ValueError, match="Unknown execution method"):
            ExecutionMethod.parse("pixelPerfect")


class TestGeometry:
    """Tests for bounding boxes and fingerprint positions."""

    def test_center(self):
        box = BoundingBox(x=10, y=20, width=30, height=40)
        assert (box.center.x, box.center.y) == (25, 40)

    def test_padded_clamps_at_origin(self):
        padded = BoundingBox(x=10, y=20, width=30, height=40).padded(15)

        assert (padded.x, padded.y) == (0, 5)
        assert (padded.width, padded.height) == (55, 70)

    def test_negative_size_rejected(self):
        with pytest.raises(ValidationError):
            BoundingBox(x=0, y=0, width=-1, height=10)

    def test_relative_point_recorded(self, fingerprint_dict):
        fingerprint = Fingerprint.model_validate(fingerprint_dict)
        assert (fingerprint.relative_point.x, fingerprint.relative_point.y) == (10.0, 10.0)

    def test_relative_point_derived(self):
        fingerprint = Fingerprint.model_validate({
            "position": {"absolute": {"x": 640, "y": 180}},
            "viewport": {"width": 1280, "height": 720},
        })
        assert (fingerprint.relative_point.x, fingerprint.relative_point.y) == (50.0, 25.0)

    def test_relative_point_unknown(self):
        assert Fingerprint(text="x").relative_point is None


class TestFingerprint:
    """Tests for the Fingerprint model."""

    def test_camel_case_round_trip(self, fingerprint_dict):
        fingerprint = Fingerprint.model_validate(fingerprint_dict)

        assert fingerprint.bounding_box.width == 60
        assert fingerprint.surrounding_text == ["Share your update"]
        assert fingerprint.to_document() == fingerprint_dict

    def test_null_text_and_surrounding(self):
        fingerprint = Fingerprint.model_validate({"text": None, "surroundingText": None})

        assert fingerprint.text == ""
        assert fingerprint.surrounding_text == []

    def test_frozen(self, fingerprint_dict):
        fingerprint = Fingerprint.model_validate(fingerprint_dict)
        with pytest.raises(ValidationError):
            fingerprint.text = "Other"

    def test_has_location(self, fingerprint_dict):
        assert Fingerprint.model_validate(fingerprint_dict).has_location() is True
        del fingerprint_dict["timestamp"]
        assert Fingerprint.model_validate(fingerprint_dict).has_location() is False

    def test_extra_fields_kept(self, fingerprint_dict):
        fingerprint = Fingerprint.model_validate({**fingerprint_dict, "elementRole": "button"})
        assert fingerprint.to_document()["elementRole"] == "button"


class TestElementInfo:
    """Tests for DOM element descriptions."""

    def test_dom_attribute_names(self):
        element = ElementInfo.model_validate({"tag": "input", "id": "email", "type": "email"})

        assert element.element_id == "email"
        assert element.input_type == "email"
        assert element.to_document() == {"tag": "input", "id": "email", "type": "email"}


class TestCanonicalizeParams:
    """Tests for legacy param key handling."""

    def test_legacy_keys_renamed(self):
        params = canonicalize_params({
            "backup_selector": "#post",
            "execution_method": "selector_first",
            "fingerprint": {"text": "Post"},
            "text": "hello",
        })

        assert params == {
            "backupSelector": "#post",
            "executionMethod": "selectorFirst",
            "visual": {"text": "Post"},
            "text": "hello",
        }

    def test_canonical_key_wins(self):
        params = canonicalize_params({"backup_selector": "#old", "backupSelector": "#new"})
        assert params == {"backupSelector": "#new"}

    def test_none(self):
        assert canonicalize_params(None) == {}


class TestAction:
    """Tests for canonical actions."""

    def test_params_never_null(self):
        assert Action(name="Wait", type="wait", params=None).params == {}

    def test_params_json_string(self):
        action = Action(
            name="Click", type="click", params=json.dumps({"backup_selector": "#a"})
        )
        assert action.backup_selector == "#a"

    def test_empty_params_string(self):
        assert Action(name="Wait", type="wait", params="  ").params == {}

    def test_top_level_fingerprint_relocated(self, fingerprint_dict):
        action = Action.model_validate({
            "name": "Click Post",
            "type": "click",
            "fingerprint": fingerprint_dict,
            "backup_selector": "#post",
            "params": {"executionMethod": "selectorFirst"},
        })

        assert action.params["visual"] == fingerprint_dict
        assert action.backup_selector == "#post"
        assert action.execution_method == ExecutionMethod.SELECTOR_FIRST
        assert "fingerprint" not in action.model_dump()

    def test_params_win_over_stray_fields(self):
        action = Action.model_validate({
            "name": "Click",
            "type": "click",
            "backupSelector": "#stray",
            "params": {"backupSelector": "#params"},
        })
        assert action.backup_selector == "#params"

    def test_numeric_id_stringified(self):
        assert Action(id=42, name="Wait", type="wait").id == "42"

    def test_default_execution_method(self):
        assert Action(name="Click", type="click").execution_method == ExecutionMethod.VISUAL_FIRST

    def test_unknown_type(self):
        with pytest.raises(ValidationError):
            Action(name="Hover", type="hover")


class TestWorkflow:
    """Tests for workflows and their steps."""

    def test_step_aliases(self):
        step = WorkflowStep.model_validate({"micro_action_id": 7, "params_override": None})

        assert step.action_id == "7"
        assert step.params_override == {}
        assert step.to_document() == {"actionId": "7", "paramsOverride": {}}

    def test_override_canonicalized(self):
        step = WorkflowStep.model_validate({
            "actionId": "a1",
            "paramsOverride": {"backup_selector": "#x"},
        })
        assert step.params_override == {"backupSelector": "#x"}

    def test_steps_json_string(self):
        workflow = Workflow.model_validate({
            "id": 3,
            "name": "Post update",
            "steps": json.dumps([{"actionId": "a1"}, {"actionId": "a2"}]),
            "requiresAuth": True,
            "authWorkflowId": 1,
        })

        assert workflow.id == "3"
        assert [s.action_id for s in workflow.steps] == ["a1", "a2"]
        assert workflow.requires_auth is True
        assert workflow.auth_workflow_id == "1"

    def test_null_steps(self):
        assert Workflow(name="Empty", steps=None).steps == []


class TestResultsAndEvents:
    """Tests for validation results, match results and capture events."""

    def test_size_result_alias(self):
        result = SizeValidationResult(size_kb=12.5)
        assert result.to_document()["sizeKB"] == 12.5

    def test_match_failure_defaults(self):
        result = MatchResult.failure("Selector not found: #a")

        assert result.success is False
        assert result.strategy_used == MatchStrategy.NONE
        assert result.confidence == 0.0
        assert result.error == "Selector not found: #a"

    def test_match_failure_overrides(self):
        result = MatchResult.failure(
            "below threshold", strategy_used=MatchStrategy.VISUAL, confidence=0.4
        )

        assert result.strategy_used == MatchStrategy.VISUAL
        assert result.confidence == 0.4

    def test_confidence_bounds(self):
        with pytest.raises(ValidationError):
            MatchResult(success=True, confidence=1.5)

    def test_targeted_types(self):
        assert ResolvedAction(name="c", type=ActionType.CLICK).is_targeted is True
        assert ResolvedAction(name="w", type=ActionType.WAIT).is_targeted is False
        assert ResolvedAction(name="n", type=ActionType.NAVIGATE).is_targeted is False

    def test_capture_event_from_browser_payload(self):
        event = CaptureEvent.model_validate({
            "kind": "scroll",
            "timestamp": 1700000000000,
            "deltaY": 120,
            "frameUrl": "https://example.com/frame",
        })

        assert event.delta_y == 120
        assert event.delta_x == 0.0
        assert event.files == []

    def test_recorded_action_document(self, fingerprint_dict):
        action = RecordedAction(
            key="1700000000000-1",
            type=ActionType.CLICK,
            timestamp=1700000000000,
            visual=fingerprint_dict,
            backup_selector="#post",
        )
        document = action.to_document()

        assert document["backupSelector"] == "#post"
        assert document["executionMethod"] == "visualFirst"
        assert document["visual"]["boundingBox"]["height"] == 30

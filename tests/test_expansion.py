"""
Unit tests for workflow expansion and auth chain resolution.
"""

import json

import pytest

from visual_replay.core.types import (
    Action,
    ActionType,
    ExecutionMethod,
    Fingerprint,
    Workflow,
)
from visual_replay.error_handling.exceptions import (
    ConversionError,
    ConversionPreconditionError,
)
from visual_replay.workflow import (
    expand_workflow,
    populate_actions,
    resolve_action,
    resolve_execution_chain,
)


@pytest.fixture
def type_action(fingerprint_dict):
    return Action(
        id="a1",
        name="Type caption",
        type=ActionType.TYPE,
        params={
            "visual": fingerprint_dict,
            "text": "original",
            "backupSelector": "#caption",
            "executionMethod": "visualFirst",
        },
        version="3",
    )


@pytest.fixture
def click_action(fingerprint_dict):
    return Action(
        id="a2",
        name="Click Post",
        type=ActionType.CLICK,
        params={"visual": fingerprint_dict, "backupSelector": "#post"},
    )


class TestExpandWorkflow:
    """Tests for expand_workflow."""

    def test_override_merge(self, type_action):
        workflow = Workflow(
            id="w1",
            name="Post",
            steps=[{
                "actionId": "a1",
                "paramsOverride": {"text": "X", "backupSelector": "#a"},
                "action": type_action,
            }],
        )

        [step] = expand_workflow(workflow)

        assert step.params["text"] == "X"
        assert step.backup_selector == "#a"
        assert step.fingerprint.text == "Post"
        assert step.execution_method == ExecutionMethod.VISUAL_FIRST
        assert step.action_id == "a1"
        assert step.version == "3"
        assert type_action.params["text"] == "original"

    def test_steps_in_order(self, type_action, click_action):
        workflow = {
            "name": "Post",
            "steps": json.dumps([{"actionId": "a2"}, {"actionId": "a1"}, {"actionId": "a2"}]),
        }

        steps = expand_workflow(workflow, actions=[type_action, click_action])

        assert [s.name for s in steps] == ["Click Post", "Type caption", "Click Post"]
        assert [s.step_index for s in steps] == [0, 1, 2]

    def test_unpopulated_step(self, click_action):
        workflow = Workflow(id="w9", name="Broken", steps=[{"actionId": "a2"}, {"actionId": "zz"}])

        with pytest.raises(ConversionPreconditionError) as exc_info:
            expand_workflow(workflow, actions=[click_action])

        assert exc_info.value.missing_reference == "zz"
        assert exc_info.value.workflow_id == "w9"
        assert "Step 2" in exc_info.value.message

    def test_empty_override_value_falls_back(self, type_action):
        workflow = Workflow(
            name="Post",
            steps=[{"actionId": "a1", "paramsOverride": {"backupSelector": ""}, "action": type_action}],
        )

        [step] = expand_workflow(workflow)

        assert step.backup_selector == "#caption"

    def test_override_replaces_whole_fingerprint(self, type_action):
        workflow = Workflow(
            name="Post",
            steps=[{
                "actionId": "a1",
                "paramsOverride": {"visual": {"text": "Share"}},
                "action": type_action,
            }],
        )

        [step] = expand_workflow(workflow)

        assert step.fingerprint.text == "Share"
        assert step.fingerprint.bounding_box is None

    def test_legacy_override_keys(self, click_action):
        workflow = Workflow(
            name="Post",
            steps=[{
                "micro_action_id": "a2",
                "params_override": {"execution_method": "selector_first"},
                "micro_action": click_action,
            }],
        )

        [step] = expand_workflow(workflow)

        assert step.execution_method == ExecutionMethod.SELECTOR_FIRST

    def test_missing_workflow(self):
        with pytest.raises(ConversionPreconditionError):
            expand_workflow(None)

    def test_invalid_workflow(self):
        with pytest.raises(ConversionError):
            expand_workflow({"steps": []})


class TestPopulateActions:
    """Tests for populate_actions."""

    def test_populates_by_id(self, click_action):
        workflow = populate_actions(
            {"name": "Post", "steps": [{"actionId": "a2"}, {"actionId": "a3"}]},
            [click_action.to_document()],
        )

        assert workflow.steps[0].action.name == "Click Post"
        assert workflow.steps[1].action is None


class TestResolveAction:
    """Tests for resolve_action."""

    def test_plain_action(self, click_action):
        resolved = resolve_action(click_action)

        assert resolved.name == "Click Post"
        assert isinstance(resolved.fingerprint, Fingerprint)
        assert resolved.backup_selector == "#post"
        assert resolved.is_targeted is True

    def test_dict_with_override(self, click_action):
        resolved = resolve_action(
            click_action.to_document(), {"executionMethod": "visualOnly"}, index=4
        )

        assert resolved.execution_method == ExecutionMethod.VISUAL_ONLY
        assert resolved.step_index == 4

    def test_default_method_from_settings(self, monkeypatch):
        monkeypatch.setenv("DEFAULT_EXECUTION_METHOD", "selectorFirst")

        resolved = resolve_action(Action(name="Click", type="click", params={"backupSelector": "#a"}))

        assert resolved.execution_method == ExecutionMethod.SELECTOR_FIRST

    def test_malformed_fingerprint(self):
        action = Action(name="Click", type="click", params={"visual": {"boundingBox": {"x": 1}}})

        with pytest.raises(ConversionError, match="Step 3 has a malformed fingerprint"):
            resolve_action(action, index=2)

    def test_no_fingerprint(self):
        resolved = resolve_action(Action(name="Go", type="navigate", params={"url": "https://x"}))

        assert resolved.fingerprint is None
        assert resolved.is_targeted is False


class TestResolveExecutionChain:
    """Tests for auth workflow ordering."""

    def test_nested_auth(self):
        target = Workflow(id="post", name="Post", requires_auth=True, auth_workflow_id="login")
        login = Workflow(id="login", name="Login", requires_auth=True, auth_workflow_id="consent")
        consent = Workflow(id="consent", name="Consent")

        chain = resolve_execution_chain(target, [login, consent])

        assert [w.id for w in chain] == ["consent", "login", "post"]

    def test_mapping_of_dicts(self):
        chain = resolve_execution_chain(
            {"id": "post", "name": "Post", "requiresAuth": True, "authWorkflowId": "login"},
            {"login": {"id": "login", "name": "Login"}},
        )
        assert [w.id for w in chain] == ["login", "post"]

    def test_no_auth(self):
        chain = resolve_execution_chain(Workflow(id="w", name="W"), [])
        assert [w.id for w in chain] == ["w"]

    def test_missing_reference(self):
        target = Workflow(id="post", name="Post", requires_auth=True, auth_workflow_id="login")

        with pytest.raises(ConversionPreconditionError) as exc_info:
            resolve_execution_chain(target, [])

        assert exc_info.value.missing_reference == "login"

    def test_cycle(self):
        a = Workflow(id="a", name="A", requires_auth=True, auth_workflow_id="b")
        b = Workflow(id="b", name="B", requires_auth=True, auth_workflow_id="a")

        with pytest.raises(ConversionPreconditionError, match="cycle"):
            resolve_execution_chain(a, [a, b])

    def test_auth_without_reference(self):
        with pytest.raises(ConversionPreconditionError, match="names no auth workflow"):
            resolve_execution_chain(Workflow(id="a", name="A", requires_auth=True), [])

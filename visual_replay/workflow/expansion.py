"""
Expansion of persisted workflows into flat, executable step sequences.

Each step's params are ``{**action.params, **step.params_override}``. The
merge is single-level: an overridden ``visual`` replaces the whole
fingerprint instead of merging into it.
"""

from typing import Any, Dict, Iterable, List, Mapping, Optional, Union

from pydantic import ValidationError

from visual_replay.config.settings import get_settings
from visual_replay.core.types import (
    Action,
    ExecutionMethod,
    Fingerprint,
    ResolvedAction,
    Workflow,
)
from visual_replay.error_handling.exceptions import (
    ConversionError,
    ConversionPreconditionError,
)
from visual_replay.monitoring.logger import get_logger

logger = get_logger(__name__)

WorkflowLike = Union[Workflow, Dict[str, Any]]


def _as_workflow(workflow: WorkflowLike) -> Workflow:
    if workflow is None:
        raise ConversionPreconditionError("Workflow is required")
    if isinstance(workflow, Workflow):
        return workflow
    try:
        return Workflow.model_validate(workflow)
    except (ValidationError, ValueError) as e:
        raise ConversionError(
            f"Invalid workflow: {e}",
            cause=e,
        )


def populate_actions(
    workflow: WorkflowLike, actions: Iterable[Union[Action, Dict[str, Any]]]
) -> Workflow:
    """
    Attach each step's referenced action, looked up by id.

    Steps whose action is not in ``actions`` stay unpopulated; expanding
    such a workflow fails.
    """
    workflow = _as_workflow(workflow)
    by_id: Dict[str, Action] = {}
    for action in actions or []:
        if not isinstance(action, Action):
            action = Action.model_validate(action)
        if action.id is not None:
            by_id[action.id] = action

    steps = [
        step.model_copy(update={"action": by_id.get(step.action_id)})
        for step in workflow.steps
    ]
    return workflow.model_copy(update={"steps": steps})


def _resolve(override: Dict[str, Any], base: Dict[str, Any], key: str, default: Any = None) -> Any:
    value = override.get(key)
    if value not in (None, ""):
        return value
    value = base.get(key)
    if value not in (None, ""):
        return value
    return default


def resolve_action(
    action: Union[Action, Dict[str, Any]],
    override: Optional[Dict[str, Any]] = None,
    index: int = 0,
    action_id: Optional[str] = None,
) -> ResolvedAction:
    """
    Flatten one action, with an optional step override, into an executable step.

    Raises:
        ConversionError: If the resolved fingerprint is malformed
    """
    if not isinstance(action, Action):
        action = Action.model_validate(action)
    base = action.params
    override = override or {}
    final_params = {**base, **override}

    visual = _resolve(override, base, "visual")
    try:
        fingerprint = (
            visual if isinstance(visual, Fingerprint) or visual is None
            else Fingerprint.model_validate(visual)
        )
    except ValidationError as e:
        raise ConversionError(
            f"Step {index + 1} has a malformed fingerprint",
            entry_type=action.type.value,
            index=index,
            cause=e,
        )

    default_method = ExecutionMethod.parse(get_settings().default_execution_method)
    return ResolvedAction(
        name=action.name or f"Action {index + 1}",
        type=action.type,
        params=final_params,
        fingerprint=fingerprint,
        backup_selector=_resolve(override, base, "backupSelector"),
        execution_method=ExecutionMethod.parse(
            _resolve(override, base, "executionMethod"), default_method
        ),
        action_id=action_id or action.id,
        step_index=index,
        version=action.version,
    )


def expand_workflow(
    workflow: WorkflowLike,
    actions: Optional[Iterable[Union[Action, Dict[str, Any]]]] = None,
) -> List[ResolvedAction]:
    """
    Resolve every step of a workflow into an executable action.

    Args:
        workflow: Workflow whose steps carry their actions, or a dict form
            (steps may be a JSON-encoded string)
        actions: Actions to populate the steps with first, when given

    Returns:
        Resolved actions in step order

    Raises:
        ConversionPreconditionError: If a step's action is not populated
        ConversionError: If a resolved fingerprint is malformed
    """
    workflow = _as_workflow(workflow)
    if actions is not None:
        workflow = populate_actions(workflow, actions)

    resolved: List[ResolvedAction] = []

    for index, step in enumerate(workflow.steps):
        if step.action is None:
            raise ConversionPreconditionError(
                f"Step {index + 1} (action id: {step.action_id}) is missing action data. "
                "Workflow must be loaded with actions populated.",
                workflow_id=workflow.id,
                missing_reference=step.action_id,
                index=index,
            )
        resolved.append(resolve_action(step.action, step.params_override, index, step.action_id))

    logger.debug(
        "Workflow expanded",
        extra={"workflow_id": workflow.id, "step_count": len(resolved)},
    )
    return resolved


def resolve_execution_chain(
    workflow: WorkflowLike,
    workflows: Union[Mapping[str, WorkflowLike], Iterable[WorkflowLike]],
) -> List[Workflow]:
    """
    Order a workflow after the authentication workflows it depends on.

    Args:
        workflow: Workflow to run
        workflows: Known workflows, by id or as a list

    Returns:
        Authentication workflows (outermost first) followed by ``workflow``

    Raises:
        ConversionPreconditionError: If an auth reference is missing or cyclic
    """
    if isinstance(workflows, Mapping):
        known = {str(k): _as_workflow(v) for k, v in workflows.items()}
    else:
        known = {}
        for item in workflows:
            item = _as_workflow(item)
            if item.id is not None:
                known[item.id] = item

    chain: List[Workflow] = [_as_workflow(workflow)]
    seen = {chain[0].id}

    while chain[0].requires_auth:
        current = chain[0]
        if not current.auth_workflow_id:
            raise ConversionPreconditionError(
                f"Workflow {current.id} requires auth but names no auth workflow",
                workflow_id=current.id,
            )
        if current.auth_workflow_id in seen:
            raise ConversionPreconditionError(
                f"Auth workflow reference cycle at {current.auth_workflow_id}",
                workflow_id=current.id,
                missing_reference=current.auth_workflow_id,
            )
        auth = known.get(current.auth_workflow_id)
        if auth is None:
            raise ConversionPreconditionError(
                f"Auth workflow {current.auth_workflow_id} not found",
                workflow_id=current.id,
                missing_reference=current.auth_workflow_id,
            )
        seen.add(auth.id)
        chain.insert(0, auth)

    return chain

"""Structural validation of workflow definitions.

Run once at definition boundaries (create/update) before persistence. A
persisted workflow is assumed valid at runtime.
"""

from collections import Counter
from typing import Dict, Iterable, List, Optional

from workflow_service.models import StateType, WorkflowDefinition

from .errors import InvalidWorkflowError
from .requirements import RequirementRegistry, default_requirements

PRIORITY_FLOOR = 1
PRIORITY_CEILING = 5


def workflow_problems(
    definition: WorkflowDefinition,
    registry: Optional[RequirementRegistry] = None,
) -> List[str]:
    """Return every structural problem found in ``definition``."""
    registry = registry or default_requirements
    problems: List[str] = []

    state_ids = [s.id for s in definition.states]
    for state_id, count in Counter(state_ids).items():
        if count > 1:
            problems.append(f"Duplicate state id '{state_id}'")

    initial_count = sum(1 for s in definition.states if s.state_type == StateType.INITIAL)
    if initial_count == 0:
        problems.append("Workflow has no initial state")
    elif initial_count > 1:
        problems.append(f"Workflow has {initial_count} initial states; exactly one is allowed")

    known = set(state_ids)
    for transition in definition.transitions:
        if transition.from_state_id not in known:
            problems.append(
                f"Transition '{transition.code}' starts at unknown state '{transition.from_state_id}'"
            )
        if transition.to_state_id not in known:
            problems.append(
                f"Transition '{transition.code}' ends at unknown state '{transition.to_state_id}'"
            )
        for requirement in transition.requirements:
            if not registry.is_known(requirement.requirement_type):
                problems.append(
                    f"Transition '{transition.code}' uses unknown requirement "
                    f"'{requirement.requirement_type}'"
                )

    codes = Counter(t.code for t in definition.transitions)
    for code, count in codes.items():
        if count > 1:
            problems.append(f"Duplicate transition code '{code}'")

    for label, value in (("priority_min", definition.priority_min),
                         ("priority_max", definition.priority_max)):
        if value is not None and not PRIORITY_FLOOR <= value <= PRIORITY_CEILING:
            problems.append(f"{label} must be between {PRIORITY_FLOOR} and {PRIORITY_CEILING}")
    if (definition.priority_min is not None and definition.priority_max is not None
            and definition.priority_min > definition.priority_max):
        problems.append("priority_min is greater than priority_max")

    return problems


def locked_state_problems(
    current: WorkflowDefinition,
    updated: WorkflowDefinition,
    occupied_state_ids: Iterable[str],
) -> List[str]:
    """Problems with states an update may no longer remove or retype.

    A state is locked while an active transition of the stored definition
    starts or ends at it, or while a case sits in it. Locked states must keep
    their id and ``state_type``.
    """
    locked: Dict[str, str] = {}
    for transition in current.transitions:
        if transition.is_active:
            locked.setdefault(transition.from_state_id, f"used by transition '{transition.code}'")
            locked.setdefault(transition.to_state_id, f"used by transition '{transition.code}'")
    for state_id in occupied_state_ids:
        locked.setdefault(state_id, "occupied by cases")

    problems: List[str] = []
    for state in current.states:
        reason = locked.get(state.id)
        if reason is None:
            continue
        replacement = updated.get_state(state.id)
        if replacement is None:
            problems.append(f"State '{state.id}' cannot be removed while {reason}")
        elif replacement.state_type != state.state_type:
            problems.append(
                f"State '{state.id}' cannot change type from {state.state_type.value} "
                f"to {replacement.state_type.value} while {reason}"
            )
    return problems


def validate_workflow(
    definition: WorkflowDefinition,
    registry: Optional[RequirementRegistry] = None,
) -> WorkflowDefinition:
    """Raise InvalidWorkflowError listing every problem, else return the definition."""
    problems = workflow_problems(definition, registry)
    if problems:
        raise InvalidWorkflowError(problems)
    return definition

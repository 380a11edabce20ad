"""Transition executor.

Turns a transition request into a ``TransitionPlan``: the updated case, one
TransitionHistory row, one ``status_changed`` revision and the external actions
to dispatch once the plan is committed. Planning never touches storage, so a
rejected transition leaves the case exactly as it was.

Checks run in a fixed order: the transition must leave the current state,
then the actor needs one of its roles, then every mandatory requirement must
be met (all unmet kinds are reported together).
"""

import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

from workflow_service.infrastructure.persistence.case_repository import CaseMutation
from workflow_service.models import (
    RATING_MAX,
    RATING_MIN,
    ActionKind,
    Actor,
    AvailableTransition,
    Case,
    FieldChange,
    RequirementKind,
    Revision,
    RevisionActionType,
    TransitionAction,
    TransitionHistory,
    TransitionPayload,
    WorkflowDefinition,
    WorkflowState,
    WorkflowTransition,
)

from .actions import ActionError, ActionRunner, apply_field_update
from .errors import ForbiddenError, RequirementNotMetError, TransitionNotFoundError
from .requirements import RequirementRegistry, default_requirements
from .revision_ledger import RevisionSequence

logger = logging.getLogger(__name__)

FEEDBACK = RequirementKind.FEEDBACK.value


def sla_deadline_for(state: Optional[WorkflowState], start: datetime) -> Optional[datetime]:
    """Deadline for a case entering ``state`` at ``start``, if the state has an SLA."""
    if state is None or state.sla_hours is None:
        return None
    return start + timedelta(hours=state.sla_hours)


class TransitionPlan:
    """A validated transition, ready to be committed."""

    def __init__(
        self,
        case: Case,
        expected_version: int,
        transition: WorkflowTransition,
        history: TransitionHistory,
        revision: Revision,
        external_actions: List[TransitionAction],
        warnings: List[str],
    ):
        self.case = case
        self.expected_version = expected_version
        self.transition = transition
        self.history = history
        self.revision = revision
        self.external_actions = external_actions
        self.warnings = warnings

    def mutation(self) -> CaseMutation:
        return CaseMutation(
            case=self.case,
            expected_version=self.expected_version,
            history=[self.history],
            revisions=[self.revision],
        )


class TransitionExecutor:
    """Role and requirement gated state machine over one workflow."""

    def __init__(
        self,
        requirements: Optional[RequirementRegistry] = None,
        runner: Optional[ActionRunner] = None,
    ):
        self.requirements = requirements or default_requirements
        self.runner = runner

    def available_transitions(
        self,
        workflow: WorkflowDefinition,
        case: Case,
        actor: Actor,
    ) -> List[AvailableTransition]:
        """Transitions leaving the current state; only the role check is evaluated."""
        available = []
        for transition in workflow.transitions_from(case.current_state_id):
            blocking = []
            if transition.allowed_role_ids and not actor.has_any_role(transition.allowed_role_ids):
                blocking.append(
                    "Requires one of roles: " + ", ".join(sorted(transition.allowed_role_ids))
                )
            available.append(AvailableTransition(
                transition=transition,
                can_execute=not blocking,
                blocking_reasons=blocking,
                requirements=transition.requirements,
            ))
        return available

    def check(
        self,
        workflow: WorkflowDefinition,
        case: Case,
        transition_id: str,
        payload: TransitionPayload,
        actor: Actor,
    ) -> WorkflowTransition:
        """Run every precondition; return the transition or raise."""
        transition = next(
            (t for t in workflow.transitions_from(case.current_state_id) if t.id == transition_id),
            None,
        )
        if transition is None:
            raise TransitionNotFoundError(transition_id, case.id, case.current_state_id)

        if transition.allowed_role_ids and not actor.has_any_role(transition.allowed_role_ids):
            logger.warning(
                f"User {actor.user_id} denied transition {transition.code} on case {case.id}"
            )
            raise ForbiddenError(actor.user_id, transition.code, "missing required role")

        unmet = self.requirements.unmet(transition.requirements, payload, case)
        kinds = [req.requirement_type for req, _ in unmet]
        messages = [message for _, message in unmet]

        # Supplied feedback lands in append-only history, so it is range-checked
        # even when the transition does not ask for it
        feedback = payload.feedback
        if feedback is not None and not feedback.has_valid_rating and FEEDBACK not in kinds:
            kinds.append(FEEDBACK)
            messages.append(f"Feedback rating {feedback.rating} is outside {RATING_MIN}..{RATING_MAX}")

        if kinds:
            raise RequirementNotMetError(kinds, messages)

        return transition

    def plan(
        self,
        workflow: WorkflowDefinition,
        case: Case,
        transition_id: str,
        payload: TransitionPayload,
        actor: Actor,
        sequence: RevisionSequence,
        extra_changes: Optional[List[FieldChange]] = None,
        description: Optional[str] = None,
    ) -> TransitionPlan:
        """Validate and build everything the transition writes.

        ``case`` is not modified; the plan carries an updated copy.
        ``extra_changes`` are recorded in the same revision, for callers that
        changed the copy's fields themselves (merge links).
        """
        transition = self.check(workflow, case, transition_id, payload, actor)
        now = datetime.now(timezone.utc)

        updated = case.model_copy(deep=True)
        from_state = workflow.get_state(case.current_state_id)
        to_state = workflow.get_state(transition.to_state_id)

        changes: List[FieldChange] = list(extra_changes or [])
        changes.append(FieldChange(
            field="current_state_id",
            old_value=case.current_state_id,
            new_value=transition.to_state_id,
        ))
        updated.current_state_id = transition.to_state_id

        history = TransitionHistory(
            case_id=case.id,
            transition_id=transition.id,
            from_state_id=case.current_state_id,
            to_state_id=transition.to_state_id,
            executed_by=actor.user_id,
            executed_at=now,
            comment=payload.comment,
            attachment_ids=list(payload.attachment_ids),
            feedback=payload.feedback,
        )

        warnings: List[str] = []
        results: List[Dict[str, Any]] = []
        external: List[TransitionAction] = []
        for action in transition.ordered_actions():
            result = {"action_type": action.action_type, "name": action.name}
            if action.action_type == ActionKind.FIELD_UPDATE.value:
                try:
                    changes.append(apply_field_update(updated, action))
                    result["status"] = "applied"
                except ActionError as e:
                    logger.warning(f"Field update skipped on case {case.id}: {e}")
                    warnings.append(str(e))
                    result.update(status="failed", error=str(e))
            elif self.runner is not None and self.runner.handles(action.action_type):
                external.append(action)
                result["status"] = "queued"
            else:
                msg = f"No handler for action '{action.name or action.action_type}'"
                logger.warning(f"{msg} on case {case.id}")
                warnings.append(msg)
                result.update(status="failed", error=msg)
            results.append(result)
        history.action_results = results

        # Payload overrides win over the transition's configured assignment
        department_id = payload.department_id or transition.assign_department_id
        if department_id and department_id != updated.department_id:
            changes.append(FieldChange(
                field="department_id", old_value=updated.department_id, new_value=department_id,
            ))
            updated.department_id = department_id
        assignee_id = payload.assignee_id or transition.assign_user_id
        if assignee_id and assignee_id != updated.assignee_id:
            changes.append(FieldChange(
                field="assignee_id", old_value=updated.assignee_id, new_value=assignee_id,
            ))
            updated.assignee_id = assignee_id

        if to_state is not None and not transition.is_self_loop:
            deadline = sla_deadline_for(to_state, now)
            if deadline is not None:
                changes.append(FieldChange(
                    field="sla_deadline",
                    old_value=updated.sla_deadline.isoformat() if updated.sla_deadline else None,
                    new_value=deadline.isoformat(),
                ))
                updated.sla_deadline = deadline
                updated.sla_breached = False
            if to_state.is_terminal:
                updated.resolved_at = updated.resolved_at or now
                updated.closed_at = now
            elif from_state is not None and from_state.is_terminal:
                # Reopened
                updated.resolved_at = None
                updated.closed_at = None

        from_name = from_state.name if from_state else case.current_state_id
        to_name = to_state.name if to_state else transition.to_state_id
        revision = sequence.append(
            RevisionActionType.STATUS_CHANGED,
            description or f"{transition.name}: {from_name} to {to_name}",
            changes,
            transition_history_id=history.id,
        )

        return TransitionPlan(
            case=updated,
            expected_version=case.version,
            transition=transition,
            history=history,
            revision=revision,
            external_actions=external,
            warnings=warnings,
        )

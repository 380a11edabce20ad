"""Unit tests for transition execution through the workflow engine."""

from datetime import timedelta

import pytest

from workflow_service.core.actions import build_default_runner
from workflow_service.core.errors import (
    ForbiddenError,
    NotFoundError,
    RequirementNotMetError,
    TransitionNotFoundError,
)
from workflow_service.models import (
    CaseCreateRequest,
    Feedback,
    RevisionActionType,
    TransitionAction,
    TransitionPayload,
    TransitionRequirement,
    WorkflowTransition,
)

from factories import build_workflow


@pytest.mark.unit
class TestExecuteTransition:
    """State machine gated by roles and requirements"""

    async def test_comment_requirement_scenario(self, engine, make_case, actor):
        """Happy path: Assign fails without a comment, succeeds with one"""
        case = await make_case()

        with pytest.raises(RequirementNotMetError) as exc_info:
            await engine.execute_transition(case.id, "assign", TransitionPayload(), actor)
        assert exc_info.value.kinds == ["comment"]

        result = await engine.execute_transition(
            case.id, "assign", TransitionPayload(comment="ok"), actor,
        )
        assert result.case.current_state_id == "assigned"
        assert (await engine.get_case(case.id)).current_state_id == "assigned"

    async def test_one_history_and_one_revision(self, engine, make_case, actor, case_repo):
        case = await make_case()
        before = await case_repo.latest_revision_number(case.id)

        result = await engine.execute_transition(
            case.id, "assign", TransitionPayload(comment="on it"), actor,
        )

        history = await case_repo.list_history(case.id)
        _, total = await case_repo.list_revisions(case.id)
        assert len(history) == 1
        assert total == before + 1
        assert result.revision.revision_number == before + 1
        assert result.revision.action_type == RevisionActionType.STATUS_CHANGED
        assert result.revision.transition_history_id == history[0].id
        assert history[0].from_state_id == "new"
        assert history[0].to_state_id == "assigned"
        assert history[0].comment == "on it"
        assert result.case.version == case.version + 1

    async def test_failed_transition_leaves_case_untouched(self, engine, make_case, actor, case_repo):
        case = await make_case()

        for transition_id, payload in (
            ("assign", TransitionPayload()),
            ("resolve", TransitionPayload(comment="x")),
            ("missing", TransitionPayload(comment="x")),
        ):
            with pytest.raises((RequirementNotMetError, TransitionNotFoundError)):
                await engine.execute_transition(case.id, transition_id, payload, actor)

        stored = await engine.get_case(case.id)
        assert stored.current_state_id == "new"
        assert stored.version == case.version
        assert await case_repo.list_history(case.id) == []
        assert await case_repo.latest_revision_number(case.id) == 1

    async def test_transition_must_leave_current_state(self, engine, make_case, supervisor):
        """'resolve' exists but starts at Assigned"""
        case = await make_case()
        with pytest.raises(TransitionNotFoundError) as exc_info:
            await engine.execute_transition(case.id, "resolve", TransitionPayload(), supervisor)
        assert exc_info.value.current_state_id == "new"

    async def test_role_required(self, engine, make_case, actor, supervisor):
        case = await make_case()
        await engine.execute_transition(case.id, "assign", TransitionPayload(comment="go"), actor)

        with pytest.raises(ForbiddenError):
            await engine.execute_transition(case.id, "resolve", TransitionPayload(), actor)

        result = await engine.execute_transition(case.id, "resolve", TransitionPayload(), supervisor)
        assert result.case.current_state_id == "resolved"

    async def test_role_checked_before_requirements(self, engine, workflow_repo, case_manager, actor):
        workflow = build_workflow(transitions=[
            WorkflowTransition(
                id="escalate",
                name="Escalate",
                code="ESCALATE",
                from_state_id="new",
                to_state_id="assigned",
                allowed_role_ids={"supervisor"},
                requirements=[TransitionRequirement(requirement_type="comment")],
            ),
        ])
        await workflow_repo.save(workflow)
        case = await case_manager.create_case(CaseCreateRequest(workflow_id=workflow.id), actor)
        with pytest.raises(ForbiddenError):
            await engine.execute_transition(case.id, "escalate", TransitionPayload(), actor)

    async def test_unknown_case(self, engine, actor):
        with pytest.raises(NotFoundError):
            await engine.execute_transition("case_missing", "assign", TransitionPayload(), actor)

    async def test_terminal_state_sets_and_reopen_clears_timestamps(
        self, engine, make_case, actor,
    ):
        case = await make_case()
        closed = await engine.execute_transition(case.id, "close_duplicate", TransitionPayload(), actor)
        assert closed.case.resolved_at is not None
        assert closed.case.closed_at is not None

        reopened = await engine.execute_transition(case.id, "reopen", TransitionPayload(), actor)
        assert reopened.case.current_state_id == "new"
        assert reopened.case.resolved_at is None
        assert reopened.case.closed_at is None

    async def test_entering_sla_state_sets_deadline(self, engine, make_case, actor):
        case = await make_case()
        assert case.sla_deadline is None

        result = await engine.execute_transition(
            case.id, "assign", TransitionPayload(comment="ok"), actor,
        )
        deadline = result.case.sla_deadline
        assert deadline is not None
        assert deadline - result.history.executed_at == timedelta(hours=8)
        assert "sla_deadline" in [c.field for c in result.revision.changes]

    async def test_payload_assignment_overrides_transition(self, engine, workflow_repo, case_manager, actor):
        workflow = build_workflow("wf_assign", transitions=[
            WorkflowTransition(
                id="dispatch",
                name="Dispatch",
                code="DISPATCH",
                from_state_id="new",
                to_state_id="assigned",
                assign_department_id="dept_field",
                assign_user_id="tech_default",
            ),
        ])
        await workflow_repo.save(workflow)
        case = await case_manager.create_case(CaseCreateRequest(workflow_id=workflow.id), actor)
        result = await engine.execute_transition(
            case.id, "dispatch", TransitionPayload(assignee_id="tech_7"), actor,
        )
        assert result.case.department_id == "dept_field"
        assert result.case.assignee_id == "tech_7"

    async def test_out_of_range_feedback_rejected_without_requirement(
        self, engine, make_case, actor, case_repo,
    ):
        """close_duplicate asks for no feedback, but a supplied rating is still range-checked"""
        case = await make_case()

        with pytest.raises(RequirementNotMetError) as exc_info:
            await engine.execute_transition(
                case.id, "close_duplicate", TransitionPayload(feedback=Feedback(rating=42)), actor,
            )
        assert exc_info.value.kinds == ["feedback"]
        assert await case_repo.list_history(case.id) == []
        assert (await engine.get_case(case.id)).current_state_id == "new"

    async def test_feedback_reported_with_other_unmet_requirements(self, engine, make_case, actor):
        case = await make_case()

        with pytest.raises(RequirementNotMetError) as exc_info:
            await engine.execute_transition(
                case.id, "assign", TransitionPayload(feedback=Feedback(rating=0)), actor,
            )
        assert exc_info.value.kinds == ["comment", "feedback"]

    async def test_valid_optional_feedback_stored(self, engine, make_case, actor):
        case = await make_case()

        result = await engine.execute_transition(
            case.id, "close_duplicate", TransitionPayload(feedback=Feedback(rating=5, comment="quick")), actor,
        )
        assert result.history.feedback.rating == 5


@pytest.mark.unit
class TestTransitionActions:
    """field_update actions land with the transition; external ones are dispatched after"""

    @pytest.fixture
    async def action_case(self, workflow_repo, case_manager, actor):
        workflow = build_workflow("wf_actions", transitions=[
            WorkflowTransition(
                id="escalate",
                name="Escalate",
                code="ESCALATE",
                from_state_id="new",
                to_state_id="assigned",
                actions=[
                    TransitionAction(action_type="email", name="notify", execution_order=2),
                    TransitionAction(
                        action_type="field_update",
                        name="bump",
                        config={"field": "priority", "value": "1"},
                        execution_order=1,
                    ),
                    TransitionAction(action_type="webhook", name="hook", execution_order=3),
                    TransitionAction(
                        action_type="field_update",
                        name="bad",
                        config={"field": "current_state_id", "value": "resolved"},
                        execution_order=4,
                    ),
                ],
            ),
        ])
        await workflow_repo.save(workflow)
        return await case_manager.create_case(
            CaseCreateRequest(workflow_id=workflow.id, priority=4), actor,
        )

    async def test_actions_recorded_in_order(self, engine, action_case, actor, runner):
        result = await engine.execute_transition(action_case.id, "escalate", TransitionPayload(), actor)
        await runner.drain()

        statuses = [(r["name"], r["status"]) for r in result.history.action_results]
        assert statuses == [
            ("bump", "applied"),
            ("notify", "queued"),
            ("hook", "failed"),
            ("bad", "failed"),
        ]

    async def test_field_update_committed_with_transition(self, engine, action_case, actor):
        result = await engine.execute_transition(action_case.id, "escalate", TransitionPayload(), actor)

        assert result.case.priority == 1
        assert result.case.current_state_id == "assigned"
        stored = await engine.get_case(action_case.id)
        assert stored.priority == 1
        changed = {c.field: c.new_value for c in result.revision.changes}
        assert changed["priority"] == "1"

    async def test_action_failures_become_warnings(self, engine, action_case, actor):
        result = await engine.execute_transition(action_case.id, "escalate", TransitionPayload(), actor)

        assert len(result.warnings) == 2
        assert any("hook" in w for w in result.warnings)
        assert any("current_state_id" in w for w in result.warnings)

    def test_default_runner_handles_email_and_notification_only(self):
        runner = build_default_runner()
        assert runner.handles("email")
        assert runner.handles("notification")
        assert not runner.handles("webhook")


@pytest.mark.unit
class TestAvailableTransitions:
    """Listing transitions from the current state"""

    async def test_only_outgoing_transitions(self, engine, make_case, actor):
        case = await make_case()
        available = await engine.available_transitions(case.id, actor)

        assert {a.transition.id for a in available} == {"assign", "close_duplicate"}
        assert all(a.transition.from_state_id == "new" for a in available)

    async def test_role_blocking_reported(self, engine, make_case, actor, supervisor):
        case = await make_case()
        await engine.execute_transition(case.id, "assign", TransitionPayload(comment="x"), actor)

        [resolve] = await engine.available_transitions(case.id, actor)
        assert resolve.can_execute is False
        assert resolve.blocking_reasons == ["Requires one of roles: supervisor"]

        [resolve] = await engine.available_transitions(case.id, supervisor)
        assert resolve.can_execute is True

    async def test_requirements_listed_not_evaluated(self, engine, make_case, actor):
        case = await make_case()
        available = {a.transition.id: a for a in await engine.available_transitions(case.id, actor)}
        assign = available["assign"]
        assert assign.can_execute is True
        assert [r.requirement_type for r in assign.requirements] == ["comment"]

    async def test_inactive_transition_hidden(self, engine, workflow_repo, make_case, actor, incident_workflow):
        case = await make_case()
        workflow = incident_workflow.model_copy(deep=True)
        workflow.transitions[0].is_active = False
        await workflow_repo.save(workflow)

        ids = [a.transition.id for a in await engine.available_transitions(case.id, actor)]
        assert ids == ["close_duplicate"]

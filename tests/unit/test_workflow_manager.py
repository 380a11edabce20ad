"""Unit tests for WorkflowManager (definition administration)"""

import pytest

from workflow_service.core.errors import InvalidWorkflowError, NotFoundError
from workflow_service.models import (
    CaseCreateRequest,
    RecordType,
    StateType,
    TransitionPayload,
    WorkflowCreateRequest,
    WorkflowUpdateRequest,
)

from factories import build_workflow


def _create_request(**overrides) -> WorkflowCreateRequest:
    template = build_workflow()
    data = template.model_dump(
        include={"name", "code", "record_type", "states", "transitions"},
    )
    data.update(overrides)
    return WorkflowCreateRequest(**data)


@pytest.mark.unit
class TestWorkflowManager:
    """Create, update and delete workflow definitions"""

    async def test_create_workflow(self, workflow_manager, workflow_repo):
        """Happy path: a valid definition is stored with version 1"""
        workflow = await workflow_manager.create_workflow(_create_request(classification_ids={"C1"}))

        assert workflow.version == 1
        assert workflow.classification_ids == {"C1"}
        stored = await workflow_repo.get(workflow.id)
        assert [s.id for s in stored.states] == ["new", "assigned", "resolved"]

    async def test_create_invalid_workflow(self, workflow_manager, workflow_repo):
        with pytest.raises(InvalidWorkflowError):
            await workflow_manager.create_workflow(_create_request(states=[]))
        assert await workflow_repo.list() == []

    async def test_update_bumps_version(self, workflow_manager):
        workflow = await workflow_manager.create_workflow(_create_request())

        updated = await workflow_manager.update_workflow(
            workflow.id, WorkflowUpdateRequest(name="Renamed", is_default=True),
        )
        assert updated.version == 2
        assert updated.name == "Renamed"
        assert updated.is_default is True
        assert len(updated.transitions) == len(workflow.transitions)

    async def test_update_revalidates(self, workflow_manager):
        workflow = await workflow_manager.create_workflow(_create_request())
        with pytest.raises(InvalidWorkflowError):
            await workflow_manager.update_workflow(
                workflow.id, WorkflowUpdateRequest(priority_min=5, priority_max=1),
            )
        assert (await workflow_manager.get_workflow(workflow.id)).version == 1

    async def test_list_by_record_type(self, workflow_manager):
        await workflow_manager.create_workflow(_create_request(code="INC"))
        await workflow_manager.create_workflow(_create_request(code="REQ", record_type=RecordType.REQUEST))

        requests = await workflow_manager.list_workflows(record_type=RecordType.REQUEST)
        assert [w.code for w in requests] == ["REQ"]

    async def test_delete_unreferenced_purges(self, workflow_manager, workflow_repo):
        workflow = await workflow_manager.create_workflow(_create_request())

        assert await workflow_manager.delete_workflow(workflow.id) is True
        assert await workflow_repo.get(workflow.id) is None

    async def test_delete_referenced_soft_deletes(self, workflow_manager, workflow_repo, case_manager, actor):
        workflow = await workflow_manager.create_workflow(_create_request())
        case = await case_manager.create_case(CaseCreateRequest(workflow_id=workflow.id), actor)

        assert await workflow_manager.delete_workflow(workflow.id) is False

        stored = await workflow_repo.get(workflow.id)
        assert stored.is_deleted
        assert stored.is_active is False
        assert await workflow_manager.list_workflows() == []
        with pytest.raises(NotFoundError):
            await workflow_manager.get_workflow(workflow.id)

        # existing cases keep working against the deleted definition
        assert (await case_manager.get_case(case.id)).workflow_id == workflow.id

    async def test_unknown_workflow(self, workflow_manager):
        with pytest.raises(NotFoundError):
            await workflow_manager.update_workflow("wf_missing", WorkflowUpdateRequest(name="x"))


@pytest.mark.unit
class TestLockedStates:
    """States in use survive definition updates"""

    async def test_occupied_state_cannot_be_dropped(self, workflow_manager, case_manager, engine, actor):
        workflow = await workflow_manager.create_workflow(_create_request())
        case = await case_manager.create_case(CaseCreateRequest(workflow_id=workflow.id), actor)
        await engine.execute_transition(case.id, "assign", TransitionPayload(comment="mine"), actor)

        with pytest.raises(InvalidWorkflowError) as exc_info:
            await workflow_manager.update_workflow(workflow.id, WorkflowUpdateRequest(
                states=[s for s in workflow.states if s.id != "assigned"],
                transitions=[t for t in workflow.transitions if t.id in ("close_duplicate", "reopen")],
            ))
        assert any("'assigned'" in e for e in exc_info.value.errors)

        stored = await workflow_manager.get_workflow(workflow.id)
        assert stored.version == 1
        available = [a.transition.id for a in await engine.available_transitions(case.id, actor)]
        assert available == ["resolve"]

    async def test_referenced_state_cannot_change_type(self, workflow_manager):
        workflow = await workflow_manager.create_workflow(_create_request())
        states = [s.model_copy() for s in workflow.states]
        states[1].state_type = StateType.TERMINAL

        with pytest.raises(InvalidWorkflowError) as exc_info:
            await workflow_manager.update_workflow(workflow.id, WorkflowUpdateRequest(states=states))
        assert any("cannot change type" in e for e in exc_info.value.errors)

    async def test_state_removable_after_transitions_retired(self, workflow_manager):
        workflow = await workflow_manager.create_workflow(_create_request())
        retired = [t.model_copy() for t in workflow.transitions]
        for transition in retired:
            if transition.id in ("assign", "resolve"):
                transition.is_active = False
        await workflow_manager.update_workflow(workflow.id, WorkflowUpdateRequest(transitions=retired))

        updated = await workflow_manager.update_workflow(workflow.id, WorkflowUpdateRequest(
            states=[s for s in workflow.states if s.id != "assigned"],
            transitions=[t for t in retired if t.is_active],
        ))
        assert updated.version == 3
        assert [s.id for s in updated.states] == ["new", "resolved"]

"""Shared fixtures for workflow service tests."""

import pytest

from workflow_service.core.actions import build_default_runner
from workflow_service.core.case_manager import CaseManager
from workflow_service.core.locks import CaseLockRegistry
from workflow_service.core.workflow_engine import WorkflowEngine
from workflow_service.core.workflow_manager import WorkflowManager
from workflow_service.infrastructure.persistence import (
    InMemoryCaseRepository,
    InMemoryWorkflowRepository,
)
from workflow_service.models import Actor, CaseCreateRequest, RecordType

from factories import build_workflow


@pytest.fixture
def actor():
    return Actor(user_id="user_1", roles=frozenset({"agent"}))


@pytest.fixture
def supervisor():
    return Actor(user_id="boss_1", roles=frozenset({"agent", "supervisor"}))


@pytest.fixture
def workflow_repo():
    return InMemoryWorkflowRepository()


@pytest.fixture
def case_repo():
    return InMemoryCaseRepository()


@pytest.fixture
def runner():
    return build_default_runner()


@pytest.fixture
def engine(workflow_repo, case_repo, runner):
    return WorkflowEngine(workflow_repo, case_repo, locks=CaseLockRegistry(), runner=runner)


@pytest.fixture
def case_manager(engine):
    return CaseManager(engine)


@pytest.fixture
def workflow_manager(workflow_repo, case_repo):
    return WorkflowManager(workflow_repo, case_repo)


@pytest.fixture
async def incident_workflow(workflow_repo):
    return await workflow_repo.save(build_workflow())


@pytest.fixture
async def request_workflow(workflow_repo):
    return await workflow_repo.save(build_workflow("wf_request", RecordType.REQUEST))


@pytest.fixture
def make_case(case_manager, actor, incident_workflow):
    """Factory creating incidents bound to the standard workflow."""

    async def _make(**fields):
        fields.setdefault("workflow_id", incident_workflow.id)
        return await case_manager.create_case(CaseCreateRequest(**fields), actor)

    return _make

"""FastAPI dependencies shared by the routers."""

from typing import AsyncIterator, Optional, Tuple

from fastapi import Depends, Header, HTTPException, status

from workflow_service.config import settings
from workflow_service.core.actions import build_default_runner
from workflow_service.core.case_manager import CaseManager
from workflow_service.core.locks import CaseLockRegistry
from workflow_service.core.workflow_engine import WorkflowEngine
from workflow_service.core.workflow_manager import WorkflowManager
from workflow_service.infrastructure.database import db_client
from workflow_service.infrastructure.persistence import (
    CaseRepository,
    InMemoryCaseRepository,
    InMemoryWorkflowRepository,
    SQLAlchemyCaseRepository,
    SQLAlchemyWorkflowRepository,
    WorkflowRepository,
)
from workflow_service.models import Actor

Repositories = Tuple[WorkflowRepository, CaseRepository]

# Process-wide singletons: case locks and the action runner must be shared by
# every request, and the in-memory stores persist across requests
case_locks = CaseLockRegistry()
action_runner = build_default_runner()
_inmemory_workflows = InMemoryWorkflowRepository()
_inmemory_cases = InMemoryCaseRepository()


def reset_inmemory_storage():
    """Empty the in-memory stores (testing utility)."""
    _inmemory_workflows.clear()
    _inmemory_cases.clear()


async def get_repositories() -> AsyncIterator[Repositories]:
    """Dependency to get the workflow and case repositories.

    Returns the implementation selected by ``settings.storage_type``:
    - inmemory (default): process-wide in-memory stores for dev/testing
    - sql / postgres / sqlite: SQLAlchemy repositories sharing one session
    """
    if settings.uses_sql_storage:
        async for session in db_client.get_session():
            yield SQLAlchemyWorkflowRepository(session), SQLAlchemyCaseRepository(session)
    else:
        yield _inmemory_workflows, _inmemory_cases


async def get_engine(repositories: Repositories = Depends(get_repositories)) -> WorkflowEngine:
    workflows, cases = repositories
    return WorkflowEngine(workflows, cases, locks=case_locks, runner=action_runner)


async def get_case_manager(engine: WorkflowEngine = Depends(get_engine)) -> CaseManager:
    return CaseManager(engine)


async def get_workflow_manager(
    repositories: Repositories = Depends(get_repositories),
) -> WorkflowManager:
    workflows, cases = repositories
    return WorkflowManager(workflows, cases)


async def get_actor(
    x_user_id: Optional[str] = Header(None, alias="X-User-ID"),
    x_user_roles: Optional[str] = Header(None, alias="X-User-Roles"),
) -> Actor:
    """Build the actor from X-User-* headers (set by API Gateway).

    The gateway validates JWT tokens and adds X-User-ID and X-User-Roles
    (comma separated role ids) after stripping any client-provided ones.

    Raises:
        HTTPException: If X-User-ID header is missing
    """
    if not x_user_id:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="X-User-ID header required (should be added by API Gateway)",
        )

    roles = frozenset(r.strip() for r in (x_user_roles or "").split(",") if r.strip())
    return Actor(user_id=x_user_id, roles=roles)

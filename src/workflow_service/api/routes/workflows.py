"""Workflow definition API routes."""

import logging
from typing import List, Optional

from fastapi import APIRouter, Depends, Query, status

from workflow_service.api.dependencies import get_actor, get_engine, get_workflow_manager
from workflow_service.core.workflow_engine import WorkflowEngine
from workflow_service.core.workflow_manager import WorkflowManager
from workflow_service.models import (
    Actor,
    MatchCriteria,
    RecordType,
    WorkflowCreateRequest,
    WorkflowDefinition,
    WorkflowUpdateRequest,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1/workflows", tags=["workflows"])


@router.post(
    "",
    response_model=WorkflowDefinition,
    status_code=status.HTTP_201_CREATED,
    summary="Create workflow definition",
    description="""
Creates a workflow: its states, the transitions between them and the criteria
used to select it for new cases.

**Validation** (all problems are reported together, 422 `invalid_workflow`):
- exactly one `initial` state
- every transition references existing states (self-loops allowed)
- transition codes are unique
- requirement kinds are known (`comment`, `attachment`, `feedback`, `field_value`)
- `priority_min` <= `priority_max`, both within 1..5

**Request Body Example**:
```json
{
  "name": "Standard incident",
  "code": "INC_STD",
  "record_type": "incident",
  "states": [
    {"id": "new", "name": "New", "state_type": "initial"},
    {"id": "assigned", "name": "Assigned", "sla_hours": 8},
    {"id": "resolved", "name": "Resolved", "state_type": "terminal"}
  ],
  "transitions": [
    {"id": "assign", "name": "Assign", "code": "ASSIGN",
     "from_state_id": "new", "to_state_id": "assigned",
     "requirements": [{"requirement_type": "comment"}]}
  ],
  "classification_ids": ["C1"],
  "priority_min": 1,
  "priority_max": 5
}
```
    """,
    responses={
        201: {"description": "Workflow created"},
        401: {"description": "Unauthorized - missing X-User-ID header"},
        422: {"description": "Structurally invalid workflow"},
    },
)
async def create_workflow(
    request: WorkflowCreateRequest,
    actor: Actor = Depends(get_actor),
    manager: WorkflowManager = Depends(get_workflow_manager),
):
    logger.info(f"User {actor.user_id} creating workflow {request.code}")
    return await manager.create_workflow(request)


@router.get("", response_model=List[WorkflowDefinition], summary="List workflow definitions")
async def list_workflows(
    record_type: Optional[RecordType] = Query(None, description="Filter by record type"),
    active_only: bool = Query(False, description="Only active workflows"),
    actor: Actor = Depends(get_actor),
    manager: WorkflowManager = Depends(get_workflow_manager),
):
    return await manager.list_workflows(record_type=record_type, active_only=active_only)


@router.post(
    "/match",
    response_model=Optional[WorkflowDefinition],
    summary="Preview workflow matching",
    description="""
Returns the workflow a new case with these criteria would be bound to, or
`null` when no workflow is configured for the record type.

Scoring: +10 each for classification, location and source, +5 when the
priority lies within the workflow's range. A default workflow that matched
nothing scores 1. Ties keep the first-created workflow.
    """,
)
async def match_workflow(
    criteria: MatchCriteria,
    actor: Actor = Depends(get_actor),
    engine: WorkflowEngine = Depends(get_engine),
):
    return await engine.match_workflow(criteria)


@router.get("/{workflow_id}", response_model=WorkflowDefinition, summary="Get workflow by ID")
async def get_workflow(
    workflow_id: str,
    actor: Actor = Depends(get_actor),
    manager: WorkflowManager = Depends(get_workflow_manager),
):
    return await manager.get_workflow(workflow_id)


@router.put(
    "/{workflow_id}",
    response_model=WorkflowDefinition,
    summary="Update workflow definition",
    description="Applies the provided fields, re-validates the whole definition and bumps `version`.",
)
async def update_workflow(
    workflow_id: str,
    request: WorkflowUpdateRequest,
    actor: Actor = Depends(get_actor),
    manager: WorkflowManager = Depends(get_workflow_manager),
):
    logger.info(f"User {actor.user_id} updating workflow {workflow_id}")
    return await manager.update_workflow(workflow_id, request)


@router.delete(
    "/{workflow_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Delete workflow definition",
    description="""
Workflows still referenced by cases are soft-deleted (hidden from listing and
matching, kept for existing cases); unreferenced workflows are removed.
    """,
)
async def delete_workflow(
    workflow_id: str,
    actor: Actor = Depends(get_actor),
    manager: WorkflowManager = Depends(get_workflow_manager),
):
    logger.info(f"User {actor.user_id} deleting workflow {workflow_id}")
    await manager.delete_workflow(workflow_id)

"""Case API routes."""

import logging
from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, Depends, Query, status

from workflow_service.api.dependencies import get_actor, get_case_manager, get_engine
from workflow_service.config import settings
from workflow_service.core.case_manager import CaseManager
from workflow_service.core.workflow_engine import WorkflowEngine
from workflow_service.infrastructure.persistence import CaseFilter
from workflow_service.models import (
    Actor,
    AssignRequest,
    AttachmentRequest,
    AvailableTransition,
    CanConvertResponse,
    Case,
    CaseComment,
    CaseCreateRequest,
    CaseListResponse,
    CaseStats,
    CaseUpdateRequest,
    CommentRequest,
    ConversionRequest,
    ConversionResult,
    RecordType,
    RevisionActionType,
    RevisionFilter,
    RevisionPage,
    TransitionHistory,
    TransitionRequest,
    TransitionResult,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1/cases", tags=["cases"])


# =============================================================================
# Core CRUD Endpoints
# =============================================================================

@router.post(
    "",
    response_model=Case,
    status_code=status.HTTP_201_CREATED,
    summary="Create new case",
    description="""
Creates an incident, complaint, query or request.

**Workflow**:
1. Without `workflow_id`, the matching engine picks the best-fit workflow for
   the record type, classification, location, source and priority
2. Case starts in the workflow's initial state (SLA deadline set when the
   state defines `sla_hours`)
3. Title auto-generated if not provided (INC-MMDD-XXXX format)
4. Revision #1 (`created`) is recorded

**Request Body Example**:
```json
{
  "record_type": "incident",
  "title": "Water leak on 3rd floor",
  "classification_id": "C1",
  "location_id": "L7",
  "priority": 3,
  "source": "field"
}
```
    """,
    responses={
        201: {"description": "Case created successfully"},
        401: {"description": "Unauthorized - missing X-User-ID header"},
        404: {"description": "No workflow given or matched"},
        422: {"description": "Invalid request data or workflow/record type mismatch"},
    },
)
async def create_case(
    request: CaseCreateRequest,
    actor: Actor = Depends(get_actor),
    case_manager: CaseManager = Depends(get_case_manager),
):
    """Create a new case.

    Requires X-User-ID header from gateway.
    """
    return await case_manager.create_case(request, actor)


def case_filters(
    record_type: Optional[RecordType] = Query(None),
    workflow_id: Optional[str] = Query(None),
    current_state_id: Optional[str] = Query(None),
    classification_id: Optional[str] = Query(None),
    location_id: Optional[str] = Query(None),
    department_id: Optional[str] = Query(None),
    assignee_id: Optional[str] = Query(None),
    reporter_id: Optional[str] = Query(None),
    priority: Optional[int] = Query(None, ge=1, le=5),
    master_incident_id: Optional[str] = Query(None),
    sla_breached: Optional[bool] = Query(None),
    search: Optional[str] = Query(None, description="Substring of title or description"),
    start_date: Optional[datetime] = Query(None, description="Created at or after"),
    end_date: Optional[datetime] = Query(None, description="Created at or before"),
) -> CaseFilter:
    return CaseFilter(
        record_type=record_type.value if record_type else None,
        workflow_id=workflow_id,
        current_state_id=current_state_id,
        classification_id=classification_id,
        location_id=location_id,
        department_id=department_id,
        assignee_id=assignee_id,
        reporter_id=reporter_id,
        priority=priority,
        master_incident_id=master_incident_id,
        sla_breached=sla_breached,
        search=search,
        start_date=start_date,
        end_date=end_date,
    )


async def _case_page(
    case_manager: CaseManager,
    filters: CaseFilter,
    page: int,
    page_size: Optional[int],
) -> CaseListResponse:
    cases, total = await case_manager.list_cases(filters, page=page, page_size=page_size)
    return CaseListResponse(
        cases=cases,
        total=total,
        page=page,
        page_size=min(page_size or settings.default_page_size, settings.max_page_size),
    )


@router.get("", response_model=CaseListResponse, summary="List cases")
async def list_cases(
    filters: CaseFilter = Depends(case_filters),
    page: int = Query(1, ge=1, description="Page number"),
    page_size: Optional[int] = Query(None, ge=1, description="Items per page"),
    actor: Actor = Depends(get_actor),
    case_manager: CaseManager = Depends(get_case_manager),
):
    return await _case_page(case_manager, filters, page, page_size)


@router.get(
    "/stats",
    response_model=CaseStats,
    summary="Case statistics",
    description="Counts per state, record type and priority over the list filters.",
)
async def case_stats(
    filters: CaseFilter = Depends(case_filters),
    actor: Actor = Depends(get_actor),
    case_manager: CaseManager = Depends(get_case_manager),
):
    return await case_manager.case_stats(filters)


@router.get("/my-reported", response_model=CaseListResponse, summary="Cases reported by the caller")
async def my_reported_cases(
    filters: CaseFilter = Depends(case_filters),
    page: int = Query(1, ge=1),
    page_size: Optional[int] = Query(None, ge=1),
    actor: Actor = Depends(get_actor),
    case_manager: CaseManager = Depends(get_case_manager),
):
    filters.reporter_id = actor.user_id
    return await _case_page(case_manager, filters, page, page_size)


@router.get("/my-assigned", response_model=CaseListResponse, summary="Cases assigned to the caller")
async def my_assigned_cases(
    filters: CaseFilter = Depends(case_filters),
    page: int = Query(1, ge=1),
    page_size: Optional[int] = Query(None, ge=1),
    actor: Actor = Depends(get_actor),
    case_manager: CaseManager = Depends(get_case_manager),
):
    filters.assignee_id = actor.user_id
    return await _case_page(case_manager, filters, page, page_size)


@router.get("/{case_id}", response_model=Case, summary="Get case by ID")
async def get_case(
    case_id: str,
    actor: Actor = Depends(get_actor),
    case_manager: CaseManager = Depends(get_case_manager),
):
    return await case_manager.get_case(case_id)


@router.put(
    "/{case_id}",
    response_model=Case,
    summary="Update case details",
    description="""
Updates editable fields; all are optional. `current_state_id` cannot be set
here (use the transition endpoint).

Changed fields are recorded in one `field_change` revision. A new assignee is
recorded separately as `assignee_changed`.
    """,
)
async def update_case(
    case_id: str,
    request: CaseUpdateRequest,
    actor: Actor = Depends(get_actor),
    case_manager: CaseManager = Depends(get_case_manager),
):
    return await case_manager.update_case(case_id, request, actor)


@router.delete(
    "/{case_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Delete case permanently",
    responses={
        204: {"description": "Case deleted successfully (no content returned)"},
        404: {"description": "Case not found"},
        409: {"description": "Case is a merge master or conversion source"},
    },
)
async def delete_case(
    case_id: str,
    actor: Actor = Depends(get_actor),
    case_manager: CaseManager = Depends(get_case_manager),
):
    await case_manager.delete_case(case_id)
    logger.info(f"Case {case_id} deleted by {actor.user_id}")


@router.post("/{case_id}/assign", response_model=Case, summary="Assign case")
async def assign_case(
    case_id: str,
    request: AssignRequest,
    actor: Actor = Depends(get_actor),
    case_manager: CaseManager = Depends(get_case_manager),
):
    return await case_manager.assign_case(case_id, request.assignee_id, actor)


# =============================================================================
# Workflow Endpoints
# =============================================================================

@router.get(
    "/{case_id}/available-transitions",
    response_model=List[AvailableTransition],
    summary="List transitions from the current state",
    description="""
Lists active transitions leaving the case's current state. `can_execute`
reflects the role check only; requirements are returned so the client can
prompt for them, but they are evaluated when the transition runs.
    """,
)
async def available_transitions(
    case_id: str,
    actor: Actor = Depends(get_actor),
    engine: WorkflowEngine = Depends(get_engine),
):
    return await engine.available_transitions(case_id, actor)


@router.post(
    "/{case_id}/transition",
    response_model=TransitionResult,
    summary="Execute a workflow transition",
    description="""
Moves the case along a transition of its workflow.

**Checks, in order**:
1. The transition leaves the current state (404 `transition_not_found`)
2. The caller holds one of its roles (403 `forbidden`)
3. Every mandatory requirement is met (422 `requirement_not_met`, listing all
   unmet kinds)

On success the state change, one history entry and one `status_changed`
revision are written together. Action failures are returned as `warnings`.

**Request Body Example**:
```json
{
  "transition_id": "assign",
  "comment": "Dispatching field team",
  "attachment_ids": [],
  "feedback": null
}
```
    """,
    responses={
        200: {"description": "Transition executed"},
        403: {"description": "Caller lacks the required role"},
        404: {"description": "Case or transition not found"},
        409: {"description": "Case was modified concurrently"},
        422: {"description": "Mandatory requirements not met"},
    },
)
async def execute_transition(
    case_id: str,
    request: TransitionRequest,
    actor: Actor = Depends(get_actor),
    engine: WorkflowEngine = Depends(get_engine),
):
    return await engine.execute_transition(case_id, request.transition_id, request, actor)


@router.get("/{case_id}/history", response_model=List[TransitionHistory], summary="Transition history")
async def get_history(
    case_id: str,
    actor: Actor = Depends(get_actor),
    case_manager: CaseManager = Depends(get_case_manager),
):
    return await case_manager.get_history(case_id)


@router.get(
    "/{case_id}/revisions",
    response_model=RevisionPage,
    summary="List case revisions",
    description="Revisions ordered by `revision_number` ascending. Date bounds are inclusive.",
)
async def list_revisions(
    case_id: str,
    action_type: Optional[RevisionActionType] = Query(None),
    performed_by: Optional[str] = Query(None),
    start_date: Optional[datetime] = Query(None),
    end_date: Optional[datetime] = Query(None),
    page: int = Query(1, ge=1),
    limit: Optional[int] = Query(None, ge=1),
    actor: Actor = Depends(get_actor),
    engine: WorkflowEngine = Depends(get_engine),
):
    filters = RevisionFilter(
        action_type=action_type,
        performed_by=performed_by,
        start_date=start_date,
        end_date=end_date,
    )
    return await engine.list_revisions(case_id, filters, page=page, limit=limit)


@router.post("/{case_id}/evaluate-sla", response_model=Case, summary="Evaluate SLA breach")
async def evaluate_sla(
    case_id: str,
    actor: Actor = Depends(get_actor),
    case_manager: CaseManager = Depends(get_case_manager),
):
    """Flag the case as breached when its SLA deadline passed in a non-terminal state."""
    return await case_manager.evaluate_sla(case_id, actor)


# =============================================================================
# Conversion Endpoints
# =============================================================================

@router.get("/{case_id}/can-convert", response_model=CanConvertResponse, summary="Check conversion")
async def can_convert(
    case_id: str,
    actor: Actor = Depends(get_actor),
    engine: WorkflowEngine = Depends(get_engine),
):
    return await engine.can_convert(case_id)


@router.post(
    "/{case_id}/convert",
    response_model=ConversionResult,
    status_code=status.HTTP_201_CREATED,
    summary="Convert incident to request",
    description="""
Creates a new `request` case linked to the incident through
`source_incident_id`. When `transition_id` is given that transition runs on
the incident first (its comment/attachments/feedback come from this body);
if it fails nothing is created. Without `workflow_id` a request workflow is
matched from the new classification.
    """,
)
async def convert_case(
    case_id: str,
    request: ConversionRequest,
    actor: Actor = Depends(get_actor),
    engine: WorkflowEngine = Depends(get_engine),
):
    return await engine.convert(case_id, request, actor)


# =============================================================================
# Comments and Attachments
# =============================================================================

@router.get("/{case_id}/comments", response_model=List[CaseComment], summary="List comments")
async def list_comments(
    case_id: str,
    actor: Actor = Depends(get_actor),
    case_manager: CaseManager = Depends(get_case_manager),
):
    return await case_manager.list_comments(case_id)


@router.post(
    "/{case_id}/comments",
    response_model=CaseComment,
    status_code=status.HTTP_201_CREATED,
    summary="Add comment",
)
async def add_comment(
    case_id: str,
    request: CommentRequest,
    actor: Actor = Depends(get_actor),
    case_manager: CaseManager = Depends(get_case_manager),
):
    return await case_manager.add_comment(case_id, request, actor)


@router.put("/{case_id}/comments/{comment_id}", response_model=CaseComment, summary="Edit comment")
async def update_comment(
    case_id: str,
    comment_id: str,
    request: CommentRequest,
    actor: Actor = Depends(get_actor),
    case_manager: CaseManager = Depends(get_case_manager),
):
    return await case_manager.update_comment(case_id, comment_id, request, actor)


@router.delete(
    "/{case_id}/comments/{comment_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Delete comment",
)
async def delete_comment(
    case_id: str,
    comment_id: str,
    actor: Actor = Depends(get_actor),
    case_manager: CaseManager = Depends(get_case_manager),
):
    await case_manager.delete_comment(case_id, comment_id, actor)


@router.post(
    "/{case_id}/attachments",
    response_model=Case,
    status_code=status.HTTP_201_CREATED,
    summary="Link attachment",
    description="Links a file already stored by the attachment service; no bytes pass through here.",
)
async def add_attachment(
    case_id: str,
    request: AttachmentRequest,
    actor: Actor = Depends(get_actor),
    case_manager: CaseManager = Depends(get_case_manager),
):
    return await case_manager.add_attachment(case_id, request, actor)


@router.delete(
    "/{case_id}/attachments/{attachment_id}",
    response_model=Case,
    summary="Unlink attachment",
)
async def remove_attachment(
    case_id: str,
    attachment_id: str,
    actor: Actor = Depends(get_actor),
    case_manager: CaseManager = Depends(get_case_manager),
):
    return await case_manager.remove_attachment(case_id, attachment_id, actor)

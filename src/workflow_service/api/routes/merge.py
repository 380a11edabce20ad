"""Case merge API routes."""

from fastapi import APIRouter, Depends

from workflow_service.api.dependencies import get_actor, get_engine
from workflow_service.core.workflow_engine import WorkflowEngine
from workflow_service.models import (
    Actor,
    BulkUnmergeRequest,
    MergeRequest,
    MergeResult,
    MergeValidation,
    MergeValidationRequest,
    UnmergeResult,
)

router = APIRouter(prefix="/api/v1/cases/merge", tags=["merge"])


@router.post(
    "/validate",
    response_model=MergeValidation,
    summary="Check whether cases can be merged",
    description="""
Never fails for invalid sets; problems are listed in `errors`.

Merging is refused for fewer than two distinct cases, unknown ids, mixed
record types, cases already merged into another master, or sets containing
more than one existing master. `master_options` lists every case found.
    """,
)
async def validate_merge(
    request: MergeValidationRequest,
    actor: Actor = Depends(get_actor),
    engine: WorkflowEngine = Depends(get_engine),
):
    return await engine.validate_merge(request.case_ids)


@router.post(
    "",
    response_model=MergeResult,
    summary="Merge duplicate cases into a master",
    description="""
All-or-nothing. Every case other than `master_id` gets `master_incident_id`
set and one `status_changed` revision. With `transition_code`, each duplicate
also executes the transition with that code from its current state; the
transition must be valid for every duplicate or nothing is merged.
    """,
    responses={
        200: {"description": "Cases merged"},
        409: {"description": "A case was modified concurrently"},
        422: {"description": "Merge validation failed"},
    },
)
async def merge_cases(
    request: MergeRequest,
    actor: Actor = Depends(get_actor),
    engine: WorkflowEngine = Depends(get_engine),
):
    return await engine.merge(
        request.case_ids,
        request.master_id,
        actor,
        comment=request.comment,
        transition_code=request.transition_code,
    )


@router.post("/bulk-unmerge", response_model=UnmergeResult, summary="Unmerge several cases")
async def bulk_unmerge(
    request: BulkUnmergeRequest,
    actor: Actor = Depends(get_actor),
    engine: WorkflowEngine = Depends(get_engine),
):
    """Unmerge each case independently; failures are collected, not raised."""
    return await engine.bulk_unmerge(request.case_ids, actor, comment=request.comment)

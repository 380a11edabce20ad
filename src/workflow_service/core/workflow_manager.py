"""Workflow definition management - Repository Pattern."""

import logging
from datetime import datetime, timezone
from typing import List, Optional

from workflow_service.infrastructure.persistence.case_repository import CaseFilter, CaseRepository
from workflow_service.infrastructure.persistence.workflow_repository import WorkflowRepository
from workflow_service.models import (
    RecordType,
    WorkflowCreateRequest,
    WorkflowDefinition,
    WorkflowUpdateRequest,
)

from .errors import InvalidWorkflowError, NotFoundError
from .requirements import RequirementRegistry
from .validation import locked_state_problems, validate_workflow

logger = logging.getLogger(__name__)


class WorkflowManager:
    """Administrative operations on workflow definitions.

    Every create and update is validated before it is persisted, so the engine
    can trust any stored definition.
    """

    def __init__(
        self,
        workflows: WorkflowRepository,
        cases: CaseRepository,
        requirements: Optional[RequirementRegistry] = None,
    ):
        """Initialize workflow manager with repositories.

        Args:
            workflows: Workflow definition repository
            cases: Case repository, consulted before purging a workflow
            requirements: Registry used to check requirement kinds
        """
        self.workflows = workflows
        self.cases = cases
        self.requirements = requirements

    async def create_workflow(self, request: WorkflowCreateRequest) -> WorkflowDefinition:
        """Validate and store a new workflow.

        Raises:
            InvalidWorkflowError: If the definition is structurally invalid
        """
        workflow = WorkflowDefinition(**request.model_dump())
        validate_workflow(workflow, self.requirements)

        saved = await self.workflows.save(workflow)
        logger.info(f"Created workflow {saved.id} ({saved.code}) for {saved.record_type.value}")
        return saved

    async def get_workflow(self, workflow_id: str) -> WorkflowDefinition:
        workflow = await self.workflows.get(workflow_id)
        if workflow is None or workflow.is_deleted:
            raise NotFoundError("Workflow", workflow_id)
        return workflow

    async def list_workflows(
        self,
        record_type: Optional[RecordType] = None,
        active_only: bool = False,
    ) -> List[WorkflowDefinition]:
        return await self.workflows.list(record_type=record_type, active_only=active_only)

    async def update_workflow(
        self,
        workflow_id: str,
        request: WorkflowUpdateRequest,
    ) -> WorkflowDefinition:
        """Apply provided fields, re-validate and bump the version.

        States that stored active transitions use, or that cases currently
        sit in, must survive the update with their ``state_type`` unchanged.

        Raises:
            NotFoundError: If the workflow does not exist or was deleted
            InvalidWorkflowError: If the updated definition is invalid or drops
                or retypes a locked state
        """
        current = await self.get_workflow(workflow_id)

        data = current.model_dump()
        data.update(request.model_dump(exclude_unset=True))
        data["version"] = current.version + 1
        data["updated_at"] = datetime.now(timezone.utc)
        updated = WorkflowDefinition(**data)
        validate_workflow(updated, self.requirements)

        occupied = await self.cases.group_counts(
            "current_state_id", CaseFilter(workflow_id=workflow_id),
        )
        problems = locked_state_problems(current, updated, occupied)
        if problems:
            logger.warning(f"Rejected update of workflow {workflow_id}: {problems}")
            raise InvalidWorkflowError(problems)

        saved = await self.workflows.save(updated)
        logger.info(f"Updated workflow {workflow_id} to version {saved.version}")
        return saved

    async def delete_workflow(self, workflow_id: str) -> bool:
        """Delete a workflow.

        Workflows still bound to cases are soft-deleted so their history stays
        readable; unreferenced ones are purged.

        Returns:
            True if the workflow was purged, False if it was soft-deleted
        """
        workflow = await self.get_workflow(workflow_id)

        if await self.cases.count_by_workflow(workflow_id) > 0:
            now = datetime.now(timezone.utc)
            workflow.deleted_at = now
            workflow.updated_at = now
            workflow.is_active = False
            await self.workflows.save(workflow)
            logger.info(f"Soft-deleted workflow {workflow_id} (still referenced by cases)")
            return False

        await self.workflows.purge(workflow_id)
        logger.info(f"Purged workflow {workflow_id}")
        return True

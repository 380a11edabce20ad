"""Workflow definition repository.

Definitions are read far more often than written and are always handled as a
whole, so the SQL implementation keeps states and transitions embedded as JSON
on the workflow row.
"""

from abc import ABC, abstractmethod
from typing import Dict, List, Optional

from sqlalchemy import delete, select
from sqlalchemy.exc import SQLAlchemyError

from workflow_service.infrastructure.database.models import WorkflowDB
from workflow_service.models import RecordType, WorkflowDefinition

from .case_repository import RepositoryException, ensure_utc


class WorkflowRepository(ABC):
    """Abstract repository interface for workflow definitions."""

    @abstractmethod
    async def save(self, workflow: WorkflowDefinition) -> WorkflowDefinition:
        """Insert or replace a workflow definition."""

    @abstractmethod
    async def get(self, workflow_id: str) -> Optional[WorkflowDefinition]:
        """Retrieve a workflow by ID, soft-deleted ones included."""

    @abstractmethod
    async def list(
        self,
        record_type: Optional[RecordType] = None,
        active_only: bool = False,
        include_deleted: bool = False,
    ) -> List[WorkflowDefinition]:
        """
        List workflows in creation order.

        The result is a materialized snapshot; matching scores it without
        touching storage again.
        """

    @abstractmethod
    async def purge(self, workflow_id: str) -> bool:
        """Remove a workflow permanently. Returns False if not found."""


def _keep(
    workflow: WorkflowDefinition,
    record_type: Optional[RecordType],
    active_only: bool,
    include_deleted: bool,
) -> bool:
    if workflow.is_deleted and not include_deleted:
        return False
    if active_only and not workflow.is_active:
        return False
    if record_type is not None and workflow.record_type != record_type:
        return False
    return True


class InMemoryWorkflowRepository(WorkflowRepository):
    """In-memory workflow repository for testing and development."""

    def __init__(self):
        self._workflows: Dict[str, WorkflowDefinition] = {}

    async def save(self, workflow: WorkflowDefinition) -> WorkflowDefinition:
        self._workflows[workflow.id] = workflow.model_copy(deep=True)
        return workflow

    async def get(self, workflow_id: str) -> Optional[WorkflowDefinition]:
        workflow = self._workflows.get(workflow_id)
        return workflow.model_copy(deep=True) if workflow else None

    async def list(
        self,
        record_type: Optional[RecordType] = None,
        active_only: bool = False,
        include_deleted: bool = False,
    ) -> List[WorkflowDefinition]:
        # dict preserves insertion order, which is the matching tie-break order
        return [
            w.model_copy(deep=True)
            for w in self._workflows.values()
            if _keep(w, record_type, active_only, include_deleted)
        ]

    async def purge(self, workflow_id: str) -> bool:
        return self._workflows.pop(workflow_id, None) is not None

    def clear(self):
        """Clear all data (testing utility)."""
        self._workflows.clear()


class SQLAlchemyWorkflowRepository(WorkflowRepository):
    """Workflow repository backed by the ``workflows`` table."""

    def __init__(self, db_session):
        """
        Initialize repository with database session.

        Args:
            db_session: SQLAlchemy async session
        """
        self.db = db_session

    async def save(self, workflow: WorkflowDefinition) -> WorkflowDefinition:
        data = workflow.model_dump(mode="json")
        values = {
            "id": workflow.id,
            "name": workflow.name,
            "code": workflow.code,
            "description": workflow.description,
            "record_type": workflow.record_type.value,
            "states": data["states"],
            "transitions": data["transitions"],
            "classification_ids": sorted(workflow.classification_ids),
            "location_ids": sorted(workflow.location_ids),
            "sources": sorted(workflow.sources),
            "priority_min": workflow.priority_min,
            "priority_max": workflow.priority_max,
            "is_active": workflow.is_active,
            "is_default": workflow.is_default,
            "version": workflow.version,
            "created_at": workflow.created_at,
            "updated_at": workflow.updated_at,
            "deleted_at": workflow.deleted_at,
        }
        try:
            row = await self.db.get(WorkflowDB, workflow.id)
            if row is None:
                self.db.add(WorkflowDB(**values))
            else:
                for key, value in values.items():
                    setattr(row, key, value)
            await self.db.commit()
        except SQLAlchemyError as e:
            await self.db.rollback()
            raise RepositoryException(f"Failed to save workflow {workflow.id}: {e}") from e
        return workflow

    async def get(self, workflow_id: str) -> Optional[WorkflowDefinition]:
        row = await self.db.get(WorkflowDB, workflow_id)
        return self._row_to_workflow(row) if row else None

    async def list(
        self,
        record_type: Optional[RecordType] = None,
        active_only: bool = False,
        include_deleted: bool = False,
    ) -> List[WorkflowDefinition]:
        query = select(WorkflowDB)
        if record_type is not None:
            query = query.where(WorkflowDB.record_type == record_type.value)
        if active_only:
            query = query.where(WorkflowDB.is_active.is_(True))
        if not include_deleted:
            query = query.where(WorkflowDB.deleted_at.is_(None))
        query = query.order_by(WorkflowDB.created_at, WorkflowDB.id)

        result = await self.db.execute(query)
        return [self._row_to_workflow(row) for row in result.scalars().all()]

    async def purge(self, workflow_id: str) -> bool:
        try:
            result = await self.db.execute(delete(WorkflowDB).where(WorkflowDB.id == workflow_id))
            await self.db.commit()
        except SQLAlchemyError as e:
            await self.db.rollback()
            raise RepositoryException(f"Failed to purge workflow {workflow_id}: {e}") from e
        return result.rowcount > 0

    def _row_to_workflow(self, row: WorkflowDB) -> WorkflowDefinition:
        """Convert database row to WorkflowDefinition model."""
        return WorkflowDefinition.model_validate({
            "id": row.id,
            "name": row.name,
            "code": row.code,
            "description": row.description or "",
            "record_type": row.record_type,
            "states": row.states or [],
            "transitions": row.transitions or [],
            "classification_ids": row.classification_ids or [],
            "location_ids": row.location_ids or [],
            "sources": row.sources or [],
            "priority_min": row.priority_min,
            "priority_max": row.priority_max,
            "is_active": row.is_active,
            "is_default": row.is_default,
            "version": row.version,
            "created_at": ensure_utc(row.created_at),
            "updated_at": ensure_utc(row.updated_at),
            "deleted_at": ensure_utc(row.deleted_at),
        })


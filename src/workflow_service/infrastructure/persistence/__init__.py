"""Persistence layer - Repository Pattern implementation."""

from workflow_service.infrastructure.persistence.case_repository import (
    CaseFilter,
    CaseMutation,
    CaseRepository,
    InMemoryCaseRepository,
    RepositoryException,
)
from workflow_service.infrastructure.persistence.sqlalchemy_case_repository import (
    SQLAlchemyCaseRepository,
)
from workflow_service.infrastructure.persistence.workflow_repository import (
    InMemoryWorkflowRepository,
    SQLAlchemyWorkflowRepository,
    WorkflowRepository,
)

__all__ = [
    "CaseFilter",
    "CaseMutation",
    "CaseRepository",
    "InMemoryCaseRepository",
    "InMemoryWorkflowRepository",
    "RepositoryException",
    "SQLAlchemyCaseRepository",
    "SQLAlchemyWorkflowRepository",
    "WorkflowRepository",
]

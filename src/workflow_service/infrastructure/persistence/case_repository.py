"""Case Repository for workflow-driven case persistence.

This module provides the repository pattern for the Case aggregate and its
append-only companions (transition history, revisions, comments). Every
mutation goes through ``commit()``, which writes all rows of one or more cases
as a single atomic unit guarded by an optimistic version check.
"""

from abc import ABC, abstractmethod
from collections import Counter
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple

from pydantic import BaseModel, Field

from workflow_service.core.errors import ConflictError
from workflow_service.models import (
    Case,
    CaseComment,
    Revision,
    RevisionFilter,
    TransitionHistory,
)


class CaseMutation(BaseModel):
    """Everything written for one case in one atomic commit.

    ``expected_version`` is the version the caller read; ``None`` means the case
    is new and must not exist yet.
    """

    case: Case
    expected_version: Optional[int] = None
    history: List[TransitionHistory] = Field(default_factory=list)
    revisions: List[Revision] = Field(default_factory=list)
    comments: List[CaseComment] = Field(default_factory=list)


class CaseFilter(BaseModel):
    """Optional filters for listing cases.

    Plain fields match exactly. ``search`` is a case-insensitive substring of
    the title or description; ``start_date`` / ``end_date`` bound ``created_at``
    inclusively.
    """

    record_type: Optional[str] = None
    workflow_id: Optional[str] = None
    current_state_id: Optional[str] = None
    classification_id: Optional[str] = None
    location_id: Optional[str] = None
    department_id: Optional[str] = None
    assignee_id: Optional[str] = None
    reporter_id: Optional[str] = None
    priority: Optional[int] = None
    master_incident_id: Optional[str] = None
    sla_breached: Optional[bool] = None
    search: Optional[str] = None
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None

    def exact_matches(self) -> Dict[str, Any]:
        return self.model_dump(exclude_none=True, exclude=_RANGE_FILTERS)


_RANGE_FILTERS = {"search", "start_date", "end_date"}


# ============================================================
# Repository Interface
# ============================================================

class CaseRepository(ABC):
    """
    Abstract repository interface for Case persistence.

    Implementations:
    - SQLAlchemyCaseRepository: Production database (PostgreSQL or SQLite)
    - InMemoryCaseRepository: Testing and development
    """

    @abstractmethod
    async def get(self, case_id: str) -> Optional[Case]:
        """
        Retrieve case by ID.

        Args:
            case_id: Case identifier

        Returns:
            Detached copy of the case if found, None otherwise
        """

    @abstractmethod
    async def get_many(self, case_ids: List[str]) -> List[Case]:
        """
        Retrieve several cases; unknown ids are skipped.

        Returns:
            Cases in the order of ``case_ids``
        """

    @abstractmethod
    async def list(
        self,
        filters: Optional[CaseFilter] = None,
        limit: int = 50,
        offset: int = 0,
    ) -> Tuple[List[Case], int]:
        """
        List cases with optional filters, newest first.

        Returns:
            Tuple of (cases, total_count)
        """

    @abstractmethod
    async def commit(self, mutations: List[CaseMutation]) -> List[Case]:
        """
        Atomically write cases with their history, revisions and comments.

        Each written case has its version bumped by one. Either every mutation
        is stored or none is.

        Returns:
            The stored cases, in mutation order

        Raises:
            ConflictError: If any case version changed since it was read, a new
                case id already exists, or a revision number is taken
            RepositoryException: If the write fails for any other reason
        """

    @abstractmethod
    async def delete(self, case_id: str) -> bool:
        """
        Hard delete a case and its own audit rows.

        Returns:
            True if deleted, False if not found
        """

    @abstractmethod
    async def is_referenced(self, case_id: str) -> bool:
        """True when another case is merged into or converted from this case."""

    @abstractmethod
    async def count_by_workflow(self, workflow_id: str) -> int:
        """Number of cases bound to a workflow."""

    @abstractmethod
    async def group_counts(
        self,
        field: str,
        filters: Optional[CaseFilter] = None,
    ) -> Dict[Any, int]:
        """
        Count matching cases per value of one case column.

        Cases where the column is null are left out.

        Returns:
            Mapping of column value to case count
        """

    @abstractmethod
    async def latest_revision_number(self, case_id: str) -> int:
        """Highest revision number of the case, 0 when there is none."""

    @abstractmethod
    async def list_revisions(
        self,
        case_id: str,
        filters: Optional[RevisionFilter] = None,
        limit: int = 50,
        offset: int = 0,
    ) -> Tuple[List[Revision], int]:
        """
        Revisions of a case ordered by revision number ascending.

        Returns:
            Tuple of (revisions, total_count)
        """

    @abstractmethod
    async def list_history(self, case_id: str) -> List[TransitionHistory]:
        """Transition history of a case, oldest first."""

    @abstractmethod
    async def get_comment(self, comment_id: str) -> Optional[CaseComment]:
        """Retrieve a comment by ID."""

    @abstractmethod
    async def list_comments(self, case_id: str, include_deleted: bool = False) -> List[CaseComment]:
        """Comments of a case, oldest first."""


def case_matches(case: Case, filters: Optional[CaseFilter]) -> bool:
    """In-process equivalent of the SQL case filter."""
    if filters is None:
        return True
    for field, value in filters.exact_matches().items():
        if _field_value(case, field) != value:
            return False
    if filters.search:
        needle = filters.search.lower()
        if needle not in case.title.lower() and needle not in case.description.lower():
            return False
    if filters.start_date and case.created_at < ensure_utc(filters.start_date):
        return False
    if filters.end_date and case.created_at > ensure_utc(filters.end_date):
        return False
    return True


def revision_matches(revision: Revision, filters: Optional[RevisionFilter]) -> bool:
    """In-process equivalent of the SQL revision filter."""
    if filters is None:
        return True
    if filters.action_type and revision.action_type != filters.action_type:
        return False
    if filters.performed_by and revision.performed_by != filters.performed_by:
        return False
    if filters.start_date and revision.created_at < ensure_utc(filters.start_date):
        return False
    if filters.end_date and revision.created_at > ensure_utc(filters.end_date):
        return False
    return True


def ensure_utc(value: Optional[datetime]) -> Optional[datetime]:
    """SQLite drops tzinfo on read; stored values are always UTC."""
    if value is None or value.tzinfo is not None:
        return value
    return value.replace(tzinfo=timezone.utc)


# ============================================================
# In-Memory Implementation (for Testing)
# ============================================================

class InMemoryCaseRepository(CaseRepository):
    """
    In-memory case repository for testing and development.

    Data stored in dictionaries, not persistent across restarts. Reads return
    deep copies so callers can never mutate stored state without ``commit()``.
    """

    def __init__(self):
        """Initialize empty in-memory store."""
        self._cases: Dict[str, Case] = {}
        self._history: Dict[str, List[TransitionHistory]] = {}
        self._revisions: Dict[str, List[Revision]] = {}
        self._comments: Dict[str, CaseComment] = {}

    async def get(self, case_id: str) -> Optional[Case]:
        case = self._cases.get(case_id)
        return case.model_copy(deep=True) if case else None

    async def get_many(self, case_ids: List[str]) -> List[Case]:
        return [
            self._cases[case_id].model_copy(deep=True)
            for case_id in case_ids
            if case_id in self._cases
        ]

    async def list(
        self,
        filters: Optional[CaseFilter] = None,
        limit: int = 50,
        offset: int = 0,
    ) -> Tuple[List[Case], int]:
        filtered = [c for c in self._cases.values() if case_matches(c, filters)]

        # Sort by created_at descending
        filtered.sort(key=lambda c: c.created_at, reverse=True)

        total_count = len(filtered)
        paginated = filtered[offset:offset + limit]

        return [c.model_copy(deep=True) for c in paginated], total_count

    async def commit(self, mutations: List[CaseMutation]) -> List[Case]:
        # Validate everything first; no awaits below, so check-then-write is atomic
        for mutation in mutations:
            stored = self._cases.get(mutation.case.id)
            if mutation.expected_version is None:
                if stored is not None:
                    raise ConflictError(mutation.case.id)
            elif stored is None or stored.version != mutation.expected_version:
                raise ConflictError(mutation.case.id, mutation.expected_version)

            taken = {r.revision_number for r in self._revisions.get(mutation.case.id, [])}
            for revision in mutation.revisions:
                if revision.revision_number in taken:
                    raise ConflictError(mutation.case.id, mutation.expected_version)
                taken.add(revision.revision_number)

        now = datetime.now(timezone.utc)
        saved = []
        for mutation in mutations:
            case = mutation.case.model_copy(deep=True)
            case.version = (mutation.expected_version or 0) + 1
            case.updated_at = now
            self._cases[case.id] = case
            self._history.setdefault(case.id, []).extend(
                h.model_copy(deep=True) for h in mutation.history
            )
            self._revisions.setdefault(case.id, []).extend(
                r.model_copy(deep=True) for r in mutation.revisions
            )
            for comment in mutation.comments:
                self._comments[comment.id] = comment.model_copy(deep=True)
            saved.append(case.model_copy(deep=True))

        return saved

    async def delete(self, case_id: str) -> bool:
        if case_id not in self._cases:
            return False
        del self._cases[case_id]
        self._history.pop(case_id, None)
        self._revisions.pop(case_id, None)
        self._comments = {k: c for k, c in self._comments.items() if c.case_id != case_id}
        return True

    async def is_referenced(self, case_id: str) -> bool:
        return any(
            c.master_incident_id == case_id or c.source_incident_id == case_id
            for c in self._cases.values()
        )

    async def count_by_workflow(self, workflow_id: str) -> int:
        return sum(1 for c in self._cases.values() if c.workflow_id == workflow_id)

    async def group_counts(
        self,
        field: str,
        filters: Optional[CaseFilter] = None,
    ) -> Dict[Any, int]:
        counts = Counter(
            _field_value(c, field) for c in self._cases.values() if case_matches(c, filters)
        )
        counts.pop(None, None)
        return dict(counts)

    async def latest_revision_number(self, case_id: str) -> int:
        revisions = self._revisions.get(case_id, [])
        return max((r.revision_number for r in revisions), default=0)

    async def list_revisions(
        self,
        case_id: str,
        filters: Optional[RevisionFilter] = None,
        limit: int = 50,
        offset: int = 0,
    ) -> Tuple[List[Revision], int]:
        revisions = sorted(self._revisions.get(case_id, []), key=lambda r: r.revision_number)
        filtered = [r for r in revisions if revision_matches(r, filters)]
        page = filtered[offset:offset + limit]
        return [r.model_copy(deep=True) for r in page], len(filtered)

    async def list_history(self, case_id: str) -> List[TransitionHistory]:
        return [h.model_copy(deep=True) for h in self._history.get(case_id, [])]

    async def get_comment(self, comment_id: str) -> Optional[CaseComment]:
        comment = self._comments.get(comment_id)
        return comment.model_copy(deep=True) if comment else None

    async def list_comments(self, case_id: str, include_deleted: bool = False) -> List[CaseComment]:
        comments = [
            c for c in self._comments.values()
            if c.case_id == case_id and (include_deleted or c.deleted_at is None)
        ]
        comments.sort(key=lambda c: c.created_at)
        return [c.model_copy(deep=True) for c in comments]

    def clear(self):
        """Clear all data (testing utility)."""
        self._cases.clear()
        self._history.clear()
        self._revisions.clear()
        self._comments.clear()


def _field_value(case: Case, field: str):
    value = getattr(case, field)
    # Enum fields compare by value against plain filter strings
    return getattr(value, "value", value)


# ============================================================
# Repository Exception
# ============================================================

class RepositoryException(Exception):
    """Base exception for repository errors."""
    pass

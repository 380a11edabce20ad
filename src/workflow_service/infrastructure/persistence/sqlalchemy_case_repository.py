"""SQLAlchemy case repository (PostgreSQL via asyncpg, SQLite via aiosqlite).

``commit()`` runs every mutation inside one session transaction. Existing cases
are written with ``UPDATE ... WHERE id = :id AND version = :expected``; a
rowcount other than one means another writer got there first, and the whole
transaction is rolled back.
"""

import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy import delete, func, or_, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from workflow_service.core.errors import ConflictError
from workflow_service.infrastructure.database.models import (
    CaseDB,
    CommentDB,
    RevisionDB,
    TransitionHistoryDB,
)
from workflow_service.models import (
    Case,
    CaseComment,
    Revision,
    RevisionFilter,
    TransitionHistory,
)

from .case_repository import (
    CaseFilter,
    CaseMutation,
    CaseRepository,
    RepositoryException,
    ensure_utc,
)

logger = logging.getLogger(__name__)

_CASE_COLUMNS = (
    "id", "record_type", "title", "description", "workflow_id", "current_state_id",
    "classification_id", "location_id", "department_id", "assignee_id", "reporter_id",
    "priority", "source", "sla_breached", "sla_deadline", "master_incident_id",
    "source_incident_id", "attachment_ids", "created_at", "updated_at",
    "resolved_at", "closed_at",
)
_CASE_DATETIMES = ("sla_deadline", "created_at", "updated_at", "resolved_at", "closed_at")


def _case_conditions(filters: Optional[CaseFilter]) -> list:
    if filters is None:
        return []
    conditions = [getattr(CaseDB, field) == value for field, value in filters.exact_matches().items()]
    if filters.search:
        pattern = f"%{filters.search}%"
        conditions.append(or_(CaseDB.title.ilike(pattern), CaseDB.description.ilike(pattern)))
    if filters.start_date:
        conditions.append(CaseDB.created_at >= ensure_utc(filters.start_date))
    if filters.end_date:
        conditions.append(CaseDB.created_at <= ensure_utc(filters.end_date))
    return conditions


class SQLAlchemyCaseRepository(CaseRepository):
    """
    Case repository for production use.

    Uses SQLAlchemy declarative models; nested values (attachment ids, field
    changes, feedback) are stored in JSON columns.
    """

    def __init__(self, db_session):
        """
        Initialize repository with database session.

        Args:
            db_session: SQLAlchemy async session
        """
        self.db = db_session

    async def get(self, case_id: str) -> Optional[Case]:
        result = await self.db.execute(select(CaseDB).where(CaseDB.id == case_id))
        row = result.scalar_one_or_none()
        return self._row_to_case(row) if row else None

    async def get_many(self, case_ids: List[str]) -> List[Case]:
        if not case_ids:
            return []
        result = await self.db.execute(select(CaseDB).where(CaseDB.id.in_(case_ids)))
        by_id = {row.id: self._row_to_case(row) for row in result.scalars().all()}
        return [by_id[case_id] for case_id in case_ids if case_id in by_id]

    async def list(
        self,
        filters: Optional[CaseFilter] = None,
        limit: int = 50,
        offset: int = 0,
    ) -> Tuple[List[Case], int]:
        conditions = _case_conditions(filters)

        count_query = select(func.count()).select_from(CaseDB).where(*conditions)
        total_count = (await self.db.execute(count_query)).scalar() or 0

        data_query = (
            select(CaseDB)
            .where(*conditions)
            .order_by(CaseDB.created_at.desc(), CaseDB.id)
            .limit(limit)
            .offset(offset)
        )
        result = await self.db.execute(data_query)
        cases = [self._row_to_case(row) for row in result.scalars().all()]

        return cases, total_count

    async def commit(self, mutations: List[CaseMutation]) -> List[Case]:
        saved: List[Case] = []
        now = datetime.now(timezone.utc)
        try:
            for mutation in mutations:
                case = mutation.case.model_copy(deep=True)
                case.version = (mutation.expected_version or 0) + 1
                case.updated_at = now
                values = self._case_to_values(case)

                if mutation.expected_version is None:
                    self.db.add(CaseDB(**values))
                    await self.db.flush()
                else:
                    values.pop("id")
                    values.pop("created_at")
                    result = await self.db.execute(
                        update(CaseDB)
                        .where(CaseDB.id == case.id)
                        .where(CaseDB.version == mutation.expected_version)
                        .values(**values)
                    )
                    if result.rowcount != 1:
                        raise ConflictError(case.id, mutation.expected_version)

                for history in mutation.history:
                    self.db.add(self._history_to_row(history))
                for revision in mutation.revisions:
                    self.db.add(self._revision_to_row(revision))
                for comment in mutation.comments:
                    await self.db.merge(self._comment_to_row(comment))

                saved.append(case)

            await self.db.commit()
        except ConflictError:
            await self.db.rollback()
            raise
        except IntegrityError as e:
            # Duplicate case id or revision number taken by a concurrent writer
            await self.db.rollback()
            conflicted = mutations[len(saved)] if len(saved) < len(mutations) else mutations[-1]
            logger.warning(f"Integrity conflict while committing case {conflicted.case.id}: {e}")
            raise ConflictError(conflicted.case.id, conflicted.expected_version) from e
        except SQLAlchemyError as e:
            await self.db.rollback()
            raise RepositoryException(f"Failed to commit case mutations: {e}") from e

        return saved

    async def delete(self, case_id: str) -> bool:
        try:
            for model in (RevisionDB, TransitionHistoryDB, CommentDB):
                await self.db.execute(delete(model).where(model.case_id == case_id))
            result = await self.db.execute(delete(CaseDB).where(CaseDB.id == case_id))
            await self.db.commit()
        except SQLAlchemyError as e:
            await self.db.rollback()
            raise RepositoryException(f"Failed to delete case {case_id}: {e}") from e
        return result.rowcount > 0

    async def is_referenced(self, case_id: str) -> bool:
        query = select(func.count()).select_from(CaseDB).where(
            or_(CaseDB.master_incident_id == case_id, CaseDB.source_incident_id == case_id)
        )
        return ((await self.db.execute(query)).scalar() or 0) > 0

    async def count_by_workflow(self, workflow_id: str) -> int:
        query = select(func.count()).select_from(CaseDB).where(CaseDB.workflow_id == workflow_id)
        return (await self.db.execute(query)).scalar() or 0

    async def group_counts(
        self,
        field: str,
        filters: Optional[CaseFilter] = None,
    ) -> Dict[Any, int]:
        column = getattr(CaseDB, field)
        result = await self.db.execute(
            select(column, func.count())
            .where(column.is_not(None), *_case_conditions(filters))
            .group_by(column)
        )
        return {value: count for value, count in result.all()}

    async def latest_revision_number(self, case_id: str) -> int:
        query = select(func.max(RevisionDB.revision_number)).where(RevisionDB.case_id == case_id)
        return (await self.db.execute(query)).scalar() or 0

    async def list_revisions(
        self,
        case_id: str,
        filters: Optional[RevisionFilter] = None,
        limit: int = 50,
        offset: int = 0,
    ) -> Tuple[List[Revision], int]:
        conditions = [RevisionDB.case_id == case_id]
        if filters:
            if filters.action_type:
                conditions.append(RevisionDB.action_type == filters.action_type.value)
            if filters.performed_by:
                conditions.append(RevisionDB.performed_by == filters.performed_by)
            if filters.start_date:
                conditions.append(RevisionDB.created_at >= ensure_utc(filters.start_date))
            if filters.end_date:
                conditions.append(RevisionDB.created_at <= ensure_utc(filters.end_date))

        count_query = select(func.count()).select_from(RevisionDB).where(*conditions)
        total = (await self.db.execute(count_query)).scalar() or 0

        result = await self.db.execute(
            select(RevisionDB)
            .where(*conditions)
            .order_by(RevisionDB.revision_number)
            .limit(limit)
            .offset(offset)
        )
        return [self._row_to_revision(row) for row in result.scalars().all()], total

    async def list_history(self, case_id: str) -> List[TransitionHistory]:
        result = await self.db.execute(
            select(TransitionHistoryDB)
            .where(TransitionHistoryDB.case_id == case_id)
            .order_by(TransitionHistoryDB.executed_at, TransitionHistoryDB.id)
        )
        return [self._row_to_history(row) for row in result.scalars().all()]

    async def get_comment(self, comment_id: str) -> Optional[CaseComment]:
        row = await self.db.get(CommentDB, comment_id)
        return self._row_to_comment(row) if row else None

    async def list_comments(self, case_id: str, include_deleted: bool = False) -> List[CaseComment]:
        query = select(CommentDB).where(CommentDB.case_id == case_id)
        if not include_deleted:
            query = query.where(CommentDB.deleted_at.is_(None))
        result = await self.db.execute(query.order_by(CommentDB.created_at, CommentDB.id))
        return [self._row_to_comment(row) for row in result.scalars().all()]

    # ------------------------------------------------------------------
    # Row mapping
    # ------------------------------------------------------------------

    def _case_to_values(self, case: Case) -> dict:
        values = {column: getattr(case, column) for column in _CASE_COLUMNS}
        values["record_type"] = case.record_type.value
        values["attachment_ids"] = list(case.attachment_ids)
        values["version"] = case.version
        return values

    def _row_to_case(self, row: CaseDB) -> Case:
        """Convert database row to Case model."""
        data = {column: getattr(row, column) for column in _CASE_COLUMNS}
        for column in _CASE_DATETIMES:
            data[column] = ensure_utc(data[column])
        data["attachment_ids"] = data["attachment_ids"] or []
        data["version"] = row.version
        return Case.model_validate(data)

    def _history_to_row(self, history: TransitionHistory) -> TransitionHistoryDB:
        data = history.model_dump(mode="json", exclude={"executed_at"})
        return TransitionHistoryDB(**data, executed_at=history.executed_at)

    def _row_to_history(self, row: TransitionHistoryDB) -> TransitionHistory:
        return TransitionHistory(
            id=row.id,
            case_id=row.case_id,
            transition_id=row.transition_id,
            from_state_id=row.from_state_id,
            to_state_id=row.to_state_id,
            executed_by=row.executed_by,
            executed_at=ensure_utc(row.executed_at),
            comment=row.comment,
            attachment_ids=row.attachment_ids or [],
            feedback=row.feedback,
            action_results=row.action_results or [],
        )

    def _revision_to_row(self, revision: Revision) -> RevisionDB:
        data = revision.model_dump(mode="json", exclude={"created_at"})
        return RevisionDB(**data, created_at=revision.created_at)

    def _row_to_revision(self, row: RevisionDB) -> Revision:
        return Revision(
            id=row.id,
            case_id=row.case_id,
            revision_number=row.revision_number,
            action_type=row.action_type,
            action_description=row.action_description or "",
            changes=row.changes or [],
            performed_by=row.performed_by,
            performed_by_roles=row.performed_by_roles or [],
            comment_id=row.comment_id,
            attachment_id=row.attachment_id,
            transition_history_id=row.transition_history_id,
            created_at=ensure_utc(row.created_at),
        )

    def _comment_to_row(self, comment: CaseComment) -> CommentDB:
        return CommentDB(
            id=comment.id,
            case_id=comment.case_id,
            author_id=comment.author_id,
            content=comment.content,
            is_internal=comment.is_internal,
            created_at=comment.created_at,
            updated_at=comment.updated_at,
            deleted_at=comment.deleted_at,
        )

    def _row_to_comment(self, row: CommentDB) -> CaseComment:
        return CaseComment(
            id=row.id,
            case_id=row.case_id,
            author_id=row.author_id,
            content=row.content,
            is_internal=row.is_internal,
            created_at=ensure_utc(row.created_at),
            updated_at=ensure_utc(row.updated_at),
            deleted_at=ensure_utc(row.deleted_at),
        )

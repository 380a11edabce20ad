"""Case business logic manager - Repository Pattern."""

import logging
from datetime import datetime, timezone
from typing import Any, List, Optional, Tuple
from uuid import uuid4

from workflow_service.config import settings
from workflow_service.infrastructure.persistence.case_repository import CaseFilter, CaseMutation
from workflow_service.models import (
    Actor,
    AttachmentRequest,
    Case,
    CaseComment,
    CaseCreateRequest,
    CaseStats,
    CaseUpdateRequest,
    CommentRequest,
    FieldChange,
    MatchCriteria,
    RecordType,
    RevisionActionType,
    TransitionHistory,
)

from .errors import CaseReferencedError, InvalidRecordTypeError, NotFoundError
from .revision_ledger import RevisionSequence
from .transition_executor import sla_deadline_for
from .workflow_engine import WorkflowEngine

logger = logging.getLogger(__name__)

TITLE_PREFIXES = {
    RecordType.INCIDENT: "INC",
    RecordType.COMPLAINT: "CMP",
    RecordType.QUERY: "QRY",
    RecordType.REQUEST: "REQ",
}


def _text(value: Any) -> Optional[str]:
    return None if value is None else str(value)


class CaseManager:
    """Business logic for case management operations.

    State changes go through the WorkflowEngine; this class owns everything
    else that happens to a case (creation, field edits, comments,
    attachments, SLA flags) and records one revision per mutation.
    """

    def __init__(self, engine: WorkflowEngine):
        """Initialize case manager.

        Args:
            engine: Workflow engine sharing the repositories and case locks
        """
        self.engine = engine
        self.repository = engine.cases
        self.locks = engine.locks
        self.ledger = engine.ledger

    async def _commit(
        self,
        case: Case,
        sequence: RevisionSequence,
        comments: Optional[List[CaseComment]] = None,
        expected_version: Optional[int] = None,
    ) -> Case:
        [saved] = await self.repository.commit([CaseMutation(
            case=case,
            expected_version=expected_version,
            revisions=sequence.revisions,
            comments=comments or [],
        )])
        return saved

    async def create_case(
        self,
        request: CaseCreateRequest,
        actor: Actor,
    ) -> Case:
        """Create a new case in the initial state of its workflow.

        Args:
            request: Case creation request; without ``workflow_id`` the
                matching engine picks the workflow
            actor: Caller, recorded as reporter

        Returns:
            Created case with revision #1 recorded

        Raises:
            NotFoundError: If no workflow is given or matches
            InvalidRecordTypeError: If the given workflow cannot hold this record type
        """
        if request.workflow_id:
            workflow = await self.engine.get_workflow(request.workflow_id)
            if workflow.is_deleted:
                raise NotFoundError("Workflow", request.workflow_id)
            if not workflow.supports_record_type(request.record_type):
                raise InvalidRecordTypeError(
                    f"Workflow {workflow.id} handles {workflow.record_type.value} records, "
                    f"not {request.record_type.value}"
                )
        else:
            workflow = await self.engine.match_workflow(MatchCriteria(
                record_type=request.record_type,
                classification_id=request.classification_id,
                location_id=request.location_id,
                source=request.source,
                priority=request.priority,
            ))
            if workflow is None:
                raise NotFoundError("Workflow", f"for {request.record_type.value} cases")

        initial = workflow.initial_state()
        now = datetime.now(timezone.utc)

        # Auto-generate title if not provided: INC-MMDD-XXXX
        title = (request.title or "").strip()
        if not title:
            prefix = TITLE_PREFIXES.get(request.record_type, "CASE")
            title = f"{prefix}-{now.strftime('%m%d')}-{uuid4().hex[:4].upper()}"

        case = Case(
            record_type=request.record_type,
            title=title,
            description=request.description or "",
            workflow_id=workflow.id,
            current_state_id=initial.id,
            classification_id=request.classification_id,
            location_id=request.location_id,
            department_id=request.department_id,
            assignee_id=request.assignee_id,
            reporter_id=actor.user_id,
            priority=request.priority,
            source=request.source,
            sla_deadline=sla_deadline_for(initial, now),
            created_at=now,
            updated_at=now,
        )

        sequence = RevisionSequence(case.id, 0, actor)
        sequence.append(RevisionActionType.CREATED, f"Case created in workflow {workflow.code}")
        saved = await self._commit(case, sequence)

        logger.info(f"Created case {saved.id} ({saved.record_type.value}) in workflow {workflow.id}")
        return saved

    async def get_case(self, case_id: str) -> Case:
        """Get a case by ID.

        Raises:
            NotFoundError: If the case does not exist
        """
        return await self.engine.get_case(case_id)

    async def list_cases(
        self,
        filters: Optional[CaseFilter] = None,
        page: int = 1,
        page_size: Optional[int] = None,
    ) -> Tuple[List[Case], int]:
        """List cases with filters and pagination.

        Returns:
            Tuple of (cases, total_count)
        """
        page = max(page, 1)
        page_size = min(max(page_size or settings.default_page_size, 1), settings.max_page_size)
        return await self.repository.list(filters, limit=page_size, offset=(page - 1) * page_size)

    async def case_stats(self, filters: Optional[CaseFilter] = None) -> CaseStats:
        """Counts per state id, record type and priority for matching cases."""
        by_record_type = await self.repository.group_counts("record_type", filters)
        breached = await self.repository.group_counts("sla_breached", filters)
        return CaseStats(
            total=sum(by_record_type.values()),
            sla_breached=breached.get(True, 0),
            by_state=await self.repository.group_counts("current_state_id", filters),
            by_record_type=by_record_type,
            by_priority=await self.repository.group_counts("priority", filters),
        )

    async def update_case(
        self,
        case_id: str,
        request: CaseUpdateRequest,
        actor: Actor,
    ) -> Case:
        """Update editable fields of a case.

        Ordinary fields are recorded in one ``field_change`` revision; a new
        assignee gets its own ``assignee_changed`` revision.

        Returns:
            Updated case (unchanged case when nothing differs)
        """
        async with self.locks.hold(case_id):
            case = await self.get_case(case_id)
            updated = case.model_copy(deep=True)

            changes: List[FieldChange] = []
            assignee_change: Optional[FieldChange] = None
            for field, value in request.model_dump(exclude_unset=True).items():
                if value is None and field in ("title", "description"):
                    continue
                if field == "title":
                    value = value.strip()
                old = getattr(case, field)
                if old == value:
                    continue
                setattr(updated, field, value)
                change = FieldChange(field=field, old_value=_text(old), new_value=_text(value))
                if field == "assignee_id":
                    assignee_change = change
                else:
                    changes.append(change)

            if not changes and assignee_change is None:
                return case

            sequence = await self.ledger.start(case_id, actor)
            if changes:
                sequence.append(
                    RevisionActionType.FIELD_CHANGE,
                    "Updated " + ", ".join(c.field for c in changes),
                    changes,
                )
            if assignee_change is not None:
                sequence.append(
                    RevisionActionType.ASSIGNEE_CHANGED,
                    f"Assignee changed to {assignee_change.new_value or 'nobody'}",
                    [assignee_change],
                )
            saved = await self._commit(updated, sequence, expected_version=case.version)

        logger.info(f"Updated case {case_id} ({len(sequence.revisions)} revision(s))")
        return saved

    async def assign_case(
        self,
        case_id: str,
        assignee_id: Optional[str],
        actor: Actor,
    ) -> Case:
        return await self.update_case(case_id, CaseUpdateRequest(assignee_id=assignee_id), actor)

    async def delete_case(self, case_id: str) -> bool:
        """Hard delete a case.

        Raises:
            NotFoundError: If the case does not exist
            CaseReferencedError: If the case is a merge master or conversion source
        """
        async with self.locks.hold(case_id):
            await self.get_case(case_id)
            if await self.repository.is_referenced(case_id):
                raise CaseReferencedError(
                    f"Case {case_id} is referenced by merged or converted cases"
                )
            deleted = await self.repository.delete(case_id)

        if deleted:
            logger.info(f"Deleted case {case_id}")
        return deleted

    # ------------------------------------------------------------------
    # Comments
    # ------------------------------------------------------------------

    async def list_comments(self, case_id: str) -> List[CaseComment]:
        await self.get_case(case_id)
        return await self.repository.list_comments(case_id)

    async def _case_comment(self, case_id: str, comment_id: str) -> CaseComment:
        comment = await self.repository.get_comment(comment_id)
        if comment is None or comment.case_id != case_id or comment.deleted_at is not None:
            raise NotFoundError("Comment", comment_id)
        return comment

    async def add_comment(self, case_id: str, request: CommentRequest, actor: Actor) -> CaseComment:
        async with self.locks.hold(case_id):
            case = await self.get_case(case_id)
            comment = CaseComment(
                case_id=case_id,
                author_id=actor.user_id,
                content=request.content,
                is_internal=request.is_internal,
            )
            sequence = await self.ledger.start(case_id, actor)
            sequence.append(
                RevisionActionType.COMMENT_ADDED,
                "Internal note added" if comment.is_internal else "Comment added",
                comment_id=comment.id,
            )
            await self._commit(case, sequence, [comment], expected_version=case.version)

        logger.info(f"Comment {comment.id} added to case {case_id} by {actor.user_id}")
        return comment

    async def update_comment(
        self,
        case_id: str,
        comment_id: str,
        request: CommentRequest,
        actor: Actor,
    ) -> CaseComment:
        async with self.locks.hold(case_id):
            case = await self.get_case(case_id)
            comment = await self._case_comment(case_id, comment_id)

            change = FieldChange(field="content", old_value=comment.content, new_value=request.content)
            comment.content = request.content
            comment.is_internal = request.is_internal
            comment.updated_at = datetime.now(timezone.utc)

            sequence = await self.ledger.start(case_id, actor)
            sequence.append(
                RevisionActionType.COMMENT_MODIFIED, "Comment edited", [change], comment_id=comment_id,
            )
            await self._commit(case, sequence, [comment], expected_version=case.version)

        return comment

    async def delete_comment(self, case_id: str, comment_id: str, actor: Actor) -> CaseComment:
        """Soft delete a comment; the revision keeps pointing at it."""
        async with self.locks.hold(case_id):
            case = await self.get_case(case_id)
            comment = await self._case_comment(case_id, comment_id)
            comment.deleted_at = datetime.now(timezone.utc)

            sequence = await self.ledger.start(case_id, actor)
            sequence.append(RevisionActionType.COMMENT_DELETED, "Comment deleted", comment_id=comment_id)
            await self._commit(case, sequence, [comment], expected_version=case.version)

        return comment

    # ------------------------------------------------------------------
    # Attachments
    # ------------------------------------------------------------------

    async def add_attachment(self, case_id: str, request: AttachmentRequest, actor: Actor) -> Case:
        """Link an attachment held by the external file store."""
        async with self.locks.hold(case_id):
            case = await self.get_case(case_id)
            if request.attachment_id in case.attachment_ids:
                return case

            updated = case.model_copy(deep=True)
            updated.attachment_ids.append(request.attachment_id)
            sequence = await self.ledger.start(case_id, actor)
            sequence.append(
                RevisionActionType.ATTACHMENT_ADDED,
                f"Attachment {request.file_name or request.attachment_id} added",
                attachment_id=request.attachment_id,
            )
            return await self._commit(updated, sequence, expected_version=case.version)

    async def remove_attachment(self, case_id: str, attachment_id: str, actor: Actor) -> Case:
        async with self.locks.hold(case_id):
            case = await self.get_case(case_id)
            if attachment_id not in case.attachment_ids:
                raise NotFoundError("Attachment", attachment_id)

            updated = case.model_copy(deep=True)
            updated.attachment_ids.remove(attachment_id)
            sequence = await self.ledger.start(case_id, actor)
            sequence.append(
                RevisionActionType.ATTACHMENT_REMOVED,
                f"Attachment {attachment_id} removed",
                attachment_id=attachment_id,
            )
            return await self._commit(updated, sequence, expected_version=case.version)

    # ------------------------------------------------------------------
    # SLA and history
    # ------------------------------------------------------------------

    async def evaluate_sla(self, case_id: str, actor: Actor, now: Optional[datetime] = None) -> Case:
        """Flag ``sla_breached`` once the deadline passed in a non-terminal state."""
        now = now or datetime.now(timezone.utc)
        async with self.locks.hold(case_id):
            case = await self.get_case(case_id)
            if case.sla_breached or case.sla_deadline is None or now <= case.sla_deadline:
                return case

            workflow = await self.engine.get_workflow(case.workflow_id)
            state = workflow.get_state(case.current_state_id)
            if state is not None and state.is_terminal:
                return case

            updated = case.model_copy(deep=True)
            updated.sla_breached = True
            sequence = await self.ledger.start(case_id, actor)
            sequence.append(
                RevisionActionType.FIELD_CHANGE,
                "SLA deadline passed",
                [FieldChange(field="sla_breached", old_value="False", new_value="True")],
            )
            saved = await self._commit(updated, sequence, expected_version=case.version)

        logger.warning(f"Case {case_id} breached its SLA deadline {case.sla_deadline.isoformat()}")
        return saved

    async def get_history(self, case_id: str) -> List[TransitionHistory]:
        await self.get_case(case_id)
        return await self.repository.list_history(case_id)

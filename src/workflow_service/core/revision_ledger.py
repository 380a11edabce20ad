"""Revision ledger.

Append-only audit log per case. Numbers start at 1 and have no gaps; the next
number is read while the case lock is held and the unique
``(case_id, revision_number)`` constraint turns any remaining race into a
ConflictError at commit time.
"""

from typing import List, Optional

from workflow_service.config import settings
from workflow_service.infrastructure.persistence.case_repository import CaseRepository
from workflow_service.models import (
    Actor,
    FieldChange,
    Revision,
    RevisionActionType,
    RevisionFilter,
    RevisionPage,
)


class RevisionSequence:
    """Builds consecutive revisions for one case within a single commit."""

    def __init__(self, case_id: str, last_number: int, actor: Actor):
        self.case_id = case_id
        self.actor = actor
        self._next = last_number + 1
        self.revisions: List[Revision] = []

    def append(
        self,
        action_type: RevisionActionType,
        description: str,
        changes: Optional[List[FieldChange]] = None,
        **links,
    ) -> Revision:
        """Add a revision; ``links`` sets comment_id, attachment_id or transition_history_id."""
        revision = Revision(
            case_id=self.case_id,
            revision_number=self._next,
            action_type=action_type,
            action_description=description,
            changes=list(changes or []),
            performed_by=self.actor.user_id,
            performed_by_roles=sorted(self.actor.roles),
            **links,
        )
        self._next += 1
        self.revisions.append(revision)
        return revision


class RevisionLedger:
    """Numbers and lists revisions through the case repository."""

    def __init__(self, cases: CaseRepository):
        self.cases = cases

    async def start(self, case_id: str, actor: Actor) -> RevisionSequence:
        """Open a sequence continuing from the case's latest revision number.

        Call with the case lock held.
        """
        last = await self.cases.latest_revision_number(case_id)
        return RevisionSequence(case_id, last, actor)

    async def list_revisions(
        self,
        case_id: str,
        filters: Optional[RevisionFilter] = None,
        page: int = 1,
        limit: Optional[int] = None,
    ) -> RevisionPage:
        page = max(page, 1)
        limit = min(max(limit or settings.default_page_size, 1), settings.max_page_size)
        items, total = await self.cases.list_revisions(
            case_id, filters, limit=limit, offset=(page - 1) * limit
        )
        return RevisionPage(items=items, total=total, page=page, limit=limit)

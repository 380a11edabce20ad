"""Audit models: transition history and the revision ledger."""

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional
from uuid import uuid4

from pydantic import BaseModel, Field


RATING_MIN = 1
RATING_MAX = 5


class Feedback(BaseModel):
    """Satisfaction feedback collected with a transition.

    The rating is range-checked by the executor, not here, so an out-of-range
    rating surfaces as an unmet ``feedback`` requirement.
    """

    rating: int
    comment: Optional[str] = None

    @property
    def has_valid_rating(self) -> bool:
        return RATING_MIN <= self.rating <= RATING_MAX


class TransitionHistory(BaseModel):
    """One executed transition. Append-only."""

    id: str = Field(default_factory=lambda: f"hist_{uuid4().hex[:12]}")
    case_id: str
    transition_id: str
    from_state_id: str
    to_state_id: str
    executed_by: str
    executed_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    comment: Optional[str] = None
    attachment_ids: List[str] = Field(default_factory=list)
    feedback: Optional[Feedback] = None
    action_results: List[Dict[str, Any]] = Field(default_factory=list)


class RevisionActionType(str, Enum):
    """Kind of mutation a revision records."""

    CREATED = "created"
    FIELD_CHANGE = "field_change"
    COMMENT_ADDED = "comment_added"
    COMMENT_MODIFIED = "comment_modified"
    COMMENT_DELETED = "comment_deleted"
    ATTACHMENT_ADDED = "attachment_added"
    ATTACHMENT_REMOVED = "attachment_removed"
    ASSIGNEE_CHANGED = "assignee_changed"
    STATUS_CHANGED = "status_changed"


class FieldChange(BaseModel):
    """Old and new value of a single field."""

    field: str
    old_value: Optional[str] = None
    new_value: Optional[str] = None


class Revision(BaseModel):
    """Immutable audit-log entry for one mutation of a case."""

    id: str = Field(default_factory=lambda: f"rev_{uuid4().hex[:12]}")
    case_id: str
    revision_number: int = Field(ge=1)
    action_type: RevisionActionType
    action_description: str = ""
    changes: List[FieldChange] = Field(default_factory=list)
    performed_by: str
    performed_by_roles: List[str] = Field(default_factory=list)
    comment_id: Optional[str] = None
    attachment_id: Optional[str] = None
    transition_history_id: Optional[str] = None
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

"""API request and response models."""

from datetime import datetime
from typing import List, Optional, Set

from pydantic import BaseModel, Field, field_validator

from .case import Case
from .history import Feedback, RevisionActionType
from .workflow import CASE_RECORD_TYPES, RecordType, WorkflowState, WorkflowTransition


# =============================================================================
# Cases
# =============================================================================

class CaseCreateRequest(BaseModel):
    """Request to create a new case.

    ``workflow_id`` is optional; when absent the matching engine picks one.
    """

    record_type: RecordType = RecordType.INCIDENT
    title: Optional[str] = Field(None, max_length=200)
    description: Optional[str] = Field(default="")
    workflow_id: Optional[str] = None
    classification_id: Optional[str] = None
    location_id: Optional[str] = None
    department_id: Optional[str] = None
    assignee_id: Optional[str] = None
    priority: Optional[int] = Field(default=None, ge=1, le=5)
    source: Optional[str] = None

    @field_validator("record_type")
    @classmethod
    def concrete_record_type(cls, v: RecordType) -> RecordType:
        if v not in CASE_RECORD_TYPES:
            raise ValueError(f"'{v.value}' is a workflow scope, not a case record type")
        return v


class CaseUpdateRequest(BaseModel):
    """Request to update a case. Only provided fields are changed."""

    title: Optional[str] = Field(None, max_length=200)
    description: Optional[str] = None
    classification_id: Optional[str] = None
    location_id: Optional[str] = None
    department_id: Optional[str] = None
    assignee_id: Optional[str] = None
    priority: Optional[int] = Field(default=None, ge=1, le=5)
    source: Optional[str] = None


class AssignRequest(BaseModel):
    """Request to (re)assign a case."""

    assignee_id: Optional[str] = None


class CommentRequest(BaseModel):
    """Request to add or edit a comment."""

    content: str = Field(min_length=1)
    is_internal: bool = False


class AttachmentRequest(BaseModel):
    """Link a file held by the attachment store to a case."""

    attachment_id: str = Field(min_length=1)
    file_name: Optional[str] = None


class CaseListResponse(BaseModel):
    """Response containing a list of cases."""

    cases: List[Case]
    total: int
    page: int
    page_size: int


# =============================================================================
# Transitions
# =============================================================================

class TransitionPayload(BaseModel):
    """Data supplied with a transition to satisfy its requirements."""

    comment: Optional[str] = None
    attachment_ids: List[str] = Field(default_factory=list)
    feedback: Optional[Feedback] = None
    # Assignment overrides, win over the transition's configured assignment
    department_id: Optional[str] = None
    assignee_id: Optional[str] = None


class TransitionRequest(TransitionPayload):
    """Request to execute a transition on a case."""

    transition_id: str


class ConversionRequest(TransitionPayload):
    """Request to convert an incident into a new request case.

    ``transition_id`` is optional; when set, that transition runs on the source
    incident first and the comment/attachments/feedback are its payload.
    """

    transition_id: Optional[str] = None
    classification_id: str
    workflow_id: Optional[str] = None
    title: Optional[str] = Field(None, max_length=200)
    description: Optional[str] = None


# =============================================================================
# Merge
# =============================================================================

class MergeValidationRequest(BaseModel):
    case_ids: List[str]


class MergeRequest(BaseModel):
    """Request to merge duplicates into a master case."""

    case_ids: List[str]
    master_id: str
    comment: Optional[str] = None
    # When set, each duplicate also runs the transition with this code
    transition_code: Optional[str] = None


class BulkUnmergeRequest(BaseModel):
    case_ids: List[str]
    comment: Optional[str] = None


# =============================================================================
# Workflows
# =============================================================================

class WorkflowCreateRequest(BaseModel):
    """Request to create a workflow definition."""

    name: str = Field(min_length=1, max_length=200)
    code: str = Field(min_length=1, max_length=50)
    description: str = ""
    record_type: RecordType = RecordType.INCIDENT
    states: List[WorkflowState] = Field(default_factory=list)
    transitions: List[WorkflowTransition] = Field(default_factory=list)
    classification_ids: Set[str] = Field(default_factory=set)
    location_ids: Set[str] = Field(default_factory=set)
    sources: Set[str] = Field(default_factory=set)
    priority_min: Optional[int] = None
    priority_max: Optional[int] = None
    is_active: bool = True
    is_default: bool = False


class WorkflowUpdateRequest(BaseModel):
    """Request to update a workflow definition. All fields optional."""

    name: Optional[str] = Field(None, min_length=1, max_length=200)
    code: Optional[str] = Field(None, min_length=1, max_length=50)
    description: Optional[str] = None
    record_type: Optional[RecordType] = None
    states: Optional[List[WorkflowState]] = None
    transitions: Optional[List[WorkflowTransition]] = None
    classification_ids: Optional[Set[str]] = None
    location_ids: Optional[Set[str]] = None
    sources: Optional[Set[str]] = None
    priority_min: Optional[int] = None
    priority_max: Optional[int] = None
    is_active: Optional[bool] = None
    is_default: Optional[bool] = None


class MatchCriteria(BaseModel):
    """Case-creation criteria used to select a workflow."""

    record_type: Optional[RecordType] = None
    classification_id: Optional[str] = None
    location_id: Optional[str] = None
    source: Optional[str] = None
    priority: Optional[int] = None


# =============================================================================
# Revisions
# =============================================================================

class RevisionFilter(BaseModel):
    """Filter for revision listing. Date bounds are inclusive."""

    action_type: Optional[RevisionActionType] = None
    performed_by: Optional[str] = None
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None


class HealthResponse(BaseModel):
    """Health check response."""

    status: str
    service: str
    version: str
    database: str
    storage: str

"""Results returned by engine operations."""

from typing import Dict, List, Optional

from pydantic import BaseModel, Field

from .case import Case
from .history import Revision, TransitionHistory
from .workflow import TransitionRequirement, WorkflowTransition


class AvailableTransition(BaseModel):
    """A transition leaving the case's current state, as seen by an actor."""

    transition: WorkflowTransition
    can_execute: bool
    blocking_reasons: List[str] = Field(default_factory=list)
    requirements: List[TransitionRequirement] = Field(default_factory=list)


class TransitionResult(BaseModel):
    """Outcome of a successful transition."""

    case: Case
    history: TransitionHistory
    revision: Revision
    warnings: List[str] = Field(default_factory=list)


class ConversionResult(BaseModel):
    source_case: Case
    new_case: Case
    transition: Optional[TransitionResult] = None
    warnings: List[str] = Field(default_factory=list)


class CanConvertResponse(BaseModel):
    can_convert: bool
    reasons: List[str] = Field(default_factory=list)


class MergeValidation(BaseModel):
    can_merge: bool
    errors: List[str] = Field(default_factory=list)
    master_options: List[Case] = Field(default_factory=list)


class MergeResult(BaseModel):
    master_id: str
    merged: List[Case] = Field(default_factory=list)
    warnings: List[str] = Field(default_factory=list)


class UnmergeFailure(BaseModel):
    case_id: str
    error: str


class UnmergeResult(BaseModel):
    unmerged_count: int = 0
    failures: List[UnmergeFailure] = Field(default_factory=list)


class RevisionPage(BaseModel):
    """One page of a case's revisions, ascending by revision number."""

    items: List[Revision]
    total: int
    page: int
    limit: int


class CaseStats(BaseModel):
    """Case counts for dashboards, over the same filters as case listing."""

    total: int = 0
    sla_breached: int = 0
    by_state: Dict[str, int] = Field(default_factory=dict)
    by_record_type: Dict[str, int] = Field(default_factory=dict)
    by_priority: Dict[int, int] = Field(default_factory=dict)

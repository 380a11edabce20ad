"""Case data models for case-workflow-service.

Incidents, complaints, queries and requests share one aggregate, told apart by
``record_type``.
"""

from datetime import datetime, timezone
from typing import List, Optional
from uuid import uuid4

from pydantic import BaseModel, Field, field_validator

from .workflow import CASE_RECORD_TYPES, RecordType


# Fields a caller may change through a plain update; everything else is owned
# by the engine (state, merge links, versioning).
EDITABLE_CASE_FIELDS = (
    "title",
    "description",
    "classification_id",
    "location_id",
    "department_id",
    "assignee_id",
    "priority",
    "source",
)


class Case(BaseModel):
    """Case aggregate."""

    id: str = Field(default_factory=lambda: f"case_{uuid4().hex[:12]}")
    record_type: RecordType = RecordType.INCIDENT
    title: str = Field(default="", max_length=200)
    description: str = Field(default="")

    workflow_id: str
    current_state_id: str

    classification_id: Optional[str] = None
    location_id: Optional[str] = None
    department_id: Optional[str] = None
    assignee_id: Optional[str] = None
    reporter_id: Optional[str] = None
    priority: Optional[int] = Field(default=None, ge=1, le=5)
    source: Optional[str] = None

    sla_breached: bool = False
    sla_deadline: Optional[datetime] = None

    master_incident_id: Optional[str] = None
    source_incident_id: Optional[str] = None

    attachment_ids: List[str] = Field(default_factory=list)

    version: int = 1
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    updated_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    resolved_at: Optional[datetime] = None
    closed_at: Optional[datetime] = None

    @field_validator("record_type")
    @classmethod
    def concrete_record_type(cls, v: RecordType) -> RecordType:
        if v not in CASE_RECORD_TYPES:
            raise ValueError(f"'{v.value}' is a workflow scope, not a case record type")
        return v

    @property
    def is_merged(self) -> bool:
        return self.master_incident_id is not None

    class Config:
        from_attributes = True


class CaseComment(BaseModel):
    """Comment left on a case."""

    id: str = Field(default_factory=lambda: f"cmt_{uuid4().hex[:12]}")
    case_id: str
    author_id: str
    content: str = Field(min_length=1)
    is_internal: bool = False
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    updated_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    deleted_at: Optional[datetime] = None

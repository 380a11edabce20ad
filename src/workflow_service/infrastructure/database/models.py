"""SQLAlchemy database models."""

from datetime import datetime, timezone

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    DateTime,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import declarative_base

Base = declarative_base()


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class WorkflowDB(Base):
    """SQLAlchemy model for workflows table.

    States and transitions are owned by the workflow and stored embedded as
    JSON; they are always read and written together with the definition.
    """

    __tablename__ = "workflows"

    id = Column(String(50), primary_key=True, index=True)
    name = Column(String(200), nullable=False)
    code = Column(String(50), nullable=False, index=True)
    description = Column(Text, nullable=False, default="")
    record_type = Column(String(20), nullable=False, index=True)

    states = Column(JSON, nullable=False, default=list)
    transitions = Column(JSON, nullable=False, default=list)

    classification_ids = Column(JSON, nullable=False, default=list)
    location_ids = Column(JSON, nullable=False, default=list)
    sources = Column(JSON, nullable=False, default=list)
    priority_min = Column(Integer, nullable=True)
    priority_max = Column(Integer, nullable=True)

    is_active = Column(Boolean, nullable=False, default=True)
    is_default = Column(Boolean, nullable=False, default=False)
    version = Column(Integer, nullable=False, default=1)

    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)
    deleted_at = Column(DateTime(timezone=True), nullable=True)


class CaseDB(Base):
    """SQLAlchemy model for cases table."""

    __tablename__ = "cases"

    id = Column(String(50), primary_key=True, index=True)
    record_type = Column(String(20), nullable=False, index=True)
    title = Column(String(200), nullable=False, default="")
    description = Column(Text, nullable=False, default="")

    workflow_id = Column(String(50), ForeignKey("workflows.id"), nullable=False, index=True)
    current_state_id = Column(String(50), nullable=False, index=True)

    classification_id = Column(String(100), nullable=True)
    location_id = Column(String(100), nullable=True)
    department_id = Column(String(100), nullable=True)
    assignee_id = Column(String(100), nullable=True, index=True)
    reporter_id = Column(String(100), nullable=True)
    priority = Column(Integer, nullable=True)
    source = Column(String(50), nullable=True)

    sla_breached = Column(Boolean, nullable=False, default=False)
    sla_deadline = Column(DateTime(timezone=True), nullable=True)

    master_incident_id = Column(String(50), nullable=True, index=True)
    source_incident_id = Column(String(50), nullable=True, index=True)

    attachment_ids = Column(JSON, nullable=False, default=list)

    # Optimistic concurrency counter, compared-and-swapped on every write
    version = Column(Integer, nullable=False, default=1)

    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow, index=True)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)
    resolved_at = Column(DateTime(timezone=True), nullable=True)
    closed_at = Column(DateTime(timezone=True), nullable=True)


class TransitionHistoryDB(Base):
    """SQLAlchemy model for transition_history table. Append-only."""

    __tablename__ = "transition_history"

    id = Column(String(50), primary_key=True)
    case_id = Column(String(50), ForeignKey("cases.id"), nullable=False, index=True)
    transition_id = Column(String(50), nullable=False)
    from_state_id = Column(String(50), nullable=False)
    to_state_id = Column(String(50), nullable=False)
    executed_by = Column(String(100), nullable=False)
    executed_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)
    comment = Column(Text, nullable=True)
    attachment_ids = Column(JSON, nullable=False, default=list)
    feedback = Column(JSON, nullable=True)
    action_results = Column(JSON, nullable=False, default=list)


class RevisionDB(Base):
    """SQLAlchemy model for case_revisions table. Append-only."""

    __tablename__ = "case_revisions"
    __table_args__ = (
        UniqueConstraint("case_id", "revision_number", name="uq_case_revision_number"),
    )

    id = Column(String(50), primary_key=True)
    case_id = Column(String(50), ForeignKey("cases.id"), nullable=False, index=True)
    revision_number = Column(Integer, nullable=False)
    action_type = Column(String(30), nullable=False, index=True)
    action_description = Column(Text, nullable=False, default="")
    changes = Column(JSON, nullable=False, default=list)
    performed_by = Column(String(100), nullable=False, index=True)
    performed_by_roles = Column(JSON, nullable=False, default=list)
    comment_id = Column(String(50), nullable=True)
    attachment_id = Column(String(100), nullable=True)
    transition_history_id = Column(String(50), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow, index=True)


class CommentDB(Base):
    """SQLAlchemy model for case_comments table."""

    __tablename__ = "case_comments"

    id = Column(String(50), primary_key=True)
    case_id = Column(String(50), ForeignKey("cases.id"), nullable=False, index=True)
    author_id = Column(String(100), nullable=False)
    content = Column(Text, nullable=False)
    is_internal = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)
    deleted_at = Column(DateTime(timezone=True), nullable=True)

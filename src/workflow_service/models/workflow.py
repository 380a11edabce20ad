"""Workflow definition models.

A workflow is a directed graph of states and transitions plus the criteria used
to pick it for a new case. Definitions are plain data; structural checks live in
``workflow_service.core.validation``.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional, Set
from uuid import uuid4

from pydantic import BaseModel, Field, field_validator


class StateType(str, Enum):
    """Position of a state in the lifecycle."""

    INITIAL = "initial"
    INTERMEDIATE = "intermediate"
    TERMINAL = "terminal"


class RecordType(str, Enum):
    """Record types a workflow can apply to.

    ``BOTH`` covers incidents and requests, ``ALL`` covers every record type.
    """

    INCIDENT = "incident"
    COMPLAINT = "complaint"
    QUERY = "query"
    REQUEST = "request"
    BOTH = "both"
    ALL = "all"


CASE_RECORD_TYPES = (
    RecordType.INCIDENT,
    RecordType.COMPLAINT,
    RecordType.QUERY,
    RecordType.REQUEST,
)


class RequirementKind(str, Enum):
    """Built-in requirement kinds.

    ``TransitionRequirement.requirement_type`` is a plain string so new kinds can
    be registered without touching this enum.
    """

    COMMENT = "comment"
    ATTACHMENT = "attachment"
    FEEDBACK = "feedback"
    FIELD_VALUE = "field_value"


class ActionKind(str, Enum):
    """Built-in transition action kinds."""

    EMAIL = "email"
    FIELD_UPDATE = "field_update"
    WEBHOOK = "webhook"
    NOTIFICATION = "notification"


class WorkflowState(BaseModel):
    """A single state of a workflow."""

    id: str = Field(default_factory=lambda: f"state_{uuid4().hex[:12]}")
    name: str = Field(min_length=1, max_length=100)
    code: str = Field(default="")
    description: str = Field(default="")
    color: str = Field(default="#6b7280")
    state_type: StateType = Field(default=StateType.INTERMEDIATE)
    sort_order: int = 0
    sla_hours: Optional[int] = Field(default=None, ge=0)
    is_active: bool = True

    @field_validator("state_type", mode="before")
    @classmethod
    def normalize_state_type(cls, v):
        # Older definitions call intermediate states "normal"
        if v == "normal":
            return StateType.INTERMEDIATE
        return v

    @property
    def is_initial(self) -> bool:
        return self.state_type == StateType.INITIAL

    @property
    def is_terminal(self) -> bool:
        return self.state_type == StateType.TERMINAL


class TransitionRequirement(BaseModel):
    """Precondition gating a transition."""

    requirement_type: str
    is_mandatory: bool = True
    field_name: Optional[str] = None
    field_value: Optional[str] = None
    error_message: Optional[str] = None


class TransitionAction(BaseModel):
    """Side effect applied when a transition executes."""

    action_type: str
    name: str = ""
    description: str = ""
    config: Dict[str, Any] = Field(default_factory=dict)
    execution_order: int = 0
    is_active: bool = True


class WorkflowTransition(BaseModel):
    """Directed edge between two states of the same workflow."""

    id: str = Field(default_factory=lambda: f"tr_{uuid4().hex[:12]}")
    name: str = Field(min_length=1, max_length=100)
    code: str = Field(min_length=1, max_length=50)
    description: str = ""
    from_state_id: str
    to_state_id: str
    allowed_role_ids: Set[str] = Field(default_factory=set)
    requirements: List[TransitionRequirement] = Field(default_factory=list)
    actions: List[TransitionAction] = Field(default_factory=list)
    assign_department_id: Optional[str] = None
    assign_user_id: Optional[str] = None
    is_active: bool = True
    sort_order: int = 0

    @property
    def is_self_loop(self) -> bool:
        return self.from_state_id == self.to_state_id

    def ordered_actions(self) -> List[TransitionAction]:
        """Active actions in execution order (stable for equal orders)."""
        return sorted(
            (a for a in self.actions if a.is_active),
            key=lambda a: a.execution_order,
        )


class WorkflowDefinition(BaseModel):
    """Aggregate of states, transitions and applicability criteria."""

    id: str = Field(default_factory=lambda: f"wf_{uuid4().hex[:12]}")
    name: str = Field(min_length=1, max_length=200)
    code: str = Field(min_length=1, max_length=50)
    description: str = ""
    record_type: RecordType = RecordType.INCIDENT

    states: List[WorkflowState] = Field(default_factory=list)
    transitions: List[WorkflowTransition] = Field(default_factory=list)

    # Matching criteria
    classification_ids: Set[str] = Field(default_factory=set)
    location_ids: Set[str] = Field(default_factory=set)
    sources: Set[str] = Field(default_factory=set)
    priority_min: Optional[int] = None
    priority_max: Optional[int] = None

    is_active: bool = True
    is_default: bool = False
    version: int = 1

    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    updated_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    deleted_at: Optional[datetime] = None

    @property
    def is_deleted(self) -> bool:
        return self.deleted_at is not None

    def initial_state(self) -> Optional[WorkflowState]:
        for state in self.states:
            if state.is_initial:
                return state
        return None

    def get_state(self, state_id: str) -> Optional[WorkflowState]:
        for state in self.states:
            if state.id == state_id:
                return state
        return None

    def get_transition(self, transition_id: str) -> Optional[WorkflowTransition]:
        for transition in self.transitions:
            if transition.id == transition_id:
                return transition
        return None

    def transitions_from(self, state_id: str) -> List[WorkflowTransition]:
        """Active transitions leaving ``state_id``, in definition order."""
        return [
            t for t in self.transitions
            if t.from_state_id == state_id and t.is_active
        ]

    def supports_record_type(self, record_type: RecordType) -> bool:
        """Whether cases of ``record_type`` may be bound to this workflow."""
        if self.record_type == RecordType.ALL:
            return True
        if self.record_type == RecordType.BOTH:
            return record_type in (RecordType.INCIDENT, RecordType.REQUEST)
        return self.record_type == record_type

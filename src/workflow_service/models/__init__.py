"""Models package."""

from .actor import Actor
from .case import EDITABLE_CASE_FIELDS, Case, CaseComment
from .history import (
    RATING_MAX,
    RATING_MIN,
    Feedback,
    FieldChange,
    Revision,
    RevisionActionType,
    TransitionHistory,
)
from .requests import (
    AssignRequest,
    AttachmentRequest,
    BulkUnmergeRequest,
    CaseCreateRequest,
    CaseListResponse,
    CaseUpdateRequest,
    CommentRequest,
    ConversionRequest,
    HealthResponse,
    MatchCriteria,
    MergeRequest,
    MergeValidationRequest,
    RevisionFilter,
    TransitionPayload,
    TransitionRequest,
    WorkflowCreateRequest,
    WorkflowUpdateRequest,
)
from .results import (
    AvailableTransition,
    CanConvertResponse,
    CaseStats,
    ConversionResult,
    MergeResult,
    MergeValidation,
    RevisionPage,
    TransitionResult,
    UnmergeFailure,
    UnmergeResult,
)
from .workflow import (
    CASE_RECORD_TYPES,
    ActionKind,
    RecordType,
    RequirementKind,
    StateType,
    TransitionAction,
    TransitionRequirement,
    WorkflowDefinition,
    WorkflowState,
    WorkflowTransition,
)

__all__ = [
    "Actor",
    "ActionKind",
    "AssignRequest",
    "AttachmentRequest",
    "AvailableTransition",
    "BulkUnmergeRequest",
    "CASE_RECORD_TYPES",
    "CanConvertResponse",
    "Case",
    "CaseComment",
    "CaseCreateRequest",
    "CaseListResponse",
    "CaseStats",
    "CaseUpdateRequest",
    "CommentRequest",
    "ConversionRequest",
    "ConversionResult",
    "EDITABLE_CASE_FIELDS",
    "RATING_MAX",
    "RATING_MIN",
    "Feedback",
    "FieldChange",
    "HealthResponse",
    "MatchCriteria",
    "MergeRequest",
    "MergeResult",
    "MergeValidation",
    "MergeValidationRequest",
    "RecordType",
    "RequirementKind",
    "Revision",
    "RevisionActionType",
    "RevisionFilter",
    "RevisionPage",
    "StateType",
    "TransitionAction",
    "TransitionHistory",
    "TransitionPayload",
    "TransitionRequest",
    "TransitionRequirement",
    "TransitionResult",
    "UnmergeFailure",
    "UnmergeResult",
    "WorkflowCreateRequest",
    "WorkflowDefinition",
    "WorkflowState",
    "WorkflowTransition",
    "WorkflowUpdateRequest",
]

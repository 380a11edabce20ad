"""Engine error taxonomy.

Every error carries a stable ``code`` and the HTTP status the API layer maps it
to. Structural and validation errors are raised to the caller verbatim.
"""

from typing import Any, Dict, List, Optional


class WorkflowEngineError(Exception):
    """Base class for errors raised by the workflow engine."""

    code = "engine_error"
    status_code = 400

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def to_dict(self) -> Dict[str, Any]:
        return {"error": self.code, "detail": self.message}


class InvalidWorkflowError(WorkflowEngineError):
    """Structural problem in a workflow definition."""

    code = "invalid_workflow"
    status_code = 422

    def __init__(self, errors: List[str]):
        super().__init__("Invalid workflow: " + "; ".join(errors))
        self.errors = list(errors)

    def to_dict(self) -> Dict[str, Any]:
        return {**super().to_dict(), "errors": self.errors}


class NotFoundError(WorkflowEngineError):
    """Unknown case, workflow, comment or state id."""

    code = "not_found"
    status_code = 404

    def __init__(self, kind: str, identifier: str):
        super().__init__(f"{kind} {identifier} not found")
        self.kind = kind
        self.identifier = identifier


class TransitionNotFoundError(WorkflowEngineError):
    """No such transition leaves the case's current state."""

    code = "transition_not_found"
    status_code = 404

    def __init__(self, transition_id: str, case_id: str, current_state_id: str):
        super().__init__(
            f"Transition {transition_id} is not available from state "
            f"{current_state_id} of case {case_id}"
        )
        self.transition_id = transition_id
        self.case_id = case_id
        self.current_state_id = current_state_id


class ForbiddenError(WorkflowEngineError):
    """Actor lacks every role the transition allows."""

    code = "forbidden"
    status_code = 403

    def __init__(self, user_id: str, transition_code: str, reason: Optional[str] = None):
        msg = f"User {user_id} may not execute transition '{transition_code}'"
        if reason:
            msg += f": {reason}"
        super().__init__(msg)
        self.user_id = user_id
        self.transition_code = transition_code


class RequirementNotMetError(WorkflowEngineError):
    """One or more mandatory requirements are unsatisfied.

    ``kinds`` lists every unmet requirement type so the caller can prompt for
    all of them at once; ``messages`` holds the matching human-readable text.
    """

    code = "requirement_not_met"
    status_code = 422

    def __init__(self, kinds: List[str], messages: Optional[List[str]] = None):
        self.kinds = list(kinds)
        self.messages = list(messages) if messages else [
            f"{kind} is required" for kind in self.kinds
        ]
        super().__init__("Unmet requirements: " + ", ".join(self.kinds))

    def to_dict(self) -> Dict[str, Any]:
        return {**super().to_dict(), "requirements": self.kinds, "messages": self.messages}


class InvalidRecordTypeError(WorkflowEngineError):
    """Record type does not fit the requested operation."""

    code = "invalid_record_type"
    status_code = 422


class ConflictError(WorkflowEngineError):
    """A concurrent mutation of the same case won the race."""

    code = "conflict"
    status_code = 409

    def __init__(self, case_id: str, expected_version: Optional[int] = None):
        msg = f"Case {case_id} was modified concurrently"
        if expected_version is not None:
            msg += f" (expected version {expected_version})"
        super().__init__(msg)
        self.case_id = case_id
        self.expected_version = expected_version


class InvalidMergeError(WorkflowEngineError):
    """Merge request failed validation."""

    code = "invalid_merge"
    status_code = 422

    def __init__(self, errors: List[str]):
        super().__init__("Cannot merge: " + "; ".join(errors))
        self.errors = list(errors)

    def to_dict(self) -> Dict[str, Any]:
        return {**super().to_dict(), "errors": self.errors}


class CaseReferencedError(WorkflowEngineError):
    """Hard delete refused because other records point at the case."""

    code = "case_referenced"
    status_code = 409

"""Requirement checkers for transition gating.

Each requirement kind has one checker object. The executor only asks the
registry which mandatory requirements are unmet; adding a kind means
registering a checker, not editing the executor.
"""

from abc import ABC, abstractmethod
from typing import Dict, Iterable, List, Optional, Tuple

from workflow_service.models import Case, RequirementKind, TransitionPayload, TransitionRequirement


class RequirementChecker(ABC):
    """Decides whether one requirement is satisfied by a payload."""

    default_message = "requirement is not satisfied"

    @abstractmethod
    def is_satisfied(
        self,
        requirement: TransitionRequirement,
        payload: TransitionPayload,
        case: Case,
    ) -> bool:
        """Return True when the payload (and case) satisfy the requirement."""

    def message(self, requirement: TransitionRequirement) -> str:
        return requirement.error_message or self.default_message


class CommentChecker(RequirementChecker):
    default_message = "A comment is required"

    def is_satisfied(self, requirement, payload, case) -> bool:
        return bool(payload.comment and payload.comment.strip())


class AttachmentChecker(RequirementChecker):
    default_message = "At least one attachment is required"

    def is_satisfied(self, requirement, payload, case) -> bool:
        return any(a for a in payload.attachment_ids)


class FeedbackChecker(RequirementChecker):
    default_message = "A feedback rating between 1 and 5 is required"

    def is_satisfied(self, requirement, payload, case) -> bool:
        return payload.feedback is not None and payload.feedback.has_valid_rating


class FieldValueChecker(RequirementChecker):
    """Case field must hold a value (or a specific value when configured)."""

    default_message = "A case field must be set before this transition"

    def is_satisfied(self, requirement, payload, case) -> bool:
        if not requirement.field_name:
            return False
        current = getattr(case, requirement.field_name, None)
        if requirement.field_value is None:
            return current not in (None, "", [])
        return current is not None and str(current) == requirement.field_value

    def message(self, requirement: TransitionRequirement) -> str:
        if requirement.error_message:
            return requirement.error_message
        if requirement.field_value is None:
            return f"Field '{requirement.field_name}' must be set"
        return f"Field '{requirement.field_name}' must equal '{requirement.field_value}'"


class RequirementRegistry:
    """Maps requirement kinds to checkers."""

    def __init__(self, checkers: Optional[Dict[str, RequirementChecker]] = None):
        self._checkers: Dict[str, RequirementChecker] = dict(checkers or {})

    def register(self, kind: str, checker: RequirementChecker) -> None:
        self._checkers[kind] = checker

    def is_known(self, kind: str) -> bool:
        return kind in self._checkers

    @property
    def kinds(self) -> List[str]:
        return sorted(self._checkers)

    def unmet(
        self,
        requirements: Iterable[TransitionRequirement],
        payload: TransitionPayload,
        case: Case,
    ) -> List[Tuple[TransitionRequirement, str]]:
        """Every unmet mandatory requirement with its message.

        Unregistered kinds can never be satisfied.
        """
        failures = []
        for requirement in requirements:
            if not requirement.is_mandatory:
                continue
            checker = self._checkers.get(requirement.requirement_type)
            if checker is None:
                failures.append((
                    requirement,
                    requirement.error_message
                    or f"Unsupported requirement '{requirement.requirement_type}'",
                ))
            elif not checker.is_satisfied(requirement, payload, case):
                failures.append((requirement, checker.message(requirement)))
        return failures


def build_default_registry() -> RequirementRegistry:
    return RequirementRegistry({
        RequirementKind.COMMENT.value: CommentChecker(),
        RequirementKind.ATTACHMENT.value: AttachmentChecker(),
        RequirementKind.FEEDBACK.value: FeedbackChecker(),
        RequirementKind.FIELD_VALUE.value: FieldValueChecker(),
    })


default_requirements = build_default_registry()

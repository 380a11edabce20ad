"""Merge coordinator.

Links duplicate cases to a master without deleting them. ``merge`` is
all-or-nothing: every duplicate is validated and planned under its lock before
a single commit writes them all. ``bulk_unmerge`` is the one batch operation
that collects per-case failures instead of aborting.
"""

import logging
from typing import Dict, List, Optional, Tuple

from workflow_service.infrastructure.persistence.case_repository import (
    CaseFilter,
    CaseMutation,
    CaseRepository,
    RepositoryException,
)
from workflow_service.infrastructure.persistence.workflow_repository import WorkflowRepository
from workflow_service.models import (
    Actor,
    Case,
    FieldChange,
    MergeResult,
    MergeValidation,
    RevisionActionType,
    TransitionPayload,
    UnmergeFailure,
    UnmergeResult,
    WorkflowDefinition,
)

from .errors import InvalidMergeError, NotFoundError, TransitionNotFoundError, WorkflowEngineError
from .locks import CaseLockRegistry
from .revision_ledger import RevisionLedger
from .transition_executor import TransitionExecutor, TransitionPlan

logger = logging.getLogger(__name__)


class MergeCoordinator:
    """Validates, merges and unmerges duplicate cases."""

    def __init__(
        self,
        cases: CaseRepository,
        workflows: WorkflowRepository,
        locks: CaseLockRegistry,
        ledger: RevisionLedger,
        executor: TransitionExecutor,
    ):
        self.cases = cases
        self.workflows = workflows
        self.locks = locks
        self.ledger = ledger
        self.executor = executor

    async def _is_master(self, case_id: str) -> bool:
        _, total = await self.cases.list(CaseFilter(master_incident_id=case_id), limit=1)
        return total > 0

    async def _inspect(self, case_ids: List[str]) -> Tuple[List[str], List[Case], List[str]]:
        """Return (errors, found cases, ids of cases that are already masters)."""
        errors: List[str] = []
        distinct = list(dict.fromkeys(case_ids))
        if len(distinct) < 2:
            errors.append("At least two distinct cases are required to merge")

        found = await self.cases.get_many(distinct)
        found_ids = {c.id for c in found}
        missing = [case_id for case_id in distinct if case_id not in found_ids]
        if missing:
            errors.append("Cases not found: " + ", ".join(missing))

        record_types = sorted({c.record_type.value for c in found})
        if len(record_types) > 1:
            errors.append("Cases have different record types: " + ", ".join(record_types))

        already_merged = [c.id for c in found if c.is_merged]
        if already_merged:
            errors.append("Cases already merged into another case: " + ", ".join(already_merged))

        masters = [c.id for c in found if await self._is_master(c.id)]
        if len(masters) > 1:
            errors.append("More than one case is already a master: " + ", ".join(masters))

        return errors, found, masters

    async def validate_merge(self, case_ids: List[str]) -> MergeValidation:
        errors, found, _ = await self._inspect(case_ids)
        return MergeValidation(can_merge=not errors, errors=errors, master_options=found)

    async def merge(
        self,
        case_ids: List[str],
        master_id: str,
        actor: Actor,
        comment: Optional[str] = None,
        transition_code: Optional[str] = None,
    ) -> Tuple[MergeResult, List[TransitionPlan]]:
        """Merge every case into ``master_id``.

        Returns the result and the transition plans whose external actions
        still have to be dispatched.

        Raises:
            InvalidMergeError: If validation fails
            TransitionNotFoundError, ForbiddenError, RequirementNotMetError: If
                ``transition_code`` cannot run on one of the duplicates
        """
        distinct = list(dict.fromkeys(case_ids))
        if master_id not in distinct:
            raise InvalidMergeError([f"Master case {master_id} must be one of the merged cases"])

        async with self.locks.hold_many(distinct):
            errors, found, masters = await self._inspect(distinct)
            if len(masters) == 1 and masters[0] != master_id:
                errors.append(f"Case {masters[0]} is already a master and must stay the master")
            if errors:
                raise InvalidMergeError(errors)

            workflows: Dict[str, WorkflowDefinition] = {}
            mutations: List[CaseMutation] = []
            plans: List[TransitionPlan] = []
            for case in found:
                if case.id == master_id:
                    continue

                updated = case.model_copy(deep=True)
                updated.master_incident_id = master_id
                link = FieldChange(field="master_incident_id", old_value=None, new_value=master_id)
                description = f"Merged into {master_id}" + (f": {comment}" if comment else "")
                sequence = await self.ledger.start(case.id, actor)

                if transition_code:
                    workflow = workflows.get(case.workflow_id)
                    if workflow is None:
                        workflow = await self.workflows.get(case.workflow_id)
                        if workflow is None:
                            raise NotFoundError("Workflow", case.workflow_id)
                        workflows[case.workflow_id] = workflow
                    transition = next(
                        (t for t in workflow.transitions_from(case.current_state_id)
                         if t.code == transition_code),
                        None,
                    )
                    if transition is None:
                        raise TransitionNotFoundError(transition_code, case.id, case.current_state_id)
                    plan = self.executor.plan(
                        workflow, updated, transition.id, TransitionPayload(comment=comment),
                        actor, sequence, extra_changes=[link], description=description,
                    )
                    plans.append(plan)
                    mutations.append(plan.mutation())
                else:
                    sequence.append(RevisionActionType.STATUS_CHANGED, description, [link])
                    mutations.append(CaseMutation(
                        case=updated,
                        expected_version=case.version,
                        revisions=sequence.revisions,
                    ))

            merged = await self.cases.commit(mutations)

        logger.info(f"Merged {len(merged)} case(s) into {master_id} by {actor.user_id}")
        warnings = [w for plan in plans for w in plan.warnings]
        return MergeResult(master_id=master_id, merged=merged, warnings=warnings), plans

    async def bulk_unmerge(
        self,
        case_ids: List[str],
        actor: Actor,
        comment: Optional[str] = None,
    ) -> UnmergeResult:
        result = UnmergeResult()
        for case_id in dict.fromkeys(case_ids):
            try:
                await self._unmerge_one(case_id, actor, comment)
                result.unmerged_count += 1
            except (WorkflowEngineError, RepositoryException) as e:
                logger.warning(f"Unmerge of case {case_id} failed: {e}")
                result.failures.append(UnmergeFailure(case_id=case_id, error=str(e)))
        return result

    async def _unmerge_one(self, case_id: str, actor: Actor, comment: Optional[str]) -> Case:
        async with self.locks.hold(case_id):
            case = await self.cases.get(case_id)
            if case is None:
                raise NotFoundError("Case", case_id)
            if not case.is_merged:
                raise InvalidMergeError([f"Case {case_id} is not merged"])

            master_id = case.master_incident_id
            updated = case.model_copy(deep=True)
            updated.master_incident_id = None
            sequence = await self.ledger.start(case_id, actor)
            sequence.append(
                RevisionActionType.STATUS_CHANGED,
                f"Unmerged from {master_id}" + (f": {comment}" if comment else ""),
                [FieldChange(field="master_incident_id", old_value=master_id, new_value=None)],
            )
            [saved] = await self.cases.commit([CaseMutation(
                case=updated,
                expected_version=case.version,
                revisions=sequence.revisions,
            )])

        logger.info(f"Case {case_id} unmerged from {master_id} by {actor.user_id}")
        return saved

"""Workflow engine facade.

Single entry point for the operations callers use: matching, available
transitions, transition execution, conversion, merge and the revision ledger.
Each mutating call takes the per-case lock, plans, commits through the case
repository and only then dispatches external actions.
"""

import logging
from typing import Iterable, List, Optional

from workflow_service.infrastructure.persistence.case_repository import CaseRepository
from workflow_service.infrastructure.persistence.workflow_repository import WorkflowRepository
from workflow_service.models import (
    Actor,
    AvailableTransition,
    CanConvertResponse,
    Case,
    ConversionRequest,
    ConversionResult,
    MatchCriteria,
    MergeResult,
    MergeValidation,
    RevisionFilter,
    RevisionPage,
    TransitionPayload,
    TransitionResult,
    UnmergeResult,
    WorkflowDefinition,
)

from .actions import ActionContext, ActionError, ActionRunner
from .conversion import CaseConverter
from .errors import ConflictError, NotFoundError
from .locks import CaseLockRegistry
from .matching import compatible_candidates, match
from .merge import MergeCoordinator
from .requirements import RequirementRegistry
from .revision_ledger import RevisionLedger
from .transition_executor import TransitionExecutor, TransitionPlan

logger = logging.getLogger(__name__)


class WorkflowEngine:
    """Business logic for workflow-driven case state changes."""

    def __init__(
        self,
        workflows: WorkflowRepository,
        cases: CaseRepository,
        locks: Optional[CaseLockRegistry] = None,
        requirements: Optional[RequirementRegistry] = None,
        runner: Optional[ActionRunner] = None,
    ):
        """Initialize the engine.

        Args:
            workflows: Workflow definition repository
            cases: Case repository (cases, history, revisions)
            locks: Process-wide lock registry; share one instance across engines
            requirements: Requirement checker registry
            runner: Dispatcher for external transition actions
        """
        self.workflows = workflows
        self.cases = cases
        self.locks = locks if locks is not None else CaseLockRegistry()
        self.runner = runner
        self.ledger = RevisionLedger(cases)
        self.executor = TransitionExecutor(requirements, runner)
        self.merger = MergeCoordinator(cases, workflows, self.locks, self.ledger, self.executor)
        self.converter = CaseConverter(cases, workflows, self.locks, self.ledger, self.executor)

    # ------------------------------------------------------------------
    # Loading
    # ------------------------------------------------------------------

    async def get_case(self, case_id: str) -> Case:
        case = await self.cases.get(case_id)
        if case is None:
            raise NotFoundError("Case", case_id)
        return case

    async def get_workflow(self, workflow_id: str) -> WorkflowDefinition:
        workflow = await self.workflows.get(workflow_id)
        if workflow is None:
            raise NotFoundError("Workflow", workflow_id)
        return workflow

    # ------------------------------------------------------------------
    # Matching
    # ------------------------------------------------------------------

    async def match_workflow(self, criteria: MatchCriteria) -> Optional[WorkflowDefinition]:
        """Best-fit workflow for the criteria, or None. Never raises for no match."""
        snapshot = await self.workflows.list()
        candidates = compatible_candidates(snapshot, criteria.record_type)
        return match(candidates, criteria)

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    async def available_transitions(self, case_id: str, actor: Actor) -> List[AvailableTransition]:
        case = await self.get_case(case_id)
        workflow = await self.get_workflow(case.workflow_id)
        return self.executor.available_transitions(workflow, case, actor)

    async def execute_transition(
        self,
        case_id: str,
        transition_id: str,
        payload: TransitionPayload,
        actor: Actor,
    ) -> TransitionResult:
        """Execute a transition on a case.

        Raises:
            NotFoundError: Unknown case or workflow
            TransitionNotFoundError: Transition does not leave the current state
            ForbiddenError: Actor lacks every allowed role
            RequirementNotMetError: Mandatory requirements unmet (all listed)
            ConflictError: A concurrent writer changed the case
        """
        async with self.locks.hold(case_id):
            case = await self.get_case(case_id)
            workflow = await self.get_workflow(case.workflow_id)
            sequence = await self.ledger.start(case_id, actor)
            plan = self.executor.plan(workflow, case, transition_id, payload, actor, sequence)
            [saved] = await self._commit(plan)

        logger.info(
            f"Case {case_id} moved {plan.history.from_state_id} -> {plan.history.to_state_id} "
            f"via {plan.transition.code} by {actor.user_id}"
        )
        warnings = plan.warnings + self.dispatch_actions([plan], actor)
        return TransitionResult(
            case=saved, history=plan.history, revision=plan.revision, warnings=warnings,
        )

    async def _commit(self, plan: TransitionPlan) -> List[Case]:
        try:
            return await self.cases.commit([plan.mutation()])
        except ConflictError:
            logger.warning(f"Concurrent modification of case {plan.case.id}; transition discarded")
            raise

    def dispatch_actions(self, plans: Iterable[TransitionPlan], actor: Actor) -> List[str]:
        """Hand committed external actions to the runner; failures become warnings."""
        warnings: List[str] = []
        if self.runner is None:
            return warnings
        for plan in plans:
            context = ActionContext(plan.case, plan.transition, plan.history, actor)
            for action in plan.external_actions:
                try:
                    self.runner.dispatch(action, context)
                except ActionError as e:
                    logger.warning(f"Action dispatch failed for case {plan.case.id}: {e}")
                    warnings.append(str(e))
        return warnings

    # ------------------------------------------------------------------
    # Conversion
    # ------------------------------------------------------------------

    async def convert(
        self,
        case_id: str,
        request: ConversionRequest,
        actor: Actor,
    ) -> ConversionResult:
        result, plan = await self.converter.convert(case_id, request, actor)
        if plan is not None:
            result.warnings.extend(self.dispatch_actions([plan], actor))
        return result

    async def can_convert(self, case_id: str) -> CanConvertResponse:
        return await self.converter.can_convert(case_id)

    # ------------------------------------------------------------------
    # Merge
    # ------------------------------------------------------------------

    async def validate_merge(self, case_ids: List[str]) -> MergeValidation:
        return await self.merger.validate_merge(case_ids)

    async def merge(
        self,
        case_ids: List[str],
        master_id: str,
        actor: Actor,
        comment: Optional[str] = None,
        transition_code: Optional[str] = None,
    ) -> MergeResult:
        result, plans = await self.merger.merge(case_ids, master_id, actor, comment, transition_code)
        result.warnings.extend(self.dispatch_actions(plans, actor))
        return result

    async def bulk_unmerge(
        self,
        case_ids: List[str],
        actor: Actor,
        comment: Optional[str] = None,
    ) -> UnmergeResult:
        return await self.merger.bulk_unmerge(case_ids, actor, comment)

    # ------------------------------------------------------------------
    # Revisions
    # ------------------------------------------------------------------

    async def list_revisions(
        self,
        case_id: str,
        filters: Optional[RevisionFilter] = None,
        page: int = 1,
        limit: Optional[int] = None,
    ) -> RevisionPage:
        await self.get_case(case_id)
        return await self.ledger.list_revisions(case_id, filters, page, limit)

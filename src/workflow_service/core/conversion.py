"""Incident to request conversion.

The optional source transition and the new request case are committed in one
``commit()`` call: when the transition is rejected nothing is created, and a
storage failure leaves neither half behind.
"""

import logging
from datetime import datetime, timezone
from typing import List, Optional, Tuple

from workflow_service.infrastructure.persistence.case_repository import (
    CaseMutation,
    CaseRepository,
)
from workflow_service.infrastructure.persistence.workflow_repository import WorkflowRepository
from workflow_service.models import (
    Actor,
    CanConvertResponse,
    Case,
    ConversionRequest,
    ConversionResult,
    FieldChange,
    MatchCriteria,
    RecordType,
    RevisionActionType,
    TransitionResult,
    WorkflowDefinition,
)

from .errors import InvalidRecordTypeError, InvalidWorkflowError, NotFoundError
from .locks import CaseLockRegistry
from .matching import compatible_candidates, match
from .revision_ledger import RevisionLedger, RevisionSequence
from .transition_executor import TransitionExecutor, TransitionPlan, sla_deadline_for

logger = logging.getLogger(__name__)

REQUEST_SCOPES = (RecordType.REQUEST, RecordType.BOTH)


class CaseConverter:
    """Converts incidents into new request cases."""

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

    async def _request_workflows(self) -> List[WorkflowDefinition]:
        return [
            w for w in compatible_candidates(await self.workflows.list())
            if w.record_type in REQUEST_SCOPES
        ]

    async def can_convert(self, case_id: str) -> CanConvertResponse:
        case = await self.cases.get(case_id)
        if case is None:
            raise NotFoundError("Case", case_id)

        reasons = []
        if case.record_type != RecordType.INCIDENT:
            reasons.append(f"Only incidents can be converted; case is a {case.record_type.value}")
        if case.is_merged:
            reasons.append(f"Case is merged into {case.master_incident_id}")
        if not any(w.is_active for w in await self._request_workflows()):
            reasons.append("No active request workflow is configured")

        return CanConvertResponse(can_convert=not reasons, reasons=reasons)

    async def _check_classification(self, classification_id: Optional[str]) -> None:
        """A classification only some incident workflows claim cannot label a request."""
        if not classification_id:
            return
        claimants = [
            w for w in await self.workflows.list()
            if not w.is_deleted and classification_id in w.classification_ids
        ]
        if claimants and not any(w.record_type in REQUEST_SCOPES for w in claimants):
            raise InvalidRecordTypeError(
                f"Classification {classification_id} belongs to incident workflows only"
            )

    async def _target_workflow(self, request: ConversionRequest, source: Case) -> WorkflowDefinition:
        await self._check_classification(request.classification_id)
        if request.workflow_id:
            workflow = await self.workflows.get(request.workflow_id)
            if workflow is None or workflow.is_deleted:
                raise NotFoundError("Workflow", request.workflow_id)
            if workflow.record_type not in REQUEST_SCOPES:
                raise InvalidRecordTypeError(
                    f"Workflow {workflow.id} handles {workflow.record_type.value} records, "
                    f"not requests"
                )
            return workflow

        criteria = MatchCriteria(
            record_type=RecordType.REQUEST,
            classification_id=request.classification_id,
            location_id=source.location_id,
            source=source.source,
            priority=source.priority,
        )
        workflow = match(await self._request_workflows(), criteria)
        if workflow is None:
            raise NotFoundError("Workflow", f"for request classification {request.classification_id}")
        return workflow

    async def convert(
        self,
        case_id: str,
        request: ConversionRequest,
        actor: Actor,
    ) -> Tuple[ConversionResult, Optional[TransitionPlan]]:
        """Create a request case from an incident.

        Returns the result and the source transition plan (if any) whose
        external actions still have to be dispatched.
        """
        async with self.locks.hold(case_id):
            source = await self.cases.get(case_id)
            if source is None:
                raise NotFoundError("Case", case_id)
            if source.record_type != RecordType.INCIDENT:
                raise InvalidRecordTypeError(
                    f"Only incidents can be converted; case {case_id} is a "
                    f"{source.record_type.value}"
                )

            target = await self._target_workflow(request, source)
            initial = target.initial_state()
            if initial is None:
                raise InvalidWorkflowError([f"Workflow {target.id} has no initial state"])

            mutations: List[CaseMutation] = []
            plan = None
            if request.transition_id:
                source_workflow = await self.workflows.get(source.workflow_id)
                if source_workflow is None:
                    raise NotFoundError("Workflow", source.workflow_id)
                sequence = await self.ledger.start(source.id, actor)
                plan = self.executor.plan(
                    source_workflow, source, request.transition_id, request, actor, sequence,
                )
                mutations.append(plan.mutation())

            now = datetime.now(timezone.utc)
            new_case = Case(
                record_type=RecordType.REQUEST,
                title=request.title or source.title,
                description=request.description if request.description is not None else source.description,
                workflow_id=target.id,
                current_state_id=initial.id,
                classification_id=request.classification_id,
                location_id=source.location_id,
                department_id=source.department_id,
                priority=source.priority,
                source=source.source,
                reporter_id=actor.user_id,
                source_incident_id=source.id,
                sla_deadline=sla_deadline_for(initial, now),
                created_at=now,
                updated_at=now,
            )
            created = RevisionSequence(new_case.id, 0, actor)
            created.append(
                RevisionActionType.CREATED,
                f"Converted from incident {source.id}",
                [FieldChange(field="source_incident_id", old_value=None, new_value=source.id)],
            )
            mutations.append(CaseMutation(case=new_case, revisions=created.revisions))

            saved = await self.cases.commit(mutations)

        new_request = saved[-1]
        logger.info(f"Incident {case_id} converted to request {new_request.id} by {actor.user_id}")

        transition = None
        if plan is not None:
            transition = TransitionResult(
                case=saved[0], history=plan.history, revision=plan.revision, warnings=plan.warnings,
            )
        result = ConversionResult(
            source_case=saved[0] if plan is not None else source,
            new_case=new_request,
            transition=transition,
            warnings=list(plan.warnings) if plan is not None else [],
        )
        return result, plan

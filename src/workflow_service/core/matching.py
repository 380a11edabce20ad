"""Workflow matching.

Scores every active candidate against the case-creation criteria and returns
the best fit. The weights and fallback order are reproduced literally because
client-visible ordering depends on them: classification, location and source
are worth 10 each, an in-range priority 5, and a default workflow that matched
nothing is floored to 1.
"""

import logging
from typing import Iterable, List, Optional, Sequence

from workflow_service.models import MatchCriteria, RecordType, WorkflowDefinition

logger = logging.getLogger(__name__)

CLASSIFICATION_WEIGHT = 10
LOCATION_WEIGHT = 10
SOURCE_WEIGHT = 10
PRIORITY_WEIGHT = 5
DEFAULT_FLOOR_SCORE = 1

DEFAULT_PRIORITY_MIN = 1
DEFAULT_PRIORITY_MAX = 5


def compatible_candidates(
    workflows: Iterable[WorkflowDefinition],
    record_type: Optional[RecordType] = None,
) -> List[WorkflowDefinition]:
    """Non-deleted workflows that may hold a case of ``record_type``, order kept."""
    return [
        w for w in workflows
        if not w.is_deleted and (record_type is None or w.supports_record_type(record_type))
    ]


def score_workflow(workflow: WorkflowDefinition, criteria: MatchCriteria) -> int:
    """Additive score of one workflow; each criterion counts independently."""
    score = 0

    if (criteria.classification_id and workflow.classification_ids
            and criteria.classification_id in workflow.classification_ids):
        score += CLASSIFICATION_WEIGHT

    if (criteria.location_id and workflow.location_ids
            and criteria.location_id in workflow.location_ids):
        score += LOCATION_WEIGHT

    if criteria.source and workflow.sources and criteria.source in workflow.sources:
        score += SOURCE_WEIGHT

    if criteria.priority is not None:
        low = workflow.priority_min if workflow.priority_min is not None else DEFAULT_PRIORITY_MIN
        high = workflow.priority_max if workflow.priority_max is not None else DEFAULT_PRIORITY_MAX
        if low <= criteria.priority <= high:
            score += PRIORITY_WEIGHT

    if score == 0 and workflow.is_default:
        score = DEFAULT_FLOOR_SCORE

    return score


def match(
    candidates: Sequence[WorkflowDefinition],
    criteria: MatchCriteria,
) -> Optional[WorkflowDefinition]:
    """Pick the best-fit active workflow, or None when there are no candidates.

    Ties keep the first-seen candidate. When nothing scores above zero the
    first active default wins, then the first active candidate.
    """
    active: List[WorkflowDefinition] = [w for w in candidates if w.is_active]

    best: Optional[WorkflowDefinition] = None
    best_score = 0
    for workflow in active:
        score = score_workflow(workflow, criteria)
        if score > 0 and (best is None or score > best_score):
            best = workflow
            best_score = score

    if best is not None:
        logger.debug(f"Matched workflow {best.id} with score {best_score}")
        return best

    for workflow in active:
        if workflow.is_default:
            logger.debug(f"No scored match; falling back to default workflow {workflow.id}")
            return workflow

    if active:
        logger.debug(f"No scored match or default; falling back to {active[0].id}")
        return active[0]

    return None

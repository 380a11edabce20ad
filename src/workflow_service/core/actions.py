"""Transition actions.

``field_update`` actions change the case record itself and are applied while
the transition is being prepared, so they land in the same atomic write as the
state change. Every other action kind is an external side effect (email,
webhook, notification) handed to the ActionRunner after the write commits;
the runner schedules handlers without awaiting them, so a failing handler is
logged and never touches the committed state.
"""

import asyncio
import logging
from typing import Any, Awaitable, Callable, Dict, Optional, Set

from workflow_service.models import (
    EDITABLE_CASE_FIELDS,
    ActionKind,
    Actor,
    Case,
    FieldChange,
    TransitionAction,
    TransitionHistory,
    WorkflowTransition,
)

logger = logging.getLogger(__name__)


class ActionError(Exception):
    """An action could not be applied or dispatched."""


def _as_text(value: Any) -> Optional[str]:
    return None if value is None else str(value)


def apply_field_update(case: Case, action: TransitionAction) -> FieldChange:
    """Apply a field_update action to ``case`` in place.

    ``action.config`` holds ``{"field": <name>, "value": <new value>}``.
    """
    field = action.config.get("field")
    if field not in EDITABLE_CASE_FIELDS:
        raise ActionError(f"Action '{action.name}' targets non-editable field '{field}'")

    new_value = action.config.get("value")
    if field == "priority" and new_value is not None:
        try:
            new_value = int(new_value)
        except (TypeError, ValueError) as e:
            raise ActionError(f"Action '{action.name}' has invalid priority {new_value!r}") from e
        if not 1 <= new_value <= 5:
            raise ActionError(f"Action '{action.name}' has out-of-range priority {new_value}")

    old_value = getattr(case, field)
    setattr(case, field, new_value)
    return FieldChange(field=field, old_value=_as_text(old_value), new_value=_as_text(new_value))


class ActionContext:
    """What an action handler gets to see about the executed transition."""

    def __init__(
        self,
        case: Case,
        transition: WorkflowTransition,
        history: TransitionHistory,
        actor: Actor,
    ):
        self.case = case
        self.transition = transition
        self.history = history
        self.actor = actor


ActionHandler = Callable[[TransitionAction, ActionContext], Awaitable[None]]


async def log_only_handler(action: TransitionAction, context: ActionContext) -> None:
    """Placeholder handler for channels owned by other services."""
    logger.info(
        f"Action '{action.name or action.action_type}' ({action.action_type}) "
        f"queued for case {context.case.id} after transition {context.transition.code}"
    )


class ActionRunner:
    """Fire-and-forget dispatcher for external transition actions."""

    def __init__(self, handlers: Optional[Dict[str, ActionHandler]] = None):
        self._handlers: Dict[str, ActionHandler] = dict(handlers or {})
        self._tasks: Set[asyncio.Task] = set()

    def register(self, action_type: str, handler: ActionHandler) -> None:
        self._handlers[action_type] = handler

    def handles(self, action_type: str) -> bool:
        return action_type in self._handlers

    def dispatch(self, action: TransitionAction, context: ActionContext) -> None:
        """Schedule the handler and return immediately.

        Raises:
            ActionError: If no handler is registered for the action type
        """
        handler = self._handlers.get(action.action_type)
        if handler is None:
            raise ActionError(f"No handler registered for action type '{action.action_type}'")

        task = asyncio.get_running_loop().create_task(self._run(handler, action, context))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _run(self, handler: ActionHandler, action: TransitionAction, context: ActionContext):
        try:
            await handler(action, context)
        except Exception as e:
            logger.error(
                f"Action '{action.name or action.action_type}' failed for case "
                f"{context.case.id}: {e}"
            )

    async def drain(self) -> None:
        """Wait for every scheduled handler (shutdown and tests)."""
        if self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)


def build_default_runner() -> ActionRunner:
    """Email and notification are logged for the delivery services to pick up.

    Webhooks need a deployment-specific handler; until one is registered they
    surface as transition warnings.
    """
    return ActionRunner({
        ActionKind.EMAIL.value: log_only_handler,
        ActionKind.NOTIFICATION.value: log_only_handler,
    })

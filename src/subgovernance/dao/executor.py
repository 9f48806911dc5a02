"""Action executor — the in-process stand-in for the DAO's execute entry point.

Runs a proposal's actions in order through handlers registered per target.
A handler that raises or returns False has failed. Failures of actions whose
bit is set in ``allow_failure_map`` are recorded in the returned failure map;
any other failure aborts the whole batch with ActionFailed.

The executor checks that the calling plugin holds EXECUTE_PERMISSION on the
DAO before running anything.
"""

from __future__ import annotations

from typing import Any, Callable, Optional, Sequence

import structlog

from subgovernance.dao.permissions import EXECUTE_PERMISSION, PermissionChecker, require
from subgovernance.engine.execution import DispatchResult
from subgovernance.errors import ActionFailed, TooManyActions
from subgovernance.models.voting import ActionRef

logger = structlog.get_logger(__name__)

MAX_ACTIONS = 256

ActionHandler = Callable[[ActionRef], Any]


class ActionExecutor:
    """Dispatches action batches on behalf of ``caller`` against ``dao_address``."""

    def __init__(
        self,
        permissions: PermissionChecker,
        dao_address: str,
        caller: str,
        handlers: Optional[dict[str, ActionHandler]] = None,
        default_handler: Optional[ActionHandler] = None,
    ) -> None:
        self._permissions = permissions
        self._dao_address = dao_address
        self._caller = caller
        self._handlers: dict[str, ActionHandler] = dict(handlers or {})
        self._default_handler = default_handler
        self.dispatch_count = 0

    def register(self, target: str, handler: ActionHandler) -> None:
        self._handlers[target] = handler

    def dispatch(
        self,
        call_id: str,
        actions: Sequence[ActionRef],
        allow_failure_map: int,
    ) -> DispatchResult:
        """Run ``actions`` in order.

        Raises:
            Unauthorized: The caller lacks EXECUTE_PERMISSION on the DAO.
            TooManyActions: More than MAX_ACTIONS actions.
            ActionFailed: An action failed and its failure was not allowed.
        """
        require(self._permissions, self._dao_address, self._caller, EXECUTE_PERMISSION)
        if len(actions) > MAX_ACTIONS:
            raise TooManyActions(len(actions), MAX_ACTIONS)

        self.dispatch_count += 1
        results: list[object] = []
        failure_map = 0
        for index, action in enumerate(actions):
            ok, outcome = self._run(action)
            if not ok:
                if not (allow_failure_map >> index) & 1:
                    raise ActionFailed(index, str(outcome or ""))
                failure_map |= 1 << index
                outcome = None
            results.append(outcome)

        logger.info(
            "actions_dispatched",
            call_id=call_id,
            actions=len(actions),
            failure_map=failure_map,
        )
        return DispatchResult(results=results, failure_map=failure_map)

    def _run(self, action: ActionRef) -> tuple[bool, Any]:
        handler = self._handlers.get(action.target, self._default_handler)
        if handler is None:
            return False, f"no handler for {action.target}"
        try:
            outcome = handler(action)
        except Exception as exc:
            # A reverted call, including a rejected reentrant engine call,
            # is a failed action; allow_failure_map decides what happens next.
            logger.warning("action_failed", target=action.target, error=str(exc))
            return False, exc
        if outcome is False:
            return False, "handler returned False"
        return True, outcome

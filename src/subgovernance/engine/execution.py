"""Execution gate — at-most-once hand-off of approved actions to the DAO.

Ordering inside ``execute`` is check, effects, then interaction:
1. Check executability with the voting policy (fail closed).
2. Flip ``executed``/``open`` on the stored proposal.
3. Dispatch the action list to the execution collaborator.

Because step 2 happens before step 3, an action that calls back into the
engine during dispatch sees the proposal as already executed and cannot run
it again. If dispatch raises, the flip is undone and the error propagates,
so a proposal is never left "executed" by a dispatch that did not commit.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Protocol, Sequence

import structlog

from subgovernance.engine import policy
from subgovernance.errors import ProposalExecutionForbidden
from subgovernance.models.voting import ActionRef
from subgovernance.proposals.store import ProposalStore

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class DispatchResult:
    """Outcome of a dispatched batch.

    Bit ``i`` of ``failure_map`` is set when action ``i`` failed and its
    failure was allowed.
    """
    results: list[object] = field(default_factory=list)
    failure_map: int = 0

    def succeeded(self, index: int) -> bool:
        return not (self.failure_map >> index) & 1


class Dispatcher(Protocol):
    """The DAO-side collaborator that actually runs actions."""

    def dispatch(
        self,
        call_id: str,
        actions: Sequence[ActionRef],
        allow_failure_map: int,
    ) -> DispatchResult: ...


class ExecutionGate:
    """Decides terminal executability and performs the one allowed dispatch."""

    def __init__(self, proposals: ProposalStore, dispatcher: Dispatcher) -> None:
        self._proposals = proposals
        self._dispatcher = dispatcher

    def can_execute(self, proposal_id: int, now: int) -> bool:
        proposal = self._proposals.find(proposal_id)
        if proposal is None:
            return False
        return policy.can_execute(proposal, now)

    def execute(self, proposal_id: int, now: int) -> DispatchResult:
        """Execute ``proposal_id`` once.

        Raises:
            UnknownProposal: If no such proposal exists.
            ProposalExecutionForbidden: If the policy says no, including when
                the proposal has already been executed.
        """
        proposal = self._proposals.get(proposal_id)
        if not policy.can_execute(proposal, now):
            raise ProposalExecutionForbidden(proposal_id)

        was_open = proposal.open
        self._proposals.mark_executed(proposal_id)
        try:
            result = self._dispatcher.dispatch(
                f"proposal-{proposal_id}",
                proposal.actions,
                proposal.allow_failure_map,
            )
        except Exception:
            proposal.executed = False
            proposal.open = was_open
            logger.warning("proposal_dispatch_reverted", proposal_id=proposal_id)
            raise

        logger.info(
            "proposal_executed",
            proposal_id=proposal_id,
            actions=len(proposal.actions),
            failure_map=result.failure_map,
        )
        return result

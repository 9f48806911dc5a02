"""Proposal store — proposal records, their fixed parameters and live tallies.

The store owns the proposal id sequence (dense, starting at 0) and is the only
place proposal state is mutated. Decisions about *whether* a mutation is
allowed belong to the voting policy; the store applies them.
"""

from __future__ import annotations

from typing import Any, Iterable, Optional

from subgovernance.errors import UnknownProposal
from subgovernance.journal import UndoLog, record
from subgovernance.models.voting import (
    ActionRef,
    Proposal,
    ProposalParameters,
    Tally,
    VoteOption,
    VotingMode,
)


class ProposalStore:
    """Holds every proposal ever created. Proposals are never deleted.

    Only a rolled-back transaction takes a proposal back, through the undo
    log the store was given.
    """

    def __init__(self, undo: Optional[UndoLog] = None) -> None:
        self._undo = undo
        self._proposals: dict[int, Proposal] = {}
        self._next_proposal_id = 0

    @property
    def proposal_count(self) -> int:
        return self._next_proposal_id

    def create(
        self,
        group_id: int,
        creator: str,
        metadata: bytes,
        parameters: ProposalParameters,
        actions: Iterable[ActionRef],
        allow_failure_map: int,
    ) -> Proposal:
        """Persist a new open proposal with an empty tally."""
        proposal = Proposal(
            proposal_id=self._next_proposal_id,
            group_id=group_id,
            creator=creator,
            metadata=metadata,
            parameters=parameters,
            actions=tuple(actions),
            allow_failure_map=allow_failure_map,
        )
        self._proposals[proposal.proposal_id] = proposal
        self._next_proposal_id += 1
        record(self._undo, lambda: self._drop(proposal.proposal_id))
        return proposal

    def get(self, proposal_id: int) -> Proposal:
        proposal = self._proposals.get(proposal_id)
        if proposal is None:
            raise UnknownProposal(proposal_id)
        return proposal

    def find(self, proposal_id: int) -> Proposal | None:
        return self._proposals.get(proposal_id)

    def record_vote(self, proposal_id: int, voter: str, option: VoteOption) -> VoteOption:
        """Move ``voter`` into the ``option`` bucket.

        Any previous choice is subtracted first, so a voter always counts in
        exactly one bucket. Returns the previous choice.
        """
        proposal = self.get(proposal_id)
        previous = proposal.vote_of(voter)
        proposal.tally.remove(previous)
        proposal.tally.add(option)
        proposal.voters[voter] = option

        def undo() -> None:
            proposal.tally.remove(option)
            proposal.tally.add(previous)
            if previous == VoteOption.NONE:
                del proposal.voters[voter]
            else:
                proposal.voters[voter] = previous

        record(self._undo, undo)
        return previous

    def mark_executed(self, proposal_id: int) -> Proposal:
        proposal = self.get(proposal_id)
        was_open, was_executed = proposal.open, proposal.executed
        proposal.executed = True
        proposal.open = False

        def undo() -> None:
            proposal.executed = was_executed
            proposal.open = was_open

        record(self._undo, undo)
        return proposal

    def list_proposals(self, group_id: int | None = None) -> list[Proposal]:
        proposals = [self._proposals[pid] for pid in sorted(self._proposals)]
        if group_id is not None:
            proposals = [p for p in proposals if p.group_id == group_id]
        return proposals

    def _drop(self, proposal_id: int) -> None:
        del self._proposals[proposal_id]
        self._next_proposal_id = proposal_id

    # -- persistence ------------------------------------------------------

    def to_records(self) -> dict[str, Any]:
        records: list[dict[str, Any]] = []
        for p in self.list_proposals():
            params = p.parameters
            records.append({
                "proposal_id": p.proposal_id,
                "group_id": p.group_id,
                "creator": p.creator,
                "metadata": p.metadata.hex(),
                "parameters": {
                    "voting_mode": params.voting_mode.value,
                    "support_threshold": params.support_threshold,
                    "min_participation": params.min_participation,
                    "start_date": params.start_date,
                    "end_date": params.end_date,
                    "snapshot_block": params.snapshot_block,
                    "total_voting_power": params.total_voting_power,
                },
                "actions": [a.to_dict() for a in p.actions],
                "allow_failure_map": p.allow_failure_map,
                "open": p.open,
                "executed": p.executed,
                "tally": {"yes": p.tally.yes, "no": p.tally.no, "abstain": p.tally.abstain},
                "voters": {voter: option.value for voter, option in p.voters.items()},
            })
        return {"next_proposal_id": self._next_proposal_id, "proposals": records}

    def load_records(self, data: dict[str, Any]) -> None:
        """Replace store contents in place with ``data``."""
        self._proposals = {}
        for pd in data.get("proposals", []):
            params = pd["parameters"]
            proposal = Proposal(
                proposal_id=int(pd["proposal_id"]),
                group_id=int(pd["group_id"]),
                creator=pd["creator"],
                metadata=bytes.fromhex(pd.get("metadata", "")),
                parameters=ProposalParameters(
                    voting_mode=VotingMode(params["voting_mode"]),
                    support_threshold=int(params["support_threshold"]),
                    min_participation=int(params["min_participation"]),
                    start_date=int(params["start_date"]),
                    end_date=int(params["end_date"]),
                    snapshot_block=int(params["snapshot_block"]),
                    total_voting_power=int(params["total_voting_power"]),
                ),
                actions=tuple(ActionRef.from_dict(a) for a in pd.get("actions", [])),
                allow_failure_map=int(pd.get("allow_failure_map", 0)),
                open=bool(pd["open"]),
                executed=bool(pd["executed"]),
                tally=Tally(**pd["tally"]),
                voters={v: VoteOption(o) for v, o in pd.get("voters", {}).items()},
            )
            self._proposals[proposal.proposal_id] = proposal
        self._next_proposal_id = int(data.get("next_proposal_id", len(self._proposals)))

    @classmethod
    def from_records(cls, data: dict[str, Any]) -> ProposalStore:
        store = cls()
        store.load_records(data)
        return store

"""Tests for the undo log and the stores that write to it.

Proves:
- Undo entries run newest first and only back to the requested mark.
- Each store mutation can be taken back exactly, including id sequences.
- Loading records is never journaled.
"""

from __future__ import annotations

from subgovernance.journal import UndoLog, record
from subgovernance.membership.checkpoints import CheckpointStore
from subgovernance.membership.registry import GroupRegistry
from subgovernance.models.voting import ProposalParameters, VoteOption, VotingMode
from subgovernance.proposals.store import ProposalStore


def _parameters() -> ProposalParameters:
    return ProposalParameters(
        voting_mode=VotingMode.VOTE_REPLACEMENT,
        support_threshold=500_000,
        min_participation=200_000,
        start_date=0,
        end_date=3600,
        snapshot_block=0,
        total_voting_power=3,
    )


class TestUndoLog:
    def test_rollback_runs_newest_first(self) -> None:
        log = UndoLog()
        order: list[int] = []
        for n in range(3):
            log.record(lambda n=n: order.append(n))
        log.rollback()
        assert order == [2, 1, 0]
        assert len(log) == 0

    def test_rollback_stops_at_mark(self) -> None:
        log = UndoLog()
        order: list[str] = []
        log.record(lambda: order.append("outer"))
        mark = log.mark()
        log.record(lambda: order.append("inner"))
        log.rollback(mark)
        assert order == ["inner"]
        assert len(log) == 1

    def test_record_without_log_is_noop(self) -> None:
        record(None, lambda: None)

    def test_clear_discards_entries(self) -> None:
        log = UndoLog()
        order: list[int] = []
        log.record(lambda: order.append(1))
        log.clear()
        log.rollback()
        assert order == []


class TestStoreRollback:
    def test_checkpoint_writes_undone(self) -> None:
        log = UndoLog()
        store = CheckpointStore(undo=log)
        store.record_membership(0, "alice", True, 1)
        store.record_membership(0, "bob", True, 1)
        before = store.to_records()
        mark = log.mark()

        store.record_membership(0, "alice", False, 3)
        store.record_membership(0, "bob", False, 3)
        store.record_membership(0, "carol", True, 3)
        store.record_membership(1, "dave", True, 3)
        log.rollback(mark)

        assert store.to_records() == before
        assert store.history(0, "carol") == []
        assert store.size(0) == 2
        assert store.size(1) == 0

    def test_unchanged_membership_records_nothing(self) -> None:
        log = UndoLog()
        store = CheckpointStore(undo=log)
        store.record_membership(0, "alice", True, 1)
        mark = log.mark()
        store.record_membership(0, "alice", True, 2)
        assert log.mark() == mark

    def test_group_creation_undone(self) -> None:
        log = UndoLog()
        registry = GroupRegistry(undo=log)
        registry.create_group("first", ["alice"], 1)
        mark = log.mark()

        registry.create_group("second", ["bob"], 2)
        log.rollback(mark)

        assert registry.group_count == 1
        assert [g.name for g in registry.list_groups()] == ["first"]
        assert registry.is_listed("bob", 1) is False
        assert registry.create_group("again", [], 3).group_id == 1

    def test_proposal_mutations_undone(self) -> None:
        log = UndoLog()
        store = ProposalStore(undo=log)
        proposal = store.create(0, "alice", b"", _parameters(), (), 0)
        store.record_vote(0, "alice", VoteOption.YES)
        mark = log.mark()

        store.record_vote(0, "alice", VoteOption.NO)
        store.record_vote(0, "bob", VoteOption.ABSTAIN)
        store.mark_executed(0)
        store.create(0, "bob", b"", _parameters(), (), 0)
        log.rollback(mark)

        assert store.get(0) is proposal
        assert (proposal.tally.yes, proposal.tally.no, proposal.tally.abstain) == (1, 0, 0)
        assert proposal.voters == {"alice": VoteOption.YES}
        assert proposal.open is True
        assert proposal.executed is False
        assert store.proposal_count == 1
        assert store.find(1) is None

    def test_loading_records_is_not_journaled(self) -> None:
        source = GroupRegistry()
        source.create_group("g", ["alice", "bob"], 1)

        log = UndoLog()
        registry = GroupRegistry(undo=log)
        registry.load_records(source.to_records())
        assert len(log) == 0
        assert registry.members(0) == ["alice", "bob"]

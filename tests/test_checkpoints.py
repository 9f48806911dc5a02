"""Tests for the checkpoint store — point-in-time membership lookups.

Proves:
- A lookup returns the latest checkpoint at or before the block.
- A lookup before any checkpoint is False, never an error.
- Same-block writes overwrite instead of appending.
- Out-of-order writes are rejected.
- A captured restorer puts a history back exactly.
- Group size only moves on real transitions.
"""

from __future__ import annotations

import random

import pytest

from subgovernance.membership.checkpoints import CheckpointHistory, CheckpointStore


class TestCheckpointHistory:
    def test_empty_history_returns_default(self) -> None:
        history: CheckpointHistory[bool] = CheckpointHistory(False)
        assert history.at(0) is False
        assert history.at(10_000) is False
        assert history.latest is False

    def test_lookup_uses_latest_checkpoint_at_or_before_block(self) -> None:
        history: CheckpointHistory[bool] = CheckpointHistory(False)
        history.push(5, True)
        history.push(9, False)
        history.push(12, True)

        assert history.at(4) is False
        assert history.at(5) is True
        assert history.at(8) is True
        assert history.at(9) is False
        assert history.at(11) is False
        assert history.at(12) is True
        assert history.at(100) is True

    def test_same_block_revert_drops_entry(self) -> None:
        history: CheckpointHistory[bool] = CheckpointHistory(False)
        history.push(3, True)
        history.push(7, False)
        history.push(7, True)
        assert history.entries() == [(3, True)]
        assert history.at(7) is True

    def test_same_block_overwrite_keeps_distinct_value(self) -> None:
        history: CheckpointHistory[int] = CheckpointHistory(0)
        history.push(3, 1)
        history.push(7, 2)
        history.push(7, 5)
        assert history.entries() == [(3, 1), (7, 5)]

    def test_writing_value_in_force_is_noop(self) -> None:
        history: CheckpointHistory[bool] = CheckpointHistory(False)
        assert history.push(3, True) is True
        assert history.push(3, True) is False
        assert history.push(8, True) is False
        assert len(history) == 1

    def test_out_of_order_write_rejected(self) -> None:
        history: CheckpointHistory[bool] = CheckpointHistory(False)
        history.push(10, True)
        with pytest.raises(ValueError, match="precedes"):
            history.push(9, False)

    def test_matches_linear_scan(self) -> None:
        """Binary search agrees with a naive scan over a long history."""
        rng = random.Random(42)
        history: CheckpointHistory[bool] = CheckpointHistory(False)
        writes: list[tuple[int, bool]] = []
        block = 0
        for _ in range(300):
            block += rng.randint(0, 3)
            value = rng.random() < 0.5
            history.push(block, value)
            writes.append((block, value))

        def naive(b: int) -> bool:
            result = False
            for wb, wv in writes:
                if wb <= b:
                    result = wv
            return result

        for b in range(block + 5):
            assert history.at(b) == naive(b), f"mismatch at block {b}"

    def test_restorer_undoes_append(self) -> None:
        history: CheckpointHistory[int] = CheckpointHistory(0)
        history.push(3, 1)
        restore = history.restorer()
        history.push(7, 2)
        restore()
        assert history.entries() == [(3, 1)]

    def test_restorer_undoes_same_block_overwrite(self) -> None:
        history: CheckpointHistory[int] = CheckpointHistory(0)
        history.push(3, 1)
        history.push(7, 2)
        restore = history.restorer()
        history.push(7, 5)
        restore()
        assert history.entries() == [(3, 1), (7, 2)]

    def test_restorer_undoes_same_block_drop(self) -> None:
        history: CheckpointHistory[bool] = CheckpointHistory(False)
        history.push(7, True)
        restore = history.restorer()
        history.push(7, False)
        assert history.entries() == []
        restore()
        assert history.entries() == [(7, True)]


class TestCheckpointStore:
    def test_unknown_key_is_not_member(self) -> None:
        store = CheckpointStore()
        assert store.is_member_at_block(0, "alice", 100) is False
        assert store.size_at_block(0, 100) == 0

    def test_membership_is_scoped_per_group(self) -> None:
        store = CheckpointStore()
        store.record_membership(0, "alice", True, 5)
        assert store.is_member_at_block(0, "alice", 5) is True
        assert store.is_member_at_block(1, "alice", 5) is False

    def test_record_reports_real_changes_only(self) -> None:
        store = CheckpointStore()
        assert store.record_membership(0, "alice", True, 5) is True
        assert store.record_membership(0, "alice", True, 5) is False
        assert store.record_membership(0, "alice", True, 6) is False
        assert store.record_membership(0, "alice", False, 7) is True

    def test_size_tracks_transitions(self) -> None:
        store = CheckpointStore()
        store.record_membership(0, "alice", True, 5)
        store.record_membership(0, "bob", True, 5)
        store.record_membership(0, "alice", True, 6)  # already a member
        store.record_membership(0, "bob", False, 8)

        assert store.size_at_block(0, 4) == 0
        assert store.size_at_block(0, 5) == 2
        assert store.size_at_block(0, 7) == 2
        assert store.size_at_block(0, 8) == 1
        assert store.size(0) == 1

    def test_add_then_remove_in_same_block(self) -> None:
        store = CheckpointStore()
        store.record_membership(0, "alice", True, 5)
        store.record_membership(0, "alice", False, 5)
        assert store.is_member_at_block(0, "alice", 5) is False
        assert store.size_at_block(0, 5) == 0
        assert store.history(0, "alice") == []

    def test_members_lists_current_members(self) -> None:
        store = CheckpointStore()
        store.record_membership(0, "alice", True, 1)
        store.record_membership(0, "bob", True, 1)
        store.record_membership(0, "bob", False, 2)
        store.record_membership(1, "carol", True, 2)
        assert store.members(0) == ["alice"]
        assert store.members(1) == ["carol"]

    def test_records_round_trip(self) -> None:
        store = CheckpointStore()
        store.record_membership(0, "alice", True, 1)
        store.record_membership(0, "alice", False, 4)
        store.record_membership(2, "bob", True, 3)

        restored = CheckpointStore.from_records(store.to_records())
        assert restored.history(0, "alice") == [(1, True), (4, False)]
        assert restored.is_member_at_block(2, "bob", 3) is True
        assert restored.size_at_block(0, 2) == 1
        assert restored.size_at_block(0, 4) == 0

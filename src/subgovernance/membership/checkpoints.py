"""Checkpoint store — point-in-time membership history per (group, address).

Each key owns an ordered history of ``(block, value)`` entries. Entries are
appended with non-decreasing block numbers; a second write in the same block
overwrites the entry for that block instead of adding one. Lookups binary
search the block column, so a historical query is O(log n) in the number of
transitions for that key.

The store also keeps a size history per group so the number of members at
any past block is a lookup, not a count over every address.
"""

from __future__ import annotations

import bisect
from typing import Any, Generic, Optional, TypeVar

from subgovernance.journal import Undo, UndoLog, record

T = TypeVar("T")


class CheckpointHistory(Generic[T]):
    """Ordered ``(block, value)`` history with binary-search lookup."""

    def __init__(self, default: T) -> None:
        self._default = default
        self._blocks: list[int] = []
        self._values: list[T] = []

    def __len__(self) -> int:
        return len(self._blocks)

    @property
    def latest(self) -> T:
        return self._values[-1] if self._values else self._default

    def push(self, block: int, value: T) -> bool:
        """Record ``value`` as of ``block``.

        Returns True if a checkpoint was written. Writing the value already
        in force is a no-op.

        Raises:
            ValueError: If ``block`` precedes the last recorded block.
        """
        if self._blocks and block < self._blocks[-1]:
            raise ValueError(
                f"Checkpoint block {block} precedes last checkpoint {self._blocks[-1]}"
            )
        if value == self.latest:
            return False
        if self._blocks and self._blocks[-1] == block:
            before = self._values[-2] if len(self._values) > 1 else self._default
            if value == before:
                # Reverted within the block: drop the entry.
                self._blocks.pop()
                self._values.pop()
            else:
                self._values[-1] = value
        else:
            self._blocks.append(block)
            self._values.append(value)
        return True

    def restorer(self) -> Undo:
        """Return a callable that puts the history back to its current state.

        A push only ever touches the last entry, so the tail is all that
        needs capturing.
        """
        length = len(self._blocks)
        last = (self._blocks[-1], self._values[-1]) if length else None

        def restore() -> None:
            del self._blocks[max(length - 1, 0):]
            del self._values[max(length - 1, 0):]
            if last is not None:
                self._blocks.append(last[0])
                self._values.append(last[1])

        return restore

    def at(self, block: int) -> T:
        """Value of the latest checkpoint at or before ``block``."""
        idx = bisect.bisect_right(self._blocks, block)
        if idx == 0:
            return self._default
        return self._values[idx - 1]

    def entries(self) -> list[tuple[int, T]]:
        return list(zip(self._blocks, self._values))


class CheckpointStore:
    """Membership checkpoints keyed by (group_id, address).

    With an undo log attached, every written checkpoint records how to
    take it back.
    """

    def __init__(self, undo: Optional[UndoLog] = None) -> None:
        self._undo = undo
        self._members: dict[tuple[int, str], CheckpointHistory[bool]] = {}
        self._sizes: dict[int, CheckpointHistory[int]] = {}

    def record_membership(
        self,
        group_id: int,
        address: str,
        is_member: bool,
        at_block: int,
    ) -> bool:
        """Record ``address``'s membership in ``group_id`` as of ``at_block``.

        Idempotent for a repeated (group, address, value, block). Returns
        True if membership actually changed.
        """
        key = (group_id, address)
        history = self._members.get(key)
        if history is None:
            history = self._members[key] = CheckpointHistory(False)
            record(self._undo, lambda: self._members.pop(key, None))
        was_member = history.latest
        self._push(history, at_block, is_member)
        if was_member == is_member:
            return False

        sizes = self._sizes.get(group_id)
        if sizes is None:
            sizes = self._sizes[group_id] = CheckpointHistory(0)
            record(self._undo, lambda: self._sizes.pop(group_id, None))
        self._push(sizes, at_block, sizes.latest + (1 if is_member else -1))
        return True

    def _push(self, history: CheckpointHistory[Any], block: int, value: Any) -> None:
        restore = history.restorer()
        if history.push(block, value):
            record(self._undo, restore)

    def is_member_at_block(self, group_id: int, address: str, block: int) -> bool:
        """Membership at ``block``; False when no checkpoint precedes it."""
        history = self._members.get((group_id, address))
        if history is None:
            return False
        return history.at(block)

    def is_member(self, group_id: int, address: str) -> bool:
        history = self._members.get((group_id, address))
        return history.latest if history is not None else False

    def size_at_block(self, group_id: int, block: int) -> int:
        sizes = self._sizes.get(group_id)
        if sizes is None:
            return 0
        return sizes.at(block)

    def size(self, group_id: int) -> int:
        sizes = self._sizes.get(group_id)
        return sizes.latest if sizes is not None else 0

    def history(self, group_id: int, address: str) -> list[tuple[int, bool]]:
        """Raw checkpoints for one key, oldest first."""
        history = self._members.get((group_id, address))
        return history.entries() if history is not None else []

    def members(self, group_id: int) -> list[str]:
        """Current members of a group, in first-seen order."""
        return [
            address
            for (gid, address), history in self._members.items()
            if gid == group_id and history.latest
        ]

    # -- persistence ------------------------------------------------------

    def to_records(self) -> dict[str, Any]:
        return {
            "members": [
                {
                    "group_id": gid,
                    "address": address,
                    "checkpoints": [[b, v] for b, v in history.entries()],
                }
                for (gid, address), history in self._members.items()
            ],
            "sizes": [
                {
                    "group_id": gid,
                    "checkpoints": [[b, n] for b, n in history.entries()],
                }
                for gid, history in self._sizes.items()
            ],
        }

    def load_records(self, data: dict[str, Any]) -> None:
        """Replace the store's contents with ``data`` (from ``to_records``)."""
        self._members = {}
        self._sizes = {}
        for md in data.get("members", []):
            history: CheckpointHistory[bool] = CheckpointHistory(False)
            for block, value in md["checkpoints"]:
                history.push(int(block), bool(value))
            self._members[(int(md["group_id"]), md["address"])] = history
        for sd in data.get("sizes", []):
            sizes: CheckpointHistory[int] = CheckpointHistory(0)
            for block, value in sd["checkpoints"]:
                sizes.push(int(block), int(value))
            self._sizes[int(sd["group_id"])] = sizes

    @classmethod
    def from_records(cls, data: dict[str, Any]) -> CheckpointStore:
        store = cls()
        store.load_records(data)
        return store

"""Undo log — compensation records for in-memory store mutations.

Stores attached to a log push one undo callable per mutation they make. A
transaction remembers the log length on entry; rolling back pops and runs
the callables recorded since then, newest first. A failed call therefore
costs time in proportion to what it touched, not to the total state.
"""

from __future__ import annotations

from typing import Callable, Optional

Undo = Callable[[], None]


class UndoLog:
    """Stack of undo callables."""

    def __init__(self) -> None:
        self._entries: list[Undo] = []

    def __len__(self) -> int:
        return len(self._entries)

    def record(self, undo: Undo) -> None:
        self._entries.append(undo)

    def mark(self) -> int:
        return len(self._entries)

    def rollback(self, mark: int = 0) -> None:
        """Run and discard every undo recorded after ``mark``, newest first."""
        while len(self._entries) > mark:
            self._entries.pop()()

    def clear(self) -> None:
        self._entries.clear()


def record(log: Optional[UndoLog], undo: Undo) -> None:
    """Record ``undo`` on ``log`` if the caller is attached to one."""
    if log is not None:
        log.record(undo)

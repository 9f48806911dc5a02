"""Group registry — group identity plus checkpointed membership.

Architecture:
- GroupRegistry assigns group ids and names, and writes membership changes
  to the CheckpointStore at the block the change happens in.
- Permission checks and notifications belong to the service layer. The
  registry never decides who may change a group.

Group ids are a dense sequence starting at 0, incremented only by
``create_group``.
"""

from __future__ import annotations

from typing import Any, Iterable, Optional

from subgovernance.errors import InvalidGroupName, UnknownGroup
from subgovernance.journal import UndoLog, record
from subgovernance.membership.checkpoints import CheckpointStore
from subgovernance.models.group import Group


class GroupRegistry:
    """Creates groups and records membership transitions."""

    def __init__(
        self,
        checkpoints: Optional[CheckpointStore] = None,
        undo: Optional[UndoLog] = None,
    ) -> None:
        self._undo = undo
        self._checkpoints = checkpoints or CheckpointStore(undo=undo)
        self._groups: dict[int, Group] = {}
        self._next_group_id = 0

    @property
    def checkpoints(self) -> CheckpointStore:
        return self._checkpoints

    @property
    def group_count(self) -> int:
        return self._next_group_id

    def create_group(
        self,
        name: str,
        initial_members: Iterable[str],
        block: int,
    ) -> Group:
        """Register a new group and checkpoint its initial members at ``block``.

        Raises:
            InvalidGroupName: If name is empty.
        """
        if not name or not name.strip():
            raise InvalidGroupName(name)

        group = Group(group_id=self._next_group_id, name=name.strip(), created_block=block)
        self._groups[group.group_id] = group
        self._next_group_id += 1
        record(self._undo, lambda: self._drop_group(group.group_id))

        for address in initial_members:
            self._checkpoints.record_membership(group.group_id, address, True, block)
        return group

    def add_addresses(self, addresses: Iterable[str], group_id: int, block: int) -> list[str]:
        """Checkpoint ``addresses`` as members. Returns those that changed."""
        self.get_group(group_id)
        return [
            address for address in addresses
            if self._checkpoints.record_membership(group_id, address, True, block)
        ]

    def remove_addresses(self, addresses: Iterable[str], group_id: int, block: int) -> list[str]:
        """Checkpoint ``addresses`` as non-members. Returns those that changed."""
        self.get_group(group_id)
        return [
            address for address in addresses
            if self._checkpoints.record_membership(group_id, address, False, block)
        ]

    def get_group(self, group_id: int) -> Group:
        group = self._groups.get(group_id)
        if group is None:
            raise UnknownGroup(group_id)
        return group

    def get_group_name(self, group_id: int) -> str:
        return self.get_group(group_id).name

    def is_listed_at_block(self, address: str, group_id: int, block: int) -> bool:
        return self._checkpoints.is_member_at_block(group_id, address, block)

    def is_listed(self, address: str, group_id: int) -> bool:
        return self._checkpoints.is_member(group_id, address)

    def size_at_block(self, group_id: int, block: int) -> int:
        return self._checkpoints.size_at_block(group_id, block)

    def members(self, group_id: int) -> list[str]:
        self.get_group(group_id)
        return self._checkpoints.members(group_id)

    def list_groups(self) -> list[Group]:
        return [self._groups[gid] for gid in sorted(self._groups)]

    def _drop_group(self, group_id: int) -> None:
        del self._groups[group_id]
        self._next_group_id = group_id

    # -- persistence ------------------------------------------------------

    def to_records(self) -> dict[str, Any]:
        return {
            "next_group_id": self._next_group_id,
            "groups": [
                {
                    "group_id": g.group_id,
                    "name": g.name,
                    "created_block": g.created_block,
                }
                for g in self.list_groups()
            ],
            "checkpoints": self._checkpoints.to_records(),
        }

    def load_records(self, data: dict[str, Any]) -> None:
        """Replace registry contents in place with ``data``."""
        self._groups = {
            int(gd["group_id"]): Group(
                group_id=int(gd["group_id"]),
                name=gd["name"],
                created_block=int(gd["created_block"]),
            )
            for gd in data.get("groups", [])
        }
        self._next_group_id = int(data.get("next_group_id", len(self._groups)))
        self._checkpoints.load_records(data.get("checkpoints", {}))

    @classmethod
    def from_records(cls, data: dict[str, Any]) -> GroupRegistry:
        registry = cls()
        registry.load_records(data)
        return registry

"""Group data model.

A group is a named set of addresses that proposes and votes within its own
scope. Identity (id, name) is immutable; membership lives in the checkpoint
store and is mutable through the registry only.
"""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class Group:
    """A registered group.

    STRUCTURAL INVARIANT: no member list on this dataclass. Membership is
    always read from checkpoints at a block, never from a cached set.
    """
    group_id: int
    name: str
    created_block: int

"""Group membership — checkpointed history and the group registry."""

from subgovernance.membership.checkpoints import CheckpointHistory, CheckpointStore
from subgovernance.membership.registry import GroupRegistry

__all__ = ["CheckpointHistory", "CheckpointStore", "GroupRegistry"]

"""Subgovernance — group-scoped, snapshot-based voting for modular DAOs."""

from subgovernance.chain import BlockInfo, ManualChain
from subgovernance.engine.execution import DispatchResult
from subgovernance.models.voting import (
    RATIO_BASE,
    ActionRef,
    VoteOption,
    VotingMode,
    VotingSettings,
    pct_to_ratio,
)
from subgovernance.service import SubgovernanceService

__version__ = "0.1.0"

__all__ = [
    "RATIO_BASE",
    "ActionRef",
    "BlockInfo",
    "DispatchResult",
    "ManualChain",
    "SubgovernanceService",
    "VoteOption",
    "VotingMode",
    "VotingSettings",
    "pct_to_ratio",
]

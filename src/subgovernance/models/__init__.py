"""Core data models for subgroup governance."""

from subgovernance.models.group import Group
from subgovernance.models.voting import (
    RATIO_BASE,
    ActionRef,
    Proposal,
    ProposalParameters,
    ProposalView,
    Tally,
    VoteOption,
    VotingMode,
    VotingSettings,
    apply_ratio_ceiled,
    pct_to_ratio,
)

__all__ = [
    "RATIO_BASE",
    "ActionRef",
    "Group",
    "Proposal",
    "ProposalParameters",
    "ProposalView",
    "Tally",
    "VoteOption",
    "VotingMode",
    "VotingSettings",
    "apply_ratio_ceiled",
    "pct_to_ratio",
]

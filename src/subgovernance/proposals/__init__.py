"""Proposal records and their store."""

from subgovernance.proposals.store import ProposalStore

__all__ = ["ProposalStore"]

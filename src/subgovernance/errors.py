"""Error taxonomy for the governance engine.

Every failure is synchronous and aborts the whole call with no partial state
change. Errors carry their structured context as attributes so callers can
react without parsing messages.
"""

from __future__ import annotations

from typing import Any


class SubgovernanceError(Exception):
    """Base class for all engine errors."""


# -- eligibility ----------------------------------------------------------

class ProposalCreationForbidden(SubgovernanceError):
    """The caller may not create a proposal in this group."""

    def __init__(self, account: str) -> None:
        self.account = account
        super().__init__(f"Proposal creation forbidden for {account}")


class VoteCastForbidden(SubgovernanceError):
    """The account may not cast this vote on this proposal."""

    def __init__(self, proposal_id: int, account: str, option: Any) -> None:
        self.proposal_id = proposal_id
        self.account = account
        self.option = option
        super().__init__(
            f"Vote {getattr(option, 'value', option)} forbidden for {account} "
            f"on proposal {proposal_id}"
        )


class NoVotingPower(SubgovernanceError):
    """The group had no members at the snapshot block."""

    def __init__(self, group_id: int) -> None:
        self.group_id = group_id
        super().__init__(f"Group {group_id} has no voting power at the snapshot block")


# -- temporal / parameter -------------------------------------------------

class DateOutOfBounds(SubgovernanceError):
    """A proposal date falls outside what the settings allow."""

    def __init__(self, limit: int, actual: int) -> None:
        self.limit = limit
        self.actual = actual
        super().__init__(f"Date out of bounds: limit {limit}, got {actual}")


class ProposalNotOpen(SubgovernanceError):
    """The proposal is not accepting votes."""

    def __init__(self, proposal_id: int) -> None:
        self.proposal_id = proposal_id
        super().__init__(f"Proposal {proposal_id} is not open")


class RatioOutOfBounds(SubgovernanceError):
    def __init__(self, limit: int, actual: int) -> None:
        self.limit = limit
        self.actual = actual
        super().__init__(f"Ratio out of bounds: limit {limit}, got {actual}")


class MinDurationOutOfBounds(SubgovernanceError):
    def __init__(self, limit: int, actual: int) -> None:
        self.limit = limit
        self.actual = actual
        super().__init__(f"Minimum duration out of bounds: limit {limit}, got {actual}")


class InvalidGroupName(SubgovernanceError):
    def __init__(self, name: str) -> None:
        self.name = name
        super().__init__(f"Invalid group name: {name!r}")


# -- execution ------------------------------------------------------------

class ProposalExecutionForbidden(SubgovernanceError):
    """The proposal is not executable (policy unmet or already executed)."""

    def __init__(self, proposal_id: int) -> None:
        self.proposal_id = proposal_id
        super().__init__(f"Execution forbidden for proposal {proposal_id}")


class ActionFailed(SubgovernanceError):
    """A dispatched action failed and its failure was not allowed."""

    def __init__(self, index: int, reason: str = "") -> None:
        self.index = index
        self.reason = reason
        detail = f": {reason}" if reason else ""
        super().__init__(f"Action {index} failed{detail}")


class TooManyActions(SubgovernanceError):
    def __init__(self, count: int, limit: int) -> None:
        self.count = count
        self.limit = limit
        super().__init__(f"Too many actions: {count} > {limit}")


# -- unknown entity -------------------------------------------------------

class UnknownGroup(SubgovernanceError, LookupError):
    def __init__(self, group_id: int) -> None:
        self.group_id = group_id
        super().__init__(f"Unknown group: {group_id}")


class UnknownProposal(SubgovernanceError, LookupError):
    def __init__(self, proposal_id: int) -> None:
        self.proposal_id = proposal_id
        super().__init__(f"Unknown proposal: {proposal_id}")


# -- authorization --------------------------------------------------------

class Unauthorized(SubgovernanceError):
    """The permission collaborator refused (where, who, permission_id)."""

    def __init__(self, where: str, who: str, permission_id: str) -> None:
        self.where = where
        self.who = who
        self.permission_id = permission_id
        super().__init__(f"{who} lacks {permission_id} on {where}")

"""Voting data models — settings, proposal parameters, tallies and actions.

Ratios are integers over RATIO_BASE (parts per million), so threshold and
quorum comparisons are exact integer arithmetic with no float rounding.

A proposal's parameters are copied from the voting settings at creation time
and never re-evaluated. Only ``open``, ``executed``, ``tally`` and ``voters``
mutate over its life.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from typing import Any, Optional

RATIO_BASE = 10**6

MIN_DURATION_FLOOR = 60 * 60  # one hour
MIN_DURATION_CEILING = 365 * 24 * 60 * 60  # one year


def pct_to_ratio(pct: float | int) -> int:
    """Convert a percentage (e.g. 50) to a RATIO_BASE ratio (500_000)."""
    return int(round(pct * RATIO_BASE / 100))


def apply_ratio_ceiled(value: int, ratio: int) -> int:
    """Return ``ceil(value * ratio / RATIO_BASE)`` using integer math."""
    return -(-value * ratio // RATIO_BASE)


class VoteOption(str, enum.Enum):
    """A voter's choice. NONE means "has not voted"."""
    NONE = "none"
    ABSTAIN = "abstain"
    YES = "yes"
    NO = "no"


class VotingMode(str, enum.Enum):
    """How a proposal treats repeat votes and execution timing.

    STANDARD: one vote per voter, execution only after the end date.
    EARLY_EXECUTION: one vote per voter, execution allowed as soon as the
        outcome can no longer change.
    VOTE_REPLACEMENT: voters may change their vote until the end date,
        execution only after the end date.
    """
    STANDARD = "standard"
    EARLY_EXECUTION = "early_execution"
    VOTE_REPLACEMENT = "vote_replacement"


@dataclass(frozen=True)
class VotingSettings:
    """Plugin-wide voting configuration.

    Validation lives in ``engine.policy.validate_settings`` so that a bad
    settings update is rejected with a typed error before anything is stored.
    """
    voting_mode: VotingMode
    support_threshold: int
    min_participation: int
    min_duration: int
    min_proposer_voting_power: int = 0

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> VotingSettings:
        """Build settings from a config mapping.

        Accepts either raw ratios (``support_threshold``) or percentages
        (``support_threshold_pct``) for the two ratio fields.
        """
        def _ratio(key: str) -> int:
            if f"{key}_pct" in data:
                return pct_to_ratio(data[f"{key}_pct"])
            return int(data[key])

        return cls(
            voting_mode=VotingMode(data.get("voting_mode", VotingMode.STANDARD.value)),
            support_threshold=_ratio("support_threshold"),
            min_participation=_ratio("min_participation"),
            min_duration=int(data["min_duration"]),
            min_proposer_voting_power=int(data.get("min_proposer_voting_power", 0)),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "voting_mode": self.voting_mode.value,
            "support_threshold": self.support_threshold,
            "min_participation": self.min_participation,
            "min_duration": self.min_duration,
            "min_proposer_voting_power": self.min_proposer_voting_power,
        }


@dataclass(frozen=True)
class ActionRef:
    """An action a proposal asks the DAO to run.

    Opaque to the voting engine — only counted and forwarded.
    """
    target: str
    value: int = 0
    payload: bytes = b""

    def to_dict(self) -> dict[str, Any]:
        return {"target": self.target, "value": self.value, "payload": self.payload.hex()}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ActionRef:
        return cls(
            target=data["target"],
            value=int(data.get("value", 0)),
            payload=bytes.fromhex(data.get("payload", "")),
        )


@dataclass(frozen=True)
class ProposalParameters:
    """Parameters fixed when a proposal is created.

    Invariants:
    - end_date == start_date + min_duration of the settings in force
    - snapshot_block is never re-evaluated
    - total_voting_power is the group size pinned at snapshot_block
    """
    voting_mode: VotingMode
    support_threshold: int
    min_participation: int
    start_date: int
    end_date: int
    snapshot_block: int
    total_voting_power: int

    @property
    def min_voting_power(self) -> int:
        """Votes needed to meet the participation quorum."""
        return apply_ratio_ceiled(self.total_voting_power, self.min_participation)


@dataclass
class Tally:
    """Vote counters. Each voter sits in at most one bucket."""
    yes: int = 0
    no: int = 0
    abstain: int = 0

    @property
    def total(self) -> int:
        return self.yes + self.no + self.abstain

    def add(self, option: VoteOption) -> None:
        if option == VoteOption.YES:
            self.yes += 1
        elif option == VoteOption.NO:
            self.no += 1
        elif option == VoteOption.ABSTAIN:
            self.abstain += 1

    def remove(self, option: VoteOption) -> None:
        if option == VoteOption.YES:
            self.yes -= 1
        elif option == VoteOption.NO:
            self.no -= 1
        elif option == VoteOption.ABSTAIN:
            self.abstain -= 1


@dataclass
class Proposal:
    """A group-scoped proposal record. Never deleted.

    ``executed`` is terminal: once set, ``open`` is False for good.
    """
    proposal_id: int
    group_id: int
    creator: str
    metadata: bytes
    parameters: ProposalParameters
    actions: tuple[ActionRef, ...] = ()
    allow_failure_map: int = 0
    open: bool = True
    executed: bool = False
    tally: Tally = field(default_factory=Tally)
    voters: dict[str, VoteOption] = field(default_factory=dict)

    def vote_of(self, account: str) -> VoteOption:
        return self.voters.get(account, VoteOption.NONE)


@dataclass(frozen=True)
class ProposalView:
    """Read-side snapshot of a proposal.

    ``open`` here is the read-time interpretation: the stored flag AND the
    current time inside [start_date, end_date). A proposal past its end date
    that never executed reads as closed (expired).
    """
    proposal_id: int
    group_id: int
    creator: str
    metadata: bytes
    open: bool
    executed: bool
    parameters: ProposalParameters
    tally: Tally
    actions: tuple[ActionRef, ...]
    allow_failure_map: int
    expired: bool = False
    voters: Optional[dict[str, VoteOption]] = None

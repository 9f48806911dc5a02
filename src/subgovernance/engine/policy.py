"""Voting policy — pure decision logic for proposing, voting and executing.

Nothing here reads or writes stores. Callers pass in the facts (membership
at the snapshot block, current time, the proposal record) and get a decision.

Each voting mode's full contract is one row in ``MODE_RULES``. Every decision
point looks the row up once, so adding a mode means adding a row, and a
missing row fails loudly with KeyError instead of falling through.

Threshold math (all integers over RATIO_BASE):
- support:        (BASE - threshold) * yes > threshold * no
- early support:  same, with no replaced by the worst case
                  total - yes - abstain (every remaining voter votes no)
- participation:  yes + no + abstain >= ceil(total * min_participation / BASE)
"""

from __future__ import annotations

from dataclasses import dataclass

from subgovernance.errors import MinDurationOutOfBounds, RatioOutOfBounds
from subgovernance.models.voting import (
    MIN_DURATION_CEILING,
    MIN_DURATION_FLOOR,
    RATIO_BASE,
    Proposal,
    ProposalParameters,
    Tally,
    VoteOption,
    VotingMode,
    VotingSettings,
)


@dataclass(frozen=True)
class ModeRules:
    """What a voting mode permits."""
    vote_replacement: bool
    early_execution: bool


MODE_RULES: dict[VotingMode, ModeRules] = {
    VotingMode.STANDARD: ModeRules(vote_replacement=False, early_execution=False),
    VotingMode.EARLY_EXECUTION: ModeRules(vote_replacement=False, early_execution=True),
    VotingMode.VOTE_REPLACEMENT: ModeRules(vote_replacement=True, early_execution=False),
}


def validate_settings(settings: VotingSettings) -> None:
    """Reject settings whose ratios or duration are out of range.

    Raises:
        RatioOutOfBounds: support threshold >= 100% or participation > 100%.
        MinDurationOutOfBounds: duration under an hour or over a year.
        ValueError: negative proposer voting power.
    """
    if settings.voting_mode not in MODE_RULES:
        raise ValueError(f"Unsupported voting mode: {settings.voting_mode}")
    if not 0 <= settings.support_threshold <= RATIO_BASE - 1:
        raise RatioOutOfBounds(RATIO_BASE - 1, settings.support_threshold)
    if not 0 <= settings.min_participation <= RATIO_BASE:
        raise RatioOutOfBounds(RATIO_BASE, settings.min_participation)
    if settings.min_duration < MIN_DURATION_FLOOR:
        raise MinDurationOutOfBounds(MIN_DURATION_FLOOR, settings.min_duration)
    if settings.min_duration > MIN_DURATION_CEILING:
        raise MinDurationOutOfBounds(MIN_DURATION_CEILING, settings.min_duration)
    if settings.min_proposer_voting_power < 0:
        raise ValueError("min_proposer_voting_power cannot be negative")


def can_propose(settings: VotingSettings, member_at_snapshot: bool) -> bool:
    """Zero proposer power lets anyone propose; otherwise membership is required."""
    if settings.min_proposer_voting_power == 0:
        return True
    return member_at_snapshot


def is_accepting_votes(proposal: Proposal, now: int) -> bool:
    """Open flag set and ``start_date <= now < end_date``."""
    params = proposal.parameters
    return (
        proposal.open
        and not proposal.executed
        and params.start_date <= now < params.end_date
    )


def is_expired(proposal: Proposal, now: int) -> bool:
    return not proposal.executed and now >= proposal.parameters.end_date


def can_vote(
    proposal: Proposal,
    account: str,
    option: VoteOption,
    member_at_snapshot: bool,
    now: int,
) -> bool:
    """Whether ``account`` may cast ``option`` on ``proposal`` right now."""
    if not is_accepting_votes(proposal, now):
        return False
    if option == VoteOption.NONE:
        return False
    if not member_at_snapshot:
        return False
    rules = MODE_RULES[proposal.parameters.voting_mode]
    if proposal.vote_of(account) != VoteOption.NONE and not rules.vote_replacement:
        return False
    return True


def is_support_threshold_reached(params: ProposalParameters, tally: Tally) -> bool:
    threshold = params.support_threshold
    return (RATIO_BASE - threshold) * tally.yes > threshold * tally.no


def is_support_threshold_reached_early(params: ProposalParameters, tally: Tally) -> bool:
    """Support holds even if every voter who has not voted yes or abstain votes no."""
    threshold = params.support_threshold
    worst_case_no = params.total_voting_power - tally.yes - tally.abstain
    return (RATIO_BASE - threshold) * tally.yes > threshold * worst_case_no


def is_min_participation_reached(params: ProposalParameters, tally: Tally) -> bool:
    return tally.total >= params.min_voting_power


def can_execute(proposal: Proposal, now: int) -> bool:
    """Terminal executability of ``proposal`` at ``now``.

    Before the end date only EARLY_EXECUTION proposals may pass, and only
    when the outcome can no longer change. From the end date on, every mode
    uses the final support and participation checks.
    """
    if proposal.executed:
        return False

    params = proposal.parameters
    tally = proposal.tally
    rules = MODE_RULES[params.voting_mode]

    if now < params.end_date:
        if not rules.early_execution or now < params.start_date:
            return False
        return (
            is_support_threshold_reached_early(params, tally)
            and is_min_participation_reached(params, tally)
        )

    return (
        is_support_threshold_reached(params, tally)
        and is_min_participation_reached(params, tally)
    )

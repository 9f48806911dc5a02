"""Tests for proposal creation — snapshot, eligibility, dates and initial votes."""

from __future__ import annotations

import pytest

from builders import ONE_HOUR, OWNER, make_service, make_settings
from subgovernance.errors import (
    DateOutOfBounds,
    NoVotingPower,
    ProposalCreationForbidden,
    ProposalNotOpen,
    UnknownGroup,
    UnknownProposal,
    VoteCastForbidden,
)
from subgovernance.models.voting import ActionRef, VoteOption, VotingMode, pct_to_ratio
from subgovernance.persistence.event_log import EventKind
from subgovernance.service import SubgovernanceService


class TestProposalCreationEligibility:
    def test_proposer_must_be_member_when_power_required(self) -> None:
        service = make_service(make_settings(min_proposer_voting_power=1))
        service.create_group(OWNER, "NFT collectors", ["alice"])
        service.create_group(OWNER, "Token collectors", ["bob"])

        with pytest.raises(ProposalCreationForbidden) as exc:
            service.create_proposal("bob", b"meta", [], group_id=0)
        assert exc.value.account == "bob"

        with pytest.raises(ProposalCreationForbidden) as exc:
            service.create_proposal("alice", b"meta", [], group_id=1)
        assert exc.value.account == "alice"

        assert service.create_proposal("alice", b"meta", [], group_id=0) == 0
        assert service.create_proposal("bob", b"meta", [], group_id=1) == 1

    def test_anyone_may_propose_with_zero_power(self, service: SubgovernanceService) -> None:
        service.create_group(OWNER, "g", ["alice"])
        assert service.create_proposal("outsider", b"", [], group_id=0) == 0

    def test_membership_in_creation_block_does_not_count(self) -> None:
        """The snapshot is the previous block, so same-block joins don't qualify."""
        service = make_service(make_settings(min_proposer_voting_power=1))
        service.create_group(OWNER, "g", ["alice"])
        service.chain.automine = False
        service.chain.mine()
        service.add_addresses(OWNER, ["bob"], 0)
        with pytest.raises(ProposalCreationForbidden):
            service.create_proposal("bob", b"", [], group_id=0)

    def test_unknown_group(self, service: SubgovernanceService) -> None:
        with pytest.raises(UnknownGroup):
            service.create_proposal("alice", b"", [], group_id=4)

    def test_empty_group_has_no_voting_power(self, service: SubgovernanceService) -> None:
        service.create_group(OWNER, "g", [])
        with pytest.raises(NoVotingPower):
            service.create_proposal("alice", b"", [], group_id=0)
        assert service.proposal_count == 0


class TestProposalRecord:
    def test_create_without_vote(
        self, service: SubgovernanceService, dummy_actions: list[ActionRef],
    ) -> None:
        service.create_group(OWNER, "NFT collectors", ["alice"])
        pid = service.create_proposal(
            "alice", b"0x123456789", dummy_actions, allow_failure_map=1, group_id=0,
        )
        block = service.chain.latest

        assert service.event_log.kinds()[-1] == EventKind.PROPOSAL_CREATED
        assert not service.event_log.events(EventKind.VOTE_CAST)

        proposal = service.get_proposal(pid)
        assert proposal.open is True
        assert proposal.executed is False
        assert proposal.allow_failure_map == 1
        assert proposal.parameters.snapshot_block == block.number - 1
        assert proposal.parameters.start_date == block.timestamp
        assert proposal.parameters.end_date == block.timestamp + ONE_HOUR
        assert proposal.parameters.support_threshold == pct_to_ratio(50)
        assert proposal.parameters.total_voting_power == 1
        assert proposal.tally.yes == 0
        assert proposal.tally.no == 0
        assert proposal.actions == tuple(dummy_actions)
        assert proposal.metadata == b"0x123456789"

        assert service.can_vote(pid, "alice", VoteOption.YES) is True
        assert service.can_vote(pid, "stranger", VoteOption.YES) is False
        assert service.can_vote(pid + 1, "alice", VoteOption.YES) is False

    def test_create_with_vote_in_each_group(
        self, service: SubgovernanceService, dummy_actions: list[ActionRef],
    ) -> None:
        service.create_group(OWNER, "NFT collectors", ["alice"])
        service.create_group(OWNER, "Token collectors", ["bob"])

        service.create_proposal(
            "alice", b"", dummy_actions, vote_option=VoteOption.YES, group_id=0,
        )
        assert service.event_log.kinds()[-2:] == [
            EventKind.PROPOSAL_CREATED,
            EventKind.VOTE_CAST,
        ]
        with pytest.raises(VoteCastForbidden):
            service.vote("bob", 0, VoteOption.YES)

        service.create_proposal(
            "bob", b"", dummy_actions, vote_option=VoteOption.YES, group_id=1,
        )
        with pytest.raises(VoteCastForbidden):
            service.vote("alice", 1, VoteOption.YES)

        assert service.get_proposal(0).tally.yes == 1
        assert service.get_proposal(1).tally.yes == 1

    def test_list_proposals_all_and_by_group(self, service: SubgovernanceService) -> None:
        service.create_group(OWNER, "a", ["alice"])
        service.create_group(OWNER, "b", ["bob"])
        service.create_proposal("alice", b"", [], group_id=0)
        service.create_proposal("bob", b"", [], group_id=1, vote_option=VoteOption.YES)
        service.create_proposal("alice", b"", [], group_id=0)

        assert [v.proposal_id for v in service.list_proposals()] == [0, 1, 2]
        assert [v.proposal_id for v in service.list_proposals(group_id=0)] == [0, 2]
        by_group = service.list_proposals(group_id=1)
        assert [v.group_id for v in by_group] == [1]
        assert by_group[0].tally.yes == 1
        assert service.list_proposals(group_id=7) == []

    def test_metadata_string_is_encoded(self, service: SubgovernanceService) -> None:
        service.create_group(OWNER, "g", ["alice"])
        pid = service.create_proposal("alice", "ipfs://meta", [], group_id=0)
        assert service.get_proposal(pid).metadata == b"ipfs://meta"

    def test_parameters_pinned_against_settings_update(
        self, service: SubgovernanceService,
    ) -> None:
        service.create_group(OWNER, "g", ["alice"])
        pid = service.create_proposal("alice", b"", [], group_id=0)
        service.update_voting_settings(OWNER, make_settings(
            mode=VotingMode.STANDARD, support_pct=90, min_duration=2 * ONE_HOUR,
        ))
        params = service.get_proposal(pid).parameters
        assert params.voting_mode == VotingMode.EARLY_EXECUTION
        assert params.support_threshold == pct_to_ratio(50)

        pid2 = service.create_proposal("alice", b"", [], group_id=0)
        params2 = service.get_proposal(pid2).parameters
        assert params2.voting_mode == VotingMode.STANDARD
        assert params2.end_date - params2.start_date == 2 * ONE_HOUR

    def test_total_voting_power_pinned_at_snapshot(
        self, service: SubgovernanceService,
    ) -> None:
        service.create_group(OWNER, "g", ["alice", "bob"])
        pid = service.create_proposal("alice", b"", [], group_id=0)
        service.add_addresses(OWNER, ["carol", "dave"], 0)
        assert service.total_voting_power(pid) == 2

    def test_unknown_proposal(self, service: SubgovernanceService) -> None:
        with pytest.raises(UnknownProposal):
            service.get_proposal(0)
        with pytest.raises(UnknownProposal):
            service.vote("alice", 0, VoteOption.YES)


class TestProposalDates:
    def test_start_in_past_rejected(self, service: SubgovernanceService) -> None:
        service.create_group(OWNER, "g", ["alice"])
        past = service.chain.latest.timestamp - 10
        with pytest.raises(DateOutOfBounds) as exc:
            service.create_proposal("alice", b"", [], start_date=past, group_id=0)
        assert exc.value.actual == past

    def test_end_must_equal_start_plus_min_duration(
        self, service: SubgovernanceService,
    ) -> None:
        service.create_group(OWNER, "g", ["alice"])
        start = service.chain.latest.timestamp + 100
        with pytest.raises(DateOutOfBounds) as exc:
            service.create_proposal(
                "alice", b"", [], start_date=start, end_date=start + ONE_HOUR + 1, group_id=0,
            )
        assert exc.value.limit == start + ONE_HOUR

        with pytest.raises(DateOutOfBounds):
            service.create_proposal(
                "alice", b"", [], start_date=start, end_date=start + ONE_HOUR - 1, group_id=0,
            )

        pid = service.create_proposal(
            "alice", b"", [], start_date=start, end_date=start + ONE_HOUR, group_id=0,
        )
        assert service.get_proposal(pid).parameters.end_date == start + ONE_HOUR

    def test_future_start_not_open_until_start(
        self, service: SubgovernanceService,
    ) -> None:
        service.create_group(OWNER, "g", ["alice"])
        start = service.chain.latest.timestamp + 100
        pid = service.create_proposal("alice", b"", [], start_date=start, group_id=0)

        assert service.get_proposal(pid).open is False
        with pytest.raises(ProposalNotOpen):
            service.vote("alice", pid, VoteOption.YES)

        service.chain.advance_time(100)
        service.vote("alice", pid, VoteOption.YES)
        assert service.get_proposal(pid).tally.yes == 1

    def test_expired_proposal_reads_closed(self, service: SubgovernanceService) -> None:
        service.create_group(OWNER, "g", ["alice", "bob"])
        pid = service.create_proposal("alice", b"", [], group_id=0)
        service.chain.advance_time(ONE_HOUR)

        view = service.get_proposal(pid)
        assert view.open is False
        assert view.expired is True
        with pytest.raises(ProposalNotOpen):
            service.vote("bob", pid, VoteOption.NO)


class TestInitialVoteRollback:
    def test_forbidden_initial_vote_creates_nothing(
        self, service: SubgovernanceService,
    ) -> None:
        service.create_group(OWNER, "g", ["alice"])
        events_before = service.event_log.count

        with pytest.raises(VoteCastForbidden) as exc:
            service.create_proposal(
                "outsider", b"", [], vote_option=VoteOption.YES, group_id=0,
            )
        assert exc.value.account == "outsider"
        assert service.proposal_count == 0
        assert service.event_log.count == events_before

        # The id is not burned by the failed attempt.
        assert service.create_proposal("alice", b"", [], group_id=0) == 0

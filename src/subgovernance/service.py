"""Subgovernance service — unified facade for group-scoped DAO voting.

This is the primary interface for programmatic access. It orchestrates:
- Group registry (create groups, add/remove members, historical lookups)
- Proposal lifecycle (create, vote, execute)
- Voting policy (eligibility, support/participation math, voting modes)
- Execution gate (at-most-once dispatch to the DAO executor)
- Notifications (event log) and optional JSON persistence

Every public mutating call is one transaction. The stores record an undo
entry for each change they make; if the call raises, the entries recorded
since it began are run back and its notifications are discarded, so a call
either commits fully or leaves no trace. Calls made re-entrantly while
actions are being dispatched open a nested transaction in the same block
with its own undo mark, the way a sub-call reverts independently of its
parent.

Once a call has committed in memory its actions have already run, so a
failure to write the event log or the state file afterwards is not rolled
back. The service flags itself as persistence-degraded instead and keeps
serving.

Usage:
    permissions = PermissionRegistry()
    permissions.grant("subgovernance", "alice", CREATE_GROUP_PERMISSION)
    permissions.grant("dao", "subgovernance", EXECUTE_PERMISSION)
    service = SubgovernanceService(settings, permissions=permissions)

    group_id = service.create_group("alice", "Builders", ["alice", "bob"])
    pid = service.create_proposal("alice", b"meta", actions, group_id=group_id,
                                  vote_option=VoteOption.YES)
    service.vote("bob", pid, VoteOption.YES)
    service.execute("bob", pid)
"""

from __future__ import annotations

from contextlib import contextmanager
from typing import Any, Iterable, Iterator, Optional, Sequence

import structlog

from subgovernance.chain import BlockInfo, Chain, ManualChain
from subgovernance.dao.executor import ActionExecutor
from subgovernance.dao.permissions import (
    CREATE_GROUP_PERMISSION,
    UPDATE_ADDRESSES_PERMISSION,
    UPDATE_VOTING_SETTINGS_PERMISSION,
    PermissionChecker,
    PermissionRegistry,
    require,
)
from subgovernance.engine import policy
from subgovernance.engine.execution import DispatchResult, Dispatcher, ExecutionGate
from subgovernance.errors import (
    DateOutOfBounds,
    NoVotingPower,
    ProposalCreationForbidden,
    ProposalNotOpen,
    VoteCastForbidden,
)
from subgovernance.journal import UndoLog
from subgovernance.membership.registry import GroupRegistry
from subgovernance.models.group import Group
from subgovernance.models.voting import (
    ActionRef,
    ProposalParameters,
    ProposalView,
    Tally,
    VoteOption,
    VotingSettings,
)
from subgovernance.persistence.event_log import EventKind, EventLog, EventRecord
from subgovernance.persistence.state_store import StateStore
from subgovernance.proposals.store import ProposalStore

logger = structlog.get_logger(__name__)

DEFAULT_PLUGIN_ADDRESS = "subgovernance"
DEFAULT_DAO_ADDRESS = "dao"


class SubgovernanceService:
    """Group-scoped voting engine facade.

    Args:
        settings: Voting settings in force for new proposals.
        address: This plugin's principal, used as the permission resource
            and as the caller the DAO sees during dispatch.
        dao_address: The DAO principal that owns EXECUTE_PERMISSION.
        chain: Block/time source. Defaults to an automining ManualChain.
        permissions: Permission collaborator. Defaults to an empty registry.
        dispatcher: Execution collaborator. Defaults to an ActionExecutor
            over ``permissions`` with no handlers registered.
        event_log: Notification sink. Defaults to an in-memory log.
        state_store: If given, state is saved after every committed call.
    """

    def __init__(
        self,
        settings: VotingSettings,
        address: str = DEFAULT_PLUGIN_ADDRESS,
        dao_address: str = DEFAULT_DAO_ADDRESS,
        chain: Optional[Chain] = None,
        permissions: Optional[PermissionChecker] = None,
        dispatcher: Optional[Dispatcher] = None,
        event_log: Optional[EventLog] = None,
        state_store: Optional[StateStore] = None,
    ) -> None:
        policy.validate_settings(settings)
        self._settings = settings
        self.address = address
        self.dao_address = dao_address
        self._chain: Chain = chain if chain is not None else ManualChain()
        self._permissions: PermissionChecker = (
            permissions if permissions is not None else PermissionRegistry()
        )
        if dispatcher is None:
            dispatcher = ActionExecutor(self._permissions, dao_address, caller=address)
        self._dispatcher = dispatcher
        self._event_log = event_log if event_log is not None else EventLog()
        self._state_store = state_store

        self._undo = UndoLog()
        self._registry = GroupRegistry(undo=self._undo)
        self._proposals = ProposalStore(undo=self._undo)
        self._gate = ExecutionGate(self._proposals, dispatcher)

        self._event_counter = self._event_log.count
        self._tx_depth = 0
        self._tx_block: Optional[BlockInfo] = None
        self._pending: list[tuple[EventKind, str, dict[str, Any]]] = []
        self._persistence_degraded = False

    # ------------------------------------------------------------------
    # Collaborators and settings
    # ------------------------------------------------------------------

    @property
    def chain(self) -> Chain:
        return self._chain

    @property
    def permissions(self) -> PermissionChecker:
        return self._permissions

    @property
    def dispatcher(self) -> Dispatcher:
        return self._dispatcher

    @property
    def event_log(self) -> EventLog:
        return self._event_log

    @property
    def persistence_degraded(self) -> bool:
        """True once a committed change failed to reach the event log or state file."""
        return self._persistence_degraded

    @property
    def voting_settings(self) -> VotingSettings:
        return self._settings

    def update_voting_settings(self, caller: str, settings: VotingSettings) -> None:
        """Replace the settings used for proposals created from now on.

        Existing proposals keep the parameters copied at their creation.
        """
        with self._transaction():
            require(self._permissions, self.address, caller, UPDATE_VOTING_SETTINGS_PERMISSION)
            policy.validate_settings(settings)
            previous = self._settings
            self._settings = settings
            self._undo.record(lambda: setattr(self, "_settings", previous))
            self._emit(EventKind.VOTING_SETTINGS_UPDATED, caller, settings.to_dict())
            logger.info("voting_settings_updated", **settings.to_dict())

    # ------------------------------------------------------------------
    # Groups
    # ------------------------------------------------------------------

    def create_group(
        self,
        caller: str,
        name: str,
        initial_members: Iterable[str] = (),
    ) -> int:
        """Create a group; initial members are checkpointed at this block."""
        with self._transaction() as block:
            require(self._permissions, self.address, caller, CREATE_GROUP_PERMISSION)
            members = list(dict.fromkeys(initial_members))
            group = self._registry.create_group(name, members, block.number)
            self._emit(EventKind.GROUP_CREATED, caller, {
                "group_id": group.group_id,
                "name": group.name,
            })
            if members:
                self._emit(EventKind.MEMBERS_ADDED, caller, {
                    "group_id": group.group_id,
                    "members": members,
                })
            logger.info(
                "group_created",
                group_id=group.group_id,
                name=group.name,
                members=len(members),
                block=block.number,
            )
        return group.group_id

    def add_addresses(self, caller: str, addresses: Sequence[str], group_id: int) -> None:
        """Make ``addresses`` members of ``group_id`` from this block on."""
        with self._transaction() as block:
            require(self._permissions, self.address, caller, UPDATE_ADDRESSES_PERMISSION)
            addresses = list(addresses)
            changed = self._registry.add_addresses(addresses, group_id, block.number)
            self._emit(EventKind.MEMBERS_ADDED, caller, {
                "group_id": group_id,
                "members": addresses,
            })
            logger.info(
                "members_added",
                group_id=group_id,
                requested=len(addresses),
                changed=len(changed),
                block=block.number,
            )

    def remove_addresses(self, caller: str, addresses: Sequence[str], group_id: int) -> None:
        """Revoke membership of ``addresses`` in ``group_id`` from this block on."""
        with self._transaction() as block:
            require(self._permissions, self.address, caller, UPDATE_ADDRESSES_PERMISSION)
            addresses = list(addresses)
            changed = self._registry.remove_addresses(addresses, group_id, block.number)
            self._emit(EventKind.MEMBERS_REMOVED, caller, {
                "group_id": group_id,
                "members": addresses,
            })
            logger.info(
                "members_removed",
                group_id=group_id,
                requested=len(addresses),
                changed=len(changed),
                block=block.number,
            )

    def get_group(self, group_id: int) -> Group:
        return self._registry.get_group(group_id)

    def get_group_name(self, group_id: int) -> str:
        return self._registry.get_group_name(group_id)

    @property
    def group_count(self) -> int:
        return self._registry.group_count

    def list_groups(self) -> list[Group]:
        return self._registry.list_groups()

    def members(self, group_id: int) -> list[str]:
        return self._registry.members(group_id)

    def is_listed_at_block(self, address: str, group_id: int, block: int) -> bool:
        return self._registry.is_listed_at_block(address, group_id, block)

    def is_listed(self, address: str, group_id: int) -> bool:
        return self._registry.is_listed(address, group_id)

    def group_size_at_block(self, group_id: int, block: int) -> int:
        return self._registry.size_at_block(group_id, block)

    def membership_history(self, address: str, group_id: int) -> list[tuple[int, bool]]:
        return self._registry.checkpoints.history(group_id, address)

    # ------------------------------------------------------------------
    # Proposals
    # ------------------------------------------------------------------

    def create_proposal(
        self,
        caller: str,
        metadata: bytes | str = b"",
        actions: Sequence[ActionRef] = (),
        allow_failure_map: int = 0,
        start_date: int = 0,
        end_date: int = 0,
        vote_option: VoteOption = VoteOption.NONE,
        try_early_execution: bool = False,
        group_id: int = 0,
    ) -> int:
        """Create a proposal scoped to ``group_id``.

        The snapshot block is the block before this one, so nobody can add
        themselves to a group and propose against it in the same block.

        Raises:
            UnknownGroup: No such group.
            ProposalCreationForbidden: Proposer power is required and the
                caller was not a member at the snapshot block.
            NoVotingPower: The group had no members at the snapshot block.
            DateOutOfBounds: Start in the past, or end other than
                start + min_duration.
            VoteCastForbidden / ProposalNotOpen: The initial vote was refused;
                the proposal is not created.
        """
        if isinstance(metadata, str):
            metadata = metadata.encode("utf-8")

        with self._transaction() as block:
            snapshot_block = block.number - 1
            self._registry.get_group(group_id)

            member = self._registry.is_listed_at_block(caller, group_id, snapshot_block)
            if not policy.can_propose(self._settings, member):
                raise ProposalCreationForbidden(caller)

            total_voting_power = self._registry.size_at_block(group_id, snapshot_block)
            if total_voting_power == 0:
                raise NoVotingPower(group_id)

            start, end = self._validate_dates(start_date, end_date, block.timestamp)
            parameters = ProposalParameters(
                voting_mode=self._settings.voting_mode,
                support_threshold=self._settings.support_threshold,
                min_participation=self._settings.min_participation,
                start_date=start,
                end_date=end,
                snapshot_block=snapshot_block,
                total_voting_power=total_voting_power,
            )
            proposal = self._proposals.create(
                group_id=group_id,
                creator=caller,
                metadata=metadata,
                parameters=parameters,
                actions=actions,
                allow_failure_map=allow_failure_map,
            )
            self._emit(EventKind.PROPOSAL_CREATED, caller, {
                "proposal_id": proposal.proposal_id,
                "group_id": group_id,
                "creator": caller,
                "metadata": metadata.hex(),
                "start_date": start,
                "end_date": end,
                "snapshot_block": snapshot_block,
                "actions": [a.to_dict() for a in proposal.actions],
                "allow_failure_map": allow_failure_map,
            })
            logger.info(
                "proposal_created",
                proposal_id=proposal.proposal_id,
                group_id=group_id,
                creator=caller,
                snapshot_block=snapshot_block,
                total_voting_power=total_voting_power,
            )

            if vote_option != VoteOption.NONE:
                self._vote(proposal.proposal_id, caller, vote_option, try_early_execution, block)

        return proposal.proposal_id

    def _validate_dates(self, start_date: int, end_date: int, now: int) -> tuple[int, int]:
        if start_date == 0:
            start_date = now
        elif start_date < now:
            raise DateOutOfBounds(now, start_date)

        expected_end = start_date + self._settings.min_duration
        if end_date == 0:
            end_date = expected_end
        elif end_date != expected_end:
            raise DateOutOfBounds(expected_end, end_date)
        return start_date, end_date

    def vote(
        self,
        caller: str,
        proposal_id: int,
        option: VoteOption,
        try_early_execution: bool = False,
    ) -> None:
        """Cast (or, under vote replacement, change) ``caller``'s vote.

        Raises:
            UnknownProposal: No such proposal.
            ProposalNotOpen: The proposal is not accepting votes.
            VoteCastForbidden: Not a member at the snapshot block, NONE as
                the option, or a repeat vote outside vote replacement.
        """
        with self._transaction() as block:
            self._vote(proposal_id, caller, option, try_early_execution, block)

    def _vote(
        self,
        proposal_id: int,
        voter: str,
        option: VoteOption,
        try_early_execution: bool,
        block: BlockInfo,
    ) -> None:
        proposal = self._proposals.get(proposal_id)
        if not policy.is_accepting_votes(proposal, block.timestamp):
            raise ProposalNotOpen(proposal_id)

        member = self._registry.is_listed_at_block(
            voter, proposal.group_id, proposal.parameters.snapshot_block
        )
        if not policy.can_vote(proposal, voter, option, member, block.timestamp):
            raise VoteCastForbidden(proposal_id, voter, option)

        previous = self._proposals.record_vote(proposal_id, voter, option)
        self._emit(EventKind.VOTE_CAST, voter, {
            "proposal_id": proposal_id,
            "voter": voter,
            "option": option.value,
            "replaced": previous.value,
            "voting_power": 1,
        })
        logger.info(
            "vote_cast",
            proposal_id=proposal_id,
            voter=voter,
            option=option.value,
            replaced=previous.value,
        )

        rules = policy.MODE_RULES[proposal.parameters.voting_mode]
        if (
            try_early_execution
            and rules.early_execution
            and self._gate.can_execute(proposal_id, block.timestamp)
        ):
            self._execute(proposal_id, voter, block)

    def can_vote(self, proposal_id: int, account: str, option: VoteOption) -> bool:
        """Pre-check a vote without casting it. False for unknown proposals."""
        proposal = self._proposals.find(proposal_id)
        if proposal is None:
            return False
        member = self._registry.is_listed_at_block(
            account, proposal.group_id, proposal.parameters.snapshot_block
        )
        return policy.can_vote(proposal, account, option, member, self._now())

    def can_execute(self, proposal_id: int) -> bool:
        return self._gate.can_execute(proposal_id, self._now())

    def execute(self, caller: str, proposal_id: int) -> DispatchResult:
        """Execute a passed proposal exactly once.

        Raises:
            UnknownProposal: No such proposal.
            ProposalExecutionForbidden: Not executable yet, or already executed.
            Unauthorized: The DAO refused to run actions for this plugin.
            ActionFailed: A non-allowed action failed; nothing is committed.
        """
        with self._transaction() as block:
            return self._execute(proposal_id, caller, block)

    def _execute(self, proposal_id: int, caller: str, block: BlockInfo) -> DispatchResult:
        result = self._gate.execute(proposal_id, block.timestamp)
        self._emit(EventKind.PROPOSAL_EXECUTED, caller, {
            "proposal_id": proposal_id,
            "failure_map": result.failure_map,
        })
        return result

    # ------------------------------------------------------------------
    # Proposal views
    # ------------------------------------------------------------------

    def get_proposal(self, proposal_id: int) -> ProposalView:
        proposal = self._proposals.get(proposal_id)
        now = self._now()
        return ProposalView(
            proposal_id=proposal.proposal_id,
            group_id=proposal.group_id,
            creator=proposal.creator,
            metadata=proposal.metadata,
            open=policy.is_accepting_votes(proposal, now),
            executed=proposal.executed,
            parameters=proposal.parameters,
            tally=Tally(proposal.tally.yes, proposal.tally.no, proposal.tally.abstain),
            actions=proposal.actions,
            allow_failure_map=proposal.allow_failure_map,
            expired=policy.is_expired(proposal, now),
            voters=dict(proposal.voters),
        )

    def get_vote(self, proposal_id: int, account: str) -> VoteOption:
        return self._proposals.get(proposal_id).vote_of(account)

    @property
    def proposal_count(self) -> int:
        return self._proposals.proposal_count

    def list_proposals(self, group_id: Optional[int] = None) -> list[ProposalView]:
        return [
            self.get_proposal(p.proposal_id)
            for p in self._proposals.list_proposals(group_id)
        ]

    def total_voting_power(self, proposal_id: int) -> int:
        return self._proposals.get(proposal_id).parameters.total_voting_power

    def is_support_threshold_reached(self, proposal_id: int) -> bool:
        proposal = self._proposals.get(proposal_id)
        return policy.is_support_threshold_reached(proposal.parameters, proposal.tally)

    def is_support_threshold_reached_early(self, proposal_id: int) -> bool:
        proposal = self._proposals.get(proposal_id)
        return policy.is_support_threshold_reached_early(proposal.parameters, proposal.tally)

    def is_min_participation_reached(self, proposal_id: int) -> bool:
        proposal = self._proposals.get(proposal_id)
        return policy.is_min_participation_reached(proposal.parameters, proposal.tally)

    def status(self) -> dict[str, Any]:
        latest = self._chain.latest
        return {
            "block_number": latest.number,
            "timestamp": latest.timestamp,
            "voting_settings": self._settings.to_dict(),
            "groups": self.group_count,
            "proposals": self.proposal_count,
            "events": self._event_log.count,
            "persistence_degraded": self._persistence_degraded,
        }

    # ------------------------------------------------------------------
    # Transactions and notifications
    # ------------------------------------------------------------------

    def _now(self) -> int:
        if self._tx_block is not None:
            return self._tx_block.timestamp
        return self._chain.latest.timestamp

    @contextmanager
    def _transaction(self) -> Iterator[BlockInfo]:
        outermost = self._tx_depth == 0
        if outermost:
            self._tx_block = self._chain.begin_transaction()
        block = self._tx_block
        if block is None:
            raise RuntimeError("No block open for the current transaction")
        undo_mark = self._undo.mark()
        event_mark = len(self._pending)

        self._tx_depth += 1
        try:
            yield block
        except BaseException:
            self._undo.rollback(undo_mark)
            del self._pending[event_mark:]
            raise
        finally:
            self._tx_depth -= 1
            if outermost:
                self._tx_block = None

        if outermost:
            self._undo.clear()
            self._commit(block)

    def _emit(self, kind: EventKind, actor_id: str, payload: dict[str, Any]) -> None:
        self._pending.append((kind, actor_id, payload))

    def _commit(self, block: BlockInfo) -> None:
        """Publish pending events and save state for a committed call.

        In-memory state is final at this point. Write failures mark the
        service degraded and are logged; they are not raised to the caller.
        """
        pending, self._pending = self._pending, []
        for kind, actor_id, payload in pending:
            self._event_counter += 1
            event = EventRecord.create(
                event_id=f"EVT-{self._event_counter:08d}",
                event_kind=kind,
                actor_id=actor_id,
                payload=payload,
                block_number=block.number,
                timestamp=block.timestamp,
            )
            try:
                self._event_log.append(event)
            except OSError as exc:
                self._mark_degraded("event_log", exc, event_id=event.event_id)
        if self._state_store is not None:
            try:
                self._state_store.save(self.to_records())
            except OSError as exc:
                self._mark_degraded("state_store", exc)

    def _mark_degraded(self, sink: str, exc: OSError, **context: Any) -> None:
        self._persistence_degraded = True
        logger.error("persistence_degraded", sink=sink, error=str(exc), **context)

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def to_records(self) -> dict[str, Any]:
        """Serialise service state (and persistable collaborators)."""
        records: dict[str, Any] = {
            "address": self.address,
            "dao_address": self.dao_address,
            "voting_settings": self._settings.to_dict(),
            "registry": self._registry.to_records(),
            "proposals": self._proposals.to_records(),
            "event_counter": self._event_counter,
        }
        if isinstance(self._permissions, PermissionRegistry):
            records["permissions"] = self._permissions.to_records()
        if isinstance(self._chain, ManualChain):
            records["chain"] = self._chain.to_record()
        return records

    @classmethod
    def from_records(
        cls,
        records: dict[str, Any],
        chain: Optional[Chain] = None,
        permissions: Optional[PermissionChecker] = None,
        dispatcher: Optional[Dispatcher] = None,
        event_log: Optional[EventLog] = None,
        state_store: Optional[StateStore] = None,
    ) -> SubgovernanceService:
        """Rebuild a service from ``to_records`` output.

        Collaborators not passed in are restored from the records where the
        records carry them.
        """
        if chain is None and "chain" in records:
            chain = ManualChain(**records["chain"])
        if permissions is None and "permissions" in records:
            permissions = PermissionRegistry.from_records(records["permissions"])

        service = cls(
            VotingSettings.from_dict(records["voting_settings"]),
            address=records.get("address", DEFAULT_PLUGIN_ADDRESS),
            dao_address=records.get("dao_address", DEFAULT_DAO_ADDRESS),
            chain=chain,
            permissions=permissions,
            dispatcher=dispatcher,
            event_log=event_log,
            state_store=state_store,
        )
        service._registry.load_records(records.get("registry", {}))
        service._proposals.load_records(records.get("proposals", {}))
        service._event_counter = max(
            service._event_counter, int(records.get("event_counter", 0))
        )
        return service

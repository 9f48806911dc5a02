"""Subgovernance CLI — command-line interface over a persisted service.

Each invocation is one transaction against ``state.json``; notifications are
appended to ``events.jsonl``. Actions dispatched from the CLI are recorded by
the executor, not run against anything.

Usage:
    python -m subgovernance.cli status
    python -m subgovernance.cli grant --who alice --permission CREATE_GROUP_PERMISSION
    python -m subgovernance.cli create-group --caller alice --name Builders --members alice,bob
    python -m subgovernance.cli propose --caller alice --group 0 --action treasury:0:00 --vote yes
    python -m subgovernance.cli vote --caller bob --proposal 0 --option yes --early
    python -m subgovernance.cli execute --caller bob --proposal 0
    python -m subgovernance.cli show-proposal --proposal 0
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
import time
from pathlib import Path
from typing import Any, Optional

import structlog

from subgovernance.chain import ManualChain
from subgovernance.config import Environment, load_environment, load_voting_settings
from subgovernance.dao.executor import ActionExecutor
from subgovernance.dao.permissions import EXECUTE_PERMISSION, PermissionRegistry
from subgovernance.errors import SubgovernanceError
from subgovernance.models.voting import ActionRef, VoteOption
from subgovernance.persistence.event_log import EventLog
from subgovernance.persistence.state_store import StateStore
from subgovernance.service import SubgovernanceService


def configure_logging(verbose: bool = False) -> None:
    structlog.configure(
        processors=[
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.stdlib.add_log_level,
            structlog.processors.JSONRenderer(),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(
            logging.DEBUG if verbose else logging.WARNING
        ),
        logger_factory=structlog.PrintLoggerFactory(sys.stderr),
    )


def _record_action(action: ActionRef) -> dict[str, Any]:
    return action.to_dict()


def _make_service(env: Environment) -> SubgovernanceService:
    """Load the persisted service, or create one from the settings file."""
    env.data_dir.mkdir(parents=True, exist_ok=True)
    state_store = StateStore(env.state_path)
    event_log = EventLog(storage_path=env.events_path)
    now = int(time.time())

    records = state_store.load()
    if records is None:
        permissions = PermissionRegistry()
        chain = ManualChain(block_number=0, timestamp=now)
        address = "subgovernance"
        dao_address = "dao"
        permissions.grant(dao_address, address, EXECUTE_PERMISSION)
        service = SubgovernanceService(
            load_voting_settings(env.config_path),
            address=address,
            dao_address=dao_address,
            chain=chain,
            permissions=permissions,
            dispatcher=ActionExecutor(
                permissions, dao_address, caller=address, default_handler=_record_action
            ),
            event_log=event_log,
            state_store=state_store,
        )
        state_store.save(service.to_records())
        return service

    saved_chain = records.get("chain", {"block_number": 0, "timestamp": now})
    chain = ManualChain(
        block_number=saved_chain["block_number"],
        timestamp=max(saved_chain["timestamp"], now),
    )
    permissions = PermissionRegistry.from_records(records.get("permissions", []))
    return SubgovernanceService.from_records(
        records,
        chain=chain,
        permissions=permissions,
        dispatcher=ActionExecutor(
            permissions,
            records.get("dao_address", "dao"),
            caller=records.get("address", "subgovernance"),
            default_handler=_record_action,
        ),
        event_log=event_log,
        state_store=state_store,
    )


def _split(value: Optional[str]) -> list[str]:
    if not value:
        return []
    return [v.strip() for v in value.split(",") if v.strip()]


def _parse_action(text: str) -> ActionRef:
    """Parse ``target[:value[:hexpayload]]``."""
    parts = text.split(":")
    target = parts[0]
    value = int(parts[1]) if len(parts) > 1 and parts[1] else 0
    payload = bytes.fromhex(parts[2]) if len(parts) > 2 else b""
    return ActionRef(target=target, value=value, payload=payload)


def cmd_status(args: argparse.Namespace, service: SubgovernanceService) -> int:
    print(json.dumps(service.status(), indent=2))
    return 0


def cmd_grant(args: argparse.Namespace, service: SubgovernanceService) -> int:
    permissions = service.permissions
    if not isinstance(permissions, PermissionRegistry):
        print("Failed: permissions are not locally managed", file=sys.stderr)
        return 1
    where = args.where or service.address
    if args.revoke:
        permissions.revoke(where, args.who, args.permission)
        print(f"Revoked {args.permission} on {where} from {args.who}")
    else:
        permissions.grant(where, args.who, args.permission)
        print(f"Granted {args.permission} on {where} to {args.who}")
    StateStore(args.env.state_path).save(service.to_records())
    return 0


def cmd_create_group(args: argparse.Namespace, service: SubgovernanceService) -> int:
    group_id = service.create_group(args.caller, args.name, _split(args.members))
    print(f"Created group: {group_id}")
    return 0


def cmd_add_members(args: argparse.Namespace, service: SubgovernanceService) -> int:
    service.add_addresses(args.caller, _split(args.members), args.group)
    print(f"Added members to group {args.group}")
    return 0


def cmd_remove_members(args: argparse.Namespace, service: SubgovernanceService) -> int:
    service.remove_addresses(args.caller, _split(args.members), args.group)
    print(f"Removed members from group {args.group}")
    return 0


def cmd_propose(args: argparse.Namespace, service: SubgovernanceService) -> int:
    proposal_id = service.create_proposal(
        args.caller,
        metadata=args.metadata,
        actions=[_parse_action(a) for a in args.action or []],
        allow_failure_map=args.allow_failure_map,
        start_date=args.start,
        end_date=args.end,
        vote_option=VoteOption(args.vote),
        try_early_execution=args.early,
        group_id=args.group,
    )
    print(f"Created proposal: {proposal_id}")
    return 0


def cmd_vote(args: argparse.Namespace, service: SubgovernanceService) -> int:
    service.vote(args.caller, args.proposal, VoteOption(args.option), args.early)
    print(f"Voted {args.option} on proposal {args.proposal}")
    return 0


def cmd_execute(args: argparse.Namespace, service: SubgovernanceService) -> int:
    result = service.execute(args.caller, args.proposal)
    print(json.dumps(
        {"proposal_id": args.proposal, "failure_map": result.failure_map, "results": result.results},
        indent=2,
        default=str,
    ))
    return 0


def cmd_show_proposal(args: argparse.Namespace, service: SubgovernanceService) -> int:
    view = service.get_proposal(args.proposal)
    params = view.parameters
    print(json.dumps({
        "proposal_id": view.proposal_id,
        "group_id": view.group_id,
        "creator": view.creator,
        "open": view.open,
        "executed": view.executed,
        "expired": view.expired,
        "can_execute": service.can_execute(view.proposal_id),
        "parameters": {
            "voting_mode": params.voting_mode.value,
            "support_threshold": params.support_threshold,
            "min_participation": params.min_participation,
            "start_date": params.start_date,
            "end_date": params.end_date,
            "snapshot_block": params.snapshot_block,
            "total_voting_power": params.total_voting_power,
        },
        "tally": {"yes": view.tally.yes, "no": view.tally.no, "abstain": view.tally.abstain},
        "actions": [a.to_dict() for a in view.actions],
        "allow_failure_map": view.allow_failure_map,
    }, indent=2))
    return 0


COMMANDS = {
    "status": cmd_status,
    "grant": cmd_grant,
    "create-group": cmd_create_group,
    "add-members": cmd_add_members,
    "remove-members": cmd_remove_members,
    "propose": cmd_propose,
    "vote": cmd_vote,
    "execute": cmd_execute,
    "show-proposal": cmd_show_proposal,
}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="subgovernance",
        description="Group-scoped DAO voting engine CLI",
    )
    parser.add_argument("--config", type=Path, help="Voting settings JSON file")
    parser.add_argument("--data-dir", type=Path, help="Directory for state and events")
    parser.add_argument("--env-file", type=Path, help="dotenv file to load")
    parser.add_argument("-v", "--verbose", action="store_true", help="Log to stderr")
    sub = parser.add_subparsers(dest="command")

    sub.add_parser("status", help="Show engine status")

    p_grant = sub.add_parser("grant", help="Grant (or revoke) a permission")
    p_grant.add_argument("--who", required=True)
    p_grant.add_argument("--permission", required=True)
    p_grant.add_argument("--where", help="Resource (default: the plugin address)")
    p_grant.add_argument("--revoke", action="store_true")

    p_group = sub.add_parser("create-group", help="Create a group")
    p_group.add_argument("--caller", required=True)
    p_group.add_argument("--name", required=True)
    p_group.add_argument("--members", help="Comma-separated initial members")

    for name, help_text in (
        ("add-members", "Add addresses to a group"),
        ("remove-members", "Remove addresses from a group"),
    ):
        p_members = sub.add_parser(name, help=help_text)
        p_members.add_argument("--caller", required=True)
        p_members.add_argument("--group", type=int, required=True)
        p_members.add_argument("--members", required=True, help="Comma-separated addresses")

    p_prop = sub.add_parser("propose", help="Create a proposal")
    p_prop.add_argument("--caller", required=True)
    p_prop.add_argument("--group", type=int, default=0)
    p_prop.add_argument("--metadata", default="")
    p_prop.add_argument(
        "--action", action="append",
        help="target[:value[:hexpayload]] (repeatable, in order)",
    )
    p_prop.add_argument("--allow-failure-map", type=int, default=0)
    p_prop.add_argument("--start", type=int, default=0, help="Start (unix seconds, 0 = now)")
    p_prop.add_argument("--end", type=int, default=0, help="End (unix seconds, 0 = start + min duration)")
    p_prop.add_argument("--vote", default="none", choices=[o.value for o in VoteOption])
    p_prop.add_argument("--early", action="store_true", help="Try early execution")

    p_vote = sub.add_parser("vote", help="Vote on a proposal")
    p_vote.add_argument("--caller", required=True)
    p_vote.add_argument("--proposal", type=int, required=True)
    p_vote.add_argument(
        "--option", required=True,
        choices=[o.value for o in VoteOption if o != VoteOption.NONE],
    )
    p_vote.add_argument("--early", action="store_true", help="Try early execution")

    p_exec = sub.add_parser("execute", help="Execute a passed proposal")
    p_exec.add_argument("--caller", required=True)
    p_exec.add_argument("--proposal", type=int, required=True)

    p_show = sub.add_parser("show-proposal", help="Show a proposal")
    p_show.add_argument("--proposal", type=int, required=True)

    return parser


def main(argv: Optional[list[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    if not args.command:
        parser.print_help()
        return 1

    configure_logging(args.verbose)
    env = load_environment(args.env_file)
    env = Environment(
        config_path=args.config or env.config_path,
        data_dir=args.data_dir or env.data_dir,
    )
    args.env = env

    try:
        service = _make_service(env)
        exit_code = COMMANDS[args.command](args, service)
    except (SubgovernanceError, ValueError, KeyError, FileNotFoundError) as e:
        print(f"Failed: {e}", file=sys.stderr)
        return 1

    if service.persistence_degraded:
        print(
            f"Warning: persistence degraded, {env.state_path} may be stale",
            file=sys.stderr,
        )
    return exit_code


if __name__ == "__main__":
    sys.exit(main())

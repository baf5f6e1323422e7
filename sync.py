#!/usr/bin/env python3
"""
Entra ID Group Membership Sync

Adds a target account to every group a source account belongs to.
Groups the target already holds are left untouched. See
copy_memberships.py for the variant that clears the target first.
"""

import os
import sys
import argparse
import logging
from typing import Any, Callable, Dict, List, Optional
from dotenv import load_dotenv

from graph_client import (
    ApiError,
    AuthError,
    GraphSession,
    NotFoundError,
    add_member,
    authenticate,
    find_account,
    remove_member,
)
from membership_adapter import MembershipAdapter, display_names
from models import Action, Mode, OperationOutcome, ReconciliationPlan, RunSummary
from reconciler import reconcile
from validate_config import missing_config


logger = logging.getLogger(__name__)


# Load environment variables
load_dotenv()

Approver = Callable[[ReconciliationPlan], bool]

_CALLS = {
    Action.ADD: add_member,
    Action.REMOVE: remove_member,
}


def setup_logging():
    """Configure logging for the command line scripts."""
    logging.basicConfig(
        level=os.getenv("LOG_LEVEL", "INFO").upper(),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )
    logging.getLogger("msal").setLevel(logging.WARNING)
    logging.getLogger("urllib3").setLevel(logging.WARNING)


def describe_account(account: Dict[str, Any]) -> str:
    name = account.get("displayName") or account["id"]
    principal = account.get("userPrincipalName") or account.get("mail")
    return f"{name} ({principal})" if principal else name


def apply_change(session: GraphSession, action: Action, group_id: str, account_id: str,
                 display_name: str, label: str, dry_run: bool = False) -> OperationOutcome:
    """
    Add or remove one membership and record the outcome.
    An API failure is logged and returned as a failed outcome.
    """
    if dry_run:
        logger.info(f"[DRY RUN] Would {action.value}: {label}")
        return OperationOutcome(group_id, display_name, action, True, account_id=account_id)

    try:
        _CALLS[action](session, group_id, account_id)
    except ApiError as e:
        logger.warning(f"Failed to {action.value} {label}: {e}")
        return OperationOutcome(group_id, display_name, action, False, str(e), account_id=account_id)

    logger.info(f"{'Added' if action is Action.ADD else 'Removed'}: {label}")
    return OperationOutcome(group_id, display_name, action, True, account_id=account_id)


def execute_plan(session: GraphSession, account_id: str, plan: ReconciliationPlan,
                 names: Dict[str, str], dry_run: bool = False,
                 account_label: Optional[str] = None) -> List[OperationOutcome]:
    """Run every removal, then every addition, one call per group."""
    account_label = account_label or account_id
    outcomes = []

    def by_name(group_id):
        return (names.get(group_id, group_id).lower(), group_id)

    for action, group_ids in ((Action.REMOVE, plan.to_remove), (Action.ADD, plan.to_add)):
        for group_id in sorted(group_ids, key=by_name):
            name = names.get(group_id, group_id)
            outcomes.append(apply_change(
                session, action, group_id, account_id, name,
                label=f"{account_label} -> {name}", dry_run=dry_run
            ))

    return outcomes


def sync_memberships(session: GraphSession, source_identifier: str, target_identifier: str,
                     mode: Mode = Mode.ADDITIVE, dry_run: bool = False,
                     approve: Optional[Approver] = None) -> RunSummary:
    """
    Bring the target account's group memberships in line with the source.
    Lookup failures raise NotFoundError before anything is changed.
    """
    logger.info(f"Starting {mode.value} membership sync")

    source = find_account(session, source_identifier)
    logger.info(f"Source account: {describe_account(source)}")
    target = find_account(session, target_identifier)
    logger.info(f"Target account: {describe_account(target)}")

    source_groups = MembershipAdapter(name="source", account_id=source["id"])
    source_groups.load(session)
    target_groups = MembershipAdapter(name="target", account_id=target["id"])
    target_groups.load(session)

    source_ids = source_groups.group_ids()
    target_ids = target_groups.group_ids()
    summary = RunSummary(source_count=len(source_ids), target_count=len(target_ids))

    drift = target_groups.drift_from(source_groups)
    logger.info(
        f"{drift['shared']} groups shared, {drift['only_on_source']} only on source, "
        f"{drift['only_on_target']} only on target"
    )

    if not source_ids:
        logger.warning("Source account is not a member of any group")

    plan = reconcile(source_ids, target_ids, mode)
    if plan.is_empty:
        logger.info("Nothing to synchronize")
        return summary

    names = display_names(source_groups, target_groups)
    logger.info(f"Planned changes: {len(plan.to_remove)} removals, {len(plan.to_add)} additions")
    for group_id in sorted(plan.to_add, key=lambda g: names[g].lower()):
        logger.info(f"  + {names[group_id]}")

    if not dry_run and approve is not None and not approve(plan):
        logger.info("Aborted - no changes made")
        summary.aborted = True
        return summary

    summary.outcomes = execute_plan(
        session, target["id"], plan, names, dry_run=dry_run,
        account_label=target.get("userPrincipalName") or target["id"]
    )
    return summary


def log_summary(summary: RunSummary, dry_run: bool = False):
    """Log the run summary"""
    logger.info(f"{'='*60}")
    logger.info(f"SYNC SUMMARY{' (DRY RUN)' if dry_run else ''}")
    logger.info(f"{'='*60}")
    logger.info(f"Groups on source: {summary.source_count}")
    logger.info(f"Groups on target before sync: {summary.target_count}")
    logger.info(f"Removed: {summary.count(Action.REMOVE)}")
    logger.info(f"Added: {summary.count(Action.ADD)}")
    logger.info(f"Succeeded: {summary.succeeded}")
    logger.info(f"Failed: {summary.failed}")
    for outcome in summary.failures():
        logger.warning(f"  {outcome.action.value} {outcome.display_name}: {outcome.error}")
    logger.info(f"{'='*60}")


def confirm(plan: ReconciliationPlan) -> bool:
    """Ask the operator before changing anything."""
    try:
        answer = input(f"Add the target account to {len(plan.to_add)} groups? [y/N]: ")
    except EOFError:
        return False
    return answer.strip().lower() in ("y", "yes")


def build_parser(mode: Mode) -> argparse.ArgumentParser:
    if mode is Mode.REPLACE:
        description = "Replace the target account's group memberships with the source account's."
    else:
        description = "Add the target account to every group the source account belongs to."

    parser = argparse.ArgumentParser(description=description)
    parser.add_argument("source", help="Source account (object id or user principal name)")
    parser.add_argument("target", help="Target account (object id or user principal name)")
    parser.add_argument(
        "--dry-run",
        action="store_true",
        default=os.getenv("SYNC_DRY_RUN", "false").lower() == "true",
        help="Show what would change without changing anything",
    )
    if mode is Mode.ADDITIVE:
        parser.add_argument("-y", "--yes", action="store_true", help="Do not ask for confirmation")
    return parser


def main(argv=None, mode: Mode = Mode.ADDITIVE) -> int:
    args = build_parser(mode).parse_args(argv)
    setup_logging()

    missing = missing_config()
    if missing:
        logger.error(f"Missing required configuration: {', '.join(missing)}")
        return 1

    if args.dry_run:
        logger.info("Running in DRY RUN mode - no changes will be made")

    # Only the additive sync asks before changing anything
    approve = confirm if mode is Mode.ADDITIVE and not getattr(args, "yes", False) else None

    try:
        session = authenticate()
    except AuthError as e:
        logger.error(f"Authentication failed: {e}")
        return 1

    try:
        summary = sync_memberships(
            session, args.source, args.target,
            mode=mode, dry_run=args.dry_run, approve=approve
        )
    except NotFoundError as e:
        logger.error(str(e))
        return 1
    except Exception as e:
        logger.error(f"Sync failed: {e}", exc_info=True)
        return 1
    finally:
        session.close()

    if not summary.aborted:
        log_summary(summary, dry_run=args.dry_run)
    return 0


def run():
    sys.exit(main())


if __name__ == "__main__":
    run()

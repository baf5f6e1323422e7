#!/usr/bin/env python3
"""
Remove every user member from an Entra ID group

Nested groups, devices and service principals stay in the group; only
user objects are removed.
"""

import os
import sys
import argparse
import logging
from typing import Any, Callable, Dict, List, Optional

from graph_client import (
    AuthError,
    GraphSession,
    NotFoundError,
    authenticate,
    find_group,
    list_user_members,
)
from models import Action, RunSummary
from sync import apply_change, setup_logging
from validate_config import missing_config


logger = logging.getLogger(__name__)

MemberApprover = Callable[[List[Dict[str, Any]]], bool]


def _member_label(member: Dict[str, Any]) -> str:
    return member.get("userPrincipalName") or member.get("displayName") or member["id"]


def remove_group_members(session: GraphSession, group_identifier: str, dry_run: bool = False,
                         approve: Optional[MemberApprover] = None) -> RunSummary:
    """Remove all user members of a group, continuing past individual failures."""
    group = find_group(session, group_identifier)
    group_name = group.get("displayName") or group["id"]
    logger.info(f"Group: {group_name} ({group['id']})")

    members = list_user_members(session, group["id"])
    summary = RunSummary(target_count=len(members))
    logger.info(f"Found {len(members)} user members")

    if not members:
        logger.info("Nothing to remove")
        return summary

    if not dry_run and approve is not None and not approve(members):
        logger.info("Aborted - no changes made")
        summary.aborted = True
        return summary

    for member in sorted(members, key=lambda m: _member_label(m).lower()):
        label = _member_label(member)
        summary.outcomes.append(apply_change(
            session, Action.REMOVE, group["id"], member["id"],
            member.get("displayName") or label,
            label=f"{label} -> {group_name}", dry_run=dry_run
        ))

    return summary


def confirm(members: List[Dict[str, Any]]) -> bool:
    """Ask the operator before removing anyone."""
    try:
        answer = input(f"Remove {len(members)} users from the group? [y/N]: ")
    except EOFError:
        return False
    return answer.strip().lower() in ("y", "yes")


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(description="Remove every user member from a group.")
    parser.add_argument("group", help="Group object id or exact display name")
    parser.add_argument(
        "--dry-run",
        action="store_true",
        default=os.getenv("SYNC_DRY_RUN", "false").lower() == "true",
        help="Show who would be removed without changing anything",
    )
    parser.add_argument("-y", "--yes", action="store_true", help="Do not ask for confirmation")
    args = parser.parse_args(argv)
    setup_logging()

    missing = missing_config()
    if missing:
        logger.error(f"Missing required configuration: {', '.join(missing)}")
        return 1

    if args.dry_run:
        logger.info("Running in DRY RUN mode - no changes will be made")

    try:
        session = authenticate()
    except AuthError as e:
        logger.error(f"Authentication failed: {e}")
        return 1

    try:
        summary = remove_group_members(
            session, args.group, dry_run=args.dry_run,
            approve=None if args.yes else confirm
        )
    except NotFoundError as e:
        logger.error(str(e))
        return 1
    except Exception as e:
        logger.error(f"Removal failed: {e}", exc_info=True)
        return 1
    finally:
        session.close()

    if not summary.aborted:
        logger.info(f"{'='*60}")
        logger.info(f"REMOVAL SUMMARY{' (DRY RUN)' if args.dry_run else ''}")
        logger.info(f"{'='*60}")
        logger.info(f"User members found: {summary.target_count}")
        logger.info(f"Removed: {summary.succeeded}")
        logger.info(f"Failed: {summary.failed}")
        for outcome in summary.failures():
            logger.warning(f"  {outcome.display_name}: {outcome.error}")
        logger.info(f"{'='*60}")
    return 0


def run():
    sys.exit(main())


if __name__ == "__main__":
    run()

"""
Membership adapter for diffsync
"""

import logging
from typing import Dict, FrozenSet

from diffsync import Adapter
from diffsync.exceptions import ObjectAlreadyExists, ObjectNotFound

from graph_client import GraphSession, list_group_memberships
from models import Group


logger = logging.getLogger(__name__)


class MembershipAdapter(Adapter):
    """
    DiffSync adapter holding a snapshot of one account's group memberships.
    Loaded once per run and never re-queried.
    """

    group = Group
    top_level = ["group"]

    def __init__(self, *args, account_id: str = "", **kwargs):
        super().__init__(*args, **kwargs)
        self.account_id = account_id

    def load(self, session: GraphSession):
        """Load group memberships of the account from Microsoft Graph."""
        logger.info(f"Loading group memberships for {self.name} account {self.account_id}")

        membership_count = 0
        for entry in list_group_memberships(session, self.account_id):
            group = Group(
                group_id=entry["id"],
                display_name=entry.get("displayName") or entry["id"]
            )
            try:
                self.add(group)
            except ObjectAlreadyExists:
                logger.debug(f"Duplicate membership entry for group {group.group_id}, skipping")
                continue
            membership_count += 1
            logger.debug(f"Loaded membership: {self.account_id} -> {group.display_name}")

        logger.info(f"Loaded {membership_count} group memberships for {self.name} account")

    def group_ids(self) -> FrozenSet[str]:
        return frozenset(group.group_id for group in self.get_all(Group))

    def display_name(self, group_id: str) -> str:
        try:
            return self.get(Group, group_id).display_name
        except ObjectNotFound:
            return group_id

    def drift_from(self, source: "MembershipAdapter") -> Dict[str, int]:
        """Summarise how this snapshot differs from the source snapshot."""
        summary = self.diff_from(source).summary()
        only_on_target = summary.get("delete", 0)
        return {
            "only_on_source": summary.get("create", 0),
            "only_on_target": only_on_target,
            "shared": len(self.group_ids()) - only_on_target,
        }


def display_names(*adapters: MembershipAdapter) -> Dict[str, str]:
    """Map group id to display name across several snapshots."""
    names = {}
    for adapter in adapters:
        for group in adapter.get_all(Group):
            names.setdefault(group.group_id, group.display_name)
    return names

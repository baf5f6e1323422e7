"""
Membership reconciliation

Works out which group memberships a target account must gain or lose to
match a source account. Pure: never talks to the directory.
"""

from typing import AbstractSet

from models import Mode, ReconciliationPlan


def reconcile(source_set: AbstractSet[str], target_set: AbstractSet[str], mode: Mode) -> ReconciliationPlan:
    """
    Build the plan for one run.

    REPLACE clears every target membership and re-adds every source
    membership, including groups both accounts already share.
    ADDITIVE only adds the source groups the target is missing.
    """
    source = frozenset(source_set)
    target = frozenset(target_set)

    if mode is Mode.REPLACE:
        return ReconciliationPlan(to_add=source, to_remove=target)
    if mode is Mode.ADDITIVE:
        return ReconciliationPlan(to_add=source - target)
    raise ValueError(f"Unknown reconciliation mode: {mode!r}")

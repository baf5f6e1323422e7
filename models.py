"""
Data models for Entra ID group membership sync
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import FrozenSet, List, Optional

from diffsync import DiffSyncModel


class Group(DiffSyncModel):
    """
    DiffSync model representing one group an account belongs to.
    The display name is only used for reporting.
    """
    _modelname = "group"
    _identifiers = ("group_id",)
    _attributes = ("display_name",)

    group_id: str
    display_name: str = ""


class Mode(Enum):
    """Reconciliation policy."""

    REPLACE = "replace"
    ADDITIVE = "additive"


class Action(Enum):
    ADD = "add"
    REMOVE = "remove"


@dataclass(frozen=True)
class ReconciliationPlan:
    """Group ids to remove from and add to the target account."""

    to_add: FrozenSet[str] = frozenset()
    to_remove: FrozenSet[str] = frozenset()

    @property
    def is_empty(self) -> bool:
        return not self.to_add and not self.to_remove

    def __len__(self) -> int:
        return len(self.to_add) + len(self.to_remove)


@dataclass(frozen=True)
class OperationOutcome:
    """Result of a single add or remove call."""

    group_id: str
    display_name: str
    action: Action
    success: bool
    error: Optional[str] = None
    account_id: Optional[str] = None


@dataclass
class RunSummary:
    """Aggregated outcomes of one run."""

    source_count: int = 0
    target_count: int = 0
    aborted: bool = False
    outcomes: List[OperationOutcome] = field(default_factory=list)

    @property
    def succeeded(self) -> int:
        return sum(1 for o in self.outcomes if o.success)

    @property
    def failed(self) -> int:
        return sum(1 for o in self.outcomes if not o.success)

    def count(self, action: Action, success: bool = True) -> int:
        """Count outcomes for one action."""
        return sum(1 for o in self.outcomes if o.action is action and o.success is success)

    def failures(self) -> List[OperationOutcome]:
        return [o for o in self.outcomes if not o.success]

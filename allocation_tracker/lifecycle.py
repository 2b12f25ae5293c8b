from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Callable, FrozenSet, Iterable, List, Optional, Set, Tuple, Union

from .allocation import AllocationStatus, classify_allocation, member_monthly_total
from .codec import format_allocation_value, parse_allocation_input
from .models import ALLOCATION_EPSILON, AssignmentEntry, MonthKey, ProjectTree
from .months import parse_month_key

logger = logging.getLogger(__name__)


def now_iso() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="seconds")


def _new_id() -> str:
    return str(uuid.uuid4())


class AssignmentNotFoundError(LookupError):
    def __init__(self, assignment_id: str) -> None:
        super().__init__(f"assignment {assignment_id} not found")
        self.assignment_id = assignment_id


class RowState(str, Enum):
    ABSENT = "absent"
    TRANSIENT = "transient"
    COMMITTED = "committed"


class Outcome(str, Enum):
    ROW_ADDED = "row_added"
    ROW_CANCELLED = "row_cancelled"
    CREATED = "created"
    MEMBER_CHANGED = "member_changed"
    UNCHANGED = "unchanged"
    VALUE_SET = "value_set"
    VALUE_CLEARED = "value_cleared"
    DELETED = "deleted"
    DUPLICATE = "duplicate"
    INVALID_VALUE = "invalid_value"
    MEMBER_REQUIRED = "member_required"
    NOT_TRANSIENT = "not_transient"

    @property
    def writes_ledger(self) -> bool:
        return self in LEDGER_WRITES


REJECTIONS = frozenset(
    {Outcome.DUPLICATE, Outcome.INVALID_VALUE, Outcome.MEMBER_REQUIRED, Outcome.NOT_TRANSIENT}
)
LEDGER_WRITES = frozenset(
    {Outcome.CREATED, Outcome.MEMBER_CHANGED, Outcome.VALUE_SET, Outcome.VALUE_CLEARED, Outcome.DELETED}
)


@dataclass(frozen=True)
class OverAllocationWarning:
    member_id: str
    month_key: MonthKey
    total: float

    @property
    def message(self) -> str:
        return (
            f"member {self.member_id} total for {self.month_key} exceeds 1.0 "
            f"({format_allocation_value(self.total)})"
        )


@dataclass(frozen=True)
class LifecycleResult:
    outcome: Outcome
    entry: Optional[AssignmentEntry] = None
    message: str = ""
    warnings: Tuple[OverAllocationWarning, ...] = ()

    @property
    def ok(self) -> bool:
        return self.outcome not in REJECTIONS


class AssignmentLifecycle:
    """Applies add/select/edit/delete events from an editing view to a ledger.

    The manager is the ledger's single writer while it is in use. Expected
    business conditions (duplicates, bad input, missing selection) come back
    as rejected results; over-allocation is reported as a warning and never
    blocks the write.
    """

    def __init__(
        self,
        ledger: Optional[Iterable[AssignmentEntry]] = None,
        tree: Optional[ProjectTree] = None,
        transient_task_ids: Iterable[str] = (),
        clock: Callable[[], str] = now_iso,
        id_factory: Callable[[], str] = _new_id,
        epsilon: float = ALLOCATION_EPSILON,
    ) -> None:
        self._entries: List[AssignmentEntry] = list(ledger or [])
        self._transient: Set[str] = set()
        self._tree = tree
        for task_id in transient_task_ids:
            if tree is None or (task_id in tree and tree.node(task_id).is_leaf):
                self._transient.add(task_id)
        self._clock = clock
        self._id_factory = id_factory
        self._epsilon = epsilon

    @property
    def assignments(self) -> List[AssignmentEntry]:
        return list(self._entries)

    @property
    def transient_task_ids(self) -> FrozenSet[str]:
        return frozenset(self._transient)

    # ---------- lookups ----------
    def get(self, assignment_id: str) -> AssignmentEntry:
        return self._entries[self._index_of(assignment_id)]

    def _index_of(self, assignment_id: str) -> int:
        for idx, entry in enumerate(self._entries):
            if entry.id == assignment_id:
                return idx
        raise AssignmentNotFoundError(assignment_id)

    def _find_pair(
        self, task_id: str, member_id: str, exclude_id: Optional[str] = None
    ) -> Optional[AssignmentEntry]:
        for entry in self._entries:
            if entry.task_id == task_id and entry.member_id == member_id and entry.id != exclude_id:
                return entry
        return None

    def _require_leaf(self, task_id: str) -> None:
        if self._tree is None:
            return
        node = self._tree.find(task_id)
        if node is None:
            raise ValueError(f"task {task_id} not in tree")
        if not node.is_leaf:
            raise ValueError(f"task {task_id} has children; members attach to leaf tasks only")

    def row_state(self, task_id: str, member_id: Optional[str] = None) -> RowState:
        if member_id is None:
            return RowState.TRANSIENT if task_id in self._transient else RowState.ABSENT
        if self._find_pair(task_id, member_id) is not None:
            return RowState.COMMITTED
        return RowState.ABSENT

    def _reject(self, outcome: Outcome, message: str, entry: Optional[AssignmentEntry] = None) -> LifecycleResult:
        logger.info("rejected: %s", message)
        return LifecycleResult(outcome=outcome, entry=entry, message=message)

    def _over_allocation(self, member_id: str, month_keys: Iterable[MonthKey]) -> Tuple[OverAllocationWarning, ...]:
        warnings = []
        for month_key in sorted(set(month_keys)):
            total = member_monthly_total(self._entries, member_id, month_key)
            if classify_allocation(total, self._epsilon) is AllocationStatus.OVER:
                warning = OverAllocationWarning(member_id=member_id, month_key=month_key, total=total)
                logger.warning(warning.message)
                warnings.append(warning)
        return tuple(warnings)

    # ---------- transient rows ----------
    def add_row(self, task_id: str) -> LifecycleResult:
        self._require_leaf(task_id)
        self._transient.add(task_id)
        return LifecycleResult(outcome=Outcome.ROW_ADDED)

    def cancel_row(self, task_id: str) -> LifecycleResult:
        if task_id not in self._transient:
            return self._reject(Outcome.NOT_TRANSIENT, f"no pending row for task {task_id}")
        self._transient.discard(task_id)
        return LifecycleResult(outcome=Outcome.ROW_CANCELLED)

    def commit_member(self, task_id: str, member_id: str, project_id: str) -> LifecycleResult:
        if task_id not in self._transient:
            return self._reject(Outcome.NOT_TRANSIENT, f"no pending row for task {task_id}")
        if not member_id:
            return self._reject(Outcome.MEMBER_REQUIRED, "select a member")
        existing = self._find_pair(task_id, member_id)
        if existing is not None:
            return self._reject(
                Outcome.DUPLICATE, f"member {member_id} is already assigned to task {task_id}", existing
            )
        now = self._clock()
        entry = AssignmentEntry(
            id=self._id_factory(),
            project_id=project_id,
            task_id=task_id,
            member_id=member_id,
            monthly_values={},
            created_at=now,
            updated_at=now,
        )
        self._entries.append(entry)
        self._transient.discard(task_id)
        return LifecycleResult(outcome=Outcome.CREATED, entry=entry)

    # ---------- committed rows ----------
    def change_member(self, assignment_id: str, member_id: str) -> LifecycleResult:
        idx = self._index_of(assignment_id)
        current = self._entries[idx]
        if not member_id:
            return self._reject(Outcome.MEMBER_REQUIRED, "select a member", current)
        if member_id == current.member_id:
            return LifecycleResult(outcome=Outcome.UNCHANGED, entry=current)
        if self._find_pair(current.task_id, member_id, exclude_id=current.id) is not None:
            return self._reject(
                Outcome.DUPLICATE,
                f"member {member_id} is already assigned to task {current.task_id}",
                current,
            )
        now = self._clock()
        swapped = AssignmentEntry(
            id=self._id_factory(),
            project_id=current.project_id,
            task_id=current.task_id,
            member_id=member_id,
            monthly_values=dict(current.monthly_values),
            created_at=now,
            updated_at=now,
        )
        # the swapped entry takes the old row's position in the ledger
        self._entries[idx] = swapped
        warnings = self._over_allocation(member_id, swapped.monthly_values)
        return LifecycleResult(outcome=Outcome.MEMBER_CHANGED, entry=swapped, warnings=warnings)

    def set_monthly_value(
        self, assignment_id: str, month_key: MonthKey, raw: Union[str, float]
    ) -> LifecycleResult:
        parse_month_key(month_key)
        idx = self._index_of(assignment_id)
        current = self._entries[idx]
        parsed = parse_allocation_input(raw if isinstance(raw, str) else str(raw))
        if parsed is None:
            return self._reject(Outcome.INVALID_VALUE, f"invalid value {raw!r} (0.00-1.00)", current)
        values = dict(current.monthly_values)
        if parsed == 0:
            values.pop(month_key, None)
            outcome = Outcome.VALUE_CLEARED
        else:
            values[month_key] = parsed
            outcome = Outcome.VALUE_SET
        updated = replace(current, monthly_values=values, updated_at=self._clock())
        self._entries[idx] = updated
        warnings = self._over_allocation(updated.member_id, [month_key])
        return LifecycleResult(outcome=outcome, entry=updated, warnings=warnings)

    def delete_row(self, assignment_id: str) -> LifecycleResult:
        removed = self._entries.pop(self._index_of(assignment_id))
        return LifecycleResult(outcome=Outcome.DELETED, entry=removed)

    def delete_by_task(self, task_id: str) -> int:
        before = len(self._entries)
        self._entries = [entry for entry in self._entries if entry.task_id != task_id]
        self._transient.discard(task_id)
        return before - len(self._entries)

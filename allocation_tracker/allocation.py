from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass
from enum import Enum
from typing import Collection, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

import pandas as pd

from .models import (
    ALLOCATION_CEILING,
    ALLOCATION_EPSILON,
    DEFAULT_FISCAL_YEAR_START_MONTH,
    UNKNOWN_LABEL,
    AssignmentEntry,
    Member,
    MonthKey,
    Project,
)
from .months import fiscal_months

NULL_CONFIDENCE_KEY = "__null__"


class AllocationStatus(str, Enum):
    UNDER = "under"
    EXACT = "exact"
    OVER = "over"

    @property
    def severity(self) -> int:
        return _SEVERITY[self]


_SEVERITY = {AllocationStatus.UNDER: 0, AllocationStatus.EXACT: 1, AllocationStatus.OVER: 2}


@dataclass(frozen=True)
class BreakdownItem:
    project_id: str
    task_id: str
    project_label: str
    value: float


@dataclass(frozen=True)
class OverAllocation:
    member_id: str
    month_key: MonthKey
    total: float


@dataclass(frozen=True)
class MemberAssignmentSummary:
    member_id: str
    member_name: str
    monthly_totals: Dict[MonthKey, float]


def member_monthly_total(
    ledger: Iterable[AssignmentEntry], member_id: str, month_key: MonthKey
) -> float:
    """Sum of one member's allocation in one month across every project."""
    return sum(entry.value_for(month_key) for entry in ledger if entry.member_id == member_id)


def classify_allocation(total: float, epsilon: float = ALLOCATION_EPSILON) -> AllocationStatus:
    if total > ALLOCATION_CEILING + epsilon:
        return AllocationStatus.OVER
    if total < ALLOCATION_CEILING - epsilon:
        return AllocationStatus.UNDER
    return AllocationStatus.EXACT


def project_label(project_lookup: Mapping[str, Project], project_id: str) -> str:
    project = project_lookup.get(project_id)
    return project.display_name() if project is not None else UNKNOWN_LABEL


def member_monthly_breakdown(
    ledger: Iterable[AssignmentEntry],
    member_id: str,
    month_key: MonthKey,
    project_lookup: Mapping[str, Project],
) -> List[BreakdownItem]:
    """Per-entry contributions to a member's month total, in ledger order."""
    items: List[BreakdownItem] = []
    for entry in ledger:
        if entry.member_id != member_id:
            continue
        value = entry.value_for(month_key)
        if value <= 0:
            continue
        items.append(
            BreakdownItem(
                project_id=entry.project_id,
                task_id=entry.task_id,
                project_label=project_label(project_lookup, entry.project_id),
                value=value,
            )
        )
    return items


class MonthlyTotals:
    """Pre-indexed member/month totals over a ledger snapshot.

    Instances are callables with the ``(member_id, month_key)`` signature the
    revenue functions expect. Build a new one after the ledger changes.
    """

    def __init__(self, ledger: Iterable[AssignmentEntry]) -> None:
        totals: Dict[Tuple[str, MonthKey], float] = defaultdict(float)
        for entry in ledger:
            for month_key, value in entry.monthly_values.items():
                totals[(entry.member_id, month_key)] += value
        self._totals = dict(totals)

    def __call__(self, member_id: str, month_key: MonthKey) -> float:
        return self._totals.get((member_id, month_key), 0.0)

    def items(self) -> Iterable[Tuple[Tuple[str, MonthKey], float]]:
        return self._totals.items()


def find_over_allocations(
    ledger: Iterable[AssignmentEntry],
    month_keys: Optional[Collection[MonthKey]] = None,
    epsilon: float = ALLOCATION_EPSILON,
) -> List[OverAllocation]:
    wanted = set(month_keys) if month_keys is not None else None
    found = [
        OverAllocation(member_id=member_id, month_key=month_key, total=total)
        for (member_id, month_key), total in MonthlyTotals(ledger).items()
        if (wanted is None or month_key in wanted)
        and classify_allocation(total, epsilon) is AllocationStatus.OVER
    ]
    found.sort(key=lambda item: (item.member_id, item.month_key))
    return found


def member_assignment_summary(
    members: Iterable[Member],
    ledger: Sequence[AssignmentEntry],
    fiscal_year: int,
    start_month: int = DEFAULT_FISCAL_YEAR_START_MONTH,
) -> List[MemberAssignmentSummary]:
    """Fiscal-year monthly totals for active members with at least one assignment."""
    months = set(fiscal_months(fiscal_year, start_month))
    by_member: Dict[str, List[AssignmentEntry]] = defaultdict(list)
    for entry in ledger:
        by_member[entry.member_id].append(entry)
    summaries: List[MemberAssignmentSummary] = []
    for member in members:
        if not member.is_active:
            continue
        monthly_totals: Dict[MonthKey, float] = {}
        for entry in by_member.get(member.id, []):
            for month_key, value in entry.monthly_values.items():
                if month_key not in months or value == 0:
                    continue
                monthly_totals[month_key] = monthly_totals.get(month_key, 0.0) + value
        if monthly_totals:
            summaries.append(
                MemberAssignmentSummary(
                    member_id=member.id, member_name=member.name, monthly_totals=monthly_totals
                )
            )
    return summaries


def project_monthly_assignments(
    ledger: Iterable[AssignmentEntry],
    fiscal_year: int,
    start_month: int = DEFAULT_FISCAL_YEAR_START_MONTH,
) -> pd.DataFrame:
    """Fiscal months as rows, projects as columns, summed allocation as values."""
    months = fiscal_months(fiscal_year, start_month)
    month_set = set(months)
    records = [
        {"month": month_key, "project_id": entry.project_id, "value": value}
        for entry in ledger
        for month_key, value in entry.monthly_values.items()
        if month_key in month_set and value != 0
    ]
    if not records:
        return pd.DataFrame(index=pd.Index(months, name="month"))
    frame = pd.DataFrame(records).pivot_table(
        index="month", columns="project_id", values="value", aggfunc="sum"
    )
    frame.columns.name = None
    return frame.reindex(months).fillna(0.0).rename_axis("month")


def filter_assignments_by_confidence(
    ledger: Iterable[AssignmentEntry],
    projects: Iterable[Project],
    selected: Collection[str],
) -> List[AssignmentEntry]:
    """Entries whose project confidence is selected; ``None`` is keyed as ``__null__``."""
    lookup = {project.id: project for project in projects}
    kept: List[AssignmentEntry] = []
    for entry in ledger:
        project = lookup.get(entry.project_id)
        if project is None:
            continue
        if (project.confidence or NULL_CONFIDENCE_KEY) in selected:
            kept.append(entry)
    return kept

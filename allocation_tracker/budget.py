"""Rate history resolution and budget / expected revenue figures.

Amounts are whatever unit the price history uses (monthly rate per person).
Budget assumes full utilization in every active month; expected revenue
weights each month's rate by the member's actual cross-project allocation.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from typing import Callable, Collection, Iterable, List, Optional, Sequence, Union

import pandas as pd

from .allocation import MonthlyTotals
from .models import (
    DEFAULT_FISCAL_YEAR_START_MONTH,
    AssignmentEntry,
    Member,
    MonthKey,
    Section,
    UnitPriceEntry,
)
from .months import fiscal_months, month_key_of

MonthlyTotalFn = Callable[[str, MonthKey], float]

OPEN_ENDED_MONTH = "9999-12"
UNAFFILIATED = "__unaffiliated__"


@dataclass(frozen=True)
class UtilizationRate:
    member_id: str
    member_name: str
    rate: float
    active_months: int


def applicable_rate(history: Iterable[UnitPriceEntry], target_month: MonthKey) -> float:
    """Amount of the latest entry effective on or before ``target_month``, else 0."""
    applicable = 0.0
    for entry in sorted(history, key=lambda item: item.effective_from):
        if entry.effective_from > target_month:
            break
        applicable = entry.amount
    return applicable


def _as_month(value: Union[date, str, None]) -> Optional[MonthKey]:
    if not value:
        return None
    if isinstance(value, date):
        return month_key_of(value)
    return value[:7]


def active_fiscal_months(
    start_date: Union[date, str, None],
    end_date: Union[date, str, None],
    fiscal_year: int,
    start_month: int = DEFAULT_FISCAL_YEAR_START_MONTH,
) -> List[MonthKey]:
    """Fiscal-year months inside the employment window, both ends inclusive.

    An unknown start date yields no months; a missing end date is open-ended.
    """
    member_start = _as_month(start_date)
    if member_start is None:
        return []
    member_end = _as_month(end_date) or OPEN_ENDED_MONTH
    return [
        month_key
        for month_key in fiscal_months(fiscal_year, start_month)
        if member_start <= month_key <= member_end
    ]


def _member_months(member: Member, fiscal_year: int, start_month: int) -> List[MonthKey]:
    return active_fiscal_months(member.start_date, member.end_date, fiscal_year, start_month)


def revenue_budget(
    member: Member, fiscal_year: int, start_month: int = DEFAULT_FISCAL_YEAR_START_MONTH
) -> float:
    return sum(
        applicable_rate(member.unit_price_history, month_key) * 1.0
        for month_key in _member_months(member, fiscal_year, start_month)
    )


def expected_revenue(
    member: Member,
    monthly_total_fn: MonthlyTotalFn,
    fiscal_year: int,
    start_month: int = DEFAULT_FISCAL_YEAR_START_MONTH,
) -> float:
    return sum(
        applicable_rate(member.unit_price_history, month_key) * monthly_total_fn(member.id, month_key)
        for month_key in _member_months(member, fiscal_year, start_month)
    )


def section_budget(
    members: Iterable[Member], fiscal_year: int, start_month: int = DEFAULT_FISCAL_YEAR_START_MONTH
) -> float:
    return sum(revenue_budget(member, fiscal_year, start_month) for member in members)


def section_expected_revenue(
    members: Iterable[Member],
    monthly_total_fn: MonthlyTotalFn,
    fiscal_year: int,
    start_month: int = DEFAULT_FISCAL_YEAR_START_MONTH,
) -> float:
    return sum(
        expected_revenue(member, monthly_total_fn, fiscal_year, start_month) for member in members
    )


def _division_members(sections: Iterable[Section], all_members: Iterable[Member]) -> List[Member]:
    section_ids = {section.id for section in sections}
    return [
        member
        for member in all_members
        if member.section_id is not None and member.section_id in section_ids
    ]


def division_budget(
    sections: Iterable[Section],
    all_members: Iterable[Member],
    fiscal_year: int,
    start_month: int = DEFAULT_FISCAL_YEAR_START_MONTH,
) -> float:
    return section_budget(_division_members(sections, all_members), fiscal_year, start_month)


def division_expected_revenue(
    sections: Iterable[Section],
    all_members: Iterable[Member],
    monthly_total_fn: MonthlyTotalFn,
    fiscal_year: int,
    start_month: int = DEFAULT_FISCAL_YEAR_START_MONTH,
) -> float:
    return section_expected_revenue(
        _division_members(sections, all_members), monthly_total_fn, fiscal_year, start_month
    )


def utilization_rate(
    member: Member,
    monthly_total_fn: MonthlyTotalFn,
    fiscal_year: int,
    start_month: int = DEFAULT_FISCAL_YEAR_START_MONTH,
) -> Optional[float]:
    """Average allocation over active months; ``None`` when there are none."""
    months = _member_months(member, fiscal_year, start_month)
    if not months:
        return None
    return sum(monthly_total_fn(member.id, month_key) for month_key in months) / len(months)


def member_utilization_rates(
    members: Iterable[Member],
    ledger: Iterable[AssignmentEntry],
    fiscal_year: int,
    start_month: int = DEFAULT_FISCAL_YEAR_START_MONTH,
) -> List[UtilizationRate]:
    totals = MonthlyTotals(ledger)
    rates: List[UtilizationRate] = []
    for member in members:
        if not member.is_active or member.start_date is None:
            continue
        rate = utilization_rate(member, totals, fiscal_year, start_month)
        if rate is None:
            continue
        rates.append(
            UtilizationRate(
                member_id=member.id,
                member_name=member.name,
                rate=rate,
                active_months=len(_member_months(member, fiscal_year, start_month)),
            )
        )
    return rates


def filter_members_by_organization(
    members: Iterable[Member],
    sections: Iterable[Section],
    division_id: Optional[str] = None,
    section_id: Optional[str] = None,
) -> List[Member]:
    """Members under a division or section; ``UNAFFILIATED`` selects members without one."""
    members = list(members)
    if not division_id:
        return members
    if division_id == UNAFFILIATED:
        return [member for member in members if not member.section_id]
    if section_id:
        return [member for member in members if member.section_id == section_id]
    return _division_members(
        (section for section in sections if section.division_id == division_id), members
    )


def budget_frame(
    members: Sequence[Member],
    monthly_total_fn: MonthlyTotalFn,
    fiscal_year: int,
    start_month: int = DEFAULT_FISCAL_YEAR_START_MONTH,
    sections: Collection[Section] = (),
) -> pd.DataFrame:
    section_names = {section.id: section.name for section in sections}
    rows = []
    for member in members:
        budget = revenue_budget(member, fiscal_year, start_month)
        expected = expected_revenue(member, monthly_total_fn, fiscal_year, start_month)
        utilization = utilization_rate(member, monthly_total_fn, fiscal_year, start_month)
        rows.append(
            {
                "member_id": member.id,
                "member_name": member.name,
                "section": section_names.get(member.section_id or "", ""),
                "active_months": len(_member_months(member, fiscal_year, start_month)),
                "budget": round(budget, 4),
                "expected_revenue": round(expected, 4),
                "gap": round(budget - expected, 4),
                "utilization": round(utilization, 4) if utilization is not None else None,
            }
        )
    return pd.DataFrame(
        rows,
        columns=[
            "member_id",
            "member_name",
            "section",
            "active_months",
            "budget",
            "expected_revenue",
            "gap",
            "utilization",
        ],
    )

from __future__ import annotations

from datetime import date

import pytest

from allocation_tracker.allocation import MonthlyTotals
from allocation_tracker.budget import (
    UNAFFILIATED,
    active_fiscal_months,
    applicable_rate,
    budget_frame,
    division_budget,
    division_expected_revenue,
    expected_revenue,
    filter_members_by_organization,
    member_utilization_rates,
    revenue_budget,
    section_budget,
    section_expected_revenue,
    utilization_rate,
)
from allocation_tracker.models import AssignmentEntry, Member, UnitPriceEntry


def _member(**overrides) -> Member:
    fields = dict(
        id="m",
        name="Member",
        start_date=date(2025, 7, 1),
        unit_price_history=(UnitPriceEntry("2025-07", 100.0),),
    )
    fields.update(overrides)
    return Member(**fields)


def test_applicable_rate_picks_latest_effective_entry() -> None:
    history = [UnitPriceEntry("2025-10", 120.0), UnitPriceEntry("2025-04", 90.0)]

    assert applicable_rate(history, "2025-03") == 0
    assert applicable_rate(history, "2025-04") == 90
    assert applicable_rate(history, "2025-09") == 90
    assert applicable_rate(history, "2025-10") == 120
    assert applicable_rate(history, "2026-03") == 120
    assert applicable_rate([], "2025-04") == 0


def test_active_months_mid_year_start() -> None:
    months = active_fiscal_months(date(2025, 7, 1), None, 2025)

    assert months[0] == "2025-07"
    assert months[-1] == "2026-03"
    assert len(months) == 9


def test_active_months_with_end_date_and_unknown_start() -> None:
    assert active_fiscal_months("2025-04-15", "2025-06-30", 2025) == ["2025-04", "2025-05", "2025-06"]
    assert active_fiscal_months(None, None, 2025) == []
    assert active_fiscal_months("", None, 2025) == []
    assert revenue_budget(_member(start_date=""), 2025) == 0


def test_budget_for_mid_year_joiner() -> None:
    member = _member()

    assert revenue_budget(member, 2025, 4) == pytest.approx(900)
    assert revenue_budget(member, 2024, 4) == 0


def test_budget_picks_up_rate_change() -> None:
    member = _member(
        start_date=date(2025, 4, 1),
        unit_price_history=(UnitPriceEntry("2025-04", 50.0), UnitPriceEntry("2025-10", 60.0)),
    )

    assert revenue_budget(member, 2025) == pytest.approx(6 * 50 + 6 * 60)


def test_expected_revenue_weights_by_allocation() -> None:
    member = _member()
    ledger = [
        AssignmentEntry(id="e", project_id="p", task_id="t", member_id="m", monthly_values={"2025-07": 0.5, "2025-08": 1.0}),
        # months before the start date do not count
        AssignmentEntry(id="f", project_id="p", task_id="u", member_id="m", monthly_values={"2025-05": 1.0}),
    ]

    assert expected_revenue(member, MonthlyTotals(ledger), 2025) == pytest.approx(150)


def test_budget_at_least_expected_when_not_over_allocated() -> None:
    member = _member()
    ledger = [
        AssignmentEntry(id=str(i), project_id="p", task_id="t", member_id="m", monthly_values={month: 0.3 * (i + 1)})
        for i, month in enumerate(["2025-07", "2025-08", "2025-09"])
    ]
    totals = MonthlyTotals(ledger)

    assert revenue_budget(member, 2025) >= expected_revenue(member, totals, 2025)


def test_utilization_over_active_months() -> None:
    member = _member()
    ledger = [
        AssignmentEntry(id="e", project_id="p", task_id="t", member_id="m", monthly_values={"2025-07": 0.9, "2025-08": 0.9})
    ]

    assert utilization_rate(member, MonthlyTotals(ledger), 2025) == pytest.approx(1.8 / 9)
    assert utilization_rate(_member(start_date=None), MonthlyTotals(ledger), 2025) is None


def test_member_utilization_rates_skips_inactive_and_undated(members, ledger) -> None:
    rates = member_utilization_rates(members + [_member(id="nd", start_date=None)], ledger, 2025)

    assert [rate.member_id for rate in rates] == ["ma", "mb"]
    assert rates[0].active_months == 12
    assert rates[0].rate == pytest.approx(1.1 / 12)
    assert rates[1].active_months == 9


def test_section_and_division_sums(members, document) -> None:
    totals = MonthlyTotals(document.assignments)
    active = [member for member in members if member.is_active]

    assert section_budget(active, 2025) == pytest.approx(12 * 80 + 900)
    assert division_budget(document.sections, members, 2025) == pytest.approx(12 * 80 + 900)
    assert section_expected_revenue(active, totals, 2025) == pytest.approx(80 * 1.1 + 100 * 1.0)
    assert division_expected_revenue(document.sections, members, totals, 2025) == pytest.approx(80 * 1.1 + 100 * 1.0)
    assert division_budget([], members, 2025) == 0


def test_filter_members_by_organization(members, document) -> None:
    assert len(filter_members_by_organization(members, document.sections)) == 3
    assert [m.id for m in filter_members_by_organization(members, document.sections, "d1")] == ["ma", "mb"]
    assert [m.id for m in filter_members_by_organization(members, document.sections, "d1", "s2")] == ["mb"]
    assert [m.id for m in filter_members_by_organization(members, document.sections, UNAFFILIATED)] == ["mc"]


def test_budget_frame(members, document) -> None:
    frame = budget_frame(members, MonthlyTotals(document.assignments), 2025, 4, document.sections)

    assert list(frame["member_id"]) == ["ma", "mb", "mc"]
    row = frame.set_index("member_id").loc["mb"]
    assert row["section"] == "Apps"
    assert row["active_months"] == 9
    assert row["budget"] == pytest.approx(900)
    assert row["expected_revenue"] == pytest.approx(100)
    assert row["gap"] == pytest.approx(800)

from __future__ import annotations

import pytest

from allocation_tracker.allocation import (
    AllocationStatus,
    MonthlyTotals,
    classify_allocation,
    filter_assignments_by_confidence,
    find_over_allocations,
    member_assignment_summary,
    member_monthly_breakdown,
    member_monthly_total,
    project_label,
    project_monthly_assignments,
)
from allocation_tracker.models import AssignmentEntry


def test_cross_project_total_over(ledger) -> None:
    total = member_monthly_total(ledger, "ma", "2025-04")

    assert total == pytest.approx(1.1)
    assert classify_allocation(total) is AllocationStatus.OVER


def test_reducing_entry_gives_exact(ledger) -> None:
    ledger[1].monthly_values["2025-04"] = 0.4

    total = member_monthly_total(ledger, "ma", "2025-04")

    assert classify_allocation(total) is AllocationStatus.EXACT
    assert find_over_allocations(ledger) == []


def test_float_noise_still_exact() -> None:
    assert classify_allocation(0.1 + 0.2 + 0.7) is AllocationStatus.EXACT
    assert classify_allocation(0.99) is AllocationStatus.UNDER
    assert classify_allocation(0.0) is AllocationStatus.UNDER


def test_classification_is_monotonic() -> None:
    values = [i / 100 for i in range(0, 201)]
    severities = [classify_allocation(value).severity for value in values]

    assert severities == sorted(severities)


def test_total_for_unassigned_member_is_zero(ledger) -> None:
    assert member_monthly_total(ledger, "nobody", "2025-04") == 0


def test_breakdown_lists_positive_entries_in_ledger_order(ledger, projects) -> None:
    lookup = {project.id: project for project in projects}

    items = member_monthly_breakdown(ledger, "ma", "2025-04", lookup)

    assert [item.project_id for item in items] == ["px", "py"]
    assert items[0].project_label == "Project X (A)"
    assert items[1].value == pytest.approx(0.5)
    assert sum(item.value for item in items) == pytest.approx(member_monthly_total(ledger, "ma", "2025-04"))
    assert member_monthly_breakdown(ledger, "ma", "2025-05", lookup) == []


def test_breakdown_with_missing_project_uses_unknown(projects) -> None:
    lookup = {project.id: project for project in projects}
    ledger = [AssignmentEntry(id="z", project_id="gone", task_id="t", member_id="ma", monthly_values={"2025-04": 0.2})]

    assert member_monthly_breakdown(ledger, "ma", "2025-04", lookup)[0].project_label == "unknown"
    assert project_label(lookup, "py") == "Project Y (B)"


def test_monthly_totals_matches_direct_sum(ledger) -> None:
    totals = MonthlyTotals(ledger)

    assert totals("ma", "2025-04") == pytest.approx(member_monthly_total(ledger, "ma", "2025-04"))
    assert totals("mb", "2025-08") == pytest.approx(0.5)
    assert totals("mb", "2025-09") == 0


def test_find_over_allocations(ledger) -> None:
    found = find_over_allocations(ledger)

    assert len(found) == 1
    assert found[0].member_id == "ma"
    assert found[0].month_key == "2025-04"
    assert find_over_allocations(ledger, month_keys=["2025-05"]) == []


def test_member_assignment_summary_skips_inactive_and_unassigned(ledger, members) -> None:
    ledger.append(
        AssignmentEntry(id="c1", project_id="py", task_id="y1", member_id="mc", monthly_values={"2025-04": 0.5})
    )

    summaries = member_assignment_summary(members, ledger, 2025)

    assert [summary.member_id for summary in summaries] == ["ma", "mb"]
    assert summaries[0].monthly_totals == {"2025-04": pytest.approx(1.1)}


def test_project_monthly_assignments(ledger) -> None:
    frame = project_monthly_assignments(ledger, 2025)

    assert list(frame.index) == [f"2025-{m:02d}" for m in range(4, 13)] + ["2026-01", "2026-02", "2026-03"]
    assert frame.loc["2025-04", "px"] == pytest.approx(0.6)
    assert frame.loc["2025-04", "py"] == pytest.approx(0.5)
    assert frame.loc["2025-08", "px"] == pytest.approx(0.5)
    assert frame.loc["2026-01", "py"] == 0


def test_project_monthly_assignments_empty() -> None:
    frame = project_monthly_assignments([], 2025)

    assert len(frame.index) == 12
    assert frame.empty


def test_filter_by_confidence(ledger, projects) -> None:
    kept = filter_assignments_by_confidence(ledger, projects, {"A"})
    assert {entry.id for entry in kept} == {"a1", "a3"}

    ledger.append(
        AssignmentEntry(id="t1", project_id="x1", task_id="x1", member_id="ma", monthly_values={"2025-06": 0.1})
    )
    null_only = filter_assignments_by_confidence(ledger, projects, {"__null__"})
    assert [entry.id for entry in null_only] == ["t1"]

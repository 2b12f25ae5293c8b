from __future__ import annotations

import argparse
import logging
import sys
from dataclasses import replace
from pathlib import Path
from typing import List, Optional, Sequence

import pandas as pd

from .allocation import (
    MonthlyTotals,
    OverAllocation,
    find_over_allocations,
    member_assignment_summary,
    project_monthly_assignments,
)
from .budget import budget_frame
from .codec import format_allocation_value
from .io_utils import ensure_directory, load_config, load_document, write_csv
from .models import PlanningDocument, TrackerConfig
from .months import fiscal_months
from .rollup import flatten_rows, rows_to_frame
from .tree import build_project_tree

logger = logging.getLogger(__name__)


def _parse_args(argv: Optional[Sequence[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Allocation and revenue report over a planning document (JSON in, CSV out)."
    )
    parser.add_argument("--document", required=True, help="Path to the planning document JSON")
    parser.add_argument("--config", help="Path to configuration JSON file")
    parser.add_argument(
        "--fiscal-year",
        type=int,
        default=None,
        help="Fiscal year to report on (default: the document's fiscalYear)",
    )
    parser.add_argument(
        "--start-month",
        type=int,
        default=None,
        help="Fiscal year start month 1-12 (overrides config.fiscal_year_start_month)",
    )
    parser.add_argument("--outdir", default="out", help="Output directory for generated files")
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Compute and print the summary without writing output files",
    )
    return parser.parse_args(argv)


def _configure_logging(level_name: str) -> None:
    level = getattr(logging, level_name.upper(), logging.INFO)
    logging.basicConfig(level=level, format="%(levelname)s %(message)s")


def _member_allocation_frame(
    document: PlanningDocument, fiscal_year: int, start_month: int
) -> pd.DataFrame:
    months = fiscal_months(fiscal_year, start_month)
    rows = []
    for summary in member_assignment_summary(
        document.members, document.assignments, fiscal_year, start_month
    ):
        row = {"member_id": summary.member_id, "member_name": summary.member_name}
        for month_key in months:
            row[month_key] = round(summary.monthly_totals.get(month_key, 0.0), 4)
        rows.append(row)
    return pd.DataFrame(rows, columns=["member_id", "member_name", *months])


def _write_over_allocation_markdown(
    items: List[OverAllocation], document: PlanningDocument, outdir: Path
) -> Path:
    path = outdir / "over_allocations.md"
    names = {member.id: member.name for member in document.members}
    lines: List[str] = ["# Over-allocated Members", ""]
    if not items:
        lines.append("No member exceeds 1.00 in any month.")
    else:
        for item in items:
            name = names.get(item.member_id, "unknown")
            lines.append(f"- **{name}** {item.month_key}: {format_allocation_value(item.total)}")
    path.write_text("\n".join(lines).strip() + "\n")
    return path


def _print_summary(
    budget_df: pd.DataFrame, over: List[OverAllocation], fiscal_year: int, start_month: int
) -> None:
    months = fiscal_months(fiscal_year, start_month)
    print(f"Fiscal year {fiscal_year} ({months[0]} → {months[-1]})")
    if budget_df.empty:
        print("No members.")
    else:
        for row in budget_df.itertuples(index=False):
            utilization = "n/a" if pd.isna(row.utilization) else f"{row.utilization:.2f}"
            print(
                f"- {row.member_name}: budget {row.budget:,.2f}, expected {row.expected_revenue:,.2f} "
                f"(utilization {utilization})"
            )
        print(
            f"Total: budget {budget_df['budget'].sum():,.2f}, "
            f"expected {budget_df['expected_revenue'].sum():,.2f}"
        )
    if over:
        print("\nOver-allocated:")
        for item in over:
            print(f"- {item.member_id} {item.month_key}: {format_allocation_value(item.total)}")
    else:
        print("\nOver-allocated: none")


def main(argv: Optional[Sequence[str]] = None) -> None:
    args = _parse_args(argv)
    try:
        cfg = load_config(args.config) if args.config else TrackerConfig()
        if args.start_month is not None:
            if not 1 <= args.start_month <= 12:
                raise ValueError("--start-month must be in 1..12")
            cfg = replace(cfg, fiscal_year_start_month=args.start_month)
        document = load_document(args.document)
    except (OSError, ValueError) as exc:
        print(str(exc), file=sys.stderr)
        sys.exit(2)
    _configure_logging(cfg.logging_level)

    fiscal_year = args.fiscal_year if args.fiscal_year is not None else document.fiscal_year
    start_month = cfg.fiscal_year_start_month
    months = fiscal_months(fiscal_year, start_month)

    totals = MonthlyTotals(document.assignments)
    budget_df = budget_frame(document.members, totals, fiscal_year, start_month, document.sections)
    over = find_over_allocations(document.assignments, months, cfg.allocation_epsilon)
    if over:
        logger.warning("%d member-months exceed 1.00", len(over))

    if args.dry_run:
        _print_summary(budget_df, over, fiscal_year, start_month)
        return

    outdir = ensure_directory(args.outdir)
    budget_path = outdir / "member_budget.csv"
    allocation_path = outdir / "member_allocation.csv"
    project_path = outdir / "project_monthly.csv"
    rows_path = outdir / "task_rows.csv"
    write_csv(budget_df, budget_path)
    write_csv(_member_allocation_frame(document, fiscal_year, start_month), allocation_path)
    write_csv(project_monthly_assignments(document.assignments, fiscal_year, start_month), project_path, index=True)
    rows = flatten_rows(
        build_project_tree(document.projects),
        document.assignments,
        document.members,
        month_keys=months,
        unknown_label=cfg.unknown_member_label,
    )
    write_csv(rows_to_frame(rows, months), rows_path)
    over_path = _write_over_allocation_markdown(over, document, outdir)
    for path in (budget_path, allocation_path, project_path, rows_path, over_path):
        print(f"Wrote {path}")


if __name__ == "__main__":
    main()

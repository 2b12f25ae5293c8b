from __future__ import annotations

import os
from pathlib import Path
from typing import Dict, List, Optional

from flask import Flask, jsonify, request

from allocation_tracker.allocation import (
    MonthlyTotals,
    classify_allocation,
    member_monthly_breakdown,
    member_monthly_total,
)
from allocation_tracker.budget import (
    budget_frame,
    filter_members_by_organization,
    section_budget,
    section_expected_revenue,
)
from allocation_tracker.codec import format_allocation_value
from allocation_tracker.io_utils import load_config
from allocation_tracker.lifecycle import AssignmentNotFoundError, LifecycleResult, Outcome
from allocation_tracker.models import AssignmentEntry, TrackerConfig
from allocation_tracker.months import fiscal_months, month_label, parse_month_key, project_schedule_months
from allocation_tracker.rollup import GridRow, flatten_rows
from allocation_tracker.tree import build_project_tree, descendant_project_ids

from .store import DocumentStore

_OUTCOME_STATUS = {
    Outcome.CREATED: 201,
    Outcome.DUPLICATE: 409,
    Outcome.NOT_TRANSIENT: 409,
    Outcome.INVALID_VALUE: 422,
    Outcome.MEMBER_REQUIRED: 422,
}


def _default_document_path() -> Path:
    return (Path(__file__).resolve().parent.parent / "data" / "document.json").resolve()


def _resolve_document_path() -> Path:
    env_value = os.getenv("ALLOCATION_DOCUMENT")
    if env_value:
        return Path(env_value).expanduser().resolve()
    return _default_document_path()


def _resolve_config() -> TrackerConfig:
    env_value = os.getenv("ALLOCATION_CONFIG")
    if env_value:
        return load_config(Path(env_value).expanduser())
    return TrackerConfig()


def _entry_to_dict(entry: Optional[AssignmentEntry]) -> Optional[Dict[str, object]]:
    if entry is None:
        return None
    return {
        "id": entry.id,
        "project_id": entry.project_id,
        "task_id": entry.task_id,
        "member_id": entry.member_id,
        "monthly_values": {key: entry.monthly_values[key] for key in sorted(entry.monthly_values)},
        "created_at": entry.created_at,
        "updated_at": entry.updated_at,
    }


def _row_to_dict(row: GridRow, month_keys: List[str]) -> Dict[str, object]:
    return {
        "row_id": row.row_id,
        "type": row.row_type.value,
        "task_id": row.task_id,
        "task_level": row.task_level,
        "depth": row.depth,
        "task_code": row.task_code,
        "task_name": row.task_name,
        "task_confidence": row.task_confidence,
        "has_children": row.has_children,
        "is_expanded": row.is_expanded,
        "member_id": row.member_id,
        "member_name": row.member_name,
        "assignment_id": row.assignment_id,
        "monthly": {key: format_allocation_value(row.monthly.get(key, 0.0)) for key in month_keys},
        "total": format_allocation_value(row.total),
        "month_editable": row.month_editable,
        "member_editable": row.member_editable,
    }


def _result_response(result: LifecycleResult):
    payload = {
        "outcome": result.outcome.value,
        "ok": result.ok,
        "message": result.message,
        "assignment": _entry_to_dict(result.entry),
        "warnings": [
            {"member_id": w.member_id, "month": w.month_key, "total": w.total, "message": w.message}
            for w in result.warnings
        ],
    }
    return jsonify(payload), _OUTCOME_STATUS.get(result.outcome, 200)


def _split_arg(name: str) -> Optional[List[str]]:
    raw = request.args.get(name)
    if raw is None:
        return None
    return [item for item in raw.split(",") if item]


def create_app(document_path: Optional[Path] = None, config: Optional[TrackerConfig] = None) -> Flask:
    app = Flask(__name__)
    store = DocumentStore(
        Path(document_path) if document_path is not None else _resolve_document_path(),
        config if config is not None else _resolve_config(),
    )
    app.config["DOCUMENT_STORE"] = store

    @app.errorhandler(AssignmentNotFoundError)
    def assignment_not_found(exc: AssignmentNotFoundError):
        return jsonify({"error": str(exc)}), 404

    @app.errorhandler(ValueError)
    def invalid_request(exc: ValueError):
        return jsonify({"error": str(exc)}), 400

    @app.errorhandler(OSError)
    def document_unavailable(exc: OSError):
        return jsonify({"error": str(exc)}), 503

    @app.get("/api/projects")
    def list_projects():
        """Root projects in display order"""
        document = store.load()
        tree = build_project_tree(document.projects)
        lookup = document.project_lookup()
        return jsonify(
            {
                "projects": [
                    {
                        "id": root_id,
                        "code": lookup[root_id].code,
                        "name": lookup[root_id].name,
                        "status": lookup[root_id].status,
                        "confidence": lookup[root_id].confidence,
                    }
                    for root_id in tree.roots
                ]
            }
        )

    @app.get("/api/projects/<project_id>/months")
    def project_months(project_id: str):
        """Month columns for a project from its and its descendants' schedules"""
        document = store.load()
        if project_id not in document.project_lookup():
            return jsonify({"error": f"project {project_id} not found"}), 404
        months = project_schedule_months(
            document.schedule_entries,
            descendant_project_ids(document.projects, project_id),
            _split_arg("phases"),
        )
        return jsonify({"months": months, "labels": [month_label(key) for key in months]})

    @app.get("/api/projects/<project_id>/rows")
    def project_rows(project_id: str):
        """Flattened grid rows; ?collapsed=a,b folds those nodes"""
        document = store.load()
        tree = build_project_tree(document.projects)
        if project_id not in tree:
            return jsonify({"error": f"project {project_id} not found"}), 404
        subtree = tree.subtree(tree.root_of(project_id))
        months = _split_arg("months") or project_schedule_months(
            document.schedule_entries, set(subtree.nodes)
        )
        for month_key in months:
            parse_month_key(month_key)
        collapsed = set(_split_arg("collapsed") or [])
        rows = flatten_rows(
            subtree,
            document.assignments,
            document.members,
            expanded={node_id for node_id in subtree.nodes if node_id not in collapsed},
            transient_task_ids=store.transient_task_ids(),
            month_keys=months,
            unknown_label=store.config.unknown_member_label,
        )
        return jsonify({"months": months, "rows": [_row_to_dict(row, months) for row in rows]})

    @app.post("/api/tasks/<task_id>/pending")
    def add_pending_row(task_id: str):
        return _result_response(store.apply(lambda lifecycle: lifecycle.add_row(task_id)))

    @app.delete("/api/tasks/<task_id>/pending")
    def cancel_pending_row(task_id: str):
        return _result_response(store.apply(lambda lifecycle: lifecycle.cancel_row(task_id)))

    @app.post("/api/tasks/<task_id>/pending/commit")
    def commit_pending_row(task_id: str):
        """Turn the pending row into a ledger entry for the selected member"""
        data = request.get_json(silent=True) or {}
        member_id = str(data.get("member_id") or "")
        document = store.load()
        tree = build_project_tree(document.projects)
        if task_id not in tree:
            return jsonify({"error": f"task {task_id} not found"}), 404
        project_id = tree.root_of(task_id)
        return _result_response(
            store.apply(lambda lifecycle: lifecycle.commit_member(task_id, member_id, project_id))
        )

    @app.delete("/api/tasks/<task_id>/assignments")
    def delete_task_assignments(task_id: str):
        removed = store.delete_task_assignments(task_id)
        return jsonify({"removed": removed})

    @app.patch("/api/assignments/<assignment_id>")
    def change_assignment_member(assignment_id: str):
        data = request.get_json(silent=True) or {}
        member_id = str(data.get("member_id") or "")
        return _result_response(
            store.apply(lambda lifecycle: lifecycle.change_member(assignment_id, member_id))
        )

    @app.put("/api/assignments/<assignment_id>/months/<month_key>")
    def set_assignment_month(assignment_id: str, month_key: str):
        """Set one month's fraction from the raw text the user typed"""
        data = request.get_json(silent=True) or {}
        raw = data.get("value", "")
        if raw is None:
            raw = ""
        return _result_response(
            store.apply(lambda lifecycle: lifecycle.set_monthly_value(assignment_id, month_key, raw))
        )

    @app.delete("/api/assignments/<assignment_id>")
    def delete_assignment(assignment_id: str):
        return _result_response(store.apply(lambda lifecycle: lifecycle.delete_row(assignment_id)))

    @app.get("/api/members/<member_id>/allocation/<month_key>")
    def member_allocation(member_id: str, month_key: str):
        """Cross-project total, status and per-project breakdown for one month"""
        parse_month_key(month_key)
        document = store.load()
        total = member_monthly_total(document.assignments, member_id, month_key)
        status = classify_allocation(total, store.config.allocation_epsilon)
        breakdown = member_monthly_breakdown(
            document.assignments, member_id, month_key, document.project_lookup()
        )
        return jsonify(
            {
                "member_id": member_id,
                "month": month_key,
                "total": format_allocation_value(total),
                "status": status.value,
                "breakdown": [
                    {
                        "project_id": item.project_id,
                        "task_id": item.task_id,
                        "project": item.project_label,
                        "value": format_allocation_value(item.value),
                    }
                    for item in breakdown
                ],
            }
        )

    @app.get("/api/budget")
    def budget_report():
        """Per-member budget and expected revenue; filter with division_id/section_id"""
        document = store.load()
        fiscal_year = request.args.get("fiscal_year", default=document.fiscal_year, type=int)
        start_month = store.config.fiscal_year_start_month
        members = filter_members_by_organization(
            document.members,
            document.sections,
            division_id=request.args.get("division_id"),
            section_id=request.args.get("section_id"),
        )
        totals = MonthlyTotals(document.assignments)
        frame = budget_frame(members, totals, fiscal_year, start_month, document.sections)
        frame = frame.astype(object).where(frame.notna(), None)
        return jsonify(
            {
                "fiscal_year": fiscal_year,
                "months": fiscal_months(fiscal_year, start_month),
                "members": frame.to_dict(orient="records"),
                "budget": section_budget(members, fiscal_year, start_month),
                "expected_revenue": section_expected_revenue(members, totals, fiscal_year, start_month),
            }
        )

    return app


if __name__ == "__main__":
    create_app().run(debug=True)

from __future__ import annotations

import json
from datetime import date
from pathlib import Path
from typing import Dict, List

import pytest

from allocation_tracker.models import (
    AssignmentEntry,
    Division,
    Member,
    PlanningDocument,
    Project,
    ScheduleEntry,
    Section,
    UnitPriceEntry,
)
from allocation_tracker.tree import build_project_tree


def _entry(entry_id: str, project_id: str, task_id: str, member_id: str, values: Dict[str, float]) -> AssignmentEntry:
    return AssignmentEntry(
        id=entry_id,
        project_id=project_id,
        task_id=task_id,
        member_id=member_id,
        monthly_values=dict(values),
        created_at="2025-04-01T00:00:00+00:00",
        updated_at="2025-04-01T00:00:00+00:00",
    )


@pytest.fixture()
def projects() -> List[Project]:
    return [
        Project(id="px", code="P-X", name="Project X", parent_id=None, level=0, status="active", confidence="A"),
        Project(id="x1", code="X-1", name="Task X-1", parent_id="px", level=1),
        Project(id="x2", code="X-2", name="Task X-2", parent_id="px", level=1),
        Project(id="py", code="P-Y", name="Project Y", parent_id=None, level=0, confidence="B"),
        Project(id="y1", code="Y-1", name="Task Y-1", parent_id="py", level=1),
    ]


@pytest.fixture()
def tree(projects):
    return build_project_tree(projects)


@pytest.fixture()
def members() -> List[Member]:
    return [
        Member(
            id="ma",
            name="Member A",
            start_date=date(2024, 4, 1),
            unit_price_history=(UnitPriceEntry("2024-04", 80.0),),
            section_id="s1",
        ),
        Member(
            id="mb",
            name="Member B",
            start_date=date(2025, 7, 1),
            unit_price_history=(UnitPriceEntry("2025-07", 100.0),),
            section_id="s2",
        ),
        Member(id="mc", name="Member C", is_active=False, start_date=date(2023, 4, 1)),
    ]


@pytest.fixture()
def ledger() -> List[AssignmentEntry]:
    return [
        _entry("a1", "px", "x1", "ma", {"2025-04": 0.6}),
        _entry("a2", "py", "y1", "ma", {"2025-04": 0.5}),
        _entry("a3", "px", "x2", "mb", {"2025-07": 0.5, "2025-08": 0.5}),
    ]


@pytest.fixture()
def schedule_entries() -> List[ScheduleEntry]:
    return [
        ScheduleEntry(project_id="px", phase_key="design", start_date="2025-04-01", end_date="2025-06-30"),
        ScheduleEntry(project_id="x1", phase_key="build", start_date="2025-06-01", end_date="2025-12-31"),
        ScheduleEntry(project_id="py", phase_key="design", start_date="2025-05-01", end_date="2025-08-31"),
    ]


@pytest.fixture()
def document(projects, members, ledger, schedule_entries) -> PlanningDocument:
    return PlanningDocument(
        fiscal_year=2025,
        projects=projects,
        members=members,
        assignments=ledger,
        schedule_entries=schedule_entries,
        divisions=[Division(id="d1", name="Delivery")],
        sections=[
            Section(id="s1", division_id="d1", name="Platform"),
            Section(id="s2", division_id="d1", name="Apps", sort_order=1),
        ],
    )


@pytest.fixture()
def document_data() -> dict:
    return {
        "version": "1.0.0",
        "fiscalYear": 2025,
        "projects": [
            {"id": "px", "code": "P-X", "name": "Project X", "parentId": None, "level": 0, "status": "active", "confidence": "A"},
            {"id": "x1", "code": "X-1", "name": "Task X-1", "parentId": "px", "level": 1},
            {"id": "x2", "code": "X-2", "name": "Task X-2", "parentId": "px", "level": 1},
            {"id": "py", "code": "P-Y", "name": "Project Y", "parentId": None, "level": 0, "confidence": "B"},
            {"id": "y1", "code": "Y-1", "name": "Task Y-1", "parentId": "py", "level": 1},
        ],
        "members": [
            {
                "id": "ma",
                "name": "Member A",
                "isActive": True,
                "startDate": "2024-04-01",
                "unitPriceHistory": [{"effectiveFrom": "2024-04", "amount": 80}],
                "sectionId": "s1",
            },
            {
                "id": "mb",
                "name": "Member B",
                "startDate": "2025-07-01",
                "unitPriceHistory": [{"effectiveFrom": "2025-07", "amount": 100}],
                "sectionId": "s2",
            },
        ],
        "assignments": [
            {"id": "a1", "projectId": "px", "taskId": "x1", "memberId": "ma", "monthlyValues": {"2025-04": 0.6}},
            {"id": "a2", "projectId": "py", "taskId": "y1", "memberId": "ma", "monthlyValues": {"2025-04": 0.5}},
        ],
        "scheduleEntries": [
            {"projectId": "px", "phaseKey": "design", "startDate": "2025-04-01", "endDate": "2025-06-30"},
            {"projectId": "py", "phaseKey": "design", "startDate": "2025-05-01", "endDate": "2025-08-31"},
        ],
        "divisions": [{"id": "d1", "name": "Delivery"}],
        "sections": [
            {"id": "s1", "divisionId": "d1", "name": "Platform"},
            {"id": "s2", "divisionId": "d1", "name": "Apps", "sortOrder": 1},
        ],
    }


@pytest.fixture()
def document_path(tmp_path: Path, document_data: dict) -> Path:
    path = tmp_path / "document.json"
    path.write_text(json.dumps(document_data), encoding="utf-8")
    return path

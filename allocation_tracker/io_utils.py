from __future__ import annotations

import json
from datetime import date
from pathlib import Path
from typing import Dict, List, Optional, Sequence, Tuple

import pandas as pd
from dateutil import parser as dateparser

from .models import (
    CONFIDENCE_LEVELS,
    PROJECT_STATUSES,
    AssignmentEntry,
    Division,
    Member,
    PlanningDocument,
    Project,
    ScheduleEntry,
    Section,
    TrackerConfig,
    UnitPriceEntry,
)
from .months import is_month_key
from .tree import validate_levels

_DOCUMENT_REQUIRED_KEYS = {"fiscalYear", "projects", "members"}


def _require_keys(data: dict, required: Sequence[str], source: str) -> None:
    missing = [key for key in required if key not in data]
    if missing:
        raise ValueError(f"{source} missing required fields: {', '.join(missing)}")


def _require_str(value: object, field_name: str) -> str:
    if not isinstance(value, str) or not value.strip():
        raise ValueError(f"'{field_name}' must be a non-empty string")
    return value


def _parse_bool(value: object) -> bool:
    if isinstance(value, bool):
        return value
    if value is None:
        raise ValueError("isActive contains missing values")
    if isinstance(value, (int, float)):
        return bool(value)
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered in {"true", "t", "1", "yes", "y"}:
            return True
        if lowered in {"false", "f", "0", "no", "n"}:
            return False
    raise ValueError(f"cannot interpret boolean value '{value}'")


def _parse_optional_date(value: object, field_name: str) -> Optional[date]:
    if value is None:
        return None
    if isinstance(value, str) and value.strip() == "":
        return None
    try:
        return dateparser.isoparse(str(value)).date()
    except (ValueError, TypeError) as exc:
        raise ValueError(f"invalid date in '{field_name}': {value}") from exc


def _parse_iso_day(value: object, field_name: str) -> str:
    parsed = _parse_optional_date(value, field_name)
    if parsed is None:
        raise ValueError(f"'{field_name}' is required")
    return parsed.isoformat()


def _parse_price_history(raw: object, member_id: str) -> Tuple[UnitPriceEntry, ...]:
    if raw is None:
        return ()
    if not isinstance(raw, list):
        raise ValueError(f"unitPriceHistory must be an array for member {member_id}")
    history: List[UnitPriceEntry] = []
    for item in raw:
        if not isinstance(item, dict):
            raise ValueError(f"unitPriceHistory entries must be objects for member {member_id}")
        effective_from = item.get("effectiveFrom")
        if not is_month_key(effective_from):
            raise ValueError(f"invalid effectiveFrom '{effective_from}' for member {member_id}")
        amount = item.get("amount")
        if not isinstance(amount, (int, float)) or isinstance(amount, bool) or amount < 0:
            raise ValueError(f"unitPriceHistory amount must be a non-negative number for member {member_id}")
        history.append(UnitPriceEntry(effective_from=effective_from, amount=float(amount)))
    history.sort(key=lambda entry: entry.effective_from)
    months = [entry.effective_from for entry in history]
    if len(set(months)) != len(months):
        raise ValueError(f"duplicate effectiveFrom in unitPriceHistory for member {member_id}")
    return tuple(history)


def _parse_project(entry: dict) -> Project:
    _require_keys(entry, ["id", "code", "name", "level"], "project")
    level = entry["level"]
    if not isinstance(level, int) or isinstance(level, bool):
        raise ValueError(f"project {entry['id']} level must be an integer")
    status = entry.get("status") or "not_started"
    if status not in PROJECT_STATUSES:
        raise ValueError(f"unsupported status '{status}' for project {entry['id']}")
    confidence = entry.get("confidence")
    if confidence is not None and confidence not in CONFIDENCE_LEVELS:
        raise ValueError(f"unsupported confidence '{confidence}' for project {entry['id']}")
    return Project(
        id=_require_str(entry["id"], "project.id"),
        code=str(entry["code"]),
        name=str(entry["name"]),
        parent_id=entry.get("parentId") or None,
        level=level,
        status=status,
        confidence=confidence,
    )


def _parse_member(entry: dict) -> Member:
    _require_keys(entry, ["id", "name"], "member")
    member_id = _require_str(entry["id"], "member.id")
    start_date = _parse_optional_date(entry.get("startDate"), "startDate")
    end_date = _parse_optional_date(entry.get("endDate"), "endDate")
    if start_date and end_date and end_date < start_date:
        raise ValueError(f"endDate precedes startDate for member {member_id}")
    return Member(
        id=member_id,
        name=str(entry["name"]),
        is_active=_parse_bool(entry.get("isActive", True)),
        start_date=start_date,
        end_date=end_date,
        unit_price_history=_parse_price_history(entry.get("unitPriceHistory"), member_id),
        section_id=entry.get("sectionId") or None,
        role=str(entry.get("role", "") or ""),
    )


def _parse_assignment(entry: dict) -> AssignmentEntry:
    _require_keys(entry, ["id", "projectId", "taskId", "memberId"], "assignment")
    raw_values = entry.get("monthlyValues") or {}
    if not isinstance(raw_values, dict):
        raise ValueError(f"monthlyValues must be an object for assignment {entry['id']}")
    monthly_values: Dict[str, float] = {}
    for month_key, value in raw_values.items():
        if not is_month_key(month_key):
            raise ValueError(f"invalid month key '{month_key}' in assignment {entry['id']}")
        if not isinstance(value, (int, float)) or isinstance(value, bool) or not 0 <= value <= 1:
            raise ValueError(f"monthly value for {month_key} must be in [0, 1] (assignment {entry['id']})")
        if value == 0:
            continue
        monthly_values[month_key] = float(value)
    return AssignmentEntry(
        id=_require_str(entry["id"], "assignment.id"),
        project_id=str(entry["projectId"]),
        task_id=str(entry["taskId"]),
        member_id=str(entry["memberId"]),
        monthly_values=monthly_values,
        created_at=str(entry.get("createdAt", "")),
        updated_at=str(entry.get("updatedAt", "")),
    )


def _parse_schedule_entry(entry: dict) -> ScheduleEntry:
    _require_keys(entry, ["projectId", "phaseKey", "startDate", "endDate"], "schedule entry")
    start_date = _parse_iso_day(entry["startDate"], "startDate")
    end_date = _parse_iso_day(entry["endDate"], "endDate")
    if end_date < start_date:
        raise ValueError(f"schedule entry for {entry['projectId']} ends before it starts")
    return ScheduleEntry(
        project_id=str(entry["projectId"]),
        phase_key=str(entry["phaseKey"]),
        start_date=start_date,
        end_date=end_date,
    )


def _parse_division(entry: dict) -> Division:
    _require_keys(entry, ["id", "name"], "division")
    return Division(id=str(entry["id"]), name=str(entry["name"]), sort_order=int(entry.get("sortOrder", 0)))


def _parse_section(entry: dict) -> Section:
    _require_keys(entry, ["id", "divisionId", "name"], "section")
    return Section(
        id=str(entry["id"]),
        division_id=str(entry["divisionId"]),
        name=str(entry["name"]),
        sort_order=int(entry.get("sortOrder", 0)),
    )


def _parse_list(data: dict, key: str, parser) -> list:
    raw = data.get(key) or []
    if not isinstance(raw, list):
        raise ValueError(f"'{key}' must be an array")
    parsed = []
    for item in raw:
        if not isinstance(item, dict):
            raise ValueError(f"'{key}' entries must be objects")
        parsed.append(parser(item))
    return parsed


def document_from_dict(data: dict) -> PlanningDocument:
    if not isinstance(data, dict):
        raise ValueError("document must be a JSON object")
    _require_keys(data, sorted(_DOCUMENT_REQUIRED_KEYS), "document")
    fiscal_year = data["fiscalYear"]
    if not isinstance(fiscal_year, int) or not 2000 <= fiscal_year <= 2100:
        raise ValueError("fiscalYear must be an integer in 2000..2100")
    projects = _parse_list(data, "projects", _parse_project)
    validate_levels(projects)
    return PlanningDocument(
        fiscal_year=fiscal_year,
        projects=projects,
        members=_parse_list(data, "members", _parse_member),
        assignments=_parse_list(data, "assignments", _parse_assignment),
        schedule_entries=_parse_list(data, "scheduleEntries", _parse_schedule_entry),
        divisions=_parse_list(data, "divisions", _parse_division),
        sections=_parse_list(data, "sections", _parse_section),
        metadata=dict(data.get("metadata") or {}),
        version=str(data.get("version", "1.0.0")),
    )


def document_to_dict(document: PlanningDocument) -> dict:
    return {
        "version": document.version,
        "fiscalYear": document.fiscal_year,
        "projects": [
            {
                "id": project.id,
                "code": project.code,
                "name": project.name,
                "parentId": project.parent_id,
                "level": project.level,
                "status": project.status,
                "confidence": project.confidence,
            }
            for project in document.projects
        ],
        "members": [
            {
                "id": member.id,
                "name": member.name,
                "isActive": member.is_active,
                "startDate": member.start_date.isoformat() if member.start_date else None,
                "endDate": member.end_date.isoformat() if member.end_date else None,
                "unitPriceHistory": [
                    {"effectiveFrom": entry.effective_from, "amount": entry.amount}
                    for entry in member.unit_price_history
                ],
                "sectionId": member.section_id,
                "role": member.role,
            }
            for member in document.members
        ],
        "assignments": [
            {
                "id": entry.id,
                "projectId": entry.project_id,
                "taskId": entry.task_id,
                "memberId": entry.member_id,
                "monthlyValues": dict(entry.monthly_values),
                "createdAt": entry.created_at,
                "updatedAt": entry.updated_at,
            }
            for entry in document.assignments
        ],
        "scheduleEntries": [
            {
                "projectId": entry.project_id,
                "phaseKey": entry.phase_key,
                "startDate": entry.start_date,
                "endDate": entry.end_date,
            }
            for entry in document.schedule_entries
        ],
        "divisions": [
            {"id": division.id, "name": division.name, "sortOrder": division.sort_order}
            for division in document.divisions
        ],
        "sections": [
            {
                "id": section.id,
                "divisionId": section.division_id,
                "name": section.name,
                "sortOrder": section.sort_order,
            }
            for section in document.sections
        ],
        "metadata": dict(document.metadata),
    }


def load_document(path: str | Path) -> PlanningDocument:
    try:
        data = json.loads(Path(path).read_text(encoding="utf-8"))
    except json.JSONDecodeError as exc:
        raise ValueError(f"document is not valid JSON: {exc}") from exc
    return document_from_dict(data)


def save_document(document: PlanningDocument, path: str | Path) -> None:
    target = Path(path)
    target.parent.mkdir(parents=True, exist_ok=True)
    tmp = target.with_suffix(target.suffix + ".tmp")
    tmp.write_text(json.dumps(document_to_dict(document), ensure_ascii=False, indent=2), encoding="utf-8")
    tmp.replace(target)


def load_config(path: str | Path) -> TrackerConfig:
    data = json.loads(Path(path).read_text())
    if not isinstance(data, dict):
        raise ValueError("config must be a JSON object")
    start_month = data.get("fiscal_year_start_month", 4)
    if not isinstance(start_month, int) or isinstance(start_month, bool) or not 1 <= start_month <= 12:
        raise ValueError("fiscal_year_start_month must be an integer in 1..12")
    epsilon = data.get("allocation_epsilon", 1e-9)
    if not isinstance(epsilon, (int, float)) or isinstance(epsilon, bool) or not 0 <= epsilon < 0.01:
        raise ValueError("allocation_epsilon must be a number in [0, 0.01)")
    unknown_label = data.get("unknown_member_label", "unknown")
    if not isinstance(unknown_label, str):
        raise ValueError("unknown_member_label must be a string")
    logging_level = data.get("logging_level", "INFO")
    if not isinstance(logging_level, str):
        raise ValueError("logging_level must be a string")
    return TrackerConfig(
        fiscal_year_start_month=start_month,
        allocation_epsilon=float(epsilon),
        unknown_member_label=unknown_label,
        logging_level=logging_level,
    )


def ensure_directory(path: str | Path) -> Path:
    target = Path(path)
    target.mkdir(parents=True, exist_ok=True)
    return target


def write_csv(df: pd.DataFrame, path: str | Path, index: bool = False) -> None:
    Path(path).parent.mkdir(parents=True, exist_ok=True)
    df.to_csv(path, index=index)

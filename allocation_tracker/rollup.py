from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass, field
from enum import Enum
from typing import (
    AbstractSet,
    Collection,
    Dict,
    Iterable,
    List,
    Mapping,
    Optional,
    Sequence,
    Union,
)

import pandas as pd

from .models import (
    UNKNOWN_LABEL,
    AssignmentEntry,
    Member,
    MonthKey,
    MonthValues,
    ProjectTree,
    TaskNode,
)

TaskIndex = Mapping[str, Sequence[AssignmentEntry]]


class RowType(str, Enum):
    TASK = "task"
    MEMBER = "member"
    NEW_MEMBER = "new-member"


@dataclass(frozen=True)
class NodeRollup:
    node_id: str
    monthly: MonthValues
    total: float


@dataclass
class GridRow:
    row_id: str
    row_type: RowType
    task_id: str
    task_level: int
    depth: int
    task_name: str = ""
    task_code: str = ""
    task_confidence: Optional[str] = None
    has_children: bool = False
    is_expanded: bool = False
    member_id: str = ""
    member_name: str = ""
    assignment_id: str = ""
    monthly: MonthValues = field(default_factory=dict)
    total: float = 0.0

    @property
    def month_editable(self) -> bool:
        return self.row_type is RowType.MEMBER

    @property
    def member_editable(self) -> bool:
        return self.row_type in (RowType.MEMBER, RowType.NEW_MEMBER)


def index_by_task(ledger: Iterable[AssignmentEntry]) -> Dict[str, List[AssignmentEntry]]:
    """Group ledger entries by task id, keeping ledger order within a task."""
    index: Dict[str, List[AssignmentEntry]] = defaultdict(list)
    for entry in ledger:
        index[entry.task_id].append(entry)
    return dict(index)


def _add_into(
    acc: MonthValues, values: Mapping[MonthKey, float], wanted: Optional[AbstractSet[str]]
) -> None:
    for month_key, value in values.items():
        if wanted is not None and month_key not in wanted:
            continue
        acc[month_key] = acc.get(month_key, 0.0) + value


def _leaf_values(
    node_id: str, by_task: TaskIndex, wanted: Optional[AbstractSet[str]]
) -> MonthValues:
    acc: MonthValues = {}
    # duplicate (task, member) rows are summed like any other entry
    for entry in by_task.get(node_id, ()):
        _add_into(acc, entry.monthly_values, wanted)
    return acc


def collect_descendant_values(
    tree: ProjectTree,
    node_ids: Iterable[str],
    by_task: TaskIndex,
    month_keys: Optional[Collection[MonthKey]] = None,
) -> MonthValues:
    """Sum the leaf assignments under the given nodes without producing rows."""
    wanted = set(month_keys) if month_keys is not None else None
    acc: MonthValues = {}
    for node_id in node_ids:
        node = tree.node(node_id)
        if node.is_leaf:
            _add_into(acc, _leaf_values(node_id, by_task, wanted), None)
        else:
            _add_into(acc, collect_descendant_values(tree, node.children, by_task, wanted), None)
    return acc


def rollup_tree(
    tree: ProjectTree,
    ledger: Iterable[AssignmentEntry],
    month_keys: Optional[Collection[MonthKey]] = None,
) -> Dict[str, NodeRollup]:
    """Per-month totals for every node, leaves and ancestors alike (post-order)."""
    by_task = index_by_task(ledger)
    wanted = set(month_keys) if month_keys is not None else None
    results: Dict[str, NodeRollup] = {}

    def _visit(node: TaskNode) -> MonthValues:
        if node.is_leaf:
            values = _leaf_values(node.id, by_task, wanted)
        else:
            values = {}
            for child in node.children:
                _add_into(values, _visit(tree.node(child)), None)
        results[node.id] = NodeRollup(node_id=node.id, monthly=values, total=sum(values.values()))
        return values

    for root_id in tree.roots:
        _visit(tree.node(root_id))
    return results


def flatten_rows(
    tree: ProjectTree,
    ledger: Iterable[AssignmentEntry],
    members: Union[Mapping[str, Member], Iterable[Member]],
    expanded: Optional[AbstractSet[str]] = None,
    transient_task_ids: Collection[str] = (),
    month_keys: Optional[Collection[MonthKey]] = None,
    unknown_label: str = UNKNOWN_LABEL,
) -> List[GridRow]:
    """Flatten a tree into display rows: task rows, member rows, placeholders.

    ``expanded=None`` treats every node as expanded. Collapsed internal nodes
    are summed through :func:`collect_descendant_values`; their task rows
    carry the same totals an expanded walk would produce.
    """
    member_map = members if isinstance(members, Mapping) else {m.id: m for m in members}
    by_task = index_by_task(ledger)
    wanted = set(month_keys) if month_keys is not None else None
    rows: List[GridRow] = []

    def _is_expanded(node_id: str) -> bool:
        return expanded is None or node_id in expanded

    def _walk(node_ids: Sequence[str], depth: int) -> MonthValues:
        subtree_acc: MonthValues = {}
        for node_id in node_ids:
            node = tree.node(node_id)
            is_open = _is_expanded(node.id)
            task_row = GridRow(
                row_id=f"task-{node.id}",
                row_type=RowType.TASK,
                task_id=node.id,
                task_level=node.level,
                depth=depth,
                task_name=node.name,
                task_code=node.code,
                task_confidence=node.confidence,
                has_children=not node.is_leaf,
                is_expanded=is_open,
            )
            rows.append(task_row)

            if node.is_leaf:
                node_values = _leaf_values(node.id, by_task, wanted)
                if is_open:
                    rows.extend(_member_rows(node, depth + 1))
                    if node.id in transient_task_ids:
                        rows.append(
                            GridRow(
                                row_id=f"new-member-{node.id}",
                                row_type=RowType.NEW_MEMBER,
                                task_id=node.id,
                                task_level=node.level,
                                depth=depth + 1,
                            )
                        )
            elif is_open:
                node_values = _walk(node.children, depth + 1)
            else:
                node_values = collect_descendant_values(tree, node.children, by_task, wanted)

            task_row.monthly = node_values
            task_row.total = sum(node_values.values())
            _add_into(subtree_acc, node_values, None)
        return subtree_acc

    def _member_rows(node: TaskNode, depth: int) -> List[GridRow]:
        member_rows: List[GridRow] = []
        for entry in by_task.get(node.id, ()):
            member = member_map.get(entry.member_id)
            values: MonthValues = {}
            _add_into(values, entry.monthly_values, wanted)
            member_rows.append(
                GridRow(
                    row_id=f"member-{entry.id}",
                    row_type=RowType.MEMBER,
                    task_id=node.id,
                    task_level=node.level,
                    depth=depth,
                    member_id=entry.member_id,
                    member_name=member.name if member is not None else unknown_label,
                    assignment_id=entry.id,
                    monthly=values,
                    total=sum(values.values()),
                )
            )
        return member_rows

    _walk(tree.roots, 0)
    return rows


def rows_to_frame(rows: Sequence[GridRow], month_keys: Sequence[MonthKey]) -> pd.DataFrame:
    records = []
    for row in rows:
        record: Dict[str, object] = {
            "row_id": row.row_id,
            "type": row.row_type.value,
            "depth": row.depth,
            "task_code": row.task_code,
            "task_name": row.task_name,
            "member_name": row.member_name,
        }
        for month_key in month_keys:
            record[month_key] = round(row.monthly.get(month_key, 0.0), 4)
        record["total"] = round(row.total, 4)
        records.append(record)
    columns = ["row_id", "type", "depth", "task_code", "task_name", "member_name", *month_keys, "total"]
    return pd.DataFrame(records, columns=columns)

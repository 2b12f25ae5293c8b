from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date
from typing import Dict, Iterator, List, Mapping, Optional, Tuple


MonthKey = str
MonthValues = Dict[MonthKey, float]

MAX_PROJECT_LEVEL = 5
DEFAULT_FISCAL_YEAR_START_MONTH = 4
ALLOCATION_CEILING = 1.0
ALLOCATION_EPSILON = 1e-9
UNKNOWN_LABEL = "unknown"

PROJECT_STATUSES = ("not_started", "active", "completed")
CONFIDENCE_LEVELS = ("S", "A", "B", "C")


@dataclass(frozen=True)
class Project:
    """Project or task record as stored in the document (parent-pointer form)."""

    id: str
    code: str
    name: str
    parent_id: Optional[str]
    level: int
    status: str = "not_started"
    confidence: Optional[str] = None

    @property
    def is_root(self) -> bool:
        return self.parent_id is None

    def display_name(self) -> str:
        return f"{self.name} ({self.confidence})" if self.confidence else self.name


@dataclass(frozen=True)
class TaskNode:
    id: str
    code: str
    name: str
    parent_id: Optional[str]
    level: int
    children: Tuple[str, ...] = ()
    confidence: Optional[str] = None

    @property
    def is_leaf(self) -> bool:
        return not self.children


@dataclass(frozen=True)
class ProjectTree:
    """Arena of task nodes indexed by id, with ordered roots.

    Built once per computation from the flat project list and never mutated.
    """

    nodes: Mapping[str, TaskNode]
    roots: Tuple[str, ...]

    def __contains__(self, node_id: object) -> bool:
        return node_id in self.nodes

    def __len__(self) -> int:
        return len(self.nodes)

    def node(self, node_id: str) -> TaskNode:
        try:
            return self.nodes[node_id]
        except KeyError as exc:
            raise KeyError(f"node '{node_id}' not in tree") from exc

    def find(self, node_id: str) -> Optional[TaskNode]:
        return self.nodes.get(node_id)

    def children_of(self, node_id: str) -> List[TaskNode]:
        return [self.nodes[child] for child in self.node(node_id).children]

    def iter_preorder(self, start: Optional[str] = None) -> Iterator[TaskNode]:
        stack = [start] if start is not None else list(reversed(self.roots))
        while stack:
            node = self.node(stack.pop())
            yield node
            stack.extend(reversed(node.children))

    def descendant_ids(self, node_id: str) -> List[str]:
        return [node.id for node in self.iter_preorder(node_id)][1:]

    def leaf_ids(self, node_id: Optional[str] = None) -> List[str]:
        return [node.id for node in self.iter_preorder(node_id) if node.is_leaf]

    def root_of(self, node_id: str) -> str:
        node = self.node(node_id)
        while node.parent_id is not None and node.parent_id in self.nodes:
            node = self.nodes[node.parent_id]
        return node.id

    def subtree(self, root_id: str) -> "ProjectTree":
        kept = {node.id: node for node in self.iter_preorder(root_id)}
        return ProjectTree(nodes=kept, roots=(root_id,))


@dataclass
class AssignmentEntry:
    """One member attached to one leaf task; monthly values are sparse."""

    id: str
    project_id: str
    task_id: str
    member_id: str
    monthly_values: MonthValues = field(default_factory=dict)
    created_at: str = ""
    updated_at: str = ""

    def value_for(self, month_key: MonthKey) -> float:
        return self.monthly_values.get(month_key, 0.0)

    def total(self) -> float:
        return sum(self.monthly_values.values())


@dataclass(frozen=True)
class UnitPriceEntry:
    effective_from: MonthKey
    amount: float


@dataclass(frozen=True)
class Member:
    """Roster entry with employment window and dated price history."""

    id: str
    name: str
    is_active: bool = True
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    unit_price_history: Tuple[UnitPriceEntry, ...] = ()
    section_id: Optional[str] = None
    role: str = ""


@dataclass(frozen=True)
class ScheduleEntry:
    project_id: str
    phase_key: str
    start_date: str
    end_date: str


@dataclass(frozen=True)
class Division:
    id: str
    name: str
    sort_order: int = 0


@dataclass(frozen=True)
class Section:
    id: str
    division_id: str
    name: str
    sort_order: int = 0


@dataclass
class PlanningDocument:
    """Whole document exchanged with the persistence layer."""

    fiscal_year: int
    projects: List[Project] = field(default_factory=list)
    members: List[Member] = field(default_factory=list)
    assignments: List[AssignmentEntry] = field(default_factory=list)
    schedule_entries: List[ScheduleEntry] = field(default_factory=list)
    divisions: List[Division] = field(default_factory=list)
    sections: List[Section] = field(default_factory=list)
    metadata: Dict[str, object] = field(default_factory=dict)
    version: str = "1.0.0"

    def project_lookup(self) -> Dict[str, Project]:
        return {project.id: project for project in self.projects}

    def member_lookup(self) -> Dict[str, Member]:
        return {member.id: member for member in self.members}

    def sections_for_division(self, division_id: str) -> List[Section]:
        return [section for section in self.sections if section.division_id == division_id]


@dataclass(frozen=True)
class TrackerConfig:
    fiscal_year_start_month: int = DEFAULT_FISCAL_YEAR_START_MONTH
    allocation_epsilon: float = ALLOCATION_EPSILON
    unknown_member_label: str = UNKNOWN_LABEL
    logging_level: str = "INFO"

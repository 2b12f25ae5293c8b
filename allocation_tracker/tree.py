from __future__ import annotations

import logging
from collections import defaultdict
from typing import Dict, Iterable, List, Set

from .models import MAX_PROJECT_LEVEL, Project, ProjectTree, TaskNode

logger = logging.getLogger(__name__)


def build_project_tree(projects: Iterable[Project]) -> ProjectTree:
    """Materialize the parent-pointer project list into an id-indexed arena.

    Siblings are ordered by code. A record whose parent is not in the list is
    left out of the tree, along with everything below it.
    """
    projects = list(projects)
    by_id: Dict[str, Project] = {project.id: project for project in projects}
    child_ids: Dict[str, List[str]] = defaultdict(list)
    root_ids: List[str] = []
    for project in projects:
        if project.parent_id is None:
            root_ids.append(project.id)
        elif project.parent_id in by_id:
            child_ids[project.parent_id].append(project.id)
        else:
            logger.debug("dropping %s: parent %s not found", project.id, project.parent_id)

    def _by_code(ids: List[str]) -> List[str]:
        return sorted(ids, key=lambda node_id: by_id[node_id].code)

    nodes: Dict[str, TaskNode] = {}
    stack = list(root_ids)
    while stack:
        node_id = stack.pop()
        project = by_id[node_id]
        children = tuple(_by_code(child_ids.get(node_id, [])))
        nodes[node_id] = TaskNode(
            id=project.id,
            code=project.code,
            name=project.name,
            parent_id=project.parent_id,
            level=project.level,
            children=children,
            confidence=project.confidence,
        )
        stack.extend(children)
    return ProjectTree(nodes=nodes, roots=tuple(_by_code(root_ids)))


def descendant_project_ids(projects: Iterable[Project], root_id: str) -> Set[str]:
    """The root id plus the ids of every project below it."""
    child_ids: Dict[str, List[str]] = defaultdict(list)
    for project in projects:
        if project.parent_id is not None:
            child_ids[project.parent_id].append(project.id)
    found: Set[str] = {root_id}
    stack = [root_id]
    while stack:
        for child in child_ids.get(stack.pop(), []):
            if child not in found:
                found.add(child)
                stack.append(child)
    return found


def validate_levels(projects: Iterable[Project]) -> None:
    projects = list(projects)
    by_id = {project.id: project for project in projects}
    for project in projects:
        if not 0 <= project.level <= MAX_PROJECT_LEVEL:
            raise ValueError(
                f"project {project.id} level {project.level} outside 0..{MAX_PROJECT_LEVEL}"
            )
        if project.parent_id is None:
            if project.level != 0:
                raise ValueError(f"root project {project.id} must have level 0")
            continue
        parent = by_id.get(project.parent_id)
        if parent is not None and project.level != parent.level + 1:
            raise ValueError(
                f"project {project.id} level {project.level} must be parent level + 1 "
                f"({parent.level + 1})"
            )

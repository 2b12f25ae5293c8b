from __future__ import annotations

import pytest

from allocation_tracker.models import Project
from allocation_tracker.tree import build_project_tree, descendant_project_ids, validate_levels


def test_tree_roots_and_children_ordered_by_code(tree) -> None:
    assert tree.roots == ("px", "py")
    assert [node.id for node in tree.children_of("px")] == ["x1", "x2"]
    assert tree.node("x1").is_leaf
    assert not tree.node("px").is_leaf


def test_preorder_and_leaves(tree) -> None:
    assert [node.id for node in tree.iter_preorder()] == ["px", "x1", "x2", "py", "y1"]
    assert tree.leaf_ids() == ["x1", "x2", "y1"]
    assert tree.leaf_ids("px") == ["x1", "x2"]
    assert tree.descendant_ids("px") == ["x1", "x2"]


def test_root_of_and_subtree(tree) -> None:
    assert tree.root_of("x2") == "px"
    assert tree.root_of("py") == "py"
    sub = tree.subtree("py")
    assert set(sub.nodes) == {"py", "y1"}
    assert sub.roots == ("py",)


def test_unknown_node_raises_key_error(tree) -> None:
    assert tree.find("nope") is None
    with pytest.raises(KeyError):
        tree.node("nope")


def test_orphans_are_left_out() -> None:
    projects = [
        Project(id="r", code="R", name="Root", parent_id=None, level=0),
        Project(id="o", code="O", name="Orphan", parent_id="missing", level=1),
    ]

    tree = build_project_tree(projects)

    assert "o" not in tree
    assert len(tree) == 1


def test_descendant_project_ids_includes_root(projects) -> None:
    assert descendant_project_ids(projects, "px") == {"px", "x1", "x2"}
    assert descendant_project_ids(projects, "y1") == {"y1"}


def test_deep_tree_descendants() -> None:
    projects = [Project(id="l0", code="0", name="L0", parent_id=None, level=0)]
    for level in range(1, 6):
        projects.append(
            Project(id=f"l{level}", code=str(level), name=f"L{level}", parent_id=f"l{level - 1}", level=level)
        )

    validate_levels(projects)
    tree = build_project_tree(projects)

    assert tree.leaf_ids() == ["l5"]
    assert len(descendant_project_ids(projects, "l2")) == 4


@pytest.mark.parametrize(
    "projects",
    [
        [Project(id="r", code="R", name="Root", parent_id=None, level=1)],
        [
            Project(id="r", code="R", name="Root", parent_id=None, level=0),
            Project(id="c", code="C", name="Child", parent_id="r", level=2),
        ],
        [Project(id="r", code="R", name="Root", parent_id="x", level=6)],
    ],
)
def test_validate_levels_rejects_inconsistent_levels(projects) -> None:
    with pytest.raises(ValueError):
        validate_levels(projects)

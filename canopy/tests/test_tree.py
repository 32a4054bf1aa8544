"""Tests for HierarchyNode and HierarchyForest."""

from __future__ import annotations

from canopy.src.models import Participant, Role
from canopy.src.tree import FOLLOWER_WEIGHT, FollowerLeaf, HierarchyForest, HierarchyNode


def _node(pid: str, level: int = 0) -> HierarchyNode:
    return HierarchyNode(
        participant=Participant(id=pid, name=f"Node {pid}", role=Role.MULTIPLIER),
        level=level,
    )


def _leaf(pid: str, level: int = 1) -> FollowerLeaf:
    return FollowerLeaf(
        participant=Participant(id=pid, name=f"Leaf {pid}", role=Role.FOLLOWER),
        level=level,
    )


def _sample_forest() -> HierarchyForest:
    """root -> (a -> (a1 + follower fa), b) + follower fr; second root r2."""
    root = _node("root")
    a = _node("a", 1)
    a1 = _node("a1", 2)
    b = _node("b", 1)
    a.add_child(a1)
    a.add_follower(_leaf("fa", 2))
    root.add_child(a)
    root.add_child(b)
    root.add_follower(_leaf("fr", 1))
    return HierarchyForest(roots=[root, _node("r2")], campaign_label="Spring")


# ===================================================================
# HierarchyNode
# ===================================================================


class TestHierarchyNode:
    """Tests for HierarchyNode."""

    def test_add_child_sets_parent(self):
        parent = _node("p")
        child = _node("c", 1)
        parent.add_child(child)
        assert child.parent is parent
        assert parent.children == [child]

    def test_lone_node_weight(self):
        assert _node("x").weight == 1.0

    def test_follower_counts_half(self):
        node = _node("x")
        node.add_follower(_leaf("f1"))
        node.add_follower(_leaf("f2"))
        assert node.weight == 1.0 + 2 * FOLLOWER_WEIGHT

    def test_weight_sums_children(self):
        forest = _sample_forest()
        root = forest.roots[0]
        # a: 1 + a1 (1) + 0.5 = 2.5 ; b: 1 ; root: 1 + 2.5 + 1 + 0.5
        assert root.children[0].weight == 2.5
        assert root.weight == 5.0

    def test_is_leaf(self):
        forest = _sample_forest()
        assert forest.get_node("b").is_leaf
        assert not forest.get_node("a").is_leaf

    def test_counts(self):
        root = _sample_forest().roots[0]
        assert root.descendant_count == 3
        assert root.subtree_size == 5
        assert root.follower_total == 2

    def test_descendants_dfs_order(self):
        root = _sample_forest().roots[0]
        assert [n.id for n in root.get_all_descendants()] == ["a", "a1", "b"]

    def test_to_dict_nested(self):
        data = _sample_forest().roots[0].to_dict()
        assert data["id"] == "root"
        assert data["child_count"] == 2
        assert data["follower_count"] == 1
        assert [c["id"] for c in data["children"]] == ["a", "b"]
        assert data["followers"][0]["id"] == "fr"

    def test_to_dict_without_children(self):
        data = _sample_forest().roots[0].to_dict(include_children=False)
        assert "children" not in data

    def test_repr(self):
        assert "root" in repr(_sample_forest().roots[0])


# ===================================================================
# HierarchyForest
# ===================================================================


class TestHierarchyForest:
    """Tests for forest-level queries."""

    def test_empty_forest(self):
        forest = HierarchyForest(roots=[])
        assert forest.is_empty
        assert forest.total_multipliers == 0
        assert forest.max_depth == -1
        assert forest.get_statistics()["root_count"] == 0

    def test_totals(self):
        forest = _sample_forest()
        assert forest.total_multipliers == 5
        assert forest.total_followers == 2
        assert forest.max_depth == 2

    def test_all_nodes_dfs(self):
        forest = _sample_forest()
        assert [n.id for n in forest.all_nodes()] == ["root", "a", "a1", "b", "r2"]

    def test_get_node_missing(self):
        assert _sample_forest().get_node("nope") is None

    def test_children_and_followers_of(self):
        forest = _sample_forest()
        assert [p.id for p in forest.children_of("root")] == ["a", "b"]
        assert [p.id for p in forest.followers_of("a")] == ["fa"]
        assert forest.children_of("nope") == []
        assert forest.followers_of("nope") == []

    def test_path_to(self):
        forest = _sample_forest()
        assert [n.id for n in forest.path_to("a1")] == ["root", "a", "a1"]
        assert forest.path_to("nope") == []

    def test_statistics(self):
        stats = _sample_forest().get_statistics()
        assert stats["root_count"] == 2
        assert stats["total_multipliers"] == 5
        assert stats["total_followers"] == 2
        assert stats["leaf_multipliers"] == 3
        assert stats["level_distribution"] == {0: 2, 1: 2, 2: 1}

    def test_to_dict(self):
        data = _sample_forest().to_dict()
        assert data["campaign_label"] == "Spring"
        assert [r["id"] for r in data["roots"]] == ["root", "r2"]

    def test_print_tree(self, capsys):
        _sample_forest().print_tree()
        out = capsys.readouterr().out
        assert "Spring" in out
        assert "[a1]" in out

"""
Hierarchy tree data structures.

The core data structures for representing a campaign's multiplier tree.
"""

from __future__ import annotations

from collections import Counter
from collections.abc import Iterable, Iterator
from dataclasses import dataclass, field
from typing import Any

from canopy.src.models import Participant

# Followers count as half a row so long follower lists stay compact
FOLLOWER_WEIGHT = 0.5


def iter_subtree(node: HierarchyNode) -> Iterator[HierarchyNode]:
    """Yield a node and every multiplier below it in DFS pre-order.

    Uses an explicit stack, so referral chains of any length are safe.
    """
    stack = [node]
    while stack:
        current = stack.pop()
        yield current
        stack.extend(reversed(current.children))


def subtree_weights(roots: Iterable[HierarchyNode]) -> dict[int, float]:
    """Compute the leaf weight of every node in one post-order pass.

    Returns:
        Weights keyed by ``id(node)``.
    """
    order: list[HierarchyNode] = []
    for root in roots:
        order.extend(iter_subtree(root))

    weights: dict[int, float] = {}
    for node in reversed(order):
        weights[id(node)] = (
            1.0
            + sum(weights[id(child)] for child in node.children)
            + FOLLOWER_WEIGHT * len(node.followers)
        )
    return weights


@dataclass
class FollowerLeaf:
    """A terminal follower attached to a multiplier node."""

    participant: Participant
    level: int = 0

    @property
    def id(self) -> str:
        return self.participant.id

    @property
    def name(self) -> str:
        return self.participant.name

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON export."""
        return {
            "id": self.participant.id,
            "name": self.participant.name,
            "level": self.level,
            "participants": self.participant.participants,
        }


@dataclass(eq=False)
class HierarchyNode:
    """
    A multiplier in the campaign hierarchy tree.

    Each node represents one multiplier with:
    - Nested multiplier children (recruited sub-multipliers)
    - Terminal follower leaves (recruited followers)
    - Its depth in the tree (top multipliers are level 0)
    """

    participant: Participant
    level: int = 0
    children: list[HierarchyNode] = field(default_factory=list)
    followers: list[FollowerLeaf] = field(default_factory=list)
    parent: HierarchyNode | None = field(default=None, repr=False, compare=False)

    def add_child(self, child: HierarchyNode) -> None:
        """Add a sub-multiplier under this node."""
        child.parent = self
        self.children.append(child)

    def add_follower(self, follower: FollowerLeaf) -> None:
        """Attach a follower leaf to this node."""
        self.followers.append(follower)

    @property
    def id(self) -> str:
        return self.participant.id

    @property
    def name(self) -> str:
        return self.participant.name

    @property
    def weight(self) -> float:
        """
        Leaf weight of the subtree rooted here.

        One unit for the node itself, plus the weight of every child
        subtree, plus half a unit per direct follower.
        """
        return subtree_weights([self])[id(self)]

    @property
    def is_leaf(self) -> bool:
        """Check if this node has no children and no followers."""
        return not self.children and not self.followers

    @property
    def descendant_count(self) -> int:
        """Count all multiplier descendants (children, grandchildren, etc.)."""
        return sum(1 for _ in iter_subtree(self)) - 1

    @property
    def subtree_size(self) -> int:
        """Count every multiplier and follower below this node."""
        return sum(len(n.children) + len(n.followers) for n in iter_subtree(self))

    @property
    def follower_total(self) -> int:
        """Count followers attached anywhere in this subtree."""
        return sum(len(n.followers) for n in iter_subtree(self))

    def get_all_descendants(self) -> list[HierarchyNode]:
        """Get all multiplier descendants as a flat list (DFS order)."""
        return list(iter_subtree(self))[1:]

    def _summary(self, weights: dict[int, float], sizes: dict[int, int]) -> dict[str, Any]:
        return {
            "id": self.participant.id,
            "name": self.participant.name,
            "leader_id": self.participant.leader_id,
            "level": self.level,
            "participants": self.participant.participants,
            "weight": weights[id(self)],
            "child_count": len(self.children),
            "follower_count": len(self.followers),
            "subtree_size": sizes[id(self)],
            "followers": [f.to_dict() for f in self.followers],
        }

    def to_dict(self, include_children: bool = True) -> dict[str, Any]:
        """
        Convert to dictionary for JSON export.

        Args:
            include_children: If True, nest every child subtree
        """
        order = list(iter_subtree(self)) if include_children else [self]
        weights = subtree_weights([self])
        sizes: dict[int, int] = {}
        for node in reversed(list(iter_subtree(self))):
            sizes[id(node)] = sum(
                1 + sizes[id(child)] for child in node.children
            ) + len(node.followers)

        result = self._summary(weights, sizes)
        if not include_children:
            return result

        # Pre-order guarantees a parent's dict exists before its children
        dicts = {id(self): result}
        for node in order:
            dicts[id(node)]["children"] = []
            for child in node.children:
                child_dict = child._summary(weights, sizes)
                dicts[id(node)]["children"].append(child_dict)
                dicts[id(child)] = child_dict

        return result

    def __repr__(self) -> str:
        """String representation for debugging."""
        return (
            f"<HierarchyNode {self.participant.id} '{self.participant.name[:40]}' "
            f"level={self.level} children={len(self.children)} "
            f"followers={len(self.followers)}>"
        )


@dataclass
class HierarchyForest:
    """
    The multiplier forest for one selection of campaigns.

    Wraps the root nodes and provides forest-level operations.
    """

    roots: list[HierarchyNode]
    campaign_label: str = ""
    metadata: dict[str, Any] = field(default_factory=dict)

    @property
    def is_empty(self) -> bool:
        return not self.roots

    @property
    def total_multipliers(self) -> int:
        """Count every multiplier node in the forest."""
        return len(self.all_nodes())

    @property
    def total_followers(self) -> int:
        """Count every follower leaf in the forest."""
        return sum(len(node.followers) for node in self.all_nodes())

    @property
    def max_depth(self) -> int:
        """Deepest multiplier level (0 when only roots, -1 when empty)."""
        nodes = self.all_nodes()
        if not nodes:
            return -1
        return max(node.level for node in nodes)

    def all_nodes(self) -> list[HierarchyNode]:
        """Get all multiplier nodes as a flat list (DFS order)."""
        nodes = []
        for root in self.roots:
            nodes.extend(iter_subtree(root))
        return nodes

    def get_node(self, participant_id: str) -> HierarchyNode | None:
        """Find a multiplier node by participant ID."""
        for node in self.all_nodes():
            if node.id == participant_id:
                return node
        return None

    def children_of(self, participant_id: str) -> list[Participant]:
        """Participants placed as multiplier children of the given node."""
        node = self.get_node(participant_id)
        if node is None:
            return []
        return [child.participant for child in node.children]

    def followers_of(self, participant_id: str) -> list[Participant]:
        """Participants attached as followers of the given node."""
        node = self.get_node(participant_id)
        if node is None:
            return []
        return [f.participant for f in node.followers]

    def path_to(self, participant_id: str) -> list[HierarchyNode]:
        """
        Get the leader chain from a root down to the given multiplier.

        Example: [root, sub-multiplier, node]. Empty when not in the forest.
        """
        node = self.get_node(participant_id)
        path: list[HierarchyNode] = []
        while node is not None:
            path.append(node)
            node = node.parent
        path.reverse()
        return path

    def get_statistics(self) -> dict[str, Any]:
        """Get forest statistics for dashboards."""
        nodes = self.all_nodes()
        level_distribution = Counter(node.level for node in nodes)
        return {
            "root_count": len(self.roots),
            "total_multipliers": len(nodes),
            "total_followers": sum(len(n.followers) for n in nodes),
            "max_depth": self.max_depth,
            "leaf_multipliers": len([n for n in nodes if not n.children]),
            "level_distribution": dict(level_distribution),
        }

    def to_dict(self) -> dict[str, Any]:
        """Convert the entire forest to a dictionary."""
        return {
            "campaign_label": self.campaign_label,
            "metadata": self.metadata,
            "statistics": self.get_statistics(),
            "roots": [root.to_dict(include_children=True) for root in self.roots],
        }

    def print_tree(self, max_depth: int = 3) -> None:
        """Print the forest structure for debugging."""
        def print_node(node: HierarchyNode, indent: int) -> None:
            if indent > max_depth:
                return

            prefix = "  " * indent
            print(f"{prefix}[{node.id}] {node.name[:60]}")
            print(
                f"{prefix}  Level: {node.level}, Children: {len(node.children)}, "
                f"Followers: {len(node.followers)}, Weight: {node.weight}"
            )

            for child in node.children:
                print_node(child, indent + 1)

        print(f"{self.campaign_label or 'CAMPAIGN'}")
        for root in self.roots:
            print_node(root, 1)

    def __repr__(self) -> str:
        """String representation for debugging."""
        return (
            f"<HierarchyForest label='{self.campaign_label}' "
            f"roots={len(self.roots)} "
            f"multipliers={self.total_multipliers}>"
        )

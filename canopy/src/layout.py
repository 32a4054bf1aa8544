"""
Weight-based layout for multiplier forests.

Turns a HierarchyForest into positioned nodes and directed edges that a
graph canvas can draw without further computation. Columns advance one
horizontal unit per depth level; rows are assigned depth-first so that
sibling subtrees occupy disjoint vertical bands and every parent sits at
the midpoint of what it leads.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from canopy.src.tree import (
    FOLLOWER_WEIGHT,
    FollowerLeaf,
    HierarchyForest,
    HierarchyNode,
    subtree_weights,
)

CAMPAIGN_ROOT_ID = "campaign-root"

MULTIPLIER_LINK = "multiplier-link"
FOLLOWER_LINK = "follower-link"


def multiplier_node_id(participant_id: str) -> str:
    return f"multiplier-{participant_id}"


def follower_node_id(participant_id: str) -> str:
    return f"follower-{participant_id}"


def edge_id(source_id: str, target_id: str) -> str:
    return f"edge-{source_id}-{target_id}"


@dataclass
class LayoutConfig:
    """Spacing constants for the tree layout.

    Attributes:
        horizontal_spacing: Distance between depth columns.
        vertical_spacing: Gap between sibling multiplier subtrees and
            between consecutive leaf rows.
        follower_spacing: Gap between follower rows (smaller, followers
            count as half a row).
        root_gap: Gap between separate top-level trees.
        center_on_root: Shift all rows so the campaign root sits at y=0.
    """

    horizontal_spacing: float = 300.0
    vertical_spacing: float = 180.0
    follower_spacing: float = 90.0
    root_gap: float = 360.0
    center_on_root: bool = True


@dataclass
class LayoutNode:
    """A positioned node ready for rendering."""

    id: str
    label: str
    kind: str
    depth: int
    x: float
    y: float
    child_count: int = 0
    follower_count: int = 0
    weight: float = 0.0
    participants: int = 0
    participant_id: str | None = None

    def to_dict(self) -> dict[str, Any]:
        """Serialize to dictionary."""
        return {
            "id": self.id,
            "label": self.label,
            "kind": self.kind,
            "depth": self.depth,
            "x": self.x,
            "y": self.y,
            "child_count": self.child_count,
            "follower_count": self.follower_count,
            "weight": self.weight,
            "participants": self.participants,
            "participant_id": self.participant_id,
        }


@dataclass
class LayoutEdge:
    """A directed parent -> child edge."""

    id: str
    source_id: str
    target_id: str
    kind: str

    def to_dict(self) -> dict[str, Any]:
        """Serialize to dictionary."""
        return {
            "id": self.id,
            "source_id": self.source_id,
            "target_id": self.target_id,
            "kind": self.kind,
        }


@dataclass
class LayoutGraph:
    """Positioned nodes and edges for one campaign selection.

    Attributes:
        roots: Node IDs of the top-level multipliers, in forest order.
        nodes_by_id: Every positioned node, keyed by node ID.
        edges: Directed edges in creation order.
    """

    roots: list[str] = field(default_factory=list)
    nodes_by_id: dict[str, LayoutNode] = field(default_factory=dict)
    edges: list[LayoutEdge] = field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return not self.nodes_by_id

    def add_node(self, node: LayoutNode) -> None:
        self.nodes_by_id[node.id] = node

    def connect(self, source_id: str, target_id: str, kind: str) -> None:
        self.edges.append(
            LayoutEdge(
                id=edge_id(source_id, target_id),
                source_id=source_id,
                target_id=target_id,
                kind=kind,
            )
        )

    def get_node(self, node_id: str) -> LayoutNode | None:
        return self.nodes_by_id.get(node_id)

    def child_ids(self, node_id: str) -> list[str]:
        """IDs of the nodes this node has edges to, in edge order."""
        return [e.target_id for e in self.edges if e.source_id == node_id]

    def subtree_span(self, node_id: str) -> tuple[float, float]:
        """Vertical range (min y, max y) covered by a node and everything below it.

        Raises:
            KeyError: If the node is not in the graph.
        """
        node = self.nodes_by_id[node_id]
        targets: dict[str, list[str]] = {}
        for edge in self.edges:
            targets.setdefault(edge.source_id, []).append(edge.target_id)

        low = high = node.y
        stack = list(targets.get(node_id, []))
        while stack:
            current = self.nodes_by_id[stack.pop()]
            low = min(low, current.y)
            high = max(high, current.y)
            stack.extend(targets.get(current.id, []))
        return low, high

    def to_dict(self) -> dict[str, Any]:
        """Serialize for the rendering layer."""
        return {
            "roots": list(self.roots),
            "nodes_by_id": {
                node_id: node.to_dict() for node_id, node in self.nodes_by_id.items()
            },
            "edges": [edge.to_dict() for edge in self.edges],
        }


@dataclass
class _Frame:
    """An open multiplier subtree during placement."""

    node: HierarchyNode
    layout_node: LayoutNode
    top: float
    cursor: float
    bottom: float
    positions: list[float] = field(default_factory=list)
    next_child: int = 0


class TreeLayout:
    """
    Assigns coordinates to every node of a HierarchyForest.

    The campaign root is depth 0, top multipliers depth 1, and each
    follower sits one column to the right of the multiplier that
    recruited it.
    """

    def __init__(self, config: LayoutConfig | None = None) -> None:
        self.config = config or LayoutConfig()

    def layout(self, forest: HierarchyForest) -> LayoutGraph:
        """
        Lay out a forest.

        Args:
            forest: Forest from HierarchyTreeBuilder.build_forest()

        Returns:
            LayoutGraph; empty when the forest has no roots
        """
        graph = LayoutGraph()
        if forest.is_empty:
            return graph

        campaign_node = LayoutNode(
            id=CAMPAIGN_ROOT_ID,
            label=forest.campaign_label,
            kind="campaign",
            depth=0,
            x=0.0,
            y=0.0,
            child_count=len(forest.roots),
            weight=sum(subtree_weights([root])[id(root)] for root in forest.roots),
            participants=forest.total_multipliers,
        )
        graph.add_node(campaign_node)

        cursor = 0.0
        centers: list[float] = []
        for root in forest.roots:
            center, bottom = self._place(root, 1, cursor, CAMPAIGN_ROOT_ID, graph)
            centers.append(center)
            graph.roots.append(multiplier_node_id(root.id))
            cursor = bottom + self.config.root_gap

        campaign_node.y = (min(centers) + max(centers)) / 2

        if self.config.center_on_root:
            offset = campaign_node.y
            for node in graph.nodes_by_id.values():
                node.y -= offset

        return graph

    def _place(
        self,
        node: HierarchyNode,
        depth: int,
        top: float,
        parent_id: str,
        graph: LayoutGraph,
    ) -> tuple[float, float]:
        """
        Place a multiplier subtree starting at row ``top``.

        Children are stacked first, each separated by the vertical gap;
        followers follow at the smaller follower gap. The node itself is
        centred over the combined span.

        Returns:
            (node y, lowest y used by the subtree)
        """
        config = self.config
        weights = subtree_weights([node])

        def open_frame(current: HierarchyNode, level: int, row: float, parent: str) -> _Frame:
            node_id = multiplier_node_id(current.id)
            layout_node = LayoutNode(
                id=node_id,
                label=current.name,
                kind="multiplier",
                depth=level,
                x=level * config.horizontal_spacing,
                y=row,
                child_count=len(current.children),
                follower_count=len(current.followers),
                weight=weights[id(current)],
                participants=current.participant.participants,
                participant_id=current.id,
            )
            graph.add_node(layout_node)
            graph.connect(parent, node_id, MULTIPLIER_LINK)
            return _Frame(node=current, layout_node=layout_node, top=row, cursor=row, bottom=row)

        # Explicit stack of open subtrees; deep referral chains must not
        # hit the interpreter's recursion limit
        stack = [open_frame(node, depth, top, parent_id)]
        result = (top, top)
        while stack:
            frame = stack[-1]
            current = frame.node
            layout_node = frame.layout_node

            if frame.next_child < len(current.children):
                child = current.children[frame.next_child]
                frame.next_child += 1
                stack.append(
                    open_frame(child, layout_node.depth + 1, frame.cursor, layout_node.id)
                )
                continue

            if current.followers:
                row = frame.bottom + config.follower_spacing if current.children else frame.top
                for follower in current.followers:
                    self._place_follower(
                        follower, layout_node.depth + 1, row, layout_node.id, graph
                    )
                    frame.positions.append(row)
                    frame.bottom = row
                    row += config.follower_spacing

            if frame.positions:
                layout_node.y = (min(frame.positions) + max(frame.positions)) / 2

            stack.pop()
            result = (layout_node.y, max(frame.bottom, layout_node.y))
            if stack:
                parent_frame = stack[-1]
                parent_frame.positions.append(result[0])
                parent_frame.bottom = result[1]
                parent_frame.cursor = result[1] + config.vertical_spacing

        return result

    def _place_follower(
        self,
        follower: FollowerLeaf,
        depth: int,
        y: float,
        parent_id: str,
        graph: LayoutGraph,
    ) -> None:
        node_id = follower_node_id(follower.id)
        graph.add_node(
            LayoutNode(
                id=node_id,
                label=follower.name,
                kind="follower",
                depth=depth,
                x=depth * self.config.horizontal_spacing,
                y=y,
                weight=FOLLOWER_WEIGHT,
                participants=follower.participant.participants,
                participant_id=follower.id,
            )
        )
        graph.connect(parent_id, node_id, FOLLOWER_LINK)

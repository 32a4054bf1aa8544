"""
Hierarchy tree builder.

Builds multiplier forests and positioned graphs from flat participant
records.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Sequence
from typing import Any

from canopy.src.layout import LayoutConfig, LayoutGraph, TreeLayout
from canopy.src.models import Campaign, Participant, Role
from canopy.src.tree import FollowerLeaf, HierarchyForest, HierarchyNode

logger = logging.getLogger(__name__)


class HierarchyTreeBuilder:
    """
    Builds multiplier forests from participant records.

    Takes the flat participant list of one or more campaigns and
    links every multiplier and follower to its referring leader.
    Malformed references never raise: a multiplier whose leader is
    missing, not a multiplier, or itself becomes a root, and a follower
    whose leader is not a placed multiplier is left out.
    """

    @staticmethod
    def campaign_label(campaigns: Sequence[Campaign]) -> str:
        """
        Label for the synthetic campaign root.

        Examples:
        [Campaign("Spring Drive")] -> "Spring Drive"
        three campaigns -> "3 Campaigns"
        """
        if not campaigns:
            return ""
        if len(campaigns) == 1:
            return campaigns[0].name
        return f"{len(campaigns)} Campaigns"

    @staticmethod
    def build_forest(
        participants: Iterable[Participant],
        exclude_id: str | None = None,
        campaign_label: str = "",
        metadata: dict[str, Any] | None = None,
    ) -> HierarchyForest:
        """Build the multiplier forest from a list of participants.

        Strategy:
        1. Split participants into multiplier and follower pools,
           dropping ``exclude_id`` and repeated IDs
        2. Index multipliers by ID, and children/followers by leader ID
        3. Expand every root multiplier depth-first
        4. Break leader cycles that no root reaches

        Args:
            participants: Participant records in first-seen order.
            exclude_id: Participant to leave out entirely (e.g. the viewer).
            campaign_label: Display label for the forest.
            metadata: Optional metadata for the forest.

        Returns:
            HierarchyForest with roots in input order.
        """
        multipliers: list[Participant] = []
        followers: list[Participant] = []
        seen: set[str] = set()

        for participant in participants:
            if exclude_id is not None and participant.id == exclude_id:
                continue
            if participant.id in seen:
                logger.debug("Skipping repeated participant %s", participant.id)
                continue
            seen.add(participant.id)

            if participant.role == Role.MULTIPLIER:
                multipliers.append(participant)
            elif participant.role == Role.FOLLOWER:
                followers.append(participant)

        multiplier_map = {m.id: m for m in multipliers}

        followers_by_leader: dict[str, list[Participant]] = {}
        for follower in followers:
            if follower.leader_id:
                followers_by_leader.setdefault(follower.leader_id, []).append(follower)

        children_by_leader: dict[str, list[Participant]] = {}
        for multiplier in multipliers:
            if multiplier.leader_id and multiplier.leader_id != multiplier.id:
                children_by_leader.setdefault(multiplier.leader_id, []).append(multiplier)

        placed: set[str] = set()

        def expand(start: Participant) -> HierarchyNode:
            # Explicit stack: referral chains can be thousands of levels deep
            placed.add(start.id)
            root = HierarchyNode(participant=start, level=0)
            stack = [root]
            while stack:
                node = stack.pop()
                for follower in followers_by_leader.get(node.id, []):
                    node.add_follower(FollowerLeaf(participant=follower, level=node.level + 1))

                for child in children_by_leader.get(node.id, []):
                    # Only reachable again through a leader cycle
                    if child.id in placed:
                        continue
                    placed.add(child.id)
                    node.add_child(HierarchyNode(participant=child, level=node.level + 1))
                stack.extend(reversed(node.children))

            return root

        roots = [
            expand(m)
            for m in multipliers
            if HierarchyTreeBuilder._is_root(m, multiplier_map)
        ]

        broken_cycles: list[str] = []
        for multiplier in multipliers:
            if multiplier.id in placed:
                continue
            entry = HierarchyTreeBuilder._cycle_entry(multiplier, multiplier_map, multipliers)
            logger.warning(
                "Leader cycle detected around %s; promoting %s to root",
                multiplier.id,
                entry.id,
            )
            broken_cycles.append(entry.id)
            roots.append(expand(entry))

        attached = sum(
            len(followers_by_leader.get(pid, [])) for pid in placed
        )
        forest_metadata = dict(metadata or {})
        forest_metadata.update(
            {
                "excluded_id": exclude_id,
                "broken_cycles": broken_cycles,
                "omitted_followers": len(followers) - attached,
            }
        )

        forest = HierarchyForest(
            roots=roots,
            campaign_label=campaign_label,
            metadata=forest_metadata,
        )
        logger.debug(
            "Built forest '%s': %d roots, %d multipliers, %d followers",
            campaign_label,
            len(roots),
            len(placed),
            attached,
        )
        return forest

    @staticmethod
    def _is_root(multiplier: Participant, multiplier_map: dict[str, Participant]) -> bool:
        """A multiplier is a root when no other included multiplier leads it."""
        leader_id = multiplier.leader_id
        if not leader_id or leader_id == multiplier.id:
            return True
        return leader_id not in multiplier_map

    @staticmethod
    def _cycle_entry(
        start: Participant,
        multiplier_map: dict[str, Participant],
        multipliers: list[Participant],
    ) -> Participant:
        """Find the cycle member to promote for an unplaced multiplier.

        Walks up the leader chain from ``start`` until an ID repeats, then
        picks the cycle member that came first in the input.

        Args:
            start: A multiplier no root reached.
            multiplier_map: Multipliers by ID.
            multipliers: Multipliers in input order.

        Returns:
            The multiplier to expand as a new root.
        """
        order = {m.id: index for index, m in enumerate(multipliers)}
        chain: list[Participant] = []
        position: dict[str, int] = {}

        current = start
        while current.id not in position:
            position[current.id] = len(chain)
            chain.append(current)
            current = multiplier_map[current.leader_id or ""]

        cycle = chain[position[current.id]:]
        return min(cycle, key=lambda p: order[p.id])

    @staticmethod
    def build_graph(
        participants: Iterable[Participant],
        exclude_id: str | None = None,
        campaign_label: str = "",
        config: LayoutConfig | None = None,
    ) -> tuple[HierarchyForest, LayoutGraph]:
        """
        Build the forest and lay it out for rendering.

        Args:
            participants: Participant records in first-seen order.
            exclude_id: Participant to leave out entirely.
            campaign_label: Label for the synthetic campaign root.
            config: Spacing constants; defaults to LayoutConfig().

        Returns:
            Tuple of (forest, positioned graph).
        """
        forest = HierarchyTreeBuilder.build_forest(
            participants,
            exclude_id=exclude_id,
            campaign_label=campaign_label,
        )
        graph = TreeLayout(config).layout(forest)
        return forest, graph

    @staticmethod
    def flatten(forest: HierarchyForest) -> list[dict[str, Any]]:
        """
        Flatten the forest to one row per multiplier.

        Each row includes the leader chain as a readable path.

        Returns:
            List of multiplier dictionaries in DFS order
        """
        rows = []
        paths: dict[int, str] = {}
        for node in forest.all_nodes():
            # DFS order: the parent's path is always known already
            if node.parent is not None:
                paths[id(node)] = f"{paths[id(node.parent)]} > {node.name}"
            else:
                paths[id(node)] = node.name
            rows.append(
                {
                    "id": node.id,
                    "name": node.name,
                    "level": node.level,
                    "leader_id": node.parent.id if node.parent else None,
                    "child_count": len(node.children),
                    "follower_count": len(node.followers),
                    "subtree_size": node.subtree_size,
                    "path": paths[id(node)],
                }
            )
        return rows


def build_campaign_graph(
    participants: Iterable[Participant],
    campaigns: Sequence[Campaign],
    exclude_id: str | None = None,
    config: LayoutConfig | None = None,
) -> tuple[HierarchyForest, LayoutGraph]:
    """Recompute the tree for the current campaign selection.

    Call this whenever the participant list or the selected campaigns
    change; every call rebuilds from scratch.

    Args:
        participants: Participants of the selected campaigns, deduplicated.
        campaigns: Selected campaigns. An empty selection yields an
            empty forest and graph.
        exclude_id: Participant to leave out (e.g. the viewing admin).
        config: Layout spacing constants.

    Returns:
        Tuple of (forest, positioned graph).
    """
    label = HierarchyTreeBuilder.campaign_label(campaigns)
    if not campaigns:
        return HierarchyForest(roots=[], campaign_label=label), LayoutGraph()
    return HierarchyTreeBuilder.build_graph(
        participants,
        exclude_id=exclude_id,
        campaign_label=label,
        config=config,
    )

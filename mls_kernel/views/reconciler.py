"""
Graph View Reconciler — merges classification-level duplicates into a view.

The same real-world entity may be recorded once per classification level
under a shared logical id. The reconciler projects the access-filtered
snapshot into one of three views:

  LEVEL:   a single level (requested if accessible, else the user's highest)
  OVERLAY: the union of several accessible levels
  VIRTUAL: one node per logical id, the highest level the user may see,
           with edges re-pointed onto the chosen instances

The snapshot is re-read on every call; nodes and edges may appear or vanish
between calls, and edges whose endpoints are gone are dropped.
"""

from typing import Dict, List, Optional

from mls_kernel.errors import UnknownUserError
from mls_kernel.interfaces import GraphRepository, UserRepository
from mls_kernel.models.access import ClearanceLevel, User, level_rank
from mls_kernel.models.graph import GraphEdge, GraphNode
from mls_kernel.models.views import GraphView, GraphViewRequest, ViewMode
from mls_kernel.policy.evaluator import (
    accessible_levels,
    filter_accessible_edges,
    filter_accessible_nodes,
)


def _parse_level(value: Optional[str]) -> Optional[ClearanceLevel]:
    """Exact level names only; anything else counts as no request."""
    try:
        return ClearanceLevel(str(value).strip().upper()) if value else None
    except ValueError:
        return None


def _edges_between(
    edges: List[GraphEdge], levels: List[ClearanceLevel], nodes: List[GraphNode]
) -> List[GraphEdge]:
    node_ids = {n.id for n in nodes}
    return [
        e for e in edges
        if e.classification_level in levels
        and e.source_node_id in node_ids
        and e.target_node_id in node_ids
    ]


def project_level(
    nodes: List[GraphNode],
    edges: List[GraphEdge],
    levels: List[ClearanceLevel],
    requested: Optional[str],
) -> GraphView:
    target = _parse_level(requested)
    if target not in levels:
        target = levels[-1] if levels else ClearanceLevel.UNCLASSIFIED

    level_nodes = [n for n in nodes if n.classification_level == target]
    return GraphView(
        mode=ViewMode.LEVEL,
        levels=[target],
        nodes=level_nodes,
        edges=_edges_between(edges, [target], level_nodes),
    )


def project_overlay(
    nodes: List[GraphNode],
    edges: List[GraphEdge],
    levels: List[ClearanceLevel],
    requested: List[str],
) -> GraphView:
    wanted = {_parse_level(level) for level in requested}
    effective = [level for level in levels if level in wanted] or list(levels)

    overlay_nodes = [n for n in nodes if n.classification_level in effective]
    return GraphView(
        mode=ViewMode.OVERLAY,
        levels=effective,
        nodes=overlay_nodes,
        edges=_edges_between(edges, effective, overlay_nodes),
    )


def project_virtual(
    nodes: List[GraphNode],
    edges: List[GraphEdge],
    levels: List[ClearanceLevel],
    all_nodes: List[GraphNode],
) -> GraphView:
    """
    Pick the highest-ranked accessible instance of every logical id and
    re-point edges onto those instances.

    `all_nodes` resolves edge endpoints to logical ids; the endpoint itself
    need not be accessible as long as some instance of its logical id is.
    """
    best: Dict[str, GraphNode] = {}
    for node in nodes:
        current = best.get(node.logical_id)
        if current is None or level_rank(node.classification_level) > level_rank(
            current.classification_level
        ):
            best[node.logical_id] = node

    node_by_id = {n.id: n for n in all_nodes}
    chosen_edges: Dict[str, GraphEdge] = {}
    for edge in edges:
        source = node_by_id.get(edge.source_node_id)
        target = node_by_id.get(edge.target_node_id)
        if source is None or target is None:
            continue

        best_source = best.get(source.logical_id)
        best_target = best.get(target.logical_id)
        if best_source is None or best_target is None:
            continue

        key = edge.logical_id or (
            f"{best_source.logical_id}::{best_target.logical_id}::{edge.relation_type}"
        )
        candidate = edge.model_copy(
            update={"source_node_id": best_source.id, "target_node_id": best_target.id}
        )
        existing = chosen_edges.get(key)
        if existing is None or level_rank(candidate.classification_level) > level_rank(
            existing.classification_level
        ):
            chosen_edges[key] = candidate

    return GraphView(
        mode=ViewMode.VIRTUAL,
        levels=list(levels),
        nodes=list(best.values()),
        edges=list(chosen_edges.values()),
    )


class GraphViewReconciler:
    """Builds the graph projection a user is entitled to see."""

    def __init__(
        self,
        graph_repository: GraphRepository,
        user_repository: Optional[UserRepository] = None,
    ):
        self.graph = graph_repository
        self.users = user_repository

    def build_view(
        self, user: User, request: Optional[GraphViewRequest] = None
    ) -> GraphView:
        request = request or GraphViewRequest()

        all_nodes = self.graph.get_all_nodes()
        all_edges = self.graph.get_all_edges()
        nodes = filter_accessible_nodes(user, all_nodes)
        edges = filter_accessible_edges(user, all_edges)
        levels = accessible_levels(user)

        if request.mode == ViewMode.LEVEL:
            return project_level(nodes, edges, levels, request.level)
        if request.mode == ViewMode.OVERLAY:
            return project_overlay(nodes, edges, levels, request.overlay_levels)
        return project_virtual(nodes, edges, levels, all_nodes)

    def build_view_for(
        self, user_id: str, request: Optional[GraphViewRequest] = None
    ) -> GraphView:
        """Look the user up first; requires a user repository."""
        if self.users is None:
            raise UnknownUserError("No user repository configured")
        user = self.users.find_by_id(user_id)
        if user is None:
            raise UnknownUserError(f"Unknown user: {user_id}")
        return self.build_view(user, request)

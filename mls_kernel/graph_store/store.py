"""
Graph Store — the classified node/edge repository.

Queried by: Query Pipeline + Graph View Reconciler (full snapshots)
Updated by: editing surfaces (create/delete) + level import

Mutations validate first and change nothing on failure.
"""

import re
import threading
from datetime import datetime, timezone
from typing import Iterable, List, Optional
from uuid import uuid4

import structlog

from mls_kernel.errors import GraphValidationError
from mls_kernel.models.access import normalize_level
from mls_kernel.models.graph import (
    ExportedEntity,
    ExportedRelationship,
    GraphEdge,
    GraphNode,
    LevelExport,
    build_entity_id,
)

logger = structlog.get_logger()


def slugify(value: str) -> str:
    slug = re.sub(r"[^a-z0-9]+", "_", (value or "").lower()).strip("_")
    return slug or "node"


def _synthetic_logical_id(seed: str) -> str:
    return f"{slugify(seed)}_{uuid4().hex[:6]}"


class GraphStore:
    """
    In-memory graph store. Snapshot reads return deep copies, so callers may
    filter and re-point freely without touching stored records.
    """

    def __init__(
        self,
        nodes: Optional[Iterable[GraphNode]] = None,
        edges: Optional[Iterable[GraphEdge]] = None,
    ):
        self._nodes: List[GraphNode] = [n.model_copy(deep=True) for n in nodes or []]
        self._edges: List[GraphEdge] = [e.model_copy(deep=True) for e in edges or []]
        self._lock = threading.Lock()

    # --- Snapshot reads ---

    def get_all_nodes(self) -> List[GraphNode]:
        with self._lock:
            return [n.model_copy(deep=True) for n in self._nodes]

    def get_all_edges(self) -> List[GraphEdge]:
        with self._lock:
            return [e.model_copy(deep=True) for e in self._edges]

    def get_node(self, node_id: str) -> Optional[GraphNode]:
        with self._lock:
            node = self._find_node(node_id)
            return node.model_copy(deep=True) if node else None

    def get_edge(self, edge_id: str) -> Optional[GraphEdge]:
        with self._lock:
            edge = next((e for e in self._edges if e.id == edge_id), None)
            return edge.model_copy(deep=True) if edge else None

    def _find_node(self, node_id: str) -> Optional[GraphNode]:
        return next((n for n in self._nodes if n.id == node_id), None)

    # --- Mutations ---

    def create_node(
        self,
        name: str,
        entity_type: str,
        classification_level,
        attributes: Optional[dict] = None,
        logical_id: Optional[str] = None,
    ) -> GraphNode:
        level = normalize_level(classification_level)
        logical_id = (logical_id or "").strip() or _synthetic_logical_id(name)
        node_id = build_entity_id(logical_id, level)
        now = datetime.now(timezone.utc)

        with self._lock:
            if self._find_node(node_id):
                raise GraphValidationError(f"Node {node_id} already exists")
            node = GraphNode(
                id=node_id,
                logical_id=logical_id,
                classification_level=level,
                entity_type=entity_type,
                name=name,
                attributes=dict(attributes or {}),
                created_at=now,
                updated_at=now,
            )
            self._nodes.append(node)

        logger.info("node_created", node_id=node_id, level=level.value)
        return node.model_copy(deep=True)

    def delete_node(self, logical_id: str, classification_level) -> None:
        """Remove one level of a logical entity together with its incident edges."""
        level = normalize_level(classification_level)
        node_id = build_entity_id(logical_id, level)

        with self._lock:
            if not self._find_node(node_id):
                raise GraphValidationError(f"Node {node_id} not found")
            self._nodes = [n for n in self._nodes if n.id != node_id]
            before = len(self._edges)
            self._edges = [
                e for e in self._edges
                if e.source_node_id != node_id and e.target_node_id != node_id
            ]
            dropped = before - len(self._edges)

        logger.info("node_deleted", node_id=node_id, edges_removed=dropped)

    def create_edge(
        self,
        source_node_id: str,
        target_node_id: str,
        relation_type: str,
        classification_level,
        attributes: Optional[dict] = None,
        logical_id: Optional[str] = None,
    ) -> GraphEdge:
        """Relate two nodes of the edge's own classification level."""
        level = normalize_level(classification_level)
        logical_id = (logical_id or "").strip() or _synthetic_logical_id(relation_type)
        edge_id = build_entity_id(logical_id, level)

        with self._lock:
            source = self._find_node(source_node_id)
            target = self._find_node(target_node_id)
            if source is None or target is None:
                raise GraphValidationError("Source or target node not found")
            if source.classification_level != level or target.classification_level != level:
                raise GraphValidationError(
                    "Edges may only connect nodes of the edge's classification level"
                )
            if any(e.id == edge_id for e in self._edges):
                raise GraphValidationError(f"Edge {edge_id} already exists")

            edge = GraphEdge(
                id=edge_id,
                logical_id=logical_id,
                classification_level=level,
                source_node_id=source_node_id,
                target_node_id=target_node_id,
                relation_type=relation_type,
                attributes=dict(attributes or {}),
                created_at=datetime.now(timezone.utc),
            )
            self._edges.append(edge)

        logger.info("edge_created", edge_id=edge_id, level=level.value)
        return edge.model_copy(deep=True)

    def delete_edge(self, edge_id: str) -> None:
        with self._lock:
            if not any(e.id == edge_id for e in self._edges):
                raise GraphValidationError(f"Edge {edge_id} not found")
            self._edges = [e for e in self._edges if e.id != edge_id]

        logger.info("edge_deleted", edge_id=edge_id)

    # --- Level transfer ---

    def export_level(self, classification_level) -> LevelExport:
        """Every node and edge of one level, endpoints expressed as logical ids."""
        level = normalize_level(classification_level)
        with self._lock:
            nodes = [n for n in self._nodes if n.classification_level == level]
            edges = [e for e in self._edges if e.classification_level == level]
            logical_by_id = {n.id: n.logical_id for n in nodes}

            entities = [
                ExportedEntity(
                    logical_id=n.logical_id,
                    entity_type=n.entity_type,
                    name=n.name,
                    classification=n.classification_level,
                    attributes=dict(n.attributes),
                    created_at=n.created_at,
                    updated_at=n.updated_at,
                )
                for n in nodes
            ]
            relationships = [
                ExportedRelationship(
                    logical_id=e.logical_id,
                    source_id=logical_by_id.get(e.source_node_id, e.source_node_id),
                    target_id=logical_by_id.get(e.target_node_id, e.target_node_id),
                    relation_type=e.relation_type,
                    classification=e.classification_level,
                    attributes=dict(e.attributes),
                    created_at=e.created_at,
                )
                for e in edges
            ]
        return LevelExport(entities=entities, relationships=relationships)

    def import_level(self, classification_level, payload: LevelExport) -> LevelExport:
        """
        Replace one level with the payload.

        Ids are re-synthesised from (logical_id, level). Relationships whose
        endpoints are not among the imported entities are skipped. Returns
        the level as stored after the import.
        """
        level = normalize_level(classification_level)
        now = datetime.now(timezone.utc)

        nodes: List[GraphNode] = []
        node_id_by_logical = {}
        for entity in payload.entities:
            logical_id = entity.logical_id or _synthetic_logical_id(entity.name or "entity")
            node_id = build_entity_id(logical_id, level)
            if node_id in node_id_by_logical.values():
                raise GraphValidationError(f"Duplicate entity {logical_id} in import payload")
            node_id_by_logical[logical_id] = node_id
            nodes.append(GraphNode(
                id=node_id,
                logical_id=logical_id,
                classification_level=level,
                entity_type=entity.entity_type or "Unknown",
                name=entity.name or logical_id,
                attributes=dict(entity.attributes),
                created_at=entity.created_at or now,
                updated_at=entity.updated_at or now,
            ))

        edges: List[GraphEdge] = []
        edge_ids = set()
        skipped = 0
        for relationship in payload.relationships:
            source_id = node_id_by_logical.get(relationship.source_id)
            target_id = node_id_by_logical.get(relationship.target_id)
            if source_id is None or target_id is None:
                skipped += 1
                continue
            logical_id = relationship.logical_id or _synthetic_logical_id(
                relationship.relation_type or "relation"
            )
            edge_id = build_entity_id(logical_id, level)
            if edge_id in edge_ids:
                raise GraphValidationError(f"Duplicate relationship {logical_id} in import payload")
            edge_ids.add(edge_id)
            edges.append(GraphEdge(
                id=edge_id,
                logical_id=logical_id,
                classification_level=level,
                source_node_id=source_id,
                target_node_id=target_id,
                relation_type=relationship.relation_type or "RELATED_TO",
                attributes=dict(relationship.attributes),
                created_at=relationship.created_at or now,
            ))

        with self._lock:
            self._nodes = [n for n in self._nodes if n.classification_level != level] + nodes
            self._edges = [e for e in self._edges if e.classification_level != level] + edges

        logger.info(
            "level_imported",
            level=level.value,
            nodes=len(nodes),
            edges=len(edges),
            relationships_skipped=skipped,
        )
        return self.export_level(level)

    def count(self) -> dict:
        with self._lock:
            return {"nodes": len(self._nodes), "edges": len(self._edges)}

"""Graph Model — classified nodes and edges."""

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel

from mls_kernel.models.access import ClearanceLevel


def build_entity_id(logical_id: str, level) -> str:
    """Composite id of one classification-level version of a logical entity."""
    if isinstance(level, ClearanceLevel):
        level = level.value
    return f"{logical_id}_{level}"


class GraphNode(BaseModel):
    """
    A classified fact. Several nodes may share a `logical_id`, one per
    classification level, each a more detailed version of the same entity.
    """

    id: str
    logical_id: str
    classification_level: ClearanceLevel
    entity_type: str                        # e.g. "Target", "Sensor", "Event"
    name: str
    attributes: dict = {}                   # sector, category, coordinates, status, ...
    created_at: datetime
    updated_at: datetime


class GraphEdge(BaseModel):
    """A classified relation between two nodes of the same level."""

    id: str
    logical_id: str
    classification_level: ClearanceLevel
    source_node_id: str
    target_node_id: str
    relation_type: str                      # e.g. "DETECTED_BY", "COMMANDS"
    attributes: dict = {}
    created_at: datetime


class ExportedEntity(BaseModel):
    logical_id: Optional[str] = None
    entity_type: str = "Unknown"
    name: Optional[str] = None
    classification: Optional[ClearanceLevel] = None
    attributes: dict = {}
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class ExportedRelationship(BaseModel):
    logical_id: Optional[str] = None
    source_id: str                          # logical id of the source entity
    target_id: str                          # logical id of the target entity
    relation_type: str = "RELATED_TO"
    classification: Optional[ClearanceLevel] = None
    attributes: dict = {}
    created_at: Optional[datetime] = None


class LevelExport(BaseModel):
    """Snapshot of one classification level, keyed by logical ids."""

    entities: List[ExportedEntity] = []
    relationships: List[ExportedRelationship] = []

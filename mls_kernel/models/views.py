"""Graph view request and projection."""

from enum import Enum
from typing import List, Optional

from pydantic import BaseModel

from mls_kernel.models.access import ClearanceLevel
from mls_kernel.models.graph import GraphEdge, GraphNode


class ViewMode(str, Enum):
    VIRTUAL = "virtual"     # one node per logical id, highest visible level
    LEVEL = "level"         # a single classification level
    OVERLAY = "overlay"     # union of several levels


class GraphViewRequest(BaseModel):
    mode: ViewMode = ViewMode.VIRTUAL
    level: Optional[str] = None
    overlay_levels: List[str] = []


class GraphView(BaseModel):
    mode: ViewMode
    levels: List[ClearanceLevel]            # levels the projection was built from
    nodes: List[GraphNode]
    edges: List[GraphEdge]

"""MLS kernel data models."""

from mls_kernel.models.access import (
    LEVEL_SEQUENCE,
    ClearanceLevel,
    User,
    level_rank,
    normalize_level,
)
from mls_kernel.models.audit import AuditLogEntry, DenialReason
from mls_kernel.models.engine import DATA_REFERENCE_TIME, EngineConfig
from mls_kernel.models.graph import (
    ExportedEntity,
    ExportedRelationship,
    GraphEdge,
    GraphNode,
    LevelExport,
    build_entity_id,
)
from mls_kernel.models.query import (
    AggregatedCount,
    ComparisonFilter,
    ComparisonOperator,
    GeoFilter,
    LogicOperator,
    ParsedQuery,
    QueryExplanation,
    QueryIntent,
    QueryOutcome,
    QueryResult,
    RecognizedToken,
    TimeRange,
)
from mls_kernel.models.views import GraphView, GraphViewRequest, ViewMode

__all__ = [
    "AggregatedCount",
    "AuditLogEntry",
    "ClearanceLevel",
    "ComparisonFilter",
    "ComparisonOperator",
    "DATA_REFERENCE_TIME",
    "DenialReason",
    "EngineConfig",
    "ExportedEntity",
    "ExportedRelationship",
    "GeoFilter",
    "GraphEdge",
    "GraphNode",
    "GraphView",
    "GraphViewRequest",
    "LEVEL_SEQUENCE",
    "LevelExport",
    "LogicOperator",
    "ParsedQuery",
    "QueryExplanation",
    "QueryIntent",
    "QueryOutcome",
    "QueryResult",
    "RecognizedToken",
    "TimeRange",
    "User",
    "ViewMode",
    "build_entity_id",
    "level_rank",
    "normalize_level",
]

"""Query Models — parser output and pipeline results."""

from datetime import datetime
from enum import Enum
from typing import List, Optional, Union

from pydantic import BaseModel

from mls_kernel.models.access import ClearanceLevel
from mls_kernel.models.audit import DenialReason
from mls_kernel.models.graph import GraphNode


class QueryIntent(str, Enum):
    COUNT = "count"
    LIST = "list"
    TIMELINE = "timeline"


class LogicOperator(str, Enum):
    AND = "AND"
    OR = "OR"


class ComparisonOperator(str, Enum):
    GT = ">"
    GE = ">="
    LT = "<"
    LE = "<="
    EQ = "="
    NE = "!="


class ComparisonFilter(BaseModel):
    """`<attribute> <operator> <value>` parsed out of the query text."""
    attribute: str
    operator: ComparisonOperator
    value: Union[float, str]
    raw: str
    display: str


class TimeRange(BaseModel):
    start: datetime
    end: datetime
    raw: str


class GeoFilter(BaseModel):
    lat: float
    lon: float
    radius_km: float
    raw: str


class RecognizedToken(BaseModel):
    text: str
    type: str                               # "entity" | "sector" | "status" | ...


class ParsedQuery(BaseModel):
    """
    Structured reading of a free-text query.

    `tokens`, `recognized`, `tips` and `warnings` are diagnostics for the
    explanation only; they never influence filtering.
    """

    intent: QueryIntent = QueryIntent.LIST
    entity_type: Optional[str] = None
    entity_label: Optional[str] = None
    sector_filters: List[str] = []
    level_filter: Optional[ClearanceLevel] = None
    time_window_hours: Optional[float] = None
    time_window_raw: Optional[str] = None
    time_range: Optional[TimeRange] = None
    status_filters: List[str] = []
    category_filters: List[str] = []
    logic_operator: LogicOperator = LogicOperator.AND
    geo_filter: Optional[GeoFilter] = None
    limit: Optional[int] = None
    comparisons: List[ComparisonFilter] = []

    tokens: List[str] = []
    recognized: List[RecognizedToken] = []
    tips: List[str] = []
    warnings: List[str] = []


class QueryExplanation(BaseModel):
    """Human-readable account of what the parser understood."""
    raw: str
    entity: Optional[str] = None
    filters: List[str] = []
    comparisons: List[str] = []
    time_window: Optional[str] = None
    time_range: Optional[str] = None
    geo: Optional[str] = None
    limit: Optional[int] = None
    tips: List[str] = []
    warnings: List[str] = []
    intent: QueryIntent = QueryIntent.LIST
    logic: LogicOperator = LogicOperator.AND
    recognized: List[RecognizedToken] = []


class QueryOutcome(str, Enum):
    SUCCESS = "success"
    DENIED = "denied"
    UNRECOGNIZED = "unrecognized"


class AggregatedCount(BaseModel):
    """The only payload disclosed when a result set fails k-anonymity."""
    count: int
    message: str


class QueryResult(BaseModel):
    """Outcome of one pipeline run."""

    outcome: QueryOutcome
    success: bool
    nodes: List[GraphNode] = []
    aggregate: Optional[AggregatedCount] = None
    aggregated: bool = False
    error: Optional[str] = None
    denial_reason: Optional[DenialReason] = None
    remaining_budget: Optional[int] = None
    explanation: Optional[QueryExplanation] = None

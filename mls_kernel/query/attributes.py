"""
Typed accessors over the open attribute maps of graph nodes.

Attribute values arrive in mixed shapes (numbers as strings, coordinates as a
pair or as "lat, lon" text, ISO timestamps with or without "Z"). Every
accessor returns None rather than raising when a value is missing or
unparsable.
"""

import math
import re
from datetime import datetime, timezone
from typing import Any, Dict, Optional, Tuple, Union

from mls_kernel.models.graph import GraphNode
from mls_kernel.models.query import ComparisonOperator

EARTH_RADIUS_KM = 6371.0

# Ordered: the first keyword contained in a value decides its category.
CATEGORY_KEYWORDS: Dict[str, str] = {
    "uav": "uav",
    "бпла": "uav",
    "helikopter": "helicopter",
    "вертолет": "helicopter",
    "helicopter": "helicopter",
    "unknown": "unknown",
    "group": "airgroup",
}

THREAT_ORDER: Dict[str, int] = {
    "low": 1,
    "medium": 2,
    "elevated": 3,
    "high": 4,
    "critical": 5,
}

_COORDINATE_PAIR = re.compile(r"([-+]?\d+(?:[.,]\d+)?)\s*,\s*([-+]?\d+(?:[.,]\d+)?)")


def parse_number(value: Any) -> Optional[float]:
    """Numbers and numeric strings (comma decimal separator accepted)."""
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, str):
        try:
            return float(value.strip().replace(",", "."))
        except ValueError:
            return None
    return None


def parse_timestamp(value: Any) -> Optional[datetime]:
    """ISO-8601 text or datetime; naive values are taken as UTC."""
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, str) and value.strip():
        text = value.strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError:
            return None
    else:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def observed_at(node: GraphNode) -> Optional[datetime]:
    """Last observation time used by the sliding time window."""
    attrs = node.attributes or {}
    for candidate in (attrs.get("last_seen"), attrs.get("timestamp"), node.updated_at):
        if candidate:
            return parse_timestamp(candidate)
    return None


def best_timestamp(node: GraphNode) -> Optional[datetime]:
    """First parsable of last_seen, timestamp, updated_at, created_at."""
    attrs = node.attributes or {}
    for candidate in (
        attrs.get("last_seen"),
        attrs.get("timestamp"),
        node.updated_at,
        node.created_at,
    ):
        parsed = parse_timestamp(candidate)
        if parsed is not None:
            return parsed
    return None


def node_sector(node: GraphNode) -> Optional[str]:
    attrs = node.attributes or {}
    sector = attrs.get("sector")
    if not sector:
        sectors = attrs.get("sectors")
        if isinstance(sectors, (list, tuple)) and sectors:
            sector = sectors[0]
    return str(sector).upper() if sector else None


def node_status(node: GraphNode) -> Optional[str]:
    attrs = node.attributes or {}
    status = attrs.get("status") or attrs.get("operational")
    return str(status).lower() if status else None


def normalize_category(value: Optional[str]) -> Optional[str]:
    """Fold free text onto the closed category vocabulary, else lower-case it."""
    if not value:
        return None
    lower = value.lower()
    for keyword, normalized in CATEGORY_KEYWORDS.items():
        if keyword in lower:
            return normalized
    return lower


def node_category(node: GraphNode) -> Optional[str]:
    attrs = node.attributes or {}
    return normalize_category(str(attrs.get("category") or attrs.get("type") or ""))


def node_coordinates(node: GraphNode) -> Optional[Tuple[float, float]]:
    coordinates = (node.attributes or {}).get("coordinates")

    if isinstance(coordinates, (list, tuple)) and len(coordinates) >= 2:
        lat = parse_number(coordinates[0])
        lon = parse_number(coordinates[1])
        if lat is not None and lon is not None:
            return lat, lon

    if isinstance(coordinates, dict):
        lat = parse_number(coordinates.get("lat"))
        lon = parse_number(coordinates.get("lon", coordinates.get("lng")))
        if lat is not None and lon is not None:
            return lat, lon

    if isinstance(coordinates, str):
        match = _COORDINATE_PAIR.search(coordinates)
        if match:
            lat = parse_number(match.group(1))
            lon = parse_number(match.group(2))
            if lat is not None and lon is not None:
                return lat, lon

    return None


def haversine_km(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """Great-circle distance in kilometres."""
    d_lat = math.radians(lat2 - lat1)
    d_lon = math.radians(lon2 - lon1)
    a = (
        math.sin(d_lat / 2) ** 2
        + math.cos(math.radians(lat1)) * math.cos(math.radians(lat2)) * math.sin(d_lon / 2) ** 2
    )
    return EARTH_RADIUS_KM * 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))


def _compare_ordered(lhs, rhs, operator: ComparisonOperator) -> bool:
    if operator == ComparisonOperator.GT:
        return lhs > rhs
    if operator == ComparisonOperator.GE:
        return lhs >= rhs
    if operator == ComparisonOperator.LT:
        return lhs < rhs
    if operator == ComparisonOperator.LE:
        return lhs <= rhs
    if operator == ComparisonOperator.EQ:
        return lhs == rhs
    if operator == ComparisonOperator.NE:
        return lhs != rhs
    return False


def compare_values(lhs: Any, rhs: Union[float, str], operator: ComparisonOperator) -> bool:
    """
    Evaluate one comparison against an attribute value.

    Numeric right-hand sides compare numerically (unparsable values fail).
    String right-hand sides compare case-insensitively; threat levels
    (low < medium < elevated < high < critical) compare by severity.
    """
    if lhs is None:
        return False

    if isinstance(rhs, (int, float)):
        lhs_number = parse_number(lhs)
        if lhs_number is None:
            return False
        return _compare_ordered(lhs_number, float(rhs), operator)

    lhs_text = str(lhs).lower()
    rhs_text = str(rhs).lower()

    if operator in (ComparisonOperator.EQ, ComparisonOperator.NE):
        return _compare_ordered(lhs_text, rhs_text, operator)

    lhs_threat = THREAT_ORDER.get(lhs_text)
    rhs_threat = THREAT_ORDER.get(rhs_text)
    if lhs_threat and rhs_threat:
        return _compare_ordered(lhs_threat, rhs_threat, operator)

    return _compare_ordered(lhs_text, rhs_text, operator)


def matches_comparisons(node: GraphNode, comparisons) -> bool:
    """Logical AND across all comparisons."""
    attrs = node.attributes or {}
    for comparison in comparisons:
        value = attrs.get(comparison.attribute)
        if value is None:
            value = attrs.get(comparison.attribute.upper())
        if value is None:
            value = attrs.get(comparison.attribute.lower())
        if not compare_values(value, comparison.value, comparison.operator):
            return False
    return True

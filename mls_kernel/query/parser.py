"""
Query Language Parser — free text to a structured filter set.

Deterministic keyword and pattern matching over a mixed Russian/English
vocabulary. No language understanding: each stage is an independent matcher
run over the lower-cased text, and the fragments they return are merged in
order into a single ParsedQuery.

Stages (in order):
  entity → logic → sectors → status → category → level →
  relative window → absolute range → limit → comparisons → geo

A query that yields no entity type, no category, no status and no
comparison is unrecognized; the parser returns None and the caller answers
with static guidance instead of an error.
"""

import re
from datetime import datetime, timedelta
from typing import Callable, Dict, List, Optional, Tuple

from mls_kernel.models.access import ClearanceLevel
from mls_kernel.models.engine import EngineConfig
from mls_kernel.models.query import (
    ComparisonFilter,
    ComparisonOperator,
    GeoFilter,
    LogicOperator,
    ParsedQuery,
    QueryExplanation,
    QueryIntent,
    RecognizedToken,
    TimeRange,
)
from mls_kernel.query.attributes import CATEGORY_KEYWORDS, normalize_category, parse_number


class EntityKeywordGroup:
    """One row of the entity detection table."""

    def __init__(
        self,
        keywords: List[str],
        entity_type: str,
        label: str,
        category: Optional[str] = None,
        intent: QueryIntent = QueryIntent.LIST,
        tips: Optional[List[str]] = None,
    ):
        self.keywords = keywords
        self.entity_type = entity_type
        self.label = label
        self.category = category
        self.intent = intent
        self.tips = tips or []


# Ordered: the first group with a keyword contained in the query wins.
ENTITY_KEYWORDS: List[EntityKeywordGroup] = [
    EntityKeywordGroup(
        keywords=["беспилотн", "дрон", "uav", "бпла", "drone"],
        entity_type="Target",
        label="UAVs",
        category="uav",
    ),
    EntityKeywordGroup(
        keywords=["цель", "цели", "target", "object"],
        entity_type="Target",
        label="Air targets",
    ),
    EntityKeywordGroup(
        keywords=["сенсор", "sensor", "радар", "радиолок"],
        entity_type="Sensor",
        label="Sensors",
        tips=["Add a status filter, e.g. 'sensors offline'."],
    ),
    EntityKeywordGroup(
        keywords=["событи", "event", "инцидент", "операция"],
        entity_type="Event",
        label="Events",
        intent=QueryIntent.TIMELINE,
        tips=["Use a time window, e.g. 'last 30 minutes'."],
    ),
    EntityKeywordGroup(
        keywords=["командн", "штаб", "command post", "commandpost"],
        entity_type="CommandPost",
        label="Command posts",
    ),
    EntityKeywordGroup(
        keywords=["сектор", "sector"],
        entity_type="Sector",
        label="Sectors",
        tips=["Say what you need inside the sector: targets, sensors or events."],
    ),
]

COUNT_KEYWORDS = ["сколько", "количество", "how many", "count"]

OR_TOKENS = {"or", "или"}

STATUS_KEYWORDS: Dict[str, str] = {
    "offline": "offline",
    "недоступн": "offline",
    "неработающ": "offline",
    "обесточен": "offline",
    "online": "online",
    "работоспособн": "online",
    "вкл": "online",
    "активн": "online",
}

# Ordered: first alias contained in the query wins.
LEVEL_KEYWORDS: Dict[str, ClearanceLevel] = {
    "секрет": ClearanceLevel.SECRET,
    "secret": ClearanceLevel.SECRET,
    "уровень h": ClearanceLevel.SECRET,
    "уровень m": ClearanceLevel.CONFIDENTIAL,
    "confid": ClearanceLevel.CONFIDENTIAL,
    "dsp": ClearanceLevel.CONFIDENTIAL,
    "unclassified": ClearanceLevel.UNCLASSIFIED,
    "уровень l": ClearanceLevel.UNCLASSIFIED,
    "общедоступн": ClearanceLevel.UNCLASSIFIED,
}

# Ordered (substring, attribute); identifiers matching none are not comparisons.
ATTRIBUTE_ALIASES: List[Tuple[str, str]] = [
    ("скорост", "speed"),
    ("speed", "speed"),
    ("heading", "heading"),
    ("курс", "heading"),
    ("высот", "altitude"),
    ("altitude", "altitude"),
    ("угроз", "threat_level"),
    ("threat", "threat_level"),
    ("status", "status"),
    ("статус", "status"),
    ("операцион", "operational"),
    ("distance", "distance"),
]

# Cyrillic letters typed in place of the Latin sector code they look like.
SECTOR_HOMOGLYPHS: Dict[str, str] = {
    "а": "A", "в": "B", "с": "C", "е": "E", "н": "H", "к": "K",
    "м": "M", "о": "O", "р": "P", "т": "T", "х": "X",
}

GEO_TRIGGERS = ["координат", "coord", "lat", "широт"]

REALTIME_PHRASES = ["прямо сейчас", "real-time", "right now"]

UNRECOGNIZED_TIPS = [
    "Name what you are looking for, e.g. 'UAVs', 'sensors' or 'events'.",
    "Add context: a sector, a status or a time window.",
]

_TIME_UNITS = r"(минут|мин|minutes?|час(?:а|ов)?|hours?|дн(?:я|ей)?|days?)"

_SECTOR_PATTERNS = [
    re.compile(r"сектор[е]?\s+([a-zа-я])", re.IGNORECASE),
    re.compile(r"sector\s+([a-z])", re.IGNORECASE),
]

_TIME_WINDOW_PATTERNS = [
    re.compile(r"последн(?:ие|их)?\s+(\d+)\s+" + _TIME_UNITS),
    re.compile(r"\bза\s+(\d+)\s+" + _TIME_UNITS),
    re.compile(r"within\s+(\d+)\s+(minutes?|hours?|days?)", re.IGNORECASE),
    re.compile(r"\blast\s+(\d+)\s+(minutes?|hours?|days?)", re.IGNORECASE),
]

_TIME_RANGE_PATTERNS = [
    re.compile(r"(?:\bс|\bfrom)\s+(\d{1,2}:\d{2})\s+(?:до|по|to)\s+(\d{1,2}:\d{2})"),
    re.compile(r"(?:между|between)\s+(\d{1,2}:\d{2})\s+(?:и|and)\s+(\d{1,2}:\d{2})"),
]

_CATEGORY_PHRASE = re.compile(r"(?:категор(?:ия|ии)?|category)\s+([a-zа-я0-9]+)", re.IGNORECASE)

# A number followed by a time unit belongs to the time window, not the limit.
_LIMIT_PATTERN = re.compile(
    r"\b(первые|показать|top|first|show|последние|last)\s+(\d+)"
    r"(?!\d|\s*(?:минут|мин|minute|час|hour|дн|day))",
    re.IGNORECASE,
)

_COMPARISON_PATTERN = re.compile(
    r"([a-zа-яё_]+)\s*(>=|<=|!=|>|<|=)\s*([0-9]+(?:[.,][0-9]+)?|[a-zа-яё]+)",
    re.IGNORECASE,
)

_GEO_EXPLICIT = re.compile(
    r"lat(?:itude)?\s*[:=]?\s*([-+]?\d+(?:[.,]\d+)?).*?"
    r"(?:longitude|long|lon|lng)\s*[:=]?\s*([-+]?\d+(?:[.,]\d+)?)",
    re.IGNORECASE,
)
_GEO_PAIR = re.compile(r"([-+]?\d+(?:[.,]\d+)?)\s*[;,]\s*([-+]?\d+(?:[.,]\d+)?)")
_GEO_RADIUS = re.compile(r"(?:радиус(?:е|а)?|radius)\s+(\d+(?:[.,]\d+)?)\s*(?:км|km)")

_LIST_FIELDS = ("sector_filters", "status_filters", "category_filters", "comparisons")


class QueryFragment:
    """What a single matcher understood: field values plus diagnostics."""

    def __init__(
        self,
        fields: Optional[dict] = None,
        recognized: Optional[List[Tuple[str, str]]] = None,
        tips: Optional[List[str]] = None,
    ):
        self.fields = fields or {}
        self.recognized = recognized or []
        self.tips = tips or []


class QueryParser:
    """
    Ordered cascade of matchers. Each matcher sees the raw and the lower-cased
    text and returns a QueryFragment or None.
    """

    def __init__(self, config: Optional[EngineConfig] = None):
        self.config = config or EngineConfig()
        self._matchers: List[Callable[[str, str], Optional[QueryFragment]]] = []
        self._register_default_matchers()

    def _register_default_matchers(self) -> None:
        self._matchers = [
            self._match_entity,
            self._match_logic,
            self._match_sectors,
            self._match_status,
            self._match_category,
            self._match_level,
            self._match_time_window,
            self._match_time_range,
            self._match_limit,
            self._match_comparisons,
            self._match_geo,
        ]

    def parse(self, text: str) -> Optional[ParsedQuery]:
        """Parse a query; None when nothing actionable was recognized."""
        lowered = (text or "").lower()
        parsed = ParsedQuery(tokens=[t for t in re.split(r"[\s,]+", lowered) if t])

        for matcher in self._matchers:
            fragment = matcher(text or "", lowered)
            if fragment is not None:
                self._merge(parsed, fragment)

        if not (
            parsed.entity_type
            or parsed.category_filters
            or parsed.status_filters
            or parsed.comparisons
        ):
            return None

        self._annotate(parsed)
        return parsed

    def _merge(self, parsed: ParsedQuery, fragment: QueryFragment) -> None:
        for name, value in fragment.fields.items():
            if name in _LIST_FIELDS:
                current = getattr(parsed, name)
                for item in value:
                    if item not in current:
                        current.append(item)
            elif value is not None:
                setattr(parsed, name, value)
        for text, kind in fragment.recognized:
            parsed.recognized.append(RecognizedToken(text=text, type=kind))
        parsed.tips.extend(fragment.tips)

    def _annotate(self, parsed: ParsedQuery) -> None:
        """Diagnostic warnings and tips for known ambiguous combinations."""
        if not parsed.entity_type:
            parsed.warnings.append(
                "No entity type given: every object the policy allows will be considered."
            )

        disjuncts = len(parsed.status_filters) + len(parsed.category_filters)
        if parsed.logic_operator == LogicOperator.OR and disjuncts <= 1:
            parsed.warnings.append(
                "'or' found but there is only one condition; the result equals a plain filter."
            )

        if parsed.time_range and parsed.time_window_hours:
            parsed.warnings.append(
                "Both a fixed time range and a sliding window were given; "
                "their intersection is applied."
            )

        if not parsed.sector_filters:
            parsed.tips.append("Add a sector to narrow the result, e.g. 'in sector A'.")
        if parsed.status_filters:
            parsed.tips.append("Several statuses can be combined: offline, online, degraded.")
        if parsed.comparisons:
            parsed.tips.append("Comparisons work on numeric fields such as speed or heading.")

    # --- Matchers ---

    def _match_entity(self, text: str, lowered: str) -> Optional[QueryFragment]:
        wants_count = any(keyword in lowered for keyword in COUNT_KEYWORDS)
        for group in ENTITY_KEYWORDS:
            if any(keyword in lowered for keyword in group.keywords):
                intent = group.intent
                if wants_count and intent == QueryIntent.LIST:
                    intent = QueryIntent.COUNT
                fields = {
                    "entity_type": group.entity_type,
                    "entity_label": group.label,
                    "intent": intent,
                }
                recognized = [(group.label, "entity")]
                if group.category:
                    fields["category_filters"] = [group.category]
                    recognized.append((group.category, "category"))
                return QueryFragment(fields=fields, recognized=recognized, tips=list(group.tips))

        if wants_count:
            return QueryFragment(fields={"intent": QueryIntent.COUNT})
        return None

    def _match_logic(self, text: str, lowered: str) -> Optional[QueryFragment]:
        tokens = set(re.split(r"[\s,]+", lowered))
        if tokens & OR_TOKENS:
            return QueryFragment(fields={"logic_operator": LogicOperator.OR})
        return None

    def _match_sectors(self, text: str, lowered: str) -> Optional[QueryFragment]:
        sectors: List[str] = []
        recognized = []
        for pattern in _SECTOR_PATTERNS:
            for match in pattern.finditer(lowered):
                letter = match.group(1)
                sector = SECTOR_HOMOGLYPHS.get(letter, letter.upper())
                if sector not in sectors:
                    sectors.append(sector)
                recognized.append((match.group(0), "sector"))
        if not sectors:
            return None
        return QueryFragment(fields={"sector_filters": sectors}, recognized=recognized)

    def _match_status(self, text: str, lowered: str) -> Optional[QueryFragment]:
        statuses: List[str] = []
        recognized = []
        for keyword, normalized in STATUS_KEYWORDS.items():
            if keyword in lowered:
                if normalized not in statuses:
                    statuses.append(normalized)
                recognized.append((keyword, "status"))
        if not statuses:
            return None
        return QueryFragment(fields={"status_filters": statuses}, recognized=recognized)

    def _match_category(self, text: str, lowered: str) -> Optional[QueryFragment]:
        categories: List[str] = []
        recognized = []
        for keyword, normalized in CATEGORY_KEYWORDS.items():
            if keyword in lowered:
                if normalized not in categories:
                    categories.append(normalized)
                recognized.append((keyword, "category"))

        match = _CATEGORY_PHRASE.search(lowered)
        if match:
            normalized = normalize_category(match.group(1))
            if normalized and normalized not in categories:
                categories.append(normalized)
            recognized.append((match.group(1), "category"))

        if not categories:
            return None
        return QueryFragment(fields={"category_filters": categories}, recognized=recognized)

    def _match_level(self, text: str, lowered: str) -> Optional[QueryFragment]:
        for keyword, level in LEVEL_KEYWORDS.items():
            if keyword in lowered:
                return QueryFragment(
                    fields={"level_filter": level},
                    recognized=[(level.value, "level")],
                )
        return None

    def _match_time_window(self, text: str, lowered: str) -> Optional[QueryFragment]:
        for pattern in _TIME_WINDOW_PATTERNS:
            match = pattern.search(lowered)
            if match:
                value = float(match.group(1))
                unit = match.group(2).lower()
                if "мин" in unit or "minute" in unit:
                    hours = value / 60
                elif "дн" in unit or "day" in unit:
                    hours = value * 24
                else:
                    hours = value
                return QueryFragment(
                    fields={"time_window_hours": hours, "time_window_raw": match.group(0)},
                    recognized=[(match.group(0), "time_window")],
                )

        for phrase in REALTIME_PHRASES:
            if phrase in lowered:
                return QueryFragment(
                    fields={
                        "time_window_hours": self.config.realtime_window_hours,
                        "time_window_raw": phrase,
                    },
                    recognized=[(phrase, "time_window")],
                )
        return None

    def _match_time_range(self, text: str, lowered: str) -> Optional[QueryFragment]:
        for pattern in _TIME_RANGE_PATTERNS:
            match = pattern.search(lowered)
            if not match:
                continue
            start = self._resolve_clock_time(match.group(1))
            end = self._resolve_clock_time(match.group(2))
            if start is None or end is None:
                return None
            if end < start:
                end += timedelta(hours=24)
            time_range = TimeRange(start=start, end=end, raw=match.group(0))
            return QueryFragment(
                fields={"time_range": time_range},
                recognized=[(match.group(0), "time_range")],
            )
        return None

    def _resolve_clock_time(self, value: str) -> Optional[datetime]:
        """HH:MM on the reference date."""
        hours, _, minutes = value.partition(":")
        try:
            return self.config.reference_time.replace(
                hour=int(hours), minute=int(minutes), second=0, microsecond=0
            )
        except ValueError:
            return None

    def _match_limit(self, text: str, lowered: str) -> Optional[QueryFragment]:
        match = _LIMIT_PATTERN.search(lowered)
        if not match:
            return None
        limit = int(match.group(2))
        return QueryFragment(fields={"limit": limit}, recognized=[(f"limit:{limit}", "limit")])

    def _match_comparisons(self, text: str, lowered: str) -> Optional[QueryFragment]:
        comparisons = []
        for match in _COMPARISON_PATTERN.finditer(lowered):
            attribute = self._resolve_attribute(match.group(1))
            if attribute is None:
                continue
            raw_value = match.group(3)
            number = parse_number(raw_value)
            comparisons.append(
                ComparisonFilter(
                    attribute=attribute,
                    operator=ComparisonOperator(match.group(2)),
                    value=number if number is not None else raw_value.lower(),
                    raw=match.group(0),
                    display=f"{match.group(1)} {match.group(2)} {raw_value}",
                )
            )
        if not comparisons:
            return None
        return QueryFragment(
            fields={"comparisons": comparisons},
            recognized=[(c.raw, "comparison") for c in comparisons],
        )

    def _resolve_attribute(self, identifier: str) -> Optional[str]:
        lower = identifier.lower()
        for alias, attribute in ATTRIBUTE_ALIASES:
            if alias in lower:
                return attribute
        return None

    def _match_geo(self, text: str, lowered: str) -> Optional[QueryFragment]:
        if not any(trigger in lowered for trigger in GEO_TRIGGERS):
            return None

        match = _GEO_EXPLICIT.search(text) or _GEO_PAIR.search(text)
        if not match:
            return None

        lat = parse_number(match.group(1))
        lon = parse_number(match.group(2))
        if lat is None or lon is None or abs(lat) > 90 or abs(lon) > 180:
            return None

        radius_match = _GEO_RADIUS.search(lowered)
        radius = parse_number(radius_match.group(1)) if radius_match else None
        if radius is None:
            radius = self.config.default_geo_radius_km

        geo = GeoFilter(lat=lat, lon=lon, radius_km=radius, raw=match.group(0))
        return QueryFragment(fields={"geo_filter": geo}, recognized=[(match.group(0), "geo")])


def build_explanation(parsed: ParsedQuery, raw_query: str) -> QueryExplanation:
    """Render a ParsedQuery for the caller. Purely descriptive."""
    filters = []
    if parsed.sector_filters:
        filters.append(f"Sectors: {', '.join(parsed.sector_filters)}")
    if parsed.level_filter:
        filters.append(f"Classification: {parsed.level_filter.value}")
    if parsed.category_filters:
        filters.append(f"Categories: {', '.join(c.upper() for c in parsed.category_filters)}")
    if parsed.status_filters:
        filters.append(f"Statuses: {', '.join(parsed.status_filters)}")

    time_range = None
    if parsed.time_range:
        start, end = parsed.time_range.start, parsed.time_range.end
        time_range = f"{start:%H:%M} to {end:%H:%M}"
        if end.date() != start.date():
            time_range += " (next day)"

    geo = None
    if parsed.geo_filter:
        g = parsed.geo_filter
        geo = f"Coordinates {g.lat:.3f}, {g.lon:.3f} ± {g.radius_km:g} km"

    return QueryExplanation(
        raw=raw_query,
        entity=parsed.entity_label,
        filters=filters,
        comparisons=[c.display for c in parsed.comparisons],
        time_window=parsed.time_window_raw,
        time_range=time_range,
        geo=geo,
        limit=parsed.limit,
        tips=list(dict.fromkeys(parsed.tips)),
        warnings=list(parsed.warnings),
        intent=parsed.intent,
        logic=parsed.logic_operator,
        recognized=list(parsed.recognized),
    )


def unrecognized_explanation(raw_query: str) -> QueryExplanation:
    return QueryExplanation(raw=raw_query, tips=list(UNRECOGNIZED_TIPS))

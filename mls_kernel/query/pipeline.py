"""
Query Execution Pipeline — from free text to a disclosed (or withheld) result.

States:
  BUDGET_CHECK → (DENIED | PARSE) → (UNRECOGNIZED | FILTER) → LIMIT →
  BUDGET_DECREMENT → K_ANONYMITY_GATE → AUDIT → SUCCESS

Behavioral Contract:
- The budget check, every filter stage and the decrement run under the
  user's budget lock; two concurrent queries never both spend the last unit.
- Budget denials are audited and never consume budget.
- Unrecognized queries touch no data: no audit, no budget.
- Access filtering runs before every attribute filter.
- Filters are cumulative intersections in a fixed order. The OR flag is
  reported in the explanation only; filtering is always AND.
- Fewer than `min_k` matches are disclosed as a count only.
- A failed audit append is logged and never changes the response.
- Repository read failures propagate unchanged; nothing is retried here.
"""

from datetime import datetime, timedelta, timezone
from typing import List, Optional
from uuid import uuid4

import structlog

from mls_kernel.errors import UnknownUserError
from mls_kernel.interfaces import AuditRepository, GraphRepository, UserRepository
from mls_kernel.models.access import User
from mls_kernel.models.audit import AuditLogEntry, DenialReason
from mls_kernel.models.engine import EngineConfig
from mls_kernel.models.graph import GraphNode
from mls_kernel.models.query import (
    AggregatedCount,
    ParsedQuery,
    QueryOutcome,
    QueryResult,
)
from mls_kernel.policy.evaluator import (
    budget_sufficient,
    filter_accessible_nodes,
    k_anonymity_sufficient,
)
from mls_kernel.query.attributes import (
    best_timestamp,
    haversine_km,
    matches_comparisons,
    node_category,
    node_coordinates,
    node_sector,
    node_status,
    observed_at,
)
from mls_kernel.query.parser import QueryParser, build_explanation, unrecognized_explanation

logger = structlog.get_logger()

BUDGET_EXHAUSTED_MESSAGE = "Query budget exhausted. Wait for the budget to be restored."
UNRECOGNIZED_MESSAGE = "Could not understand the query."
K_ANONYMITY_MESSAGE = "Result set too small to disclose details (k-anonymity protection)."

_EPOCH = datetime.min.replace(tzinfo=timezone.utc)


def _seen_since(node: GraphNode, cutoff: datetime) -> bool:
    seen = observed_at(node)
    return seen is not None and seen >= cutoff


def _within(node: GraphNode, start: datetime, end: datetime) -> bool:
    timestamp = best_timestamp(node)
    return timestamp is not None and start <= timestamp <= end


def apply_filters(
    nodes: List[GraphNode],
    parsed: ParsedQuery,
    reference_time: datetime,
) -> List[GraphNode]:
    """
    Attribute filters in their fixed order. Each stage only ever narrows the
    candidate list.
    """
    filtered = nodes

    if parsed.sector_filters:
        sectors = {s.upper() for s in parsed.sector_filters}
        filtered = [n for n in filtered if node_sector(n) in sectors]

    if parsed.level_filter:
        filtered = [n for n in filtered if n.classification_level == parsed.level_filter]

    if parsed.time_window_hours and parsed.time_window_hours > 0:
        cutoff = reference_time - timedelta(hours=parsed.time_window_hours)
        filtered = [n for n in filtered if _seen_since(n, cutoff)]

    if parsed.time_range:
        start, end = parsed.time_range.start, parsed.time_range.end
        filtered = [n for n in filtered if _within(n, start, end)]

    if parsed.status_filters:
        statuses = set(parsed.status_filters)
        filtered = [n for n in filtered if node_status(n) in statuses]

    if parsed.category_filters:
        categories = set(parsed.category_filters)
        filtered = [n for n in filtered if node_category(n) in categories]

    if parsed.geo_filter:
        geo = parsed.geo_filter
        kept = []
        for node in filtered:
            coordinates = node_coordinates(node)
            if coordinates is None:
                continue
            if haversine_km(geo.lat, geo.lon, coordinates[0], coordinates[1]) <= geo.radius_km:
                kept.append(node)
        filtered = kept

    if parsed.comparisons:
        filtered = [n for n in filtered if matches_comparisons(n, parsed.comparisons)]

    return filtered


def take_most_recent(nodes: List[GraphNode], limit: int) -> List[GraphNode]:
    """The `limit` most recently observed nodes, newest first."""
    if len(nodes) <= limit:
        return nodes
    ordered = sorted(nodes, key=lambda n: best_timestamp(n) or _EPOCH, reverse=True)
    return ordered[:limit]


class QueryPipeline:
    """
    Runs natural-language queries against the classified graph on behalf of
    a user.
    """

    def __init__(
        self,
        graph_repository: GraphRepository,
        user_repository: UserRepository,
        audit_repository: AuditRepository,
        config: Optional[EngineConfig] = None,
        parser: Optional[QueryParser] = None,
    ):
        self.graph = graph_repository
        self.users = user_repository
        self.audit = audit_repository
        self.config = config or EngineConfig()
        self.parser = parser or QueryParser(self.config)

    def execute(
        self,
        user: User,
        query_text: str,
        current_time: Optional[datetime] = None,
    ) -> QueryResult:
        """Run one query. `current_time` is the wall clock for the budget reset."""
        if current_time is None:
            current_time = datetime.now(timezone.utc)

        with self.users.budget_lock(user.id):
            # 1. Reset-then-check budget
            subject = self.users.find_by_id(user.id, current_time)
            if subject is None:
                raise UnknownUserError(f"Unknown user: {user.id}")

            if not budget_sufficient(subject):
                self._write_audit(
                    subject, query_text, 0, False,
                    DenialReason.BUDGET_EXHAUSTED, current_time,
                )
                logger.info("query_denied", user_id=subject.id, reason="budget_exhausted")
                return QueryResult(
                    outcome=QueryOutcome.DENIED,
                    success=False,
                    error=BUDGET_EXHAUSTED_MESSAGE,
                    denial_reason=DenialReason.BUDGET_EXHAUSTED,
                    remaining_budget=0,
                )

            # 2. Parse
            parsed = self.parser.parse(query_text)
            if parsed is None:
                logger.info("query_unrecognized", user_id=subject.id)
                return QueryResult(
                    outcome=QueryOutcome.UNRECOGNIZED,
                    success=False,
                    error=UNRECOGNIZED_MESSAGE,
                    remaining_budget=subject.query_budget,
                    explanation=unrecognized_explanation(query_text),
                )

            # 3-5. Fetch, restrict, access filter, attribute filters
            nodes = self.graph.get_all_nodes()
            if parsed.entity_type:
                nodes = [n for n in nodes if n.entity_type == parsed.entity_type]
            accessible = filter_accessible_nodes(subject, nodes)
            results = apply_filters(accessible, parsed, self.config.reference_time)

            # 6. Limit
            if parsed.limit and parsed.limit > 0:
                results = take_most_recent(results, parsed.limit)

            # 7. Spend one unit
            remaining = max(0, subject.query_budget - 1)
            self.users.update_budget(subject.id, remaining, subject.budget_reset_at)

        explanation = build_explanation(parsed, query_text)
        count = len(results)

        # 8. Nothing matched
        if count == 0:
            self._write_audit(subject, query_text, 0, True, None, current_time)
            logger.info("query_processed", user_id=subject.id, result_count=0)
            return QueryResult(
                outcome=QueryOutcome.SUCCESS,
                success=True,
                remaining_budget=remaining,
                explanation=explanation,
            )

        # 9. k-anonymity gate
        if not k_anonymity_sufficient(count, self.config.min_k):
            self._write_audit(
                subject, query_text, count, True,
                DenialReason.K_ANONYMITY, current_time,
            )
            logger.info(
                "query_aggregated", user_id=subject.id,
                result_count=count, min_k=self.config.min_k,
            )
            return QueryResult(
                outcome=QueryOutcome.SUCCESS,
                success=True,
                aggregate=AggregatedCount(count=count, message=K_ANONYMITY_MESSAGE),
                aggregated=True,
                denial_reason=DenialReason.K_ANONYMITY,
                remaining_budget=remaining,
                explanation=explanation,
            )

        # 10. Full disclosure
        self._write_audit(subject, query_text, count, True, None, current_time)
        logger.info("query_processed", user_id=subject.id, result_count=count)
        return QueryResult(
            outcome=QueryOutcome.SUCCESS,
            success=True,
            nodes=results,
            remaining_budget=remaining,
            explanation=explanation,
        )

    def _write_audit(
        self,
        user: User,
        query_text: str,
        result_count: int,
        granted: bool,
        reason: Optional[DenialReason],
        current_time: datetime,
    ) -> None:
        entry = AuditLogEntry(
            id=f"audit_{uuid4().hex[:12]}",
            user_id=user.id,
            query_text=query_text,
            query_type=self.config.query_type,
            result_count=result_count,
            access_granted=granted,
            denial_reason=reason,
            created_at=current_time,
        )
        try:
            self.audit.append(entry)
        except Exception as e:
            logger.warning(
                "audit_append_failed",
                user_id=user.id,
                audit_id=entry.id,
                error=str(e),
            )

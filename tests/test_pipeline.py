"""Tests for the Query Execution Pipeline."""

from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timedelta, timezone

import pytest

from mls_kernel.audit.store import AuditLogStore
from mls_kernel.errors import UnknownUserError
from mls_kernel.models.access import ClearanceLevel, User
from mls_kernel.models.audit import DenialReason
from mls_kernel.models.engine import EngineConfig
from mls_kernel.models.graph import GraphNode, build_entity_id
from mls_kernel.models.query import LogicOperator, QueryOutcome
from mls_kernel.query.parser import QueryParser
from mls_kernel.query.pipeline import QueryPipeline, apply_filters, take_most_recent
from mls_kernel.graph_store.store import GraphStore
from mls_kernel.seed import seed_graph
from mls_kernel.users.store import UserStore

T0 = datetime(2024, 5, 12, 10, 0, tzinfo=timezone.utc)


def _make_node(
    logical_id: str,
    level: ClearanceLevel = ClearanceLevel.CONFIDENTIAL,
    entity_type: str = "Target",
    **attributes,
) -> GraphNode:
    return GraphNode(
        id=build_entity_id(logical_id, level),
        logical_id=logical_id,
        classification_level=level,
        entity_type=entity_type,
        name=logical_id,
        attributes=attributes,
        created_at=T0,
        updated_at=T0,
    )


def _make_analyst(budget: int = 8, reset_at: datetime = T0 + timedelta(hours=1)) -> User:
    return User(
        id="analyst_a",
        username="analyst_a",
        clearance_level=ClearanceLevel.CONFIDENTIAL,
        attributes={"sector": "A", "role": "analyst"},
        query_budget=budget,
        budget_reset_at=reset_at,
    )


def _make_commander() -> User:
    return User(
        id="commander",
        username="commander",
        clearance_level=ClearanceLevel.SECRET,
        attributes={"sector": "ALL", "role": "commander"},
        query_budget=20,
        budget_reset_at=T0 + timedelta(hours=1),
    )


class FailingAuditStore:
    def append(self, entry):
        raise RuntimeError("disk full")


class TestQueryPipeline:
    def setup_method(self):
        self.config = EngineConfig()
        self.analyst = _make_analyst()
        self.commander = _make_commander()

    def _build(self, nodes, users=None, audit=None):
        self.graph = GraphStore(nodes)
        self.users = UserStore(self.config, users or [self.analyst, self.commander])
        self.audit = audit if audit is not None else AuditLogStore(db_path=":memory:")
        return QueryPipeline(self.graph, self.users, self.audit, self.config)

    def test_two_uavs_are_disclosed(self):
        pipeline = self._build([
            _make_node("uav_1", sector="A", category="UAV"),
            _make_node("uav_2", sector="A", category="UAV"),
        ])

        result = pipeline.execute(self.analyst, "Сколько беспилотников в секторе A", T0)

        assert result.outcome == QueryOutcome.SUCCESS
        assert result.success
        assert {n.logical_id for n in result.nodes} == {"uav_1", "uav_2"}
        assert result.aggregated is False
        assert result.remaining_budget == 7

    def test_single_uav_is_aggregated(self):
        pipeline = self._build([
            _make_node("uav_1", sector="A", category="UAV"),
            _make_node("uav_9", sector="B", category="UAV"),
        ])

        result = pipeline.execute(self.analyst, "Сколько беспилотников в секторе A", T0)

        assert result.success
        assert result.aggregated
        assert result.nodes == []
        assert result.aggregate.count == 1
        assert result.denial_reason == DenialReason.K_ANONYMITY

        entry = self.audit.query_for_user("analyst_a")[0]
        assert entry.access_granted
        assert entry.result_count == 1
        assert entry.denial_reason == DenialReason.K_ANONYMITY

    def test_clearance_filter_runs_before_status(self):
        pipeline = self._build([
            _make_node("radar_a", entity_type="Sensor", sector="A", status="offline"),
            _make_node("optic_a", entity_type="Sensor", sector="A", status="OFFLINE"),
            _make_node("sigint_a", ClearanceLevel.SECRET, "Sensor", sector="A", status="offline"),
            _make_node("radar_b", entity_type="Sensor", sector="A", status="online"),
        ])

        result = pipeline.execute(self.analyst, "сенсоры offline", T0)

        assert {n.logical_id for n in result.nodes} == {"radar_a", "optic_a"}
        assert all(n.classification_level == ClearanceLevel.CONFIDENTIAL for n in result.nodes)

        result = pipeline.execute(self.commander, "сенсоры offline", T0)
        assert {n.logical_id for n in result.nodes} == {"radar_a", "optic_a", "sigint_a"}

    def test_commander_sees_every_sector(self):
        pipeline = self._build([
            _make_node("uav_a", ClearanceLevel.SECRET, sector="A", category="UAV"),
            _make_node("uav_b", ClearanceLevel.SECRET, sector="B", category="UAV"),
            _make_node("uav_c", sector="C", category="UAV"),
        ])

        result = pipeline.execute(self.commander, "uav", T0)
        assert len(result.nodes) == 3

    def test_empty_result_is_success(self):
        pipeline = self._build([_make_node("uav_1", sector="A", category="UAV")])

        result = pipeline.execute(self.analyst, "сенсоры offline", T0)

        assert result.outcome == QueryOutcome.SUCCESS
        assert result.nodes == []
        assert result.aggregate is None
        assert result.remaining_budget == 7
        assert self.audit.query_for_user("analyst_a")[0].result_count == 0

    def test_budget_exhausted_after_exactly_budget_queries(self):
        pipeline = self._build([_make_node("uav_1", sector="A", category="UAV")])

        for i in range(8):
            result = pipeline.execute(self.analyst, "uav", T0)
            assert result.outcome == QueryOutcome.SUCCESS
            assert result.remaining_budget == 7 - i

        denied = pipeline.execute(self.analyst, "uav", T0)

        assert denied.outcome == QueryOutcome.DENIED
        assert not denied.success
        assert denied.denial_reason == DenialReason.BUDGET_EXHAUSTED
        assert denied.remaining_budget == 0
        assert self.users.find_by_id("analyst_a", T0).query_budget == 0

        denials = self.audit.query_denials(DenialReason.BUDGET_EXHAUSTED)
        assert len(denials) == 1
        assert denials[0].access_granted is False

    def test_budget_resets_once_due(self):
        exhausted = _make_analyst(budget=0, reset_at=T0)
        pipeline = self._build([_make_node("uav_1", sector="A")], users=[exhausted])
        now = T0 + timedelta(minutes=1)

        result = pipeline.execute(exhausted, "uav", now)

        assert result.outcome == QueryOutcome.SUCCESS
        assert result.remaining_budget == 7
        stored = self.users.find_by_id("analyst_a", now)
        assert stored.budget_reset_at == now + timedelta(hours=1)

    def test_unrecognized_consumes_nothing(self):
        pipeline = self._build([_make_node("uav_1", sector="A")])

        result = pipeline.execute(self.analyst, "hello world", T0)

        assert result.outcome == QueryOutcome.UNRECOGNIZED
        assert not result.success
        assert result.remaining_budget == 8
        assert result.explanation.tips
        assert self.audit.count() == 0
        assert self.users.find_by_id("analyst_a", T0).query_budget == 8

    def test_unknown_user_raises(self):
        pipeline = self._build([], users=[self.commander])
        with pytest.raises(UnknownUserError):
            pipeline.execute(self.analyst, "uav", T0)

    def test_audit_failure_does_not_change_response(self):
        pipeline = self._build(
            [
                _make_node("uav_1", sector="A", category="UAV"),
                _make_node("uav_2", sector="A", category="UAV"),
            ],
            audit=FailingAuditStore(),
        )

        result = pipeline.execute(self.analyst, "uav", T0)

        assert result.success
        assert len(result.nodes) == 2

    def test_limit_keeps_most_recent(self):
        pipeline = self._build([
            _make_node("uav_1", sector="A", category="UAV", last_seen="2024-05-12T09:50:00Z"),
            _make_node("uav_2", sector="A", category="UAV", last_seen="2024-05-12T09:58:00Z"),
            _make_node("uav_3", sector="A", category="UAV", last_seen="2024-05-12T09:55:00Z"),
        ])

        result = pipeline.execute(self.analyst, "first 2 uav", T0)

        assert [n.logical_id for n in result.nodes] == ["uav_2", "uav_3"]

    def test_or_keyword_still_filters_with_and(self):
        pipeline = self._build([
            _make_node("uav_1", sector="A", category="UAV", status="online"),
            _make_node("heli_1", sector="A", category="Helicopter", status="offline"),
        ])

        result = pipeline.execute(self.analyst, "UAV or offline", T0)

        assert result.outcome == QueryOutcome.SUCCESS
        assert result.nodes == []
        assert result.aggregate is None
        assert result.explanation.logic == LogicOperator.OR

    def test_window_and_range_intersect(self):
        nodes, _ = seed_graph()
        pipeline = self._build(nodes)

        window = pipeline.execute(self.commander, "events last 20 minutes", T0)
        time_range = pipeline.execute(self.commander, "events between 09:30 and 09:46", T0)
        both = pipeline.execute(
            self.commander, "events last 20 minutes between 09:30 and 09:46", T0
        )

        window_ids = {n.id for n in window.nodes}
        range_ids = {n.id for n in time_range.nodes}
        assert window_ids != range_ids
        assert {n.id for n in both.nodes} == window_ids & range_ids
        assert {n.id for n in both.nodes} == {
            "event_intercept_1_CONFIDENTIAL",
            "event_warning_b_CONFIDENTIAL",
            "event_intercept_1_SECRET",
        }

    def test_naive_reference_time_does_not_break_windows(self):
        self.config = EngineConfig(reference_time="2024-05-12T10:00:00")
        nodes, _ = seed_graph()
        pipeline = self._build(nodes)

        result = pipeline.execute(self.analyst, "UAV last 2 hours", T0)

        assert {n.id for n in result.nodes} == {
            "target_uav_1_CONFIDENTIAL", "target_uav_2_CONFIDENTIAL",
        }

    def test_concurrent_queries_never_overspend(self):
        pipeline = self._build([
            _make_node("uav_1", sector="A", category="UAV"),
            _make_node("uav_2", sector="A", category="UAV"),
        ])

        with ThreadPoolExecutor(max_workers=8) as executor:
            results = list(executor.map(
                lambda _: pipeline.execute(self.analyst, "uav", T0), range(20)
            ))

        outcomes = [r.outcome for r in results]
        assert outcomes.count(QueryOutcome.SUCCESS) == 8
        assert outcomes.count(QueryOutcome.DENIED) == 12
        assert self.users.find_by_id("analyst_a", T0).query_budget == 0
        assert self.audit.verify_chain_integrity()


class TestApplyFilters:
    def setup_method(self):
        nodes, _ = seed_graph()
        self.nodes = nodes
        self.parser = QueryParser()

    def _run(self, text):
        parsed = self.parser.parse(text)
        candidates = [n for n in self.nodes if n.entity_type == parsed.entity_type]
        return apply_filters(candidates, parsed, T0)

    def test_relative_window(self):
        result = self._run("UAVs last 5 minutes")
        assert {n.id for n in result} == {"target_uav_1_CONFIDENTIAL", "target_uav_1_SECRET"}

    def test_absolute_range(self):
        result = self._run("events from 09:40 to 09:46")
        assert {n.id for n in result} == {
            "event_intercept_1_CONFIDENTIAL",
            "event_warning_b_CONFIDENTIAL",
            "event_intercept_1_SECRET",
        }

    def test_geo_radius(self):
        result = self._run("targets near coordinates 54.21, 37.52 radius 5 km")
        assert {n.id for n in result} == {"target_uav_1_SECRET", "target_uav_2_SECRET"}

    def test_numeric_comparison(self):
        result = self._run("targets speed > 170")
        assert {n.logical_id for n in result} == {
            "target_uav_1", "target_unknown_3", "target_uav_4", "target_helicopter_5",
        }

    def test_threat_not_equal(self):
        result = self._run("targets threat != high")
        assert all(n.attributes["threat_level"].lower() != "high" for n in result)
        assert len(result) == 5

    def test_level_filter(self):
        result = self._run("targets secret")
        assert {n.classification_level for n in result} == {ClearanceLevel.SECRET}

    def test_filters_only_narrow(self):
        parsed = self.parser.parse("UAVs in sector A last 5 minutes speed > 100")
        result = apply_filters(self.nodes, parsed, T0)
        assert set(n.id for n in result) <= set(n.id for n in self.nodes)
        assert {n.id for n in result} == {"target_uav_1_CONFIDENTIAL", "target_uav_1_SECRET"}

    def test_take_most_recent_short_list_untouched(self):
        assert take_most_recent(self.nodes[:2], 5) == self.nodes[:2]

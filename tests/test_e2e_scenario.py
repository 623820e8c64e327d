"""
End-to-end test: an analyst and a commander working the seeded air picture.

  1. The analyst counts UAVs in sector A and gets both CONFIDENTIAL tracks
  2. The analyst asks for offline sensors and only gets an aggregate
  3. The commander asks the same and sees across sectors and levels
  4. An editor adds a second offline sensor; the analyst now gets records
  5. The analyst burns the budget, is denied, and recovers after the reset
  6. The audit trail holds every attempt and its chain verifies
"""

from datetime import datetime, timedelta, timezone

from mls_kernel.audit.store import AuditLogStore
from mls_kernel.graph_store.store import GraphStore
from mls_kernel.models.access import ClearanceLevel
from mls_kernel.models.audit import DenialReason
from mls_kernel.models.engine import EngineConfig
from mls_kernel.models.query import QueryOutcome
from mls_kernel.models.views import GraphViewRequest, ViewMode
from mls_kernel.query.pipeline import QueryPipeline
from mls_kernel.seed import seed_graph, seed_users
from mls_kernel.users.store import UserStore
from mls_kernel.views.reconciler import GraphViewReconciler

T0 = datetime(2024, 5, 12, 10, 0, tzinfo=timezone.utc)


class TestAirPictureScenarioE2E:
    """Full run through query, view, editing, budget and audit."""

    def setup_method(self):
        self.config = EngineConfig()
        nodes, edges = seed_graph()
        self.graph = GraphStore(nodes, edges)
        self.users = UserStore(self.config, seed_users(self.config, T0))
        self.audit = AuditLogStore(db_path=":memory:")
        self.pipeline = QueryPipeline(self.graph, self.users, self.audit, self.config)
        self.reconciler = GraphViewReconciler(self.graph, self.users)
        self.analyst = self.users.find_by_username("analyst_a", T0)
        self.commander = self.users.find_by_username("commander", T0)

    def test_full_scenario(self):
        # 1. Two CONFIDENTIAL UAVs in sector A
        result = self.pipeline.execute(self.analyst, "Сколько беспилотников в секторе A", T0)
        assert result.outcome == QueryOutcome.SUCCESS
        assert sorted(n.id for n in result.nodes) == [
            "target_uav_1_CONFIDENTIAL", "target_uav_2_CONFIDENTIAL",
        ]

        # 2. One offline sensor visible to the analyst: count only
        result = self.pipeline.execute(self.analyst, "сенсоры offline", T0)
        assert result.aggregated
        assert result.aggregate.count == 1
        assert result.denial_reason == DenialReason.K_ANONYMITY

        # 3. The commander sees SECRET tracks in every sector
        result = self.pipeline.execute(self.commander, "беспилотники", T0)
        assert {n.attributes["sector"] for n in result.nodes} == {"A", "C"}
        assert any(n.classification_level == ClearanceLevel.SECRET for n in result.nodes)

        view = self.reconciler.build_view(self.commander, GraphViewRequest(mode=ViewMode.VIRTUAL))
        assert len({n.logical_id for n in view.nodes}) == len(view.nodes)

        # 4. A second offline sensor lifts the analyst's result above k
        self.graph.create_node(
            name="Acoustic post sector A",
            entity_type="Sensor",
            classification_level="CONFIDENTIAL",
            attributes={"sector": "A", "status": "offline"},
            logical_id="sensor_acoustic_a",
        )
        self.graph.create_node(
            name="Acoustic post SECRET",
            entity_type="Sensor",
            classification_level="SECRET",
            attributes={"sector": "A", "status": "offline"},
            logical_id="sensor_acoustic_s",
        )
        result = self.pipeline.execute(self.analyst, "сенсоры offline", T0)
        assert {n.logical_id for n in result.nodes} == {"sensor_optic_a", "sensor_acoustic_a"}

        # 5. Spend the rest of the budget, get denied, wait for the reset
        remaining = result.remaining_budget
        assert remaining == 5
        for _ in range(remaining):
            assert self.pipeline.execute(self.analyst, "uav", T0).success

        denied = self.pipeline.execute(self.analyst, "uav", T0)
        assert denied.outcome == QueryOutcome.DENIED

        later = T0 + timedelta(hours=1, seconds=1)
        recovered = self.pipeline.execute(self.analyst, "uav", later)
        assert recovered.success
        assert recovered.remaining_budget == 7

        # 6. Every attempt is on the record and the chain is intact
        analyst_entries = self.audit.query_for_user("local-analyst_a", limit=100)
        assert len(analyst_entries) == 3 + remaining + 2
        assert self.audit.query_denials(DenialReason.BUDGET_EXHAUSTED)[0].user_id == "local-analyst_a"
        assert self.audit.verify_chain_integrity()

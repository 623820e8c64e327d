"""Tests for the Graph View Reconciler."""

from collections import Counter
from datetime import datetime, timedelta, timezone

import pytest

from mls_kernel.errors import UnknownUserError
from mls_kernel.graph_store.store import GraphStore
from mls_kernel.models.access import ClearanceLevel, level_rank
from mls_kernel.models.engine import EngineConfig
from mls_kernel.models.views import GraphViewRequest, ViewMode
from mls_kernel.seed import seed_graph, seed_users
from mls_kernel.users.store import UserStore
from mls_kernel.views.reconciler import GraphViewReconciler

T0 = datetime(2024, 5, 12, 10, 0, tzinfo=timezone.utc)


class TestGraphViewReconciler:
    def setup_method(self):
        nodes, edges = seed_graph()
        self.graph = GraphStore(nodes, edges)
        self.users = UserStore(EngineConfig(), seed_users(EngineConfig(), T0))
        self.reconciler = GraphViewReconciler(self.graph, self.users)
        self.analyst = self.users.find_by_username("analyst_a", T0)
        self.commander = self.users.find_by_username("commander", T0)

    def test_virtual_one_node_per_logical_id(self):
        view = self.reconciler.build_view(self.commander)

        counts = Counter(n.logical_id for n in view.nodes)
        assert all(count == 1 for count in counts.values())
        assert len(view.nodes) == 16
        chosen = {n.logical_id: n for n in view.nodes}
        assert chosen["target_uav_1"].classification_level == ClearanceLevel.SECRET
        assert chosen["sensor_radar_a"].classification_level == ClearanceLevel.CONFIDENTIAL

    def test_virtual_picks_highest_accessible_rank(self):
        view = self.reconciler.build_view(self.commander)
        all_nodes = self.graph.get_all_nodes()

        for node in view.nodes:
            candidates = [n for n in all_nodes if n.logical_id == node.logical_id]
            best = max(level_rank(n.classification_level) for n in candidates)
            assert level_rank(node.classification_level) == best

    def test_virtual_edges_point_at_chosen_nodes(self):
        view = self.reconciler.build_view(self.commander)
        node_ids = {n.id for n in view.nodes}

        assert len(view.edges) == 10
        for edge in view.edges:
            assert edge.source_node_id in node_ids
            assert edge.target_node_id in node_ids

    def test_virtual_for_analyst(self):
        view = self.reconciler.build_view(self.analyst)

        assert {n.logical_id for n in view.nodes} == {
            "target_uav_1", "target_uav_2", "sensor_radar_a", "sensor_optic_a", "event_intercept_1",
        }
        assert all(n.classification_level == ClearanceLevel.CONFIDENTIAL for n in view.nodes)
        assert view.edges == []
        assert view.levels == [ClearanceLevel.UNCLASSIFIED, ClearanceLevel.CONFIDENTIAL]

    def test_level_mode_defaults_to_highest(self):
        view = self.reconciler.build_view(self.commander, GraphViewRequest(mode=ViewMode.LEVEL))

        assert view.levels == [ClearanceLevel.SECRET]
        assert len(view.nodes) == 11
        # Cross-level seed edges are not part of a single-level projection
        assert {e.logical_id for e in view.edges} == {
            "rel_event_target", "rel_detect_3", "rel_detect_4", "rel_event_b1", "rel_event_b2",
        }

    def test_level_mode_requested_level(self):
        view = self.reconciler.build_view(
            self.commander, GraphViewRequest(mode=ViewMode.LEVEL, level="confidential")
        )

        assert view.levels == [ClearanceLevel.CONFIDENTIAL]
        assert len(view.nodes) == 8
        assert [e.logical_id for e in view.edges] == ["rel_event_group_b"]

    def test_level_mode_falls_back_when_not_cleared(self):
        view = self.reconciler.build_view(
            self.analyst, GraphViewRequest(mode=ViewMode.LEVEL, level="SECRET")
        )
        assert view.levels == [ClearanceLevel.CONFIDENTIAL]
        assert all(n.classification_level == ClearanceLevel.CONFIDENTIAL for n in view.nodes)

    def test_overlay_mode(self):
        view = self.reconciler.build_view(
            self.commander,
            GraphViewRequest(mode=ViewMode.OVERLAY, overlay_levels=["CONFIDENTIAL", "SECRET"]),
        )

        assert view.levels == [ClearanceLevel.CONFIDENTIAL, ClearanceLevel.SECRET]
        assert len(view.nodes) == 19
        assert len(view.edges) == 10

    def test_overlay_drops_levels_above_clearance(self):
        view = self.reconciler.build_view(
            self.analyst,
            GraphViewRequest(mode=ViewMode.OVERLAY, overlay_levels=["SECRET"]),
        )
        assert view.levels == [ClearanceLevel.UNCLASSIFIED, ClearanceLevel.CONFIDENTIAL]

    def test_overlay_with_bogus_levels_uses_all_accessible(self):
        view = self.reconciler.build_view(
            self.commander,
            GraphViewRequest(mode=ViewMode.OVERLAY, overlay_levels=["TOP", "nonsense"]),
        )
        assert len(view.levels) == 3

    def test_view_follows_graph_changes(self):
        self.graph.delete_node("target_uav_1", "SECRET")
        view = self.reconciler.build_view(self.commander)

        chosen = {n.logical_id: n for n in view.nodes}
        assert chosen["target_uav_1"].classification_level == ClearanceLevel.CONFIDENTIAL
        assert "rel_detect_1" not in {e.logical_id for e in view.edges}

    def test_build_view_for_unknown_user(self):
        with pytest.raises(UnknownUserError):
            self.reconciler.build_view_for("ghost")

    def test_build_view_for_requires_repository(self):
        reconciler = GraphViewReconciler(self.graph)
        with pytest.raises(UnknownUserError):
            reconciler.build_view_for("local-commander")

    def test_build_view_for_known_user(self):
        view = self.reconciler.build_view_for("local-commander")
        assert view.mode == ViewMode.VIRTUAL

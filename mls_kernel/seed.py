"""
Seed data: the demo users and a small multi-level air-defence graph.

Several logical entities exist at both CONFIDENTIAL and SECRET, the SECRET
version carrying precise coordinates and kinematics.
"""

from datetime import datetime, timedelta, timezone
from typing import List, Optional, Tuple

from mls_kernel.models.access import ClearanceLevel, User
from mls_kernel.models.engine import EngineConfig
from mls_kernel.models.graph import GraphEdge, GraphNode, build_entity_id

SEED_TIMESTAMP = datetime(2024, 5, 12, 10, 0, tzinfo=timezone.utc)

C = ClearanceLevel.CONFIDENTIAL
S = ClearanceLevel.SECRET


def seed_users(
    config: Optional[EngineConfig] = None, now: Optional[datetime] = None
) -> List[User]:
    config = config or EngineConfig()
    now = now or datetime.now(timezone.utc)
    reset_at = now + timedelta(seconds=config.budget_reset_interval_seconds)
    return [
        User(
            id="local-analyst_a",
            username="analyst_a",
            clearance_level=C,
            attributes={"sector": "A", "sectors": ["A"], "role": "analyst"},
            query_budget=config.max_budget(C),
            budget_reset_at=reset_at,
        ),
        User(
            id="local-commander",
            username="commander",
            clearance_level=S,
            attributes={"sector": "ALL", "sectors": ["A", "B", "C"], "role": "commander"},
            query_budget=config.max_budget(S),
            budget_reset_at=reset_at,
        ),
    ]


def _node(logical_id: str, level: ClearanceLevel, entity_type: str, name: str, **attributes) -> GraphNode:
    return GraphNode(
        id=build_entity_id(logical_id, level),
        logical_id=logical_id,
        classification_level=level,
        entity_type=entity_type,
        name=name,
        attributes=attributes,
        created_at=SEED_TIMESTAMP,
        updated_at=SEED_TIMESTAMP,
    )


def _edge(logical_id: str, level: ClearanceLevel, source: str, target: str, relation: str, **attributes) -> GraphEdge:
    return GraphEdge(
        id=build_entity_id(logical_id, level),
        logical_id=logical_id,
        classification_level=level,
        source_node_id=source,
        target_node_id=target,
        relation_type=relation,
        attributes=attributes,
        created_at=SEED_TIMESTAMP,
    )


def seed_graph() -> Tuple[List[GraphNode], List[GraphEdge]]:
    nodes = [
        # Targets
        _node("target_uav_1", C, "Target", "UAV in sector A", sector="A", category="UAV",
              coordinates="northern part of sector A", speed=180, heading=270,
              last_seen="2024-05-12T09:55:00Z", threat_level="elevated"),
        _node("target_uav_2", C, "Target", "UAV near line A", sector="A", category="UAV",
              coordinates="central part of sector A", speed=160, heading=280,
              last_seen="2024-05-12T09:50:00Z", threat_level="medium"),
        _node("target_group_sector_b", C, "Target", "Air targets sector B", sector="B",
              category="AirGroup", last_seen="2024-05-12T09:42:00Z", threat_level="high"),
        _node("target_activity_sector_c", C, "Target", "UAV activity sector C", sector="C",
              category="UAV", last_seen="2024-05-12T09:48:00Z", threat_level="medium"),
        _node("target_uav_1", S, "Target", "UAV-1", sector="A", category="UAV",
              coordinates=[54.2101, 37.5203], speed=180, heading=275,
              last_seen="2024-05-12T09:58:00Z", threat_level="HIGH"),
        _node("target_uav_2", S, "Target", "UAV-2", sector="A", category="UAV",
              coordinates=[54.1985, 37.4801], speed=165, heading=280,
              last_seen="2024-05-12T09:52:00Z", threat_level="MEDIUM"),
        _node("target_unknown_3", S, "Target", "Unidentified target", sector="B",
              category="Unknown", coordinates=[54.315, 37.595], speed=210, heading=260,
              last_seen="2024-05-12T09:40:00Z", threat_level="HIGH"),
        _node("target_uav_4", S, "Target", "UAV-4", sector="C", category="UAV",
              coordinates=[54.2561, 37.6104], speed=190, heading=240,
              last_seen="2024-05-12T09:49:00Z", threat_level="MEDIUM"),
        _node("target_helicopter_5", S, "Target", "Reconnaissance helicopter", sector="B",
              category="Helicopter", coordinates=[54.3322, 37.5804], speed=210, heading=195,
              last_seen="2024-05-12T09:43:00Z", threat_level="HIGH"),
        # Sensors
        _node("sensor_radar_a", C, "Sensor", "Radar sector A", sector="A",
              platform="radar", status="online"),
        _node("sensor_optic_a", C, "Sensor", "Optical complex sector A", sector="A",
              platform="optical", status="offline"),
        _node("sensor_radar_b", S, "Sensor", "Long-range radar sector B", sector="B",
              platform="radar_long_range", status="online"),
        _node("sensor_sigint_c", S, "Sensor", "SIGINT post sector C", sector="C",
              platform="sigint", status="online"),
        # Command
        _node("command_center_alpha", S, "CommandPost", "Command post Alpha", sector="A",
              status="operational", frequency="121.6"),
        # Events
        _node("event_intercept_1", C, "Event", "Engagement in sector A", sector="A",
              timestamp="2024-05-12T09:45:00Z", severity="medium"),
        _node("event_warning_b", C, "Event", "Warning sector B", sector="B",
              timestamp="2024-05-12T09:40:00Z", severity="high"),
        _node("event_intercept_1", S, "Event", "UAV intercept attempt", sector="A",
              timestamp="2024-05-12T09:45:00Z", severity="high"),
        _node("event_alert_sector_b", S, "Event", "Raised threat level sector B", sector="B",
              timestamp="2024-05-12T09:38:00Z", severity="critical"),
        _node("event_sigint_ping", S, "Event", "SIGINT caught a control link", sector="C",
              timestamp="2024-05-12T09:47:00Z", severity="medium"),
    ]

    edges = [
        _edge("rel_event_group_b", C, "event_warning_b_CONFIDENTIAL",
              "target_group_sector_b_CONFIDENTIAL", "ASSOCIATED_WITH", sector="B"),
        _edge("rel_detect_1", S, "sensor_radar_a_CONFIDENTIAL",
              "target_uav_1_SECRET", "DETECTED_BY", sector="A"),
        _edge("rel_detect_2", S, "sensor_radar_a_CONFIDENTIAL",
              "target_uav_2_SECRET", "DETECTED_BY", sector="A"),
        _edge("rel_event_target", S, "event_intercept_1_SECRET",
              "target_uav_1_SECRET", "ASSOCIATED_WITH", sector="A"),
        _edge("rel_detect_3", S, "sensor_radar_b_SECRET",
              "target_helicopter_5_SECRET", "DETECTED_BY", sector="B"),
        _edge("rel_detect_4", S, "sensor_sigint_c_SECRET",
              "target_uav_4_SECRET", "TRACKED_BY", sector="C"),
        _edge("rel_command_1", S, "command_center_alpha_SECRET",
              "sensor_radar_a_CONFIDENTIAL", "COMMANDS", sector="A"),
        _edge("rel_command_2", S, "command_center_alpha_SECRET",
              "sensor_optic_a_CONFIDENTIAL", "COMMANDS", sector="A"),
        _edge("rel_event_b1", S, "event_alert_sector_b_SECRET",
              "target_helicopter_5_SECRET", "ASSOCIATED_WITH", sector="B"),
        _edge("rel_event_b2", S, "event_alert_sector_b_SECRET",
              "sensor_radar_b_SECRET", "TRIGGERED_BY", sector="B"),
    ]
    return nodes, edges

from __future__ import annotations

from typing import List

from domain.models import ChildDrop, Connection, FamilyData, LayoutConfig
from domain.services.route_edges import (
    _update_connector,
    check_elbow_clearance,
    detect_bus_collisions,
    detect_segment_crossings,
    detect_staircase_edges,
    resolve_bus_collisions,
    resolve_elbow_clearance,
    route_edges,
)
from domain.services.solve_constraints import solve_constraints
from tests.helpers.family_fixtures import FamilyBuilder, build_arena


def _connection(union_id: str, stem_x: float, drop_xs: List[float], y: float = 100.0) -> Connection:
    drops = [ChildDrop(f"{union_id}_child{i}", x, y, y + 80) for i, x in enumerate(drop_xs)]
    connection = Connection(
        union_id=union_id,
        stem_x=stem_x,
        stem_top_y=y - 40,
        stem_bottom_y=y,
        branch_y=y,
        branch_left_x=min(drop_xs),
        branch_right_x=max(drop_xs),
        connector_from_x=stem_x,
        connector_to_x=stem_x,
        connector_y=y,
        drops=drops,
    )
    _update_connector(connection)
    return connection


def test_couple_connection_geometry(nuclear: FamilyData, layout_config: LayoutConfig) -> None:
    arena = build_arena(nuclear, "ann", layout_config)
    solve_constraints(arena, layout_config)
    connections, spouse_lines = route_edges(arena, layout_config)

    assert len(connections) == 1
    connection = connections[0]
    assert connection.union_id == "union_dad_mom"
    assert connection.stem_x == 145
    assert connection.stem_top_y == 50 + layout_config.card_height / 2
    assert connection.branch_y == (50 + 65 + 195) / 2
    assert connection.stem_bottom_y == connection.branch_y
    assert [drop.x for drop in connection.drops] == [0, 145, 290]
    assert all(drop.bottom_y == 195 for drop in connection.drops)
    assert (connection.branch_left_x, connection.branch_right_x) == (0, 290)
    assert connection.connector_from_x == connection.connector_to_x == 145

    assert len(spouse_lines) == 1
    line = spouse_lines[0]
    assert (line.person1_id, line.person2_id) == ("dad", "mom")
    assert line.y == 50 + layout_config.card_height / 2
    assert (line.x_min, line.x_max) == (139, 151)


def test_single_parent_stem_starts_below_the_card(layout_config: LayoutConfig) -> None:
    data = FamilyBuilder().person("solo", "female").person("kim").single_parent("solo", ["kim"]).build()
    arena = build_arena(data, "kim", layout_config)
    connections, spouse_lines = route_edges(arena, layout_config)

    assert spouse_lines == []
    assert connections[0].stem_top_y == layout_config.padding + layout_config.card_height
    assert connections[0].stem_x == connections[0].drops[0].x


def test_extended_family_routes_cleanly(extended: FamilyData, layout_config: LayoutConfig) -> None:
    arena = build_arena(extended, "me", layout_config)
    solve_constraints(arena, layout_config)
    connections, spouse_lines = route_edges(arena, layout_config)

    assert len(connections) == 6
    assert len(spouse_lines) == 6
    assert detect_bus_collisions(connections) == []
    assert detect_staircase_edges(connections) == []
    assert detect_segment_crossings(connections) == []
    assert check_elbow_clearance(connections, layout_config.min_edge_clearance) == []


def test_overlapping_bus_moves_to_next_lane(layout_config: LayoutConfig) -> None:
    first = _connection("u1", 100, [0, 50])
    second = _connection("u2", 200, [80, 250])
    assert detect_bus_collisions([first, second])

    resolve_bus_collisions([first, second], layout_config)

    assert first.lane == 0
    assert second.lane == 1
    assert second.branch_y == 108
    assert second.connector_y == second.stem_bottom_y == 108
    assert all(drop.top_y == 108 for drop in second.drops)
    assert detect_bus_collisions([first, second]) == []


def test_lane_offset_skipped_when_it_would_cross(layout_config: LayoutConfig) -> None:
    first = _connection("u1", 0, [0, 100])
    second = _connection("u2", 50, [60, 250])

    resolve_bus_collisions([first, second], layout_config)

    assert second.lane == 0
    assert second.branch_y == 100
    assert len(detect_bus_collisions([first, second])) == 1


def test_staircase_detected_when_connector_leaves_bus_level() -> None:
    connection = _connection("u1", 0, [100, 200])
    assert detect_staircase_edges([connection]) == []

    connection.connector_y += 10
    errors = detect_staircase_edges([connection])
    assert len(errors) == 1
    assert "u1" in errors[0]


def test_segment_crossing_requires_interior_intersection() -> None:
    bus = _connection("u1", 100, [0, 200])
    crossing = _connection("u2", 50, [50], y=150)
    crossing.stem_top_y = 50

    assert len(detect_segment_crossings([bus, crossing])) == 1

    touching = _connection("u3", 50, [50], y=150)
    touching.stem_top_y = 100
    assert detect_segment_crossings([bus, touching]) == []


def test_close_drop_is_nudged_away_from_foreign_stem(layout_config: LayoutConfig) -> None:
    stem_owner = _connection("u1", 0, [-100])
    drop_owner = _connection("u2", 300, [5])
    violations = check_elbow_clearance([stem_owner, drop_owner], layout_config.min_edge_clearance)
    assert any(v.elbow.person_id == "u2_child0" and v.direction == 1 for v in violations)

    resolve_elbow_clearance([stem_owner, drop_owner], layout_config)

    assert drop_owner.drops[0].x == 14
    assert (drop_owner.branch_left_x, drop_owner.branch_right_x) == (14, 14)
    assert drop_owner.connector_to_x == 14
    assert drop_owner.stem_x == 300
    assert check_elbow_clearance([stem_owner, drop_owner], layout_config.min_edge_clearance) == []

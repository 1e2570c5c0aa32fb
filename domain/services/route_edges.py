from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Dict, List, Tuple

from domain.models import (
    ChildDrop,
    Connection,
    GenerationalModel,
    LayoutArena,
    LayoutConfig,
    SpouseLine,
    UnionNode,
)

logger = logging.getLogger(__name__)

MAX_ELBOW_ITERATIONS = 5
Y_TOLERANCE = 1.0


def generation_y(gen_model: GenerationalModel, config: LayoutConfig) -> Dict[int, float]:
    row_height = config.card_height + config.vertical_gap
    return {
        gen: config.padding + (gen - gen_model.min_gen) * row_height
        for gen in range(gen_model.min_gen, gen_model.max_gen + 1)
    }


def route_edges(
    arena: LayoutArena, config: LayoutConfig
) -> Tuple[List[Connection], List[SpouseLine]]:
    """Build bus connections for every union with children, plus spouse lines."""
    gen_y = generation_y(arena.gen_model, config)
    connections: List[Connection] = []
    spouse_lines: List[SpouseLine] = []
    for union in arena.model.unions.values():
        connection = create_connection(arena, union, gen_y, config)
        if connection is not None:
            connections.append(connection)
        spouse_line = create_spouse_line(arena, union, gen_y, config)
        if spouse_line is not None:
            spouse_lines.append(spouse_line)

    resolve_bus_collisions(connections, config)
    resolve_elbow_clearance(connections, config)
    return connections, spouse_lines


def create_connection(
    arena: LayoutArena, union: UnionNode, gen_y: Dict[int, float], config: LayoutConfig
) -> Connection | None:
    gen_model = arena.gen_model
    stem_x = arena.union_x.get(union.id)
    parent_gen = gen_model.union_gen.get(union.id)
    if stem_x is None or parent_gen is None or parent_gen + 1 not in gen_y:
        return None

    parent_y = gen_y[parent_gen]
    stem_top_y = parent_y + (config.card_height / 2 if union.partner_b else config.card_height)
    branch_y = (parent_y + config.card_height + gen_y[parent_gen + 1]) / 2

    drops: List[ChildDrop] = []
    for child_id in union.child_ids:
        child_union_id = arena.model.person_to_union.get(child_id)
        child_gen = gen_model.union_gen.get(child_union_id) if child_union_id else None
        if child_gen is None or child_gen <= parent_gen or child_gen not in gen_y:
            continue
        child_x = arena.person_x.get(child_id)
        if child_x is None:
            continue
        drops.append(
            ChildDrop(child_id, child_x + config.card_width / 2, branch_y, gen_y[child_gen])
        )
    if not drops:
        return None

    left, right = clamp_bus_to_corridor(arena, union.id, drops)
    connection = Connection(
        union_id=union.id,
        stem_x=stem_x,
        stem_top_y=stem_top_y,
        stem_bottom_y=branch_y,
        branch_y=branch_y,
        branch_left_x=left,
        branch_right_x=right,
        connector_from_x=stem_x,
        connector_to_x=stem_x,
        connector_y=branch_y,
        drops=drops,
    )
    _update_connector(connection)
    return connection


def clamp_bus_to_corridor(
    arena: LayoutArena, union_id: str, drops: List[ChildDrop]
) -> Tuple[float, float]:
    """Bus extent clamped to the corridors of the union's branches.

    The bus always reaches every drop, even one outside the corridor.
    """
    drop_left = min(drop.x for drop in drops)
    drop_right = max(drop.x for drop in drops)
    branches = [
        arena.branches[branch_id]
        for branch_id in arena.union_to_branches.get(union_id, [])
        if branch_id in arena.branches
    ]
    if not branches:
        return drop_left, drop_right
    left = max(drop_left, min(branch.min_x for branch in branches))
    right = min(drop_right, max(branch.max_x for branch in branches))
    return min(left, drop_left), max(right, drop_right)


def _update_connector(connection: Connection) -> None:
    if connection.stem_x < connection.branch_left_x:
        connection.connector_to_x = connection.branch_left_x
    elif connection.stem_x > connection.branch_right_x:
        connection.connector_to_x = connection.branch_right_x
    else:
        connection.connector_to_x = connection.stem_x


def create_spouse_line(
    arena: LayoutArena, union: UnionNode, gen_y: Dict[int, float], config: LayoutConfig
) -> SpouseLine | None:
    if union.partner_b is None:
        return None
    x_a = arena.person_x.get(union.partner_a)
    x_b = arena.person_x.get(union.partner_b)
    gen = arena.gen_model.union_gen.get(union.id)
    if x_a is None or x_b is None or gen not in gen_y:
        return None
    return SpouseLine(
        union_id=union.id,
        person1_id=union.partner_a,
        person2_id=union.partner_b,
        partnership_id=union.partnership_id,
        y=gen_y[gen] + config.card_height / 2,
        x_min=min(x_a, x_b) + config.card_width,
        x_max=max(x_a, x_b),
    )


def footprint(connection: Connection) -> Tuple[float, float]:
    """Horizontal extent of bus plus connector."""
    return (
        min(connection.stem_x, connection.branch_left_x),
        max(connection.stem_x, connection.branch_right_x),
    )


def resolve_bus_collisions(connections: List[Connection], config: LayoutConfig) -> None:
    """Move colliding buses at the same Y level onto lower lanes.

    A connection stays on lane 0 when an offset would make its stem cross a
    lane-0 bus or let a lane-0 drop cross its own bus.
    """
    if len(connections) < 2:
        return
    lane_offset = min(8.0, config.vertical_gap * 0.1)
    groups: Dict[int, List[Connection]] = {}
    for connection in connections:
        groups.setdefault(round(connection.branch_y), []).append(connection)

    for group in groups.values():
        if len(group) < 2:
            continue
        group.sort(key=lambda item: footprint(item)[0])
        assigned: List[Tuple[Connection, int]] = [(group[0], 0)]
        for current in group[1:]:
            left, right = footprint(current)
            lane = 0
            while any(
                prev_lane == lane
                and left <= footprint(prev)[1]
                and right >= footprint(prev)[0]
                for prev, prev_lane in assigned
            ):
                lane += 1
            if lane > 0 and _offset_would_cross(current, assigned):
                lane = 0
            assigned.append((current, lane))
            if lane > 0:
                _apply_lane(current, lane, lane_offset)


def _offset_would_cross(current: Connection, assigned: List[Tuple[Connection, int]]) -> bool:
    left, right = footprint(current)
    for prev, lane in assigned:
        if lane != 0:
            continue
        prev_left, prev_right = footprint(prev)
        if prev_left < current.stem_x < prev_right:
            return True
        if any(left < drop.x < right for drop in prev.drops):
            return True
    return False


def _apply_lane(connection: Connection, lane: int, lane_offset: float) -> None:
    offset = lane * lane_offset
    connection.lane = lane
    connection.branch_y += offset
    connection.connector_y += offset
    connection.stem_bottom_y += offset
    for drop in connection.drops:
        drop.top_y += offset


@dataclass(frozen=True)
class Elbow:
    x: float
    y: float
    connection_index: int
    person_id: str | None = None


@dataclass(frozen=True)
class ClearanceViolation:
    elbow: Elbow
    other_union_id: str
    distance: float
    required_shift: float
    direction: int


def extract_elbows(connections: List[Connection]) -> List[Elbow]:
    elbows: List[Elbow] = []
    for index, connection in enumerate(connections):
        elbows.append(Elbow(connection.stem_x, connection.stem_bottom_y, index))
        elbows.extend(Elbow(drop.x, drop.top_y, index, drop.person_id) for drop in connection.drops)
    return elbows


def _within(top: float, bottom: float, y: float) -> bool:
    return min(top, bottom) - Y_TOLERANCE <= y <= max(top, bottom) + Y_TOLERANCE


def check_elbow_clearance(
    connections: List[Connection], min_clearance: float
) -> List[ClearanceViolation]:
    """Elbows closer than ``min_clearance`` to another connection's vertical segment."""
    violations: List[ClearanceViolation] = []
    for elbow in extract_elbows(connections):
        for index, other in enumerate(connections):
            if index == elbow.connection_index:
                continue
            near: List[float] = []
            if _within(other.stem_top_y, other.stem_bottom_y, elbow.y):
                near.append(other.stem_x)
            near.extend(
                drop.x for drop in other.drops if _within(drop.top_y, drop.bottom_y, elbow.y)
            )
            if abs(other.branch_y - elbow.y) < Y_TOLERANCE:
                near.extend(
                    end
                    for end in (other.branch_left_x, other.branch_right_x)
                    if abs(elbow.x - end) > 0.5
                )
            for x in near:
                distance = abs(elbow.x - x)
                if distance < min_clearance:
                    violations.append(
                        ClearanceViolation(
                            elbow,
                            other.union_id,
                            distance,
                            min_clearance - distance,
                            1 if elbow.x > x else -1,
                        )
                    )
    return violations


def resolve_elbow_clearance(connections: List[Connection], config: LayoutConfig) -> None:
    """Nudge child drops away from nearby vertical segments; stems never move."""
    min_clearance = config.min_edge_clearance
    for _ in range(MAX_ELBOW_ITERATIONS):
        violations = check_elbow_clearance(connections, min_clearance)
        nudged = False
        for violation in violations:
            elbow = violation.elbow
            if elbow.person_id is None:
                continue
            connection = connections[elbow.connection_index]
            drop = next(
                (
                    item
                    for item in connection.drops
                    if item.person_id == elbow.person_id and abs(item.x - elbow.x) < 0.5
                ),
                None,
            )
            if drop is None:
                continue
            drop.x += min(violation.required_shift, min_clearance) * violation.direction
            connection.branch_left_x = min(item.x for item in connection.drops)
            connection.branch_right_x = max(item.x for item in connection.drops)
            _update_connector(connection)
            nudged = True
        if not nudged:
            break


def detect_bus_collisions(
    connections: List[Connection],
) -> List[Tuple[str, str, float, Tuple[float, float]]]:
    """Pairs of connections whose footprints overlap at the same Y level."""
    collisions = []
    for index, first in enumerate(connections):
        for second in connections[index + 1:]:
            if abs(first.branch_y - second.branch_y) > Y_TOLERANCE:
                continue
            first_left, first_right = footprint(first)
            second_left, second_right = footprint(second)
            left = max(first_left, second_left)
            right = min(first_right, second_right)
            if left < right:
                collisions.append((first.union_id, second.union_id, first.branch_y, (left, right)))
    return collisions


def detect_staircase_edges(connections: List[Connection]) -> List[str]:
    """Connections whose connector and bus sit on different horizontal levels."""
    violations = []
    for connection in connections:
        levels = {round(connection.branch_y)}
        if abs(connection.connector_from_x - connection.connector_to_x) > 0.5:
            levels.add(round(connection.connector_y))
        if len(levels) > 1:
            violations.append(
                f"Connection from {connection.union_id} has {len(levels)} horizontal levels: "
                f"connector_y={connection.connector_y:.1f}, branch_y={connection.branch_y:.1f}"
            )
    return violations


@dataclass(frozen=True)
class _Segment:
    union_id: str
    position: float
    start: float
    end: float


def _segments(connections: List[Connection]) -> Tuple[List[_Segment], List[_Segment]]:
    horizontal: List[_Segment] = []
    vertical: List[_Segment] = []
    for connection in connections:
        uid = connection.union_id
        horizontal.append(
            _Segment(uid, connection.branch_y, connection.branch_left_x, connection.branch_right_x)
        )
        if abs(connection.connector_from_x - connection.connector_to_x) > 0.5:
            low, high = sorted((connection.connector_from_x, connection.connector_to_x))
            horizontal.append(_Segment(uid, connection.connector_y, low, high))
        vertical.append(
            _Segment(uid, connection.stem_x, connection.stem_top_y, connection.stem_bottom_y)
        )
        vertical.extend(_Segment(uid, drop.x, drop.top_y, drop.bottom_y) for drop in connection.drops)
    return horizontal, vertical


def detect_segment_crossings(connections: List[Connection], epsilon: float = 0.5) -> List[str]:
    """True X-crossings between a horizontal and a vertical segment of different connections.

    Touching endpoints and collinear overlaps are not crossings.
    """
    horizontal, vertical = _segments(connections)
    crossings = []
    for h_seg in horizontal:
        for v_seg in vertical:
            if h_seg.union_id == v_seg.union_id:
                continue
            top, bottom = sorted((v_seg.start, v_seg.end))
            if (
                h_seg.start + epsilon < v_seg.position < h_seg.end - epsilon
                and top + epsilon < h_seg.position < bottom - epsilon
            ):
                crossings.append(
                    f"Segment crossing: {h_seg.union_id} horizontal at y={h_seg.position:.1f} "
                    f"and {v_seg.union_id} vertical at x={v_seg.position:.1f}"
                )
    return crossings

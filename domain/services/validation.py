from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import Dict, List

from domain.models import LayoutArena, LayoutConfig, LayoutModel, LayoutResult, Point
from domain.services.route_edges import (
    check_elbow_clearance,
    detect_bus_collisions,
    detect_segment_crossings,
    detect_staircase_edges,
)
from domain.services.solve_far_ancestors import check_side_containment

CENTERING_TOLERANCE = 1.0


@dataclass
class ValidationResult:
    passed: bool = True
    errors: List[str] = field(default_factory=list)


def validate_layout(
    result: LayoutResult,
    model: LayoutModel,
    config: LayoutConfig,
    arena: LayoutArena | None = None,
) -> ValidationResult:
    """Run every layout check; ``arena`` adds the ancestor side containment check."""
    errors: List[str] = []
    errors.extend(check_card_overlaps(result.positions, config))
    errors.extend(check_references(result))
    errors.extend(check_bounds(result.positions))
    errors.extend(
        f"Bus overlap at y={y:.0f}: {first} and {second}"
        for first, second, y, _ in detect_bus_collisions(result.connections)
    )
    errors.extend(detect_staircase_edges(result.connections))
    errors.extend(detect_segment_crossings(result.connections))
    errors.extend(check_edge_clearance(result, config))
    errors.extend(check_centering(result, model, config))
    if arena is not None:
        errors.extend(check_side_containment(arena, config, config.tolerance))
    return ValidationResult(passed=not errors, errors=errors)


def check_edge_clearance(result: LayoutResult, config: LayoutConfig) -> List[str]:
    errors = []
    for violation in check_elbow_clearance(result.connections, config.min_edge_clearance):
        union_id = result.connections[violation.elbow.connection_index].union_id
        errors.append(
            f"Elbow of {union_id} at x={violation.elbow.x:.1f} is {violation.distance:.1f}px "
            f"from {violation.other_union_id}"
        )
    return errors


def check_card_overlaps(positions: Dict[str, Point], config: LayoutConfig) -> List[str]:
    """Cards on one row must keep at least half the horizontal gap apart."""
    min_distance = config.card_width + config.horizontal_gap / 2
    rows: Dict[float, List[tuple[float, str]]] = {}
    for person_id, point in positions.items():
        rows.setdefault(point.y, []).append((point.x, person_id))

    errors = []
    for cards in rows.values():
        cards.sort()
        for (left_x, left_id), (right_x, right_id) in zip(cards, cards[1:]):
            if right_x - left_x < min_distance - 0.5:
                errors.append(f"Card overlap: {left_id} and {right_id}")
    return errors


def check_references(result: LayoutResult) -> List[str]:
    errors = []
    for connection in result.connections:
        for drop in connection.drops:
            if drop.person_id not in result.positions:
                errors.append(f"Connection drop references missing person: {drop.person_id}")
    for line in result.spouse_lines:
        for person_id in (line.person1_id, line.person2_id):
            if person_id not in result.positions:
                errors.append(f"Spouse line references missing person: {person_id}")
    return errors


def check_bounds(positions: Dict[str, Point]) -> List[str]:
    errors = []
    for person_id, point in positions.items():
        if not math.isfinite(point.x) or not math.isfinite(point.y):
            errors.append(f"Invalid position for {person_id}: ({point.x}, {point.y})")
            continue
        if point.x < 0:
            errors.append(f"Negative X position for {person_id}: {point.x}")
        if point.y < 0:
            errors.append(f"Negative Y position for {person_id}: {point.y}")
    return errors


def _union_span(model: LayoutModel, union_id: str, positions: Dict[str, Point], card_width: float):
    union = model.unions.get(union_id)
    if union is None:
        return None
    xs = [positions[pid].x for pid in union.partners() if pid in positions]
    if not xs:
        return None
    return min(xs), max(xs) + card_width


def check_centering(
    result: LayoutResult,
    model: LayoutModel,
    config: LayoutConfig,
    tolerance: float = CENTERING_TOLERANCE,
) -> List[str]:
    """Descendant parents must sit centered over the couple span of their children.

    A further partnership of someone already drawn hangs its children beside
    the main family and is not checked.
    """
    errors = []
    for union in model.unions.values():
        parent_gen = result.generations.get(union.partner_a)
        if parent_gen is None or parent_gen < 0 or not union.child_ids:
            continue
        if any(model.person_to_union.get(pid) != union.id for pid in union.partners()):
            continue
        parent_span = _union_span(model, union.id, result.positions, config.card_width)
        if parent_span is None:
            continue
        spans = []
        for child_id in union.child_ids:
            child_gen = result.generations.get(child_id)
            if child_gen is None or child_gen <= parent_gen:
                continue
            span = _union_span(
                model, model.person_to_union.get(child_id, ""), result.positions, config.card_width
            )
            if span is not None:
                spans.append(span)
        if not spans:
            continue
        parent_center = sum(parent_span) / 2
        children_center = (min(s[0] for s in spans) + max(s[1] for s in spans)) / 2
        deviation = abs(parent_center - children_center)
        if deviation > tolerance:
            errors.append(f"Centering violation for {union.id}: {deviation:.1f}px off center")
    return errors

from __future__ import annotations

from typing import Dict, List

from domain.models import (
    BranchCorridor,
    Connection,
    LayoutArena,
    LayoutConfig,
    LayoutDiagnostics,
    LayoutResult,
    Point,
    SolverDiagnostics,
    SpouseLine,
)
from domain.services.route_edges import generation_y

MIN_NORMALIZE_SHIFT = 0.1


def emit_result(
    arena: LayoutArena,
    config: LayoutConfig,
    connections: List[Connection],
    spouse_lines: List[SpouseLine],
    solver: SolverDiagnostics,
) -> LayoutResult:
    """Assemble the final result and move it so the leftmost card starts at the padding."""
    gen_model = arena.gen_model
    gen_y = generation_y(gen_model, config)
    positions: Dict[str, Point] = {}
    generations: Dict[str, int] = {}
    unplaced: List[str] = []
    for person_id in sorted(arena.model.persons):
        x = arena.person_x.get(person_id)
        gen = gen_model.person_gen.get(person_id)
        if x is None or gen is None or gen not in gen_y:
            unplaced.append(person_id)
            continue
        positions[person_id] = Point(x, gen_y[gen])
        generations[person_id] = gen

    corridors = [
        BranchCorridor(
            branch_id=branch.id,
            parent_union_id=branch.parent_union_id,
            child_person_id=branch.child_person_id,
            sibling_index=branch.sibling_index,
            min_x=branch.min_x,
            max_x=branch.max_x,
        )
        for branch in sorted(arena.branches.values(), key=lambda item: item.id)
    ]

    result = LayoutResult(
        positions=positions,
        generations=generations,
        connections=connections,
        spouse_lines=spouse_lines,
        branches=corridors,
        diagnostics=LayoutDiagnostics(
            total_persons=len(arena.model.persons),
            total_unions=len(arena.model.unions),
            generation_range=(gen_model.min_gen, gen_model.max_gen),
            iterations=solver.iterations,
            max_violation=solver.max_violation,
            converged=solver.converged,
            branch_count=len(arena.branches),
            unplaced_person_ids=unplaced,
        ),
    )
    normalize_result(result, config.padding)
    return result


def normalize_result(result: LayoutResult, padding: float) -> None:
    if not result.positions:
        return
    shift = padding - min(point.x for point in result.positions.values())
    if abs(shift) < MIN_NORMALIZE_SHIFT:
        return
    result.positions = {
        person_id: Point(point.x + shift, point.y) for person_id, point in result.positions.items()
    }
    for connection in result.connections:
        connection.shift_x(shift)
    for line in result.spouse_lines:
        line.x_min += shift
        line.x_max += shift
    result.branches = [
        BranchCorridor(
            branch_id=corridor.branch_id,
            parent_union_id=corridor.parent_union_id,
            child_person_id=corridor.child_person_id,
            sibling_index=corridor.sibling_index,
            min_x=corridor.min_x + shift,
            max_x=corridor.max_x + shift,
        )
        for corridor in result.branches
    ]


def empty_result(errors: List[str], total_persons: int = 0) -> LayoutResult:
    return LayoutResult(
        diagnostics=LayoutDiagnostics(
            total_persons=total_persons, validation_passed=False, errors=list(errors)
        )
    )

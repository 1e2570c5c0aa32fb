from __future__ import annotations

import logging
from typing import Dict

from domain.errors import LayoutInvariantError
from domain.models import LayoutArena, LayoutConfig, SolverDiagnostics
from domain.services.block_geometry import max_generation_overlap
from domain.services.build_branches import compute_branch_bounds
from domain.services.place_x import extract_positions
from domain.services.solve_far_ancestors import solve_far_ancestors
from domain.services.solve_near_generations import solve_near_generations

logger = logging.getLogger(__name__)


def solve_constraints(arena: LayoutArena, config: LayoutConfig) -> SolverDiagnostics:
    """Run both solver phases and refresh positions and branch bounds.

    Phase A settles generations >= -1, after which those blocks are locked
    while Phase B arranges the remaining ancestors.
    """
    passes = solve_near_generations(arena, config)
    locked = capture_locked_positions(arena)
    passes += solve_far_ancestors(arena, config)
    assert_locked_positions(arena, locked, config)

    extract_positions(arena, config)
    compute_branch_bounds(arena, config)

    max_violation = max_generation_overlap(arena, config)
    converged = max_violation <= config.tolerance
    if not converged:
        logger.warning(
            "Layout did not converge: max overlap %.2fpx after %d passes", max_violation, passes
        )
    return SolverDiagnostics(iterations=passes, max_violation=max_violation, converged=converged)


def capture_locked_positions(arena: LayoutArena) -> Dict[str, float]:
    return {
        block.id: block.x_center for block in arena.blocks.values() if block.generation >= -1
    }


def assert_locked_positions(
    arena: LayoutArena, locked: Dict[str, float], config: LayoutConfig
) -> None:
    for block_id, x_center in locked.items():
        drift = arena.blocks[block_id].x_center - x_center
        if abs(drift) <= 0.001:
            continue
        msg = f"Locked block {block_id} moved by {drift:.2f}px during ancestor placement"
        if config.strict_mode:
            raise LayoutInvariantError(msg)
        logger.warning(msg)

from __future__ import annotations

import logging
import math

from domain.errors import LayoutInvariantError
from domain.models import FamilyData, GraphSelection, LayoutArena, LayoutConfig, LayoutResult
from domain.ports.layout import LayoutEngine
from domain.services.assign_generations import assign_generations, validate_generations
from domain.services.build_branches import build_branches, compute_branch_bounds
from domain.services.build_layout_model import build_layout_model, default_selection
from domain.services.emit_result import emit_result, empty_result
from domain.services.measure_subtrees import measure_subtrees
from domain.services.place_x import place_x
from domain.services.route_edges import route_edges
from domain.services.solve_constraints import solve_constraints
from domain.services.validation import validate_layout

logger = logging.getLogger(__name__)


class GenealogyLayoutEngine(LayoutEngine):
    def __init__(self, config: LayoutConfig | None = None) -> None:
        self.config = config or LayoutConfig()

    def compute(
        self,
        data: FamilyData,
        focus_person_id: str,
        selection: GraphSelection | None = None,
    ) -> LayoutResult:
        if focus_person_id not in data.persons:
            logger.warning("Focus person %s not found", focus_person_id)
            return empty_result([f"Focus person not found: {focus_person_id}"])
        if selection is None:
            selection = default_selection(data, focus_person_id)
        if not selection.persons:
            return empty_result(["Selection is empty"])

        model = build_layout_model(data, selection, focus_person_id)
        gen_model = assign_generations(model, focus_person_id)
        if gen_model is None:
            return empty_result(
                [f"Focus person {focus_person_id} is not selected"], len(model.persons)
            )
        generation_problems = [
            f"Generation check: {problem}" for problem in validate_generations(gen_model)
        ]
        if generation_problems:
            logger.warning("Generation assignment has %d problems", len(generation_problems))

        arena = measure_subtrees(gen_model, focus_person_id, self.config)
        if arena is None:
            return empty_result(
                [f"Focus person {focus_person_id} has no family block"], len(model.persons)
            )
        build_branches(arena)
        place_x(arena, self.config)
        compute_branch_bounds(arena, self.config)
        logger.debug(
            "Placed %d blocks in %d branches", len(arena.blocks), len(arena.branches)
        )

        solver = solve_constraints(arena, self.config)
        self._check_finite(arena)
        connections, spouse_lines = route_edges(arena, self.config)
        result = emit_result(arena, self.config, connections, spouse_lines, solver)

        validation = validate_layout(result, model, self.config, arena)
        result.diagnostics.errors.extend(generation_problems)
        result.diagnostics.errors.extend(validation.errors)
        result.diagnostics.validation_passed = validation.passed and not generation_problems
        if not validation.passed:
            logger.debug("Layout validation found %d problems", len(validation.errors))
        return result

    def _check_finite(self, arena: LayoutArena) -> None:
        for block in arena.blocks.values():
            if all(math.isfinite(v) for v in (block.x_left, block.x_center, block.x_right)):
                continue
            msg = f"Block {block.id} ended with a non-finite coordinate"
            if self.config.strict_mode:
                raise LayoutInvariantError(msg)
            logger.warning(msg)

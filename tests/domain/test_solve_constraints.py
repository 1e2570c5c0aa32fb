from __future__ import annotations

import logging
from dataclasses import replace

import pytest

from domain.errors import LayoutInvariantError
from domain.models import FamilyBlock, FamilyData, LayoutConfig, Side
from domain.services.block_geometry import (
    card_extent,
    max_generation_overlap,
    shift_block_subtree,
    subtree_card_extent,
)
from domain.services.solve_constraints import (
    assert_locked_positions,
    capture_locked_positions,
    solve_constraints,
)
from domain.services.solve_far_ancestors import (
    ancestor_couples,
    check_side_containment,
    enforce_side_barrier,
    guard_ancestor_only,
    solve_far_ancestors,
)
from domain.services.solve_near_generations import (
    enforce_cousin_separation,
    resolve_overlaps_desc_only,
    solve_near_generations,
)
from tests.helpers.family_fixtures import FamilyBuilder, build_arena

PATERNAL_BLOCK = "block_union_grandma_d_grandpa_d"
UNCLE_BLOCK = "block_union_uncle_uncle_wife"


def test_solver_converges_on_extended_family(extended: FamilyData, layout_config: LayoutConfig) -> None:
    arena = build_arena(extended, "me", layout_config)
    diagnostics = solve_constraints(arena, layout_config)

    assert diagnostics.converged
    assert diagnostics.iterations > 0
    assert diagnostics.max_violation <= layout_config.tolerance
    assert check_side_containment(arena, layout_config) == []


def test_grandparents_pulled_into_compact_trees(
    extended: FamilyData, layout_config: LayoutConfig
) -> None:
    arena = build_arena(extended, "me", layout_config)
    solve_constraints(arena, layout_config)

    assert arena.union_x["union_grandma_d_grandpa_d"] == pytest.approx(-143.5)
    assert arena.union_x["union_grandma_m_grandpa_m"] == pytest.approx(143.5)
    assert arena.person_x["grandma_d"] + layout_config.card_width + layout_config.horizontal_gap <= (
        arena.person_x["grandpa_m"] + 0.5
    )


def test_ancestor_phase_never_moves_locked_blocks(
    extended: FamilyData, layout_config: LayoutConfig
) -> None:
    arena = build_arena(extended, "me", layout_config)
    solve_near_generations(arena, layout_config)
    locked = capture_locked_positions(arena)

    solve_far_ancestors(arena, layout_config)

    assert locked
    for block_id, x_center in locked.items():
        assert arena.blocks[block_id].x_center == x_center


def test_pedigree_keeps_each_side_behind_its_partner(
    pedigree: FamilyData, layout_config: LayoutConfig
) -> None:
    arena = build_arena(pedigree, "me", layout_config)
    diagnostics = solve_constraints(arena, layout_config)

    assert diagnostics.converged
    assert check_side_containment(arena, layout_config) == []
    great = [
        arena.union_x[f"union_{child}_father_{child}_mother"] for child in ("gpd", "gmd", "gpm", "gmm")
    ]
    assert great == sorted(great)
    assert arena.union_x["union_gmd_gpd"] < 0 < arena.union_x["union_gmm_gpm"]


def test_pedigree_grandparents_compacted_toward_parents(
    pedigree: FamilyData, layout_config: LayoutConfig
) -> None:
    arena = build_arena(pedigree, "me", layout_config)
    solve_constraints(arena, layout_config)

    assert arena.union_x["union_dad_mom"] == 0
    assert arena.union_x["union_gmd_gpd"] == pytest.approx(-220.5)
    assert arena.union_x["union_gmm_gpm"] == pytest.approx(220.5)


def test_ancestor_couples_are_direct_line_only(
    extended: FamilyData, layout_config: LayoutConfig
) -> None:
    arena = build_arena(extended, "me", layout_config)
    couples = ancestor_couples(arena)

    assert [couple.block.id for couple in couples][0] == "block_union_dad_mom"
    assert UNCLE_BLOCK not in {couple.block.id for couple in couples}
    parents = couples[0]
    assert parents.husband_block_ids == {PATERNAL_BLOCK}
    assert parents.wife_block_ids == {"block_union_grandma_m_grandpa_m"}


def test_barrier_pulls_back_a_crossing_subtree(
    extended: FamilyData, layout_config: LayoutConfig
) -> None:
    arena = build_arena(extended, "me", layout_config)
    solve_constraints(arena, layout_config)
    arena.blocks[PATERNAL_BLOCK].shift(200)
    assert check_side_containment(arena, layout_config)

    enforce_side_barrier(arena, ancestor_couples(arena), layout_config)

    assert check_side_containment(arena, layout_config) == []


def test_overlapping_descendants_pushed_apart(nuclear: FamilyData, layout_config: LayoutConfig) -> None:
    arena = build_arena(nuclear, "ann", layout_config)
    arena.blocks["block_union_bob_single"].shift(-100)
    assert max_generation_overlap(arena, layout_config) > layout_config.tolerance

    moved = resolve_overlaps_desc_only(arena, layout_config)

    assert moved > 0
    assert max_generation_overlap(arena, layout_config) <= layout_config.tolerance


def test_cousins_pushed_out_of_the_focus_span(
    extended: FamilyData, layout_config: LayoutConfig
) -> None:
    arena = build_arena(extended, "me", layout_config)
    shift_block_subtree(arena, UNCLE_BLOCK, 300)

    assert enforce_cousin_separation(arena, layout_config)

    focus_left, _ = subtree_card_extent(arena, "block_union_me_wife", layout_config)
    for cousin in ("block_union_cousin_u1_single", "block_union_cousin_u2_single"):
        _, right = card_extent(arena.blocks[cousin], arena, layout_config)
        assert right + layout_config.horizontal_gap <= focus_left + 0.5


def test_guard_rejects_descendant_moves_in_strict_mode() -> None:
    block = FamilyBlock(id="block_x", root_union_id="union_x", side=Side.BOTH, generation=0)
    strict = LayoutConfig(strict_mode=True)

    with pytest.raises(LayoutInvariantError, match="block_x"):
        guard_ancestor_only(block, strict, "test move")
    assert guard_ancestor_only(block, LayoutConfig(), "test move") is False

    block.generation = -2
    assert guard_ancestor_only(block, strict, "test move") is True


def test_locked_drift_raises_in_strict_mode(
    nuclear: FamilyData, layout_config: LayoutConfig
) -> None:
    arena = build_arena(nuclear, "ann", layout_config)
    locked = capture_locked_positions(arena)
    arena.blocks["block_union_dad_mom"].shift(5)

    with pytest.raises(LayoutInvariantError, match="block_union_dad_mom"):
        assert_locked_positions(arena, locked, replace(layout_config, strict_mode=True))


def test_locked_drift_only_warns_by_default(
    nuclear: FamilyData, layout_config: LayoutConfig, caplog: pytest.LogCaptureFixture
) -> None:
    arena = build_arena(nuclear, "ann", layout_config)
    locked = capture_locked_positions(arena)
    arena.blocks["block_union_dad_mom"].shift(5)

    with caplog.at_level(logging.WARNING, logger="domain.services.solve_constraints"):
        assert_locked_positions(arena, locked, layout_config)

    assert "block_union_dad_mom" in caplog.text


def test_strict_mode_solves_clean_layouts(pedigree: FamilyData) -> None:
    config = LayoutConfig(strict_mode=True)
    arena = build_arena(pedigree, "me", config)

    assert solve_constraints(arena, config).converged


def test_focus_parents_stay_over_the_focus_person(
    partners: FamilyData, layout_config: LayoutConfig
) -> None:
    arena = build_arena(partners, "me", layout_config)
    solve_near_generations(arena, layout_config)

    assert arena.blocks["block_union_dad_mom"].x_center == pytest.approx(-142)
    assert arena.blocks["block_union_wdad_wmom"].x_center == pytest.approx(145)
    _, parents_right = card_extent(arena.blocks["block_union_dad_mom"], arena, layout_config)
    wife_parents_left, _ = card_extent(arena.blocks["block_union_wdad_wmom"], arena, layout_config)
    assert parents_right <= -layout_config.anchor_offset + layout_config.card_width / 2
    assert wife_parents_left >= layout_config.anchor_offset - layout_config.card_width / 2


def test_focus_couple_containment_is_checked(
    partners: FamilyData, layout_config: LayoutConfig
) -> None:
    arena = build_arena(partners, "me", layout_config)
    solve_constraints(arena, layout_config)
    assert check_side_containment(arena, layout_config) == []

    arena.blocks["block_union_dad_mom"].shift(150)

    errors = check_side_containment(arena, layout_config)
    assert errors == ["Husband-side ancestors of union_me_wife cross by 85.0px"]


def test_ancestor_couples_start_with_the_focus_couple(
    spouse_side: FamilyData, layout_config: LayoutConfig
) -> None:
    arena = build_arena(spouse_side, "me", layout_config)
    couples = ancestor_couples(arena)

    focus = couples[0]
    assert focus.block.id == "block_union_me_wife"
    assert focus.husband_locked_ids == {"block_union_dad_mom"}
    assert focus.wife_locked_ids == {"block_union_wdad_wmom"}
    assert focus.husband_block_ids == {
        "block_union_gmd_gpd",
        "block_union_gmm_gpm",
    }
    assert focus.wife_block_ids == {"block_union_wgma_wgpa"}


def test_spouse_family_stays_on_the_spouse_side(
    spouse_side: FamilyData, layout_config: LayoutConfig
) -> None:
    arena = build_arena(spouse_side, "me", layout_config)
    solve_constraints(arena, layout_config)

    gap = layout_config.horizontal_gap
    _, parents_right = card_extent(arena.blocks["block_union_dad_mom"], arena, layout_config)
    wife_parents_left, _ = card_extent(arena.blocks["block_union_wdad_wmom"], arena, layout_config)
    assert parents_right + gap <= wife_parents_left + 0.5
    _, focus_right = subtree_card_extent(arena, "block_union_me_wife", layout_config)
    brother_left, _ = card_extent(arena.blocks["block_union_wbro_single"], arena, layout_config)
    assert brother_left == pytest.approx(focus_right + gap)
    assert check_side_containment(arena, layout_config) == []
    assert max_generation_overlap(arena, layout_config) <= layout_config.tolerance


def test_spouse_siblings_pushed_to_the_spouse_side(
    spouse_side: FamilyData, layout_config: LayoutConfig
) -> None:
    arena = build_arena(spouse_side, "me", layout_config)
    shift_block_subtree(arena, "block_union_wbro_single", -420)

    assert enforce_cousin_separation(arena, layout_config)

    _, focus_right = subtree_card_extent(arena, "block_union_me_wife", layout_config)
    brother_left, _ = card_extent(arena.blocks["block_union_wbro_single"], arena, layout_config)
    assert brother_left >= focus_right + layout_config.horizontal_gap - 0.5


def test_spouse_aunt_family_placed_beyond_the_spouse_family(layout_config: LayoutConfig) -> None:
    data = (
        FamilyBuilder()
        .person("me", "male", "1980-01-01")
        .person("wife", "female", "1982-01-01")
        .person("dad", "male", "1950-01-01")
        .person("mom", "female", "1952-01-01")
        .person("wdad", "male", "1951-01-01")
        .person("wmom", "female", "1953-01-01")
        .person("waunt", "female", "1955-01-01")
        .person("waunt_husband", "male", "1954-01-01")
        .person("wcousin", "male", "1984-01-01")
        .person("wbro", "male", "1985-01-01")
        .person("wgpa", "male", "1925-01-01")
        .person("wgma", "female", "1927-01-01")
        .couple("dad", "mom", children=["me"])
        .couple("wgpa", "wgma", children=["wdad", "waunt"])
        .couple("wdad", "wmom", children=["wife", "wbro"])
        .couple("waunt_husband", "waunt", children=["wcousin"])
        .couple("me", "wife")
        .build()
    )
    arena = build_arena(data, "me", layout_config)
    solve_near_generations(arena, layout_config)

    gap = layout_config.horizontal_gap
    _, wife_parents_right = card_extent(
        arena.blocks["block_union_wdad_wmom"], arena, layout_config
    )
    aunt_left, _ = card_extent(arena.blocks["block_union_waunt_waunt_husband"], arena, layout_config)
    assert aunt_left >= wife_parents_right + gap - 0.5
    _, brother_right = card_extent(arena.blocks["block_union_wbro_single"], arena, layout_config)
    cousin_left, _ = card_extent(arena.blocks["block_union_wcousin_single"], arena, layout_config)
    assert cousin_left >= brother_right + gap - 0.5

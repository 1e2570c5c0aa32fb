from __future__ import annotations

from typing import Dict, List, Set, Tuple

from domain.models import FamilyBlock, LayoutArena, LayoutConfig


def card_extent(
    block: FamilyBlock, arena: LayoutArena, config: LayoutConfig
) -> Tuple[float, float]:
    """Visual extent of the block's own cards around its current center."""
    union = arena.model.unions.get(block.root_union_id)
    if union is not None and union.partner_b is not None:
        half = config.partner_gap / 2 + config.card_width
    else:
        half = config.card_width / 2
    left, right = block.x_center - half, block.x_center + half
    for partner in block.extra_partners:
        left = min(left, block.x_center + partner.offset - config.card_width / 2)
        right = max(right, block.x_center + partner.offset + config.card_width / 2)
    return left, right


def descendant_block_ids(arena: LayoutArena, block_id: str) -> List[str]:
    """Block ids of ``block_id`` and its descendants, each listed once."""
    seen: Set[str] = set()
    ordered: List[str] = []
    stack = [block_id]
    while stack:
        current = stack.pop()
        if current in seen or current not in arena.blocks:
            continue
        seen.add(current)
        ordered.append(current)
        stack.extend(reversed(arena.blocks[current].child_block_ids))
    return ordered


def shift_block_subtree(arena: LayoutArena, block_id: str, dx: float) -> None:
    for current in descendant_block_ids(arena, block_id):
        arena.blocks[current].shift(dx)


def subtree_card_extent(
    arena: LayoutArena, block_id: str, config: LayoutConfig
) -> Tuple[float, float]:
    extents = [
        card_extent(arena.blocks[current], arena, config)
        for current in descendant_block_ids(arena, block_id)
    ]
    if not extents:
        return 0.0, 0.0
    return min(left for left, _ in extents), max(right for _, right in extents)


def subtree_extent(arena: LayoutArena, block_id: str) -> Tuple[float, float]:
    blocks = [arena.blocks[current] for current in descendant_block_ids(arena, block_id)]
    if not blocks:
        return 0.0, 0.0
    return min(block.x_left for block in blocks), max(block.x_right for block in blocks)


def blocks_by_generation(arena: LayoutArena) -> Dict[int, List[FamilyBlock]]:
    by_gen: Dict[int, List[FamilyBlock]] = {}
    for block in arena.blocks.values():
        by_gen.setdefault(block.generation, []).append(block)
    return by_gen


def child_blocks_of_union(arena: LayoutArena, union_id: str) -> List[Tuple[str, FamilyBlock]]:
    """``(child_person_id, block)`` for every child of the union that owns a block."""
    union = arena.model.unions.get(union_id)
    if union is None:
        return []
    result: List[Tuple[str, FamilyBlock]] = []
    for child_id in union.child_ids:
        block = arena.block_for_person(child_id)
        if block is not None:
            result.append((child_id, block))
    return result


def children_couple_bounds(
    arena: LayoutArena, union_id: str
) -> Tuple[float, float] | None:
    """Min/max couple bounds over the union's children that own a block."""
    bounds = [
        (block.x_center - block.couple_width / 2, block.x_center + block.couple_width / 2)
        for _, block in child_blocks_of_union(arena, union_id)
    ]
    if not bounds:
        return None
    return min(left for left, _ in bounds), max(right for _, right in bounds)


def max_generation_overlap(arena: LayoutArena, config: LayoutConfig) -> float:
    """Largest same-generation card overlap, measured against the required gap."""
    worst = 0.0
    for blocks in blocks_by_generation(arena).values():
        extents = sorted(card_extent(block, arena, config) for block in blocks)
        reach = float("-inf")
        for left, right in extents:
            worst = max(worst, reach + config.horizontal_gap - left)
            reach = max(reach, right)
    return worst

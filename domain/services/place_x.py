from __future__ import annotations

import logging
from enum import Enum
from typing import List, Set, Tuple

from domain.models import FamilyBlock, LayoutArena, LayoutConfig
from domain.services.block_geometry import children_couple_bounds, shift_block_subtree

logger = logging.getLogger(__name__)


class SiblingDirection(Enum):
    LEFT = "left"
    RIGHT = "right"
    NATURAL = "natural"


def place_x(arena: LayoutArena, config: LayoutConfig) -> None:
    """Assign initial X coordinates to every block of the arena.

    The focus block sits at 0 with its descendants below; each focus partner's
    ancestor line is anchored on that partner's card center.
    """
    focus_block = arena.focus_block
    if focus_block is None:
        return

    placed: Set[str] = set()
    set_block_position(focus_block, 0.0, config)
    placed.add(focus_block.id)
    place_descendants_top_down(arena, focus_block, config, placed)

    focus_union = arena.model.unions[focus_block.root_union_id]
    anchors = [(focus_union.partner_a, focus_block.partner_a_anchor_x)]
    if focus_union.partner_b:
        anchors.append((focus_union.partner_b, focus_block.partner_b_anchor_x))
    for partner_id, anchor_x in anchors:
        parent_union_id = arena.model.child_to_parent_union.get(partner_id)
        if parent_union_id:
            place_ancestor_chain(arena, parent_union_id, anchor_x, partner_id, config, placed)

    place_remaining_blocks(arena, config, placed)

    for block in arena.blocks.values():
        if block.id not in placed:
            logger.debug("Block %s has no placed relative, parking at 0", block.id)
            set_block_position(block, 0.0, config)
        block.placed = True

    extract_positions(arena, config)


def set_block_position(block: FamilyBlock, center: float, config: LayoutConfig) -> None:
    block.x_center = center
    block.x_left = center - block.width / 2
    block.x_right = center + block.width / 2
    block.couple_center_x = center
    if block.couple_width > config.card_width:
        block.partner_a_anchor_x = center - config.anchor_offset
        block.partner_b_anchor_x = center + config.anchor_offset
    else:
        block.partner_a_anchor_x = center
        block.partner_b_anchor_x = center


def place_descendants_top_down(
    arena: LayoutArena, root: FamilyBlock, config: LayoutConfig, placed: Set[str]
) -> None:
    """Lay out the descendants of ``root`` below it, using envelope widths."""
    stack: List[Tuple[str, bool]] = [(root.id, False)]
    expanded: Set[str] = set()
    while stack:
        block_id, children_done = stack.pop()
        block = arena.blocks[block_id]
        if children_done:
            update_block_extent_from_children(arena, block)
            continue
        if block_id in expanded or not block.child_block_ids:
            continue
        expanded.add(block_id)

        children = [arena.blocks[cid] for cid in block.child_block_ids if cid in arena.blocks]
        total = sum(child.envelope_width for child in children)
        total += (len(children) - 1) * config.horizontal_gap
        x = block.x_center - total / 2
        for child in children:
            set_block_position(child, x + child.envelope_width / 2, config)
            placed.add(child.id)
            x += child.envelope_width + config.horizontal_gap

        correction = _centering_correction(arena, block)
        if abs(correction) > 0.001:
            for child in children:
                shift_block_subtree(arena, child.id, correction)
        update_children_center(arena, block)

        stack.append((block_id, True))
        stack.extend((child.id, False) for child in reversed(children))


def _centering_correction(arena: LayoutArena, block: FamilyBlock) -> float:
    bounds = children_couple_bounds(arena, block.root_union_id)
    if bounds is None:
        return 0.0
    return block.x_center - (bounds[0] + bounds[1]) / 2


def place_ancestor_chain(
    arena: LayoutArena,
    union_id: str,
    anchor_x: float,
    anchor_person_id: str,
    config: LayoutConfig,
    placed: Set[str],
) -> None:
    """Place an ancestor union above ``anchor_person_id`` and walk further up."""
    model = arena.model
    stack: List[Tuple[str, float, str]] = [(union_id, anchor_x, anchor_person_id)]
    while stack:
        union_id, anchor_x, anchor_person_id = stack.pop()
        block = arena.block_for_union(union_id)
        if block is None or block.id in placed:
            continue

        direct = _direct_line_child(arena, block, anchor_person_id, placed)
        if direct is None:
            set_block_position(block, anchor_x, config)
        else:
            if direct.id not in placed:
                set_block_position(direct, anchor_x, config)
                placed.add(direct.id)
                place_descendants_top_down(arena, direct, config, placed)
            place_siblings_around(
                arena, block, direct, config, placed, _sibling_direction(arena, anchor_person_id)
            )
            center_block_over_children(arena, block, config)
        placed.add(block.id)

        union = model.unions[block.root_union_id]
        parents = [(union.partner_a, block.partner_a_anchor_x)]
        if union.partner_b:
            parents.append((union.partner_b, block.partner_b_anchor_x))
        for partner_id, partner_anchor_x in reversed(parents):
            parent_union_id = model.child_to_parent_union.get(partner_id)
            parent_block = arena.block_for_union(parent_union_id)
            if parent_block is not None and parent_block.id not in placed:
                stack.append((parent_union_id, partner_anchor_x, partner_id))


def _direct_line_child(
    arena: LayoutArena, block: FamilyBlock, anchor_person_id: str, placed: Set[str]
) -> FamilyBlock | None:
    # The anchor's own block may belong to another parent block's children.
    anchor_union_id = arena.model.person_to_union.get(anchor_person_id)
    anchor_block = arena.block_for_union(anchor_union_id)
    if anchor_block is not None and anchor_block.id in placed:
        return anchor_block
    for child_id in block.child_block_ids:
        child = arena.blocks.get(child_id)
        if child is None:
            continue
        if child_id in placed or child.root_union_id == anchor_union_id:
            return child
    if block.child_block_ids:
        return arena.blocks.get(block.child_block_ids[0])
    return None


def _sibling_direction(arena: LayoutArena, anchor_person_id: str) -> SiblingDirection:
    union_id = arena.model.person_to_union.get(anchor_person_id)
    union = arena.model.unions.get(union_id) if union_id else None
    if union is None or union.partner_b is None:
        return SiblingDirection.NATURAL
    if union.partner_a == anchor_person_id:
        return SiblingDirection.LEFT
    return SiblingDirection.RIGHT


def place_siblings_around(
    arena: LayoutArena,
    block: FamilyBlock,
    anchor: FamilyBlock,
    config: LayoutConfig,
    placed: Set[str],
    direction: SiblingDirection = SiblingDirection.NATURAL,
) -> None:
    """Place the unplaced children of ``block`` beside the already placed ``anchor``.

    Husband-side lines fan their siblings LEFT, wife-side lines RIGHT, so
    neither pushes into the space between the two lines.
    """
    child_ids = block.child_block_ids
    if anchor.id not in child_ids:
        if direction is SiblingDirection.LEFT:
            _fan_left(arena, list(reversed(child_ids)), anchor.x_left, config, placed, True)
        elif direction is SiblingDirection.RIGHT:
            _fan_right(arena, list(child_ids), anchor.x_right, config, placed, True)
        return

    index = child_ids.index(anchor.id)
    left = list(reversed(child_ids[:index]))
    right = list(child_ids[index + 1:])
    if direction is SiblingDirection.LEFT:
        _fan_left(arena, right + left, anchor.x_left, config, placed, False)
    elif direction is SiblingDirection.RIGHT:
        _fan_right(arena, left + right, anchor.x_right, config, placed, False)
    else:
        _fan_right(arena, right, anchor.x_right, config, placed, False, keep_edge=False)
        _fan_left(arena, left, anchor.x_left, config, placed, False, keep_edge=False)


def _fan_left(
    arena: LayoutArena,
    sibling_ids: List[str],
    edge: float,
    config: LayoutConfig,
    placed: Set[str],
    use_envelope: bool,
    keep_edge: bool = True,
) -> None:
    for sibling_id in sibling_ids:
        sibling = arena.blocks.get(sibling_id)
        if sibling is None:
            continue
        if sibling_id in placed:
            edge = min(edge, sibling.x_left) if keep_edge else sibling.x_left
            continue
        width = sibling.envelope_width if use_envelope else sibling.width
        set_block_position(sibling, edge - config.horizontal_gap - width / 2, config)
        placed.add(sibling_id)
        place_descendants_top_down(arena, sibling, config, placed)
        edge = sibling.x_left


def _fan_right(
    arena: LayoutArena,
    sibling_ids: List[str],
    edge: float,
    config: LayoutConfig,
    placed: Set[str],
    use_envelope: bool,
    keep_edge: bool = True,
) -> None:
    for sibling_id in sibling_ids:
        sibling = arena.blocks.get(sibling_id)
        if sibling is None:
            continue
        if sibling_id in placed:
            edge = max(edge, sibling.x_right) if keep_edge else sibling.x_right
            continue
        width = sibling.envelope_width if use_envelope else sibling.width
        set_block_position(sibling, edge + config.horizontal_gap + width / 2, config)
        placed.add(sibling_id)
        place_descendants_top_down(arena, sibling, config, placed)
        edge = sibling.x_right


def center_block_over_children(
    arena: LayoutArena, block: FamilyBlock, config: LayoutConfig
) -> None:
    union = arena.model.unions.get(block.root_union_id)
    if union is None or not union.child_ids:
        return
    bounds = children_couple_bounds(arena, union.id)
    if bounds is None:
        children = [arena.blocks[cid] for cid in block.child_block_ids if cid in arena.blocks]
        if children:
            set_block_position(
                block, (children[0].x_center + children[-1].x_center) / 2, config
            )
        return
    set_block_position(block, (bounds[0] + bounds[1]) / 2, config)
    update_children_center(arena, block)
    update_block_extent_from_children(arena, block)


def update_children_center(arena: LayoutArena, block: FamilyBlock) -> None:
    children = [arena.blocks[cid] for cid in block.child_block_ids if cid in arena.blocks]
    if not children:
        block.children_center_x = block.x_center
        return
    block.children_center_x = (children[0].x_center + children[-1].x_center) / 2


def update_block_extent_from_children(arena: LayoutArena, block: FamilyBlock) -> None:
    children = [arena.blocks[cid] for cid in block.child_block_ids if cid in arena.blocks]
    if not children:
        return
    half = block.card_span / 2
    block.x_left = min([child.x_left for child in children] + [block.x_center - half])
    block.x_right = max([child.x_right for child in children] + [block.x_center + half])


def place_remaining_blocks(arena: LayoutArena, config: LayoutConfig, placed: Set[str]) -> None:
    """Attach blocks the ancestor walk never reached to any placed child."""
    changed = True
    while changed:
        changed = False
        for block in arena.blocks.values():
            if block.id in placed:
                continue
            anchor = next(
                (arena.blocks[cid] for cid in block.child_block_ids if cid in placed),
                None,
            )
            if anchor is not None:
                place_siblings_around(arena, block, anchor, config, placed)
                center_block_over_children(arena, block, config)
                placed.add(block.id)
                changed = True
                continue

            union = arena.model.unions.get(block.root_union_id)
            if union is None:
                continue
            child = next(
                (
                    child_block
                    for child_block in map(arena.block_for_person, union.child_ids)
                    if child_block is not None and child_block.id in placed
                ),
                None,
            )
            if child is None:
                continue
            set_block_position(block, child.x_center, config)
            if block.child_block_ids:
                place_descendants_top_down(arena, block, config, placed)
                center_block_over_children(arena, block, config)
            placed.add(block.id)
            changed = True


def extract_positions(arena: LayoutArena, config: LayoutConfig) -> None:
    """Derive person left edges and union centers from block centers."""
    arena.person_x.clear()
    arena.union_x.clear()
    for block in arena.blocks.values():
        union = arena.model.unions.get(block.root_union_id)
        if union is None:
            continue
        center = block.x_center
        arena.union_x[union.id] = center
        if union.partner_b:
            arena.person_x[union.partner_a] = center - config.partner_gap / 2 - config.card_width
            arena.person_x[union.partner_b] = center + config.partner_gap / 2
        else:
            arena.person_x[union.partner_a] = center - config.card_width / 2
        for partner in block.extra_partners:
            card_center = center + partner.offset
            shared_center = arena.person_x[partner.shared_person_id] + config.card_width / 2
            arena.person_x[partner.person_id] = card_center - config.card_width / 2
            arena.union_x[partner.union_id] = (card_center + shared_center) / 2

from __future__ import annotations

from typing import List, Tuple

from domain.models import (
    ExtraPartner,
    FamilyBlock,
    GenerationalModel,
    LayoutArena,
    LayoutConfig,
    Side,
    UnionNode,
)
from domain.services.build_layout_model import child_unions


def block_id_for(union_id: str) -> str:
    return f"block_{union_id}"


def measure_subtrees(
    gen_model: GenerationalModel, focus_person_id: str, config: LayoutConfig
) -> LayoutArena | None:
    """Build the family block DAG around the focus union and measure it.

    Returns ``None`` when the focus person has no union in the model.
    """
    model = gen_model.model
    focus_union_id = model.person_to_union.get(focus_person_id)
    if focus_union_id is None or focus_union_id not in model.unions:
        return None

    arena = LayoutArena(
        gen_model=gen_model,
        focus_person_id=focus_person_id,
        focus_union_id=focus_union_id,
    )
    _build_descendant_blocks(arena, focus_union_id, None, Side.BOTH, config)

    # The focus person's own parents claim the focus block, so they go first.
    focus_union = model.unions[focus_union_id]
    lines = [(focus_union.partner_a, Side.HUSBAND)]
    if focus_union.partner_b:
        lines.append((focus_union.partner_b, Side.WIFE))
    lines.sort(key=lambda line: line[0] != focus_person_id)
    for partner_id, side in lines:
        _build_ancestor_blocks(
            arena, partner_id, side, focus_union_id, partner_id == focus_person_id, config
        )
    _attach_extra_partners(arena, config)

    arena.root_block_ids = [
        block.id for block in arena.blocks.values() if block.parent_block_id is None
    ]
    measure_block_widths(arena, config)
    compute_envelopes(arena, config)
    return arena


def _new_block(
    arena: LayoutArena,
    union_id: str,
    parent_block_id: str | None,
    side: Side,
    config: LayoutConfig,
) -> FamilyBlock:
    union = arena.model.unions[union_id]
    couple_width = config.couple_width(union.partner_b is not None)
    block = FamilyBlock(
        id=block_id_for(union_id),
        root_union_id=union_id,
        side=side,
        generation=arena.gen_model.union_gen.get(union_id, 0),
        parent_block_id=parent_block_id,
        couple_width=couple_width,
        width=couple_width,
        envelope_width=couple_width,
        left_extent=couple_width / 2,
        right_extent=couple_width / 2,
    )
    arena.blocks[block.id] = block
    arena.union_to_block[union_id] = block.id
    return block


def _build_descendant_blocks(
    arena: LayoutArena,
    union_id: str,
    parent_block_id: str | None,
    side: Side,
    config: LayoutConfig,
) -> str | None:
    """Create blocks for ``union_id`` and every descendant union, depth first.

    A union reached a second time (pedigree collapse) is linked, not rebuilt.
    """
    if union_id in arena.union_to_block:
        return arena.union_to_block[union_id]
    if union_id not in arena.model.unions:
        return None

    root = _new_block(arena, union_id, parent_block_id, side, config)
    stack: List[Tuple[str, str]] = [
        (child_union_id, root.id)
        for child_union_id in reversed(child_unions(arena.model, arena.gen_model, union_id))
    ]
    while stack:
        child_union_id, owner_id = stack.pop()
        owner = arena.blocks[owner_id]
        existing_id = arena.union_to_block.get(child_union_id)
        if existing_id is not None:
            if existing_id not in owner.child_block_ids:
                owner.child_block_ids.append(existing_id)
            continue
        if child_union_id not in arena.model.unions:
            continue
        child = _new_block(arena, child_union_id, owner_id, owner.side, config)
        owner.child_block_ids.append(child.id)
        stack.extend(
            (grandchild_union_id, child.id)
            for grandchild_union_id in reversed(
                child_unions(arena.model, arena.gen_model, child_union_id)
            )
        )
    return root.id


def _build_ancestor_blocks(
    arena: LayoutArena,
    person_id: str,
    side: Side,
    direct_line_union_id: str,
    is_focus_chain: bool,
    config: LayoutConfig,
) -> None:
    model = arena.model
    union_gen = arena.gen_model.union_gen
    # (person, side, direct-line union, focus chain) in depth-first order.
    stack: List[Tuple[str, Side, str, bool]] = [
        (person_id, side, direct_line_union_id, is_focus_chain)
    ]
    while stack:
        person_id, side, direct_line_union_id, is_focus_chain = stack.pop()
        parent_union_id = model.child_to_parent_union.get(person_id)
        if parent_union_id is None or parent_union_id in arena.union_to_block:
            continue
        parent_union = model.unions.get(parent_union_id)
        if parent_union is None:
            continue

        gen = union_gen.get(parent_union_id, 0)
        is_focus_parents = (
            is_focus_chain and union_gen.get(direct_line_union_id, 0) == 0 and gen == -1
        )
        block = _new_block(
            arena, parent_union_id, None, Side.BOTH if is_focus_parents else side, config
        )

        for child_union_id in child_unions(model, arena.gen_model, parent_union_id):
            existing_id = arena.union_to_block.get(child_union_id)
            if existing_id is None:
                sibling_id = _build_descendant_blocks(
                    arena, child_union_id, block.id, side, config
                )
                if sibling_id:
                    block.child_block_ids.append(sibling_id)
                continue
            existing = arena.blocks[existing_id]
            if existing.parent_block_id is None and existing.id != block.id:
                block.child_block_ids.append(existing.id)
                existing.parent_block_id = block.id

        husband_side = Side.HUSBAND if is_focus_parents else side
        wife_side = Side.WIFE if is_focus_parents else side
        if parent_union.partner_b:
            stack.append((parent_union.partner_b, wife_side, parent_union_id, False))
        stack.append((parent_union.partner_a, husband_side, parent_union_id, False))


def _attach_extra_partners(arena: LayoutArena, config: LayoutConfig) -> None:
    """Hang each further partnership of a block partner on that partner's block.

    The extra partner's card continues the row outward from the shared
    partner, and the partnership's children join the block's children on
    the same side.
    """
    model = arena.model
    step = config.card_width + config.partner_gap
    changed = True
    while changed:
        changed = False
        for union_id, union in model.unions.items():
            if union_id in arena.union_to_block or union.partner_b is None:
                continue
            link = _extra_partner_link(arena, union)
            if link is None:
                continue
            host, shared_id, extra_id = link
            host_union = model.unions[host.root_union_id]
            rank = 1 + sum(1 for p in host.extra_partners if p.shared_person_id == shared_id)
            if host_union.partner_b is None:
                offset = step * rank
            elif shared_id == host_union.partner_a:
                offset = -config.anchor_offset - step * rank
            else:
                offset = config.anchor_offset + step * rank
            reach = abs(offset) + config.card_width / 2
            host.extra_partners.append(ExtraPartner(extra_id, union_id, shared_id, offset, reach))
            arena.union_to_block[union_id] = host.id

            new_child_ids: List[str] = []
            for child_union_id in child_unions(model, arena.gen_model, union_id):
                if child_union_id in arena.union_to_block:
                    continue
                child_id = _build_descendant_blocks(
                    arena, child_union_id, host.id, host.side, config
                )
                if child_id:
                    new_child_ids.append(child_id)
            # Left-hand partners' children come first, the farthest leftmost.
            if offset < 0:
                host.child_block_ids[:0] = new_child_ids
            else:
                host.child_block_ids.extend(new_child_ids)
            changed = True


def _extra_partner_link(
    arena: LayoutArena, union: UnionNode
) -> Tuple[FamilyBlock, str, str] | None:
    model = arena.model
    for shared_id, extra_id in (
        (union.partner_a, union.partner_b),
        (union.partner_b, union.partner_a),
    ):
        host = arena.block_for_person(shared_id)
        if host is None or host.root_union_id != model.person_to_union.get(shared_id):
            continue
        if model.person_to_union.get(extra_id) != union.id:
            continue
        if arena.gen_model.person_gen.get(extra_id) != host.generation:
            continue
        return host, shared_id, extra_id
    return None


def measure_block_widths(arena: LayoutArena, config: LayoutConfig) -> None:
    for block in sorted(arena.blocks.values(), key=lambda item: -item.generation):
        children = [arena.blocks[cid] for cid in block.child_block_ids if cid in arena.blocks]
        if not children:
            block.children_width = 0.0
            block.width = block.card_span
            continue
        block.children_width = sum(child.width for child in children) + (
            len(children) - 1
        ) * config.horizontal_gap
        block.width = max(block.card_span, block.children_width)


def compute_envelopes(arena: LayoutArena, config: LayoutConfig) -> None:
    focus_block = arena.focus_block
    for block in arena.blocks.values():
        if block is focus_block or block.generation < 0:
            continue
        _set_envelope(block, block.width)

    ancestors = sorted(
        (block for block in arena.blocks.values() if block.generation < 0),
        key=lambda item: item.generation,
    )
    for block in ancestors:
        _set_envelope(block, subtree_envelope(arena, block, config))

    if focus_block is None:
        return
    husband_envelope = 0.0
    wife_envelope = 0.0
    for block in arena.blocks.values():
        if block.generation < 0 and block.parent_block_id is None:
            if block.side is Side.HUSBAND:
                husband_envelope = max(husband_envelope, block.envelope_width)
            elif block.side is Side.WIFE:
                wife_envelope = max(wife_envelope, block.envelope_width)

    focus_union = arena.model.unions[focus_block.root_union_id]
    husband_parent = arena.parent_block_of_person(focus_union.partner_a)
    if husband_parent is not None:
        husband_envelope = max(husband_envelope, husband_parent.envelope_width)
    wife_parent = arena.parent_block_of_person(focus_union.partner_b)
    if wife_parent is not None:
        wife_envelope = max(wife_envelope, wife_parent.envelope_width)

    _set_envelope(
        focus_block,
        max(focus_block.width, _pair_width(husband_envelope, wife_envelope, config)),
    )


def subtree_envelope(arena: LayoutArena, block: FamilyBlock, config: LayoutConfig) -> float:
    union = arena.model.unions.get(block.root_union_id)
    if union is None:
        return block.width
    parent_a = arena.parent_block_of_person(union.partner_a)
    parent_b = arena.parent_block_of_person(union.partner_b)
    envelope_a = parent_a.envelope_width if parent_a else 0.0
    envelope_b = parent_b.envelope_width if parent_b else 0.0
    return max(block.width, _pair_width(envelope_a, envelope_b, config))


def _pair_width(left: float, right: float, config: LayoutConfig) -> float:
    if left > 0 and right > 0:
        return left + right + config.horizontal_gap
    return left + right


def _set_envelope(block: FamilyBlock, envelope: float) -> None:
    block.envelope_width = envelope
    block.left_extent = envelope / 2
    block.right_extent = envelope / 2

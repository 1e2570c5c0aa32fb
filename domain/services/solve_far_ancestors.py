from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Dict, List, Set, Tuple

from domain.errors import LayoutInvariantError
from domain.models import FamilyBlock, LayoutArena, LayoutConfig, LayoutModel, Side, UnionNode
from domain.services.block_geometry import blocks_by_generation, card_extent

logger = logging.getLogger(__name__)

EPSILON = 0.5
MAX_BOUNDARY_ROUNDS = 20
MAX_OUTWARD_ROUNDS = 3


@dataclass
class AncestorNode:
    union_id: str
    husband_id: str
    wife_id: str | None
    generation: int
    husband_tree: AncestorNode | None = None
    wife_tree: AncestorNode | None = None
    couple_width: float = 0.0
    width: float = 0.0
    x_center: float = 0.0

    def subtrees(self) -> List[AncestorNode]:
        return [tree for tree in (self.husband_tree, self.wife_tree) if tree is not None]


@dataclass
class _Couple:
    block: FamilyBlock
    husband_block_ids: Set[str] = field(default_factory=set)
    wife_block_ids: Set[str] = field(default_factory=set)
    husband_locked_ids: Set[str] = field(default_factory=set)
    wife_locked_ids: Set[str] = field(default_factory=set)


def husband_and_wife(union: UnionNode) -> Tuple[str, str | None]:
    """Left and right partner of a union.

    Partner order already puts the male partner first, so the left card is
    treated as the husband.
    """
    return union.partner_a, union.partner_b


def guard_ancestor_only(block: FamilyBlock, config: LayoutConfig, context: str) -> bool:
    if block.generation < 0:
        return True
    msg = f"{context} attempted to move descendant block {block.id} (gen={block.generation})"
    if config.strict_mode:
        raise LayoutInvariantError(msg)
    logger.debug("Skipping move: %s", msg)
    return False


def _move(block: FamilyBlock, dx: float, config: LayoutConfig, context: str) -> bool:
    if not guard_ancestor_only(block, config, context):
        return False
    block.shift(dx)
    return True


def solve_far_ancestors(arena: LayoutArena, config: LayoutConfig) -> int:
    """Place grandparents and beyond without touching generations >= -1.

    Returns the number of passes that ran.
    """
    passes = 1
    place_ancestor_trees(arena, config)

    couples = ancestor_couples(arena)
    for _ in range(MAX_OUTWARD_ROUNDS):
        passes += 1
        outward = resolve_overlaps_outward(arena, config)
        barrier = enforce_side_barrier(arena, couples, config)
        if outward < EPSILON and barrier < EPSILON:
            break

    passes += 1
    compact_ancestors_inward(arena, couples, config)
    logger.debug("Far ancestors settled after %d passes", passes)
    return passes


# ---------------------------------------------------------------- trees


def build_ancestor_tree(
    model: LayoutModel, person_id: str, generation: int, min_gen: int, visited: Set[str]
) -> AncestorNode | None:
    """Direct ancestors of ``person_id``; a union already visited is not repeated."""

    def make_node(child_id: str, gen: int) -> AncestorNode | None:
        union_id = model.child_to_parent_union.get(child_id)
        union = model.unions.get(union_id) if union_id else None
        if union is None or union.id in visited:
            return None
        visited.add(union.id)
        husband_id, wife_id = husband_and_wife(union)
        return AncestorNode(union.id, husband_id, wife_id, gen)

    root = make_node(person_id, generation)
    stack = [root] if root else []
    while stack:
        node = stack.pop()
        if node.generation <= min_gen:
            continue
        node.husband_tree = make_node(node.husband_id, node.generation - 1)
        if node.wife_id:
            node.wife_tree = make_node(node.wife_id, node.generation - 1)
        stack.extend(reversed(node.subtrees()))
    return root


def iter_tree(root: AncestorNode | None) -> List[AncestorNode]:
    nodes: List[AncestorNode] = []
    stack = [root] if root else []
    while stack:
        node = stack.pop()
        nodes.append(node)
        stack.extend(reversed(node.subtrees()))
    return nodes


def compute_tree_widths(root: AncestorNode | None, config: LayoutConfig) -> float:
    for node in reversed(iter_tree(root)):
        node.couple_width = config.couple_width(node.wife_id is not None)
        husband_width = node.husband_tree.width if node.husband_tree else 0.0
        wife_width = node.wife_tree.width if node.wife_tree else 0.0
        ancestors_width = husband_width + wife_width
        if husband_width > 0 and wife_width > 0:
            ancestors_width += config.horizontal_gap
        node.width = max(node.couple_width, ancestors_width)
    return root.width if root else 0.0


def _partner_centers(node: AncestorNode, config: LayoutConfig) -> Tuple[float, float]:
    if node.wife_id is None:
        return node.x_center, node.x_center
    return node.x_center - config.anchor_offset, node.x_center + config.anchor_offset


def place_tree(root: AncestorNode | None, center: float, config: LayoutConfig) -> None:
    """Top-down placement against the partner card edges."""
    if root is None:
        return
    root.x_center = center
    stack = [root]
    while stack:
        node = stack.pop()
        husband_center, wife_center = _partner_centers(node, config)
        if node.husband_tree is not None:
            node.husband_tree.x_center = (
                husband_center + config.card_width / 2 - node.husband_tree.width / 2
            )
            stack.append(node.husband_tree)
        if node.wife_tree is not None:
            node.wife_tree.x_center = wife_center - config.card_width / 2 + node.wife_tree.width / 2
            stack.append(node.wife_tree)


def tree_min_x(root: AncestorNode | None) -> float:
    return min((n.x_center - n.couple_width / 2 for n in iter_tree(root)), default=float("inf"))


def tree_max_x(root: AncestorNode | None) -> float:
    return max((n.x_center + n.couple_width / 2 for n in iter_tree(root)), default=float("-inf"))


def shift_tree(root: AncestorNode | None, dx: float) -> None:
    for node in iter_tree(root):
        node.x_center += dx


def enforce_couple_boundaries(root: AncestorNode | None, config: LayoutConfig) -> bool:
    """Push every couple's ancestor subtrees back onto their own partner's side."""
    changed = False
    for node in iter_tree(root):
        husband_center, wife_center = _partner_centers(node, config)
        husband_right = husband_center + config.card_width / 2
        wife_left = wife_center - config.card_width / 2
        if node.husband_tree is not None:
            overshoot = tree_max_x(node.husband_tree) - husband_right
            if overshoot > EPSILON:
                shift_tree(node.husband_tree, -overshoot)
                changed = True
        if node.wife_tree is not None:
            undershoot = wife_left - tree_min_x(node.wife_tree)
            if undershoot > EPSILON:
                shift_tree(node.wife_tree, undershoot)
                changed = True
    return changed


def partner_parent_blocks(arena: LayoutArena) -> List[FamilyBlock]:
    """Generation -1 parent blocks of the focus union's partners, the focus person's own first."""
    focus_block = arena.focus_block
    if focus_block is None:
        return []
    partners = arena.model.unions[focus_block.root_union_id].partners()
    partners.sort(key=lambda person_id: person_id != arena.focus_person_id)
    blocks: List[FamilyBlock] = []
    for partner_id in partners:
        block = arena.parent_block_of_person(partner_id)
        if block is None or block.generation != -1:
            continue
        if all(block.id != other.id for other in blocks):
            blocks.append(block)
    return blocks


def layout_ancestor_trees(
    arena: LayoutArena, anchors: List[FamilyBlock], config: LayoutConfig
) -> List[Tuple[FamilyBlock, List[AncestorNode]]]:
    """Compact trees above each anchor block, placed around its current center.

    A union taken by an earlier anchor's tree is not repeated.
    """
    visited: Set[str] = {anchor.root_union_id for anchor in anchors}
    return [(anchor, _trees_above(arena, anchor, visited, config)) for anchor in anchors]


def _trees_above(
    arena: LayoutArena, anchor: FamilyBlock, visited: Set[str], config: LayoutConfig
) -> List[AncestorNode]:
    model = arena.model
    anchor_union = model.unions[anchor.root_union_id]
    husband_id, wife_id = husband_and_wife(anchor_union)
    if wife_id is None:
        husband_center = wife_center = anchor.x_center
    else:
        husband_center = anchor.x_center - config.anchor_offset
        wife_center = anchor.x_center + config.anchor_offset

    min_gen = arena.gen_model.min_gen
    generation = anchor.generation - 1
    husband_tree = build_ancestor_tree(model, husband_id, generation, min_gen, visited)
    wife_tree = (
        build_ancestor_tree(model, wife_id, generation, min_gen, visited) if wife_id else None
    )
    husband_width = compute_tree_widths(husband_tree, config)
    wife_width = compute_tree_widths(wife_tree, config)

    if husband_tree is not None and wife_tree is None:
        place_tree(husband_tree, husband_center, config)
    elif wife_tree is not None and husband_tree is None:
        place_tree(wife_tree, wife_center, config)
    else:
        place_tree(husband_tree, husband_center + config.card_width / 2 - husband_width / 2, config)
        place_tree(wife_tree, wife_center - config.card_width / 2 + wife_width / 2, config)

    for tree in (husband_tree, wife_tree):
        for _ in range(MAX_BOUNDARY_ROUNDS):
            if not enforce_couple_boundaries(tree, config):
                break

    if husband_tree is not None and wife_tree is not None:
        overlap = tree_max_x(husband_tree) - tree_min_x(wife_tree) + config.horizontal_gap
        if overlap > 0:
            shift_tree(husband_tree, -overlap / 2)
            shift_tree(wife_tree, overlap / 2)
    return [tree for tree in (husband_tree, wife_tree) if tree is not None]


def ancestor_tree_offsets(
    arena: LayoutArena, anchor: FamilyBlock, trees: List[AncestorNode], config: LayoutConfig
) -> Tuple[float, float]:
    """Left and right reach of the anchor's cards and its trees, relative to its center."""
    left, right = card_extent(anchor, arena, config)
    left = min([left] + [tree_min_x(tree) for tree in trees])
    right = max([right] + [tree_max_x(tree) for tree in trees])
    return left - anchor.x_center, right - anchor.x_center


def place_ancestor_trees(arena: LayoutArena, config: LayoutConfig) -> None:
    """Build and place compact husband-side and wife-side trees above both partners' parents."""
    for _, trees in layout_ancestor_trees(arena, partner_parent_blocks(arena), config):
        for tree in trees:
            for node in iter_tree(tree):
                _transfer(arena, node, config)


def _transfer(arena: LayoutArena, node: AncestorNode, config: LayoutConfig) -> None:
    block = arena.block_for_union(node.union_id)
    if block is None or not guard_ancestor_only(block, config, "ancestor tree transfer"):
        return
    if block.generation >= -1:
        logger.debug("Ancestor tree reached locked block %s", block.id)
        return
    delta = node.x_center - block.x_center
    block.x_center = node.x_center
    block.x_left = node.x_center - block.width / 2
    block.x_right = node.x_center + block.width / 2
    block.couple_center_x = node.x_center
    block.partner_a_anchor_x, block.partner_b_anchor_x = _partner_centers(node, config)
    block.children_center_x += delta


# ------------------------------------------------------- block passes


def resolve_overlaps_outward(arena: LayoutArena, config: LayoutConfig) -> float:
    """Separate same-generation ancestor blocks by pushing them away from the focus."""
    total = 0.0
    for gen, blocks in blocks_by_generation(arena).items():
        if gen >= -1 or len(blocks) < 2:
            continue
        entries = sorted(blocks, key=lambda block: card_extent(block, arena, config)[0])
        for left, right in zip(entries, entries[1:]):
            overlap = (
                card_extent(left, arena, config)[1]
                + config.horizontal_gap
                - card_extent(right, arena, config)[0]
            )
            if overlap <= EPSILON:
                continue
            shift = overlap + EPSILON
            if right.side is Side.WIFE:
                _move(right, shift, config, "outward overlap")
            elif left.side is Side.HUSBAND:
                _move(left, -shift, config, "outward overlap")
            elif left.side is Side.WIFE and right.side is Side.HUSBAND:
                _move(left, -shift / 2, config, "outward overlap")
                _move(right, shift / 2, config, "outward overlap")
            elif right.side is Side.HUSBAND:
                _move(left, -shift, config, "outward overlap")
            else:
                _move(right, shift, config, "outward overlap")
            total += overlap
    return total


def collect_ancestor_subtree(arena: LayoutArena, person_id: str | None) -> List[FamilyBlock]:
    """Ancestor blocks above ``person_id`` (generation <= -2), with the siblings at each level."""
    result: List[FamilyBlock] = []
    if person_id is None:
        return result
    model = arena.model
    seen_persons: Set[str] = set()
    seen_blocks: Set[str] = set()
    stack = [person_id]
    while stack:
        current = stack.pop()
        if current in seen_persons:
            continue
        seen_persons.add(current)
        parent_union_id = model.child_to_parent_union.get(current)
        block = arena.block_for_union(parent_union_id)
        if block is None or block.id in seen_blocks or block.generation >= -1:
            continue
        seen_blocks.add(block.id)
        result.append(block)
        union = model.unions[block.root_union_id]
        for sibling_id in union.child_ids:
            sibling = arena.block_for_person(sibling_id)
            if sibling_id == current or sibling is None or sibling.id in seen_blocks:
                continue
            if sibling.generation >= -1:
                continue
            seen_blocks.add(sibling.id)
            result.append(sibling)
        stack.extend(reversed(union.partners()))
    return result


def _line_blocks(arena: LayoutArena, person_id: str) -> Tuple[Set[str], Set[str]]:
    """Movable and locked ancestor blocks on ``person_id``'s side.

    A parent block of generation -1 is locked; the movable part then starts
    above its partners.
    """
    parent = arena.parent_block_of_person(person_id)
    if parent is None:
        return set(), set()
    if parent.generation < -1:
        return {b.id for b in collect_ancestor_subtree(arena, person_id)}, set()
    movable = {
        block.id
        for partner_id in arena.model.unions[parent.root_union_id].partners()
        for block in collect_ancestor_subtree(arena, partner_id)
    }
    return movable, {parent.id}


def ancestor_couples(arena: LayoutArena) -> List[_Couple]:
    """The focus couple and its direct-line ancestor couples, nearest generation first.

    Each couple carries the ancestor blocks of its husband and of its wife.
    The focus couple counts only when both partners have parents in view.
    """
    couples: List[_Couple] = []
    focus_block = arena.focus_block
    if focus_block is None:
        return couples
    focus_union = arena.model.unions[focus_block.root_union_id]
    husband_id, wife_id = husband_and_wife(focus_union)
    husband_parents = arena.parent_block_of_person(husband_id)
    wife_parents = arena.parent_block_of_person(wife_id)
    if (
        husband_parents is not None
        and wife_parents is not None
        and husband_parents.id != wife_parents.id
    ):
        husband_ids, husband_locked = _line_blocks(arena, husband_id)
        wife_ids, wife_locked = _line_blocks(arena, wife_id)
        couples.append(_Couple(focus_block, husband_ids, wife_ids, husband_locked, wife_locked))

    seen: Set[str] = set()
    stack = list(reversed(focus_union.partners()))
    while stack:
        block = arena.parent_block_of_person(stack.pop())
        if block is None or block.id in seen or block.generation > -1:
            continue
        seen.add(block.id)
        union = arena.model.unions[block.root_union_id]
        husband_id, wife_id = husband_and_wife(union)
        if wife_id is not None:
            couples.append(
                _Couple(
                    block,
                    _line_blocks(arena, husband_id)[0],
                    _line_blocks(arena, wife_id)[0],
                )
            )
        stack.extend(reversed(union.partners()))
    couples.sort(key=lambda couple: -couple.block.generation)
    return couples


def card_left_range(block: FamilyBlock, arena: LayoutArena, config: LayoutConfig) -> Tuple[float, float]:
    """Leftmost and rightmost card left edge within a block."""
    left, right = card_extent(block, arena, config)
    return left, right - config.card_width


def _husband_wife_centers(couple: _Couple, config: LayoutConfig) -> Tuple[float, float]:
    center = couple.block.x_center
    return center - config.anchor_offset, center + config.anchor_offset


def _side_overshoot(
    arena: LayoutArena, couple: _Couple, config: LayoutConfig, include_locked: bool = False
) -> Tuple[float, float]:
    husband_center, wife_center = _husband_wife_centers(couple, config)
    husband_ids = couple.husband_block_ids
    wife_ids = couple.wife_block_ids
    if include_locked:
        husband_ids = husband_ids | couple.husband_locked_ids
        wife_ids = wife_ids | couple.wife_locked_ids
    husband_side = [card_left_range(arena.blocks[b], arena, config)[1] for b in husband_ids]
    wife_side = [
        card_left_range(arena.blocks[b], arena, config)[0] + config.card_width
        for b in wife_ids
    ]
    # Only a couple with ancestors on both sides is constrained.
    if not husband_side or not wife_side:
        return float("-inf"), float("-inf")
    return max(husband_side) - husband_center, wife_center - min(wife_side)


def enforce_side_barrier(arena: LayoutArena, couples: List[_Couple], config: LayoutConfig) -> float:
    """Keep each couple's ancestor subtrees on their own partner's side.

    The husband-side subtree's rightmost card may not start past the
    husband's center, the wife-side leftmost card may not end before the
    wife's center. Violations shift the whole subtree rigidly.
    """
    total = 0.0
    for _ in range(MAX_BOUNDARY_ROUNDS):
        moved = 0.0
        for couple in couples:
            overshoot, undershoot = _side_overshoot(arena, couple, config)
            if overshoot > EPSILON:
                for block_id in couple.husband_block_ids:
                    _move(arena.blocks[block_id], -overshoot, config, "side barrier")
                moved += overshoot
            if undershoot > EPSILON:
                for block_id in couple.wife_block_ids:
                    _move(arena.blocks[block_id], undershoot, config, "side barrier")
                moved += undershoot
        total += moved
        if moved < EPSILON:
            break
    return total


def check_side_containment(arena: LayoutArena, config: LayoutConfig, tolerance: float = EPSILON) -> List[str]:
    errors: List[str] = []
    for couple in ancestor_couples(arena):
        overshoot, undershoot = _side_overshoot(arena, couple, config, include_locked=True)
        if overshoot > tolerance:
            errors.append(
                f"Husband-side ancestors of {couple.block.root_union_id} cross by {overshoot:.1f}px"
            )
        if undershoot > tolerance:
            errors.append(
                f"Wife-side ancestors of {couple.block.root_union_id} cross by {undershoot:.1f}px"
            )
    return errors


def _barrier_room(
    arena: LayoutArena, block: FamilyBlock, couples: List[_Couple], config: LayoutConfig
) -> Tuple[float, float]:
    # How far ``block`` may move right / left before a barrier breaks.
    right_room = float("inf")
    left_room = float("inf")
    first_left, last_left = card_left_range(block, arena, config)
    for couple in couples:
        husband_center, wife_center = _husband_wife_centers(couple, config)
        if block.id in couple.husband_block_ids:
            right_room = min(right_room, husband_center - last_left)
        if block.id in couple.wife_block_ids:
            left_room = min(left_room, first_left + config.card_width - wife_center)
        if couple.block is block:
            overshoot, undershoot = _side_overshoot(arena, couple, config)
            left_room = min(left_room, -overshoot)
            right_room = min(right_room, -undershoot)
    return max(0.0, right_room), max(0.0, left_room)


def _collision_room(
    arena: LayoutArena, block: FamilyBlock, peers: List[FamilyBlock], config: LayoutConfig
) -> Tuple[float, float]:
    left, right = card_extent(block, arena, config)
    right_room = float("inf")
    left_room = float("inf")
    for other in peers:
        if other is block:
            continue
        other_left, other_right = card_extent(other, arena, config)
        if other_left >= left:
            right_room = min(right_room, other_left - config.horizontal_gap - right)
        else:
            left_room = min(left_room, left - config.horizontal_gap - other_right)
    return max(0.0, right_room), max(0.0, left_room)


def _child_centers(arena: LayoutArena, block: FamilyBlock) -> List[float]:
    union = arena.model.unions[block.root_union_id]
    return [
        child.x_center
        for child in map(arena.block_for_person, union.child_ids)
        if child is not None
    ]


def compact_ancestors_inward(
    arena: LayoutArena, couples: List[_Couple], config: LayoutConfig
) -> float:
    """Pull side ancestors toward their children, closest generation first.

    Each move is bounded by the barrier and by the nearest block of the same
    generation; a block never moves past the center of its outermost child.
    """
    total = 0.0
    by_gen: Dict[int, List[FamilyBlock]] = blocks_by_generation(arena)
    for gen in sorted((g for g in by_gen if g <= -2), reverse=True):
        peers = by_gen[gen]
        husband_side = sorted(
            (b for b in peers if b.side is Side.HUSBAND), key=lambda b: -b.x_center
        )
        wife_side = sorted(
            (b for b in peers if b.side is Side.WIFE), key=lambda b: b.x_center
        )
        for block in husband_side:
            centers = _child_centers(arena, block)
            if not centers:
                continue
            barrier_right, _ = _barrier_room(arena, block, couples, config)
            collision_right, _ = _collision_room(arena, block, peers, config)
            dx = min(max(centers) - block.x_center, barrier_right, collision_right)
            if dx > EPSILON and _move(block, dx, config, "inward compaction"):
                total += dx
        for block in wife_side:
            centers = _child_centers(arena, block)
            if not centers:
                continue
            _, barrier_left = _barrier_room(arena, block, couples, config)
            _, collision_left = _collision_room(arena, block, peers, config)
            dx = min(block.x_center - min(centers), barrier_left, collision_left)
            if dx > EPSILON and _move(block, -dx, config, "inward compaction"):
                total += dx
    return total

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Dict, List, Set, Tuple

from domain.models import FamilyBlock, LayoutArena, LayoutConfig, Side, UnionNode
from domain.services.block_geometry import (
    blocks_by_generation,
    card_extent,
    child_blocks_of_union,
    children_couple_bounds,
    descendant_block_ids,
    shift_block_subtree,
    subtree_card_extent,
    subtree_extent,
)
from domain.services.place_x import update_block_extent_from_children, update_children_center
from domain.services.solve_far_ancestors import ancestor_tree_offsets, layout_ancestor_trees

logger = logging.getLogger(__name__)

EPSILON = 0.5
MAX_OVERLAP_ITERATIONS = 30


@dataclass(eq=False)
class _Cluster:
    block_id: str
    person_id: str
    x_center: float
    min_x: float
    max_x: float
    has_children: bool = False

    def shift(self, dx: float) -> None:
        self.x_center += dx
        self.min_x += dx
        self.max_x += dx


def solve_near_generations(arena: LayoutArena, config: LayoutConfig) -> int:
    """Settle the focus generation, its parents and all descendants.

    Returns the number of solver passes that ran.
    """
    passes = 0

    for _ in range(10):
        passes += 1
        delta = resolve_overlaps_desc_only(arena, config)
        recenter_descendant_parents(arena, config)
        if delta < EPSILON:
            break

    for _ in range(15):
        passes += 1
        shifted = enforce_branch_cluster_order(arena, config)
        recenter_descendant_parents(arena, config)
        if not shifted:
            break

    passes += 1
    resolve_overlaps_desc_only(arena, config)
    recenter_descendant_parents(arena, config)

    for _ in range(5):
        passes += 1
        shifted = enforce_branch_cluster_order(arena, config)
        recenter_descendant_parents(arena, config)
        if not shifted:
            break

    for _ in range(3):
        passes += 1
        if not enforce_cousin_separation(arena, config):
            break
        resolve_overlaps_desc_only(arena, config)
        recenter_descendant_parents(arena, config)

    passes += 1
    compact_branch_clusters(arena, config)
    recenter_descendant_parents(arena, config)
    resolve_overlaps_desc_only(arena, config)
    recenter_descendant_parents(arena, config)
    compact_branch_clusters(arena, config)

    # No recentering here: it would pull cousin branches back into the focus span.
    for _ in range(3):
        passes += 1
        if not enforce_cousin_separation(arena, config):
            break
        resolve_overlaps_desc_only(arena, config)

    passes += 1
    recenter_sibling_family_parents(arena, config)
    enforce_sibling_family_non_interleaving(arena, config)
    compact_sibling_family_clusters(arena, config)
    arrange_partner_families(arena, config)
    resolve_parent_generation_overlaps(arena, config)
    resolve_overlaps_desc_only(arena, config)
    recenter_descendant_parents(arena, config)

    logger.debug("Near generations settled after %d passes", passes)
    return passes


def resolve_overlaps_desc_only(arena: LayoutArena, config: LayoutConfig) -> float:
    """Sweep each descendant generation left to right, pushing overlapping subtrees right."""
    total = 0.0
    for _ in range(MAX_OVERLAP_ITERATIONS):
        iteration_shift = 0.0
        for gen, blocks in sorted(blocks_by_generation(arena).items()):
            if gen < 0 or len(blocks) < 2:
                continue
            entries = sorted(
                ([*card_extent(block, arena, config), block.id] for block in blocks),
                key=lambda entry: entry[0],
            )
            for previous, current in zip(entries, entries[1:]):
                overlap = previous[1] + config.horizontal_gap - current[0]
                if overlap > EPSILON:
                    shift = overlap + EPSILON
                    shift_block_subtree(arena, current[2], shift)
                    current[0] += shift
                    current[1] += shift
                    iteration_shift += shift
        total += iteration_shift
        if iteration_shift < EPSILON:
            break
    return total


def _children_bounds(
    arena: LayoutArena, union: UnionNode, config: LayoutConfig, use_person_x: bool
) -> Tuple[float, float] | None:
    min_x = float("inf")
    max_x = float("-inf")
    for child_id in union.child_ids:
        block = arena.block_for_person(child_id)
        if block is not None:
            min_x = min(min_x, block.x_center - block.couple_width / 2)
            max_x = max(max_x, block.x_center + block.couple_width / 2)
            continue
        if use_person_x and child_id in arena.person_x:
            min_x = min(min_x, arena.person_x[child_id])
            max_x = max(max_x, arena.person_x[child_id] + config.card_width)
    if min_x == float("inf"):
        return None
    return min_x, max_x


def _recenter(block: FamilyBlock, bounds: Tuple[float, float] | None) -> None:
    if bounds is None:
        return
    delta = (bounds[0] + bounds[1]) / 2 - block.x_center
    if abs(delta) > EPSILON:
        block.shift(delta)


def recenter_descendant_parents(arena: LayoutArena, config: LayoutConfig) -> None:
    """Center each descendant parent over its children, deepest generation first."""
    by_gen = blocks_by_generation(arena)
    max_gen = max(by_gen) if by_gen else 0
    for gen in range(max_gen - 1, -1, -1):
        for block in by_gen.get(gen, []):
            union = arena.model.unions.get(block.root_union_id)
            if union is None or not union.child_ids:
                continue
            _recenter(block, _children_bounds(arena, union, config, use_person_x=True))


def recenter_sibling_family_parents(arena: LayoutArena, config: LayoutConfig) -> None:
    """Center aunt and uncle blocks over their children at generation 0."""
    for block in blocks_by_generation(arena).get(-1, []):
        union = arena.model.unions.get(block.root_union_id)
        if union is None or not union.child_ids:
            continue
        if not any(
            child.generation == 0 for _, child in child_blocks_of_union(arena, union.id)
        ):
            continue
        _recenter(block, _children_bounds(arena, union, config, use_person_x=False))


def _sibling_extents(arena: LayoutArena, union: UnionNode, config: LayoutConfig) -> List[_Cluster]:
    clusters = []
    for child_id, block in child_blocks_of_union(arena, union.id):
        if block.generation < 0:
            continue
        min_x, max_x = subtree_card_extent(arena, block.id, config)
        clusters.append(_Cluster(block.id, child_id, block.x_center, min_x, max_x))
    return clusters


def enforce_branch_cluster_order(arena: LayoutArena, config: LayoutConfig) -> bool:
    """Keep sibling subtrees ordered and disjoint, checking every pair."""
    any_shift = False
    for union in arena.model.unions.values():
        if len(union.child_ids) < 2:
            continue
        siblings = _sibling_extents(arena, union, config)
        if len(siblings) < 2:
            continue
        siblings.sort(key=lambda item: item.x_center)
        for i, earlier in enumerate(siblings):
            for later in siblings[i + 1:]:
                overlap = earlier.max_x + config.horizontal_gap - later.min_x
                if overlap > EPSILON:
                    shift = overlap + EPSILON
                    shift_block_subtree(arena, later.block_id, shift)
                    later.shift(shift)
                    any_shift = True
    return any_shift


def compact_branch_clusters(arena: LayoutArena, config: LayoutConfig) -> None:
    """Pull sibling subtrees left to close slack, deepest generation first."""
    candidates: List[Tuple[int, str]] = []
    for union_id, union in arena.model.unions.items():
        if len(union.child_ids) < 2:
            continue
        child_gen = next(
            (block.generation for _, block in child_blocks_of_union(arena, union_id) if block.generation >= 0),
            None,
        )
        if child_gen is not None:
            candidates.append((child_gen, union_id))
    candidates.sort(key=lambda item: -item[0])

    for _, union_id in candidates:
        siblings = _sibling_extents(arena, arena.model.unions[union_id], config)
        if len(siblings) < 2:
            continue
        siblings.sort(key=lambda item: item.x_center)
        for i in range(1, len(siblings)):
            current = siblings[i]
            min_gap = min(current.min_x - earlier.max_x for earlier in siblings[:i])
            excess = min_gap - config.horizontal_gap
            if excess <= EPSILON:
                continue
            pull = compute_safe_pull(arena, current.block_id, excess, config)
            if pull <= EPSILON:
                continue
            shift_block_subtree(arena, current.block_id, -pull)
            current.min_x, current.max_x = subtree_card_extent(arena, current.block_id, config)
            current.x_center -= pull


def compute_safe_pull(
    arena: LayoutArena, block_id: str, max_pull: float, config: LayoutConfig
) -> float:
    """Largest leftward shift of the subtree that keeps every generation clear."""
    subtree = descendant_block_ids(arena, block_id)
    members = set(subtree)
    pull = max_pull
    for sub_id in subtree:
        sub_block = arena.blocks[sub_id]
        if sub_block.generation < 0:
            continue
        sub_left, _ = card_extent(sub_block, arena, config)
        for other_id, other in arena.blocks.items():
            if other_id in members or other.generation != sub_block.generation:
                continue
            _, other_right = card_extent(other, arena, config)
            if other_right > sub_left:
                continue
            pull = min(pull, sub_left - other_right - config.horizontal_gap)
    return max(0.0, pull)


def focus_sibling_block_ids(arena: LayoutArena) -> Set[str]:
    parent_union_id = arena.model.child_to_parent_union.get(arena.focus_person_id)
    if parent_union_id is None:
        return set()
    return {
        block.id
        for _, block in child_blocks_of_union(arena, parent_union_id)
        if block.generation == 0
    }


def _focus_sibling_span(
    arena: LayoutArena, fs_ids: Set[str], config: LayoutConfig
) -> Tuple[float, float] | None:
    if not fs_ids:
        return None
    extents = [subtree_card_extent(arena, block_id, config) for block_id in sorted(fs_ids)]
    return min(left for left, _ in extents), max(right for _, right in extents)


def enforce_cousin_separation(arena: LayoutArena, config: LayoutConfig) -> bool:
    """Push cousin subtrees at generation 0 outside the span of the focus's siblings."""
    fs_ids = focus_sibling_block_ids(arena)
    span = _focus_sibling_span(arena, fs_ids, config)
    if span is None:
        return False
    fs_min, fs_max = span
    gap = config.horizontal_gap

    cousins: List[_Cluster] = []
    families: Dict[str | None, List[_Cluster]] = {}
    for block in blocks_by_generation(arena).get(0, []):
        if block.id in fs_ids:
            continue
        min_x, max_x = subtree_card_extent(arena, block.id, config)
        union = arena.model.unions[block.root_union_id]
        cousin = _Cluster(block.id, union.partner_a, block.x_center, min_x, max_x)
        cousins.append(cousin)
        # Siblings move together.
        families.setdefault(block.parent_block_id, []).append(cousin)
    if not cousins:
        return False

    spouse_parents = spouse_parent_block(arena)
    _, spouse_direction = _spouse_of_focus(arena)
    left_group: List[_Cluster] = []
    right_group: List[_Cluster] = []
    fs_center = (fs_min + fs_max) / 2
    for parent_block_id, family in families.items():
        fam_min = min(item.min_x for item in family)
        fam_max = max(item.max_x for item in family)
        if not (fam_max > fs_min - gap + EPSILON and fam_min < fs_max + gap - EPSILON):
            continue
        # The spouse's siblings always go to the spouse's side.
        if spouse_parents is not None and parent_block_id == spouse_parents.id:
            (left_group if spouse_direction < 0 else right_group).extend(family)
        elif (fam_min + fam_max) / 2 < fs_center:
            left_group.extend(family)
        else:
            right_group.extend(family)

    any_shift = False
    if left_group:
        shift = fs_min - gap - max(item.max_x for item in left_group)
        if shift < -EPSILON:
            boundary = min(item.min_x for item in left_group)
            for cousin in cousins:
                if cousin in left_group or cousin.x_center < boundary:
                    shift_block_subtree(arena, cousin.block_id, shift)
                    cousin.shift(shift)
            any_shift = True
    if right_group:
        shift = fs_max + gap - min(item.min_x for item in right_group)
        if shift > EPSILON:
            boundary = max(item.max_x for item in right_group)
            for cousin in cousins:
                if cousin in right_group or cousin.x_center > boundary:
                    shift_block_subtree(arena, cousin.block_id, shift)
                    cousin.shift(shift)
            any_shift = True
    return any_shift


def _parent_sibling_clusters(arena: LayoutArena, parent_id: str) -> List[_Cluster]:
    grandparent_union_id = arena.model.child_to_parent_union.get(parent_id)
    grandparent_union = arena.model.unions.get(grandparent_union_id) if grandparent_union_id else None
    if grandparent_union is None or len(grandparent_union.child_ids) < 2:
        return []
    clusters = []
    for sibling_id, block in child_blocks_of_union(arena, grandparent_union.id):
        if block.generation != -1:
            continue
        min_x, max_x = subtree_extent(arena, block.id)
        union = arena.model.unions.get(block.root_union_id)
        clusters.append(
            _Cluster(
                block.id,
                sibling_id,
                block.x_center,
                min_x,
                max_x,
                has_children=bool(union and union.child_ids),
            )
        )
    return clusters


def _focus_parents(arena: LayoutArena) -> List[str]:
    union_id = arena.model.child_to_parent_union.get(arena.focus_person_id)
    union = arena.model.unions.get(union_id) if union_id else None
    return union.partners() if union else []


def enforce_sibling_family_non_interleaving(arena: LayoutArena, config: LayoutConfig) -> None:
    """Keep aunt and uncle families from sitting inside each other's clusters."""
    parent_ids = _focus_parents(arena)
    spouse_parents = spouse_parent_block(arena)
    if spouse_parents is not None:
        parent_ids += arena.model.unions[spouse_parents.root_union_id].partners()
    for parent_id in parent_ids:
        siblings = _parent_sibling_clusters(arena, parent_id)
        if len(siblings) < 2:
            continue
        siblings.sort(key=lambda item: item.x_center)
        for _ in range(5):
            shifted = False
            for i in range(len(siblings) - 1):
                left, right = siblings[i], siblings[i + 1]
                overlap = left.max_x + config.horizontal_gap - right.min_x
                if overlap <= EPSILON:
                    continue
                if not left.has_children and right.has_children:
                    shift_block_subtree(arena, left.block_id, -overlap)
                    left.shift(-overlap)
                else:
                    for sibling in siblings[i + 1:]:
                        shift_block_subtree(arena, sibling.block_id, overlap)
                        sibling.shift(overlap)
                shifted = True
            if not shifted:
                break


def compact_sibling_family_clusters(arena: LayoutArena, config: LayoutConfig) -> None:
    """Pull aunt and uncle family clusters together as rigid units."""
    span = _focus_sibling_span(arena, focus_sibling_block_ids(arena), config)
    min_gap = config.horizontal_gap * 2
    for parent_id in _focus_parents(arena):
        clusters = _parent_sibling_clusters(arena, parent_id)
        if len(clusters) < 2:
            continue
        clusters.sort(key=lambda item: item.min_x)
        for left, right in zip(clusters, clusters[1:]):
            # The focus parent's cluster carries the focus subtree and stays put.
            if right.person_id == parent_id:
                continue
            excess = right.min_x - left.max_x - min_gap
            if excess <= 1:
                continue
            pull = _cluster_safe_pull(arena, right.block_id, excess, span, config)
            if pull <= 1:
                continue
            shift_block_subtree(arena, right.block_id, -pull)
            right.shift(-pull)


def _cluster_safe_pull(
    arena: LayoutArena,
    block_id: str,
    max_pull: float,
    focus_span: Tuple[float, float] | None,
    config: LayoutConfig,
) -> float:
    subtree = descendant_block_ids(arena, block_id)
    members = set(subtree)
    pull = max_pull
    for sub_id in subtree:
        sub_block = arena.blocks[sub_id]
        sub_left, _ = card_extent(sub_block, arena, config)
        for other_id, other in arena.blocks.items():
            if other_id in members or other.generation != sub_block.generation:
                continue
            _, other_right = card_extent(other, arena, config)
            if other_right > sub_left:
                continue
            pull = min(pull, sub_left - other_right - config.horizontal_gap)
        if focus_span is not None and sub_block.generation == 0:
            pull = min(pull, sub_left - (focus_span[1] + config.horizontal_gap))
    return pull


def resolve_parent_generation_overlaps(arena: LayoutArena, config: LayoutConfig) -> None:
    """Separate overlapping generation -1 blocks of different families.

    The block carrying the focus subtree never moves; the other one is pushed
    away from it together with its descendants.
    """
    blocks = blocks_by_generation(arena).get(-1, [])
    if len(blocks) < 2:
        return
    for _ in range(MAX_OVERLAP_ITERATIONS):
        moved = False
        entries = sorted(blocks, key=lambda block: card_extent(block, arena, config)[0])
        for left, right in zip(entries, entries[1:]):
            overlap = (
                card_extent(left, arena, config)[1]
                + config.horizontal_gap
                - card_extent(right, arena, config)[0]
            )
            if overlap <= EPSILON:
                continue
            if right.side is Side.BOTH or (left.side is Side.WIFE and right.side is Side.HUSBAND):
                shift_block_subtree(arena, left.id, -(overlap + EPSILON))
            else:
                shift_block_subtree(arena, right.id, overlap + EPSILON)
            moved = True
        if not moved:
            break


def _oriented(extent: Tuple[float, float], direction: float) -> Tuple[float, float]:
    # Near and far edge measured toward the spouse.
    if direction > 0:
        return extent
    return -extent[1], -extent[0]


def _spouse_of_focus(arena: LayoutArena) -> Tuple[str | None, float]:
    focus_block = arena.focus_block
    if focus_block is None:
        return None, 1.0
    union = arena.model.unions[focus_block.root_union_id]
    if union.partner_b is None:
        return None, 1.0
    if union.partner_a == arena.focus_person_id:
        return union.partner_b, 1.0
    return union.partner_a, -1.0


def spouse_parent_block(arena: LayoutArena) -> FamilyBlock | None:
    """Generation -1 block of the spouse's parents, unless it is also the focus person's."""
    spouse_id, _ = _spouse_of_focus(arena)
    if spouse_id is None:
        return None
    block = arena.parent_block_of_person(spouse_id)
    if block is None or block.generation != -1:
        return None
    own = arena.parent_block_of_person(arena.focus_person_id)
    if own is not None and own.id == block.id:
        return None
    return block


def arrange_partner_families(arena: LayoutArena, config: LayoutConfig) -> None:
    """Seat the parents of both focus partners, with their families, on their own side.

    The focus person's parents move away from the spouse until their compact
    ancestor tree stays within the focus person's card. Going outward on the
    spouse's side follow: childless siblings of the focus person's nearer
    parent, the spouse's parents with their other descendants, the siblings
    of the spouse's parents, and last the nearer parent's siblings that have
    children. Every cluster sits one gap beyond the previous one.
    """
    spouse_parents = spouse_parent_block(arena)
    if spouse_parents is None:
        return
    focus_block = arena.focus_block
    _, direction = _spouse_of_focus(arena)
    own = arena.parent_block_of_person(arena.focus_person_id)
    if own is not None and own.generation != -1:
        own = None
    gap = config.horizontal_gap
    focus_u = direction * focus_block.x_center
    anchors = [block for block in (own, spouse_parents) if block is not None]
    reach = {
        anchor.id: _oriented(ancestor_tree_offsets(arena, anchor, trees, config), direction)
        for anchor, trees in layout_ancestor_trees(arena, anchors, config)
    }

    if own is not None:
        limit = focus_u - config.anchor_offset + config.card_width / 2
        excess = direction * own.x_center + reach[own.id][1] - limit
        if excess > EPSILON:
            own.shift(-direction * excess)
            update_children_center(arena, own)
            update_block_extent_from_children(arena, own)

    locked = set(descendant_block_ids(arena, focus_block.id))
    locked.update(block.id for block in anchors)
    claimed = set(locked)
    inner, outer = _own_collaterals(arena, own, direction, claimed)
    spouse_cluster = [
        block_id
        for block_id in descendant_block_ids(arena, spouse_parents.id)
        if block_id not in claimed
    ]
    claimed.update(spouse_cluster)
    spouse_collaterals = _spouse_collaterals(arena, spouse_parents, direction, claimed)
    moving = claimed - locked
    moving.add(spouse_parents.id)

    boundary: Dict[int, float] = {}
    for block in arena.blocks.values():
        if block.id in moving or block.generation < -1:
            continue
        far = _oriented(card_extent(block, arena, config), direction)[1]
        boundary[block.generation] = max(boundary.get(block.generation, float("-inf")), far)

    for cluster in inner:
        _push_against(arena, cluster, boundary, direction, config)
    _push_against(arena, spouse_cluster, boundary, direction, config)

    bounds = children_couple_bounds(arena, spouse_parents.root_union_id)
    center = direction * spouse_parents.x_center
    if bounds is not None:
        center = direction * (bounds[0] + bounds[1]) / 2
    floor = focus_u + config.anchor_offset - config.card_width / 2
    if own is not None:
        floor = max(floor, direction * own.x_center + reach[own.id][1] + gap)
    center = max(center, floor - reach[spouse_parents.id][0])
    near, far = _oriented(card_extent(spouse_parents, arena, config), direction)
    current = direction * spouse_parents.x_center
    if -1 in boundary:
        center = max(center, boundary[-1] + gap - (near - current))
    spouse_parents.shift(direction * center - spouse_parents.x_center)
    update_children_center(arena, spouse_parents)
    update_block_extent_from_children(arena, spouse_parents)
    boundary[-1] = max(boundary.get(-1, float("-inf")), far - current + center)

    for cluster in spouse_collaterals + outer:
        _push_against(arena, cluster, boundary, direction, config)


def _own_collaterals(
    arena: LayoutArena, own: FamilyBlock | None, direction: float, claimed: Set[str]
) -> Tuple[List[List[str]], List[List[str]]]:
    # Siblings of the focus person's parent nearer the spouse: childless, then with children.
    if own is None:
        return [], []
    union = arena.model.unions[own.root_union_id]
    if union.partner_b is None:
        return [], []
    nearer = union.partner_b if direction > 0 else union.partner_a
    inner: List[List[str]] = []
    outer: List[List[str]] = []
    for cluster in _collateral_clusters(arena, nearer, direction, claimed):
        union_id = arena.blocks[cluster[0]].root_union_id
        (outer if arena.model.unions[union_id].child_ids else inner).append(cluster)
    return inner, outer


def _spouse_collaterals(
    arena: LayoutArena, spouse_parents: FamilyBlock, direction: float, claimed: Set[str]
) -> List[List[str]]:
    partners = arena.model.unions[spouse_parents.root_union_id].partners()
    if direction < 0:
        partners.reverse()
    clusters: List[List[str]] = []
    for partner_id in partners:
        clusters.extend(_collateral_clusters(arena, partner_id, direction, claimed))
    return clusters


def _collateral_clusters(
    arena: LayoutArena, parent_id: str, direction: float, claimed: Set[str]
) -> List[List[str]]:
    """Sibling blocks of ``parent_id`` with their descendants, nearest to the spouse first."""
    siblings = sorted(
        _parent_sibling_clusters(arena, parent_id), key=lambda item: direction * item.x_center
    )
    clusters: List[List[str]] = []
    for sibling in siblings:
        if sibling.block_id in claimed:
            continue
        members = [b for b in descendant_block_ids(arena, sibling.block_id) if b not in claimed]
        claimed.update(members)
        clusters.append(members)
    return clusters


def _push_against(
    arena: LayoutArena,
    block_ids: List[str],
    boundary: Dict[int, float],
    direction: float,
    config: LayoutConfig,
) -> None:
    """Move the blocks rigidly so they sit exactly one gap beyond ``boundary``."""
    extents: Dict[int, Tuple[float, float]] = {}
    for block_id in block_ids:
        block = arena.blocks[block_id]
        near, far = _oriented(card_extent(block, arena, config), direction)
        if block.generation in extents:
            near = min(near, extents[block.generation][0])
            far = max(far, extents[block.generation][1])
        extents[block.generation] = (near, far)
    shifts = [
        boundary[gen] + config.horizontal_gap - near
        for gen, (near, _) in extents.items()
        if gen in boundary
    ]
    dx = max(shifts) if shifts else 0.0
    for block_id in block_ids:
        arena.blocks[block_id].shift(direction * dx)
    for gen, (_, far) in extents.items():
        boundary[gen] = max(boundary.get(gen, float("-inf")), far + dx)

from __future__ import annotations

from typing import Dict, List, Tuple

from domain.models import Branch, FamilyBlock, LayoutArena, LayoutConfig, UnionNode
from domain.services.block_geometry import card_extent


def build_branches(arena: LayoutArena) -> None:
    """Partition descendant blocks into nested sibling corridors.

    Branching starts at every block of generation >= 0 whose parent block is
    absent or an ancestor block: the focus block and each cousin family head.
    """
    arena.branches.clear()
    arena.union_to_branches.clear()
    arena.block_to_branch.clear()
    arena.top_level_branch_ids.clear()

    roots = [
        block
        for block in arena.blocks.values()
        if block.generation >= 0 and not _has_descendant_parent(arena, block)
    ]
    focus_block = arena.focus_block
    roots.sort(key=lambda block: (block is not focus_block, block.id))
    for root in roots:
        arena.top_level_branch_ids.extend(_split_children(arena, root, None))


def _has_descendant_parent(arena: LayoutArena, block: FamilyBlock) -> bool:
    parent = arena.blocks.get(block.parent_block_id) if block.parent_block_id else None
    return parent is not None and parent.generation >= 0


def _qualifying_children(arena: LayoutArena, block: FamilyBlock) -> List[FamilyBlock]:
    return [
        arena.blocks[child_id]
        for child_id in block.child_block_ids
        if child_id in arena.blocks and arena.blocks[child_id].generation >= 0
    ]


def _split_children(
    arena: LayoutArena, block: FamilyBlock, parent_branch: Branch | None
) -> List[str]:
    children = _qualifying_children(arena, block)
    if len(children) < 2:
        return []

    model = arena.model
    parent_unions = [model.unions[block.root_union_id]] + [
        model.unions[partner.union_id] for partner in block.extra_partners
    ]
    groups: Dict[str, List[Tuple[str, FamilyBlock]]] = {}
    for child in children:
        child_union = model.unions[child.root_union_id]
        parent_union, child_person_id = _child_link(parent_unions, child_union)
        groups.setdefault(parent_union.id, []).append((child_person_id, child))

    branch_ids: List[str] = []
    for parent_union_id, members in groups.items():
        union_branch_ids: List[str] = []
        for index, (child_person_id, child) in enumerate(members):
            branch = Branch(
                id=f"branch_{parent_union_id}_{index}",
                parent_union_id=parent_union_id,
                child_person_id=child_person_id,
                child_union_id=child.root_union_id,
                sibling_index=index,
                parent_branch_id=parent_branch.id if parent_branch else None,
            )
            arena.branches[branch.id] = branch
            union_branch_ids.append(branch.id)
            _collect(arena, child, branch)
        arena.union_to_branches[parent_union_id] = union_branch_ids
        branch_ids.extend(union_branch_ids)

    if parent_branch is not None:
        parent_branch.child_branch_ids.extend(branch_ids)
    return branch_ids


def _child_link(
    parent_unions: List[UnionNode], child_union: UnionNode
) -> Tuple[UnionNode, str]:
    for parent_union in parent_unions:
        for person_id in parent_union.child_ids:
            if person_id in child_union.partners():
                return parent_union, person_id
    return parent_unions[0], child_union.partner_a


def _collect(arena: LayoutArena, start: FamilyBlock, branch: Branch) -> None:
    # Walk single-child chains inside ``branch``; fork into sub-branches at
    # the first block with two or more qualifying children.
    stack: List[Tuple[FamilyBlock, Branch]] = [(start, branch)]
    visited = set()
    while stack:
        block, owner = stack.pop()
        if block.id in visited or block.generation < 0:
            continue
        visited.add(block.id)
        _assign(arena, block, owner)

        children = _qualifying_children(arena, block)
        if len(children) == 1:
            stack.append((children[0], owner))
            continue
        for sub_branch_id in _split_children(arena, block, owner):
            for block_id in arena.branches[sub_branch_id].block_ids:
                if block_id not in owner.block_ids:
                    owner.block_ids.append(block_id)


def _assign(arena: LayoutArena, block: FamilyBlock, branch: Branch) -> None:
    if block.id not in branch.block_ids:
        branch.block_ids.append(block.id)
    arena.block_to_branch[block.id] = branch.id


def compute_branch_bounds(arena: LayoutArena, config: LayoutConfig) -> None:
    for branch in arena.branches.values():
        extents = [
            card_extent(arena.blocks[block_id], arena, config)
            for block_id in branch.block_ids
            if block_id in arena.blocks
        ]
        if not extents:
            continue
        branch.min_x = min(left for left, _ in extents)
        branch.max_x = max(right for _, right in extents)

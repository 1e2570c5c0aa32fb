from __future__ import annotations

from functools import cmp_to_key
from typing import Dict, Iterable, List, Set, Tuple

from domain.models import (
    FamilyData,
    GenerationalModel,
    GraphSelection,
    LayoutModel,
    ParentChildEdge,
    Partnership,
    PersonNode,
    UnionNode,
)


def union_id_for(partner_a: str, partner_b: str | None) -> str:
    if partner_b is None:
        return f"union_{partner_a}_single"
    first, second = sorted((partner_a, partner_b))
    return f"union_{first}_{second}"


def build_layout_model(
    data: FamilyData,
    selection: GraphSelection,
    focus_person_id: str,
) -> LayoutModel:
    model = LayoutModel()
    assigned: Set[str] = set()

    focus = data.persons.get(focus_person_id)
    focus_parent_ids = set(focus.parent_ids) if focus else set()

    for person_id in sorted(selection.persons):
        person = data.persons.get(person_id)
        if person is None:
            continue
        model.persons[person_id] = PersonNode(
            id=person_id,
            first_name=person.first_name,
            last_name=person.last_name,
            gender=person.gender,
            birth_date=person.birth_date,
        )

    for partnership in _sorted_partnerships(data, selection.partnerships, focus_parent_ids):
        if (
            partnership.person1_id not in model.persons
            or partnership.person2_id not in model.persons
        ):
            continue

        if partnership.person1_id in assigned and partnership.person2_id in assigned:
            existing = model.person_to_union.get(partnership.person1_id)
            if existing:
                _merge_children(model, existing, partnership, selection, data)
            continue

        partner_a, partner_b = _order_partners(partnership, data)
        union_id = union_id_for(partner_a, partner_b)
        child_ids = _sort_children(
            (child_id for child_id in partnership.child_ids if child_id in model.persons), data
        )
        model.unions[union_id] = UnionNode(
            id=union_id,
            partner_a=partner_a,
            partner_b=partner_b,
            partnership_id=partnership.id,
            child_ids=child_ids,
        )
        model.person_to_union.setdefault(partner_a, union_id)
        model.person_to_union.setdefault(partner_b, union_id)
        assigned.update((partner_a, partner_b))

        for child_id in child_ids:
            model.child_to_parent_union[child_id] = union_id
            model.edges.append(ParentChildEdge(union_id, child_id))

    for person_id in sorted(model.persons):
        if person_id in assigned:
            continue
        person = data.persons[person_id]
        union_id = union_id_for(person_id, None)
        child_ids = _sort_children(_single_parent_children(person_id, data, model), data)
        model.unions[union_id] = UnionNode(
            id=union_id,
            partner_a=person_id,
            partner_b=None,
            partnership_id=None,
            child_ids=child_ids,
        )
        model.person_to_union[person_id] = union_id
        assigned.add(person_id)
        for child_id in child_ids:
            if child_id not in model.child_to_parent_union:
                model.child_to_parent_union[child_id] = union_id
                model.edges.append(ParentChildEdge(union_id, child_id))

    return model


def child_unions(model: LayoutModel, gen_model: GenerationalModel, union_id: str) -> List[str]:
    union = model.unions.get(union_id)
    if union is None:
        return []
    parent_gen = gen_model.union_gen.get(union_id, 0)
    seen: Set[str] = set()
    result: List[str] = []
    for child_id in union.child_ids:
        child_union_id = model.person_to_union.get(child_id)
        if child_union_id is None or child_union_id in seen:
            continue
        child_gen = gen_model.union_gen.get(child_union_id)
        if child_gen is None or child_gen <= parent_gen:
            continue
        seen.add(child_union_id)
        result.append(child_union_id)
    return result


def _sorted_partnerships(
    data: FamilyData, partnership_ids: Iterable[str], focus_parent_ids: Set[str]
) -> List[Partnership]:
    partnerships = [data.partnerships[pid] for pid in partnership_ids if pid in data.partnerships]

    def rank(partnership: Partnership) -> Tuple[int, int, int]:
        is_focus_parents = (
            partnership.person1_id in focus_parent_ids
            and partnership.person2_id in focus_parent_ids
        )
        return (
            0 if is_focus_parents else 1,
            0 if partnership.is_primary else 1,
            1 if partnership.is_terminated else 0,
        )

    def compare(left: Partnership, right: Partnership) -> int:
        left_rank, right_rank = rank(left), rank(right)
        if left_rank != right_rank:
            return -1 if left_rank < right_rank else 1
        # Newest start date first; undated partnerships last.
        left_date, right_date = left.start_date or "", right.start_date or ""
        if left_date != right_date:
            return -1 if left_date > right_date else 1
        if left.id != right.id:
            return -1 if left.id < right.id else 1
        return 0

    return sorted(partnerships, key=cmp_to_key(compare))


def _order_partners(partnership: Partnership, data: FamilyData) -> Tuple[str, str]:
    first_id, second_id = partnership.person1_id, partnership.person2_id
    first = data.persons.get(first_id)
    second = data.persons.get(second_id)
    first_gender = first.gender if first else "unknown"
    second_gender = second.gender if second else "unknown"
    if first_gender == "male" and second_gender == "female":
        return first_id, second_id
    if first_gender == "female" and second_gender == "male":
        return second_id, first_id
    return (first_id, second_id) if first_id < second_id else (second_id, first_id)


def _sort_children(child_ids: Iterable[str], data: FamilyData) -> List[str]:
    def sort_key(child_id: str) -> Tuple[str, str]:
        person = data.persons.get(child_id)
        return ((person.birth_date or "") if person else "", child_id)

    return sorted(dict.fromkeys(child_ids), key=sort_key)


def _merge_children(
    model: LayoutModel,
    union_id: str,
    partnership: Partnership,
    selection: GraphSelection,
    data: FamilyData,
) -> None:
    union = model.unions.get(union_id)
    if union is None:
        return
    for child_id in partnership.child_ids:
        if child_id not in model.persons or child_id in union.child_ids:
            continue
        union.child_ids.append(child_id)
        if child_id not in model.child_to_parent_union:
            model.child_to_parent_union[child_id] = union_id
            model.edges.append(ParentChildEdge(union_id, child_id))
    union.child_ids = _sort_children(union.child_ids, data)


def _single_parent_children(person_id: str, data: FamilyData, model: LayoutModel) -> List[str]:
    person = data.persons[person_id]
    selected = [child_id for child_id in person.child_ids if child_id in model.persons]
    if not person.partnerships:
        return [
            child_id
            for child_id in selected
            if child_id in data.persons and person_id in data.persons[child_id].parent_ids
        ]
    own_partnership_children: Dict[str, bool] = {}
    for partnership in data.partnerships.values():
        if person_id in (partnership.person1_id, partnership.person2_id):
            for child_id in partnership.child_ids:
                own_partnership_children[child_id] = True
    return [child_id for child_id in selected if child_id in own_partnership_children]


def default_selection(
    data: FamilyData, focus_person_id: str, include_spouse_ancestors: bool = False
) -> GraphSelection:
    """Select the focus person's family as shown by default.

    Covers the focus person and partners, all direct ancestors with the
    siblings of the focus person's parents, and every descendant of the
    focus person, the siblings, and those aunts and uncles, each with partners.
    """
    focus = data.persons.get(focus_person_id)
    if focus is None:
        return GraphSelection()

    persons: Set[str] = {focus_person_id}
    partners = _partners_of(data, focus_person_id)
    persons.update(partners)

    ancestor_roots = [focus_person_id]
    if include_spouse_ancestors:
        ancestor_roots.extend(sorted(partners))
    for root_id in ancestor_roots:
        persons.update(_ancestors_of(data, root_id))

    family_heads: List[str] = [focus_person_id]
    family_heads.extend(_siblings_of(data, focus_person_id))
    for parent_id in focus.parent_ids:
        family_heads.extend(_siblings_of(data, parent_id))
    for head_id in family_heads:
        persons.update(_descendants_with_partners(data, head_id))

    partnerships = {
        partnership.id
        for partnership in data.partnerships.values()
        if partnership.person1_id in persons and partnership.person2_id in persons
    }
    return GraphSelection(persons=persons, partnerships=partnerships)


def _partners_of(data: FamilyData, person_id: str) -> Set[str]:
    result: Set[str] = set()
    for partnership in data.partnerships.values():
        if partnership.person1_id == person_id and partnership.person2_id in data.persons:
            result.add(partnership.person2_id)
        elif partnership.person2_id == person_id and partnership.person1_id in data.persons:
            result.add(partnership.person1_id)
    return result


def _ancestors_of(data: FamilyData, person_id: str) -> Set[str]:
    seen: Set[str] = set()
    stack = [person_id]
    while stack:
        person = data.persons.get(stack.pop())
        if person is None:
            continue
        for parent_id in person.parent_ids:
            if parent_id in data.persons and parent_id not in seen:
                seen.add(parent_id)
                stack.append(parent_id)
    return seen


def _siblings_of(data: FamilyData, person_id: str) -> List[str]:
    person = data.persons.get(person_id)
    if person is None:
        return []
    siblings: Dict[str, None] = {}
    for parent_id in person.parent_ids:
        parent = data.persons.get(parent_id)
        if parent is None:
            continue
        for child_id in parent.child_ids:
            if child_id != person_id and child_id in data.persons:
                siblings[child_id] = None
    return sorted(siblings)


def _descendants_with_partners(data: FamilyData, person_id: str) -> Set[str]:
    seen: Set[str] = set()
    stack = [person_id]
    while stack:
        current = stack.pop()
        if current in seen or current not in data.persons:
            continue
        seen.add(current)
        seen.update(_partners_of(data, current))
        stack.extend(data.persons[current].child_ids)
    return seen

from __future__ import annotations

import logging
from collections import deque
from typing import Deque, Dict, List, Set, Tuple

from domain.models import GenerationalModel, GenerationBand, LayoutModel

logger = logging.getLogger(__name__)


def assign_generations(model: LayoutModel, focus_person_id: str) -> GenerationalModel | None:
    """Label persons and unions with generations relative to the focus person.

    Breadth-first from the focus person keeps the direct-line generation for
    anyone reachable by more than one path. Returns ``None`` when the focus
    person is not part of the model.
    """
    if focus_person_id not in model.persons:
        logger.warning("Focus person %s is not in the layout model", focus_person_id)
        return None

    person_gen: Dict[str, int] = {}
    union_gen: Dict[str, int] = {}
    queue: Deque[Tuple[str, int]] = deque([(focus_person_id, 0)])
    visited: Set[str] = {focus_person_id}

    while queue:
        person_id, gen = queue.popleft()
        person_gen[person_id] = gen

        union_id = model.person_to_union.get(person_id)
        union = model.unions.get(union_id) if union_id else None
        if union is not None:
            union_gen[union.id] = gen
            partner_id = union.partner_b if union.partner_a == person_id else union.partner_a
            if partner_id and partner_id not in visited:
                visited.add(partner_id)
                person_gen[partner_id] = gen
            for child_id in union.child_ids:
                if child_id not in visited:
                    visited.add(child_id)
                    queue.append((child_id, gen + 1))

        parent_union_id = model.child_to_parent_union.get(person_id)
        parent_union = model.unions.get(parent_union_id) if parent_union_id else None
        if parent_union is not None:
            for parent_id in parent_union.partners():
                if parent_id not in visited:
                    visited.add(parent_id)
                    queue.append((parent_id, gen - 1))

    _infer_unreached(model, person_gen, union_gen)

    for person_id in model.persons:
        if person_id not in person_gen:
            person_gen[person_id] = 0
            union_id = model.person_to_union.get(person_id)
            if union_id and union_id not in union_gen:
                union_gen[union_id] = 0

    bands: Dict[int, GenerationBand] = {}
    min_gen = 0
    max_gen = 0
    for person_id, gen in person_gen.items():
        min_gen = min(min_gen, gen)
        max_gen = max(max_gen, gen)
        bands.setdefault(gen, GenerationBand()).persons.append(person_id)
    for union_id, gen in union_gen.items():
        band = bands.setdefault(gen, GenerationBand())
        if union_id not in band.unions:
            band.unions.append(union_id)

    return GenerationalModel(
        model=model,
        person_gen=person_gen,
        union_gen=union_gen,
        bands=bands,
        min_gen=min_gen,
        max_gen=max_gen,
    )


def _infer_unreached(
    model: LayoutModel, person_gen: Dict[str, int], union_gen: Dict[str, int]
) -> None:
    changed = True
    while changed:
        changed = False
        for edge in model.edges:
            parent_gen = union_gen.get(edge.parent_union_id)
            child_gen = person_gen.get(edge.child_person_id)
            if parent_gen is not None and child_gen is None:
                person_gen[edge.child_person_id] = parent_gen + 1
                child_union_id = model.person_to_union.get(edge.child_person_id)
                if child_union_id and child_union_id not in union_gen:
                    union_gen[child_union_id] = parent_gen + 1
                changed = True
            if child_gen is not None and parent_gen is None:
                union_gen[edge.parent_union_id] = child_gen - 1
                parent_union = model.unions.get(edge.parent_union_id)
                if parent_union is not None:
                    for parent_id in parent_union.partners():
                        person_gen.setdefault(parent_id, child_gen - 1)
                changed = True

        # A second partnership of someone already placed sits on their row.
        for union_id, union in model.unions.items():
            if union_id in union_gen:
                continue
            known = [person_gen[pid] for pid in union.partners() if pid in person_gen]
            if not known:
                continue
            union_gen[union_id] = known[0]
            for partner_id in union.partners():
                person_gen.setdefault(partner_id, known[0])
            changed = True

        for person_id in model.persons:
            if person_id in person_gen:
                continue
            union_id = model.person_to_union.get(person_id)
            union = model.unions.get(union_id) if union_id else None
            if union is None:
                continue
            for child_id in union.child_ids:
                child_gen = person_gen.get(child_id)
                if child_gen is None:
                    continue
                person_gen[person_id] = child_gen - 1
                union_gen[union.id] = child_gen - 1
                for partner_id in union.partners():
                    person_gen.setdefault(partner_id, child_gen - 1)
                changed = True
                break


def validate_generations(gen_model: GenerationalModel) -> List[str]:
    errors: List[str] = []
    model = gen_model.model
    for edge in model.edges:
        parent_gen = gen_model.union_gen.get(edge.parent_union_id)
        child_gen = gen_model.person_gen.get(edge.child_person_id)
        if parent_gen is None or child_gen is None:
            errors.append(
                f"Missing generation for edge {edge.parent_union_id} -> {edge.child_person_id}"
            )
            continue
        if child_gen != parent_gen + 1:
            errors.append(
                f"Generation mismatch: union {edge.parent_union_id} (gen {parent_gen}) -> "
                f"child {edge.child_person_id} (gen {child_gen}), expected gen {parent_gen + 1}"
            )

    for union_id, union in model.unions.items():
        gen_a = gen_model.person_gen.get(union.partner_a)
        gen_b = gen_model.person_gen.get(union.partner_b) if union.partner_b else gen_a
        if gen_a != gen_b:
            errors.append(
                f"Partners in union {union_id} have different generations: "
                f"{union.partner_a} (gen {gen_a}) vs {union.partner_b} (gen {gen_b})"
            )
        union_gen = gen_model.union_gen.get(union_id)
        if union_gen != gen_a:
            errors.append(f"Union {union_id} gen ({union_gen}) doesn't match partner gen ({gen_a})")
    return errors

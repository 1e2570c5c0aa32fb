from __future__ import annotations

import copy
from functools import lru_cache
from pathlib import Path
from typing import Dict, Iterable, List

from adapters.filesystem.family_repository import FileSystemFamilyRepository
from domain.models import FamilyData, GraphSelection, LayoutArena, LayoutConfig
from domain.services.assign_generations import assign_generations
from domain.services.build_branches import build_branches, compute_branch_bounds
from domain.services.build_layout_model import build_layout_model
from domain.services.measure_subtrees import measure_subtrees
from domain.services.place_x import place_x


@lru_cache(maxsize=1)
def repo_root() -> Path:
    for parent in Path(__file__).resolve().parents:
        if (parent / "pyproject.toml").exists():
            return parent
    raise RuntimeError("Repository root not found")


def family_fixture_path(name: str) -> Path:
    return repo_root() / "examples" / "families" / name


def load_family_fixture(name: str) -> FamilyData:
    return FileSystemFamilyRepository().load(family_fixture_path(name))


class FamilyBuilder:
    """Small fluent builder that keeps parent/child/partnership links consistent."""

    def __init__(self) -> None:
        self.persons: Dict[str, dict] = {}
        self.partnerships: Dict[str, dict] = {}

    def person(
        self, person_id: str, gender: str = "unknown", birth_date: str | None = None
    ) -> FamilyBuilder:
        self.persons[person_id] = {
            "id": person_id,
            "first_name": person_id.title(),
            "gender": gender,
            "birth_date": birth_date,
            "parent_ids": [],
            "partnerships": [],
            "child_ids": [],
        }
        return self

    def couple(
        self,
        first: str,
        second: str,
        children: Iterable[str] = (),
        status: str | None = "married",
        start_date: str | None = None,
        is_primary: bool = False,
        partnership_id: str | None = None,
    ) -> FamilyBuilder:
        partnership_id = partnership_id or f"p_{first}_{second}"
        child_ids = list(children)
        self.partnerships[partnership_id] = {
            "id": partnership_id,
            "person1_id": first,
            "person2_id": second,
            "child_ids": child_ids,
            "status": status,
            "start_date": start_date,
            "is_primary": is_primary,
        }
        for partner_id in (first, second):
            self.persons[partner_id]["partnerships"].append(partnership_id)
        for child_id in child_ids:
            self._link(first, child_id)
            self._link(second, child_id)
        return self

    def single_parent(self, parent: str, children: Iterable[str]) -> FamilyBuilder:
        for child_id in children:
            self._link(parent, child_id)
        return self

    def _link(self, parent_id: str, child_id: str) -> None:
        parent = self.persons[parent_id]
        child = self.persons[child_id]
        if child_id not in parent["child_ids"]:
            parent["child_ids"].append(child_id)
        if parent_id not in child["parent_ids"]:
            child["parent_ids"].append(parent_id)

    def build(self) -> FamilyData:
        return FamilyData.model_validate(
            {
                "persons": copy.deepcopy(self.persons),
                "partnerships": copy.deepcopy(self.partnerships),
            }
        )


def nuclear_family() -> FamilyData:
    """Two parents with three children; ``ann`` is the eldest."""
    return (
        FamilyBuilder()
        .person("dad", "male", "1950-03-01")
        .person("mom", "female", "1952-07-12")
        .person("ann", "female", "2000-01-01")
        .person("bob", "male", "2002-01-01")
        .person("cid", "male", "2004-01-01")
        .couple("dad", "mom", children=["ann", "bob", "cid"])
        .build()
    )


def extended_family() -> FamilyData:
    """Focus ``me`` with wife and three kids, parents, one uncle, one aunt and four grandparents.

    The uncle is older than ``dad`` and the aunt younger than ``mom``, so the
    uncle's family sits left of the focus and the aunt's family right of it.
    """
    builder = FamilyBuilder()
    people = [
        ("grandpa_d", "male", "1925-01-01"),
        ("grandma_d", "female", "1927-01-01"),
        ("grandpa_m", "male", "1930-01-01"),
        ("grandma_m", "female", "1932-01-01"),
        ("uncle", "male", "1950-01-01"),
        ("uncle_wife", "female", "1952-01-01"),
        ("dad", "male", "1955-01-01"),
        ("mom", "female", "1957-01-01"),
        ("aunt", "female", "1960-01-01"),
        ("aunt_husband", "male", "1958-01-01"),
        ("cousin_u1", "female", "1975-01-01"),
        ("cousin_u2", "male", "1978-01-01"),
        ("me", "male", "1980-01-01"),
        ("wife", "female", "1982-01-01"),
        ("cousin_a1", "male", "1985-01-01"),
        ("cousin_a2", "female", "1987-01-01"),
        ("kid1", "female", "2010-01-01"),
        ("kid2", "male", "2012-01-01"),
        ("kid3", "female", "2015-01-01"),
    ]
    for person_id, gender, birth_date in people:
        builder.person(person_id, gender, birth_date)
    return (
        builder.couple("grandpa_d", "grandma_d", children=["uncle", "dad"])
        .couple("grandpa_m", "grandma_m", children=["mom", "aunt"])
        .couple("uncle", "uncle_wife", children=["cousin_u1", "cousin_u2"])
        .couple("dad", "mom", children=["me"])
        .couple("aunt_husband", "aunt", children=["cousin_a1", "cousin_a2"])
        .couple("me", "wife", children=["kid1", "kid2", "kid3"])
        .build()
    )


def pedigree_family() -> FamilyData:
    """Single focus ``me`` with parents, four grandparents and eight great-grandparents."""
    builder = FamilyBuilder().person("me", "male", "1990-01-01")
    builder.person("dad", "male", "1960-01-01").person("mom", "female", "1962-01-01")
    builder.couple("dad", "mom", children=["me"])
    grandparents = {
        "dad": ("gpd", "gmd"),
        "mom": ("gpm", "gmm"),
    }
    for child_id, (grandpa, grandma) in grandparents.items():
        builder.person(grandpa, "male", "1930-01-01").person(grandma, "female", "1932-01-01")
        builder.couple(grandpa, grandma, children=[child_id])
    for child_id in ("gpd", "gmd", "gpm", "gmm"):
        great_grandpa, great_grandma = f"{child_id}_father", f"{child_id}_mother"
        builder.person(great_grandpa, "male", "1900-01-01")
        builder.person(great_grandma, "female", "1902-01-01")
        builder.couple(great_grandpa, great_grandma, children=[child_id])
    return builder.build()


def partner_family() -> FamilyData:
    """Focus ``me`` and ``wife``, each with both parents and nobody else."""
    return (
        FamilyBuilder()
        .person("me", "male", "1980-01-01")
        .person("wife", "female", "1982-01-01")
        .person("dad", "male", "1950-01-01")
        .person("mom", "female", "1952-01-01")
        .person("wdad", "male", "1951-01-01")
        .person("wmom", "female", "1953-01-01")
        .couple("dad", "mom", children=["me"])
        .couple("wdad", "wmom", children=["wife"])
        .couple("me", "wife")
        .build()
    )


def spouse_family() -> FamilyData:
    """Focus ``me`` with a sister and both partners' families.

    ``dad`` has an older brother with one child and both of ``dad``'s and
    ``mom``'s parents are known. The wife has a younger brother, and her
    father's parents are known.
    """
    builder = FamilyBuilder()
    people = [
        ("gpd", "male", "1925-01-01"),
        ("gmd", "female", "1927-01-01"),
        ("gpm", "male", "1928-01-01"),
        ("gmm", "female", "1930-01-01"),
        ("wgpa", "male", "1926-01-01"),
        ("wgma", "female", "1929-01-01"),
        ("uncle", "male", "1948-01-01"),
        ("uncle_wife", "female", "1949-01-01"),
        ("dad", "male", "1950-01-01"),
        ("mom", "female", "1952-01-01"),
        ("wdad", "male", "1951-01-01"),
        ("wmom", "female", "1953-01-01"),
        ("cousin", "female", "1975-01-01"),
        ("sister", "female", "1977-01-01"),
        ("me", "male", "1980-01-01"),
        ("wife", "female", "1982-01-01"),
        ("wbro", "male", "1985-01-01"),
        ("kid", "female", "2010-01-01"),
    ]
    for person_id, gender, birth_date in people:
        builder.person(person_id, gender, birth_date)
    return (
        builder.couple("gpd", "gmd", children=["uncle", "dad"])
        .couple("gpm", "gmm", children=["mom"])
        .couple("wgpa", "wgma", children=["wdad"])
        .couple("uncle", "uncle_wife", children=["cousin"])
        .couple("dad", "mom", children=["sister", "me"])
        .couple("wdad", "wmom", children=["wife", "wbro"])
        .couple("me", "wife", children=["kid"])
        .build()
    )


def build_arena(
    data: FamilyData,
    focus_person_id: str,
    config: LayoutConfig | None = None,
    selection: GraphSelection | None = None,
    place: bool = True,
) -> LayoutArena:
    """Run the pipeline up to the initial placement and return the arena."""
    config = config or LayoutConfig()
    model = build_layout_model(data, selection or GraphSelection.everything(data), focus_person_id)
    gen_model = assign_generations(model, focus_person_id)
    assert gen_model is not None
    arena = measure_subtrees(gen_model, focus_person_id, config)
    assert arena is not None
    build_branches(arena)
    if place:
        place_x(arena, config)
        compute_branch_bounds(arena, config)
    return arena


def card_center(arena: LayoutArena, person_id: str, config: LayoutConfig) -> float:
    return arena.person_x[person_id] + config.card_width / 2


def row(arena: LayoutArena, person_ids: List[str]) -> List[float]:
    return [arena.person_x[person_id] for person_id in person_ids]

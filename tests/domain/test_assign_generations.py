from __future__ import annotations

from domain.models import FamilyData, GraphSelection
from domain.services.assign_generations import assign_generations, validate_generations
from domain.services.build_layout_model import build_layout_model
from tests.helpers.family_fixtures import FamilyBuilder


def _gen_model(data: FamilyData, focus: str):
    model = build_layout_model(data, GraphSelection.everything(data), focus)
    return assign_generations(model, focus)


def test_generations_relative_to_focus(extended: FamilyData) -> None:
    gen_model = _gen_model(extended, "me")
    assert gen_model is not None

    expected = {
        "me": 0,
        "wife": 0,
        "cousin_u1": 0,
        "cousin_a2": 0,
        "kid1": 1,
        "dad": -1,
        "mom": -1,
        "uncle": -1,
        "uncle_wife": -1,
        "aunt_husband": -1,
        "grandpa_d": -2,
        "grandma_m": -2,
    }
    for person_id, gen in expected.items():
        assert gen_model.person_gen[person_id] == gen, person_id
    assert gen_model.union_gen["union_me_wife"] == 0
    assert gen_model.union_gen["union_grandma_d_grandpa_d"] == -2
    assert (gen_model.min_gen, gen_model.max_gen) == (-2, 1)
    assert sorted(gen_model.bands[1].persons) == ["kid1", "kid2", "kid3"]
    assert "union_dad_mom" in gen_model.bands[-1].unions
    assert validate_generations(gen_model) == []


def test_generations_seen_from_a_child(extended: FamilyData) -> None:
    gen_model = _gen_model(extended, "kid2")
    assert gen_model is not None
    assert gen_model.person_gen["me"] == -1
    assert gen_model.person_gen["grandpa_m"] == -3
    assert gen_model.min_gen == -3
    assert gen_model.max_gen == 0


def test_unconnected_person_falls_back_to_generation_zero(nuclear: FamilyData) -> None:
    data = nuclear.model_copy(deep=True)
    builder = FamilyBuilder().person("stranger")
    data.persons.update(builder.build().persons)

    gen_model = _gen_model(data, "bob")
    assert gen_model is not None
    assert gen_model.person_gen["stranger"] == 0
    assert gen_model.union_gen["union_stranger_single"] == 0


def test_missing_focus_returns_none(nuclear: FamilyData) -> None:
    model = build_layout_model(nuclear, GraphSelection.everything(nuclear), "ann")
    assert assign_generations(model, "ghost") is None


def test_validate_generations_reports_mismatch(nuclear: FamilyData) -> None:
    gen_model = _gen_model(nuclear, "ann")
    assert gen_model is not None
    gen_model.person_gen["bob"] = 3

    errors = validate_generations(gen_model)
    assert any("Generation mismatch" in error and "bob" in error for error in errors)


def test_second_partnership_shares_the_partner_row() -> None:
    data = (
        FamilyBuilder()
        .person("me", "female")
        .person("dad", "male")
        .person("mom", "female")
        .person("step", "female")
        .person("half")
        .couple("dad", "mom", children=["me"])
        .couple("dad", "step", children=["half"], status="divorced")
        .build()
    )
    gen_model = _gen_model(data, "me")
    assert gen_model is not None

    assert gen_model.person_gen["step"] == -1
    assert gen_model.union_gen["union_dad_step"] == -1
    assert gen_model.person_gen["half"] == 0
    assert validate_generations(gen_model) == []

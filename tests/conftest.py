from __future__ import annotations

import os
from collections.abc import Callable, Generator

import pytest

from adapters.layout.genealogy import GenealogyLayoutEngine
from domain.models import FamilyData, LayoutConfig
from tests.helpers.family_fixtures import (
    extended_family,
    nuclear_family,
    partner_family,
    pedigree_family,
    spouse_family,
)


def _clear_strom_env() -> None:
    for key in list(os.environ):
        if key.startswith("STROM_"):
            os.environ.pop(key, None)


_clear_strom_env()


@pytest.fixture(autouse=True)
def clear_strom_env() -> Generator[None, None, None]:
    _clear_strom_env()
    yield
    _clear_strom_env()


@pytest.fixture
def layout_config() -> LayoutConfig:
    return LayoutConfig()


@pytest.fixture
def layout_config_factory() -> Callable[..., LayoutConfig]:
    def _factory(**overrides: object) -> LayoutConfig:
        return LayoutConfig(**overrides)

    return _factory


@pytest.fixture
def engine(layout_config: LayoutConfig) -> GenealogyLayoutEngine:
    return GenealogyLayoutEngine(layout_config)


@pytest.fixture
def nuclear() -> FamilyData:
    return nuclear_family()


@pytest.fixture
def extended() -> FamilyData:
    return extended_family()


@pytest.fixture
def pedigree() -> FamilyData:
    return pedigree_family()


@pytest.fixture
def partners() -> FamilyData:
    return partner_family()


@pytest.fixture
def spouse_side() -> FamilyData:
    return spouse_family()

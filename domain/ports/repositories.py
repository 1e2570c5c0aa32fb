from __future__ import annotations

from pathlib import Path
from typing import Protocol

from domain.models import FamilyData, LayoutResult


class FamilyRepository(Protocol):
    def load(self, path: Path) -> FamilyData: ...

    def save_result(self, result: LayoutResult, path: Path) -> None: ...

from __future__ import annotations

from typing import Protocol

from domain.models import FamilyData, GraphSelection, LayoutResult


class LayoutEngine(Protocol):
    def compute(
        self,
        data: FamilyData,
        focus_person_id: str,
        selection: GraphSelection | None = None,
    ) -> LayoutResult:
        ...

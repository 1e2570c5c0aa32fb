from __future__ import annotations


class LayoutError(Exception):
    """Base error for the layout pipeline."""


class LayoutInvariantError(LayoutError):
    """Raised in strict mode when a pass would break a layout invariant."""


class FocusPersonNotFoundError(LayoutError):
    def __init__(self, person_id: str) -> None:
        super().__init__(f"Focus person not found: {person_id}")
        self.person_id = person_id

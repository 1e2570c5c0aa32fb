from __future__ import annotations

from pathlib import Path
from typing import Any, Dict

from adapters.filesystem.json_utils import load_json, write_json_atomic
from domain.errors import FocusPersonNotFoundError
from domain.models import FamilyData, LayoutResult, Person
from domain.ports.repositories import FamilyRepository


class FileSystemFamilyRepository(FamilyRepository):
    """Family files are JSON objects with ``persons`` and ``partnerships``.

    Each collection may be a mapping keyed by id or a plain list of records.
    """

    def load(self, path: Path) -> FamilyData:
        content = load_json(path)
        return FamilyData.model_validate(
            {
                "persons": self._keyed(content.get("persons", {})),
                "partnerships": self._keyed(content.get("partnerships", {})),
            }
        )

    def save_result(self, result: LayoutResult, path: Path) -> None:
        write_json_atomic(path, result.to_dict())

    def _keyed(self, records: Any) -> Dict[str, Any]:
        if isinstance(records, dict):
            return records
        if isinstance(records, list):
            return {str(record.get("id", "")): record for record in records if isinstance(record, dict)}
        msg = f"Expected a list or mapping of records, got {type(records).__name__}"
        raise ValueError(msg)


def find_person(data: FamilyData, person_id: str) -> Person:
    person = data.persons.get(person_id)
    if person is None:
        raise FocusPersonNotFoundError(person_id)
    return person

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional, Set

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel

RESULT_SCHEMA_VERSION = "1.0"

GENDERS = {"male", "female", "other", "unknown"}
TERMINATED_STATUSES = {"divorced", "separated"}


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class Person(_CamelModel):
    id: str = Field(..., min_length=1)
    first_name: str = ""
    last_name: str = ""
    gender: str = "unknown"
    birth_date: Optional[str] = None
    parent_ids: List[str] = Field(default_factory=list)
    partnerships: List[str] = Field(default_factory=list)
    child_ids: List[str] = Field(default_factory=list)

    @field_validator("gender", mode="before")
    @classmethod
    def normalize_gender(cls, value: object) -> str:
        normalized = str(value or "unknown").strip().lower()
        return normalized if normalized in GENDERS else "unknown"

    @property
    def display_name(self) -> str:
        return " ".join(part for part in (self.first_name, self.last_name) if part) or self.id


class Partnership(_CamelModel):
    id: str = Field(..., min_length=1)
    person1_id: str = Field(..., min_length=1)
    person2_id: str = Field(..., min_length=1)
    child_ids: List[str] = Field(default_factory=list)
    status: Optional[str] = None
    start_date: Optional[str] = None
    is_primary: bool = False

    @property
    def is_terminated(self) -> bool:
        return self.status in TERMINATED_STATUSES


class FamilyData(_CamelModel):
    persons: Dict[str, Person] = Field(default_factory=dict)
    partnerships: Dict[str, Partnership] = Field(default_factory=dict)

    @model_validator(mode="after")
    def ensure_keys_match_ids(self) -> "FamilyData":
        for key, person in self.persons.items():
            if key != person.id:
                msg = f"Person key {key!r} does not match id {person.id!r}"
                raise ValueError(msg)
        for key, partnership in self.partnerships.items():
            if key != partnership.id:
                msg = f"Partnership key {key!r} does not match id {partnership.id!r}"
                raise ValueError(msg)
        return self


class GraphSelection(BaseModel):
    persons: Set[str] = Field(default_factory=set)
    partnerships: Set[str] = Field(default_factory=set)

    @classmethod
    def everything(cls, data: FamilyData) -> "GraphSelection":
        return cls(persons=set(data.persons), partnerships=set(data.partnerships))


class Side(Enum):
    HUSBAND = "husband"
    WIFE = "wife"
    BOTH = "both"


@dataclass(frozen=True)
class Point:
    x: float
    y: float


@dataclass(frozen=True)
class LayoutConfig:
    card_width: float = 130.0
    card_height: float = 65.0
    horizontal_gap: float = 15.0
    vertical_gap: float = 80.0
    partner_gap: float = 12.0
    padding: float = 50.0
    min_edge_clearance: float = 14.0
    tolerance: float = 0.5
    strict_mode: bool = False

    def couple_width(self, is_couple: bool) -> float:
        return self.card_width * 2 + self.partner_gap if is_couple else self.card_width

    @property
    def anchor_offset(self) -> float:
        return (self.partner_gap + self.card_width) / 2


@dataclass(frozen=True)
class PersonNode:
    id: str
    first_name: str
    last_name: str
    gender: str
    birth_date: str | None = None


@dataclass
class UnionNode:
    id: str
    partner_a: str
    partner_b: str | None
    partnership_id: str | None
    child_ids: List[str] = field(default_factory=list)

    def partners(self) -> List[str]:
        return [self.partner_a] if self.partner_b is None else [self.partner_a, self.partner_b]


@dataclass(frozen=True)
class ParentChildEdge:
    parent_union_id: str
    child_person_id: str


@dataclass
class LayoutModel:
    persons: Dict[str, PersonNode] = field(default_factory=dict)
    unions: Dict[str, UnionNode] = field(default_factory=dict)
    edges: List[ParentChildEdge] = field(default_factory=list)
    person_to_union: Dict[str, str] = field(default_factory=dict)
    child_to_parent_union: Dict[str, str] = field(default_factory=dict)


@dataclass
class GenerationBand:
    persons: List[str] = field(default_factory=list)
    unions: List[str] = field(default_factory=list)


@dataclass
class GenerationalModel:
    model: LayoutModel
    person_gen: Dict[str, int]
    union_gen: Dict[str, int]
    bands: Dict[int, GenerationBand]
    min_gen: int
    max_gen: int


@dataclass(frozen=True)
class ExtraPartner:
    """A further partner of one block partner, drawn beside that partner's card.

    ``offset`` is the card center relative to the block's couple center and
    ``reach`` the distance from that center to the card's outer edge.
    """

    person_id: str
    union_id: str
    shared_person_id: str
    offset: float
    reach: float


@dataclass
class FamilyBlock:
    id: str
    root_union_id: str
    side: Side
    generation: int
    parent_block_id: str | None = None
    child_block_ids: List[str] = field(default_factory=list)
    couple_width: float = 0.0
    children_width: float = 0.0
    width: float = 0.0
    envelope_width: float = 0.0
    left_extent: float = 0.0
    right_extent: float = 0.0
    x_left: float = 0.0
    x_right: float = 0.0
    x_center: float = 0.0
    couple_center_x: float = 0.0
    partner_a_anchor_x: float = 0.0
    partner_b_anchor_x: float = 0.0
    children_center_x: float = 0.0
    placed: bool = False
    extra_partners: List[ExtraPartner] = field(default_factory=list)

    @property
    def card_span(self) -> float:
        """Width of the couple plus any extra partner cards, symmetric about the couple center."""
        reach = max([self.couple_width / 2] + [p.reach for p in self.extra_partners])
        return 2 * reach

    def shift(self, dx: float) -> None:
        self.x_left += dx
        self.x_right += dx
        self.x_center += dx
        self.couple_center_x += dx
        self.partner_a_anchor_x += dx
        self.partner_b_anchor_x += dx
        self.children_center_x += dx


@dataclass
class Branch:
    id: str
    parent_union_id: str
    child_person_id: str
    child_union_id: str
    sibling_index: int
    parent_branch_id: str | None = None
    block_ids: List[str] = field(default_factory=list)
    child_branch_ids: List[str] = field(default_factory=list)
    min_x: float = 0.0
    max_x: float = 0.0


@dataclass
class LayoutArena:
    """Mutable block/position store threaded through placement and solving."""

    gen_model: GenerationalModel
    focus_person_id: str
    focus_union_id: str
    blocks: Dict[str, FamilyBlock] = field(default_factory=dict)
    union_to_block: Dict[str, str] = field(default_factory=dict)
    root_block_ids: List[str] = field(default_factory=list)
    branches: Dict[str, Branch] = field(default_factory=dict)
    union_to_branches: Dict[str, List[str]] = field(default_factory=dict)
    block_to_branch: Dict[str, str] = field(default_factory=dict)
    top_level_branch_ids: List[str] = field(default_factory=list)
    person_x: Dict[str, float] = field(default_factory=dict)
    union_x: Dict[str, float] = field(default_factory=dict)

    @property
    def model(self) -> LayoutModel:
        return self.gen_model.model

    @property
    def focus_block(self) -> FamilyBlock | None:
        block_id = self.union_to_block.get(self.focus_union_id)
        return self.blocks.get(block_id) if block_id else None

    def block_for_union(self, union_id: str | None) -> FamilyBlock | None:
        if union_id is None:
            return None
        block_id = self.union_to_block.get(union_id)
        return self.blocks.get(block_id) if block_id else None

    def block_for_person(self, person_id: str | None) -> FamilyBlock | None:
        if person_id is None:
            return None
        return self.block_for_union(self.model.person_to_union.get(person_id))

    def parent_block_of_person(self, person_id: str | None) -> FamilyBlock | None:
        if person_id is None:
            return None
        return self.block_for_union(self.model.child_to_parent_union.get(person_id))


@dataclass
class ChildDrop:
    person_id: str
    x: float
    top_y: float
    bottom_y: float


@dataclass
class Connection:
    union_id: str
    stem_x: float
    stem_top_y: float
    stem_bottom_y: float
    branch_y: float
    branch_left_x: float
    branch_right_x: float
    connector_from_x: float
    connector_to_x: float
    connector_y: float
    drops: List[ChildDrop] = field(default_factory=list)
    lane: int = 0

    def shift_x(self, dx: float) -> None:
        self.stem_x += dx
        self.branch_left_x += dx
        self.branch_right_x += dx
        self.connector_from_x += dx
        self.connector_to_x += dx
        for drop in self.drops:
            drop.x += dx

    def to_dict(self) -> dict:
        return {
            "unionId": self.union_id,
            "stemX": self.stem_x,
            "stemTopY": self.stem_top_y,
            "stemBottomY": self.stem_bottom_y,
            "branchY": self.branch_y,
            "branchLeftX": self.branch_left_x,
            "branchRightX": self.branch_right_x,
            "connectorFromX": self.connector_from_x,
            "connectorToX": self.connector_to_x,
            "connectorY": self.connector_y,
            "lane": self.lane,
            "drops": [
                {"personId": d.person_id, "x": d.x, "topY": d.top_y, "bottomY": d.bottom_y}
                for d in self.drops
            ],
        }


@dataclass
class SpouseLine:
    union_id: str
    person1_id: str
    person2_id: str
    partnership_id: str | None
    y: float
    x_min: float
    x_max: float

    def to_dict(self) -> dict:
        return {
            "unionId": self.union_id,
            "person1Id": self.person1_id,
            "person2Id": self.person2_id,
            "partnershipId": self.partnership_id,
            "y": self.y,
            "xMin": self.x_min,
            "xMax": self.x_max,
        }


@dataclass(frozen=True)
class BranchCorridor:
    branch_id: str
    parent_union_id: str
    child_person_id: str
    sibling_index: int
    min_x: float
    max_x: float


@dataclass(frozen=True)
class SolverDiagnostics:
    iterations: int
    max_violation: float
    converged: bool


@dataclass
class LayoutDiagnostics:
    total_persons: int = 0
    total_unions: int = 0
    generation_range: tuple[int, int] = (0, 0)
    iterations: int = 0
    max_violation: float = 0.0
    converged: bool = True
    branch_count: int = 0
    validation_passed: bool = True
    errors: List[str] = field(default_factory=list)
    unplaced_person_ids: List[str] = field(default_factory=list)


@dataclass
class LayoutResult:
    positions: Dict[str, Point] = field(default_factory=dict)
    generations: Dict[str, int] = field(default_factory=dict)
    connections: List[Connection] = field(default_factory=list)
    spouse_lines: List[SpouseLine] = field(default_factory=list)
    branches: List[BranchCorridor] = field(default_factory=list)
    diagnostics: LayoutDiagnostics = field(default_factory=LayoutDiagnostics)

    def to_dict(self) -> dict:
        diagnostics = self.diagnostics
        return {
            "schemaVersion": RESULT_SCHEMA_VERSION,
            "positions": {
                person_id: {"x": point.x, "y": point.y}
                for person_id, point in sorted(self.positions.items())
            },
            "generations": dict(sorted(self.generations.items())),
            "connections": [connection.to_dict() for connection in self.connections],
            "spouseLines": [line.to_dict() for line in self.spouse_lines],
            "branches": [
                {
                    "branchId": corridor.branch_id,
                    "parentUnionId": corridor.parent_union_id,
                    "childPersonId": corridor.child_person_id,
                    "siblingIndex": corridor.sibling_index,
                    "minX": corridor.min_x,
                    "maxX": corridor.max_x,
                }
                for corridor in self.branches
            ],
            "diagnostics": {
                "totalPersons": diagnostics.total_persons,
                "totalUnions": diagnostics.total_unions,
                "generationRange": list(diagnostics.generation_range),
                "iterations": diagnostics.iterations,
                "maxViolation": diagnostics.max_violation,
                "converged": diagnostics.converged,
                "branchCount": diagnostics.branch_count,
                "validationPassed": diagnostics.validation_passed,
                "errors": list(diagnostics.errors),
                "unplacedPersonIds": list(diagnostics.unplaced_person_ids),
            },
        }

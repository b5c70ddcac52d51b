"""
Domain models for cards and the persisted store.

Card records are a tagged union discriminated on ``type``; each variant
declares exactly the payload it carries, and unknown keys are rejected.
"""

import re
from typing import Annotated, Literal

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter
from pydantic.alias_generators import to_camel

from .scheduling import CardState, Grade, Stage

STORE_VERSION = 11

CLOZE_TOKEN_RE = re.compile(r"\{\{c(\d+)::([\s\S]*?)\}\}")


class OcclusionRect(BaseModel):
    """One masked rectangle on an image, in fractional image coordinates."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")

    rect_id: str
    x: float
    y: float
    w: float
    h: float
    group_key: str = ""

    @property
    def effective_group(self) -> str:
        return self.group_key or self.rect_id


class _CardBase(BaseModel):
    model_config = ConfigDict(extra="forbid")

    id: str
    source_note_path: str = ""
    title: str | None = None
    info: str | None = None
    groups: list[str] = Field(default_factory=list)


class BasicCard(_CardBase):
    type: Literal["basic"] = "basic"
    question: str
    answer: str


class ReversedCard(_CardBase):
    type: Literal["reversed"] = "reversed"
    question: str
    answer: str


class ClozeCard(_CardBase):
    type: Literal["cloze"] = "cloze"
    text: str

    @property
    def cloze_indices(self) -> list[int]:
        return sorted({int(m.group(1)) for m in CLOZE_TOKEN_RE.finditer(self.text)})


class ClozeChildCard(_CardBase):
    type: Literal["cloze-child"] = "cloze-child"
    parent_id: str
    cloze_index: int
    text: str


class McqCard(_CardBase):
    type: Literal["mcq"] = "mcq"
    stem: str
    options: list[str]
    correct_index: int


class OrderedCard(_CardBase):
    type: Literal["oq"] = "oq"
    question: str
    steps: list[str]


class OcclusionCard(_CardBase):
    type: Literal["io"] = "io"
    image_ref: str
    prompt: str | None = None
    rects: list[OcclusionRect] = Field(default_factory=list)
    mask_mode: Literal["solo", "all"] | None = None

    def rect_groups(self) -> dict[str, list[str]]:
        """Rect ids keyed by group, in first-seen order."""
        groups: dict[str, list[str]] = {}
        for rect in self.rects:
            groups.setdefault(rect.effective_group, []).append(rect.rect_id)
        return groups


class OcclusionChildCard(_CardBase):
    type: Literal["io-child"] = "io-child"
    parent_id: str
    group_key: str
    rect_ids: list[str]
    image_ref: str
    mask_mode: Literal["solo", "all"] | None = None


Card = Annotated[
    BasicCard
    | ReversedCard
    | ClozeCard
    | ClozeChildCard
    | McqCard
    | OrderedCard
    | OcclusionCard
    | OcclusionChildCard,
    Field(discriminator="type"),
]

CARD_ADAPTER: TypeAdapter[Card] = TypeAdapter(Card)

PARENT_TYPES = ("basic", "reversed", "cloze", "mcq", "oq", "io")
CHILD_TYPES = {"cloze-child": "cloze", "io-child": "io"}


def cloze_child_id(parent_id: str, index: int) -> str:
    return f"{parent_id}::cloze::c{index}"


def io_child_id(parent_id: str, group_key: str) -> str:
    return f"{parent_id}::io::{group_key}"


# ---------- Store aggregate ----------


class QuarantineEntry(BaseModel):
    id: str
    note_path: str
    raw: str
    reason: str
    quarantined_at: int


class ReviewLogEntry(BaseModel):
    card_id: str
    at: int
    grade: Grade
    prev_stage: Stage | None = None
    next_stage: Stage | None = None
    prev_due: int
    next_due: int
    scheduled_days: int = 0


class Analytics(BaseModel):
    total_reviews: int = 0
    lapses: int = 0
    grade_counts: dict[str, int] = Field(default_factory=dict)
    daily_reviews: dict[str, int] = Field(default_factory=dict)


class OcclusionGeometry(BaseModel):
    image_ref: str
    mask_mode: Literal["solo", "all"] | None = None
    rects: list[OcclusionRect] = Field(default_factory=list)


class StoreData(BaseModel):
    version: int = STORE_VERSION
    cards: dict[str, Card] = Field(default_factory=dict)
    states: dict[str, CardState] = Field(default_factory=dict)
    quarantine: dict[str, QuarantineEntry] = Field(default_factory=dict)
    review_log: list[ReviewLogEntry] = Field(default_factory=list)
    analytics: Analytics = Field(default_factory=Analytics)
    io: dict[str, OcclusionGeometry] = Field(default_factory=dict)
    tags: dict[str, int] = Field(default_factory=dict)

    @property
    def total(self) -> int:
        return len(self.cards) + len(self.states)

"""Typed structures shared by the backend modules."""

from __future__ import annotations

from typing import Any, Dict, List, Literal, Optional, Sequence, Tuple, TypedDict

Point = Tuple[float, float]
BBox = Tuple[float, float, float, float]
Polygon = Sequence[Point]

Layout = Literal["horizontal-ltr", "vertical-rl"]

HORIZONTAL: Layout = "horizontal-ltr"
VERTICAL: Layout = "vertical-rl"


class Annotation(TypedDict):
    """Single OCR word with its capture-stable index and polygon."""

    index: int
    text: str
    poly: Polygon


class Rect(TypedDict):
    """Rectangle expressed as percentages of the image size."""

    left: float
    top: float
    width: float
    height: float


class TapTargetRequired(TypedDict):
    rect: Rect
    word: str
    index: int


class TapTarget(TapTargetRequired, total=False):
    """Tappable region built from one annotation or a merged group."""

    group_id: int


class MergeEntry(TypedDict):
    group_id: int
    combined_text: str


MergeMap = Dict[int, MergeEntry]


class MergeGroup(TypedDict):
    id: int
    member_indices: List[int]
    combined_text: str


class MorphToken(TypedDict):
    surface: str
    base_form: Optional[str]
    part_of_speech: str


class Sense(TypedDict):
    definitions: List[str]
    parts_of_speech: List[str]


class DictionaryCandidate(TypedDict):
    headword: str
    reading: str
    primary_meaning: str
    primary_pos: str
    senses: List[Sense]
    is_common: bool


class QueueItem(TypedDict):
    word: str
    payload: Dict[str, Any]
    enqueued_at: int


class ReviewStatus(TypedDict):
    label: str
    badge: str


__all__ = [
    "Point",
    "BBox",
    "Polygon",
    "Layout",
    "HORIZONTAL",
    "VERTICAL",
    "Annotation",
    "Rect",
    "TapTarget",
    "MergeEntry",
    "MergeMap",
    "MergeGroup",
    "MorphToken",
    "Sense",
    "DictionaryCandidate",
    "QueueItem",
    "ReviewStatus",
]

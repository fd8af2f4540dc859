"""Turn OCR word polygons into resolution-independent tap targets."""

from __future__ import annotations

from typing import Dict, List, Optional, Sequence

from .types import Annotation, BBox, MergeMap, Point, Rect, TapTarget

MIN_AREA_FRACTION = 0.0001
CONTEXT_WINDOW = 20


def polygon_to_box(poly: Sequence[Sequence[float]]) -> Optional[BBox]:
    """Axis-aligned bounds of a polygon, or ``None`` when it has under 3 vertices."""
    if len(poly) < 3:
        return None
    xs = [float(p[0] or 0) for p in poly]
    ys = [float(p[1] or 0) for p in poly]
    return (min(xs), min(ys), max(xs), max(ys))


def box_center(box: BBox) -> Point:
    x0, y0, x1, y1 = box
    return ((x0 + x1) / 2.0, (y0 + y1) / 2.0)


def _box_area(box: BBox) -> float:
    x0, y0, x1, y1 = box
    return (x1 - x0) * (y1 - y0)


def _union(box_a: BBox, box_b: BBox) -> BBox:
    return (
        min(box_a[0], box_b[0]),
        min(box_a[1], box_b[1]),
        max(box_a[2], box_b[2]),
        max(box_a[3], box_b[3]),
    )


def _to_rect(box: BBox, width: float, height: float) -> Rect:
    x0, y0, x1, y1 = box
    return {
        "left": x0 / width * 100.0,
        "top": y0 / height * 100.0,
        "width": (x1 - x0) / width * 100.0,
        "height": (y1 - y0) / height * 100.0,
    }


def area_fraction(box: BBox, width: float, height: float) -> float:
    return _box_area(box) / (width * height)


def build_tap_targets(
    annotations: Sequence[Annotation],
    width: float,
    height: float,
    merge_map: MergeMap | None = None,
    min_area_fraction: float = MIN_AREA_FRACTION,
) -> List[TapTarget]:
    """Build tap targets in annotation order.

    Annotations whose box covers less than ``min_area_fraction`` of the image
    are noise and never become targets. When ``merge_map`` is given, all
    surviving members of a merge group collapse into a single target that
    spans their union and resolves to the group's combined text.
    """
    if width <= 0 or height <= 0:
        raise ValueError("image dimensions must be positive")

    targets: List[TapTarget] = []
    group_boxes: Dict[int, BBox] = {}
    group_targets: Dict[int, TapTarget] = {}

    for annotation in annotations:
        box = polygon_to_box(annotation["poly"])
        if box is None:
            continue
        if area_fraction(box, width, height) < min_area_fraction:
            continue

        index = annotation["index"]
        entry = merge_map.get(index) if merge_map else None
        if entry is None:
            targets.append(
                {
                    "rect": _to_rect(box, width, height),
                    "word": annotation["text"],
                    "index": index,
                }
            )
            continue

        group_id = entry["group_id"]
        if group_id in group_targets:
            group_boxes[group_id] = _union(group_boxes[group_id], box)
            group_targets[group_id]["rect"] = _to_rect(group_boxes[group_id], width, height)
            continue

        group_boxes[group_id] = box
        target: TapTarget = {
            "rect": _to_rect(box, width, height),
            "word": entry["combined_text"],
            "index": index,
            "group_id": group_id,
        }
        group_targets[group_id] = target
        targets.append(target)

    return targets


def extract_context(
    annotations: Sequence[Annotation],
    index: int,
    window: int = CONTEXT_WINDOW,
) -> str:
    """Concatenate annotation text within ``window`` positions of ``index``."""
    if not annotations:
        return ""
    start = max(0, index - window)
    end = min(len(annotations) - 1, index + window)
    return "".join(annotation["text"] for annotation in annotations[start:end + 1])


__all__ = [
    "MIN_AREA_FRACTION",
    "CONTEXT_WINDOW",
    "polygon_to_box",
    "box_center",
    "area_fraction",
    "build_tap_targets",
    "extract_context",
]

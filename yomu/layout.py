"""Infer the reading direction of a page from OCR box order."""

from __future__ import annotations

from typing import List, Sequence

from .geometry import box_center, polygon_to_box
from .types import HORIZONTAL, VERTICAL, Annotation, Layout, Point

MIN_ANNOTATIONS = 5


def _centers(annotations: Sequence[Annotation]) -> List[Point]:
    centers: List[Point] = []
    for annotation in annotations:
        box = polygon_to_box(annotation["poly"])
        centers.append(box_center(box) if box is not None else (0.0, 0.0))
    return centers


def detect_layout(annotations: Sequence[Annotation]) -> Layout:
    """Vote on the dominant displacement between consecutive boxes.

    Vertical manga and novels list their words top to bottom, so successive
    centers mostly move along y; horizontal text mostly moves along x.
    """
    if len(annotations) < MIN_ANNOTATIONS:
        return HORIZONTAL

    centers = _centers(annotations)
    vertical_votes = 0
    for (x0, y0), (x1, y1) in zip(centers, centers[1:]):
        if abs(y1 - y0) > abs(x1 - x0):
            vertical_votes += 1
    transitions = len(centers) - 1
    return VERTICAL if vertical_votes > transitions - vertical_votes else HORIZONTAL


__all__ = ["MIN_ANNOTATIONS", "detect_layout"]

"""Tests for tap-target geometry and context extraction."""

import pytest

from yomu.geometry import (
    MIN_AREA_FRACTION,
    area_fraction,
    build_tap_targets,
    extract_context,
    polygon_to_box,
)

from conftest import make_annotation


class TestPolygonToBox:
    def test_bounds_from_rotated_polygon(self):
        assert polygon_to_box([(10, 5), (30, 0), (35, 20), (12, 25)]) == (10.0, 0.0, 35.0, 25.0)

    def test_missing_coordinates_count_as_zero(self):
        assert polygon_to_box([(None, 4), (10, None), (10, 10)]) == (0.0, 0.0, 10.0, 10.0)

    def test_too_few_vertices(self):
        assert polygon_to_box([(0, 0), (1, 1)]) is None


class TestBuildTapTargets:
    def test_rects_are_percentages(self):
        targets = build_tap_targets([make_annotation(0, "夜", 100, 50, w=50, h=25)], 1000, 500)
        assert targets == [
            {
                "rect": {"left": 10.0, "top": 10.0, "width": 5.0, "height": 5.0},
                "word": "夜",
                "index": 0,
            }
        ]

    def test_noise_filtered_below_threshold_only(self):
        # 1000x1000 image: threshold area is 100 px²
        annotations = [
            make_annotation(0, "below", 0, 0, w=9, h=10),
            make_annotation(1, "exact", 100, 100, w=10, h=10),
            make_annotation(2, "above", 200, 200, w=11, h=10),
        ]
        targets = build_tap_targets(annotations, 1000, 1000)
        assert [t["word"] for t in targets] == ["exact", "above"]
        for target in targets:
            rect = target["rect"]
            assert rect["width"] * rect["height"] / 10000 >= MIN_AREA_FRACTION

    def test_area_fraction_matches_filter(self):
        box = polygon_to_box(make_annotation(0, "x", 0, 0, w=10, h=10)["poly"])
        assert area_fraction(box, 1000, 1000) == pytest.approx(MIN_AREA_FRACTION)

    def test_degenerate_polygon_skipped(self):
        annotations = [{"index": 0, "text": "線", "poly": [(0, 0), (5, 5)]}]
        assert build_tap_targets(annotations, 100, 100) == []

    def test_merge_group_collapses_into_one_target(self):
        annotations = [
            make_annotation(0, "私", 0, 0),
            make_annotation(1, "食べ", 100, 0),
            make_annotation(2, "て", 120, 0),
        ]
        merge_map = {
            1: {"group_id": 0, "combined_text": "食べて"},
            2: {"group_id": 0, "combined_text": "食べて"},
        }
        targets = build_tap_targets(annotations, 200, 100, merge_map)
        assert len(targets) == 2
        group_target = targets[1]
        assert group_target["word"] == "食べて"
        assert group_target["group_id"] == 0
        assert group_target["index"] == 1
        assert group_target["rect"]["left"] == pytest.approx(50.0)
        assert group_target["rect"]["width"] == pytest.approx(20.0)

    def test_invalid_dimensions(self):
        with pytest.raises(ValueError):
            build_tap_targets([], 0, 100)


class TestExtractContext:
    def test_window_is_index_based(self):
        annotations = [make_annotation(i, str(i % 10), i * 5, 0) for i in range(50)]
        context = extract_context(annotations, 25, window=2)
        assert context == "34567"

    def test_window_clamped_at_edges(self):
        annotations = [make_annotation(i, t, 0, 0) for i, t in enumerate(["今", "日", "は"])]
        assert extract_context(annotations, 0) == "今日は"
        assert extract_context(annotations, 2, window=1) == "日は"

    def test_empty(self):
        assert extract_context([], 0) == ""

"""Tests for GeometrySimplifier."""

from __future__ import annotations

import copy

import pytest

from chronomap.processing.simplifier import (
    GeometrySimplifier,
    simplify_line,
    simplify_ring,
)

WIGGLY_LINE = {
    "type": "LineString",
    "coordinates": [[0, 0], [1, 0.0001], [2, 0], [3, 0.0001], [4, 0]],
}


class TestSimplify:
    def test_collinear_points_removed(self) -> None:
        result = GeometrySimplifier(0.01).simplify(WIGGLY_LINE)
        assert result.geometry["coordinates"] == [[0, 0], [4, 0]]
        assert result.original_points == 5
        assert result.simplified_points == 2
        assert result.reduction_ratio == pytest.approx(0.6)

    def test_input_not_mutated(self) -> None:
        geometry = copy.deepcopy(WIGGLY_LINE)
        GeometrySimplifier(0.01).simplify(geometry)
        assert geometry == WIGGLY_LINE

    def test_points_unchanged(self) -> None:
        point = {"type": "Point", "coordinates": [1.23456, 7.891]}
        result = GeometrySimplifier(10).simplify(point)
        assert result.geometry == point
        assert result.reduction_ratio == 0.0

    def test_polygon_keeps_corners(self) -> None:
        square = {
            "type": "Polygon",
            "coordinates": [[[0, 0], [1, 0], [2, 0], [2, 2], [0, 2], [0, 0]]],
        }
        result = GeometrySimplifier(0.1).simplify(square)
        assert result.geometry["coordinates"] == [[[0, 0], [2, 0], [2, 2], [0, 2], [0, 0]]]

    def test_ring_never_collapses(self) -> None:
        ring = [[0, 0], [0.001, 0], [0.001, 0.001], [0, 0.001], [0, 0]]
        reduced = simplify_ring(ring, tolerance=1.0)
        assert len(reduced) >= 4
        assert reduced[0] == reduced[-1]

    def test_per_call_tolerance_overrides_default(self) -> None:
        simplifier = GeometrySimplifier(1e-9)
        assert simplifier.simplify(WIGGLY_LINE).simplified_points == 5
        assert simplifier.simplify(WIGGLY_LINE, tolerance=0.01).simplified_points == 2

    def test_fast_mode_radial_prepass(self) -> None:
        line = [[0, 0], [0.1, 0.1], [0.2, 0], [5, 0]]
        reduced = simplify_line(line, 0.3, high_quality=False)
        assert reduced[0] == [0, 0]
        assert reduced[-1] == [5, 0]
        assert reduced == [[0, 0], [5, 0]]

    def test_multipolygon(self) -> None:
        geometry = {
            "type": "MultiPolygon",
            "coordinates": [
                [[[0, 0], [1, 0], [2, 0], [2, 2], [0, 2], [0, 0]]],
                [[[5, 5], [6, 5], [6, 6], [5, 6], [5, 5]]],
            ],
        }
        result = GeometrySimplifier(0.1).simplify(geometry)
        assert result.simplified_points == 10
        assert result.original_points == 11

    def test_simplify_feature(self) -> None:
        feature = {"type": "Feature", "geometry": WIGGLY_LINE, "properties": {"a": 1}}
        result = GeometrySimplifier(0.01).simplify_feature(feature)
        assert result["properties"] == {"a": 1}
        assert len(result["geometry"]["coordinates"]) == 2

    def test_invalid_tolerance(self) -> None:
        with pytest.raises(ValueError, match="tolerance"):
            GeometrySimplifier(0)

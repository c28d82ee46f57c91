"""Tolerance-based point reduction for line and polygon geometries.

Douglas-Peucker is applied per line and per ring after consecutive
duplicate positions are removed.  ``high_quality=False`` first runs a
radial-distance pass (dropping points within *tolerance* of the last
kept point), which leaves fewer points for the Douglas-Peucker pass to
examine.

Both modes guard topology: if simplification turns a valid polygon
invalid (or a simple line non-simple) the geometry is simplified again
with shapely's topology-preserving algorithm instead.

Points and MultiPoints are returned unchanged.
"""

from __future__ import annotations

import copy
import logging
import math
from dataclasses import dataclass
from typing import Any

from chronomap.core.constants import DEFAULT_SIMPLIFY_TOLERANCE, MIN_RING_POSITIONS
from chronomap.processing._geometry import (
    POINT_TYPES,
    count_positions,
    dedupe_geometry,
    to_geojson,
    to_shape,
)

logger = logging.getLogger("chronomap.processing.simplifier")

MIN_LINE_POSITIONS = 2


@dataclass(frozen=True, slots=True)
class SimplificationResult:
    """A simplified geometry and its point-count reduction.

    Attributes:
        geometry: Simplified GeoJSON geometry.
        original_points: Positions before simplification.
        simplified_points: Positions after simplification.
        reduction_ratio: ``1 - simplified / original`` (0 for empty input).
    """

    geometry: dict[str, Any]
    original_points: int
    simplified_points: int

    @property
    def reduction_ratio(self) -> float:
        if self.original_points == 0:
            return 0.0
        return 1.0 - self.simplified_points / self.original_points


class GeometrySimplifier:
    """Simplify GeoJSON geometries.

    Args:
        tolerance: Default tolerance in the geometry's coordinate units.
        high_quality: Default mode; ``False`` adds the radial pre-pass.
    """

    def __init__(
        self,
        tolerance: float = DEFAULT_SIMPLIFY_TOLERANCE,
        *,
        high_quality: bool = True,
    ) -> None:
        if tolerance <= 0:
            msg = f"tolerance must be > 0, got {tolerance}"
            raise ValueError(msg)
        self.tolerance = tolerance
        self.high_quality = high_quality

    def simplify(
        self,
        geometry: dict[str, Any],
        tolerance: float | None = None,
        high_quality: bool | None = None,
    ) -> SimplificationResult:
        """Simplify *geometry* (never mutated) and report the reduction."""
        tol = self.tolerance if tolerance is None else tolerance
        hq = self.high_quality if high_quality is None else high_quality
        original_points = count_positions(geometry)
        geom_type = geometry.get("type")

        if geom_type in POINT_TYPES:
            return SimplificationResult(copy.deepcopy(geometry), original_points, original_points)

        deduped = dedupe_geometry(copy.deepcopy(geometry))
        simplified = _simplify_geometry(deduped, tol, hq)
        simplified = _guard_topology(deduped, simplified, tol)

        result = SimplificationResult(simplified, original_points, count_positions(simplified))
        logger.debug(
            "geometry simplified | type=%s | points=%d->%d | reduction=%.1f%% | "
            "tolerance=%g | high_quality=%s",
            geom_type,
            result.original_points,
            result.simplified_points,
            result.reduction_ratio * 100,
            tol,
            hq,
        )
        return result

    def simplify_feature(
        self,
        feature: dict[str, Any],
        tolerance: float | None = None,
        high_quality: bool | None = None,
    ) -> dict[str, Any]:
        """Return a copy of a GeoJSON Feature with its geometry simplified."""
        result = copy.deepcopy(feature)
        geometry = feature.get("geometry")
        if geometry:
            result["geometry"] = self.simplify(geometry, tolerance, high_quality).geometry
        return result


# ---------------------------------------------------------------------------
# Geometry dispatch
# ---------------------------------------------------------------------------


def _simplify_geometry(geometry: dict[str, Any], tol: float, hq: bool) -> dict[str, Any]:
    geom_type = geometry.get("type")
    coords = geometry.get("coordinates")
    if geom_type == "GeometryCollection":
        return {
            **geometry,
            "geometries": [
                _simplify_geometry(g, tol, hq) for g in geometry.get("geometries") or []
            ],
        }
    if geom_type == "LineString":
        new_coords: Any = simplify_line(coords, tol, high_quality=hq)
    elif geom_type == "MultiLineString":
        new_coords = [simplify_line(line, tol, high_quality=hq) for line in coords]
    elif geom_type == "Polygon":
        new_coords = [simplify_ring(ring, tol, high_quality=hq) for ring in coords]
    elif geom_type == "MultiPolygon":
        new_coords = [
            [simplify_ring(ring, tol, high_quality=hq) for ring in poly] for poly in coords
        ]
    else:
        return geometry
    return {**geometry, "coordinates": new_coords}


def _guard_topology(
    original: dict[str, Any], simplified: dict[str, Any], tol: float
) -> dict[str, Any]:
    """Fall back to shapely's topology-preserving simplify if validity was lost."""
    if original.get("type") == "GeometryCollection":
        return simplified
    before = to_shape(original)
    after = to_shape(simplified)
    lost = (before.is_valid and not after.is_valid) or (
        original.get("type") in ("LineString", "MultiLineString")
        and before.is_simple
        and not after.is_simple
    )
    if not lost:
        return simplified
    logger.info(
        "simplification introduced invalid topology, using topology-preserving fallback | type=%s",
        original.get("type"),
    )
    return to_geojson(before.simplify(tol, preserve_topology=True))


# ---------------------------------------------------------------------------
# Line / ring reduction
# ---------------------------------------------------------------------------


def simplify_line(points: list[Any], tolerance: float, *, high_quality: bool = True) -> list[Any]:
    """Reduce an open line; endpoints are always kept."""
    if len(points) <= MIN_LINE_POSITIONS:
        return [list(p) for p in points]
    working = points if high_quality else _radial_distance(points, tolerance)
    return [list(p) for p in _douglas_peucker(working, tolerance)]


def simplify_ring(ring: list[Any], tolerance: float, *, high_quality: bool = True) -> list[Any]:
    """Reduce a closed ring, keeping closure and at least four positions.

    A ring that would collapse below four positions is returned unchanged.
    """
    if len(ring) <= MIN_RING_POSITIONS:
        return [list(p) for p in ring]
    closed = ring[0][:2] == ring[-1][:2]
    reduced = simplify_line(ring, tolerance, high_quality=high_quality)
    if closed and reduced[0][:2] != reduced[-1][:2]:
        reduced.append(list(reduced[0]))
    if len(reduced) < MIN_RING_POSITIONS:
        return [list(p) for p in ring]
    return reduced


def _radial_distance(points: list[Any], tolerance: float) -> list[Any]:
    sq_tol = tolerance * tolerance
    kept = [points[0]]
    for point in points[1:-1]:
        prev = kept[-1]
        dx, dy = point[0] - prev[0], point[1] - prev[1]
        if dx * dx + dy * dy > sq_tol:
            kept.append(point)
    kept.append(points[-1])
    return kept


def _douglas_peucker(points: list[Any], tolerance: float) -> list[Any]:
    """Iterative Douglas-Peucker keeping points farther than *tolerance* from their chord."""
    last = len(points) - 1
    keep = [False] * len(points)
    keep[0] = keep[last] = True
    stack = [(0, last)]
    while stack:
        first, end = stack.pop()
        max_dist = 0.0
        index = first
        for i in range(first + 1, end):
            dist = _perpendicular_distance(points[i], points[first], points[end])
            if dist > max_dist:
                max_dist = dist
                index = i
        if max_dist > tolerance:
            keep[index] = True
            stack.append((first, index))
            stack.append((index, end))
    return [p for p, k in zip(points, keep, strict=True) if k]


def _perpendicular_distance(point: Any, start: Any, end: Any) -> float:
    """Distance from *point* to segment ``start``-``end`` (planar)."""
    x, y = point[0], point[1]
    x1, y1 = start[0], start[1]
    x2, y2 = end[0], end[1]
    dx, dy = x2 - x1, y2 - y1
    if dx == 0 and dy == 0:
        return math.hypot(x - x1, y - y1)
    t = ((x - x1) * dx + (y - y1) * dy) / (dx * dx + dy * dy)
    t = max(0.0, min(1.0, t))
    return math.hypot(x - (x1 + t * dx), y - (y1 + t * dy))

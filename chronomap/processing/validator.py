"""Structural and geometric validation of normalised features.

``GeometryValidator.validate`` accepts a GeoJSON Feature or
FeatureCollection (or a ``Feature`` model) and reports every problem it
finds without mutating the input:

1. Structure: input must be a Feature/FeatureCollection; every feature
   must carry a ``geometry`` of a supported type whose coordinates are
   nested as that type requires and build into a shapely geometry.
2. Coordinate bounds: every position must lie within WGS 84 bounds;
   each offending position is reported with its feature index.
3. Self-intersection: every ring of a Polygon/MultiPolygon is checked
   for crossings between *all* pairs of non-adjacent segments, and each
   crossing is reported with its location.

``GeometryValidator.clean`` is a best-effort corrective pass: it removes
consecutive duplicate positions and splits self-intersecting polygons
with shapely's ``make_valid``.  What happens when a split yields more
than one polygon is governed by ``SplitPolicy``.
"""

from __future__ import annotations

import copy
import enum
import logging
from collections.abc import Mapping
from dataclasses import replace
from typing import TYPE_CHECKING, Any

from shapely.errors import GEOSException
from shapely.geometry import MultiPolygon, Polygon
from shapely.validation import make_valid

from chronomap.core.constants import (
    MAX_LATITUDE,
    MAX_LONGITUDE,
    MIN_LATITUDE,
    MIN_LINE_POSITIONS,
    MIN_LONGITUDE,
    MIN_RING_POSITIONS,
)
from chronomap.core.exceptions import ValidationError
from chronomap.models.feature import Feature, GeometryType
from chronomap.models.validation import ValidationResult
from chronomap.processing._geometry import (
    dedupe_consecutive,
    dedupe_geometry,
    is_position,
    iter_positions,
    polygon_rings,
    to_geojson,
    to_shape,
)

if TYPE_CHECKING:
    from shapely.geometry.base import BaseGeometry

logger = logging.getLogger("chronomap.processing.validator")

SUPPORTED_GEOMETRY_TYPES = frozenset(
    {
        "Point",
        "MultiPoint",
        "LineString",
        "MultiLineString",
        "Polygon",
        "MultiPolygon",
        "GeometryCollection",
    }
)

Segment = tuple[tuple[float, float], tuple[float, float]]


class GeometryValidationError(ValidationError):
    """A feature failed structural or geometric checks.

    Attributes:
        result: The ``ValidationResult`` that caused the failure.
    """

    default_stage = "validate"
    default_code = "GEOMETRY_INVALID"

    def __init__(self, result: ValidationResult, *, context: str = "") -> None:
        self.result = result
        prefix = f"{context}: " if context else ""
        super().__init__(prefix + "; ".join(result.errors))


class SplitPolicy(enum.Enum):
    """What ``clean`` does when repairing one polygon yields several.

    Values:
        KEEP_ORIGINAL: Keep the (de-duplicated) original geometry and warn.
        EXPLODE: Emit one feature per resulting polygon.
        MERGE: Replace the geometry with a single MultiPolygon.
    """

    KEEP_ORIGINAL = "keep_original"
    EXPLODE = "explode"
    MERGE = "merge"


class GeometryValidator:
    """Validate and clean GeoJSON features.

    Args:
        split_policy: Behaviour of ``clean`` for polygons that split into
            several simple polygons (default ``KEEP_ORIGINAL``).
    """

    def __init__(self, split_policy: SplitPolicy = SplitPolicy.KEEP_ORIGINAL) -> None:
        self.split_policy = split_policy

    # ------------------------------------------------------------------
    # Validation
    # ------------------------------------------------------------------

    def validate(self, data: Mapping[str, Any] | Feature) -> ValidationResult:
        """Validate a Feature, FeatureCollection or ``Feature`` model."""
        errors: list[str] = []
        warnings: list[str] = []

        features = _features_of(data, errors)
        if features is None:
            return ValidationResult(valid=False, errors=tuple(errors))
        if not features:
            warnings.append("FeatureCollection contains no features")

        for index, feature in enumerate(features):
            self._validate_feature(index, feature, errors, warnings)

        return ValidationResult(valid=not errors, errors=tuple(errors), warnings=tuple(warnings))

    def _validate_feature(
        self,
        index: int,
        feature: Any,
        errors: list[str],
        warnings: list[str],
    ) -> None:
        context = f"Feature {index}"
        if not isinstance(feature, Mapping) or feature.get("type") != "Feature":
            errors.append(f"{context}: Not a GeoJSON Feature")
            return
        geometry = feature.get("geometry")
        if not geometry:
            errors.append(f"{context}: Missing geometry")
            return
        self._validate_geometry(context, geometry, errors, warnings)

    def _validate_geometry(
        self,
        context: str,
        geometry: Any,
        errors: list[str],
        warnings: list[str],
    ) -> None:
        geom_type = geometry.get("type") if isinstance(geometry, Mapping) else None
        if geom_type not in SUPPORTED_GEOMETRY_TYPES:
            errors.append(f"{context}: Unsupported geometry type {geom_type!r}")
            return
        if geom_type == "GeometryCollection":
            for child in geometry.get("geometries") or []:
                self._validate_geometry(context, child, errors, warnings)
            return
        if not isinstance(geometry.get("coordinates"), list | tuple):
            errors.append(f"{context}: Missing coordinates")
            return

        positions = list(iter_positions(geometry))
        if not positions:
            errors.append(f"{context}: Empty geometry")
            return

        malformed = False
        for pos in positions:
            if not is_position(pos):
                errors.append(f"{context}: Malformed coordinate {pos!r}")
                malformed = True
                continue
            lon, lat = pos[0], pos[1]
            if not (MIN_LONGITUDE <= lon <= MAX_LONGITUDE and MIN_LATITUDE <= lat <= MAX_LATITUDE):
                errors.append(f"{context}: Coordinate out of bounds [{lon}, {lat}]")
        if malformed:
            return

        nesting = _nesting_errors(geom_type, geometry["coordinates"])
        if nesting:
            errors.extend(f"{context}: {problem}" for problem in nesting)
            return

        before = len(errors)
        if geom_type in ("Polygon", "MultiPolygon"):
            for label, ring in polygon_rings(geometry):
                self._validate_ring(f"{context} {label}", ring, errors, warnings)
        elif geom_type in ("LineString", "MultiLineString"):
            coords = geometry["coordinates"]
            for line in [coords] if geom_type == "LineString" else coords:
                if _has_consecutive_duplicates(line):
                    warnings.append(f"{context}: Duplicate consecutive coordinates")

        if len(errors) == before:
            try:
                to_shape(dict(geometry))
            except (ValueError, GEOSException) as exc:
                errors.append(f"{context}: Geometry cannot be built: {exc}")

    def _validate_ring(
        self,
        context: str,
        ring: list[Any],
        errors: list[str],
        warnings: list[str],
    ) -> None:
        if len(ring) < MIN_RING_POSITIONS:
            errors.append(
                f"{context}: Ring has {len(ring)} positions, need at least {MIN_RING_POSITIONS}"
            )
            return
        if list(ring[0][:2]) != list(ring[-1][:2]):
            warnings.append(f"{context}: Ring is not closed")
        if _has_consecutive_duplicates(ring):
            warnings.append(f"{context}: Duplicate consecutive coordinates")

        crossings = find_self_intersections(ring)
        for x, y in crossings:
            errors.append(f"{context}: Self-intersection detected at [{x:.6f}, {y:.6f}]")

    # ------------------------------------------------------------------
    # Cleaning
    # ------------------------------------------------------------------

    def clean(self, data: Mapping[str, Any]) -> dict[str, Any]:
        """Return a corrected deep copy of a GeoJSON Feature or FeatureCollection.

        Under ``SplitPolicy.EXPLODE`` a single Feature whose polygon splits
        is returned as a FeatureCollection of the parts.

        Raises:
            ValidationError: If *data* is not a Feature or FeatureCollection.
        """
        errors: list[str] = []
        features = _features_of(data, errors)
        if features is None:
            raise ValidationError("; ".join(errors), stage="clean", code="CLEAN_INPUT_INVALID")

        cleaned: list[dict[str, Any]] = []
        for index, feature in enumerate(features):
            cleaned.extend(self._clean_feature_dict(index, feature))

        if data.get("type") == "Feature" and len(cleaned) == 1:
            return cleaned[0]
        result: dict[str, Any] = {"type": "FeatureCollection", "features": cleaned}
        if "crs" in data:
            result["crs"] = copy.deepcopy(data["crs"])
        return result

    def clean_feature(self, feature: Feature) -> list[Feature]:
        """Apply ``clean`` to a ``Feature`` model.

        Returns one feature normally, or several under ``SplitPolicy.EXPLODE``.
        """
        parts = self._clean_feature_dict(0, {"type": "Feature", "geometry": feature.geometry})
        results: list[Feature] = []
        for part in parts:
            geometry = part["geometry"]
            results.append(
                replace(
                    feature,
                    geometry=geometry,
                    geometry_type=GeometryType.from_geojson(geometry["type"]),
                )
            )
        return results

    def _clean_feature_dict(self, index: int, feature: Any) -> list[dict[str, Any]]:
        feature = copy.deepcopy(dict(feature))
        geometry = feature.get("geometry")
        if not isinstance(geometry, Mapping):
            return [feature]
        geometry = dedupe_geometry(dict(geometry))
        feature["geometry"] = geometry

        if geometry.get("type") not in ("Polygon", "MultiPolygon"):
            return [feature]
        if not any(find_self_intersections(ring) for _, ring in polygon_rings(geometry)):
            return [feature]

        parts = _split_polygon(geometry)
        if not parts:
            logger.warning("clean: repair produced no polygon | feature=%d", index)
            return [feature]

        if len(parts) == 1:
            feature["geometry"] = to_geojson(parts[0])
            logger.info("clean: self-intersection repaired | feature=%d", index)
            return [feature]

        if geometry["type"] == "MultiPolygon" or self.split_policy is SplitPolicy.MERGE:
            feature["geometry"] = to_geojson(MultiPolygon(parts))
            logger.info(
                "clean: self-intersection split into multipolygon | feature=%d | parts=%d",
                index,
                len(parts),
            )
            return [feature]

        if self.split_policy is SplitPolicy.EXPLODE:
            logger.info(
                "clean: self-intersection split into features | feature=%d | parts=%d",
                index,
                len(parts),
            )
            exploded = []
            for part in parts:
                piece = copy.deepcopy(feature)
                piece["geometry"] = to_geojson(part)
                exploded.append(piece)
            return exploded

        logger.warning(
            "clean: repair would split polygon, keeping original | feature=%d | parts=%d",
            index,
            len(parts),
        )
        return [feature]


# ---------------------------------------------------------------------------
# Self-intersection detection
# ---------------------------------------------------------------------------


def find_self_intersections(ring: list[Any]) -> list[tuple[float, float]]:
    """Return every point where two non-adjacent segments of *ring* meet.

    All segment pairs are tested (O(n²) in ring size).  Consecutive
    duplicate positions are ignored so zero-length segments do not
    produce false positives; an unclosed ring is treated as closed.
    """
    points = [(float(p[0]), float(p[1])) for p in dedupe_consecutive(ring) if is_position(p)]
    if len(points) >= 2 and points[0] != points[-1]:
        points.append(points[0])
    segments: list[Segment] = list(zip(points, points[1:], strict=False))
    n = len(segments)
    found: list[tuple[float, float]] = []
    seen: set[tuple[float, float]] = set()
    for i in range(n):
        for j in range(i + 2, n):
            if i == 0 and j == n - 1:
                continue  # first and last segments share the closing vertex
            hit = _segment_intersection(segments[i], segments[j])
            if hit is not None:
                key = (round(hit[0], 12), round(hit[1], 12))
                if key not in seen:
                    seen.add(key)
                    found.append(hit)
    return found


def _segment_intersection(a: Segment, b: Segment) -> tuple[float, float] | None:
    (x1, y1), (x2, y2) = a
    (x3, y3), (x4, y4) = b
    rx, ry = x2 - x1, y2 - y1
    sx, sy = x4 - x3, y4 - y3
    denom = rx * sy - ry * sx
    qx, qy = x3 - x1, y3 - y1

    if denom == 0:
        if qx * ry - qy * rx != 0:
            return None  # parallel, not collinear
        for px, py in ((x3, y3), (x4, y4), (x1, y1), (x2, y2)):
            if _on_segment(px, py, a) and _on_segment(px, py, b):
                return (px, py)
        return None

    t = (qx * sy - qy * sx) / denom
    u = (qx * ry - qy * rx) / denom
    if 0.0 <= t <= 1.0 and 0.0 <= u <= 1.0:
        return (x1 + t * rx, y1 + t * ry)
    return None


def _on_segment(px: float, py: float, seg: Segment) -> bool:
    (x1, y1), (x2, y2) = seg
    return min(x1, x2) <= px <= max(x1, x2) and min(y1, y2) <= py <= max(y1, y2)


def _has_consecutive_duplicates(positions: Any) -> bool:
    if not isinstance(positions, list | tuple):
        return False
    return any(
        is_position(a) and is_position(b) and list(a[:2]) == list(b[:2])
        for a, b in zip(positions, positions[1:], strict=False)
    )


# ---------------------------------------------------------------------------
# Coordinate nesting
# ---------------------------------------------------------------------------


def _nesting_errors(geom_type: str, coords: Any) -> list[str]:
    """Check that *coords* has the depth and lengths its geometry type requires."""
    if geom_type == "Point":
        return [] if is_position(coords) else ["Point coordinates must be a single position"]
    if geom_type == "MultiPoint":
        if all(is_position(p) for p in coords):
            return []
        return ["MultiPoint coordinates must be a list of positions"]
    if geom_type == "LineString":
        return _line_errors("LineString", coords)
    if geom_type == "MultiLineString":
        return [
            problem
            for index, line in enumerate(coords)
            for problem in _line_errors(f"LineString {index}", line)
        ]
    if geom_type == "Polygon":
        return _polygon_errors("Polygon", coords)
    return [
        problem
        for index, polygon in enumerate(coords)
        for problem in _polygon_errors(f"Polygon {index}", polygon)
    ]


def _line_errors(label: str, line: Any) -> list[str]:
    if not isinstance(line, list | tuple) or not all(is_position(p) for p in line):
        return [f"{label} must be a list of positions"]
    if len(line) < MIN_LINE_POSITIONS:
        return [f"{label} has {len(line)} positions, need at least {MIN_LINE_POSITIONS}"]
    return []


def _polygon_errors(label: str, rings: Any) -> list[str]:
    if not isinstance(rings, list | tuple) or not rings:
        return [f"{label} must be a non-empty list of rings"]
    return [
        f"{label} ring {index} must be a list of positions"
        for index, ring in enumerate(rings)
        if not isinstance(ring, list | tuple) or not all(is_position(p) for p in ring)
    ]


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _features_of(data: Any, errors: list[str]) -> list[Any] | None:
    """Return the features of *data*, or ``None`` after recording a structural error."""
    if isinstance(data, Feature):
        return [data.to_geojson()]
    if not isinstance(data, Mapping):
        errors.append("Invalid GeoJSON structure: expected a Feature or FeatureCollection")
        return None
    kind = data.get("type")
    if kind == "Feature":
        return [data]
    if kind == "FeatureCollection":
        features = data.get("features")
        if not isinstance(features, list):
            errors.append("Invalid GeoJSON structure: FeatureCollection.features must be a list")
            return None
        return features
    errors.append(
        f"Invalid GeoJSON structure: expected a Feature or FeatureCollection, got {kind!r}"
    )
    return None


def _split_polygon(geometry: dict[str, Any]) -> list[Polygon]:
    repaired: BaseGeometry = make_valid(to_shape(geometry))
    if isinstance(repaired, Polygon):
        return [repaired] if not repaired.is_empty else []
    parts = getattr(repaired, "geoms", [])
    polygons: list[Polygon] = []
    for part in parts:
        if isinstance(part, Polygon) and not part.is_empty:
            polygons.append(part)
        elif isinstance(part, MultiPolygon):
            polygons.extend(p for p in part.geoms if not p.is_empty)
    return polygons

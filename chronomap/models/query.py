"""Query models for the spatial-temporal query engine.

Four query shapes share one ``QueryFilters`` value:

- ``BboxQuery``: features intersecting an envelope.
- ``RadiusQuery``: features within a geodesic distance of a point.
- ``PolygonQuery``: features strictly contained in a polygon.
- ``GridQuery``: per-cell feature counts over a regular grid.

All coordinates are WGS 84 longitude/latitude in decimal degrees.
"""

from __future__ import annotations

import copy
from dataclasses import dataclass, field
from datetime import date
from typing import TYPE_CHECKING, Any

from shapely.errors import GEOSException
from shapely.geometry import shape
from shapely.validation import explain_validity

from chronomap.core.constants import (
    DEFAULT_GRID_CELL_SIZE_DEG,
    MAX_LATITUDE,
    MAX_LONGITUDE,
    MIN_LATITUDE,
    MIN_LONGITUDE,
)
from chronomap.models.feature import (
    GeometryType,
    ModelValidationError,
    _check_min,
    _check_range,
)

if TYPE_CHECKING:
    from chronomap.models.feature import Feature

MIN_YEAR = 1
MAX_YEAR = 9999


# ---------------------------------------------------------------------------
# Filters
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class QueryFilters:
    """Optional restrictions applied identically by every query path.

    Attributes:
        layer_id: Only features of this layer.
        geometry_type: Only features of this geometry type.
        year: Only features current on ``year-01-01``; an unset
            ``valid_from`` / ``valid_to`` bound is unbounded.
    """

    layer_id: str | None = None
    geometry_type: GeometryType | None = None
    year: int | None = None

    def __post_init__(self) -> None:
        if self.year is not None:
            _check_range("QueryFilters", "year", self.year, MIN_YEAR, MAX_YEAR)

    @property
    def reference_date(self) -> date | None:
        """The date ``year`` is evaluated against (January 1st)."""
        return date(self.year, 1, 1) if self.year is not None else None

    def matches(self, feature: Feature) -> bool:
        """Whether *feature* passes every filter that is set."""
        if self.layer_id is not None and feature.layer_id != self.layer_id:
            return False
        if self.geometry_type is not None and feature.geometry_type != self.geometry_type:
            return False
        when = self.reference_date
        return when is None or feature.is_valid_at(when)

    def to_dict(self) -> dict[str, object]:
        """Return only the filters that are actually applied."""
        applied: dict[str, object] = {}
        if self.layer_id is not None:
            applied["layer_id"] = self.layer_id
        if self.geometry_type is not None:
            applied["geometry_type"] = self.geometry_type.value
        if self.year is not None:
            applied["year"] = self.year
        return applied

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> QueryFilters:
        """Build filters from a loosely-typed mapping (inbound request args).

        Raises:
            ModelValidationError: If a value is of the wrong shape.
        """
        if not data:
            return cls()
        geometry_type = data.get("geometry_type")
        year = data.get("year")
        try:
            return cls(
                layer_id=str(data["layer_id"]) if data.get("layer_id") is not None else None,
                geometry_type=GeometryType(geometry_type) if geometry_type else None,
                year=int(year) if year is not None else None,
            )
        except (TypeError, ValueError) as exc:
            if isinstance(exc, ModelValidationError):
                raise
            raise ModelValidationError("QueryFilters", "filters", data, str(exc)) from exc


# ---------------------------------------------------------------------------
# Query shapes
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class BoundingBox:
    """Envelope ``(min_lon, min_lat, max_lon, max_lat)`` in degrees."""

    min_lon: float
    min_lat: float
    max_lon: float
    max_lat: float

    def __post_init__(self) -> None:
        _check_range("BoundingBox", "min_lon", self.min_lon, MIN_LONGITUDE, MAX_LONGITUDE)
        _check_range("BoundingBox", "max_lon", self.max_lon, MIN_LONGITUDE, MAX_LONGITUDE)
        _check_range("BoundingBox", "min_lat", self.min_lat, MIN_LATITUDE, MAX_LATITUDE)
        _check_range("BoundingBox", "max_lat", self.max_lat, MIN_LATITUDE, MAX_LATITUDE)
        if self.min_lon > self.max_lon:
            raise ModelValidationError(
                "BoundingBox", "min_lon", self.min_lon, f"must be <= max_lon ({self.max_lon})"
            )
        if self.min_lat > self.max_lat:
            raise ModelValidationError(
                "BoundingBox", "min_lat", self.min_lat, f"must be <= max_lat ({self.max_lat})"
            )

    def as_tuple(self) -> tuple[float, float, float, float]:
        return (self.min_lon, self.min_lat, self.max_lon, self.max_lat)


@dataclass(frozen=True, slots=True)
class BboxQuery:
    """Select features whose geometry intersects ``bbox``."""

    bbox: BoundingBox
    filters: QueryFilters = field(default_factory=QueryFilters)
    limit: int | None = None

    def __post_init__(self) -> None:
        if self.limit is not None:
            _check_min("BboxQuery", "limit", self.limit, 1)


@dataclass(frozen=True, slots=True)
class RadiusQuery:
    """Select features within ``radius_m`` geodesic metres of ``(lon, lat)``."""

    lon: float
    lat: float
    radius_m: float
    filters: QueryFilters = field(default_factory=QueryFilters)
    limit: int | None = None

    def __post_init__(self) -> None:
        _check_range("RadiusQuery", "lon", self.lon, MIN_LONGITUDE, MAX_LONGITUDE)
        _check_range("RadiusQuery", "lat", self.lat, MIN_LATITUDE, MAX_LATITUDE)
        _check_min("RadiusQuery", "radius_m", self.radius_m, 0)
        if self.limit is not None:
            _check_min("RadiusQuery", "limit", self.limit, 1)


@dataclass(frozen=True, slots=True)
class PolygonQuery:
    """Select features strictly contained within ``polygon``.

    ``polygon`` is a GeoJSON ``Polygon`` or ``MultiPolygon`` geometry.
    """

    polygon: dict[str, Any]
    filters: QueryFilters = field(default_factory=QueryFilters)
    limit: int | None = None

    def __post_init__(self) -> None:
        geom_type = self.polygon.get("type") if isinstance(self.polygon, dict) else None
        if geom_type not in ("Polygon", "MultiPolygon"):
            raise ModelValidationError(
                "PolygonQuery", "polygon", geom_type, "must be a Polygon or MultiPolygon geometry"
            )
        try:
            area = shape(self.polygon)
        except (TypeError, ValueError, IndexError, GEOSException) as exc:
            raise ModelValidationError(
                "PolygonQuery", "polygon", geom_type, f"cannot be built: {exc}"
            ) from exc
        if area.is_empty or not area.is_valid:
            raise ModelValidationError(
                "PolygonQuery", "polygon", geom_type, f"is not valid: {explain_validity(area)}"
            )
        if self.limit is not None:
            _check_min("PolygonQuery", "limit", self.limit, 1)


@dataclass(frozen=True, slots=True)
class GridQuery:
    """Count intersecting features per ``cell_size_deg`` cell over ``bbox``."""

    bbox: BoundingBox
    cell_size_deg: float = DEFAULT_GRID_CELL_SIZE_DEG
    filters: QueryFilters = field(default_factory=QueryFilters)

    def __post_init__(self) -> None:
        if self.bbox.min_lon == self.bbox.max_lon or self.bbox.min_lat == self.bbox.max_lat:
            raise ModelValidationError(
                "GridQuery", "bbox", self.bbox.as_tuple(), "must have non-zero width and height"
            )
        if self.cell_size_deg <= 0:
            raise ModelValidationError(
                "GridQuery", "cell_size_deg", self.cell_size_deg, "must be > 0"
            )


Query = BboxQuery | RadiusQuery | PolygonQuery | GridQuery


# ---------------------------------------------------------------------------
# Results
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class QueryMatch:
    """A feature selected by a query, with its distance for radius queries."""

    feature: Feature
    distance_m: float | None = None

    def to_geojson(self) -> dict[str, Any]:
        payload = self.feature.to_geojson()
        if self.distance_m is not None:
            payload["properties"]["distance_m"] = round(self.distance_m, 3)
            payload["properties"]["distance_km"] = round(self.distance_m / 1000.0, 6)
        return payload


@dataclass(frozen=True, slots=True)
class QueryResult:
    """Selected features plus metadata (applied filters, count, query shape)."""

    matches: tuple[QueryMatch, ...]
    meta: dict[str, object]

    @property
    def features(self) -> list[Feature]:
        return [m.feature for m in self.matches]

    def to_feature_collection(self) -> dict[str, Any]:
        return {
            "type": "FeatureCollection",
            "features": [m.to_geojson() for m in self.matches],
            "meta": copy.deepcopy(self.meta),
        }


@dataclass(frozen=True, slots=True)
class GridCell:
    """A non-empty heatmap cell anchored at its south-west corner ``(x, y)``."""

    x: float
    y: float
    count: int
    geometry: dict[str, Any]

    def to_dict(self) -> dict[str, object]:
        return {
            "x": self.x,
            "y": self.y,
            "count": self.count,
            "geometry": copy.deepcopy(self.geometry),
        }


@dataclass(frozen=True, slots=True)
class GridResult:
    """Non-empty cells ordered by descending count, plus metadata."""

    cells: tuple[GridCell, ...]
    meta: dict[str, object]

    def to_dict(self) -> dict[str, object]:
        return {
            "cells": [c.to_dict() for c in self.cells],
            "meta": copy.deepcopy(self.meta),
        }

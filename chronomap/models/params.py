"""Pydantic parameter models for importers.

Each importer declares the model its ``import_data(params)`` accepts.
Unknown keys are rejected (``extra="forbid"``) and every constraint is
checked before the importer touches the network or the filesystem.
``Importer.parse_params`` maps pydantic's ``ValidationError`` to
``InvalidParams``.
"""

from __future__ import annotations

from datetime import date
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from chronomap.core.constants import (
    MAX_LATITUDE,
    MAX_LONGITUDE,
    MIN_GROUND_CONTROL_POINTS,
    MIN_LATITUDE,
    MIN_LONGITUDE,
)
from chronomap.models.feature import parse_date_range


class ImportParams(BaseModel):
    """Parameters common to every importer.

    Attributes:
        layer_id: Target layer; defaults to the source's default layer.
        valid_from: Validity start applied to every imported feature
            (overrides per-record values).
        valid_to: Validity end applied to every imported feature.
        simplify: Simplify line/polygon geometries before persisting.
        tolerance: Simplification tolerance in degrees (``None`` = config default).
    """

    model_config = ConfigDict(extra="forbid")

    layer_id: str | None = Field(default=None, min_length=1)
    valid_from: date | None = None
    valid_to: date | None = None
    simplify: bool = False
    tolerance: float | None = Field(default=None, gt=0)

    @model_validator(mode="after")
    def _check_validity_interval(self) -> ImportParams:
        if self.valid_from and self.valid_to and self.valid_to < self.valid_from:
            msg = "valid_to must be on or after valid_from"
            raise ValueError(msg)
        return self


class BboxParamsMixin(BaseModel):
    """Adds a ``(min_lon, min_lat, max_lon, max_lat)`` bounding box."""

    bbox: tuple[float, float, float, float] | None = None

    @model_validator(mode="after")
    def _check_bbox(self) -> BboxParamsMixin:
        if self.bbox is None:
            return self
        min_lon, min_lat, max_lon, max_lat = self.bbox
        for lon in (min_lon, max_lon):
            if not MIN_LONGITUDE <= lon <= MAX_LONGITUDE:
                msg = f"bbox longitude {lon} out of range"
                raise ValueError(msg)
        for lat in (min_lat, max_lat):
            if not MIN_LATITUDE <= lat <= MAX_LATITUDE:
                msg = f"bbox latitude {lat} out of range"
                raise ValueError(msg)
        if min_lon > max_lon or min_lat > max_lat:
            msg = "bbox minimums must not exceed maximums"
            raise ValueError(msg)
        return self


# ---------------------------------------------------------------------------
# Remote API sources
# ---------------------------------------------------------------------------


class EonetParams(ImportParams):
    """NASA EONET natural-event query."""

    status: Literal["open", "closed", "all"] = "open"
    days: int | None = Field(default=None, ge=1)
    category: str | None = None
    limit: int | None = Field(default=None, ge=1)


class ClimateParams(ImportParams):
    """NOAA CDO daily-summary query; both dates are required."""

    dataset_id: str = "GHCND"
    start_date: date
    end_date: date
    location_id: str | None = None
    datatype_ids: list[str] = Field(default_factory=list)
    limit: int = Field(default=1000, ge=1, le=1000)
    units: Literal["metric", "standard"] = "metric"

    @model_validator(mode="after")
    def _check_dates(self) -> ClimateParams:
        if self.end_date < self.start_date:
            msg = "end_date must be on or after start_date"
            raise ValueError(msg)
        return self


class OsmParams(ImportParams, BboxParamsMixin):
    """Overpass query for tagged nodes/ways inside a bounding box."""

    bbox: tuple[float, float, float, float]
    tags: list[str] = Field(default_factory=lambda: ["building"], min_length=1)
    timeout_s: int = Field(default=60, ge=1, le=900)


# ---------------------------------------------------------------------------
# Document / file sources
# ---------------------------------------------------------------------------


class GeoJsonParams(ImportParams, BboxParamsMixin):
    """GeoJSON from exactly one of an inline document, a file or a URL."""

    data: dict[str, Any] | None = None
    path: str | None = None
    url: str | None = None
    source_crs: str | None = None

    @model_validator(mode="after")
    def _check_one_input(self) -> GeoJsonParams:
        given = [name for name in ("data", "path", "url") if getattr(self, name) is not None]
        if len(given) != 1:
            msg = f"exactly one of data, path or url is required (got {given or 'none'})"
            raise ValueError(msg)
        return self


class NaturalEarthParams(ImportParams):
    """Natural Earth shapefile."""

    path: str = Field(min_length=1)
    source_crs: str | None = None


class KmlParams(ImportParams):
    """KML document on the local filesystem."""

    path: str = Field(min_length=1)


class RasterParams(ImportParams):
    """Raster image to vectorise by thresholding one band."""

    path: str = Field(min_length=1)
    band: int = Field(default=1, ge=1)
    threshold: int = Field(default=128, ge=0, le=255)


class GroundControlPointParams(BaseModel):
    """One ground control point: an image pixel tied to a WGS 84 location.

    Attributes:
        pixel: Column in the image (x, from the left edge).
        line: Row in the image (y, from the top edge).
        lon: Longitude of the pixel in decimal degrees.
        lat: Latitude of the pixel in decimal degrees.
    """

    model_config = ConfigDict(extra="forbid")

    pixel: float = Field(ge=0)
    line: float = Field(ge=0)
    lon: float = Field(ge=MIN_LONGITUDE, le=MAX_LONGITUDE)
    lat: float = Field(ge=MIN_LATITUDE, le=MAX_LATITUDE)


class HistoricalMapParams(ImportParams):
    """Scanned historical map, placed by GCPs or by its own georeferencing.

    ``map_date`` is an ISO date or a bare year; it sets the validity
    interval when ``valid_from`` / ``valid_to`` are not given.
    ``metadata`` is merged into the feature properties.
    """

    path: str = Field(min_length=1)
    gcps: list[GroundControlPointParams] = Field(default_factory=list)
    title: str | None = Field(default=None, min_length=1)
    map_date: str | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)

    @field_validator("map_date")
    @classmethod
    def _check_map_date(cls, value: str | None) -> str | None:
        if value is not None:
            parse_date_range(value)
        return value

    @model_validator(mode="after")
    def _check_gcp_count(self) -> HistoricalMapParams:
        if 0 < len(self.gcps) < MIN_GROUND_CONTROL_POINTS:
            msg = (
                f"at least {MIN_GROUND_CONTROL_POINTS} ground control points are required "
                f"for georeferencing (got {len(self.gcps)})"
            )
            raise ValueError(msg)
        return self

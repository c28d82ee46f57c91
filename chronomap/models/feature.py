"""Data model for a normalised geographic feature.

A Feature is the single representation every importer converts its
source records into, and the unit the store persists and the query
engine returns.  Coordinates are ``[longitude, latitude]`` in decimal
degrees (EPSG:4326) unless explicitly reprojected.

The validity interval ``[valid_from, valid_to]`` bounds when the
feature is considered current; an unset bound is open-ended.
"""

from __future__ import annotations

import copy
import enum
from collections.abc import Mapping
from dataclasses import dataclass, field, replace
from datetime import date, datetime
from typing import Any, TypeAlias

from chronomap.core.exceptions import PipelineError

JSONValue: TypeAlias = (
    str | int | float | bool | None | dict[str, "JSONValue"] | list["JSONValue"]
)
"""Tagged-union value type of the open ``properties`` bag."""


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------


class ModelValidationError(ValueError, PipelineError):
    """Raised when a domain model is constructed with invalid field values.

    Attributes:
        model: Name of the model class that failed validation.
        field_name: The field that violated the invariant.
        value: The invalid value.
    """

    default_stage = "model_validation"
    default_code = "MODEL_VALIDATION_FAILED"

    def __init__(self, model: str, field_name: str, value: object, message: str) -> None:
        self.model = model
        self.field_name = field_name
        self.value = value
        formatted = f"{model}.{field_name}={value!r}: {message}"
        PipelineError.__init__(self, formatted)


# ---------------------------------------------------------------------------
# Geometry types
# ---------------------------------------------------------------------------


class GeometryType(enum.Enum):
    """Normalised geometry type of a feature."""

    POINT = "point"
    MULTIPOINT = "multipoint"
    LINE = "line"
    MULTILINE = "multiline"
    POLYGON = "polygon"
    MULTIPOLYGON = "multipolygon"

    @classmethod
    def from_geojson(cls, geojson_type: str) -> GeometryType:
        """Map a GeoJSON geometry ``type`` to a ``GeometryType``.

        Raises:
            ValueError: If the GeoJSON type has no normalised counterpart
                (e.g. ``GeometryCollection``).
        """
        try:
            return _GEOJSON_TO_TYPE[geojson_type]
        except KeyError:
            msg = f"Unsupported GeoJSON geometry type: {geojson_type!r}"
            raise ValueError(msg) from None

    @property
    def geojson_type(self) -> str:
        """The GeoJSON ``type`` string for this geometry type."""
        return _TYPE_TO_GEOJSON[self]


_GEOJSON_TO_TYPE: dict[str, GeometryType] = {
    "Point": GeometryType.POINT,
    "MultiPoint": GeometryType.MULTIPOINT,
    "LineString": GeometryType.LINE,
    "MultiLineString": GeometryType.MULTILINE,
    "Polygon": GeometryType.POLYGON,
    "MultiPolygon": GeometryType.MULTIPOLYGON,
}
_TYPE_TO_GEOJSON: dict[GeometryType, str] = {v: k for k, v in _GEOJSON_TO_TYPE.items()}


# ---------------------------------------------------------------------------
# Feature
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class Feature:
    """A single normalised geographic entity.

    Attributes:
        layer_id: Owning collection identifier.
        geometry_type: Normalised geometry type; must agree with ``geometry``.
        geometry: GeoJSON geometry mapping (``type`` + ``coordinates``).
        id: Store-assigned identifier; ``None`` until persisted.
        name: Optional display label.
        properties: Open string-keyed bag of JSON-compatible values.
        valid_from: First date the feature is current (``None`` = unbounded).
        valid_to: Last date the feature is current (``None`` = unbounded).
    """

    layer_id: str
    geometry_type: GeometryType
    geometry: dict[str, Any]
    id: str | None = None
    name: str = ""
    properties: dict[str, JSONValue] = field(default_factory=dict)
    valid_from: date | None = None
    valid_to: date | None = None

    def __post_init__(self) -> None:
        _check_non_empty("Feature", "layer_id", self.layer_id)
        if not isinstance(self.geometry, Mapping) or "type" not in self.geometry:
            raise ModelValidationError(
                "Feature", "geometry", self.geometry, "must be a GeoJSON geometry mapping"
            )
        declared = self.geometry["type"]
        if declared != self.geometry_type.geojson_type:
            raise ModelValidationError(
                "Feature",
                "geometry_type",
                self.geometry_type.value,
                f"does not match geometry type {declared!r}",
            )
        if (
            self.valid_from is not None
            and self.valid_to is not None
            and self.valid_to < self.valid_from
        ):
            raise ModelValidationError(
                "Feature",
                "valid_to",
                self.valid_to.isoformat(),
                f"must be on or after valid_from ({self.valid_from.isoformat()})",
            )

    @classmethod
    def from_geometry(
        cls,
        layer_id: str,
        geometry: Mapping[str, Any],
        **kwargs: Any,
    ) -> Feature:
        """Build a Feature, deriving ``geometry_type`` from the geometry.

        Raises:
            ModelValidationError: If the geometry type is unsupported or
                the validity interval is inverted.
        """
        geojson_type = str(geometry.get("type", ""))
        try:
            geometry_type = GeometryType.from_geojson(geojson_type)
        except ValueError as exc:
            raise ModelValidationError("Feature", "geometry", geojson_type, str(exc)) from exc
        return cls(
            layer_id=layer_id,
            geometry_type=geometry_type,
            geometry=copy.deepcopy(dict(geometry)),
            **kwargs,
        )

    def with_id(self, feature_id: str) -> Feature:
        """Return a copy of this feature carrying the store-assigned id."""
        return replace(self, id=feature_id)

    def is_valid_at(self, when: date) -> bool:
        """Whether the feature is current on *when* (bounds inclusive)."""
        if isinstance(when, datetime):
            when = when.date()
        if self.valid_from is not None and self.valid_from > when:
            return False
        return not (self.valid_to is not None and self.valid_to < when)

    def to_geojson(self) -> dict[str, Any]:
        """Serialise to a GeoJSON Feature with normalised fields in properties."""
        properties: dict[str, Any] = copy.deepcopy(self.properties)
        properties.update(
            {
                "name": self.name,
                "type": self.geometry_type.value,
                "layerId": self.layer_id,
                "validFrom": _iso(self.valid_from),
                "validTo": _iso(self.valid_to),
            }
        )
        return {
            "type": "Feature",
            "id": self.id,
            "geometry": copy.deepcopy(self.geometry),
            "properties": properties,
        }

    def to_dict(self) -> dict[str, object]:
        """Serialise to a plain dict for storage or transport."""
        return {
            "id": self.id,
            "layer_id": self.layer_id,
            "name": self.name,
            "geometry_type": self.geometry_type.value,
            "geometry": copy.deepcopy(self.geometry),
            "properties": copy.deepcopy(self.properties),
            "valid_from": _iso(self.valid_from),
            "valid_to": _iso(self.valid_to),
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, object]) -> Feature:
        """Deserialise from a ``to_dict()`` payload.

        Raises:
            TypeError: If field values have unexpected types.
            ModelValidationError: If model invariants are violated.
        """
        geometry = data.get("geometry")
        if not isinstance(geometry, Mapping):
            msg = f"geometry must be a mapping, got {type(geometry).__name__}"
            raise TypeError(msg)
        properties = data.get("properties", {})
        if not isinstance(properties, Mapping):
            msg = f"properties must be a mapping, got {type(properties).__name__}"
            raise TypeError(msg)
        raw_id = data.get("id")
        return cls(
            id=None if raw_id is None else str(raw_id),
            layer_id=str(data.get("layer_id", "")),
            name=str(data.get("name", "") or ""),
            geometry_type=GeometryType(str(data.get("geometry_type", ""))),
            geometry=copy.deepcopy(dict(geometry)),
            properties=normalize_properties(properties),
            valid_from=parse_date(data.get("valid_from")),
            valid_to=parse_date(data.get("valid_to")),
        )


# ---------------------------------------------------------------------------
# Property and date helpers
# ---------------------------------------------------------------------------


def normalize_properties(raw: Mapping[Any, Any]) -> dict[str, JSONValue]:
    """Coerce an arbitrary source mapping into a JSON-compatible property bag.

    Keys become strings; tuples become lists; dates and datetimes become
    ISO strings; numpy scalars are unwrapped via ``item()``.

    Raises:
        TypeError: If a value cannot be represented as JSON.
    """
    return {str(key): _normalize_value(value) for key, value in raw.items()}


def _normalize_value(value: Any) -> JSONValue:
    if value is None or isinstance(value, str | bool | int | float):
        return value
    if isinstance(value, date):
        return value.isoformat()
    if isinstance(value, Mapping):
        return normalize_properties(value)
    if isinstance(value, list | tuple):
        return [_normalize_value(v) for v in value]
    item = getattr(value, "item", None)
    if callable(item):
        return _normalize_value(item())
    msg = f"Property value of type {type(value).__name__} is not JSON-compatible"
    raise TypeError(msg)


def parse_date(value: object) -> date | None:
    """Parse an ISO date/datetime string (or pass a date through).

    Empty values yield ``None``.

    Raises:
        ValueError: If a non-empty string is not ISO 8601.
    """
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    text = str(value).strip()
    if len(text) > 10:
        return datetime.fromisoformat(text.replace("Z", "+00:00")).date()
    return date.fromisoformat(text)


def parse_date_range(value: object) -> tuple[date, date]:
    """Parse a date or a bare year into the interval it covers.

    ``"1850"`` covers the whole year; an ISO date covers that one day.

    Raises:
        ValueError: If *value* is neither a year nor an ISO date.
    """
    text = str(value).strip()
    if text.isdigit() and len(text) <= 4:
        year = int(text)
        return date(year, 1, 1), date(year, 12, 31)
    day = parse_date(text)
    if day is None:
        msg = "date must not be empty"
        raise ValueError(msg)
    return day, day


def _iso(value: date | None) -> str | None:
    return value.isoformat() if value is not None else None


# ---------------------------------------------------------------------------
# Validation helpers (shared by the models package)
# ---------------------------------------------------------------------------


def _check_range(model: str, field_name: str, value: float, lo: float, hi: float) -> None:
    """Raise `ModelValidationError` if *value* falls outside [lo, hi]."""
    if value < lo or value > hi:
        raise ModelValidationError(model, field_name, value, f"must be between {lo} and {hi}")


def _check_min(model: str, field_name: str, value: float | int, lo: float | int) -> None:
    """Raise `ModelValidationError` if *value* is below *lo*."""
    if value < lo:
        raise ModelValidationError(model, field_name, value, f"must be >= {lo}")


def _check_non_empty(model: str, field_name: str, value: str) -> None:
    """Raise `ModelValidationError` if *value* is empty or blank."""
    if not value or not value.strip():
        raise ModelValidationError(model, field_name, value, "must not be empty")

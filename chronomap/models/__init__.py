"""Data models.

- Feature: Normalised geographic entity with a validity interval
- BatchStats / BatchItemError / ProgressEvent: Batch run accounting
- ValidationResult: Outcome of a geometry validation call
- Query shapes (Bbox/Radius/Polygon/Grid) and their results
- Import parameter models (pydantic)
"""

from chronomap.models.batch import BatchItemError, BatchStats, ProgressEvent
from chronomap.models.feature import (
    Feature,
    GeometryType,
    JSONValue,
    ModelValidationError,
)
from chronomap.models.query import (
    BboxQuery,
    BoundingBox,
    GridQuery,
    PolygonQuery,
    QueryFilters,
    RadiusQuery,
)
from chronomap.models.validation import ValidationResult

__all__ = [
    "BatchItemError",
    "BatchStats",
    "BboxQuery",
    "BoundingBox",
    "Feature",
    "GeometryType",
    "GridQuery",
    "JSONValue",
    "ModelValidationError",
    "PolygonQuery",
    "ProgressEvent",
    "QueryFilters",
    "RadiusQuery",
    "ValidationResult",
]

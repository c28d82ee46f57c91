"""GeoJSON importer.

Accepts exactly one of an inline document (``data``), a local file
(``path``) or a remote document (``url``, fetched through the
importer's ``RateLimitedClient``).  A bare geometry or a single Feature
is normalised to a FeatureCollection first.

Optional steps, in order: reprojection from ``source_crs`` to WGS 84,
then a ``bbox`` filter that keeps features intersecting the envelope.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any, ClassVar

from shapely.errors import GEOSException

from chronomap.core.constants import GEOJSON, WGS84
from chronomap.core.exceptions import InvalidParams
from chronomap.importers.base import ConversionResult, FetchResult, Importer
from chronomap.models.params import GeoJsonParams
from chronomap.query.spatial import intersects_bbox

logger = logging.getLogger("chronomap.importers.geojson")

#: Property keys consulted, in order, for a feature's display name.
NAME_KEYS = ("name", "NAME")


class GeoJsonImporter(Importer):
    """Import features from a GeoJSON document."""

    source = GEOJSON
    params_model: ClassVar[type[GeoJsonParams]] = GeoJsonParams

    def fetch(self, params: GeoJsonParams) -> FetchResult:
        document = self._load(params)
        collection = to_feature_collection(document)

        if params.source_crs and params.source_crs != WGS84:
            collection = self.transformer.transform(collection, params.source_crs, WGS84)

        features = list(collection["features"])
        if params.bbox is not None:
            before = len(features)
            features = [f for f in features if _keep_in_bbox(f, params.bbox)]
            logger.info(
                "bbox filter applied | kept=%d | dropped=%d", len(features), before - len(features)
            )
        return FetchResult(records=features)

    def _load(self, params: GeoJsonParams) -> Any:
        if params.data is not None:
            return params.data
        if params.path is not None:
            path = Path(params.path)
            try:
                return json.loads(path.read_text(encoding="utf-8"))
            except FileNotFoundError as exc:
                msg = f"GeoJSON file not found: {path}"
                raise InvalidParams(msg, errors=[f"path: {msg}"]) from exc
            except json.JSONDecodeError as exc:
                msg = f"GeoJSON file is not valid JSON: {path} ({exc})"
                raise InvalidParams(msg, errors=[f"path: {msg}"]) from exc
        return self.client.get_json(str(params.url))

    def convert(self, record: Any, params: GeoJsonParams) -> ConversionResult:
        if not isinstance(record, dict):
            return ConversionResult.failure(
                f"feature must be an object, got {type(record).__name__}"
            )
        geometry = record.get("geometry")
        if not isinstance(geometry, dict) or not geometry.get("coordinates"):
            return ConversionResult.failure("Missing geometry")
        properties = dict(record.get("properties") or {})
        name = next((str(properties[k]) for k in NAME_KEYS if properties.get(k)), "")
        return self.build_feature(
            params,
            geometry,
            name=name,
            properties=properties,
            valid_from=properties.get("valid_from"),
            valid_to=properties.get("valid_to"),
        )


def to_feature_collection(document: Any) -> dict[str, Any]:
    """Normalise a geometry, Feature or FeatureCollection to a FeatureCollection.

    Raises:
        InvalidParams: If *document* is none of those.
    """
    doc_type = document.get("type") if isinstance(document, dict) else None
    if doc_type == "FeatureCollection" and isinstance(document.get("features"), list):
        return document
    if doc_type == "Feature":
        return {"type": "FeatureCollection", "features": [document]}
    if doc_type and "coordinates" in document:
        return {
            "type": "FeatureCollection",
            "features": [{"type": "Feature", "geometry": document, "properties": {}}],
        }
    msg = (
        "Invalid GeoJSON format: expected a geometry, Feature or FeatureCollection, "
        f"got {doc_type!r}"
    )
    raise InvalidParams(msg, errors=[f"data: {msg}"])


def _keep_in_bbox(feature: Any, bbox: tuple[float, float, float, float]) -> bool:
    geometry = feature.get("geometry") if isinstance(feature, dict) else None
    if not isinstance(geometry, dict) or not geometry.get("coordinates"):
        # Left in so the record is reported as a conversion failure.
        return True
    try:
        return intersects_bbox(geometry, bbox)
    except (ValueError, TypeError, GEOSException):
        return True

"""Natural Earth shapefile importer.

Reads a Natural Earth (or any OGR-readable) vector file with fiona.
Coordinates are reprojected to WGS 84 when the file declares another
CRS or the caller passes ``source_crs``.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any, ClassVar

from chronomap.core.constants import NATURAL_EARTH, WGS84
from chronomap.core.exceptions import InvalidParams
from chronomap.importers.base import ConversionResult, FetchResult, Importer
from chronomap.models.params import NaturalEarthParams
from chronomap.processing._geometry import listify

if TYPE_CHECKING:
    from fiona.collection import Collection

logger = logging.getLogger("chronomap.importers.natural_earth")

#: Property keys consulted, in order, for a feature's display name.
NAME_KEYS = ("NAME", "NAME_LONG", "name", "admin")
UNKNOWN_NAME = "Unknown"


class NaturalEarthImporter(Importer):
    """Import administrative/physical features from a shapefile."""

    source = NATURAL_EARTH
    params_model: ClassVar[type[NaturalEarthParams]] = NaturalEarthParams

    def fetch(self, params: NaturalEarthParams) -> FetchResult:
        import fiona
        from fiona.errors import FionaError
        from fiona.model import to_dict

        try:
            with fiona.open(params.path) as collection:
                declared = _declared_crs(collection)
                features = [listify(to_dict(record)) for record in collection]
        except FionaError as exc:
            msg = f"Cannot read vector file {params.path}: {exc}"
            raise InvalidParams(msg, errors=[f"path: {msg}"]) from exc

        logger.info(
            "vector file read | path=%s | features=%d | crs=%s",
            params.path,
            len(features),
            declared or WGS84,
        )

        source_crs = params.source_crs
        if source_crs is None and declared is not None:
            source_crs = declared
            if not self.transformer.is_registered(declared):
                self.transformer.register(declared, declared)
        if source_crs and source_crs != WGS84:
            features = [self._reproject(f, source_crs) for f in features]
        return FetchResult(records=features)

    def _reproject(self, feature: dict[str, Any], source_crs: str) -> dict[str, Any]:
        geometry = feature.get("geometry")
        if not geometry:
            return feature
        reprojected = self.transformer.transform_geometry(geometry, source_crs, WGS84)
        return {**feature, "geometry": reprojected}

    def convert(self, record: Any, params: NaturalEarthParams) -> ConversionResult:
        geometry = record.get("geometry") if isinstance(record, dict) else None
        if not geometry:
            return ConversionResult.failure("Missing geometry")
        properties = dict(record.get("properties") or {})
        name = next((str(properties[k]) for k in NAME_KEYS if properties.get(k)), UNKNOWN_NAME)
        return self.build_feature(params, geometry, name=name, properties=properties)


def _declared_crs(collection: Collection) -> str | None:
    """``"EPSG:<n>"`` for the collection's CRS, or ``None`` when undeclared."""
    crs = collection.crs
    if not crs:
        return None
    epsg = crs.to_epsg()
    if epsg is None:
        logger.warning("shapefile CRS has no EPSG code | assuming %s", WGS84)
        return None
    return f"EPSG:{epsg}"

"""Historical map importer.

Places a scanned historical map on the earth and stores its footprint
as one polygon feature.  The placement comes from, in order:

1. ground control points given in the parameters (at least three),
2. ground control points embedded in the file,
3. the file's own geotransform and CRS.

A map with none of these is reported as a failed record.  The map's
date (``map_date`` parameter, or the ``MAP_DATE`` / ``VALID_FROM`` /
``VALID_TO`` tags) sets the feature's validity interval.
"""

from __future__ import annotations

import logging
import warnings
from pathlib import Path
from typing import Any, ClassVar

from chronomap.core.constants import (
    HISTORICAL_MAPS,
    MAX_MAP_FILE_SIZE_BYTES,
    SUPPORTED_MAP_FORMATS,
    WGS84,
)
from chronomap.core.exceptions import InvalidParams
from chronomap.importers.base import ConversionResult, FetchResult, Importer
from chronomap.models.feature import parse_date, parse_date_range
from chronomap.models.params import HistoricalMapParams
from chronomap.processing.georeference import Georeference, GeoreferenceError, fit_gcps, footprint
from chronomap.processing.raster import RasterReadError

logger = logging.getLogger("chronomap.importers.historical_maps")

MAP_DATE_TAG = "MAP_DATE"
VALID_FROM_TAG = "VALID_FROM"
VALID_TO_TAG = "VALID_TO"
TITLE_TAG = "TITLE"


class HistoricalMapsImporter(Importer):
    """Import the georeferenced footprint of a scanned map.

    Args:
        max_file_size: Largest accepted file, in bytes.
    """

    source = HISTORICAL_MAPS
    params_model: ClassVar[type[HistoricalMapParams]] = HistoricalMapParams

    def __init__(
        self, store: Any, *, max_file_size: int = MAX_MAP_FILE_SIZE_BYTES, **kwargs: Any
    ) -> None:
        super().__init__(store, **kwargs)
        self.max_file_size = max_file_size

    def fetch(self, params: HistoricalMapParams) -> FetchResult:
        path = Path(params.path)
        file_format = self._check_file(path)

        import rasterio
        from rasterio.control import GroundControlPoint
        from rasterio.errors import NotGeoreferencedWarning, RasterioError

        try:
            with warnings.catch_warnings():
                warnings.simplefilter("ignore", NotGeoreferencedWarning)
                with rasterio.open(str(path)) as src:
                    width, height = src.width, src.height
                    tags = dict(src.tags())
                    embedded, embedded_crs = src.gcps
                    crs = src.crs.to_string() if src.crs else ""
                    transform = src.transform
        except RasterioError as exc:
            msg = f"Cannot read map {path}: {exc}"
            raise RasterReadError(msg) from exc

        georeference: Georeference | None = None
        error = ""
        try:
            if params.gcps:
                points = [
                    GroundControlPoint(row=g.line, col=g.pixel, x=g.lon, y=g.lat)
                    for g in params.gcps
                ]
                georeference = fit_gcps(points, crs=WGS84)
            elif embedded:
                gcp_crs = embedded_crs.to_string() if embedded_crs else WGS84
                georeference = fit_gcps(embedded, crs=gcp_crs, method="embedded_gcps")
            elif crs and not transform.is_identity:
                georeference = Georeference(transform=transform, crs=crs, method="geotransform")
            else:
                error = "map is not georeferenced; supply at least 3 ground control points"
        except GeoreferenceError as exc:
            error = str(exc)

        record: dict[str, Any] = {
            "id": path.stem,
            "file_name": path.name,
            "format": file_format,
            "file_size": path.stat().st_size,
            "width": width,
            "height": height,
            "tags": tags,
            "georeference": georeference,
            "error": error,
        }
        if georeference is not None:
            record["geometry"] = self._footprint_wgs84(georeference, width, height)

        logger.info(
            "map read | path=%s | size=%dx%d | method=%s",
            path,
            width,
            height,
            georeference.method if georeference else "none",
        )
        return FetchResult(records=[record])

    def convert(self, record: Any, params: HistoricalMapParams) -> ConversionResult:
        georeference: Georeference | None = record["georeference"]
        if georeference is None:
            return ConversionResult.failure(f"{record['id']}: {record['error']}")

        tags: dict[str, str] = record["tags"]
        try:
            valid_from, valid_to = _validity(params.map_date, tags)
        except ValueError as exc:
            return ConversionResult.failure(f"{record['id']}: invalid map date: {exc}")

        title = params.title or tags.get(TITLE_TAG) or record["id"]
        properties: dict[str, Any] = {
            "title": title,
            "file_name": record["file_name"],
            "format": record["format"],
            "file_size": record["file_size"],
            "width": record["width"],
            "height": record["height"],
            "source_crs": georeference.crs,
            "status": "georeferenced",
            **georeference.to_properties(),
            **params.metadata,
        }
        return self.build_feature(
            params,
            record["geometry"],
            name=title,
            properties=properties,
            valid_from=valid_from,
            valid_to=valid_to,
        )

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _check_file(self, path: Path) -> str:
        """Return the file's format, or raise ``InvalidParams`` for unusable files."""
        if not path.is_file():
            msg = f"File not found: {path}"
            raise InvalidParams(msg, errors=[f"path: {msg}"])
        file_format = path.suffix.lower().lstrip(".")
        if file_format not in SUPPORTED_MAP_FORMATS:
            supported = ", ".join(sorted(SUPPORTED_MAP_FORMATS))
            msg = f"Unsupported file format: {file_format or 'none'}. Supported: {supported}"
            raise InvalidParams(msg, errors=[f"path: {msg}"])
        size = path.stat().st_size
        if size > self.max_file_size:
            msg = f"File size ({size} bytes) exceeds maximum allowed size ({self.max_file_size})"
            raise InvalidParams(msg, errors=[f"path: {msg}"])
        return file_format

    def _footprint_wgs84(
        self, georeference: Georeference, width: int, height: int
    ) -> dict[str, Any]:
        polygon = footprint(georeference.transform, width, height)
        if georeference.crs == WGS84:
            return polygon
        if not self.transformer.is_registered(georeference.crs):
            self.transformer.register(georeference.crs, georeference.crs)
        return self.transformer.transform_geometry(polygon, georeference.crs, WGS84)


def _validity(map_date: str | None, tags: dict[str, str]) -> tuple[Any, Any]:
    """Validity bounds from the ``map_date`` parameter, else the file's tags."""
    if map_date:
        return parse_date_range(map_date)
    if VALID_FROM_TAG in tags or VALID_TO_TAG in tags:
        return parse_date(tags.get(VALID_FROM_TAG)), parse_date(tags.get(VALID_TO_TAG))
    if tags.get(MAP_DATE_TAG):
        return parse_date_range(tags[MAP_DATE_TAG])
    return None, None

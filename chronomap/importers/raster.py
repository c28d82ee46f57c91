"""Raster importer.

Vectorises one band of a raster (GeoTIFF or any rasterio-readable
format) by thresholding it, then reprojects the traced polygons to
WGS 84.  Each connected above-threshold region becomes one polygon
feature.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, ClassVar

from chronomap.core.constants import RASTER, WGS84
from chronomap.importers.base import ConversionResult, FetchResult, Importer
from chronomap.models.params import RasterParams
from chronomap.processing.raster import RasterVectorizer

logger = logging.getLogger("chronomap.importers.raster")


class RasterImporter(Importer):
    """Import thresholded raster regions as polygon features.

    Args:
        vectorizer: Raster vectoriser (a default one is created when omitted).
    """

    source = RASTER
    params_model: ClassVar[type[RasterParams]] = RasterParams

    def __init__(
        self, store: Any, *, vectorizer: RasterVectorizer | None = None, **kwargs: Any
    ) -> None:
        super().__init__(store, **kwargs)
        self.vectorizer = vectorizer or RasterVectorizer()

    def fetch(self, params: RasterParams) -> FetchResult:
        traced = self.vectorizer.vectorise(
            params.path, band=params.band, threshold=params.threshold
        )
        crs = traced.crs
        if not crs:
            logger.warning("raster has no CRS | assuming %s | path=%s", WGS84, params.path)
            crs = WGS84
        elif not self.transformer.is_registered(crs):
            self.transformer.register(crs, crs)

        stem = Path(params.path).stem
        records = [
            {
                "id": f"{stem}-region-{index}",
                "geometry": self.transformer.transform_geometry(polygon, crs, WGS84),
                "band": params.band,
                "threshold": traced.threshold,
                "source_crs": crs,
            }
            for index, polygon in enumerate(traced.polygons)
        ]
        return FetchResult(records=records)

    def convert(self, record: Any, params: RasterParams) -> ConversionResult:
        properties = {
            "region_id": record["id"],
            "band": record["band"],
            "threshold": record["threshold"],
            "source_crs": record["source_crs"],
            "raster": Path(params.path).name,
        }
        return self.build_feature(
            params, record["geometry"], name=record["id"], properties=properties
        )

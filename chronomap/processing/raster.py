"""Threshold-based raster vectorisation.

Reads one band of a raster with rasterio, marks pixels at or above a
threshold, and traces the marked regions into polygons with
``rasterio.features.shapes``.  Polygons come back in the raster's own
CRS together with that CRS's identifier so the caller can reproject.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import numpy as np

from chronomap.core.exceptions import PermanentError
from chronomap.processing._geometry import listify

logger = logging.getLogger("chronomap.processing.raster")

DEFAULT_THRESHOLD = 128


class RasterReadError(PermanentError):
    """The raster could not be opened or has unusable content."""

    default_stage = "vectorise"
    default_code = "RASTER_READ_FAILED"


@dataclass(frozen=True, slots=True)
class VectorisedRaster:
    """Polygons traced from a raster band.

    Attributes:
        polygons: GeoJSON Polygon geometries in ``crs``.
        crs: CRS identifier of the raster (``""`` if it has none).
        width: Raster width in pixels.
        height: Raster height in pixels.
        threshold: Threshold that was applied.
    """

    polygons: list[dict[str, Any]] = field(default_factory=list)
    crs: str = ""
    width: int = 0
    height: int = 0
    threshold: int = DEFAULT_THRESHOLD


class RasterVectorizer:
    """Trace above-threshold regions of a raster band into polygons."""

    def __init__(self, threshold: int = DEFAULT_THRESHOLD) -> None:
        if not 0 <= threshold <= 255:
            msg = f"threshold must be between 0 and 255, got {threshold}"
            raise ValueError(msg)
        self.threshold = threshold

    def vectorise(
        self,
        path: str | Path,
        *,
        band: int = 1,
        threshold: int | None = None,
    ) -> VectorisedRaster:
        """Vectorise *band* of the raster at *path*.

        Raises:
            RasterReadError: If the file cannot be read or the band is missing.
        """
        import rasterio
        from rasterio.errors import RasterioError
        from rasterio.features import shapes

        level = self.threshold if threshold is None else threshold
        try:
            with rasterio.open(str(path)) as src:
                if band < 1 or band > src.count:
                    msg = f"Band {band} not present in {path} (bands={src.count})"
                    raise RasterReadError(msg)
                data = src.read(band)
                mask = threshold_mask(data, level)
                crs = src.crs.to_string() if src.crs else ""
                polygons = [
                    listify(dict(geom))
                    for geom, value in shapes(
                        mask.astype(np.uint8), mask=mask, transform=src.transform
                    )
                    if value == 1
                ]
                width, height = src.width, src.height
        except RasterioError as exc:
            msg = f"Cannot read raster {path}: {exc}"
            raise RasterReadError(msg) from exc

        logger.info(
            "raster vectorised | path=%s | size=%dx%d | threshold=%d | polygons=%d | crs=%s",
            path,
            width,
            height,
            level,
            len(polygons),
            crs or "none",
        )
        return VectorisedRaster(
            polygons=polygons,
            crs=crs,
            width=width,
            height=height,
            threshold=level,
        )


def threshold_mask(data: np.ndarray, threshold: int) -> np.ndarray:
    """Boolean mask of pixels at or above *threshold* (masked/NaN pixels excluded)."""
    values = np.ma.filled(np.ma.masked_invalid(np.ma.asarray(data, dtype=float)), -np.inf)
    return values >= threshold

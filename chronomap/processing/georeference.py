"""Georeferencing of scanned maps.

A scanned map is placed on the earth by an affine pixel-to-world
transform.  The transform either comes with the file (a geotransform or
embedded ground control points) or is fitted from caller-supplied GCPs
with ``rasterio.transform.from_gcps``.  The fit's residual error at the
control points is reported as an RMSE in CRS units.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from shapely.geometry import MultiPoint, Polygon
from shapely.geometry.polygon import orient

from chronomap.core.constants import MIN_GROUND_CONTROL_POINTS
from chronomap.core.exceptions import ValidationError
from chronomap.processing._geometry import to_geojson

if TYPE_CHECKING:
    from collections.abc import Sequence

    from affine import Affine
    from rasterio.control import GroundControlPoint

logger = logging.getLogger("chronomap.processing.georeference")

GOOD_FIT_GCPS = 6
FAIR_FIT_GCPS = 4


class GeoreferenceError(ValidationError):
    """Control points do not define a usable transform."""

    default_stage = "georeference"
    default_code = "GEOREFERENCE_FAILED"


@dataclass(frozen=True, slots=True)
class Georeference:
    """Pixel-to-world placement of an image.

    Attributes:
        transform: Affine transform from ``(col, row)`` to ``(x, y)``.
        crs: CRS of the transform's output coordinates.
        method: ``"gcps"``, ``"embedded_gcps"`` or ``"geotransform"``.
        gcp_count: Number of control points the transform was fitted to.
        rmse: Root-mean-square residual at the control points (CRS units).
    """

    transform: Affine
    crs: str
    method: str
    gcp_count: int = 0
    rmse: float | None = None

    @property
    def accuracy(self) -> str:
        """Coarse fit quality from the number of control points."""
        if not self.gcp_count:
            return "unknown"
        if self.gcp_count >= GOOD_FIT_GCPS:
            return "good"
        if self.gcp_count >= FAIR_FIT_GCPS:
            return "fair"
        return "poor"

    def to_properties(self) -> dict[str, Any]:
        return {
            "georeference_method": self.method,
            "transformation_type": "affine",
            "gcp_count": self.gcp_count,
            "rmse": round(self.rmse, 9) if self.rmse is not None else None,
            "accuracy": self.accuracy,
        }


def fit_gcps(
    gcps: Sequence[GroundControlPoint], *, crs: str, method: str = "gcps"
) -> Georeference:
    """Fit an affine transform to *gcps* by least squares.

    Raises:
        GeoreferenceError: Fewer than three points, or points that do not
            span an area (collinear or coincident).
    """
    from rasterio.errors import RasterioError
    from rasterio.transform import from_gcps

    if len(gcps) < MIN_GROUND_CONTROL_POINTS:
        msg = (
            f"At least {MIN_GROUND_CONTROL_POINTS} ground control points are required "
            f"for georeferencing (got {len(gcps)})"
        )
        raise GeoreferenceError(msg)
    pixels = MultiPoint([(g.col, g.row) for g in gcps])
    world = MultiPoint([(g.x, g.y) for g in gcps])
    if pixels.convex_hull.area == 0 or world.convex_hull.area == 0:
        msg = "Ground control points are collinear; they must span an area"
        raise GeoreferenceError(msg)
    try:
        transform = from_gcps(gcps)
    except (RasterioError, ValueError) as exc:
        msg = f"Cannot fit a transform to the ground control points: {exc}"
        raise GeoreferenceError(msg) from exc
    if not math.isfinite(transform.determinant) or transform.determinant == 0:
        msg = "Ground control points do not define an invertible transform"
        raise GeoreferenceError(msg)

    squared = []
    for gcp in gcps:
        x, y = transform * (gcp.col, gcp.row)
        squared.append((x - gcp.x) ** 2 + (y - gcp.y) ** 2)
    rmse = math.sqrt(sum(squared) / len(squared))

    logger.info(
        "gcps fitted | method=%s | count=%d | rmse=%.9f | crs=%s",
        method,
        len(gcps),
        rmse,
        crs,
    )
    return Georeference(
        transform=transform, crs=crs, method=method, gcp_count=len(gcps), rmse=rmse
    )


def footprint(transform: Affine, width: int, height: int) -> dict[str, Any]:
    """GeoJSON Polygon covering the image's four corners (counter-clockwise)."""
    pixels = ((0, 0), (width, 0), (width, height), (0, height))
    corners = [transform * (col, row) for col, row in pixels]
    return to_geojson(orient(Polygon(corners), sign=1.0))

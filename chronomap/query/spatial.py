"""Spatial predicates over GeoJSON geometries.

Distances are geodesic: a geometry is projected into an azimuthal
equidistant (AEQD) projection centred on the query point, where the
distance from the centre to any position equals its geodesic distance
on the WGS 84 ellipsoid.  Point features use ``Geod.inv`` directly.
"""

from __future__ import annotations

from typing import Any

from pyproj import CRS, Geod, Transformer
from shapely.geometry import Point, box
from shapely.ops import transform as shapely_transform

from chronomap.core.constants import WGS84
from chronomap.processing._geometry import to_shape

_GEOD = Geod(ellps="WGS84")


def intersects_bbox(geometry: dict[str, Any], bbox: tuple[float, float, float, float]) -> bool:
    return bool(to_shape(geometry).intersects(box(*bbox)))


class GeodesicDistance:
    """Geodesic distance (metres) from a fixed centre to GeoJSON geometries."""

    def __init__(self, lon: float, lat: float) -> None:
        self.lon = lon
        self.lat = lat
        aeqd = CRS.from_proj4(
            f"+proj=aeqd +lat_0={lat} +lon_0={lon} +datum=WGS84 +units=m +no_defs"
        )
        self._to_aeqd = Transformer.from_crs(WGS84, aeqd, always_xy=True)
        self._origin = Point(0.0, 0.0)

    def to(self, geometry: dict[str, Any]) -> float:
        if geometry.get("type") == "Point":
            lon, lat = geometry["coordinates"][:2]
            _, _, dist = _GEOD.inv(self.lon, self.lat, lon, lat)
            return float(dist)
        projected = shapely_transform(self._to_aeqd.transform, to_shape(geometry))
        return float(projected.distance(self._origin))


def geodesic_area_m2(geometry: dict[str, Any]) -> float:
    """Absolute geodesic area of a (multi)polygon on the WGS 84 ellipsoid."""
    if geometry.get("type") not in ("Polygon", "MultiPolygon"):
        return 0.0
    area, _perimeter = _GEOD.geometry_area_perimeter(to_shape(geometry))
    return abs(float(area))

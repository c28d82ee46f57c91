"""GeoJSON coordinate helpers shared by the processing stages."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from shapely.geometry import mapping, shape

if TYPE_CHECKING:
    from collections.abc import Iterator

    from shapely.geometry.base import BaseGeometry

Position = list[float]

LINEAR_TYPES = frozenset({"LineString", "MultiLineString", "Polygon", "MultiPolygon"})
POINT_TYPES = frozenset({"Point", "MultiPoint"})


def is_position(value: object) -> bool:
    """Whether *value* looks like a coordinate position ``[x, y, ...]``."""
    return (
        isinstance(value, list | tuple)
        and len(value) >= 2
        and all(isinstance(v, int | float) and not isinstance(v, bool) for v in value[:2])
    )


def iter_positions(geometry: dict[str, Any]) -> Iterator[Any]:
    """Yield every leaf position of a GeoJSON geometry (collections included)."""
    if geometry.get("type") == "GeometryCollection":
        for child in geometry.get("geometries") or []:
            yield from iter_positions(child)
        return
    yield from _walk(geometry.get("coordinates"))


def _walk(coords: Any) -> Iterator[Any]:
    if coords is None:
        return
    if is_position(coords) or not isinstance(coords, list | tuple):
        yield coords
        return
    for child in coords:
        yield from _walk(child)


def count_positions(geometry: dict[str, Any]) -> int:
    return sum(1 for _ in iter_positions(geometry))


def polygon_rings(geometry: dict[str, Any]) -> Iterator[tuple[str, list[Any]]]:
    """Yield ``(label, ring)`` for every ring of a Polygon/MultiPolygon."""
    geom_type = geometry.get("type")
    coords = geometry.get("coordinates") or []
    if geom_type == "Polygon":
        polygons = [coords]
    elif geom_type == "MultiPolygon":
        polygons = list(coords)
    else:
        return
    multi = geom_type == "MultiPolygon"
    for poly_idx, polygon in enumerate(polygons):
        for ring_idx, ring in enumerate(polygon or []):
            kind = "exterior ring" if ring_idx == 0 else f"interior ring {ring_idx}"
            label = f"polygon {poly_idx} {kind}" if multi else kind
            yield label, list(ring or [])


def dedupe_consecutive(positions: list[Any]) -> list[Any]:
    """Drop positions equal to their predecessor (compared on x/y)."""
    result: list[Any] = []
    for pos in positions:
        if result and list(result[-1][:2]) == list(pos[:2]):
            continue
        result.append(list(pos))
    return result


def dedupe_geometry(geometry: dict[str, Any]) -> dict[str, Any]:
    """Return a copy of *geometry* with consecutive duplicate positions removed.

    Rings keep their closing position.  Points are returned unchanged.
    """
    geom_type = geometry.get("type")
    coords = geometry.get("coordinates")
    if geom_type == "GeometryCollection":
        return {
            **geometry,
            "geometries": [dedupe_geometry(g) for g in geometry.get("geometries") or []],
        }
    if geom_type == "LineString":
        new_coords: Any = dedupe_consecutive(coords or [])
    elif geom_type == "MultiLineString":
        new_coords = [dedupe_consecutive(line) for line in coords or []]
    elif geom_type == "Polygon":
        new_coords = [dedupe_consecutive(ring) for ring in coords or []]
    elif geom_type == "MultiPolygon":
        new_coords = [[dedupe_consecutive(ring) for ring in poly] for poly in coords or []]
    else:
        return listify({**geometry})
    return {**geometry, "coordinates": new_coords}


def listify(value: Any) -> Any:
    """Recursively turn tuples into lists (shapely ``mapping`` emits tuples)."""
    if isinstance(value, dict):
        return {k: listify(v) for k, v in value.items()}
    if isinstance(value, list | tuple):
        return [listify(v) for v in value]
    return value


def to_shape(geometry: dict[str, Any]) -> BaseGeometry:
    """Build a shapely geometry from a GeoJSON mapping."""
    return shape(geometry)


def to_geojson(geom: BaseGeometry) -> dict[str, Any]:
    """Serialise a shapely geometry to a list-based GeoJSON mapping."""
    return listify(dict(mapping(geom)))

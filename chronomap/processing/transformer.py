"""Coordinate reference system registry and recursive reprojection.

``CoordinateTransformer.transform(structure, from_crs, to_crs)`` walks a
GeoJSON FeatureCollection → Feature → geometry → nested coordinate
arrays, replacing every leaf position through a pyproj ``Transformer``.
The input is never mutated; a deep copy is transformed and returned
with its ``crs`` tag rewritten to *to_crs*.

Only registered codes may be used.  ``EPSG:4326`` and ``EPSG:3857`` are
built in; further codes are registered with any definition pyproj
accepts (EPSG code, PROJ string, WKT).
"""

from __future__ import annotations

import copy
import logging
import threading
from typing import TYPE_CHECKING, Any

from pyproj import CRS, Transformer
from pyproj.exceptions import CRSError

from chronomap.core.constants import WEB_MERCATOR, WGS84
from chronomap.core.exceptions import PermanentError
from chronomap.processing._geometry import is_position

if TYPE_CHECKING:
    from collections.abc import Mapping

logger = logging.getLogger("chronomap.processing.transformer")


class UnknownCRS(PermanentError):
    """Reprojection requested with an unregistered (or unusable) CRS code.

    Attributes:
        code: The offending CRS code.
    """

    default_stage = "transform"
    default_code = "UNKNOWN_CRS"

    def __init__(self, code: str, message: str = "") -> None:
        self.code = code
        super().__init__(message or f"Unknown CRS: {code!r}")


class CoordinateTransformer:
    """Reproject GeoJSON structures between registered CRS codes.

    Args:
        projections: Extra ``code -> definition`` entries to register.

    pyproj transformers are not safe to share between threads, so each
    thread builds and caches its own.
    """

    def __init__(self, projections: Mapping[str, str] | None = None) -> None:
        self._definitions: dict[str, CRS] = {}
        self._generation = 0
        self._lock = threading.Lock()
        self._local = threading.local()
        self.register(WGS84, WGS84)
        self.register(WEB_MERCATOR, WEB_MERCATOR)
        for code, definition in (projections or {}).items():
            self.register(code, definition)

    # ------------------------------------------------------------------
    # Registry
    # ------------------------------------------------------------------

    def register(self, code: str, definition: str) -> None:
        """Register *code* with a pyproj-accepted *definition*.

        Raises:
            UnknownCRS: If pyproj cannot interpret the definition.
        """
        try:
            crs = CRS.from_user_input(definition)
        except CRSError as exc:
            msg = f"Cannot register CRS {code!r}: {exc}"
            raise UnknownCRS(code, msg) from exc
        with self._lock:
            self._definitions[code] = crs
            self._generation += 1
        logger.debug("Registered CRS | code=%s | name=%s", code, crs.name)

    def is_registered(self, code: str) -> bool:
        with self._lock:
            return code in self._definitions

    def registered_codes(self) -> list[str]:
        with self._lock:
            return sorted(self._definitions)

    # ------------------------------------------------------------------
    # Transformation
    # ------------------------------------------------------------------

    def transform(
        self,
        structure: Mapping[str, Any],
        from_crs: str,
        to_crs: str,
    ) -> dict[str, Any]:
        """Return a reprojected deep copy of a GeoJSON structure.

        Raises:
            UnknownCRS: If either code is not registered.
        """
        transformer = self._transformer(from_crs, to_crs)
        result = copy.deepcopy(dict(structure))
        if from_crs != to_crs:
            self._walk(result, transformer)
        result["crs"] = {"type": "name", "properties": {"name": to_crs}}
        return result

    def transform_geometry(
        self,
        geometry: Mapping[str, Any],
        from_crs: str,
        to_crs: str,
    ) -> dict[str, Any]:
        """Reproject a bare geometry (no ``crs`` tag is added)."""
        transformer = self._transformer(from_crs, to_crs)
        result = copy.deepcopy(dict(geometry))
        if from_crs != to_crs:
            self._walk(result, transformer)
        return result

    def transform_point(
        self, x: float, y: float, from_crs: str, to_crs: str
    ) -> tuple[float, float]:
        transformer = self._transformer(from_crs, to_crs)
        tx, ty = transformer.transform(x, y)
        return (float(tx), float(ty))

    def _walk(self, node: dict[str, Any], transformer: Transformer) -> None:
        kind = node.get("type")
        if kind == "FeatureCollection":
            for feature in node.get("features") or []:
                self._walk(feature, transformer)
        elif kind == "Feature":
            geometry = node.get("geometry")
            if geometry:
                self._walk(geometry, transformer)
        elif kind == "GeometryCollection":
            for child in node.get("geometries") or []:
                self._walk(child, transformer)
        elif "coordinates" in node:
            node["coordinates"] = _transform_coords(node["coordinates"], transformer)

    def _transformer(self, from_crs: str, to_crs: str) -> Transformer:
        with self._lock:
            for code in (from_crs, to_crs):
                if code not in self._definitions:
                    available = ", ".join(sorted(self._definitions))
                    msg = f"Unknown CRS: {code!r}. Registered: {available}"
                    raise UnknownCRS(code, msg)
            source = self._definitions[from_crs]
            target = self._definitions[to_crs]
            generation = self._generation
        cache: dict[tuple[str, str, int], Transformer] | None = getattr(self._local, "cache", None)
        if cache is None:
            cache = {}
            self._local.cache = cache
        key = (from_crs, to_crs, generation)
        transformer = cache.get(key)
        if transformer is None:
            transformer = Transformer.from_crs(source, target, always_xy=True)
            cache[key] = transformer
        return transformer


def _transform_coords(coords: Any, transformer: Transformer) -> Any:
    if is_position(coords):
        x, y = transformer.transform(coords[0], coords[1])
        return [float(x), float(y), *coords[2:]]
    if isinstance(coords, list | tuple):
        return [_transform_coords(c, transformer) for c in coords]
    return coords

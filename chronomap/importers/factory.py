"""Importer factory: selects an importer by source name.

The factory maintains a registry of known importers.  Built-in
importers are registered lazily on first use so that heavyweight
dependencies (fiona, rasterio, lxml) are only imported when the
source that needs them is selected.

Usage::

    from chronomap.importers.factory import get_importer

    importer = get_importer("eonet", store, config=config)
    result = importer.import_data({"days": 7})
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from chronomap.core.constants import (
    EONET,
    GEOJSON,
    HISTORICAL_MAPS,
    KML,
    NATURAL_EARTH,
    NOAA_CLIMATE,
    OSM,
    RASTER,
)
from chronomap.core.exceptions import InvalidParams

if TYPE_CHECKING:
    from collections.abc import Callable

    from chronomap.importers.base import Importer
    from chronomap.query.store import FeatureStore

logger = logging.getLogger("chronomap.importers.factory")

# ---------------------------------------------------------------------------
# Lazy-import importer registry
# ---------------------------------------------------------------------------

# Each entry maps a source name to a callable returning the importer *class*.

_IMPORTER_REGISTRY: dict[str, Callable[[], type[Importer]]] = {}


def _register_builtin_importers() -> None:
    """Register the built-in importers (called once, on first use)."""

    def _eonet() -> type[Importer]:
        from chronomap.importers.eonet import EonetImporter

        return EonetImporter

    def _climate() -> type[Importer]:
        from chronomap.importers.climate import ClimateImporter

        return ClimateImporter

    def _geojson() -> type[Importer]:
        from chronomap.importers.geojson import GeoJsonImporter

        return GeoJsonImporter

    def _natural_earth() -> type[Importer]:
        from chronomap.importers.natural_earth import NaturalEarthImporter

        return NaturalEarthImporter

    def _osm() -> type[Importer]:
        from chronomap.importers.osm import OsmImporter

        return OsmImporter

    def _kml() -> type[Importer]:
        from chronomap.importers.kml import KmlImporter

        return KmlImporter

    def _raster() -> type[Importer]:
        from chronomap.importers.raster import RasterImporter

        return RasterImporter

    def _historical_maps() -> type[Importer]:
        from chronomap.importers.historical_maps import HistoricalMapsImporter

        return HistoricalMapsImporter

    _IMPORTER_REGISTRY[EONET.name] = _eonet
    _IMPORTER_REGISTRY[NOAA_CLIMATE.name] = _climate
    _IMPORTER_REGISTRY[GEOJSON.name] = _geojson
    _IMPORTER_REGISTRY[NATURAL_EARTH.name] = _natural_earth
    _IMPORTER_REGISTRY[OSM.name] = _osm
    _IMPORTER_REGISTRY[KML.name] = _kml
    _IMPORTER_REGISTRY[RASTER.name] = _raster
    _IMPORTER_REGISTRY[HISTORICAL_MAPS.name] = _historical_maps


def _ensure_registry() -> None:
    """Initialise the importer registry once (idempotent)."""
    if not _IMPORTER_REGISTRY:
        _register_builtin_importers()


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def register_importer(name: str, loader: Callable[[], type[Importer]]) -> None:
    """Register a custom importer.

    Args:
        name: Source name (e.g. ``"my_feed"``).
        loader: Zero-argument callable returning the importer class.

    Raises:
        ValueError: If the name is empty.
    """
    if not name:
        msg = "Importer name must be non-empty"
        raise ValueError(msg)
    _ensure_registry()
    _IMPORTER_REGISTRY[name] = loader
    logger.debug("importer registered | name=%s", name)


def get_importer(name: str, store: FeatureStore, **kwargs: Any) -> Importer:
    """Create an importer instance for *name*.

    Keyword arguments are passed to the importer constructor
    (``config``, ``client``, ``transport``, ``guard``, ...).

    Raises:
        InvalidParams: If no importer is registered under *name*.
    """
    _ensure_registry()
    loader = _IMPORTER_REGISTRY.get(name)
    if loader is None:
        available = ", ".join(sorted(_IMPORTER_REGISTRY))
        msg = f"Unknown import source: {name!r}. Available: {available}"
        raise InvalidParams(msg, errors=[f"source: {msg}"])
    importer_cls = loader()
    logger.info("importer created | source=%s", name)
    return importer_cls(store, **kwargs)


def list_importers() -> list[str]:
    """Return the names of all registered importers."""
    _ensure_registry()
    return sorted(_IMPORTER_REGISTRY)

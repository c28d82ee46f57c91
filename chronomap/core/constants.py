"""Shared pipeline constants.

Centralises coordinate bounds, CRS codes, HTTP defaults and the
definitions of every built-in external source, so that importers,
validators and the query engine never repeat string literals.
"""

from __future__ import annotations

from dataclasses import dataclass

from chronomap import __version__

# ---------------------------------------------------------------------------
# Coordinate reference systems
# ---------------------------------------------------------------------------

WGS84: str = "EPSG:4326"
"""Geodetic longitude/latitude in decimal degrees (storage CRS)."""

WEB_MERCATOR: str = "EPSG:3857"
"""Spherical Web Mercator in metres."""

# WGS 84 coordinate bounds
MIN_LONGITUDE = -180.0
MAX_LONGITUDE = 180.0
MIN_LATITUDE = -90.0
MAX_LATITUDE = 90.0

# Minimum positions in a closed linear ring (3 distinct + closure)
MIN_RING_POSITIONS = 4

# Minimum positions in a LineString
MIN_LINE_POSITIONS = 2

# ---------------------------------------------------------------------------
# HTTP defaults
# ---------------------------------------------------------------------------

USER_AGENT: str = f"chronomap-pipeline/{__version__}"
DEFAULT_TIMEOUT_S = 30.0
DEFAULT_MAX_RETRIES = 3
DEFAULT_REQUESTS_PER_MINUTE = 60.0

# ---------------------------------------------------------------------------
# Processing defaults
# ---------------------------------------------------------------------------

DEFAULT_BATCH_SIZE = 100
DEFAULT_SIMPLIFY_TOLERANCE = 0.001
DEFAULT_GRID_CELL_SIZE_DEG = 0.1
METRES_PER_KILOMETRE = 1000.0
SQ_METRES_PER_SQ_KILOMETRE = 1_000_000.0

# Historical map uploads
MAX_MAP_FILE_SIZE_BYTES = 100 * 1024 * 1024
SUPPORTED_MAP_FORMATS = frozenset({"tif", "tiff", "geotiff", "png", "jpg", "jpeg"})
MIN_GROUND_CONTROL_POINTS = 3


# ---------------------------------------------------------------------------
# Source definitions
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class SourceDefinition:
    """Static description of an external data source.

    Attributes:
        name: Registry key (e.g. ``"eonet"``).
        label: Provenance tag written into ``properties["source"]``.
        base_url: API root; empty for file-based sources.
        requests_per_second: Pacing limit, if the source publishes one per second.
        requests_per_minute: Pacing limit, if the source publishes one per minute.
        default_layer: Layer identifier used when the caller gives none.
        attribution: Licence/attribution string to surface alongside data.
        batch_size: Source-specific batch size override (0 = use config).
    """

    name: str
    label: str
    base_url: str = ""
    requests_per_second: float | None = None
    requests_per_minute: float | None = None
    default_layer: str = ""
    attribution: str = ""
    batch_size: int = 0


EONET = SourceDefinition(
    name="eonet",
    label="NASA EONET",
    base_url="https://eonet.gsfc.nasa.gov/api/v3",
    requests_per_minute=60.0,
    default_layer="natural_events",
    attribution="NASA Earth Observatory Natural Event Tracker",
)

NOAA_CLIMATE = SourceDefinition(
    name="noaa_climate",
    label="NOAA NCDC",
    base_url="https://www.ncei.noaa.gov/cdo-web/api/v2",
    requests_per_second=5.0,
    default_layer="climate",
    attribution="NOAA National Centers for Environmental Information",
)

GEOJSON = SourceDefinition(
    name="geojson",
    label="GeoJSON",
    requests_per_minute=60.0,
    default_layer="custom",
)

NATURAL_EARTH = SourceDefinition(
    name="natural_earth",
    label="Natural Earth",
    default_layer="administrative",
    attribution="Made with Natural Earth. Free vector and raster map data.",
    batch_size=200,
)

OSM = SourceDefinition(
    name="osm",
    label="OpenStreetMap",
    base_url="https://overpass-api.de/api",
    requests_per_minute=10.0,
    default_layer="base_map",
    attribution="© OpenStreetMap contributors (ODbL)",
)

NOMINATIM = SourceDefinition(
    name="nominatim",
    label="OpenStreetMap Nominatim",
    base_url="https://nominatim.openstreetmap.org",
    requests_per_second=1.0,
    attribution="© OpenStreetMap contributors (ODbL)",
)

KML = SourceDefinition(
    name="kml",
    label="KML",
    default_layer="custom",
)

RASTER = SourceDefinition(
    name="raster",
    label="Raster",
    default_layer="imagery",
)

HISTORICAL_MAPS = SourceDefinition(
    name="historical_maps",
    label="Historical Maps",
    default_layer="historical_maps",
)

SOURCES: dict[str, SourceDefinition] = {
    src.name: src
    for src in (EONET, NOAA_CLIMATE, GEOJSON, NATURAL_EARTH, OSM, KML, RASTER, HISTORICAL_MAPS)
}
"""Built-in importable sources keyed by registry name."""

"""Data-source importers.

Every importer follows the same contract (``Importer``): validate
parameters, fetch raw records, and persist normalised features through
a ``BatchProcessor``:

- EonetImporter: NASA EONET natural events (remote API)
- ClimateImporter: NOAA CDO daily observations (remote API, mock fallback)
- GeoJsonImporter: Inline, file or URL GeoJSON
- NaturalEarthImporter: Shapefiles via fiona
- OsmImporter: OpenStreetMap via Overpass, with Nominatim geocoding
- KmlImporter: KML Placemarks via lxml
- RasterImporter: Thresholded raster regions via rasterio
- HistoricalMapsImporter: Georeferenced footprints of scanned maps (GCPs via rasterio)

Importers are selected by source name through the factory.
"""

from chronomap.importers.base import (
    ConversionResult,
    FetchResult,
    ImportInProgressError,
    ImportResult,
    Importer,
    RecordConversionError,
    SingleFlight,
)
from chronomap.importers.factory import get_importer, list_importers, register_importer

__all__ = [
    "ConversionResult",
    "FetchResult",
    "ImportInProgressError",
    "ImportResult",
    "Importer",
    "RecordConversionError",
    "SingleFlight",
    "get_importer",
    "list_importers",
    "register_importer",
]

"""NOAA climate-observation importer.

Reads daily observations from the NOAA NCDC Climate Data Online v2 API
(``GET /data``) and turns each observation into a point feature at its
station.  Station coordinates are resolved once per station through
``GET /stations/{id}``.  Each feature is current on exactly its
observation date (``valid_from == valid_to``).

Without an API key (``NOAA_API_KEY``) the importer does not call the
network: it generates a deterministic TMAX/TMIN/PRCP daily series at a
mock station and marks the result ``fallback_used``, so scheduled jobs
keep running unattended.
"""

from __future__ import annotations

import logging
import random
from datetime import date, timedelta
from typing import Any, ClassVar

from chronomap.core.constants import NOAA_CLIMATE
from chronomap.core.exceptions import ContractError
from chronomap.importers.base import ConversionResult, FetchResult, Importer
from chronomap.models.feature import parse_date
from chronomap.models.params import ClimateParams
from chronomap.net.client import NetworkError

logger = logging.getLogger("chronomap.importers.climate")

# ---------------------------------------------------------------------------
# Fallback fixtures
# ---------------------------------------------------------------------------

MOCK_ATTRIBUTES = "mock"

MOCK_STATIONS: tuple[dict[str, Any], ...] = (
    {
        "id": "MOCK_STATION_001",
        "name": "Mock Weather Station 1",
        "latitude": 48.8566,
        "longitude": 2.3522,
        "elevation": 35,
    },
    {
        "id": "MOCK_STATION_002",
        "name": "Mock Weather Station 2",
        "latitude": 40.7128,
        "longitude": -74.006,
        "elevation": 10,
    },
)

MOCK_DATASETS: tuple[dict[str, str], ...] = (
    {
        "id": "GHCND",
        "name": "Daily Summaries",
        "description": "Global Historical Climatology Network - Daily",
    },
    {
        "id": "GSOM",
        "name": "Global Summary of the Month",
        "description": "Monthly climate summaries",
    },
    {
        "id": "GSOY",
        "name": "Global Summary of the Year",
        "description": "Annual climate summaries",
    },
)

MOCK_DATATYPES: tuple[dict[str, str], ...] = (
    {"id": "TMAX", "name": "Maximum temperature", "units": "°C"},
    {"id": "TMIN", "name": "Minimum temperature", "units": "°C"},
    {"id": "PRCP", "name": "Precipitation", "units": "mm"},
    {"id": "SNOW", "name": "Snowfall", "units": "mm"},
    {"id": "AWND", "name": "Average wind speed", "units": "m/s"},
)

#: (datatype, base value, spread) for the generated daily series.
_MOCK_SERIES: tuple[tuple[str, float, float], ...] = (
    ("TMAX", 15.0, 20.0),
    ("TMIN", 5.0, 15.0),
    ("PRCP", 0.0, 50.0),
)

_LIST_LIMIT = 100


class ClimateImporter(Importer):
    """Import NOAA daily observations as dated point features.

    Args:
        api_key: NOAA CDO token; defaults to ``config.noaa_api_key``.
    """

    source = NOAA_CLIMATE
    params_model: ClassVar[type[ClimateParams]] = ClimateParams

    def __init__(self, store: Any, *, api_key: str | None = None, **kwargs: Any) -> None:
        super().__init__(store, **kwargs)
        self.api_key = self.config.noaa_api_key if api_key is None else api_key

    @property
    def has_api_key(self) -> bool:
        return bool(self.api_key)

    def client_headers(self) -> dict[str, str]:
        return {"token": self.api_key} if self.api_key else {}

    # ------------------------------------------------------------------
    # Fetch
    # ------------------------------------------------------------------

    def fetch(self, params: ClimateParams) -> FetchResult:
        if not self.has_api_key:
            logger.warning("NOAA API key not configured | using mock climate data")
            return FetchResult(records=mock_observations(params), fallback_used=True)

        query: dict[str, Any] = {
            "datasetid": params.dataset_id,
            "startdate": params.start_date.isoformat(),
            "enddate": params.end_date.isoformat(),
            "limit": params.limit,
            "units": params.units,
        }
        if params.location_id:
            query["locationid"] = params.location_id
        if params.datatype_ids:
            query["datatypeid"] = ",".join(params.datatype_ids)

        payload = self.client.get_json("/data", params=query)
        if not isinstance(payload, dict):
            msg = "NOAA /data response is not an object"
            raise ContractError(msg, stage="fetch", code="NOAA_CONTRACT_DRIFT")
        # An empty result set comes back as ``{}``.
        results = payload.get("results") or []
        if not isinstance(results, list):
            msg = "NOAA /data 'results' is not a list"
            raise ContractError(msg, stage="fetch", code="NOAA_CONTRACT_DRIFT")
        if not results:
            logger.warning("no climate observations returned | query=%s", query)

        stations: dict[str, dict[str, Any] | None] = {}
        records = []
        for raw in results:
            if not isinstance(raw, dict):
                records.append(raw)
                continue
            station_id = str(raw.get("station", ""))
            if station_id and station_id not in stations:
                stations[station_id] = self._lookup_station(station_id)
            records.append(_observation(raw, stations.get(station_id), params))
        return FetchResult(records=records)

    def _lookup_station(self, station_id: str) -> dict[str, Any] | None:
        try:
            station = self.client.get_json(f"/stations/{station_id}")
        except NetworkError as exc:
            logger.warning("station lookup failed | station=%s | error=%s", station_id, exc)
            return None
        return station if isinstance(station, dict) else None

    # ------------------------------------------------------------------
    # Convert
    # ------------------------------------------------------------------

    def convert(self, record: Any, params: ClimateParams) -> ConversionResult:
        if not isinstance(record, dict):
            return ConversionResult.failure(
                f"observation must be an object, got {type(record).__name__}"
            )
        lon, lat = record.get("longitude"), record.get("latitude")
        if not isinstance(lon, int | float) or not isinstance(lat, int | float):
            return ConversionResult.failure(
                f"station {record.get('station')!r} has no coordinates"
            )
        properties = {
            "station": record.get("station"),
            "station_name": record.get("station_name"),
            "elevation": record.get("elevation"),
            "datatype": record.get("datatype"),
            "value": record.get("value"),
            "attributes": record.get("attributes") or "",
            "date": record.get("date"),
            "dataset_id": params.dataset_id,
            "units": params.units,
        }
        return self.build_feature(
            params,
            {"type": "Point", "coordinates": [float(lon), float(lat)]},
            name=f"{record.get('datatype')} {record.get('station')} {record.get('date')}",
            properties=properties,
            valid_from=record.get("date"),
            valid_to=record.get("date"),
        )

    # ------------------------------------------------------------------
    # Catalogue lookups
    # ------------------------------------------------------------------

    def list_datasets(self) -> list[dict[str, Any]]:
        if not self.has_api_key:
            return [dict(d) for d in MOCK_DATASETS]
        return self._results("/datasets", {"limit": _LIST_LIMIT})

    def list_datatypes(self, dataset_id: str = "GHCND") -> list[dict[str, Any]]:
        if not self.has_api_key:
            return [dict(d) for d in MOCK_DATATYPES]
        return self._results("/datatypes", {"datasetid": dataset_id, "limit": _LIST_LIMIT})

    def search_stations(
        self,
        *,
        dataset_id: str | None = None,
        location_id: str | None = None,
        extent: tuple[float, float, float, float] | None = None,
        limit: int = _LIST_LIMIT,
    ) -> list[dict[str, Any]]:
        """Search weather stations.

        Args:
            extent: ``(min_lat, min_lon, max_lat, max_lon)`` as NOAA expects it.
        """
        if not self.has_api_key:
            return [dict(s) for s in MOCK_STATIONS]
        query: dict[str, Any] = {"limit": limit}
        if dataset_id:
            query["datasetid"] = dataset_id
        if location_id:
            query["locationid"] = location_id
        if extent:
            query["extent"] = ",".join(str(v) for v in extent)
        return self._results("/stations", query)

    def _results(self, endpoint: str, query: dict[str, Any]) -> list[dict[str, Any]]:
        payload = self.client.get_json(endpoint, params=query)
        results = payload.get("results") if isinstance(payload, dict) else None
        return list(results or [])


# ---------------------------------------------------------------------------
# Record helpers
# ---------------------------------------------------------------------------


def _observation(
    raw: dict[str, Any], station: dict[str, Any] | None, params: ClimateParams
) -> dict[str, Any]:
    observed = parse_date(raw.get("date"))
    day = observed.isoformat() if observed else raw.get("date")
    station_id = raw.get("station")
    return {
        "id": f"{station_id}:{raw.get('datatype')}:{day}",
        "date": day,
        "station": station_id,
        "datatype": raw.get("datatype"),
        "value": raw.get("value"),
        "attributes": raw.get("attributes") or "",
        "latitude": station.get("latitude") if station else None,
        "longitude": station.get("longitude") if station else None,
        "station_name": station.get("name") if station else None,
        "elevation": station.get("elevation") if station else None,
    }


def mock_observations(params: ClimateParams) -> list[dict[str, Any]]:
    """Deterministic daily TMAX/TMIN/PRCP series at ``MOCK_STATION_001``.

    The same date range always produces the same values.
    """
    station = MOCK_STATIONS[0]
    rng = random.Random(f"{params.start_date.isoformat()}:{params.end_date.isoformat()}")
    wanted = set(params.datatype_ids)
    records: list[dict[str, Any]] = []
    day: date = params.start_date
    while day <= params.end_date:
        for datatype, base, spread in _MOCK_SERIES:
            value = round(base + rng.random() * spread)
            if wanted and datatype not in wanted:
                continue
            records.append(
                {
                    "id": f"{station['id']}:{datatype}:{day.isoformat()}",
                    "date": day.isoformat(),
                    "station": station["id"],
                    "datatype": datatype,
                    "value": value,
                    "attributes": MOCK_ATTRIBUTES,
                    "latitude": station["latitude"],
                    "longitude": station["longitude"],
                    "station_name": station["name"],
                    "elevation": station["elevation"],
                }
            )
        day += timedelta(days=1)
    return records

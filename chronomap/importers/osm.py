"""OpenStreetMap importer using the Overpass API.

Builds an Overpass QL query for nodes and ways carrying the requested
tags inside a bounding box, posts it to ``/interpreter`` and converts
the returned elements:

- node → ``Point``
- closed way whose tags mark an area (``building``, ``landuse``, ...) → ``Polygon``
- any other way → ``LineString``

Relations are not requested.  ``import_by_place`` geocodes a place name
through Nominatim first and imports its bounding box.
"""

from __future__ import annotations

import logging
from typing import Any, ClassVar

from chronomap.core.constants import NOMINATIM, OSM
from chronomap.core.exceptions import ContractError, InvalidParams
from chronomap.importers.base import ConversionResult, FetchResult, ImportResult, Importer
from chronomap.models.params import OsmParams
from chronomap.net.client import RateLimit, RateLimitedClient

logger = logging.getLogger("chronomap.importers.osm")

#: Tags whose presence makes a closed way an area rather than a ring-shaped line.
POLYGON_TAGS = frozenset(
    {"building", "landuse", "natural", "leisure", "amenity", "area", "boundary", "place"}
)

OVERPASS_ENDPOINT = "/interpreter"
ELEMENT_TYPES = ("node", "way")


def build_overpass_query(
    bbox: tuple[float, float, float, float], tags: list[str], timeout_s: int
) -> str:
    """Overpass QL for *tags* (``key`` or ``key=value``) inside *bbox*."""
    min_lon, min_lat, max_lon, max_lat = bbox
    area = f"({min_lat},{min_lon},{max_lat},{max_lon})"
    statements = []
    for tag in tags:
        key, _, value = tag.partition("=")
        selector = f'["{key}"="{value}"]' if value else f'["{key}"]'
        statements.extend(f"  {element}{selector}{area};" for element in ELEMENT_TYPES)
    body = "\n".join(statements)
    return f"[out:json][timeout:{timeout_s}];\n(\n{body}\n);\nout geom;"


class OsmImporter(Importer):
    """Import OpenStreetMap nodes and ways for a bounding box.

    Args:
        geocoder: Client for Nominatim; created lazily when omitted.
    """

    source = OSM
    params_model: ClassVar[type[OsmParams]] = OsmParams

    def __init__(
        self, store: Any, *, geocoder: RateLimitedClient | None = None, **kwargs: Any
    ) -> None:
        super().__init__(store, **kwargs)
        self._geocoder = geocoder

    @property
    def geocoder(self) -> RateLimitedClient:
        if self._geocoder is None:
            self._geocoder = RateLimitedClient(
                NOMINATIM.name,
                NOMINATIM.base_url,
                rate_limit=RateLimit.for_source(NOMINATIM),
                max_retries=self.config.max_retries,
                timeout_s=self.config.request_timeout_s,
                transport=self._transport,
            )
        return self._geocoder

    def close(self) -> None:
        super().close()
        if self._geocoder is not None:
            self._geocoder.close()

    # ------------------------------------------------------------------
    # Fetch / convert
    # ------------------------------------------------------------------

    def fetch(self, params: OsmParams) -> FetchResult:
        query = build_overpass_query(params.bbox, params.tags, params.timeout_s)
        logger.debug("overpass query | query=%s", query)
        response = self.client.request(OVERPASS_ENDPOINT, method="POST", data={"data": query})
        try:
            payload = response.json()
        except ValueError as exc:
            msg = f"Overpass returned a non-JSON body: {exc}"
            raise ContractError(msg, stage="fetch", code="OVERPASS_CONTRACT_DRIFT") from exc
        elements = payload.get("elements") if isinstance(payload, dict) else None
        if not isinstance(elements, list):
            msg = "Overpass response has no 'elements' list"
            raise ContractError(msg, stage="fetch", code="OVERPASS_CONTRACT_DRIFT")
        if not elements:
            logger.warning("no OSM elements returned | bbox=%s | tags=%s", params.bbox, params.tags)
        return FetchResult(records=elements)

    def convert(self, record: Any, params: OsmParams) -> ConversionResult:
        if not isinstance(record, dict):
            return ConversionResult.failure(
                f"element must be an object, got {type(record).__name__}"
            )
        element_type = record.get("type")
        osm_id = f"{element_type}/{record.get('id')}"
        tags = dict(record.get("tags") or {})

        geometry = element_geometry(record)
        if geometry is None:
            return ConversionResult.failure(f"{osm_id}: no usable geometry")

        properties = {"osm_id": osm_id, "osm_type": element_type, **tags}
        return self.build_feature(
            params, geometry, name=str(tags.get("name", "")), properties=properties
        )

    # ------------------------------------------------------------------
    # Geocoding
    # ------------------------------------------------------------------

    def geocode(self, place: str) -> tuple[float, float, float, float] | None:
        """Bounding box ``(min_lon, min_lat, max_lon, max_lat)`` of *place*, if found."""
        results = self.geocoder.get_json(
            "/search", params={"q": place, "format": "json", "limit": 1}
        )
        if not isinstance(results, list) or not results:
            return None
        raw = results[0].get("boundingbox") if isinstance(results[0], dict) else None
        if not isinstance(raw, list) or len(raw) != 4:
            return None
        # Nominatim orders the box as [min_lat, max_lat, min_lon, max_lon].
        min_lat, max_lat, min_lon, max_lon = (float(v) for v in raw)
        return (min_lon, min_lat, max_lon, max_lat)

    def import_by_place(self, place: str, **params: Any) -> ImportResult:
        """Geocode *place*, then import its bounding box.

        Raises:
            InvalidParams: If the place cannot be geocoded.
        """
        bbox = self.geocode(place)
        if bbox is None:
            msg = f"Could not geocode place: {place!r}"
            raise InvalidParams(msg, errors=[f"place: {msg}"])
        logger.info("place geocoded | place=%s | bbox=%s", place, bbox)
        return self.import_data({**params, "bbox": bbox})


def element_geometry(element: dict[str, Any]) -> dict[str, Any] | None:
    """GeoJSON geometry for an Overpass node or way (``out geom`` form)."""
    element_type = element.get("type")
    if element_type == "node":
        if "lon" not in element or "lat" not in element:
            return None
        return {"type": "Point", "coordinates": [element["lon"], element["lat"]]}
    if element_type != "way":
        return None

    nodes = element.get("geometry") or []
    coords = [
        [n["lon"], n["lat"]] for n in nodes if isinstance(n, dict) and "lon" in n and "lat" in n
    ]
    if len(coords) < 2:
        return None
    closed = len(coords) > 3 and coords[0] == coords[-1]
    if closed and POLYGON_TAGS.intersection(element.get("tags") or {}):
        return {"type": "Polygon", "coordinates": [coords]}
    return {"type": "LineString", "coordinates": coords}

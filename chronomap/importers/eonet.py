"""NASA EONET natural-event importer.

Pulls events from the Earth Observatory Natural Event Tracker v3 API
(``GET /events``) and keeps the most recent geometry entry of each
event as its feature geometry.  Only ``Point`` and ``Polygon`` entries
are supported; events with other or missing geometry are recorded as
conversion errors.

The API needs no key.
"""

from __future__ import annotations

import logging
from typing import Any, ClassVar

from chronomap.core.constants import EONET
from chronomap.core.exceptions import ContractError
from chronomap.importers.base import ConversionResult, FetchResult, Importer
from chronomap.models.params import EonetParams

logger = logging.getLogger("chronomap.importers.eonet")

SUPPORTED_GEOMETRY_TYPES = frozenset({"Point", "Polygon"})
EVENT_TYPE = "natural_event"


class EonetImporter(Importer):
    """Import NASA EONET natural events as point/polygon features."""

    source = EONET
    params_model: ClassVar[type[EonetParams]] = EonetParams

    def fetch(self, params: EonetParams) -> FetchResult:
        query: dict[str, Any] = {"status": params.status}
        if params.days is not None:
            query["days"] = params.days
        if params.category:
            query["category"] = params.category
        if params.limit is not None:
            query["limit"] = params.limit

        payload = self.client.get_json("/events", params=query)
        events = payload.get("events") if isinstance(payload, dict) else None
        if not isinstance(events, list):
            msg = "EONET /events response has no 'events' list"
            raise ContractError(msg, stage="fetch", code="EONET_CONTRACT_DRIFT")
        if not events:
            logger.warning("no natural events returned | query=%s", query)
        return FetchResult(records=events)

    def convert(self, record: Any, params: EonetParams) -> ConversionResult:
        if not isinstance(record, dict):
            return ConversionResult.failure(f"event must be an object, got {type(record).__name__}")
        entries = record.get("geometry") or []
        if not isinstance(entries, list) or not entries:
            return ConversionResult.failure(f"event {record.get('id')!r} has no geometry")

        latest = entries[-1]
        geom_type = latest.get("type") if isinstance(latest, dict) else None
        if geom_type not in SUPPORTED_GEOMETRY_TYPES:
            return ConversionResult.failure(
                f"event {record.get('id')!r} has unsupported geometry type {geom_type!r}"
            )

        categories = [c for c in record.get("categories") or [] if isinstance(c, dict)]
        properties = {
            "event_id": record.get("id"),
            "title": record.get("title") or "",
            "description": record.get("description") or "",
            "category": ", ".join(str(c.get("title", "")) for c in categories),
            "category_id": [c.get("id") for c in categories],
            "date": latest.get("date"),
            "closed": record.get("closed"),
            "link": record.get("link") or "",
            "sources": record.get("sources") or [],
            "event_type": EVENT_TYPE,
        }
        return self.build_feature(
            params,
            {"type": geom_type, "coordinates": latest.get("coordinates")},
            name=str(record.get("title") or ""),
            properties=properties,
            valid_from=latest.get("date"),
            valid_to=record.get("closed"),
        )

    def list_categories(self) -> list[dict[str, Any]]:
        """Return the EONET event categories."""
        payload = self.client.get_json("/categories")
        categories = payload.get("categories") if isinstance(payload, dict) else None
        return list(categories or [])

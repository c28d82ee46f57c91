"""Tests for the NASA EONET importer (mocked HTTP)."""

from __future__ import annotations

import unittest
from datetime import date
from typing import Any

import httpx
import pytest

from chronomap.core.constants import EONET
from chronomap.core.exceptions import ContractError, InvalidParams
from chronomap.importers.base import Importer
from chronomap.importers.eonet import EonetImporter
from chronomap.net.client import NetworkError
from chronomap.query.store import InMemoryFeatureStore
from tests.unit.test_importer_contract import CONTRACT_CONFIG, ImporterContractTests, mock_client

EVENTS = {
    "events": [
        {
            "id": "EONET_6001",
            "title": "Wildfire - Sierra County",
            "description": None,
            "link": "https://eonet.gsfc.nasa.gov/api/v3/events/EONET_6001",
            "closed": None,
            "categories": [{"id": "wildfires", "title": "Wildfires"}],
            "sources": [{"id": "InciWeb", "url": "https://inciweb.example/1"}],
            "geometry": [
                {"date": "2024-07-01T00:00:00Z", "type": "Point", "coordinates": [-120.5, 38.2]},
                {"date": "2024-07-03T12:00:00Z", "type": "Point", "coordinates": [-120.6, 38.3]},
            ],
        },
        {
            "id": "EONET_6002",
            "title": "Iceberg A23A",
            "closed": "2024-08-01T00:00:00Z",
            "categories": [{"id": "seaLakeIce", "title": "Sea and Lake Ice"}],
            "sources": [],
            "geometry": [
                {
                    "date": "2024-06-01T00:00:00Z",
                    "type": "Polygon",
                    "coordinates": [
                        [[-40.0, -60.0], [-39.0, -60.0], [-39.0, -59.0], [-40.0, -59.0],
                         [-40.0, -60.0]]
                    ],
                }
            ],
        },
        {"id": "EONET_6003", "title": "No geometry", "categories": [], "geometry": []},
    ]
}


def _handler(payload: Any, seen: list[httpx.Request] | None = None) -> Any:
    def handler(request: httpx.Request) -> httpx.Response:
        if seen is not None:
            seen.append(request)
        return httpx.Response(200, json=payload)

    return handler


def _importer(store: InMemoryFeatureStore, handler: Any) -> EonetImporter:
    client = mock_client("eonet", EONET.base_url, handler)
    return EonetImporter(store, config=CONTRACT_CONFIG, client=client)


class TestEonetImporterContract(ImporterContractTests, unittest.TestCase):
    def create_importer(self, store: InMemoryFeatureStore) -> Importer:
        return _importer(store, _handler(EVENTS))

    def valid_params(self) -> dict[str, Any]:
        return {"status": "open", "days": 7}


class TestEonetFetch:
    def test_query_parameters(self) -> None:
        seen: list[httpx.Request] = []
        importer = _importer(InMemoryFeatureStore(), _handler(EVENTS, seen))
        importer.import_data({"status": "all", "days": 30, "category": "wildfires", "limit": 5})

        request = seen[0]
        assert request.url.path == "/api/v3/events"
        assert dict(request.url.params) == {
            "status": "all",
            "days": "30",
            "category": "wildfires",
            "limit": "5",
        }

    def test_contract_drift(self) -> None:
        importer = _importer(InMemoryFeatureStore(), _handler({"items": []}))
        with pytest.raises(ContractError, match="events") as exc_info:
            importer.import_data({})
        assert exc_info.value.code == "EONET_CONTRACT_DRIFT"

    def test_empty_events(self) -> None:
        result = _importer(InMemoryFeatureStore(), _handler({"events": []})).import_data({})
        assert result.stats.total == 0
        assert result.features == ()

    def test_network_failure_propagates(self) -> None:
        importer = _importer(InMemoryFeatureStore(), lambda request: httpx.Response(503))
        with pytest.raises(NetworkError):
            importer.import_data({})

    def test_invalid_status(self) -> None:
        importer = _importer(InMemoryFeatureStore(), _handler(EVENTS))
        with pytest.raises(InvalidParams, match="status"):
            importer.import_data({"status": "pending"})


class TestEonetConvert:
    @pytest.fixture()
    def result(self) -> Any:
        return _importer(InMemoryFeatureStore(), _handler(EVENTS)).import_data({})

    def test_counts(self, result: Any) -> None:
        assert result.stats.succeeded == 2
        assert result.stats.failed == 1
        assert result.stats.errors[0].item == "EONET_6003"

    def test_latest_geometry_used(self, result: Any) -> None:
        wildfire = result.features[0]
        assert wildfire.geometry == {"type": "Point", "coordinates": [-120.6, 38.3]}
        assert wildfire.valid_from == date(2024, 7, 3)
        assert wildfire.valid_to is None

    def test_properties(self, result: Any) -> None:
        props = result.features[0].properties
        assert props["event_id"] == "EONET_6001"
        assert props["category"] == "Wildfires"
        assert props["category_id"] == ["wildfires"]
        assert props["event_type"] == "natural_event"
        assert props["source"] == "NASA EONET"
        assert props["description"] == ""

    def test_closed_event_validity(self, result: Any) -> None:
        iceberg = result.features[1]
        assert iceberg.geometry["type"] == "Polygon"
        assert iceberg.valid_from == date(2024, 6, 1)
        assert iceberg.valid_to == date(2024, 8, 1)
        assert iceberg.layer_id == "natural_events"

    def test_unsupported_geometry_type(self) -> None:
        importer = _importer(InMemoryFeatureStore(), _handler(EVENTS))
        event = {"id": "E", "geometry": [{"type": "LineString", "coordinates": []}]}
        outcome = importer.convert(event, importer.parse_params({}))
        assert not outcome.ok
        assert "LineString" in outcome.error


class TestEonetCategories:
    def test_list_categories(self) -> None:
        payload = {"categories": [{"id": "wildfires", "title": "Wildfires"}]}
        importer = _importer(InMemoryFeatureStore(), _handler(payload))
        assert importer.list_categories() == payload["categories"]

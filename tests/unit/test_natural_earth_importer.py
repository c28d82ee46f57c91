"""Tests for the Natural Earth shapefile importer (fiona fixtures)."""

from __future__ import annotations

import tempfile
import unittest
from pathlib import Path
from typing import Any

import fiona
import pytest
from fiona.crs import CRS
from fiona.model import Feature as FionaFeature

from chronomap.core.exceptions import InvalidParams
from chronomap.importers.base import Importer
from chronomap.importers.natural_earth import NaturalEarthImporter
from chronomap.query.store import InMemoryFeatureStore
from tests.unit.test_importer_contract import CONTRACT_CONFIG, ImporterContractTests

SCHEMA = {"geometry": "Polygon", "properties": {"NAME": "str", "POP_EST": "int"}}

#: One degree of longitude/latitude at the origin in Web Mercator metres.
MERCATOR_DEGREE_X = 111319.49079327357
MERCATOR_DEGREE_Y = 111325.14286638486


def _square(x: float, y: float, size_x: float, size_y: float) -> dict[str, Any]:
    return {
        "type": "Polygon",
        "coordinates": [
            [(x, y), (x, y + size_y), (x + size_x, y + size_y), (x + size_x, y), (x, y)]
        ],
    }


def write_shapefile(path: Path, epsg: int, records: list[dict[str, Any]]) -> Path:
    with fiona.open(
        path, "w", driver="ESRI Shapefile", schema=SCHEMA, crs=CRS.from_epsg(epsg)
    ) as dst:
        for record in records:
            dst.write(FionaFeature.from_dict(record))
    return path


COUNTRIES = [
    {"geometry": _square(0, 0, 2, 2), "properties": {"NAME": "Squareland", "POP_EST": 1200}},
    {"geometry": _square(5, 5, 1, 1), "properties": {"NAME": "Tinyland", "POP_EST": 10}},
]


class TestNaturalEarthImporterContract(ImporterContractTests, unittest.TestCase):
    def setUp(self) -> None:
        tmp = tempfile.TemporaryDirectory()
        self.addCleanup(tmp.cleanup)
        self.path = write_shapefile(Path(tmp.name) / "countries.shp", 4326, COUNTRIES)

    def create_importer(self, store: InMemoryFeatureStore) -> Importer:
        return NaturalEarthImporter(store, config=CONTRACT_CONFIG)

    def valid_params(self) -> dict[str, Any]:
        return {"path": str(self.path)}


class TestNaturalEarthImport:
    def test_wgs84_shapefile(self, store: InMemoryFeatureStore, tmp_path: Path) -> None:
        path = write_shapefile(tmp_path / "countries.shp", 4326, COUNTRIES)
        result = NaturalEarthImporter(store, config=CONTRACT_CONFIG).import_data(
            {"path": str(path)}
        )

        assert result.stats.succeeded == 2
        assert result.layer_id == "administrative"
        squareland = next(f for f in result.features if f.name == "Squareland")
        assert squareland.geometry["type"] == "Polygon"
        ring = squareland.geometry["coordinates"][0]
        assert all(isinstance(position, list) for position in ring)
        assert sorted({tuple(p) for p in ring}) == [(0, 0), (0, 2), (2, 0), (2, 2)]
        assert squareland.properties["POP_EST"] == 1200

    def test_mercator_shapefile_reprojected(
        self, store: InMemoryFeatureStore, tmp_path: Path
    ) -> None:
        records = [
            {
                "geometry": _square(0, 0, MERCATOR_DEGREE_X, MERCATOR_DEGREE_Y),
                "properties": {"NAME": "Mercatoria", "POP_EST": 5},
            }
        ]
        path = write_shapefile(tmp_path / "mercator.shp", 3857, records)
        result = NaturalEarthImporter(store, config=CONTRACT_CONFIG).import_data(
            {"path": str(path)}
        )

        ring = result.features[0].geometry["coordinates"][0]
        xs = [p[0] for p in ring]
        ys = [p[1] for p in ring]
        assert min(xs) == pytest.approx(0.0, abs=1e-6)
        assert max(xs) == pytest.approx(1.0, abs=1e-6)
        assert max(ys) == pytest.approx(1.0, abs=1e-6)

    def test_declared_crs_registered(self, store: InMemoryFeatureStore, tmp_path: Path) -> None:
        records = [{"geometry": _square(500000, 0, 1000, 1000), "properties": {"NAME": "Utm"}}]
        path = write_shapefile(tmp_path / "utm.shp", 32633, records)
        importer = NaturalEarthImporter(store, config=CONTRACT_CONFIG)

        result = importer.import_data({"path": str(path)})

        assert importer.transformer.is_registered("EPSG:32633")
        ring = result.features[0].geometry["coordinates"][0]
        lon = min(p[0] for p in ring)
        lat = min(p[1] for p in ring)
        assert lon == pytest.approx(15.0, abs=1e-6)
        assert lat == pytest.approx(0.0, abs=1e-6)

    def test_missing_file(self, store: InMemoryFeatureStore, tmp_path: Path) -> None:
        importer = NaturalEarthImporter(store, config=CONTRACT_CONFIG)
        with pytest.raises(InvalidParams, match="Cannot read vector file"):
            importer.import_data({"path": str(tmp_path / "missing.shp")})

    def test_name_fallback(self, store: InMemoryFeatureStore) -> None:
        importer = NaturalEarthImporter(store, config=CONTRACT_CONFIG)
        params = importer.parse_params({"path": "unused.shp"})
        names = []
        for properties in ({"admin": "Adminland"}, {}):
            feature = importer.convert(
                {"geometry": _square(0, 0, 1, 1), "properties": properties}, params
            ).feature
            assert feature is not None
            names.append(feature.name)
        assert names == ["Adminland", "Unknown"]

    def test_missing_geometry(self, store: InMemoryFeatureStore) -> None:
        importer = NaturalEarthImporter(store, config=CONTRACT_CONFIG)
        params = importer.parse_params({"path": "unused.shp"})
        outcome = importer.convert({"geometry": None, "properties": {}}, params)
        assert not outcome.ok
        assert outcome.error == "Missing geometry"

"""Tests for raster vectorisation and the raster importer (rasterio fixtures)."""

from __future__ import annotations

import tempfile
import unittest
from pathlib import Path
from typing import Any

import numpy as np
import pytest
import rasterio
from rasterio.transform import from_origin

from chronomap.importers.base import Importer
from chronomap.importers.raster import RasterImporter
from chronomap.processing.raster import RasterReadError, RasterVectorizer, threshold_mask
from chronomap.query.store import InMemoryFeatureStore
from tests.unit.test_importer_contract import CONTRACT_CONFIG, ImporterContractTests


def two_blobs() -> np.ndarray:
    """10x10 band with a 2x2 blob (200) and a 3x3 blob (255) on a zero background."""
    data = np.zeros((10, 10), dtype=np.uint8)
    data[1:3, 1:3] = 200
    data[6:9, 6:9] = 255
    return data


def write_geotiff(
    path: Path,
    data: np.ndarray,
    *,
    crs: str | None = "EPSG:4326",
    origin: tuple[float, float] = (0.0, 10.0),
    pixel: float = 1.0,
) -> Path:
    height, width = data.shape
    with rasterio.open(
        path,
        "w",
        driver="GTiff",
        height=height,
        width=width,
        count=1,
        dtype=data.dtype,
        crs=crs,
        transform=from_origin(origin[0], origin[1], pixel, pixel),
    ) as dst:
        dst.write(data, 1)
    return path


def _bounds(geometry: dict[str, Any]) -> tuple[float, float, float, float]:
    ring = geometry["coordinates"][0]
    xs = [p[0] for p in ring]
    ys = [p[1] for p in ring]
    return (min(xs), min(ys), max(xs), max(ys))


class TestRasterImporterContract(ImporterContractTests, unittest.TestCase):
    def setUp(self) -> None:
        tmp = tempfile.TemporaryDirectory()
        self.addCleanup(tmp.cleanup)
        self.path = write_geotiff(Path(tmp.name) / "blobs.tif", two_blobs())

    def create_importer(self, store: InMemoryFeatureStore) -> Importer:
        return RasterImporter(store, config=CONTRACT_CONFIG)

    def valid_params(self) -> dict[str, Any]:
        return {"path": str(self.path)}


class TestThresholdMask:
    def test_at_or_above(self) -> None:
        data = np.array([[0, 127], [128, 255]], dtype=np.uint8)
        assert threshold_mask(data, 128).tolist() == [[False, False], [True, True]]

    def test_nan_excluded(self) -> None:
        data = np.array([[np.nan, 200.0]])
        assert threshold_mask(data, 100).tolist() == [[False, True]]

    def test_masked_excluded(self) -> None:
        data = np.ma.array([[200, 200]], mask=[[True, False]])
        assert threshold_mask(data, 100).tolist() == [[False, True]]


class TestRasterVectorizer:
    def test_two_regions(self, tmp_path: Path) -> None:
        path = write_geotiff(tmp_path / "blobs.tif", two_blobs())
        traced = RasterVectorizer().vectorise(path)

        assert traced.crs == "EPSG:4326"
        assert (traced.width, traced.height) == (10, 10)
        assert sorted(_bounds(p) for p in traced.polygons) == [
            (1.0, 7.0, 3.0, 9.0),
            (6.0, 1.0, 9.0, 4.0),
        ]

    def test_threshold_selects_regions(self, tmp_path: Path) -> None:
        path = write_geotiff(tmp_path / "blobs.tif", two_blobs())
        traced = RasterVectorizer().vectorise(path, threshold=250)
        assert [_bounds(p) for p in traced.polygons] == [(6.0, 1.0, 9.0, 4.0)]
        assert traced.threshold == 250

    def test_zero_threshold_covers_raster(self, tmp_path: Path) -> None:
        path = write_geotiff(tmp_path / "blobs.tif", two_blobs())
        traced = RasterVectorizer(threshold=0).vectorise(path)
        assert [_bounds(p) for p in traced.polygons] == [(0.0, 0.0, 10.0, 10.0)]

    def test_missing_band(self, tmp_path: Path) -> None:
        path = write_geotiff(tmp_path / "blobs.tif", two_blobs())
        with pytest.raises(RasterReadError, match="Band 2 not present"):
            RasterVectorizer().vectorise(path, band=2)

    def test_unreadable_file(self, tmp_path: Path) -> None:
        with pytest.raises(RasterReadError, match="Cannot read raster"):
            RasterVectorizer().vectorise(tmp_path / "missing.tif")

    def test_threshold_range(self) -> None:
        with pytest.raises(ValueError, match="threshold"):
            RasterVectorizer(threshold=300)


class TestRasterImport:
    def test_regions_become_features(self, store: InMemoryFeatureStore, tmp_path: Path) -> None:
        path = write_geotiff(tmp_path / "blobs.tif", two_blobs())
        result = RasterImporter(store, config=CONTRACT_CONFIG).import_data({"path": str(path)})

        assert result.stats.succeeded == 2
        assert result.layer_id == "imagery"
        names = sorted(f.name for f in result.features)
        assert names == ["blobs-region-0", "blobs-region-1"]
        feature = result.features[0]
        assert feature.geometry["type"] == "Polygon"
        assert feature.properties["raster"] == "blobs.tif"
        assert feature.properties["threshold"] == 128
        assert feature.properties["source_crs"] == "EPSG:4326"

    def test_projected_raster_reprojected(
        self, store: InMemoryFeatureStore, tmp_path: Path
    ) -> None:
        # 10 px of ~11.1 km starting at the origin: roughly 0..1 degree east.
        path = write_geotiff(
            tmp_path / "mercator.tif",
            two_blobs(),
            crs="EPSG:3857",
            origin=(0.0, 111325.14286638486),
            pixel=11131.949079327357,
        )
        result = RasterImporter(store, config=CONTRACT_CONFIG).import_data({"path": str(path)})

        assert result.stats.succeeded == 2
        for feature in result.features:
            min_x, min_y, max_x, max_y = _bounds(feature.geometry)
            assert 0.0 <= min_x < max_x <= 1.0 + 1e-9
            assert 0.0 <= min_y < max_y <= 1.0 + 1e-9

    def test_raster_without_crs_assumed_wgs84(
        self, store: InMemoryFeatureStore, tmp_path: Path
    ) -> None:
        path = write_geotiff(tmp_path / "nocrs.tif", two_blobs(), crs=None)
        result = RasterImporter(store, config=CONTRACT_CONFIG).import_data({"path": str(path)})
        assert result.stats.succeeded == 2
        assert {f.properties["source_crs"] for f in result.features} == {"EPSG:4326"}

    def test_band_error_propagates(self, store: InMemoryFeatureStore, tmp_path: Path) -> None:
        path = write_geotiff(tmp_path / "blobs.tif", two_blobs())
        importer = RasterImporter(store, config=CONTRACT_CONFIG)
        with pytest.raises(RasterReadError):
            importer.import_data({"path": str(path), "band": 3})
        assert store.count() == 0

    def test_custom_vectorizer(self, store: InMemoryFeatureStore, tmp_path: Path) -> None:
        path = write_geotiff(tmp_path / "blobs.tif", two_blobs())
        importer = RasterImporter(
            store, config=CONTRACT_CONFIG, vectorizer=RasterVectorizer(threshold=250)
        )
        result = importer.import_data({"path": str(path), "threshold": 250})
        assert result.stats.succeeded == 1

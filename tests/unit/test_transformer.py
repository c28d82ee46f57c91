"""Tests for CoordinateTransformer."""

from __future__ import annotations

import copy

import pytest

from chronomap.processing.transformer import CoordinateTransformer, UnknownCRS

COLLECTION = {
    "type": "FeatureCollection",
    "features": [
        {
            "type": "Feature",
            "geometry": {"type": "Point", "coordinates": [2.3522, 48.8566]},
            "properties": {"name": "Paris"},
        },
        {
            "type": "Feature",
            "geometry": {
                "type": "Polygon",
                "coordinates": [[[0, 0], [1, 0], [1, 1], [0, 1], [0, 0]]],
            },
            "properties": {},
        },
        {"type": "Feature", "geometry": None, "properties": {}},
    ],
}


class TestTransform:
    def test_round_trip_within_tolerance(self) -> None:
        transformer = CoordinateTransformer()
        mercator = transformer.transform(COLLECTION, "EPSG:4326", "EPSG:3857")
        back = transformer.transform(mercator, "EPSG:3857", "EPSG:4326")

        lon, lat = back["features"][0]["geometry"]["coordinates"]
        assert lon == pytest.approx(2.3522, abs=1e-6)
        assert lat == pytest.approx(48.8566, abs=1e-6)
        ring = back["features"][1]["geometry"]["coordinates"][0]
        original = COLLECTION["features"][1]["geometry"]["coordinates"][0]
        for got, expected in zip(ring, original, strict=True):
            assert got == pytest.approx(expected, abs=1e-6)

    def test_known_mercator_values(self) -> None:
        x, y = CoordinateTransformer().transform_point(180.0, 0.0, "EPSG:4326", "EPSG:3857")
        assert x == pytest.approx(20037508.342789244, rel=1e-9)
        assert y == pytest.approx(0.0, abs=1e-6)

    def test_crs_tag_rewritten(self) -> None:
        result = CoordinateTransformer().transform(COLLECTION, "EPSG:4326", "EPSG:3857")
        assert result["crs"] == {"type": "name", "properties": {"name": "EPSG:3857"}}

    def test_input_not_mutated(self) -> None:
        before = copy.deepcopy(COLLECTION)
        CoordinateTransformer().transform(COLLECTION, "EPSG:4326", "EPSG:3857")
        assert before == COLLECTION

    def test_identity_transform_copies(self) -> None:
        result = CoordinateTransformer().transform(COLLECTION, "EPSG:4326", "EPSG:4326")
        assert result["features"] == COLLECTION["features"]
        assert result is not COLLECTION

    def test_altitude_preserved(self) -> None:
        geometry = {"type": "Point", "coordinates": [10.0, 10.0, 250.0]}
        result = CoordinateTransformer().transform_geometry(geometry, "EPSG:4326", "EPSG:3857")
        assert result["coordinates"][2] == 250.0
        assert "crs" not in result

    def test_geometry_collection(self) -> None:
        geometry = {
            "type": "GeometryCollection",
            "geometries": [{"type": "Point", "coordinates": [1.0, 1.0]}],
        }
        result = CoordinateTransformer().transform_geometry(geometry, "EPSG:4326", "EPSG:3857")
        x, _ = result["geometries"][0]["coordinates"]
        assert x == pytest.approx(111319.49079327357, rel=1e-9)


class TestRegistry:
    def test_builtin_codes(self) -> None:
        transformer = CoordinateTransformer()
        assert transformer.registered_codes() == ["EPSG:3857", "EPSG:4326"]

    def test_unknown_target(self) -> None:
        with pytest.raises(UnknownCRS) as exc_info:
            CoordinateTransformer().transform(COLLECTION, "EPSG:4326", "EPSG:32633")
        assert exc_info.value.code == "EPSG:32633"
        assert "Registered" in str(exc_info.value)

    def test_register_then_transform(self) -> None:
        transformer = CoordinateTransformer()
        transformer.register("EPSG:32633", "EPSG:32633")
        x, y = transformer.transform_point(15.0, 0.0, "EPSG:4326", "EPSG:32633")
        assert x == pytest.approx(500000.0, abs=1e-3)
        assert y == pytest.approx(0.0, abs=1e-3)

    def test_register_via_constructor(self) -> None:
        transformer = CoordinateTransformer({"UTM33": "+proj=utm +zone=33 +datum=WGS84"})
        assert transformer.is_registered("UTM33")

    def test_register_bad_definition(self) -> None:
        with pytest.raises(UnknownCRS, match="Cannot register"):
            CoordinateTransformer().register("BOGUS", "definitely not a crs")

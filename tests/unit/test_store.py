"""Tests for the in-memory feature store and query filters."""

from __future__ import annotations

from dataclasses import replace
from datetime import date

import pytest

from chronomap.models.feature import Feature, GeometryType, ModelValidationError
from chronomap.models.query import QueryFilters
from chronomap.query.store import FeatureStore, InMemoryFeatureStore, StoreError


def _point(lon: float, lat: float, layer_id: str = "test", **kwargs: object) -> Feature:
    return Feature.from_geometry(
        layer_id, {"type": "Point", "coordinates": [lon, lat]}, **kwargs  # type: ignore[arg-type]
    )


class TestWrites:
    def test_create_assigns_sequential_ids(self) -> None:
        store = InMemoryFeatureStore()
        first = store.create(_point(0, 0))
        second = store.create(_point(1, 1))
        assert first.id == "feat-0000000001"
        assert second.id == "feat-0000000002"
        assert store.get("feat-0000000001") == first

    def test_created_feature_visible_immediately(self) -> None:
        store = InMemoryFeatureStore()
        created = store.create(_point(5, 5))
        assert store.find_in_bbox((4, 4, 6, 6)) == [created]

    def test_duplicate_id_rejected(self) -> None:
        store = InMemoryFeatureStore()
        store.create(_point(0, 0).with_id("fixed"))
        with pytest.raises(StoreError, match="already exists"):
            store.create(_point(1, 1).with_id("fixed"))

    def test_update(self) -> None:
        store = InMemoryFeatureStore()
        created = store.create(_point(0, 0, name="before"))
        store.update(replace(created, name="after"))
        stored = store.get(str(created.id))
        assert stored is not None
        assert stored.name == "after"

    def test_update_unknown_or_unsaved(self) -> None:
        store = InMemoryFeatureStore()
        with pytest.raises(StoreError, match="without an id"):
            store.update(_point(0, 0))
        with pytest.raises(StoreError, match="does not exist"):
            store.update(_point(0, 0).with_id("missing"))

    def test_delete(self) -> None:
        store = InMemoryFeatureStore()
        created = store.create(_point(0, 0))
        assert store.delete(str(created.id)) is True
        assert store.delete(str(created.id)) is False
        assert store.count() == 0

    def test_satisfies_protocol(self) -> None:
        assert isinstance(InMemoryFeatureStore(), FeatureStore)


class TestReads:
    def test_filters_by_layer_and_type(self) -> None:
        store = InMemoryFeatureStore()
        store.create(_point(0, 0, layer_id="a"))
        store.create(_point(0, 0, layer_id="b"))
        store.create(
            Feature.from_geometry(
                "a", {"type": "LineString", "coordinates": [[0, 0], [1, 1]]}
            )
        )
        assert store.count(QueryFilters(layer_id="a")) == 2
        assert store.count(QueryFilters(layer_id="a", geometry_type=GeometryType.LINE)) == 1

    def test_find_near_point_sorted(self) -> None:
        store = InMemoryFeatureStore()
        far = store.create(_point(0.5, 0))
        near = store.create(_point(0.1, 0))
        store.create(_point(5, 0))
        hits = store.find_near_point(0, 0, 100_000)
        assert [f for f, _ in hits] == [near, far]
        assert hits[0][1] < hits[1][1]

    def test_find_in_polygon_strict(self) -> None:
        store = InMemoryFeatureStore()
        inside = store.create(_point(0.5, 0.5))
        store.create(_point(1.0, 0.5))  # on the boundary
        store.create(
            Feature.from_geometry(
                "test", {"type": "LineString", "coordinates": [[0.5, 0.5], [2, 2]]}
            )
        )
        square = {
            "type": "Polygon",
            "coordinates": [[[0, 0], [1, 0], [1, 1], [0, 1], [0, 0]]],
        }
        assert store.find_in_polygon(square) == [inside]


class TestQueryFilters:
    def test_year_rule(self) -> None:
        filters = QueryFilters(year=1950)
        assert filters.matches(_point(0, 0))
        assert not filters.matches(_point(0, 0, valid_to=date(1940, 1, 1)))
        assert not filters.matches(_point(0, 0, valid_from=date(1960, 1, 1)))
        assert filters.matches(_point(0, 0, valid_from=date(1950, 1, 1)))

    def test_to_dict_only_applied(self) -> None:
        assert QueryFilters().to_dict() == {}
        filters = QueryFilters(layer_id="x", geometry_type=GeometryType.POLYGON, year=2000)
        assert filters.to_dict() == {"layer_id": "x", "geometry_type": "polygon", "year": 2000}

    def test_from_dict(self) -> None:
        filters = QueryFilters.from_dict(
            {"layer_id": "a", "geometry_type": "point", "year": "1950"}
        )
        assert filters == QueryFilters(
            layer_id="a", geometry_type=GeometryType.POINT, year=1950
        )
        assert QueryFilters.from_dict(None) == QueryFilters()

    @pytest.mark.parametrize("data", [{"geometry_type": "hexagon"}, {"year": "soon"}, {"year": 0}])
    def test_from_dict_rejects(self, data: dict[str, object]) -> None:
        with pytest.raises(ModelValidationError):
            QueryFilters.from_dict(data)

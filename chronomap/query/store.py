"""Feature store contract and an in-memory implementation.

The query engine and importers depend only on ``FeatureStore``.  A
production deployment backs it with a spatial database; the
``InMemoryFeatureStore`` here implements the same contract with
shapely predicates and is what tests and embedded use run against.

Consistency: a feature returned by ``create`` is visible to the very
next query.
"""

from __future__ import annotations

import itertools
import logging
import threading
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

from shapely.geometry import box
from shapely.prepared import prep

from chronomap.core.exceptions import PermanentError
from chronomap.models.query import QueryFilters
from chronomap.processing._geometry import to_shape
from chronomap.query.spatial import GeodesicDistance

if TYPE_CHECKING:
    from chronomap.models.feature import Feature

logger = logging.getLogger("chronomap.query.store")


class StoreError(PermanentError):
    """Raised by store implementations when a read or write is rejected."""

    default_stage = "store"
    default_code = "STORE_ERROR"


@runtime_checkable
class FeatureStore(Protocol):
    """Persistence contract required by importers and the query engine."""

    def create(self, feature: Feature) -> Feature:
        """Persist *feature* and return it with its assigned ``id``."""
        ...

    def update(self, feature: Feature) -> Feature:
        """Replace the stored feature with the same ``id``."""
        ...

    def get(self, feature_id: str) -> Feature | None: ...

    def find_in_bbox(
        self, bbox: tuple[float, float, float, float], filters: QueryFilters | None = None
    ) -> list[Feature]: ...

    def find_near_point(
        self,
        lon: float,
        lat: float,
        radius_m: float,
        filters: QueryFilters | None = None,
    ) -> list[tuple[Feature, float]]:
        """Features within *radius_m*, as ``(feature, distance_m)`` ascending."""
        ...

    def find_in_polygon(
        self, polygon: dict[str, Any], filters: QueryFilters | None = None
    ) -> list[Feature]: ...

    def count(self, filters: QueryFilters | None = None) -> int: ...

    def all(self, filters: QueryFilters | None = None) -> list[Feature]: ...


class InMemoryFeatureStore:
    """Thread-safe dictionary-backed ``FeatureStore``.

    Identifiers are assigned from a per-store counter (``feat-0000000001``,
    ...), so ordering by id is insertion order.  Spatial lookups are
    linear scans.
    """

    def __init__(self, id_prefix: str = "feat-") -> None:
        self._id_prefix = id_prefix
        self._features: dict[str, Feature] = {}
        self._counter = itertools.count(1)
        self._lock = threading.RLock()

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def create(self, feature: Feature) -> Feature:
        with self._lock:
            if feature.id is not None and feature.id in self._features:
                msg = f"Feature {feature.id!r} already exists"
                raise StoreError(msg)
            feature_id = feature.id or f"{self._id_prefix}{next(self._counter):010d}"
            stored = feature.with_id(feature_id)
            self._features[feature_id] = stored
        logger.debug("feature created | id=%s | layer=%s", feature_id, feature.layer_id)
        return stored

    def update(self, feature: Feature) -> Feature:
        if feature.id is None:
            msg = "Cannot update a feature without an id"
            raise StoreError(msg)
        with self._lock:
            if feature.id not in self._features:
                msg = f"Feature {feature.id!r} does not exist"
                raise StoreError(msg)
            self._features[feature.id] = feature
        return feature

    def delete(self, feature_id: str) -> bool:
        with self._lock:
            return self._features.pop(feature_id, None) is not None

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get(self, feature_id: str) -> Feature | None:
        with self._lock:
            return self._features.get(feature_id)

    def all(self, filters: QueryFilters | None = None) -> list[Feature]:
        return [f for f in self._snapshot() if _passes(f, filters)]

    def count(self, filters: QueryFilters | None = None) -> int:
        return len(self.all(filters))

    def find_in_bbox(
        self, bbox: tuple[float, float, float, float], filters: QueryFilters | None = None
    ) -> list[Feature]:
        envelope = prep(box(*bbox))
        return [
            f
            for f in self._snapshot()
            if _passes(f, filters) and envelope.intersects(to_shape(f.geometry))
        ]

    def find_near_point(
        self,
        lon: float,
        lat: float,
        radius_m: float,
        filters: QueryFilters | None = None,
    ) -> list[tuple[Feature, float]]:
        measure = GeodesicDistance(lon, lat)
        hits: list[tuple[Feature, float]] = []
        for feature in self._snapshot():
            if not _passes(feature, filters):
                continue
            distance = measure.to(feature.geometry)
            if distance <= radius_m:
                hits.append((feature, distance))
        hits.sort(key=lambda hit: (hit[1], hit[0].id or ""))
        return hits

    def find_in_polygon(
        self, polygon: dict[str, Any], filters: QueryFilters | None = None
    ) -> list[Feature]:
        area = prep(to_shape(polygon))
        return [
            f
            for f in self._snapshot()
            if _passes(f, filters) and area.contains(to_shape(f.geometry))
        ]

    def _snapshot(self) -> list[Feature]:
        with self._lock:
            return [self._features[k] for k in sorted(self._features)]


def _passes(feature: Feature, filters: QueryFilters | None) -> bool:
    return filters is None or filters.matches(feature)

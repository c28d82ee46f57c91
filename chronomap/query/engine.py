"""Spatial-temporal query evaluation over a ``FeatureStore``.

The engine is stateless per call: each query shape maps to one
evaluation path, and every path re-applies the same ``QueryFilters``
(layer, geometry type and the ``year`` validity rule) to what the store
returns, so a store that ignores filters still yields correct results.

Complexity (in-memory store, no spatial index):

- bbox: O(features)
- radius: O(features × positions) for the geodesic distance, plus a sort
- polygon: O(features × polygon edges) for strict containment
- grid: O(cells + features × log cells) using an STRtree over cell boxes
"""

from __future__ import annotations

import logging
import math
from collections import Counter
from typing import TYPE_CHECKING, Any

from shapely import STRtree
from shapely.geometry import box
from shapely.ops import unary_union

from chronomap.core.config import PipelineConfig
from chronomap.core.constants import DEFAULT_GRID_CELL_SIZE_DEG, SQ_METRES_PER_SQ_KILOMETRE
from chronomap.core.exceptions import InvalidParams
from chronomap.models.feature import ModelValidationError
from chronomap.models.query import (
    BboxQuery,
    BoundingBox,
    GridCell,
    GridQuery,
    GridResult,
    PolygonQuery,
    QueryFilters,
    QueryMatch,
    QueryResult,
    RadiusQuery,
)
from chronomap.processing._geometry import to_geojson, to_shape
from chronomap.query.spatial import geodesic_area_m2

if TYPE_CHECKING:
    from chronomap.models.feature import Feature
    from chronomap.models.query import Query
    from chronomap.query.store import FeatureStore

logger = logging.getLogger("chronomap.query.engine")

#: Cell edges are nudged by this much so float noise never adds a sliver column.
_GRID_EPSILON = 1e-9


class SpatialTemporalQueryEngine:
    """Evaluate bbox, radius, polygon and grid-aggregate queries.

    Args:
        store: Feature store queried by every path.
        config: Supplies the result limits (``max_query_results``,
            ``max_near_results``, ``max_grid_cells``).
    """

    def __init__(self, store: FeatureStore, config: PipelineConfig | None = None) -> None:
        self.store = store
        self.config = config or PipelineConfig()

    # ------------------------------------------------------------------
    # Query paths
    # ------------------------------------------------------------------

    def bbox(
        self,
        bbox: BoundingBox | tuple[float, float, float, float],
        filters: QueryFilters | None = None,
        *,
        limit: int | None = None,
    ) -> QueryResult:
        """Features whose geometry intersects *bbox*."""
        query = _build(
            BboxQuery, bbox=_as_bbox(bbox), filters=filters or QueryFilters(), limit=limit
        )
        return self._run_bbox(query)

    def radius(
        self,
        lon: float,
        lat: float,
        radius_m: float,
        filters: QueryFilters | None = None,
        *,
        limit: int | None = None,
    ) -> QueryResult:
        """Features within *radius_m* geodesic metres, nearest first."""
        query = _build(
            RadiusQuery,
            lon=lon,
            lat=lat,
            radius_m=radius_m,
            filters=filters or QueryFilters(),
            limit=limit,
        )
        return self._run_radius(query)

    def polygon(
        self,
        polygon: dict[str, Any],
        filters: QueryFilters | None = None,
        *,
        limit: int | None = None,
    ) -> QueryResult:
        """Features strictly contained in *polygon*."""
        query = _build(
            PolygonQuery, polygon=polygon, filters=filters or QueryFilters(), limit=limit
        )
        return self._run_polygon(query)

    def grid(
        self,
        bbox: BoundingBox | tuple[float, float, float, float],
        cell_size_deg: float = DEFAULT_GRID_CELL_SIZE_DEG,
        filters: QueryFilters | None = None,
    ) -> GridResult:
        """Per-cell counts of features intersecting each grid cell of *bbox*."""
        query = _build(
            GridQuery,
            bbox=_as_bbox(bbox),
            cell_size_deg=cell_size_deg,
            filters=filters or QueryFilters(),
        )
        return self._run_grid(query)

    def execute(self, query: Query) -> QueryResult | GridResult:
        """Dispatch a query object to its evaluation path."""
        if isinstance(query, BboxQuery):
            return self._run_bbox(query)
        if isinstance(query, RadiusQuery):
            return self._run_radius(query)
        if isinstance(query, PolygonQuery):
            return self._run_polygon(query)
        if isinstance(query, GridQuery):
            return self._run_grid(query)
        msg = f"Unsupported query type: {type(query).__name__}"
        raise InvalidParams(msg)

    # ------------------------------------------------------------------
    # Evaluation
    # ------------------------------------------------------------------

    def _run_bbox(self, query: BboxQuery) -> QueryResult:
        envelope = query.bbox.as_tuple()
        features = [
            f for f in self.store.find_in_bbox(envelope, query.filters) if query.filters.matches(f)
        ]
        limit = self._limit(query.limit, self.config.max_query_results)
        matches = tuple(QueryMatch(f) for f in features[:limit])
        meta: dict[str, object] = {"bbox": list(envelope)}
        return self._result("bbox", matches, query.filters, meta, limit, len(features))

    def _run_radius(self, query: RadiusQuery) -> QueryResult:
        hits = [
            (f, d)
            for f, d in self.store.find_near_point(
                query.lon, query.lat, query.radius_m, query.filters
            )
            if query.filters.matches(f) and d <= query.radius_m
        ]
        hits.sort(key=lambda hit: hit[1])
        limit = self._limit(query.limit, self.config.max_near_results)
        matches = tuple(QueryMatch(f, distance_m=d) for f, d in hits[:limit])
        meta: dict[str, object] = {
            "center": [query.lon, query.lat],
            "radius_m": query.radius_m,
        }
        return self._result("radius", matches, query.filters, meta, limit, len(hits))

    def _run_polygon(self, query: PolygonQuery) -> QueryResult:
        features = [
            f
            for f in self.store.find_in_polygon(query.polygon, query.filters)
            if query.filters.matches(f)
        ]
        limit = self._limit(query.limit, self.config.max_query_results)
        matches = tuple(QueryMatch(f) for f in features[:limit])
        meta: dict[str, object] = {"polygon": query.polygon}
        return self._result("polygon", matches, query.filters, meta, limit, len(features))

    def _run_grid(self, query: GridQuery) -> GridResult:
        min_lon, min_lat, max_lon, max_lat = query.bbox.as_tuple()
        size = query.cell_size_deg
        columns = max(1, math.ceil((max_lon - min_lon) / size - _GRID_EPSILON))
        rows = max(1, math.ceil((max_lat - min_lat) / size - _GRID_EPSILON))
        if columns * rows > self.config.max_grid_cells:
            msg = (
                f"Grid of {columns}x{rows} cells exceeds the limit of "
                f"{self.config.max_grid_cells}; use a larger cell size"
            )
            raise InvalidParams(msg, errors=[f"cell_size_deg: {msg}"])

        origins: list[tuple[float, float]] = []
        cells = []
        for col in range(columns):
            x = round(min_lon + col * size, 10)
            for row in range(rows):
                y = round(min_lat + row * size, 10)
                origins.append((x, y))
                cells.append(box(x, y, min(x + size, max_lon), min(y + size, max_lat)))

        tree = STRtree(cells)
        features = [
            f
            for f in self.store.find_in_bbox(query.bbox.as_tuple(), query.filters)
            if query.filters.matches(f)
        ]
        counts: Counter[int] = Counter()
        for feature in features:
            for index in tree.query(to_shape(feature.geometry), predicate="intersects"):
                counts[int(index)] += 1

        ranked = sorted(counts.items(), key=lambda kv: (-kv[1], origins[kv[0]]))
        limit = self.config.max_query_results
        grid_cells = tuple(
            GridCell(
                x=origins[index][0],
                y=origins[index][1],
                count=count,
                geometry=to_geojson(cells[index]),
            )
            for index, count in ranked[:limit]
        )
        meta: dict[str, object] = {
            "filters": query.filters.to_dict(),
            "count": len(grid_cells),
            "bbox": list(query.bbox.as_tuple()),
            "cell_size": size,
            "feature_count": len(features),
            "truncated": len(ranked) > limit,
        }
        logger.info(
            "grid query completed | cells=%d | non_empty=%d | features=%d",
            len(cells),
            len(ranked),
            len(features),
        )
        return GridResult(cells=grid_cells, meta=meta)

    # ------------------------------------------------------------------
    # Layer statistics
    # ------------------------------------------------------------------

    def layer_stats(self, layer_id: str) -> dict[str, object]:
        """Summarise one layer: counts per type, polygon area (km²) and extent."""
        features = self.store.all(QueryFilters(layer_id=layer_id))
        type_count = Counter(f.geometry_type.value for f in features)
        areas = [
            geodesic_area_m2(f.geometry) / SQ_METRES_PER_SQ_KILOMETRE
            for f in features
            if f.geometry["type"] in ("Polygon", "MultiPolygon")
        ]
        extent: list[float] | None = None
        if features:
            union = unary_union([to_shape(f.geometry) for f in features])
            extent = [float(v) for v in union.bounds]
        return {
            "layer_id": layer_id,
            "feature_count": len(features),
            "type_count": dict(sorted(type_count.items())),
            "total_area_km2": round(sum(areas), 6),
            "avg_area_km2": round(sum(areas) / len(areas), 6) if areas else 0.0,
            "extent": extent,
        }

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _limit(requested: int | None, ceiling: int) -> int:
        return ceiling if requested is None else min(requested, ceiling)

    @staticmethod
    def _result(
        kind: str,
        matches: tuple[QueryMatch, ...],
        filters: QueryFilters,
        shape: dict[str, object],
        limit: int,
        available: int,
    ) -> QueryResult:
        meta: dict[str, object] = {
            "filters": filters.to_dict(),
            "count": len(matches),
            **shape,
            "limit": limit,
            "truncated": available > limit,
        }
        logger.info(
            "%s query completed | count=%d | available=%d | filters=%s",
            kind,
            len(matches),
            available,
            meta["filters"],
        )
        return QueryResult(matches=matches, meta=meta)


def _as_bbox(bbox: BoundingBox | tuple[float, float, float, float]) -> BoundingBox:
    if isinstance(bbox, BoundingBox):
        return bbox
    try:
        min_lon, min_lat, max_lon, max_lat = bbox
    except (TypeError, ValueError) as exc:
        msg = f"bbox must be (min_lon, min_lat, max_lon, max_lat), got {bbox!r}"
        raise InvalidParams(msg, errors=[f"bbox: {msg}"]) from exc
    return _build(
        BoundingBox,
        min_lon=float(min_lon),
        min_lat=float(min_lat),
        max_lon=float(max_lon),
        max_lat=float(max_lat),
    )


def _build(model: type, **kwargs: Any) -> Any:
    """Construct a query model, surfacing invariant violations as ``InvalidParams``."""
    try:
        return model(**kwargs)
    except ModelValidationError as exc:
        raise InvalidParams(str(exc), errors=[f"{exc.field_name}: {exc}"]) from exc


__all__ = ["SpatialTemporalQueryEngine"]

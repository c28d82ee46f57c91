"""Inbound facade for the routing layer.

``ChronomapService`` is the single entry point an HTTP router (or any
other caller) uses.  Every method returns a plain envelope and never
raises:

- success: ``{"ok": True, "data": ..., "meta": {...}}``
- failure: ``{"ok": False, "error": PipelineError.to_error_dict()}``; any
  other exception is reported with code ``UNEXPECTED_ERROR``

All components are explicit instances owned by the service; nothing is
held in module state.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import TYPE_CHECKING, Any

from chronomap.core.config import PipelineConfig
from chronomap.core.constants import DEFAULT_GRID_CELL_SIZE_DEG
from chronomap.core.exceptions import InvalidParams, PipelineError
from chronomap.importers.base import SingleFlight
from chronomap.importers.factory import get_importer, list_importers
from chronomap.models.feature import ModelValidationError
from chronomap.models.query import QueryFilters
from chronomap.orchestrators.quality import QualityChecker
from chronomap.query.engine import SpatialTemporalQueryEngine
from chronomap.query.store import InMemoryFeatureStore

if TYPE_CHECKING:
    from collections.abc import Callable

    from chronomap.models.contracts import FailureEnvelope, SuccessEnvelope
    from chronomap.query.store import FeatureStore

    Envelope = SuccessEnvelope | FailureEnvelope

logger = logging.getLogger("chronomap.api")


class ChronomapService:
    """Import and query operations returning structured envelopes.

    Args:
        store: Feature store; an ``InMemoryFeatureStore`` when omitted.
        config: Pipeline configuration; ``PipelineConfig.from_env()`` when omitted.
        importer_kwargs: Extra constructor arguments for every importer.
    """

    def __init__(
        self,
        store: FeatureStore | None = None,
        config: PipelineConfig | None = None,
        *,
        importer_kwargs: Mapping[str, Any] | None = None,
    ) -> None:
        self.config = config or PipelineConfig.from_env()
        self.store: FeatureStore = store if store is not None else InMemoryFeatureStore()
        self.engine = SpatialTemporalQueryEngine(self.store, self.config)
        self.guard = SingleFlight()
        self._importer_kwargs = dict(importer_kwargs or {})

    # ------------------------------------------------------------------
    # Imports
    # ------------------------------------------------------------------

    def list_sources(self) -> Envelope:
        return self._call(
            "list_sources",
            lambda: (
                [s for s in list_importers() if s in self.config.enabled_sources],
                {},
            ),
        )

    def import_source(self, source: str, params: Mapping[str, Any] | None = None) -> Envelope:
        """Run one import of *source* with *params*."""

        def run() -> tuple[Any, dict[str, object]]:
            if source not in self.config.enabled_sources:
                msg = f"Source {source!r} is not enabled"
                raise InvalidParams(msg, errors=[f"source: {msg}"])
            importer = get_importer(
                source, self.store, config=self.config, guard=self.guard, **self._importer_kwargs
            )
            try:
                result = importer.import_data(params or {})
            finally:
                importer.close()
            payload = result.to_dict()
            return payload, {"source": source, "fallback_used": result.fallback_used}

        return self._call("import", run)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def bbox(self, args: Mapping[str, Any]) -> Envelope:
        def run() -> tuple[Any, dict[str, object]]:
            result = self.engine.bbox(
                _bbox_arg(args), _filters_arg(args), limit=_optional_int(args, "limit")
            )
            return result.to_feature_collection(), result.meta

        return self._call("bbox", run)

    def radius(self, args: Mapping[str, Any]) -> Envelope:
        def run() -> tuple[Any, dict[str, object]]:
            result = self.engine.radius(
                _number(args, "lon"),
                _number(args, "lat"),
                _number(args, "radius_m"),
                _filters_arg(args),
                limit=_optional_int(args, "limit"),
            )
            return result.to_feature_collection(), result.meta

        return self._call("radius", run)

    def polygon(self, args: Mapping[str, Any]) -> Envelope:
        def run() -> tuple[Any, dict[str, object]]:
            polygon = args.get("polygon")
            if not isinstance(polygon, Mapping):
                msg = "polygon must be a GeoJSON Polygon or MultiPolygon geometry"
                raise InvalidParams(msg, errors=[f"polygon: {msg}"])
            result = self.engine.polygon(
                dict(polygon), _filters_arg(args), limit=_optional_int(args, "limit")
            )
            return result.to_feature_collection(), result.meta

        return self._call("polygon", run)

    def grid(self, args: Mapping[str, Any]) -> Envelope:
        def run() -> tuple[Any, dict[str, object]]:
            cell_size = args.get("cell_size", DEFAULT_GRID_CELL_SIZE_DEG)
            result = self.engine.grid(
                _bbox_arg(args), _as_float("cell_size", cell_size), _filters_arg(args)
            )
            payload = result.to_dict()
            return payload["cells"], result.meta

        return self._call("grid", run)

    def layer_stats(self, layer_id: str) -> Envelope:
        return self._call("layer_stats", lambda: (self.engine.layer_stats(layer_id), {}))

    def quality(self, layer_id: str | None = None) -> Envelope:
        checker = QualityChecker(self.store)
        return self._call("quality", lambda: (checker.check(layer_id).to_dict(), {}))

    # ------------------------------------------------------------------
    # Envelope handling
    # ------------------------------------------------------------------

    def _call(
        self, operation: str, func: Callable[[], tuple[Any, dict[str, object]]]
    ) -> Envelope:
        try:
            data, meta = func()
        except PipelineError as exc:
            logger.warning(
                "request failed | operation=%s | category=%s | code=%s | error=%s",
                operation,
                exc.category,
                exc.code,
                exc,
            )
            return {"ok": False, "error": exc.to_error_dict()}  # type: ignore[typeddict-item]
        except Exception as exc:
            logger.exception("request failed unexpectedly | operation=%s", operation)
            error = PipelineError(
                str(exc) or type(exc).__name__, stage=operation, code="UNEXPECTED_ERROR"
            )
            return {"ok": False, "error": error.to_error_dict()}  # type: ignore[typeddict-item]
        return {"ok": True, "data": data, "meta": meta}


# ---------------------------------------------------------------------------
# Argument parsing
# ---------------------------------------------------------------------------


def _filters_arg(args: Mapping[str, Any]) -> QueryFilters:
    raw = args.get("filters")
    if raw is not None and not isinstance(raw, Mapping):
        msg = "filters must be an object"
        raise InvalidParams(msg, errors=[f"filters: {msg}"])
    try:
        return QueryFilters.from_dict(dict(raw) if raw else None)
    except ModelValidationError as exc:
        raise InvalidParams(str(exc), errors=[f"filters.{exc.field_name}: {exc}"]) from exc


def _bbox_arg(args: Mapping[str, Any]) -> tuple[float, float, float, float]:
    raw = args.get("bbox")
    if not isinstance(raw, list | tuple) or len(raw) != 4:
        msg = "bbox must be [min_lon, min_lat, max_lon, max_lat]"
        raise InvalidParams(msg, errors=[f"bbox: {msg}"])
    min_lon, min_lat, max_lon, max_lat = (_as_float("bbox", v) for v in raw)
    return (min_lon, min_lat, max_lon, max_lat)


def _number(args: Mapping[str, Any], key: str) -> float:
    if args.get(key) is None:
        msg = f"{key} is required"
        raise InvalidParams(msg, errors=[f"{key}: {msg}"])
    return _as_float(key, args[key])


def _optional_int(args: Mapping[str, Any], key: str) -> int | None:
    value = args.get(key)
    if value is None:
        return None
    try:
        return int(value)
    except (TypeError, ValueError) as exc:
        msg = f"{key} must be an integer, got {value!r}"
        raise InvalidParams(msg, errors=[f"{key}: {msg}"]) from exc


def _as_float(key: str, value: Any) -> float:
    if isinstance(value, bool):
        msg = f"{key} must be a number, got {value!r}"
        raise InvalidParams(msg, errors=[f"{key}: {msg}"])
    try:
        return float(value)
    except (TypeError, ValueError) as exc:
        msg = f"{key} must be a number, got {value!r}"
        raise InvalidParams(msg, errors=[f"{key}: {msg}"]) from exc

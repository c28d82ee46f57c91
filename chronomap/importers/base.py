"""Importer abstract base class.

Defines the contract every data-source importer implements and the
shared ingestion flow built on top of it:

    1. ``parse_params(params)``: pydantic validation; fails fast with
       ``InvalidParams`` before any network or filesystem access.
    2. ``fetch(params)``: pull raw records (through the
       importer's ``RateLimitedClient`` for remote sources).
    3. per record, inside a ``BatchProcessor`` run:
       ``convert`` → tag ``properties["source"]`` → validate →
       optional simplify → ``store.create``.

Conversion is result-typed: ``convert`` returns a ``ConversionResult``
rather than raising, and an unconvertible record becomes one entry in
``BatchStats.errors`` while the rest of the import carries on.

Concrete importers (``EonetImporter``, ``ClimateImporter``, ...) only
implement ``fetch`` and ``convert``.
"""

from __future__ import annotations

import abc
import logging
import threading
import time
from contextlib import contextmanager
from dataclasses import dataclass, field, replace
from typing import TYPE_CHECKING, Any, ClassVar

from pydantic import ValidationError as PydanticValidationError

from chronomap.core.config import PipelineConfig
from chronomap.core.exceptions import InvalidParams, TransientError, ValidationError
from chronomap.models.feature import (
    Feature,
    ModelValidationError,
    normalize_properties,
    parse_date,
)
from chronomap.models.params import ImportParams
from chronomap.net.client import RateLimit, RateLimitedClient
from chronomap.processing.batch import BatchProcessor, RetryBatchProcessor, strategy_for
from chronomap.processing.simplifier import GeometrySimplifier
from chronomap.processing.transformer import CoordinateTransformer
from chronomap.processing.validator import GeometryValidationError, GeometryValidator

if TYPE_CHECKING:
    from collections.abc import Callable, Iterator, Mapping

    import httpx

    from chronomap.core.constants import SourceDefinition
    from chronomap.models.batch import BatchStats, ProgressEvent
    from chronomap.models.contracts import ImportResultPayload
    from chronomap.net.client import ClientStats
    from chronomap.query.store import FeatureStore

logger = logging.getLogger("chronomap.importers")


# ---------------------------------------------------------------------------
# Importer exceptions
# ---------------------------------------------------------------------------


class ImportInProgressError(TransientError):
    """Another import of the same source is already running."""

    default_stage = "import"
    default_code = "IMPORT_IN_PROGRESS"

    def __init__(self, source: str) -> None:
        self.source = source
        super().__init__(f"An import of {source!r} is already in progress", retryable=True)


class RecordConversionError(ValidationError):
    """A raw source record could not be converted into a ``Feature``."""

    default_stage = "convert"
    default_code = "RECORD_CONVERSION_FAILED"


# ---------------------------------------------------------------------------
# Single-flight guard
# ---------------------------------------------------------------------------


class SingleFlight:
    """Per-key non-blocking mutual exclusion.

    One instance is constructed by the caller and shared by the
    importers it builds; a second ``acquire`` of a key that is already
    held raises ``ImportInProgressError`` instead of waiting.
    """

    def __init__(self) -> None:
        self._locks: dict[str, threading.Lock] = {}
        self._guard = threading.Lock()

    @contextmanager
    def acquire(self, key: str) -> Iterator[None]:
        with self._guard:
            lock = self._locks.setdefault(key, threading.Lock())
        if not lock.acquire(blocking=False):
            raise ImportInProgressError(key)
        try:
            yield
        finally:
            lock.release()

    def is_running(self, key: str) -> bool:
        with self._guard:
            lock = self._locks.get(key)
        return lock is not None and lock.locked()


# ---------------------------------------------------------------------------
# Result types
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class ConversionResult:
    """Outcome of converting one raw record: a feature or an error message."""

    feature: Feature | None = None
    error: str = ""

    @property
    def ok(self) -> bool:
        return self.feature is not None

    @classmethod
    def success(cls, feature: Feature) -> ConversionResult:
        return cls(feature=feature)

    @classmethod
    def failure(cls, error: str) -> ConversionResult:
        return cls(error=error)


@dataclass(frozen=True, slots=True)
class FetchResult:
    """Raw records pulled from a source.

    Attributes:
        records: Source-specific raw records, one per future feature.
        fallback_used: ``True`` when the records are synthetic fallback data.
    """

    records: list[Any] = field(default_factory=list)
    fallback_used: bool = False


@dataclass(frozen=True, slots=True)
class ImportResult:
    """Normalised features persisted by one import, plus run accounting."""

    source: str
    layer_id: str
    features: tuple[Feature, ...]
    stats: BatchStats
    fallback_used: bool = False
    client_stats: ClientStats | None = None

    @property
    def feature_ids(self) -> list[str]:
        return [f.id for f in self.features if f.id is not None]

    def to_dict(self) -> ImportResultPayload:
        client_stats = self.client_stats.to_dict() if self.client_stats else None
        return {
            "source": self.source,
            "layer_id": self.layer_id,
            "feature_count": len(self.features),
            "feature_ids": self.feature_ids,
            "fallback_used": self.fallback_used,
            "stats": self.stats.to_dict(),
            "client_stats": client_stats,  # type: ignore[typeddict-item]
        }


# ---------------------------------------------------------------------------
# Importer
# ---------------------------------------------------------------------------


class Importer(abc.ABC):
    """Abstract base class for data-source importers.

    Args:
        store: Destination feature store.
        config: Batch, retry, HTTP and simplification settings.
        client: Pre-built HTTP client; created lazily from ``source`` when omitted.
        transport: Optional ``httpx`` transport for the lazily created client.
        validator: Geometry validator (a default one is created when omitted).
        simplifier: Geometry simplifier used when ``params.simplify`` is set.
        transformer: Coordinate transformer for sources that need reprojection.
        guard: Shared ``SingleFlight``; when given, overlapping imports of
            the same source raise ``ImportInProgressError``.
        sleep: Sleep used between item retries.

    Example usage::

        importer = get_importer("eonet", store)
        result = importer.import_data({"status": "open", "days": 7})
    """

    #: Static description of the source (name, label, base URL, pacing).
    source: ClassVar[SourceDefinition]
    #: Pydantic model accepted by ``import_data``.
    params_model: ClassVar[type[ImportParams]] = ImportParams

    def __init__(
        self,
        store: FeatureStore,
        *,
        config: PipelineConfig | None = None,
        client: RateLimitedClient | None = None,
        transport: httpx.BaseTransport | None = None,
        validator: GeometryValidator | None = None,
        simplifier: GeometrySimplifier | None = None,
        transformer: CoordinateTransformer | None = None,
        guard: SingleFlight | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.store = store
        self.config = config or PipelineConfig()
        self._client = client
        self._transport = transport
        self.validator = validator or GeometryValidator()
        self.simplifier = simplifier or GeometrySimplifier(self.config.simplify_tolerance)
        self.transformer = transformer or CoordinateTransformer()
        self.guard = guard
        self._sleep = sleep

    @property
    def name(self) -> str:
        return self.source.name

    @property
    def client(self) -> RateLimitedClient:
        """HTTP client for this source, created on first use."""
        if self._client is None:
            self._client = self.create_client()
        return self._client

    def create_client(self) -> RateLimitedClient:
        return RateLimitedClient(
            self.source.name,
            self.source.base_url,
            rate_limit=RateLimit.for_source(self.source),
            max_retries=self.config.max_retries,
            timeout_s=self.config.request_timeout_s,
            headers=self.client_headers(),
            transport=self._transport,
        )

    def client_headers(self) -> dict[str, str]:
        """Extra headers sent with every request (e.g. API tokens)."""
        return {}

    def close(self) -> None:
        if self._client is not None:
            self._client.close()

    # ------------------------------------------------------------------
    # Abstract methods
    # ------------------------------------------------------------------

    @abc.abstractmethod
    def fetch(self, params: Any) -> FetchResult:
        """Pull raw records for *params* (already validated).

        Raises:
            NetworkError: When a remote source is unreachable after retries.
        """

    @abc.abstractmethod
    def convert(self, record: Any, params: Any) -> ConversionResult:
        """Convert one raw record into an un-persisted ``Feature``.

        Must not raise for malformed records; return
        ``ConversionResult.failure(reason)`` instead.
        """

    # ------------------------------------------------------------------
    # Ingestion flow
    # ------------------------------------------------------------------

    def parse_params(self, params: Mapping[str, Any] | ImportParams | None) -> ImportParams:
        """Validate raw parameters against ``params_model``.

        Raises:
            InvalidParams: With one ``"field: reason"`` entry per problem.
        """
        if isinstance(params, self.params_model):
            return params
        if isinstance(params, ImportParams):
            params = params.model_dump(exclude_unset=True)
        try:
            return self.params_model.model_validate(dict(params or {}))
        except PydanticValidationError as exc:
            errors = [
                f"{'.'.join(str(p) for p in err['loc']) or 'params'}: {err['msg']}"
                for err in exc.errors()
            ]
            msg = f"Invalid {self.name} import parameters: {'; '.join(errors)}"
            raise InvalidParams(msg, errors=errors) from exc

    def layer_for(self, params: ImportParams) -> str:
        return params.layer_id or self.source.default_layer or self.source.name

    def import_data(
        self,
        params: Mapping[str, Any] | ImportParams | None = None,
        *,
        cancel_event: threading.Event | None = None,
        on_progress: Callable[[ProgressEvent], None] | None = None,
    ) -> ImportResult:
        """Run a full import: validate, fetch, convert and persist.

        Raises:
            InvalidParams: Parameters failed validation (nothing was fetched).
            ImportInProgressError: The shared guard reports an overlapping run.
            NetworkError: The source could not be reached.
        """
        parsed = self.parse_params(params)
        if self.guard is None:
            return self._run(parsed, cancel_event, on_progress)
        with self.guard.acquire(self.name):
            return self._run(parsed, cancel_event, on_progress)

    def _run(
        self,
        params: ImportParams,
        cancel_event: threading.Event | None,
        on_progress: Callable[[ProgressEvent], None] | None,
    ) -> ImportResult:
        layer_id = self.layer_for(params)
        logger.info("import started | source=%s | layer=%s", self.name, layer_id)

        fetched = self.fetch(params)
        if fetched.fallback_used:
            logger.warning(
                "import using fallback data | source=%s | records=%d",
                self.name,
                len(fetched.records),
            )

        persisted: list[Feature] = []
        lock = threading.Lock()

        def unit_of_work(record: Any) -> Feature:
            feature = self.persist(record, params, layer_id)
            with lock:
                persisted.append(feature)
            return feature

        processor = self._build_processor(cancel_event, on_progress)
        try:
            stats = processor.process(fetched.records, unit_of_work)
        finally:
            processor.close()

        result = ImportResult(
            source=self.name,
            layer_id=layer_id,
            features=tuple(sorted(persisted, key=lambda f: f.id or "")),
            stats=stats,
            fallback_used=fetched.fallback_used,
            client_stats=self._client.get_stats() if self._client is not None else None,
        )
        logger.info(
            "import completed | source=%s | layer=%s | total=%d | succeeded=%d | failed=%d",
            self.name,
            layer_id,
            stats.total,
            stats.succeeded,
            stats.failed,
        )
        return result

    def persist(self, record: Any, params: ImportParams, layer_id: str) -> Feature:
        """Convert, tag, validate, optionally simplify and store one record.

        Raises:
            RecordConversionError: The record could not be converted.
            GeometryValidationError: The converted geometry is invalid.
            StoreError: The store rejected the write.
        """
        conversion = self.convert(record, params)
        if conversion.feature is None:
            raise RecordConversionError(conversion.error or "record could not be converted")
        feature = conversion.feature
        if feature.layer_id != layer_id:
            feature = replace(feature, layer_id=layer_id)

        properties = {**feature.properties, "source": self.source.label}
        feature = replace(feature, properties=properties)

        validation = self.validator.validate(feature)
        if not validation.valid:
            raise GeometryValidationError(validation, context=feature.name or self.name)

        if params.simplify:
            simplified = self.simplifier.simplify(feature.geometry, params.tolerance)
            feature = replace(feature, geometry=simplified.geometry)

        return self.store.create(feature)

    def _build_processor(
        self,
        cancel_event: threading.Event | None,
        on_progress: Callable[[ProgressEvent], None] | None,
    ) -> BatchProcessor:
        batch_size = self.source.batch_size or self.config.batch_size
        common: dict[str, Any] = {
            "strategy": strategy_for(self.config.concurrency),
            "on_progress": on_progress,
            "cancel_event": cancel_event,
        }
        if self.config.max_retries == 0:
            return BatchProcessor(batch_size, **common)
        return RetryBatchProcessor(
            batch_size,
            max_retries=self.config.max_retries,
            retry_delay_s=self.config.retry_delay_s,
            retry_if=_is_retryable_item_error,
            sleep=self._sleep,
            **common,
        )

    # ------------------------------------------------------------------
    # Helpers for concrete importers
    # ------------------------------------------------------------------

    def build_feature(
        self,
        params: ImportParams,
        geometry: Mapping[str, Any],
        *,
        name: str = "",
        properties: Mapping[str, Any] | None = None,
        valid_from: Any = None,
        valid_to: Any = None,
    ) -> ConversionResult:
        """Build a ``Feature`` for this import, reporting problems as a result.

        Validity bounds given in *params* override per-record values.
        """
        try:
            feature = Feature.from_geometry(
                self.layer_for(params),
                geometry,
                name=name,
                properties=normalize_properties(properties or {}),
                valid_from=params.valid_from or parse_date(valid_from),
                valid_to=params.valid_to or parse_date(valid_to),
            )
        except (ModelValidationError, TypeError, ValueError) as exc:
            return ConversionResult.failure(str(exc))
        return ConversionResult.success(feature)


def _is_retryable_item_error(exc: Exception) -> bool:
    """Validation and conversion failures are deterministic; never retry them."""
    return not isinstance(exc, ValidationError | ModelValidationError)

"""Canonical payload contracts for the inbound facade.

Every structured result handed to the (external) routing layer is
defined here as a ``TypedDict``, so field names have a single source
of truth and drift is caught by the type checker.

Design notes:
- Success and failure envelopes share the ``ok`` discriminator.
- Output contracts use ``total=True`` so missing keys are flagged.
"""

from __future__ import annotations

from typing import Any, Literal, NotRequired, TypedDict

# ---------------------------------------------------------------------------
# Error payload (PipelineError.to_error_dict)
# ---------------------------------------------------------------------------


class ErrorPayload(TypedDict):
    """Stable error keys produced by ``PipelineError.to_error_dict()``."""

    category: str
    code: str
    stage: str
    message: str
    retryable: bool
    correlation_id: str
    errors: NotRequired[list[str]]


# ---------------------------------------------------------------------------
# Import results
# ---------------------------------------------------------------------------


class ClientStatsPayload(TypedDict):
    total_requests: int
    successful_requests: int
    failed_requests: int
    success_rate: float


class ImportResultPayload(TypedDict):
    """Serialised ``ImportResult``."""

    source: str
    layer_id: str
    feature_count: int
    feature_ids: list[str]
    fallback_used: bool
    stats: dict[str, object]
    client_stats: ClientStatsPayload | None


class SourceOutcomePayload(TypedDict):
    """Per-source outcome of a ``DataUpdater`` run."""

    source: str
    status: Literal["succeeded", "failed", "skipped", "disabled"]
    result: ImportResultPayload | None
    error: ErrorPayload | None


# ---------------------------------------------------------------------------
# Query results
# ---------------------------------------------------------------------------


class QueryMetaPayload(TypedDict):
    """Metadata attached to every query result."""

    count: int
    filters: dict[str, object]
    bbox: NotRequired[list[float]]
    center: NotRequired[list[float]]
    radius_m: NotRequired[float]
    polygon: NotRequired[dict[str, Any]]
    cell_size: NotRequired[float]
    limit: NotRequired[int]


class FeatureCollectionPayload(TypedDict):
    type: Literal["FeatureCollection"]
    features: list[dict[str, Any]]
    meta: QueryMetaPayload


class GridCellPayload(TypedDict):
    x: float
    y: float
    count: int
    geometry: dict[str, Any]


# ---------------------------------------------------------------------------
# Envelopes
# ---------------------------------------------------------------------------


class SuccessEnvelope(TypedDict):
    ok: Literal[True]
    data: Any
    meta: dict[str, object]


class FailureEnvelope(TypedDict):
    ok: Literal[False]
    error: ErrorPayload

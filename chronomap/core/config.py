"""Pipeline configuration loaded from environment variables.

All configuration values have sensible defaults; the hosting process's
environment is the source of truth.

Fail-fast validation:
    ``from_env()`` raises ``ConfigValidationError`` if any numeric
    value is out of its valid range or a source name is unknown.  This
    catches bad configuration at startup instead of mid-import.
"""

from __future__ import annotations

import os
from dataclasses import dataclass

from chronomap.core.constants import (
    DEFAULT_MAX_RETRIES,
    DEFAULT_SIMPLIFY_TOLERANCE,
    DEFAULT_TIMEOUT_S,
    SOURCES,
)
from chronomap.core.exceptions import PipelineError


class ConfigValidationError(PipelineError):
    """Raised when configuration values are out of valid range.

    Attributes:
        key: The configuration key that failed validation.
        value: The invalid value.
        message: Human-readable description of the valid range.
    """

    default_stage = "config"
    default_code = "CONFIG_VALIDATION_FAILED"

    def __init__(self, key: str, value: object, message: str) -> None:
        self.key = key
        self.value = value
        super().__init__(f"Invalid configuration {key}={value!r}: {message}")


@dataclass(frozen=True, slots=True)
class PipelineConfig:
    """Immutable pipeline configuration.

    Constructed once by the host and passed explicitly to importers,
    batch processors and the query engine.

    Attributes:
        batch_size: Items per batch when persisting imported features.
        concurrency: Maximum in-flight unit-of-work calls per batch chunk.
        max_retries: Retries per HTTP request and per failed batch item.
        retry_delay_s: Base delay for batch item retries (linear growth).
        request_timeout_s: Per-attempt HTTP timeout in seconds.
        simplify_tolerance: Default Douglas-Peucker tolerance (degrees).
        max_query_results: Cap on bbox, polygon and grid candidate results.
        max_near_results: Cap on radius query results.
        max_grid_cells: Largest grid a heatmap query may request.
        enabled_sources: Sources the scheduled updater is allowed to run.
        noaa_api_key: NOAA CDO token; empty selects the mock-data fallback.
    """

    batch_size: int = 500
    concurrency: int = 2
    max_retries: int = DEFAULT_MAX_RETRIES
    retry_delay_s: float = 1.0
    request_timeout_s: float = DEFAULT_TIMEOUT_S
    simplify_tolerance: float = DEFAULT_SIMPLIFY_TOLERANCE
    max_query_results: int = 1000
    max_near_results: int = 50
    max_grid_cells: int = 250_000
    enabled_sources: tuple[str, ...] = tuple(SOURCES)
    noaa_api_key: str = ""

    @classmethod
    def from_env(cls) -> PipelineConfig:
        """Load and validate configuration from environment variables.

        Raises:
            ConfigValidationError: If a value is out of range or a
                source name is unknown.
            ValueError: If a numeric environment variable cannot be
                parsed (e.g. ``IMPORT_BATCH_SIZE=abc``).
        """
        sources_raw = os.getenv("ENABLED_SOURCES", "")
        enabled = (
            tuple(s.strip() for s in sources_raw.split(",") if s.strip())
            if sources_raw.strip()
            else tuple(SOURCES)
        )
        config = cls(
            batch_size=int(os.getenv("IMPORT_BATCH_SIZE", "500")),
            concurrency=int(os.getenv("IMPORT_CONCURRENCY", "2")),
            max_retries=int(os.getenv("IMPORT_MAX_RETRIES", str(DEFAULT_MAX_RETRIES))),
            retry_delay_s=float(os.getenv("IMPORT_RETRY_DELAY_S", "1.0")),
            request_timeout_s=float(os.getenv("HTTP_TIMEOUT_S", str(DEFAULT_TIMEOUT_S))),
            simplify_tolerance=float(
                os.getenv("SIMPLIFY_TOLERANCE", str(DEFAULT_SIMPLIFY_TOLERANCE))
            ),
            max_query_results=int(os.getenv("QUERY_MAX_RESULTS", "1000")),
            max_near_results=int(os.getenv("QUERY_MAX_NEAR_RESULTS", "50")),
            max_grid_cells=int(os.getenv("QUERY_MAX_GRID_CELLS", "250000")),
            enabled_sources=enabled,
            noaa_api_key=os.getenv("NOAA_API_KEY", ""),
        )
        _validate(config)
        return config


def _validate(config: PipelineConfig) -> None:
    """Validate configuration ranges.  Raises ``ConfigValidationError``."""
    if config.batch_size < 1:
        raise ConfigValidationError("IMPORT_BATCH_SIZE", config.batch_size, "must be >= 1")

    if config.concurrency < 1:
        raise ConfigValidationError("IMPORT_CONCURRENCY", config.concurrency, "must be >= 1")

    if config.max_retries < 0:
        raise ConfigValidationError("IMPORT_MAX_RETRIES", config.max_retries, "must be >= 0")

    if config.retry_delay_s < 0:
        raise ConfigValidationError(
            "IMPORT_RETRY_DELAY_S",
            config.retry_delay_s,
            "must be >= 0 (seconds)",
        )

    if config.request_timeout_s <= 0:
        raise ConfigValidationError(
            "HTTP_TIMEOUT_S",
            config.request_timeout_s,
            "must be > 0 (seconds)",
        )

    if config.simplify_tolerance <= 0:
        raise ConfigValidationError(
            "SIMPLIFY_TOLERANCE",
            config.simplify_tolerance,
            "must be > 0 (coordinate units)",
        )

    for key, value in (
        ("QUERY_MAX_RESULTS", config.max_query_results),
        ("QUERY_MAX_NEAR_RESULTS", config.max_near_results),
        ("QUERY_MAX_GRID_CELLS", config.max_grid_cells),
    ):
        if value < 1:
            raise ConfigValidationError(key, value, "must be >= 1")

    unknown = [name for name in config.enabled_sources if name not in SOURCES]
    if unknown:
        available = ", ".join(sorted(SOURCES))
        raise ConfigValidationError(
            "ENABLED_SOURCES",
            ",".join(unknown),
            f"unknown source(s); available: {available}",
        )

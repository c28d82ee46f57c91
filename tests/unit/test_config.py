"""Tests for pipeline configuration.

Covers:
- Default values
- Loading from environment variables
- Type coercion (string env vars → numeric fields)
- Fail-fast range validation
"""

from __future__ import annotations

import os
from unittest.mock import patch

import pytest

from chronomap.core.config import ConfigValidationError, PipelineConfig
from chronomap.core.constants import SOURCES


class TestPipelineConfigDefaults:
    """Verify default configuration values."""

    def test_default_batching(self) -> None:
        cfg = PipelineConfig()
        assert cfg.batch_size == 500
        assert cfg.concurrency == 2

    def test_default_retries(self) -> None:
        cfg = PipelineConfig()
        assert cfg.max_retries == 3
        assert cfg.retry_delay_s == 1.0

    def test_default_query_limits(self) -> None:
        cfg = PipelineConfig()
        assert cfg.max_query_results == 1000
        assert cfg.max_near_results == 50

    def test_all_sources_enabled_by_default(self) -> None:
        cfg = PipelineConfig()
        assert set(cfg.enabled_sources) == set(SOURCES)

    def test_no_noaa_key_by_default(self) -> None:
        assert PipelineConfig().noaa_api_key == ""


class TestPipelineConfigFromEnv:
    """Verify loading from environment variables."""

    def test_loads_from_environment(self) -> None:
        env = {
            "IMPORT_BATCH_SIZE": "50",
            "IMPORT_CONCURRENCY": "4",
            "IMPORT_MAX_RETRIES": "1",
            "IMPORT_RETRY_DELAY_S": "0.5",
            "HTTP_TIMEOUT_S": "10",
            "SIMPLIFY_TOLERANCE": "0.01",
            "QUERY_MAX_RESULTS": "200",
            "QUERY_MAX_NEAR_RESULTS": "20",
            "QUERY_MAX_GRID_CELLS": "900",
            "ENABLED_SOURCES": "eonet, geojson",
            "NOAA_API_KEY": "secret",
        }
        with patch.dict(os.environ, env, clear=False):
            cfg = PipelineConfig.from_env()

        assert cfg.batch_size == 50
        assert cfg.concurrency == 4
        assert cfg.max_retries == 1
        assert cfg.retry_delay_s == 0.5
        assert cfg.request_timeout_s == 10.0
        assert cfg.simplify_tolerance == 0.01
        assert cfg.max_query_results == 200
        assert cfg.max_near_results == 20
        assert cfg.max_grid_cells == 900
        assert cfg.enabled_sources == ("eonet", "geojson")
        assert cfg.noaa_api_key == "secret"

    def test_defaults_when_env_missing(self) -> None:
        with patch.dict(os.environ, {}, clear=True):
            cfg = PipelineConfig.from_env()
        assert cfg == PipelineConfig()

    def test_non_numeric_value_raises(self) -> None:
        with (
            patch.dict(os.environ, {"IMPORT_BATCH_SIZE": "abc"}, clear=False),
            pytest.raises(ValueError),
        ):
            PipelineConfig.from_env()


class TestPipelineConfigValidation:
    """Out-of-range values fail at load time."""

    @pytest.mark.parametrize(
        ("key", "value"),
        [
            ("IMPORT_BATCH_SIZE", "0"),
            ("IMPORT_CONCURRENCY", "0"),
            ("IMPORT_MAX_RETRIES", "-1"),
            ("IMPORT_RETRY_DELAY_S", "-0.1"),
            ("HTTP_TIMEOUT_S", "0"),
            ("SIMPLIFY_TOLERANCE", "0"),
            ("QUERY_MAX_RESULTS", "0"),
            ("QUERY_MAX_GRID_CELLS", "0"),
        ],
    )
    def test_out_of_range_rejected(self, key: str, value: str) -> None:
        with (
            patch.dict(os.environ, {key: value}, clear=False),
            pytest.raises(ConfigValidationError, match=key),
        ):
            PipelineConfig.from_env()

    def test_unknown_source_rejected(self) -> None:
        with (
            patch.dict(os.environ, {"ENABLED_SOURCES": "eonet,bogus"}, clear=False),
            pytest.raises(ConfigValidationError, match="bogus"),
        ):
            PipelineConfig.from_env()

    def test_error_carries_key_and_value(self) -> None:
        with patch.dict(os.environ, {"IMPORT_BATCH_SIZE": "0"}, clear=False):
            try:
                PipelineConfig.from_env()
            except ConfigValidationError as exc:
                assert exc.key == "IMPORT_BATCH_SIZE"
                assert exc.value == 0
                assert exc.code == "CONFIG_VALIDATION_FAILED"
            else:
                pytest.fail("ConfigValidationError not raised")

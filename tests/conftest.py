"""Shared pytest fixtures for the chronomap test suite."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any

import pytest

from chronomap.core.config import PipelineConfig
from chronomap.query.store import InMemoryFeatureStore

# ---------------------------------------------------------------------------
# Configuration + store fixtures
# ---------------------------------------------------------------------------


@pytest.fixture()
def config() -> PipelineConfig:
    """Deterministic configuration: sequential, no item retries, no delays."""
    return PipelineConfig(batch_size=100, concurrency=1, max_retries=0, retry_delay_s=0.0)


@pytest.fixture()
def store() -> InMemoryFeatureStore:
    return InMemoryFeatureStore()


# ---------------------------------------------------------------------------
# Document fixtures
# ---------------------------------------------------------------------------

SAMPLE_KML = """<?xml version="1.0" encoding="UTF-8"?>
<kml xmlns="http://www.opengis.net/kml/2.2">
  <Document>
    <name>Orchard blocks</name>
    <Placemark id="block-a">
      <name>Block A</name>
      <description>Apple orchard</description>
      <TimeSpan><begin>2020-01-01</begin><end>2030-12-31</end></TimeSpan>
      <ExtendedData>
        <Data name="crop"><value>apple</value></Data>
      </ExtendedData>
      <Polygon>
        <outerBoundaryIs><LinearRing><coordinates>
          -120.50,46.60,0 -120.49,46.60,0 -120.49,46.61,0 -120.50,46.61,0 -120.50,46.60,0
        </coordinates></LinearRing></outerBoundaryIs>
      </Polygon>
    </Placemark>
    <Placemark>
      <name>Well</name>
      <TimeStamp><when>2021-06-15</when></TimeStamp>
      <Point><coordinates>-120.495,46.605,0</coordinates></Point>
    </Placemark>
    <Placemark>
      <name>Irrigation</name>
      <MultiGeometry>
        <LineString><coordinates>-120.50,46.60 -120.49,46.61</coordinates></LineString>
        <LineString><coordinates>-120.49,46.60 -120.50,46.61</coordinates></LineString>
      </MultiGeometry>
    </Placemark>
    <Placemark>
      <name>Broken</name>
      <Point><coordinates>not-a-number</coordinates></Point>
    </Placemark>
  </Document>
</kml>
"""


@pytest.fixture()
def kml_file(tmp_path: Path) -> Path:
    """KML with a polygon, a point, a line MultiGeometry and one malformed placemark."""
    path = tmp_path / "orchard.kml"
    path.write_text(SAMPLE_KML, encoding="utf-8")
    return path


@pytest.fixture()
def geojson_collection() -> dict[str, Any]:
    return {
        "type": "FeatureCollection",
        "features": [
            {
                "type": "Feature",
                "geometry": {"type": "Point", "coordinates": [2.35, 48.85]},
                "properties": {"name": "Paris", "population": 2_100_000},
            },
            {
                "type": "Feature",
                "geometry": {"type": "Point", "coordinates": [-0.13, 51.51]},
                "properties": {"NAME": "London"},
            },
            {
                "type": "Feature",
                "geometry": None,
                "properties": {"name": "Nowhere"},
            },
        ],
    }


@pytest.fixture()
def geojson_file(tmp_path: Path, geojson_collection: dict[str, Any]) -> Path:
    path = tmp_path / "cities.geojson"
    path.write_text(json.dumps(geojson_collection), encoding="utf-8")
    return path

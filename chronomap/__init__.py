"""Chronomap geospatial ingestion pipeline and spatial-temporal query engine.

Pulls map features, natural-event feeds, climate-station records and raw
imagery from external sources, normalises them into time-bounded
features, and answers bounding-box, radius, polygon and grid-aggregate
queries over the resulting store.
"""

__version__ = "0.1.0"

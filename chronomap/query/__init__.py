"""Spatial-temporal querying.

- store: FeatureStore protocol and a thread-safe in-memory implementation
- spatial: Geodesic distance and containment predicates over GeoJSON
- engine: Bbox / radius / polygon / grid-aggregate query evaluation
"""

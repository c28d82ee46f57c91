"""Processing stages shared by every importer.

- batch: Bounded-concurrency batch driver with per-item failure isolation
- validator: Structural and geometric feature validation / cleaning
- simplifier: Douglas-Peucker point reduction with a topology guard
- transformer: CRS registry and recursive coordinate reprojection
- raster: Threshold-based raster vectorisation
"""

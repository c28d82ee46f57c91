"""Core utilities and shared infrastructure.

- config: Configuration loading and validation
- constants: Named constants (coordinate bounds, CRS codes, source definitions)
- exceptions: Exception taxonomy shared by every component
"""

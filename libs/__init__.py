"""Shared libraries for the embedding engine.

Subpackages:
- ``libs.common``: configuration, logging and metrics.

Notes:
- Avoid engine-specific logic; keep modules cohesive and broadly useful.
"""

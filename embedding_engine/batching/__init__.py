"""Batching components for the embedding engine.

Key pieces
- ``device``: detects accelerators and fixes the process-wide device.
- ``queue``: ``Queue`` moving a handler onto a dedicated worker thread so
  every batch runs strictly one at a time, in submission order.
"""

"""Metrics collection facade for the embedding engine.

Re-exports the shared metrics utilities so engine code can import from a
stable local path (``embedding_engine.runtime.metrics``).

Key APIs:
- ``get_metrics_collector(service_name)``: return the process-wide collector.
- ``MetricsCollector``: record embedding, usage and queue metrics.
"""

from libs.common.metrics import MetricsCollector, get_metrics_collector

__all__ = ["MetricsCollector", "get_metrics_collector"]

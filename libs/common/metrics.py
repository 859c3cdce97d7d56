"""Metrics collection for the embedding engine.

Provides a thin convenience wrapper around ``prometheus_client`` so the
encoders, handlers and queues record embedding, token-usage and queue
metrics consistently.

Design notes
- Metrics and labels are predeclared to avoid cardinality explosions
- A single registry is kept per collector (can be injected for testing)
"""

from typing import Optional
from prometheus_client import Counter, Histogram, Gauge, CollectorRegistry, generate_latest
import structlog

logger = structlog.get_logger("metrics")


class MetricsCollector:
    """Centralized metrics collection for the embedding engine.

    Parameters
    - service_name: Logical name used for scoping/labels if desired
    - registry: Optional custom ``CollectorRegistry`` (e.g. for testing)

    Exposes typed helpers for common events to keep label sets consistent.
    """

    def __init__(self, service_name: str, registry: Optional[CollectorRegistry] = None):
        self.service_name = service_name
        self.registry = registry or CollectorRegistry()

        self.embedding_requests = Counter(
            'ml_embedding_requests_total',
            'Total embedding batches processed',
            ['model_name', 'status'],
            registry=self.registry
        )

        self.embedding_duration = Histogram(
            'ml_embedding_duration_seconds',
            'Embedding batch duration',
            ['model_name'],
            registry=self.registry
        )

        self.embedding_sentences = Counter(
            'ml_embedding_sentences_total',
            'Total sentences embedded',
            ['model_name'],
            registry=self.registry
        )

        self.usage_tokens = Counter(
            'ml_embedding_usage_tokens_total',
            'Token usage reported with embedding batches',
            ['model_name', 'kind'],
            registry=self.registry
        )

        self.queue_entries = Counter(
            'ml_queue_entries_total',
            'Queue entries partitioned by outcome',
            ['queue', 'outcome'],
            registry=self.registry
        )

        self.queue_wait = Histogram(
            'ml_queue_wait_seconds',
            'Time entries spend waiting in the queue',
            ['queue'],
            registry=self.registry
        )

        self.queue_depth = Gauge(
            'ml_queue_depth',
            'Entries appended but not yet handled',
            ['queue'],
            registry=self.registry
        )

        self.worker_failures = Counter(
            'ml_queue_worker_failures_total',
            'Queue workers terminated by a handler failure',
            ['queue'],
            registry=self.registry
        )

        self.models_loaded = Gauge(
            'ml_models_loaded',
            'Number of models with a running queue',
            registry=self.registry
        )

    def record_embedding(
        self,
        model_name: str,
        sentence_count: int,
        duration: float,
        status: str = "success"
    ) -> None:
        """Record one embedding batch.

        duration is expected in seconds to match Prometheus histogram units.
        """
        self.embedding_requests.labels(model_name=model_name, status=status).inc()
        self.embedding_duration.labels(model_name=model_name).observe(duration)
        if status == "success":
            self.embedding_sentences.labels(model_name=model_name).inc(sentence_count)

    def record_usage(self, model_name: str, prompt_tokens: int, total_tokens: int) -> None:
        """Record the usage figures reported with a batch."""
        self.usage_tokens.labels(model_name=model_name, kind="prompt").inc(prompt_tokens)
        self.usage_tokens.labels(model_name=model_name, kind="total").inc(total_tokens)

    def record_queue_entry(self, queue: str, outcome: str, wait: Optional[float] = None) -> None:
        """Record a queue entry outcome: ``delivered``, ``abandoned`` or ``dropped``."""
        self.queue_entries.labels(queue=queue, outcome=outcome).inc()
        if wait is not None:
            self.queue_wait.labels(queue=queue).observe(wait)

    def set_queue_depth(self, queue: str, depth: int) -> None:
        """Set the current depth of a queue's command channel."""
        self.queue_depth.labels(queue=queue).set(depth)

    def record_worker_failure(self, queue: str) -> None:
        """Record a queue worker that terminated on a handler failure."""
        self.worker_failures.labels(queue=queue).inc()

    def set_models_loaded(self, count: int) -> None:
        """Set the number of models currently served."""
        self.models_loaded.set(count)

    def get_metrics(self) -> str:
        """Get metrics in Prometheus exposition format for scraping."""
        return generate_latest(self.registry).decode('utf-8')


# Global metrics collector instance
_metrics_collector: Optional[MetricsCollector] = None


def get_metrics_collector(service_name: str) -> MetricsCollector:
    """Get or create the process-wide metrics collector.

    Returns a singleton to avoid duplicate collectors/labels.
    """
    global _metrics_collector
    if _metrics_collector is None:
        _metrics_collector = MetricsCollector(service_name)
        logger.info("Metrics collector created", service=service_name)
    return _metrics_collector

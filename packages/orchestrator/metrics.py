"""
Farmline Prometheus Metrics

Counters and histograms for event publishing, gateway submissions, worker
message processing and cache invalidation.
"""

from typing import Optional

import structlog
from prometheus_client import (
    CONTENT_TYPE_LATEST,
    CollectorRegistry,
    Counter,
    Histogram,
    generate_latest,
    start_http_server,
)

logger = structlog.get_logger(__name__)

__all__ = ["CONTENT_TYPE_LATEST", "PipelineMetrics", "get_metrics"]


class PipelineMetrics:
    """
    Prometheus metrics for the order-event pipeline.

    Each instance owns its registry, so tests and multiple app instances
    never collide on metric names.
    """

    def __init__(self, registry: Optional[CollectorRegistry] = None):
        self.registry = registry or CollectorRegistry()

        self.events_published = Counter(
            "farmline_events_published_total",
            "Events handed to the broker by the publisher",
            ["queue", "status"],
            registry=self.registry,
        )

        self.gateway_submissions = Counter(
            "farmline_gateway_submissions_total",
            "Event submissions received by the gateway",
            ["event_type", "outcome"],
            registry=self.registry,
        )

        self.messages_processed = Counter(
            "farmline_messages_processed_total",
            "Queue messages handled by the worker",
            ["queue", "outcome"],
            registry=self.registry,
        )

        self.processing_duration = Histogram(
            "farmline_message_processing_seconds",
            "Time spent handling a queue message",
            ["queue"],
            registry=self.registry,
            buckets=[0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, float("inf")],
        )

        self.cache_invalidations = Counter(
            "farmline_cache_invalidations_total",
            "Cache keys invalidated by the worker",
            ["kind"],
            registry=self.registry,
        )

    def record_event_published(self, queue: str, success: bool):
        self.events_published.labels(queue=queue, status="success" if success else "failed").inc()

    def record_gateway_submission(self, event_type: str, outcome: str):
        self.gateway_submissions.labels(event_type=event_type, outcome=outcome).inc()

    def record_message_processed(self, queue: str, outcome: str, duration: float):
        self.messages_processed.labels(queue=queue, outcome=outcome).inc()
        self.processing_duration.labels(queue=queue).observe(duration)

    def record_cache_invalidation(self, kind: str, count: int = 1):
        if count > 0:
            self.cache_invalidations.labels(kind=kind).inc(count)

    def export_metrics(self) -> bytes:
        """Export metrics in Prometheus format"""
        return generate_latest(self.registry)

    def start_metrics_server(self, port: int) -> int:
        """Start HTTP metrics server for Prometheus scraping"""
        start_http_server(port, registry=self.registry)
        logger.info("Prometheus metrics server started", port=port)
        return port


_metrics_instance: Optional[PipelineMetrics] = None


def get_metrics() -> PipelineMetrics:
    """Get or create the process-wide metrics instance"""
    global _metrics_instance

    if not _metrics_instance:
        _metrics_instance = PipelineMetrics()

    return _metrics_instance

"""Prometheus metrics for pipeline observability.

Metrics Defined:
- vortex_webhooks_received_total: Counter of webhook deliveries by outcome
- vortex_handler_invocations_total: Counter of stage invocations by outcome
- vortex_handler_duration_seconds: Histogram of stage execution time
- vortex_token_lookups_total: Counter of installation token lookups by tier

Metrics are exposed at the `/metrics` endpoint in Prometheus format.
"""

from typing import Optional

from prometheus_client import (
    REGISTRY,
    CollectorRegistry,
    Counter,
    Histogram,
    generate_latest,
)


# Stage handlers make a handful of network calls; model inference dominates
DEFAULT_DURATION_BUCKETS = (
    0.05,
    0.1,
    0.25,
    0.5,
    1.0,
    2.5,
    5.0,
    10.0,
    30.0,
    60.0,
    120.0,
)


class PipelineMetrics:
    """Container for all pipeline Prometheus metrics.

    Supports custom registries so tests can create isolated instances.

    Metrics:
        webhooks_received_total: Labels github_event, result
            (accepted/ignored/unauthorized/malformed/failed).
        handler_invocations_total: Labels handler, status
            (succeeded/skipped/failed).
        handler_duration_seconds: Labels handler.
        token_lookups_total: Labels tier (local/persistent/issuer).

    Example:
        >>> metrics = PipelineMetrics(registry=CollectorRegistry())
        >>> metrics.record_handler("analyze", "succeeded", 1.2)
    """

    def __init__(self, registry: Optional[CollectorRegistry] = None):
        """Initialize pipeline metrics.

        Args:
            registry: Optional Prometheus registry. If None, uses the
                      default REGISTRY. Pass a custom registry for testing.
        """
        self.registry = registry or REGISTRY

        self.webhooks_received_total = Counter(
            "vortex_webhooks_received_total",
            "Total number of GitHub webhook deliveries received",
            labelnames=["github_event", "result"],
            registry=self.registry,
        )

        self.handler_invocations_total = Counter(
            "vortex_handler_invocations_total",
            "Total number of pipeline stage invocations",
            labelnames=["handler", "status"],
            registry=self.registry,
        )

        self.handler_duration_seconds = Histogram(
            "vortex_handler_duration_seconds",
            "Time spent executing a pipeline stage in seconds",
            labelnames=["handler"],
            buckets=DEFAULT_DURATION_BUCKETS,
            registry=self.registry,
        )

        self.token_lookups_total = Counter(
            "vortex_token_lookups_total",
            "Installation token lookups by the tier that served them",
            labelnames=["tier"],
            registry=self.registry,
        )

    def record_webhook(self, github_event: str, result: str) -> None:
        self.webhooks_received_total.labels(
            github_event=github_event or "unknown",
            result=result,
        ).inc()

    def record_handler(
        self,
        handler: str,
        status: str,
        duration_seconds: float,
    ) -> None:
        """Record one stage invocation.

        Args:
            handler: Subscription name of the stage.
            status: Outcome of the invocation.
            duration_seconds: Wall time spent in the handler.
        """
        self.handler_invocations_total.labels(handler=handler, status=status).inc()
        self.handler_duration_seconds.labels(handler=handler).observe(
            duration_seconds
        )

    def record_token_lookup(self, tier: str) -> None:
        self.token_lookups_total.labels(tier=tier).inc()


# Global metrics instance for the default registry
_default_metrics: Optional[PipelineMetrics] = None


def get_metrics(registry: Optional[CollectorRegistry] = None) -> PipelineMetrics:
    """Get or create the pipeline metrics instance.

    Args:
        registry: Optional Prometheus registry. If None, returns the
                  global metrics instance for the default registry.

    Returns:
        PipelineMetrics: The metrics instance.
    """
    global _default_metrics

    if registry is not None:
        return PipelineMetrics(registry=registry)

    if _default_metrics is None:
        _default_metrics = PipelineMetrics()
    return _default_metrics


def generate_metrics_output(registry: Optional[CollectorRegistry] = None) -> bytes:
    """Generate Prometheus metrics output for the /metrics endpoint."""
    return generate_latest(registry or REGISTRY)

"""Metrics collection for model hosting.

Provides a thin convenience wrapper around ``prometheus_client`` so backend
factories can consistently record model load outcomes and the execution
contexts they create.

Design notes
- Metrics and labels are predeclared to keep label sets bounded
- A single registry is kept per collector (can be injected for tests)
"""

from typing import Optional

from prometheus_client import CollectorRegistry, Counter, Gauge, Histogram, generate_latest


class MetricsCollector:
    """Centralized metrics collection for model loading.

    Parameters
    - service_name: Logical name used for scoping/labels if desired
    - registry: Optional custom ``CollectorRegistry`` (e.g. for testing)
    """

    def __init__(self, service_name: str, registry: Optional[CollectorRegistry] = None):
        self.service_name = service_name
        self.registry = registry or CollectorRegistry()

        self.model_loads = Counter(
            'modelhost_model_loads_total',
            'Total backend construction attempts',
            ['platform', 'status'],
            registry=self.registry
        )

        self.model_load_duration = Histogram(
            'modelhost_model_load_duration_seconds',
            'Backend construction duration',
            ['platform'],
            registry=self.registry
        )

        self.execution_contexts_created = Counter(
            'modelhost_execution_contexts_created_total',
            'Total execution contexts created',
            ['platform', 'kind'],
            registry=self.registry
        )

        self.localized_artifacts = Counter(
            'modelhost_localized_artifacts_total',
            'Total subdirectory bundles localized into scoped stores',
            registry=self.registry
        )

        self.runtime_active = Gauge(
            'modelhost_runtime_active',
            'Number of active references to the native runtime',
            ['runtime'],
            registry=self.registry
        )

    def record_model_load(self, platform: str, status: str, duration: float) -> None:
        """Record a backend construction attempt.

        duration is expected in seconds to match Prometheus histogram units.
        """
        self.model_loads.labels(platform=platform, status=status).inc()
        self.model_load_duration.labels(platform=platform).observe(duration)

    def record_execution_context(self, platform: str, kind: str) -> None:
        """Record one created execution context."""
        self.execution_contexts_created.labels(platform=platform, kind=kind).inc()

    def record_localized_artifacts(self, count: int) -> None:
        """Record localized subdirectory bundles."""
        if count:
            self.localized_artifacts.inc(count)

    def set_runtime_active(self, runtime: str, references: int) -> None:
        """Set the current runtime reference count."""
        self.runtime_active.labels(runtime=runtime).set(references)

    def get_metrics(self) -> str:
        """Get metrics in Prometheus exposition format for scraping."""
        return generate_latest(self.registry).decode('utf-8')


# Global metrics collector instance
_metrics_collector: Optional[MetricsCollector] = None


def get_metrics_collector(service_name: str = "modelhost") -> MetricsCollector:
    """Get or create the metrics collector.

    Returns a process-wide singleton to avoid duplicate collectors/labels.
    """
    global _metrics_collector
    if _metrics_collector is None:
        _metrics_collector = MetricsCollector(service_name)
    return _metrics_collector

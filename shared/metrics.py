"""
Shared metrics configuration for the licensing backend.
"""

import threading
from typing import Dict, Any, Optional

from prometheus_client import Counter, Histogram, Info, CollectorRegistry, generate_latest


class MetricsCollector:
    """Centralized metrics collector for services.

    Each collector owns its registry so that several service instances
    (tests build many) never collide on metric names.
    """

    def __init__(self, service_name: str, registry: Optional[CollectorRegistry] = None):
        self.service_name = service_name
        self.registry = registry or CollectorRegistry()
        self._metrics: Dict[str, Any] = {}
        self._setup_metrics()

    def _setup_metrics(self):
        """Set up common and licensing metrics."""
        self._metrics["service_info"] = Info(
            "service_info",
            "Service information",
            registry=self.registry
        )
        self._metrics["service_info"].info({"service": self.service_name, "version": "1.0.0"})

        self._metrics["http_requests_total"] = Counter(
            "http_requests_total",
            "Total HTTP requests",
            ["method", "endpoint", "status_code"],
            registry=self.registry
        )

        self._metrics["http_request_duration_seconds"] = Histogram(
            "http_request_duration_seconds",
            "HTTP request duration in seconds",
            ["method", "endpoint"],
            registry=self.registry
        )

        self._metrics["cache_loads_total"] = Counter(
            "cache_loads_total",
            "Bulk entity loads issued by the entity cache",
            ["kind", "status"],
            registry=self.registry
        )

        self._metrics["write_conflicts_total"] = Counter(
            "write_conflicts_total",
            "Optimistic write conflicts",
            ["document"],
            registry=self.registry
        )

        self._metrics["verdicts_total"] = Counter(
            "verdicts_total",
            "Permission verdicts by outcome and code",
            ["outcome", "code"],
            registry=self.registry
        )

        self._metrics["infrastructure_faults_total"] = Counter(
            "infrastructure_faults_total",
            "Infrastructure faults absorbed by the fail-open policy",
            ["stage"],
            registry=self.registry
        )

        self._metrics["meter_events_total"] = Counter(
            "meter_events_total",
            "Outbound metering events",
            ["event_name", "status"],
            registry=self.registry
        )

    def record_http_request(self, method: str, endpoint: str, status_code: int, duration: float):
        """Record HTTP request metrics."""
        self._metrics["http_requests_total"].labels(
            method=method, endpoint=endpoint, status_code=str(status_code)
        ).inc()
        self._metrics["http_request_duration_seconds"].labels(
            method=method, endpoint=endpoint
        ).observe(duration)

    def record_cache_load(self, kind: str, status: str):
        self._metrics["cache_loads_total"].labels(kind=kind, status=status).inc()

    def record_write_conflict(self, document: str):
        self._metrics["write_conflicts_total"].labels(document=document).inc()

    def record_verdict(self, outcome: str, code: Optional[str] = None):
        self._metrics["verdicts_total"].labels(outcome=outcome, code=code or "").inc()

    def record_infrastructure_fault(self, stage: str):
        self._metrics["infrastructure_faults_total"].labels(stage=stage).inc()

    def record_meter_event(self, event_name: str, status: str):
        self._metrics["meter_events_total"].labels(event_name=event_name, status=status).inc()

    def get_metric_value(self, name: str, **labels) -> float:
        """Current sample value, mostly useful in tests."""
        value = self.registry.get_sample_value(name, labels or None)
        return value or 0.0

    def export(self) -> bytes:
        """Render the registry in Prometheus text format."""
        return generate_latest(self.registry)


_collectors: Dict[str, MetricsCollector] = {}
_lock = threading.Lock()


def get_metrics_collector(service_name: str) -> MetricsCollector:
    """Get or create the process-wide collector for a service."""
    with _lock:
        if service_name not in _collectors:
            _collectors[service_name] = MetricsCollector(service_name)
        return _collectors[service_name]

"""
Shared metrics configuration for the Access Control Core.
"""

from typing import Dict, Any, Optional, Tuple
import threading

from prometheus_client import REGISTRY, CollectorRegistry, Counter, Histogram, Info


class MetricsCollector:
    """Centralized metrics collector for services."""

    def __init__(self, service_name: str, registry: Optional[CollectorRegistry] = None):
        self.service_name = service_name
        self.registry = registry if registry is not None else REGISTRY
        self._metrics: Dict[str, Any] = {}
        self._setup_metrics()

    def _setup_metrics(self):
        """Set up common metrics for the service."""

        self._metrics["service_info"] = Info(
            "service_info",
            "Service information",
            registry=self.registry
        )
        self._metrics["service_info"].info({
            "service": self.service_name,
            "version": "1.0.0"
        })

        # HTTP metrics
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

        self._metrics["health_check_total"] = Counter(
            "health_check_total",
            "Total health check requests",
            ["status"],
            registry=self.registry
        )

        # Access decisions
        self._metrics["access_decisions_total"] = Counter(
            "access_decisions_total",
            "Guard chain decisions",
            ["outcome", "code"],
            registry=self.registry
        )

        self._metrics["guard_errors_total"] = Counter(
            "guard_errors_total",
            "Guards that raised and were failed closed",
            ["guard"],
            registry=self.registry
        )

        # Audit trail
        self._metrics["audit_writes_total"] = Counter(
            "audit_writes_total",
            "Audit record writes",
            ["kind", "result"],
            registry=self.registry
        )

        # Configuration mutations
        self._metrics["config_commits_total"] = Counter(
            "config_commits_total",
            "Configuration store commit attempts",
            ["namespace", "result"],
            registry=self.registry
        )

    def record_http_request(self, method: str, endpoint: str, status_code: int, duration: float):
        """Record HTTP request metrics."""
        self._metrics["http_requests_total"].labels(
            method=method,
            endpoint=endpoint,
            status_code=str(status_code)
        ).inc()

        self._metrics["http_request_duration_seconds"].labels(
            method=method,
            endpoint=endpoint
        ).observe(duration)

    def record_health_check(self, status: str):
        """Record health check metrics."""
        self._metrics["health_check_total"].labels(status=status).inc()

    def record_decision(self, outcome: str, code: Optional[str]):
        """Record a guard chain decision."""
        self._metrics["access_decisions_total"].labels(outcome=outcome, code=code or "").inc()

    def record_guard_error(self, guard: str):
        self._metrics["guard_errors_total"].labels(guard=guard).inc()

    def record_audit_write(self, kind: str, success: bool):
        """Record an audit write attempt."""
        self._metrics["audit_writes_total"].labels(
            kind=kind,
            result="ok" if success else "error"
        ).inc()

    def record_config_commit(self, namespace: str, result: str):
        self._metrics["config_commits_total"].labels(namespace=namespace, result=result).inc()


_collectors: Dict[Tuple[str, int], MetricsCollector] = {}
_collectors_lock = threading.Lock()


def get_metrics_collector(service_name: str, registry: Optional[CollectorRegistry] = None) -> MetricsCollector:
    """Get the metrics collector for a service.

    Collectors are shared per (service, registry) because prometheus_client
    refuses to register the same metric name twice in one registry.
    """
    key = (service_name, id(registry))
    with _collectors_lock:
        collector = _collectors.get(key)
        if collector is None:
            collector = MetricsCollector(service_name, registry)
            _collectors[key] = collector
        return collector

"""
Prometheus metrics for the vendor bridge

Metric objects are registered once per process and shared through small
accessor helpers so that re-importing a module (tests, reloads) does not
trip prometheus_client's duplicate-registration check.
"""

import time
from contextlib import contextmanager
from typing import Dict

from prometheus_client import CONTENT_TYPE_LATEST, Counter, Gauge, Histogram, generate_latest

from bridge_shared.utils.app_logger import get_logger

logger = get_logger(__name__)

_COUNTERS: Dict[str, Counter] = {}
_HISTOGRAMS: Dict[str, Histogram] = {}
_GAUGES: Dict[str, Gauge] = {}


def _counter(name: str, description: str, *, labelnames: tuple) -> Counter:
    metric = _COUNTERS.get(name)
    if metric is None:
        metric = Counter(name, description, labelnames=labelnames)
        _COUNTERS[name] = metric
    return metric


def _histogram(name: str, description: str, *, labelnames: tuple) -> Histogram:
    metric = _HISTOGRAMS.get(name)
    if metric is None:
        metric = Histogram(name, description, labelnames=labelnames)
        _HISTOGRAMS[name] = metric
    return metric


def _gauge(name: str, description: str, *, labelnames: tuple = ()) -> Gauge:
    metric = _GAUGES.get(name)
    if metric is None:
        metric = Gauge(name, description, labelnames=labelnames)
        _GAUGES[name] = metric
    return metric


class BridgeMetrics:
    """Named accessors for every metric the bridge exports"""

    def __init__(self, service_name: str):
        self.service_name = service_name
        self.http_requests = _counter(
            "vendor_bridge_http_requests_total",
            "HTTP requests handled",
            labelnames=("service", "method", "path", "status"),
        )
        self.http_duration = _histogram(
            "vendor_bridge_http_request_duration_seconds",
            "HTTP request duration",
            labelnames=("service", "method", "path"),
        )
        self.commands_enqueued = _counter(
            "vendor_bridge_commands_enqueued_total",
            "Commands accepted by the ingestion gateway",
            labelnames=("operation", "result"),
        )
        self.commands_processed = _counter(
            "vendor_bridge_commands_processed_total",
            "Commands settled by the worker",
            labelnames=("operation", "disposition", "status"),
        )
        self.adapter_duration = _histogram(
            "vendor_bridge_adapter_call_duration_seconds",
            "Legacy RPC call duration",
            labelnames=("operation", "strategy"),
        )
        self.events_pushed = _counter(
            "vendor_bridge_notifications_total",
            "Status events handled by the notifier",
            labelnames=("result",),
        )
        self.websocket_connections = _gauge(
            "vendor_bridge_websocket_connections",
            "Currently open WebSocket connections",
        )

    def record_request(self, method: str, path: str, status: int, duration: float) -> None:
        self.http_requests.labels(self.service_name, method, path, str(status)).inc()
        self.http_duration.labels(self.service_name, method, path).observe(duration)

    @contextmanager
    def time_adapter_call(self, operation: str, strategy: str):
        start = time.perf_counter()
        try:
            yield
        finally:
            self.adapter_duration.labels(operation, strategy).observe(time.perf_counter() - start)


_collectors: Dict[str, BridgeMetrics] = {}


def get_metrics(service_name: str) -> BridgeMetrics:
    collector = _collectors.get(service_name)
    if collector is None:
        collector = BridgeMetrics(service_name)
        _collectors[service_name] = collector
    return collector


def render_latest() -> tuple:
    """Body and content type for a /metrics endpoint"""
    return generate_latest(), CONTENT_TYPE_LATEST

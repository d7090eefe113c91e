import logging

from prometheus_client import (
    CONTENT_TYPE_LATEST,
    CollectorRegistry,
    Counter,
    Histogram,
    generate_latest,
)

logger = logging.getLogger(__name__)

SCAN_WINDOW_BUCKETS = (0, 1, 2, 3, 4, 5, 6, 7, 8, 9, 10)


class Metrics:
    def __init__(self, enabled: bool = False) -> None:
        self._configure(enabled)

    def _configure(self, enabled: bool) -> None:
        self.enabled = enabled
        self.registry = CollectorRegistry(auto_describe=True)
        if not enabled:
            self.http_requests = None
            self.http_latency = None
            self.http_5xx = None
            self.list_scans = None
            self.list_scan_windows = None
            self.duplicate_detections = None
            self.side_index_failures = None
            self.refund_events = None
            return

        self.http_requests = Counter(
            "http_requests_total",
            "HTTP requests by method, route and status code.",
            ["method", "path", "status_code"],
            registry=self.registry,
        )
        self.http_latency = Histogram(
            "http_request_latency_seconds",
            "HTTP request latency by method, route and status class.",
            ["method", "path", "status_class"],
            registry=self.registry,
        )
        self.http_5xx = Counter(
            "http_5xx_total",
            "HTTP 5xx responses by method and route.",
            ["method", "path"],
            registry=self.registry,
        )
        self.list_scans = Counter(
            "list_scans_total",
            "Windowed index scans by collection.",
            ["collection"],
            registry=self.registry,
        )
        self.list_scan_windows = Histogram(
            "list_scan_windows",
            "Index windows read per filtered listing.",
            ["collection"],
            buckets=SCAN_WINDOW_BUCKETS,
            registry=self.registry,
        )
        self.duplicate_detections = Counter(
            "refund_duplicate_detections_total",
            "Likely-duplicate refund claims detected by source.",
            ["source"],
            registry=self.registry,
        )
        self.side_index_failures = Counter(
            "side_index_failures_total",
            "Best-effort index maintenance failures by operation.",
            ["operation"],
            registry=self.registry,
        )
        self.refund_events = Counter(
            "refund_events_total",
            "Refund claim lifecycle events by action.",
            ["action"],
            registry=self.registry,
        )

    def record_http_request(self, method: str, path: str, status_code: int) -> None:
        if not self.enabled or self.http_requests is None:
            return
        self.http_requests.labels(method=method, path=path, status_code=str(status_code)).inc()

    def record_http_latency(self, method: str, path: str, status_code: int, duration_seconds: float) -> None:
        if not self.enabled or self.http_latency is None:
            return
        status_class = f"{status_code // 100}xx" if status_code else "unknown"
        duration_seconds = max(0.0, float(duration_seconds))
        self.http_latency.labels(method=method, path=path, status_class=status_class).observe(
            duration_seconds
        )

    def record_http_5xx(self, method: str, path: str) -> None:
        if not self.enabled or self.http_5xx is None:
            return
        self.http_5xx.labels(method=method, path=path).inc()

    def record_list_scan(self, collection: str, windows_read: int) -> None:
        if not self.enabled or self.list_scans is None or self.list_scan_windows is None:
            return
        self.list_scans.labels(collection=collection).inc()
        self.list_scan_windows.labels(collection=collection).observe(max(0, windows_read))

    def record_duplicate_detection(self, source: str, count: int = 1) -> None:
        if not self.enabled or self.duplicate_detections is None:
            return
        if count <= 0:
            return
        self.duplicate_detections.labels(source=source).inc(count)

    def record_side_index_failure(self, operation: str) -> None:
        if not self.enabled or self.side_index_failures is None:
            return
        self.side_index_failures.labels(operation=operation or "unknown").inc()

    def record_refund_event(self, action: str, count: int = 1) -> None:
        if not self.enabled or self.refund_events is None:
            return
        if count <= 0:
            return
        self.refund_events.labels(action=action).inc(count)

    def render(self) -> tuple[bytes, str]:
        if not self.enabled:
            return b"metrics_disabled 1\n", "text/plain; version=0.0.4"
        try:
            return generate_latest(self.registry), CONTENT_TYPE_LATEST
        except Exception:  # noqa: BLE001
            logger.exception("metrics_render_failed")
            return b"metrics_render_failed 1\n", "text/plain; version=0.0.4"


metrics = Metrics(enabled=False)


def configure_metrics(enabled: bool) -> Metrics:
    metrics._configure(enabled)
    return metrics

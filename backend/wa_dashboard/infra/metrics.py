import logging
import time

from prometheus_client import (
    CONTENT_TYPE_LATEST,
    CollectorRegistry,
    Counter,
    Gauge,
    Histogram,
    generate_latest,
)

logger = logging.getLogger(__name__)


class Metrics:
    def __init__(self, enabled: bool = False) -> None:
        self._configure(enabled)

    def _configure(self, enabled: bool) -> None:
        self.enabled = enabled
        self.registry = CollectorRegistry(auto_describe=True)
        if not enabled:
            self.webhook_events = None
            self.workflow_sends = None
            self.workflow_enrollments = None
            self.scheduler_runs = None
            self.broadcast_sends = None
            self.outbound_requests = None
            self.http_requests = None
            self.http_5xx = None
            self.http_latency = None
            self.job_heartbeat = None
            self.job_last_success = None
            self.job_errors = None
            return

        self.webhook_events = Counter(
            "webhook_events_total",
            "WhatsApp webhook events processed by kind and result.",
            ["kind", "result"],
            registry=self.registry,
        )
        self.workflow_sends = Counter(
            "workflow_step_sends_total",
            "Workflow step sends by outcome.",
            ["outcome"],
            registry=self.registry,
        )
        self.workflow_enrollments = Counter(
            "workflow_enrollments_total",
            "Contacts enrolled into workflows by trigger.",
            ["trigger"],
            registry=self.registry,
        )
        self.scheduler_runs = Counter(
            "workflow_scheduler_runs_total",
            "Workflow scheduler triggers by result (completed/skipped/failed).",
            ["result"],
            registry=self.registry,
        )
        self.broadcast_sends = Counter(
            "broadcast_sends_total",
            "Bulk template sends by outcome.",
            ["outcome"],
            registry=self.registry,
        )
        self.outbound_requests = Counter(
            "whatsapp_requests_total",
            "Graph API requests by operation and result.",
            ["operation", "result"],
            registry=self.registry,
        )
        self.http_requests = Counter(
            "http_requests_total",
            "HTTP requests by method, path and status class.",
            ["method", "path", "status_class"],
            registry=self.registry,
        )
        self.http_5xx = Counter(
            "http_5xx_total",
            "HTTP responses with status >= 500.",
            ["method", "path"],
            registry=self.registry,
        )
        self.http_latency = Histogram(
            "http_request_latency_seconds",
            "HTTP request latency in seconds.",
            ["method", "path", "status_class"],
            buckets=(0.05, 0.1, 0.25, 0.5, 1, 2, 5, 10),
            registry=self.registry,
        )
        self.job_heartbeat = Gauge(
            "job_last_heartbeat_timestamp",
            "Unix timestamp for the latest job heartbeat.",
            ["job"],
            registry=self.registry,
        )
        self.job_last_success = Gauge(
            "job_last_success_timestamp",
            "Unix timestamp for the latest successful job run.",
            ["job"],
            registry=self.registry,
        )
        self.job_errors = Counter(
            "job_errors_total",
            "Job execution errors by job and reason.",
            ["job", "reason"],
            registry=self.registry,
        )

    def record_webhook_event(self, kind: str, result: str = "processed") -> None:
        if not self.enabled or self.webhook_events is None:
            return
        self.webhook_events.labels(kind=kind or "unknown", result=result or "unknown").inc()

    def record_workflow_send(self, outcome: str, count: int = 1) -> None:
        if not self.enabled or self.workflow_sends is None:
            return
        if count <= 0:
            return
        self.workflow_sends.labels(outcome=outcome or "unknown").inc(count)

    def record_workflow_enrollment(self, trigger: str, count: int = 1) -> None:
        if not self.enabled or self.workflow_enrollments is None:
            return
        if count <= 0:
            return
        self.workflow_enrollments.labels(trigger=trigger).inc(count)

    def record_scheduler_run(self, result: str) -> None:
        if not self.enabled or self.scheduler_runs is None:
            return
        self.scheduler_runs.labels(result=result).inc()

    def record_broadcast_send(self, outcome: str, count: int = 1) -> None:
        if not self.enabled or self.broadcast_sends is None:
            return
        if count <= 0:
            return
        self.broadcast_sends.labels(outcome=outcome).inc(count)

    def record_outbound_request(self, operation: str, result: str) -> None:
        if not self.enabled or self.outbound_requests is None:
            return
        self.outbound_requests.labels(operation=operation, result=result or "unknown").inc()

    def record_http_request(self, method: str, path: str, status_code: int) -> None:
        if not self.enabled or self.http_requests is None:
            return
        status_class = f"{status_code // 100}xx" if status_code else "unknown"
        self.http_requests.labels(method=method, path=path, status_class=status_class).inc()

    def record_http_5xx(self, method: str, path: str) -> None:
        if not self.enabled or self.http_5xx is None:
            return
        self.http_5xx.labels(method=method, path=path).inc()

    def record_http_latency(self, method: str, path: str, status_code: int, duration_seconds: float) -> None:
        if not self.enabled or self.http_latency is None:
            return
        status_class = f"{status_code // 100}xx" if status_code else "unknown"
        duration_seconds = max(0.0, float(duration_seconds))
        self.http_latency.labels(method=method, path=path, status_class=status_class).observe(
            duration_seconds
        )

    def record_job_heartbeat(self, job: str, timestamp: float | None = None) -> None:
        if not self.enabled or self.job_heartbeat is None:
            return
        ts = timestamp if timestamp is not None else time.time()
        self.job_heartbeat.labels(job=job).set(ts)

    def record_job_success(self, job: str, timestamp: float | None = None) -> None:
        if not self.enabled or self.job_last_success is None:
            return
        ts = timestamp if timestamp is not None else time.time()
        self.job_last_success.labels(job=job).set(ts)

    def record_job_error(self, job: str, reason: str) -> None:
        if not self.enabled or self.job_errors is None:
            return
        safe_reason = reason or "unknown"
        self.job_errors.labels(job=job, reason=safe_reason).inc()

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

"""
Prometheus metrics for the practice billing backend.

Service timings come from the @measure_operation decorator; billing-specific
counters track the outcomes operators watch (emails, checkouts, webhooks).
"""

from typing import Optional, cast

from prometheus_client import (
    CONTENT_TYPE_LATEST,
    CollectorRegistry,
    Counter,
    Histogram,
    generate_latest,
)

# Custom registry so test runs and multiple apps never collide on the default one
REGISTRY = CollectorRegistry()

http_request_duration_seconds = Histogram(
    "practice_billing_http_request_duration_seconds",
    "HTTP request duration in seconds",
    ["method", "endpoint", "status_code"],
    registry=REGISTRY,
    buckets=(0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0),
)

service_operation_duration_seconds = Histogram(
    "practice_billing_service_operation_duration_seconds",
    "Service operation duration in seconds",
    ["service", "operation"],
    registry=REGISTRY,
    buckets=(0.001, 0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5),
)

service_operations_total = Counter(
    "practice_billing_service_operations_total",
    "Total number of service operations",
    ["service", "operation", "status"],
    registry=REGISTRY,
)

errors_total = Counter(
    "practice_billing_errors_total",
    "Total number of errors",
    ["service", "operation", "error_type"],
    registry=REGISTRY,
)

emails_total = Counter(
    "practice_billing_emails_total",
    "Transactional emails by template and outcome",
    ["template", "status"],
    registry=REGISTRY,
)

checkout_sessions_total = Counter(
    "practice_billing_checkout_sessions_total",
    "Stripe Checkout sessions created",
    ["kind"],
    registry=REGISTRY,
)

webhook_events_total = Counter(
    "practice_billing_webhook_events_total",
    "Stripe webhook events by type and outcome",
    ["event_type", "outcome"],
    registry=REGISTRY,
)

calendar_sync_failures_total = Counter(
    "practice_billing_calendar_sync_failures_total",
    "Best-effort calendar operations that failed",
    ["operation"],
    registry=REGISTRY,
)


class PrometheusMetrics:
    """Manages Prometheus metrics collection and exposure."""

    @staticmethod
    def record_http_request(method: str, endpoint: str, duration: float, status_code: int) -> None:
        labels = {"method": method, "endpoint": endpoint, "status_code": str(status_code)}
        http_request_duration_seconds.labels(**labels).observe(duration)

    @staticmethod
    def record_service_operation(
        service: str,
        operation: str,
        duration: float,
        status: str = "success",
        error_type: Optional[str] = None,
    ) -> None:
        """
        Record service operation metrics from @measure_operation decorator.

        Args:
            service: Service name (e.g., 'InvoiceService')
            operation: Operation name (e.g., 'issue_invoice')
            duration: Operation duration in seconds
            status: Operation status ('success' or 'error')
            error_type: Type of error if status is 'error'
        """
        service_operation_duration_seconds.labels(service=service, operation=operation).observe(
            duration
        )
        service_operations_total.labels(service=service, operation=operation, status=status).inc()
        if status == "error" and error_type:
            errors_total.labels(service=service, operation=operation, error_type=error_type).inc()

    @staticmethod
    def record_email(template: str, success: bool) -> None:
        emails_total.labels(template=template, status="sent" if success else "failed").inc()

    @staticmethod
    def record_checkout_session(kind: str) -> None:
        checkout_sessions_total.labels(kind=kind).inc()

    @staticmethod
    def record_webhook_event(event_type: str, outcome: str) -> None:
        webhook_events_total.labels(event_type=event_type, outcome=outcome).inc()

    @staticmethod
    def record_calendar_failure(operation: str) -> None:
        calendar_sync_failures_total.labels(operation=operation).inc()

    @staticmethod
    def get_metrics() -> bytes:
        """Generate Prometheus metrics in exposition format."""
        return cast(bytes, generate_latest(REGISTRY))

    @staticmethod
    def get_content_type() -> str:
        return cast(str, CONTENT_TYPE_LATEST)


prometheus_metrics = PrometheusMetrics()

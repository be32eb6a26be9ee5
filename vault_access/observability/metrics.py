"""
Metrics Collection with Prometheus.

Exposes entitlement and system metrics for monitoring.
"""

from prometheus_client import Counter, Gauge, Histogram, Info

from vault_access.config import settings


class MetricLabels:
    """Standard metric label names."""

    ENDPOINT = "endpoint"
    METHOD = "method"
    STATUS_CODE = "status_code"
    OPERATION = "operation"
    ACCESS_LEVEL = "access_level"
    RULE = "rule"
    OUTCOME = "outcome"
    EVENT_TYPE = "event_type"
    STATUS = "status"
    ERROR_TYPE = "error_type"


class VaultMetrics:
    """
    Centralized metrics for the Vault Access API.

    Covers:
    - HTTP requests (rate, duration, in progress)
    - Access-level resolutions by tier
    - Entitlement grants by rule and outcome
    - Webhook events by type and status
    - Errors by type and operation
    """

    def __init__(self) -> None:
        """Initialize all Prometheus metrics."""

        # ====================================================================
        # Service Info
        # ====================================================================
        self.service_info = Info(
            "vault_service",
            "Service information",
        )
        self.service_info.info(
            {
                "version": settings.api_version,
                "service_name": settings.service_name,
            }
        )

        # ====================================================================
        # HTTP Metrics
        # ====================================================================
        self.http_requests_total = Counter(
            "vault_http_requests_total",
            "Total HTTP requests",
            [MetricLabels.ENDPOINT, MetricLabels.METHOD, MetricLabels.STATUS_CODE],
        )

        self.http_request_duration_seconds = Histogram(
            "vault_http_request_duration_seconds",
            "HTTP request duration in seconds",
            [MetricLabels.ENDPOINT, MetricLabels.METHOD],
            buckets=(0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0),
        )

        self.http_requests_in_progress = Gauge(
            "vault_http_requests_in_progress",
            "Number of HTTP requests currently being processed",
            [MetricLabels.ENDPOINT, MetricLabels.METHOD],
        )

        # ====================================================================
        # Access Metrics
        # ====================================================================
        self.access_resolutions_total = Counter(
            "vault_access_resolutions_total",
            "Total access-level resolutions served by the API",
            [MetricLabels.ACCESS_LEVEL],
        )

        # ====================================================================
        # Grant Metrics
        # ====================================================================
        self.grants_total = Counter(
            "vault_grants_total",
            "Total grant procedure invocations",
            [MetricLabels.RULE, MetricLabels.OUTCOME],
        )

        self.grant_duration_seconds = Histogram(
            "vault_grant_duration_seconds",
            "Grant procedure duration in seconds",
            buckets=(0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5),
        )

        # ====================================================================
        # Webhook Metrics
        # ====================================================================
        self.webhook_events_total = Counter(
            "vault_webhook_events_total",
            "Total payment webhook events handled",
            [MetricLabels.EVENT_TYPE, MetricLabels.STATUS],
        )

        # ====================================================================
        # Error Metrics
        # ====================================================================
        self.errors_total = Counter(
            "vault_errors_total",
            "Total errors by type",
            [MetricLabels.ERROR_TYPE, MetricLabels.OPERATION],
        )

    # ========================================================================
    # Helper Methods
    # ========================================================================

    def record_http_request(
        self, endpoint: str, method: str, status_code: int, duration: float
    ) -> None:
        """Record HTTP request metrics."""
        self.http_requests_total.labels(
            endpoint=endpoint, method=method, status_code=status_code
        ).inc()
        self.http_request_duration_seconds.labels(endpoint=endpoint, method=method).observe(
            duration
        )

    def record_access_resolution(self, access_level: str) -> None:
        """Record an access-level resolution."""
        self.access_resolutions_total.labels(access_level=access_level).inc()

    def record_grant(self, rule: str, outcome: str, duration: float) -> None:
        """Record a grant procedure invocation."""
        self.grants_total.labels(rule=rule, outcome=outcome).inc()
        self.grant_duration_seconds.observe(duration)

    def record_webhook_event(self, event_type: str, status: str) -> None:
        """Record a handled webhook event."""
        self.webhook_events_total.labels(event_type=event_type, status=status).inc()

    def record_error(self, error_type: str, operation: str) -> None:
        """Record error occurrence."""
        self.errors_total.labels(error_type=error_type, operation=operation).inc()


# Global metrics instance
metrics = VaultMetrics()

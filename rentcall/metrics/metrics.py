from typing import Optional

from prometheus_client import REGISTRY, CollectorRegistry, Counter, Histogram

# =====================================
# METRICS COLLECTOR
# =====================================

class MetricsCollector:
    """Prometheus metrics for notifications, delivery tracking and tokens"""

    def __init__(self, registry: Optional[CollectorRegistry] = None):
        registry = registry or REGISTRY

        self.notifications_dispatched_total = Counter(
            "notifications_dispatched_total",
            "Recipients reached, by delivery method",
            ["method", "message_type"],
            registry=registry,
        )

        self.notifications_suppressed_total = Counter(
            "notifications_suppressed_total",
            "Notifications skipped because nothing is owed",
            ["message_type"],
            registry=registry,
        )

        self.provider_failures_total = Counter(
            "provider_failures_total",
            "Failed provider calls by attempt kind and error code",
            ["attempt", "code"],
            registry=registry,
        )

        self.provider_request_duration = Histogram(
            "provider_request_duration_seconds",
            "Duration of outbound messaging calls",
            ["attempt"],
            registry=registry,
        )

        self.delivery_status_updates_total = Counter(
            "delivery_status_updates_total",
            "Webhook status updates by outcome",
            ["status", "outcome"],
            registry=registry,
        )

        self.tokens_issued_total = Counter(
            "tokens_issued_total",
            "Tokens issued by type",
            ["token_type"],
            registry=registry,
        )

        self.token_refresh_total = Counter(
            "token_refresh_total",
            "Refresh attempts by outcome",
            ["outcome"],
            registry=registry,
        )

    def record_dispatch(self, method: str, message_type: str) -> None:
        self.notifications_dispatched_total.labels(method=method, message_type=message_type).inc()

    def record_suppressed(self, message_type: str) -> None:
        self.notifications_suppressed_total.labels(message_type=message_type).inc()

    def record_provider_failure(self, attempt: str, code: Optional[str]) -> None:
        self.provider_failures_total.labels(attempt=attempt, code=code or "unknown").inc()

    def record_status_update(self, status: str, applied: bool) -> None:
        self.delivery_status_updates_total.labels(
            status=status, outcome="applied" if applied else "dropped"
        ).inc()

    def record_token_issued(self, token_type: str) -> None:
        self.tokens_issued_total.labels(token_type=token_type).inc()

    def record_refresh(self, outcome: str) -> None:
        self.token_refresh_total.labels(outcome=outcome).inc()


# Global metrics instance
_metrics_collector: Optional[MetricsCollector] = None


def get_metrics() -> MetricsCollector:
    """Process-wide collector registered on the default registry"""
    global _metrics_collector
    if _metrics_collector is None:
        _metrics_collector = MetricsCollector()
    return _metrics_collector

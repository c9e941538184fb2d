"""
Prometheus metrics for the booking engine.

Service timings come from the @measure_operation decorator; domain counters
track booking outcomes, credit moves, retries and cache effectiveness.
"""

from typing import Optional, cast

from prometheus_client import (
    CONTENT_TYPE_LATEST,
    CollectorRegistry,
    Counter,
    Histogram,
    generate_latest,
)

# Private registry; nothing from the default process collectors
REGISTRY = CollectorRegistry()

service_operation_duration_seconds = Histogram(
    "therapy_booking_service_operation_duration_seconds",
    "Service operation duration in seconds",
    ["service", "operation"],
    registry=REGISTRY,
    buckets=(0.001, 0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5),
)

service_operations_total = Counter(
    "therapy_booking_service_operations_total",
    "Total number of service operations",
    ["service", "operation", "status"],
    registry=REGISTRY,
)

errors_total = Counter(
    "therapy_booking_errors_total",
    "Total number of errors",
    ["service", "operation", "error_type"],
    registry=REGISTRY,
)

booking_outcomes_total = Counter(
    "therapy_booking_booking_outcomes_total",
    "Booking attempts by outcome",
    ["outcome"],  # booked | conflict | unavailable | insufficient_credits | transient
    registry=REGISTRY,
)

credit_moves_total = Counter(
    "therapy_booking_credit_moves_total",
    "Credit units moved by the ledger",
    ["direction", "reason"],  # reserve|release, booking|join|approve|cancel|no_show
    registry=REGISTRY,
)

db_retries_total = Counter(
    "therapy_booking_db_retries_total",
    "Transactions re-run after a transient storage failure",
    ["operation"],
    registry=REGISTRY,
)

availability_cache_total = Counter(
    "therapy_booking_availability_cache_total",
    "Availability cache lookups",
    ["result"],  # hit | miss
    registry=REGISTRY,
)

sweeper_transitions_total = Counter(
    "therapy_booking_sweeper_transitions_total",
    "Sessions moved by the maintenance sweep",
    ["to_status"],
    registry=REGISTRY,
)


class PrometheusMetrics:
    """Thin recording API over the module-level collectors."""

    @staticmethod
    def record_service_operation(
        service: str,
        operation: str,
        duration: float,
        status: str = "success",
        error_type: Optional[str] = None,
    ) -> None:
        """Called by ``BaseService.measure_operation`` after every measured call."""
        service_operation_duration_seconds.labels(service=service, operation=operation).observe(duration)
        service_operations_total.labels(service=service, operation=operation, status=status).inc()
        if error_type is not None:
            errors_total.labels(service=service, operation=operation, error_type=error_type).inc()

    @staticmethod
    def inc_booking_outcome(outcome: str) -> None:
        booking_outcomes_total.labels(outcome=outcome).inc()

    @staticmethod
    def inc_credit_move(direction: str, reason: str) -> None:
        credit_moves_total.labels(direction=direction, reason=reason).inc()

    @staticmethod
    def inc_db_retry(operation: str) -> None:
        db_retries_total.labels(operation=operation).inc()

    @staticmethod
    def inc_availability_cache(result: str) -> None:
        availability_cache_total.labels(result=result).inc()

    @staticmethod
    def inc_sweeper_transition(to_status: str, count: int = 1) -> None:
        if count > 0:
            sweeper_transitions_total.labels(to_status=to_status).inc(count)

    @staticmethod
    def exposition() -> bytes:
        return cast(bytes, generate_latest(REGISTRY))

    @staticmethod
    def content_type() -> str:
        return cast(str, CONTENT_TYPE_LATEST)


prometheus_metrics = PrometheusMetrics()

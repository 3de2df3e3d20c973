"""Shared enums for the shortcode allocation service.

Status labels double as Prometheus label values and log fields, so they stay
lower-case strings.
"""

from enum import StrEnum

__all__ = ["HealthStatus", "RequestStatus", "ReservationOrigin", "IssueOutcome", "StoreName"]


class HealthStatus(StrEnum):
    """Health check status values."""

    HEALTHY = "healthy"
    UNHEALTHY = "unhealthy"


class RequestStatus(StrEnum):
    """Allocation outcome labels for metrics."""

    SUCCESS = "success"
    EXHAUSTED = "exhausted"
    UNAVAILABLE = "unavailable"


class ReservationOrigin(StrEnum):
    """How a reservation came to exist."""

    GENERATION = "generation"
    CUSTOM = "custom"
    PERMANENT = "permanent"


class IssueOutcome(StrEnum):
    """Result of writing a code into the durable store."""

    ISSUED = "issued"
    CONFLICT = "conflict"


class StoreName(StrEnum):
    RESERVATION = "reservation"
    DURABLE = "durable"
    IDEMPOTENCY = "idempotency"
    METRICS = "metrics"
    RATE_LIMIT = "rate_limit"

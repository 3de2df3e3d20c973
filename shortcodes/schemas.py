"""Pydantic schemas for request/response validation in the shortcode service.

This module defines Pydantic models for API input validation and output serialization.
Field names are snake_case in Python and camelCase on the wire.

Schema Hierarchy
=================
::
    AllocateRequest (Input)          AllocateResponse (Output)
    ├─ ownerId: str                  ├─ code: str
    └─ maxAttempts: int | None       └─ ttl: int

    ReserveRequest (Input)           ReleaseRequest (Input)
    ├─ code: str                     ├─ code: str
    └─ ownerId: str                  └─ saved: bool

    ConfirmRequest (Input)           IssuedCodeResponse (Output)
    ├─ code: str                     ├─ code, ownerId
    └─ ownerId: str                  └─ createdAt

    WebhookEvent (Input)             WebhookReceipt (Output)
    ├─ eventId: str                  ├─ received: bool
    └─ eventType: str                └─ duplicate: bool

Key Behaviours
===============
- Custom codes must be alphanumeric and 3-20 characters long.
- Owner ids are non-empty and at most 64 characters (matches the codes table).
- Requests accept either camelCase aliases or snake_case names.
- ReservationPayload is the Redis value under ``reserved:<code>``; reservedAt
  stays epoch milliseconds on the wire.
"""

import datetime

from pydantic import BaseModel, ConfigDict, Field, field_validator

from shortcodes.enums import HealthStatus, ReservationOrigin

__all__ = [
    "AllocateRequest",
    "AllocateResponse",
    "ReserveRequest",
    "ReleaseRequest",
    "ReleaseResponse",
    "ConfirmRequest",
    "IssuedCodeResponse",
    "AvailabilityResponse",
    "ReservationResponse",
    "DailyMetricsResponse",
    "RateLimitStatusResponse",
    "WebhookEvent",
    "WebhookReceipt",
    "HealthResponse",
    "ReservationPayload",
]


class _CamelModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


def _validate_code(v: str) -> str:
    if len(v) < 3 or len(v) > 20:
        raise ValueError("Shortcode must be between 3 and 20 characters")
    if not v.isalnum():
        raise ValueError("Shortcode must be alphanumeric")
    return v


class AllocateRequest(_CamelModel):
    owner_id: str = Field(..., alias="ownerId", min_length=1, max_length=64)
    max_attempts: int | None = Field(None, alias="maxAttempts", ge=1, le=50)


class AllocateResponse(_CamelModel):
    code: str
    ttl: int


class ReserveRequest(_CamelModel):
    code: str
    owner_id: str = Field(..., alias="ownerId", min_length=1, max_length=64)

    @field_validator("code")
    @classmethod
    def validate_code(cls, v: str) -> str:
        return _validate_code(v)


class ReleaseRequest(_CamelModel):
    code: str = Field(..., min_length=1)
    saved: bool = False


class ReleaseResponse(BaseModel):
    success: bool = True


class ConfirmRequest(_CamelModel):
    code: str
    owner_id: str = Field(..., alias="ownerId", min_length=1, max_length=64)

    @field_validator("code")
    @classmethod
    def validate_code(cls, v: str) -> str:
        return _validate_code(v)


class IssuedCodeResponse(_CamelModel):
    code: str
    owner_id: str = Field(..., alias="ownerId")
    created_at: datetime.datetime = Field(..., alias="createdAt")


class AvailabilityResponse(BaseModel):
    code: str
    available: bool


class ReservationResponse(_CamelModel):
    code: str
    owner_id: str | None = Field(None, alias="ownerId")
    reserved_at: datetime.datetime | None = Field(None, alias="reservedAt")
    origin: ReservationOrigin


class DailyMetricsResponse(_CamelModel):
    day: datetime.date
    total_attempts: int = Field(..., alias="totalAttempts")
    multiple_attempts: int = Field(..., alias="multipleAttempts")
    failures: int
    attempts_histogram: dict[int, int] = Field(..., alias="attemptsHistogram")
    average_attempts: float = Field(..., alias="averageAttempts")


class RateLimitStatusResponse(_CamelModel):
    operation: str
    limit: int
    remaining: int
    blocked: bool
    reset_time: float = Field(..., alias="resetTime")


class WebhookEvent(_CamelModel):
    event_id: str = Field(..., alias="eventId", min_length=1, max_length=255)
    event_type: str = Field("", alias="eventType", max_length=255)


class WebhookReceipt(BaseModel):
    received: bool = True
    duplicate: bool


class HealthResponse(BaseModel):
    status: HealthStatus
    database: HealthStatus
    cache: HealthStatus


class ReservationPayload(_CamelModel):
    """Redis value for a reservation, shared by every writer of ``reserved:<code>``."""

    user_id: str | None = Field(None, alias="userId")
    reserved_at: int | float | None = Field(None, alias="reservedAt")
    origin: ReservationOrigin = ReservationOrigin.GENERATION

    @field_validator("origin", mode="before")
    @classmethod
    def unknown_origin_is_generation(cls, v: object) -> object:
        if not isinstance(v, str) or v not in {origin.value for origin in ReservationOrigin}:
            return ReservationOrigin.GENERATION
        return v

    @property
    def reserved_at_datetime(self) -> datetime.datetime | None:
        if self.reserved_at is None:
            return None
        return datetime.datetime.fromtimestamp(self.reserved_at / 1000, tz=datetime.timezone.utc)

"""Request bodies for cancellation endpoints."""

from datetime import datetime

from pydantic import BaseModel, Field

from refund_engine.models import RefundMethod


class CreateCancellationRequest(BaseModel):
    """Body of POST /cancellations."""

    booking_id: str = Field(..., min_length=1, examples=["BKG-2026-000123"])
    reason: str = Field(
        ...,
        description="CancellationReason value",
        examples=["SCHEDULE_CONFLICT"],
    )
    custom_reason: str | None = Field(
        default=None, description="Required when reason is OTHER"
    )
    description: str | None = None


class QuoteRequest(BaseModel):
    """Body of POST /cancellations/quote."""

    booking_id: str = Field(..., min_length=1)
    cancellation_time: datetime | None = Field(
        default=None, description="Defaults to now"
    )


class ApproveCancellationRequest(BaseModel):
    """Body of POST /cancellations/{id}/approve."""

    notes: str | None = None
    refund_method: RefundMethod = RefundMethod.ORIGINAL_PAYMENT
    custom_refund_amount: int | None = Field(
        default=None,
        ge=0,
        description="Overrides the calculated refund; must not exceed the booking total",
    )


class RejectCancellationRequest(BaseModel):
    """Body of POST /cancellations/{id}/reject."""

    notes: str | None = None

"""Cancellation request model."""

from datetime import datetime

from pydantic import BaseModel, Field

from .enums import CancellationReason, CancellationStatus
from .policy import RefundCalculation


class CancellationRequest(BaseModel):
    """A customer's request to cancel a booking.

    Mutated only by admin transitions and never deleted.
    """

    request_id: str = Field(..., description="Unique request ID")
    booking_id: str
    user_id: str = Field(..., description="User who filed the request")
    reason: CancellationReason
    custom_reason: str | None = None
    description: str | None = None
    status: CancellationStatus = CancellationStatus.PENDING
    requested_at: datetime
    processed_at: datetime | None = None
    processed_by: str | None = None
    admin_notes: str | None = None
    refund_calculation: RefundCalculation
    approved_refund_amount: int | None = Field(
        default=None, ge=0, description="Amount approved for payout, if approved"
    )
    refund_record_id: str | None = None
    version: int = Field(default=0, ge=0)

    @property
    def is_terminal(self) -> bool:
        return self.status != CancellationStatus.PENDING

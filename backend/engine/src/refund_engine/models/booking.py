"""Booking projection supplied by the booking service."""

from datetime import datetime

from pydantic import BaseModel, Field


class Booking(BaseModel):
    """Read-only booking data consumed by the engine."""

    booking_id: str = Field(..., description="Booking ID")
    service_datetime: datetime = Field(..., description="Service start time")
    total_amount: int = Field(..., gt=0, description="Amount paid for the booking")
    guide_id: str
    customer_id: str
    customer_email: str | None = None
    service_title: str | None = None
    policy_id: str | None = Field(
        default=None, description="Explicit policy; the tenant default applies if unset"
    )
    tenant_id: str = "default"

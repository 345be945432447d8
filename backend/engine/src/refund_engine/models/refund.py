"""Refund record model and related value objects."""

from datetime import datetime, timedelta
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from .enums import RefundMethod, RefundStatus

TERMINAL_REFUND_STATUSES = frozenset(
    {RefundStatus.COMPLETED, RefundStatus.FAILED, RefundStatus.REJECTED}
)


class RefundError(BaseModel):
    """Failure attached to a FAILED refund record."""

    model_config = ConfigDict(frozen=True)

    code: str = Field(..., min_length=1)
    message: str
    details: dict[str, Any] | None = None


class RefundRecord(BaseModel):
    """A money movement owed to the customer.

    Terminal once COMPLETED, FAILED or REJECTED. A failed record is superseded
    by a new record with ``retry_of`` pointing at it, never resurrected.
    """

    refund_id: str = Field(..., description="Unique refund ID")
    cancellation_request_id: str
    booking_id: str
    amount: int = Field(..., ge=0)
    method: RefundMethod = RefundMethod.ORIGINAL_PAYMENT
    status: RefundStatus = RefundStatus.PENDING

    initiated_by: str
    processed_by: str | None = None
    approved_by: str | None = None
    rejected_by: str | None = None

    initiated_at: datetime
    processed_at: datetime | None = None
    approved_at: datetime | None = None
    completed_at: datetime | None = None
    rejected_at: datetime | None = None
    failed_at: datetime | None = None

    external_transaction_id: str | None = None
    gateway_response: dict[str, Any] | None = None
    admin_notes: str | None = None
    error: RefundError | None = None

    retry_of: str | None = Field(
        default=None, description="FAILED refund this record supersedes"
    )
    superseded_by: str | None = Field(
        default=None, description="Retry record that replaced this FAILED record"
    )
    dispute_id: str | None = Field(
        default=None, description="Dispute that ordered this compensating refund"
    )
    version: int = Field(default=0, ge=0)

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_REFUND_STATUSES

    @property
    def processing_time(self) -> timedelta | None:
        """Elapsed time from initiation to completion, or to processing.

        Derived for reporting only; None until the record has been processed.
        """
        if self.processed_at is None:
            return None
        end = self.completed_at or self.processed_at
        return end - self.initiated_at


class GatewayResult(BaseModel):
    """Outcome reported by the payment gateway for a refund transfer."""

    success: bool
    external_transaction_id: str | None = None
    error_code: str | None = None
    error_message: str | None = None
    details: dict[str, Any] | None = None


class ProcessingTimeStats(BaseModel):
    """Processing time distribution in hours."""

    average: float = 0.0
    median: float = 0.0
    fastest: float = 0.0
    slowest: float = 0.0


class MonthlyRefunds(BaseModel):
    """Refund volume for one calendar month (YYYY-MM)."""

    month: str
    count: int
    amount: int


class RefundStatistics(BaseModel):
    """Aggregate refund figures for operators."""

    total_refunds: int = 0
    total_refund_amount: int = 0
    average_refund_amount: float = 0.0
    refunds_by_status: dict[str, int] = Field(default_factory=dict)
    refunds_by_reason: dict[str, int] = Field(default_factory=dict)
    refunds_by_month: list[MonthlyRefunds] = Field(default_factory=list)
    processing_times: ProcessingTimeStats = Field(default_factory=ProcessingTimeStats)

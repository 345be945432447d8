"""Request bodies for refund endpoints."""

from typing import Any

from pydantic import BaseModel, Field

from refund_engine.models import RefundStage


class AdvanceRefundRequest(BaseModel):
    """Body of POST /refunds/{id}/advance."""

    stage: RefundStage
    external_transaction_id: str | None = None
    notes: str | None = None


class FailRefundRequest(BaseModel):
    """Body of POST /refunds/{id}/fail."""

    code: str = Field(..., min_length=1, examples=["BANK_REJECTED"])
    message: str = Field(..., min_length=1)
    details: dict[str, Any] | None = None


class RejectRefundRequest(BaseModel):
    """Body of POST /refunds/{id}/reject."""

    notes: str | None = None

"""API-specific request/response models.

Domain models (CancellationRequest, RefundRecord, DisputeCase...) live in
refund_engine.models; this package holds request bodies only.
"""

from refund_api.models.cancellations import (
    ApproveCancellationRequest,
    CreateCancellationRequest,
    QuoteRequest,
    RejectCancellationRequest,
)
from refund_api.models.disputes import (
    CommunicationRequest,
    InvestigateDisputeRequest,
)
from refund_api.models.refunds import (
    AdvanceRefundRequest,
    FailRefundRequest,
    RejectRefundRequest,
)

__all__ = [
    "AdvanceRefundRequest",
    "ApproveCancellationRequest",
    "CommunicationRequest",
    "CreateCancellationRequest",
    "FailRefundRequest",
    "InvestigateDisputeRequest",
    "QuoteRequest",
    "RejectCancellationRequest",
    "RejectRefundRequest",
]

"""Pydantic models for the cancellation and refund engine."""

from .actor import Actor
from .booking import Booking
from .cancellation import CancellationRequest
from .dispute import (
    Communication,
    DisputeCase,
    DisputeCreate,
    Evidence,
    EvidenceCreate,
    Resolution,
    ResolutionCreate,
)
from .enums import (
    ActorRole,
    CancellationReason,
    CancellationStatus,
    DisputePriority,
    DisputeStatus,
    DisputeType,
    EvidenceType,
    NotificationStatus,
    NotificationTemplate,
    RefundMethod,
    RefundStage,
    RefundStatus,
    ResolutionType,
)
from .errors import (
    ERROR_MESSAGES,
    ERROR_RECOVERY,
    AlreadyResolvedError,
    AuthorizationError,
    ConcurrencyConflictError,
    EngineError,
    ErrorCode,
    ErrorResponse,
    GatewayError,
    InvalidStateTransitionError,
    NotFoundError,
    PolicyResolutionError,
    ValidationError,
)
from .notification import NotificationRecord
from .policy import AppliedPolicy, CancellationPolicy, CancellationRule, RefundCalculation
from .refund import (
    GatewayResult,
    MonthlyRefunds,
    ProcessingTimeStats,
    RefundError,
    RefundRecord,
    RefundStatistics,
)

__all__ = [
    # Enums
    "ActorRole",
    "CancellationReason",
    "CancellationStatus",
    "DisputePriority",
    "DisputeStatus",
    "DisputeType",
    "EvidenceType",
    "NotificationStatus",
    "NotificationTemplate",
    "RefundMethod",
    "RefundStage",
    "RefundStatus",
    "ResolutionType",
    # Actors and bookings
    "Actor",
    "Booking",
    # Policy
    "AppliedPolicy",
    "CancellationPolicy",
    "CancellationRule",
    "RefundCalculation",
    # Cancellation
    "CancellationRequest",
    # Refund
    "GatewayResult",
    "MonthlyRefunds",
    "ProcessingTimeStats",
    "RefundError",
    "RefundRecord",
    "RefundStatistics",
    # Dispute
    "Communication",
    "DisputeCase",
    "DisputeCreate",
    "Evidence",
    "EvidenceCreate",
    "Resolution",
    "ResolutionCreate",
    # Notification
    "NotificationRecord",
    # Errors
    "AlreadyResolvedError",
    "AuthorizationError",
    "ConcurrencyConflictError",
    "EngineError",
    "ErrorCode",
    "ErrorResponse",
    "ERROR_MESSAGES",
    "ERROR_RECOVERY",
    "GatewayError",
    "InvalidStateTransitionError",
    "NotFoundError",
    "PolicyResolutionError",
    "ValidationError",
]

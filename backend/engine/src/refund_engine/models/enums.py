"""Enumeration types for the cancellation and refund engine."""

from enum import Enum


class CancellationReason(str, Enum):
    """Customer-supplied category for a cancellation."""

    USER_REQUEST = "USER_REQUEST"
    GUIDE_UNAVAILABLE = "GUIDE_UNAVAILABLE"
    WEATHER = "WEATHER"
    FORCE_MAJEURE = "FORCE_MAJEURE"
    SCHEDULE_CONFLICT = "SCHEDULE_CONFLICT"
    HEALTH_SAFETY = "HEALTH_SAFETY"
    QUALITY_ISSUE = "QUALITY_ISSUE"
    OTHER = "OTHER"


class CancellationStatus(str, Enum):
    """Status of a cancellation request."""

    PENDING = "PENDING"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"


class RefundStatus(str, Enum):
    """Status of a refund record.

    REJECTED here means an admin declined the payout mid-process. It is
    unrelated to CancellationStatus.REJECTED.
    """

    PENDING = "PENDING"
    PROCESSING = "PROCESSING"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"


class RefundStage(str, Enum):
    """Forward stages accepted by advance_refund."""

    PROCESSING = "PROCESSING"
    APPROVED = "APPROVED"
    COMPLETED = "COMPLETED"


class RefundMethod(str, Enum):
    """How the refund is paid out."""

    ORIGINAL_PAYMENT = "ORIGINAL_PAYMENT"
    BANK_TRANSFER = "BANK_TRANSFER"
    CREDIT = "CREDIT"
    VOUCHER = "VOUCHER"


class DisputeStatus(str, Enum):
    """Status of a dispute case."""

    OPEN = "OPEN"
    INVESTIGATING = "INVESTIGATING"
    RESOLVED = "RESOLVED"
    ESCALATED = "ESCALATED"
    CLOSED = "CLOSED"


class DisputeType(str, Enum):
    """What the dispute is about."""

    CANCELLATION_DISPUTE = "CANCELLATION_DISPUTE"
    REFUND_DISPUTE = "REFUND_DISPUTE"
    SERVICE_QUALITY = "SERVICE_QUALITY"


class DisputePriority(str, Enum):
    """Handling priority of a dispute."""

    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"
    URGENT = "URGENT"


class EvidenceType(str, Enum):
    """Kind of evidence attached to a dispute."""

    TEXT = "TEXT"
    IMAGE = "IMAGE"
    DOCUMENT = "DOCUMENT"
    LINK = "LINK"


class ResolutionType(str, Enum):
    """Outcome category assigned when a dispute is resolved."""

    FULL_REFUND = "FULL_REFUND"
    PARTIAL_REFUND = "PARTIAL_REFUND"
    NO_REFUND = "NO_REFUND"
    CREDIT = "CREDIT"
    REBOOK = "REBOOK"


class ActorRole(str, Enum):
    """Role of the user issuing a command."""

    CUSTOMER = "CUSTOMER"
    GUIDE = "GUIDE"
    ADMIN = "ADMIN"


class NotificationTemplate(str, Enum):
    """Template ids handed to the notification collaborator."""

    CANCELLATION_APPROVED = "cancellation_approved"
    CANCELLATION_REJECTED = "cancellation_rejected"
    REFUND_COMPLETED = "refund_completed"
    DISPUTE_CREATED = "dispute_created"
    DISPUTE_RESOLVED = "dispute_resolved"


class NotificationStatus(str, Enum):
    """Delivery status of an outbound notification."""

    PENDING = "PENDING"
    SENT = "SENT"
    FAILED = "FAILED"
    SKIPPED = "SKIPPED"

"""Services for the cancellation and refund engine."""

from .booking_service import BookingService
from .cancellation_service import CancellationService
from .dispute_service import DisputeService
from .dynamodb import DynamoDBService, get_dynamodb_service, reset_dynamodb_service
from .idempotency import IdempotencyStore
from .notification_service import NotificationService
from .payment_gateway import PaymentGateway
from .policy_store import PolicyStore
from .refund_calculator import RefundCalculator
from .refund_service import RefundService

__all__ = [
    "DynamoDBService",
    "get_dynamodb_service",
    "reset_dynamodb_service",
    "BookingService",
    "CancellationService",
    "DisputeService",
    "IdempotencyStore",
    "NotificationService",
    "PaymentGateway",
    "PolicyStore",
    "RefundCalculator",
    "RefundService",
]

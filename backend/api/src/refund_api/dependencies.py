"""FastAPI dependency injection providers for engine services.

Services are cached with @lru_cache so every request shares one instance.

Service Dependency Graph:
    DynamoDBService (singleton via get_dynamodb_service)
        ├── IdempotencyStore
        ├── BookingService
        ├── PolicyStore
        ├── NotificationService
        ├── RefundService
        │       └── CancellationService
        └── DisputeService

Testing:
    Use reset_services() to clear cached instances between tests.
"""

from functools import lru_cache

from fastapi import Header

from refund_engine.models import Actor, ActorRole, AuthorizationError, ErrorCode, ValidationError
from refund_engine.services import (
    BookingService,
    CancellationService,
    DisputeService,
    IdempotencyStore,
    NotificationService,
    PolicyStore,
    RefundCalculator,
    RefundService,
    get_dynamodb_service,
    reset_dynamodb_service,
)


@lru_cache
def get_idempotency_store() -> IdempotencyStore:
    return IdempotencyStore(db=get_dynamodb_service())


@lru_cache
def get_booking_service() -> BookingService:
    return BookingService(db=get_dynamodb_service())


@lru_cache
def get_policy_store() -> PolicyStore:
    return PolicyStore(db=get_dynamodb_service())


@lru_cache
def get_notification_service() -> NotificationService:
    return NotificationService(db=get_dynamodb_service())


@lru_cache
def get_refund_service() -> RefundService:
    """Get cached RefundService instance.

    No payment gateway is wired here; transfers are reported back through
    the gateway-result endpoint.
    """
    return RefundService(
        db=get_dynamodb_service(),
        idempotency=get_idempotency_store(),
        notifications=get_notification_service(),
        bookings=get_booking_service(),
    )


@lru_cache
def get_cancellation_service() -> CancellationService:
    return CancellationService(
        db=get_dynamodb_service(),
        idempotency=get_idempotency_store(),
        bookings=get_booking_service(),
        policies=get_policy_store(),
        calculator=RefundCalculator(),
        refunds=get_refund_service(),
        notifications=get_notification_service(),
    )


@lru_cache
def get_dispute_service() -> DisputeService:
    return DisputeService(
        db=get_dynamodb_service(),
        idempotency=get_idempotency_store(),
        bookings=get_booking_service(),
        cancellations=get_cancellation_service(),
        refunds=get_refund_service(),
        notifications=get_notification_service(),
    )


def get_actor(
    x_user_sub: str | None = Header(default=None),
    x_user_role: str | None = Header(default=None),
) -> Actor:
    """Build the acting user from headers set by the upstream authorizer.

    Raises:
        AuthorizationError: If the user id is missing or the role is unknown
    """
    if not x_user_sub:
        raise AuthorizationError(ErrorCode.FORBIDDEN, details={"reason": "missing X-User-Sub"})
    try:
        role = ActorRole((x_user_role or ActorRole.CUSTOMER.value).upper())
    except ValueError:
        raise AuthorizationError(
            ErrorCode.FORBIDDEN, details={"reason": f"unknown role {x_user_role}"}
        )
    return Actor(user_id=x_user_sub, role=role)


def get_idempotency_key(idempotency_key: str | None = Header(default=None)) -> str:
    """Require the Idempotency-Key header on mutating commands."""
    if not idempotency_key or not idempotency_key.strip():
        raise ValidationError(ErrorCode.IDEMPOTENCY_KEY_REQUIRED)
    return idempotency_key.strip()


def reset_services() -> None:
    """Clear all cached service instances and the DynamoDB singleton."""
    get_idempotency_store.cache_clear()
    get_booking_service.cache_clear()
    get_policy_store.cache_clear()
    get_notification_service.cache_clear()
    get_refund_service.cache_clear()
    get_cancellation_service.cache_clear()
    get_dispute_service.cache_clear()
    reset_dynamodb_service()

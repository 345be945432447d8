"""Pytest configuration and fixtures for the refund engine tests.

This module provides reusable fixtures for testing:
- DynamoDB mocking with moto (all engine tables)
- Wired service instances
- The "standard" cancellation policy and a sample booking
- Actors for each role
- API test client and header builder
"""

import datetime as dt
import os
from typing import Any, Generator

import boto3
import pytest
from fastapi.testclient import TestClient
from moto import mock_aws

# === Environment Setup ===

# Set before any engine import so the DynamoDB service picks them up
os.environ.setdefault("AWS_DEFAULT_REGION", "eu-west-1")
os.environ["DYNAMODB_TABLE_PREFIX"] = "test-refunds"
os.environ.pop("NOTIFICATION_FROM_EMAIL", None)

if not os.environ.get("AWS_PROFILE") and not os.environ.get("AWS_ACCESS_KEY_ID"):
    os.environ.setdefault("AWS_ACCESS_KEY_ID", "testing")
    os.environ.setdefault("AWS_SECRET_ACCESS_KEY", "testing")

from refund_engine.models import (  # noqa: E402
    Actor,
    ActorRole,
    Booking,
    CancellationPolicy,
    CancellationRule,
)
from refund_engine.services import (  # noqa: E402
    BookingService,
    CancellationService,
    DisputeService,
    DynamoDBService,
    IdempotencyStore,
    NotificationService,
    PolicyStore,
    RefundCalculator,
    RefundService,
    reset_dynamodb_service,
)
from refund_engine.services.tables import create_tables  # noqa: E402

TABLE_PREFIX = "test-refunds"
BOOKING_AMOUNT = 1848

# Fixed service start far enough ahead that "now" is always before it
SERVICE_TIME = dt.datetime.now(dt.UTC).replace(microsecond=0) + dt.timedelta(days=30)


def hours_before_service(hours: float) -> dt.datetime:
    """Cancellation time that leaves the given lead time before SERVICE_TIME."""
    return SERVICE_TIME - dt.timedelta(hours=hours)


# === Singletons ===


@pytest.fixture(autouse=True)
def reset_singletons() -> Generator[None, None, None]:
    """Reset DynamoDB and API service singletons around each test.

    Tests using mock_aws must get fresh boto3 clients created inside the
    mock context.
    """
    from refund_api.dependencies import reset_services

    reset_services()
    reset_dynamodb_service()
    yield
    reset_services()
    reset_dynamodb_service()


# === DynamoDB Fixtures ===


@pytest.fixture
def dynamodb_tables() -> Generator[Any, None, None]:
    """Create all engine tables inside a moto mock."""
    with mock_aws():
        client = boto3.client("dynamodb", region_name="eu-west-1")
        create_tables(client, TABLE_PREFIX)
        yield client


@pytest.fixture
def db(dynamodb_tables: Any) -> DynamoDBService:
    return DynamoDBService("test")


# === Service Fixtures ===


@pytest.fixture
def idempotency(db: DynamoDBService) -> IdempotencyStore:
    return IdempotencyStore(db)


@pytest.fixture
def booking_service(db: DynamoDBService) -> BookingService:
    return BookingService(db)


@pytest.fixture
def policy_store(db: DynamoDBService) -> PolicyStore:
    return PolicyStore(db)


@pytest.fixture
def notification_service(db: DynamoDBService) -> NotificationService:
    """Notification service without a sender address (records SKIPPED)."""
    return NotificationService(db)


@pytest.fixture
def refund_service(
    db: DynamoDBService,
    idempotency: IdempotencyStore,
    notification_service: NotificationService,
    booking_service: BookingService,
) -> RefundService:
    return RefundService(
        db,
        idempotency,
        notifications=notification_service,
        bookings=booking_service,
    )


@pytest.fixture
def cancellation_service(
    db: DynamoDBService,
    idempotency: IdempotencyStore,
    booking_service: BookingService,
    policy_store: PolicyStore,
    refund_service: RefundService,
    notification_service: NotificationService,
) -> CancellationService:
    return CancellationService(
        db,
        idempotency,
        bookings=booking_service,
        policies=policy_store,
        calculator=RefundCalculator(),
        refunds=refund_service,
        notifications=notification_service,
    )


@pytest.fixture
def dispute_service(
    db: DynamoDBService,
    idempotency: IdempotencyStore,
    booking_service: BookingService,
    cancellation_service: CancellationService,
    refund_service: RefundService,
    notification_service: NotificationService,
) -> DisputeService:
    return DisputeService(
        db,
        idempotency,
        bookings=booking_service,
        cancellations=cancellation_service,
        refunds=refund_service,
        notifications=notification_service,
    )


# === Sample Data Fixtures ===


def make_standard_policy(policy_id: str = "standard", is_default: bool = True) -> CancellationPolicy:
    """The "standard" policy: 72h 100%, 48h 75% -50, 24h 50% -100, 0h 0%."""
    return CancellationPolicy(
        policy_id=policy_id,
        name="Standard",
        description="Standard cancellation policy",
        is_default=is_default,
        rules=[
            CancellationRule(rule_id="A", hours_before_start=72, refund_percentage=100),
            CancellationRule(
                rule_id="B", hours_before_start=48, refund_percentage=75, processing_fee=50
            ),
            CancellationRule(
                rule_id="C", hours_before_start=24, refund_percentage=50, processing_fee=100
            ),
            CancellationRule(rule_id="D", hours_before_start=0, refund_percentage=0),
        ],
    )


@pytest.fixture
def standard_policy_definition() -> CancellationPolicy:
    """The standard policy, not stored."""
    return make_standard_policy()


@pytest.fixture
def standard_policy(policy_store: PolicyStore) -> CancellationPolicy:
    """The standard policy stored as tenant default."""
    return policy_store.upsert_policy(make_standard_policy())


@pytest.fixture
def cancel_before_service():
    """Build a cancellation time leaving the given hours before the booking starts."""
    return hours_before_service


@pytest.fixture
def booking(db: DynamoDBService, standard_policy: CancellationPolicy) -> Booking:
    """A stored booking of 1848 starting at SERVICE_TIME."""
    booking = Booking(
        booking_id="BKG-TEST-0001",
        service_datetime=SERVICE_TIME,
        total_amount=BOOKING_AMOUNT,
        guide_id="guide-1",
        customer_id="customer-1",
        customer_email="customer@example.com",
        service_title="Old Town <b>Walking</b> Tour",
    )
    db.put_item("bookings", booking.model_dump(mode="json", exclude_none=True))
    return booking


# === Actors ===


@pytest.fixture
def customer() -> Actor:
    return Actor(user_id="customer-1", role=ActorRole.CUSTOMER)


@pytest.fixture
def guide() -> Actor:
    return Actor(user_id="guide-1", role=ActorRole.GUIDE)


@pytest.fixture
def admin() -> Actor:
    return Actor(user_id="admin-1", role=ActorRole.ADMIN)


@pytest.fixture
def stranger() -> Actor:
    return Actor(user_id="someone-else", role=ActorRole.CUSTOMER)


# === API Fixtures ===


@pytest.fixture
def client(dynamodb_tables: Any) -> TestClient:
    """Test client for the API, backed by the mocked tables."""
    from refund_api.main import app

    return TestClient(app)


@pytest.fixture
def headers():
    """Build request headers for an actor, with an optional idempotency key."""

    def _headers(actor: Actor, idempotency_key: str | None = None) -> dict[str, str]:
        result = {"X-User-Sub": actor.user_id, "X-User-Role": actor.role.value}
        if idempotency_key:
            result["Idempotency-Key"] = idempotency_key
        return result

    return _headers

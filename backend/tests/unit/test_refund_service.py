"""Unit tests for RefundService.

Refunds are produced by approving a cancellation request made 50 hours
before the service (1336 under the standard policy).
"""

import pytest

from refund_engine.models import (
    AuthorizationError,
    ConcurrencyConflictError,
    ErrorCode,
    GatewayError,
    GatewayResult,
    InvalidStateTransitionError,
    NotificationStatus,
    RefundError,
    RefundRecord,
    RefundStage,
    RefundStatus,
    ValidationError,
)
from refund_engine.services import RefundService


class AcceptingGateway:
    def __init__(self, transaction_id: str | None = "TX-SYNC-1") -> None:
        self.transaction_id = transaction_id
        self.submitted: list[str] = []

    def submit_refund(self, refund: RefundRecord) -> GatewayResult | None:
        self.submitted.append(refund.refund_id)
        if self.transaction_id is None:
            return None
        return GatewayResult(success=True, external_transaction_id=self.transaction_id)


class DecliningGateway:
    def submit_refund(self, refund: RefundRecord) -> GatewayResult | None:
        raise GatewayError("card_declined", "Card issuer declined the refund", {"attempt": 1})


class UnreconciledGateway:
    """Reports success without a transaction id."""

    def submit_refund(self, refund: RefundRecord) -> GatewayResult | None:
        return GatewayResult(success=True)


class UnreachableGateway:
    def submit_refund(self, refund: RefundRecord) -> GatewayResult | None:
        raise ConnectionError("gateway unreachable")


@pytest.fixture
def pending_refund(cancellation_service, refund_service, booking, customer, admin, cancel_before_service):
    request = cancellation_service.create_request(
        customer,
        booking.booking_id,
        "SCHEDULE_CONFLICT",
        "create-1",
        cancellation_time=cancel_before_service(50),
    )
    approved = cancellation_service.approve_request(admin, request.request_id, "approve-1")
    return refund_service.get_refund(approved.refund_record_id)


def _advance(service, actor, refund_id, *stages, transaction_id=None):
    refund = None
    for stage in stages:
        refund = service.advance_refund(
            actor,
            refund_id,
            stage,
            f"{refund_id}-{stage.value}",
            external_transaction_id=transaction_id if stage == RefundStage.COMPLETED else None,
        )
    return refund


def _with_gateway(db, idempotency, notification_service, booking_service, gateway) -> RefundService:
    return RefundService(
        db,
        idempotency,
        notifications=notification_service,
        bookings=booking_service,
        gateway=gateway,
    )


class TestHappyPath:
    """PENDING -> PROCESSING -> APPROVED -> COMPLETED."""

    def test_full_lifecycle(self, refund_service, pending_refund, admin) -> None:
        completed = _advance(
            refund_service,
            admin,
            pending_refund.refund_id,
            RefundStage.PROCESSING,
            RefundStage.APPROVED,
            RefundStage.COMPLETED,
            transaction_id="TX-123",
        )

        assert completed.status == RefundStatus.COMPLETED
        assert completed.external_transaction_id == "TX-123"
        assert completed.version == 3

        stored = refund_service.get_refund(pending_refund.refund_id)
        assert stored.status == RefundStatus.COMPLETED
        assert stored.processed_by == admin.user_id
        assert stored.approved_by == admin.user_id
        assert stored.completed_at is not None

    def test_completion_requires_transaction_id(self, refund_service, pending_refund, admin) -> None:
        _advance(
            refund_service, admin, pending_refund.refund_id, RefundStage.PROCESSING, RefundStage.APPROVED
        )

        with pytest.raises(ValidationError) as exc_info:
            refund_service.advance_refund(
                admin, pending_refund.refund_id, RefundStage.COMPLETED, "complete-1"
            )

        assert exc_info.value.code == ErrorCode.TRANSACTION_ID_REQUIRED
        assert refund_service.get_refund(pending_refund.refund_id).status == RefundStatus.APPROVED

    def test_completion_notifies_customer(
        self, refund_service, pending_refund, admin, db
    ) -> None:
        _advance(
            refund_service,
            admin,
            pending_refund.refund_id,
            RefundStage.PROCESSING,
            RefundStage.APPROVED,
            RefundStage.COMPLETED,
            transaction_id="TX-123",
        )

        records = [
            item for item in db.scan("notifications") if item["template_id"] == "refund_completed"
        ]
        assert len(records) == 1
        assert records[0]["recipient_id"] == "customer-1"
        assert records[0]["status"] == NotificationStatus.SKIPPED.value


class TestInvalidTransitions:
    def test_stages_cannot_be_skipped(self, refund_service, pending_refund, admin) -> None:
        with pytest.raises(InvalidStateTransitionError):
            refund_service.advance_refund(
                admin, pending_refund.refund_id, RefundStage.APPROVED, "approve-early"
            )
        with pytest.raises(InvalidStateTransitionError):
            refund_service.advance_refund(
                admin,
                pending_refund.refund_id,
                RefundStage.COMPLETED,
                "complete-early",
                external_transaction_id="TX-1",
            )

        assert refund_service.get_refund(pending_refund.refund_id).status == RefundStatus.PENDING

    def test_completed_refund_cannot_be_failed_or_rejected(
        self, refund_service, pending_refund, admin
    ) -> None:
        _advance(
            refund_service,
            admin,
            pending_refund.refund_id,
            RefundStage.PROCESSING,
            RefundStage.APPROVED,
            RefundStage.COMPLETED,
            transaction_id="TX-123",
        )
        error = RefundError(code="BANK", message="Bank bounced")

        with pytest.raises(InvalidStateTransitionError):
            refund_service.fail_refund(admin, pending_refund.refund_id, error, "fail-1")
        with pytest.raises(InvalidStateTransitionError):
            refund_service.reject_refund(admin, pending_refund.refund_id, "reject-1")

    def test_approved_refund_cannot_be_rejected(self, refund_service, pending_refund, admin) -> None:
        _advance(
            refund_service, admin, pending_refund.refund_id, RefundStage.PROCESSING, RefundStage.APPROVED
        )

        with pytest.raises(InvalidStateTransitionError):
            refund_service.reject_refund(admin, pending_refund.refund_id, "reject-1")

    def test_stale_version_is_a_conflict(self, refund_service, pending_refund, admin) -> None:
        refund_service.advance_refund(
            admin, pending_refund.refund_id, RefundStage.PROCESSING, "processing-1"
        )

        # Transition computed from the record read before the first write
        with pytest.raises(ConcurrencyConflictError):
            refund_service._transition(
                pending_refund.model_copy(update={"status": RefundStatus.PROCESSING}),
                "reject_refund",
                (RefundStatus.PENDING, RefundStatus.PROCESSING),
                {"status": RefundStatus.REJECTED},
            )

    def test_non_admin_cannot_advance(self, refund_service, pending_refund, customer) -> None:
        with pytest.raises(AuthorizationError):
            refund_service.advance_refund(
                customer, pending_refund.refund_id, RefundStage.PROCESSING, "processing-1"
            )


class TestFailureAndRejection:
    def test_fail_attaches_error(self, refund_service, pending_refund, admin) -> None:
        error = RefundError(code="BANK", message="Account closed", details={"iban": "masked"})

        failed = refund_service.fail_refund(admin, pending_refund.refund_id, error, "fail-1")

        assert failed.status == RefundStatus.FAILED
        stored = refund_service.get_refund(pending_refund.refund_id)
        assert stored.error == error
        assert stored.failed_at is not None

    def test_reject_from_processing(self, refund_service, pending_refund, admin) -> None:
        refund_service.advance_refund(
            admin, pending_refund.refund_id, RefundStage.PROCESSING, "processing-1"
        )

        rejected = refund_service.reject_refund(
            admin, pending_refund.refund_id, "reject-1", notes="Duplicate payout"
        )

        assert rejected.status == RefundStatus.REJECTED
        assert rejected.rejected_by == admin.user_id
        assert refund_service.get_refund(pending_refund.refund_id).admin_notes == "Duplicate payout"


class TestRetry:
    @pytest.fixture
    def failed_refund(self, refund_service, pending_refund, admin):
        error = RefundError(code="BANK", message="Account closed")
        return refund_service.fail_refund(admin, pending_refund.refund_id, error, "fail-1")

    def test_retry_creates_new_pending_record(self, refund_service, failed_refund, admin) -> None:
        retry = refund_service.retry_refund(admin, failed_refund.refund_id, "retry-1")

        assert retry.refund_id != failed_refund.refund_id
        assert retry.status == RefundStatus.PENDING
        assert retry.retry_of == failed_refund.refund_id
        assert retry.amount == failed_refund.amount

        original = refund_service.get_refund(failed_refund.refund_id)
        assert original.status == RefundStatus.FAILED
        assert original.error.message == "Account closed"
        assert original.superseded_by == retry.refund_id

        history = refund_service.get_refunds_for_request(failed_refund.cancellation_request_id)
        assert {r.refund_id for r in history} == {failed_refund.refund_id, retry.refund_id}

    def test_record_can_only_be_retried_once(self, refund_service, failed_refund, admin) -> None:
        refund_service.retry_refund(admin, failed_refund.refund_id, "retry-1")

        with pytest.raises(InvalidStateTransitionError):
            refund_service.retry_refund(admin, failed_refund.refund_id, "retry-2")

    def test_retry_with_same_key_returns_same_record(self, refund_service, failed_refund, admin) -> None:
        first = refund_service.retry_refund(admin, failed_refund.refund_id, "retry-1")
        second = refund_service.retry_refund(admin, failed_refund.refund_id, "retry-1")

        assert second.refund_id == first.refund_id

    def test_only_failed_refunds_can_be_retried(self, refund_service, pending_refund, admin) -> None:
        with pytest.raises(InvalidStateTransitionError):
            refund_service.retry_refund(admin, pending_refund.refund_id, "retry-1")


class TestGateway:
    def test_synchronous_success_attaches_transaction(
        self, db, idempotency, notification_service, booking_service, pending_refund, admin
    ) -> None:
        gateway = AcceptingGateway()
        service = _with_gateway(db, idempotency, notification_service, booking_service, gateway)

        approved = _advance(
            service, admin, pending_refund.refund_id, RefundStage.PROCESSING, RefundStage.APPROVED
        )

        assert gateway.submitted == [pending_refund.refund_id]
        assert approved.status == RefundStatus.APPROVED
        assert approved.external_transaction_id == "TX-SYNC-1"

        completed = service.advance_refund(
            admin, pending_refund.refund_id, RefundStage.COMPLETED, "complete-1"
        )
        assert completed.status == RefundStatus.COMPLETED
        assert completed.external_transaction_id == "TX-SYNC-1"

    def test_gateway_failure_is_recorded_not_raised(
        self, db, idempotency, notification_service, booking_service, pending_refund, admin
    ) -> None:
        service = _with_gateway(
            db, idempotency, notification_service, booking_service, DecliningGateway()
        )

        result = _advance(
            service, admin, pending_refund.refund_id, RefundStage.PROCESSING, RefundStage.APPROVED
        )

        assert result.status == RefundStatus.FAILED
        stored = service.get_refund(pending_refund.refund_id)
        assert stored.status == RefundStatus.FAILED
        assert stored.error.code == "card_declined"
        assert stored.error.details == {"attempt": 1}

    def test_asynchronous_gateway_leaves_refund_approved(
        self, db, idempotency, notification_service, booking_service, pending_refund, admin
    ) -> None:
        service = _with_gateway(
            db, idempotency, notification_service, booking_service, AcceptingGateway(None)
        )

        approved = _advance(
            service, admin, pending_refund.refund_id, RefundStage.PROCESSING, RefundStage.APPROVED
        )

        assert approved.status == RefundStatus.APPROVED
        assert approved.external_transaction_id is None

    def test_success_without_transaction_id_fails_refund(
        self, db, idempotency, notification_service, booking_service, pending_refund, admin
    ) -> None:
        service = _with_gateway(
            db, idempotency, notification_service, booking_service, UnreconciledGateway()
        )

        result = _advance(
            service, admin, pending_refund.refund_id, RefundStage.PROCESSING, RefundStage.APPROVED
        )

        assert result.status == RefundStatus.FAILED
        assert result.error.code == ErrorCode.GATEWAY_FAILURE.value
        replayed = service.advance_refund(
            admin,
            pending_refund.refund_id,
            RefundStage.APPROVED,
            f"{pending_refund.refund_id}-{RefundStage.APPROVED.value}",
        )
        assert replayed.status == RefundStatus.FAILED
        assert replayed.version == 3

    def test_unexpected_gateway_exception_is_recorded(
        self, db, idempotency, notification_service, booking_service, pending_refund, admin
    ) -> None:
        service = _with_gateway(
            db, idempotency, notification_service, booking_service, UnreachableGateway()
        )

        result = _advance(
            service, admin, pending_refund.refund_id, RefundStage.PROCESSING, RefundStage.APPROVED
        )

        assert result.status == RefundStatus.FAILED
        stored = service.get_refund(pending_refund.refund_id)
        assert stored.error.code == ErrorCode.GATEWAY_FAILURE.value
        assert stored.error.details == {"exception": "ConnectionError"}

    def test_callback_claims_key_with_its_transition(
        self, refund_service, idempotency, pending_refund, admin
    ) -> None:
        _advance(
            refund_service, admin, pending_refund.refund_id, RefundStage.PROCESSING, RefundStage.APPROVED
        )

        refund_service.record_gateway_result(
            pending_refund.refund_id,
            GatewayResult(success=True, external_transaction_id="TX-CB-9"),
            "callback-1",
        )

        assert (
            idempotency.lookup("gateway_result", "callback-1", pending_refund.refund_id)
            == pending_refund.refund_id
        )

    def test_callback_success_without_transaction_id_fails_refund(
        self, refund_service, pending_refund, admin
    ) -> None:
        _advance(
            refund_service, admin, pending_refund.refund_id, RefundStage.PROCESSING, RefundStage.APPROVED
        )

        failed = refund_service.record_gateway_result(
            pending_refund.refund_id, GatewayResult(success=True), "callback-1"
        )

        assert failed.status == RefundStatus.FAILED
        assert failed.error.code == ErrorCode.GATEWAY_FAILURE.value

    def test_callback_success_completes_refund(self, refund_service, pending_refund, admin) -> None:
        _advance(
            refund_service, admin, pending_refund.refund_id, RefundStage.PROCESSING, RefundStage.APPROVED
        )

        completed = refund_service.record_gateway_result(
            pending_refund.refund_id,
            GatewayResult(success=True, external_transaction_id="TX-CB-9"),
            "callback-1",
        )

        assert completed.status == RefundStatus.COMPLETED
        assert refund_service.get_refund(pending_refund.refund_id).external_transaction_id == "TX-CB-9"

    def test_callback_failure_fails_refund(self, refund_service, pending_refund, admin) -> None:
        _advance(
            refund_service, admin, pending_refund.refund_id, RefundStage.PROCESSING, RefundStage.APPROVED
        )

        failed = refund_service.record_gateway_result(
            pending_refund.refund_id,
            GatewayResult(success=False, error_code="insufficient_funds", error_message="Try later"),
            "callback-1",
        )

        assert failed.status == RefundStatus.FAILED
        assert failed.error.code == "insufficient_funds"

    def test_callback_replay_returns_stored_refund(self, refund_service, pending_refund, admin) -> None:
        _advance(
            refund_service, admin, pending_refund.refund_id, RefundStage.PROCESSING, RefundStage.APPROVED
        )
        result = GatewayResult(success=True, external_transaction_id="TX-CB-9")
        refund_service.record_gateway_result(pending_refund.refund_id, result, "callback-1")

        again = refund_service.record_gateway_result(pending_refund.refund_id, result, "callback-1")

        assert again.status == RefundStatus.COMPLETED
        assert again.version == 3


class TestIdempotency:
    def test_same_key_applies_transition_once(self, refund_service, pending_refund, admin) -> None:
        first = refund_service.advance_refund(
            admin, pending_refund.refund_id, RefundStage.PROCESSING, "processing-1"
        )
        second = refund_service.advance_refund(
            admin, pending_refund.refund_id, RefundStage.PROCESSING, "processing-1"
        )

        assert first.version == second.version == 1
        assert second.status == RefundStatus.PROCESSING

    def test_missing_key_is_rejected(self, refund_service, pending_refund, admin) -> None:
        with pytest.raises(ValidationError) as exc_info:
            refund_service.advance_refund(admin, pending_refund.refund_id, RefundStage.PROCESSING, "")

        assert exc_info.value.code == ErrorCode.IDEMPOTENCY_KEY_REQUIRED

    def test_key_reused_on_another_refund_is_rejected(
        self, refund_service, pending_refund, admin
    ) -> None:
        error = RefundError(code="BANK", message="Bank bounced")
        refund_service.fail_refund(admin, pending_refund.refund_id, error, "fail-1")
        retry = refund_service.retry_refund(admin, pending_refund.refund_id, "retry-1")

        with pytest.raises(ValidationError) as exc_info:
            refund_service.fail_refund(admin, retry.refund_id, error, "fail-1")

        assert exc_info.value.code == ErrorCode.IDEMPOTENCY_KEY_REUSED
        assert refund_service.get_refund(retry.refund_id).status == RefundStatus.PENDING


class TestStatistics:
    def test_empty_statistics(self, refund_service, db) -> None:
        stats = refund_service.get_statistics()

        assert stats.total_refunds == 0
        assert stats.refunds_by_status == {}

    def test_statistics_aggregate_records(self, refund_service, pending_refund, admin) -> None:
        _advance(
            refund_service,
            admin,
            pending_refund.refund_id,
            RefundStage.PROCESSING,
            RefundStage.APPROVED,
            RefundStage.COMPLETED,
            transaction_id="TX-123",
        )

        stats = refund_service.get_statistics()

        assert stats.total_refunds == 1
        assert stats.total_refund_amount == 1336
        assert stats.average_refund_amount == 1336
        assert stats.refunds_by_status == {"COMPLETED": 1}
        assert stats.refunds_by_reason == {"SCHEDULE_CONFLICT": 1}
        assert len(stats.refunds_by_month) == 1
        assert stats.refunds_by_month[0].amount == 1336
        assert stats.processing_times.slowest >= 0

    def test_totals_only_count_completed(self, refund_service, pending_refund, admin) -> None:
        refund_service.fail_refund(
            admin, pending_refund.refund_id, RefundError(code="X", message="boom"), "fail-1"
        )

        stats = refund_service.get_statistics()

        assert stats.total_refunds == 1
        assert stats.total_refund_amount == 0
        assert stats.refunds_by_status == {"FAILED": 1}

"""Refund lifecycle service.

State machine of a refund record:

    PENDING -> PROCESSING -> APPROVED -> COMPLETED
    PENDING | PROCESSING | APPROVED -> FAILED
    PENDING | PROCESSING -> REJECTED

COMPLETED, FAILED and REJECTED are terminal. A FAILED record is retried by
creating a new record for the same cancellation request; the failed record
keeps its history.
"""

import datetime as dt
import statistics
import uuid
from collections import Counter, defaultdict
from typing import TYPE_CHECKING, Any

from boto3.dynamodb.conditions import Attr

from refund_engine.models import (
    Actor,
    AuthorizationError,
    ErrorCode,
    GatewayError,
    GatewayResult,
    MonthlyRefunds,
    NotFoundError,
    NotificationTemplate,
    ProcessingTimeStats,
    RefundError,
    RefundMethod,
    RefundRecord,
    RefundStage,
    RefundStatistics,
    RefundStatus,
    ValidationError,
)
from refund_engine.utils.logging import get_logger, log_refund_operation

from .payment_gateway import result_from_error
from .state import guarded_update, raise_transition_failure

if TYPE_CHECKING:
    from .booking_service import BookingService
    from .dynamodb import DynamoDBService
    from .idempotency import IdempotencyStore
    from .notification_service import NotificationService
    from .payment_gateway import PaymentGateway

logger = get_logger(__name__)

# Source states for each transition
STAGE_SOURCES: dict[RefundStage, tuple[RefundStatus, ...]] = {
    RefundStage.PROCESSING: (RefundStatus.PENDING,),
    RefundStage.APPROVED: (RefundStatus.PROCESSING,),
    RefundStage.COMPLETED: (RefundStatus.APPROVED,),
}
FAILABLE_FROM = (RefundStatus.PENDING, RefundStatus.PROCESSING, RefundStatus.APPROVED)
REJECTABLE_FROM = (RefundStatus.PENDING, RefundStatus.PROCESSING)


def require_admin(actor: Actor, action: str) -> None:
    """Raise AuthorizationError unless the actor is an admin."""
    if not actor.is_admin:
        raise AuthorizationError(
            ErrorCode.FORBIDDEN,
            details={"action": action, "user_id": actor.user_id, "role": actor.role.value},
        )


class RefundService:
    """Service owning refund records and their transitions."""

    REFUNDS_TABLE = "refund-records"
    REQUESTS_TABLE = "cancellation-requests"

    def __init__(
        self,
        db: "DynamoDBService",
        idempotency: "IdempotencyStore",
        notifications: "NotificationService | None" = None,
        bookings: "BookingService | None" = None,
        gateway: "PaymentGateway | None" = None,
    ) -> None:
        """Initialize refund service.

        Args:
            db: DynamoDB service instance
            idempotency: Idempotency key store
            notifications: Optional notification sender
            bookings: Optional booking lookup, used to address notifications
            gateway: Optional payment gateway invoked when a refund is approved
        """
        self.db = db
        self.idempotency = idempotency
        self.notifications = notifications
        self.bookings = bookings
        self.gateway = gateway

    def _generate_refund_id(self) -> str:
        return f"REF-{uuid.uuid4().hex[:12].upper()}"

    # Queries

    def find_refund(self, refund_id: str) -> RefundRecord | None:
        item = self.db.get_item(self.REFUNDS_TABLE, {"refund_id": refund_id})
        return RefundRecord.model_validate(item) if item else None

    def get_refund(self, refund_id: str) -> RefundRecord:
        """Get a refund by ID.

        Raises:
            NotFoundError: If the refund does not exist
        """
        refund = self.find_refund(refund_id)
        if refund is None:
            raise NotFoundError(ErrorCode.REFUND_NOT_FOUND, details={"refund_id": refund_id})
        return refund

    def get_refunds_for_request(self, cancellation_request_id: str) -> list[RefundRecord]:
        """Get all refunds for a cancellation request, oldest first."""
        items = self.db.query_by_gsi(
            self.REFUNDS_TABLE,
            "cancellation_request_id-index",
            "cancellation_request_id",
            cancellation_request_id,
        )
        refunds = [RefundRecord.model_validate(item) for item in items]
        return sorted(refunds, key=lambda r: r.initiated_at)

    def list_refunds(self, status: RefundStatus | None = None) -> list[RefundRecord]:
        """List refunds, newest first."""
        filter_expression = Attr("status").eq(status.value) if status else None
        items = self.db.scan(self.REFUNDS_TABLE, filter_expression=filter_expression)
        refunds = [RefundRecord.model_validate(item) for item in items]
        return sorted(refunds, key=lambda r: r.initiated_at, reverse=True)

    # Creation

    def build_refund(
        self,
        cancellation_request_id: str,
        booking_id: str,
        amount: int,
        initiated_by: str,
        method: RefundMethod = RefundMethod.ORIGINAL_PAYMENT,
        retry_of: str | None = None,
        dispute_id: str | None = None,
    ) -> RefundRecord:
        """Build a new PENDING refund record (not yet stored)."""
        if amount <= 0:
            raise ValidationError(ErrorCode.INVALID_AMOUNT, details={"amount": str(amount)})
        return RefundRecord(
            refund_id=self._generate_refund_id(),
            cancellation_request_id=cancellation_request_id,
            booking_id=booking_id,
            amount=amount,
            method=method,
            status=RefundStatus.PENDING,
            initiated_by=initiated_by,
            initiated_at=dt.datetime.now(dt.UTC),
            retry_of=retry_of,
            dispute_id=dispute_id,
        )

    def create_op(self, refund: RefundRecord) -> dict[str, Any]:
        """Transaction entry that stores a new refund record."""
        return self.db.put_op(
            self.REFUNDS_TABLE,
            self._refund_to_item(refund),
            condition_expression="attribute_not_exists(refund_id)",
        )

    def create_compensating_refund(
        self,
        dispute_id: str,
        cancellation_request_id: str,
        booking_id: str,
        amount: int,
        initiated_by: str,
        method: RefundMethod = RefundMethod.ORIGINAL_PAYMENT,
    ) -> tuple[RefundRecord, dict[str, Any]]:
        """Build a dispute-ordered refund and the transaction entry storing it.

        The caller writes the entry together with the dispute resolution, so
        the original refund history is never modified.
        """
        refund = self.build_refund(
            cancellation_request_id=cancellation_request_id,
            booking_id=booking_id,
            amount=amount,
            initiated_by=initiated_by,
            method=method,
            dispute_id=dispute_id,
        )
        return refund, self.create_op(refund)

    # Transitions

    def _transition(
        self,
        refund: RefundRecord,
        action: str,
        allowed_from: tuple[RefundStatus, ...],
        updates: dict[str, Any],
        idempotency_key: str | None = None,
        extra_ops: list[dict[str, Any]] | None = None,
    ) -> RefundRecord:
        """Apply a guarded transition, atomically with its idempotency key.

        Raises:
            InvalidStateTransitionError: If the refund is not in an allowed state
            ConcurrencyConflictError: If the refund changed since it was read
        """
        if refund.status not in allowed_from:
            raise_transition_failure("refund", refund.refund_id, action, refund.status, allowed_from)

        updated = refund.model_copy(update={**updates, "version": refund.version + 1})
        expression, values, names, condition = guarded_update(
            updated, updates.keys(), allowed_from, refund.version
        )
        ops = [
            self.db.update_op(
                self.REFUNDS_TABLE,
                {"refund_id": refund.refund_id},
                expression,
                values,
                names,
                condition,
            ),
            *(extra_ops or []),
        ]
        if idempotency_key is not None:
            ops.append(self.idempotency.put_op(action, idempotency_key, refund.refund_id))

        if not self.db.transact_write(ops):
            current = self.get_refund(refund.refund_id)
            if idempotency_key is not None and self.idempotency.lookup(
                action, idempotency_key, refund.refund_id
            ):
                return current
            raise_transition_failure("refund", refund.refund_id, action, current.status, allowed_from)

        log_refund_operation(
            logger,
            action,
            refund_id=refund.refund_id,
            cancellation_request_id=refund.cancellation_request_id,
            amount=refund.amount,
            status=updated.status.value,
        )
        return updated

    def _replay(self, action: str, idempotency_key: str, refund_id: str) -> RefundRecord | None:
        """Return the stored outcome if this command already ran."""
        stored_id = self.idempotency.lookup(action, idempotency_key, refund_id)
        if stored_id is None:
            return None
        log_refund_operation(logger, action, refund_id=stored_id, result="duplicate")
        return self.get_refund(stored_id)

    def advance_refund(
        self,
        actor: Actor,
        refund_id: str,
        stage: RefundStage,
        idempotency_key: str,
        external_transaction_id: str | None = None,
        notes: str | None = None,
    ) -> RefundRecord:
        """Move a refund one stage forward.

        Approval hands the refund to the payment gateway when one is
        configured. A gateway failure is recorded on the refund (FAILED) and
        the failed record is returned rather than raised.

        Raises:
            AuthorizationError: If the actor is not an admin
            ValidationError: If completing without an external transaction id
            InvalidStateTransitionError: If the stage is not the next one
        """
        require_admin(actor, f"advance_refund:{stage.value}")
        action = f"advance_refund:{stage.value}"
        replayed = self._replay(action, idempotency_key, refund_id)
        if replayed is not None:
            return replayed

        refund = self.get_refund(refund_id)
        now = dt.datetime.now(dt.UTC)
        updates: dict[str, Any] = {}
        if notes:
            updates["admin_notes"] = notes

        if stage == RefundStage.PROCESSING:
            updates.update(
                status=RefundStatus.PROCESSING, processed_by=actor.user_id, processed_at=now
            )
        elif stage == RefundStage.APPROVED:
            updates.update(
                status=RefundStatus.APPROVED, approved_by=actor.user_id, approved_at=now
            )
        else:
            transaction_id = external_transaction_id or refund.external_transaction_id
            if refund.status == RefundStatus.APPROVED and not transaction_id:
                raise ValidationError(
                    ErrorCode.TRANSACTION_ID_REQUIRED, details={"refund_id": refund_id}
                )
            updates.update(
                status=RefundStatus.COMPLETED,
                completed_at=now,
                external_transaction_id=transaction_id,
            )

        result = self._transition(
            refund, action, STAGE_SOURCES[stage], updates, idempotency_key
        )

        if stage == RefundStage.APPROVED and result.status == RefundStatus.APPROVED:
            result = self._submit_to_gateway(result)
        if stage == RefundStage.COMPLETED and result.status == RefundStatus.COMPLETED:
            self._notify_completed(result)
        return result

    def _submit_to_gateway(self, refund: RefundRecord) -> RefundRecord:
        """Hand an approved refund to the gateway and record a synchronous answer."""
        if self.gateway is None:
            return refund
        try:
            result = self.gateway.submit_refund(refund)
        except GatewayError as e:
            result = result_from_error(e)
        except Exception as e:
            logger.error("Gateway submission failed for refund %s: %s", refund.refund_id, e)
            result = GatewayResult(
                success=False,
                error_code=ErrorCode.GATEWAY_FAILURE.value,
                error_message=f"Gateway submission failed: {e}",
                details={"exception": type(e).__name__},
            )
        if result is None:
            return refund
        return self._apply_gateway_result(refund, result)

    def _apply_gateway_result(
        self,
        refund: RefundRecord,
        result: GatewayResult,
        complete: bool = False,
        action: str | None = None,
        idempotency_key: str | None = None,
    ) -> RefundRecord:
        """Record a gateway answer on an approved refund.

        A success without an external transaction id cannot be reconciled
        and is recorded as a failure.
        """
        if result.success and not result.external_transaction_id:
            result = GatewayResult(
                success=False,
                error_code=ErrorCode.GATEWAY_FAILURE.value,
                error_message="Gateway reported success without a transaction id",
                details=result.details,
            )

        response = result.model_dump(mode="json", exclude_none=True)
        if result.success:
            updates: dict[str, Any] = {
                "external_transaction_id": result.external_transaction_id,
                "gateway_response": response,
            }
            if complete:
                updates.update(status=RefundStatus.COMPLETED, completed_at=dt.datetime.now(dt.UTC))
            return self._transition(
                refund,
                action or ("complete_from_gateway" if complete else "attach_transaction"),
                (RefundStatus.APPROVED,),
                updates,
                idempotency_key,
            )

        error = RefundError(
            code=result.error_code or ErrorCode.GATEWAY_FAILURE.value,
            message=result.error_message or "Payment gateway reported a failure",
            details=result.details,
        )
        return self._transition(
            refund,
            action or "gateway_failure",
            FAILABLE_FROM,
            {
                "status": RefundStatus.FAILED,
                "failed_at": dt.datetime.now(dt.UTC),
                "error": error,
                "gateway_response": response,
            },
            idempotency_key,
        )

    def record_gateway_result(
        self,
        refund_id: str,
        result: GatewayResult,
        idempotency_key: str,
    ) -> RefundRecord:
        """Consume an asynchronous gateway callback.

        Success attaches the external transaction id to an APPROVED refund
        and completes it; failure moves the refund to FAILED with the
        gateway's error.
        """
        action = "gateway_result"
        replayed = self._replay(action, idempotency_key, refund_id)
        if replayed is not None:
            return replayed

        refund = self.get_refund(refund_id)
        updated = self._apply_gateway_result(
            refund, result, complete=True, action=action, idempotency_key=idempotency_key
        )
        if updated.status == RefundStatus.COMPLETED:
            self._notify_completed(updated)
        return updated

    def fail_refund(
        self,
        actor: Actor,
        refund_id: str,
        error: RefundError,
        idempotency_key: str,
    ) -> RefundRecord:
        """Mark a refund FAILED with an attached error."""
        require_admin(actor, "fail_refund")
        replayed = self._replay("fail_refund", idempotency_key, refund_id)
        if replayed is not None:
            return replayed

        refund = self.get_refund(refund_id)
        return self._transition(
            refund,
            "fail_refund",
            FAILABLE_FROM,
            {"status": RefundStatus.FAILED, "failed_at": dt.datetime.now(dt.UTC), "error": error},
            idempotency_key,
        )

    def reject_refund(
        self,
        actor: Actor,
        refund_id: str,
        idempotency_key: str,
        notes: str | None = None,
    ) -> RefundRecord:
        """Decline the payout of a PENDING or PROCESSING refund."""
        require_admin(actor, "reject_refund")
        replayed = self._replay("reject_refund", idempotency_key, refund_id)
        if replayed is not None:
            return replayed

        refund = self.get_refund(refund_id)
        updates: dict[str, Any] = {
            "status": RefundStatus.REJECTED,
            "rejected_by": actor.user_id,
            "rejected_at": dt.datetime.now(dt.UTC),
        }
        if notes:
            updates["admin_notes"] = notes
        return self._transition(refund, "reject_refund", REJECTABLE_FROM, updates, idempotency_key)

    def retry_refund(
        self,
        actor: Actor,
        refund_id: str,
        idempotency_key: str,
    ) -> RefundRecord:
        """Supersede a FAILED refund with a fresh PENDING record.

        The failed record only gains a ``superseded_by`` link; a record can be
        superseded once.

        Returns:
            The new refund record
        """
        require_admin(actor, "retry_refund")
        replayed = self._replay("retry_refund", idempotency_key, refund_id)
        if replayed is not None:
            return replayed

        failed = self.get_refund(refund_id)
        allowed = (RefundStatus.FAILED,)
        if failed.status not in allowed or failed.superseded_by:
            raise_transition_failure("refund", refund_id, "retry_refund", failed.status, ())

        retry = self.build_refund(
            cancellation_request_id=failed.cancellation_request_id,
            booking_id=failed.booking_id,
            amount=failed.amount,
            initiated_by=actor.user_id,
            method=failed.method,
            retry_of=failed.refund_id,
            dispute_id=failed.dispute_id,
        )
        marked = failed.model_copy(
            update={"superseded_by": retry.refund_id, "version": failed.version + 1}
        )
        expression, values, names, condition = guarded_update(
            marked, ["superseded_by"], allowed, failed.version
        )
        ops = [
            self.db.update_op(
                self.REFUNDS_TABLE, {"refund_id": refund_id}, expression, values, names, condition
            ),
            self.create_op(retry),
            self.idempotency.put_op(
                "retry_refund", idempotency_key, retry.refund_id, target_id=refund_id
            ),
        ]
        if not self.db.transact_write(ops):
            replayed = self._replay("retry_refund", idempotency_key, refund_id)
            if replayed is not None:
                return replayed
            current = self.get_refund(refund_id)
            raise_transition_failure(
                "refund",
                refund_id,
                "retry_refund",
                current.status,
                () if current.superseded_by else allowed,
            )

        log_refund_operation(
            logger,
            "retry_refund",
            refund_id=retry.refund_id,
            cancellation_request_id=retry.cancellation_request_id,
            amount=retry.amount,
            status=retry.status.value,
            actor_id=actor.user_id,
            retry_of=refund_id,
        )
        return retry

    # Reporting

    def get_statistics(self) -> RefundStatistics:
        """Aggregate refund figures across all records.

        Amount totals and averages count COMPLETED refunds only; counts by
        status, reason and month include every record.
        """
        refunds = [RefundRecord.model_validate(i) for i in self.db.scan(self.REFUNDS_TABLE)]
        if not refunds:
            return RefundStatistics()

        reasons = {
            item["request_id"]: item.get("reason", "UNKNOWN")
            for item in self.db.scan(self.REQUESTS_TABLE)
        }

        completed = [r for r in refunds if r.status == RefundStatus.COMPLETED]
        total_amount = sum(r.amount for r in completed)

        monthly: dict[str, list[int]] = defaultdict(list)
        for refund in refunds:
            monthly[refund.initiated_at.strftime("%Y-%m")].append(refund.amount)

        hours = [
            r.processing_time.total_seconds() / 3600
            for r in refunds
            if r.processing_time is not None
        ]
        processing_times = ProcessingTimeStats()
        if hours:
            processing_times = ProcessingTimeStats(
                average=round(statistics.fmean(hours), 2),
                median=round(statistics.median(hours), 2),
                fastest=round(min(hours), 2),
                slowest=round(max(hours), 2),
            )

        return RefundStatistics(
            total_refunds=len(refunds),
            total_refund_amount=total_amount,
            average_refund_amount=round(total_amount / len(completed), 2) if completed else 0.0,
            refunds_by_status=dict(Counter(r.status.value for r in refunds)),
            refunds_by_reason=dict(
                Counter(reasons.get(r.cancellation_request_id, "UNKNOWN") for r in refunds)
            ),
            refunds_by_month=[
                MonthlyRefunds(month=month, count=len(amounts), amount=sum(amounts))
                for month, amounts in sorted(monthly.items())
            ],
            processing_times=processing_times,
        )

    # Notifications

    def _notify_completed(self, refund: RefundRecord) -> None:
        if self.notifications is None or self.bookings is None:
            return
        booking = self.bookings.find_booking(refund.booking_id)
        if booking is None:
            logger.warning("Refund %s completed for unknown booking %s", refund.refund_id, refund.booking_id)
            return
        self.notifications.notify(
            NotificationTemplate.REFUND_COMPLETED,
            booking.customer_id,
            {
                "refund_id": refund.refund_id,
                "booking_id": refund.booking_id,
                "service_title": booking.service_title,
                "amount": refund.amount,
                "method": refund.method.value,
                "external_transaction_id": refund.external_transaction_id,
            },
            recipient_email=booking.customer_email,
        )

    # Conversion helpers

    def _refund_to_item(self, refund: RefundRecord) -> dict[str, Any]:
        """Convert RefundRecord to a DynamoDB item."""
        return refund.model_dump(mode="json", exclude_none=True)

"""Cancellation request lifecycle.

A request is created PENDING with a snapshot of the refund calculation and
moves once to APPROVED or REJECTED. While a request is PENDING its booking is
locked by an item in the active-cancellations table, so a booking has at most
one active request.
"""

import datetime as dt
import uuid
from typing import TYPE_CHECKING, Any

from boto3.dynamodb.conditions import Attr

from refund_engine.models import (
    Actor,
    AuthorizationError,
    CancellationReason,
    CancellationRequest,
    CancellationStatus,
    ConcurrencyConflictError,
    ErrorCode,
    NotFoundError,
    NotificationTemplate,
    RefundCalculation,
    RefundMethod,
    ValidationError,
)
from refund_engine.utils.logging import get_logger, log_refund_operation

from .refund_service import require_admin
from .state import guarded_update, raise_transition_failure

if TYPE_CHECKING:
    from refund_engine.models import Booking

    from .booking_service import BookingService
    from .dynamodb import DynamoDBService
    from .idempotency import IdempotencyStore
    from .notification_service import NotificationService
    from .policy_store import PolicyStore
    from .refund_calculator import RefundCalculator
    from .refund_service import RefundService

logger = get_logger(__name__)

PENDING_ONLY = (CancellationStatus.PENDING,)


def parse_reason(reason: str | CancellationReason) -> CancellationReason:
    """Convert a reason value to the enum, raising ValidationError if unknown."""
    try:
        return CancellationReason(reason)
    except ValueError:
        raise ValidationError(ErrorCode.INVALID_REASON, details={"reason": str(reason)})


class CancellationService:
    """Service for creating and deciding cancellation requests."""

    REQUESTS_TABLE = "cancellation-requests"
    LOCKS_TABLE = "active-cancellations"

    def __init__(
        self,
        db: "DynamoDBService",
        idempotency: "IdempotencyStore",
        bookings: "BookingService",
        policies: "PolicyStore",
        calculator: "RefundCalculator",
        refunds: "RefundService",
        notifications: "NotificationService | None" = None,
    ) -> None:
        self.db = db
        self.idempotency = idempotency
        self.bookings = bookings
        self.policies = policies
        self.calculator = calculator
        self.refunds = refunds
        self.notifications = notifications

    def _generate_request_id(self) -> str:
        return f"CAN-{uuid.uuid4().hex[:12].upper()}"

    # Queries

    def find_request(self, request_id: str) -> CancellationRequest | None:
        item = self.db.get_item(self.REQUESTS_TABLE, {"request_id": request_id})
        return CancellationRequest.model_validate(item) if item else None

    def get_request(self, request_id: str) -> CancellationRequest:
        """Get a cancellation request by ID.

        Raises:
            NotFoundError: If the request does not exist
        """
        request = self.find_request(request_id)
        if request is None:
            raise NotFoundError(ErrorCode.REQUEST_NOT_FOUND, details={"request_id": request_id})
        return request

    def list_requests(self, status: CancellationStatus | None = None) -> list[CancellationRequest]:
        """List requests, newest first."""
        filter_expression = Attr("status").eq(status.value) if status else None
        items = self.db.scan(self.REQUESTS_TABLE, filter_expression=filter_expression)
        requests = [CancellationRequest.model_validate(item) for item in items]
        return sorted(requests, key=lambda r: r.requested_at, reverse=True)

    def get_requests_for_booking(self, booking_id: str) -> list[CancellationRequest]:
        items = self.db.query_by_gsi(
            self.REQUESTS_TABLE, "booking_id-index", "booking_id", booking_id
        )
        requests = [CancellationRequest.model_validate(item) for item in items]
        return sorted(requests, key=lambda r: r.requested_at)

    def _check_booking_access(self, actor: Actor, booking: "Booking", action: str) -> None:
        if actor.is_admin or actor.user_id == booking.customer_id:
            return
        raise AuthorizationError(
            ErrorCode.FORBIDDEN,
            details={"action": action, "user_id": actor.user_id, "booking_id": booking.booking_id},
        )

    # Commands

    def quote(
        self,
        actor: Actor,
        booking_id: str,
        cancellation_time: dt.datetime | None = None,
    ) -> RefundCalculation:
        """Preview the refund a cancellation would get now. Nothing is stored."""
        booking = self.bookings.get_booking(booking_id)
        self._check_booking_access(actor, booking, "quote")
        policy = self.policies.resolve_policy_for_booking(booking)
        cancelled_at = cancellation_time or dt.datetime.now(dt.UTC)
        return self.calculator.calculate(
            policy, booking.total_amount, booking.service_datetime, cancelled_at
        )

    def create_request(
        self,
        actor: Actor,
        booking_id: str,
        reason: str | CancellationReason,
        idempotency_key: str,
        description: str | None = None,
        custom_reason: str | None = None,
        cancellation_time: dt.datetime | None = None,
    ) -> CancellationRequest:
        """Create a PENDING cancellation request with a refund snapshot.

        Args:
            actor: Booking customer or an admin
            booking_id: Booking to cancel
            reason: CancellationReason value
            idempotency_key: Client key; a retry returns the stored request
            description: Optional free-text description
            custom_reason: Required when reason is OTHER
            cancellation_time: Defaults to now

        Returns:
            The stored CancellationRequest

        Raises:
            ValidationError: If the reason is unknown or OTHER lacks a custom reason
            NotFoundError: If the booking does not exist
            AuthorizationError: If the actor may not cancel this booking
            PolicyResolutionError: If no policy applies to the booking
            ConcurrencyConflictError: If the booking already has an active request
        """
        parsed_reason = parse_reason(reason)
        if parsed_reason == CancellationReason.OTHER and not (custom_reason or "").strip():
            raise ValidationError(ErrorCode.CUSTOM_REASON_REQUIRED)

        stored_id = self.idempotency.lookup("create_request", idempotency_key, booking_id)
        if stored_id is not None:
            log_refund_operation(
                logger, "create_request", cancellation_request_id=stored_id, result="duplicate"
            )
            return self.get_request(stored_id)

        booking = self.bookings.get_booking(booking_id)
        self._check_booking_access(actor, booking, "create_request")
        policy = self.policies.resolve_policy_for_booking(booking)

        now = dt.datetime.now(dt.UTC)
        calculation = self.calculator.calculate(
            policy, booking.total_amount, booking.service_datetime, cancellation_time or now
        )
        request = CancellationRequest(
            request_id=self._generate_request_id(),
            booking_id=booking_id,
            user_id=actor.user_id,
            reason=parsed_reason,
            custom_reason=custom_reason,
            description=description,
            requested_at=now,
            refund_calculation=calculation,
        )

        ops = [
            self.db.put_op(
                self.LOCKS_TABLE,
                {
                    "booking_id": booking_id,
                    "request_id": request.request_id,
                    "locked_at": now.isoformat(),
                },
                condition_expression="attribute_not_exists(booking_id)",
            ),
            self.db.put_op(
                self.REQUESTS_TABLE,
                self._request_to_item(request),
                condition_expression="attribute_not_exists(request_id)",
            ),
            self.idempotency.put_op(
                "create_request", idempotency_key, request.request_id, target_id=booking_id
            ),
        ]
        if not self.db.transact_write(ops):
            stored_id = self.idempotency.lookup("create_request", idempotency_key, booking_id)
            if stored_id is not None:
                return self.get_request(stored_id)
            lock = self.db.get_item(self.LOCKS_TABLE, {"booking_id": booking_id})
            raise ConcurrencyConflictError(
                ErrorCode.ACTIVE_REQUEST_EXISTS if lock else ErrorCode.VERSION_CONFLICT,
                details={
                    "booking_id": booking_id,
                    "active_request_id": lock["request_id"] if lock else None,
                },
            )

        log_refund_operation(
            logger,
            "create_request",
            cancellation_request_id=request.request_id,
            amount=calculation.final_refund_amount,
            status=request.status.value,
            actor_id=actor.user_id,
            booking_id=booking_id,
            policy_id=calculation.policy_applied.policy_id,
            fallback_applied=calculation.fallback_applied,
        )
        return request

    def approve_request(
        self,
        actor: Actor,
        request_id: str,
        idempotency_key: str,
        notes: str | None = None,
        refund_method: RefundMethod = RefundMethod.ORIGINAL_PAYMENT,
        custom_refund_amount: int | None = None,
    ) -> CancellationRequest:
        """Approve a PENDING request and create its refund in the same write.

        The refund amount is the snapshot's final amount unless the admin
        overrides it. No refund record is created for a zero amount.

        Raises:
            AuthorizationError: If the actor is not an admin
            ValidationError: If the override is outside 0..total_amount
            InvalidStateTransitionError: If the request is no longer PENDING
        """
        require_admin(actor, "approve_request")
        replayed = self._replay("approve_request", idempotency_key, request_id)
        if replayed is not None:
            return replayed

        request = self.get_request(request_id)
        calculation = request.refund_calculation
        amount = calculation.final_refund_amount
        if custom_refund_amount is not None:
            if not 0 <= custom_refund_amount <= calculation.total_amount:
                raise ValidationError(
                    ErrorCode.INVALID_AMOUNT,
                    details={
                        "custom_refund_amount": custom_refund_amount,
                        "total_amount": calculation.total_amount,
                    },
                )
            amount = custom_refund_amount

        refund = None
        extra_ops: list[dict[str, Any]] = []
        updates: dict[str, Any] = {
            "status": CancellationStatus.APPROVED,
            "processed_at": dt.datetime.now(dt.UTC),
            "processed_by": actor.user_id,
            "approved_refund_amount": amount,
        }
        if notes:
            updates["admin_notes"] = notes
        if amount > 0:
            refund = self.refunds.build_refund(
                cancellation_request_id=request.request_id,
                booking_id=request.booking_id,
                amount=amount,
                initiated_by=actor.user_id,
                method=refund_method,
            )
            updates["refund_record_id"] = refund.refund_id
            extra_ops.append(self.refunds.create_op(refund))

        approved = self._decide(request, "approve_request", updates, idempotency_key, extra_ops)
        log_refund_operation(
            logger,
            "approve_request",
            refund_id=refund.refund_id if refund else None,
            cancellation_request_id=request_id,
            amount=amount,
            status=approved.status.value,
            actor_id=actor.user_id,
        )
        self._notify(
            NotificationTemplate.CANCELLATION_APPROVED,
            approved,
            {"refund_amount": amount, "admin_notes": notes},
        )
        return approved

    def reject_request(
        self,
        actor: Actor,
        request_id: str,
        idempotency_key: str,
        notes: str | None = None,
    ) -> CancellationRequest:
        """Reject a PENDING request. No refund is created."""
        require_admin(actor, "reject_request")
        replayed = self._replay("reject_request", idempotency_key, request_id)
        if replayed is not None:
            return replayed

        request = self.get_request(request_id)
        updates: dict[str, Any] = {
            "status": CancellationStatus.REJECTED,
            "processed_at": dt.datetime.now(dt.UTC),
            "processed_by": actor.user_id,
        }
        if notes:
            updates["admin_notes"] = notes

        rejected = self._decide(request, "reject_request", updates, idempotency_key)
        log_refund_operation(
            logger,
            "reject_request",
            cancellation_request_id=request_id,
            status=rejected.status.value,
            actor_id=actor.user_id,
        )
        self._notify(
            NotificationTemplate.CANCELLATION_REJECTED, rejected, {"admin_notes": notes}
        )
        return rejected

    def _replay(
        self, action: str, idempotency_key: str, request_id: str
    ) -> CancellationRequest | None:
        stored_id = self.idempotency.lookup(action, idempotency_key, request_id)
        if stored_id is None:
            return None
        log_refund_operation(
            logger, action, cancellation_request_id=stored_id, result="duplicate"
        )
        return self.get_request(stored_id)

    def _decide(
        self,
        request: CancellationRequest,
        action: str,
        updates: dict[str, Any],
        idempotency_key: str,
        extra_ops: list[dict[str, Any]] | None = None,
    ) -> CancellationRequest:
        """Write a PENDING -> APPROVED/REJECTED decision and release the lock."""
        if request.status not in PENDING_ONLY:
            raise_transition_failure(
                "cancellation_request", request.request_id, action, request.status, PENDING_ONLY
            )

        decided = request.model_copy(update={**updates, "version": request.version + 1})
        expression, values, names, condition = guarded_update(
            decided, updates.keys(), PENDING_ONLY, request.version
        )
        ops = [
            self.db.update_op(
                self.REQUESTS_TABLE,
                {"request_id": request.request_id},
                expression,
                values,
                names,
                condition,
            ),
            self.db.delete_op(self.LOCKS_TABLE, {"booking_id": request.booking_id}),
            *(extra_ops or []),
            self.idempotency.put_op(action, idempotency_key, request.request_id),
        ]
        if not self.db.transact_write(ops):
            replayed = self._replay(action, idempotency_key, request.request_id)
            if replayed is not None:
                return replayed
            current = self.get_request(request.request_id)
            raise_transition_failure(
                "cancellation_request", request.request_id, action, current.status, PENDING_ONLY
            )
        return decided

    def _notify(
        self,
        template: NotificationTemplate,
        request: CancellationRequest,
        data: dict[str, Any],
    ) -> None:
        if self.notifications is None:
            return
        booking = self.bookings.find_booking(request.booking_id)
        self.notifications.notify(
            template,
            request.user_id,
            {
                "request_id": request.request_id,
                "booking_id": request.booking_id,
                "service_title": booking.service_title if booking else None,
                "reason": request.custom_reason or request.reason.value,
                **data,
            },
            recipient_email=booking.customer_email if booking else None,
        )

    def _request_to_item(self, request: CancellationRequest) -> dict[str, Any]:
        """Convert CancellationRequest to a DynamoDB item."""
        return request.model_dump(mode="json", exclude_none=True)

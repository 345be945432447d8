"""Dispute case workflow.

    OPEN -> INVESTIGATING -> RESOLVED
    INVESTIGATING -> ESCALATED -> RESOLVED
    OPEN | INVESTIGATING | ESCALATED -> RESOLVED | CLOSED

Evidence and communications are append-only. Resolving with an amount
creates a compensating refund in the same write as the resolution; the
original cancellation and refund records are never modified.
"""

import datetime as dt
import uuid
from typing import TYPE_CHECKING, Any

from boto3.dynamodb.conditions import Attr

from refund_engine.models import (
    Actor,
    AlreadyResolvedError,
    AuthorizationError,
    Booking,
    Communication,
    ConcurrencyConflictError,
    DisputeCase,
    DisputeCreate,
    DisputeStatus,
    ErrorCode,
    Evidence,
    EvidenceCreate,
    NotFoundError,
    NotificationTemplate,
    RefundMethod,
    Resolution,
    ResolutionCreate,
    ResolutionType,
    ValidationError,
)
from refund_engine.utils.logging import get_logger, log_dispute_event

from .refund_service import require_admin
from .state import guarded_update, raise_transition_failure

if TYPE_CHECKING:
    from .booking_service import BookingService
    from .cancellation_service import CancellationService
    from .dynamodb import DynamoDBService
    from .idempotency import IdempotencyStore
    from .notification_service import NotificationService
    from .refund_service import RefundService

logger = get_logger(__name__)

ACTIVE_STATUSES = (DisputeStatus.OPEN, DisputeStatus.INVESTIGATING, DisputeStatus.ESCALATED)


def validate_resolution(resolution: ResolutionCreate, booking: Booking) -> None:
    """Check that the resolution type and amount agree.

    Raises:
        ValidationError: On a missing, forbidden or out-of-range amount
    """
    details: dict[str, Any] = {"type": resolution.type.value, "amount": resolution.amount}
    if resolution.type == ResolutionType.PARTIAL_REFUND and resolution.amount is None:
        raise ValidationError(ErrorCode.INVALID_RESOLUTION, details=details)
    if resolution.type == ResolutionType.NO_REFUND and resolution.amount is not None:
        raise ValidationError(ErrorCode.INVALID_RESOLUTION, details=details)
    if resolution.amount is not None and not 0 < resolution.amount <= booking.total_amount:
        raise ValidationError(
            ErrorCode.INVALID_AMOUNT,
            details={**details, "total_amount": booking.total_amount},
        )


class DisputeService:
    """Service for dispute cases."""

    DISPUTES_TABLE = "disputes"

    def __init__(
        self,
        db: "DynamoDBService",
        idempotency: "IdempotencyStore",
        bookings: "BookingService",
        cancellations: "CancellationService",
        refunds: "RefundService",
        notifications: "NotificationService | None" = None,
    ) -> None:
        self.db = db
        self.idempotency = idempotency
        self.bookings = bookings
        self.cancellations = cancellations
        self.refunds = refunds
        self.notifications = notifications

    @staticmethod
    def _generate_id(prefix: str) -> str:
        return f"{prefix}-{uuid.uuid4().hex[:12].upper()}"

    # Queries

    def find_dispute(self, dispute_id: str) -> DisputeCase | None:
        item = self.db.get_item(self.DISPUTES_TABLE, {"dispute_id": dispute_id})
        return DisputeCase.model_validate(item) if item else None

    def get_dispute(self, dispute_id: str) -> DisputeCase:
        """Get a dispute by ID.

        Raises:
            NotFoundError: If the dispute does not exist
        """
        dispute = self.find_dispute(dispute_id)
        if dispute is None:
            raise NotFoundError(ErrorCode.DISPUTE_NOT_FOUND, details={"dispute_id": dispute_id})
        return dispute

    def list_disputes(self, status: DisputeStatus | None = None) -> list[DisputeCase]:
        filter_expression = Attr("status").eq(status.value) if status else None
        items = self.db.scan(self.DISPUTES_TABLE, filter_expression=filter_expression)
        disputes = [DisputeCase.model_validate(item) for item in items]
        return sorted(disputes, key=lambda d: d.created_at, reverse=True)

    def get_disputes_for_booking(self, booking_id: str) -> list[DisputeCase]:
        items = self.db.query_by_gsi(
            self.DISPUTES_TABLE, "booking_id-index", "booking_id", booking_id
        )
        disputes = [DisputeCase.model_validate(item) for item in items]
        return sorted(disputes, key=lambda d: d.created_at)

    def visible_dispute(self, dispute: DisputeCase, viewer: Actor) -> DisputeCase:
        """Return the dispute as the viewer may see it.

        Internal communications are only shown to admins.
        """
        if viewer.is_admin:
            return dispute
        return dispute.model_copy(
            update={"communications": [c for c in dispute.communications if not c.is_internal]}
        )

    def view_dispute(self, actor: Actor, dispute_id: str) -> DisputeCase:
        """Load a dispute for a party to its booking, filtered for that party."""
        dispute = self.get_dispute(dispute_id)
        booking = self.bookings.get_booking(dispute.booking_id)
        self._check_participant(actor, booking, "view_dispute")
        return self.visible_dispute(dispute, actor)

    def _check_participant(self, actor: Actor, booking: Booking, action: str) -> None:
        if actor.is_admin or actor.user_id in (booking.customer_id, booking.guide_id):
            return
        raise AuthorizationError(
            ErrorCode.FORBIDDEN,
            details={"action": action, "user_id": actor.user_id, "booking_id": booking.booking_id},
        )

    def _replay(self, action: str, idempotency_key: str, target_id: str) -> DisputeCase | None:
        stored_id = self.idempotency.lookup(action, idempotency_key, target_id)
        if stored_id is None:
            return None
        log_dispute_event(logger, action, stored_id, result="duplicate")
        return self.get_dispute(stored_id)

    # Commands

    def open_dispute(
        self,
        actor: Actor,
        data: DisputeCreate,
        idempotency_key: str,
    ) -> DisputeCase:
        """Open a dispute on a booking.

        Linked cancellation requests and refunds must exist and belong to the
        booking.

        Raises:
            NotFoundError: If the booking or a linked record does not exist
            AuthorizationError: If the actor is not a party to the booking
            ValidationError: If initial evidence is empty
        """
        replayed = self._replay("open_dispute", idempotency_key, data.booking_id)
        if replayed is not None:
            return replayed

        booking = self.bookings.get_booking(data.booking_id)
        self._check_participant(actor, booking, "open_dispute")
        self._validate_links(data)

        now = dt.datetime.now(dt.UTC)
        dispute = DisputeCase(
            dispute_id=self._generate_id("DSP"),
            booking_id=data.booking_id,
            cancellation_request_id=data.cancellation_request_id,
            refund_record_id=data.refund_record_id,
            type=data.type,
            title=data.title,
            description=data.description,
            priority=data.priority,
            opened_by=actor.user_id,
            evidence=[self._build_evidence(actor, e, now) for e in data.evidence],
            created_at=now,
            updated_at=now,
        )

        ops = [
            self.db.put_op(
                self.DISPUTES_TABLE,
                dispute.model_dump(mode="json", exclude_none=True),
                condition_expression="attribute_not_exists(dispute_id)",
            ),
            self.idempotency.put_op(
                "open_dispute", idempotency_key, dispute.dispute_id, target_id=data.booking_id
            ),
        ]
        if not self.db.transact_write(ops):
            replayed = self._replay("open_dispute", idempotency_key, data.booking_id)
            if replayed is not None:
                return replayed
            raise ConcurrencyConflictError(
                ErrorCode.VERSION_CONFLICT, details={"dispute_id": dispute.dispute_id}
            )

        log_dispute_event(
            logger,
            "opened",
            dispute.dispute_id,
            status=dispute.status.value,
            actor_id=actor.user_id,
            result="success",
            booking_id=dispute.booking_id,
            dispute_type=dispute.type.value,
        )
        self._notify(NotificationTemplate.DISPUTE_CREATED, dispute, booking)
        return dispute

    def _validate_links(self, data: DisputeCreate) -> None:
        if data.cancellation_request_id:
            request = self.cancellations.get_request(data.cancellation_request_id)
            if request.booking_id != data.booking_id:
                raise NotFoundError(
                    ErrorCode.REQUEST_NOT_FOUND,
                    details={
                        "request_id": data.cancellation_request_id,
                        "booking_id": data.booking_id,
                    },
                )
        if data.refund_record_id:
            refund = self.refunds.get_refund(data.refund_record_id)
            if refund.booking_id != data.booking_id:
                raise NotFoundError(
                    ErrorCode.REFUND_NOT_FOUND,
                    details={"refund_id": data.refund_record_id, "booking_id": data.booking_id},
                )

    def _build_evidence(self, actor: Actor, evidence: EvidenceCreate, now: dt.datetime) -> Evidence:
        if not evidence.title.strip() or not evidence.content.strip():
            raise ValidationError(ErrorCode.INVALID_EVIDENCE, details={"title": evidence.title})
        return Evidence(
            evidence_id=self._generate_id("EVD"),
            type=evidence.type,
            title=evidence.title,
            content=evidence.content,
            uploaded_by=actor.user_id,
            uploaded_at=now,
        )

    def _transition(
        self,
        dispute: DisputeCase,
        action: str,
        allowed_from: tuple[DisputeStatus, ...],
        updates: dict[str, Any],
        idempotency_key: str,
        extra_ops: list[dict[str, Any]] | None = None,
    ) -> DisputeCase:
        if dispute.status not in allowed_from:
            raise_transition_failure("dispute", dispute.dispute_id, action, dispute.status, allowed_from)

        updates = {**updates, "updated_at": dt.datetime.now(dt.UTC)}
        updated = dispute.model_copy(update={**updates, "version": dispute.version + 1})
        expression, values, names, condition = guarded_update(
            updated, updates.keys(), allowed_from, dispute.version
        )
        ops = [
            self.db.update_op(
                self.DISPUTES_TABLE,
                {"dispute_id": dispute.dispute_id},
                expression,
                values,
                names,
                condition,
            ),
            *(extra_ops or []),
            self.idempotency.put_op(action, idempotency_key, dispute.dispute_id),
        ]
        if not self.db.transact_write(ops):
            replayed = self._replay(action, idempotency_key, dispute.dispute_id)
            if replayed is not None:
                return replayed
            current = self.get_dispute(dispute.dispute_id)
            if action == "resolve_dispute" and current.resolution is not None:
                raise AlreadyResolvedError(
                    ErrorCode.ALREADY_RESOLVED, details={"dispute_id": dispute.dispute_id}
                )
            raise_transition_failure(
                "dispute", dispute.dispute_id, action, current.status, allowed_from
            )

        log_dispute_event(
            logger,
            action,
            dispute.dispute_id,
            status=updated.status.value,
            result="success",
        )
        return updated

    def investigate_dispute(
        self,
        actor: Actor,
        dispute_id: str,
        idempotency_key: str,
        assigned_to: str | None = None,
    ) -> DisputeCase:
        """Start investigating an OPEN dispute, assigning it to an admin."""
        require_admin(actor, "investigate_dispute")
        replayed = self._replay("investigate_dispute", idempotency_key, dispute_id)
        if replayed is not None:
            return replayed

        dispute = self.get_dispute(dispute_id)
        return self._transition(
            dispute,
            "investigate_dispute",
            (DisputeStatus.OPEN,),
            {"status": DisputeStatus.INVESTIGATING, "assigned_to": assigned_to or actor.user_id},
            idempotency_key,
        )

    def escalate_dispute(self, actor: Actor, dispute_id: str, idempotency_key: str) -> DisputeCase:
        require_admin(actor, "escalate_dispute")
        replayed = self._replay("escalate_dispute", idempotency_key, dispute_id)
        if replayed is not None:
            return replayed

        dispute = self.get_dispute(dispute_id)
        return self._transition(
            dispute,
            "escalate_dispute",
            (DisputeStatus.INVESTIGATING,),
            {"status": DisputeStatus.ESCALATED},
            idempotency_key,
        )

    def close_dispute(self, actor: Actor, dispute_id: str, idempotency_key: str) -> DisputeCase:
        """Close a dispute without a resolution."""
        require_admin(actor, "close_dispute")
        replayed = self._replay("close_dispute", idempotency_key, dispute_id)
        if replayed is not None:
            return replayed

        dispute = self.get_dispute(dispute_id)
        return self._transition(
            dispute,
            "close_dispute",
            ACTIVE_STATUSES,
            {"status": DisputeStatus.CLOSED, "closed_at": dt.datetime.now(dt.UTC)},
            idempotency_key,
        )

    def resolve_dispute(
        self,
        actor: Actor,
        dispute_id: str,
        resolution: ResolutionCreate,
        idempotency_key: str,
    ) -> DisputeCase:
        """Resolve a dispute, creating a compensating refund when an amount is given.

        Raises:
            AuthorizationError: If the actor is not an admin
            ValidationError: If the resolution is inconsistent
            AlreadyResolvedError: If the dispute already has a resolution
            InvalidStateTransitionError: If the dispute was closed
        """
        require_admin(actor, "resolve_dispute")
        replayed = self._replay("resolve_dispute", idempotency_key, dispute_id)
        if replayed is not None:
            return replayed

        dispute = self.get_dispute(dispute_id)
        if dispute.resolution is not None or dispute.status == DisputeStatus.RESOLVED:
            raise AlreadyResolvedError(ErrorCode.ALREADY_RESOLVED, details={"dispute_id": dispute_id})

        booking = self.bookings.get_booking(dispute.booking_id)
        validate_resolution(resolution, booking)

        refund = None
        extra_ops: list[dict[str, Any]] = []
        if resolution.amount is not None:
            request_id = dispute.cancellation_request_id
            if request_id is None and dispute.refund_record_id:
                request_id = self.refunds.get_refund(dispute.refund_record_id).cancellation_request_id
            if request_id is None:
                raise ValidationError(
                    ErrorCode.INVALID_RESOLUTION,
                    details={"dispute_id": dispute_id, "reason": "no cancellation to refund against"},
                )
            method = (
                RefundMethod.CREDIT
                if resolution.type == ResolutionType.CREDIT
                else RefundMethod.ORIGINAL_PAYMENT
            )
            refund, create_op = self.refunds.create_compensating_refund(
                dispute_id=dispute_id,
                cancellation_request_id=request_id,
                booking_id=dispute.booking_id,
                amount=resolution.amount,
                initiated_by=actor.user_id,
                method=method,
            )
            extra_ops.append(create_op)

        now = dt.datetime.now(dt.UTC)
        resolved = self._transition(
            dispute,
            "resolve_dispute",
            ACTIVE_STATUSES,
            {
                "status": DisputeStatus.RESOLVED,
                "resolved_at": now,
                "resolution": Resolution(
                    **resolution.model_dump(),
                    resolved_by=actor.user_id,
                    compensating_refund_id=refund.refund_id if refund else None,
                ),
            },
            idempotency_key,
            extra_ops,
        )
        log_dispute_event(
            logger,
            "resolved",
            dispute_id,
            status=resolved.status.value,
            actor_id=actor.user_id,
            result="success",
            resolution_type=resolution.type.value,
            compensating_refund_id=refund.refund_id if refund else None,
        )
        self._notify(NotificationTemplate.DISPUTE_RESOLVED, resolved, booking)
        return resolved

    def add_evidence(self, actor: Actor, dispute_id: str, evidence: EvidenceCreate) -> DisputeCase:
        """Append evidence to an active dispute."""
        dispute = self.get_dispute(dispute_id)
        booking = self.bookings.get_booking(dispute.booking_id)
        self._check_participant(actor, booking, "add_evidence")
        entry = self._build_evidence(actor, evidence, dt.datetime.now(dt.UTC))
        updated = self._append(dispute, "evidence", entry.model_dump(mode="json"), "add_evidence")
        log_dispute_event(
            logger,
            "evidence_added",
            dispute_id,
            actor_id=actor.user_id,
            result="success",
            evidence_id=entry.evidence_id,
        )
        return updated

    def add_communication(
        self,
        actor: Actor,
        dispute_id: str,
        message: str,
        is_internal: bool = False,
    ) -> DisputeCase:
        """Append a message to an active dispute.

        Raises:
            AuthorizationError: If a non-admin posts an internal note
        """
        if is_internal and not actor.is_admin:
            raise AuthorizationError(
                ErrorCode.FORBIDDEN,
                details={"action": "add_internal_communication", "user_id": actor.user_id},
            )
        if not message.strip():
            raise ValidationError(ErrorCode.INVALID_MESSAGE, details={"dispute_id": dispute_id})

        dispute = self.get_dispute(dispute_id)
        booking = self.bookings.get_booking(dispute.booking_id)
        self._check_participant(actor, booking, "add_communication")
        entry = Communication(
            communication_id=self._generate_id("MSG"),
            from_user_id=actor.user_id,
            from_user_role=actor.role,
            message=message,
            sent_at=dt.datetime.now(dt.UTC),
            is_internal=is_internal,
        )
        updated = self._append(
            dispute, "communications", entry.model_dump(mode="json"), "add_communication"
        )
        log_dispute_event(
            logger,
            "communication_added",
            dispute_id,
            actor_id=actor.user_id,
            result="success",
            is_internal=is_internal,
        )
        return updated

    def _append(
        self,
        dispute: DisputeCase,
        field: str,
        entry: dict[str, Any],
        action: str,
    ) -> DisputeCase:
        """Append to a list attribute while the dispute is still active.

        Appends from concurrent writers all land; only the status is guarded.
        """
        if dispute.status not in ACTIVE_STATUSES:
            raise_transition_failure("dispute", dispute.dispute_id, action, dispute.status, ACTIVE_STATUSES)

        values: dict[str, Any] = {
            ":entry": [entry],
            ":empty": [],
            ":now": dt.datetime.now(dt.UTC).isoformat(),
            ":one": 1,
        }
        placeholders = []
        for index, state in enumerate(ACTIVE_STATUSES):
            values[f":active{index}"] = state.value
            placeholders.append(f":active{index}")

        attributes = self.db.update_item(
            self.DISPUTES_TABLE,
            {"dispute_id": dispute.dispute_id},
            "SET #list = list_append(if_not_exists(#list, :empty), :entry), "
            "updated_at = :now, #version = #version + :one",
            values,
            {"#list": field, "#status": "status", "#version": "version"},
            f"attribute_exists(dispute_id) AND #status IN ({', '.join(placeholders)})",
        )
        if attributes is None:
            current = self.get_dispute(dispute.dispute_id)
            raise_transition_failure(
                "dispute", dispute.dispute_id, action, current.status, ACTIVE_STATUSES
            )
        return DisputeCase.model_validate(attributes)

    def _notify(self, template: NotificationTemplate, dispute: DisputeCase, booking: Booking) -> None:
        if self.notifications is None:
            return
        resolution = dispute.resolution
        self.notifications.notify(
            template,
            booking.customer_id,
            {
                "dispute_id": dispute.dispute_id,
                "booking_id": dispute.booking_id,
                "title": dispute.title,
                "status": dispute.status.value,
                "resolution": resolution.type.value if resolution else None,
                "resolution_description": resolution.description if resolution else None,
                "amount": resolution.amount if resolution else None,
            },
            recipient_email=booking.customer_email,
        )

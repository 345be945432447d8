"""Unit tests for DisputeService."""

import pytest

from refund_engine.models import (
    AlreadyResolvedError,
    AuthorizationError,
    DisputeCreate,
    DisputeStatus,
    DisputeType,
    ErrorCode,
    EvidenceCreate,
    InvalidStateTransitionError,
    NotFoundError,
    RefundMethod,
    RefundStatus,
    ResolutionCreate,
    ResolutionType,
    ValidationError,
)


@pytest.fixture
def approved_request(cancellation_service, booking, customer, admin, cancel_before_service):
    request = cancellation_service.create_request(
        customer,
        booking.booking_id,
        "SCHEDULE_CONFLICT",
        "create-1",
        cancellation_time=cancel_before_service(50),
    )
    return cancellation_service.approve_request(admin, request.request_id, "approve-1")


@pytest.fixture
def dispute(dispute_service, approved_request, customer):
    """Customer disputes the 1336 refund of an approved cancellation."""
    return dispute_service.open_dispute(
        customer,
        DisputeCreate(
            booking_id=approved_request.booking_id,
            cancellation_request_id=approved_request.request_id,
            refund_record_id=approved_request.refund_record_id,
            type=DisputeType.REFUND_DISPUTE,
            title="Guide cancelled the meeting point",
            description="The meeting point changed and I could not attend.",
            evidence=[EvidenceCreate(title="Email", content="Message from the guide")],
        ),
        "open-1",
    )


def _resolution(type_: ResolutionType, amount: int | None = None) -> ResolutionCreate:
    return ResolutionCreate(type=type_, amount=amount, description="Agreed with both parties")


class TestOpenDispute:
    def test_opened_dispute_is_open(self, dispute, customer) -> None:
        assert dispute.status == DisputeStatus.OPEN
        assert dispute.opened_by == customer.user_id
        assert len(dispute.evidence) == 1
        assert dispute.evidence[0].uploaded_by == customer.user_id

    def test_guide_can_open_dispute(self, dispute_service, booking, guide) -> None:
        opened = dispute_service.open_dispute(
            guide,
            DisputeCreate(
                booking_id=booking.booking_id,
                type=DisputeType.SERVICE_QUALITY,
                title="No show",
                description="Customer never arrived",
            ),
            "open-guide",
        )

        assert opened.opened_by == guide.user_id
        assert [d.dispute_id for d in dispute_service.get_disputes_for_booking(booking.booking_id)] == [
            opened.dispute_id
        ]

    def test_outsider_cannot_open_dispute(self, dispute_service, booking, stranger) -> None:
        with pytest.raises(AuthorizationError):
            dispute_service.open_dispute(
                stranger,
                DisputeCreate(
                    booking_id=booking.booking_id,
                    type=DisputeType.SERVICE_QUALITY,
                    title="Hello",
                    description="Not my booking",
                ),
                "open-1",
            )

    def test_link_to_unknown_refund_is_rejected(self, dispute_service, booking, customer) -> None:
        with pytest.raises(NotFoundError) as exc_info:
            dispute_service.open_dispute(
                customer,
                DisputeCreate(
                    booking_id=booking.booking_id,
                    refund_record_id="REF-NOPE",
                    type=DisputeType.REFUND_DISPUTE,
                    title="Missing refund",
                    description="Where is it",
                ),
                "open-1",
            )

        assert exc_info.value.code == ErrorCode.REFUND_NOT_FOUND

    def test_empty_evidence_is_rejected(self, dispute_service, booking, customer) -> None:
        with pytest.raises(ValidationError) as exc_info:
            dispute_service.open_dispute(
                customer,
                DisputeCreate(
                    booking_id=booking.booking_id,
                    type=DisputeType.SERVICE_QUALITY,
                    title="Bad tour",
                    description="Very bad",
                    evidence=[EvidenceCreate(title=" ", content="x")],
                ),
                "open-1",
            )

        assert exc_info.value.code == ErrorCode.INVALID_EVIDENCE

    def test_same_key_returns_same_dispute(self, dispute_service, dispute, customer) -> None:
        again = dispute_service.open_dispute(
            customer,
            DisputeCreate(
                booking_id=dispute.booking_id,
                type=DisputeType.REFUND_DISPUTE,
                title="Different title",
                description="Retried request",
            ),
            "open-1",
        )

        assert again.dispute_id == dispute.dispute_id
        assert len(dispute_service.list_disputes()) == 1


class TestWorkflow:
    def test_investigate_then_escalate(self, dispute_service, dispute, admin) -> None:
        investigating = dispute_service.investigate_dispute(admin, dispute.dispute_id, "inv-1")

        assert investigating.status == DisputeStatus.INVESTIGATING
        assert investigating.assigned_to == admin.user_id

        escalated = dispute_service.escalate_dispute(admin, dispute.dispute_id, "esc-1")

        assert escalated.status == DisputeStatus.ESCALATED
        assert dispute_service.get_dispute(dispute.dispute_id).version == 2

    def test_open_dispute_cannot_be_escalated(self, dispute_service, dispute, admin) -> None:
        with pytest.raises(InvalidStateTransitionError):
            dispute_service.escalate_dispute(admin, dispute.dispute_id, "esc-1")

    def test_close_sets_closed_at(self, dispute_service, dispute, admin) -> None:
        closed = dispute_service.close_dispute(admin, dispute.dispute_id, "close-1")

        assert closed.status == DisputeStatus.CLOSED
        assert closed.closed_at is not None
        assert closed.resolution is None

    def test_closed_dispute_accepts_no_appends(self, dispute_service, dispute, admin, customer) -> None:
        dispute_service.close_dispute(admin, dispute.dispute_id, "close-1")

        with pytest.raises(InvalidStateTransitionError):
            dispute_service.add_communication(customer, dispute.dispute_id, "Hello?")
        with pytest.raises(InvalidStateTransitionError):
            dispute_service.add_evidence(
                customer, dispute.dispute_id, EvidenceCreate(title="Late", content="More")
            )
        with pytest.raises(InvalidStateTransitionError):
            dispute_service.resolve_dispute(
                admin, dispute.dispute_id, _resolution(ResolutionType.NO_REFUND), "resolve-1"
            )

    def test_key_reused_on_another_dispute_is_rejected(
        self, dispute_service, dispute, booking, guide, admin
    ) -> None:
        other = dispute_service.open_dispute(
            guide,
            DisputeCreate(
                booking_id=booking.booking_id,
                type=DisputeType.SERVICE_QUALITY,
                title="No show",
                description="Customer never arrived",
            ),
            "open-guide",
        )
        dispute_service.investigate_dispute(admin, dispute.dispute_id, "inv-1")

        with pytest.raises(ValidationError) as exc_info:
            dispute_service.investigate_dispute(admin, other.dispute_id, "inv-1")

        assert exc_info.value.code == ErrorCode.IDEMPOTENCY_KEY_REUSED
        assert dispute_service.get_dispute(other.dispute_id).status == DisputeStatus.OPEN

    def test_only_admins_drive_the_workflow(self, dispute_service, dispute, customer) -> None:
        with pytest.raises(AuthorizationError):
            dispute_service.investigate_dispute(customer, dispute.dispute_id, "inv-1")
        with pytest.raises(AuthorizationError):
            dispute_service.resolve_dispute(
                customer, dispute.dispute_id, _resolution(ResolutionType.NO_REFUND), "resolve-1"
            )


class TestResolution:
    def test_partial_refund_creates_compensating_refund(
        self, dispute_service, refund_service, dispute, approved_request, admin
    ) -> None:
        dispute_service.investigate_dispute(admin, dispute.dispute_id, "inv-1")

        resolved = dispute_service.resolve_dispute(
            admin,
            dispute.dispute_id,
            _resolution(ResolutionType.PARTIAL_REFUND, 500),
            "resolve-1",
        )

        assert resolved.status == DisputeStatus.RESOLVED
        assert resolved.resolved_at is not None
        refund_id = resolved.resolution.compensating_refund_id
        compensating = refund_service.get_refund(refund_id)
        assert compensating.amount == 500
        assert compensating.status == RefundStatus.PENDING
        assert compensating.dispute_id == dispute.dispute_id
        assert compensating.cancellation_request_id == approved_request.request_id

        original = refund_service.get_refund(approved_request.refund_record_id)
        assert original.amount == 1336
        assert original.version == 0
        assert original.dispute_id is None

    def test_credit_resolution_refunds_as_credit(
        self, dispute_service, refund_service, dispute, admin
    ) -> None:
        resolved = dispute_service.resolve_dispute(
            admin, dispute.dispute_id, _resolution(ResolutionType.CREDIT, 200), "resolve-1"
        )

        refund = refund_service.get_refund(resolved.resolution.compensating_refund_id)
        assert refund.method == RefundMethod.CREDIT

    def test_no_refund_resolution_creates_no_refund(
        self, dispute_service, refund_service, dispute, approved_request, admin
    ) -> None:
        resolved = dispute_service.resolve_dispute(
            admin, dispute.dispute_id, _resolution(ResolutionType.NO_REFUND), "resolve-1"
        )

        assert resolved.resolution.compensating_refund_id is None
        assert len(refund_service.get_refunds_for_request(approved_request.request_id)) == 1

    def test_second_resolution_is_rejected(self, dispute_service, dispute, admin) -> None:
        dispute_service.resolve_dispute(
            admin, dispute.dispute_id, _resolution(ResolutionType.NO_REFUND), "resolve-1"
        )

        with pytest.raises(AlreadyResolvedError):
            dispute_service.resolve_dispute(
                admin,
                dispute.dispute_id,
                _resolution(ResolutionType.PARTIAL_REFUND, 100),
                "resolve-2",
            )

    def test_same_key_returns_first_resolution(
        self, dispute_service, refund_service, dispute, approved_request, admin
    ) -> None:
        first = dispute_service.resolve_dispute(
            admin, dispute.dispute_id, _resolution(ResolutionType.PARTIAL_REFUND, 500), "resolve-1"
        )
        second = dispute_service.resolve_dispute(
            admin, dispute.dispute_id, _resolution(ResolutionType.PARTIAL_REFUND, 500), "resolve-1"
        )

        assert second.resolution.compensating_refund_id == first.resolution.compensating_refund_id
        assert len(refund_service.get_refunds_for_request(approved_request.request_id)) == 2

    @pytest.mark.parametrize(
        "type_, amount, code",
        [
            (ResolutionType.PARTIAL_REFUND, None, ErrorCode.INVALID_RESOLUTION),
            (ResolutionType.NO_REFUND, 100, ErrorCode.INVALID_RESOLUTION),
            (ResolutionType.FULL_REFUND, 0, ErrorCode.INVALID_AMOUNT),
            (ResolutionType.PARTIAL_REFUND, 1849, ErrorCode.INVALID_AMOUNT),
        ],
    )
    def test_inconsistent_resolution_is_rejected(
        self, dispute_service, dispute, admin, type_, amount, code
    ) -> None:
        with pytest.raises(ValidationError) as exc_info:
            dispute_service.resolve_dispute(
                admin, dispute.dispute_id, _resolution(type_, amount), "resolve-1"
            )

        assert exc_info.value.code == code
        assert dispute_service.get_dispute(dispute.dispute_id).status == DisputeStatus.OPEN

    def test_amount_without_cancellation_link_is_rejected(
        self, dispute_service, booking, guide, admin
    ) -> None:
        opened = dispute_service.open_dispute(
            guide,
            DisputeCreate(
                booking_id=booking.booking_id,
                type=DisputeType.SERVICE_QUALITY,
                title="Quality",
                description="Unlinked",
            ),
            "open-guide",
        )

        with pytest.raises(ValidationError) as exc_info:
            dispute_service.resolve_dispute(
                admin, opened.dispute_id, _resolution(ResolutionType.PARTIAL_REFUND, 100), "resolve-1"
            )

        assert exc_info.value.code == ErrorCode.INVALID_RESOLUTION


class TestCommunications:
    def test_internal_notes_are_hidden_from_customers(
        self, dispute_service, dispute, customer, admin
    ) -> None:
        dispute_service.add_communication(customer, dispute.dispute_id, "Any update?")
        dispute_service.add_communication(
            admin, dispute.dispute_id, "Guide confirmed the change", is_internal=True
        )

        customer_view = dispute_service.view_dispute(customer, dispute.dispute_id)
        admin_view = dispute_service.view_dispute(admin, dispute.dispute_id)

        assert [c.message for c in customer_view.communications] == ["Any update?"]
        assert len(admin_view.communications) == 2

    def test_non_admin_cannot_post_internal_notes(self, dispute_service, dispute, guide) -> None:
        with pytest.raises(AuthorizationError):
            dispute_service.add_communication(guide, dispute.dispute_id, "psst", is_internal=True)

    def test_empty_message_is_rejected(self, dispute_service, dispute, customer) -> None:
        with pytest.raises(ValidationError) as exc_info:
            dispute_service.add_communication(customer, dispute.dispute_id, "   ")

        assert exc_info.value.code == ErrorCode.INVALID_MESSAGE

    def test_evidence_appends_keep_earlier_entries(self, dispute_service, dispute, guide) -> None:
        updated = dispute_service.add_evidence(
            guide, dispute.dispute_id, EvidenceCreate(title="Chat log", content="https://x.test/log")
        )

        assert [e.title for e in updated.evidence] == ["Email", "Chat log"]
        assert updated.version == dispute.version + 1

    def test_outsider_cannot_view(self, dispute_service, dispute, stranger) -> None:
        with pytest.raises(AuthorizationError):
            dispute_service.view_dispute(stranger, dispute.dispute_id)

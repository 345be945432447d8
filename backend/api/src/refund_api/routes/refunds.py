"""Refund endpoints.

Provides REST endpoints for:
- Advancing a refund through PROCESSING, APPROVED and COMPLETED (admin only)
- Failing, rejecting and retrying refunds (admin only)
- Receiving payment gateway results
- Refund statistics (admin only)
"""

from fastapi import APIRouter, Depends, Header, Query, Request
from starlette.status import HTTP_201_CREATED

from refund_api.dependencies import (
    get_actor,
    get_booking_service,
    get_idempotency_key,
    get_refund_service,
)
from refund_api.models.refunds import (
    AdvanceRefundRequest,
    FailRefundRequest,
    RejectRefundRequest,
)
from refund_engine.models import (
    Actor,
    AuthorizationError,
    ErrorCode,
    GatewayResult,
    RefundError,
    RefundRecord,
    RefundStatistics,
    RefundStatus,
)
from refund_engine.services import BookingService, RefundService
from refund_engine.services.payment_gateway import verify_gateway_signature
from refund_engine.services.refund_service import require_admin

router = APIRouter(tags=["refunds"])


@router.get(
    "/refunds/statistics",
    summary="Refund statistics",
    description="Totals, counts by status, reason and month, and processing times. **Admin only.**",
    response_model=RefundStatistics,
)
async def refund_statistics(
    actor: Actor = Depends(get_actor),
    service: RefundService = Depends(get_refund_service),
) -> RefundStatistics:
    require_admin(actor, "refund_statistics")
    return service.get_statistics()


@router.get(
    "/refunds",
    summary="List refunds",
    description="List refunds, newest first. **Admin only.**",
    response_model=list[RefundRecord],
)
async def list_refunds(
    status: RefundStatus | None = Query(default=None),
    cancellation_request_id: str | None = Query(default=None),
    actor: Actor = Depends(get_actor),
    service: RefundService = Depends(get_refund_service),
) -> list[RefundRecord]:
    require_admin(actor, "list_refunds")
    if cancellation_request_id:
        refunds = service.get_refunds_for_request(cancellation_request_id)
        return [r for r in refunds if status is None or r.status == status]
    return service.list_refunds(status)


@router.get(
    "/refunds/{refund_id}",
    summary="Get refund",
    description="Get a refund. Visible to admins and to the booking customer.",
    response_model=RefundRecord,
)
async def get_refund(
    refund_id: str,
    actor: Actor = Depends(get_actor),
    service: RefundService = Depends(get_refund_service),
    bookings: BookingService = Depends(get_booking_service),
) -> RefundRecord:
    refund = service.get_refund(refund_id)
    if not actor.is_admin:
        booking = bookings.get_booking(refund.booking_id)
        if booking.customer_id != actor.user_id:
            raise AuthorizationError(
                ErrorCode.FORBIDDEN, details={"refund_id": refund_id, "user_id": actor.user_id}
            )
    return refund


@router.post(
    "/refunds/{refund_id}/advance",
    summary="Advance refund",
    description="""
Move a refund one stage forward. **Admin only.**

PENDING → PROCESSING → APPROVED → COMPLETED; stages cannot be skipped.
Completing requires an external transaction id, supplied here or attached
earlier by the payment gateway.
""",
    response_model=RefundRecord,
)
async def advance_refund(
    refund_id: str,
    body: AdvanceRefundRequest,
    actor: Actor = Depends(get_actor),
    idempotency_key: str = Depends(get_idempotency_key),
    service: RefundService = Depends(get_refund_service),
) -> RefundRecord:
    return service.advance_refund(
        actor,
        refund_id,
        body.stage,
        idempotency_key,
        external_transaction_id=body.external_transaction_id,
        notes=body.notes,
    )


@router.post(
    "/refunds/{refund_id}/fail",
    summary="Fail refund",
    description="Mark a non-terminal refund FAILED with an error. **Admin only.**",
    response_model=RefundRecord,
)
async def fail_refund(
    refund_id: str,
    body: FailRefundRequest,
    actor: Actor = Depends(get_actor),
    idempotency_key: str = Depends(get_idempotency_key),
    service: RefundService = Depends(get_refund_service),
) -> RefundRecord:
    error = RefundError(code=body.code, message=body.message, details=body.details)
    return service.fail_refund(actor, refund_id, error, idempotency_key)


@router.post(
    "/refunds/{refund_id}/reject",
    summary="Reject refund",
    description="Decline a PENDING or PROCESSING refund. **Admin only.**",
    response_model=RefundRecord,
)
async def reject_refund(
    refund_id: str,
    body: RejectRefundRequest,
    actor: Actor = Depends(get_actor),
    idempotency_key: str = Depends(get_idempotency_key),
    service: RefundService = Depends(get_refund_service),
) -> RefundRecord:
    return service.reject_refund(actor, refund_id, idempotency_key, notes=body.notes)


@router.post(
    "/refunds/{refund_id}/retry",
    summary="Retry failed refund",
    description="""
Create a new PENDING refund superseding a FAILED one. **Admin only.**

The failed record keeps its status and error; it only gains a link to the
new record. A failed refund can be retried once.
""",
    response_model=RefundRecord,
    status_code=HTTP_201_CREATED,
)
async def retry_refund(
    refund_id: str,
    actor: Actor = Depends(get_actor),
    idempotency_key: str = Depends(get_idempotency_key),
    service: RefundService = Depends(get_refund_service),
) -> RefundRecord:
    return service.retry_refund(actor, refund_id, idempotency_key)


@router.post(
    "/refunds/{refund_id}/gateway-result",
    summary="Payment gateway callback",
    description="""
Report the outcome of a refund transfer.

Success completes an APPROVED refund with the external transaction id;
failure moves the refund to FAILED with the gateway's error.

The request must carry an `X-Gateway-Signature` header: the hex
HMAC-SHA256 of the raw body keyed with the shared gateway secret.
Unsigned or wrongly signed callbacks are rejected with 403.
""",
    response_model=RefundRecord,
)
async def gateway_result(
    refund_id: str,
    body: GatewayResult,
    request: Request,
    x_gateway_signature: str | None = Header(default=None),
    idempotency_key: str = Depends(get_idempotency_key),
    service: RefundService = Depends(get_refund_service),
) -> RefundRecord:
    verify_gateway_signature(await request.body(), x_gateway_signature)
    return service.record_gateway_result(refund_id, body, idempotency_key)

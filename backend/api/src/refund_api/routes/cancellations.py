"""Cancellation request endpoints.

Provides REST endpoints for:
- Quoting the refund a cancellation would get (booking customer or admin)
- Creating cancellation requests (booking customer or admin)
- Approving and rejecting requests (admin only)
- Reading requests

The acting user comes from the X-User-Sub and X-User-Role headers set by the
upstream authorizer. Mutating commands require an Idempotency-Key header.
"""

from fastapi import APIRouter, Depends, Query
from starlette.status import HTTP_201_CREATED

from refund_api.dependencies import (
    get_actor,
    get_cancellation_service,
    get_idempotency_key,
)
from refund_api.models.cancellations import (
    ApproveCancellationRequest,
    CreateCancellationRequest,
    QuoteRequest,
    RejectCancellationRequest,
)
from refund_engine.models import (
    Actor,
    AuthorizationError,
    CancellationRequest,
    CancellationStatus,
    ErrorCode,
    RefundCalculation,
)
from refund_engine.services import CancellationService

router = APIRouter(tags=["cancellations"])


@router.post(
    "/cancellations/quote",
    summary="Quote a cancellation",
    description="""
Preview the refund a cancellation of this booking would get now.

Nothing is stored; the actual request snapshots its own calculation.
""",
    response_model=RefundCalculation,
)
async def quote_cancellation(
    body: QuoteRequest,
    actor: Actor = Depends(get_actor),
    service: CancellationService = Depends(get_cancellation_service),
) -> RefundCalculation:
    return service.quote(actor, body.booking_id, body.cancellation_time)


@router.post(
    "/cancellations",
    summary="Create cancellation request",
    description="""
Create a PENDING cancellation request for a booking.

**Only the booking customer or an admin can cancel.**

**Notes:**
- The refund calculation is snapshotted at creation and never recomputed
- A booking can have only one PENDING request (409 otherwise)
- Reason OTHER requires custom_reason
""",
    response_model=CancellationRequest,
    status_code=HTTP_201_CREATED,
    responses={
        201: {"description": "Request created"},
        400: {"description": "Invalid reason or missing Idempotency-Key"},
        403: {"description": "Not the booking customer"},
        404: {"description": "Booking not found"},
        409: {"description": "Booking already has an active request"},
        422: {"description": "No cancellation policy applies"},
    },
)
async def create_cancellation(
    body: CreateCancellationRequest,
    actor: Actor = Depends(get_actor),
    idempotency_key: str = Depends(get_idempotency_key),
    service: CancellationService = Depends(get_cancellation_service),
) -> CancellationRequest:
    return service.create_request(
        actor,
        body.booking_id,
        body.reason,
        idempotency_key,
        description=body.description,
        custom_reason=body.custom_reason,
    )


@router.post(
    "/cancellations/{request_id}/approve",
    summary="Approve cancellation request",
    description="""
Approve a PENDING request. **Admin only.**

Creates a PENDING refund for the snapshot's final amount, or for
custom_refund_amount when given. No refund is created for a zero amount.
""",
    response_model=CancellationRequest,
)
async def approve_cancellation(
    request_id: str,
    body: ApproveCancellationRequest,
    actor: Actor = Depends(get_actor),
    idempotency_key: str = Depends(get_idempotency_key),
    service: CancellationService = Depends(get_cancellation_service),
) -> CancellationRequest:
    return service.approve_request(
        actor,
        request_id,
        idempotency_key,
        notes=body.notes,
        refund_method=body.refund_method,
        custom_refund_amount=body.custom_refund_amount,
    )


@router.post(
    "/cancellations/{request_id}/reject",
    summary="Reject cancellation request",
    description="Reject a PENDING request. **Admin only.** No refund is created.",
    response_model=CancellationRequest,
)
async def reject_cancellation(
    request_id: str,
    body: RejectCancellationRequest,
    actor: Actor = Depends(get_actor),
    idempotency_key: str = Depends(get_idempotency_key),
    service: CancellationService = Depends(get_cancellation_service),
) -> CancellationRequest:
    return service.reject_request(actor, request_id, idempotency_key, notes=body.notes)


@router.get(
    "/cancellations/{request_id}",
    summary="Get cancellation request",
    response_model=CancellationRequest,
)
async def get_cancellation(
    request_id: str,
    actor: Actor = Depends(get_actor),
    service: CancellationService = Depends(get_cancellation_service),
) -> CancellationRequest:
    request = service.get_request(request_id)
    if not actor.is_admin and request.user_id != actor.user_id:
        raise AuthorizationError(
            ErrorCode.FORBIDDEN, details={"request_id": request_id, "user_id": actor.user_id}
        )
    return request


@router.get(
    "/cancellations",
    summary="List cancellation requests",
    description="""
List cancellation requests, newest first.

Admins see every request; other users only see their own.
Filter by booking_id or status.
""",
    response_model=list[CancellationRequest],
)
async def list_cancellations(
    booking_id: str | None = Query(default=None),
    status: CancellationStatus | None = Query(default=None),
    actor: Actor = Depends(get_actor),
    service: CancellationService = Depends(get_cancellation_service),
) -> list[CancellationRequest]:
    if booking_id:
        requests = service.get_requests_for_booking(booking_id)
        if status:
            requests = [r for r in requests if r.status == status]
    else:
        requests = service.list_requests(status)
    if not actor.is_admin:
        requests = [r for r in requests if r.user_id == actor.user_id]
    return requests

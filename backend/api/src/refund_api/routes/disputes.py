"""Dispute endpoints.

Provides REST endpoints for:
- Opening disputes (parties to the booking)
- Appending evidence and communications (parties to the booking)
- Investigating, escalating, resolving and closing disputes (admin only)

Internal communications are stripped from every response sent to a
non-admin.
"""

from fastapi import APIRouter, Depends, Query
from starlette.status import HTTP_201_CREATED

from refund_api.dependencies import (
    get_actor,
    get_dispute_service,
    get_idempotency_key,
)
from refund_api.models.disputes import CommunicationRequest, InvestigateDisputeRequest
from refund_engine.models import (
    Actor,
    DisputeCase,
    DisputeCreate,
    DisputeStatus,
    EvidenceCreate,
    ResolutionCreate,
)
from refund_engine.services import DisputeService
from refund_engine.services.refund_service import require_admin

router = APIRouter(tags=["disputes"])


@router.post(
    "/disputes",
    summary="Open dispute",
    description="""
Open a dispute on a booking, optionally linked to a cancellation request or
refund and with initial evidence.

**Only the booking customer, its guide or an admin can open a dispute.**
""",
    response_model=DisputeCase,
    status_code=HTTP_201_CREATED,
)
async def open_dispute(
    body: DisputeCreate,
    actor: Actor = Depends(get_actor),
    idempotency_key: str = Depends(get_idempotency_key),
    service: DisputeService = Depends(get_dispute_service),
) -> DisputeCase:
    dispute = service.open_dispute(actor, body, idempotency_key)
    return service.visible_dispute(dispute, actor)


@router.get(
    "/disputes",
    summary="List disputes",
    description="List disputes, newest first. **Admin only.**",
    response_model=list[DisputeCase],
)
async def list_disputes(
    status: DisputeStatus | None = Query(default=None),
    booking_id: str | None = Query(default=None),
    actor: Actor = Depends(get_actor),
    service: DisputeService = Depends(get_dispute_service),
) -> list[DisputeCase]:
    require_admin(actor, "list_disputes")
    if booking_id:
        disputes = service.get_disputes_for_booking(booking_id)
        return [d for d in disputes if status is None or d.status == status]
    return service.list_disputes(status)


@router.get(
    "/disputes/{dispute_id}",
    summary="Get dispute",
    response_model=DisputeCase,
)
async def get_dispute(
    dispute_id: str,
    actor: Actor = Depends(get_actor),
    service: DisputeService = Depends(get_dispute_service),
) -> DisputeCase:
    return service.view_dispute(actor, dispute_id)


@router.post(
    "/disputes/{dispute_id}/investigate",
    summary="Investigate dispute",
    description="OPEN → INVESTIGATING, assigning the case. **Admin only.**",
    response_model=DisputeCase,
)
async def investigate_dispute(
    dispute_id: str,
    body: InvestigateDisputeRequest,
    actor: Actor = Depends(get_actor),
    idempotency_key: str = Depends(get_idempotency_key),
    service: DisputeService = Depends(get_dispute_service),
) -> DisputeCase:
    return service.investigate_dispute(
        actor, dispute_id, idempotency_key, assigned_to=body.assigned_to
    )


@router.post(
    "/disputes/{dispute_id}/escalate",
    summary="Escalate dispute",
    description="INVESTIGATING → ESCALATED. **Admin only.**",
    response_model=DisputeCase,
)
async def escalate_dispute(
    dispute_id: str,
    actor: Actor = Depends(get_actor),
    idempotency_key: str = Depends(get_idempotency_key),
    service: DisputeService = Depends(get_dispute_service),
) -> DisputeCase:
    return service.escalate_dispute(actor, dispute_id, idempotency_key)


@router.post(
    "/disputes/{dispute_id}/close",
    summary="Close dispute",
    description="Close an active dispute without a resolution. **Admin only.**",
    response_model=DisputeCase,
)
async def close_dispute(
    dispute_id: str,
    actor: Actor = Depends(get_actor),
    idempotency_key: str = Depends(get_idempotency_key),
    service: DisputeService = Depends(get_dispute_service),
) -> DisputeCase:
    return service.close_dispute(actor, dispute_id, idempotency_key)


@router.post(
    "/disputes/{dispute_id}/resolve",
    summary="Resolve dispute",
    description="""
Resolve an active dispute. **Admin only.**

With an amount, a compensating refund is created together with the
resolution. A dispute can be resolved once (409 afterwards).
""",
    response_model=DisputeCase,
)
async def resolve_dispute(
    dispute_id: str,
    body: ResolutionCreate,
    actor: Actor = Depends(get_actor),
    idempotency_key: str = Depends(get_idempotency_key),
    service: DisputeService = Depends(get_dispute_service),
) -> DisputeCase:
    return service.resolve_dispute(actor, dispute_id, body, idempotency_key)


@router.post(
    "/disputes/{dispute_id}/evidence",
    summary="Add evidence",
    response_model=DisputeCase,
    status_code=HTTP_201_CREATED,
)
async def add_evidence(
    dispute_id: str,
    body: EvidenceCreate,
    actor: Actor = Depends(get_actor),
    service: DisputeService = Depends(get_dispute_service),
) -> DisputeCase:
    dispute = service.add_evidence(actor, dispute_id, body)
    return service.visible_dispute(dispute, actor)


@router.post(
    "/disputes/{dispute_id}/communications",
    summary="Add communication",
    description="Post a message on the case. Internal notes are admin only.",
    response_model=DisputeCase,
    status_code=HTTP_201_CREATED,
)
async def add_communication(
    dispute_id: str,
    body: CommunicationRequest,
    actor: Actor = Depends(get_actor),
    service: DisputeService = Depends(get_dispute_service),
) -> DisputeCase:
    dispute = service.add_communication(
        actor, dispute_id, body.message, is_internal=body.is_internal
    )
    return service.visible_dispute(dispute, actor)

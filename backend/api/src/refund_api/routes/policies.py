"""Cancellation policy endpoints.

Reading policies is open to any authenticated user; writing is admin only.
"""

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel

from refund_api.dependencies import get_actor, get_policy_store
from refund_engine.models import Actor, CancellationPolicy
from refund_engine.services import PolicyStore, RefundCalculator
from refund_engine.services.refund_service import require_admin

router = APIRouter(tags=["policies"])


class PolicySummary(BaseModel):
    """Human-readable rendering of a policy's brackets."""

    policy_id: str
    summary: str


@router.get(
    "/policies",
    summary="List cancellation policies",
    response_model=list[CancellationPolicy],
)
async def list_policies(
    tenant_id: str | None = Query(default=None),
    actor: Actor = Depends(get_actor),
    store: PolicyStore = Depends(get_policy_store),
) -> list[CancellationPolicy]:
    return store.list_policies(tenant_id)


@router.get(
    "/policies/{policy_id}",
    summary="Get cancellation policy",
    response_model=CancellationPolicy,
)
async def get_policy(
    policy_id: str,
    actor: Actor = Depends(get_actor),
    store: PolicyStore = Depends(get_policy_store),
) -> CancellationPolicy:
    return store.get_policy(policy_id)


@router.get(
    "/policies/{policy_id}/summary",
    summary="Describe cancellation policy",
    response_model=PolicySummary,
)
async def describe_policy(
    policy_id: str,
    actor: Actor = Depends(get_actor),
    store: PolicyStore = Depends(get_policy_store),
) -> PolicySummary:
    policy = store.get_policy(policy_id)
    return PolicySummary(policy_id=policy_id, summary=RefundCalculator().describe_policy(policy))


@router.put(
    "/policies/{policy_id}",
    summary="Create or replace cancellation policy",
    description="""
Create or replace a policy. **Admin only.**

**Notes:**
- version must equal the stored version (0 for a new policy), else 409
- Rules are stored sorted by hours_before_start, descending
- Thresholds must be unique and at least one rule is required
- Setting is_default clears the tenant's previous default
- Requests already created keep their snapshotted calculation
""",
    response_model=CancellationPolicy,
)
async def put_policy(
    policy_id: str,
    body: CancellationPolicy,
    actor: Actor = Depends(get_actor),
    store: PolicyStore = Depends(get_policy_store),
) -> CancellationPolicy:
    require_admin(actor, "put_policy")
    return store.upsert_policy(body.model_copy(update={"policy_id": policy_id}))

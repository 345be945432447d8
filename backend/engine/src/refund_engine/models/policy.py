"""Cancellation policy and refund calculation models.

Amounts are integers in the smallest currency unit.
"""

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field


class CancellationRule(BaseModel):
    """One refund bracket of a cancellation policy.

    A rule applies when the customer cancels at least ``hours_before_start``
    hours before the service starts.
    """

    model_config = ConfigDict(frozen=True)

    rule_id: str = Field(..., description="Unique rule ID")
    hours_before_start: int = Field(
        ..., ge=0, description="Minimum lead time in hours to qualify"
    )
    refund_percentage: int = Field(
        ..., ge=0, le=100, description="Share of the booking amount refunded"
    )
    processing_fee: int = Field(
        default=0, ge=0, description="Fixed fee deducted from the refund"
    )
    description: str = Field(default="", description="Human-readable rule summary")


class CancellationPolicy(BaseModel):
    """A named, ordered set of cancellation rules."""

    policy_id: str = Field(..., description="Unique policy ID")
    tenant_id: str = Field(default="default", description="Owning tenant")
    name: str = Field(..., min_length=1)
    description: str = Field(default="")
    rules: list[CancellationRule] = Field(
        default_factory=list,
        description="Rules sorted by hours_before_start descending",
    )
    is_default: bool = Field(default=False)
    created_at: datetime | None = None
    updated_at: datetime | None = None
    version: int = Field(default=0, ge=0)


class AppliedPolicy(BaseModel):
    """Reference to the policy and rule a calculation used."""

    model_config = ConfigDict(frozen=True)

    policy_id: str
    policy_name: str
    rule_applied: CancellationRule


class RefundCalculation(BaseModel):
    """Immutable refund quote snapshot.

    Re-quoting produces a new snapshot; an existing one is never edited.
    """

    model_config = ConfigDict(frozen=True)

    total_amount: int = Field(..., gt=0)
    refund_percentage: int = Field(..., ge=0, le=100)
    refund_amount: int = Field(..., ge=0)
    processing_fee: int = Field(..., ge=0)
    final_refund_amount: int = Field(..., ge=0)
    hours_until_service: float
    fallback_applied: bool = Field(
        default=False,
        description="True when no rule qualified and the smallest threshold was used",
    )
    calculated_at: datetime
    policy_applied: AppliedPolicy

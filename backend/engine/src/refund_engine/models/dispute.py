"""Dispute case models."""

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field

from .enums import (
    ActorRole,
    DisputePriority,
    DisputeStatus,
    DisputeType,
    EvidenceType,
    ResolutionType,
)

TERMINAL_DISPUTE_STATUSES = frozenset({DisputeStatus.RESOLVED, DisputeStatus.CLOSED})


class Evidence(BaseModel):
    """A piece of evidence; append-only once stored."""

    model_config = ConfigDict(frozen=True)

    evidence_id: str
    type: EvidenceType = EvidenceType.TEXT
    title: str
    content: str = Field(..., description="Text content or file URL")
    uploaded_by: str
    uploaded_at: datetime


class EvidenceCreate(BaseModel):
    """Evidence submitted by a party."""

    type: EvidenceType = EvidenceType.TEXT
    title: str
    content: str


class Communication(BaseModel):
    """A message on the case thread; append-only once stored."""

    model_config = ConfigDict(frozen=True)

    communication_id: str
    from_user_id: str
    from_user_role: ActorRole
    message: str
    sent_at: datetime
    is_internal: bool = Field(
        default=False, description="Admin-only note, hidden from other roles"
    )


class ResolutionCreate(BaseModel):
    """Resolution submitted by an admin."""

    type: ResolutionType
    amount: int | None = Field(default=None, description="Compensating refund amount")
    description: str = Field(..., min_length=1)
    agreed_by: list[str] = Field(default_factory=list)


class Resolution(BaseModel):
    """Outcome of a dispute; set exactly once."""

    model_config = ConfigDict(frozen=True)

    type: ResolutionType
    amount: int | None = None
    description: str
    agreed_by: list[str] = Field(default_factory=list)
    resolved_by: str
    compensating_refund_id: str | None = None


class DisputeCreate(BaseModel):
    """Data required to open a dispute."""

    booking_id: str
    cancellation_request_id: str | None = None
    refund_record_id: str | None = None
    type: DisputeType
    title: str = Field(..., min_length=1)
    description: str = Field(..., min_length=1)
    priority: DisputePriority = DisputePriority.MEDIUM
    evidence: list[EvidenceCreate] = Field(default_factory=list)


class DisputeCase(BaseModel):
    """A dispute over a cancellation or refund outcome."""

    dispute_id: str
    booking_id: str
    cancellation_request_id: str | None = None
    refund_record_id: str | None = None
    type: DisputeType
    title: str
    description: str
    status: DisputeStatus = DisputeStatus.OPEN
    priority: DisputePriority = DisputePriority.MEDIUM
    opened_by: str
    assigned_to: str | None = None
    evidence: list[Evidence] = Field(default_factory=list)
    communications: list[Communication] = Field(default_factory=list)
    resolution: Resolution | None = None
    created_at: datetime
    updated_at: datetime
    resolved_at: datetime | None = None
    closed_at: datetime | None = None
    version: int = Field(default=0, ge=0)

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_DISPUTE_STATUSES

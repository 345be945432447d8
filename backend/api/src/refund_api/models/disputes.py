"""Request bodies for dispute endpoints."""

from pydantic import BaseModel, Field


class InvestigateDisputeRequest(BaseModel):
    """Body of POST /disputes/{id}/investigate."""

    assigned_to: str | None = Field(
        default=None, description="Admin to assign; defaults to the caller"
    )


class CommunicationRequest(BaseModel):
    """Body of POST /disputes/{id}/communications."""

    message: str = Field(..., min_length=1)
    is_internal: bool = Field(default=False, description="Admin-only note")

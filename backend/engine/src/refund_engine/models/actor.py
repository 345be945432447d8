"""Acting user attached to every command."""

from pydantic import BaseModel, ConfigDict, Field

from .enums import ActorRole


class Actor(BaseModel):
    """The user issuing a command, as identified by the upstream authorizer."""

    model_config = ConfigDict(frozen=True)

    user_id: str = Field(..., min_length=1)
    role: ActorRole

    @property
    def is_admin(self) -> bool:
        return self.role == ActorRole.ADMIN

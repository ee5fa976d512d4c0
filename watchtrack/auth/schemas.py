"""Authenticated caller model."""

from pydantic import BaseModel, ConfigDict, Field

from .permissions import OrgRole, has_permission


class Principal(BaseModel):
    """Caller identity as asserted by the identity provider."""

    model_config = ConfigDict(frozen=True)

    user_id: str = Field(..., min_length=1, description="Subject of the token")
    org_id: str = Field(..., min_length=1, description="Caller's organization")
    role: str = Field(default=OrgRole.LEARNER.value, description="Organization role")
    email: str | None = None

    @property
    def is_admin(self) -> bool:
        return has_permission(self.role, OrgRole.ADMIN)

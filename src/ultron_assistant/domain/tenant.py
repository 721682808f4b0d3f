from pydantic import BaseModel, ConfigDict
from typing import Optional


class TenantUser(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    email: Optional[str] = None


class TenantOrganization(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    name: Optional[str] = None


class TenantContext(BaseModel):
    """Authenticated advisor and the organization whose rows they may read."""

    model_config = ConfigDict(frozen=True)

    user: TenantUser
    organization: TenantOrganization

    @property
    def organization_id(self) -> str:
        return self.organization.id

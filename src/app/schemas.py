from dataclasses import dataclass

from fastapi import Query
from pydantic import BaseModel, ConfigDict, Field

from src.domain.identity.models import SystemRole


@dataclass
class UnapprovedQueryParams:
    """GET query parameters for the pending join request listing."""

    tenant_id: str | None = Query(default=None, description="Restrict to one tenant; omit for a system-wide listing")


class RoleAssignment(BaseModel):
    """Roles to grant to or revoke from a user in a tenant."""

    model_config = ConfigDict(str_strip_whitespace=True)

    user_id: str = Field(min_length=1)
    tenant_id: str = Field(min_length=1)
    roles: list[str] = Field(default_factory=list)


class MembershipTarget(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    user_id: str = Field(min_length=1)
    tenant_id: str = Field(min_length=1)


class JoinRequest(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    tenant_id: str = Field(min_length=1)


class InvitationRequest(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    email: str = Field(min_length=3)
    tenant_id: str = Field(min_length=1)
    roles: list[str] = Field(default_factory=lambda: [SystemRole.TENANT_USER.value])
    name: str | None = None


class LockRequest(BaseModel):
    reason: str = Field(min_length=1, max_length=500)


class AgentRegistration(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    name: str = Field(min_length=1)
    system_scoped: bool = False


class AgentGrant(BaseModel):
    """Permission level accepts names such as ``Owner`` or ``ownerAccess``."""

    user_id: str = Field(min_length=1)
    level: str

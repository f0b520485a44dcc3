from collections.abc import Iterable
from datetime import datetime
from enum import StrEnum

from sqlalchemy import JSON, Column, UniqueConstraint
from sqlmodel import Field, SQLModel

from src.core.utils import utcnow


class SystemRole(StrEnum):
    """Closed set of canonical role names.

    SysAdmin is global and lives on ``User.is_sys_admin``; the other two are
    tenant-scoped and live inside ``TenantRole.roles``.
    """

    SYS_ADMIN = "SysAdmin"
    TENANT_ADMIN = "TenantAdmin"
    TENANT_USER = "TenantUser"

    @classmethod
    def _missing_(cls, value: object) -> "SystemRole | None":
        if isinstance(value, str):
            for member in cls:
                if member.value.lower() == value.strip().lower():
                    return member
        return None

    @property
    def is_tenant_scoped(self) -> bool:
        return self is not SystemRole.SYS_ADMIN


class InvalidRoleError(ValueError):
    """Raised when a role name falls outside the closed role set."""

    def __init__(self, role: object, reason: str = "unknown role"):
        self.role = role
        super().__init__(f"Invalid role '{role}': {reason}")


def parse_roles(values: Iterable[str | SystemRole], tenant_scoped: bool = True) -> list[SystemRole]:
    """Converts raw role names into canonical roles, dropping duplicates.

    Args:
        values: Role names as received from the caller.
        tenant_scoped: Reject SysAdmin, which can never be stored in a TenantRole.

    Returns:
        list[SystemRole]: Roles in first-seen order.

    Raises:
        InvalidRoleError: On an unknown role, or SysAdmin when ``tenant_scoped`` is set.
    """
    roles: list[SystemRole] = []
    for value in values:
        try:
            role = SystemRole(value)
        except ValueError:
            raise InvalidRoleError(value) from None
        if tenant_scoped and not role.is_tenant_scoped:
            raise InvalidRoleError(value, "SysAdmin is a global role")
        if role not in roles:
            roles.append(role)
    return roles


class InvitationStatus(StrEnum):
    PENDING = "Pending"
    ACCEPTED = "Accepted"
    EXPIRED = "Expired"


class User(SQLModel, table=True):
    """A person known to the system, keyed by the identity provider's subject."""

    __table_args__ = {"extend_existing": True}

    id: int | None = Field(default=None, primary_key=True)
    user_id: str = Field(unique=True, index=True)
    email: str = Field(index=True)
    name: str = ""
    is_sys_admin: bool = Field(default=False)
    is_locked_out: bool = Field(default=False)
    lockout_reason: str | None = None
    locked_out_at: datetime | None = None
    locked_out_by: str | None = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


class TenantRole(SQLModel, table=True):
    """A user's membership record for one tenant.

    ``version`` is bumped on every write; updates are conditional on the
    version that was read.
    """

    __tablename__ = "tenant_role"
    __table_args__ = (
        UniqueConstraint("user_id", "tenant", name="uq_tenant_role_user_tenant"),
        {"extend_existing": True},
    )

    id: int | None = Field(default=None, primary_key=True)
    user_id: str = Field(foreign_key="user.user_id", index=True)
    tenant: str = Field(index=True)
    roles: list[str] = Field(default_factory=list, sa_column=Column(JSON, nullable=False))
    is_approved: bool = Field(default=False)
    version: int = Field(default=1)
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


class Invitation(SQLModel, table=True):
    __table_args__ = {"extend_existing": True}

    id: int | None = Field(default=None, primary_key=True)
    token: str = Field(unique=True, index=True)
    email: str = Field(index=True)
    name: str | None = None
    tenant_id: str = Field(index=True)
    roles: list[str] = Field(default_factory=list, sa_column=Column(JSON, nullable=False))
    status: InvitationStatus = Field(default=InvitationStatus.PENDING, index=True)
    invited_by: str | None = None
    created_at: datetime = Field(default_factory=utcnow)
    expires_at: datetime
    accepted_at: datetime | None = None
    accepted_by: str | None = None

    def is_expired(self, now: datetime) -> bool:
        return now >= self.expires_at


# --- Read models ---


class TenantRoleRead(SQLModel):
    tenant: str
    roles: list[str]
    is_approved: bool


class UserRead(SQLModel):
    user_id: str
    email: str
    name: str
    is_sys_admin: bool
    is_locked_out: bool
    lockout_reason: str | None = None
    created_at: datetime
    tenant_roles: list[TenantRoleRead] = []

    @classmethod
    def build(cls, user: User, tenant_roles: Iterable[TenantRole] = ()) -> "UserRead":
        return cls(
            user_id=user.user_id,
            email=user.email,
            name=user.name,
            is_sys_admin=user.is_sys_admin,
            is_locked_out=user.is_locked_out,
            lockout_reason=user.lockout_reason,
            created_at=user.created_at,
            tenant_roles=[TenantRoleRead(tenant=r.tenant, roles=r.roles, is_approved=r.is_approved) for r in tenant_roles],
        )


class InvitationRead(SQLModel):
    """Invitation as shown to callers; the token is deliberately absent."""

    email: str
    name: str | None = None
    tenant_id: str
    roles: list[str]
    status: InvitationStatus
    created_at: datetime
    expires_at: datetime

    @classmethod
    def build(cls, invitation: Invitation) -> "InvitationRead":
        return cls(
            email=invitation.email,
            name=invitation.name,
            tenant_id=invitation.tenant_id,
            roles=invitation.roles,
            status=invitation.status,
            created_at=invitation.created_at,
            expires_at=invitation.expires_at,
        )

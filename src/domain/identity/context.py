from dataclasses import dataclass, field

from src.domain.identity.models import SystemRole


@dataclass(frozen=True, slots=True)
class TenantContext:
    """The authenticated caller an operation acts on behalf of.

    Attributes:
        logged_in_user: Identity-provider subject, or None for anonymous calls.
        tenant_id: Tenant the request is scoped to, or None.
        user_roles: Roles the caller holds in ``tenant_id``, SysAdmin included when global.
    """

    logged_in_user: str | None = None
    tenant_id: str | None = None
    user_roles: frozenset[SystemRole] = field(default_factory=frozenset)
    email: str | None = None
    name: str | None = None

    @property
    def is_sys_admin(self) -> bool:
        return SystemRole.SYS_ADMIN in self.user_roles

    def has_role(self, role: SystemRole) -> bool:
        return role in self.user_roles

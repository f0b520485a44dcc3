"""Pure access decisions.

Every privileged mutation in the identity, tenant and agent services asks
``validate_tenant_access`` or ``has_resource_permission`` and nothing else.
"""

from collections.abc import Collection
from dataclasses import dataclass

from src.domain.agents.models import Agent, PermissionLevel
from src.domain.identity.context import TenantContext
from src.domain.identity.models import SystemRole

INSUFFICIENT_PERMISSIONS = "Insufficient permissions"
DIFFERENT_TENANT = "Access to a different tenant is not allowed"


@dataclass(frozen=True, slots=True)
class AccessDecision:
    allowed: bool
    reason: str | None = None

    @classmethod
    def allow(cls) -> "AccessDecision":
        return cls(True)

    @classmethod
    def forbid(cls, reason: str = INSUFFICIENT_PERMISSIONS) -> "AccessDecision":
        return cls(False, reason)

    def __bool__(self) -> bool:
        return self.allowed


def validate_tenant_access(
    acting_user: str | None,
    acting_roles: Collection[SystemRole],
    acting_tenant_id: str | None,
    target_tenant_id: str | None,
) -> AccessDecision:
    """Decides whether the actor may operate on ``target_tenant_id``.

    Rules are evaluated in order:
      1. SysAdmin may act anywhere, including without a tenant scope.
      2. A null target is a system-wide operation and is SysAdmin-only.
      3. A TenantAdmin may act on the tenant it is currently acting in.
      4. Everything else is denied.

    Args:
        acting_user: Subject of the caller (kept for symmetry with the resource check).
        acting_roles: Roles the caller holds in ``acting_tenant_id``.
        acting_tenant_id: Tenant the caller is acting within.
        target_tenant_id: Tenant the operation touches, or None for system-wide operations.

    Returns:
        AccessDecision: Allowed, or forbidden with a generic reason.
    """
    if SystemRole.SYS_ADMIN in acting_roles:
        return AccessDecision.allow()

    if target_tenant_id is None:
        return AccessDecision.forbid()

    if SystemRole.TENANT_ADMIN in acting_roles:
        if acting_tenant_id is not None and acting_tenant_id.casefold() == target_tenant_id.casefold():
            return AccessDecision.allow()
        return AccessDecision.forbid(DIFFERENT_TENANT)

    return AccessDecision.forbid()


def authorize(ctx: TenantContext, target_tenant_id: str | None) -> AccessDecision:
    """Shorthand for ``validate_tenant_access`` fed from a caller context."""
    return validate_tenant_access(ctx.logged_in_user, ctx.user_roles, ctx.tenant_id, target_tenant_id)


def has_resource_permission(
    agent: Agent,
    user_id: str | None,
    user_roles: Collection[SystemRole | str],
    required_level: PermissionLevel,
) -> bool:
    """Checks an agent's owner/write/read lists for ``user_id``.

    SysAdmin bypasses the lists entirely. Levels are hierarchical: owners can
    write, writers can read, and anyone can read a system-scoped agent.
    """
    if SystemRole.SYS_ADMIN in user_roles:
        return True

    if required_level is PermissionLevel.READ and agent.system_scoped:
        return True

    if user_id is None:
        return False

    match required_level:
        case PermissionLevel.OWNER:
            return user_id in agent.owner_access
        case PermissionLevel.WRITE:
            return user_id in agent.owner_access or user_id in agent.write_access
        case PermissionLevel.READ:
            return user_id in agent.owner_access or user_id in agent.write_access or user_id in agent.read_access
    return False

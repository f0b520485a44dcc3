from collections.abc import Iterable

from loguru import logger

from src.core.cache import RoleCache
from src.core.results import ServiceResult, guarded
from src.domain.identity.authorization import authorize
from src.domain.identity.context import TenantContext
from src.domain.identity.models import InvalidRoleError, SystemRole, TenantRoleRead, UserRead, parse_roles
from src.domain.identity.store import MembershipNotFoundError, UserStore


class RoleManagementService:
    """Grants and revokes roles, always asking the decision engine first."""

    def __init__(self, users: UserStore, cache: RoleCache) -> None:
        self.users = users
        self.cache = cache

    async def resolve_roles(self, user_id: str, tenant_id: str | None) -> list[str] | None:
        """Cached role set of ``user_id`` in ``tenant_id``, SysAdmin appended when global.

        Only approved memberships contribute roles. Returns None for unknown users.
        """

        async def load() -> list[str] | None:
            user = await self.users.get_by_id(user_id)
            if user is None:
                return None
            roles: list[str] = []
            if tenant_id:
                membership = await self.users.get_tenant_role(user_id, tenant_id)
                if membership is not None and membership.is_approved:
                    roles.extend(membership.roles)
            if user.is_sys_admin:
                roles.append(SystemRole.SYS_ADMIN.value)
            return roles

        return await self.cache.get_or_load(tenant_id, user_id, load)

    def _denied(self, ctx: TenantContext, operation: str, reason: str | None) -> ServiceResult:
        logger.warning(f"{ctx.logged_in_user} denied '{operation}' in tenant {ctx.tenant_id}: {reason}")
        return ServiceResult.forbidden(reason)

    @guarded("assign roles", "user_id", "tenant_id")
    async def assign_roles(
        self, ctx: TenantContext, user_id: str, tenant_id: str, roles: Iterable[str | SystemRole]
    ) -> ServiceResult[bool]:
        if not user_id or not tenant_id:
            return ServiceResult.bad_request("User ID and tenant ID are required")

        decision = authorize(ctx, tenant_id)
        if not decision:
            return self._denied(ctx, "assign roles", decision.reason)

        try:
            parsed = parse_roles(roles)
        except InvalidRoleError as e:
            return ServiceResult.bad_request(str(e))
        if not parsed:
            return ServiceResult.bad_request("At least one role is required")

        if await self.users.get_by_id(user_id) is None:
            return ServiceResult.not_found("User not found")

        await self.users.add_roles(user_id, tenant_id, [role.value for role in parsed])
        await self.cache.invalidate(tenant_id, user_id)

        logger.info(f"{ctx.logged_in_user} assigned {[r.value for r in parsed]} to {user_id} in {tenant_id}")
        return ServiceResult.success(True)

    @guarded("remove roles", "user_id", "tenant_id")
    async def remove_roles(
        self, ctx: TenantContext, user_id: str, tenant_id: str, roles: Iterable[str | SystemRole]
    ) -> ServiceResult[bool]:
        if not user_id or not tenant_id:
            return ServiceResult.bad_request("User ID and tenant ID are required")

        decision = authorize(ctx, tenant_id)
        if not decision:
            return self._denied(ctx, "remove roles", decision.reason)

        try:
            parsed = parse_roles(roles)
        except InvalidRoleError as e:
            return ServiceResult.bad_request(str(e))
        if not parsed:
            return ServiceResult.bad_request("At least one role is required")

        if await self.users.get_by_id(user_id) is None:
            return ServiceResult.not_found("User not found")

        try:
            remaining = await self.users.remove_roles(user_id, tenant_id, [role.value for role in parsed])
        except MembershipNotFoundError:
            return ServiceResult.not_found("User has no roles in this tenant")
        await self.cache.invalidate(tenant_id, user_id)

        if remaining is None:
            logger.info(f"{ctx.logged_in_user} removed the last roles of {user_id} in {tenant_id}; membership dropped")
        else:
            logger.info(f"{ctx.logged_in_user} removed {[r.value for r in parsed]} from {user_id} in {tenant_id}")
        return ServiceResult.success(True)

    async def promote_to_tenant_admin(self, ctx: TenantContext, user_id: str, tenant_id: str) -> ServiceResult[bool]:
        return await self.assign_roles(ctx, user_id, tenant_id, [SystemRole.TENANT_ADMIN])

    @guarded("get user roles", "user_id", "tenant_id")
    async def get_user_roles(self, ctx: TenantContext, user_id: str, tenant_id: str) -> ServiceResult[list[str]]:
        if not user_id or not tenant_id:
            return ServiceResult.bad_request("User ID and tenant ID are required")

        decision = authorize(ctx, tenant_id)
        if not decision:
            return self._denied(ctx, "get user roles", decision.reason)

        roles = await self.resolve_roles(user_id, tenant_id)
        if roles is None:
            return ServiceResult.not_found("User not found")
        return ServiceResult.success(roles)

    @guarded("get current user roles")
    async def get_current_user_roles(self, ctx: TenantContext) -> ServiceResult[list[str]]:
        if not ctx.logged_in_user:
            return ServiceResult.unauthorized("No logged-in user")
        if not ctx.tenant_id:
            return ServiceResult.bad_request("No tenant selected")

        roles = await self.resolve_roles(ctx.logged_in_user, ctx.tenant_id)
        return ServiceResult.success(roles or [])

    @guarded("remove tenant from user", "user_id", "tenant_id")
    async def remove_tenant_from_user(self, ctx: TenantContext, user_id: str, tenant_id: str) -> ServiceResult[bool]:
        if not user_id or not tenant_id:
            return ServiceResult.bad_request("User ID and tenant ID are required")

        decision = authorize(ctx, tenant_id)
        if not decision:
            return self._denied(ctx, "remove tenant from user", decision.reason)

        if not await self.users.delete_tenant_role(user_id, tenant_id):
            return ServiceResult.not_found("User has no membership in this tenant")
        await self.cache.invalidate(tenant_id, user_id)

        logger.info(f"{ctx.logged_in_user} removed {user_id} from tenant {tenant_id}")
        return ServiceResult.success(True)

    @guarded("get users by role", "tenant_id")
    async def get_users_by_role(
        self, ctx: TenantContext, role: str | SystemRole, tenant_id: str
    ) -> ServiceResult[list[UserRead]]:
        if not tenant_id:
            return ServiceResult.bad_request("Tenant ID is required")

        decision = authorize(ctx, tenant_id)
        if not decision:
            return self._denied(ctx, "get users by role", decision.reason)

        try:
            (parsed,) = parse_roles([role])
        except InvalidRoleError as e:
            return ServiceResult.bad_request(str(e))

        users = await self.users.get_users_by_role(parsed, tenant_id)
        return ServiceResult.success([UserRead.build(user) for user in users])

    # --- Global administrators ---

    @guarded("bootstrap system admin")
    async def assign_bootstrap_sys_admin_roles(self, ctx: TenantContext) -> ServiceResult[bool]:
        """Lets the caller become SysAdmin while the system has none.

        Once an administrator exists, only callers that are already SysAdmin
        pass, and for them this is a no-op.
        """
        if not ctx.logged_in_user:
            return ServiceResult.unauthorized("No logged-in user")

        admins = await self.users.get_system_admins()
        if admins:
            if ctx.is_sys_admin:
                return ServiceResult.success(True)
            return self._denied(ctx, "bootstrap system admin", "System administrator already exists")

        if await self.users.get_by_id(ctx.logged_in_user) is None:
            return ServiceResult.not_found("User not found")

        if not await self.users.claim_bootstrap_sys_admin(ctx.logged_in_user):
            return self._denied(ctx, "bootstrap system admin", "System administrator already exists")

        await self.cache.invalidate_user(ctx.logged_in_user)
        logger.warning(f"{ctx.logged_in_user} bootstrapped as the first system administrator")
        return ServiceResult.success(True)

    @guarded("assign system admin", "user_id")
    async def assign_sys_admin(self, ctx: TenantContext, user_id: str) -> ServiceResult[bool]:
        if not user_id:
            return ServiceResult.bad_request("User ID is required")

        decision = authorize(ctx, None)
        if not decision:
            return self._denied(ctx, "assign system admin", decision.reason)

        if not await self.users.set_sys_admin(user_id, True):
            return ServiceResult.not_found("User not found")
        await self.cache.invalidate_user(user_id)

        logger.info(f"{ctx.logged_in_user} granted SysAdmin to {user_id}")
        return ServiceResult.success(True)

    @guarded("remove system admin", "user_id")
    async def remove_sys_admin(self, ctx: TenantContext, user_id: str) -> ServiceResult[bool]:
        if not user_id:
            return ServiceResult.bad_request("User ID is required")

        decision = authorize(ctx, None)
        if not decision:
            return self._denied(ctx, "remove system admin", decision.reason)

        user = await self.users.get_by_id(user_id)
        if user is None:
            return ServiceResult.not_found("User not found")
        if not user.is_sys_admin:
            return ServiceResult.success(True)

        admins = await self.users.get_system_admins()
        if len(admins) <= 1:
            return ServiceResult.conflict("Cannot remove the last system administrator")

        await self.users.set_sys_admin(user_id, False)
        await self.cache.invalidate_user(user_id)

        logger.info(f"{ctx.logged_in_user} revoked SysAdmin from {user_id}")
        return ServiceResult.success(True)

    @guarded("get system admins")
    async def get_system_admins(self, ctx: TenantContext) -> ServiceResult[list[UserRead]]:
        decision = authorize(ctx, None)
        if not decision:
            return self._denied(ctx, "get system admins", decision.reason)

        admins = await self.users.get_system_admins()
        return ServiceResult.success([UserRead.build(admin) for admin in admins])

    @guarded("get user memberships", "user_id")
    async def get_user_memberships(self, ctx: TenantContext, user_id: str) -> ServiceResult[list[TenantRoleRead]]:
        """Lists every membership of ``user_id``; callers other than the user themself must be SysAdmin."""
        if ctx.logged_in_user != user_id:
            decision = authorize(ctx, None)
            if not decision:
                return self._denied(ctx, "get user memberships", decision.reason)

        if await self.users.get_by_id(user_id) is None:
            return ServiceResult.not_found("User not found")
        memberships = await self.users.get_tenant_roles(user_id)
        return ServiceResult.success(
            [TenantRoleRead(tenant=m.tenant, roles=m.roles, is_approved=m.is_approved) for m in memberships]
        )

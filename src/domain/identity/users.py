from loguru import logger

from src.core.cache import RoleCache
from src.core.results import ServiceResult, guarded
from src.core.tokens import IdentityClaims
from src.domain.identity.authorization import DIFFERENT_TENANT, AccessDecision, authorize
from src.domain.identity.context import TenantContext
from src.domain.identity.models import User, UserRead
from src.domain.identity.store import UserStore
from src.domain.tenants.store import TenantStore


class UserService:
    """Lazy provisioning, lookups and lockout of users."""

    def __init__(self, users: UserStore, tenants: TenantStore, cache: RoleCache) -> None:
        self.users = users
        self.tenants = tenants
        self.cache = cache

    @guarded("provision user", "user_id", "tenant_id")
    async def provision_user(
        self, user_id: str, email: str, name: str = "", tenant_id: str | None = None
    ) -> ServiceResult[UserRead]:
        """Creates the user record on first sign-in.

        The very first user of the system comes out as SysAdmin. With
        ``tenant_id`` the user also gets a pending membership there.
        """
        if not user_id or not email:
            return ServiceResult.bad_request("User ID and email are required")

        if tenant_id and await self.tenants.get_by_tenant_id(tenant_id) is None:
            return ServiceResult.not_found("Tenant not found")

        user = await self.users.create(user_id, email, name, pending_tenant=tenant_id)
        if user is None:
            return ServiceResult.conflict("User already exists")

        if user.is_sys_admin:
            logger.warning(f"First user {user_id} provisioned as system administrator")
        else:
            logger.info(f"Provisioned user {user_id}")
        return ServiceResult.success(UserRead.build(user, await self.users.get_tenant_roles(user_id)))

    async def ensure_user(self, claims: IdentityClaims) -> User:
        """Returns the stored user for ``claims``, creating it if this is their first visit."""
        user = await self.users.get_by_id(claims.user_id)
        if user is not None:
            return user

        user = await self.users.create(claims.user_id, claims.email or "", claims.name or "")
        if user is None:
            # A concurrent request created it first
            user = await self.users.get_by_id(claims.user_id)
        else:
            logger.info(f"Provisioned user {claims.user_id} on first sign-in (sys_admin={user.is_sys_admin})")
        return user

    async def _authorize_over(self, ctx: TenantContext, target: User, operation: str) -> ServiceResult | None:
        """Checks that the caller administers ``target``. Returns the failure result, if any."""
        decision = authorize(ctx, ctx.tenant_id)
        if decision and not ctx.is_sys_admin:
            if target.is_sys_admin:
                decision = AccessDecision.forbid()
            elif await self.users.get_tenant_role(target.user_id, ctx.tenant_id) is None:
                decision = AccessDecision.forbid(DIFFERENT_TENANT)

        if not decision:
            logger.warning(f"{ctx.logged_in_user} denied '{operation}' on {target.user_id}: {decision.reason}")
            return ServiceResult.forbidden(decision.reason)
        return None

    @guarded("get user", "user_id")
    async def get_user(self, ctx: TenantContext, user_id: str) -> ServiceResult[UserRead]:
        if not ctx.logged_in_user:
            return ServiceResult.unauthorized()

        user = await self.users.get_by_id(user_id)
        if user is None:
            return ServiceResult.not_found("User not found")

        if user_id != ctx.logged_in_user:
            denied = await self._authorize_over(ctx, user, "get user")
            if denied:
                return denied

        return ServiceResult.success(UserRead.build(user, await self.users.get_tenant_roles(user_id)))

    @guarded("lock user", "user_id")
    async def lock_user(self, ctx: TenantContext, user_id: str, reason: str) -> ServiceResult[bool]:
        if not ctx.logged_in_user:
            return ServiceResult.unauthorized()
        if not user_id or not reason:
            return ServiceResult.bad_request("User ID and reason are required")
        if user_id == ctx.logged_in_user:
            return ServiceResult.bad_request("You cannot lock yourself out")

        user = await self.users.get_by_id(user_id)
        if user is None:
            return ServiceResult.not_found("User not found")

        denied = await self._authorize_over(ctx, user, "lock user")
        if denied:
            return denied

        await self.users.lock(user_id, reason, ctx.logged_in_user)
        await self.cache.invalidate_user(user_id)

        logger.warning(f"{ctx.logged_in_user} locked out {user_id}: {reason}")
        return ServiceResult.success(True)

    @guarded("unlock user", "user_id")
    async def unlock_user(self, ctx: TenantContext, user_id: str) -> ServiceResult[bool]:
        if not ctx.logged_in_user:
            return ServiceResult.unauthorized()
        if not user_id:
            return ServiceResult.bad_request("User ID is required")

        user = await self.users.get_by_id(user_id)
        if user is None:
            return ServiceResult.not_found("User not found")

        denied = await self._authorize_over(ctx, user, "unlock user")
        if denied:
            return denied

        await self.users.unlock(user_id)
        await self.cache.invalidate_user(user_id)

        logger.info(f"{ctx.logged_in_user} unlocked {user_id}")
        return ServiceResult.success(True)

    @guarded("check lockout", "user_id")
    async def is_user_locked_out(self, user_id: str) -> ServiceResult[bool]:
        user = await self.users.get_by_id(user_id)
        if user is None:
            return ServiceResult.not_found("User not found")
        return ServiceResult.success(user.is_locked_out)

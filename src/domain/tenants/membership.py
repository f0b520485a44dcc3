from dataclasses import dataclass

from loguru import logger

from src.core.cache import RoleCache
from src.core.results import ServiceResult, guarded
from src.domain.identity.authorization import authorize
from src.domain.identity.context import TenantContext
from src.domain.identity.models import SystemRole, TenantRoleRead
from src.domain.identity.store import MembershipConflictError, UserStore
from src.domain.tenants.models import Tenant, TenantCreate, TenantValidationError
from src.domain.tenants.store import TenantStore

# Tenant reported for users that belong to no tenant at all
NO_TENANT = ""


@dataclass(frozen=True, slots=True)
class UnapprovedUser:
    user_id: str
    email: str
    name: str
    tenant: str


class TenantMembershipService:
    """Self-service join requests, tenant creation and administrator approval.

    Per (user, tenant) the membership moves NonMember -> Pending -> Approved.
    Rejecting a pending request deletes it, returning the pair to NonMember.
    """

    def __init__(self, users: UserStore, tenants: TenantStore, cache: RoleCache) -> None:
        self.users = users
        self.tenants = tenants
        self.cache = cache

    @guarded("request to join tenant", "user_id", "tenant_id")
    async def request_to_join_tenant(self, user_id: str, tenant_id: str) -> ServiceResult[TenantRoleRead]:
        if not user_id or not tenant_id:
            return ServiceResult.bad_request("User ID and tenant ID are required")

        tenant = await self.tenants.get_by_tenant_id(tenant_id)
        if tenant is None:
            return ServiceResult.not_found("Tenant not found")
        if not tenant.enabled:
            return ServiceResult.bad_request("Tenant is not accepting join requests")

        if await self.users.get_by_id(user_id) is None:
            return ServiceResult.not_found("User not found")

        try:
            membership = await self.users.create_pending(user_id, tenant_id, [SystemRole.TENANT_USER.value])
        except MembershipConflictError:
            return ServiceResult.conflict("A membership or join request for this tenant already exists")

        logger.info(f"{user_id} requested to join {tenant_id}")
        return ServiceResult.success(
            TenantRoleRead(tenant=membership.tenant, roles=membership.roles, is_approved=membership.is_approved)
        )

    @guarded("create new tenant", "user_id")
    async def create_new_tenant(
        self, request: TenantCreate, user_id: str, email: str | None = None, name: str | None = None
    ) -> ServiceResult[Tenant]:
        """Creates a tenant and makes its creator the first TenantAdmin.

        The creator's admin grant does not pass through the decision engine:
        nobody administers a tenant that did not exist a moment ago.
        """
        if not user_id:
            return ServiceResult.unauthorized("No logged-in user")

        try:
            request = request.validated()
        except TenantValidationError as e:
            return ServiceResult.bad_request(str(e))

        if await self.tenants.get_by_tenant_id(request.tenant_id) is not None:
            return ServiceResult.conflict(f"Tenant '{request.tenant_id}' already exists")
        if request.domain and await self.tenants.get_by_domain(request.domain) is not None:
            return ServiceResult.conflict(f"Domain '{request.domain}' is already registered")

        tenant = await self.tenants.create(
            Tenant(
                tenant_id=request.tenant_id,
                name=request.name,
                domain=request.domain,
                description=request.description,
                enabled=True,
                created_by=user_id,
            )
        )
        if tenant is None:
            return ServiceResult.conflict(f"Tenant '{request.tenant_id}' already exists")

        if await self.users.get_by_id(user_id) is None:
            created = await self.users.create(user_id, email or "", name or "")
            if created is not None:
                logger.info(f"Provisioned user {user_id} while creating tenant {tenant.tenant_id}")

        await self.users.add_roles(user_id, tenant.tenant_id, [SystemRole.TENANT_ADMIN.value], approve=True)
        await self.cache.invalidate(tenant.tenant_id, user_id)

        logger.info(f"{user_id} created tenant {tenant.tenant_id} and became its administrator")
        return ServiceResult.success(tenant)

    @guarded("approve user", "user_id", "tenant_id")
    async def approve_user(self, ctx: TenantContext, user_id: str, tenant_id: str) -> ServiceResult[TenantRoleRead]:
        """Approves a join request. Only system administrators approve, whatever the tenant."""
        if not user_id or not tenant_id:
            return ServiceResult.bad_request("User ID and tenant ID are required")

        decision = authorize(ctx, None)
        if not decision:
            logger.warning(f"{ctx.logged_in_user} denied 'approve user' for {user_id} in {tenant_id}")
            return ServiceResult.forbidden(decision.reason)

        if await self.users.get_by_id(user_id) is None:
            return ServiceResult.not_found("User not found")

        try:
            membership = await self.users.approve(user_id, tenant_id, [SystemRole.TENANT_USER.value])
        except MembershipConflictError:
            return ServiceResult.conflict("User is already approved for this tenant")
        await self.cache.invalidate(tenant_id, user_id)

        logger.info(f"{ctx.logged_in_user} approved {user_id} for {tenant_id}")
        return ServiceResult.success(
            TenantRoleRead(tenant=membership.tenant, roles=membership.roles, is_approved=membership.is_approved)
        )

    @guarded("reject user", "user_id", "tenant_id")
    async def reject_user(self, ctx: TenantContext, user_id: str, tenant_id: str) -> ServiceResult[bool]:
        if not user_id or not tenant_id:
            return ServiceResult.bad_request("User ID and tenant ID are required")

        decision = authorize(ctx, None)
        if not decision:
            return ServiceResult.forbidden(decision.reason)

        try:
            found = await self.users.delete_tenant_role(user_id, tenant_id, pending_only=True)
        except MembershipConflictError:
            return ServiceResult.conflict("User is already approved for this tenant")
        if not found:
            return ServiceResult.not_found("No pending join request")
        await self.cache.invalidate(tenant_id, user_id)

        logger.info(f"{ctx.logged_in_user} rejected the join request of {user_id} for {tenant_id}")
        return ServiceResult.success(True)

    @guarded("get unapproved users", "tenant_id")
    async def get_unapproved_users(
        self, ctx: TenantContext, tenant_id: str | None = None
    ) -> ServiceResult[list[UnapprovedUser]]:
        """Lists pending join requests, for one tenant or system-wide.

        The system-wide listing also reports users that belong to no tenant at
        all, with an empty tenant, so they are not lost between sign-up and
        their first request. System administrators are left out of it.
        """
        decision = authorize(ctx, tenant_id)
        if not decision:
            return ServiceResult.forbidden(decision.reason)

        pending = await self.users.get_pending_memberships(tenant_id)
        if tenant_id is None:
            pending = [(u, m) for u, m in pending if not u.is_sys_admin]
        entries = [UnapprovedUser(u.user_id, u.email, u.name, m.tenant) for u, m in pending]

        if tenant_id is None:
            orphans = await self.users.get_users_without_memberships()
            entries.extend(UnapprovedUser(u.user_id, u.email, u.name, NO_TENANT) for u in orphans if not u.is_sys_admin)

        return ServiceResult.success(entries)

    @guarded("get tenants for user")
    async def get_tenants_for_user(self, ctx: TenantContext) -> ServiceResult[list[Tenant]]:
        """Tenants the caller may switch into: all enabled ones for a SysAdmin, approved memberships otherwise."""
        if not ctx.logged_in_user:
            return ServiceResult.unauthorized("No logged-in user")

        user = await self.users.get_by_id(ctx.logged_in_user)
        if user is None:
            return ServiceResult.not_found("User not found")

        if user.is_sys_admin:
            return ServiceResult.success(await self.tenants.get_all(enabled_only=True))

        memberships = await self.users.get_tenant_roles(user.user_id)
        approved = [m.tenant for m in memberships if m.is_approved]
        return ServiceResult.success(await self.tenants.get_many(approved, enabled_only=True))

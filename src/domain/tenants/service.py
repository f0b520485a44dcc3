from loguru import logger
from sqlalchemy.exc import IntegrityError

from src.core.cache import RoleCache
from src.core.results import ServiceResult, guarded
from src.domain.identity.authorization import authorize
from src.domain.identity.context import TenantContext
from src.domain.tenants.models import Tenant, TenantCreate, TenantUpdate, TenantValidationError
from src.domain.tenants.store import TenantStore


class TenantService:
    """Administrative CRUD over tenants."""

    def __init__(self, tenants: TenantStore, cache: RoleCache) -> None:
        self.tenants = tenants
        self.cache = cache

    @guarded("create tenant")
    async def create_tenant(self, ctx: TenantContext, request: TenantCreate) -> ServiceResult[Tenant]:
        decision = authorize(ctx, None)
        if not decision:
            return ServiceResult.forbidden(decision.reason)

        try:
            request = request.validated()
        except TenantValidationError as e:
            return ServiceResult.bad_request(str(e))

        if request.domain and await self.tenants.get_by_domain(request.domain) is not None:
            return ServiceResult.conflict(f"Domain '{request.domain}' is already registered")

        tenant = await self.tenants.create(Tenant(**request.model_dump(), created_by=ctx.logged_in_user))
        if tenant is None:
            return ServiceResult.conflict(f"Tenant '{request.tenant_id}' already exists")

        logger.info(f"{ctx.logged_in_user} created tenant {tenant.tenant_id}")
        return ServiceResult.success(tenant)

    @guarded("get tenant", "tenant_id")
    async def get_tenant(self, ctx: TenantContext, tenant_id: str) -> ServiceResult[Tenant]:
        decision = authorize(ctx, tenant_id)
        if not decision:
            return ServiceResult.forbidden(decision.reason)

        tenant = await self.tenants.get_by_tenant_id(tenant_id)
        if tenant is None:
            return ServiceResult.not_found("Tenant not found")
        return ServiceResult.success(tenant)

    @guarded("list tenants")
    async def list_tenants(self, ctx: TenantContext) -> ServiceResult[list[Tenant]]:
        decision = authorize(ctx, None)
        if not decision:
            return ServiceResult.forbidden(decision.reason)
        return ServiceResult.success(await self.tenants.get_all())

    @guarded("update tenant", "tenant_id")
    async def update_tenant(self, ctx: TenantContext, tenant_id: str, update: TenantUpdate) -> ServiceResult[Tenant]:
        """Applies the provided fields. Enabling or disabling a tenant is reserved to SysAdmin."""
        decision = authorize(ctx, tenant_id)
        if not decision:
            return ServiceResult.forbidden(decision.reason)

        try:
            changes = update.changes()
        except TenantValidationError as e:
            return ServiceResult.bad_request(str(e))

        if "enabled" in changes and not ctx.is_sys_admin:
            return ServiceResult.forbidden("Only system administrators can enable or disable tenants")
        if not changes:
            return ServiceResult.bad_request("Nothing to update")

        domain = changes.get("domain")
        if domain:
            owner = await self.tenants.get_by_domain(domain)
            if owner is not None and owner.tenant_id != tenant_id:
                return ServiceResult.conflict(f"Domain '{domain}' is already registered")

        try:
            tenant = await self.tenants.update(tenant_id, changes)
        except IntegrityError:
            return ServiceResult.conflict("Tenant update collides with an existing tenant")
        if tenant is None:
            return ServiceResult.not_found("Tenant not found")

        logger.info(f"{ctx.logged_in_user} updated tenant {tenant_id}: {sorted(changes)}")
        return ServiceResult.success(tenant)

    @guarded("delete tenant", "tenant_id")
    async def delete_tenant(self, ctx: TenantContext, tenant_id: str) -> ServiceResult[bool]:
        decision = authorize(ctx, None)
        if not decision:
            return ServiceResult.forbidden(decision.reason)

        members = await self.tenants.delete(tenant_id)
        if members is None:
            return ServiceResult.not_found("Tenant not found")
        for user_id in members:
            await self.cache.invalidate(tenant_id, user_id)

        logger.warning(f"{ctx.logged_in_user} deleted tenant {tenant_id} and {len(members)} memberships")
        return ServiceResult.success(True)

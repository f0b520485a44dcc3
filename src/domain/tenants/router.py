from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse

from src.app.dependencies import Services, get_services, get_tenant_context
from src.app.schemas import JoinRequest, MembershipTarget, UnapprovedQueryParams
from src.core.results import result_response
from src.domain.identity.context import TenantContext
from src.domain.tenants.models import TenantCreate, TenantUpdate

router = APIRouter(prefix="/api/tenants", tags=["Tenants"])


# --- Self-service ---


@router.post("/new")
async def create_new_tenant(
    body: TenantCreate, ctx: TenantContext = Depends(get_tenant_context), services: Services = Depends(get_services)
) -> JSONResponse:
    result = await services.memberships.create_new_tenant(body, ctx.logged_in_user, ctx.email, ctx.name)
    return result_response(result)


@router.post("/join")
async def request_to_join(
    body: JoinRequest, ctx: TenantContext = Depends(get_tenant_context), services: Services = Depends(get_services)
) -> JSONResponse:
    return result_response(await services.memberships.request_to_join_tenant(ctx.logged_in_user, body.tenant_id))


@router.get("/mine")
async def my_tenants(
    ctx: TenantContext = Depends(get_tenant_context), services: Services = Depends(get_services)
) -> JSONResponse:
    return result_response(await services.memberships.get_tenants_for_user(ctx))


# --- Approvals ---


@router.get("/unapproved")
async def unapproved_users(
    params: UnapprovedQueryParams = Depends(),
    ctx: TenantContext = Depends(get_tenant_context),
    services: Services = Depends(get_services),
) -> JSONResponse:
    return result_response(await services.memberships.get_unapproved_users(ctx, params.tenant_id))


@router.post("/approve")
async def approve_user(
    body: MembershipTarget, ctx: TenantContext = Depends(get_tenant_context), services: Services = Depends(get_services)
) -> JSONResponse:
    return result_response(await services.memberships.approve_user(ctx, body.user_id, body.tenant_id))


@router.post("/reject")
async def reject_user(
    body: MembershipTarget, ctx: TenantContext = Depends(get_tenant_context), services: Services = Depends(get_services)
) -> JSONResponse:
    return result_response(await services.memberships.reject_user(ctx, body.user_id, body.tenant_id))


# --- Administration ---


@router.get("")
async def list_tenants(
    ctx: TenantContext = Depends(get_tenant_context), services: Services = Depends(get_services)
) -> JSONResponse:
    return result_response(await services.tenants.list_tenants(ctx))


@router.post("")
async def create_tenant(
    body: TenantCreate, ctx: TenantContext = Depends(get_tenant_context), services: Services = Depends(get_services)
) -> JSONResponse:
    return result_response(await services.tenants.create_tenant(ctx, body))


@router.get("/{tenant_id}")
async def get_tenant(
    tenant_id: str, ctx: TenantContext = Depends(get_tenant_context), services: Services = Depends(get_services)
) -> JSONResponse:
    return result_response(await services.tenants.get_tenant(ctx, tenant_id))


@router.patch("/{tenant_id}")
async def update_tenant(
    tenant_id: str,
    body: TenantUpdate,
    ctx: TenantContext = Depends(get_tenant_context),
    services: Services = Depends(get_services),
) -> JSONResponse:
    return result_response(await services.tenants.update_tenant(ctx, tenant_id, body))


@router.delete("/{tenant_id}")
async def delete_tenant(
    tenant_id: str, ctx: TenantContext = Depends(get_tenant_context), services: Services = Depends(get_services)
) -> JSONResponse:
    return result_response(await services.tenants.delete_tenant(ctx, tenant_id))

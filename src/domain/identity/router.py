from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse

from src.app.dependencies import Services, get_bearer_token, get_services, get_tenant_context
from src.app.schemas import InvitationRequest, LockRequest, MembershipTarget, RoleAssignment
from src.core.results import result_response
from src.domain.identity.context import TenantContext

router = APIRouter(prefix="/api", tags=["Identity"])


# --- Roles ---


@router.get("/roles/current")
async def current_user_roles(
    ctx: TenantContext = Depends(get_tenant_context), services: Services = Depends(get_services)
) -> JSONResponse:
    return result_response(await services.roles.get_current_user_roles(ctx))


@router.get("/roles/{tenant_id}/users/{user_id}")
async def user_roles(
    tenant_id: str,
    user_id: str,
    ctx: TenantContext = Depends(get_tenant_context),
    services: Services = Depends(get_services),
) -> JSONResponse:
    return result_response(await services.roles.get_user_roles(ctx, user_id, tenant_id))


@router.get("/roles/{tenant_id}/role/{role}")
async def users_by_role(
    tenant_id: str,
    role: str,
    ctx: TenantContext = Depends(get_tenant_context),
    services: Services = Depends(get_services),
) -> JSONResponse:
    return result_response(await services.roles.get_users_by_role(ctx, role, tenant_id))


@router.post("/roles/assign")
async def assign_roles(
    body: RoleAssignment, ctx: TenantContext = Depends(get_tenant_context), services: Services = Depends(get_services)
) -> JSONResponse:
    return result_response(await services.roles.assign_roles(ctx, body.user_id, body.tenant_id, body.roles))


@router.post("/roles/remove")
async def remove_roles(
    body: RoleAssignment, ctx: TenantContext = Depends(get_tenant_context), services: Services = Depends(get_services)
) -> JSONResponse:
    return result_response(await services.roles.remove_roles(ctx, body.user_id, body.tenant_id, body.roles))


@router.post("/roles/promote")
async def promote_to_tenant_admin(
    body: MembershipTarget, ctx: TenantContext = Depends(get_tenant_context), services: Services = Depends(get_services)
) -> JSONResponse:
    return result_response(await services.roles.promote_to_tenant_admin(ctx, body.user_id, body.tenant_id))


@router.post("/roles/bootstrap-sysadmin")
async def bootstrap_sys_admin(
    ctx: TenantContext = Depends(get_tenant_context), services: Services = Depends(get_services)
) -> JSONResponse:
    return result_response(await services.roles.assign_bootstrap_sys_admin_roles(ctx))


@router.get("/roles/sysadmins")
async def system_admins(
    ctx: TenantContext = Depends(get_tenant_context), services: Services = Depends(get_services)
) -> JSONResponse:
    return result_response(await services.roles.get_system_admins(ctx))


@router.put("/roles/sysadmins/{user_id}")
async def grant_sys_admin(
    user_id: str, ctx: TenantContext = Depends(get_tenant_context), services: Services = Depends(get_services)
) -> JSONResponse:
    return result_response(await services.roles.assign_sys_admin(ctx, user_id))


@router.delete("/roles/sysadmins/{user_id}")
async def revoke_sys_admin(
    user_id: str, ctx: TenantContext = Depends(get_tenant_context), services: Services = Depends(get_services)
) -> JSONResponse:
    return result_response(await services.roles.remove_sys_admin(ctx, user_id))


# --- Users ---


@router.get("/users/{user_id}")
async def get_user(
    user_id: str, ctx: TenantContext = Depends(get_tenant_context), services: Services = Depends(get_services)
) -> JSONResponse:
    return result_response(await services.users.get_user(ctx, user_id))


@router.get("/users/{user_id}/memberships")
async def user_memberships(
    user_id: str, ctx: TenantContext = Depends(get_tenant_context), services: Services = Depends(get_services)
) -> JSONResponse:
    return result_response(await services.roles.get_user_memberships(ctx, user_id))


@router.delete("/users/{user_id}/tenants/{tenant_id}")
async def remove_tenant_from_user(
    user_id: str,
    tenant_id: str,
    ctx: TenantContext = Depends(get_tenant_context),
    services: Services = Depends(get_services),
) -> JSONResponse:
    return result_response(await services.roles.remove_tenant_from_user(ctx, user_id, tenant_id))


@router.post("/users/{user_id}/lock")
async def lock_user(
    user_id: str,
    body: LockRequest,
    ctx: TenantContext = Depends(get_tenant_context),
    services: Services = Depends(get_services),
) -> JSONResponse:
    return result_response(await services.users.lock_user(ctx, user_id, body.reason))


@router.post("/users/{user_id}/unlock")
async def unlock_user(
    user_id: str, ctx: TenantContext = Depends(get_tenant_context), services: Services = Depends(get_services)
) -> JSONResponse:
    return result_response(await services.users.unlock_user(ctx, user_id))


# --- Invitations ---


@router.post("/invitations")
async def invite_user(
    body: InvitationRequest,
    ctx: TenantContext = Depends(get_tenant_context),
    services: Services = Depends(get_services),
) -> JSONResponse:
    result = await services.invitations.invite_user(ctx, body.email, body.tenant_id, body.roles, body.name)
    return result_response(result)


@router.get("/invitations/mine")
async def my_invitation(
    token: str = Depends(get_bearer_token), services: Services = Depends(get_services)
) -> JSONResponse:
    return result_response(await services.invitations.get_invite_by_email(token))


@router.post("/invitations/{invitation_token}/accept")
async def accept_invitation(
    invitation_token: str,
    ctx: TenantContext = Depends(get_tenant_context),
    services: Services = Depends(get_services),
) -> JSONResponse:
    return result_response(await services.invitations.accept_invitation(ctx, invitation_token))


@router.get("/tenants/{tenant_id}/invitations")
async def tenant_invitations(
    tenant_id: str, ctx: TenantContext = Depends(get_tenant_context), services: Services = Depends(get_services)
) -> JSONResponse:
    return result_response(await services.invitations.get_invitations(ctx, tenant_id))


@router.delete("/invitations/{invitation_token}")
async def delete_invitation(
    invitation_token: str,
    ctx: TenantContext = Depends(get_tenant_context),
    services: Services = Depends(get_services),
) -> JSONResponse:
    return result_response(await services.invitations.delete_invitation(ctx, invitation_token))

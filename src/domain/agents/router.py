from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse

from src.app.dependencies import Services, get_services, get_tenant_context
from src.app.schemas import AgentGrant, AgentRegistration
from src.core.results import result_response
from src.domain.identity.context import TenantContext

router = APIRouter(prefix="/api/agents", tags=["Agents"])


@router.post("")
async def register_agent(
    body: AgentRegistration,
    ctx: TenantContext = Depends(get_tenant_context),
    services: Services = Depends(get_services),
) -> JSONResponse:
    return result_response(await services.agents.register_agent(ctx, body.name, body.system_scoped))


@router.get("/{agent_name}/permissions")
async def agent_permissions(
    agent_name: str, ctx: TenantContext = Depends(get_tenant_context), services: Services = Depends(get_services)
) -> JSONResponse:
    return result_response(await services.agents.get_permissions(ctx, agent_name))


@router.get("/{agent_name}/permissions/check/{level}")
async def check_agent_permission(
    agent_name: str,
    level: str,
    ctx: TenantContext = Depends(get_tenant_context),
    services: Services = Depends(get_services),
) -> JSONResponse:
    return result_response(await services.agents.check_permission(ctx, agent_name, level))


@router.post("/{agent_name}/permissions/users")
async def add_agent_user(
    agent_name: str,
    body: AgentGrant,
    ctx: TenantContext = Depends(get_tenant_context),
    services: Services = Depends(get_services),
) -> JSONResponse:
    return result_response(await services.agents.add_user(ctx, agent_name, body.user_id, body.level))


@router.put("/{agent_name}/permissions/users")
async def update_agent_user(
    agent_name: str,
    body: AgentGrant,
    ctx: TenantContext = Depends(get_tenant_context),
    services: Services = Depends(get_services),
) -> JSONResponse:
    return result_response(await services.agents.update_user_permission(ctx, agent_name, body.user_id, body.level))


@router.delete("/{agent_name}/permissions/users/{user_id}")
async def remove_agent_user(
    agent_name: str,
    user_id: str,
    ctx: TenantContext = Depends(get_tenant_context),
    services: Services = Depends(get_services),
) -> JSONResponse:
    return result_response(await services.agents.remove_user(ctx, agent_name, user_id))

from dataclasses import dataclass

from arq.connections import ArqRedis
from fastapi import Depends, Header, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from loguru import logger
from sqlalchemy.orm import sessionmaker

from src.config.settings import settings
from src.core.cache import RoleCache
from src.core.email import EmailDispatcher
from src.core.tokens import IdentityClaims, IdentityTokenParser, InvalidIdentityTokenError
from src.domain.agents.permissions import AgentPermissionService
from src.domain.agents.store import AgentStore
from src.domain.identity.context import TenantContext
from src.domain.identity.invitations import InvitationService
from src.domain.identity.models import SystemRole
from src.domain.identity.roles import RoleManagementService
from src.domain.identity.store import InvitationStore, UserStore
from src.domain.identity.users import UserService
from src.domain.tenants.membership import TenantMembershipService
from src.domain.tenants.service import TenantService
from src.domain.tenants.store import TenantStore


@dataclass
class Services:
    """Every service the routers call, built once per application lifespan."""

    token_parser: IdentityTokenParser
    role_cache: RoleCache
    users: UserService
    roles: RoleManagementService
    memberships: TenantMembershipService
    tenants: TenantService
    invitations: InvitationService
    agents: AgentPermissionService


def build_services(
    session_maker: sessionmaker,
    role_cache: RoleCache,
    token_parser: IdentityTokenParser | None = None,
    arq_pool: ArqRedis | None = None,
) -> Services:
    token_parser = token_parser or IdentityTokenParser(
        settings.IDENTITY_TOKEN_SECRET, settings.IDENTITY_TOKEN_ALGORITHMS
    )
    user_store = UserStore(session_maker)
    tenant_store = TenantStore(session_maker)

    return Services(
        token_parser=token_parser,
        role_cache=role_cache,
        users=UserService(user_store, tenant_store, role_cache),
        roles=RoleManagementService(user_store, role_cache),
        memberships=TenantMembershipService(user_store, tenant_store, role_cache),
        tenants=TenantService(tenant_store, role_cache),
        invitations=InvitationService(
            user_store,
            InvitationStore(session_maker),
            tenant_store,
            role_cache,
            EmailDispatcher(arq_pool=arq_pool),
            token_parser,
            ttl_days=settings.INVITATION_TTL_DAYS,
        ),
        agents=AgentPermissionService(AgentStore(session_maker)),
    )


bearer_scheme = HTTPBearer(auto_error=False)


def get_services(request: Request) -> Services:
    return request.app.state.services


def get_bearer_token(credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme)) -> str:
    if credentials is None or not credentials.credentials:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Missing bearer token")
    return credentials.credentials


def get_identity(token: str = Depends(get_bearer_token), services: Services = Depends(get_services)) -> IdentityClaims:
    """Decodes the caller's bearer token into identity claims."""
    try:
        return services.token_parser.parse(token)
    except InvalidIdentityTokenError as e:
        logger.warning(f"Rejected bearer token: {e}")
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid bearer token") from e


async def get_tenant_context(
    claims: IdentityClaims = Depends(get_identity),
    services: Services = Depends(get_services),
    x_tenant_id: str | None = Header(default=None),
) -> TenantContext:
    """Builds the caller's context: provisions on first sight, refuses locked accounts, resolves roles.

    Raises:
        HTTPException: 403 if the account is locked out.
    """
    user = await services.users.ensure_user(claims)
    if user.is_locked_out:
        logger.warning(f"Locked out user {user.user_id} attempted access")
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Account is locked")

    tenant_id = x_tenant_id.strip() if x_tenant_id and x_tenant_id.strip() else None
    roles = await services.roles.resolve_roles(user.user_id, tenant_id) or []

    return TenantContext(
        logged_in_user=user.user_id,
        tenant_id=tenant_id,
        user_roles=frozenset(SystemRole(role) for role in roles),
        email=claims.email,
        name=claims.name,
    )

from loguru import logger

from src.core.results import ServiceResult, guarded
from src.domain.agents.models import Agent, AgentPermissions, PermissionLevel
from src.domain.agents.store import AgentStore, SoleOwnerError
from src.domain.identity.authorization import has_resource_permission
from src.domain.identity.context import TenantContext

SOLE_OWNER = "An agent must keep at least one owner"


def _view(agent: Agent) -> AgentPermissions:
    return AgentPermissions(
        agent_name=agent.name,
        system_scoped=agent.system_scoped,
        owner_access=agent.owner_access,
        write_access=agent.write_access,
        read_access=agent.read_access,
    )


class AgentPermissionService:
    """Reads and edits agent ACLs on behalf of the caller.

    Every check goes through ``has_resource_permission``; editing an ACL
    takes Owner.
    """

    def __init__(self, agents: AgentStore) -> None:
        self.agents = agents

    async def _load(self, ctx: TenantContext, agent_name: str, level: PermissionLevel) -> ServiceResult[Agent]:
        if not ctx.logged_in_user:
            return ServiceResult.unauthorized()
        if not agent_name:
            return ServiceResult.bad_request("Agent name is required")

        agent = await self.agents.get_visible(agent_name, ctx.tenant_id)
        if agent is None:
            return ServiceResult.not_found(f"Agent '{agent_name}' not found")

        if not has_resource_permission(agent, ctx.logged_in_user, ctx.user_roles, level):
            logger.warning(f"{ctx.logged_in_user} lacks {level.name} on agent {agent_name}")
            return ServiceResult.forbidden()
        return ServiceResult.success(agent)

    @guarded("register agent", "agent_name")
    async def register_agent(
        self, ctx: TenantContext, agent_name: str, system_scoped: bool = False
    ) -> ServiceResult[AgentPermissions]:
        """Creates an agent owned by the caller. System-scoped agents are SysAdmin-only."""
        if not ctx.logged_in_user:
            return ServiceResult.unauthorized()
        if not agent_name or not agent_name.strip():
            return ServiceResult.bad_request("Agent name is required")
        if system_scoped and not ctx.is_sys_admin:
            return ServiceResult.forbidden("Only system administrators can register system-scoped agents")
        if not system_scoped and not ctx.tenant_id:
            return ServiceResult.bad_request("No tenant selected")

        agent_name = agent_name.strip()
        existing = await self.agents.get_visible(agent_name, None if system_scoped else ctx.tenant_id)
        if existing is not None:
            return ServiceResult.conflict(f"Agent '{agent_name}' already exists")

        # the unique (name, scope) index settles concurrent registrations
        agent = await self.agents.create(
            Agent(
                name=agent_name,
                tenant=None if system_scoped else ctx.tenant_id,
                system_scoped=system_scoped,
                owner_access=[ctx.logged_in_user],
                created_by=ctx.logged_in_user,
            )
        )
        if agent is None:
            return ServiceResult.conflict(f"Agent '{agent_name}' already exists")
        logger.info(f"{ctx.logged_in_user} registered agent {agent_name} (system_scoped={system_scoped})")
        return ServiceResult.success(_view(agent))

    @guarded("get agent permissions", "agent_name")
    async def get_permissions(self, ctx: TenantContext, agent_name: str) -> ServiceResult[AgentPermissions]:
        loaded = await self._load(ctx, agent_name, PermissionLevel.READ)
        if not loaded.is_success:
            return loaded
        return ServiceResult.success(_view(loaded.data))

    @guarded("check agent permission", "agent_name")
    async def check_permission(
        self, ctx: TenantContext, agent_name: str, level: PermissionLevel | str
    ) -> ServiceResult[bool]:
        try:
            level = PermissionLevel.parse(level)
        except ValueError as e:
            return ServiceResult.bad_request(str(e))
        if not ctx.logged_in_user:
            return ServiceResult.unauthorized()

        agent = await self.agents.get_visible(agent_name, ctx.tenant_id)
        if agent is None:
            return ServiceResult.not_found(f"Agent '{agent_name}' not found")
        return ServiceResult.success(has_resource_permission(agent, ctx.logged_in_user, ctx.user_roles, level))

    @guarded("add agent user", "agent_name", "user_id")
    async def add_user(
        self, ctx: TenantContext, agent_name: str, user_id: str, level: PermissionLevel | str
    ) -> ServiceResult[AgentPermissions]:
        """Places ``user_id`` at ``level``, moving them out of any other level."""
        if not user_id:
            return ServiceResult.bad_request("User ID is required")
        try:
            level = PermissionLevel.parse(level)
        except ValueError as e:
            return ServiceResult.bad_request(str(e))

        loaded = await self._load(ctx, agent_name, PermissionLevel.OWNER)
        if not loaded.is_success:
            return loaded
        try:
            agent = await self.agents.update_access(loaded.data.id, lambda draft: draft.grant(user_id, level))
        except SoleOwnerError:
            return ServiceResult.conflict(SOLE_OWNER)
        if agent is None:
            return ServiceResult.not_found(f"Agent '{agent_name}' not found")

        logger.info(f"{ctx.logged_in_user} granted {level.name} on agent {agent_name} to {user_id}")
        return ServiceResult.success(_view(agent))

    async def update_user_permission(
        self, ctx: TenantContext, agent_name: str, user_id: str, level: PermissionLevel | str
    ) -> ServiceResult[AgentPermissions]:
        return await self.add_user(ctx, agent_name, user_id, level)

    @guarded("remove agent user", "agent_name", "user_id")
    async def remove_user(self, ctx: TenantContext, agent_name: str, user_id: str) -> ServiceResult[AgentPermissions]:
        """Drops ``user_id`` from every level. Removing an absent user succeeds."""
        if not user_id:
            return ServiceResult.bad_request("User ID is required")

        loaded = await self._load(ctx, agent_name, PermissionLevel.OWNER)
        if not loaded.is_success:
            return loaded

        try:
            agent = await self.agents.update_access(loaded.data.id, lambda draft: draft.revoke(user_id))
        except SoleOwnerError:
            return ServiceResult.conflict(SOLE_OWNER)
        if agent is None:
            return ServiceResult.not_found(f"Agent '{agent_name}' not found")

        logger.info(f"{ctx.logged_in_user} removed {user_id} from agent {agent_name}")
        return ServiceResult.success(_view(agent))

from collections.abc import Callable

from loguru import logger
from sqlalchemy import or_, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import sessionmaker
from sqlmodel import select

from src.core.database import async_session_maker
from src.core.utils import utcnow
from src.domain.agents.models import Agent
from src.domain.identity.store import MAX_WRITE_ATTEMPTS, ConcurrentUpdateError


class SoleOwnerError(Exception):
    """The change would leave the agent without an owner."""


class AgentStore:
    def __init__(self, session_maker: sessionmaker = async_session_maker) -> None:
        self.session_maker = session_maker

    async def get_visible(self, name: str, tenant: str | None) -> Agent | None:
        """Finds ``name`` in ``tenant``, falling back to a system-scoped agent of that name."""
        async with self.session_maker() as session:
            scope = Agent.system_scoped == True  # noqa: E712
            if tenant is not None:
                scope = or_(Agent.tenant == tenant, scope)
            stmt = select(Agent).where(Agent.name == name, scope).order_by(Agent.system_scoped)
            return (await session.exec(stmt)).first()

    async def create(self, agent: Agent) -> Agent | None:
        """Inserts ``agent``. Returns None when its name is already taken in that scope."""
        async with self.session_maker() as session:
            session.add(agent)
            try:
                await session.commit()
            except IntegrityError:
                await session.rollback()
                return None
            await session.refresh(agent)
            return agent

    async def update_access(self, agent_id: int, change: Callable[[Agent], None]) -> Agent | None:
        """Re-reads the agent and applies ``change`` to its access lists under a version guard.

        The owner check runs on every attempt, against the row just read.

        Returns:
            Agent | None: The updated agent, or None if it no longer exists.

        Raises:
            SoleOwnerError: If the change would remove the last owner.
            ConcurrentUpdateError: If every attempt lost the race.
        """
        for attempt in range(1, MAX_WRITE_ATTEMPTS + 1):
            async with self.session_maker() as session:
                current = await session.get(Agent, agent_id)
                if current is None:
                    return None
                draft = Agent(
                    name=current.name,
                    owner_access=list(current.owner_access),
                    write_access=list(current.write_access),
                    read_access=list(current.read_access),
                )
                change(draft)
                if not draft.owner_access:
                    raise SoleOwnerError(current.name)

                stmt = (
                    update(Agent)
                    .where(Agent.id == agent_id, Agent.version == current.version)
                    .values(
                        owner_access=draft.owner_access,
                        write_access=draft.write_access,
                        read_access=draft.read_access,
                        version=current.version + 1,
                        updated_at=utcnow(),
                    )
                    .execution_options(synchronize_session=False)
                )
                try:
                    result = await session.exec(stmt)
                    if result.rowcount == 1:
                        await session.commit()
                        await session.refresh(current)
                        return current
                    await session.rollback()
                except IntegrityError:
                    await session.rollback()

            logger.debug(f"Agent {agent_id} access update lost a race (attempt {attempt}), retrying")

        raise ConcurrentUpdateError(f"Could not update access lists of agent {agent_id}")

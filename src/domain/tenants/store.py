from typing import Any

from sqlalchemy import delete, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import sessionmaker
from sqlmodel import select

from src.core.database import async_session_maker
from src.core.utils import utcnow
from src.domain.agents.models import Agent
from src.domain.identity.models import Invitation, InvitationStatus, TenantRole
from src.domain.tenants.models import Tenant


class TenantStore:
    def __init__(self, session_maker: sessionmaker = async_session_maker) -> None:
        self.session_maker = session_maker

    async def get_by_id(self, id: int) -> Tenant | None:
        async with self.session_maker() as session:
            return await session.get(Tenant, id)

    async def get_by_tenant_id(self, tenant_id: str) -> Tenant | None:
        async with self.session_maker() as session:
            return (await session.exec(select(Tenant).where(Tenant.tenant_id == tenant_id))).first()

    async def get_by_domain(self, domain: str) -> Tenant | None:
        async with self.session_maker() as session:
            return (await session.exec(select(Tenant).where(Tenant.domain == domain))).first()

    async def get_all(self, enabled_only: bool = False) -> list[Tenant]:
        async with self.session_maker() as session:
            stmt = select(Tenant).order_by(Tenant.tenant_id)
            if enabled_only:
                stmt = stmt.where(Tenant.enabled == True)  # noqa: E712
            return list((await session.exec(stmt)).all())

    async def get_many(self, tenant_ids: list[str], enabled_only: bool = False) -> list[Tenant]:
        if not tenant_ids:
            return []
        async with self.session_maker() as session:
            stmt = select(Tenant).where(Tenant.tenant_id.in_(tenant_ids)).order_by(Tenant.tenant_id)
            if enabled_only:
                stmt = stmt.where(Tenant.enabled == True)  # noqa: E712
            return list((await session.exec(stmt)).all())

    async def create(self, tenant: Tenant) -> Tenant | None:
        """Inserts ``tenant``. Returns None when its id or domain is already taken."""
        async with self.session_maker() as session:
            session.add(tenant)
            try:
                await session.commit()
            except IntegrityError:
                await session.rollback()
                return None
            await session.refresh(tenant)
            return tenant

    async def update(self, tenant_id: str, changes: dict[str, Any]) -> Tenant | None:
        """Applies column changes. Returns the updated tenant, or None if it does not exist.

        Raises:
            IntegrityError: If the new domain belongs to another tenant.
        """
        async with self.session_maker() as session:
            stmt = (
                update(Tenant)
                .where(Tenant.tenant_id == tenant_id)
                .values(**changes, updated_at=utcnow())
                .execution_options(synchronize_session=False)
            )
            result = await session.exec(stmt)
            await session.commit()
            if result.rowcount != 1:
                return None
        return await self.get_by_tenant_id(tenant_id)

    async def delete(self, tenant_id: str) -> list[str] | None:
        """Deletes the tenant with its memberships and agents, expiring its pending invitations.

        All of it commits in one transaction, so a tenant later re-created
        under the same id starts without members or usable invitations.

        Returns:
            list[str] | None: Ids of the users who held a membership, or None if the tenant does not exist.
        """
        async with self.session_maker() as session:
            result = await session.exec(delete(Tenant).where(Tenant.tenant_id == tenant_id))
            if result.rowcount != 1:
                await session.rollback()
                return None

            members = list((await session.exec(select(TenantRole.user_id).where(TenantRole.tenant == tenant_id))).all())
            await session.exec(delete(TenantRole).where(TenantRole.tenant == tenant_id))
            await session.exec(delete(Agent).where(Agent.tenant == tenant_id))
            await session.exec(
                update(Invitation)
                .where(Invitation.tenant_id == tenant_id, Invitation.status == InvitationStatus.PENDING)
                .values(status=InvitationStatus.EXPIRED)
                .execution_options(synchronize_session=False)
            )
            await session.commit()
            return members

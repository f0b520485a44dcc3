from collections.abc import Callable, Iterable
from dataclasses import dataclass
from datetime import datetime
from typing import Any

from loguru import logger
from sqlalchemy import delete, func, insert, literal, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import sessionmaker
from sqlmodel import select

from src.core.database import async_session_maker
from src.core.utils import normalize_email, utcnow
from src.domain.identity.models import Invitation, InvitationStatus, SystemRole, TenantRole, User

MAX_WRITE_ATTEMPTS = 5


class ConcurrentUpdateError(RuntimeError):
    """Raised when an optimistic write keeps losing the race."""


class MembershipConflictError(Exception):
    """The membership is already in a state that forbids the requested change."""


class MembershipNotFoundError(Exception):
    """The user has no membership in the tenant."""


@dataclass(frozen=True, slots=True)
class RoleState:
    """Desired content of a TenantRole row after a mutation."""

    roles: list[str]
    is_approved: bool


# Receives the current row (or None) and returns the desired state, None to
# delete the row, or raises one of the membership errors above.
RoleChange = Callable[[TenantRole | None], RoleState | None]


def _union(existing: Iterable[str], added: Iterable[str]) -> list[str]:
    merged = list(existing)
    for role in added:
        if role not in merged:
            merged.append(role)
    return merged


class UserStore:
    """Persistence for users and their per-tenant memberships."""

    def __init__(self, session_maker: sessionmaker = async_session_maker) -> None:
        self.session_maker = session_maker

    # --- Users ---

    async def get_by_id(self, user_id: str) -> User | None:
        async with self.session_maker() as session:
            return (await session.exec(select(User).where(User.user_id == user_id))).first()

    async def get_by_email(self, email: str) -> User | None:
        async with self.session_maker() as session:
            stmt = select(User).where(func.lower(User.email) == normalize_email(email))
            return (await session.exec(stmt)).first()

    async def any_user_exists(self) -> bool:
        async with self.session_maker() as session:
            return (await session.exec(select(User.id).limit(1))).first() is not None

    async def list_users(self) -> list[User]:
        async with self.session_maker() as session:
            return list((await session.exec(select(User).order_by(User.id))).all())

    async def create(self, user_id: str, email: str, name: str, pending_tenant: str | None = None) -> User | None:
        """Inserts a user, granting SysAdmin when the table was empty.

        The emptiness check runs inside the INSERT statement itself, so two
        concurrent first sign-ins cannot both become SysAdmin.

        Args:
            user_id: Identity-provider subject.
            email: Contact email, stored lower-cased.
            name: Display name.
            pending_tenant: Optionally seeds a pending TenantUser membership.

        Returns:
            User | None: The stored user, or None if ``user_id`` already exists.
        """
        now = utcnow()
        table = User.__table__
        existing = table.alias("existing_user")
        source = select(
            literal(user_id),
            literal(normalize_email(email)),
            literal(name or ""),
            (~select(existing.c.id).exists()).label("is_sys_admin"),
            literal(False),
            literal(now, type_=table.c.created_at.type),
            literal(now, type_=table.c.updated_at.type),
        )
        stmt = insert(table).from_select(
            ["user_id", "email", "name", "is_sys_admin", "is_locked_out", "created_at", "updated_at"], source
        )

        async with self.session_maker() as session:
            try:
                await session.exec(stmt)
                if pending_tenant:
                    session.add(
                        TenantRole(
                            user_id=user_id,
                            tenant=pending_tenant,
                            roles=[SystemRole.TENANT_USER.value],
                            is_approved=False,
                        )
                    )
                await session.commit()
            except IntegrityError:
                await session.rollback()
                return None

        return await self.get_by_id(user_id)

    async def _update_user(self, user_id: str, **values: Any) -> bool:
        async with self.session_maker() as session:
            stmt = (
                update(User)
                .where(User.user_id == user_id)
                .values(**values, updated_at=utcnow())
                .execution_options(synchronize_session=False)
            )
            result = await session.exec(stmt)
            await session.commit()
            return result.rowcount == 1

    async def set_sys_admin(self, user_id: str, is_sys_admin: bool) -> bool:
        return await self._update_user(user_id, is_sys_admin=is_sys_admin)

    async def claim_bootstrap_sys_admin(self, user_id: str) -> bool:
        """Grants SysAdmin to ``user_id`` only while no SysAdmin exists.

        Returns:
            bool: False if another administrator got there first.
        """
        admins = User.__table__.alias("existing_admin")
        no_admins = ~select(admins.c.id).where(admins.c.is_sys_admin == True).exists()  # noqa: E712
        async with self.session_maker() as session:
            stmt = (
                update(User)
                .where(User.user_id == user_id, no_admins)
                .values(is_sys_admin=True, updated_at=utcnow())
                .execution_options(synchronize_session=False)
            )
            result = await session.exec(stmt)
            await session.commit()
            return result.rowcount == 1

    async def get_system_admins(self) -> list[User]:
        async with self.session_maker() as session:
            stmt = select(User).where(User.is_sys_admin == True).order_by(User.id)  # noqa: E712
            return list((await session.exec(stmt)).all())

    async def lock(self, user_id: str, reason: str, locked_by: str | None) -> bool:
        return await self._update_user(
            user_id, is_locked_out=True, lockout_reason=reason, locked_out_at=utcnow(), locked_out_by=locked_by
        )

    async def unlock(self, user_id: str) -> bool:
        return await self._update_user(
            user_id, is_locked_out=False, lockout_reason=None, locked_out_at=None, locked_out_by=None
        )

    async def is_locked_out(self, user_id: str) -> bool:
        async with self.session_maker() as session:
            stmt = select(User.is_locked_out).where(User.user_id == user_id)
            return bool((await session.exec(stmt)).first())

    # --- Memberships ---

    async def get_tenant_role(self, user_id: str, tenant: str) -> TenantRole | None:
        async with self.session_maker() as session:
            stmt = select(TenantRole).where(TenantRole.user_id == user_id, TenantRole.tenant == tenant)
            return (await session.exec(stmt)).first()

    async def get_tenant_roles(self, user_id: str) -> list[TenantRole]:
        async with self.session_maker() as session:
            stmt = select(TenantRole).where(TenantRole.user_id == user_id).order_by(TenantRole.id)
            return list((await session.exec(stmt)).all())

    async def get_users_by_role(self, role: SystemRole, tenant: str) -> list[User]:
        async with self.session_maker() as session:
            stmt = (
                select(User, TenantRole)
                .join(TenantRole, TenantRole.user_id == User.user_id)
                .where(TenantRole.tenant == tenant, TenantRole.is_approved == True)  # noqa: E712
                .order_by(User.id)
            )
            rows = (await session.exec(stmt)).all()
        return [user for user, membership in rows if role.value in membership.roles]

    async def get_pending_memberships(self, tenant: str | None = None) -> list[tuple[User, TenantRole]]:
        async with self.session_maker() as session:
            stmt = (
                select(User, TenantRole)
                .join(TenantRole, TenantRole.user_id == User.user_id)
                .where(TenantRole.is_approved == False)  # noqa: E712
                .order_by(User.id, TenantRole.id)
            )
            if tenant is not None:
                stmt = stmt.where(TenantRole.tenant == tenant)
            return [(user, membership) for user, membership in (await session.exec(stmt)).all()]

    async def get_users_without_memberships(self) -> list[User]:
        async with self.session_maker() as session:
            has_membership = select(TenantRole.id).where(TenantRole.user_id == User.user_id).exists()
            stmt = select(User).where(~has_membership).order_by(User.id)
            return list((await session.exec(stmt)).all())

    async def mutate_tenant_role(self, user_id: str, tenant: str, change: RoleChange) -> TenantRole | None:
        """Applies ``change`` to the (user, tenant) membership with optimistic concurrency.

        The row is re-read on every attempt; updates and deletes only land if
        the version is still the one that was read, and an insert that loses
        the unique-key race is retried as an update.

        Returns:
            TenantRole | None: The row as stored after the change, None if it was deleted.

        Raises:
            MembershipConflictError: Propagated from ``change``.
            MembershipNotFoundError: Propagated from ``change``.
            ConcurrentUpdateError: If every attempt lost the race.
        """
        for attempt in range(1, MAX_WRITE_ATTEMPTS + 1):
            async with self.session_maker() as session:
                stmt = select(TenantRole).where(TenantRole.user_id == user_id, TenantRole.tenant == tenant)
                current = (await session.exec(stmt)).first()
                desired = change(current)

                if current is None and desired is None:
                    return None
                if current is not None and desired is not None:
                    if desired.roles == current.roles and desired.is_approved == current.is_approved:
                        return current

                try:
                    if current is None:
                        row = TenantRole(
                            user_id=user_id, tenant=tenant, roles=desired.roles, is_approved=desired.is_approved
                        )
                        session.add(row)
                        await session.commit()
                        return row

                    guard = (TenantRole.id == current.id, TenantRole.version == current.version)
                    if desired is None:
                        stmt = delete(TenantRole).where(*guard)
                    else:
                        stmt = (
                            update(TenantRole)
                            .where(*guard)
                            .values(
                                roles=desired.roles,
                                is_approved=desired.is_approved,
                                version=current.version + 1,
                                updated_at=utcnow(),
                            )
                        )
                    result = await session.exec(stmt.execution_options(synchronize_session=False))
                    if result.rowcount == 1:
                        await session.commit()
                        if desired is None:
                            return None
                        await session.refresh(current)
                        return current
                    await session.rollback()
                except IntegrityError:
                    await session.rollback()

            logger.debug(f"Membership write for {user_id}@{tenant} lost a race (attempt {attempt}), retrying")

        raise ConcurrentUpdateError(f"Could not update membership of {user_id} in {tenant}")

    async def add_roles(
        self, user_id: str, tenant: str, roles: Iterable[str], approve: bool = False
    ) -> TenantRole:
        """Unions ``roles`` into the membership, creating an approved one if absent."""
        added = [str(role) for role in roles]

        def change(current: TenantRole | None) -> RoleState:
            if current is None:
                return RoleState(added, True)
            return RoleState(_union(current.roles, added), current.is_approved or approve)

        return await self.mutate_tenant_role(user_id, tenant, change)

    async def remove_roles(self, user_id: str, tenant: str, roles: Iterable[str]) -> TenantRole | None:
        """Drops ``roles`` from the membership, deleting it once no roles are left.

        Raises:
            MembershipNotFoundError: If the user has no membership in ``tenant``.
        """
        removed = {str(role) for role in roles}

        def change(current: TenantRole | None) -> RoleState | None:
            if current is None:
                raise MembershipNotFoundError(tenant)
            remaining = [role for role in current.roles if role not in removed]
            return RoleState(remaining, current.is_approved) if remaining else None

        return await self.mutate_tenant_role(user_id, tenant, change)

    async def create_pending(self, user_id: str, tenant: str, roles: Iterable[str]) -> TenantRole:
        """Creates an unapproved membership.

        Raises:
            MembershipConflictError: If any membership for ``tenant`` already exists.
        """
        requested = [str(role) for role in roles]

        def change(current: TenantRole | None) -> RoleState:
            if current is not None:
                raise MembershipConflictError(tenant)
            return RoleState(requested, False)

        return await self.mutate_tenant_role(user_id, tenant, change)

    async def approve(self, user_id: str, tenant: str, default_roles: Iterable[str]) -> TenantRole:
        """Marks the membership approved, seeding ``default_roles`` into an empty role set.

        A missing membership is created already approved.

        Raises:
            MembershipConflictError: If the membership is already approved.
        """
        defaults = [str(role) for role in default_roles]

        def change(current: TenantRole | None) -> RoleState:
            if current is None:
                return RoleState(defaults, True)
            if current.is_approved:
                raise MembershipConflictError(tenant)
            return RoleState(list(current.roles) or defaults, True)

        return await self.mutate_tenant_role(user_id, tenant, change)

    async def delete_tenant_role(self, user_id: str, tenant: str, pending_only: bool = False) -> bool:
        """Deletes the membership outright.

        Raises:
            MembershipConflictError: If ``pending_only`` is set and the membership is approved.
        """
        found = False

        def change(current: TenantRole | None) -> None:
            nonlocal found
            found = current is not None
            if current is not None and pending_only and current.is_approved:
                raise MembershipConflictError(tenant)
            return None

        await self.mutate_tenant_role(user_id, tenant, change)
        return found


class InvitationStore:
    """Persistence for invitations; status moves are conditional on the current status."""

    def __init__(self, session_maker: sessionmaker = async_session_maker) -> None:
        self.session_maker = session_maker

    async def create(self, invitation: Invitation) -> Invitation:
        async with self.session_maker() as session:
            session.add(invitation)
            await session.commit()
            await session.refresh(invitation)
            return invitation

    async def get_by_token(self, token: str) -> Invitation | None:
        async with self.session_maker() as session:
            return (await session.exec(select(Invitation).where(Invitation.token == token))).first()

    async def get_pending_by_email(self, email: str) -> Invitation | None:
        async with self.session_maker() as session:
            stmt = (
                select(Invitation)
                .where(Invitation.email == normalize_email(email), Invitation.status == InvitationStatus.PENDING)
                .order_by(Invitation.created_at.desc())
            )
            return (await session.exec(stmt)).first()

    async def list_by_tenant(self, tenant_id: str) -> list[Invitation]:
        async with self.session_maker() as session:
            stmt = select(Invitation).where(Invitation.tenant_id == tenant_id).order_by(Invitation.created_at.desc())
            return list((await session.exec(stmt)).all())

    async def transition(
        self,
        token: str,
        from_status: InvitationStatus,
        to_status: InvitationStatus,
        accepted_by: str | None = None,
        at: datetime | None = None,
    ) -> bool:
        """Moves an invitation between statuses if it is still in ``from_status``.

        Returns:
            bool: True for the single caller whose update landed.
        """
        values: dict[str, Any] = {"status": to_status}
        if to_status is InvitationStatus.ACCEPTED:
            values.update(accepted_by=accepted_by, accepted_at=at or utcnow())
        elif from_status is InvitationStatus.ACCEPTED:
            values.update(accepted_by=None, accepted_at=None)

        async with self.session_maker() as session:
            stmt = (
                update(Invitation)
                .where(Invitation.token == token, Invitation.status == from_status)
                .values(**values)
                .execution_options(synchronize_session=False)
            )
            result = await session.exec(stmt)
            await session.commit()
            return result.rowcount == 1

    async def delete(self, token: str) -> bool:
        async with self.session_maker() as session:
            result = await session.exec(delete(Invitation).where(Invitation.token == token))
            await session.commit()
            return result.rowcount == 1

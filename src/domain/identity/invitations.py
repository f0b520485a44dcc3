from collections.abc import Callable, Iterable
from datetime import datetime, timedelta

from jinja2 import Environment, select_autoescape
from loguru import logger

from src.config.settings import settings
from src.core.cache import RoleCache
from src.core.email import EmailDispatcher
from src.core.results import ServiceResult, guarded
from src.core.tokens import IdentityTokenParser, InvalidIdentityTokenError
from src.core.utils import generate_token, normalize_email, utcnow
from src.domain.identity.authorization import authorize
from src.domain.identity.context import TenantContext
from src.domain.identity.models import (
    Invitation,
    InvitationRead,
    InvitationStatus,
    InvalidRoleError,
    SystemRole,
    TenantRoleRead,
    parse_roles,
)
from src.domain.identity.store import InvitationStore, UserStore
from src.domain.tenants.store import TenantStore

INVALID_INVITATION = "Invalid or expired invitation token"

_templates = Environment(autoescape=select_autoescape(default=True, default_for_string=True))
INVITATION_SUBJECT = "You're invited to join {tenant_name} on {portal_name}"
INVITATION_BODY = _templates.from_string(
    """<p>Hello{% if name %} {{ name }}{% endif %},</p>
<p>You have been invited to join <strong>{{ tenant_name }}</strong> as {{ roles | join(", ") }}.</p>
<p><a href="{{ accept_url }}">Accept the invitation</a></p>
<p>This invitation expires on {{ expires_at.strftime("%Y-%m-%d %H:%M") }} UTC.</p>"""
)


class InvitationService:
    """Issues single-use invitation tokens and turns them into approved memberships."""

    def __init__(
        self,
        users: UserStore,
        invitations: InvitationStore,
        tenants: TenantStore,
        cache: RoleCache,
        dispatcher: EmailDispatcher,
        token_parser: IdentityTokenParser,
        ttl_days: int = 7,
        clock: Callable[[], datetime] = utcnow,
        token_factory: Callable[[], str] = generate_token,
    ) -> None:
        self.users = users
        self.invitations = invitations
        self.tenants = tenants
        self.cache = cache
        self.dispatcher = dispatcher
        self.token_parser = token_parser
        self.ttl = timedelta(days=ttl_days)
        self.clock = clock
        self.token_factory = token_factory

    @guarded("invite user", "tenant_id")
    async def invite_user(
        self,
        ctx: TenantContext,
        email: str,
        tenant_id: str,
        roles: Iterable[str | SystemRole] | None = None,
        name: str | None = None,
    ) -> ServiceResult[str]:
        """Creates a pending invitation and emails its link.

        Returns:
            ServiceResult[str]: The invitation token on success.
        """
        if not email or "@" not in email or not tenant_id:
            return ServiceResult.bad_request("A valid email and tenant ID are required")

        decision = authorize(ctx, tenant_id)
        if not decision:
            logger.warning(f"{ctx.logged_in_user} denied 'invite user' to {tenant_id}: {decision.reason}")
            return ServiceResult.forbidden(decision.reason)

        try:
            parsed = parse_roles(roles or [SystemRole.TENANT_USER])
        except InvalidRoleError as e:
            return ServiceResult.bad_request(str(e))

        tenant = await self.tenants.get_by_tenant_id(tenant_id)
        if tenant is None:
            return ServiceResult.not_found("Tenant not found")

        email = normalize_email(email)
        if await self.users.get_by_email(email) is not None:
            return ServiceResult.conflict("A user with this email already exists")

        now = self.clock()
        invitation = await self.invitations.create(
            Invitation(
                token=self.token_factory(),
                email=email,
                name=name,
                tenant_id=tenant_id,
                roles=[role.value for role in parsed],
                status=InvitationStatus.PENDING,
                invited_by=ctx.logged_in_user,
                created_at=now,
                expires_at=now + self.ttl,
            )
        )
        logger.info(f"{ctx.logged_in_user} invited {email} to {tenant_id} as {invitation.roles}")

        await self._send_invitation_email(invitation, tenant.name)
        return ServiceResult.success(invitation.token)

    async def _send_invitation_email(self, invitation: Invitation, tenant_name: str) -> None:
        """Fire-and-forget; the invitation stays valid even if the email never leaves."""
        context = {
            "name": invitation.name,
            "tenant_name": tenant_name,
            "portal_name": settings.PORTAL_NAME,
            "roles": invitation.roles,
            "accept_url": f"{settings.PORTAL_URL.rstrip('/')}/invitations/accept?token={invitation.token}",
            "expires_at": invitation.expires_at,
        }
        try:
            await self.dispatcher.dispatch(
                invitation.email,
                INVITATION_SUBJECT.format(tenant_name=tenant_name, portal_name=settings.PORTAL_NAME),
                INVITATION_BODY.render(context),
                is_html=True,
            )
        except Exception as e:
            logger.error(f"Invitation email to {invitation.email} could not be dispatched: {e}")

    async def _expire(self, invitation: Invitation) -> None:
        if await self.invitations.transition(invitation.token, InvitationStatus.PENDING, InvitationStatus.EXPIRED):
            logger.info(f"Invitation for {invitation.email} to {invitation.tenant_id} expired")

    @guarded("get invitation by email")
    async def get_invite_by_email(self, identity_token: str) -> ServiceResult[InvitationRead | None]:
        """Looks up the pending invitation addressed to the caller's email claim.

        An invitation found past its expiry is marked Expired and reported as absent.
        """
        try:
            claims = self.token_parser.parse(identity_token)
        except InvalidIdentityTokenError as e:
            logger.warning(f"Invitation lookup with an unusable identity token: {e}")
            return ServiceResult.unauthorized("Invalid identity token")

        if not claims.email:
            return ServiceResult.bad_request("Identity token carries no email claim")

        invitation = await self.invitations.get_pending_by_email(claims.email)
        if invitation is None:
            return ServiceResult.success(None)

        if invitation.is_expired(self.clock()):
            await self._expire(invitation)
            return ServiceResult.success(None)

        return ServiceResult.success(InvitationRead.build(invitation))

    @guarded("accept invitation")
    async def accept_invitation(self, ctx: TenantContext, token: str) -> ServiceResult[TenantRoleRead]:
        """Consumes ``token`` and grants its tenant roles to the calling user.

        The invitation is claimed (Pending to Accepted) before the membership
        is written, so a replayed or concurrent acceptance finds it consumed.
        """
        if not ctx.logged_in_user:
            return ServiceResult.unauthorized("No logged-in user")
        if not token:
            return ServiceResult.bad_request("Invitation token is required")

        invitation = await self.invitations.get_by_token(token)
        if invitation is None or invitation.status != InvitationStatus.PENDING:
            return ServiceResult.not_found(INVALID_INVITATION)

        now = self.clock()
        if invitation.is_expired(now):
            await self._expire(invitation)
            return ServiceResult.not_found(INVALID_INVITATION)

        user_id = ctx.logged_in_user
        if await self.users.get_by_id(user_id) is None:
            return ServiceResult.not_found("User not found")

        claimed = await self.invitations.transition(
            token, InvitationStatus.PENDING, InvitationStatus.ACCEPTED, accepted_by=user_id, at=now
        )
        if not claimed:
            return ServiceResult.not_found(INVALID_INVITATION)

        try:
            membership = await self.users.add_roles(user_id, invitation.tenant_id, invitation.roles, approve=True)
        except Exception:
            await self.invitations.transition(token, InvitationStatus.ACCEPTED, InvitationStatus.PENDING)
            raise
        await self.cache.invalidate(invitation.tenant_id, user_id)

        logger.info(f"{user_id} accepted the invitation to {invitation.tenant_id} as {invitation.roles}")
        return ServiceResult.success(
            TenantRoleRead(tenant=membership.tenant, roles=membership.roles, is_approved=membership.is_approved)
        )

    @guarded("list invitations", "tenant_id")
    async def get_invitations(self, ctx: TenantContext, tenant_id: str) -> ServiceResult[list[InvitationRead]]:
        if not tenant_id:
            return ServiceResult.bad_request("Tenant ID is required")

        decision = authorize(ctx, tenant_id)
        if not decision:
            return ServiceResult.forbidden(decision.reason)

        invitations = await self.invitations.list_by_tenant(tenant_id)
        return ServiceResult.success([InvitationRead.build(invitation) for invitation in invitations])

    @guarded("delete invitation")
    async def delete_invitation(self, ctx: TenantContext, token: str) -> ServiceResult[bool]:
        invitation = await self.invitations.get_by_token(token) if token else None
        if invitation is None:
            return ServiceResult.not_found("Invitation not found")

        decision = authorize(ctx, invitation.tenant_id)
        if not decision:
            return ServiceResult.forbidden(decision.reason)

        await self.invitations.delete(token)
        logger.info(f"{ctx.logged_in_user} deleted the invitation for {invitation.email} to {invitation.tenant_id}")
        return ServiceResult.success(True)

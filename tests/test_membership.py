import unittest

from src.core.results import ResultStatus
from src.domain.identity.roles import RoleManagementService
from src.domain.tenants.membership import NO_TENANT, TenantMembershipService
from src.domain.tenants.models import TenantCreate
from tests.base import ROOT_USER, BaseTest, member_ctx, sys_admin_ctx, tenant_admin_ctx


class TestTenantMembershipService(BaseTest):
    """Test suite for join requests, approvals and self-service tenant creation."""

    async def asyncSetUp(self) -> None:
        await super().asyncSetUp()
        self.service = TenantMembershipService(self.user_store, self.tenant_store, self.role_cache)
        self.roles = RoleManagementService(self.user_store, self.role_cache)
        await self.create_tenant("acme")
        await self.create_user("alice")
        await self.create_user("bob")

    async def test_join_then_approve(self) -> None:
        """Verifies a join request grants nothing until a SysAdmin approves it."""
        joined = await self.service.request_to_join_tenant("bob", "acme")

        self.assertTrue(joined.is_success)
        self.assertFalse(joined.data.is_approved)
        self.assertEqual(joined.data.roles, ["TenantUser"])
        self.assertEqual(await self.roles.resolve_roles("bob", "acme"), [])

        approved = await self.service.approve_user(sys_admin_ctx(), "bob", "acme")

        self.assertTrue(approved.is_success)
        self.assertTrue(approved.data.is_approved)
        self.assertEqual(await self.roles.resolve_roles("bob", "acme"), ["TenantUser"])

    async def test_second_join_request_conflicts(self) -> None:
        """Verifies a user cannot request the same tenant twice."""
        await self.service.request_to_join_tenant("bob", "acme")

        again = await self.service.request_to_join_tenant("bob", "acme")

        self.assertEqual(again.status, ResultStatus.CONFLICT)

    async def test_join_unknown_or_disabled_tenant(self) -> None:
        """Verifies unknown tenants are not found and disabled tenants refuse requests."""
        await self.create_tenant("dormant", enabled=False)

        unknown = await self.service.request_to_join_tenant("bob", "nowhere")
        disabled = await self.service.request_to_join_tenant("bob", "dormant")
        ghost = await self.service.request_to_join_tenant("ghost", "acme")

        self.assertEqual(unknown.status, ResultStatus.NOT_FOUND)
        self.assertEqual(disabled.status, ResultStatus.BAD_REQUEST)
        self.assertEqual(ghost.status, ResultStatus.NOT_FOUND)

    async def test_tenant_admin_cannot_approve(self) -> None:
        """Verifies approval is reserved to SysAdmin even inside the admin's own tenant."""
        await self.user_store.add_roles("alice", "acme", ["TenantAdmin"])
        await self.service.request_to_join_tenant("bob", "acme")

        result = await self.service.approve_user(tenant_admin_ctx("alice", "acme"), "bob", "acme")

        self.assertEqual(result.status, ResultStatus.FORBIDDEN)
        self.assertFalse((await self.user_store.get_tenant_role("bob", "acme")).is_approved)

    async def test_approve_twice_conflicts(self) -> None:
        """Verifies approving an approved membership is a conflict."""
        await self.service.request_to_join_tenant("bob", "acme")
        await self.service.approve_user(sys_admin_ctx(), "bob", "acme")

        again = await self.service.approve_user(sys_admin_ctx(), "bob", "acme")

        self.assertEqual(again.status, ResultStatus.CONFLICT)

    async def test_approve_without_request(self) -> None:
        """Verifies approving a user with no request creates an approved membership."""
        result = await self.service.approve_user(sys_admin_ctx(), "bob", "acme")

        self.assertTrue(result.is_success)
        self.assertTrue(result.data.is_approved)

    async def test_reject_returns_to_non_member(self) -> None:
        """Verifies a rejected request is deleted and can be filed again."""
        await self.service.request_to_join_tenant("bob", "acme")

        rejected = await self.service.reject_user(sys_admin_ctx(), "bob", "acme")
        missing = await self.service.reject_user(sys_admin_ctx(), "bob", "acme")
        rejoined = await self.service.request_to_join_tenant("bob", "acme")

        self.assertTrue(rejected.is_success)
        self.assertEqual(missing.status, ResultStatus.NOT_FOUND)
        self.assertTrue(rejoined.is_success)

    async def test_reject_refuses_approved_membership(self) -> None:
        """Verifies rejection does not remove an approved member."""
        await self.user_store.add_roles("bob", "acme", ["TenantUser"])

        result = await self.service.reject_user(sys_admin_ctx(), "bob", "acme")

        self.assertEqual(result.status, ResultStatus.CONFLICT)
        self.assertIsNotNone(await self.user_store.get_tenant_role("bob", "acme"))

    async def test_create_new_tenant_makes_creator_admin(self) -> None:
        """Verifies the creator becomes an approved TenantAdmin of the new tenant."""
        result = await self.service.create_new_tenant(
            TenantCreate(tenant_id="globex", name="Globex", domain="https://globex.com/"), "alice"
        )

        self.assertTrue(result.is_success)
        self.assertEqual(result.data.domain, "globex.com")
        self.assertEqual(await self.roles.resolve_roles("alice", "globex"), ["TenantAdmin"])

    async def test_create_new_tenant_conflicts(self) -> None:
        """Verifies duplicate identifiers and domains are refused."""
        await self.service.create_new_tenant(TenantCreate(tenant_id="globex", name="Globex", domain="globex.com"), "alice")

        same_id = await self.service.create_new_tenant(TenantCreate(tenant_id="globex", name="Other"), "bob")
        same_domain = await self.service.create_new_tenant(
            TenantCreate(tenant_id="initech", name="Initech", domain="http://globex.com"), "bob"
        )

        self.assertEqual(same_id.status, ResultStatus.CONFLICT)
        self.assertEqual(same_domain.status, ResultStatus.CONFLICT)

    async def test_create_new_tenant_validation(self) -> None:
        """Verifies malformed identifiers are a bad request and anonymous callers unauthorized."""
        invalid = await self.service.create_new_tenant(TenantCreate(tenant_id="bad id", name="Bad"), "alice")
        anonymous = await self.service.create_new_tenant(TenantCreate(tenant_id="ok", name="Ok"), "")

        self.assertEqual(invalid.status, ResultStatus.BAD_REQUEST)
        self.assertEqual(anonymous.status, ResultStatus.UNAUTHORIZED)

    async def test_create_new_tenant_provisions_unknown_creator(self) -> None:
        """Verifies a creator without a user record is provisioned on the way."""
        result = await self.service.create_new_tenant(
            TenantCreate(tenant_id="globex", name="Globex"), "carol", email="carol@example.com", name="Carol"
        )

        self.assertTrue(result.is_success)
        carol = await self.user_store.get_by_id("carol")
        self.assertEqual(carol.email, "carol@example.com")
        self.assertFalse(carol.is_sys_admin)

    async def test_unapproved_listing_includes_orphans(self) -> None:
        """Verifies the global listing reports pending requests and users without tenants, never SysAdmins."""
        await self.service.request_to_join_tenant("bob", "acme")

        result = await self.service.get_unapproved_users(sys_admin_ctx())

        entries = {(e.user_id, e.tenant) for e in result.data}
        self.assertEqual(entries, {("bob", "acme"), ("alice", NO_TENANT)})
        self.assertNotIn(ROOT_USER, {e.user_id for e in result.data})

    async def test_unapproved_listing_for_one_tenant(self) -> None:
        """Verifies tenant admins can list pending requests of their own tenant only."""
        await self.user_store.add_roles("alice", "acme", ["TenantAdmin"])
        await self.service.request_to_join_tenant("bob", "acme")

        own = await self.service.get_unapproved_users(tenant_admin_ctx("alice", "acme"), "acme")
        global_listing = await self.service.get_unapproved_users(tenant_admin_ctx("alice", "acme"))

        self.assertEqual([(e.user_id, e.tenant) for e in own.data], [("bob", "acme")])
        self.assertEqual(global_listing.status, ResultStatus.FORBIDDEN)

    async def test_tenants_for_user(self) -> None:
        """Verifies members see approved enabled tenants and SysAdmins see every enabled tenant."""
        await self.create_tenant("globex")
        await self.create_tenant("dormant", enabled=False)
        await self.user_store.add_roles("bob", "acme", ["TenantUser"])
        await self.user_store.add_roles("bob", "dormant", ["TenantUser"])
        await self.user_store.create_pending("bob", "globex", ["TenantUser"])

        member = await self.service.get_tenants_for_user(member_ctx("bob", None))
        admin = await self.service.get_tenants_for_user(sys_admin_ctx())

        self.assertEqual([t.tenant_id for t in member.data], ["acme"])
        self.assertEqual([t.tenant_id for t in admin.data], ["acme", "globex"])


if __name__ == "__main__":
    unittest.main()

import unittest
from unittest.mock import AsyncMock, patch

from src.core.results import ResultStatus
from src.domain.agents.models import Agent
from src.domain.agents.permissions import AgentPermissionService
from src.domain.agents.store import SoleOwnerError
from src.domain.identity.context import TenantContext
from tests.base import BaseTest, member_ctx, sys_admin_ctx


class TestAgentPermissionService(BaseTest):
    """Test suite for agent registration and ACL edits."""

    async def asyncSetUp(self) -> None:
        await super().asyncSetUp()
        self.service = AgentPermissionService(self.agent_store)
        self.owner = member_ctx("alice", "acme")
        registered = await self.service.register_agent(self.owner, "assistant")
        self.assertTrue(registered.is_success)

    async def test_creator_is_owner(self) -> None:
        """Verifies the registering user lands in the owner list."""
        result = await self.service.get_permissions(self.owner, "assistant")

        self.assertEqual(result.data.owner_access, ["alice"])
        self.assertFalse(result.data.system_scoped)

    async def test_duplicate_registration_conflicts(self) -> None:
        """Verifies an agent name is unique within a tenant."""
        result = await self.service.register_agent(self.owner, "assistant")

        self.assertEqual(result.status, ResultStatus.CONFLICT)

    async def test_agents_are_tenant_scoped(self) -> None:
        """Verifies an agent of one tenant is not visible from another."""
        result = await self.service.get_permissions(member_ctx("alice", "globex"), "assistant")

        self.assertEqual(result.status, ResultStatus.NOT_FOUND)

    async def test_grant_update_and_remove(self) -> None:
        """Verifies a user can be granted, moved between levels and removed."""
        granted = await self.service.add_user(self.owner, "assistant", "bob", "readAccess")
        self.assertEqual(granted.data.read_access, ["bob"])

        moved = await self.service.update_user_permission(self.owner, "assistant", "bob", "Write")
        self.assertEqual(moved.data.write_access, ["bob"])
        self.assertEqual(moved.data.read_access, [])

        removed = await self.service.remove_user(self.owner, "assistant", "bob")
        self.assertEqual(removed.data.write_access, [])

        again = await self.service.remove_user(self.owner, "assistant", "bob")
        self.assertTrue(again.is_success)

    async def test_non_owner_cannot_edit(self) -> None:
        """Verifies writers can read the ACL but not edit it."""
        await self.service.add_user(self.owner, "assistant", "bob", "Write")
        writer = member_ctx("bob", "acme")

        readable = await self.service.get_permissions(writer, "assistant")
        edit = await self.service.add_user(writer, "assistant", "carol", "Read")

        self.assertTrue(readable.is_success)
        self.assertEqual(edit.status, ResultStatus.FORBIDDEN)

    async def test_sole_owner_is_kept(self) -> None:
        """Verifies the last owner can be neither demoted nor removed."""
        demote = await self.service.update_user_permission(self.owner, "assistant", "alice", "Read")
        remove = await self.service.remove_user(self.owner, "assistant", "alice")

        self.assertEqual(demote.status, ResultStatus.CONFLICT)
        self.assertEqual(remove.status, ResultStatus.CONFLICT)

    async def test_owner_can_leave_after_adding_another(self) -> None:
        """Verifies an owner may step down once a second owner exists."""
        await self.service.add_user(self.owner, "assistant", "bob", "Owner")

        result = await self.service.remove_user(self.owner, "assistant", "alice")

        self.assertEqual(result.data.owner_access, ["bob"])

    async def test_check_permission(self) -> None:
        """Verifies hierarchical checks, SysAdmin bypass and level validation."""
        await self.service.add_user(self.owner, "assistant", "bob", "Read")
        reader = member_ctx("bob", "acme")

        can_read = await self.service.check_permission(reader, "assistant", "Read")
        can_write = await self.service.check_permission(reader, "assistant", "writeAccess")
        admin = await self.service.check_permission(sys_admin_ctx(tenant_id="acme"), "assistant", "Owner")
        bad_level = await self.service.check_permission(reader, "assistant", "superuser")

        self.assertTrue(can_read.data)
        self.assertFalse(can_write.data)
        self.assertTrue(admin.data)
        self.assertEqual(bad_level.status, ResultStatus.BAD_REQUEST)

    async def test_system_scoped_agents(self) -> None:
        """Verifies system-scoped agents need SysAdmin to register and are readable from any tenant."""
        denied = await self.service.register_agent(self.owner, "shared", system_scoped=True)
        created = await self.service.register_agent(sys_admin_ctx(), "shared", system_scoped=True)
        readable = await self.service.get_permissions(member_ctx("carol", "globex"), "shared")
        editable = await self.service.add_user(member_ctx("carol", "globex"), "shared", "carol", "Owner")

        self.assertEqual(denied.status, ResultStatus.FORBIDDEN)
        self.assertTrue(created.is_success)
        self.assertTrue(readable.is_success)
        self.assertEqual(editable.status, ResultStatus.FORBIDDEN)

    async def test_registration_needs_caller_and_tenant(self) -> None:
        """Verifies anonymous callers and callers without a tenant cannot register tenant agents."""
        anonymous = await self.service.register_agent(TenantContext(), "x")
        no_tenant = await self.service.register_agent(member_ctx("alice", None), "x")

        self.assertEqual(anonymous.status, ResultStatus.UNAUTHORIZED)
        self.assertEqual(no_tenant.status, ResultStatus.BAD_REQUEST)

    async def test_registration_race_conflicts(self) -> None:
        """Verifies a registration that slips past the lookup is still refused by the unique index."""
        with patch.object(self.agent_store, "get_visible", AsyncMock(return_value=None)):
            result = await self.service.register_agent(member_ctx("bob", "acme"), "assistant")

        self.assertEqual(result.status, ResultStatus.CONFLICT)

    async def test_agent_names_unique_per_scope(self) -> None:
        """Verifies names repeat across tenants but not within one tenant or among system-scoped agents."""
        other_tenant = await self.agent_store.create(Agent(name="assistant", tenant="globex", owner_access=["carol"]))
        first_shared = await self.agent_store.create(Agent(name="shared", system_scoped=True, owner_access=["root"]))
        second_shared = await self.agent_store.create(Agent(name="shared", system_scoped=True, owner_access=["root"]))

        self.assertIsNotNone(other_tenant)
        self.assertIsNotNone(first_shared)
        self.assertIsNone(second_shared)

    async def test_owner_check_runs_against_fresh_row(self) -> None:
        """Verifies a change is refused when the stored agent, not the caller's snapshot, has one owner left."""
        await self.service.add_user(self.owner, "assistant", "bob", "Owner")
        snapshot = await self.agent_store.get_visible("assistant", "acme")
        await self.agent_store.update_access(snapshot.id, lambda draft: draft.revoke("bob"))

        with self.assertRaises(SoleOwnerError):
            await self.agent_store.update_access(snapshot.id, lambda draft: draft.revoke("alice"))

        stored = await self.agent_store.get_visible("assistant", "acme")
        self.assertEqual(stored.owner_access, ["alice"])


if __name__ == "__main__":
    unittest.main()

from datetime import datetime
from enum import IntEnum

from sqlalchemy import JSON, Column, Index, func
from sqlmodel import Field, SQLModel

from src.core.utils import utcnow


class PermissionLevel(IntEnum):
    """Ordered resource-access tiers for agent ACLs."""

    READ = 1
    WRITE = 2
    OWNER = 3

    @classmethod
    def parse(cls, value: "str | int | PermissionLevel") -> "PermissionLevel":
        """Accepts ``"Owner"``, ``"ownerAccess"``, ``"WRITE"`` or a numeric level.

        Raises:
            ValueError: If the value names no known level.
        """
        if isinstance(value, int):
            return cls(value)
        name = value.strip().lower().removesuffix("access")
        try:
            return cls[name.upper()]
        except KeyError:
            raise ValueError(f"Invalid permission level: {value}") from None


class Agent(SQLModel, table=True):
    """A tenant resource guarded by its own owner/write/read lists.

    A user id sits in at most one of the three lists; the levels nest when
    checked (owners can write, writers can read).
    """

    __table_args__ = {"extend_existing": True}

    id: int | None = Field(default=None, primary_key=True)
    name: str = Field(index=True)
    tenant: str | None = Field(default=None, index=True)
    system_scoped: bool = Field(default=False)
    owner_access: list[str] = Field(default_factory=list, sa_column=Column(JSON, nullable=False))
    write_access: list[str] = Field(default_factory=list, sa_column=Column(JSON, nullable=False))
    read_access: list[str] = Field(default_factory=list, sa_column=Column(JSON, nullable=False))
    created_by: str | None = None
    version: int = Field(default=1)
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    def grant(self, user_id: str, level: PermissionLevel) -> None:
        self.revoke(user_id)
        match level:
            case PermissionLevel.OWNER:
                self.owner_access = [*self.owner_access, user_id]
            case PermissionLevel.WRITE:
                self.write_access = [*self.write_access, user_id]
            case PermissionLevel.READ:
                self.read_access = [*self.read_access, user_id]

    def revoke(self, user_id: str) -> bool:
        """Drops ``user_id`` from every list. Returns whether it was present."""
        present = user_id in self.owner_access or user_id in self.write_access or user_id in self.read_access
        self.owner_access = [u for u in self.owner_access if u != user_id]
        self.write_access = [u for u in self.write_access if u != user_id]
        self.read_access = [u for u in self.read_access if u != user_id]
        return present


class AgentPermissions(SQLModel):
    agent_name: str
    system_scoped: bool
    owner_access: list[str]
    write_access: list[str]
    read_access: list[str]


# One agent per name within a tenant, and one per name among system-scoped agents.
Index(
    "uq_agent_name_scope",
    Agent.__table__.c.name,
    func.coalesce(Agent.__table__.c.tenant, ""),
    unique=True,
)

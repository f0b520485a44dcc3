import re
from datetime import datetime
from typing import Any

from sqlmodel import Field, SQLModel

from src.core.utils import utcnow

TENANT_ID_PATTERN = re.compile(r"^[a-zA-Z0-9._@-]+$")
DOMAIN_PATTERN = re.compile(r"^[a-zA-Z0-9._\-+:|=#]+(\.[a-zA-Z]{2,})$")
TENANT_ID_MAX_LENGTH = 50
TENANT_NAME_MAX_LENGTH = 100


class TenantValidationError(ValueError):
    pass


def validate_tenant_id(tenant_id: str) -> str:
    tenant_id = (tenant_id or "").strip()
    if not tenant_id:
        raise TenantValidationError("Tenant ID is required")
    if len(tenant_id) > TENANT_ID_MAX_LENGTH:
        raise TenantValidationError(f"Tenant ID must be at most {TENANT_ID_MAX_LENGTH} characters")
    if not TENANT_ID_PATTERN.match(tenant_id):
        raise TenantValidationError("Tenant ID may only contain letters, digits, '.', '_', '@' and '-'")
    return tenant_id


def validate_tenant_name(name: str) -> str:
    name = (name or "").strip()
    if not name:
        raise TenantValidationError("Tenant name is required")
    if len(name) > TENANT_NAME_MAX_LENGTH:
        raise TenantValidationError(f"Tenant name must be at most {TENANT_NAME_MAX_LENGTH} characters")
    return name


def sanitize_domain(domain: str | None) -> str | None:
    """Strips the URL scheme and trailing slash off a domain and validates what is left.

    Returns:
        str | None: The bare domain, or None when no domain was given.

    Raises:
        TenantValidationError: If the remaining value is not a domain.
    """
    if domain is None or not domain.strip():
        return None
    domain = domain.strip()
    for prefix in ("https://", "http://"):
        if domain.lower().startswith(prefix):
            domain = domain[len(prefix):]
            break
    domain = domain.rstrip("/")
    if not DOMAIN_PATTERN.match(domain):
        raise TenantValidationError(f"Invalid domain: {domain}")
    return domain


class Tenant(SQLModel, table=True):
    """Isolated customer namespace."""

    __table_args__ = {"extend_existing": True}

    id: int | None = Field(default=None, primary_key=True)
    tenant_id: str = Field(unique=True, index=True)
    name: str
    domain: str | None = Field(default=None, unique=True, index=True)
    description: str | None = None
    enabled: bool = Field(default=True)
    created_by: str | None = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


class TenantCreate(SQLModel):
    tenant_id: str
    name: str
    domain: str | None = None
    description: str | None = None

    def validated(self) -> "TenantCreate":
        """Returns a normalized copy.

        Raises:
            TenantValidationError: If any field is malformed.
        """
        return TenantCreate(
            tenant_id=validate_tenant_id(self.tenant_id),
            name=validate_tenant_name(self.name),
            domain=sanitize_domain(self.domain),
            description=self.description,
        )


class TenantUpdate(SQLModel):
    name: str | None = None
    domain: str | None = None
    description: str | None = None
    enabled: bool | None = None

    def changes(self) -> dict[str, Any]:
        """Validated column values for the fields that were actually provided.

        Raises:
            TenantValidationError: If any provided field is malformed.
        """
        values = self.model_dump(exclude_unset=True)
        if "name" in values:
            values["name"] = validate_tenant_name(values["name"])
        if "domain" in values:
            values["domain"] = sanitize_domain(values["domain"])
        return values

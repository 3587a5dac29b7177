"""Inter-module data contracts (not persisted directly)."""

from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from rentline.types import AuditAction, AuthEventType, PackageType, Role


class Identity(BaseModel):
    """An authenticated principal with its profile fields."""

    model_config = ConfigDict(frozen=True)

    id: str
    email: str = ""
    privileged: bool = False
    first_name: str | None = None
    last_name: str | None = None
    phone: str | None = None
    selected_tier: str | None = None  # tier slug chosen at registration

    @property
    def display_name(self) -> str:
        name = " ".join(p for p in (self.first_name, self.last_name) if p)
        return name or self.email or self.id


class TenantRecord(BaseModel):
    """Raw tenant row as returned by the backend, membership columns included."""

    id: str
    name: str
    owner_user_id: str | None = None
    is_default: bool = False
    public_page: dict[str, Any] = {}
    created_at: datetime | None = None
    my_role: str | None = None
    my_member_id: str | None = None


class Tenant(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    name: str
    owner_id: str | None = None
    is_default: bool = False
    public_page: dict[str, Any] = {}  # opaque to session resolution


class Membership(BaseModel):
    model_config = ConfigDict(frozen=True)

    identity_id: str
    tenant_id: str
    role: Role
    member_id: str | None = None


def to_tenant(record: TenantRecord) -> Tenant:
    """Map a backend tenant row to the domain tenant."""
    return Tenant(
        id=record.id,
        name=record.name,
        owner_id=record.owner_user_id,
        is_default=record.is_default,
        public_page=dict(record.public_page),
    )


def to_membership(record: TenantRecord, identity_id: str) -> Membership | None:
    """Map the membership columns of a tenant row, if it carries a known role."""
    if not record.my_role:
        return None
    try:
        role = Role(record.my_role)
    except ValueError:
        return None
    return Membership(
        identity_id=identity_id,
        tenant_id=record.id,
        role=role,
        member_id=record.my_member_id,
    )


class PackageTier(BaseModel):
    id: str
    tier_slug: str
    tier_name: str = ""
    package_type: PackageType = PackageType.SINGLE_COMPANY
    max_businesses: int = 1
    max_properties: int = 0
    max_units: int = 0
    max_tenants: int = 0
    max_users: int = 1
    max_payment_methods: int = 0
    features: dict[str, bool] = {}


class PackageOverrides(BaseModel):
    """Per-tenant custom limits and feature flags layered over a tier."""

    custom_max_businesses: int | None = None
    custom_max_properties: int | None = None
    custom_max_units: int | None = None
    custom_max_tenants: int | None = None
    custom_max_users: int | None = None
    custom_max_payment_methods: int | None = None
    custom_features: dict[str, bool] | None = None


class AuditEntry(BaseModel):
    model_config = ConfigDict(frozen=True)

    admin_user_id: str
    action: AuditAction
    target_user_id: str
    metadata: dict[str, Any] = Field(default_factory=dict)


class ImpersonationRecord(BaseModel):
    model_config = ConfigDict(frozen=True)

    actor_id: str
    target_id: str
    started_at: datetime
    ended_at: datetime | None = None


class AuthEvent(BaseModel):
    type: AuthEventType
    identity_id: str | None = None

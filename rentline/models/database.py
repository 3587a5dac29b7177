"""SQLModel database table models."""

from __future__ import annotations

import uuid
from datetime import UTC, datetime
from typing import Any

from sqlalchemy import JSON, Column
from sqlmodel import Field, SQLModel


def _utc_now() -> datetime:
    """Return current UTC time as naive datetime for TIMESTAMP WITHOUT TIME ZONE columns."""
    return datetime.now(UTC).replace(tzinfo=None)


def _new_uuid() -> str:
    return str(uuid.uuid4())


# ---------------------------------------------------------------------------
# Identity models
# ---------------------------------------------------------------------------


class AuthCredential(SQLModel, table=True):
    __tablename__ = "auth_credentials"

    user_id: str = Field(default_factory=_new_uuid, primary_key=True)
    email: str = Field(unique=True, index=True)
    password_hash: str
    created_at: datetime = Field(default_factory=_utc_now)


class UserProfile(SQLModel, table=True):
    __tablename__ = "user_profiles"

    id: str = Field(default_factory=_new_uuid, primary_key=True)
    user_id: str = Field(unique=True, index=True)
    email: str = Field(index=True)
    first_name: str | None = None
    last_name: str | None = None
    phone: str | None = None
    selected_tier: str | None = None
    created_at: datetime = Field(default_factory=_utc_now)
    updated_at: datetime = Field(default_factory=_utc_now)


class SuperAdmin(SQLModel, table=True):
    __tablename__ = "super_admins"

    id: str = Field(default_factory=_new_uuid, primary_key=True)
    user_id: str = Field(index=True)
    is_active: bool = Field(default=True)
    created_at: datetime = Field(default_factory=_utc_now)


# ---------------------------------------------------------------------------
# Tenancy models
# ---------------------------------------------------------------------------


class Business(SQLModel, table=True):
    __tablename__ = "businesses"

    id: str = Field(default_factory=_new_uuid, primary_key=True)
    owner_user_id: str | None = Field(default=None, index=True)
    business_name: str
    is_default: bool = Field(default=False)
    is_active: bool = Field(default=True)
    public_page: dict[str, Any] = Field(default_factory=dict, sa_column=Column(JSON))
    created_at: datetime = Field(default_factory=_utc_now)
    updated_at: datetime = Field(default_factory=_utc_now)


class BusinessMember(SQLModel, table=True):
    __tablename__ = "business_members"

    id: str = Field(default_factory=_new_uuid, primary_key=True)
    business_id: str = Field(foreign_key="businesses.id", index=True)
    user_id: str = Field(index=True)
    role: str = Field(default="viewer")  # owner | admin | property_manager | accounting | viewer
    is_active: bool = Field(default=True)
    created_at: datetime = Field(default_factory=_utc_now)


class BusinessUser(SQLModel, table=True):
    """Portal users attached to a business (tenants, applicants, property owners)."""

    __tablename__ = "business_users"

    id: str = Field(default_factory=_new_uuid, primary_key=True)
    business_id: str = Field(foreign_key="businesses.id", index=True)
    auth_user_id: str = Field(index=True)
    role: str = Field(default="user")  # user | tenant | applicant | property_owner
    is_active: bool = Field(default=True)
    created_at: datetime = Field(default_factory=_utc_now)


class PropertyOwner(SQLModel, table=True):
    """Legacy property-owner accounts."""

    __tablename__ = "property_owners"

    id: str = Field(default_factory=_new_uuid, primary_key=True)
    user_id: str = Field(index=True)
    is_active: bool = Field(default=True)
    created_at: datetime = Field(default_factory=_utc_now)


# ---------------------------------------------------------------------------
# Package models
# ---------------------------------------------------------------------------


class PackageTierRow(SQLModel, table=True):
    __tablename__ = "package_tiers"

    id: str = Field(default_factory=_new_uuid, primary_key=True)
    tier_slug: str = Field(unique=True, index=True)
    tier_name: str = ""
    package_type: str = Field(default="single_company")
    max_businesses: int = Field(default=1)
    max_properties: int = Field(default=0)
    max_units: int = Field(default=0)
    max_tenants: int = Field(default=0)
    max_users: int = Field(default=1)
    max_payment_methods: int = Field(default=0)
    features: dict[str, bool] = Field(default_factory=dict, sa_column=Column(JSON))
    is_active: bool = Field(default=True)
    created_at: datetime = Field(default_factory=_utc_now)


class OrganizationPackageSettings(SQLModel, table=True):
    __tablename__ = "organization_package_settings"

    id: str = Field(default_factory=_new_uuid, primary_key=True)
    organization_id: str = Field(unique=True, index=True)  # business id in the business-centric model
    package_tier_id: str | None = Field(default=None, foreign_key="package_tiers.id")
    custom_max_businesses: int | None = None
    custom_max_properties: int | None = None
    custom_max_units: int | None = None
    custom_max_tenants: int | None = None
    custom_max_users: int | None = None
    custom_max_payment_methods: int | None = None
    custom_features: dict[str, bool] | None = Field(default=None, sa_column=Column(JSON))
    updated_at: datetime = Field(default_factory=_utc_now)


# ---------------------------------------------------------------------------
# Audit
# ---------------------------------------------------------------------------


class AdminAuditLog(SQLModel, table=True):
    __tablename__ = "admin_audit_log"

    id: str = Field(default_factory=_new_uuid, primary_key=True)
    admin_user_id: str = Field(index=True)
    action: str = Field(index=True)  # impersonate_user | exit_impersonation
    target_user_id: str = Field(index=True)
    metadata_json: str = "{}"
    created_at: datetime = Field(default_factory=_utc_now)

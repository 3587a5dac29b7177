"""Package tier and feature-flag resolution for the current tenant.

Entitlements are advisory display data. A lookup failure never blocks session
resolution: the result degrades to "no tier known", which keeps baseline
features on and every premium flag off.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Literal

import structlog

from rentline.billing.plans import (
    BASELINE_FEATURES,
    UserType,
    allows_multiple_businesses,
    get_user_type,
    is_management_tier,
    should_show_business_wizard,
)
from rentline.exceptions import BackendError, EntitlementLookupError
from rentline.types import ClientType, PackageType

if TYPE_CHECKING:
    from rentline.models.domain import PackageOverrides, PackageTier
    from rentline.storage.backend import Backend

logger = structlog.get_logger(__name__)

EntitlementSource = Literal["tenant", "selected_tier", "none"]


@dataclass(frozen=True, slots=True)
class PackageLimits:
    max_businesses: int = 1
    max_properties: int = 0
    max_units: int = 0
    max_tenants: int = 0
    max_users: int = 1
    max_payment_methods: int = 0


@dataclass(frozen=True, slots=True)
class Entitlement:
    """Resolved tier, effective limits and feature flags."""

    tier: PackageTier | None = None
    source: EntitlementSource = "none"
    limits: PackageLimits = field(default_factory=PackageLimits)
    features: dict[str, bool] = field(default_factory=dict)

    @classmethod
    def unknown(cls) -> Entitlement:
        return cls()

    @property
    def tier_slug(self) -> str | None:
        return self.tier.tier_slug if self.tier else None

    @property
    def package_type(self) -> PackageType | None:
        return self.tier.package_type if self.tier else None

    @property
    def client_type(self) -> ClientType:
        if self.package_type == PackageType.MANAGEMENT_COMPANY:
            return ClientType.PROPERTY_MANAGER
        return ClientType.LANDLORD

    @property
    def user_type(self) -> UserType | None:
        """Account class from the effective limits; None while no tier is known."""
        return get_user_type(self.limits) if self.tier else None

    @property
    def allows_multiple_businesses(self) -> bool:
        return self.tier is not None and allows_multiple_businesses(self.limits)

    @property
    def is_management(self) -> bool:
        return self.tier_slug is not None and is_management_tier(self.tier_slug)

    @property
    def shows_business_wizard(self) -> bool:
        return self.tier is not None and should_show_business_wizard(self.limits)

    def has_feature(self, name: str) -> bool:
        if name in BASELINE_FEATURES:
            return True
        return self.features.get(name, False) is True


def effective_entitlement(
    tier: PackageTier,
    overrides: PackageOverrides | None = None,
    source: EntitlementSource = "tenant",
) -> Entitlement:
    """Layer per-tenant overrides on top of a tier."""
    o = overrides

    def _pick(custom: int | None, default: int) -> int:
        return custom if custom is not None else default

    limits = PackageLimits(
        max_businesses=_pick(o.custom_max_businesses if o else None, tier.max_businesses),
        max_properties=_pick(o.custom_max_properties if o else None, tier.max_properties),
        max_units=_pick(o.custom_max_units if o else None, tier.max_units),
        max_tenants=_pick(o.custom_max_tenants if o else None, tier.max_tenants),
        max_users=_pick(o.custom_max_users if o else None, tier.max_users),
        max_payment_methods=_pick(
            o.custom_max_payment_methods if o else None, tier.max_payment_methods
        ),
    )
    features = {**tier.features, **((o.custom_features or {}) if o else {})}
    return Entitlement(tier=tier, source=source, limits=limits, features=features)


class EntitlementResolver:
    """Resolves the tier for a tenant, falling back to the identity's own choice."""

    def __init__(self, backend: Backend) -> None:
        self._backend = backend

    async def lookup(self, tenant_id: str | None, identity_id: str | None) -> Entitlement:
        """Resolve or raise ``EntitlementLookupError``."""
        try:
            if tenant_id:
                package = await self._backend.get_tenant_package(tenant_id)
                if package is not None:
                    tier, overrides = package
                    return effective_entitlement(tier, overrides, source="tenant")
            if identity_id:
                identity = await self._backend.get_identity(identity_id)
                if identity and identity.selected_tier:
                    tier = await self._backend.get_tier_by_slug(identity.selected_tier)
                    if tier is not None:
                        return effective_entitlement(tier, source="selected_tier")
        except (BackendError, ValueError) as exc:
            raise EntitlementLookupError(str(exc)) from exc
        return Entitlement.unknown()

    async def resolve(self, tenant_id: str | None, identity_id: str | None) -> Entitlement:
        """Resolve without ever raising."""
        try:
            entitlement = await self.lookup(tenant_id, identity_id)
        except EntitlementLookupError as exc:
            logger.warning(
                "entitlement_lookup_failed",
                tenant_id=tenant_id,
                identity_id=identity_id,
                error=str(exc),
            )
            return Entitlement.unknown()
        logger.debug(
            "entitlement_resolved",
            tenant_id=tenant_id,
            tier=entitlement.tier_slug,
            source=entitlement.source,
        )
        return entitlement

"""Package tier classification helpers.

The classifiers take anything carrying ``max_businesses`` and
``max_properties``: a raw tier, or the effective limits after per-tenant
overrides.
"""

from __future__ import annotations

from enum import StrEnum
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from rentline.identity.entitlements import PackageLimits
    from rentline.models.domain import PackageTier

UNLIMITED = 999_999

# Features every tenant keeps even when its tier cannot be resolved
BASELINE_FEATURES = frozenset({"payment_tracking", "maintenance_tracking"})


class UserType(StrEnum):
    SINGLE_LANDLORD = "type1"  # single landlord, single business
    MULTI_PROPERTY = "type2"  # landlord with many properties
    PROPERTY_MANAGER = "type3"  # management company with client businesses


def get_user_type(limits: PackageTier | PackageLimits) -> UserType:
    """Classify a tier by its business and property limits."""
    if limits.max_businesses > 1:
        return UserType.PROPERTY_MANAGER
    if limits.max_businesses == 1 and limits.max_properties <= 10:
        return UserType.SINGLE_LANDLORD
    return UserType.MULTI_PROPERTY


def allows_multiple_businesses(limits: PackageTier | PackageLimits) -> bool:
    return limits.max_businesses > 1


def is_management_tier(tier_slug: str) -> bool:
    return tier_slug.startswith("management_")


def should_show_business_wizard(limits: PackageTier | PackageLimits) -> bool:
    return get_user_type(limits) in (UserType.MULTI_PROPERTY, UserType.PROPERTY_MANAGER)

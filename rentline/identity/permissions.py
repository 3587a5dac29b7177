"""Capability derivation for the effective identity in the current tenant.

The engine is a pure function of its inputs. It never raises: unknown roles
and unknown capability names resolve to "not granted".
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass

import structlog

from rentline.types import Capability, Role

logger = structlog.get_logger(__name__)

ALL_CAPABILITIES = frozenset(Capability)

ROLE_CAPABILITIES: dict[Role, frozenset[Capability]] = {
    Role.OWNER: ALL_CAPABILITIES,
    Role.ADMIN: frozenset(
        {
            Capability.MANAGE_TEAM,
            Capability.MANAGE_PROPERTIES,
            Capability.MANAGE_PAYMENTS,
            Capability.VIEW_REPORTS,
            Capability.MANAGE_SETTINGS,
        }
    ),
    Role.PROPERTY_MANAGER: frozenset({Capability.MANAGE_PROPERTIES, Capability.VIEW_REPORTS}),
    Role.ACCOUNTING: frozenset({Capability.MANAGE_PAYMENTS, Capability.VIEW_REPORTS}),
    Role.VIEWER: frozenset({Capability.VIEW_REPORTS}),
}


@dataclass(frozen=True, slots=True)
class CapabilitySet:
    """Granted capabilities. ``full`` grants every token, known or not."""

    capabilities: frozenset[Capability] = frozenset()
    full: bool = False

    @classmethod
    def empty(cls) -> CapabilitySet:
        return cls()

    @classmethod
    def everything(cls) -> CapabilitySet:
        return cls(capabilities=ALL_CAPABILITIES, full=True)

    def has_permission(self, permission: str | Iterable[str]) -> bool:
        """True if any of the requested permissions is granted."""
        if self.full:
            return True
        if isinstance(permission, str):
            requested = [permission]
        elif isinstance(permission, Iterable):
            requested = [p for p in permission if isinstance(p, str)]
        else:
            return False
        return any(p in self.capabilities for p in requested)

    def can_manage_properties(self) -> bool:
        return self.has_permission(Capability.MANAGE_PROPERTIES)

    def can_manage_payments(self) -> bool:
        return self.has_permission(Capability.MANAGE_PAYMENTS)

    def can_view_reports(self) -> bool:
        return self.has_permission(Capability.VIEW_REPORTS)

    def can_manage_businesses(self) -> bool:
        return self.has_permission(Capability.MANAGE_PROPERTIES)

    def __contains__(self, permission: object) -> bool:
        return isinstance(permission, str) and self.has_permission(permission)


def coerce_role(role: Role | str | None) -> Role | None:
    if role is None or isinstance(role, Role):
        return role
    try:
        return Role(role)
    except ValueError:
        return None


class PermissionEngine:
    """Maps (role, tenant ownership, owner class) to a capability set."""

    def derive(
        self,
        role: Role | str | None,
        owns_tenant: bool,
        restricted_owner: bool,
        impersonating: bool = False,
    ) -> CapabilitySet:
        # Impersonation only changes whose data feeds these inputs.
        if restricted_owner:
            return CapabilitySet(capabilities=frozenset({Capability.VIEW_REPORTS}))
        if owns_tenant:
            return CapabilitySet.everything()

        resolved = coerce_role(role)
        if resolved is None:
            if role is not None:
                logger.warning("unknown_role", role=str(role), impersonating=impersonating)
            return CapabilitySet.empty()
        if resolved == Role.OWNER:
            return CapabilitySet.everything()
        return CapabilitySet(capabilities=ROLE_CAPABILITIES[resolved])

"""Exception hierarchy for Rentline."""


class RentlineError(Exception):
    """Base exception for all Rentline errors."""


class AuthFailure(RentlineError):
    """Raised when the authentication provider rejects credentials."""


class BackendError(RentlineError):
    """Raised when a backend query fails."""


class TenancyLookupError(RentlineError):
    """Raised when the tenants of an identity cannot be loaded."""


class TenantAccessError(RentlineError):
    """Raised when switching to a tenant the identity does not belong to."""


class EntitlementLookupError(RentlineError):
    """Raised when the package tier of a tenant cannot be resolved."""


class ImpersonationError(RentlineError):
    """Base for impersonation precondition failures."""


class NotPrivileged(ImpersonationError):
    """Raised when a non-privileged identity attempts impersonation."""


class InvalidTarget(ImpersonationError):
    """Raised when the impersonation target is the actor or does not exist."""


class AuditWriteFailure(RentlineError):
    """Raised when an audit entry cannot be written."""


class ConfigError(RentlineError):
    """Raised when configuration is invalid."""

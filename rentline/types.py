"""Enums and type aliases for Rentline."""

from enum import StrEnum


class Role(StrEnum):
    OWNER = "owner"
    ADMIN = "admin"
    PROPERTY_MANAGER = "property_manager"
    ACCOUNTING = "accounting"
    VIEWER = "viewer"


class Capability(StrEnum):
    MANAGE_TEAM = "manage_team"
    MANAGE_PROPERTIES = "manage_properties"
    MANAGE_PAYMENTS = "manage_payments"
    VIEW_REPORTS = "view_reports"
    MANAGE_SETTINGS = "manage_settings"


class SessionState(StrEnum):
    ANONYMOUS = "anonymous"
    AUTHENTICATING = "authenticating"
    AUTHENTICATED = "authenticated"
    EXPIRED = "expired"


class AuthEventType(StrEnum):
    SIGNED_IN = "signed_in"
    SIGNED_OUT = "signed_out"
    TOKEN_REFRESHED = "token_refreshed"


class AuditAction(StrEnum):
    IMPERSONATE_USER = "impersonate_user"
    EXIT_IMPERSONATION = "exit_impersonation"


class TenancyModel(StrEnum):
    BUSINESS = "business"
    ORGANIZATION = "organization"


class PackageType(StrEnum):
    SINGLE_COMPANY = "single_company"
    MANAGEMENT_COMPANY = "management_company"


class ClientType(StrEnum):
    LANDLORD = "landlord"
    PROPERTY_MANAGER = "property_manager"

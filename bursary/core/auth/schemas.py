from enum import StrEnum

from bursary.shared.schemas import BaseSchema


class UserRole(StrEnum):
    """Staff roles, carried in the access token."""

    SUPER_ADMIN = "SuperAdmin"
    ADMIN = "Admin"
    ACCOUNTANT = "Accountant"
    USER = "User"


class CurrentUser(BaseSchema):
    """
    Authenticated caller, decoded from the bearer token.

    Users and tenants are managed by the identity service; this back office
    only trusts the signed claims.
    """

    id: int
    tenant_id: int
    role: UserRole

    def has_role(self, *roles: UserRole) -> bool:
        """Check if user has any of the specified roles."""
        return self.role in roles

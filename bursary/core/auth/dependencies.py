from typing import Annotated

from fastapi import Depends, Header

from bursary.core.auth.jwt import decode_token
from bursary.core.auth.schemas import CurrentUser, UserRole
from bursary.core.exceptions import AuthenticationError, AuthorizationError


async def get_current_user(
    authorization: Annotated[str | None, Header()] = None,
) -> CurrentUser:
    """
    Dependency to get current authenticated user from JWT token.

    Usage:
        @router.get("/arrears")
        async def list_arrears(user: CurrentUser = Depends(get_current_user)):
            ...
    """
    if not authorization:
        raise AuthenticationError("Authorization header required")

    if not authorization.startswith("Bearer "):
        raise AuthenticationError("Invalid authorization header format")

    token = authorization.replace("Bearer ", "")
    payload = decode_token(token, token_type="access")

    try:
        role = UserRole(payload.get("role"))
    except ValueError:
        raise AuthenticationError("Unknown role in token")

    return CurrentUser(id=int(payload["sub"]), tenant_id=int(payload["tenant_id"]), role=role)


def require_roles(*roles: UserRole):
    """
    Dependency factory to require specific roles.

    Usage:
        @router.post("/arrears/generate")
        async def generate(
            user: CurrentUser = Depends(require_roles(UserRole.SUPER_ADMIN))
        ):
            ...
    """

    async def role_checker(
        current_user: CurrentUser = Depends(get_current_user),
    ) -> CurrentUser:
        if not current_user.has_role(*roles):
            allowed = ", ".join(r.value for r in roles)
            raise AuthorizationError(f"Required role: {allowed}")
        return current_user

    return role_checker


# Roles allowed to move money vs. read it
WRITE_ROLES = (UserRole.SUPER_ADMIN, UserRole.ADMIN)
READ_ROLES = (UserRole.SUPER_ADMIN, UserRole.ADMIN, UserRole.ACCOUNTANT, UserRole.USER)

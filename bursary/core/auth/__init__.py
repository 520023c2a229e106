from bursary.core.auth.jwt import create_access_token, decode_token
from bursary.core.auth.dependencies import get_current_user, require_roles
from bursary.core.auth.schemas import CurrentUser, UserRole

__all__ = [
    "CurrentUser",
    "UserRole",
    "create_access_token",
    "decode_token",
    "get_current_user",
    "require_roles",
]

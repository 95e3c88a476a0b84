"""
Route guards.

Every protected route receives an explicit ``Caller`` built from the bearer
token; services never read identity from anywhere else.
"""

from fastapi import Depends
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from typing import Optional
import logging

from examhall.auth.jwt_handler import verify_token
from examhall.errors import AuthenticationMissing, AuthorizationDenied
from examhall.models import Caller, UserRole

logger = logging.getLogger(__name__)

bearer_scheme = HTTPBearer(auto_error=False)


async def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme)
) -> Caller:
    """401 unless the request carries a valid bearer token."""
    if credentials is None:
        raise AuthenticationMissing()

    payload = verify_token(credentials.credentials)
    if payload is None:
        raise AuthenticationMissing("Invalid or expired token")
    return payload.to_caller()


def require_role(*allowed: UserRole):
    """
    Guard factory: the caller must hold one of ``allowed``.

    Usage:
        @router.put("/submissions/{attempt_id}")
        async def evaluate(caller: Caller = Depends(require_role(UserRole.admin, UserRole.teacher))):
            ...
    """
    async def guard(caller: Caller = Depends(get_current_user)) -> Caller:
        if caller.role not in allowed:
            logger.warning(
                f"Denied {caller.role.value} {caller.user_id}; needs one of {[r.value for r in allowed]}"
            )
            raise AuthorizationDenied()
        return caller

    return guard


require_auth = get_current_user
require_staff = require_role(UserRole.admin, UserRole.teacher)
require_student = require_role(UserRole.student)

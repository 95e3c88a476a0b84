"""
Bearer token handling for ExamHall.

Tokens are issued by the identity service. This module only checks them and
turns a valid payload into a ``Caller``; ``create_access_token`` mints tokens
with the same secret for operators and test fixtures.
"""

from datetime import datetime, timedelta, timezone
from typing import Optional
from jose import jwt, JWTError, ExpiredSignatureError
from pydantic import BaseModel, ValidationError
import logging

from examhall.models import Caller, UserRole
from examhall.settings import settings

logger = logging.getLogger(__name__)


class TokenPayload(BaseModel):
    """Claims ExamHall reads from a token."""
    user_id: str
    role: UserRole
    email: Optional[str] = None
    exp: Optional[datetime] = None
    iat: Optional[datetime] = None

    def to_caller(self) -> Caller:
        return Caller(user_id=self.user_id, role=self.role)


def create_access_token(
    user_id: str,
    role: str,
    email: Optional[str] = None,
    expires_delta: Optional[timedelta] = None
) -> str:
    """
    Sign a token for ``user_id`` with ``role``.

    Args:
        user_id: Subject of the token
        role: admin, teacher or student
        email: Optional, only carried into log lines
        expires_delta: Lifetime; defaults to ``jwt_expire_minutes``
    """
    issued_at = datetime.now(timezone.utc)
    lifetime = expires_delta if expires_delta is not None else timedelta(minutes=settings.jwt_expire_minutes)

    claims = {
        "user_id": user_id,
        "role": UserRole(role).value,
        "iat": issued_at,
        "exp": issued_at + lifetime,
    }
    if email:
        claims["email"] = email

    return jwt.encode(claims, settings.jwt_secret_key, algorithm=settings.jwt_algorithm)


def verify_token(token: str) -> Optional[TokenPayload]:
    """Decoded claims, or None when the token is expired, forged or malformed."""
    try:
        claims = jwt.decode(token, settings.jwt_secret_key, algorithms=[settings.jwt_algorithm])
        return TokenPayload.model_validate(claims)
    except ExpiredSignatureError:
        logger.info("Rejected expired token")
    except JWTError as e:
        logger.warning(f"Token verification failed: {str(e)}")
    except ValidationError as e:
        logger.warning(f"Token payload rejected: {e.error_count()} invalid claim(s)")
    return None

# Auth module for ExamHall
# Verifies bearer tokens and performs role-based authorization

from examhall.auth.jwt_handler import TokenPayload, create_access_token, verify_token
from examhall.auth.dependencies import (
    get_current_user, require_auth, require_role, require_staff, require_student
)

__all__ = [
    "TokenPayload",
    "create_access_token",
    "verify_token",
    "get_current_user",
    "require_auth",
    "require_role",
    "require_staff",
    "require_student"
]

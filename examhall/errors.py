"""
Error taxonomy for ExamHall.

Every domain failure is an ``ExamHallError`` subclass that knows its HTTP
status and a stable machine-readable code. ``add_error_handlers`` turns them
into ``{"detail": ..., "code": ...}`` responses.
"""

from __future__ import annotations

import logging
import traceback

from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse

logger = logging.getLogger(__name__)


class ExamHallError(Exception):
    status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR
    code: str = "INTERNAL_ERROR"
    default_message: str = "Internal server error"
    headers: dict[str, str] | None = None

    def __init__(self, message: str | None = None) -> None:
        self.message = message or self.default_message
        super().__init__(self.message)


class AuthenticationMissing(ExamHallError):
    status_code = status.HTTP_401_UNAUTHORIZED
    code = "AUTHENTICATION_REQUIRED"
    default_message = "Authentication required"
    headers = {"WWW-Authenticate": "Bearer"}


class AuthorizationDenied(ExamHallError):
    status_code = status.HTTP_403_FORBIDDEN
    code = "ACCESS_DENIED"
    default_message = "Access denied"


# ===== 404 =====

class EntityNotFound(ExamHallError):
    status_code = status.HTTP_404_NOT_FOUND
    code = "NOT_FOUND"
    default_message = "Not found"


class TestNotFound(EntityNotFound):
    __test__ = False
    code = "TEST_NOT_FOUND"
    default_message = "Test not found"


class AttemptNotFound(EntityNotFound):
    code = "ATTEMPT_NOT_FOUND"
    default_message = "Submission not found"


class GroupNotFound(EntityNotFound):
    code = "GROUP_NOT_FOUND"
    default_message = "Group not found"


# ===== 400 =====

class DomainRuleViolation(ExamHallError):
    status_code = status.HTTP_400_BAD_REQUEST
    code = "DOMAIN_RULE_VIOLATION"
    default_message = "Request violates a domain rule"


class TestNotPublished(DomainRuleViolation):
    __test__ = False
    code = "TEST_NOT_PUBLISHED"
    default_message = "Test is not published"


class TestNotOpen(DomainRuleViolation):
    __test__ = False
    code = "TEST_NOT_OPEN"
    default_message = "Test is not open for attempts at this time"


class AttemptLimitExceeded(DomainRuleViolation):
    code = "ATTEMPT_LIMIT_EXCEEDED"
    default_message = "Maximum attempts reached"


class AttemptAlreadyTerminal(DomainRuleViolation):
    code = "ATTEMPT_ALREADY_SUBMITTED"
    default_message = "Test already submitted"


class AttemptNotSubmitted(DomainRuleViolation):
    code = "ATTEMPT_NOT_SUBMITTED"
    default_message = "Submission has not been submitted yet"


class InvalidEvaluation(DomainRuleViolation):
    code = "INVALID_EVALUATION"
    default_message = "Evaluation does not match the submission"


# ===== 409 / 500 =====

class DependencyConflict(ExamHallError):
    status_code = status.HTTP_409_CONFLICT
    code = "DEPENDENCY_CONFLICT"
    default_message = "Entity is still referenced by other records"


class InternalFailure(ExamHallError):
    pass


def add_error_handlers(app: FastAPI) -> None:
    @app.exception_handler(ExamHallError)
    async def examhall_error_handler(request: Request, exc: ExamHallError):
        if exc.status_code >= 500:
            logger.error(f"{request.method} {request.url.path} failed: {exc.message}")
            return JSONResponse(
                status_code=exc.status_code,
                content={"detail": "Internal server error", "code": exc.code},
            )
        return JSONResponse(
            status_code=exc.status_code,
            content={"detail": exc.message, "code": exc.code},
            headers=exc.headers,
        )

    @app.exception_handler(Exception)
    async def unhandled_exception_handler(request: Request, exc: Exception):
        logger.error(f"Unhandled exception on {request.method} {request.url.path}: {str(exc)}")
        logger.error(f"Traceback: {''.join(traceback.format_tb(exc.__traceback__))}")
        return JSONResponse(
            status_code=500,
            content={"detail": "Internal server error", "code": InternalFailure.code},
        )

"""
Domain error taxonomy.

Every error is an HTTPException so services can raise them directly and FastAPI
renders them as ``{"detail": {"error": <code>, "message": <text>}}``. None of
them is fatal to the process; callers surface them to the UI verbatim.
"""

from __future__ import annotations

from fastapi import HTTPException, status


class DomainError(HTTPException):
    http_status: int = status.HTTP_400_BAD_REQUEST
    code: str = "error"
    default_message: str = "Request failed"

    def __init__(self, message: str | None = None, **extra) -> None:
        self.message = message or self.default_message
        detail: dict = {"error": self.code, "message": self.message}
        detail.update({k: v for k, v in extra.items() if v is not None})
        super().__init__(status_code=self.http_status, detail=detail)


class ValidationError(DomainError):
    http_status = status.HTTP_400_BAD_REQUEST
    code = "validation_error"
    default_message = "Invalid input"


class NotFound(DomainError):
    http_status = status.HTTP_404_NOT_FOUND
    code = "not_found"
    default_message = "Not found"


class ClaimConflict(DomainError):
    http_status = status.HTTP_409_CONFLICT
    code = "claim_conflict"
    default_message = "An active claim already exists for this receipt"


class Expired(DomainError):
    http_status = status.HTTP_410_GONE
    code = "expired"
    default_message = "Claim has expired"


class AlreadyUsed(DomainError):
    http_status = status.HTTP_409_CONFLICT
    code = "already_used"
    default_message = "Claim has already been used"


class PinMismatch(DomainError):
    http_status = status.HTTP_403_FORBIDDEN
    code = "pin_mismatch"
    default_message = "PIN does not match"


class InvalidAmount(DomainError):
    http_status = status.HTTP_400_BAD_REQUEST
    code = "invalid_amount"
    default_message = "Refund amount must be greater than zero and at most the original amount"


class NotVerified(DomainError):
    http_status = status.HTTP_409_CONFLICT
    code = "not_verified"
    default_message = "Claim must be verified before it can be redeemed or refused"


class ClaimLocked(DomainError):
    http_status = status.HTTP_423_LOCKED
    code = "claim_locked"
    default_message = "Too many incorrect PIN attempts; try again later"


class InvalidToken(DomainError):
    http_status = status.HTTP_401_UNAUTHORIZED
    code = "invalid_token"
    default_message = "Token is invalid or expired"


class RuleConflict(DomainError):
    http_status = status.HTTP_409_CONFLICT
    code = "rule_conflict"
    default_message = "A rule for this merchant already exists"

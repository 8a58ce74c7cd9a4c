"""
Error taxonomy shared by the service layer.

Each error is an ``HTTPException`` so services can raise it directly and
FastAPI renders it; ``detail`` is always ``{"code": ..., "message": ...}``.
"""

from __future__ import annotations

from typing import Optional

from fastapi import HTTPException, status


class ServiceError(HTTPException):
    http_status = status.HTTP_400_BAD_REQUEST
    code = "error"

    def __init__(self, message: str, *, code: Optional[str] = None) -> None:
        self.message = message
        if code:
            self.code = code
        super().__init__(
            status_code=self.http_status,
            detail={"code": self.code, "message": message},
        )


class NotFoundError(ServiceError):
    http_status = status.HTTP_404_NOT_FOUND
    code = "not_found"


class InvalidTransitionError(ServiceError):
    http_status = status.HTTP_409_CONFLICT
    code = "invalid_transition"


class PayloadValidationError(ServiceError):
    http_status = status.HTTP_400_BAD_REQUEST
    code = "validation_error"


class ConflictError(ServiceError):
    http_status = status.HTTP_409_CONFLICT
    code = "conflict"


class AppendOnlyViolation(RuntimeError):
    """Raised when code tries to update or delete an append-only row."""

"""
Domain errors raised below the HTTP layer.

Each error carries the HTTP status and a short machine-readable code so the
exception handler in main.py can report which kind of failure happened.
"""
from typing import Any, Dict, Optional

from fastapi import Request, status
from fastapi.responses import JSONResponse


class FoundationError(Exception):
    status_code = status.HTTP_400_BAD_REQUEST
    code = "error"

    def __init__(self, detail: str, extra: Optional[Dict[str, Any]] = None):
        super().__init__(detail)
        self.detail = detail
        self.extra = extra or {}


class NotFoundError(FoundationError):
    status_code = status.HTTP_404_NOT_FOUND
    code = "not_found"


class ValidationFailedError(FoundationError):
    status_code = status.HTTP_400_BAD_REQUEST
    code = "validation_failed"


class AuthorizationError(FoundationError):
    status_code = status.HTTP_403_FORBIDDEN
    code = "not_authorized"


class InvalidTransitionError(FoundationError):
    """A lifecycle operation was attempted from a state that does not allow it."""

    status_code = status.HTTP_409_CONFLICT
    code = "invalid_transition"

    def __init__(self, operation: str, current_status: str, detail: Optional[str] = None):
        super().__init__(
            detail or f"Cannot {operation} a membership that is {current_status}",
            {"operation": operation, "status": current_status},
        )
        self.operation = operation
        self.current_status = current_status


class ConflictError(FoundationError):
    status_code = status.HTTP_409_CONFLICT
    code = "conflict"


class GatewayError(FoundationError):
    """The payment gateway could not be reached or rejected the request."""

    status_code = status.HTTP_502_BAD_GATEWAY
    code = "gateway_error"

    def __init__(self, detail: str, upstream_status: Optional[int] = None, payload: Any = None):
        super().__init__(detail, {"upstream_status": upstream_status} if upstream_status else None)
        self.upstream_status = upstream_status
        self.payload = payload


async def foundation_error_handler(request: Request, exc: FoundationError) -> JSONResponse:
    content = {"detail": exc.detail, "code": exc.code}
    content.update(exc.extra)
    return JSONResponse(status_code=exc.status_code, content=content)

"""
Domain error taxonomy and the HTTP rendering of it.

Services raise these; routes let them propagate and the handler registered in
``app.main`` turns them into JSON responses.
"""
from typing import Any, Dict, Optional

from fastapi import Request, status
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError

from app.core.logging import get_logger

logger = get_logger(__name__)


class PIRError(Exception):
    """Base class for every error the PIR workflow reports to a user."""

    code = "error"
    status_code = status.HTTP_400_BAD_REQUEST

    def __init__(self, message: str, **extra: Any):
        super().__init__(message)
        self.message = message
        self.extra = extra

    def to_detail(self) -> Dict[str, Any]:
        detail = {"error": self.code, "message": self.message}
        detail.update(self.extra)
        return detail


class ValidationError(PIRError):
    """Input rejected before anything is written."""

    code = "validation_error"
    status_code = status.HTTP_422_UNPROCESSABLE_ENTITY


class TransitionError(PIRError):
    """Requested action is illegal for the entity's current status."""

    code = "invalid_status"
    status_code = status.HTTP_409_CONFLICT

    def __init__(self, message: str, current: Optional[str] = None, requested: Optional[str] = None, **extra: Any):
        super().__init__(message, current_status=current, requested_status=requested, **extra)


class LockedError(PIRError):
    code = "locked"
    status_code = status.HTTP_409_CONFLICT


class ConflictError(PIRError):
    """Optimistic concurrency check failed."""

    code = "version_conflict"
    status_code = status.HTTP_409_CONFLICT


class NotFoundError(PIRError):
    code = "not_found"
    status_code = status.HTTP_404_NOT_FOUND


class AccessDeniedError(PIRError):
    code = "access_denied"
    status_code = status.HTTP_403_FORBIDDEN


class PersistenceError(PIRError):
    """Datastore failure. The transaction was rolled back; the action can be retried."""

    code = "persistence_error"
    status_code = status.HTTP_503_SERVICE_UNAVAILABLE


async def pir_error_handler(request: Request, exc: PIRError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc.message}")
    else:
        logger.info(f"{request.method} {request.url.path} rejected ({exc.code}): {exc.message}")
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.to_detail()})


async def sqlalchemy_error_handler(request: Request, exc: SQLAlchemyError) -> JSONResponse:
    """Uncaught datastore failures; the request's session is rolled back on close."""
    logger.error(f"{request.method} {request.url.path} datastore failure: {exc}")
    error = PersistenceError("The change could not be saved. Please retry.")
    return JSONResponse(status_code=error.status_code, content={"detail": error.to_detail()})

"""Maps domain errors onto HTTP responses."""

import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from domain.errors import (
    DuplicateRecordError, InvalidStateError, NotFoundError, SchedulingConflictError,
    SubscriptionError, ValidationError,
)

logger = logging.getLogger(__name__)

STATUS_CODES = {
    ValidationError: 400,
    NotFoundError: 404,
    InvalidStateError: 409,
    SchedulingConflictError: 409,
    DuplicateRecordError: 409,
}


def status_for(exc: SubscriptionError) -> int:
    for error_type, status_code in STATUS_CODES.items():
        if isinstance(exc, error_type):
            return status_code
    return 400


def install_exception_handlers(app: FastAPI) -> None:

    @app.exception_handler(SubscriptionError)
    async def subscription_error_handler(request: Request, exc: SubscriptionError):
        status_code = status_for(exc)
        logger.info(
            "%s %s -> %s %s: %s",
            request.method, request.url.path, status_code, type(exc).__name__, exc.message,
        )
        return JSONResponse(
            {"detail": exc.message, "code": type(exc).__name__},
            status_code=status_code,
        )

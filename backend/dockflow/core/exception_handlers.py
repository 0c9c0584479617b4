"""
HTTP mapping for dockflow errors.

Responses carry the message, the error class name and the structured
details of the exception (field, tool, reason, timeout).
"""
import logging
from typing import List, Tuple, Type

from fastapi import Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette import status

from dockflow.core.exceptions import (
    AlreadyExistsError,
    DomainException,
    InstallTimeoutError,
    NotFoundError,
    ServiceUnavailableError,
    ValidationError,
)

logger = logging.getLogger(__name__)

# First match wins; anything else is a 500.
STATUS_BY_ERROR: List[Tuple[Type[DomainException], int]] = [
    (NotFoundError, status.HTTP_404_NOT_FOUND),
    (AlreadyExistsError, status.HTTP_409_CONFLICT),
    (ValidationError, status.HTTP_400_BAD_REQUEST),
    (ServiceUnavailableError, status.HTTP_503_SERVICE_UNAVAILABLE),
    (InstallTimeoutError, status.HTTP_504_GATEWAY_TIMEOUT),
]


def status_for(exc: DomainException) -> int:
    for error_type, status_code in STATUS_BY_ERROR:
        if isinstance(exc, error_type):
            return status_code
    return status.HTTP_500_INTERNAL_SERVER_ERROR


async def domain_exception_handler(request: Request, exc: DomainException) -> JSONResponse:
    status_code = status_for(exc)
    if status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc.message}", extra={"details": exc.details})
    else:
        logger.info(f"{request.method} {request.url.path} rejected ({status_code}): {exc.message}")

    return JSONResponse(
        status_code=status_code,
        content={
            "detail": exc.message,
            "error_type": exc.__class__.__name__,
            **exc.details,
        },
    )


async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    errors = jsonable_encoder(exc.errors())
    logger.warning(f"Rejected {request.method} {request.url.path}: {len(errors)} invalid field(s)")
    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content={"detail": errors},
    )


def register_exception_handlers(app):
    app.add_exception_handler(DomainException, domain_exception_handler)
    app.add_exception_handler(RequestValidationError, request_validation_handler)

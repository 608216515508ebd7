"""
Lensmatch — Service-layer exceptions and the FastAPI handler that maps them
onto HTTP responses.
"""

from __future__ import annotations

import structlog
from fastapi import Request
from fastapi.responses import JSONResponse

logger = structlog.get_logger("lensmatch.exceptions")


class LensmatchError(Exception):
    """Base exception for service-layer errors."""


class ConfigurationError(LensmatchError):
    """A weight or settings write was rejected; prior configuration is kept."""


class EmbeddingError(LensmatchError):
    """The embedding provider failed or returned malformed output."""


class ContentUnavailableError(LensmatchError):
    """An embedding job points at content that is missing or not embeddable."""


class NotFoundError(LensmatchError):
    """A session, job, photographer or content row does not exist."""


class InvalidContentError(LensmatchError):
    """A content edit carries values that cannot be stored."""


async def lensmatch_exception_handler(
    request: Request,
    exc: LensmatchError,
) -> JSONResponse:
    status_code = 500
    if isinstance(exc, NotFoundError):
        status_code = 404
    elif isinstance(exc, (ConfigurationError, InvalidContentError)):
        status_code = 422
    elif isinstance(exc, ContentUnavailableError):
        status_code = 409
    elif isinstance(exc, EmbeddingError):
        status_code = 502

    logger.warning(
        "service_error",
        path=request.url.path,
        error=str(exc),
        error_type=exc.__class__.__name__,
        status=status_code,
    )
    return JSONResponse(
        status_code=status_code,
        content={"detail": str(exc), "type": exc.__class__.__name__},
    )

"""Map engine exceptions to HTTP responses.

Services raise EngineError subclasses and know nothing about HTTP.  This
handler turns them into JSON bodies of the form

    {"detail": "<message>", "code": "FORBIDDEN", "reason": "no_seats"}

so clients can branch on ``reason`` instead of parsing messages.
"""

from __future__ import annotations

import logging

from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse

from access_engine.core.errors import (
    BadRequestError,
    ConflictError,
    EngineError,
    ForbiddenError,
    NotFoundError,
)

logger = logging.getLogger(__name__)

_STATUS_BY_TYPE: dict[type[EngineError], int] = {
    NotFoundError: status.HTTP_404_NOT_FOUND,
    ConflictError: status.HTTP_409_CONFLICT,
    BadRequestError: status.HTTP_400_BAD_REQUEST,
    ForbiddenError: status.HTTP_403_FORBIDDEN,
}


def status_for(exc: EngineError) -> int:
    for exc_type, code in _STATUS_BY_TYPE.items():
        if isinstance(exc, exc_type):
            return code
    return status.HTTP_400_BAD_REQUEST


async def engine_error_handler(request: Request, exc: EngineError) -> JSONResponse:
    http_status = status_for(exc)
    logger.warning(
        "%s %s rejected: %s (%s%s)",
        request.method,
        request.url.path,
        exc.message,
        exc.code,
        f", reason={exc.reason}" if exc.reason else "",
    )
    return JSONResponse(
        status_code=http_status,
        content={"detail": exc.message, "code": exc.code, "reason": exc.reason},
    )


def install_error_handlers(app: FastAPI) -> None:
    app.add_exception_handler(EngineError, engine_error_handler)

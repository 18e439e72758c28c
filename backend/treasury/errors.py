"""
Error taxonomy for the treasury API.

Every failure carries a machine readable ``kind`` and a human readable message.
Guards raise these before any write, and ``get_session()`` rolls back when one
escapes a session block, so a raised error never leaves a partial mutation.
"""

from __future__ import annotations

import logging
from typing import Optional

from fastapi import FastAPI, Request, status
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse


logger = logging.getLogger(__name__)


class TreasuryError(Exception):
    """Base class; subclasses fix the HTTP status and ``kind``."""

    status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR
    kind: str = "INTERNAL"

    def __init__(self, message: str, reason: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.reason = reason

    def to_dict(self) -> dict:
        body = {"detail": self.message, "kind": self.kind}
        if self.reason:
            body["reason"] = self.reason
        return body


class NotFoundError(TreasuryError):
    status_code = status.HTTP_404_NOT_FOUND
    kind = "NOT_FOUND"


class ForbiddenError(TreasuryError):
    status_code = status.HTTP_403_FORBIDDEN
    kind = "FORBIDDEN"


class UnauthorizedError(TreasuryError):
    status_code = status.HTTP_401_UNAUTHORIZED
    kind = "UNAUTHORIZED"


class ConflictError(TreasuryError):
    status_code = status.HTTP_409_CONFLICT
    kind = "CONFLICT"


class BadRequestError(TreasuryError):
    status_code = status.HTTP_400_BAD_REQUEST
    kind = "BAD_REQUEST"


async def _treasury_error_handler(request: Request, exc: TreasuryError) -> JSONResponse:
    if exc.status_code < 500:
        logger.warning("%s %s -> %s: %s", request.method, request.url.path, exc.kind, exc.message)
    else:
        logger.error("%s %s -> %s: %s", request.method, request.url.path, exc.kind, exc.message)
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


async def _validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    logger.warning("%s %s -> invalid request: %s", request.method, request.url.path, exc.errors())
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content={
            "detail": "Invalid request.",
            "kind": BadRequestError.kind,
            "errors": jsonable_encoder(exc.errors()),
        },
    )


def register_error_handlers(app: FastAPI) -> None:
    app.add_exception_handler(TreasuryError, _treasury_error_handler)
    app.add_exception_handler(RequestValidationError, _validation_error_handler)

"""Standardised JSON error envelope for the RoboFleet coordinator API.

All errors returned by a coordinator share the same shape::

    {"error": "<human-readable message>", "code": "<ERROR_CODE>",
     "status": <http_status>, "causes": ["<cause>", ...]}

Raise any :class:`robofleet.errors.RoboFleetError` inside an endpoint; the
handlers installed by :func:`register_error_handlers` turn it into the
envelope.  An error relayed from a remote coordinator
(:class:`robofleet.errors.RemoteRequestFailed`) keeps the remote status and
body untouched.
"""

from __future__ import annotations

import logging

from fastapi import HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from robofleet.errors import RoboFleetError

logger = logging.getLogger("RoboFleet.Gateway")


def error_response(exc: RoboFleetError) -> JSONResponse:
    return JSONResponse(status_code=exc.status, content=exc.to_dict())


def register_error_handlers(app) -> None:
    """Install global exception handlers on the FastAPI *app* instance."""

    @app.exception_handler(RoboFleetError)
    async def _robofleet_error_handler(request: Request, exc: RoboFleetError):
        logger.info(
            "%s %s -> %s (%s): %s",
            request.method,
            request.url.path,
            exc.status,
            exc.code,
            exc,
        )
        return error_response(exc)

    @app.exception_handler(RequestValidationError)
    async def _validation_error_handler(request: Request, exc: RequestValidationError):
        return JSONResponse(
            status_code=422,
            content={
                "error": "Invalid request body",
                "code": "INVALID_REQUEST",
                "status": 422,
                "causes": [str(e.get("msg", e)) for e in exc.errors()],
            },
        )

    @app.exception_handler(HTTPException)
    async def _http_error_handler(request: Request, exc: HTTPException):
        detail = exc.detail if isinstance(exc.detail, str) else str(exc.detail)
        return JSONResponse(
            status_code=exc.status_code,
            content={
                "error": detail,
                "code": f"HTTP_{exc.status_code}",
                "status": exc.status_code,
                "causes": [],
            },
        )

    @app.exception_handler(Exception)
    async def _unhandled_error_handler(request: Request, exc: Exception):
        logger.exception("Unhandled coordinator error on %s %s", request.method, request.url.path)
        return JSONResponse(
            status_code=500,
            content={
                "error": "Internal server error",
                "code": "INTERNAL_ERROR",
                "status": 500,
                "causes": [],
            },
        )

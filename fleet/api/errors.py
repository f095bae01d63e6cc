"""
Translate domain failures into HTTP responses.

Body shape for every protocol failure::

    {"success": false, "code": "...", "reason": "...",
     "detail": "...", "retryable": false}
"""

import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from fleet.domain.errors import DispatchError, ErrorCategory, UnclassifiedError

logger = logging.getLogger(__name__)

HTTP_STATUS = {
    ErrorCategory.NOT_FOUND: 404,
    ErrorCategory.PRECONDITION_FAILED: 422,
    ErrorCategory.ILLEGAL_STATE_TRANSITION: 409,
    ErrorCategory.CONCURRENCY_CONFLICT: 409,
    ErrorCategory.UNCLASSIFIED: 500,
}


async def dispatch_error_handler(request: Request, exc: DispatchError) -> JSONResponse:
    status = HTTP_STATUS.get(exc.category, 500)
    if status >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc)
    return JSONResponse(exc.to_dict(), status_code=status)


async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return JSONResponse(
        UnclassifiedError("An unexpected error occurred.").to_dict(), status_code=500
    )


def register_error_handlers(app: FastAPI) -> None:
    app.add_exception_handler(DispatchError, dispatch_error_handler)
    app.add_exception_handler(Exception, unhandled_error_handler)

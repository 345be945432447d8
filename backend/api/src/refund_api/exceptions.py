"""FastAPI exception handlers for converting EngineError to HTTP responses.

The ErrorCode-to-HTTP status mapping:
- 400 Bad Request: Input validation failures
- 403 Forbidden: Actor lacks the role for the command
- 404 Not Found: Referenced record does not exist
- 409 Conflict: Wrong state, already resolved or concurrent modification
- 422 Unprocessable Entity: No policy or rule applies to the booking
- 502 Bad Gateway: Payment gateway failure

Usage:
    from refund_api.exceptions import register_exception_handlers
    register_exception_handlers(app)
"""

import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from starlette.status import (
    HTTP_400_BAD_REQUEST,
    HTTP_403_FORBIDDEN,
    HTTP_404_NOT_FOUND,
    HTTP_409_CONFLICT,
    HTTP_422_UNPROCESSABLE_ENTITY,
    HTTP_500_INTERNAL_SERVER_ERROR,
    HTTP_502_BAD_GATEWAY,
)

from refund_engine.models import EngineError, ErrorCode

logger = logging.getLogger(__name__)

# Codes not listed here map to 400
ERROR_CODE_TO_HTTP_STATUS: dict[ErrorCode, int] = {
    # Authorization errors -> 403 Forbidden
    ErrorCode.FORBIDDEN: HTTP_403_FORBIDDEN,
    # Not found errors -> 404 Not Found
    ErrorCode.BOOKING_NOT_FOUND: HTTP_404_NOT_FOUND,
    ErrorCode.POLICY_NOT_FOUND: HTTP_404_NOT_FOUND,
    ErrorCode.REQUEST_NOT_FOUND: HTTP_404_NOT_FOUND,
    ErrorCode.REFUND_NOT_FOUND: HTTP_404_NOT_FOUND,
    ErrorCode.DISPUTE_NOT_FOUND: HTTP_404_NOT_FOUND,
    # State and concurrency errors -> 409 Conflict
    ErrorCode.INVALID_STATE_TRANSITION: HTTP_409_CONFLICT,
    ErrorCode.ALREADY_RESOLVED: HTTP_409_CONFLICT,
    ErrorCode.VERSION_CONFLICT: HTTP_409_CONFLICT,
    ErrorCode.ACTIVE_REQUEST_EXISTS: HTTP_409_CONFLICT,
    # Policy resolution -> 422 Unprocessable Entity
    ErrorCode.NO_POLICY_RESOLVABLE: HTTP_422_UNPROCESSABLE_ENTITY,
    ErrorCode.NO_RULE_DETERMINABLE: HTTP_422_UNPROCESSABLE_ENTITY,
    # Collaborator errors -> 502 Bad Gateway
    ErrorCode.GATEWAY_FAILURE: HTTP_502_BAD_GATEWAY,
}


def get_http_status_for_error(code: ErrorCode) -> int:
    """Get HTTP status code for an ErrorCode, defaulting to 400."""
    return ERROR_CODE_TO_HTTP_STATUS.get(code, HTTP_400_BAD_REQUEST)


async def engine_error_handler(request: Request, exc: EngineError) -> JSONResponse:
    """Convert an EngineError into a JSON ErrorResponse with a mapped status."""
    status_code = get_http_status_for_error(exc.code)
    logger.info(
        "%s %s failed with %s", request.method, request.url.path, exc.code.value
    )
    return JSONResponse(
        status_code=status_code,
        content=exc.to_response().model_dump(mode="json"),
    )


async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Return a generic 500 body without exposing internal details."""
    logger.exception("Unhandled exception: %s", exc)
    return JSONResponse(
        status_code=HTTP_500_INTERNAL_SERVER_ERROR,
        content={
            "success": False,
            "error_code": "ERR_INTERNAL",
            "message": "An unexpected error occurred",
            "recovery": "Please try again later or contact support",
            "details": None,
        },
    )


def register_exception_handlers(app: FastAPI) -> None:
    """Register all exception handlers with the FastAPI app."""
    app.add_exception_handler(EngineError, engine_error_handler)  # type: ignore[arg-type]
    app.add_exception_handler(Exception, generic_exception_handler)

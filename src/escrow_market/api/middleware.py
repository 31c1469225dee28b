"""FastAPI middleware for request tracing, error handling, and CORS.

Middleware stack (applied bottom-up):
    1. RequestIDMiddleware: injects X-Request-ID into every request/response
    2. ErrorHandlerMiddleware: catches domain exceptions -> structured JSON errors
    3. CORSMiddleware: handles browser-based clients (if any)
"""

from __future__ import annotations

import uuid
from typing import TYPE_CHECKING

from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint

from escrow_market.config import get_settings
from escrow_market.domain.exceptions import (
    AlreadyRatedError,
    DuplicateOperationError,
    InvalidStateError,
    ItemNotFoundError,
    LedgerNotInitializedError,
    MarketError,
    NotAuthorizedError,
    TransferFailedError,
)
from escrow_market.logging_config import bind_request_context, get_logger

if TYPE_CHECKING:
    from fastapi import FastAPI, Request, Response

logger = get_logger(__name__)

# Most specific first; anything else derived from MarketError is a 400.
_STATUS_CODES: tuple[tuple[type[MarketError], int], ...] = (
    (ItemNotFoundError, 404),
    (NotAuthorizedError, 403),
    (InvalidStateError, 409),
    (AlreadyRatedError, 409),
    (DuplicateOperationError, 409),
    (TransferFailedError, 502),
    (LedgerNotInitializedError, 503),
)


def status_code_for(exc: MarketError) -> int:
    for exc_type, status_code in _STATUS_CODES:
        if isinstance(exc, exc_type):
            return status_code
    return 400


def error_body(exc: MarketError) -> dict:
    return {"error": exc.code, "message": exc.message}


# ---------------------------------------------------------------------------
# 1. Request ID Middleware
# ---------------------------------------------------------------------------
class RequestIDMiddleware(BaseHTTPMiddleware):
    """Inject a unique X-Request-ID into every request for log correlation."""

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        request_id = request.headers.get("X-Request-ID", str(uuid.uuid4()))
        principal = request.headers.get(get_settings().principal_header, "")

        bind_request_context(request_id=request_id, principal=principal)

        response = await call_next(request)
        response.headers["X-Request-ID"] = request_id
        return response


# ---------------------------------------------------------------------------
# 2. Error Handler Middleware
# ---------------------------------------------------------------------------
class ErrorHandlerMiddleware(BaseHTTPMiddleware):
    """Catch domain exceptions and return structured JSON error responses."""

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        try:
            return await call_next(request)
        except InvalidStateError as exc:
            logger.warning(
                "state_machine.invalid_transition",
                current=exc.current_state,
                operation=exc.operation,
            )
            return JSONResponse(status_code=409, content=error_body(exc))
        except TransferFailedError as exc:
            logger.error("settlement.failed", error=exc.message, item_id=exc.item_id)
            return JSONResponse(status_code=502, content=error_body(exc))
        except MarketError as exc:
            status_code = status_code_for(exc)
            logger.warning("domain.error", error=exc.message, code=exc.code, status=status_code)
            return JSONResponse(status_code=status_code, content=error_body(exc))
        except Exception as exc:
            logger.exception("unhandled.error", error=str(exc))
            return JSONResponse(
                status_code=500,
                content={
                    "error": "INTERNAL_ERROR",
                    "message": "An unexpected error occurred",
                },
            )


# ---------------------------------------------------------------------------
# Setup function
# ---------------------------------------------------------------------------
def setup_middleware(app: FastAPI) -> None:
    """Register all middleware on the FastAPI application.

    Middleware is applied bottom-up, so the last added
    middleware runs first.
    """
    # CORS (runs first)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],  # Tighten in production
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Error handling (runs second)
    app.add_middleware(ErrorHandlerMiddleware)

    # Request ID (runs last = outermost)
    app.add_middleware(RequestIDMiddleware)

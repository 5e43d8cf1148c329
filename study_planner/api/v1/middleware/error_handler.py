"""Global error-handling middleware.

Translates service exceptions into structured JSON error responses so the
endpoints can simply let them propagate.
"""

from __future__ import annotations

from fastapi import Request
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.responses import Response

from study_planner.utils.exceptions import (
    CapacityExceededError,
    InvalidSubmissionError,
    LLMError,
    OwnerNotFoundError,
    ParseRecoveryExhausted,
    PersistenceError,
    StaleTaskError,
    StudyPlannerError,
    TaskNotFoundError,
    TaskStoreError,
)
from study_planner.utils.logging import get_logger

logger = get_logger(__name__)

_STATUS_MAP: dict[type, int] = {
    InvalidSubmissionError: 400,
    OwnerNotFoundError: 404,
    TaskNotFoundError: 404,
    StaleTaskError: 409,
    ParseRecoveryExhausted: 422,
    CapacityExceededError: 429,
    PersistenceError: 500,
    TaskStoreError: 500,
    LLMError: 502,
}


class ErrorHandlerMiddleware(BaseHTTPMiddleware):
    """Converts :class:`StudyPlannerError` subclasses to JSON error responses.

    Unknown exceptions are logged and returned as HTTP 500 without detail.
    """

    async def dispatch(
        self,
        request: Request,
        call_next: RequestResponseEndpoint,
    ) -> Response:
        try:
            return await call_next(request)

        except StudyPlannerError as exc:
            status_code = _STATUS_MAP.get(type(exc), 500)
            log_fn = logger.warning if status_code < 500 else logger.error
            log_fn(
                "handled_error",
                error_type=type(exc).__name__,
                status_code=status_code,
                detail=str(exc),
                path=request.url.path,
            )
            return JSONResponse(
                status_code=status_code,
                content={"error": type(exc).__name__, "detail": str(exc)},
            )

        except Exception as exc:
            logger.error(
                "unhandled_error",
                error_type=type(exc).__name__,
                detail=str(exc),
                path=request.url.path,
                exc_info=True,
            )
            return JSONResponse(
                status_code=500,
                content={
                    "error": "InternalServerError",
                    "detail": "An unexpected error occurred.  Please try again later.",
                },
            )

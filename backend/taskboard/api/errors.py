"""Translate domain errors into HTTP responses."""

from typing import Any

import structlog
from fastapi import FastAPI, Request, status
from fastapi.responses import ORJSONResponse

from taskboard.exceptions import (
    PinInvalidError,
    TaskboardError,
    WIPLimitExceededError,
)

logger = structlog.get_logger()

STATUS_BY_KIND = {
    "forbidden": status.HTTP_403_FORBIDDEN,
    "not_found": status.HTTP_404_NOT_FOUND,
    "conflict": status.HTTP_409_CONFLICT,
    "invalid": status.HTTP_422_UNPROCESSABLE_ENTITY,
    "pin": status.HTTP_400_BAD_REQUEST,
    "transient": status.HTTP_503_SERVICE_UNAVAILABLE,
}


def error_body(exc: TaskboardError) -> dict[str, Any]:
    body: dict[str, Any] = {"detail": exc.message, "code": exc.code}
    if isinstance(exc, PinInvalidError):
        body["attempts_remaining"] = exc.attempts_remaining
    elif isinstance(exc, WIPLimitExceededError):
        body["stage_id"] = exc.stage_id
        body["limit"] = exc.limit
        body["current_count"] = exc.current
    return body


async def taskboard_error_handler(request: Request, exc: TaskboardError) -> ORJSONResponse:
    status_code = STATUS_BY_KIND.get(exc.kind, status.HTTP_500_INTERNAL_SERVER_ERROR)
    if status_code >= 500:
        logger.error("request_error", code=exc.code, error=exc.message)
    return ORJSONResponse(status_code=status_code, content=error_body(exc))


def register_error_handlers(app: FastAPI) -> None:
    app.add_exception_handler(TaskboardError, taskboard_error_handler)

from __future__ import annotations

from fastapi import Request, status
from fastapi.responses import JSONResponse
from loguru import logger

from shared.errors import error_response


class MilesError(Exception):
    """Base for ledger errors surfaced to callers. Raising one aborts the unit of work."""

    status_code: int = status.HTTP_400_BAD_REQUEST
    code: str = "miles_error"

    def __init__(self, detail: str) -> None:
        super().__init__(detail)
        self.detail = detail


class NotFound(MilesError):
    status_code = status.HTTP_404_NOT_FOUND
    code = "not_found"


class PlanNotAllowed(MilesError):
    status_code = status.HTTP_403_FORBIDDEN
    code = "plan_not_allowed"


class InsufficientMiles(MilesError):
    status_code = status.HTTP_409_CONFLICT
    code = "insufficient_miles"

    def __init__(self, required: int, available: int) -> None:
        super().__init__(f"Insufficient Service Miles. Required: {required}, Available: {available}")
        self.required = required
        self.available = available


class RaceConditionDetected(MilesError):
    status_code = status.HTTP_409_CONFLICT
    code = "race_condition_detected"


class TransactionConflict(RaceConditionDetected):
    """The database aborted the unit of work because a concurrent one touched the same rows."""


class CompletedRequestsImmutable(MilesError):
    status_code = status.HTTP_409_CONFLICT
    code = "completed_request_immutable"


class QuoteTokenInvalid(MilesError):
    status_code = status.HTTP_400_BAD_REQUEST
    code = "invalid_quote_token"


async def miles_error_handler(request: Request, exc: MilesError) -> JSONResponse:
    request_id = getattr(request.state, "request_id", None)
    logger.bind(request_id=request_id, code=exc.code).info(f"miles.error {exc.code}: {exc.detail}")
    return error_response(exc.status_code, error=exc.code, detail=exc.detail, request_id=request_id)

from __future__ import annotations

from fastapi import FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse
from loguru import logger

from .schemas import ErrorResponse


def _serialize_detail(detail: str | dict | None) -> str | None:
    if detail is None:
        return None
    return str(detail)


def error_response(status_code: int, error: str, detail: str | dict | None, request_id: str | None) -> JSONResponse:
    payload = ErrorResponse(error=error, detail=_serialize_detail(detail), request_id=request_id)
    return JSONResponse(status_code=status_code, content=payload.model_dump())


async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    request_id = getattr(request.state, "request_id", None)
    return error_response(
        exc.status_code,
        error=str(exc.detail) if exc.detail else exc.__class__.__name__,
        detail=exc.detail,
        request_id=request_id,
    )


async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    request_id = getattr(request.state, "request_id", None)
    logger.bind(request_id=request_id).exception(f"Unhandled error on {request.method} {request.url.path}")
    return error_response(500, error="Internal Server Error", detail=None, request_id=request_id)


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(HTTPException, http_exception_handler)
    app.add_exception_handler(Exception, unhandled_exception_handler)

"""BillingError → HTTP 响应映射"""
from __future__ import annotations

from typing import Dict, Type

import structlog
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from domain.errors import (
    BillingError,
    ConflictError,
    InvalidStateError,
    NotFoundError,
    StorageError,
    ValidationError,
)

logger = structlog.get_logger()

STATUS_CODES: Dict[Type[BillingError], int] = {
    NotFoundError: 404,
    ConflictError: 409,
    InvalidStateError: 409,
    ValidationError: 422,
    StorageError: 503,
}


def status_for(exc: BillingError) -> int:
    for error_type, status in STATUS_CODES.items():
        if isinstance(exc, error_type):
            return status
    return 400


async def billing_error_handler(request: Request, exc: BillingError) -> JSONResponse:
    status = status_for(exc)
    if status >= 500:
        logger.error("request_failed", path=request.url.path, error=exc.code, detail=str(exc))
    else:
        logger.info("request_rejected", path=request.url.path, error=exc.code, detail=str(exc))
    return JSONResponse(
        status_code=status,
        content={"success": False, "error": exc.code, "detail": str(exc)},
    )


def install_error_handlers(app: FastAPI) -> None:
    app.add_exception_handler(BillingError, billing_error_handler)

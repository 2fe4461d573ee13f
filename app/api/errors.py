"""EngineError -> HTTP mapping.

The only place that knows status codes for domain errors.  Business-rule
rejections are normal traffic: counted and logged at INFO.  A
configuration error means the catalogue data is broken and is logged as
an error.
"""

from __future__ import annotations

import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from app.core.errors import EngineError
from app.core.metrics import ENROLLMENT_REJECTIONS

logger = logging.getLogger(__name__)

STATUS_BY_KIND: dict[str, int] = {
    "not_found": 404,
    "capacity_exceeded": 409,
    "duplicate_enrollment": 409,
    "invalid_enrollment_structure": 422,
    "sequential_violation": 409,
    "invalid_payment": 422,
    "membership_already_active": 409,
    "invalid_tier_transition": 409,
    "configuration_error": 500,
    "invalid_status_transition": 409,
    "enrollment_inactive": 409,
    "forbidden": 403,
    "concurrent_modification": 409,
}


async def engine_error_handler(request: Request, exc: Exception) -> JSONResponse:
    assert isinstance(exc, EngineError)
    status_code = STATUS_BY_KIND.get(exc.kind, 400)
    ENROLLMENT_REJECTIONS.labels(kind=exc.kind).inc()
    if exc.expected:
        logger.info(
            "%s %s rejected: %s (%s)",
            request.method,
            request.url.path,
            exc.kind,
            exc.message,
            extra={"kind": exc.kind},
        )
    else:
        logger.error(
            "%s %s failed: %s (%s) details=%s",
            request.method,
            request.url.path,
            exc.kind,
            exc.message,
            exc.details,
            extra={"kind": exc.kind},
        )
    return JSONResponse(status_code=status_code, content=exc.to_dict())


def register_error_handlers(app: FastAPI) -> None:
    app.add_exception_handler(EngineError, engine_error_handler)

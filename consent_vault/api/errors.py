# Copyright (c) 2026 ConsentVault Contributors. All Rights Reserved.

"""
API Error Handling — ConsentError to JSON {code, message, trace_id}.

Diagnostic details stay in the operator log; they are never returned.
"""

from __future__ import annotations

import logging
import uuid

from fastapi import Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from consent_vault.core.errors import ConsentError, ErrorKind

logger = logging.getLogger("vault.api")

STATUS_BY_KIND = {
    ErrorKind.NOT_FOUND: 404,
    ErrorKind.VALIDATION_ERROR: 400,
    ErrorKind.NO_TENANT_CONTEXT: 401,
    ErrorKind.TENANT_ISOLATION_VIOLATION: 403,
    ErrorKind.IMMUTABLE_FIELD_VIOLATION: 422,
    ErrorKind.INVALID_TRANSITION: 422,
    ErrorKind.HANDLE_ALREADY_USED: 409,
    ErrorKind.CONCURRENT_VERSION_CREATION: 409,
    ErrorKind.HANDLE_EXPIRED: 410,
    ErrorKind.UPDATE_FREQUENCY_EXCEEDED: 429,
    ErrorKind.NO_ACTIVE_VERSION: 500,
    ErrorKind.MULTIPLE_ACTIVE_VERSIONS: 500,
    ErrorKind.OPERATION_TIMEOUT: 504,
}


def error_body(code: str, message: str, trace_id: str) -> dict:
    return {"code": code, "message": message, "trace_id": trace_id}


async def consent_error_handler(request: Request, exc: ConsentError) -> JSONResponse:
    """Global exception handler for ConsentError."""
    trace_id = getattr(request.state, "trace_id", None) or str(uuid.uuid4())
    status_code = STATUS_BY_KIND.get(exc.kind, 500)
    log = logger.error if exc.critical or status_code >= 500 else logger.info
    log(
        "%s %s failed: %s %s",
        request.method, request.url.path, exc.kind.value, exc.details,
        extra={"trace_id": trace_id},
    )
    headers = {"Retry-After": "1"} if exc.retryable else None
    return JSONResponse(
        status_code=status_code,
        content=error_body(exc.kind.value, exc.message, trace_id),
        headers=headers,
    )


_HTTP_CODES = {
    401: ErrorKind.NO_TENANT_CONTEXT.value,
    404: ErrorKind.NOT_FOUND.value,
}


async def http_error_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    """Give header and routing failures the same body shape as ConsentError."""
    trace_id = getattr(request.state, "trace_id", None) or str(uuid.uuid4())
    return JSONResponse(
        status_code=exc.status_code,
        content=error_body(_HTTP_CODES.get(exc.status_code, "HTTP_ERROR"), str(exc.detail), trace_id),
        headers=getattr(exc, "headers", None),
    )


async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    trace_id = getattr(request.state, "trace_id", None) or str(uuid.uuid4())
    logger.info("Rejected request body: %s", exc.errors(), extra={"trace_id": trace_id})
    return JSONResponse(
        status_code=400,
        content=error_body(ErrorKind.VALIDATION_ERROR.value, "Request validation failed", trace_id),
    )

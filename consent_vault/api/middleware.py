# Copyright (c) 2026 ConsentVault Contributors. All Rights Reserved.

"""
API Middleware — Trace id propagation and request timing.
"""

from __future__ import annotations

import logging
import time
import uuid

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

from consent_vault.core.metrics import vault_metrics

logger = logging.getLogger("vault.api")


class TraceMiddleware(BaseHTTPMiddleware):
    """Generates or propagates X-Trace-Id and logs request duration."""

    async def dispatch(self, request: Request, call_next):
        trace_id = request.headers.get("X-Trace-Id") or str(uuid.uuid4())
        request.state.trace_id = trace_id

        start = time.monotonic()
        response: Response = await call_next(request)
        elapsed = (time.monotonic() - start) * 1000

        response.headers["X-Trace-Id"] = trace_id
        vault_metrics.observe("request_ms", elapsed, method=request.method)
        logger.info(
            "%s %s -> %d (%.0fms)",
            request.method, request.url.path, response.status_code, elapsed,
            extra={
                "trace_id": trace_id,
                "tenant_id": request.headers.get("X-Tenant-ID"),
            },
        )
        return response

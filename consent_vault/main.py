# Copyright (c) 2026 ConsentVault Contributors. All Rights Reserved.

"""
ConsentVault Application Entry Point.

FastAPI app with lifespan (Redis pool, vault context, expiry sweeper),
middleware, error handlers and all API routers.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from starlette.exceptions import HTTPException as StarletteHTTPException

from consent_vault import __version__
from consent_vault.api.admin import router as admin_router
from consent_vault.api.consents import handles_router
from consent_vault.api.consents import router as consents_router
from consent_vault.api.errors import consent_error_handler, http_error_handler, request_validation_handler
from consent_vault.api.middleware import TraceMiddleware
from consent_vault.api.observability import router as observability_router
from consent_vault.api.templates import router as templates_router
from consent_vault.core.config import settings
from consent_vault.core.context import init_vault_context
from consent_vault.core.errors import ConsentError
from consent_vault.core.logging import setup_logging
from consent_vault.kernel.redis_client import close_redis_pool, get_redis_pool

logger = logging.getLogger("vault.main")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Manage startup/shutdown of store resources."""
    setup_logging(settings.LOG_LEVEL, settings.LOG_FORMAT)
    redis = await get_redis_pool()
    ctx = init_vault_context(redis)
    if settings.EXPIRY_SWEEP_ENABLED:
        await ctx.sweeper.start()
    logger.info("[ConsentVault] Ready (env=%s)", settings.VAULT_ENV)
    yield
    await ctx.sweeper.stop()
    await close_redis_pool()
    logger.info("[ConsentVault] Shutdown complete")


app = FastAPI(
    title="ConsentVault",
    description="Multi-tenant consent and template record store",
    version=__version__,
    lifespan=lifespan,
)

# ── Middleware ───────────────────────────────────────────────
app.add_middleware(TraceMiddleware)
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# ── Error Handlers ──────────────────────────────────────────
app.add_exception_handler(ConsentError, consent_error_handler)
app.add_exception_handler(StarletteHTTPException, http_error_handler)
app.add_exception_handler(RequestValidationError, request_validation_handler)

# ── Routes ──────────────────────────────────────────────────
app.include_router(templates_router)
app.include_router(handles_router)
app.include_router(consents_router)
app.include_router(admin_router)
app.include_router(observability_router)

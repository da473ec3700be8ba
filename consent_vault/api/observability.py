# Copyright (c) 2026 ConsentVault Contributors. All Rights Reserved.

"""
Observability API — Health check and metrics.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends

from consent_vault import __version__
from consent_vault.api.deps import get_vault
from consent_vault.core.context import VaultContext
from consent_vault.core.metrics import vault_metrics
from consent_vault.kernel.redis_client import redis_status

router = APIRouter(tags=["observability"])


@router.get("/health")
async def health_check(vault: VaultContext = Depends(get_vault)):
    redis = await redis_status(vault.redis)
    return {
        "status": "ok" if redis == "connected" else "degraded",
        "version": __version__,
        "redis": redis,
    }


@router.get("/metrics")
async def get_metrics():
    return vault_metrics.snapshot()

# Copyright (c) 2026 ConsentVault Contributors. All Rights Reserved.

"""
Admin API — Out-of-band integrity audit and on-demand expiry sweep.
"""

from __future__ import annotations

from typing import List, Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from consent_vault.api.deps import get_current_tenant, get_vault
from consent_vault.core.context import VaultContext
from consent_vault.core.errors import ConsentError, ErrorKind
from consent_vault.core.tenant import TenantContext

router = APIRouter(prefix="/admin", tags=["admin"])


class AuditRequest(BaseModel):
    collection: str
    logical_ids: Optional[List[str]] = None


@router.post("/integrity/audit")
async def run_audit(
    req: AuditRequest,
    tenant: TenantContext = Depends(get_current_tenant),
    vault: VaultContext = Depends(get_vault),
):
    """Report active-count and sequence findings for the tenant's collection."""
    store = vault.store_for(req.collection)
    if store is None:
        raise ConsentError(ErrorKind.VALIDATION_ERROR, f"Collection '{req.collection}' is not versioned")
    report = await store.audit(tenant, req.logical_ids)
    return report.to_dict()


@router.post("/expiry-sweep")
async def run_expiry_sweep(vault: VaultContext = Depends(get_vault)):
    """Run one expiry sweep across all tenants now."""
    report = await vault.sweeper.sweep()
    return report.to_dict()

# Copyright (c) 2026 ConsentVault Contributors. All Rights Reserved.

"""
Consents API — Handle issuance, consent submission, updates and reads.
"""

from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse

from consent_vault.api.deps import get_current_tenant, get_vault
from consent_vault.core.context import VaultContext
from consent_vault.core.errors import ConsentError, ErrorKind
from consent_vault.core.tenant import TenantContext
from consent_vault.services.consents import ConsentRevision, ConsentSubmission
from consent_vault.services.handles import HandleRequest

handles_router = APIRouter(prefix="/consent-handles", tags=["consent-handles"])
router = APIRouter(prefix="/consents", tags=["consents"])


# ── Handles ─────────────────────────────────────────────────────


@handles_router.post("")
async def create_handle(
    req: HandleRequest,
    tenant: TenantContext = Depends(get_current_tenant),
    vault: VaultContext = Depends(get_vault),
):
    """Issue a consent handle; an existing pending one is returned with 200."""
    handle, is_new = await vault.handles.create_handle(tenant, req)
    return JSONResponse(
        status_code=201 if is_new else 200,
        content={"handle": handle.model_dump(mode="json"), "is_new": is_new},
    )


@handles_router.get("/{handle_id}")
async def get_handle(
    handle_id: str,
    tenant: TenantContext = Depends(get_current_tenant),
    vault: VaultContext = Depends(get_vault),
):
    handle = await vault.handles.get_handle(tenant, handle_id)
    if handle is None:
        raise ConsentError(ErrorKind.NOT_FOUND, f"Consent handle '{handle_id}' not found")
    return handle


# ── Consents ────────────────────────────────────────────────────


@router.post("")
async def create_consent(
    req: ConsentSubmission,
    tenant: TenantContext = Depends(get_current_tenant),
    vault: VaultContext = Depends(get_vault),
):
    """Record a consent; the customer's existing one is returned with 200."""
    consent, is_new = await vault.consents.create_consent(tenant, req)
    return JSONResponse(status_code=201 if is_new else 200, content=consent.model_dump(mode="json"))


@router.get("/check")
async def check_consent(
    consent_id: Optional[str] = None,
    device_id: Optional[str] = None,
    url: Optional[str] = None,
    tenant: TenantContext = Depends(get_current_tenant),
    vault: VaultContext = Depends(get_vault),
):
    return await vault.consents.check_status(tenant, consent_id=consent_id, device_id=device_id, url=url)


@router.put("/{consent_id}")
async def update_consent(
    consent_id: str,
    req: ConsentRevision,
    tenant: TenantContext = Depends(get_current_tenant),
    vault: VaultContext = Depends(get_vault),
):
    """Record new choices or a revocation as a new consent version."""
    return await vault.consents.update_consent(tenant, consent_id, req)


@router.get("/{consent_id}")
async def get_consent(
    consent_id: str,
    tenant: TenantContext = Depends(get_current_tenant),
    vault: VaultContext = Depends(get_vault),
):
    consent = await vault.consents.get_consent(tenant, consent_id)
    if consent is None:
        raise ConsentError(ErrorKind.NOT_FOUND, f"Consent '{consent_id}' not found")
    return consent


@router.get("/{consent_id}/history")
async def get_consent_history(
    consent_id: str,
    tenant: TenantContext = Depends(get_current_tenant),
    vault: VaultContext = Depends(get_vault),
):
    versions = await vault.consents.history(tenant, consent_id)
    if not versions:
        raise ConsentError(ErrorKind.NOT_FOUND, f"Consent '{consent_id}' not found")
    return {"consent_id": consent_id, "versions": versions, "count": len(versions)}


@router.get("/{consent_id}/versions/{version}")
async def get_consent_version(
    consent_id: str,
    version: int,
    tenant: TenantContext = Depends(get_current_tenant),
    vault: VaultContext = Depends(get_vault),
):
    consent = await vault.consents.get_version(tenant, consent_id, version)
    if consent is None:
        raise ConsentError(ErrorKind.NOT_FOUND, f"Consent '{consent_id}' v{version} not found")
    return consent

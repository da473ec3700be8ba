# Copyright (c) 2026 ConsentVault Contributors. All Rights Reserved.

"""
Templates API — Authoring, publication and version reads.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends

from consent_vault.api.deps import get_current_tenant, get_vault
from consent_vault.core.context import VaultContext
from consent_vault.core.errors import ConsentError, ErrorKind
from consent_vault.core.tenant import TenantContext
from consent_vault.services.templates import TemplateChanges, TemplateDraft

router = APIRouter(prefix="/templates", tags=["templates"])


def _not_found(template_id: str) -> ConsentError:
    return ConsentError(ErrorKind.NOT_FOUND, f"Template '{template_id}' not found")


@router.post("", status_code=201)
async def create_template(
    req: TemplateDraft,
    tenant: TenantContext = Depends(get_current_tenant),
    vault: VaultContext = Depends(get_vault),
):
    return await vault.templates.create_template(tenant, req)


@router.put("/{template_id}")
async def update_template(
    template_id: str,
    req: TemplateChanges,
    tenant: TenantContext = Depends(get_current_tenant),
    vault: VaultContext = Depends(get_vault),
):
    """Create a new DRAFT version of the template."""
    return await vault.templates.update_template(tenant, template_id, req)


@router.post("/{template_id}/publish")
async def publish_template(
    template_id: str,
    tenant: TenantContext = Depends(get_current_tenant),
    vault: VaultContext = Depends(get_vault),
):
    return await vault.templates.publish(tenant, template_id)


@router.post("/{template_id}/archive")
async def archive_template(
    template_id: str,
    tenant: TenantContext = Depends(get_current_tenant),
    vault: VaultContext = Depends(get_vault),
):
    return await vault.templates.archive(tenant, template_id)


@router.get("/{template_id}")
async def get_template(
    template_id: str,
    tenant: TenantContext = Depends(get_current_tenant),
    vault: VaultContext = Depends(get_vault),
):
    template = await vault.templates.get_template(tenant, template_id)
    if template is None:
        raise _not_found(template_id)
    return template


@router.get("/{template_id}/history")
async def get_template_history(
    template_id: str,
    tenant: TenantContext = Depends(get_current_tenant),
    vault: VaultContext = Depends(get_vault),
):
    versions = await vault.templates.history(tenant, template_id)
    if not versions:
        raise _not_found(template_id)
    return {"template_id": template_id, "versions": versions, "count": len(versions)}


@router.get("/{template_id}/versions/{version}")
async def get_template_version(
    template_id: str,
    version: int,
    tenant: TenantContext = Depends(get_current_tenant),
    vault: VaultContext = Depends(get_vault),
):
    template = await vault.templates.get_version(tenant, template_id, version)
    if template is None:
        raise _not_found(template_id)
    return template

# Copyright (c) 2026 ConsentVault Contributors. All Rights Reserved.

"""
API Dependencies — Tenant binding from request headers.
"""

from __future__ import annotations

from typing import AsyncIterator, Optional

from fastapi import Header, HTTPException, Request

from consent_vault.core.context import VaultContext, get_vault_context
from consent_vault.core.tenant import TenantContext, tenant_scope


def get_vault() -> VaultContext:
    return get_vault_context()


async def get_current_tenant(
    request: Request,
    x_tenant_id: Optional[str] = Header(None, alias="X-Tenant-ID"),
    x_business_id: Optional[str] = Header(None, alias="X-Business-ID"),
) -> AsyncIterator[TenantContext]:
    """
    Bind the request's tenant for the lifetime of the request.

    Headers:
      - X-Tenant-ID:   tenant partition key (required)
      - X-Business-ID: business association for writes (optional)

    A missing header is rejected with 401; a tenant with no provisioned
    partition with 404, before any store access.
    """
    if not x_tenant_id or not x_tenant_id.strip():
        raise HTTPException(status_code=401, detail="Missing X-Tenant-ID header")

    vault = get_vault_context()
    if not await vault.router.partition_exists(x_tenant_id):
        raise HTTPException(status_code=404, detail=f"Unknown tenant '{x_tenant_id}'")

    trace_id = getattr(request.state, "trace_id", None)
    async with tenant_scope(x_tenant_id, business_id=x_business_id, trace_id=trace_id) as ctx:
        yield ctx

# Copyright (c) 2026 ConsentVault Contributors. All Rights Reserved.

"""
Business Directory — Read-only check that a business belongs to the tenant.

Business applications are provisioned outside this store; each document in
`business_applications` is keyed by its business id.
"""

from __future__ import annotations

from typing import Awaitable, Callable

from consent_vault.core.tenant import TenantContext
from consent_vault.kernel.router import TenantRouter, partition_for

BUSINESS_COLLECTION = "business_applications"

BusinessExists = Callable[[TenantContext, str], Awaitable[bool]]


class BusinessDirectory:
    def __init__(self, router: TenantRouter) -> None:
        self._router = router

    async def exists(self, ctx: TenantContext, business_id: str) -> bool:
        if not business_id:
            return False
        partition = partition_for(self._router, ctx, BUSINESS_COLLECTION)
        return await partition.exists(BUSINESS_COLLECTION, business_id)

# Copyright (c) 2026 ConsentVault Contributors. All Rights Reserved.

"""
Tenant Context — Explicit, request-scoped tenant binding.

Every operation in ConsentVault is scoped to a tenant_id. The context is a
value passed down the call chain; there is no module-level "current tenant".
A context is bound only inside `with_tenant()` / `tenant_scope()` and is
cleared when the scope exits, including on exceptions.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import AsyncIterator, Awaitable, Callable, Optional, TypeVar

from consent_vault.core.errors import ConsentError, ErrorKind

logger = logging.getLogger("vault.tenant")

T = TypeVar("T")


@dataclass
class TenantContext:
    """Tenant identity for one request or one job step."""

    tenant_id: Optional[str]
    business_id: Optional[str] = None
    trace_id: Optional[str] = None
    _bound: bool = field(default=True, repr=False)

    @property
    def bound(self) -> bool:
        return self._bound and bool(self.tenant_id)

    def require_tenant(self) -> str:
        """Return the bound tenant id or fail closed."""
        if not self.bound:
            raise ConsentError(
                ErrorKind.NO_TENANT_CONTEXT,
                details={"trace_id": self.trace_id},
            )
        return self.tenant_id

    def clear(self) -> None:
        self._bound = False

    def log_extra(self) -> dict:
        return {"tenant_id": self.tenant_id, "trace_id": self.trace_id}

    def __repr__(self) -> str:
        state = "bound" if self.bound else "cleared"
        return f"TenantContext(tenant={self.tenant_id!r}, {state})"


def unbound_context(trace_id: Optional[str] = None) -> TenantContext:
    """A context with no tenant; only tenant-independent documents are reachable."""
    return TenantContext(tenant_id=None, trace_id=trace_id, _bound=False)


@asynccontextmanager
async def tenant_scope(
    tenant_id: str,
    business_id: Optional[str] = None,
    trace_id: Optional[str] = None,
) -> AsyncIterator[TenantContext]:
    """Bind `tenant_id` for the duration of the block."""
    if not tenant_id or not tenant_id.strip():
        raise ConsentError(ErrorKind.NO_TENANT_CONTEXT, "Tenant id must not be empty")
    ctx = TenantContext(tenant_id=tenant_id, business_id=business_id, trace_id=trace_id)
    try:
        yield ctx
    finally:
        ctx.clear()


async def with_tenant(
    tenant_id: str,
    fn: Callable[[TenantContext], Awaitable[T]],
    business_id: Optional[str] = None,
    trace_id: Optional[str] = None,
) -> T:
    """Await `fn(ctx)` with `tenant_id` bound; the binding never outlives the call."""
    async with tenant_scope(tenant_id, business_id=business_id, trace_id=trace_id) as ctx:
        return await fn(ctx)

# Copyright (c) 2026 ConsentVault Contributors. All Rights Reserved.

"""
Consent Handle Service — Short-lived, single-use consent tokens.

A handle binds a customer to one published template version. It is consumed
at most once (USED, or REJECTED for a reject-all submission) and reads as
EXPIRED from `expires_at` on; expiry is evaluated on read, never swept.

Single use is enforced with an HSETNX marker per handle so two concurrent
consumers cannot both succeed. The marker is dropped again when the write
it guards fails, so a rejected submission leaves the handle PENDING.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from datetime import datetime, timedelta
from typing import AsyncIterator, Callable, Optional, Tuple

from pydantic import BaseModel, Field

from consent_vault.core.config import settings
from consent_vault.core.errors import ConsentError, ErrorKind
from consent_vault.core.logging import tenant_logger
from consent_vault.core.metrics import vault_metrics
from consent_vault.core.tenant import TenantContext
from consent_vault.integrity.validator import check_tenant
from consent_vault.kernel.router import TenantRouter, partition_for
from consent_vault.lifecycle.fsm import handle_flow
from consent_vault.lifecycle.rules import effective_handle_status
from consent_vault.services.templates import TemplateService
from consent_vault.storage.documents import PartitionHandle
from consent_vault.storage.models import (
    ConsentHandle,
    CustomerIdentifiers,
    HandleStatus,
    parse_timestamp,
    utc_now,
)

logger = logging.getLogger("vault.handles")

HANDLE_COLLECTION = "cookie_consent_handles"

_OUTCOME_EVENTS = {
    HandleStatus.USED: "CONSUME",
    HandleStatus.REJECTED: "REJECT",
}


class HandleRequest(BaseModel):
    template_id: str = Field(min_length=1)
    template_version: int = Field(ge=1)
    customer_identifiers: CustomerIdentifiers
    url: Optional[str] = None
    txn_id: Optional[str] = None


class HandleService:
    def __init__(
        self,
        router: TenantRouter,
        templates: TemplateService,
        clock: Callable[[], datetime] = utc_now,
        expiry_minutes: Optional[int] = None,
    ) -> None:
        self._router = router
        self._templates = templates
        self._clock = clock
        self._expiry = timedelta(minutes=expiry_minutes or settings.HANDLE_EXPIRY_MINUTES)

    def _partition(self, ctx: TenantContext) -> PartitionHandle:
        ctx.require_tenant()
        return partition_for(self._router, ctx, HANDLE_COLLECTION)

    async def _load(self, ctx: TenantContext, handle_id: str) -> Optional[ConsentHandle]:
        doc = await self._partition(ctx).get(HANDLE_COLLECTION, handle_id)
        if doc is None:
            return None
        check_tenant(ctx.tenant_id, doc)
        return ConsentHandle.from_document(doc)

    # ── Issue ───────────────────────────────────────────────────

    async def create_handle(
        self, ctx: TenantContext, request: HandleRequest,
    ) -> Tuple[ConsentHandle, bool]:
        """
        Issue a handle, or return the caller's still-pending one.

        Returns (handle, is_new).
        """
        tenant_id = ctx.require_tenant()
        if not ctx.business_id:
            raise ConsentError(ErrorKind.VALIDATION_ERROR, "Business id is required")

        template = await self._templates.get_published(ctx, request.template_id, request.template_version)
        if template is None:
            raise ConsentError(
                ErrorKind.NOT_FOUND,
                f"No published template {request.template_id} v{request.template_version}",
                details={"template_id": request.template_id, "version": request.template_version},
            )

        now = self._clock()
        partition = self._partition(ctx)
        for doc in await partition.find(
            HANDLE_COLLECTION,
            template_id=request.template_id,
            template_version=request.template_version,
            url=request.url,
            status=HandleStatus.PENDING.value,
        ):
            existing = ConsentHandle.from_document(doc)
            if (
                existing.tenant_id == tenant_id
                and existing.customer_identifiers == request.customer_identifiers
                and effective_handle_status(existing, now) == HandleStatus.PENDING
            ):
                tenant_logger(logger, ctx).info("Returning existing consent handle %s", existing.handle_id)
                return existing, False

        handle = ConsentHandle(
            tenant_id=tenant_id,
            business_id=ctx.business_id,
            template_id=request.template_id,
            template_version=request.template_version,
            customer_identifiers=request.customer_identifiers,
            url=request.url,
            txn_id=request.txn_id or ctx.trace_id,
            status=HandleStatus(handle_flow.initial_state),
            created_at=now,
            updated_at=now,
            expires_at=now + self._expiry,
        )
        await partition.put(HANDLE_COLLECTION, handle.handle_id, handle.to_document())
        vault_metrics.inc("handles_created")
        tenant_logger(logger, ctx).info("Consent handle %s issued", handle.handle_id)
        return handle, True

    # ── Read ────────────────────────────────────────────────────

    async def get_handle(self, ctx: TenantContext, handle_id: str) -> Optional[ConsentHandle]:
        """The handle as callers see it: status reflects expiry at read time."""
        handle = await self._load(ctx, handle_id)
        if handle is None:
            return None
        return handle.model_copy(update={"status": effective_handle_status(handle, self._clock())})

    # ── Consume ─────────────────────────────────────────────────

    async def require_consumable(self, ctx: TenantContext, handle_id: str) -> ConsentHandle:
        """Return the handle if it is still PENDING and unexpired."""
        handle = await self._load(ctx, handle_id)
        if handle is None:
            raise ConsentError(
                ErrorKind.NOT_FOUND, "Consent handle not found", details={"handle_id": handle_id},
            )
        if handle.status != HandleStatus.PENDING:
            raise ConsentError(
                ErrorKind.HANDLE_ALREADY_USED,
                details={"handle_id": handle_id, "status": handle.status.value},
            )
        if effective_handle_status(handle, self._clock()) == HandleStatus.EXPIRED:
            raise ConsentError(
                ErrorKind.HANDLE_EXPIRED,
                details={"handle_id": handle_id, "expires_at": handle.expires_at.isoformat()},
            )
        return handle

    @asynccontextmanager
    async def consuming(
        self, ctx: TenantContext, handle: ConsentHandle, outcome: HandleStatus = HandleStatus.USED,
    ) -> AsyncIterator[HandleStatus]:
        """
        Hold the handle for the write done inside the block.

        The single-use marker is taken on entry, so a second caller fails
        with HANDLE_ALREADY_USED while the block runs. If the block raises,
        the marker is dropped and the handle stays PENDING for a retry.
        The stored status becomes USED or REJECTED only once the block
        completes.
        """
        event = _OUTCOME_EVENTS.get(outcome)
        if event is None:
            raise ConsentError(
                ErrorKind.INVALID_TRANSITION, f"Handle cannot be consumed as {outcome.value}",
            )
        if effective_handle_status(handle, self._clock()) == HandleStatus.EXPIRED:
            raise ConsentError(ErrorKind.HANDLE_EXPIRED, details={"handle_id": handle.handle_id})
        target = HandleStatus(handle_flow.transition(HandleStatus.PENDING, event))

        partition = self._partition(ctx)
        if not await partition.mark_consumed(HANDLE_COLLECTION, handle.handle_id, target.value):
            tenant_logger(logger, ctx).warning("Consent handle %s consumed twice", handle.handle_id)
            raise ConsentError(ErrorKind.HANDLE_ALREADY_USED, details={"handle_id": handle.handle_id})

        try:
            yield target
        except BaseException:
            await partition.release_consumed(HANDLE_COLLECTION, handle.handle_id)
            tenant_logger(logger, ctx).info(
                "Consent handle %s released after a failed write", handle.handle_id,
            )
            raise

        now = self._clock()
        await partition.update_fields(
            HANDLE_COLLECTION,
            handle.handle_id,
            {"status": target.value, "updated_at": now.isoformat()},
            expect={"status": HandleStatus.PENDING.value},
        )
        vault_metrics.inc("handles_consumed", outcome=target.value)

    # ── Lookup ──────────────────────────────────────────────────

    async def latest_for_customer(
        self, ctx: TenantContext, identifier: str, url: str,
    ) -> Optional[ConsentHandle]:
        """Newest handle issued for this customer identifier on this URL."""
        docs = await self._partition(ctx).find(
            HANDLE_COLLECTION,
            where=lambda d: (d.get("customer_identifiers") or {}).get("value") == identifier,
            url=url,
        )
        if not docs:
            return None
        newest = max(docs, key=lambda d: parse_timestamp(d["created_at"]))
        check_tenant(ctx.tenant_id, newest)
        handle = ConsentHandle.from_document(newest)
        return handle.model_copy(update={"status": effective_handle_status(handle, self._clock())})

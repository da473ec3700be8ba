# Copyright (c) 2026 ConsentVault Contributors. All Rights Reserved.

"""
Expiry Sweeper — Cron-scheduled bulk expiry of consents across every tenant.

For each tenant partition in the catalog, every consent whose active version
is ACTIVE with an end_date in the past is flipped to EXPIRED. Documents are
never deleted. A failing tenant is logged and skipped; the rest still run.

Schedule format is six fields with seconds first ("0 0 0 * * *" is daily at
midnight UTC). croniter expects seconds last, so the field is rotated.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Dict, Optional

from croniter import croniter

from consent_vault.core.config import settings
from consent_vault.core.metrics import vault_metrics
from consent_vault.core.tenant import tenant_scope
from consent_vault.kernel.router import TenantRouter, partition_for
from consent_vault.lifecycle.fsm import consent_flow
from consent_vault.services.consents import CONSENT_COLLECTION
from consent_vault.storage.models import ConsentStatus, VersionStatus, parse_timestamp, utc_now

logger = logging.getLogger("vault.expiry_sweeper")


def to_croniter_expression(expression: str) -> str:
    """
    Move a leading seconds field to the end; 5-field expressions pass through.

    Example:
        to_croniter_expression("0 0 0 * * *") -> "0 0 * * * 0"
    """
    fields = expression.split()
    if len(fields) == 6:
        fields = fields[1:] + fields[:1]
    elif len(fields) != 5:
        raise ValueError(f"Cron expression must have 5 or 6 fields: {expression!r}")
    expr = " ".join(fields)
    if not croniter.is_valid(expr):
        raise ValueError(f"Invalid cron expression: {expression!r}")
    return expr


@dataclass
class SweepReport:
    started_at: datetime
    total: int = 0
    per_tenant: Dict[str, int] = field(default_factory=dict)
    failures: Dict[str, str] = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {
            "started_at": self.started_at.isoformat(),
            "total": self.total,
            "per_tenant": dict(self.per_tenant),
            "failures": dict(self.failures),
        }


class ExpirySweeper:
    """Background task that expires lapsed consents on a cron schedule."""

    def __init__(
        self,
        router: TenantRouter,
        cron: Optional[str] = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._router = router
        self._cron = to_croniter_expression(cron or settings.EXPIRY_SWEEP_CRON)
        self._clock = clock
        self._running = False
        self._task: Optional[asyncio.Task] = None

    def next_run(self, after: Optional[datetime] = None) -> datetime:
        return croniter(self._cron, after or self._clock()).get_next(datetime)

    async def start(self) -> None:
        """Start the sweeper as a background asyncio task."""
        self._running = True
        self._task = asyncio.create_task(self._sweep_loop())
        logger.info("Expiry sweeper started, next run at %s", self.next_run().isoformat())

    async def stop(self) -> None:
        self._running = False
        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        logger.info("Expiry sweeper stopped")

    async def _sweep_loop(self) -> None:
        while self._running:
            delay = (self.next_run() - self._clock()).total_seconds()
            try:
                await asyncio.sleep(max(delay, 0))
            except asyncio.CancelledError:
                break
            try:
                await self.sweep()
            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error("Expiry sweep error: %s", e, exc_info=True)

    async def sweep(self, now: Optional[datetime] = None) -> SweepReport:
        """Expire lapsed consents in every tenant partition."""
        now = now or self._clock()
        report = SweepReport(started_at=now)
        for tenant_id in await self._router.list_tenant_partitions():
            try:
                count = await self._sweep_tenant(tenant_id, now)
            except Exception as e:
                logger.error(
                    "Expiry sweep failed for tenant %s: %s", tenant_id, e,
                    exc_info=True, extra={"tenant_id": tenant_id},
                )
                report.failures[tenant_id] = str(e)
                vault_metrics.inc("sweep_failures", tenant=tenant_id)
                continue
            report.per_tenant[tenant_id] = count
            report.total += count

        vault_metrics.inc("consents_expired", report.total)
        logger.info(
            "Expiry sweep finished: %d consents expired across %d tenants (%d failed)",
            report.total, len(report.per_tenant), len(report.failures),
        )
        return report

    async def _sweep_tenant(self, tenant_id: str, now: datetime) -> int:
        target = consent_flow.transition(ConsentStatus.ACTIVE, "EXPIRE")
        async with tenant_scope(tenant_id) as ctx:
            partition = partition_for(self._router, ctx, CONSENT_COLLECTION)
            count = await partition.update_many(
                CONSENT_COLLECTION,
                {"status": target, "updated_at": now.isoformat()},
                where=lambda doc: (
                    doc.get("end_date") is not None
                    and parse_timestamp(doc["end_date"]) < now
                ),
                version_status=VersionStatus.ACTIVE.value,
                status=ConsentStatus.ACTIVE.value,
            )
        if count:
            logger.info("Expired %d consents", count, extra={"tenant_id": tenant_id})
        return count

# Copyright (c) 2026 ConsentVault Contributors. All Rights Reserved.
"""Unit tests for ExpirySweeper."""

from datetime import datetime, timedelta, timezone

import pytest

from consent_vault.core.metrics import vault_metrics
from consent_vault.core.tenant import TenantContext
from consent_vault.services.expiry_sweeper import ExpirySweeper, to_croniter_expression
from consent_vault.storage.models import (
    Consent,
    ConsentStatus,
    CustomerIdentifiers,
    VersionStatus,
)

START = datetime(2026, 3, 2, 9, 0, tzinfo=timezone.utc)


def _consent(end, status=ConsentStatus.ACTIVE):
    return Consent(
        business_id="biz-1",
        template_id="tpl-1",
        template_version=1,
        customer_identifiers=CustomerIdentifiers(type="EMAIL", value="jo@example.com"),
        status=status,
        start_date=START,
        end_date=end,
    )


async def _seed(vault):
    store = vault.consent_store
    a, b = TenantContext(tenant_id="A"), TenantContext(tenant_id="B")
    lapsing = await store.create_first_version(a, _consent(START + timedelta(days=1)))
    current = await store.create_first_version(a, _consent(START + timedelta(days=30)))
    revoked = await store.create_first_version(
        a, _consent(START + timedelta(days=1), status=ConsentStatus.REVOKED),
    )
    other = await store.create_first_version(b, _consent(START + timedelta(days=1)))
    return lapsing, current, revoked, other


class TestSweep:
    @pytest.mark.asyncio
    async def test_expires_lapsed_active_consents(self, vault, clock):
        lapsing, current, revoked, other = await _seed(vault)
        clock.advance(days=2)

        report = await vault.sweeper.sweep()
        assert report.total == 2
        assert report.per_tenant == {"A": 1, "B": 1}
        assert not report.failures

        a = TenantContext(tenant_id="A")
        expired = await vault.consent_store.get_active(a, lapsing.logical_id)
        assert expired.status == ConsentStatus.EXPIRED
        assert expired.version == 1
        assert expired.updated_at == clock.now
        assert (await vault.consent_store.get_active(a, current.logical_id)).status == ConsentStatus.ACTIVE
        assert (await vault.consent_store.get_active(a, revoked.logical_id)).status == ConsentStatus.REVOKED
        b = TenantContext(tenant_id="B")
        assert (await vault.consent_store.get_active(b, other.logical_id)).status == ConsentStatus.EXPIRED

    @pytest.mark.asyncio
    async def test_second_run_is_noop(self, vault, clock):
        await _seed(vault)
        clock.advance(days=2)
        await vault.sweeper.sweep()
        again = await vault.sweeper.sweep()
        assert again.total == 0
        assert again.per_tenant == {"A": 0, "B": 0}

    @pytest.mark.asyncio
    async def test_superseded_versions_untouched(self, vault, clock):
        store = vault.consent_store
        ctx = TenantContext(tenant_id="A")
        first = await store.create_first_version(ctx, _consent(START + timedelta(days=1)))
        clock.advance(hours=1)

        def extend(draft):
            draft.end_date = START + timedelta(days=60)

        await store.create_next_version(ctx, first.logical_id, extend)
        clock.advance(days=2)

        report = await vault.sweeper.sweep()
        assert report.total == 0
        prior = await store.get_by_version(ctx, first.logical_id, 1)
        assert prior.version_status == VersionStatus.UPDATED
        assert prior.status == ConsentStatus.ACTIVE

    @pytest.mark.asyncio
    async def test_nothing_expires_early(self, vault):
        await _seed(vault)
        report = await vault.sweeper.sweep()
        assert report.total == 0

    @pytest.mark.asyncio
    async def test_failing_tenant_does_not_stop_others(self, vault, clock, monkeypatch):
        await _seed(vault)
        clock.advance(days=2)
        real_sweep = vault.sweeper._sweep_tenant
        before = vault_metrics.get_counter("sweep_failures", tenant="A")

        async def flaky(tenant_id, now):
            if tenant_id == "A":
                raise RuntimeError("partition unavailable")
            return await real_sweep(tenant_id, now)

        monkeypatch.setattr(vault.sweeper, "_sweep_tenant", flaky)
        report = await vault.sweeper.sweep()
        assert report.failures == {"A": "partition unavailable"}
        assert report.per_tenant == {"B": 1}
        assert report.to_dict()["total"] == 1
        assert vault_metrics.get_counter("sweep_failures", tenant="A") == before + 1


class TestSchedule:
    def test_seconds_field_rotated(self):
        assert to_croniter_expression("0 0 0 * * *") == "0 0 * * * 0"

    def test_five_fields_pass_through(self):
        assert to_croniter_expression("*/5 * * * *") == "*/5 * * * *"

    @pytest.mark.parametrize("expr", ["* * * *", "not a cron at all x", "0 99 0 * * *"])
    def test_invalid_expressions(self, expr):
        with pytest.raises(ValueError):
            to_croniter_expression(expr)

    def test_next_run_is_midnight_utc(self, router, clock):
        sweeper = ExpirySweeper(router, cron="0 0 0 * * *", clock=clock)
        assert sweeper.next_run() == datetime(2026, 3, 3, tzinfo=timezone.utc)

    @pytest.mark.asyncio
    async def test_start_and_stop(self, router, clock):
        sweeper = ExpirySweeper(router, clock=clock)
        await sweeper.start()
        assert sweeper._task is not None
        await sweeper.stop()
        assert sweeper._task is None

# Copyright (c) 2026 ConsentVault Contributors. All Rights Reserved.
"""Unit tests for IntegrityValidator."""

import logging
from datetime import datetime, timedelta, timezone

import pytest

from consent_vault.core.errors import ConsentError, ErrorKind
from consent_vault.core.tenant import TenantContext
from consent_vault.integrity.validator import IntegrityPolicy, IntegrityValidator
from consent_vault.kernel.router import TenantRouter

NOW = datetime(2026, 3, 2, 12, 0, tzinfo=timezone.utc)


def _version(n, status="UPDATED", age=timedelta(days=10), tenant="A", doc_id=None):
    return {
        "document_id": doc_id or f"doc-{n}",
        "logical_id": "L1",
        "version": n,
        "version_status": status,
        "tenant_id": tenant,
        "created_at": (NOW - age).isoformat(),
    }


def _validator(policy=None):
    return IntegrityValidator(policy or IntegrityPolicy.for_consents(), clock=lambda: NOW)


class TestPolicies:
    def test_template_policy(self):
        p = IntegrityPolicy.for_templates()
        assert p.frequency_window == timedelta(hours=1)
        assert p.max_versions_in_window == 5
        assert p.race_window == timedelta(minutes=2)
        assert p.max_recent_versions == 2

    def test_consent_policy(self):
        p = IntegrityPolicy.for_consents()
        assert p.frequency_window == timedelta(days=1)
        assert p.max_versions_in_window == 3
        assert p.race_window == timedelta(minutes=5)


class TestSingleActive:
    def test_returns_active(self):
        versions = [_version(1), _version(2, "ACTIVE")]
        assert _validator().preflight("A", "L1", versions)["version"] == 2

    def test_no_active(self):
        with pytest.raises(ConsentError) as exc:
            _validator().preflight("A", "L1", [_version(1), _version(2)])
        assert exc.value.kind == ErrorKind.NO_ACTIVE_VERSION

    def test_multiple_active_logs_each(self, caplog):
        versions = [_version(1, "ACTIVE"), _version(2, "ACTIVE")]
        with caplog.at_level(logging.ERROR, logger="vault.integrity"):
            with pytest.raises(ConsentError) as exc:
                _validator().preflight("A", "L1", versions)
        assert exc.value.kind == ErrorKind.MULTIPLE_ACTIVE_VERSIONS
        assert exc.value.details["document_ids"] == ["doc-1", "doc-2"]
        assert "doc-1" in caplog.text and "doc-2" in caplog.text


class TestSequence:
    def test_gap_is_only_a_warning(self, caplog):
        versions = [_version(1), _version(3, "ACTIVE")]
        with caplog.at_level(logging.WARNING, logger="vault.integrity"):
            active = _validator().preflight("A", "L1", versions)
        assert active["version"] == 3
        assert "expected version 2, found 3" in caplog.text

    def test_contiguous(self):
        assert _validator().sequence_issues("L1", [_version(2), _version(1)]) == []

    def test_every_gap_reported(self):
        versions = [_version(1), _version(3), _version(6, "ACTIVE")]
        assert _validator().sequence_issues("L1", versions) == [
            "expected version 2, found 3",
            "expected version 4, found 6",
        ]

    def test_duplicates(self):
        issues = _validator().sequence_issues("L1", [_version(1), _version(1, doc_id="x")])
        assert "duplicate version numbers" in issues


class TestFrequencyAndRace:
    def test_frequency_exceeded(self):
        versions = [_version(i, age=timedelta(hours=i)) for i in range(1, 5)]
        versions[-1]["version_status"] = "ACTIVE"
        with pytest.raises(ConsentError) as exc:
            _validator().preflight("A", "L1", versions)
        assert exc.value.kind == ErrorKind.UPDATE_FREQUENCY_EXCEEDED
        assert exc.value.retryable

    def test_frequency_at_ceiling_allowed(self):
        versions = [_version(i, age=timedelta(hours=i)) for i in range(1, 4)]
        versions[-1]["version_status"] = "ACTIVE"
        _validator().preflight("A", "L1", versions)

    def test_recent_burst_flagged(self):
        policy = IntegrityPolicy.for_templates()
        versions = [_version(i, age=timedelta(seconds=10 * i)) for i in range(1, 4)]
        versions[0]["version_status"] = "ACTIVE"
        with pytest.raises(ConsentError) as exc:
            _validator(policy).preflight("A", "L1", versions)
        assert exc.value.kind == ErrorKind.CONCURRENT_VERSION_CREATION

    def test_two_recent_versions_allowed(self):
        policy = IntegrityPolicy.for_templates()
        versions = [_version(1, age=timedelta(seconds=50)), _version(2, "ACTIVE", age=timedelta(seconds=20))]
        assert _validator(policy).preflight("A", "L1", versions)["version"] == 2

    def test_version_at_window_start_counts(self):
        ages = [timedelta(days=1), timedelta(hours=3), timedelta(hours=2), timedelta(hours=1)]
        versions = [_version(i, age=age) for i, age in enumerate(ages, start=1)]
        versions[-1]["version_status"] = "ACTIVE"
        with pytest.raises(ConsentError) as exc:
            _validator().preflight("A", "L1", versions)
        assert exc.value.kind == ErrorKind.UPDATE_FREQUENCY_EXCEEDED

    def test_race_window_start_counts(self):
        policy = IntegrityPolicy.for_templates()
        ages = [timedelta(minutes=2), timedelta(seconds=60), timedelta(seconds=30)]
        versions = [_version(i, age=age) for i, age in enumerate(ages, start=1)]
        versions[-1]["version_status"] = "ACTIVE"
        with pytest.raises(ConsentError) as exc:
            _validator(policy).preflight("A", "L1", versions)
        assert exc.value.kind == ErrorKind.CONCURRENT_VERSION_CREATION


class TestTenantCheck:
    def test_mismatch_is_fatal(self):
        versions = [_version(1, "ACTIVE", tenant="B")]
        with pytest.raises(ConsentError) as exc:
            _validator().preflight("A", "L1", versions)
        assert exc.value.kind == ErrorKind.TENANT_ISOLATION_VIOLATION
        assert not exc.value.retryable


class TestAudit:
    @pytest.mark.asyncio
    async def test_audit_reports_without_repairing(self, mock_redis):
        partition = TenantRouter(mock_redis).resolve_partition("A")
        docs = [
            {**_version(1, "ACTIVE"), "logical_id": "dup", "document_id": "d1"},
            {**_version(2, "ACTIVE"), "logical_id": "dup", "document_id": "d2"},
            {**_version(1, "UPDATED"), "logical_id": "gap", "document_id": "g1"},
            {**_version(3, "ACTIVE"), "logical_id": "gap", "document_id": "g3"},
            {**_version(1, "ACTIVE"), "logical_id": "ok", "document_id": "o1"},
        ]
        for doc in docs:
            await partition.put("consents", doc["document_id"], doc)

        report = await _validator().audit(partition, "consents")
        assert report.entities_checked == 3
        kinds = {(f.logical_id, f.kind) for f in report.findings}
        assert kinds == {("dup", "multiple_active"), ("gap", "sequence")}
        assert not report.clean
        assert await partition.count("consents", version_status="ACTIVE") == 4

    @pytest.mark.asyncio
    async def test_audit_limited_to_ids(self, vault):
        ctx = TenantContext(tenant_id="A")
        partition = vault.router.resolve_partition("A")
        await partition.put("consents", "x1", {**_version(1, "UPDATED"), "logical_id": "lost", "document_id": "x1"})
        report = await vault.consent_store.audit(ctx, ["lost"])
        assert report.to_dict()["findings"][0]["kind"] == "no_active"
        clean = await vault.consent_store.audit(ctx, ["other"])
        assert clean.clean

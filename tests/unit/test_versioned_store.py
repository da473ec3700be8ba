# Copyright (c) 2026 ConsentVault Contributors. All Rights Reserved.
"""Unit tests for VersionedEntityStore."""

import asyncio

import pytest

from consent_vault.core.errors import ConsentError, ErrorKind
from consent_vault.core.tenant import TenantContext
from consent_vault.storage.documents import PartitionHandle
from consent_vault.storage.models import (
    Consent,
    ConsentStatus,
    ConsentTemplate,
    CustomerIdentifiers,
    TemplateStatus,
    VersionStatus,
)

TENANT_A = TenantContext(tenant_id="A")
TENANT_B = TenantContext(tenant_id="B")


def _consent(**overrides) -> Consent:
    fields = dict(
        business_id="biz-1",
        template_id="tpl-1",
        template_version=1,
        customer_identifiers=CustomerIdentifiers(type="EMAIL", value="jo@example.com"),
        status=ConsentStatus.ACTIVE,
    )
    fields.update(overrides)
    return Consent(**fields)


def _template(**overrides) -> ConsentTemplate:
    fields = dict(business_id="biz-1", scan_id="scan-1", template_name="Cookie banner")
    fields.update(overrides)
    return ConsentTemplate(**fields)


def _set_language(lang):
    def apply(draft):
        draft.language_preference = lang
    return apply


class TestCreateFirstVersion:
    @pytest.mark.asyncio
    async def test_first_version_fields(self, vault):
        created = await vault.consent_store.create_first_version(TENANT_A, _consent())
        assert created.version == 1
        assert created.version_status == VersionStatus.ACTIVE
        assert created.tenant_id == "A"
        assert created.logical_id

    @pytest.mark.asyncio
    async def test_get_active_roundtrip(self, vault):
        created = await vault.consent_store.create_first_version(TENANT_A, _consent())
        fetched = await vault.consent_store.get_active(TENANT_A, created.logical_id)
        assert fetched.document_id == created.document_id
        assert fetched.customer_identifiers.value == "jo@example.com"

    @pytest.mark.asyncio
    async def test_get_active_missing_is_none(self, vault):
        assert await vault.consent_store.get_active(TENANT_A, "nope") is None

    @pytest.mark.asyncio
    async def test_foreign_tenant_entity_rejected(self, vault):
        with pytest.raises(ConsentError) as exc:
            await vault.consent_store.create_first_version(TENANT_A, _consent(tenant_id="B"))
        assert exc.value.kind == ErrorKind.TENANT_ISOLATION_VIOLATION

    @pytest.mark.asyncio
    async def test_requires_bound_tenant(self, vault):
        ctx = TenantContext(tenant_id="A")
        ctx.clear()
        with pytest.raises(ConsentError) as exc:
            await vault.consent_store.create_first_version(ctx, _consent())
        assert exc.value.kind == ErrorKind.NO_TENANT_CONTEXT


class TestCreateNextVersion:
    @pytest.mark.asyncio
    async def test_single_active_after_each_version(self, vault, clock):
        store = vault.consent_store
        first = await store.create_first_version(TENANT_A, _consent())
        for i in range(5):
            clock.advance(days=1)
            await store.create_next_version(TENANT_A, first.logical_id, _set_language(f"L{i}"))
            history = await store.list_history(TENANT_A, first.logical_id)
            active = [v for v in history if v.version_status == VersionStatus.ACTIVE]
            assert len(active) == 1
            assert active[0].version == history[0].version

    @pytest.mark.asyncio
    async def test_history_is_contiguous(self, vault, clock):
        store = vault.consent_store
        first = await store.create_first_version(TENANT_A, _consent())
        for _ in range(3):
            clock.advance(days=1)
            await store.create_next_version(TENANT_A, first.logical_id, _set_language("HINDI"))
        history = await store.list_history(TENANT_A, first.logical_id)
        assert [v.version for v in history] == [4, 3, 2, 1]

    @pytest.mark.asyncio
    async def test_prior_flipped_to_updated(self, vault, clock):
        store = vault.template_store
        v1 = await store.create_first_version(TENANT_A, _template())
        clock.advance(minutes=1)

        def rename(draft):
            draft.template_name = "Renamed"

        v2 = await store.create_next_version(TENANT_A, v1.logical_id, rename)
        history = await store.list_history(TENANT_A, v1.logical_id)
        assert [(v.version, v.version_status) for v in history] == [
            (2, VersionStatus.ACTIVE),
            (1, VersionStatus.UPDATED),
        ]
        assert v2.template_name == "Renamed"
        assert (await store.get_by_version(TENANT_A, v1.logical_id, 1)).template_name == "Cookie banner"

    @pytest.mark.asyncio
    async def test_mutator_may_return_replacement(self, vault, clock):
        store = vault.consent_store
        first = await store.create_first_version(TENANT_A, _consent())
        clock.advance(days=1)
        new = await store.create_next_version(
            TENANT_A, first.logical_id, lambda d: d.model_copy(update={"language_preference": "TAMIL"}),
        )
        assert new.language_preference == "TAMIL"
        assert new.version == 2

    @pytest.mark.asyncio
    async def test_mutator_sees_copy_not_prior(self, vault, clock):
        store = vault.consent_store
        first = await store.create_first_version(TENANT_A, _consent())
        clock.advance(days=1)
        seen = []

        def apply(draft):
            seen.append(draft)
            draft.language_preference = "ODIA"

        await store.create_next_version(TENANT_A, first.logical_id, apply)
        prior = await store.get_by_version(TENANT_A, first.logical_id, 1)
        assert prior.language_preference is None
        assert seen[0].document_id == first.document_id

    @pytest.mark.asyncio
    @pytest.mark.parametrize("field_name,value", [
        ("business_id", "biz-2"),
        ("template_id", "tpl-2"),
        ("customer_identifiers", CustomerIdentifiers(type="EMAIL", value="other@example.com")),
    ])
    async def test_immutable_field_change_rejected(self, vault, clock, field_name, value):
        store = vault.consent_store
        first = await store.create_first_version(TENANT_A, _consent())
        clock.advance(days=1)

        def apply(draft):
            setattr(draft, field_name, value)

        with pytest.raises(ConsentError) as exc:
            await store.create_next_version(TENANT_A, first.logical_id, apply)
        assert exc.value.kind == ErrorKind.IMMUTABLE_FIELD_VIOLATION
        history = await store.list_history(TENANT_A, first.logical_id)
        assert len(history) == 1

    @pytest.mark.asyncio
    async def test_template_scan_id_is_immutable(self, vault, clock):
        store = vault.template_store
        first = await store.create_first_version(TENANT_A, _template())
        clock.advance(minutes=5)

        def apply(draft):
            draft.scan_id = "scan-2"

        with pytest.raises(ConsentError) as exc:
            await store.create_next_version(TENANT_A, first.logical_id, apply)
        assert exc.value.kind == ErrorKind.IMMUTABLE_FIELD_VIOLATION

    @pytest.mark.asyncio
    async def test_unknown_entity_not_found(self, vault):
        with pytest.raises(ConsentError) as exc:
            await vault.consent_store.create_next_version(TENANT_A, "ghost", _set_language("X"))
        assert exc.value.kind == ErrorKind.NOT_FOUND

    @pytest.mark.asyncio
    async def test_invalid_mutation_rejected(self, vault, clock):
        store = vault.consent_store
        first = await store.create_first_version(TENANT_A, _consent())
        clock.advance(days=1)

        def apply(draft):
            draft.template_version = "not-a-number"

        with pytest.raises(ConsentError) as exc:
            await store.create_next_version(TENANT_A, first.logical_id, apply)
        assert exc.value.kind == ErrorKind.VALIDATION_ERROR


class TestConcurrency:
    @pytest.mark.asyncio
    async def test_two_concurrent_third_versions(self, vault, clock):
        """v1 -> v2, then two racing writers for v3: one wins, one is rejected."""
        store = vault.template_store
        v1 = await store.create_first_version(TENANT_A, _template())
        clock.advance(seconds=30)
        await store.create_next_version(TENANT_A, v1.logical_id, lambda d: None)

        history = await store.list_history(TENANT_A, v1.logical_id)
        assert [(v.version, v.version_status) for v in history] == [
            (2, VersionStatus.ACTIVE),
            (1, VersionStatus.UPDATED),
        ]

        clock.advance(seconds=30)
        arrived = []
        both_ready = asyncio.Event()

        async def rendezvous(draft):
            arrived.append(draft)
            if len(arrived) == 2:
                both_ready.set()
            await both_ready.wait()
            draft.template_name = f"writer-{len(arrived)}"

        results = await asyncio.gather(
            store.create_next_version(TENANT_A, v1.logical_id, rendezvous),
            store.create_next_version(TENANT_A, v1.logical_id, rendezvous),
            return_exceptions=True,
        )
        errors = [r for r in results if isinstance(r, ConsentError)]
        successes = [r for r in results if isinstance(r, ConsentTemplate)]
        assert len(successes) == 1
        assert len(errors) == 1
        assert errors[0].kind == ErrorKind.CONCURRENT_VERSION_CREATION
        assert errors[0].retryable

        history = await store.list_history(TENANT_A, v1.logical_id)
        assert [v.version for v in history] == [3, 2, 1]
        assert sum(v.version_status == VersionStatus.ACTIVE for v in history) == 1

    @pytest.mark.asyncio
    async def test_timeout_reports_unknown_outcome(self, vault, clock):
        store = vault.consent_store
        first = await store.create_first_version(TENANT_A, _consent())
        clock.advance(days=1)

        async def slow(draft):
            await asyncio.sleep(1)

        with pytest.raises(ConsentError) as exc:
            await store.create_next_version(TENANT_A, first.logical_id, slow, timeout=0.05)
        assert exc.value.kind == ErrorKind.OPERATION_TIMEOUT
        assert exc.value.retryable


class TestTenantIsolation:
    @pytest.mark.asyncio
    async def test_colliding_logical_ids(self, vault):
        store = vault.consent_store
        await store.create_first_version(TENANT_A, _consent(logical_id="same-id", language_preference="A"))
        await store.create_first_version(TENANT_B, _consent(logical_id="same-id", language_preference="B"))

        a = await store.get_active(TENANT_A, "same-id")
        b = await store.get_active(TENANT_B, "same-id")
        assert (a.tenant_id, a.language_preference) == ("A", "A")
        assert (b.tenant_id, b.language_preference) == ("B", "B")
        assert len(await store.list_history(TENANT_A, "same-id")) == 1

    @pytest.mark.asyncio
    async def test_foreign_document_in_partition_detected(self, vault):
        store = vault.consent_store
        stray = _consent(logical_id="stray", tenant_id="B")
        await vault.router.resolve_partition("A").put("consents", stray.document_id, stray.to_document())

        with pytest.raises(ConsentError) as exc:
            await store.get_active(TENANT_A, "stray")
        assert exc.value.kind == ErrorKind.TENANT_ISOLATION_VIOLATION
        assert exc.value.critical


class TestSetStatus:
    @pytest.mark.asyncio
    async def test_status_updated_in_place(self, vault):
        store = vault.template_store
        first = await store.create_first_version(TENANT_A, _template())
        published = await store.set_status(TENANT_A, first.logical_id, TemplateStatus.PUBLISHED)
        assert published.status == TemplateStatus.PUBLISHED
        assert published.version == 1
        assert published.document_id == first.document_id

    @pytest.mark.asyncio
    async def test_missing_entity(self, vault):
        with pytest.raises(ConsentError) as exc:
            await vault.template_store.set_status(TENANT_A, "ghost", TemplateStatus.PUBLISHED)
        assert exc.value.kind == ErrorKind.NOT_FOUND


class TestPartialPromotion:
    @pytest.mark.asyncio
    async def test_failed_retirement_leaves_two_active(self, vault, clock, monkeypatch):
        store = vault.consent_store
        first = await store.create_first_version(TENANT_A, _consent())
        clock.advance(days=1)

        async def connection_lost(self, *args, **kwargs):
            raise ConnectionError("redis went away")

        with monkeypatch.context() as patched:
            patched.setattr(PartitionHandle, "update_fields", connection_lost)
            with pytest.raises(ConnectionError):
                await store.create_next_version(TENANT_A, first.logical_id, _set_language("HINDI"))

        history = await store.list_history(TENANT_A, first.logical_id)
        assert [(v.version, v.version_status) for v in history] == [
            (2, VersionStatus.ACTIVE),
            (1, VersionStatus.ACTIVE),
        ]

        with pytest.raises(ConsentError) as exc:
            await store.get_active(TENANT_A, first.logical_id)
        assert exc.value.kind == ErrorKind.MULTIPLE_ACTIVE_VERSIONS

        report = await store.audit(TENANT_A)
        assert [(f.logical_id, f.kind) for f in report.findings] == [(first.logical_id, "multiple_active")]
        still = await store.list_history(TENANT_A, first.logical_id)
        assert sum(v.version_status == VersionStatus.ACTIVE for v in still) == 2

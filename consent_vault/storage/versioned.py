# Copyright (c) 2026 ConsentVault Contributors. All Rights Reserved.

"""
Versioned Entity Store — Version CRUD for templates and consents.

Every physical version is its own document in the tenant partition. A new
version is written ACTIVE first and only then is the prior flipped to
UPDATED; a crash between the two writes leaves two ACTIVE documents, which
the IntegrityValidator detects, rather than none.

Two writers racing on the same ACTIVE version are serialised by a claim on
the next version number: the first SET NX wins, the other gets
CONCURRENT_VERSION_CREATION.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
import time
import uuid
from datetime import datetime
from typing import Any, Awaitable, Callable, Generic, List, Optional, Type, TypeVar, Union

from pydantic import ValidationError

from consent_vault.core.config import settings
from consent_vault.core.errors import ConsentError, ErrorKind
from consent_vault.core.metrics import vault_metrics
from consent_vault.core.tenant import TenantContext
from consent_vault.integrity.validator import AuditReport, IntegrityValidator
from consent_vault.kernel.router import TenantRouter, partition_for
from consent_vault.storage.documents import Document, PartitionHandle, Predicate
from consent_vault.storage.models import VersionedEntity, VersionStatus, new_document_id, utc_now

logger = logging.getLogger("vault.versioned")

T = TypeVar("T", bound=VersionedEntity)
R = TypeVar("R")

Mutator = Callable[[T], Union[Optional[T], Awaitable[Optional[T]]]]


class VersionedEntityStore(Generic[T]):
    """
    Generic version store bound to one collection and one model class.

    All operations take the caller's TenantContext first and an optional
    `timeout` in seconds (defaults to settings.STORE_TIMEOUT).
    """

    def __init__(
        self,
        router: TenantRouter,
        model_cls: Type[T],
        collection: str,
        validator: IntegrityValidator,
        clock: Callable[[], datetime] = utc_now,
        claim_ttl: Optional[int] = None,
        default_timeout: Optional[float] = None,
    ) -> None:
        self._router = router
        self.model_cls = model_cls
        self.collection = collection
        self.validator = validator
        self._clock = clock
        self._claim_ttl = claim_ttl or settings.VERSION_CLAIM_TTL
        self._default_timeout = default_timeout or settings.STORE_TIMEOUT

    # ── Plumbing ────────────────────────────────────────────────

    async def _run(self, operation: str, coro: Awaitable[R], timeout: Optional[float]) -> R:
        deadline = timeout if timeout is not None else self._default_timeout
        try:
            return await asyncio.wait_for(coro, deadline)
        except asyncio.TimeoutError:
            logger.warning(
                "Store operation %s timed out after %.2fs; outcome unknown",
                operation, deadline, extra={"collection": self.collection},
            )
            vault_metrics.inc("store_timeouts", collection=self.collection)
            raise ConsentError(
                ErrorKind.OPERATION_TIMEOUT,
                details={"operation": operation, "timeout": deadline},
            )

    def _partition(self, ctx: TenantContext) -> PartitionHandle:
        ctx.require_tenant()
        return partition_for(self._router, ctx, self.collection)

    def _load(self, ctx: TenantContext, doc: Document) -> T:
        self.validator.check_tenant(ctx.tenant_id, doc)
        return self.model_cls.from_document(doc)

    # ── Reads ───────────────────────────────────────────────────

    async def get_active(
        self, ctx: TenantContext, logical_id: str, timeout: Optional[float] = None,
    ) -> Optional[T]:
        return await self._run("get_active", self._get_active(ctx, logical_id), timeout)

    async def _get_active(self, ctx: TenantContext, logical_id: str) -> Optional[T]:
        partition = self._partition(ctx)
        docs = await partition.find(
            self.collection, logical_id=logical_id, version_status=VersionStatus.ACTIVE.value,
        )
        if not docs:
            return None
        return self._load(ctx, self.validator.check_single_active(logical_id, docs))

    async def get_by_version(
        self, ctx: TenantContext, logical_id: str, version: int, timeout: Optional[float] = None,
    ) -> Optional[T]:
        return await self._run("get_by_version", self._get_by_version(ctx, logical_id, version), timeout)

    async def _get_by_version(self, ctx: TenantContext, logical_id: str, version: int) -> Optional[T]:
        partition = self._partition(ctx)
        docs = await partition.find(self.collection, logical_id=logical_id, version=version)
        if not docs:
            return None
        if len(docs) > 1:
            logger.warning(
                "Duplicate documents for version %d", version, extra={"logical_id": logical_id},
            )
        return self._load(ctx, docs[0])

    async def list_history(
        self, ctx: TenantContext, logical_id: str, timeout: Optional[float] = None,
    ) -> List[T]:
        """All versions of a logical entity, newest first."""
        return await self._run("list_history", self._list_history(ctx, logical_id), timeout)

    async def _list_history(self, ctx: TenantContext, logical_id: str) -> List[T]:
        partition = self._partition(ctx)
        docs = await partition.find(self.collection, logical_id=logical_id)
        docs.sort(key=lambda d: int(d["version"]), reverse=True)
        return [self._load(ctx, d) for d in docs]

    async def find_versions(
        self,
        ctx: TenantContext,
        where: Optional[Predicate] = None,
        timeout: Optional[float] = None,
        **equals: Any,
    ) -> List[T]:
        """Versions of any entity matching all `equals` fields and `where`, newest first."""
        return await self._run("find_versions", self._find_versions(ctx, where, equals), timeout)

    async def _find_versions(
        self, ctx: TenantContext, where: Optional[Predicate], equals: dict,
    ) -> List[T]:
        docs = await self._partition(ctx).find(self.collection, where, **equals)
        docs.sort(key=lambda d: (d["created_at"], int(d["version"])), reverse=True)
        return [self._load(ctx, d) for d in docs]

    # ── Writes ──────────────────────────────────────────────────

    async def create_first_version(
        self, ctx: TenantContext, entity: T, timeout: Optional[float] = None,
    ) -> T:
        return await self._run("create_first_version", self._create_first(ctx, entity), timeout)

    async def _create_first(self, ctx: TenantContext, entity: T) -> T:
        tenant_id = ctx.require_tenant()
        if entity.tenant_id and entity.tenant_id != tenant_id:
            self.validator.check_tenant(tenant_id, entity.to_document())
        partition = self._partition(ctx)
        now = self._clock()
        first = entity.model_copy(update={
            "logical_id": entity.logical_id or str(uuid.uuid4()),
            "document_id": new_document_id(),
            "version": 1,
            "version_status": VersionStatus.ACTIVE,
            "tenant_id": tenant_id,
            "created_at": now,
            "updated_at": now,
        })
        await partition.put(self.collection, first.document_id, first.to_document())
        vault_metrics.inc("versions_created", collection=self.collection)
        logger.info(
            "Created version 1", extra={"logical_id": first.logical_id, **ctx.log_extra()},
        )
        return first

    async def create_next_version(
        self,
        ctx: TenantContext,
        logical_id: str,
        mutator: Mutator,
        timeout: Optional[float] = None,
    ) -> T:
        """
        Derive version N+1 from the ACTIVE version N.

        `mutator` receives a deep copy of version N and may edit it in place
        or return a replacement. Immutable fields must come back unchanged.
        """
        return await self._run(
            "create_next_version", self._create_next(ctx, logical_id, mutator), timeout,
        )

    async def _create_next(self, ctx: TenantContext, logical_id: str, mutator: Mutator) -> T:
        tenant_id = ctx.require_tenant()
        partition = self._partition(ctx)
        started = time.monotonic()

        versions = await partition.find(self.collection, logical_id=logical_id)
        if not versions:
            raise ConsentError(
                ErrorKind.NOT_FOUND,
                f"{self.validator.policy.entity_kind} {logical_id} not found",
                details={"logical_id": logical_id},
            )
        active_doc = self.validator.preflight(tenant_id, logical_id, versions)
        prior = self.model_cls.from_document(active_doc)

        draft = prior.model_copy(deep=True)
        result = mutator(draft)
        if inspect.isawaitable(result):
            result = await result
        if result is not None:
            draft = result

        for name in self.model_cls.IMMUTABLE_FIELDS:
            if getattr(draft, name) != getattr(prior, name):
                logger.warning(
                    "Rejected change of immutable field %s", name,
                    extra={"logical_id": logical_id, **ctx.log_extra()},
                )
                raise ConsentError(
                    ErrorKind.IMMUTABLE_FIELD_VIOLATION,
                    f"Field '{name}' cannot be changed",
                    details={"logical_id": logical_id, "field": name},
                )

        now = self._clock()
        payload: dict[str, Any] = draft.model_dump()
        payload.update(
            document_id=new_document_id(),
            version=prior.version + 1,
            version_status=VersionStatus.ACTIVE,
            created_at=now,
            updated_at=now,
        )
        try:
            successor = self.model_cls.model_validate(payload)
        except ValidationError as exc:
            raise ConsentError(
                ErrorKind.VALIDATION_ERROR,
                "Mutated entity is invalid",
                details={"logical_id": logical_id, "errors": exc.errors()},
            ) from exc

        claimed = await partition.claim(
            self.collection, logical_id, successor.version, successor.document_id, self._claim_ttl,
        )
        if not claimed:
            logger.warning(
                "Lost claim for version %d", successor.version,
                extra={"logical_id": logical_id, **ctx.log_extra()},
            )
            vault_metrics.inc(
                "integrity_rejections", kind=ErrorKind.CONCURRENT_VERSION_CREATION.value,
            )
            raise ConsentError(
                ErrorKind.CONCURRENT_VERSION_CREATION,
                details={"logical_id": logical_id, "version": successor.version},
            )

        # New ACTIVE first, then retire the prior.
        await partition.put(self.collection, successor.document_id, successor.to_document())
        flipped = await partition.update_fields(
            self.collection,
            prior.document_id,
            {"version_status": VersionStatus.UPDATED.value, "updated_at": now.isoformat()},
            expect={"version_status": VersionStatus.ACTIVE.value},
        )
        if not flipped:
            logger.error(
                "Prior version %d was not ACTIVE when retired", prior.version,
                extra={"logical_id": logical_id, **ctx.log_extra()},
            )

        vault_metrics.inc("versions_created", collection=self.collection)
        vault_metrics.observe(
            "create_next_version_ms", (time.monotonic() - started) * 1000, collection=self.collection,
        )
        logger.info(
            "Created version %d", successor.version,
            extra={"logical_id": logical_id, **ctx.log_extra()},
        )
        return successor

    async def set_status(
        self, ctx: TenantContext, logical_id: str, status: str, timeout: Optional[float] = None,
    ) -> T:
        """Update `status` in place on the ACTIVE version (no new version)."""
        return await self._run("set_status", self._set_status(ctx, logical_id, status), timeout)

    async def _set_status(self, ctx: TenantContext, logical_id: str, status: str) -> T:
        partition = self._partition(ctx)
        active = await self._get_active(ctx, logical_id)
        if active is None:
            raise ConsentError(ErrorKind.NOT_FOUND, details={"logical_id": logical_id})
        now = self._clock()
        updated = await partition.update_fields(
            self.collection,
            active.document_id,
            {"status": str(getattr(status, "value", status)), "updated_at": now.isoformat()},
            expect={"version_status": VersionStatus.ACTIVE.value},
        )
        if not updated:
            raise ConsentError(
                ErrorKind.CONCURRENT_VERSION_CREATION,
                "Active version changed during status update",
                details={"logical_id": logical_id},
            )
        return self._load(ctx, await partition.get(self.collection, active.document_id))

    # ── Audit ───────────────────────────────────────────────────

    async def audit(
        self, ctx: TenantContext, logical_ids: Optional[List[str]] = None,
    ) -> AuditReport:
        return await self.validator.audit(self._partition(ctx), self.collection, logical_ids)

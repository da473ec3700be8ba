# Copyright (c) 2026 ConsentVault Contributors. All Rights Reserved.

"""
Tenant Router — The only place a PartitionHandle is constructed.

Maps tenant ids to partitions (<prefix><tenant_id>), exposes the shared
partition for tenant-independent documents, and enumerates tenant
partitions from the partition catalog.
"""

from __future__ import annotations

import logging
from typing import List, Optional

import redis.asyncio as aioredis

from consent_vault.core.config import settings
from consent_vault.core.errors import ConsentError, ErrorKind
from consent_vault.core.tenant import TenantContext
from consent_vault.kernel.namespace import partition_name, tenant_from_partition
from consent_vault.storage.documents import PartitionHandle

logger = logging.getLogger("vault.router")

# Document kinds allowed to live outside any tenant partition.
SHARED_COLLECTIONS = frozenset({"jwk_keys"})


class TenantRouter:
    def __init__(
        self,
        redis: aioredis.Redis,
        prefix: Optional[str] = None,
        shared_partition: Optional[str] = None,
        catalog_key: Optional[str] = None,
    ) -> None:
        self._redis = redis
        self._prefix = prefix if prefix is not None else settings.TENANT_PARTITION_PREFIX
        self._shared = shared_partition or settings.SHARED_PARTITION
        self._catalog_key = catalog_key or settings.PARTITION_CATALOG_KEY
        if not self._prefix:
            raise ValueError("Tenant partition prefix must not be empty")
        if self._shared.startswith(self._prefix):
            raise ValueError(
                f"Shared partition '{self._shared}' must not use the tenant prefix '{self._prefix}'"
            )

    @property
    def prefix(self) -> str:
        return self._prefix

    def resolve_partition(self, tenant_id: Optional[str]) -> PartitionHandle:
        """
        Deterministically map a tenant to its partition.

        Does not check that the partition exists. An empty tenant id falls
        back to the shared partition; callers treat that as context loss.
        """
        if not tenant_id or not tenant_id.strip():
            logger.warning("Tenant context lost: routing to shared partition %s", self._shared)
            return self.resolve_shared_partition()
        return PartitionHandle(
            self._redis,
            partition_name(self._prefix, tenant_id),
            tenant_id,
            self._catalog_key,
        )

    def resolve_shared_partition(self) -> PartitionHandle:
        return PartitionHandle(self._redis, self._shared, None, self._catalog_key)

    async def partition_exists(self, tenant_id: str) -> bool:
        if not tenant_id:
            return False
        name = partition_name(self._prefix, tenant_id)
        return bool(await self._redis.sismember(self._catalog_key, name))

    async def provision_partition(self, tenant_id: str) -> PartitionHandle:
        """Register a tenant partition in the catalog."""
        if not tenant_id or not tenant_id.strip():
            raise ConsentError(ErrorKind.VALIDATION_ERROR, "Tenant id must not be empty")
        handle = self.resolve_partition(tenant_id)
        await self._redis.sadd(self._catalog_key, handle.name)
        logger.info("Provisioned partition %s", handle.name, extra={"tenant_id": tenant_id})
        return handle

    async def list_tenant_partitions(self) -> List[str]:
        """Tenant ids of every catalogued partition carrying the prefix."""
        tenants = []
        async for name in self._redis.sscan_iter(self._catalog_key):
            tenant_id = tenant_from_partition(self._prefix, name)
            if tenant_id:
                tenants.append(tenant_id)
        return sorted(tenants)


def partition_for(router: TenantRouter, ctx: TenantContext, collection: str) -> PartitionHandle:
    """
    Route a context to a partition, failing closed.

    Without a bound tenant only SHARED_COLLECTIONS resolve (to the shared
    partition); any tenant-owned collection raises NO_TENANT_CONTEXT.
    """
    if ctx.bound:
        return router.resolve_partition(ctx.tenant_id)
    if collection in SHARED_COLLECTIONS:
        return router.resolve_shared_partition()
    raise ConsentError(
        ErrorKind.NO_TENANT_CONTEXT,
        details={"collection": collection, "trace_id": ctx.trace_id},
    )

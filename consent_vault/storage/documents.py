# Copyright (c) 2026 ConsentVault Contributors. All Rights Reserved.

"""
Partition Document Store — JSON documents in tenant-namespaced Redis hashes.

Each collection of a partition is one Redis Hash: field = document id,
value = JSON document. Queries are simple predicate scans; writes are
single-document. There are no cross-document transactions: a multi-document
change is a sequence of independent writes.

Per-document compare-and-set uses WATCH/MULTI on the collection hash so a
stale reader cannot overwrite a document that changed underneath it.

PartitionHandle instances are created by TenantRouter only.
"""

from __future__ import annotations

import json
import logging
from typing import Any, Callable, Dict, List, Optional

import redis.asyncio as aioredis
from redis.exceptions import WatchError

from consent_vault.kernel.namespace import claim_key, collection_key, consumed_key

logger = logging.getLogger("vault.documents")

Document = Dict[str, Any]
Predicate = Callable[[Document], bool]

_CAS_ATTEMPTS = 5


def _matches(doc: Document, where: Optional[Predicate], equals: Dict[str, Any]) -> bool:
    for field_name, expected in equals.items():
        if doc.get(field_name) != expected:
            return False
    return where is None or where(doc)


class PartitionHandle:
    """Access to one partition's collections. Never a raw connection."""

    def __init__(
        self,
        redis: aioredis.Redis,
        name: str,
        tenant_id: Optional[str],
        catalog_key: str,
    ) -> None:
        self._redis = redis
        self._name = name
        self._tenant_id = tenant_id
        self._catalog_key = catalog_key

    @property
    def name(self) -> str:
        return self._name

    @property
    def tenant_id(self) -> Optional[str]:
        return self._tenant_id

    @property
    def is_shared(self) -> bool:
        return self._tenant_id is None

    # ── Reads ───────────────────────────────────────────────────

    async def get(self, collection: str, doc_id: str) -> Optional[Document]:
        raw = await self._redis.hget(collection_key(self._name, collection), doc_id)
        if raw is None:
            return None
        return json.loads(raw)

    async def find(
        self,
        collection: str,
        where: Optional[Predicate] = None,
        **equals: Any,
    ) -> List[Document]:
        """Return every document matching all `equals` fields and `where`."""
        values = await self._redis.hvals(collection_key(self._name, collection))
        docs = (json.loads(v) for v in values)
        return [d for d in docs if _matches(d, where, equals)]

    async def count(
        self,
        collection: str,
        where: Optional[Predicate] = None,
        **equals: Any,
    ) -> int:
        return len(await self.find(collection, where, **equals))

    async def exists(self, collection: str, doc_id: str) -> bool:
        return bool(await self._redis.hexists(collection_key(self._name, collection), doc_id))

    # ── Writes ──────────────────────────────────────────────────

    async def put(self, collection: str, doc_id: str, document: Document) -> None:
        """Insert or overwrite a document; registers the partition in the catalog."""
        await self._redis.hset(
            collection_key(self._name, collection),
            doc_id,
            json.dumps(document, ensure_ascii=False),
        )
        await self._redis.sadd(self._catalog_key, self._name)

    async def update_fields(
        self,
        collection: str,
        doc_id: str,
        changes: Document,
        expect: Optional[Document] = None,
    ) -> bool:
        """
        Set `changes` on one document if it still matches `expect`.

        Returns False when the document is missing or no longer matches.
        """
        key = collection_key(self._name, collection)
        for _ in range(_CAS_ATTEMPTS):
            async with self._redis.pipeline(transaction=True) as pipe:
                try:
                    await pipe.watch(key)
                    raw = await pipe.hget(key, doc_id)
                    if raw is None:
                        return False
                    doc = json.loads(raw)
                    if expect and not _matches(doc, None, expect):
                        return False
                    doc.update(changes)
                    pipe.multi()
                    pipe.hset(key, doc_id, json.dumps(doc, ensure_ascii=False))
                    await pipe.execute()
                    return True
                except WatchError:
                    logger.debug("CAS retry on %s/%s", key, doc_id)
                    continue
        logger.warning("CAS gave up after %d attempts on %s/%s", _CAS_ATTEMPTS, key, doc_id)
        return False

    async def update_many(
        self,
        collection: str,
        changes: Document,
        where: Optional[Predicate] = None,
        **equals: Any,
    ) -> int:
        """
        Apply `changes` to every matching document, one document at a time.

        Each document is re-checked against `equals` at write time, so a
        document changed by a concurrent writer is skipped, not clobbered.
        Returns the number of documents modified.
        """
        modified = 0
        for doc in await self.find(collection, where, **equals):
            doc_id = doc.get("document_id")
            if doc_id and await self.update_fields(collection, doc_id, changes, expect=equals):
                modified += 1
        return modified

    # ── Single-use tokens ───────────────────────────────────────

    async def claim(
        self,
        collection: str,
        logical_id: str,
        version: int,
        owner: str,
        ttl_seconds: int,
    ) -> bool:
        """Atomically claim a version number; only one owner ever gets True."""
        ok = await self._redis.set(
            claim_key(self._name, collection, logical_id, version),
            owner,
            nx=True,
            ex=ttl_seconds,
        )
        return bool(ok)

    async def release_claim(self, collection: str, logical_id: str, version: int) -> None:
        await self._redis.delete(claim_key(self._name, collection, logical_id, version))

    async def mark_consumed(self, collection: str, doc_id: str, outcome: str) -> bool:
        """Record a one-time consumption; False if it was already recorded."""
        added = await self._redis.hsetnx(consumed_key(self._name, collection), doc_id, outcome)
        return bool(added)

    async def release_consumed(self, collection: str, doc_id: str) -> None:
        """Drop a consumption marker so the document can be consumed again."""
        await self._redis.hdel(consumed_key(self._name, collection), doc_id)

    async def consumed_outcome(self, collection: str, doc_id: str) -> Optional[str]:
        return await self._redis.hget(consumed_key(self._name, collection), doc_id)

    def __repr__(self) -> str:
        return f"PartitionHandle({self._name!r})"

# Copyright (c) 2026 ConsentVault Contributors. All Rights Reserved.

"""
Vault Context — Singleton wiring of router, stores and services.

Initialized at startup, used by API routes.
"""

from __future__ import annotations

from datetime import datetime
from typing import Callable, Optional

import redis.asyncio as aioredis

from consent_vault.integrity.validator import IntegrityPolicy, IntegrityValidator
from consent_vault.kernel.router import TenantRouter
from consent_vault.services.business import BusinessDirectory
from consent_vault.services.consents import CONSENT_COLLECTION, ConsentService
from consent_vault.services.expiry_sweeper import ExpirySweeper
from consent_vault.services.handles import HandleService
from consent_vault.services.templates import TEMPLATE_COLLECTION, TemplateService
from consent_vault.storage.models import Consent, ConsentTemplate, utc_now
from consent_vault.storage.versioned import VersionedEntityStore


class VaultContext:
    """
    Holds all runtime references for the store.
    Created once at startup, used by all API handlers.
    """

    def __init__(self, redis: aioredis.Redis, clock: Callable[[], datetime] = utc_now) -> None:
        self.redis = redis
        self.router = TenantRouter(redis)
        self.businesses = BusinessDirectory(self.router)

        self.template_store: VersionedEntityStore[ConsentTemplate] = VersionedEntityStore(
            self.router,
            ConsentTemplate,
            TEMPLATE_COLLECTION,
            IntegrityValidator(IntegrityPolicy.for_templates(), clock=clock),
            clock=clock,
        )
        self.consent_store: VersionedEntityStore[Consent] = VersionedEntityStore(
            self.router,
            Consent,
            CONSENT_COLLECTION,
            IntegrityValidator(IntegrityPolicy.for_consents(), clock=clock),
            clock=clock,
        )

        self.templates = TemplateService(self.template_store, self.businesses.exists)
        self.handles = HandleService(self.router, self.templates, clock=clock)
        self.consents = ConsentService(self.consent_store, self.templates, self.handles, clock=clock)
        self.sweeper = ExpirySweeper(self.router, clock=clock)

    def store_for(self, collection: str) -> Optional[VersionedEntityStore]:
        return {
            TEMPLATE_COLLECTION: self.template_store,
            CONSENT_COLLECTION: self.consent_store,
        }.get(collection)


_ctx: Optional[VaultContext] = None


def init_vault_context(redis: aioredis.Redis, clock: Callable[[], datetime] = utc_now) -> VaultContext:
    global _ctx
    _ctx = VaultContext(redis, clock=clock)
    return _ctx


def get_vault_context() -> VaultContext:
    if _ctx is None:
        raise RuntimeError("VaultContext not initialized. Call init_vault_context() first.")
    return _ctx

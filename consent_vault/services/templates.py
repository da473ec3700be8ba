# Copyright (c) 2026 ConsentVault Contributors. All Rights Reserved.

"""
Template Service — Consent template authoring and publication.

Every edit produces a new version that re-enters DRAFT. Publish and archive
change the status of the active version in place. ARCHIVED is terminal.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from consent_vault.core.errors import ConsentError, ErrorKind
from consent_vault.core.logging import tenant_logger
from consent_vault.core.tenant import TenantContext
from consent_vault.lifecycle.fsm import template_flow
from consent_vault.services.business import BusinessExists
from consent_vault.storage.models import ConsentTemplate, TemplatePreference, TemplateStatus
from consent_vault.storage.versioned import VersionedEntityStore

logger = logging.getLogger("vault.templates")

TEMPLATE_COLLECTION = "consent_templates"


class TemplateDraft(BaseModel):
    """Body of a template creation request."""

    scan_id: str = Field(min_length=1)
    template_name: str = Field(min_length=1)
    preferences: List[TemplatePreference] = Field(min_length=1)
    multilingual: Dict[str, Dict[str, Any]] = Field(default_factory=dict)
    ui_config: Dict[str, Any] = Field(default_factory=dict)
    privacy_policy_document: Optional[str] = None


class TemplateChanges(BaseModel):
    """Body of a template update request; omitted fields are kept."""

    template_name: Optional[str] = Field(default=None, min_length=1)
    preferences: Optional[List[TemplatePreference]] = Field(default=None, min_length=1)
    multilingual: Optional[Dict[str, Dict[str, Any]]] = None
    ui_config: Optional[Dict[str, Any]] = None
    privacy_policy_document: Optional[str] = None

    def is_empty(self) -> bool:
        return not self.model_fields_set


def _check_unique_purposes(preferences: List[TemplatePreference]) -> None:
    seen = set()
    for pref in preferences:
        if pref.purpose in seen:
            raise ConsentError(
                ErrorKind.VALIDATION_ERROR,
                f"Duplicate purpose '{pref.purpose}' in template preferences",
            )
        seen.add(pref.purpose)


class TemplateService:
    def __init__(
        self,
        store: VersionedEntityStore[ConsentTemplate],
        business_exists: BusinessExists,
    ) -> None:
        self.store = store
        self._business_exists = business_exists

    async def _require_business(self, ctx: TenantContext) -> str:
        business_id = ctx.business_id
        if not business_id or not await self._business_exists(ctx, business_id):
            raise ConsentError(
                ErrorKind.VALIDATION_ERROR,
                "Unknown business for this tenant",
                details={"business_id": business_id},
            )
        return business_id

    async def _require_active(self, ctx: TenantContext, template_id: str) -> ConsentTemplate:
        template = await self.store.get_active(ctx, template_id)
        if template is None:
            raise ConsentError(
                ErrorKind.NOT_FOUND, f"Template {template_id} not found",
                details={"template_id": template_id},
            )
        return template

    # ── Authoring ───────────────────────────────────────────────

    async def create_template(self, ctx: TenantContext, draft: TemplateDraft) -> ConsentTemplate:
        business_id = await self._require_business(ctx)
        _check_unique_purposes(draft.preferences)
        template = ConsentTemplate(
            business_id=business_id,
            status=TemplateStatus(template_flow.initial_state),
            **draft.model_dump(),
        )
        created = await self.store.create_first_version(ctx, template)
        tenant_logger(logger, ctx).info("Template created", extra={"logical_id": created.logical_id})
        return created

    async def update_template(
        self, ctx: TenantContext, template_id: str, changes: TemplateChanges,
    ) -> ConsentTemplate:
        """Write a new DRAFT version carrying `changes`."""
        if changes.is_empty():
            raise ConsentError(ErrorKind.VALIDATION_ERROR, "Update must change at least one field")
        if changes.preferences is not None:
            _check_unique_purposes(changes.preferences)

        current = await self._require_active(ctx, template_id)
        next_status = TemplateStatus(template_flow.transition(current.status, "REVISE"))
        updates = changes.model_dump(exclude_unset=True)

        def apply(draft: ConsentTemplate) -> None:
            for name, value in updates.items():
                setattr(draft, name, value)
            draft.status = next_status

        return await self.store.create_next_version(ctx, template_id, apply)

    async def publish(self, ctx: TenantContext, template_id: str) -> ConsentTemplate:
        current = await self._require_active(ctx, template_id)
        target = template_flow.transition(current.status, "PUBLISH")
        return await self.store.set_status(ctx, template_id, target)

    async def archive(self, ctx: TenantContext, template_id: str) -> ConsentTemplate:
        current = await self._require_active(ctx, template_id)
        target = template_flow.transition(current.status, "ARCHIVE")
        return await self.store.set_status(ctx, template_id, target)

    # ── Reads ───────────────────────────────────────────────────

    async def get_template(self, ctx: TenantContext, template_id: str) -> Optional[ConsentTemplate]:
        return await self.store.get_active(ctx, template_id)

    async def get_version(
        self, ctx: TenantContext, template_id: str, version: int,
    ) -> Optional[ConsentTemplate]:
        return await self.store.get_by_version(ctx, template_id, version)

    async def history(self, ctx: TenantContext, template_id: str) -> List[ConsentTemplate]:
        return await self.store.list_history(ctx, template_id)

    async def get_published(
        self, ctx: TenantContext, template_id: str, version: Optional[int] = None,
    ) -> Optional[ConsentTemplate]:
        """
        The published template a customer may consent to.

        With `version`, that exact version if it is PUBLISHED; otherwise the
        newest PUBLISHED version. Archived templates are never returned.
        """
        active = await self.store.get_active(ctx, template_id)
        if active is None or active.status == TemplateStatus.ARCHIVED:
            return None
        if version is not None:
            template = await self.store.get_by_version(ctx, template_id, version)
            if template is not None and template.status == TemplateStatus.PUBLISHED:
                return template
            return None
        for template in await self.store.list_history(ctx, template_id):
            if template.status == TemplateStatus.PUBLISHED:
                return template
        return None

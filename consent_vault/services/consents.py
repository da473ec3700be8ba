# Copyright (c) 2026 ConsentVault Contributors. All Rights Reserved.

"""
Consent Service — Customer consents recorded against a published template.

A consent is created by consuming a PENDING handle. Each later change
(new preference choices, language, or revocation) consumes a fresh handle
and writes a new version. EXPIRED and REVOKED consents are final.

A handle is reserved while its consent version is written and only marked
USED (or REJECTED) once the write lands, so it backs at most one submission
and a rejected write leaves it free for a retry.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Callable, Dict, List, Optional, Tuple

from pydantic import BaseModel, Field

from consent_vault.core.errors import ConsentError, ErrorKind
from consent_vault.core.logging import tenant_logger
from consent_vault.core.tenant import TenantContext
from consent_vault.lifecycle.fsm import consent_flow
from consent_vault.lifecycle.rules import add_duration, consent_end_date, derive_consent_status
from consent_vault.services.handles import HandleService
from consent_vault.services.templates import TemplateService
from consent_vault.storage.models import (
    Consent,
    ConsentHandle,
    ConsentPreference,
    ConsentStatus,
    ConsentTemplate,
    HandleStatus,
    PreferenceStatus,
    VersionStatus,
    utc_now,
)
from consent_vault.storage.versioned import VersionedEntityStore

logger = logging.getLogger("vault.consents")

CONSENT_COLLECTION = "consents"

NO_RECORD = "No_Record"


class ConsentSubmission(BaseModel):
    consent_handle_id: str = Field(min_length=1)
    preferences_status: Dict[str, PreferenceStatus] = Field(min_length=1)
    language_preference: Optional[str] = None


class ConsentRevision(BaseModel):
    consent_handle_id: str = Field(min_length=1)
    preferences_status: Optional[Dict[str, PreferenceStatus]] = None
    language_preference: Optional[str] = None
    status: Optional[ConsentStatus] = None

    def has_updates(self) -> bool:
        return bool(self.preferences_status) or self.language_preference is not None or self.status is not None


class ConsentCheck(BaseModel):
    consent_status: str = NO_RECORD
    consent_handle_id: str = NO_RECORD


def _is_reject_all(choices: Dict[str, PreferenceStatus]) -> bool:
    return bool(choices) and all(s == PreferenceStatus.NOTACCEPTED for s in choices.values())


class ConsentService:
    def __init__(
        self,
        store: VersionedEntityStore[Consent],
        templates: TemplateService,
        handles: HandleService,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.store = store
        self._templates = templates
        self._handles = handles
        self._clock = clock

    # ── Preference processing ───────────────────────────────────

    def build_preferences(
        self,
        template: ConsentTemplate,
        choices: Dict[str, PreferenceStatus],
        now: datetime,
    ) -> List[ConsentPreference]:
        """
        Map the customer's choices onto the template purposes.

        Every template purpose needs a choice and unknown purposes are
        refused. A mandatory purpose may only be declined as part of a
        reject-all.
        """
        purposes = {p.purpose for p in template.preferences}
        unknown = sorted(set(choices) - purposes)
        if unknown:
            raise ConsentError(
                ErrorKind.VALIDATION_ERROR,
                f"Unknown purposes: {', '.join(unknown)}",
                details={"template_id": template.logical_id},
            )
        missing = sorted(purposes - set(choices))
        if missing:
            raise ConsentError(
                ErrorKind.VALIDATION_ERROR,
                f"Missing choices for purposes: {', '.join(missing)}",
                details={"template_id": template.logical_id},
            )
        if not _is_reject_all(choices):
            rejected = sorted(
                p.purpose for p in template.preferences
                if p.is_mandatory and choices[p.purpose] == PreferenceStatus.NOTACCEPTED
            )
            if rejected:
                raise ConsentError(
                    ErrorKind.VALIDATION_ERROR,
                    f"Mandatory purposes cannot be declined: {', '.join(rejected)}",
                )

        return [
            ConsentPreference(
                purpose=p.purpose,
                is_mandatory=p.is_mandatory,
                validity=p.validity,
                preference_status=choices[p.purpose],
                start_date=now,
                end_date=add_duration(now, p.validity),
            )
            for p in template.preferences
        ]

    @staticmethod
    def _status_for(current: ConsentStatus, preferences: List[ConsentPreference]) -> ConsentStatus:
        event = "ACCEPT" if derive_consent_status(preferences) == ConsentStatus.ACTIVE else "DECLINE"
        return ConsentStatus(consent_flow.transition(current, event))

    async def _published_template(
        self, ctx: TenantContext, template_id: str, version: int,
    ) -> ConsentTemplate:
        template = await self._templates.get_published(ctx, template_id, version)
        if template is None:
            raise ConsentError(
                ErrorKind.NOT_FOUND,
                f"No published template {template_id} v{version}",
                details={"template_id": template_id, "version": version},
            )
        return template

    @staticmethod
    def _check_handle_owner(ctx: TenantContext, handle: ConsentHandle) -> None:
        if ctx.business_id and ctx.business_id != handle.business_id:
            raise ConsentError(
                ErrorKind.VALIDATION_ERROR,
                "Consent handle belongs to another business",
                details={"handle_id": handle.handle_id},
            )

    # ── Create ──────────────────────────────────────────────────

    async def _existing_consent(self, ctx: TenantContext, handle: ConsentHandle) -> Optional[Consent]:
        """The customer's live consent for the handle's template version, if any."""
        matches = await self.store.find_versions(
            ctx,
            version_status=VersionStatus.ACTIVE.value,
            business_id=handle.business_id,
            template_id=handle.template_id,
            template_version=handle.template_version,
            customer_identifiers=handle.customer_identifiers.model_dump(mode="json"),
        )
        live = [c for c in matches if not consent_flow.is_terminal(c.status)]
        return live[0] if live else None

    async def create_consent(
        self, ctx: TenantContext, submission: ConsentSubmission,
    ) -> Tuple[Consent, bool]:
        """
        Record the customer's choices against the handle's template version.

        Returns (consent, is_new). A customer who already holds a live
        consent for that template version gets it back and the handle
        stays PENDING.
        """
        handle = await self._handles.require_consumable(ctx, submission.consent_handle_id)
        self._check_handle_owner(ctx, handle)

        existing = await self._existing_consent(ctx, handle)
        if existing is not None:
            tenant_logger(logger, ctx).info(
                "Consent already exists for handle %s", handle.handle_id,
                extra={"logical_id": existing.logical_id},
            )
            return existing, False

        template = await self._published_template(ctx, handle.template_id, handle.template_version)

        now = self._clock()
        preferences = self.build_preferences(template, submission.preferences_status, now)
        status = self._status_for(ConsentStatus(consent_flow.initial_state), preferences)

        reject_all = _is_reject_all(submission.preferences_status)
        outcome = HandleStatus.REJECTED if reject_all else HandleStatus.USED

        consent = Consent(
            business_id=handle.business_id,
            template_id=handle.template_id,
            template_version=handle.template_version,
            consent_handle_id=handle.handle_id,
            customer_identifiers=handle.customer_identifiers,
            preferences=preferences,
            language_preference=submission.language_preference,
            status=status,
            start_date=now,
            end_date=consent_end_date(preferences, now),
        )
        async with self._handles.consuming(ctx, handle, outcome):
            created = await self.store.create_first_version(ctx, consent)
        tenant_logger(logger, ctx).info(
            "Consent recorded (%s, handle %s)", created.status.value, outcome.value,
            extra={"logical_id": created.logical_id},
        )
        return created, True

    # ── Update / revoke ─────────────────────────────────────────

    async def update_consent(
        self, ctx: TenantContext, consent_id: str, revision: ConsentRevision,
    ) -> Consent:
        if not revision.has_updates():
            raise ConsentError(ErrorKind.VALIDATION_ERROR, "Update must contain at least one change")
        if revision.status is not None and revision.status != ConsentStatus.REVOKED:
            raise ConsentError(ErrorKind.VALIDATION_ERROR, "Only REVOKED may be set explicitly")

        handle = await self._handles.require_consumable(ctx, revision.consent_handle_id)
        self._check_handle_owner(ctx, handle)

        current = await self.store.get_active(ctx, consent_id)
        if current is None:
            raise ConsentError(
                ErrorKind.NOT_FOUND, f"Consent {consent_id} not found",
                details={"consent_id": consent_id},
            )
        if current.customer_identifiers != handle.customer_identifiers:
            raise ConsentError(ErrorKind.VALIDATION_ERROR, "Customer mismatch between consent and handle")
        if current.business_id != handle.business_id:
            raise ConsentError(ErrorKind.VALIDATION_ERROR, "Business mismatch between consent and handle")
        if handle.template_id != current.template_id:
            raise ConsentError(ErrorKind.VALIDATION_ERROR, "Handle refers to a different template")
        if consent_flow.is_terminal(current.status):
            raise ConsentError(
                ErrorKind.INVALID_TRANSITION,
                f"Consent is {current.status.value} and cannot be updated",
                details={"consent_id": consent_id},
            )

        now = self._clock()
        if revision.status == ConsentStatus.REVOKED:
            return await self._revoke(ctx, consent_id, current, handle)

        template_version = handle.template_version
        preferences = current.preferences
        outcome = HandleStatus.USED
        if revision.preferences_status:
            template = await self._published_template(ctx, handle.template_id, template_version)
            preferences = self.build_preferences(template, revision.preferences_status, now)
            if _is_reject_all(revision.preferences_status):
                outcome = HandleStatus.REJECTED
        status = self._status_for(current.status, preferences)

        def apply(draft: Consent) -> None:
            draft.preferences = preferences
            draft.status = status
            draft.template_version = template_version
            draft.consent_handle_id = handle.handle_id
            draft.end_date = consent_end_date(preferences, now)
            if revision.language_preference is not None:
                draft.language_preference = revision.language_preference

        async with self._handles.consuming(ctx, handle, outcome):
            return await self.store.create_next_version(ctx, consent_id, apply)

    async def _revoke(
        self, ctx: TenantContext, consent_id: str, current: Consent, handle: ConsentHandle,
    ) -> Consent:
        target = ConsentStatus(consent_flow.transition(current.status, "REVOKE"))

        def apply(draft: Consent) -> None:
            draft.status = target
            draft.consent_handle_id = handle.handle_id

        async with self._handles.consuming(ctx, handle, HandleStatus.USED):
            revoked = await self.store.create_next_version(ctx, consent_id, apply)
        tenant_logger(logger, ctx).info("Consent revoked", extra={"logical_id": consent_id})
        return revoked

    # ── Reads ───────────────────────────────────────────────────

    async def get_consent(self, ctx: TenantContext, consent_id: str) -> Optional[Consent]:
        return await self.store.get_active(ctx, consent_id)

    async def get_version(self, ctx: TenantContext, consent_id: str, version: int) -> Optional[Consent]:
        return await self.store.get_by_version(ctx, consent_id, version)

    async def history(self, ctx: TenantContext, consent_id: str) -> List[Consent]:
        return await self.store.list_history(ctx, consent_id)

    async def check_status(
        self,
        ctx: TenantContext,
        consent_id: Optional[str] = None,
        device_id: Optional[str] = None,
        url: Optional[str] = None,
    ) -> ConsentCheck:
        """
        Where a customer stands on a page.

        By consent id the newest version answers. Otherwise the newest handle
        issued to `device_id` on `url` answers: with the consent it produced
        once USED, with its own status before that.
        """
        if consent_id:
            versions = await self.store.list_history(ctx, consent_id)
            if not versions:
                return ConsentCheck()
            latest = versions[0]
            return ConsentCheck(
                consent_status=latest.status.value,
                consent_handle_id=latest.consent_handle_id or NO_RECORD,
            )

        if not device_id or not url:
            raise ConsentError(ErrorKind.VALIDATION_ERROR, "device_id and url are required without consent_id")
        handle = await self._handles.latest_for_customer(ctx, device_id, url)
        if handle is None:
            return ConsentCheck()
        if handle.status == HandleStatus.USED:
            consents = await self.store.find_versions(ctx, consent_handle_id=handle.handle_id)
            if consents:
                return ConsentCheck(
                    consent_status=consents[0].status.value, consent_handle_id=handle.handle_id,
                )
        return ConsentCheck(consent_status=handle.status.value, consent_handle_id=handle.handle_id)

# Copyright (c) 2026 ConsentVault Contributors. All Rights Reserved.

"""
Document Models — Versioned templates and consents, single-shot handles.

All timestamps are timezone-aware UTC. Documents are stored as
`model_dump(mode="json")` and restored with `model_validate`.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, ClassVar, Dict, List, Optional, Tuple

from pydantic import BaseModel, Field, TypeAdapter, field_validator

_DATETIME = TypeAdapter(datetime)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def parse_timestamp(value: Any) -> datetime:
    """Parse a stored timestamp; naive values are taken as UTC."""
    ts = _DATETIME.validate_python(value)
    if ts.tzinfo is None:
        ts = ts.replace(tzinfo=timezone.utc)
    return ts


def new_document_id() -> str:
    return str(uuid.uuid4())


# ── Enums ───────────────────────────────────────────────────────


class VersionStatus(str, Enum):
    ACTIVE = "ACTIVE"
    UPDATED = "UPDATED"


class TemplateStatus(str, Enum):
    DRAFT = "DRAFT"
    PUBLISHED = "PUBLISHED"
    ARCHIVED = "ARCHIVED"


class ConsentStatus(str, Enum):
    ACTIVE = "ACTIVE"
    INACTIVE = "INACTIVE"
    EXPIRED = "EXPIRED"
    REVOKED = "REVOKED"


class HandleStatus(str, Enum):
    PENDING = "PENDING"
    USED = "USED"
    EXPIRED = "EXPIRED"
    REJECTED = "REJECTED"


class PreferenceStatus(str, Enum):
    ACCEPTED = "ACCEPTED"
    NOTACCEPTED = "NOTACCEPTED"
    EXPIRED = "EXPIRED"


class Period(str, Enum):
    DAYS = "DAYS"
    MONTHS = "MONTHS"
    YEARS = "YEARS"


class IdentifierType(str, Enum):
    EMAIL = "EMAIL"
    MOBILE = "MOBILE"
    DEVICE_ID = "DEVICE_ID"
    CUSTOMER_ID = "CUSTOMER_ID"


# ── Value objects ───────────────────────────────────────────────


class Duration(BaseModel):
    value: int = Field(gt=0)
    unit: Period


class CustomerIdentifiers(BaseModel):
    type: IdentifierType
    value: str = Field(min_length=1)


class TemplatePreference(BaseModel):
    purpose: str = Field(min_length=1)
    is_mandatory: bool = False
    validity: Duration
    description: Optional[str] = None


class ConsentPreference(BaseModel):
    purpose: str
    is_mandatory: bool = False
    validity: Duration
    preference_status: PreferenceStatus
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None


# ── Versioned documents ─────────────────────────────────────────


class VersionedEntity(BaseModel):
    """Common identity and version bookkeeping."""

    IMMUTABLE_FIELDS: ClassVar[Tuple[str, ...]] = ("logical_id", "tenant_id")

    logical_id: str = ""
    document_id: str = Field(default_factory=new_document_id)
    version: int = Field(default=1, ge=1)
    version_status: VersionStatus = VersionStatus.ACTIVE
    tenant_id: str = ""
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)

    @field_validator("created_at", "updated_at")
    @classmethod
    def _aware(cls, v: datetime) -> datetime:
        return v if v.tzinfo else v.replace(tzinfo=timezone.utc)

    def to_document(self) -> Dict[str, Any]:
        return self.model_dump(mode="json")

    @classmethod
    def from_document(cls, doc: Dict[str, Any]):
        return cls.model_validate(doc)


class ConsentTemplate(VersionedEntity):
    IMMUTABLE_FIELDS: ClassVar[Tuple[str, ...]] = (
        "logical_id", "tenant_id", "business_id", "scan_id",
    )

    business_id: str
    scan_id: str
    template_name: str
    status: TemplateStatus = TemplateStatus.DRAFT
    preferences: List[TemplatePreference] = Field(default_factory=list)
    multilingual: Dict[str, Dict[str, Any]] = Field(default_factory=dict)
    ui_config: Dict[str, Any] = Field(default_factory=dict)
    privacy_policy_document: Optional[str] = None


class Consent(VersionedEntity):
    IMMUTABLE_FIELDS: ClassVar[Tuple[str, ...]] = (
        "logical_id", "tenant_id", "business_id", "template_id", "customer_identifiers",
    )

    business_id: str
    template_id: str
    template_version: int
    consent_handle_id: Optional[str] = None
    customer_identifiers: CustomerIdentifiers
    preferences: List[ConsentPreference] = Field(default_factory=list)
    language_preference: Optional[str] = None
    status: ConsentStatus = ConsentStatus.INACTIVE
    start_date: datetime = Field(default_factory=utc_now)
    end_date: Optional[datetime] = None


# ── Handles ─────────────────────────────────────────────────────


class ConsentHandle(BaseModel):
    """Short-lived, single-use token binding a customer to a template version."""

    handle_id: str = Field(default_factory=new_document_id)
    tenant_id: str
    business_id: str
    template_id: str
    template_version: int
    customer_identifiers: CustomerIdentifiers
    url: Optional[str] = None
    txn_id: Optional[str] = None
    status: HandleStatus = HandleStatus.PENDING
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)
    expires_at: Optional[datetime] = None

    def with_default_expiry(self, minutes: int) -> "ConsentHandle":
        if self.expires_at is None:
            self.expires_at = self.created_at + timedelta(minutes=minutes)
        return self

    def to_document(self) -> Dict[str, Any]:
        doc = self.model_dump(mode="json")
        doc["document_id"] = self.handle_id
        return doc

    @classmethod
    def from_document(cls, doc: Dict[str, Any]) -> "ConsentHandle":
        return cls.model_validate({k: v for k, v in doc.items() if k != "document_id"})

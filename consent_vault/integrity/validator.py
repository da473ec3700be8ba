# Copyright (c) 2026 ConsentVault Contributors. All Rights Reserved.

"""
Integrity Validator — Detective checks over a logical entity's versions.

Pre-flight (in order, before any next version is written):
  1. exactly one ACTIVE version
  2. contiguous version sequence (gaps are only logged)
  3. update frequency within the policy window
  4. concurrent-modification heuristic within the race window
  5. tenant isolation

`audit()` re-runs checks 1 and 2 across a whole collection and reports
findings. Nothing is ever repaired automatically.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Callable, Dict, Iterable, List, Optional

from consent_vault.core.config import settings
from consent_vault.core.errors import ConsentError, ErrorKind
from consent_vault.core.metrics import vault_metrics
from consent_vault.storage.documents import Document, PartitionHandle
from consent_vault.storage.models import VersionStatus, parse_timestamp, utc_now

logger = logging.getLogger("vault.integrity")


@dataclass(frozen=True)
class IntegrityPolicy:
    """Frequency and race limits for one entity kind."""

    entity_kind: str
    frequency_window: timedelta
    max_versions_in_window: int
    race_window: timedelta
    max_recent_versions: int = 2

    @classmethod
    def for_templates(cls) -> "IntegrityPolicy":
        return cls(
            entity_kind="template",
            frequency_window=timedelta(hours=1),
            max_versions_in_window=settings.TEMPLATE_MAX_VERSIONS_PER_HOUR,
            race_window=timedelta(seconds=settings.TEMPLATE_RACE_WINDOW_SECONDS),
            max_recent_versions=settings.RACE_MAX_RECENT_VERSIONS,
        )

    @classmethod
    def for_consents(cls) -> "IntegrityPolicy":
        return cls(
            entity_kind="consent",
            frequency_window=timedelta(days=1),
            max_versions_in_window=settings.CONSENT_MAX_VERSIONS_PER_DAY,
            race_window=timedelta(seconds=settings.CONSENT_RACE_WINDOW_SECONDS),
            max_recent_versions=settings.RACE_MAX_RECENT_VERSIONS,
        )


@dataclass
class AuditFinding:
    logical_id: str
    kind: str                 # "multiple_active" | "no_active" | "sequence"
    detail: str
    document_ids: List[str] = field(default_factory=list)


@dataclass
class AuditReport:
    partition: str
    collection: str
    entities_checked: int = 0
    findings: List[AuditFinding] = field(default_factory=list)

    @property
    def clean(self) -> bool:
        return not self.findings

    def to_dict(self) -> dict:
        return {
            "partition": self.partition,
            "collection": self.collection,
            "entities_checked": self.entities_checked,
            "clean": self.clean,
            "findings": [f.__dict__ for f in self.findings],
        }


def _created(doc: Document) -> datetime:
    return parse_timestamp(doc["created_at"])


def check_tenant(expected_tenant: str, doc: Document) -> None:
    """Raise TENANT_ISOLATION_VIOLATION unless the document belongs to `expected_tenant`."""
    actual = doc.get("tenant_id")
    if actual != expected_tenant:
        logger.error(
            "Tenant isolation violation: document %s belongs to %r, asserted %r",
            doc.get("document_id"), actual, expected_tenant,
            extra={"tenant_id": expected_tenant, "logical_id": doc.get("logical_id")},
        )
        vault_metrics.inc("integrity_rejections", kind=ErrorKind.TENANT_ISOLATION_VIOLATION.value)
        raise ConsentError(
            ErrorKind.TENANT_ISOLATION_VIOLATION,
            details={
                "document_id": doc.get("document_id"),
                "expected_tenant": expected_tenant,
                "actual_tenant": actual,
            },
        )


class IntegrityValidator:
    def __init__(
        self,
        policy: IntegrityPolicy,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.policy = policy
        self._clock = clock

    # ── Individual checks ───────────────────────────────────────

    def check_single_active(self, logical_id: str, versions: List[Document]) -> Document:
        """Return the single ACTIVE version or raise."""
        active = [v for v in versions if v.get("version_status") == VersionStatus.ACTIVE.value]
        if not active:
            raise ConsentError(
                ErrorKind.NO_ACTIVE_VERSION,
                f"No active version for {self.policy.entity_kind} {logical_id}",
                details={"logical_id": logical_id},
            )
        if len(active) > 1:
            for doc in active:
                logger.error(
                    "Multiple active versions: document_id=%s version=%s created_at=%s",
                    doc.get("document_id"), doc.get("version"), doc.get("created_at"),
                    extra={"logical_id": logical_id},
                )
            vault_metrics.inc("integrity_rejections", kind=ErrorKind.MULTIPLE_ACTIVE_VERSIONS.value)
            raise ConsentError(
                ErrorKind.MULTIPLE_ACTIVE_VERSIONS,
                f"{len(active)} active versions for {self.policy.entity_kind} {logical_id}",
                details={
                    "logical_id": logical_id,
                    "document_ids": [d.get("document_id") for d in active],
                    "versions": [d.get("version") for d in active],
                },
            )
        return active[0]

    def sequence_issues(self, logical_id: str, versions: Iterable[Document]) -> List[str]:
        """Describe gaps and duplicates in the version numbers (empty when contiguous)."""
        numbers = sorted(int(v["version"]) for v in versions)
        issues = []
        expected = 1
        for found in numbers:
            if found < expected:
                continue  # duplicate, reported below
            if found != expected:
                issues.append(f"expected version {expected}, found {found}")
            expected = found + 1
        if len(set(numbers)) != len(numbers):
            issues.append("duplicate version numbers")
        for issue in issues:
            logger.warning("Version sequence issue: %s", issue, extra={"logical_id": logical_id})
        return issues

    def check_frequency(self, logical_id: str, versions: List[Document], now: datetime) -> None:
        since = now - self.policy.frequency_window
        recent = sum(1 for v in versions if _created(v) >= since)
        if recent > self.policy.max_versions_in_window:
            logger.warning(
                "Update frequency exceeded: %d versions in %s",
                recent, self.policy.frequency_window,
                extra={"logical_id": logical_id},
            )
            vault_metrics.inc("integrity_rejections", kind=ErrorKind.UPDATE_FREQUENCY_EXCEEDED.value)
            raise ConsentError(
                ErrorKind.UPDATE_FREQUENCY_EXCEEDED,
                details={"logical_id": logical_id, "recent_versions": recent},
            )

    def check_concurrency(self, logical_id: str, versions: List[Document], now: datetime) -> None:
        since = now - self.policy.race_window
        recent = sum(1 for v in versions if _created(v) >= since)
        if recent > self.policy.max_recent_versions:
            logger.warning(
                "Possible concurrent modification: %d versions in %s",
                recent, self.policy.race_window,
                extra={"logical_id": logical_id},
            )
            vault_metrics.inc("integrity_rejections", kind=ErrorKind.CONCURRENT_VERSION_CREATION.value)
            raise ConsentError(
                ErrorKind.CONCURRENT_VERSION_CREATION,
                details={"logical_id": logical_id, "recent_versions": recent},
            )

    def check_tenant(self, expected_tenant: str, doc: Document) -> None:
        check_tenant(expected_tenant, doc)

    # ── Composite ───────────────────────────────────────────────

    def preflight(self, tenant_id: str, logical_id: str, versions: List[Document]) -> Document:
        """Run checks 1-5 in order; return the ACTIVE document on success."""
        active = self.check_single_active(logical_id, versions)
        self.sequence_issues(logical_id, versions)
        now = self._clock()
        self.check_frequency(logical_id, versions, now)
        self.check_concurrency(logical_id, versions, now)
        self.check_tenant(tenant_id, active)
        return active

    async def audit(
        self,
        partition: PartitionHandle,
        collection: str,
        logical_ids: Optional[Iterable[str]] = None,
    ) -> AuditReport:
        """Check active-count and contiguity for every (or the given) logical entity."""
        report = AuditReport(partition=partition.name, collection=collection)
        wanted = set(logical_ids) if logical_ids is not None else None

        grouped: Dict[str, List[Document]] = defaultdict(list)
        for doc in await partition.find(collection):
            lid = doc.get("logical_id")
            if lid and (wanted is None or lid in wanted):
                grouped[lid].append(doc)

        for lid, versions in sorted(grouped.items()):
            report.entities_checked += 1
            active = [v for v in versions if v.get("version_status") == VersionStatus.ACTIVE.value]
            if len(active) > 1:
                for doc in active:
                    logger.error(
                        "Audit: multiple active versions: document_id=%s version=%s created_at=%s",
                        doc.get("document_id"), doc.get("version"), doc.get("created_at"),
                        extra={"logical_id": lid, "collection": collection},
                    )
                report.findings.append(AuditFinding(
                    logical_id=lid,
                    kind="multiple_active",
                    detail=f"{len(active)} active versions",
                    document_ids=[d.get("document_id") for d in active],
                ))
            elif not active:
                logger.error("Audit: no active version", extra={"logical_id": lid, "collection": collection})
                report.findings.append(AuditFinding(lid, "no_active", "no active version"))
            for issue in self.sequence_issues(lid, versions):
                report.findings.append(AuditFinding(lid, "sequence", issue))

        vault_metrics.set_gauge("audit_findings", len(report.findings), collection=collection)
        logger.info(
            "Audit of %s/%s: %d entities, %d findings",
            partition.name, collection, report.entities_checked, len(report.findings),
        )
        return report

# Copyright (c) 2026 ConsentVault Contributors. All Rights Reserved.

"""
Error Taxonomy — One tagged error type for every failure the store reports.

`ConsentError.kind` is the stable machine-readable code. `details` carries
operator diagnostics (document ids, counts, timestamps) and is never put into
a user-facing response.
"""

from __future__ import annotations

from enum import Enum
from typing import Any, Dict, Optional


class ErrorKind(str, Enum):
    NO_ACTIVE_VERSION = "NO_ACTIVE_VERSION"
    MULTIPLE_ACTIVE_VERSIONS = "MULTIPLE_ACTIVE_VERSIONS"
    IMMUTABLE_FIELD_VIOLATION = "IMMUTABLE_FIELD_VIOLATION"
    UPDATE_FREQUENCY_EXCEEDED = "UPDATE_FREQUENCY_EXCEEDED"
    CONCURRENT_VERSION_CREATION = "CONCURRENT_VERSION_CREATION"
    TENANT_ISOLATION_VIOLATION = "TENANT_ISOLATION_VIOLATION"
    NO_TENANT_CONTEXT = "NO_TENANT_CONTEXT"
    HANDLE_ALREADY_USED = "HANDLE_ALREADY_USED"
    HANDLE_EXPIRED = "HANDLE_EXPIRED"
    NOT_FOUND = "NOT_FOUND"
    INVALID_TRANSITION = "INVALID_TRANSITION"
    VALIDATION_ERROR = "VALIDATION_ERROR"
    OPERATION_TIMEOUT = "OPERATION_TIMEOUT"


# Safe to retry after backoff; everything else needs a different request.
RETRYABLE_KINDS = frozenset({
    ErrorKind.UPDATE_FREQUENCY_EXCEEDED,
    ErrorKind.CONCURRENT_VERSION_CREATION,
    ErrorKind.OPERATION_TIMEOUT,
})

# Corruption or security findings; surfaced as hard failures, never healed.
CRITICAL_KINDS = frozenset({
    ErrorKind.MULTIPLE_ACTIVE_VERSIONS,
    ErrorKind.TENANT_ISOLATION_VIOLATION,
})

DEFAULT_MESSAGES: Dict[ErrorKind, str] = {
    ErrorKind.NO_ACTIVE_VERSION: "Entity has no active version",
    ErrorKind.MULTIPLE_ACTIVE_VERSIONS: "Multiple active versions found",
    ErrorKind.IMMUTABLE_FIELD_VIOLATION: "Immutable field cannot be changed",
    ErrorKind.UPDATE_FREQUENCY_EXCEEDED: "Update frequency limit exceeded",
    ErrorKind.CONCURRENT_VERSION_CREATION: "Concurrent version creation detected",
    ErrorKind.TENANT_ISOLATION_VIOLATION: "Tenant isolation violation",
    ErrorKind.NO_TENANT_CONTEXT: "No tenant bound to this operation",
    ErrorKind.HANDLE_ALREADY_USED: "Consent handle already used",
    ErrorKind.HANDLE_EXPIRED: "Consent handle has expired",
    ErrorKind.NOT_FOUND: "Resource not found",
    ErrorKind.INVALID_TRANSITION: "Status transition not allowed",
    ErrorKind.VALIDATION_ERROR: "Request validation failed",
    ErrorKind.OPERATION_TIMEOUT: "Store operation timed out; outcome unknown",
}


class ConsentError(Exception):
    """Tagged error carrying an ErrorKind plus operator-only details."""

    def __init__(
        self,
        kind: ErrorKind,
        message: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        self.kind = kind
        self.message = message or DEFAULT_MESSAGES[kind]
        self.details = details or {}
        super().__init__(self.message)

    @property
    def retryable(self) -> bool:
        return self.kind in RETRYABLE_KINDS

    @property
    def critical(self) -> bool:
        return self.kind in CRITICAL_KINDS

    def public_dict(self) -> Dict[str, str]:
        """User-facing view: kind and message only."""
        return {"code": self.kind.value, "message": self.message}

    def __repr__(self) -> str:
        return f"ConsentError({self.kind.value}, {self.message!r})"

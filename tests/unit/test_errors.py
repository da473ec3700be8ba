# Copyright (c) 2026 ConsentVault Contributors. All Rights Reserved.
"""Unit tests for the error taxonomy and its HTTP mapping."""

import pytest

from consent_vault.api.errors import STATUS_BY_KIND, error_body
from consent_vault.core.errors import ConsentError, ErrorKind


class TestConsentError:
    def test_default_message(self):
        err = ConsentError(ErrorKind.HANDLE_EXPIRED)
        assert err.message == "Consent handle has expired"
        assert str(err) == err.message
        assert err.details == {}

    @pytest.mark.parametrize("kind", [
        ErrorKind.UPDATE_FREQUENCY_EXCEEDED,
        ErrorKind.CONCURRENT_VERSION_CREATION,
        ErrorKind.OPERATION_TIMEOUT,
    ])
    def test_retryable_kinds(self, kind):
        assert ConsentError(kind).retryable

    def test_not_retryable(self):
        assert not ConsentError(ErrorKind.HANDLE_ALREADY_USED).retryable

    def test_critical_kinds(self):
        assert ConsentError(ErrorKind.TENANT_ISOLATION_VIOLATION).critical
        assert ConsentError(ErrorKind.MULTIPLE_ACTIVE_VERSIONS).critical
        assert not ConsentError(ErrorKind.NOT_FOUND).critical

    def test_public_dict_hides_details(self):
        err = ConsentError(
            ErrorKind.MULTIPLE_ACTIVE_VERSIONS, details={"document_ids": ["d1", "d2"]},
        )
        assert err.public_dict() == {
            "code": "MULTIPLE_ACTIVE_VERSIONS",
            "message": "Multiple active versions found",
        }


class TestHttpMapping:
    def test_every_kind_has_a_status(self):
        assert set(STATUS_BY_KIND) == set(ErrorKind)

    def test_error_body_shape(self):
        assert error_body("NOT_FOUND", "gone", "t-1") == {
            "code": "NOT_FOUND", "message": "gone", "trace_id": "t-1",
        }

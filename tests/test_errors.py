"""Tests for the error taxonomy."""

import pytest

from pioneer_tracker.errors import (
    ConcurrencyConflictError,
    NotFoundError,
    PioneerTrackerError,
    TransientIOError,
    ValidationError,
    error_label,
    http_status_for,
)


class TestErrorTaxonomy:
    """Tests for labels and status codes."""

    @pytest.mark.parametrize(
        ("error", "label", "status"),
        [
            (NotFoundError("x"), "not_found", 404),
            (ValidationError("x"), "validation_error", 400),
            (TransientIOError("x"), "transient_io_error", 500),
            (ConcurrencyConflictError("x"), "concurrency_conflict", 500),
        ],
    )
    def test_domain_errors(self, error, label, status):
        assert isinstance(error, PioneerTrackerError)
        assert error_label(error) == label
        assert http_status_for(error) == status

    def test_unexpected_errors_map_to_internal(self):
        assert error_label(KeyError("boom")) == "internal_error"
        assert http_status_for(KeyError("boom")) == 500

    def test_retryable(self):
        assert TransientIOError.retryable
        assert ConcurrencyConflictError.retryable
        assert not ValidationError.retryable

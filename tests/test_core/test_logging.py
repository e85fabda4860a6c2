"""
Tests for logging context helpers.
"""
from app.core.logging import (
    add_correlation_id,
    add_run_context,
    case_context,
    correlation_context,
    driver_run_context,
    get_correlation_id,
)


def test_correlation_context_is_scoped():
    with correlation_context("abc123"):
        assert get_correlation_id() == "abc123"
        assert add_correlation_id(None, "info", {})["correlation_id"] == "abc123"
    assert get_correlation_id() is None


def test_driver_run_context_binds_run_fields():
    with driver_run_context("progression", "run-1") as run_id:
        with case_context("case-9"):
            event = add_run_context(None, "info", {"event": "Case processed"})

    assert run_id == "run-1"
    assert event["driver"] == "progression"
    assert event["run_id"] == "run-1"
    assert event["case_id"] == "case-9"
    assert add_run_context(None, "info", {}) == {}


def test_run_id_is_generated():
    with driver_run_context("catch_up") as run_id:
        assert run_id

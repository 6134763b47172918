"""
Tests for structured logging processors and context helpers.
"""
from unittest.mock import patch

from rent_payments.core.logging import (
    add_correlation_id,
    add_request_context,
    add_service_context,
    correlation_context,
    get_correlation_id,
    log_business_event,
    performance_timing,
    set_party_id,
)


class TestCorrelationContext:
    def test_context_sets_and_restores(self):
        with correlation_context(correlation_id="corr-1", party_id="tenant-1", payment_id="pay-1"):
            assert get_correlation_id() == "corr-1"
            event = add_request_context(None, "info", {})
            assert event["party_id"] == "tenant-1"
            assert event["payment_id"] == "pay-1"

        assert get_correlation_id() != "corr-1"

    def test_correlation_id_added_to_events(self):
        with correlation_context(correlation_id="corr-2"):
            event = add_correlation_id(None, "info", {"event": "hello"})

        assert event["correlation_id"] == "corr-2"

    def test_explicit_correlation_id_kept(self):
        with correlation_context(correlation_id="corr-3"):
            event = add_correlation_id(None, "info", {"correlation_id": "tm-pay-1"})

        assert event["correlation_id"] == "tm-pay-1"

    def test_party_id_from_dependency(self):
        with correlation_context(correlation_id="corr-4"):
            set_party_id("landlord-9")
            event = add_request_context(None, "info", {})

        assert event["party_id"] == "landlord-9"

    def test_service_context(self):
        event = add_service_context(None, "info", {})

        assert set(event) == {"service", "version", "environment"}


class TestEventHelpers:
    def test_log_business_event(self):
        with patch("rent_payments.core.logging.get_business_logger") as get_business_logger:
            log_business_event("transfer_initiated", payment_id="pay-1")

        get_business_logger.return_value.info.assert_called_once_with(
            "Business event", event_type="transfer_initiated", payment_id="pay-1"
        )

    def test_performance_timing_logs_on_error(self):
        with patch("rent_payments.core.logging.get_performance_logger") as get_performance_logger:
            try:
                with performance_timing("processor_create_transfer", payment_id="pay-1"):
                    raise RuntimeError("boom")
            except RuntimeError:
                pass

        _, kwargs = get_performance_logger.return_value.info.call_args
        assert kwargs["operation"] == "processor_create_transfer"
        assert kwargs["payment_id"] == "pay-1"
        assert kwargs["duration_ms"] >= 0

"""
Tests for the payments API endpoints.
"""
import json
from decimal import Decimal
from uuid import uuid4

import pytest

from rent_payments.core.exceptions import ProcessorAPIError
from rent_payments.services.webhook_service import SIGNATURE_HEADER, compute_signature
from tests.conftest import WEBHOOK_SECRET
from tests.fakes import seed_payable_tenancy, seed_processor_config, seed_tenancy

VALID_ACCOUNT = {
    "routing_number": "222222226",
    "account_number": "123456789",
    "account_type": "checking",
    "holder_name": "Jane Tenant",
}


def webhook_request(event_id, topic, resource_id):
    body = json.dumps({"id": event_id, "topic": topic, "resourceId": resource_id}).encode()
    return body, {SIGNATURE_HEADER: compute_signature(WEBHOOK_SECRET, body)}


class TestAuthentication:
    def test_missing_party_id(self, client, api_prefix):
        response = client.get(f"{api_prefix}/payments/processors")

        assert response.status_code == 401
        data = response.json()
        assert data["error"] is True
        assert data["error_code"] == "PAY_002"

    def test_correlation_id_echoed(self, client, api_prefix, tenant_headers, fake_db):
        seed_tenancy(fake_db)

        response = client.get(f"{api_prefix}/payments/processors", headers=tenant_headers)

        assert response.headers["X-Correlation-ID"] == "test-correlation-123"


class TestProcessorsEndpoint:
    def test_available_processors(self, client, api_prefix, tenant_headers, fake_db):
        seed_tenancy(fake_db)
        seed_processor_config(fake_db, "landlord-1", processor="bank_transfer")
        seed_processor_config(fake_db, "landlord-1", processor="card", is_primary=True)

        response = client.get(
            f"{api_prefix}/payments/processors", params={"unit_id": "unit-1"}, headers=tenant_headers
        )

        assert response.status_code == 200
        assert response.json() == {
            "available": ["bank_transfer", "card"],
            "default": "card",
            "has_payment_method": True,
        }

    def test_no_tenancy(self, client, api_prefix, tenant_headers):
        response = client.get(f"{api_prefix}/payments/processors", headers=tenant_headers)

        assert response.status_code == 200
        assert response.json() == {"available": [], "default": None, "has_payment_method": False}


class TestPayerIdentityEndpoint:
    def test_create_identity(self, client, api_prefix, tenant_headers, processor, fake_db):
        response = client.post(
            f"{api_prefix}/payments/payer-identity",
            json={"first_name": "Jane", "last_name": "Tenant", "email": "jane@example.com"},
            headers={**tenant_headers, "X-Forwarded-For": "203.0.113.7, 10.0.0.1"},
        )

        assert response.status_code == 200
        data = response.json()
        assert data["success"] is True
        assert data["customer_id"] == "cust-123"
        assert data["created"] is True
        assert processor.create_customer.await_args.kwargs["ip_address"] == "203.0.113.7"
        assert fake_db.rows("payment_processors", user_id="tenant-1")[0]["status"] == "pending"

    def test_invalid_customer_type(self, client, api_prefix, tenant_headers):
        response = client.post(
            f"{api_prefix}/payments/payer-identity",
            json={"first_name": "Jane", "last_name": "Tenant", "email": "jane@example.com", "customer_type": "trust"},
            headers=tenant_headers,
        )

        assert response.status_code == 422

    def test_processor_rejection(self, client, api_prefix, tenant_headers, processor):
        processor.create_customer.side_effect = ProcessorAPIError("Dwolla", "rejected", status_code=400)

        response = client.post(
            f"{api_prefix}/payments/payer-identity",
            json={"first_name": "Jane", "last_name": "Tenant", "email": "jane@example.com"},
            headers=tenant_headers,
        )

        assert response.status_code == 502
        data = response.json()
        assert data["success"] is False
        assert data["failure_kind"] == "processor"
        assert data["failure_code"] == "IDENTITY_CREATION_FAILED"


class TestFundingSourceEndpoint:
    def test_link_bank_account_in_sandbox(self, client, api_prefix, tenant_headers, fake_db):
        seed_processor_config(fake_db, "tenant-1", status="pending", customer_id="cust-123")

        response = client.post(f"{api_prefix}/payments/funding-sources", json=VALID_ACCOUNT, headers=tenant_headers)

        assert response.status_code == 200
        data = response.json()
        assert data["verified"] is True
        assert data["verification_pending"] is False
        assert data["display_name"].endswith("****6789")
        assert "123456789" not in json.dumps(data)

    def test_invalid_routing_number(self, client, api_prefix, tenant_headers, processor):
        response = client.post(
            f"{api_prefix}/payments/funding-sources",
            json={**VALID_ACCOUNT, "routing_number": "1234"},
            headers=tenant_headers,
        )

        assert response.status_code == 422
        assert response.json()["failure_code"] == "INVALID_ROUTING_NUMBER"
        processor.create_funding_source.assert_not_awaited()

    def test_without_payer_identity(self, client, api_prefix, tenant_headers):
        response = client.post(f"{api_prefix}/payments/funding-sources", json=VALID_ACCOUNT, headers=tenant_headers)

        assert response.status_code == 409
        assert response.json()["failure_code"] == "PAYER_IDENTITY_MISSING"


class TestTransfersEndpoint:
    def test_initiate_transfer(self, client, api_prefix, tenant_headers, fake_db):
        seed_payable_tenancy(fake_db)

        response = client.post(
            f"{api_prefix}/payments/transfers",
            json={"unit_id": "unit-1", "amount": "1500.00", "due_date": "2024-02-01"},
            headers=tenant_headers,
        )

        assert response.status_code == 200
        data = response.json()
        assert data["success"] is True
        assert data["status"] == "processing"
        assert data["transfer_id"] == "xfer-789"
        assert data["correlation_id"] == f"tm-{data['payment_id']}"
        assert Decimal(data["amount"]) == Decimal("1500.00")
        assert Decimal(data["fee"]) == Decimal("0.25")
        assert Decimal(data["net_amount"]) == Decimal("1499.75")
        assert data["replayed"] is False

    def test_retry_with_intent_id_is_replayed(self, client, api_prefix, tenant_headers, processor, fake_db):
        seed_payable_tenancy(fake_db)
        first = client.post(
            f"{api_prefix}/payments/transfers",
            json={"unit_id": "unit-1", "amount": "1500.00"},
            headers=tenant_headers,
        ).json()

        second = client.post(
            f"{api_prefix}/payments/transfers",
            json={"unit_id": "unit-1", "amount": "1500.00", "payment_intent_id": first["payment_id"]},
            headers=tenant_headers,
        )

        assert second.status_code == 200
        assert second.json()["replayed"] is True
        assert second.json()["transfer_id"] == first["transfer_id"]
        assert processor.create_transfer.await_count == 1

    def test_unknown_intent(self, client, api_prefix, tenant_headers, fake_db):
        seed_payable_tenancy(fake_db)

        response = client.post(
            f"{api_prefix}/payments/transfers",
            json={"unit_id": "unit-1", "amount": "1500.00", "payment_intent_id": str(uuid4())},
            headers=tenant_headers,
        )

        assert response.json()["failure_code"] == "PAYMENT_INTENT_NOT_FOUND"

    def test_missing_funding_source(self, client, api_prefix, tenant_headers, fake_db):
        seed_tenancy(fake_db)

        response = client.post(
            f"{api_prefix}/payments/transfers",
            json={"unit_id": "unit-1", "amount": "1500.00"},
            headers=tenant_headers,
        )

        assert response.status_code == 409
        data = response.json()
        assert data["failure_kind"] == "precondition"
        assert data["failure_code"] == "TENANT_FUNDING_SOURCE_MISSING"

    def test_suspended_landlord(self, client, api_prefix, tenant_headers, processor, fake_db):
        seed_payable_tenancy(fake_db)
        fake_db.rows("payment_processors", user_id="landlord-1")[0]["status"] = "disabled"

        response = client.post(
            f"{api_prefix}/payments/transfers",
            json={"unit_id": "unit-1", "amount": "1500.00"},
            headers=tenant_headers,
        )

        assert response.status_code == 409
        assert response.json()["failure_code"] == "LANDLORD_PROCESSOR_INACTIVE"
        processor.create_transfer.assert_not_awaited()

    def test_sub_cent_amount(self, client, api_prefix, tenant_headers, fake_db):
        seed_payable_tenancy(fake_db)

        response = client.post(
            f"{api_prefix}/payments/transfers",
            json={"unit_id": "unit-1", "amount": "1500.005"},
            headers=tenant_headers,
        )

        assert response.status_code == 422
        assert response.json()["failure_code"] == "INVALID_AMOUNT"
        assert fake_db.rows("rent_payments") == []

    def test_zero_amount(self, client, api_prefix, tenant_headers, fake_db):
        seed_payable_tenancy(fake_db)

        response = client.post(
            f"{api_prefix}/payments/transfers",
            json={"unit_id": "unit-1", "amount": "0"},
            headers=tenant_headers,
        )

        assert response.status_code == 422
        assert response.json()["failure_code"] == "INVALID_AMOUNT"

    def test_processor_failure_hides_detail(self, client, api_prefix, tenant_headers, processor, fake_db):
        seed_payable_tenancy(fake_db)
        processor.create_transfer.side_effect = ProcessorAPIError(
            "Dwolla", "rejected", status_code=400, error_detail={"message": "Insufficient funds"}
        )

        response = client.post(
            f"{api_prefix}/payments/transfers",
            json={"unit_id": "unit-1", "amount": "1500.00"},
            headers=tenant_headers,
        )

        assert response.status_code == 502
        data = response.json()
        assert data["failure_code"] == "TRANSFER_FAILED"
        assert data["message"] == "Payment could not be initiated. Please try again."
        assert "Insufficient" not in response.text
        assert fake_db.rows("rent_payments") == []


class TestWebhookEndpoint:
    @pytest.fixture
    def processing_payment(self, client, api_prefix, tenant_headers, fake_db):
        seed_payable_tenancy(fake_db)
        return client.post(
            f"{api_prefix}/payments/transfers",
            json={"unit_id": "unit-1", "amount": "1500.00"},
            headers=tenant_headers,
        ).json()

    def test_transfer_completed(self, client, api_prefix, processing_payment, fake_db):
        body, headers = webhook_request("evt-1", "transfer_completed", "xfer-789")

        response = client.post(f"{api_prefix}/webhooks/bank-transfer", content=body, headers=headers)

        assert response.status_code == 200
        assert response.json() == {
            "received": True,
            "event_id": "evt-1",
            "topic": "transfer_completed",
            "duplicate": False,
        }
        assert fake_db.rows("rent_payments", id=processing_payment["payment_id"])[0]["status"] == "paid"

    def test_redelivery_is_duplicate(self, client, api_prefix, processing_payment):
        body, headers = webhook_request("evt-1", "transfer_completed", "xfer-789")
        client.post(f"{api_prefix}/webhooks/bank-transfer", content=body, headers=headers)

        response = client.post(f"{api_prefix}/webhooks/bank-transfer", content=body, headers=headers)

        assert response.json()["duplicate"] is True

    def test_bad_signature(self, client, api_prefix, fake_db):
        body, _ = webhook_request("evt-1", "transfer_completed", "xfer-789")

        response = client.post(
            f"{api_prefix}/webhooks/bank-transfer", content=body, headers={SIGNATURE_HEADER: "0" * 64}
        )

        assert response.status_code == 401
        assert response.json()["error_code"] == "PAY_003"
        assert fake_db.rows("processor_webhook_events") == []

    def test_missing_event_id(self, client, api_prefix):
        body = json.dumps({"topic": "transfer_completed"}).encode()
        headers = {SIGNATURE_HEADER: compute_signature(WEBHOOK_SECRET, body)}

        response = client.post(f"{api_prefix}/webhooks/bank-transfer", content=body, headers=headers)

        assert response.status_code == 422
        assert response.json()["error_code"] == "PAY_001"

    def test_storage_failure_is_not_acknowledged(self, client, api_prefix, fake_db):
        fake_db.fail("processor_webhook_events", "select")
        body, headers = webhook_request("evt-1", "transfer_completed", "xfer-789")

        response = client.post(f"{api_prefix}/webhooks/bank-transfer", content=body, headers=headers)

        assert response.status_code == 500
        assert response.json()["error_code"] == "DATABASE_ERROR"

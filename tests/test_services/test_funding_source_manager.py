"""
Tests for payer identity creation and bank account linking.
"""
import pytest

from rent_payments.core.exceptions import ProcessorAPIError
from rent_payments.models.results import FailureKind
from rent_payments.services.funding_source_manager import (
    FundingSourceManager,
    validate_bank_account,
    wait_for_background_tasks,
)
from tests.fakes import seed_funding_source, seed_processor_config

VALID_ACCOUNT = {
    "routing_number": "222222226",
    "account_number": "123456789",
    "account_type": "checking",
    "holder_name": "Jane Tenant",
}


@pytest.fixture
def manager(repository, processor, settings):
    return FundingSourceManager(repository, processor, settings)


@pytest.fixture
def production_manager(repository, processor, production_settings):
    return FundingSourceManager(repository, processor, production_settings)


class TestValidateBankAccount:
    @pytest.mark.parametrize("routing_number", ["", "12345678", "1234567890", "12345678a", " 123456789"])
    def test_invalid_routing_numbers(self, routing_number):
        failure = validate_bank_account(routing_number, "123456789", "checking", "Jane")
        assert failure.kind == FailureKind.VALIDATION
        assert failure.code == "INVALID_ROUTING_NUMBER"

    @pytest.mark.parametrize("account_number", ["123", "123456789012345678", "12ab5678"])
    def test_invalid_account_numbers(self, account_number):
        failure = validate_bank_account("222222226", account_number, "checking", "Jane")
        assert failure.code == "INVALID_ACCOUNT_NUMBER"

    def test_invalid_account_type(self):
        failure = validate_bank_account("222222226", "123456789", "brokerage", "Jane")
        assert failure.code == "INVALID_ACCOUNT_TYPE"

    def test_blank_holder_name(self):
        failure = validate_bank_account("222222226", "123456789", "savings", "   ")
        assert failure.code == "INVALID_HOLDER_NAME"

    def test_valid_account(self):
        assert validate_bank_account(**VALID_ACCOUNT) is None


class TestCreatePayerIdentity:
    @pytest.mark.asyncio
    async def test_creates_customer_and_pending_config(self, manager, processor, fake_db):
        result = await manager.create_payer_identity(
            "tenant-1", "Jane", "Tenant", "jane@example.com", ip_address="10.0.0.1"
        )

        assert result.success
        assert result.created
        assert result.customer_id == "cust-123"
        processor.create_customer.assert_awaited_once_with(
            first_name="Jane",
            last_name="Tenant",
            email="jane@example.com",
            customer_type="personal",
            business_name=None,
            ip_address="10.0.0.1",
            idempotency_key="identity-tenant-1",
        )
        rows = fake_db.rows("payment_processors", user_id="tenant-1")
        assert len(rows) == 1
        assert rows[0]["status"] == "pending"
        assert rows[0]["processor"] == "bank_transfer"
        assert rows[0]["external_customer_url"].endswith("/customers/cust-123")

    @pytest.mark.asyncio
    async def test_existing_identity_is_returned(self, manager, processor, fake_db):
        seed_processor_config(fake_db, "tenant-1", status="pending", customer_id="existing-cust")

        result = await manager.create_payer_identity("tenant-1", "Jane", "Tenant", "jane@example.com")

        assert result.success
        assert not result.created
        assert result.customer_id == "existing-cust"
        processor.create_customer.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_missing_fields(self, manager, processor):
        result = await manager.create_payer_identity("tenant-1", "Jane", "", "jane@example.com")

        assert not result.success
        assert result.failure.kind == FailureKind.VALIDATION
        processor.create_customer.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_processor_rejection(self, manager, processor, fake_db):
        processor.create_customer.side_effect = ProcessorAPIError("dwolla", "duplicate", status_code=400)

        result = await manager.create_payer_identity("tenant-1", "Jane", "Tenant", "jane@example.com")

        assert not result.success
        assert result.failure.kind == FailureKind.PROCESSOR
        assert fake_db.rows("payment_processors") == []


class TestLinkBankAccount:
    @pytest.mark.asyncio
    async def test_invalid_routing_number_makes_no_external_call(self, manager, processor, fake_db):
        seed_processor_config(fake_db, "tenant-1", status="pending", customer_id="cust-123")

        result = await manager.link_bank_account(
            "tenant-1", "12345678", "123456789", "checking", "Jane Tenant"
        )

        assert not result.success
        assert result.failure.kind == FailureKind.VALIDATION
        processor.create_funding_source.assert_not_awaited()
        assert fake_db.rows("funding_sources") == []

    @pytest.mark.asyncio
    async def test_requires_payer_identity(self, manager, processor):
        result = await manager.link_bank_account("tenant-1", **VALID_ACCOUNT)

        assert not result.success
        assert result.failure.kind == FailureKind.PRECONDITION
        assert result.failure.code == "PAYER_IDENTITY_MISSING"
        processor.create_funding_source.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_sandbox_link_is_verified_and_activates_config(self, manager, processor, fake_db):
        seed_processor_config(fake_db, "tenant-1", status="pending", customer_id="cust-123")

        result = await manager.link_bank_account("tenant-1", **VALID_ACCOUNT)

        assert result.success
        assert not result.verification_pending
        assert result.funding_source.verified
        assert result.funding_source.display_name == "Jane Tenant ****6789"
        assert result.funding_source.last4 == "6789"
        processor.create_funding_source.assert_awaited_once_with(
            customer_url="https://api-sandbox.dwolla.com/customers/cust-123",
            routing_number="222222226",
            account_number="123456789",
            account_type="checking",
            name="Jane Tenant",
        )
        processor.initiate_micro_deposits.assert_not_awaited()

        config = fake_db.rows("payment_processors", user_id="tenant-1")[0]
        assert config["status"] == "active"
        assert config["verified"] is True

    @pytest.mark.asyncio
    async def test_new_account_replaces_default(self, manager, fake_db):
        seed_processor_config(fake_db, "tenant-1", status="active", customer_id="cust-123")
        seed_funding_source(fake_db, "tenant-1", "old-fs-0001", is_default=True)

        result = await manager.link_bank_account("tenant-1", **VALID_ACCOUNT)

        assert result.success
        defaults = fake_db.rows("funding_sources", party_id="tenant-1", is_default=True)
        assert len(defaults) == 1
        assert defaults[0]["external_funding_source_id"] == "fs-456"

    @pytest.mark.asyncio
    async def test_processor_rejection_persists_nothing(self, manager, processor, fake_db):
        seed_processor_config(fake_db, "tenant-1", status="pending", customer_id="cust-123")
        processor.create_funding_source.side_effect = ProcessorAPIError(
            "dwolla", "invalid account", status_code=400, error_detail={"code": "ValidationError"}
        )

        result = await manager.link_bank_account("tenant-1", **VALID_ACCOUNT)

        assert not result.success
        assert result.failure.kind == FailureKind.PROCESSOR
        assert fake_db.rows("funding_sources") == []

    @pytest.mark.asyncio
    async def test_persistence_failure_after_processor_accepts(self, manager, fake_db):
        seed_processor_config(fake_db, "tenant-1", status="pending", customer_id="cust-123")
        fake_db.fail("funding_sources", "insert")

        result = await manager.link_bank_account("tenant-1", **VALID_ACCOUNT)

        assert not result.success
        assert result.failure.kind == FailureKind.PERSISTENCE
        assert not result.failure.retriable

    @pytest.mark.asyncio
    async def test_production_link_starts_micro_deposits(self, production_manager, processor, fake_db):
        seed_processor_config(fake_db, "tenant-1", status="pending", customer_id="cust-123")

        result = await production_manager.link_bank_account("tenant-1", **VALID_ACCOUNT)
        await wait_for_background_tasks()

        assert result.success
        assert result.verification_pending
        assert not result.funding_source.verified
        processor.initiate_micro_deposits.assert_awaited_once_with(
            "https://api-sandbox.dwolla.com/funding-sources/fs-456"
        )
        config = fake_db.rows("payment_processors", user_id="tenant-1")[0]
        assert config["status"] == "pending"

    @pytest.mark.asyncio
    async def test_micro_deposit_failure_is_not_surfaced(self, production_manager, processor, fake_db):
        seed_processor_config(fake_db, "tenant-1", status="pending", customer_id="cust-123")
        processor.initiate_micro_deposits.side_effect = ProcessorAPIError(
            "dwolla", "already initiated", status_code=400
        )

        result = await production_manager.link_bank_account("tenant-1", **VALID_ACCOUNT)
        await wait_for_background_tasks()

        assert result.success
        assert len(fake_db.rows("funding_sources", party_id="tenant-1")) == 1

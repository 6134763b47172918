"""
Pytest configuration and fixtures for the Rent Payment Orchestrator Service.
"""
from typing import Generator
from unittest.mock import MagicMock

import pytest
from fastapi.testclient import TestClient

from rent_payments.core.config import Settings, get_settings
from rent_payments.core.dependencies import get_dwolla_client, get_supabase_client
from rent_payments.database.payment_repository import PaymentRepository
from rent_payments.main import app
from rent_payments.services.dwolla_client import DwollaClient, ProcessorResource
from rent_payments.services.payment_ledger import PaymentLedger
from tests.fakes import FakeSupabaseClient

DWOLLA_BASE = "https://api-sandbox.dwolla.com"
WEBHOOK_SECRET = "test-webhook-secret"


def make_settings(**overrides) -> Settings:
    values = {
        "dwolla_env": "sandbox",
        "dwolla_key": "test-key",
        "dwolla_secret": "test-secret",
        "dwolla_webhook_secret": WEBHOOK_SECRET,
        "token_retry_base_delay_seconds": 0.0,
    }
    values.update(overrides)
    return Settings(_env_file=None, **values)


@pytest.fixture
def settings() -> Settings:
    return make_settings()


@pytest.fixture
def production_settings() -> Settings:
    return make_settings(dwolla_env="production")


@pytest.fixture
def fake_db() -> FakeSupabaseClient:
    return FakeSupabaseClient()


@pytest.fixture
def repository(fake_db) -> PaymentRepository:
    return PaymentRepository(fake_db)


@pytest.fixture
def ledger(repository) -> PaymentLedger:
    return PaymentLedger(repository)


@pytest.fixture
def processor() -> MagicMock:
    """Processor client double; its async methods become AsyncMocks."""
    mock = MagicMock(spec=DwollaClient)
    mock.create_customer.return_value = ProcessorResource.from_location(f"{DWOLLA_BASE}/customers/cust-123")
    mock.create_funding_source.return_value = ProcessorResource.from_location(
        f"{DWOLLA_BASE}/funding-sources/fs-456"
    )
    mock.create_transfer.return_value = ProcessorResource.from_location(f"{DWOLLA_BASE}/transfers/xfer-789")
    mock.initiate_micro_deposits.return_value = None
    mock.funding_source_url.side_effect = lambda fs_id: f"{DWOLLA_BASE}/funding-sources/{fs_id}"
    mock.is_configured = True
    return mock


@pytest.fixture
def client(fake_db, processor, settings) -> Generator[TestClient, None, None]:
    """
    Create a test client for the FastAPI application.

    Storage and the processor are replaced with the in-memory fakes.
    """
    app.dependency_overrides[get_supabase_client] = lambda: fake_db
    app.dependency_overrides[get_dwolla_client] = lambda: processor
    app.dependency_overrides[get_settings] = lambda: settings
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


@pytest.fixture
def tenant_headers() -> dict:
    """Request headers for an authenticated tenant."""
    return {
        "X-Correlation-ID": "test-correlation-123",
        "X-User-ID": "tenant-1",
    }


@pytest.fixture
def api_prefix() -> str:
    return "/api/v1"

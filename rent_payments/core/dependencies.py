"""
Dependency injection for FastAPI application.

Provides factory functions for creating service instances with proper
dependency injection and configuration.
"""

from functools import lru_cache
from typing import Optional

from fastapi import Depends, Header
from supabase import Client

from rent_payments.core.config import Settings, get_settings
from rent_payments.core.exceptions import AuthenticationRequiredError
from rent_payments.core.logging import set_party_id
from rent_payments.database.payment_repository import PaymentRepository, create_supabase_client
from rent_payments.services.dwolla_client import DwollaClient
from rent_payments.services.funding_source_manager import FundingSourceManager
from rent_payments.services.payment_ledger import PaymentLedger
from rent_payments.services.processor_resolver import ProcessorResolver
from rent_payments.services.transfer_orchestrator import TransferOrchestrator
from rent_payments.services.webhook_service import WebhookService


@lru_cache()
def get_supabase_client() -> Client:
    """Get the shared Supabase client."""
    return create_supabase_client(get_settings())


def get_payment_repository(client: Client = Depends(get_supabase_client)) -> PaymentRepository:
    return PaymentRepository(client)


@lru_cache()
def get_dwolla_client() -> DwollaClient:
    """
    Get the shared bank-transfer processor client.

    Shared so the access token cache and circuit breaker span requests.
    """
    return DwollaClient(get_settings())


def get_party_id(x_user_id: Optional[str] = Header(None)) -> str:
    """
    Get the authenticated party id supplied by the session provider.

    Raises:
        AuthenticationRequiredError: If the header is missing
    """
    if not x_user_id or not x_user_id.strip():
        raise AuthenticationRequiredError()
    party_id = x_user_id.strip()
    set_party_id(party_id)
    return party_id


def get_payment_ledger(repository: PaymentRepository = Depends(get_payment_repository)) -> PaymentLedger:
    return PaymentLedger(repository)


def get_processor_resolver(repository: PaymentRepository = Depends(get_payment_repository)) -> ProcessorResolver:
    return ProcessorResolver(repository)


def get_funding_source_manager(
    repository: PaymentRepository = Depends(get_payment_repository),
    processor: DwollaClient = Depends(get_dwolla_client),
    settings: Settings = Depends(get_settings),
) -> FundingSourceManager:
    return FundingSourceManager(repository, processor, settings)


def get_transfer_orchestrator(
    repository: PaymentRepository = Depends(get_payment_repository),
    ledger: PaymentLedger = Depends(get_payment_ledger),
    processor: DwollaClient = Depends(get_dwolla_client),
    settings: Settings = Depends(get_settings),
) -> TransferOrchestrator:
    """
    Get transfer orchestrator with all dependencies injected.

    Args:
        repository: Payment repository
        ledger: Payment ledger sharing the same repository
        processor: Bank-transfer processor client
        settings: Application settings

    Returns:
        Configured TransferOrchestrator instance
    """
    return TransferOrchestrator(repository, ledger, processor, settings)


def get_webhook_service(
    repository: PaymentRepository = Depends(get_payment_repository),
    ledger: PaymentLedger = Depends(get_payment_ledger),
    settings: Settings = Depends(get_settings),
) -> WebhookService:
    return WebhookService(repository, ledger, settings)

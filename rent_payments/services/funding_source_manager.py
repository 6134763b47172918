"""
Funding source manager.

Creates payer identities (processor customers) and links bank accounts to
them. In sandbox the processor verifies accounts instantly; elsewhere a
micro-deposit verification is started in the background after the account
is saved.
"""

import asyncio
import re
from typing import Optional, Set

from rent_payments.core.config import Settings
from rent_payments.core.exceptions import DatabaseError, ExternalServiceError, ProcessorAPIError
from rent_payments.core.logging import get_logger, log_business_event
from rent_payments.database.payment_repository import PaymentRepository
from rent_payments.models.payment import (
    BankAccountType,
    FundingSource,
    ProcessorKind,
    ProcessorStatus,
)
from rent_payments.models.results import (
    Failure,
    FailureKind,
    LinkBankAccountResult,
    PayerIdentityResult,
)
from rent_payments.services.dwolla_client import DwollaClient

logger = get_logger(__name__)

ROUTING_NUMBER_PATTERN = re.compile(r"^\d{9}$")
ACCOUNT_NUMBER_PATTERN = re.compile(r"^\d{4,17}$")

# Strong references to in-flight micro-deposit requests
_background_tasks: Set[asyncio.Task] = set()


def validate_bank_account(
    routing_number: str,
    account_number: str,
    account_type: str,
    holder_name: str,
) -> Optional[Failure]:
    """Check bank account details before anything is sent to the processor."""
    if not ROUTING_NUMBER_PATTERN.match(routing_number or ""):
        return Failure(FailureKind.VALIDATION, "INVALID_ROUTING_NUMBER", "Invalid routing number format")
    if not ACCOUNT_NUMBER_PATTERN.match(account_number or ""):
        return Failure(FailureKind.VALIDATION, "INVALID_ACCOUNT_NUMBER", "Account number must be 4-17 digits")
    if account_type not in {t.value for t in BankAccountType}:
        return Failure(FailureKind.VALIDATION, "INVALID_ACCOUNT_TYPE", "Account type must be checking or savings")
    if not holder_name or not holder_name.strip():
        return Failure(FailureKind.VALIDATION, "INVALID_HOLDER_NAME", "Name on the account is required")
    return None


class FundingSourceManager:
    """Provisions payer identities and bank funding sources."""

    def __init__(self, repository: PaymentRepository, processor: DwollaClient, settings: Settings):
        self.repository = repository
        self.processor = processor
        self.settings = settings

    async def create_payer_identity(
        self,
        party_id: str,
        first_name: str,
        last_name: str,
        email: str,
        customer_type: str = "personal",
        business_name: Optional[str] = None,
        ip_address: Optional[str] = None,
    ) -> PayerIdentityResult:
        if not first_name or not last_name or not email:
            return PayerIdentityResult(
                success=False,
                failure=Failure(
                    FailureKind.VALIDATION,
                    "MISSING_IDENTITY_FIELDS",
                    "First name, last name, and email are required",
                ),
            )

        try:
            existing = await self.repository.get_processor_config(party_id, ProcessorKind.BANK_TRANSFER)
        except DatabaseError as e:
            return self._identity_persistence_failure(party_id, e)

        if existing and existing.external_customer_url:
            logger.info(
                "Payer identity already exists",
                party_id=party_id,
                customer_id=existing.external_customer_id,
            )
            return PayerIdentityResult(
                success=True,
                identity_ref=existing.external_customer_url,
                customer_id=existing.external_customer_id,
                created=False,
            )

        try:
            customer = await self.processor.create_customer(
                first_name=first_name,
                last_name=last_name,
                email=email,
                customer_type=customer_type,
                business_name=business_name,
                ip_address=ip_address,
                idempotency_key=f"identity-{party_id}",
            )
        except ExternalServiceError as e:
            logger.error(
                "Processor rejected payer identity",
                party_id=party_id,
                error=str(e),
                error_detail=getattr(e, "error_detail", None),
            )
            return PayerIdentityResult(
                success=False,
                failure=Failure(FailureKind.PROCESSOR, "IDENTITY_CREATION_FAILED", "Failed to create payer identity"),
            )

        try:
            await self.repository.upsert_processor_config(
                party_id,
                ProcessorKind.BANK_TRANSFER,
                {
                    "external_customer_id": customer.id,
                    "external_customer_url": customer.url,
                    "status": ProcessorStatus.PENDING.value,
                },
            )
        except DatabaseError as e:
            logger.error(
                "Payer identity created but not saved",
                party_id=party_id,
                customer_url=customer.url,
            )
            return self._identity_persistence_failure(party_id, e)

        log_business_event("payer_identity_created", party_id=party_id, customer_id=customer.id)
        return PayerIdentityResult(
            success=True,
            identity_ref=customer.url,
            customer_id=customer.id,
            created=True,
        )

    def _identity_persistence_failure(self, party_id: str, error: DatabaseError) -> PayerIdentityResult:
        logger.error("Payer identity persistence failed", party_id=party_id, error=str(error))
        return PayerIdentityResult(
            success=False,
            failure=Failure(
                FailureKind.PERSISTENCE,
                "PERSISTENCE_FAILED",
                "Failed to save payer identity",
                retriable=False,
            ),
        )

    async def link_bank_account(
        self,
        party_id: str,
        routing_number: str,
        account_number: str,
        account_type: str,
        holder_name: str,
    ) -> LinkBankAccountResult:
        failure = validate_bank_account(routing_number, account_number, account_type, holder_name)
        if failure:
            logger.info("Bank account rejected", party_id=party_id, failure_code=failure.code)
            return LinkBankAccountResult(success=False, failure=failure)

        try:
            config = await self.repository.get_processor_config(party_id, ProcessorKind.BANK_TRANSFER)
        except DatabaseError as e:
            logger.error("Failed to load payer identity", party_id=party_id, error=str(e))
            return LinkBankAccountResult(
                success=False,
                failure=Failure(FailureKind.PERSISTENCE, "PERSISTENCE_FAILED", "Failed to add bank account"),
            )

        if not config or not config.external_customer_url:
            return LinkBankAccountResult(
                success=False,
                failure=Failure(
                    FailureKind.PRECONDITION,
                    "PAYER_IDENTITY_MISSING",
                    "Payer identity not found. Please create one first.",
                ),
            )

        try:
            resource = await self.processor.create_funding_source(
                customer_url=config.external_customer_url,
                routing_number=routing_number,
                account_number=account_number,
                account_type=account_type,
                name=holder_name,
            )
        except ExternalServiceError as e:
            logger.error(
                "Processor rejected bank account",
                party_id=party_id,
                error=str(e),
                error_detail=e.error_detail if isinstance(e, ProcessorAPIError) else None,
            )
            return LinkBankAccountResult(
                success=False,
                failure=Failure(FailureKind.PROCESSOR, "FUNDING_SOURCE_REJECTED", "Failed to add bank account"),
            )

        sandbox = self.settings.is_sandbox
        last4 = account_number[-4:]
        funding_source = FundingSource(
            party_id=party_id,
            processor=ProcessorKind.BANK_TRANSFER,
            external_funding_source_id=resource.id,
            external_funding_source_url=resource.url,
            display_name=f"{holder_name.strip()} ****{last4}",
            account_type=BankAccountType(account_type),
            last4=last4,
            verified=sandbox,
            is_default=True,
        )

        try:
            await self.repository.clear_default_funding_sources(party_id, ProcessorKind.BANK_TRANSFER)
            saved = await self.repository.insert_funding_source(funding_source)
            if sandbox:
                await self.repository.update_processor_config(
                    config.id,
                    {"status": ProcessorStatus.ACTIVE.value, "verified": True},
                )
        except DatabaseError as e:
            logger.error(
                "Bank account linked at processor but not saved",
                party_id=party_id,
                funding_source_url=resource.url,
                error=str(e),
            )
            return LinkBankAccountResult(
                success=False,
                failure=Failure(
                    FailureKind.PERSISTENCE,
                    "PERSISTENCE_FAILED",
                    "Failed to save bank account",
                    retriable=False,
                ),
            )

        if not sandbox:
            self._start_micro_deposits(party_id, resource.url)

        log_business_event(
            "bank_account_linked",
            party_id=party_id,
            funding_source_id=str(saved.id),
            verified=saved.verified,
        )
        return LinkBankAccountResult(success=True, funding_source=saved, verification_pending=not sandbox)

    def _start_micro_deposits(self, party_id: str, funding_source_url: str) -> None:
        task = asyncio.create_task(self._initiate_micro_deposits(party_id, funding_source_url))
        _background_tasks.add(task)
        task.add_done_callback(_background_tasks.discard)

    async def _initiate_micro_deposits(self, party_id: str, funding_source_url: str) -> None:
        try:
            await self.processor.initiate_micro_deposits(funding_source_url)
        except ExternalServiceError as e:
            logger.warning(
                "Micro-deposits may already be initiated or not required",
                party_id=party_id,
                funding_source_url=funding_source_url,
                error=str(e),
            )


async def wait_for_background_tasks() -> None:
    """Wait for outstanding micro-deposit requests (used on shutdown)."""
    if _background_tasks:
        await asyncio.gather(*list(_background_tasks), return_exceptions=True)

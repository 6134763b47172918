"""
Transfer orchestrator.

Initiates the bank transfer for a rent payment. A payment intent is recorded
before the processor is called and its id doubles as the processor
idempotency key (``tm-<intent id>``), so retrying the same intent can never
move money twice. If the processor refuses the transfer the intent is
removed again.
"""

from datetime import date
from decimal import Decimal
from typing import Any, Optional
from uuid import UUID

from rent_payments.core.config import Settings
from rent_payments.core.exceptions import (
    DatabaseError,
    ExternalServiceError,
    InvalidPaymentTransition,
    ProcessorAPIError,
)
from rent_payments.core.logging import get_logger, log_business_event, performance_timing, set_payment_id
from rent_payments.database.payment_repository import PaymentRepository
from rent_payments.models.payment import (
    FundingSource,
    PaymentIntent,
    PaymentStatus,
    ProcessorKind,
    Transfer,
    parse_money,
    to_money,
)
from rent_payments.models.results import GENERIC_PAYMENT_FAILURE, FailureKind, TransferResult
from rent_payments.services.dwolla_client import DwollaClient
from rent_payments.services.payment_ledger import PaymentLedger

logger = get_logger(__name__)


class TransferOrchestrator:
    """Runs a rent payment from intent to accepted processor transfer."""

    def __init__(
        self,
        repository: PaymentRepository,
        ledger: PaymentLedger,
        processor: DwollaClient,
        settings: Settings,
    ):
        self.repository = repository
        self.ledger = ledger
        self.processor = processor
        self.settings = settings

    @property
    def fee(self) -> Decimal:
        return to_money(self.settings.ach_transaction_fee)

    def _funding_source_url(self, funding_source: FundingSource) -> str:
        return funding_source.external_funding_source_url or self.processor.funding_source_url(
            funding_source.external_funding_source_id
        )

    async def initiate_transfer(
        self,
        tenant_id: str,
        unit_id: str,
        amount: Any,
        payment_intent_id: Optional[UUID] = None,
        due_date: Optional[date] = None,
    ) -> TransferResult:
        try:
            tenant_source = await self.repository.get_usable_funding_source(tenant_id, ProcessorKind.BANK_TRANSFER)
            if not tenant_source:
                return TransferResult.failed(
                    FailureKind.PRECONDITION,
                    "TENANT_FUNDING_SOURCE_MISSING",
                    "No verified bank account found. Please add a bank account first.",
                )

            landlord_id = await self.repository.get_landlord_id_for_unit(unit_id)
            if not landlord_id:
                return TransferResult.failed(
                    FailureKind.PRECONDITION,
                    "LANDLORD_NOT_FOUND",
                    "Could not find landlord for this unit",
                )

            landlord_source = await self.repository.get_usable_funding_source(
                landlord_id, ProcessorKind.BANK_TRANSFER
            )
            if not landlord_source:
                return TransferResult.failed(
                    FailureKind.PRECONDITION,
                    "LANDLORD_FUNDING_SOURCE_MISSING",
                    "Landlord has not set up bank transfer payments yet",
                )

            tenant_config = await self.repository.get_processor_config(tenant_id, ProcessorKind.BANK_TRANSFER)
            if not tenant_config or not tenant_config.is_active:
                return TransferResult.failed(
                    FailureKind.PRECONDITION,
                    "TENANT_PROCESSOR_INACTIVE",
                    "Your bank transfer account is not active",
                )

            landlord_config = await self.repository.get_processor_config(landlord_id, ProcessorKind.BANK_TRANSFER)
            if not landlord_config or not landlord_config.is_active:
                return TransferResult.failed(
                    FailureKind.PRECONDITION,
                    "LANDLORD_PROCESSOR_INACTIVE",
                    "Landlord is not currently accepting bank transfer payments",
                )
        except DatabaseError as e:
            logger.error("Failed to load transfer parties", tenant_id=tenant_id, unit_id=unit_id, error=str(e))
            return TransferResult.failed(FailureKind.PERSISTENCE, "PERSISTENCE_FAILED", GENERIC_PAYMENT_FAILURE)

        amount = parse_money(amount)
        if amount is None or amount <= 0:
            return TransferResult.failed(
                FailureKind.VALIDATION,
                "INVALID_AMOUNT",
                "Amount must be greater than zero with at most two decimal places",
                retriable=False,
            )

        if payment_intent_id:
            try:
                intent = await self.ledger.get_intent(payment_intent_id)
                early = await self._check_existing_intent(intent, tenant_id, unit_id, amount)
            except DatabaseError as e:
                logger.error("Failed to load payment intent", payment_id=str(payment_intent_id), error=str(e))
                return TransferResult.failed(FailureKind.PERSISTENCE, "PERSISTENCE_FAILED", GENERIC_PAYMENT_FAILURE)
            if early:
                return early
        else:
            try:
                intent = await self.ledger.create_intent(tenant_id, unit_id, amount, due_date=due_date)
            except DatabaseError as e:
                logger.error("Failed to create payment intent", tenant_id=tenant_id, error=str(e))
                return TransferResult.failed(FailureKind.PERSISTENCE, "PERSISTENCE_FAILED", GENERIC_PAYMENT_FAILURE)

        set_payment_id(str(intent.id))
        return await self._submit(intent, tenant_source, landlord_id, landlord_source)

    async def _check_existing_intent(
        self,
        intent: Optional[PaymentIntent],
        tenant_id: str,
        unit_id: str,
        amount: Decimal,
    ) -> Optional[TransferResult]:
        """Validate a caller-supplied intent; returns a result when no new submission is needed."""
        if intent is None:
            return TransferResult.failed(
                FailureKind.PRECONDITION,
                "PAYMENT_INTENT_NOT_FOUND",
                "Payment not found",
                retriable=False,
            )

        if intent.tenant_id != tenant_id or intent.unit_id != unit_id or intent.amount != amount:
            logger.warning(
                "Payment intent does not match request",
                payment_id=str(intent.id),
                tenant_id=tenant_id,
                unit_id=unit_id,
            )
            return TransferResult.failed(
                FailureKind.PRECONDITION,
                "PAYMENT_INTENT_MISMATCH",
                "Payment does not match this tenant, unit and amount",
                retriable=False,
            )

        if intent.status in (PaymentStatus.PAID, PaymentStatus.FAILED):
            return TransferResult.failed(
                FailureKind.PRECONDITION,
                "PAYMENT_INTENT_CLOSED",
                f"Payment is already {intent.status.value}",
                retriable=False,
                payment_intent=intent,
            )

        if intent.status == PaymentStatus.PROCESSING:
            transfer = await self.ledger.get_transfer_for_intent(intent.id)
            if transfer is None:
                # Only reachable if the status was changed outside this service
                return TransferResult.failed(
                    FailureKind.PRECONDITION,
                    "PAYMENT_INTENT_CLOSED",
                    "Payment is already processing",
                    retriable=False,
                    payment_intent=intent,
                )
            logger.info(
                "Returning existing transfer for payment intent",
                payment_id=str(intent.id),
                transfer_id=str(transfer.id),
            )
            return TransferResult(success=True, payment_intent=intent, transfer=transfer, replayed=True)

        return None

    async def _submit(
        self,
        intent: PaymentIntent,
        tenant_source: FundingSource,
        landlord_id: str,
        landlord_source: FundingSource,
    ) -> TransferResult:
        correlation_id = intent.correlation_id

        try:
            with performance_timing("processor_create_transfer", correlation_id=correlation_id):
                resource = await self.processor.create_transfer(
                    source_funding_source_url=self._funding_source_url(tenant_source),
                    destination_funding_source_url=self._funding_source_url(landlord_source),
                    amount=intent.amount,
                    correlation_id=correlation_id,
                    idempotency_key=correlation_id,
                )
        except ExternalServiceError as e:
            logger.error(
                "Processor transfer failed",
                tenant_id=intent.tenant_id,
                landlord_id=landlord_id,
                payment_id=str(intent.id),
                correlation_id=correlation_id,
                status_code=e.status_code,
                error=str(e),
                error_detail=e.error_detail if isinstance(e, ProcessorAPIError) else None,
            )
            if not await self._compensate(intent):
                advanced = await self._advanced_by_concurrent_call(intent)
                if advanced:
                    return advanced
            return TransferResult.failed(FailureKind.PROCESSOR, "TRANSFER_FAILED", GENERIC_PAYMENT_FAILURE)

        fee = self.fee
        transfer = Transfer(
            rent_payment_id=intent.id,
            tenant_id=intent.tenant_id,
            landlord_id=landlord_id,
            source_funding_source=tenant_source.external_funding_source_id,
            destination_funding_source=landlord_source.external_funding_source_id,
            amount=intent.amount,
            fee=fee,
            net_amount=intent.amount - fee,
            external_transfer_id=resource.id,
            external_transfer_url=resource.url,
            correlation_id=correlation_id,
        )

        try:
            stored, created = await self.ledger.record_transfer(transfer)
            try:
                intent = await self.ledger.mark_processing(intent)
            except InvalidPaymentTransition as e:
                # A concurrent request for the same intent got there first
                logger.warning("Payment intent already advanced", payment_id=str(intent.id), error=str(e))
                intent = await self.ledger.get_intent(intent.id) or intent
        except DatabaseError as e:
            logger.error(
                "Transfer accepted by processor but not recorded",
                payment_id=str(intent.id),
                correlation_id=correlation_id,
                external_transfer_id=resource.id,
                error=str(e),
            )
            return TransferResult.failed(
                FailureKind.PERSISTENCE,
                "PERSISTENCE_FAILED",
                "Payment was submitted but could not be recorded. Retry with the same payment id.",
                retriable=False,
                payment_intent=intent,
            )

        log_business_event(
            "rent_payment_initiated",
            payment_id=str(intent.id),
            tenant_id=intent.tenant_id,
            landlord_id=landlord_id,
            transfer_id=stored.external_transfer_id,
            amount=str(stored.amount),
            fee=str(stored.fee),
        )
        return TransferResult(success=True, payment_intent=intent, transfer=stored, replayed=not created)

    async def _compensate(self, intent: PaymentIntent) -> bool:
        """Void the intent after a processor failure; False when it was left in place."""
        try:
            return await self.ledger.void_intent(intent)
        except (DatabaseError, InvalidPaymentTransition) as e:
            logger.error(
                "Failed to void payment intent after processor failure",
                payment_id=str(intent.id),
                error=str(e),
            )
            return False

    async def _advanced_by_concurrent_call(self, intent: PaymentIntent) -> Optional[TransferResult]:
        """
        Result for an intent another call moved past pending while this one waited.

        The processor call shares its idempotency key with the winning call, so
        the winner's transfer is this request's transfer too.
        """
        try:
            current = await self.ledger.get_intent(intent.id)
            if current is None or current.status == PaymentStatus.PENDING:
                return None
            result = await self._check_existing_intent(current, intent.tenant_id, intent.unit_id, intent.amount)
        except DatabaseError as e:
            logger.error("Failed to reload payment intent", payment_id=str(intent.id), error=str(e))
            return None

        logger.info(
            "Payment intent advanced by concurrent request",
            payment_id=str(intent.id),
            payment_status=current.status.value,
        )
        return result

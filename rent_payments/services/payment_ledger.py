"""
Payment ledger.

Owns the lifecycle of rent payment intents and their transfers. Every status
change goes through here so the state machine
``pending -> processing -> {paid | failed}`` is enforced in one place.
Status writes are compare-and-set against the store, so a concurrent writer
that got there first surfaces as an ``InvalidPaymentTransition``.
"""

from datetime import date, datetime
from decimal import Decimal
from typing import Optional, Tuple
from uuid import UUID

from rent_payments.core.exceptions import DatabaseError, InvalidPaymentTransition
from rent_payments.core.logging import get_logger, log_business_event
from rent_payments.database.payment_repository import PaymentRepository
from rent_payments.models.payment import (
    PaymentIntent,
    PaymentStatus,
    ProcessorKind,
    Transfer,
    TransferStatus,
    can_transition_payment,
    can_transition_transfer,
    to_money,
)

logger = get_logger(__name__)

# Processor outcome -> (transfer status, payment status)
OUTCOME_STATUSES = {
    TransferStatus.PROCESSED: PaymentStatus.PAID,
    TransferStatus.FAILED: PaymentStatus.FAILED,
    TransferStatus.CANCELLED: PaymentStatus.FAILED,
}


class PaymentLedger:
    """Service for rent payment intent and transfer records."""

    def __init__(self, repository: PaymentRepository):
        self.repository = repository

    async def create_intent(
        self,
        tenant_id: str,
        unit_id: str,
        amount: Decimal,
        due_date: Optional[date] = None,
        payment_method: ProcessorKind = ProcessorKind.BANK_TRANSFER,
    ) -> PaymentIntent:
        """Persist a new pending payment intent."""
        intent = PaymentIntent(
            tenant_id=tenant_id,
            unit_id=unit_id,
            amount=to_money(amount),
            due_date=due_date or date.today(),
            payment_method=payment_method,
        )
        saved = await self.repository.insert_payment_intent(intent)
        logger.info(
            "Payment intent created",
            payment_id=str(saved.id),
            tenant_id=tenant_id,
            unit_id=unit_id,
            amount=str(saved.amount),
        )
        return saved

    async def get_intent(self, payment_id: UUID) -> Optional[PaymentIntent]:
        return await self.repository.get_payment_intent(payment_id)

    async def get_transfer_for_intent(self, payment_id: UUID) -> Optional[Transfer]:
        return await self.repository.get_transfer_for_payment(payment_id)

    async def _move_intent(self, intent: PaymentIntent, requested: PaymentStatus) -> PaymentIntent:
        if not can_transition_payment(intent.status, requested):
            raise InvalidPaymentTransition("payment", intent.status.value, requested.value, str(intent.id))

        updated = await self.repository.update_payment_status(intent.id, requested, expected_status=intent.status)
        if updated is None:
            current = await self.repository.get_payment_intent(intent.id)
            raise InvalidPaymentTransition(
                "payment",
                current.status.value if current else "missing",
                requested.value,
                str(intent.id),
            )
        return updated

    async def mark_processing(self, intent: PaymentIntent) -> PaymentIntent:
        """Move a pending intent to processing once the processor accepted its transfer."""
        updated = await self._move_intent(intent, PaymentStatus.PROCESSING)
        logger.info("Payment intent processing", payment_id=str(intent.id))
        return updated

    async def record_transfer(self, transfer: Transfer) -> Tuple[Transfer, bool]:
        """
        Persist a transfer, re-using an existing row with the same correlation id.

        Returns:
            The stored transfer and whether it was newly created
        """
        existing = await self.repository.get_transfer_by_correlation_id(transfer.correlation_id)
        if existing:
            logger.info(
                "Transfer already recorded",
                transfer_id=str(existing.id),
                correlation_id=transfer.correlation_id,
            )
            return existing, False

        try:
            saved = await self.repository.insert_transfer(transfer)
        except DatabaseError:
            # Lost an insert race on the unique correlation id
            existing = await self.repository.get_transfer_by_correlation_id(transfer.correlation_id)
            if existing is None:
                raise
            logger.info(
                "Transfer recorded concurrently",
                transfer_id=str(existing.id),
                correlation_id=transfer.correlation_id,
            )
            return existing, False

        log_business_event(
            "transfer_recorded",
            transfer_id=str(saved.id),
            payment_id=str(saved.rent_payment_id),
            correlation_id=saved.correlation_id,
            amount=str(saved.amount),
            fee=str(saved.fee),
            net_amount=str(saved.net_amount),
        )
        return saved, True

    async def void_intent(self, intent: PaymentIntent) -> bool:
        """
        Remove an intent whose transfer was never accepted.

        Only pending intents may be voided; anything further along already
        has money moving against it. The delete is conditional on the stored
        status, so an intent a concurrent call has already advanced is left
        alone and ``False`` is returned.
        """
        if intent.status != PaymentStatus.PENDING:
            raise InvalidPaymentTransition("payment", intent.status.value, "deleted", str(intent.id))

        deleted = await self.repository.delete_payment_intent(intent.id, expected_status=PaymentStatus.PENDING)
        if deleted:
            logger.info("Payment intent voided", payment_id=str(intent.id))
        else:
            logger.warning("Payment intent not voided, already advanced or removed", payment_id=str(intent.id))
        return deleted

    async def apply_processor_outcome(
        self,
        transfer: Transfer,
        outcome: TransferStatus,
        failure_reason: Optional[str] = None,
    ) -> Tuple[Transfer, Optional[PaymentIntent]]:
        """
        Apply a terminal processor outcome to a transfer and its intent.

        The intent is checked before anything is written, so an outcome that
        arrives while the intent is still pending leaves both records
        untouched and can be applied on redelivery. A transfer that already
        holds ``outcome`` only has its intent brought up to date.

        Raises:
            InvalidPaymentTransition: If the transfer or intent cannot take the outcome
        """
        if outcome not in OUTCOME_STATUSES:
            raise InvalidPaymentTransition("transfer", transfer.status.value, outcome.value, str(transfer.id))
        requested = OUTCOME_STATUSES[outcome]

        intent = await self.repository.get_payment_intent(transfer.rent_payment_id)
        if intent is not None and not can_transition_payment(intent.status, requested):
            raise InvalidPaymentTransition("payment", intent.status.value, requested.value, str(intent.id))

        if transfer.status == outcome:
            updated_transfer = transfer
        else:
            if not can_transition_transfer(transfer.status, outcome):
                raise InvalidPaymentTransition("transfer", transfer.status.value, outcome.value, str(transfer.id))

            values = {"failure_reason": failure_reason}
            if outcome == TransferStatus.PROCESSED:
                values["completed_at"] = datetime.utcnow().isoformat()

            updated_transfer = await self.repository.update_transfer_status(
                transfer.id, outcome, expected_status=transfer.status, values=values
            )
            if updated_transfer is None:
                raise InvalidPaymentTransition("transfer", "changed", outcome.value, str(transfer.id))

        updated_intent = None
        if intent is None:
            logger.warning(
                "Transfer outcome for missing payment intent",
                transfer_id=str(transfer.id),
                payment_id=str(transfer.rent_payment_id),
            )
        else:
            updated_intent = await self._move_intent(intent, requested)

        log_business_event(
            "transfer_outcome_applied",
            transfer_id=str(transfer.id),
            payment_id=str(transfer.rent_payment_id),
            transfer_status=outcome.value,
            payment_status=updated_intent.status.value if updated_intent else None,
            failure_reason=failure_reason,
        )
        return updated_transfer, updated_intent

"""
Processor webhook handling.

Verifies and records bank-transfer processor callbacks, then applies them:
transfer outcomes go through the payment ledger, funding source and customer
events update the registry. Each event id is processed at most once.
"""

import hashlib
import hmac
import json
from typing import Any, Dict, Optional

from rent_payments.core.config import Settings
from rent_payments.core.exceptions import (
    DatabaseError,
    InvalidPaymentTransition,
    ValidationError,
    WebhookSignatureError,
)
from rent_payments.core.logging import get_logger
from rent_payments.database.payment_repository import PaymentRepository
from rent_payments.models.payment import FundingSourceStatus, ProcessorKind, ProcessorStatus, TransferStatus
from rent_payments.services.payment_ledger import PaymentLedger

logger = get_logger(__name__)

SIGNATURE_HEADER = "X-Request-Signature-SHA-256"

TRANSFER_OUTCOMES = {
    "transfer_completed": TransferStatus.PROCESSED,
    "transfer_failed": TransferStatus.FAILED,
    "transfer_cancelled": TransferStatus.CANCELLED,
}

FAILURE_REASONS = {
    TransferStatus.FAILED: "Transfer failed at processor",
    TransferStatus.CANCELLED: "Transfer cancelled at processor",
}


def compute_signature(secret: str, payload: bytes) -> str:
    return hmac.new(secret.encode("utf-8"), payload, hashlib.sha256).hexdigest()


class WebhookService:
    """Applies processor status callbacks."""

    def __init__(self, repository: PaymentRepository, ledger: PaymentLedger, settings: Settings):
        self.repository = repository
        self.ledger = ledger
        self.settings = settings

    def verify_signature(self, payload: bytes, signature: Optional[str]) -> bool:
        """Check the HMAC-SHA256 signature when a webhook secret is configured."""
        secret = self.settings.dwolla_webhook_secret
        if not secret:
            return True
        if not signature:
            return False
        expected = compute_signature(secret, payload)
        return hmac.compare_digest(expected.encode("utf-8"), signature.strip().lower().encode("utf-8"))

    async def handle(self, payload: bytes, signature: Optional[str]) -> Dict[str, Any]:
        """
        Verify, record and apply one webhook delivery.

        Raises:
            WebhookSignatureError: If the signature does not verify
            ValidationError: If the payload is not a processor event
            DatabaseError: If the event could not be recorded or applied
        """
        if not self.verify_signature(payload, signature):
            logger.warning("Invalid webhook signature")
            raise WebhookSignatureError()

        try:
            event = json.loads(payload)
        except ValueError:
            raise ValidationError("Webhook payload is not valid JSON")
        if not isinstance(event, dict) or not event.get("id") or not event.get("topic"):
            raise ValidationError("Webhook payload must include id and topic")

        event_id = event["id"]
        topic = event["topic"]
        resource_id = event.get("resourceId")
        logger.info("Processor webhook received", event_id=event_id, topic=topic, resource_id=resource_id)

        existing = await self.repository.get_webhook_event(event_id)
        if existing and existing.get("processed"):
            logger.info("Duplicate webhook event ignored", event_id=event_id, topic=topic)
            return {"received": True, "event_id": event_id, "topic": topic, "duplicate": True}
        if not existing:
            await self.repository.insert_webhook_event(event_id, topic, resource_id, event)

        try:
            await self._apply(topic, resource_id, event)
        except InvalidPaymentTransition as e:
            logger.warning("Webhook event not applicable", event_id=event_id, topic=topic, error=str(e))
            await self.repository.mark_webhook_event_processed(event_id, error=str(e))
            return {"received": True, "event_id": event_id, "topic": topic, "duplicate": False}
        except DatabaseError as e:
            logger.error("Webhook event processing failed", event_id=event_id, topic=topic, error=str(e))
            raise

        await self.repository.mark_webhook_event_processed(event_id)
        return {"received": True, "event_id": event_id, "topic": topic, "duplicate": False}

    async def _apply(self, topic: str, resource_id: Optional[str], event: Dict[str, Any]) -> None:
        if topic in TRANSFER_OUTCOMES:
            await self._apply_transfer_outcome(resource_id, TRANSFER_OUTCOMES[topic])
        elif topic == "customer_funding_source_verified":
            await self._funding_source_verified(resource_id)
        elif topic == "customer_funding_source_removed":
            await self.repository.update_funding_sources_by_external_id(
                resource_id,
                {"status": FundingSourceStatus.REMOVED.value, "is_default": False},
            )
            logger.info("Funding source removed", funding_source_id=resource_id)
        elif topic == "customer_verified":
            await self.repository.update_processor_configs_by_customer(
                self._customer_id(event), {"verified": True}
            )
        elif topic == "customer_suspended":
            await self.repository.update_processor_configs_by_customer(
                self._customer_id(event), {"status": ProcessorStatus.DISABLED.value}
            )
        else:
            logger.info("Unhandled webhook topic", topic=topic)

    async def _apply_transfer_outcome(self, external_transfer_id: Optional[str], outcome: TransferStatus) -> None:
        transfer = await self.repository.get_transfer_by_external_id(external_transfer_id) if external_transfer_id else None
        if transfer is None:
            logger.warning("Webhook for unknown transfer", external_transfer_id=external_transfer_id)
            return

        await self.ledger.apply_processor_outcome(transfer, outcome, failure_reason=FAILURE_REASONS.get(outcome))
        logger.info(
            "Transfer outcome applied",
            external_transfer_id=external_transfer_id,
            transfer_status=outcome.value,
        )

    async def _funding_source_verified(self, external_funding_source_id: Optional[str]) -> None:
        updated = await self.repository.update_funding_sources_by_external_id(
            external_funding_source_id, {"verified": True}
        )
        for funding_source in updated:
            config = await self.repository.get_processor_config(funding_source.party_id, ProcessorKind.BANK_TRANSFER)
            if config:
                await self.repository.update_processor_config(
                    config.id, {"status": ProcessorStatus.ACTIVE.value, "verified": True}
                )
        logger.info("Funding source verified", funding_source_id=external_funding_source_id, updated=len(updated))

    @staticmethod
    def _customer_id(event: Dict[str, Any]) -> Optional[str]:
        href = event.get("_links", {}).get("resource", {}).get("href")
        if href:
            return href.rstrip("/").split("/")[-1]
        return event.get("resourceId")

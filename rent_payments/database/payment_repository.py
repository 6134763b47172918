"""
Payment database repository.

Data access for the processor registry, funding sources, rent payments,
transfers and processor webhook events, backed by Supabase tables. Each
method is a single-table read or write; no cross-table transactions are
assumed, so callers compensate explicitly.
"""

from datetime import datetime
from typing import Any, Callable, Dict, List, Optional
from uuid import UUID

import structlog
from supabase import Client, create_client

from rent_payments.core.config import Settings
from rent_payments.core.exceptions import DatabaseConnectionError, DatabaseError
from rent_payments.models.payment import (
    FundingSource,
    FundingSourceStatus,
    PaymentIntent,
    PaymentStatus,
    ProcessorConfig,
    ProcessorKind,
    Transfer,
    TransferStatus,
)

logger = structlog.get_logger(__name__)

PROCESSORS_TABLE = "payment_processors"
FUNDING_SOURCES_TABLE = "funding_sources"
RENT_PAYMENTS_TABLE = "rent_payments"
TRANSFERS_TABLE = "payment_transfers"
WEBHOOK_EVENTS_TABLE = "processor_webhook_events"
TENANT_UNITS_TABLE = "tenant_units"
UNITS_TABLE = "units"
PROPERTIES_TABLE = "properties"


def create_supabase_client(settings: Settings) -> Client:
    """
    Create a Supabase client from settings.

    Raises:
        DatabaseConnectionError: If Supabase is not configured
    """
    if not settings.supabase_url or not settings.supabase_key:
        raise DatabaseConnectionError("Supabase URL and key must be configured")
    return create_client(settings.supabase_url, settings.supabase_key)


def _now() -> str:
    return datetime.utcnow().isoformat()


def _id(value: Any) -> str:
    return str(value) if isinstance(value, UUID) else value


class PaymentRepository:
    """
    Repository for payment records.

    Wraps a Supabase client; every failure of the underlying client surfaces
    as ``DatabaseError`` so services can treat persistence uniformly.
    """

    def __init__(self, client: Client):
        """
        Initialize repository with a Supabase client.

        Args:
            client: Supabase client (or any object exposing the same table API)
        """
        self.client = client

    def _run(self, operation: str, query: Callable[[], Any], **context) -> List[Dict[str, Any]]:
        try:
            response = query()
        except Exception as e:
            logger.error(
                "Database operation failed",
                operation=operation,
                error=str(e),
                **context
            )
            raise DatabaseError(f"Failed to {operation.replace('_', ' ')}: {str(e)}", operation=operation)
        return response.data or []

    # Processor registry

    async def list_processor_configs(self, user_id: str) -> List[ProcessorConfig]:
        """Get every processor configuration a party holds."""
        rows = self._run(
            "list_processor_configs",
            lambda: self.client.table(PROCESSORS_TABLE).select("*").eq("user_id", user_id).execute(),
            user_id=user_id,
        )
        return [ProcessorConfig.from_record(row) for row in rows]

    async def get_processor_config(
        self, user_id: str, processor: ProcessorKind
    ) -> Optional[ProcessorConfig]:
        rows = self._run(
            "get_processor_config",
            lambda: self.client.table(PROCESSORS_TABLE)
            .select("*")
            .eq("user_id", user_id)
            .eq("processor", processor.value)
            .limit(1)
            .execute(),
            user_id=user_id,
            processor=processor.value,
        )
        return ProcessorConfig.from_record(rows[0]) if rows else None

    async def upsert_processor_config(
        self, user_id: str, processor: ProcessorKind, values: Dict[str, Any]
    ) -> ProcessorConfig:
        """Insert or update the (party, processor) configuration row."""
        record = {
            **values,
            "user_id": user_id,
            "processor": processor.value,
            "updated_at": _now(),
        }
        rows = self._run(
            "upsert_processor_config",
            lambda: self.client.table(PROCESSORS_TABLE)
            .upsert(record, on_conflict="user_id,processor")
            .execute(),
            user_id=user_id,
            processor=processor.value,
        )
        if not rows:
            raise DatabaseError("No data returned from processor config upsert", operation="upsert_processor_config")

        logger.info(
            "Processor config saved",
            user_id=user_id,
            processor=processor.value,
            status=rows[0].get("status"),
        )
        return ProcessorConfig.from_record(rows[0])

    async def update_processor_config(self, config_id: UUID, values: Dict[str, Any]) -> Optional[ProcessorConfig]:
        rows = self._run(
            "update_processor_config",
            lambda: self.client.table(PROCESSORS_TABLE)
            .update({**values, "updated_at": _now()})
            .eq("id", _id(config_id))
            .execute(),
            config_id=_id(config_id),
        )
        return ProcessorConfig.from_record(rows[0]) if rows else None

    async def update_processor_configs_by_customer(self, customer_id: str, values: Dict[str, Any]) -> int:
        """Update the configs holding a given external customer id."""
        rows = self._run(
            "update_processor_configs_by_customer",
            lambda: self.client.table(PROCESSORS_TABLE)
            .update({**values, "updated_at": _now()})
            .eq("external_customer_id", customer_id)
            .execute(),
            customer_id=customer_id,
        )
        return len(rows)

    # Tenancy lookups (read-only)

    async def get_active_tenant_unit(
        self, tenant_id: str, unit_id: Optional[str] = None
    ) -> Optional[Dict[str, Any]]:
        """Get the tenant's active unit assignment, optionally for one unit."""

        def query():
            q = (
                self.client.table(TENANT_UNITS_TABLE)
                .select("*")
                .eq("tenant_id", tenant_id)
                .eq("status", "active")
            )
            if unit_id:
                q = q.eq("unit_id", unit_id)
            return q.limit(1).execute()

        rows = self._run("get_active_tenant_unit", query, tenant_id=tenant_id, unit_id=unit_id)
        return rows[0] if rows else None

    async def get_landlord_id_for_unit(self, unit_id: str) -> Optional[str]:
        """Landlord of a unit is the creator of its property."""
        units = self._run(
            "get_unit",
            lambda: self.client.table(UNITS_TABLE).select("id, property_id").eq("id", unit_id).limit(1).execute(),
            unit_id=unit_id,
        )
        if not units or not units[0].get("property_id"):
            return None

        property_id = units[0]["property_id"]
        properties = self._run(
            "get_property",
            lambda: self.client.table(PROPERTIES_TABLE)
            .select("id, created_by")
            .eq("id", property_id)
            .limit(1)
            .execute(),
            property_id=property_id,
        )
        if not properties:
            return None
        return properties[0].get("created_by")

    # Funding sources

    async def list_funding_sources(
        self, party_id: str, processor: ProcessorKind = ProcessorKind.BANK_TRANSFER
    ) -> List[FundingSource]:
        rows = self._run(
            "list_funding_sources",
            lambda: self.client.table(FUNDING_SOURCES_TABLE)
            .select("*")
            .eq("party_id", party_id)
            .eq("processor", processor.value)
            .order("created_at", desc=True)
            .execute(),
            party_id=party_id,
        )
        return [FundingSource.from_record(row) for row in rows]

    async def get_usable_funding_source(
        self, party_id: str, processor: ProcessorKind = ProcessorKind.BANK_TRANSFER
    ) -> Optional[FundingSource]:
        """
        Get the party's verified, active funding source.

        The default source wins; otherwise the most recently linked one.
        """
        usable = [fs for fs in await self.list_funding_sources(party_id, processor) if fs.is_usable]
        if not usable:
            return None
        defaults = [fs for fs in usable if fs.is_default]
        return (defaults or usable)[0]

    async def clear_default_funding_sources(
        self, party_id: str, processor: ProcessorKind = ProcessorKind.BANK_TRANSFER
    ) -> None:
        self._run(
            "clear_default_funding_sources",
            lambda: self.client.table(FUNDING_SOURCES_TABLE)
            .update({"is_default": False})
            .eq("party_id", party_id)
            .eq("processor", processor.value)
            .execute(),
            party_id=party_id,
        )

    async def insert_funding_source(self, funding_source: FundingSource) -> FundingSource:
        rows = self._run(
            "insert_funding_source",
            lambda: self.client.table(FUNDING_SOURCES_TABLE).insert(funding_source.to_record()).execute(),
            party_id=funding_source.party_id,
        )
        if not rows:
            raise DatabaseError("No data returned from funding source insert", operation="insert_funding_source")

        logger.info(
            "Funding source created",
            funding_source_id=str(funding_source.id),
            party_id=funding_source.party_id,
            verified=funding_source.verified,
        )
        return FundingSource.from_record(rows[0])

    async def update_funding_sources_by_external_id(
        self, external_funding_source_id: str, values: Dict[str, Any]
    ) -> List[FundingSource]:
        rows = self._run(
            "update_funding_sources_by_external_id",
            lambda: self.client.table(FUNDING_SOURCES_TABLE)
            .update(values)
            .eq("external_funding_source_id", external_funding_source_id)
            .execute(),
            external_funding_source_id=external_funding_source_id,
        )
        return [FundingSource.from_record(row) for row in rows]

    # Rent payments (payment intents)

    async def insert_payment_intent(self, intent: PaymentIntent) -> PaymentIntent:
        rows = self._run(
            "insert_payment_intent",
            lambda: self.client.table(RENT_PAYMENTS_TABLE).insert(intent.to_record()).execute(),
            tenant_id=intent.tenant_id,
            unit_id=intent.unit_id,
        )
        if not rows:
            raise DatabaseError("No data returned from rent payment insert", operation="insert_payment_intent")
        return PaymentIntent.from_record(rows[0])

    async def get_payment_intent(self, payment_id: UUID) -> Optional[PaymentIntent]:
        rows = self._run(
            "get_payment_intent",
            lambda: self.client.table(RENT_PAYMENTS_TABLE).select("*").eq("id", _id(payment_id)).limit(1).execute(),
            payment_id=_id(payment_id),
        )
        return PaymentIntent.from_record(rows[0]) if rows else None

    async def update_payment_status(
        self,
        payment_id: UUID,
        status: PaymentStatus,
        expected_status: PaymentStatus,
    ) -> Optional[PaymentIntent]:
        """
        Compare-and-set the status of a rent payment.

        Returns:
            The updated intent, or None when the row was not in ``expected_status``
        """
        rows = self._run(
            "update_payment_status",
            lambda: self.client.table(RENT_PAYMENTS_TABLE)
            .update({"status": status.value, "updated_at": _now()})
            .eq("id", _id(payment_id))
            .eq("status", expected_status.value)
            .execute(),
            payment_id=_id(payment_id),
            status=status.value,
        )
        return PaymentIntent.from_record(rows[0]) if rows else None

    async def delete_payment_intent(self, payment_id: UUID, expected_status: PaymentStatus) -> bool:
        """Delete an intent only while it still holds ``expected_status``."""
        rows = self._run(
            "delete_payment_intent",
            lambda: self.client.table(RENT_PAYMENTS_TABLE)
            .delete()
            .eq("id", _id(payment_id))
            .eq("status", expected_status.value)
            .execute(),
            payment_id=_id(payment_id),
        )
        return bool(rows)

    # Transfers

    async def insert_transfer(self, transfer: Transfer) -> Transfer:
        rows = self._run(
            "insert_transfer",
            lambda: self.client.table(TRANSFERS_TABLE).insert(transfer.to_record()).execute(),
            correlation_id=transfer.correlation_id,
        )
        if not rows:
            raise DatabaseError("No data returned from transfer insert", operation="insert_transfer")
        return Transfer.from_record(rows[0])

    async def _get_transfer_by(self, column: str, value: str) -> Optional[Transfer]:
        rows = self._run(
            f"get_transfer_by_{column}",
            lambda: self.client.table(TRANSFERS_TABLE).select("*").eq(column, value).limit(1).execute(),
            **{column: value}
        )
        return Transfer.from_record(rows[0]) if rows else None

    async def get_transfer_by_correlation_id(self, correlation_id: str) -> Optional[Transfer]:
        return await self._get_transfer_by("correlation_id", correlation_id)

    async def get_transfer_by_external_id(self, external_transfer_id: str) -> Optional[Transfer]:
        return await self._get_transfer_by("external_transfer_id", external_transfer_id)

    async def get_transfer_for_payment(self, payment_id: UUID) -> Optional[Transfer]:
        return await self._get_transfer_by("rent_payment_id", _id(payment_id))

    async def update_transfer_status(
        self,
        transfer_id: UUID,
        status: TransferStatus,
        expected_status: TransferStatus,
        values: Optional[Dict[str, Any]] = None,
    ) -> Optional[Transfer]:
        """Compare-and-set the status of a transfer."""
        rows = self._run(
            "update_transfer_status",
            lambda: self.client.table(TRANSFERS_TABLE)
            .update({**(values or {}), "status": status.value})
            .eq("id", _id(transfer_id))
            .eq("status", expected_status.value)
            .execute(),
            transfer_id=_id(transfer_id),
            status=status.value,
        )
        return Transfer.from_record(rows[0]) if rows else None

    # Processor webhook events

    async def get_webhook_event(self, event_id: str) -> Optional[Dict[str, Any]]:
        rows = self._run(
            "get_webhook_event",
            lambda: self.client.table(WEBHOOK_EVENTS_TABLE).select("*").eq("event_id", event_id).limit(1).execute(),
            event_id=event_id,
        )
        return rows[0] if rows else None

    async def insert_webhook_event(
        self, event_id: str, topic: str, resource_id: Optional[str], payload: Dict[str, Any]
    ) -> Dict[str, Any]:
        rows = self._run(
            "insert_webhook_event",
            lambda: self.client.table(WEBHOOK_EVENTS_TABLE)
            .insert({
                "event_id": event_id,
                "topic": topic,
                "resource_id": resource_id,
                "payload": payload,
                "processed": False,
                "created_at": _now(),
            })
            .execute(),
            event_id=event_id,
        )
        return rows[0] if rows else {}

    async def mark_webhook_event_processed(self, event_id: str, error: Optional[str] = None) -> None:
        self._run(
            "mark_webhook_event_processed",
            lambda: self.client.table(WEBHOOK_EVENTS_TABLE)
            .update({"processed": error is None, "processed_at": _now(), "error": error})
            .eq("event_id", event_id)
            .execute(),
            event_id=event_id,
        )

    async def health_check(self) -> bool:
        """Check database connectivity."""
        try:
            self.client.table(PROCESSORS_TABLE).select("id").limit(1).execute()
            return True
        except Exception as e:
            logger.error("Database health check failed", error=str(e))
            return False

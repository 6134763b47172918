"""
Processor resolver.

Decides which payment processors a tenant may pay a unit's rent with, based
on the landlord's processor configurations. Read-only.
"""

from typing import List, Optional

from rent_payments.core.logging import get_logger
from rent_payments.database.payment_repository import PaymentRepository
from rent_payments.models.payment import ProcessorConfig, ProcessorKind
from rent_payments.models.results import ProcessorResolution

logger = get_logger(__name__)

# Fallback order when no active processor is flagged primary
PROCESSOR_PREFERENCE = (ProcessorKind.BANK_TRANSFER, ProcessorKind.CARD)


def choose_default(configs: List[ProcessorConfig]) -> Optional[ProcessorKind]:
    """
    Pick the processor to pre-select from a landlord's configurations.

    An active config flagged primary wins; bank transfer wins if both are
    flagged. Otherwise bank transfer, then card. Inactive configs are never
    chosen, primary or not.
    """
    active = {c.processor for c in configs if c.is_active}
    primary = {c.processor for c in configs if c.is_active and c.is_primary}

    for kind in PROCESSOR_PREFERENCE:
        if kind in primary:
            return kind
    for kind in PROCESSOR_PREFERENCE:
        if kind in active:
            return kind
    return None


class ProcessorResolver:
    """Resolves available processors for a tenant's unit."""

    def __init__(self, repository: PaymentRepository):
        self.repository = repository

    async def resolve_processors(self, tenant_id: str, unit_id: Optional[str] = None) -> ProcessorResolution:
        tenant_unit = await self.repository.get_active_tenant_unit(tenant_id, unit_id)
        if not tenant_unit:
            logger.info(
                "Processor resolution",
                tenant_id=tenant_id,
                unit_id=unit_id,
                outcome="no_active_unit",
                available=[],
                default=None,
            )
            return ProcessorResolution.empty()

        resolved_unit_id = tenant_unit["unit_id"]
        landlord_id = await self.repository.get_landlord_id_for_unit(resolved_unit_id)
        if not landlord_id:
            logger.info(
                "Processor resolution",
                tenant_id=tenant_id,
                unit_id=resolved_unit_id,
                outcome="no_landlord",
                available=[],
                default=None,
            )
            return ProcessorResolution.empty()

        configs = await self.repository.list_processor_configs(landlord_id)
        available = frozenset(c.processor for c in configs if c.is_active)
        default = choose_default(configs)

        logger.info(
            "Processor resolution",
            tenant_id=tenant_id,
            unit_id=resolved_unit_id,
            landlord_id=landlord_id,
            outcome="resolved" if available else "no_active_processor",
            configured={c.processor.value: c.status.value for c in configs},
            primary=[c.processor.value for c in configs if c.is_primary],
            available=sorted(k.value for k in available),
            default=default.value if default else None,
        )
        return ProcessorResolution(available=available, default=default, landlord_id=landlord_id)

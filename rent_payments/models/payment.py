"""
Payment domain models: processor registry rows, funding sources, rent payment
intents and transfers, plus the status transition tables the ledger enforces.
"""
from datetime import date, datetime
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from enum import Enum
from typing import Any, Dict, FrozenSet, Mapping, Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, Field

CENTS = Decimal("0.01")


def to_money(value: Any) -> Decimal:
    """Coerce a stored or submitted amount into a cent-quantized Decimal."""
    return Decimal(str(value)).quantize(CENTS, rounding=ROUND_HALF_UP)


def parse_money(value: Any) -> Optional[Decimal]:
    """
    Parse a submitted amount without rounding it.

    Returns None for anything that is not a finite number of whole cents, so
    ``1500.005`` is rejected rather than charged as ``1500.01``.
    """
    try:
        amount = Decimal(str(value))
        if not amount.is_finite() or amount != amount.quantize(CENTS):
            return None
    except (InvalidOperation, ValueError, TypeError):
        return None
    return to_money(amount)


class ProcessorKind(str, Enum):
    """Money-movement backend kinds."""
    BANK_TRANSFER = "bank_transfer"
    CARD = "card"


class ProcessorStatus(str, Enum):
    """Processor configuration status"""
    PENDING = "pending"
    ACTIVE = "active"
    DISABLED = "disabled"


class FundingSourceStatus(str, Enum):
    ACTIVE = "active"
    REMOVED = "removed"


class BankAccountType(str, Enum):
    CHECKING = "checking"
    SAVINGS = "savings"


class PaymentStatus(str, Enum):
    """Rent payment (payment intent) status"""
    PENDING = "pending"
    PROCESSING = "processing"
    PAID = "paid"
    FAILED = "failed"


class TransferStatus(str, Enum):
    """Processor transfer status"""
    PENDING = "pending"
    PROCESSED = "processed"
    FAILED = "failed"
    CANCELLED = "cancelled"


# Allowed status moves. Terminal states map to an empty set.
PAYMENT_TRANSITIONS: Mapping[PaymentStatus, FrozenSet[PaymentStatus]] = {
    PaymentStatus.PENDING: frozenset({PaymentStatus.PROCESSING}),
    PaymentStatus.PROCESSING: frozenset({PaymentStatus.PAID, PaymentStatus.FAILED}),
    PaymentStatus.PAID: frozenset(),
    PaymentStatus.FAILED: frozenset(),
}

TRANSFER_TRANSITIONS: Mapping[TransferStatus, FrozenSet[TransferStatus]] = {
    TransferStatus.PENDING: frozenset({
        TransferStatus.PROCESSED,
        TransferStatus.FAILED,
        TransferStatus.CANCELLED,
    }),
    TransferStatus.PROCESSED: frozenset(),
    TransferStatus.FAILED: frozenset(),
    TransferStatus.CANCELLED: frozenset(),
}


def can_transition_payment(current: PaymentStatus, requested: PaymentStatus) -> bool:
    return requested in PAYMENT_TRANSITIONS[current]


def can_transition_transfer(current: TransferStatus, requested: TransferStatus) -> bool:
    return requested in TRANSFER_TRANSITIONS[current]


def _parse_datetime(value: Any) -> Optional[datetime]:
    if value is None or isinstance(value, datetime):
        return value
    return datetime.fromisoformat(str(value).replace("Z", "+00:00"))


def _parse_date(value: Any) -> Optional[date]:
    if value is None or isinstance(value, date):
        return value
    return date.fromisoformat(str(value)[:10])


class ProcessorConfig(BaseModel):
    """One configured processor per (party, processor kind)."""
    id: UUID = Field(default_factory=uuid4)
    user_id: str
    processor: ProcessorKind
    external_customer_id: Optional[str] = None
    external_customer_url: Optional[str] = None
    is_primary: Optional[bool] = None
    status: ProcessorStatus = ProcessorStatus.PENDING
    verified: bool = False
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: Optional[datetime] = None

    @property
    def is_active(self) -> bool:
        return self.status == ProcessorStatus.ACTIVE

    @classmethod
    def from_record(cls, data: Dict[str, Any]) -> "ProcessorConfig":
        return cls(
            id=data["id"],
            user_id=data["user_id"],
            processor=data["processor"],
            external_customer_id=data.get("external_customer_id"),
            external_customer_url=data.get("external_customer_url"),
            is_primary=data.get("is_primary"),
            status=data.get("status") or ProcessorStatus.PENDING,
            verified=bool(data.get("verified")),
            created_at=_parse_datetime(data.get("created_at")) or datetime.utcnow(),
            updated_at=_parse_datetime(data.get("updated_at")),
        )


class FundingSource(BaseModel):
    """A bank account linked to a party with a processor."""
    id: UUID = Field(default_factory=uuid4)
    party_id: str
    processor: ProcessorKind = ProcessorKind.BANK_TRANSFER
    external_funding_source_id: str
    external_funding_source_url: Optional[str] = None
    display_name: str
    account_type: BankAccountType
    last4: str
    verified: bool = False
    is_default: bool = True
    status: FundingSourceStatus = FundingSourceStatus.ACTIVE
    created_at: datetime = Field(default_factory=datetime.utcnow)

    @property
    def is_usable(self) -> bool:
        """Verified and not removed."""
        return self.verified and self.status == FundingSourceStatus.ACTIVE

    def to_record(self) -> Dict[str, Any]:
        return {
            "id": str(self.id),
            "party_id": self.party_id,
            "processor": self.processor.value,
            "external_funding_source_id": self.external_funding_source_id,
            "external_funding_source_url": self.external_funding_source_url,
            "display_name": self.display_name,
            "account_type": self.account_type.value,
            "last4": self.last4,
            "verified": self.verified,
            "is_default": self.is_default,
            "status": self.status.value,
            "created_at": self.created_at.isoformat(),
        }

    @classmethod
    def from_record(cls, data: Dict[str, Any]) -> "FundingSource":
        return cls(
            id=data["id"],
            party_id=data["party_id"],
            processor=data.get("processor") or ProcessorKind.BANK_TRANSFER,
            external_funding_source_id=data["external_funding_source_id"],
            external_funding_source_url=data.get("external_funding_source_url"),
            display_name=data.get("display_name") or "",
            account_type=data.get("account_type") or BankAccountType.CHECKING,
            last4=data.get("last4") or "",
            verified=bool(data.get("verified")),
            is_default=bool(data.get("is_default")),
            status=data.get("status") or FundingSourceStatus.ACTIVE,
            created_at=_parse_datetime(data.get("created_at")) or datetime.utcnow(),
        )


class PaymentIntent(BaseModel):
    """A tenant's attempt to pay rent (stored as a rent payment)."""
    id: UUID = Field(default_factory=uuid4)
    tenant_id: str
    unit_id: str
    amount: Decimal
    due_date: date = Field(default_factory=date.today)
    status: PaymentStatus = PaymentStatus.PENDING
    payment_method: ProcessorKind = ProcessorKind.BANK_TRANSFER
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: Optional[datetime] = None

    @property
    def correlation_id(self) -> str:
        """Idempotency key for the processor transfer of this intent."""
        return f"tm-{self.id}"

    def to_record(self) -> Dict[str, Any]:
        return {
            "id": str(self.id),
            "tenant_id": self.tenant_id,
            "unit_id": self.unit_id,
            "amount": str(to_money(self.amount)),
            "due_date": self.due_date.isoformat(),
            "status": self.status.value,
            "payment_method": self.payment_method.value,
            "created_at": self.created_at.isoformat(),
        }

    @classmethod
    def from_record(cls, data: Dict[str, Any]) -> "PaymentIntent":
        return cls(
            id=data["id"],
            tenant_id=data["tenant_id"],
            unit_id=data["unit_id"],
            amount=to_money(data["amount"]),
            due_date=_parse_date(data.get("due_date")) or date.today(),
            status=data.get("status") or PaymentStatus.PENDING,
            payment_method=data.get("payment_method") or ProcessorKind.BANK_TRANSFER,
            created_at=_parse_datetime(data.get("created_at")) or datetime.utcnow(),
            updated_at=_parse_datetime(data.get("updated_at")),
        )


class Transfer(BaseModel):
    """One money movement attempted for a payment intent."""
    id: UUID = Field(default_factory=uuid4)
    rent_payment_id: UUID
    tenant_id: str
    landlord_id: str
    source_funding_source: str
    destination_funding_source: str
    amount: Decimal
    fee: Decimal
    net_amount: Decimal
    external_transfer_id: str
    external_transfer_url: Optional[str] = None
    correlation_id: str
    status: TransferStatus = TransferStatus.PENDING
    failure_reason: Optional[str] = None
    initiated_at: datetime = Field(default_factory=datetime.utcnow)
    completed_at: Optional[datetime] = None

    def to_record(self) -> Dict[str, Any]:
        return {
            "id": str(self.id),
            "rent_payment_id": str(self.rent_payment_id),
            "tenant_id": self.tenant_id,
            "landlord_id": self.landlord_id,
            "source_funding_source": self.source_funding_source,
            "destination_funding_source": self.destination_funding_source,
            "amount": str(self.amount),
            "fee": str(self.fee),
            "net_amount": str(self.net_amount),
            "external_transfer_id": self.external_transfer_id,
            "external_transfer_url": self.external_transfer_url,
            "correlation_id": self.correlation_id,
            "status": self.status.value,
            "failure_reason": self.failure_reason,
            "initiated_at": self.initiated_at.isoformat(),
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
        }

    @classmethod
    def from_record(cls, data: Dict[str, Any]) -> "Transfer":
        return cls(
            id=data["id"],
            rent_payment_id=data["rent_payment_id"],
            tenant_id=data["tenant_id"],
            landlord_id=data["landlord_id"],
            source_funding_source=data["source_funding_source"],
            destination_funding_source=data["destination_funding_source"],
            amount=to_money(data["amount"]),
            fee=to_money(data["fee"]),
            net_amount=to_money(data["net_amount"]),
            external_transfer_id=data["external_transfer_id"],
            external_transfer_url=data.get("external_transfer_url"),
            correlation_id=data["correlation_id"],
            status=data.get("status") or TransferStatus.PENDING,
            failure_reason=data.get("failure_reason"),
            initiated_at=_parse_datetime(data.get("initiated_at")) or datetime.utcnow(),
            completed_at=_parse_datetime(data.get("completed_at")),
        )

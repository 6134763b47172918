"""
Discriminated results returned by the payment services.

Expected business failures are values, not exceptions: every result carries
``success`` and, on failure, a ``failure_kind`` and machine-readable
``failure_code``.
"""
from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum
from typing import FrozenSet, Optional

from rent_payments.models.payment import FundingSource, PaymentIntent, ProcessorKind, Transfer


class FailureKind(str, Enum):
    VALIDATION = "validation"
    PRECONDITION = "precondition"
    PROCESSOR = "processor"
    PERSISTENCE = "persistence"


GENERIC_PAYMENT_FAILURE = "Payment could not be initiated. Please try again."


@dataclass(frozen=True)
class Failure:
    """Why an operation did not succeed."""

    kind: FailureKind
    code: str
    message: str
    retriable: bool = True


@dataclass(frozen=True)
class ProcessorResolution:
    """Processors a tenant may pay with and the one to pre-select.

    An empty ``available`` set (with ``default`` of None) is the valid
    "no payment method available" state.
    """

    available: FrozenSet[ProcessorKind] = field(default_factory=frozenset)
    default: Optional[ProcessorKind] = None
    landlord_id: Optional[str] = None

    @property
    def has_payment_method(self) -> bool:
        return bool(self.available)

    @classmethod
    def empty(cls, landlord_id: Optional[str] = None) -> "ProcessorResolution":
        return cls(available=frozenset(), default=None, landlord_id=landlord_id)


@dataclass(frozen=True)
class PayerIdentityResult:
    success: bool
    identity_ref: Optional[str] = None
    customer_id: Optional[str] = None
    created: bool = False
    failure: Optional[Failure] = None


@dataclass(frozen=True)
class LinkBankAccountResult:
    success: bool
    funding_source: Optional[FundingSource] = None
    verification_pending: bool = False
    failure: Optional[Failure] = None

    @property
    def message(self) -> str:
        if self.failure:
            return self.failure.message
        if self.verification_pending:
            return "Bank account added. Please verify with micro-deposits."
        return "Bank account added and verified (sandbox mode)"


@dataclass(frozen=True)
class TransferResult:
    success: bool
    payment_intent: Optional[PaymentIntent] = None
    transfer: Optional[Transfer] = None
    replayed: bool = False
    failure: Optional[Failure] = None

    @property
    def amount(self) -> Optional[Decimal]:
        return self.transfer.amount if self.transfer else None

    @property
    def fee(self) -> Optional[Decimal]:
        return self.transfer.fee if self.transfer else None

    @property
    def net_amount(self) -> Optional[Decimal]:
        return self.transfer.net_amount if self.transfer else None

    @classmethod
    def failed(
        cls,
        kind: FailureKind,
        code: str,
        message: str,
        retriable: bool = True,
        payment_intent: Optional[PaymentIntent] = None,
    ) -> "TransferResult":
        return cls(
            success=False,
            payment_intent=payment_intent,
            failure=Failure(kind=kind, code=code, message=message, retriable=retriable),
        )

"""
Payments API Schemas

Pydantic models for payment request/response validation.
"""

from datetime import date
from decimal import Decimal
from typing import List, Optional
from uuid import UUID

from pydantic import BaseModel, Field, field_validator

from rent_payments.models.results import (
    Failure,
    LinkBankAccountResult,
    PayerIdentityResult,
    ProcessorResolution,
    TransferResult,
)


class FailureResponse(BaseModel):
    """Discriminated failure body returned for expected business failures"""

    success: bool = False
    failure_kind: str = Field(..., description="validation, precondition, processor or persistence")
    failure_code: str = Field(..., description="Machine-readable failure code")
    message: str = Field(..., description="User-safe message")
    retriable: bool = True

    @classmethod
    def from_failure(cls, failure: Failure) -> "FailureResponse":
        return cls(
            failure_kind=failure.kind.value,
            failure_code=failure.code,
            message=failure.message,
            retriable=failure.retriable,
        )


class ProcessorResolutionResponse(BaseModel):
    """Processors available for a tenant's unit"""

    available: List[str] = Field(default_factory=list, description="Active processor kinds")
    default: Optional[str] = Field(None, description="Processor to pre-select")
    has_payment_method: bool

    @classmethod
    def from_resolution(cls, resolution: ProcessorResolution) -> "ProcessorResolutionResponse":
        return cls(
            available=sorted(kind.value for kind in resolution.available),
            default=resolution.default.value if resolution.default else None,
            has_payment_method=resolution.has_payment_method,
        )


class PayerIdentityRequest(BaseModel):
    """Request schema for creating a payer identity"""

    first_name: str = Field(..., min_length=1, max_length=100)
    last_name: str = Field(..., min_length=1, max_length=100)
    email: str = Field(..., min_length=3, max_length=254)
    customer_type: str = Field("personal", description="personal or business")
    business_name: Optional[str] = Field(None, max_length=200)

    @field_validator("customer_type")
    @classmethod
    def validate_customer_type(cls, v):
        if v not in ("personal", "business"):
            raise ValueError("customer_type must be personal or business")
        return v


class PayerIdentityResponse(BaseModel):
    success: bool = True
    identity_ref: str
    customer_id: Optional[str] = None
    created: bool

    @classmethod
    def from_result(cls, result: PayerIdentityResult) -> "PayerIdentityResponse":
        return cls(identity_ref=result.identity_ref, customer_id=result.customer_id, created=result.created)


class LinkBankAccountRequest(BaseModel):
    """Request schema for linking a bank account.

    Format rules are enforced by the funding source manager so that they
    produce the same failure body as every other business failure.
    """

    routing_number: str
    account_number: str
    account_type: str
    holder_name: str


class LinkBankAccountResponse(BaseModel):
    success: bool = True
    funding_source_id: UUID
    display_name: str
    verified: bool
    verification_pending: bool
    message: str

    @classmethod
    def from_result(cls, result: LinkBankAccountResult) -> "LinkBankAccountResponse":
        return cls(
            funding_source_id=result.funding_source.id,
            display_name=result.funding_source.display_name,
            verified=result.funding_source.verified,
            verification_pending=result.verification_pending,
            message=result.message,
        )


class InitiateTransferRequest(BaseModel):
    """Request schema for paying rent by bank transfer"""

    unit_id: str = Field(..., min_length=1, max_length=100)
    amount: Decimal = Field(..., description="Rent amount in dollars")
    payment_intent_id: Optional[UUID] = Field(None, description="Existing payment to retry")
    due_date: Optional[date] = None

    @field_validator("unit_id")
    @classmethod
    def validate_unit_id(cls, v):
        if not v or not v.strip():
            raise ValueError("unit_id cannot be empty")
        return v.strip()


class TransferResponse(BaseModel):
    success: bool = True
    payment_id: UUID
    transfer_id: str
    correlation_id: str
    status: str
    amount: Decimal
    fee: Decimal
    net_amount: Decimal
    replayed: bool

    @classmethod
    def from_result(cls, result: TransferResult) -> "TransferResponse":
        return cls(
            payment_id=result.payment_intent.id,
            transfer_id=result.transfer.external_transfer_id,
            correlation_id=result.transfer.correlation_id,
            status=result.payment_intent.status.value,
            amount=result.amount,
            fee=result.fee,
            net_amount=result.net_amount,
            replayed=result.replayed,
        )


class WebhookAckResponse(BaseModel):
    received: bool = True
    event_id: str
    topic: str
    duplicate: bool = False

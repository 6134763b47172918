"""
Models package for the Rent Payment Orchestrator Service.
"""
from .payment import (
    FundingSource,
    PaymentIntent,
    PaymentStatus,
    ProcessorConfig,
    ProcessorKind,
    ProcessorStatus,
    Transfer,
    TransferStatus,
)

__all__ = [
    "FundingSource",
    "PaymentIntent",
    "PaymentStatus",
    "ProcessorConfig",
    "ProcessorKind",
    "ProcessorStatus",
    "Transfer",
    "TransferStatus",
]

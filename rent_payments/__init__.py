"""Rent Payment Orchestrator Service

This service coordinates rent payments across money-movement processors:
- Resolves which processors a tenant may pay with
- Provisions payer identities and links bank funding sources
- Initiates idempotent bank transfers for rent payments
- Keeps the local payment ledger in step with processor callbacks
"""

__version__ = "1.0.0"

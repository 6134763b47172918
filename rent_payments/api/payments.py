"""
Payments API Endpoints

REST API endpoints for processor resolution, payer identities, bank account
linking, rent transfers and processor webhooks.
"""

from typing import Optional

from fastapi import APIRouter, Depends, Query, Request, status
from fastapi.responses import JSONResponse

from rent_payments.core.dependencies import (
    get_funding_source_manager,
    get_party_id,
    get_processor_resolver,
    get_transfer_orchestrator,
    get_webhook_service,
)
from rent_payments.core.logging import get_logger
from rent_payments.models.results import Failure, FailureKind
from rent_payments.schemas.payments import (
    FailureResponse,
    InitiateTransferRequest,
    LinkBankAccountRequest,
    LinkBankAccountResponse,
    PayerIdentityRequest,
    PayerIdentityResponse,
    ProcessorResolutionResponse,
    TransferResponse,
    WebhookAckResponse,
)
from rent_payments.services.funding_source_manager import FundingSourceManager
from rent_payments.services.processor_resolver import ProcessorResolver
from rent_payments.services.transfer_orchestrator import TransferOrchestrator
from rent_payments.services.webhook_service import SIGNATURE_HEADER, WebhookService

logger = get_logger(__name__)
router = APIRouter(tags=["payments"])

FAILURE_STATUS_CODES = {
    FailureKind.VALIDATION: status.HTTP_422_UNPROCESSABLE_ENTITY,
    FailureKind.PRECONDITION: status.HTTP_409_CONFLICT,
    FailureKind.PROCESSOR: status.HTTP_502_BAD_GATEWAY,
    FailureKind.PERSISTENCE: status.HTTP_500_INTERNAL_SERVER_ERROR,
}


def failure_response(failure: Failure) -> JSONResponse:
    """Render a business failure as its discriminated JSON body."""
    return JSONResponse(
        status_code=FAILURE_STATUS_CODES[failure.kind],
        content=FailureResponse.from_failure(failure).model_dump(),
    )


@router.get("/payments/processors", response_model=ProcessorResolutionResponse)
async def get_available_processors(
    unit_id: Optional[str] = Query(None),
    party_id: str = Depends(get_party_id),
    resolver: ProcessorResolver = Depends(get_processor_resolver),
):
    """Processors the calling tenant can pay rent with."""
    resolution = await resolver.resolve_processors(party_id, unit_id)
    return ProcessorResolutionResponse.from_resolution(resolution)


@router.post(
    "/payments/payer-identity",
    response_model=PayerIdentityResponse,
    status_code=status.HTTP_200_OK,
)
async def create_payer_identity(
    body: PayerIdentityRequest,
    request: Request,
    party_id: str = Depends(get_party_id),
    manager: FundingSourceManager = Depends(get_funding_source_manager),
):
    ip_address = request.headers.get("X-Forwarded-For")
    result = await manager.create_payer_identity(
        party_id,
        first_name=body.first_name,
        last_name=body.last_name,
        email=body.email,
        customer_type=body.customer_type,
        business_name=body.business_name,
        ip_address=ip_address.split(",")[0].strip() if ip_address else None,
    )
    if not result.success:
        return failure_response(result.failure)
    return PayerIdentityResponse.from_result(result)


@router.post("/payments/funding-sources", response_model=LinkBankAccountResponse)
async def link_bank_account(
    body: LinkBankAccountRequest,
    party_id: str = Depends(get_party_id),
    manager: FundingSourceManager = Depends(get_funding_source_manager),
):
    result = await manager.link_bank_account(
        party_id,
        routing_number=body.routing_number,
        account_number=body.account_number,
        account_type=body.account_type,
        holder_name=body.holder_name,
    )
    if not result.success:
        return failure_response(result.failure)
    return LinkBankAccountResponse.from_result(result)


@router.post("/payments/transfers", response_model=TransferResponse)
async def initiate_transfer(
    body: InitiateTransferRequest,
    party_id: str = Depends(get_party_id),
    orchestrator: TransferOrchestrator = Depends(get_transfer_orchestrator),
):
    """
    Pay rent for a unit by bank transfer.

    Supplying ``payment_intent_id`` retries a previous attempt without
    moving money twice.
    """
    result = await orchestrator.initiate_transfer(
        party_id,
        body.unit_id,
        body.amount,
        payment_intent_id=body.payment_intent_id,
        due_date=body.due_date,
    )
    if not result.success:
        return failure_response(result.failure)
    return TransferResponse.from_result(result)


@router.post("/webhooks/bank-transfer", response_model=WebhookAckResponse)
async def bank_transfer_webhook(
    request: Request,
    webhook_service: WebhookService = Depends(get_webhook_service),
):
    """Processor status callbacks. Authenticated by signature, not by party id."""
    payload = await request.body()
    result = await webhook_service.handle(payload, request.headers.get(SIGNATURE_HEADER))
    return WebhookAckResponse(**result)

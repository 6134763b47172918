"""
Bank-transfer processor (Dwolla) API client.

Talks to the Dwolla REST API over ``httpx``. Created resources are identified
by the ``Location`` header of the 201 response. Only the OAuth token request
is retried; customer, funding source and transfer creation are single-shot
and rely on the ``Idempotency-Key`` header for safe replays.
"""

import time
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Dict, Optional

import httpx

from rent_payments.core.circuit_breaker import CircuitBreaker, CircuitBreakerConfig
from rent_payments.core.config import Settings
from rent_payments.core.exceptions import (
    ExternalServiceAuthenticationError,
    ExternalServiceError,
    ExternalServiceTimeoutError,
    ProcessorAPIError,
)
from rent_payments.core.logging import get_logger
from rent_payments.core.retry import create_async_retry_decorator, get_token_retry_config
from rent_payments.models.payment import to_money

logger = get_logger(__name__)

SERVICE_NAME = "dwolla"
HAL_JSON = "application/vnd.dwolla.v1.hal+json"

# Refresh the token slightly before the processor expires it
TOKEN_EXPIRY_MARGIN_SECONDS = 60


@dataclass(frozen=True)
class ProcessorResource:
    """A resource created at the processor."""

    id: str
    url: str

    @classmethod
    def from_location(cls, location: str) -> "ProcessorResource":
        return cls(id=location.rstrip("/").split("/")[-1], url=location)


def _is_circuit_failure(exc: Exception) -> bool:
    """A 4xx rejection means the processor is up; it should not open the circuit."""
    if isinstance(exc, ProcessorAPIError) and exc.status_code is not None:
        return not 400 <= exc.status_code < 500
    return True


class DwollaClient:
    """Client for the Dwolla bank-transfer API."""

    def __init__(
        self,
        settings: Settings,
        http_client: Optional[httpx.AsyncClient] = None,
        circuit_breaker: Optional[CircuitBreaker] = None,
    ):
        self.settings = settings
        self.base_url = settings.dwolla_api_url
        self._http = http_client or httpx.AsyncClient(timeout=settings.dwolla_timeout_seconds)
        self.circuit_breaker = circuit_breaker or CircuitBreaker(
            service_name=SERVICE_NAME,
            config=CircuitBreakerConfig(
                failure_threshold=settings.circuit_breaker_failure_threshold,
                timeout=settings.circuit_breaker_timeout_seconds,
            ),
            is_failure=_is_circuit_failure,
        )

        self._access_token: Optional[str] = None
        self._token_expires_at = 0.0

        token_retry = create_async_retry_decorator(
            get_token_retry_config(
                max_attempts=settings.token_retry_max_attempts,
                base_delay=settings.token_retry_base_delay_seconds,
            ),
            service_name=SERVICE_NAME,
        )
        self._request_token = token_retry(self._request_token_once)

    @property
    def is_configured(self) -> bool:
        return bool(self.settings.dwolla_key and self.settings.dwolla_secret)

    async def close(self) -> None:
        await self._http.aclose()

    # Authentication

    async def _request_token_once(self) -> Dict[str, Any]:
        response = await self._http.post(
            f"{self.base_url}/token",
            auth=(self.settings.dwolla_key or "", self.settings.dwolla_secret or ""),
            data={"grant_type": "client_credentials"},
        )
        if response.status_code in (401, 403):
            raise ExternalServiceAuthenticationError(SERVICE_NAME, status_code=response.status_code)
        if response.status_code >= 400:
            raise ProcessorAPIError(
                SERVICE_NAME,
                "Failed to get access token",
                status_code=response.status_code,
                error_detail=response.text,
            )
        return response.json()

    async def get_access_token(self) -> str:
        """Get a client-credentials token, cached until shortly before expiry."""
        if self._access_token and time.time() < self._token_expires_at:
            return self._access_token

        if not self.is_configured:
            raise ExternalServiceAuthenticationError(SERVICE_NAME, reason="credentials not configured")

        try:
            data = await self._request_token()
        except httpx.TimeoutException:
            raise ExternalServiceTimeoutError(SERVICE_NAME, self.settings.dwolla_timeout_seconds)
        except httpx.TransportError as e:
            raise ExternalServiceError(SERVICE_NAME, f"Token request failed: {str(e)}")

        self._access_token = data["access_token"]
        expires_in = int(data.get("expires_in", 3600))
        self._token_expires_at = time.time() + max(expires_in - TOKEN_EXPIRY_MARGIN_SECONDS, 0)
        logger.debug("Obtained processor access token", expires_in=expires_in)
        return self._access_token

    # Requests

    async def _post(
        self,
        url: str,
        body: Optional[Dict[str, Any]] = None,
        idempotency_key: Optional[str] = None,
    ) -> httpx.Response:
        return await self.circuit_breaker.call_async(self._send, url, body, idempotency_key)

    async def _send(
        self,
        url: str,
        body: Optional[Dict[str, Any]],
        idempotency_key: Optional[str],
    ) -> httpx.Response:
        token = await self.get_access_token()
        headers = {
            "Authorization": f"Bearer {token}",
            "Content-Type": HAL_JSON,
            "Accept": HAL_JSON,
        }
        if idempotency_key:
            headers["Idempotency-Key"] = idempotency_key

        try:
            response = await self._http.post(url, json=body, headers=headers)
        except httpx.TimeoutException:
            raise ExternalServiceTimeoutError(SERVICE_NAME, self.settings.dwolla_timeout_seconds, url=url)
        except httpx.TransportError as e:
            raise ExternalServiceError(SERVICE_NAME, f"Request failed: {str(e)}", url=url)

        if response.status_code == 401:
            # Token revoked or expired early; drop it so the next call refetches
            self._access_token = None

        if response.status_code >= 400:
            try:
                detail = response.json()
            except ValueError:
                detail = response.text
            raise ProcessorAPIError(
                SERVICE_NAME,
                f"Request to {url} rejected with status {response.status_code}",
                status_code=response.status_code,
                error_detail=detail,
            )
        return response

    def _created_resource(self, response: httpx.Response, kind: str) -> ProcessorResource:
        location = response.headers.get("Location")
        if not location:
            raise ProcessorAPIError(
                SERVICE_NAME,
                f"No {kind} URL returned",
                status_code=response.status_code,
            )
        return ProcessorResource.from_location(location)

    # Resources

    async def create_customer(
        self,
        first_name: str,
        last_name: str,
        email: str,
        customer_type: str = "personal",
        business_name: Optional[str] = None,
        ip_address: Optional[str] = None,
        idempotency_key: Optional[str] = None,
    ) -> ProcessorResource:
        """Create a customer (payer or payee identity)."""
        body: Dict[str, Any] = {
            "firstName": first_name,
            "lastName": last_name,
            "email": email,
            "type": customer_type,
        }
        if business_name:
            body["businessName"] = business_name
        if ip_address:
            body["ipAddress"] = ip_address

        response = await self._post(f"{self.base_url}/customers", body, idempotency_key=idempotency_key)
        customer = self._created_resource(response, "customer")
        logger.info("Processor customer created", customer_id=customer.id)
        return customer

    async def create_funding_source(
        self,
        customer_url: str,
        routing_number: str,
        account_number: str,
        account_type: str,
        name: str,
    ) -> ProcessorResource:
        """Attach a bank account to a customer."""
        response = await self._post(
            f"{customer_url}/funding-sources",
            {
                "routingNumber": routing_number,
                "accountNumber": account_number,
                "bankAccountType": account_type,
                "name": name,
            },
        )
        funding_source = self._created_resource(response, "funding source")
        logger.info("Processor funding source created", funding_source_id=funding_source.id)
        return funding_source

    async def initiate_micro_deposits(self, funding_source_url: str) -> None:
        """Start micro-deposit verification of a funding source."""
        await self._post(f"{funding_source_url}/micro-deposits")
        logger.info("Micro-deposits initiated", funding_source_url=funding_source_url)

    async def create_transfer(
        self,
        source_funding_source_url: str,
        destination_funding_source_url: str,
        amount: Decimal,
        correlation_id: str,
        idempotency_key: str,
    ) -> ProcessorResource:
        """Create a transfer between two funding sources."""
        body = {
            "_links": {
                "source": {"href": source_funding_source_url},
                "destination": {"href": destination_funding_source_url},
            },
            "amount": {
                "currency": self.settings.currency,
                "value": str(to_money(amount)),
            },
            "correlationId": correlation_id,
        }
        response = await self._post(f"{self.base_url}/transfers", body, idempotency_key=idempotency_key)
        transfer = self._created_resource(response, "transfer")
        logger.info(
            "Processor transfer created",
            transfer_id=transfer.id,
            correlation_id=correlation_id,
        )
        return transfer

    def funding_source_url(self, funding_source_id: str) -> str:
        return f"{self.base_url}/funding-sources/{funding_source_id}"

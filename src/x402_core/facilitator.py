"""HTTP-based facilitator client for the x402 protocol."""

from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass
from typing import Any, Callable, Optional, Protocol, TypeVar

import httpx
from pydantic import BaseModel, ValidationError

from x402_core.exceptions import FacilitatorError, FacilitatorTimeoutError
from x402_core.types import (
    FacilitatorRequest,
    ListDiscoveryResourcesRequest,
    ListDiscoveryResourcesResponse,
    PaymentPayload,
    PaymentRequirements,
    SettleResponse,
    SupportedKind,
    SupportedResponse,
    VerifyResponse,
)

logger = logging.getLogger(__name__)

DEFAULT_FACILITATOR_URL = "https://x402.org/facilitator"
DEFAULT_FACILITATOR_TIMEOUT = 30.0

ModelT = TypeVar("ModelT", bound=BaseModel)


class Facilitator(Protocol):
    """Verifies and settles payments on behalf of a resource server.

    Business outcomes come back as ``is_valid``/``success`` flags. Only
    transport problems raise (``FacilitatorError``).
    """

    async def verify(
        self, payment: PaymentPayload, payment_requirements: PaymentRequirements
    ) -> VerifyResponse: ...

    async def settle(
        self, payment: PaymentPayload, payment_requirements: PaymentRequirements
    ) -> SettleResponse: ...

    async def supported(self) -> list[SupportedKind]: ...


@dataclass
class FacilitatorConfig:
    """Configuration for the HTTP facilitator client.

    ``create_headers`` returns per-endpoint headers keyed by ``verify``,
    ``settle``, ``supported`` and ``list``.
    """

    url: str = DEFAULT_FACILITATOR_URL
    timeout: float = DEFAULT_FACILITATOR_TIMEOUT
    http_client: Optional[httpx.AsyncClient] = None
    create_headers: Optional[Callable[[], dict[str, dict[str, str]]]] = None

    def __post_init__(self) -> None:
        if not self.url.startswith(("http://", "https://")):
            raise ValueError(f"Invalid facilitator URL: {self.url}")
        if self.timeout <= 0:
            raise ValueError("Facilitator timeout must be positive")
        self.url = self.url.rstrip("/")

    @classmethod
    def from_env(cls) -> "FacilitatorConfig":
        """Build a config from X402_FACILITATOR_URL / X402_FACILITATOR_TIMEOUT."""
        return cls(
            url=os.environ.get("X402_FACILITATOR_URL", DEFAULT_FACILITATOR_URL),
            timeout=float(
                os.environ.get("X402_FACILITATOR_TIMEOUT", DEFAULT_FACILITATOR_TIMEOUT)
            ),
        )


class FacilitatorClient:
    """Async facilitator client talking to a remote facilitator over HTTP.

    Example:
        ```python
        async with FacilitatorClient(FacilitatorConfig(url="http://localhost:8787")) as fac:
            result = await fac.verify(payment, requirements)
        ```
    """

    def __init__(self, config: Optional[FacilitatorConfig] = None) -> None:
        self.config = config or FacilitatorConfig()
        self._http_client = self.config.http_client
        self._owns_client = False

    @property
    def url(self) -> str:
        return self.config.url

    def _new_client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=self.config.timeout, follow_redirects=True)

    async def aclose(self) -> None:
        """Close the httpx client opened by ``async with``; injected clients stay open."""
        if self._owns_client and self._http_client is not None:
            await self._http_client.aclose()
            self._http_client = None
            self._owns_client = False

    async def __aenter__(self) -> "FacilitatorClient":
        # outside of ``async with`` every call opens its own client, so the
        # instance stays usable from event loops created per request
        if self._http_client is None:
            self._http_client = self._new_client()
            self._owns_client = True
        return self

    async def __aexit__(self, *args: Any) -> None:
        await self.aclose()

    def _headers(self, endpoint: str) -> dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self.config.create_headers is not None:
            headers.update(self.config.create_headers().get(endpoint, {}))
        return headers

    async def _request(
        self,
        method: str,
        endpoint: str,
        path: str,
        model: type[ModelT],
        body: Optional[dict[str, Any]] = None,
        params: Optional[dict[str, Any]] = None,
    ) -> ModelT:
        url = f"{self.config.url}/{path}"
        request_kwargs: dict[str, Any] = {
            "headers": self._headers(endpoint),
            "json": body,
            "params": params,
            "timeout": self.config.timeout,
        }
        try:
            if self._http_client is not None:
                response = await self._http_client.request(method, url, **request_kwargs)
            else:
                async with self._new_client() as client:
                    response = await client.request(method, url, **request_kwargs)
        except httpx.TimeoutException as e:
            raise FacilitatorTimeoutError(
                f"Facilitator {endpoint} timed out after {self.config.timeout}s"
            ) from e
        except httpx.HTTPError as e:
            raise FacilitatorError(f"Facilitator {endpoint} request failed: {e}") from e

        if response.status_code < 200 or response.status_code >= 300:
            raise FacilitatorError(
                f"Facilitator {endpoint} failed ({response.status_code}): {response.text}",
                status_code=response.status_code,
                body=response.text,
            )

        try:
            return model.model_validate(response.json())
        except (json.JSONDecodeError, ValidationError) as e:
            raise FacilitatorError(
                f"Facilitator {endpoint} returned an invalid response: {e}",
                status_code=response.status_code,
                body=response.text,
            ) from e

    def _exchange_body(
        self, payment: PaymentPayload, payment_requirements: PaymentRequirements
    ) -> dict[str, Any]:
        return FacilitatorRequest(
            x402_version=payment.x402_version,
            payment_payload=payment,
            payment_requirements=payment_requirements,
        ).to_wire()

    async def verify(
        self, payment: PaymentPayload, payment_requirements: PaymentRequirements
    ) -> VerifyResponse:
        """Verify a payment header is valid and a request should be processed.

        Raises:
            FacilitatorError: If the facilitator cannot be reached or answers garbage
        """
        return await self._request(
            "POST",
            "verify",
            "verify",
            VerifyResponse,
            body=self._exchange_body(payment, payment_requirements),
        )

    async def settle(
        self, payment: PaymentPayload, payment_requirements: PaymentRequirements
    ) -> SettleResponse:
        """Settle a verified payment.

        Never retried. ``FacilitatorTimeoutError`` means the outcome is unknown.
        """
        return await self._request(
            "POST",
            "settle",
            "settle",
            SettleResponse,
            body=self._exchange_body(payment, payment_requirements),
        )

    async def supported(self) -> list[SupportedKind]:
        """List the (scheme, network) kinds the facilitator accepts."""
        response = await self._request("GET", "supported", "supported", SupportedResponse)
        return response.kinds

    async def list_resources(
        self, request: Optional[ListDiscoveryResourcesRequest] = None
    ) -> ListDiscoveryResourcesResponse:
        """List discoverable x402 resources from the facilitator."""
        params = request.to_wire() if request is not None else None
        return await self._request(
            "GET",
            "list",
            "discovery/resources",
            ListDiscoveryResourcesResponse,
            params=params,
        )

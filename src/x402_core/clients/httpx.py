"""httpx integration: an async transport that pays 402 responses once."""

import json
import logging
from typing import Any, Optional, Union

import httpx

from x402_core.clients.base import x402Client
from x402_core.encoding import X_PAYMENT_HEADER, X_PAYMENT_RESPONSE_HEADER
from x402_core.exceptions import InvalidPaymentRequiredResponse
from x402_core.schemes import PaymentSigner

logger = logging.getLogger(__name__)

# request extension marking the paid retry
RETRY_KEY = "x402_retry_count"


class x402AsyncTransport(httpx.AsyncBaseTransport):
    """Wraps another async transport and retries 402 responses with a payment.

    The retry is a clone of the original request carrying the X-PAYMENT header
    and the ``x402_retry_count`` extension; the original request is never
    mutated. A 402 on the retry is returned to the caller as is.
    """

    def __init__(
        self,
        client: x402Client,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.client = client
        self._transport = transport or httpx.AsyncHTTPTransport()

    async def handle_async_request(self, request: httpx.Request) -> httpx.Response:
        response = await self._transport.handle_async_request(request)

        if response.status_code != 402:
            return response
        if request.extensions.get(RETRY_KEY) or X_PAYMENT_HEADER in request.headers:
            logger.debug("Payment already attempted for %s, not retrying", request.url)
            return response

        try:
            content = await response.aread()
        finally:
            await response.aclose()

        try:
            body = json.loads(content)
        except (json.JSONDecodeError, UnicodeDecodeError) as e:
            raise InvalidPaymentRequiredResponse(
                "402 response body is not JSON", stage="parse"
            ) from e

        payment_header = await self.client.handle_payment_required_async(body)
        retry_request = await self._payment_retry(request, payment_header)
        return await self._transport.handle_async_request(retry_request)

    async def _payment_retry(self, request: httpx.Request, payment_header: str) -> httpx.Request:
        content = await request.aread()
        headers = request.headers.copy()
        headers[X_PAYMENT_HEADER] = payment_header
        headers["Access-Control-Expose-Headers"] = X_PAYMENT_RESPONSE_HEADER
        return httpx.Request(
            request.method,
            request.url,
            headers=headers,
            content=content,
            extensions={**request.extensions, RETRY_KEY: 1},
        )

    async def aclose(self) -> None:
        await self._transport.aclose()


class x402HttpxClient(httpx.AsyncClient):
    """AsyncClient with built-in x402 payment handling.

    Example:
        ```python
        signer = ExactEvmSigner(Account.from_key(key), networks="base-sepolia")
        async with x402HttpxClient(signer, base_url="http://localhost:4021") as client:
            response = await client.get("/weather")
        ```
    """

    def __init__(
        self,
        client: Union[x402Client, PaymentSigner],
        max_value: Optional[int] = None,
        payment_requirements_selector: Optional[Any] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        **kwargs: Any,
    ):
        """Initialize an AsyncClient with x402 payment handling.

        Args:
            client: x402Client, or a signer to build one from
            max_value: Optional maximum allowed payment amount (signer only)
            payment_requirements_selector: Optional custom selector (signer only)
            transport: Inner transport used for the actual requests
            **kwargs: Additional arguments to pass to AsyncClient
        """
        if not isinstance(client, x402Client):
            client = x402Client(
                client,
                max_value=max_value,
                payment_requirements_selector=payment_requirements_selector,
            )
        self.x402_client = client
        super().__init__(transport=x402AsyncTransport(client, transport), **kwargs)

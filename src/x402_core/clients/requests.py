"""requests library wrapper with automatic x402 payment handling.

Provides an HTTPAdapter and convenience functions for sync requests.Session.
"""

import logging
from typing import Any, Union

import requests
from requests.adapters import HTTPAdapter

from x402_core.clients.base import x402Client
from x402_core.encoding import X_PAYMENT_HEADER, X_PAYMENT_RESPONSE_HEADER
from x402_core.exceptions import InvalidPaymentRequiredResponse
from x402_core.schemes import PaymentSigner

logger = logging.getLogger(__name__)


class x402HTTPAdapter(HTTPAdapter):
    """HTTP adapter that handles 402 Payment Required responses.

    The paid retry is a copy of the prepared request sent straight through the
    underlying transport, so it is never intercepted again. The adapter keeps
    no per-request state and can be shared between threads.
    """

    def __init__(
        self,
        client: Union[x402Client, PaymentSigner],
        **kwargs: Any,
    ) -> None:
        """Initialize payment adapter.

        Args:
            client: x402Client, or a signer to build one from.
            **kwargs: Additional arguments for HTTPAdapter.
        """
        super().__init__(**kwargs)
        if not isinstance(client, x402Client):
            client = x402Client(client)
        self.client = client

    def send(
        self,
        request: requests.PreparedRequest,
        **kwargs: Any,
    ) -> requests.Response:
        """Send request with automatic 402 payment handling.

        Raises:
            PaymentError: If the 402 cannot be parsed, selected from or signed.
        """
        response = super().send(request, **kwargs)

        if response.status_code != 402:
            return response
        if X_PAYMENT_HEADER in request.headers:
            logger.debug("Payment already attempted for %s, not retrying", request.url)
            return response

        try:
            body = response.json()
        except ValueError as e:
            raise InvalidPaymentRequiredResponse(
                "402 response body is not JSON", stage="parse"
            ) from e
        finally:
            response.close()

        payment_header = self.client.handle_payment_required(body)

        retry_request = request.copy()
        retry_request.headers[X_PAYMENT_HEADER] = payment_header
        retry_request.headers["Access-Control-Expose-Headers"] = X_PAYMENT_RESPONSE_HEADER

        return super().send(retry_request, **kwargs)


def x402_http_adapter(
    client: Union[x402Client, PaymentSigner],
    **kwargs: Any,
) -> x402HTTPAdapter:
    """Create an HTTP adapter with 402 payment handling.

    Example:
        ```python
        session = requests.Session()
        adapter = x402_http_adapter(ExactEvmSigner(account))
        session.mount("https://", adapter)
        session.mount("http://", adapter)
        ```
    """
    return x402HTTPAdapter(client, **kwargs)


def x402_requests(
    client: Union[x402Client, PaymentSigner],
    **adapter_kwargs: Any,
) -> requests.Session:
    """Create a requests Session with x402 payment handling.

    Example:
        ```python
        session = x402_requests(ExactEvmSigner(account))
        response = session.get("https://api.example.com/paid")
        ```
    """
    session = requests.Session()
    adapter = x402HTTPAdapter(client, **adapter_kwargs)
    session.mount("https://", adapter)
    session.mount("http://", adapter)
    return session

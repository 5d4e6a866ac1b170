import logging
from typing import Any, Callable, Optional, Union, get_args

from fastapi import Request
from fastapi.responses import JSONResponse
from starlette.background import BackgroundTask

from x402_core.common import process_price_to_atomic_amount
from x402_core.facilitator import Facilitator, FacilitatorClient, FacilitatorConfig
from x402_core.path import path_is_match
from x402_core.schemes import SchemeRegistry
from x402_core.server import (
    PaymentRequired,
    SettlementMode,
    x402ResourceServer,
)
from x402_core.types import PaymentRequirements, Price
from x402_core.networks import SupportedNetworks

logger = logging.getLogger(__name__)


def _x402_response(outcome: PaymentRequired) -> JSONResponse:
    return JSONResponse(content=outcome.body, status_code=outcome.status_code)


def require_payment(
    price: Price,
    pay_to_address: str,
    path: Union[str, list[str]] = "*",
    description: str = "",
    mime_type: str = "",
    max_deadline_seconds: int = 60,
    output_schema: Optional[dict[str, Any]] = None,
    facilitator_config: Optional[FacilitatorConfig] = None,
    facilitator: Optional[Facilitator] = None,
    network: str = "base-sepolia",
    resource: Optional[str] = None,
    settlement_mode: SettlementMode = SettlementMode.SYNC,
    facilitator_timeout: Optional[float] = None,
    scheme_registry: Optional[SchemeRegistry] = None,
):
    """Generate a FastAPI middleware that gates payments for an endpoint.

    Args:
        price (Price): Payment price. Can be:
            - Money: USD amount as string/int (e.g., "$3.10", 0.10, "0.001") - defaults to USDC
            - TokenAmount: Custom token amount with asset information
        pay_to_address (str): Ethereum address to receive the payment
        path (str | list[str], optional): Path to gate with payments. Defaults to "*" for all paths.
        description (str, optional): Description of what is being purchased. Defaults to "".
        mime_type (str, optional): MIME type of the resource. Defaults to "".
        max_deadline_seconds (int, optional): Maximum time allowed for payment. Defaults to 60.
        output_schema (dict, optional): JSON schema of the resource response.
        facilitator_config (FacilitatorConfig, optional): Configuration for the HTTP facilitator client.
            If not provided, defaults to the public x402.org facilitator.
        facilitator (Facilitator, optional): Facilitator instance; overrides facilitator_config.
        network (str, optional): Network name. Defaults to "base-sepolia".
        resource (str, optional): Resource URL. Defaults to None (uses request URL).
        settlement_mode (SettlementMode, optional): SYNC settles before the response is
            released, DEFERRED settles after it was sent. Defaults to SYNC.
        facilitator_timeout (float, optional): Seconds to wait for each facilitator call.
        scheme_registry (SchemeRegistry, optional): Registry validating scheme payloads.

    Returns:
        Callable: FastAPI middleware function that checks for valid payment before processing requests
    """

    supported_networks = get_args(SupportedNetworks)
    if network not in supported_networks:
        raise ValueError(
            f"Unsupported network: {network}. Must be one of: {supported_networks}"
        )

    if network == "base" and facilitator is None and facilitator_config is None:
        raise ValueError("Facilitator configuration is required for Base Mainnet (base).")

    try:
        amount, asset_address, eip712_domain = process_price_to_atomic_amount(
            price, network
        )
    except ValueError as e:
        raise ValueError(f"Invalid price: {price}. Error: {e}") from e

    server = x402ResourceServer(
        facilitator if facilitator is not None else FacilitatorClient(facilitator_config),
        settlement_mode=settlement_mode,
        facilitator_timeout=facilitator_timeout,
        scheme_registry=scheme_registry,
    )

    async def middleware(request: Request, call_next: Callable):
        # Skip if the path is not the same as the path in the middleware
        if not path_is_match(path, request.url.path):
            return await call_next(request)

        payment_requirements = [
            PaymentRequirements(
                scheme="exact",
                network=network,
                max_amount_required=amount,
                resource=resource or str(request.url),
                description=description,
                mime_type=mime_type,
                pay_to=pay_to_address,
                max_timeout_seconds=max_deadline_seconds,
                asset=asset_address,
                output_schema=output_schema,
                extra=eip712_domain,
            )
        ]

        outcome = await server.process_payment(request.headers, payment_requirements)
        if isinstance(outcome, PaymentRequired):
            return _x402_response(outcome)

        request.state.payment_details = outcome.requirements
        request.state.verify_response = outcome.verify_response

        response = await call_next(request)

        # Early return without settling if the response is not a 2xx
        if response.status_code < 200 or response.status_code >= 300:
            return response

        if server.settlement_mode == SettlementMode.DEFERRED:
            response.background = BackgroundTask(server.settle_deferred, outcome)
            return response

        result = await server.settle(outcome)
        if result.failure is not None:
            return _x402_response(result.failure)

        response.headers.update(result.headers)
        return response

    middleware.server = server  # type: ignore[attr-defined]
    return middleware

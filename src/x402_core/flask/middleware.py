import asyncio
import logging
from typing import Any, Dict, Optional, Union, get_args

from flask import Flask, g, request

from x402_core.common import process_price_to_atomic_amount
from x402_core.facilitator import Facilitator, FacilitatorClient, FacilitatorConfig
from x402_core.networks import SupportedNetworks
from x402_core.path import path_is_match
from x402_core.schemes import SchemeRegistry
from x402_core.server import PaymentRequired, SettlementMode, x402ResourceServer
from x402_core.types import PaymentRequirements, Price

logger = logging.getLogger(__name__)

_STATUS_TEXT = {402: "402 Payment Required", 500: "500 Internal Server Error"}


class ResponseWrapper:
    """Wrapper to capture and buffer response for settlement logic."""

    def __init__(self, start_response):
        self.original_start_response = start_response
        self.status_code = None
        self.status = None
        self.headers = []
        self.write_callable_chunks = []

    def __call__(self, status, headers, exc_info=None):
        # Buffer the status, headers and write callable chunks
        self.status = status
        self.status_code = int(status.split()[0])
        self.headers = list(headers)

        def buffered_write(data):
            if data:
                self.write_callable_chunks.append(data)

        return buffered_write

    def add_header(self, name, value):
        self.headers.append((name, value))

    def send_response(self, body_chunks):
        """Send the buffered response once settlement is done."""
        write = self.original_start_response(self.status, self.headers)
        for chunk in self.write_callable_chunks:
            if chunk:
                write(chunk)
        for chunk in body_chunks:
            if chunk:
                write(chunk)


class PaymentMiddleware:
    """
    Flask middleware for x402 payment requirements.
    Allows multiple registrations with different path patterns and configurations.
    Payments are always settled before the response is released.

    Usage:
        middleware = PaymentMiddleware(app)
        middleware.add(path="/weather", price="$0.001", pay_to_address="0x...")
        middleware.add(path="/premium/*", price=TokenAmount(...), pay_to_address="0x...")
    """

    def __init__(self, app: Flask):
        self.app = app
        self.middleware_configs = []
        self.servers: list[x402ResourceServer] = []
        self.original_wsgi_app = app.wsgi_app

    def add(
        self,
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
        facilitator_timeout: Optional[float] = None,
        scheme_registry: Optional[SchemeRegistry] = None,
    ) -> x402ResourceServer:
        """
        Add a payment middleware configuration.

        Args:
            price (Price): Payment price (USD or TokenAmount)
            pay_to_address (str): Ethereum address to receive payment
            path (str | list[str], optional): Path(s) to protect. Defaults to "*".
            description (str, optional): Description of the resource
            mime_type (str, optional): MIME type of the resource
            max_deadline_seconds (int, optional): Max time for payment
            output_schema (dict, optional): JSON schema of the resource response
            facilitator_config (FacilitatorConfig, optional): Facilitator config
            facilitator (Facilitator, optional): Facilitator instance, overrides facilitator_config
            network (str, optional): Network name. Defaults to "base-sepolia".
            resource (str, optional): Resource URL
            facilitator_timeout (float, optional): Seconds to wait for each facilitator call
            scheme_registry (SchemeRegistry, optional): Registry validating scheme payloads

        Returns:
            The resource server handling this registration, for attaching hooks.
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

        # created once so hooks attached to it survive later add() calls
        server = x402ResourceServer(
            facilitator or FacilitatorClient(facilitator_config),
            settlement_mode=SettlementMode.SYNC,
            facilitator_timeout=facilitator_timeout,
            scheme_registry=scheme_registry,
        )

        config = {
            "pay_to_address": pay_to_address,
            "path": path,
            "description": description,
            "mime_type": mime_type,
            "max_deadline_seconds": max_deadline_seconds,
            "output_schema": output_schema,
            "network": network,
            "resource": resource,
            "amount": amount,
            "asset_address": asset_address,
            "eip712_domain": eip712_domain,
            "server": server,
        }
        self.middleware_configs.append(config)
        self.servers.append(server)

        self._apply_middleware()
        return server

    def _apply_middleware(self):
        """Apply all middleware configurations to the Flask app."""
        current_wsgi_app = self.original_wsgi_app

        for config in self.middleware_configs:
            current_wsgi_app = self._create_middleware(config, current_wsgi_app)

        self.app.wsgi_app = current_wsgi_app

    def _create_middleware(self, config: Dict[str, Any], next_app):
        """Create a WSGI middleware function for the given configuration."""
        server: x402ResourceServer = config["server"]
        amount = config["amount"]
        asset_address = config["asset_address"]
        eip712_domain = config["eip712_domain"]

        def x402_response(outcome: PaymentRequired, start_response):
            content = outcome.content
            headers = [
                ("Content-Type", "application/json"),
                ("Content-Length", str(len(content))),
            ]
            start_response(_STATUS_TEXT.get(outcome.status_code, str(outcome.status_code)), headers)
            return [content]

        def middleware(environ, start_response):
            with self.app.request_context(environ):
                # Skip if the path is not the same as the path in the middleware
                if not path_is_match(config["path"], request.path):
                    return next_app(environ, start_response)

                payment_requirements = [
                    PaymentRequirements(
                        scheme="exact",
                        network=config["network"],
                        max_amount_required=amount,
                        resource=config["resource"] or request.url,
                        description=config["description"],
                        mime_type=config["mime_type"],
                        pay_to=config["pay_to_address"],
                        max_timeout_seconds=config["max_deadline_seconds"],
                        asset=asset_address,
                        output_schema=config["output_schema"],
                        extra=eip712_domain,
                    )
                ]
                headers = dict(request.headers)

                # verify and settle share one event loop per request
                loop = asyncio.new_event_loop()
                try:
                    outcome = loop.run_until_complete(
                        server.process_payment(headers, payment_requirements)
                    )
                    if isinstance(outcome, PaymentRequired):
                        return x402_response(outcome, start_response)

                    g.payment_details = outcome.requirements
                    g.verify_response = outcome.verify_response

                    # Process the request and buffer all response chunks
                    response_wrapper = ResponseWrapper(start_response)
                    response_body_chunks = list(next_app(environ, response_wrapper))

                    if (
                        response_wrapper.status_code is None
                        or response_wrapper.status_code < 200
                        or response_wrapper.status_code >= 300
                    ):
                        response_wrapper.send_response(response_body_chunks)
                        return []

                    result = loop.run_until_complete(server.settle(outcome))
                finally:
                    loop.close()

                if result.failure is not None:
                    # discard the buffered response
                    return x402_response(result.failure, start_response)

                for name, value in result.headers.items():
                    response_wrapper.add_header(name, value)
                response_wrapper.send_response(response_body_chunks)
                return []

        return middleware


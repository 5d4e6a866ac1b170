"""
Local x402 facilitator for development and tests.

Verifies payments through the scheme registry and simulates settlement
without submitting anything on-chain. Settled nonces are remembered so a
payment cannot be settled twice.

Run it with ``x402-local-facilitator`` (configured through FAC_* env vars
or a ``.env`` file) or embed ``create_facilitator_app()`` in tests.
"""

import logging
import os
from dataclasses import dataclass, field
from typing import Optional

import uvicorn
from dotenv import load_dotenv
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from x402_core.common import x402_VERSION
from x402_core.schemes import SchemeRegistry, default_scheme_registry
from x402_core.schemes.exact_evm import ERR_UNSUPPORTED_SCHEME
from x402_core.types import (
    DiscoveredResource,
    DiscoveryResourcesPagination,
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

ERR_INVALID_PAYMENT_REQUIREMENTS = "invalid_payment_requirements"
ERR_NONCE_ALREADY_USED = "nonce_already_used"

# address-like placeholder, nothing is broadcast
SIMULATED_TRANSACTION = "0x" + "a" * 40


def _split_networks(value: str) -> list[str]:
    return [network.strip() for network in value.split(",") if network.strip()]


@dataclass
class LocalFacilitatorSettings:
    """Settings for the local facilitator service.

    Environment variables:
        FAC_HOST: interface to bind (default 0.0.0.0)
        FAC_PORT: port to listen on (default 8787)
        FAC_SCHEME: advertised scheme (default "exact")
        FAC_NETWORKS: comma-separated networks (default "base-sepolia")
        FAC_LOG_LEVEL: logging level (default INFO)
        FAC_VERIFY_SIGNATURES: "false" skips the scheme verifier (default true)
    """

    host: str = "0.0.0.0"
    port: int = 8787
    scheme: str = "exact"
    networks: list[str] = field(default_factory=lambda: ["base-sepolia"])
    log_level: str = "INFO"
    verify_signatures: bool = True

    @classmethod
    def from_env(cls) -> "LocalFacilitatorSettings":
        load_dotenv()
        return cls(
            host=os.getenv("FAC_HOST", "0.0.0.0"),
            port=int(os.getenv("FAC_PORT", "8787")),
            scheme=os.getenv("FAC_SCHEME") or "exact",
            networks=_split_networks(os.getenv("FAC_NETWORKS") or "base-sepolia"),
            log_level=os.getenv("FAC_LOG_LEVEL", "INFO").upper(),
            verify_signatures=os.getenv("FAC_VERIFY_SIGNATURES", "true").lower()
            not in ("0", "false", "no"),
        )

    def kinds(self) -> list[SupportedKind]:
        return [
            SupportedKind(x402_version=x402_VERSION, scheme=self.scheme, network=network)
            for network in self.networks
        ]


class LocalFacilitator:
    """In-process facilitator implementing verify, settle and supported.

    Args:
        kinds: Supported (scheme, network) kinds.
        scheme_registry: Registry with the scheme verifiers to run.
        verify_signatures: When False only the structural scheme/network
            checks run, which lets demos use unsigned payloads.
    """

    def __init__(
        self,
        kinds: Optional[list[SupportedKind]] = None,
        scheme_registry: Optional[SchemeRegistry] = None,
        verify_signatures: bool = True,
    ) -> None:
        self.kinds = kinds if kinds is not None else LocalFacilitatorSettings().kinds()
        self.scheme_registry = (
            scheme_registry if scheme_registry is not None else default_scheme_registry()
        )
        self.verify_signatures = verify_signatures
        self.resources: list[DiscoveredResource] = []
        self._settled_nonces: set[tuple[str, str]] = set()

    @classmethod
    def from_settings(cls, settings: LocalFacilitatorSettings) -> "LocalFacilitator":
        return cls(kinds=settings.kinds(), verify_signatures=settings.verify_signatures)

    def _is_supported(self, scheme: str, network: str) -> bool:
        return any(kind.scheme == scheme and kind.network == network for kind in self.kinds)

    def _payer(self, payment: PaymentPayload) -> Optional[str]:
        authorization = payment.payload.get("authorization")
        if isinstance(authorization, dict) and isinstance(authorization.get("from"), str):
            return authorization["from"]
        return None

    def _nonce(self, payment: PaymentPayload) -> Optional[str]:
        authorization = payment.payload.get("authorization")
        if isinstance(authorization, dict) and isinstance(authorization.get("nonce"), str):
            return authorization["nonce"].lower()
        return None

    async def verify(
        self, payment: PaymentPayload, payment_requirements: PaymentRequirements
    ) -> VerifyResponse:
        if (
            payment.scheme != payment_requirements.scheme
            or payment.network != payment_requirements.network
        ):
            return VerifyResponse(is_valid=False, invalid_reason=ERR_INVALID_PAYMENT_REQUIREMENTS)

        if not self._is_supported(payment.scheme, payment.network):
            return VerifyResponse(is_valid=False, invalid_reason=ERR_UNSUPPORTED_SCHEME)

        handler = self.scheme_registry.get(payment.scheme, payment.network)
        if self.verify_signatures and handler is not None:
            return handler.verify(payment, payment_requirements)

        return VerifyResponse(is_valid=True, payer=self._payer(payment))

    async def settle(
        self, payment: PaymentPayload, payment_requirements: PaymentRequirements
    ) -> SettleResponse:
        verify_response = await self.verify(payment, payment_requirements)
        payer = verify_response.payer or self._payer(payment)

        if not verify_response.is_valid:
            return SettleResponse(
                success=False,
                error_reason=verify_response.invalid_reason,
                payer=payer,
                network=payment.network,
            )

        nonce = self._nonce(payment)
        if nonce is not None:
            key = (payment.network, nonce)
            if key in self._settled_nonces:
                logger.warning("Rejected replayed nonce from %s", payer)
                return SettleResponse(
                    success=False,
                    error_reason=ERR_NONCE_ALREADY_USED,
                    payer=payer,
                    network=payment.network,
                )
            self._settled_nonces.add(key)

        logger.info(
            "Simulated settlement of %s on %s from %s",
            payment_requirements.max_amount_required,
            payment.network,
            payer,
        )
        return SettleResponse(
            success=True,
            payer=payer,
            transaction=SIMULATED_TRANSACTION,
            network=payment.network,
        )

    async def supported(self) -> list[SupportedKind]:
        return list(self.kinds)

    def register_resource(self, resource: DiscoveredResource) -> None:
        self.resources.append(resource)

    def list_resources(
        self, request: Optional[ListDiscoveryResourcesRequest] = None
    ) -> ListDiscoveryResourcesResponse:
        request = request or ListDiscoveryResourcesRequest()
        items = [
            item for item in self.resources if request.type is None or item.type == request.type
        ]
        offset = request.offset or 0
        limit = request.limit or 0
        page = items[offset : offset + limit] if limit else items[offset:]
        return ListDiscoveryResourcesResponse(
            x402_version=x402_VERSION,
            items=page,
            pagination=DiscoveryResourcesPagination(
                limit=limit, offset=offset, total=len(items)
            ),
        )


def create_facilitator_app(
    facilitator: Optional[LocalFacilitator] = None,
) -> FastAPI:
    """Build the FastAPI app exposing /supported, /verify, /settle and /discovery/resources."""
    facilitator = facilitator or LocalFacilitator()

    app = FastAPI(
        title="x402 Local Facilitator",
        description="Development facilitator with simulated settlement",
        version="0.1.0",
    )
    app.state.facilitator = facilitator

    @app.middleware("http")
    async def log_requests(request: Request, call_next):
        logger.info("%s %s", request.method, request.url.path)
        return await call_next(request)

    @app.get("/")
    async def root():
        """Health check endpoint"""
        return {
            "status": "healthy",
            "service": "x402 Local Facilitator",
            "networks": [kind.network for kind in facilitator.kinds],
        }

    @app.get("/supported")
    async def get_supported():
        kinds = await facilitator.supported()
        return JSONResponse(SupportedResponse(kinds=kinds).to_wire())

    @app.post("/verify")
    async def verify_payment(body: FacilitatorRequest):
        result = await facilitator.verify(body.payment_payload, body.payment_requirements)
        return JSONResponse(result.to_wire())

    @app.post("/settle")
    async def settle_payment(body: FacilitatorRequest):
        result = await facilitator.settle(body.payment_payload, body.payment_requirements)
        return JSONResponse(result.model_dump(mode="json", by_alias=True, exclude_none=True))

    @app.get("/discovery/resources")
    async def list_discovery_resources(
        type: Optional[str] = None,
        limit: Optional[int] = None,
        offset: Optional[int] = None,
    ):
        result = facilitator.list_resources(
            ListDiscoveryResourcesRequest(type=type, limit=limit, offset=offset)
        )
        return JSONResponse(result.model_dump(mode="json", by_alias=True, exclude_none=True))

    return app


def main() -> None:
    settings = LocalFacilitatorSettings.from_env()
    logging.basicConfig(level=settings.log_level)

    app = create_facilitator_app(LocalFacilitator.from_settings(settings))
    logger.info(
        "x402 local facilitator listening on :%s (scheme=%s networks=%s)",
        settings.port,
        settings.scheme,
        ",".join(settings.networks),
    )
    uvicorn.run(app, host=settings.host, port=settings.port, log_level=settings.log_level.lower())


if __name__ == "__main__":
    main()

"""Scheme registry for x402 payment payloads.

Each scheme-specific payload shape is a variant tagged by ``(scheme, network)``.
A ``SchemeHandler`` knows how to parse, validate and verify its variant; new
schemes register a handler instead of growing a central if/else chain.
"""

from __future__ import annotations

from typing import Any, Iterable, Optional, Protocol, Union, runtime_checkable

from pydantic import BaseModel
from typing_extensions import Self

from x402_core.exceptions import SchemeNotFoundError
from x402_core.types import PaymentPayload, PaymentRequirements, VerifyResponse

WILDCARD_NETWORK = "*"


@runtime_checkable
class SchemeHandler(Protocol):
    """Decode/validate/verify function set for one scheme variant."""

    scheme: str

    def parse_payload(self, payload: dict[str, Any]) -> BaseModel:
        """Parse the scheme payload. Raises ValueError when it is invalid."""
        ...

    def verify(
        self, payment: PaymentPayload, requirements: PaymentRequirements
    ) -> VerifyResponse:
        """Check a payment against requirements without touching chain state."""
        ...


@runtime_checkable
class PaymentSigner(Protocol):
    """Client-side signer producing scheme payloads for selected requirements."""

    scheme: str

    @property
    def networks(self) -> Union[str, list[str], None]:
        """Network(s) this signer can pay on; None means any."""
        ...

    def sign(self, requirements: PaymentRequirements) -> dict[str, Any]:
        """Return the signed scheme-specific payload."""
        ...


class SchemeRegistry:
    """Maps ``(scheme, network)`` tags to scheme handlers.

    Networks may be registered explicitly or with the ``"*"`` wildcard;
    explicit registrations win over the wildcard.

    Example:
        ```python
        registry = SchemeRegistry()
        registry.register(ExactEvmScheme(), networks=SUPPORTED_EVM_NETWORKS)
        handler = registry.get("exact", "base-sepolia")
        ```
    """

    def __init__(self) -> None:
        self._handlers: dict[str, dict[str, SchemeHandler]] = {}

    def register(
        self,
        handler: SchemeHandler,
        networks: Union[str, Iterable[str]] = WILDCARD_NETWORK,
    ) -> Self:
        if isinstance(networks, str):
            networks = [networks]
        for network in networks:
            self._handlers.setdefault(network, {})[handler.scheme] = handler
        return self

    def get(self, scheme: str, network: str) -> Optional[SchemeHandler]:
        for key in (network, WILDCARD_NETWORK):
            handler = self._handlers.get(key, {}).get(scheme)
            if handler is not None:
                return handler
        return None

    def require(self, scheme: str, network: str) -> SchemeHandler:
        handler = self.get(scheme, network)
        if handler is None:
            raise SchemeNotFoundError(scheme, network)
        return handler

    def registered(self) -> list[tuple[str, str]]:
        """List registered ``(scheme, network)`` pairs."""
        return [
            (scheme, network)
            for network, handlers in self._handlers.items()
            for scheme in handlers
        ]


def default_scheme_registry() -> SchemeRegistry:
    """Build a new registry with the built-in exact EVM scheme."""
    from x402_core.networks import SUPPORTED_EVM_NETWORKS
    from x402_core.schemes.exact_evm import ExactEvmScheme

    return SchemeRegistry().register(ExactEvmScheme(), networks=SUPPORTED_EVM_NETWORKS)


__all__ = [
    "WILDCARD_NETWORK",
    "SchemeHandler",
    "PaymentSigner",
    "SchemeRegistry",
    "default_scheme_registry",
]

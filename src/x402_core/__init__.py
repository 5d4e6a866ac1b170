"""x402_core: payment negotiation and verification for HTTP 402 micropayments."""

# Clients
from x402_core.clients.base import x402Client, decode_x_payment_response

# Common utilities
from x402_core.common import (
    find_matching_payment_requirements,
    process_price_to_atomic_amount,
    select_payment_requirements,
    x402_VERSION,
)

# Encoding
from x402_core.encoding import (
    X_PAYMENT_HEADER,
    X_PAYMENT_RESPONSE_HEADER,
    decode_payment_header,
    encode_payment_header,
    safe_base64_decode,
    safe_base64_encode,
)

# Errors
from x402_core.exceptions import (
    FacilitatorError,
    FacilitatorTimeoutError,
    InvalidEncoding,
    InvalidJson,
    InvalidPaymentRequiredResponse,
    MalformedPaymentHeader,
    NoAcceptableRequirements,
    PaymentAmountExceededError,
    PaymentError,
    PaymentSigningFailed,
    X402Error,
)

# Facilitator
from x402_core.facilitator import Facilitator, FacilitatorClient, FacilitatorConfig

# Networks
from x402_core.networks import SUPPORTED_EVM_NETWORKS, SupportedNetworks

# Schemes
from x402_core.schemes import SchemeRegistry, default_scheme_registry
from x402_core.schemes.exact_evm import ExactEvmScheme, ExactEvmSigner

# Server
from x402_core.server import (
    PaymentRequired,
    SettlementContext,
    SettlementMode,
    VerifiedPayment,
    x402ResourceServer,
)

# Types
from x402_core.types import (
    ExactPaymentPayload,
    PaymentPayload,
    PaymentRequirements,
    SettleResponse,
    SupportedKind,
    TokenAmount,
    VerifyResponse,
    x402PaymentRequiredResponse,
)

__all__ = [
    # Clients
    "x402Client",
    "decode_x_payment_response",
    # Common
    "find_matching_payment_requirements",
    "process_price_to_atomic_amount",
    "select_payment_requirements",
    "x402_VERSION",
    # Encoding
    "X_PAYMENT_HEADER",
    "X_PAYMENT_RESPONSE_HEADER",
    "decode_payment_header",
    "encode_payment_header",
    "safe_base64_decode",
    "safe_base64_encode",
    # Errors
    "FacilitatorError",
    "FacilitatorTimeoutError",
    "InvalidEncoding",
    "InvalidJson",
    "InvalidPaymentRequiredResponse",
    "MalformedPaymentHeader",
    "NoAcceptableRequirements",
    "PaymentAmountExceededError",
    "PaymentError",
    "PaymentSigningFailed",
    "X402Error",
    # Facilitator
    "Facilitator",
    "FacilitatorClient",
    "FacilitatorConfig",
    # Networks
    "SUPPORTED_EVM_NETWORKS",
    "SupportedNetworks",
    # Schemes
    "SchemeRegistry",
    "default_scheme_registry",
    "ExactEvmScheme",
    "ExactEvmSigner",
    # Server
    "PaymentRequired",
    "SettlementContext",
    "SettlementMode",
    "VerifiedPayment",
    "x402ResourceServer",
    # Types
    "ExactPaymentPayload",
    "PaymentPayload",
    "PaymentRequirements",
    "SettleResponse",
    "SupportedKind",
    "TokenAmount",
    "VerifyResponse",
    "x402PaymentRequiredResponse",
]

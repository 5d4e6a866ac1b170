"""Exact payment scheme on EVM networks (EIP-3009 transferWithAuthorization)."""

from __future__ import annotations

import re
import secrets
import time
from typing import TYPE_CHECKING, Any, Optional, Union

from eth_account import Account
from eth_account.messages import encode_typed_data
from eth_utils import is_address

from x402_core.networks import SUPPORTED_EVM_NETWORKS, get_chain_id
from x402_core.types import (
    ExactPaymentPayload,
    PaymentPayload,
    PaymentRequirements,
    VerifyResponse,
)

if TYPE_CHECKING:
    from eth_account.signers.local import LocalAccount

SCHEME_EXACT = "exact"

# validBefore must leave room for the settlement transaction to land
VALID_BEFORE_BUFFER_SECONDS = 6
VALID_AFTER_SKEW_SECONDS = 60

ERR_INVALID_PAYLOAD = "invalid_exact_evm_payload"
ERR_INVALID_SIGNATURE = "invalid_exact_evm_payload_signature"
ERR_RECIPIENT_MISMATCH = "invalid_exact_evm_payload_recipient_mismatch"
ERR_INSUFFICIENT_AMOUNT = "invalid_exact_evm_payload_authorization_value"
ERR_VALID_BEFORE_EXPIRED = "invalid_exact_evm_payload_authorization_valid_before"
ERR_VALID_AFTER_FUTURE = "invalid_exact_evm_payload_authorization_valid_after"
ERR_MISSING_EIP712_DOMAIN = "missing_eip712_domain"
ERR_NETWORK_MISMATCH = "network_mismatch"
ERR_UNSUPPORTED_SCHEME = "unsupported_scheme"
ERR_FAILED_TO_GET_NETWORK_CONFIG = "invalid_exact_evm_failed_to_get_network_config"

TRANSFER_WITH_AUTHORIZATION_TYPES = {
    "TransferWithAuthorization": [
        {"name": "from", "type": "address"},
        {"name": "to", "type": "address"},
        {"name": "value", "type": "uint256"},
        {"name": "validAfter", "type": "uint256"},
        {"name": "validBefore", "type": "uint256"},
        {"name": "nonce", "type": "bytes32"},
    ]
}

_NONCE_RE = re.compile(r"^0x[0-9a-fA-F]{64}$")
_SIGNATURE_RE = re.compile(r"^0x[0-9a-fA-F]+$")


def create_nonce() -> str:
    """Create a random 32-byte hex-encoded nonce for authorization signatures."""
    return "0x" + secrets.token_hex(32)


def build_typed_data(
    requirements: PaymentRequirements, authorization: dict[str, Any]
) -> tuple[dict[str, Any], dict[str, Any], dict[str, Any]]:
    """Build the EIP-712 (domain, types, message) triple for an authorization.

    Raises:
        ValueError: If the EIP-712 domain is missing or the network is unknown
    """
    extra = requirements.extra or {}
    if "name" not in extra or "version" not in extra:
        raise ValueError("payment requirements extra must carry EIP-712 name and version")

    domain = {
        "name": extra["name"],
        "version": extra["version"],
        "chainId": get_chain_id(requirements.network),
        "verifyingContract": requirements.asset,
    }
    message = {
        "from": authorization["from"],
        "to": authorization["to"],
        "value": int(authorization["value"]),
        "validAfter": int(authorization["validAfter"]),
        "validBefore": int(authorization["validBefore"]),
        "nonce": bytes.fromhex(authorization["nonce"][2:]),
    }
    return domain, TRANSFER_WITH_AUTHORIZATION_TYPES, message


class ExactEvmSigner:
    """Client-side signer for the exact EVM scheme using eth_account.

    Example:
        ```python
        from eth_account import Account
        from x402_core.schemes.exact_evm import ExactEvmSigner

        signer = ExactEvmSigner(Account.from_key("0x..."), networks="base-sepolia")
        ```

    Args:
        account: eth_account LocalAccount instance.
        networks: Network(s) the account may pay on. Defaults to every
            supported EVM network.
    """

    scheme = SCHEME_EXACT

    def __init__(
        self,
        account: "LocalAccount",
        networks: Union[str, list[str], None] = None,
    ) -> None:
        self._account = account
        self._networks = networks if networks is not None else list(SUPPORTED_EVM_NETWORKS)

    @property
    def address(self) -> str:
        return self._account.address

    @property
    def networks(self) -> Union[str, list[str]]:
        return self._networks

    def sign(self, requirements: PaymentRequirements) -> dict[str, Any]:
        if requirements.scheme != self.scheme:
            raise ValueError(f"Unsupported scheme: {requirements.scheme}")

        now = int(time.time())
        authorization = {
            "from": self._account.address,
            "to": requirements.pay_to,
            "value": requirements.max_amount_required,
            "validAfter": str(now - VALID_AFTER_SKEW_SECONDS),
            "validBefore": str(now + requirements.max_timeout_seconds),
            "nonce": create_nonce(),
        }

        domain, types, message = build_typed_data(requirements, authorization)
        signed_message = self._account.sign_typed_data(
            domain_data=domain,
            message_types=types,
            message_data=message,
        )
        signature = signed_message.signature.hex()
        if not signature.startswith("0x"):
            signature = f"0x{signature}"

        return {"signature": signature, "authorization": authorization}


class ExactEvmScheme:
    """Payload validation and structural verification for exact EVM payments."""

    scheme = SCHEME_EXACT

    def parse_payload(self, payload: dict[str, Any]) -> ExactPaymentPayload:
        parsed = ExactPaymentPayload.model_validate(payload)
        if not _SIGNATURE_RE.match(parsed.signature):
            raise ValueError("signature must be a 0x-prefixed hex string")
        if not _NONCE_RE.match(parsed.authorization.nonce):
            raise ValueError("authorization.nonce must be a 0x-prefixed 32-byte hex string")
        if not is_address(parsed.authorization.from_):
            raise ValueError("authorization.from must be an EVM address")
        if not is_address(parsed.authorization.to):
            raise ValueError("authorization.to must be an EVM address")
        return parsed

    def verify(
        self, payment: PaymentPayload, requirements: PaymentRequirements
    ) -> VerifyResponse:
        if payment.scheme != self.scheme or requirements.scheme != self.scheme:
            return VerifyResponse(is_valid=False, invalid_reason=ERR_UNSUPPORTED_SCHEME)
        if payment.network != requirements.network:
            return VerifyResponse(is_valid=False, invalid_reason=ERR_NETWORK_MISMATCH)

        try:
            exact = self.parse_payload(payment.payload)
        except ValueError:
            return VerifyResponse(is_valid=False, invalid_reason=ERR_INVALID_PAYLOAD)

        authorization = exact.authorization
        payer = authorization.from_

        def invalid(reason: str) -> VerifyResponse:
            return VerifyResponse(is_valid=False, invalid_reason=reason, payer=payer)

        if authorization.to.lower() != requirements.pay_to.lower():
            return invalid(ERR_RECIPIENT_MISMATCH)
        if int(authorization.value) < int(requirements.max_amount_required):
            return invalid(ERR_INSUFFICIENT_AMOUNT)

        now = int(time.time())
        if int(authorization.valid_before) < now + VALID_BEFORE_BUFFER_SECONDS:
            return invalid(ERR_VALID_BEFORE_EXPIRED)
        if int(authorization.valid_after) > now:
            return invalid(ERR_VALID_AFTER_FUTURE)

        extra = requirements.extra or {}
        if "name" not in extra or "version" not in extra:
            return invalid(ERR_MISSING_EIP712_DOMAIN)
        try:
            get_chain_id(requirements.network)
        except ValueError:
            return invalid(ERR_FAILED_TO_GET_NETWORK_CONFIG)

        domain, types, message = build_typed_data(
            requirements, authorization.model_dump(by_alias=True)
        )

        recovered = _recover_signer(domain, types, message, exact.signature)
        if recovered is None or recovered.lower() != payer.lower():
            return invalid(ERR_INVALID_SIGNATURE)

        return VerifyResponse(is_valid=True, payer=payer)


def _recover_signer(
    domain: dict[str, Any],
    types: dict[str, Any],
    message: dict[str, Any],
    signature: str,
) -> Optional[str]:
    try:
        signable = encode_typed_data(
            domain_data=domain,
            message_types=types,
            message_data=message,
        )
        return Account.recover_message(signable, signature=signature)
    except Exception:
        # eth_abi and eth_keys raise their own encoding and signature errors
        return None

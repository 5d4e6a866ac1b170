from __future__ import annotations

import re
from datetime import datetime
from typing import Any, List, Optional, Union
from urllib.parse import urlparse

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

ATOMIC_AMOUNT_RE = re.compile(r"^[0-9]+$")


def _validate_atomic_amount(v: str, name: str) -> str:
    if not isinstance(v, str) or not ATOMIC_AMOUNT_RE.match(v):
        raise ValueError(f"{name} must be a non-negative integer encoded as a string")
    return v


class X402Model(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        from_attributes=True,
    )

    def to_wire(self) -> dict[str, Any]:
        """Serialize with camelCase keys and without unset optionals."""
        return self.model_dump(by_alias=True, exclude_none=True)


class EIP712Domain(BaseModel):
    """EIP-712 domain information for token signing"""

    name: str
    version: str


class TokenAsset(BaseModel):
    """Represents token asset information including EIP-712 domain data"""

    address: str
    decimals: int
    eip712: EIP712Domain

    @field_validator("decimals")
    def validate_decimals(cls, v):
        if v < 0 or v > 255:
            raise ValueError("decimals must be between 0 and 255")
        return v


class TokenAmount(BaseModel):
    """Represents an amount of tokens in atomic units with asset information"""

    amount: str
    asset: TokenAsset

    @field_validator("amount")
    def validate_amount(cls, v):
        return _validate_atomic_amount(v, "amount")


# Price can be either Money (USD string) or TokenAmount
Money = Union[str, int, float]  # e.g., "$0.01", 0.01, "0.001"
Price = Union[Money, TokenAmount]


class PaymentRequirements(X402Model):
    scheme: str
    network: str
    max_amount_required: str
    resource: str
    description: str = ""
    mime_type: str = ""
    pay_to: str
    max_timeout_seconds: int = Field(ge=0)
    asset: str
    output_schema: Optional[dict[str, Any]] = None
    extra: Optional[dict[str, Any]] = None

    @field_validator("max_amount_required")
    def validate_max_amount_required(cls, v):
        return _validate_atomic_amount(v, "maxAmountRequired")

    @field_validator("resource")
    def validate_resource(cls, v):
        parsed = urlparse(v)
        if not parsed.scheme or not parsed.netloc:
            raise ValueError("resource must be an absolute URL")
        return v


# Returned by a server as json alongside a 402 response code
class x402PaymentRequiredResponse(X402Model):
    x402_version: int
    accepts: list[PaymentRequirements]
    error: str
    payer: Optional[str] = None


class EIP3009Authorization(X402Model):
    from_: str = Field(alias="from")
    to: str
    value: str
    valid_after: str
    valid_before: str
    nonce: str

    @field_validator("value", "valid_after", "valid_before")
    def validate_integer_strings(cls, v):
        return _validate_atomic_amount(v, "authorization values")


class ExactPaymentPayload(BaseModel):
    signature: str
    authorization: EIP3009Authorization


class PaymentPayload(X402Model):
    x402_version: int
    scheme: str
    network: str
    payload: dict[str, Any]


class FacilitatorRequest(X402Model):
    """Body of the facilitator /verify and /settle calls."""

    x402_version: int
    payment_payload: PaymentPayload
    payment_requirements: PaymentRequirements


class VerifyResponse(X402Model):
    is_valid: bool
    invalid_reason: Optional[str] = None
    payer: Optional[str] = None


class SettleResponse(X402Model):
    success: bool
    error_reason: Optional[str] = None
    payer: Optional[str] = None
    transaction: str = ""
    network: str = ""


class SupportedKind(X402Model):
    x402_version: int
    scheme: str
    network: str
    extra: Optional[dict[str, Any]] = None


class SupportedResponse(X402Model):
    kinds: list[SupportedKind]


class DiscoveredResource(X402Model):
    """A discovery resource represents a discoverable resource in the X402 ecosystem."""

    resource: str
    type: str = Field(..., pattern="^http$")  # Currently only supports 'http'
    x402_version: int
    accepts: List[PaymentRequirements]
    last_updated: datetime = Field(
        ...,
        description="ISO 8601 formatted datetime string with UTC timezone (e.g. 2025-08-09T01:07:04.005Z)",
    )
    metadata: Optional[dict] = None


class ListDiscoveryResourcesRequest(X402Model):
    """Request parameters for listing discovery resources."""

    type: Optional[str] = None
    limit: Optional[int] = None
    offset: Optional[int] = None


class DiscoveryResourcesPagination(X402Model):
    """Pagination information for discovery resources responses."""

    limit: int
    offset: int
    total: int


class ListDiscoveryResourcesResponse(X402Model):
    """Response from the discovery resources endpoint."""

    x402_version: int
    items: List[DiscoveredResource]
    pagination: DiscoveryResourcesPagination

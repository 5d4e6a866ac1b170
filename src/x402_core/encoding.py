import base64
import binascii
import json
import re
from typing import TYPE_CHECKING, Any, Dict, Mapping, Optional, Union

from x402_core.exceptions import (
    InvalidEncoding,
    InvalidJson,
    MalformedPaymentHeader,
)
from x402_core.types import PaymentPayload, PaymentRequirements, SettleResponse

if TYPE_CHECKING:
    from x402_core.schemes import SchemeRegistry

X_PAYMENT_HEADER = "X-PAYMENT"
X_PAYMENT_RESPONSE_HEADER = "X-PAYMENT-RESPONSE"

BASE64_ENCODED_RE = re.compile(r"^[A-Za-z0-9+/]*={0,2}$")
_WHITESPACE_RE = re.compile(r"\s+")


def safe_base64_encode(data: Union[str, bytes]) -> str:
    """Safely encode string or bytes to base64 string.

    Args:
        data: String or bytes to encode

    Returns:
        Base64 encoded string
    """
    if isinstance(data, str):
        data = data.encode("utf-8")
    return base64.b64encode(data).decode("utf-8")


def _normalize_base64_input(data: str) -> str:
    normalized = _WHITESPACE_RE.sub("", data)
    if len(normalized) == 0:
        raise InvalidEncoding("Invalid base64 string: empty input")
    if len(normalized) % 4 != 0:
        raise InvalidEncoding("Invalid base64 string: length is not a multiple of 4")
    if not BASE64_ENCODED_RE.match(normalized):
        raise InvalidEncoding("Invalid base64 string: unexpected characters or padding")
    return normalized


def safe_base64_decode(data: str) -> str:
    """Strictly decode a base64 string to a utf-8 string.

    Whitespace anywhere in the input is ignored. The input is validated
    before decoding so malformed values never decode to partial garbage.

    Args:
        data: Base64 encoded string

    Returns:
        Decoded utf-8 string

    Raises:
        InvalidEncoding: If the input is not strict base64 or not utf-8
    """
    if not isinstance(data, str):
        raise InvalidEncoding("Invalid base64 string: expected str")
    normalized = _normalize_base64_input(data)
    try:
        raw = base64.b64decode(normalized, validate=True)
    except binascii.Error as e:
        raise InvalidEncoding(f"Invalid base64 string: {e}") from e
    try:
        return raw.decode("utf-8")
    except UnicodeDecodeError as e:
        raise InvalidEncoding("Invalid base64 string: decoded bytes are not utf-8") from e


def safe_base64_decode_json(data: str) -> Any:
    """Decode a base64 string and parse the result as JSON.

    Raises:
        InvalidEncoding: If the input is not strict base64
        InvalidJson: If the decoded text is not JSON
    """
    decoded = safe_base64_decode(data)
    try:
        return json.loads(decoded)
    except json.JSONDecodeError as e:
        raise InvalidJson(f"Invalid JSON payload: {e}") from e


def build_payment_payload(
    payment_requirements: PaymentRequirements,
    scheme_payload: Dict[str, Any],
    x402_version: int = 1,
) -> PaymentPayload:
    """Wrap a signed scheme payload for the selected requirements."""
    return PaymentPayload(
        x402_version=x402_version,
        scheme=payment_requirements.scheme,
        network=payment_requirements.network,
        payload=scheme_payload,
    )


def encode_payment_header(payment: PaymentPayload) -> str:
    """Encode a payment payload into an X-PAYMENT header value."""
    return safe_base64_encode(json.dumps(payment.to_wire(), separators=(",", ":")))


def _check_payment_fields(data: Any) -> None:
    if not isinstance(data, dict):
        raise MalformedPaymentHeader("payment", "must be a JSON object")

    version = data.get("x402Version")
    if isinstance(version, bool) or not isinstance(version, int):
        raise MalformedPaymentHeader("x402Version", "must be an integer")

    for field in ("scheme", "network"):
        value = data.get(field)
        if not isinstance(value, str) or not value:
            raise MalformedPaymentHeader(field, "must be a non-empty string")

    if not isinstance(data.get("payload"), dict):
        raise MalformedPaymentHeader("payload", "must be an object")


def decode_payment_header(
    header: str,
    scheme_registry: Optional["SchemeRegistry"] = None,
) -> PaymentPayload:
    """Decode and validate an X-PAYMENT header value.

    Args:
        header: Base64 encoded payment header
        scheme_registry: Optional registry used to validate the scheme payload

    Returns:
        Decoded PaymentPayload

    Raises:
        InvalidEncoding: If the header is not strict base64
        InvalidJson: If the decoded header is not JSON
        MalformedPaymentHeader: If a required field is missing or invalid
    """
    data = safe_base64_decode_json(header)
    _check_payment_fields(data)
    payment = PaymentPayload.model_validate(data)

    if scheme_registry is not None:
        handler = scheme_registry.get(payment.scheme, payment.network)
        if handler is not None:
            try:
                handler.parse_payload(payment.payload)
            except ValueError as e:
                raise MalformedPaymentHeader("payload", f"is invalid: {e}") from e

    return payment


def get_payment_header(headers: Mapping[str, str]) -> Optional[str]:
    """Find the X-PAYMENT header value.

    Prefers the canonical casing, then the lowercase form, then any other
    casing. Empty values are treated as absent.
    """
    for name in (X_PAYMENT_HEADER, X_PAYMENT_HEADER.lower()):
        value = headers.get(name)
        if value:
            return value

    wanted = X_PAYMENT_HEADER.lower()
    for name, value in headers.items():
        if name.lower() == wanted and value:
            return value
    return None


def encode_settle_response_header(settle_response: SettleResponse) -> str:
    """Encode a settlement result into an X-PAYMENT-RESPONSE header value."""
    return safe_base64_encode(settle_response.model_dump_json(by_alias=True, exclude_none=True))


def decode_x_payment_response(header: str) -> Dict[str, Any]:
    """Decode the X-PAYMENT-RESPONSE header.

    Args:
        header: The X-PAYMENT-RESPONSE header to decode

    Returns:
        The decoded payment response containing:
        - success: bool
        - transaction: str (hex)
        - network: str
        - payer: str (address)
    """
    return safe_base64_decode_json(header)

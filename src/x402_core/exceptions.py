from typing import Any, Optional


class X402Error(Exception):
    """Base class for all x402 errors."""

    pass


class EncodingError(X402Error, ValueError):
    """Raised when a base64 framed value cannot be decoded."""

    pass


class InvalidEncoding(EncodingError):
    """Raised when a value is not strict base64 (length, alphabet or padding)."""

    pass


class InvalidJson(EncodingError):
    """Raised when decoded base64 content is not valid JSON."""

    pass


class MalformedPaymentHeader(X402Error, ValueError):
    """Raised when a decoded X-PAYMENT header is missing or has an invalid field."""

    def __init__(self, field: str, message: str):
        self.field = field
        super().__init__(f"Malformed payment header: {field} {message}")


class NoAcceptableRequirements(X402Error):
    """Raised when there are no payment requirements to choose from."""

    pass


class SchemeNotFoundError(X402Error):
    """Raised when no scheme handler is registered for a scheme/network pair."""

    def __init__(self, scheme: str, network: str):
        self.scheme = scheme
        self.network = network
        super().__init__(f"No scheme registered for '{scheme}' on network '{network}'")


class FacilitatorError(X402Error):
    """Raised when the facilitator cannot be reached or answers with garbage.

    This never represents a business outcome: an invalid payment is reported
    through VerifyResponse.is_valid / SettleResponse.success instead.
    """

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        body: Optional[str] = None,
    ):
        self.status_code = status_code
        self.body = body
        super().__init__(message)


class FacilitatorTimeoutError(FacilitatorError):
    """Raised when a facilitator call did not complete within its timeout.

    For settle this means the outcome is unknown, not that it failed.
    """

    pass


class PaymentError(X402Error):
    """Base class for client-side payment errors.

    Attributes:
        stage: Interceptor stage that failed ("parse", "select", "sign").
        payment_required: The 402 body that triggered the flow, when available.
    """

    def __init__(
        self,
        message: str,
        stage: Optional[str] = None,
        payment_required: Any = None,
    ):
        self.stage = stage
        self.payment_required = payment_required
        super().__init__(message)


class InvalidPaymentRequiredResponse(PaymentError):
    """Raised when a 402 body is not a valid x402 payment required response."""

    pass


class PaymentSigningFailed(PaymentError):
    """Raised when the signer could not produce a payment payload."""

    pass


class PaymentAmountExceededError(PaymentError):
    """Raised when payment amount exceeds maximum allowed value."""

    pass


class MissingRequestConfigError(PaymentError):
    """Raised when request configuration is missing."""

    pass

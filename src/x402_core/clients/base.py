import logging
from typing import Any, Callable, List, Optional, Sequence, Union

from pydantic import ValidationError

from x402_core.common import select_payment_requirements, x402_VERSION
from x402_core.encoding import (
    build_payment_payload,
    decode_x_payment_response,
    encode_payment_header,
)
from x402_core.exceptions import (
    InvalidPaymentRequiredResponse,
    MissingRequestConfigError,
    NoAcceptableRequirements,
    PaymentAmountExceededError,
    PaymentError,
    PaymentSigningFailed,
)
from x402_core.schemes import PaymentSigner
from x402_core.types import PaymentRequirements, x402PaymentRequiredResponse

logger = logging.getLogger(__name__)

# Define type for the payment requirements selector
PaymentSelectorCallable = Callable[
    [Sequence[PaymentRequirements], Union[str, Sequence[str], None], Optional[str]],
    PaymentRequirements,
]


class x402Client:
    """Client-side payment logic shared by the httpx and requests integrations.

    Parses a 402 body, selects one requirement, signs it with the configured
    signer and encodes the X-PAYMENT header. Transport integrations only move
    bytes around this object.
    """

    def __init__(
        self,
        signer: PaymentSigner,
        max_value: Optional[int] = None,
        payment_requirements_selector: Optional[PaymentSelectorCallable] = None,
        scheme: str = "exact",
    ):
        """Initialize the x402 client.

        Args:
            signer: Signer producing scheme payloads (e.g. ExactEvmSigner)
            max_value: Optional maximum allowed payment amount in base units
            payment_requirements_selector: Optional custom selector for payment requirements
            scheme: Preferred payment scheme
        """
        if signer is None:
            raise MissingRequestConfigError("A payment signer is required")
        self.signer = signer
        self.max_value = max_value
        self.scheme = scheme
        self._payment_requirements_selector = (
            payment_requirements_selector or select_payment_requirements
        )

    def parse_payment_required(self, body: Any) -> x402PaymentRequiredResponse:
        """Validate a 402 response body.

        Raises:
            InvalidPaymentRequiredResponse: If the body is not an x402 answer
        """
        if not isinstance(body, dict):
            raise InvalidPaymentRequiredResponse(
                "402 response body must be a JSON object", stage="parse", payment_required=body
            )
        version = body.get("x402Version")
        if isinstance(version, bool) or not isinstance(version, int):
            raise InvalidPaymentRequiredResponse(
                "402 response is missing a numeric x402Version",
                stage="parse",
                payment_required=body,
            )
        if not isinstance(body.get("accepts"), list):
            raise InvalidPaymentRequiredResponse(
                "402 response is missing the accepts list",
                stage="parse",
                payment_required=body,
            )

        try:
            accepts = [PaymentRequirements.model_validate(item) for item in body["accepts"]]
        except ValidationError as e:
            raise InvalidPaymentRequiredResponse(
                f"Invalid payment requirements: {e}", stage="parse", payment_required=body
            ) from e

        error = body.get("error")
        return x402PaymentRequiredResponse(
            x402_version=version,
            accepts=accepts,
            error=error if isinstance(error, str) else "",
            payer=body.get("payer") if isinstance(body.get("payer"), str) else None,
        )

    def select_payment_requirements(
        self, accepts: List[PaymentRequirements]
    ) -> PaymentRequirements:
        """Select payment requirements using the configured selector.

        Raises:
            PaymentError: If nothing can be selected
            PaymentAmountExceededError: If payment amount exceeds max_value
        """
        try:
            selected = self._payment_requirements_selector(
                accepts, self.signer.networks, self.scheme
            )
        except NoAcceptableRequirements as e:
            raise PaymentError(str(e), stage="select") from e

        if self.max_value is not None:
            max_amount = int(selected.max_amount_required)
            if max_amount > self.max_value:
                raise PaymentAmountExceededError(
                    f"Payment amount {max_amount} exceeds maximum allowed value {self.max_value}",
                    stage="select",
                )
        return selected

    def create_payment_header(
        self,
        payment_requirements: PaymentRequirements,
        x402_version: int = x402_VERSION,
    ) -> str:
        """Sign the selected requirements and encode the X-PAYMENT header.

        Raises:
            PaymentSigningFailed: If the signer fails; the signer error is chained
        """
        try:
            scheme_payload = self.signer.sign(payment_requirements)
        except Exception as e:
            raise PaymentSigningFailed(
                f"Failed to sign payment: {e}", stage="sign"
            ) from e

        payment = build_payment_payload(payment_requirements, scheme_payload, x402_version)
        return encode_payment_header(payment)

    async def create_payment_header_async(
        self,
        payment_requirements: PaymentRequirements,
        x402_version: int = x402_VERSION,
    ) -> str:
        return self.create_payment_header(payment_requirements, x402_version)

    def handle_payment_required(self, body: Any) -> str:
        """Run parse, select and sign for a 402 body and return the X-PAYMENT value."""
        payment_required = self.parse_payment_required(body)
        try:
            selected = self.select_payment_requirements(payment_required.accepts)
            logger.debug(
                "Paying %s on %s for %s",
                selected.max_amount_required,
                selected.network,
                selected.resource,
            )
            return self.create_payment_header(selected, payment_required.x402_version)
        except PaymentError as e:
            e.payment_required = payment_required
            raise

    async def handle_payment_required_async(self, body: Any) -> str:
        payment_required = self.parse_payment_required(body)
        try:
            selected = self.select_payment_requirements(payment_required.accepts)
            return await self.create_payment_header_async(
                selected, payment_required.x402_version
            )
        except PaymentError as e:
            e.payment_required = payment_required
            raise


__all__ = [
    "x402Client",
    "PaymentSelectorCallable",
    "decode_x_payment_response",
]

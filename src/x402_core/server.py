"""Resource-server side of the x402 exchange.

``x402ResourceServer`` turns an incoming ``X-PAYMENT`` header into either a
``PaymentRequired`` outcome (a 402/500 answer for the client) or a
``VerifiedPayment`` the framework adapter serves and later settles. The
FastAPI and Flask adapters are thin wrappers around it.
"""

from __future__ import annotations

import asyncio
import inspect
import json
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable, Mapping, Optional, Sequence, TypeVar, Union

from x402_core.common import find_matching_payment_requirements, x402_VERSION
from x402_core.encoding import (
    X_PAYMENT_RESPONSE_HEADER,
    decode_payment_header,
    encode_settle_response_header,
    get_payment_header,
)
from x402_core.exceptions import (
    EncodingError,
    FacilitatorError,
    FacilitatorTimeoutError,
    MalformedPaymentHeader,
)
from x402_core.facilitator import Facilitator
from x402_core.schemes import SchemeRegistry, default_scheme_registry
from x402_core.types import (
    PaymentPayload,
    PaymentRequirements,
    SettleResponse,
    VerifyResponse,
    x402PaymentRequiredResponse,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")

ERROR_HEADER_REQUIRED = "X-PAYMENT header is required"
ERROR_NO_MATCHING_REQUIREMENTS = "No matching payment requirements found"
ERROR_SETTLE_FAILED = "Settle failed"


class SettlementMode(str, Enum):
    """When settlement happens relative to releasing the response."""

    SYNC = "sync"
    DEFERRED = "deferred"


@dataclass(frozen=True)
class PaymentRequired:
    """A payment-required answer: status code plus the x402 JSON body."""

    status_code: int
    body: dict[str, Any]

    @property
    def content(self) -> bytes:
        return json.dumps(self.body, separators=(",", ":")).encode("utf-8")

    @property
    def headers(self) -> dict[str, str]:
        return {"Content-Type": "application/json"}


@dataclass(frozen=True)
class VerifiedPayment:
    """A payment the facilitator accepted, waiting for settlement."""

    payment: PaymentPayload
    requirements: PaymentRequirements
    verify_response: VerifyResponse
    accepts: tuple[PaymentRequirements, ...] = ()

    @property
    def payer(self) -> Optional[str]:
        return self.verify_response.payer


@dataclass(frozen=True)
class SettlementResult:
    """Outcome of settling a verified payment.

    Exactly one of ``headers`` (success) or ``failure`` (402/500 answer) is set.
    """

    settle_response: Optional[SettleResponse] = None
    headers: dict[str, str] = field(default_factory=dict)
    failure: Optional[PaymentRequired] = None

    @property
    def success(self) -> bool:
        return self.failure is None


@dataclass
class SettlementContext:
    """Passed to settlement hooks (usage metering, audit logging...)."""

    payment: PaymentPayload
    requirements: PaymentRequirements
    verify_response: VerifyResponse
    settle_response: Optional[SettleResponse] = None
    error: Optional[BaseException] = None

    @property
    def payer(self) -> Optional[str]:
        if self.settle_response is not None and self.settle_response.payer:
            return self.settle_response.payer
        return self.verify_response.payer


SettlementHook = Callable[[SettlementContext], Union[None, Awaitable[None]]]


class x402ResourceServer:
    """Verification and settlement flow for a protected resource.

    Example:
        ```python
        server = x402ResourceServer(FacilitatorClient(), facilitator_timeout=10)
        outcome = await server.process_payment(request.headers, requirements)
        if isinstance(outcome, PaymentRequired):
            return JSONResponse(outcome.body, status_code=outcome.status_code)
        ```

    Args:
        facilitator: Facilitator used for verify and settle.
        settlement_mode: Default settlement mode for endpoints using this server.
        facilitator_timeout: Seconds to wait for each facilitator call; None waits forever.
        scheme_registry: Registry validating scheme payloads while decoding.
        x402_version: Protocol version advertised and accepted.
    """

    def __init__(
        self,
        facilitator: Facilitator,
        *,
        settlement_mode: SettlementMode = SettlementMode.SYNC,
        facilitator_timeout: Optional[float] = None,
        scheme_registry: Optional[SchemeRegistry] = None,
        x402_version: int = x402_VERSION,
    ) -> None:
        self.facilitator = facilitator
        self.settlement_mode = SettlementMode(settlement_mode)
        self.facilitator_timeout = facilitator_timeout
        self.scheme_registry = (
            scheme_registry if scheme_registry is not None else default_scheme_registry()
        )
        self.x402_version = x402_version

        self._after_verify_hooks: list[SettlementHook] = []
        self._after_settle_hooks: list[SettlementHook] = []
        self._on_settle_failure_hooks: list[SettlementHook] = []
        self._pending_settlements: set[asyncio.Task] = set()

    # Hooks

    def on_after_verify(self, hook: SettlementHook) -> SettlementHook:
        self._after_verify_hooks.append(hook)
        return hook

    def on_after_settle(self, hook: SettlementHook) -> SettlementHook:
        self._after_settle_hooks.append(hook)
        return hook

    def on_settle_failure(self, hook: SettlementHook) -> SettlementHook:
        self._on_settle_failure_hooks.append(hook)
        return hook

    async def _run_hooks(
        self, hooks: Sequence[SettlementHook], context: SettlementContext
    ) -> None:
        for hook in hooks:
            try:
                result = hook(context)
                if inspect.isawaitable(result):
                    await result
            except Exception:
                logger.exception("Settlement hook %r failed", hook)

    # Responses

    def payment_required_response(
        self,
        accepts: Sequence[PaymentRequirements],
        error: str,
        payer: Optional[str] = None,
        status_code: int = 402,
    ) -> PaymentRequired:
        """Build the x402 answer listing the accepted payment requirements."""
        body = x402PaymentRequiredResponse(
            x402_version=self.x402_version,
            accepts=list(accepts),
            error=error,
            payer=payer,
        ).to_wire()
        return PaymentRequired(status_code=status_code, body=body)

    # Flow

    async def _with_timeout(self, awaitable: Awaitable[T], stage: str) -> T:
        try:
            return await asyncio.wait_for(awaitable, self.facilitator_timeout)
        except asyncio.TimeoutError as e:
            raise FacilitatorTimeoutError(
                f"Facilitator {stage} timed out after {self.facilitator_timeout}s"
            ) from e

    async def initialize(
        self, accepts: Sequence[PaymentRequirements]
    ) -> list[PaymentRequirements]:
        """Keep only the requirements the facilitator says it supports."""
        kinds = await self._with_timeout(self.facilitator.supported(), "supported")
        supported = {(kind.scheme, kind.network) for kind in kinds}
        kept = [req for req in accepts if (req.scheme, req.network) in supported]
        for req in accepts:
            if (req.scheme, req.network) not in supported:
                logger.warning(
                    "Facilitator does not support %s on %s, dropping requirement",
                    req.scheme,
                    req.network,
                )
        return kept

    async def process_payment(
        self,
        headers: Mapping[str, str],
        accepts: Sequence[PaymentRequirements],
    ) -> Union[PaymentRequired, VerifiedPayment]:
        """Decode and verify the X-PAYMENT header of a request."""
        payment_header = get_payment_header(headers)
        if payment_header is None:
            return self.payment_required_response(accepts, ERROR_HEADER_REQUIRED)

        try:
            payment = decode_payment_header(payment_header, self.scheme_registry)
        except (EncodingError, MalformedPaymentHeader) as e:
            logger.warning("Rejected malformed payment header: %s", e)
            return self.payment_required_response(accepts, str(e))

        if payment.x402_version != self.x402_version:
            return self.payment_required_response(
                accepts, f"Unsupported x402Version: {payment.x402_version}"
            )

        selected = find_matching_payment_requirements(accepts, payment)
        if selected is None:
            logger.warning(
                "No requirement matches payment for %s on %s",
                payment.scheme,
                payment.network,
            )
            return self.payment_required_response(accepts, ERROR_NO_MATCHING_REQUIREMENTS)

        try:
            verify_response = await self._with_timeout(
                self.facilitator.verify(payment, selected), "verify"
            )
        except FacilitatorError as e:
            logger.warning("Facilitator verify failed: %s", e)
            return self.payment_required_response(
                accepts, f"Facilitator verify failed: {e}", status_code=500
            )

        if not verify_response.is_valid:
            reason = verify_response.invalid_reason or "Unknown error"
            logger.warning("Payment rejected by facilitator: %s", reason)
            return self.payment_required_response(
                accepts, reason, payer=verify_response.payer
            )

        await self._run_hooks(
            self._after_verify_hooks,
            SettlementContext(payment, selected, verify_response),
        )
        return VerifiedPayment(
            payment=payment,
            requirements=selected,
            verify_response=verify_response,
            accepts=tuple(accepts),
        )

    async def settle(self, verified: VerifiedPayment) -> SettlementResult:
        """Settle a verified payment, never retrying.

        The facilitator call runs as its own task; a timeout or cancellation
        of the caller abandons the wait but not the settlement itself.
        """
        context = SettlementContext(
            verified.payment, verified.requirements, verified.verify_response
        )
        task = asyncio.ensure_future(
            self.facilitator.settle(verified.payment, verified.requirements)
        )
        self._pending_settlements.add(task)
        task.add_done_callback(self._pending_settlements.discard)

        try:
            settle_response = await self._with_timeout(asyncio.shield(task), "settle")
        except FacilitatorError as e:
            logger.warning("Settlement outcome unknown: %s", e)
            context.error = e
            await self._run_hooks(self._on_settle_failure_hooks, context)
            return SettlementResult(
                failure=self.payment_required_response(
                    verified.accepts,
                    f"{ERROR_SETTLE_FAILED}: {e}",
                    payer=verified.payer,
                    status_code=500,
                )
            )

        context.settle_response = settle_response
        if not settle_response.success:
            reason = settle_response.error_reason or "Unknown error"
            logger.warning("Settlement failed: %s", reason)
            await self._run_hooks(self._on_settle_failure_hooks, context)
            return SettlementResult(
                settle_response=settle_response,
                failure=self.payment_required_response(
                    verified.accepts,
                    f"{ERROR_SETTLE_FAILED}: {reason}",
                    payer=settle_response.payer or verified.payer,
                ),
            )

        logger.info(
            "Settled payment from %s on %s: %s",
            settle_response.payer or verified.payer,
            settle_response.network or verified.requirements.network,
            settle_response.transaction,
        )
        await self._run_hooks(self._after_settle_hooks, context)
        return SettlementResult(
            settle_response=settle_response,
            headers={
                X_PAYMENT_RESPONSE_HEADER: encode_settle_response_header(settle_response)
            },
        )

    async def settle_deferred(self, verified: VerifiedPayment) -> None:
        """Settle after the response was released; failures only reach logs and hooks."""
        result = await self.settle(verified)
        if result.failure is not None:
            logger.warning(
                "Deferred settlement failed after response was sent: %s",
                result.failure.body.get("error"),
            )

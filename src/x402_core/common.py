import logging
from decimal import Decimal, InvalidOperation, ROUND_DOWN
from typing import Any, Optional, Sequence, Union

from x402_core.exceptions import NoAcceptableRequirements
from x402_core.networks import get_chain_id, get_default_token
from x402_core.types import (
    Money,
    PaymentPayload,
    PaymentRequirements,
    Price,
    TokenAmount,
)

logger = logging.getLogger(__name__)

x402_VERSION = 1


def parse_money(amount: Money) -> Decimal:
    """Parse a Money value ("$0.01", "0.01", 0.01, 1) into a Decimal."""
    if isinstance(amount, bool):
        raise ValueError(f"Invalid money amount: {amount!r}")
    if isinstance(amount, str):
        text = amount.strip()
        if text.startswith("$"):
            text = text[1:]
        text = text.replace(",", "")
    else:
        text = str(amount)
    try:
        value = Decimal(text)
    except InvalidOperation as e:
        raise ValueError(f"Invalid money amount: {amount!r}") from e
    if not value.is_finite() or value < 0:
        raise ValueError(f"Invalid money amount: {amount!r}")
    return value


def parse_money_to_atomic_units(amount: Money, decimals: int) -> str:
    value = parse_money(amount) * (Decimal(10) ** decimals)
    return str(int(value.to_integral_value(rounding=ROUND_DOWN)))


def process_price_to_atomic_amount(
    price: Price, network: str
) -> tuple[str, str, dict[str, Any]]:
    """Process a Price into atomic amount, asset address, and EIP-712 domain info

    Args:
        price: Either Money (USD string/int/float) or TokenAmount
        network: Network identifier

    Returns:
        Tuple of (max_amount_required, asset_address, eip712_domain)

    Raises:
        ValueError: If price format is invalid or the network has no default asset
    """
    if isinstance(price, TokenAmount):
        return (
            price.amount,
            price.asset.address,
            {
                "name": price.asset.eip712.name,
                "version": price.asset.eip712.version,
            },
        )

    if isinstance(price, (str, int, float)):
        chain_id = get_chain_id(network)
        token = get_default_token(chain_id, "usdc")
        amount = parse_money_to_atomic_units(price, token["decimals"])
        return (
            amount,
            token["address"],
            {"name": token["name"], "version": token["version"]},
        )

    raise ValueError(f"Invalid price type: {type(price)}")


def find_matching_payment_requirements(
    payment_requirements: Sequence[PaymentRequirements],
    payment: PaymentPayload,
) -> Optional[PaymentRequirements]:
    """Find the requirement the payment was made against.

    Matches on scheme and network only; returns None instead of falling back.
    """
    for requirements in payment_requirements:
        if (
            requirements.scheme == payment.scheme
            and requirements.network == payment.network
        ):
            return requirements
    return None


def select_payment_requirements(
    accepts: Sequence[PaymentRequirements],
    preferred_network: Union[str, Sequence[str], None] = None,
    preferred_scheme: Optional[str] = "exact",
) -> PaymentRequirements:
    """Select one payment requirement from the list a server offered.

    Keeps the requirements on the preferred network(s), then prefers the first
    one using the preferred scheme. Falls back to the first filtered
    requirement, and to the first offered one when no network matched.

    Args:
        accepts: Requirements offered by the server, in preference order
        preferred_network: Network or networks the payer can use; None for any
        preferred_scheme: Scheme to prefer

    Returns:
        An element of ``accepts``

    Raises:
        NoAcceptableRequirements: If ``accepts`` is empty
    """
    if not accepts:
        raise NoAcceptableRequirements("No payment requirements to select from")

    if preferred_network is None:
        filtered = list(accepts)
    elif isinstance(preferred_network, str):
        filtered = [req for req in accepts if req.network == preferred_network]
    else:
        networks = set(preferred_network)
        filtered = [req for req in accepts if req.network in networks]

    for req in filtered:
        if req.scheme == preferred_scheme:
            logger.debug("Selected %s on %s", req.scheme, req.network)
            return req

    if filtered:
        return filtered[0]

    logger.debug(
        "No requirement on preferred network %s, falling back to first offered",
        preferred_network,
    )
    return accepts[0]
